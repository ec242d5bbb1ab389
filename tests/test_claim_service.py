"""Tests for the one-time claim protocol and staleness sweep."""

import asyncio
from dataclasses import replace
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from relay.claim_service import ClaimService, generate_claim_token
from relay.exceptions import AlreadyClaimedError, InvalidClaimError, ItemNotFoundError, StorageFailureError
from relay.storage_engine import StorageEngine
from relay.utils import utc_now
from tests.conftest import SequenceIdGenerator, read_all, stream_of


class TestTryClaim:
    """Test claiming items."""

    @pytest.mark.asyncio
    async def test_first_claim_returns_token(self, storage, claim_service):
        item_id = await storage.store(stream_of(b"x"), "a")

        token = await claim_service.try_claim(item_id)

        assert token
        item = await storage.get_metadata(item_id)
        assert item.claim is not None
        assert item.claim.token == token

    @pytest.mark.asyncio
    async def test_second_claim_fails(self, storage, claim_service):
        item_id = await storage.store(stream_of(b"x"), "a")
        first = await claim_service.try_claim(item_id)

        second = await claim_service.try_claim(item_id)

        assert second is None
        assert (await storage.get_metadata(item_id)).claim.token == first

    @pytest.mark.asyncio
    async def test_claim_missing_item(self, claim_service):
        assert await claim_service.try_claim("falcon482") is None

    @pytest.mark.asyncio
    async def test_claim_raises_typed_errors(self, storage, claim_service):
        with pytest.raises(ItemNotFoundError):
            await claim_service.claim("falcon482")

        item_id = await storage.store(stream_of(b"x"), "a")
        await claim_service.claim(item_id)

        with pytest.raises(AlreadyClaimedError):
            await claim_service.claim(item_id)

    @pytest.mark.asyncio
    async def test_claim_returns_claimed_item(self, storage, claim_service):
        item_id = await storage.store(stream_of(b"abcd"), "report.pdf", declared_size=3)

        item, token = await claim_service.claim(item_id)

        assert item.display_name == "report.pdf"
        assert item.stored_size == 4
        assert item.claim.token == token

    @pytest.mark.asyncio
    async def test_concurrent_claims_have_single_winner(self, storage, claim_service):
        item_id = await storage.store(stream_of(b"x"), "a")

        results = await asyncio.gather(*(claim_service.try_claim(item_id) for _ in range(50)))

        winners = [token for token in results if token is not None]
        assert len(winners) == 1
        assert (await storage.get_metadata(item_id)).claim.token == winners[0]

    @pytest.mark.asyncio
    async def test_concurrent_claims_across_many_items(self, storage, claim_service):
        ids = [await storage.store(stream_of(b"x"), f"{i}") for i in range(10)]

        attempts = [claim_service.try_claim(item_id) for item_id in ids for _ in range(10)]
        results = await asyncio.gather(*attempts)

        assert sum(1 for token in results if token is not None) == len(ids)

    def test_tokens_are_random_and_long(self):
        tokens = {generate_claim_token() for _ in range(100)}
        assert len(tokens) == 100
        assert all(len(token) >= 43 for token in tokens)


class TestValidateClaim:
    """Test claim token validation."""

    @pytest.mark.asyncio
    async def test_exact_token_validates(self, storage, claim_service):
        item_id = await storage.store(stream_of(b"x"), "a")
        token = await claim_service.try_claim(item_id)

        assert await claim_service.validate_claim(item_id, token) is True

    @pytest.mark.asyncio
    async def test_other_tokens_rejected(self, storage, claim_service):
        item_id = await storage.store(stream_of(b"x"), "a")
        token = await claim_service.try_claim(item_id)

        for candidate in ["", "wrong", token[:-1], token + "x", token.swapcase(), token.upper(), " " + token]:
            if candidate == token:
                continue
            assert await claim_service.validate_claim(item_id, candidate) is False

    @pytest.mark.asyncio
    async def test_unclaimed_item_rejects_any_token(self, storage, claim_service):
        item_id = await storage.store(stream_of(b"x"), "a")

        assert await claim_service.validate_claim(item_id, "anything") is False

    @pytest.mark.asyncio
    async def test_missing_item_rejects(self, claim_service):
        assert await claim_service.validate_claim("falcon482", "token") is False

    @pytest.mark.asyncio
    async def test_token_not_valid_for_other_item(self, storage, claim_service):
        first = await storage.store(stream_of(b"x"), "a")
        second = await storage.store(stream_of(b"y"), "b")
        token = await claim_service.try_claim(first)
        await claim_service.try_claim(second)

        assert await claim_service.validate_claim(second, token) is False

    @pytest.mark.asyncio
    async def test_require_valid_claim(self, storage, claim_service):
        item_id = await storage.store(stream_of(b"x"), "a")
        token = await claim_service.try_claim(item_id)

        item = await claim_service.require_valid_claim(item_id, token)
        assert item.id == item_id

        with pytest.raises(InvalidClaimError):
            await claim_service.require_valid_claim(item_id, "wrong")
        with pytest.raises(ItemNotFoundError):
            await claim_service.require_valid_claim("falcon482", token)


class TestCompleteDownload:
    """Test download completion."""

    @pytest.mark.asyncio
    async def test_complete_download_deletes_item(self, storage, claim_service):
        item_id = await storage.store(stream_of(b"x"), "a")
        token = await claim_service.try_claim(item_id)
        assert await claim_service.validate_claim(item_id, token)

        await claim_service.complete_download(item_id)

        assert not storage.exists(item_id)
        assert await storage.get_metadata(item_id) is None
        assert await claim_service.try_claim(item_id) is None
        assert await claim_service.validate_claim(item_id, token) is False

    @pytest.mark.asyncio
    async def test_complete_download_twice_is_noop(self, storage, claim_service):
        item_id = await storage.store(stream_of(b"x"), "a")
        await claim_service.complete_download(item_id)
        await claim_service.complete_download(item_id)

        assert not storage.exists(item_id)


class TestExampleScenario:
    """End-to-end walk through the transfer lifecycle."""

    @pytest.mark.asyncio
    async def test_falcon_transfer(self, storage_dir):
        storage = StorageEngine(storage_dir, SequenceIdGenerator(["falcon482"]))
        claims = ClaimService(storage)
        payload = bytes(range(256)) * 4096 * 10

        item_id = await storage.store(stream_of(payload), "report.pdf.age", declared_size=9_000_000)

        assert item_id == "falcon482"
        assert storage.exists("falcon482")
        item = await storage.get_metadata("falcon482")
        assert item.stored_size == 10_485_760
        assert item.claim is None

        t1 = await claims.try_claim("falcon482")
        assert t1 is not None
        assert await claims.try_claim("falcon482") is None
        assert await claims.validate_claim("falcon482", t1) is True
        assert await claims.validate_claim("falcon482", "wrong") is False

        assert await read_all(storage.open_read_stream("falcon482")) == payload

        await claims.complete_download("falcon482")
        assert storage.exists("falcon482") is False


class TestSweepStale:
    """Test the staleness sweep."""

    @pytest.mark.asyncio
    async def test_old_unclaimed_item_deleted_fresh_kept(self, storage, claim_service):
        old_id = await storage.store(stream_of(b"old"), "old")
        fresh_id = await storage.store(stream_of(b"fresh"), "fresh")
        old_item = await storage.get_metadata(old_id)
        fresh_item = await storage.get_metadata(fresh_id)

        now = utc_now()
        await storage.update_metadata(old_id, _with_created_at(old_item, now - timedelta(hours=25)))
        await storage.update_metadata(fresh_id, _with_created_at(fresh_item, now - timedelta(hours=1)))

        result = await claim_service.sweep_stale(now, timedelta(hours=24), timedelta(hours=24))

        assert result.deleted_unclaimed == 1
        assert not storage.exists(old_id)
        assert storage.exists(fresh_id)

    @pytest.mark.asyncio
    async def test_stale_claim_deleted_fresh_claim_kept(self, storage, claim_service):
        stale_id = await storage.store(stream_of(b"a"), "a")
        fresh_id = await storage.store(stream_of(b"b"), "b")
        await claim_service.try_claim(stale_id)
        await claim_service.try_claim(fresh_id)

        later = utc_now() + timedelta(hours=2)
        stale_item = await storage.get_metadata(stale_id)
        await storage.update_metadata(
            stale_id, stale_item.with_claim(stale_item.claim.token, later - timedelta(hours=3))
        )

        result = await claim_service.sweep_stale(
            later, unclaimed_timeout=timedelta(days=7), claimed_timeout=timedelta(hours=2, minutes=30)
        )

        assert result.deleted_claimed == 1
        assert not storage.exists(stale_id)
        assert storage.exists(fresh_id)

    @pytest.mark.asyncio
    async def test_claimed_item_judged_by_claim_time_not_upload_time(self, storage, claim_service):
        item_id = await storage.store(stream_of(b"a"), "a")
        item = await storage.get_metadata(item_id)
        now = utc_now()
        await storage.update_metadata(item_id, _with_created_at(item, now - timedelta(days=3)))
        await claim_service.try_claim(item_id)

        await claim_service.sweep_stale(now, timedelta(hours=24), timedelta(hours=24))

        assert storage.exists(item_id)

    @pytest.mark.asyncio
    async def test_timeouts_are_independent(self, storage, claim_service):
        unclaimed_id = await storage.store(stream_of(b"a"), "a")
        claimed_id = await storage.store(stream_of(b"b"), "b")
        await claim_service.try_claim(claimed_id)

        later = utc_now() + timedelta(hours=2)
        result = await claim_service.sweep_stale(
            later, unclaimed_timeout=timedelta(hours=1), claimed_timeout=timedelta(hours=3)
        )

        assert result.deleted_unclaimed == 1
        assert result.deleted_claimed == 0
        assert not storage.exists(unclaimed_id)
        assert storage.exists(claimed_id)

    @pytest.mark.asyncio
    async def test_claimed_timeout_defaults_to_unclaimed(self, storage, claim_service):
        claimed_id = await storage.store(stream_of(b"b"), "b")
        await claim_service.try_claim(claimed_id)

        await claim_service.sweep_stale(utc_now() + timedelta(hours=2), unclaimed_timeout=timedelta(hours=1))

        assert not storage.exists(claimed_id)

    @pytest.mark.asyncio
    async def test_sweep_continues_after_item_error(self, storage_dir):
        storage = StorageEngine(storage_dir, SequenceIdGenerator(["amber11", "tiger22"]))
        claims = ClaimService(storage)
        await storage.store(stream_of(b"a"), "a")
        await storage.store(stream_of(b"b"), "b")

        real_delete = storage.delete

        async def flaky_delete(item_id):
            if item_id == "amber11":
                raise StorageFailureError("permission denied")
            return await real_delete(item_id)

        storage.delete = AsyncMock(side_effect=flaky_delete)

        result = await claims.sweep_stale(utc_now() + timedelta(days=2), timedelta(hours=24))

        assert result.errors == 1
        assert result.deleted_unclaimed == 1
        assert storage.exists("amber11")
        assert not storage.exists("tiger22")

    @pytest.mark.asyncio
    async def test_sweep_survives_corrupt_metadata(self, storage_dir):
        storage = StorageEngine(storage_dir, SequenceIdGenerator(["amber11", "tiger22"]))
        claims = ClaimService(storage)
        await storage.store(stream_of(b"a"), "a")
        await storage.store(stream_of(b"b"), "b")
        (storage.meta_dir / "amber11.json").write_text("garbage")

        result = await claims.sweep_stale(utc_now() + timedelta(days=2), timedelta(hours=24))

        assert result.errors == 1
        assert not storage.exists("tiger22")

    @pytest.mark.asyncio
    async def test_sweep_on_empty_storage(self, claim_service):
        result = await claim_service.sweep_stale(utc_now(), timedelta(hours=24))

        assert result.scanned == 0
        assert result.deleted == 0


def _with_created_at(item, created_at):
    return replace(item, created_at=created_at)
