"""One-time claim protocol and staleness sweep on top of the storage engine."""

import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple

from common.constants import CLAIM_TOKEN_BYTES
from relay.exceptions import AlreadyClaimedError, ItemNotFoundError, InvalidClaimError
from relay.storage_engine import StorageEngine
from relay.types import Item
from relay.utils import utc_now

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """
    Outcome of one staleness sweep.
    """
    scanned: int = 0
    deleted_unclaimed: int = 0
    deleted_claimed: int = 0
    errors: int = 0

    @property
    def deleted(self) -> int:
        return self.deleted_unclaimed + self.deleted_claimed


def generate_claim_token() -> str:
    """
    Generate a URL-safe claim token from 32 random bytes.

    Returns:
        Token string without padding
    """
    return secrets.token_urlsafe(CLAIM_TOKEN_BYTES)


class ClaimService:
    """
    Enforces at most one claim and at most one download per item.

    Items move Unclaimed -> Claimed -> Deleted. The claim is decided inside
    the storage engine's per-id critical section, so concurrent claimants for
    the same id are totally ordered and only the first one wins.
    """

    def __init__(self, storage: StorageEngine):
        self.storage = storage

    async def claim(self, item_id: str) -> Tuple[Item, str]:
        """
        Claim an item and return its metadata with a fresh token.

        Args:
            item_id: Item identifier

        Returns:
            (Item, token) tuple; the Item carries the new claim

        Raises:
            ItemNotFoundError: If no item exists for the id
            AlreadyClaimedError: If the item was already claimed
        """
        token = generate_claim_token()

        def mark_claimed(current: Item) -> Item:
            if current.is_claimed:
                raise AlreadyClaimedError(f"File {item_id} already claimed by another client")
            return current.with_claim(token, utc_now())

        updated = await self.storage.modify_metadata(item_id, mark_claimed)
        if updated is None:
            raise ItemNotFoundError(f"File {item_id} not found or already downloaded")

        logger.info(f"File {item_id} claimed")
        return updated, token

    async def try_claim(self, item_id: str) -> Optional[str]:
        """
        Claim an item if it exists and is unclaimed.

        Args:
            item_id: Item identifier

        Returns:
            The claim token, or None if absent or already claimed
        """
        try:
            _, token = await self.claim(item_id)
        except ItemNotFoundError:
            logger.warning(f"Claim attempt for non-existent file {item_id}")
            return None
        except AlreadyClaimedError:
            logger.warning(f"Claim attempt for already claimed file {item_id}")
            return None
        return token

    async def validate_claim(self, item_id: str, token: str) -> bool:
        """
        Check a presented token against the item's claim.

        Args:
            item_id: Item identifier
            token: Token returned by a successful claim

        Returns:
            True only if the item is claimed and the token matches exactly
        """
        if not token:
            return False

        item = await self.storage.get_metadata(item_id)
        if item is None or item.claim is None:
            return False

        return hmac.compare_digest(item.claim.token.encode("utf-8"), token.encode("utf-8"))

    async def require_valid_claim(self, item_id: str, token: str) -> Item:
        """
        Return the item's metadata if the token is valid for it.

        Raises:
            ItemNotFoundError: If the item does not exist
            InvalidClaimError: If the token does not match
        """
        item = await self.storage.get_metadata(item_id)
        if item is None:
            raise ItemNotFoundError(f"File {item_id} not found")
        if item.claim is None or not token or not hmac.compare_digest(
            item.claim.token.encode("utf-8"), token.encode("utf-8")
        ):
            raise InvalidClaimError("Invalid or expired claim token")
        return item

    async def complete_download(self, item_id: str) -> None:
        """
        Finish a transfer by deleting the item.

        Args:
            item_id: Item identifier
        """
        logger.info(f"Download completed for {item_id}, deleting file")
        await self.storage.delete(item_id)

    async def sweep_stale(
        self,
        now: Optional[datetime] = None,
        unclaimed_timeout: timedelta = timedelta(hours=24),
        claimed_timeout: Optional[timedelta] = None,
    ) -> SweepResult:
        """
        Delete items that never completed the claim protocol.

        Unclaimed items older than unclaimed_timeout and claimed items whose
        claim is older than claimed_timeout are deleted. Errors on one item are
        logged and the sweep continues with the rest.

        Args:
            now: Reference time (default: current UTC time)
            unclaimed_timeout: Maximum age of an unclaimed item
            claimed_timeout: Maximum time since claim (default: unclaimed_timeout)

        Returns:
            SweepResult with counters for this pass
        """
        if now is None:
            now = utc_now()
        if claimed_timeout is None:
            claimed_timeout = unclaimed_timeout

        result = SweepResult()

        for item_id in self.storage.list_ids():
            result.scanned += 1
            try:
                item = await self.storage.get_metadata(item_id)
                if item is None:
                    continue

                if item.claim is None:
                    if now - item.created_at > unclaimed_timeout:
                        logger.info(f"Cleaning up stale unclaimed file {item_id}")
                        await self.storage.delete(item_id)
                        result.deleted_unclaimed += 1
                elif now - item.claim.claimed_at > claimed_timeout:
                    logger.info(f"Cleaning up stale claimed file {item_id}")
                    await self.storage.delete(item_id)
                    result.deleted_claimed += 1
            except Exception as e:
                logger.error(f"Error cleaning up file {item_id}: {e}", exc_info=True)
                result.errors += 1

        try:
            await self.storage.purge_incomplete()
        except Exception as e:
            logger.error(f"Error purging incomplete uploads: {e}", exc_info=True)
            result.errors += 1

        if result.deleted or result.errors:
            logger.info(
                f"Sweep complete: scanned={result.scanned} "
                f"unclaimed_deleted={result.deleted_unclaimed} "
                f"claimed_deleted={result.deleted_claimed} errors={result.errors}"
            )
        return result
