"""Shared pytest fixtures for all tests."""

from datetime import timedelta
from typing import Iterable, List

import pytest

from relay.claim_service import ClaimService
from relay.config import RelaySettings
from relay.id_generator import IdGenerator
from relay.storage_engine import StorageEngine


class SequenceIdGenerator(IdGenerator):
    """
    IdGenerator that hands out a fixed sequence of identifiers.
    """

    def __init__(self, ids: Iterable[str]):
        super().__init__()
        self._ids: List[str] = list(ids)
        self.calls = 0

    def generate(self) -> str:
        self.calls += 1
        return self._ids.pop(0)


async def stream_of(*chunks: bytes):
    """Async byte stream yielding the given chunks."""
    for chunk in chunks:
        yield chunk


async def read_all(pieces) -> bytes:
    """Drain an async byte iterator."""
    data = bytearray()
    async for piece in pieces:
        data.extend(piece)
    return bytes(data)


@pytest.fixture
def storage_dir(tmp_path):
    """
    Create temporary storage root.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        Path to temporary storage directory
    """
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def id_generator():
    """Default word list identifier generator."""
    return IdGenerator()


@pytest.fixture
def storage(storage_dir, id_generator):
    """Storage engine rooted in a temporary directory."""
    return StorageEngine(storage_dir, id_generator)


@pytest.fixture
def claim_service(storage):
    """Claim service over the temporary storage engine."""
    return ClaimService(storage)


@pytest.fixture
def settings(storage_dir):
    """
    Relay settings pointing at the temporary storage root.
    """
    return RelaySettings(
        storage_path=str(storage_dir),
        public_url="https://relay.example.com/",
        max_file_size=1024 * 1024,
        id_word_count=1,
        wordlist_path=None,
        unclaimed_timeout=timedelta(hours=24),
        claimed_timeout=timedelta(hours=24),
        cleanup_interval_seconds=900,
    )
