"""Durable storage for transfer payloads and their metadata records."""

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import AsyncIterable, AsyncIterator, BinaryIO, Callable, Iterable, List, Optional, Union

from common.constants import COPY_BUFFER_SIZE, MAX_FILE_SIZE_BYTES, READ_PIECE_SIZE
from relay.exceptions import FileTooLargeError, ItemNotFoundError, StorageFailureError
from relay.id_generator import IdGenerator
from relay.lock_registry import LockRegistry
from relay.types import Item
from relay.utils import sanitize_filename, utc_now

logger = logging.getLogger(__name__)

MAX_ID_ATTEMPTS = 100
PART_SUFFIX = ".part"

ByteSource = Union[AsyncIterable[bytes], Iterable[bytes], BinaryIO]


async def _iter_source(source: ByteSource) -> AsyncIterator[bytes]:
    """Normalize async iterables, sync iterables and file objects to one async stream."""
    if hasattr(source, "__aiter__"):
        async for chunk in source:
            yield chunk
    elif hasattr(source, "read"):
        while True:
            chunk = source.read(COPY_BUFFER_SIZE)
            if not chunk:
                break
            yield chunk
    else:
        for chunk in source:
            yield chunk


async def _read_pieces(handle: BinaryIO, piece_size: int) -> AsyncIterator[bytes]:
    try:
        while True:
            piece = handle.read(piece_size)
            if not piece:
                break
            yield piece
    finally:
        handle.close()


class StorageEngine:
    """
    File-backed store: one payload file and one JSON metadata record per id.

    Layout under the storage root:
        files/<id>          published payload
        files/<id>.part     upload in progress
        meta/<id>.json      metadata record

    Metadata reads and writes, store and delete for an id are serialized
    through a per-id lock. Reading a payload stream does not hold the lock.
    """

    def __init__(
        self,
        storage_path: Union[str, Path],
        id_generator: IdGenerator,
        max_file_size: int = MAX_FILE_SIZE_BYTES,
    ):
        """
        Initialize storage engine and create its directories.

        Args:
            storage_path: Root directory for payloads and metadata
            id_generator: Generator used to allocate identifiers
            max_file_size: Largest accepted payload in bytes
        """
        self.root = Path(storage_path).resolve()
        self.files_dir = self.root / "files"
        self.meta_dir = self.root / "meta"
        self._id_generator = id_generator
        self._max_file_size = max_file_size
        self._locks = LockRegistry()

        self.files_dir.mkdir(parents=True, exist_ok=True)
        self.meta_dir.mkdir(parents=True, exist_ok=True)

    def _payload_path(self, item_id: str) -> Path:
        return self.files_dir / item_id

    def _part_path(self, item_id: str) -> Path:
        return self.files_dir / f"{item_id}{PART_SUFFIX}"

    def _meta_path(self, item_id: str) -> Path:
        return self.meta_dir / f"{item_id}.json"

    def _is_taken(self, item_id: str) -> bool:
        return (
            self._payload_path(item_id).exists()
            or self._part_path(item_id).exists()
            or self._meta_path(item_id).exists()
        )

    async def store(
        self,
        stream: ByteSource,
        display_name: str,
        declared_size: int = 0,
        is_folder: bool = False,
        is_filename_encrypted: bool = False,
    ) -> str:
        """
        Persist an uploaded payload and create its metadata record.

        The payload is copied into an exclusively created part file, the
        metadata is written, and only then is the payload published under its
        final name. On any failure or cancellation nothing is left behind.

        Args:
            stream: Async iterable, iterable or file object yielding bytes
            display_name: Original filename (sanitized before storing)
            declared_size: Pre-encryption size reported by the uploader
            is_folder: Payload is an archived directory
            is_filename_encrypted: Display name was encrypted client-side

        Returns:
            Identifier of the new item

        Raises:
            FileTooLargeError: If the stream exceeds the configured maximum
            StorageFailureError: If writing fails or no free id can be found
            asyncio.CancelledError: If the upload task is cancelled
        """
        for _ in range(MAX_ID_ATTEMPTS):
            item_id = self._id_generator.generate()
            if self._is_taken(item_id):
                logger.debug(f"Identifier {item_id} already in use, retrying")
                continue

            async with self._locks.hold(item_id):
                try:
                    sink = open(self._part_path(item_id), "xb")
                except FileExistsError:
                    logger.debug(f"Identifier {item_id} reserved concurrently, retrying")
                    continue
                except OSError as e:
                    raise StorageFailureError(f"Failed to create payload for {item_id}: {e}") from e

                # The part file only reserves in-flight ids; a published item has none.
                if self._payload_path(item_id).exists() or self._meta_path(item_id).exists():
                    sink.close()
                    self._part_path(item_id).unlink(missing_ok=True)
                    logger.debug(f"Identifier {item_id} published concurrently, retrying")
                    continue

                item = await self._write_item(
                    item_id,
                    sink,
                    stream,
                    display_name=display_name,
                    declared_size=declared_size,
                    is_folder=is_folder,
                    is_filename_encrypted=is_filename_encrypted,
                )

            logger.info(
                f"Stored file {item.id} ({item.display_name}, {item.stored_size} bytes)"
            )
            return item.id

        raise StorageFailureError(f"Could not allocate a free identifier after {MAX_ID_ATTEMPTS} attempts")

    async def _write_item(
        self,
        item_id: str,
        sink: BinaryIO,
        stream: ByteSource,
        display_name: str,
        declared_size: int,
        is_folder: bool,
        is_filename_encrypted: bool,
    ) -> Item:
        stored_size = 0
        try:
            with sink:
                async for chunk in _iter_source(stream):
                    if not chunk:
                        continue
                    stored_size += len(chunk)
                    if stored_size > self._max_file_size:
                        raise FileTooLargeError(
                            f"Upload exceeds maximum size of {self._max_file_size} bytes"
                        )
                    sink.write(chunk)

            item = Item(
                id=item_id,
                display_name=sanitize_filename(display_name),
                declared_size=max(0, int(declared_size or 0)),
                stored_size=stored_size,
                is_folder=is_folder,
                created_at=utc_now(),
                is_filename_encrypted=is_filename_encrypted,
            )
            self._write_metadata(item)
            os.replace(self._part_path(item_id), self._payload_path(item_id))
            return item

        except asyncio.CancelledError:
            logger.warning(f"Upload cancelled for {item_id} after {stored_size} bytes, discarding")
            self._discard(item_id)
            raise
        except OSError as e:
            logger.error(f"Failed to store {item_id}: {e}", exc_info=True)
            self._discard(item_id)
            raise StorageFailureError(f"Failed to store {item_id}: {e}") from e
        except Exception:
            logger.warning(f"Upload failed for {item_id} after {stored_size} bytes, discarding")
            self._discard(item_id)
            raise

    def _discard(self, item_id: str) -> None:
        """Best-effort removal of everything written for a failed upload."""
        for path in (self._part_path(item_id), self._payload_path(item_id), self._meta_path(item_id)):
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.error(f"Failed to remove {path} while discarding {item_id}: {e}")

    def exists(self, item_id: str) -> bool:
        """
        Check whether a published payload exists for the id.

        Args:
            item_id: Item identifier

        Returns:
            True if the payload is present
        """
        if not IdGenerator.is_valid(item_id):
            return False
        return self._payload_path(item_id).is_file()

    async def get_metadata(self, item_id: str) -> Optional[Item]:
        """
        Read the metadata record for an id.

        Args:
            item_id: Item identifier

        Returns:
            Item, or None if no record exists

        Raises:
            StorageFailureError: If the record cannot be read or parsed
        """
        if not IdGenerator.is_valid(item_id):
            return None
        async with self._locks.hold(item_id):
            return self._read_metadata(item_id)

    async def update_metadata(self, item_id: str, item: Item) -> None:
        """
        Replace the metadata record for an existing item.

        Args:
            item_id: Item identifier
            item: New metadata (its id must match)

        Raises:
            ValueError: If item.id does not match item_id
            ItemNotFoundError: If the item no longer exists
            StorageFailureError: If the write fails
        """
        if item.id != item_id:
            raise ValueError(f"Metadata id {item.id} does not match {item_id}")
        if not IdGenerator.is_valid(item_id):
            raise ItemNotFoundError(f"File {item_id} not found")

        async with self._locks.hold(item_id):
            if not self._meta_path(item_id).exists():
                raise ItemNotFoundError(f"File {item_id} not found")
            self._write_metadata(item)

    async def modify_metadata(self, item_id: str, mutate: Callable[[Item], Item]) -> Optional[Item]:
        """
        Read, transform and write back metadata as one critical section.

        Args:
            item_id: Item identifier
            mutate: Function returning the new metadata; may raise to abort

        Returns:
            The written Item, or None if the item does not exist
        """
        if not IdGenerator.is_valid(item_id):
            return None

        async with self._locks.hold(item_id):
            current = self._read_metadata(item_id)
            if current is None:
                return None
            updated = mutate(current)
            self._write_metadata(updated)
            return updated

    def open_read_stream(self, item_id: str, piece_size: int = READ_PIECE_SIZE) -> Optional[AsyncIterator[bytes]]:
        """
        Open the payload for sequential reading.

        The file handle is opened immediately; the returned iterator closes it
        when exhausted or closed. No per-id lock is held while streaming.

        Args:
            item_id: Item identifier
            piece_size: Size of each yielded piece in bytes

        Returns:
            Async iterator of payload pieces, or None if absent

        Raises:
            StorageFailureError: If the payload exists but cannot be opened
        """
        if not IdGenerator.is_valid(item_id):
            return None
        try:
            handle = open(self._payload_path(item_id), "rb")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageFailureError(f"Failed to open {item_id}: {e}") from e
        return _read_pieces(handle, piece_size)

    async def delete(self, item_id: str) -> bool:
        """
        Remove payload then metadata. Deleting an absent id is a no-op.

        Args:
            item_id: Item identifier

        Returns:
            True if anything was removed, False otherwise

        Raises:
            StorageFailureError: If removal fails
        """
        if not IdGenerator.is_valid(item_id):
            return False

        async with self._locks.hold(item_id):
            removed = False
            try:
                payload_path = self._payload_path(item_id)
                if payload_path.exists():
                    payload_path.unlink()
                    removed = True
                    logger.info(f"Deleted file {item_id}")

                meta_path = self._meta_path(item_id)
                if meta_path.exists():
                    meta_path.unlink()
                    removed = True
            except OSError as e:
                raise StorageFailureError(f"Failed to delete {item_id}: {e}") from e
            return removed

    def list_ids(self) -> List[str]:
        """
        List identifiers that have a metadata record.

        Returns:
            List of item ids
        """
        if not self.meta_dir.exists():
            return []
        return sorted(
            path.stem for path in self.meta_dir.glob("*.json")
            if IdGenerator.is_valid(path.stem)
        )

    async def purge_incomplete(self) -> int:
        """
        Remove crash residue: part files and payloads or metadata missing their counterpart.

        Ids with an active lock (an upload or delete in progress) are skipped.

        Returns:
            Number of ids cleaned up
        """
        candidates = set()
        for path in self.files_dir.glob(f"*{PART_SUFFIX}"):
            candidates.add(path.name[: -len(PART_SUFFIX)])
        for path in self.files_dir.iterdir():
            if path.is_file() and not path.name.endswith(PART_SUFFIX) and not self._meta_path(path.name).exists():
                candidates.add(path.name)
        for item_id in self.list_ids():
            if not self._payload_path(item_id).exists():
                candidates.add(item_id)
        for path in self.meta_dir.glob(".*.tmp"):
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Failed to remove stale temp file {path}: {e}")

        purged = 0
        for item_id in sorted(candidates):
            if not IdGenerator.is_valid(item_id) or item_id in self._locks:
                continue
            async with self._locks.hold(item_id):
                part = self._part_path(item_id)
                payload = self._payload_path(item_id)
                meta = self._meta_path(item_id)
                if part.exists() or payload.exists() != meta.exists():
                    self._discard(item_id)
                    purged += 1

        if purged:
            logger.info(f"Purged {purged} incomplete uploads")
        return purged

    def _read_metadata(self, item_id: str) -> Optional[Item]:
        meta_path = self._meta_path(item_id)
        try:
            with open(meta_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageFailureError(f"Failed to read metadata for {item_id}: {e}") from e
        except json.JSONDecodeError as e:
            raise StorageFailureError(f"Corrupt metadata for {item_id}: {e}") from e

        try:
            return Item.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise StorageFailureError(f"Invalid metadata for {item_id}: {e}") from e

    def _write_metadata(self, item: Item) -> None:
        """Write the record to a temp file in the same directory, then publish with os.replace."""
        tmp_name = None
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self.meta_dir, prefix=f".{item.id}.", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(item.to_dict(), f, indent=2)
            os.replace(tmp_name, self._meta_path(item.id))
        except OSError as e:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            raise StorageFailureError(f"Failed to write metadata for {item.id}: {e}") from e
