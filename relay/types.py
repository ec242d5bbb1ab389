"""Relay data type definitions (Item, Claim)."""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Claim:
    """
    Claim sub-record, present once a receiver has claimed an item.
    """
    token: str
    claimed_at: datetime


@dataclass(frozen=True)
class Item:
    """
    Complete metadata for a stored transfer.

    Attributes:
        id: Identifier returned to the sender
        display_name: Sanitized original filename, presentation only
        declared_size: Size reported by the uploader before encryption (0 if unknown)
        stored_size: Exact byte length of the stored ciphertext
        is_folder: Payload is an archived directory
        created_at: Upload completion time (UTC)
        is_filename_encrypted: Display name was encrypted by the client
        claim: Claim sub-record, None while unclaimed
    """
    id: str
    display_name: str
    declared_size: int
    stored_size: int
    is_folder: bool
    created_at: datetime
    is_filename_encrypted: bool = False
    claim: Optional[Claim] = None

    @property
    def is_claimed(self) -> bool:
        return self.claim is not None

    def with_claim(self, token: str, claimed_at: datetime) -> "Item":
        """Return a copy of this item carrying the given claim."""
        return replace(self, claim=Claim(token=token, claimed_at=claimed_at))

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize to the persisted metadata record.

        Returns:
            JSON-compatible dict
        """
        data = {
            "id": self.id,
            "filename": self.display_name,
            "size": self.declared_size,
            "encrypted_size": self.stored_size,
            "uploaded_at": self.created_at.isoformat(),
            "is_folder": self.is_folder,
            "is_filename_encrypted": self.is_filename_encrypted,
            "claimed": self.claim is not None,
            "claimed_at": None,
        }
        if self.claim is not None:
            data["claimed_at"] = self.claim.claimed_at.isoformat()
            data["claim_token"] = self.claim.token
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Item":
        """
        Build an Item from a persisted metadata record.

        Args:
            data: Dict previously produced by to_dict()

        Returns:
            Item instance

        Raises:
            KeyError, ValueError: If the record is malformed
        """
        claim = None
        if data.get("claimed") and data.get("claim_token"):
            claim = Claim(
                token=data["claim_token"],
                claimed_at=_parse_timestamp(data["claimed_at"]),
            )

        return cls(
            id=data["id"],
            display_name=data["filename"],
            declared_size=int(data.get("size", 0)),
            stored_size=int(data["encrypted_size"]),
            is_folder=bool(data.get("is_folder", False)),
            created_at=_parse_timestamp(data["uploaded_at"]),
            is_filename_encrypted=bool(data.get("is_filename_encrypted", False)),
            claim=claim,
        )


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
