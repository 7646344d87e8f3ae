"""
Record model and tier identifiers.

Records are immutable: once a key has been written its payload never
changes. Updates are modelled by callers as new keys.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


class Tier(Enum):
    """
    Storage tiers.

    Attributes:
        HOT: Low-latency, higher-cost storage for recent records.
        COLD: High-latency-tolerant, low-cost storage for archived records.
    """

    HOT = "hot"
    COLD = "cold"


def compute_checksum(payload: bytes) -> str:
    """Return the SHA-256 hex digest used to verify copies of a payload."""
    return hashlib.sha256(payload).hexdigest()


class Record(BaseModel):
    """
    An immutable payload identified by a unique key.

    The tier a record lives in is not part of the record; reads report it
    separately through ``LookupResult``.

    Attributes:
        key: Unique, non-empty record key
        payload: Opaque record bytes
        created_at: Creation timestamp (timezone-aware, normalised to UTC)

    Example:
        >>> record = Record(key="invoice-42", payload=b"...", created_at=datetime.now(UTC))
        >>> record.size_bytes
        3
    """

    model_config = ConfigDict(frozen=True)

    key: str = Field(..., min_length=1, description="Unique record key")
    payload: bytes = Field(..., description="Record payload")
    created_at: datetime = Field(..., description="When the record was created (UTC)")

    @field_validator("created_at")
    @classmethod
    def _normalise_created_at(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            raise ValueError("created_at must be timezone-aware")
        return value.astimezone(UTC)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def size_bytes(self) -> int:
        """Payload size in bytes."""
        return len(self.payload)

    @property
    def checksum(self) -> str:
        """SHA-256 hex digest of the payload."""
        return compute_checksum(self.payload)

    def __repr__(self) -> str:
        return (
            f"Record(key={self.key!r}, size_bytes={self.size_bytes}, "
            f"created_at={self.created_at.isoformat()})"
        )


@dataclass(frozen=True)
class LookupResult:
    """
    Result of a tiered read.

    Attributes:
        record: The record, or None when the key is absent from both tiers
        tier: The tier that served the record, or None when not found
    """

    record: Record | None = None
    tier: Tier | None = None

    @property
    def found(self) -> bool:
        """Whether the key was found in either tier."""
        return self.record is not None

    @property
    def payload(self) -> bytes | None:
        """The record payload, or None when not found."""
        return self.record.payload if self.record is not None else None


__all__ = [
    "Tier",
    "Record",
    "LookupResult",
    "compute_checksum",
]
