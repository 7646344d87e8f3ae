"""Unit tests for the Record model and LookupResult."""

import hashlib
from datetime import UTC, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from tierstore.records import LookupResult, Record, Tier, compute_checksum


class TestRecord:
    """Tests for the Record model."""

    def test_size_bytes_is_payload_length(self) -> None:
        record = Record(key="k", payload=b"12345", created_at=datetime.now(UTC))
        assert record.size_bytes == 5

    def test_checksum_is_sha256_of_payload(self) -> None:
        record = Record(key="k", payload=b"abc", created_at=datetime.now(UTC))
        assert record.checksum == hashlib.sha256(b"abc").hexdigest()
        assert record.checksum == compute_checksum(b"abc")

    def test_record_is_immutable(self) -> None:
        record = Record(key="k", payload=b"v", created_at=datetime.now(UTC))
        with pytest.raises(ValidationError):
            record.payload = b"other"  # type: ignore[misc]

    def test_empty_key_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Record(key="", payload=b"v", created_at=datetime.now(UTC))

    def test_naive_created_at_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Record(key="k", payload=b"v", created_at=datetime(2024, 1, 1))

    def test_created_at_normalised_to_utc(self) -> None:
        plus_two = timezone(timedelta(hours=2))
        record = Record(key="k", payload=b"v", created_at=datetime(2024, 1, 1, 14, tzinfo=plus_two))
        assert record.created_at == datetime(2024, 1, 1, 12, tzinfo=UTC)
        assert record.created_at.utcoffset() == timedelta(0)

    def test_empty_payload_allowed(self) -> None:
        record = Record(key="k", payload=b"", created_at=datetime.now(UTC))
        assert record.size_bytes == 0

    def test_equal_records_compare_equal(self) -> None:
        now = datetime.now(UTC)
        assert Record(key="k", payload=b"v", created_at=now) == Record(
            key="k", payload=b"v", created_at=now
        )

    def test_repr_omits_payload(self) -> None:
        record = Record(key="k", payload=b"secret-bytes", created_at=datetime.now(UTC))
        text = repr(record)
        assert "secret-bytes" not in text
        assert "size_bytes=12" in text


class TestLookupResult:
    """Tests for LookupResult."""

    def test_empty_result_is_not_found(self) -> None:
        result = LookupResult()
        assert result.found is False
        assert result.payload is None
        assert result.tier is None

    def test_found_result_exposes_payload_and_tier(self) -> None:
        record = Record(key="k", payload=b"v", created_at=datetime.now(UTC))
        result = LookupResult(record=record, tier=Tier.COLD)
        assert result.found is True
        assert result.payload == b"v"
        assert result.tier is Tier.COLD


class TestTier:
    def test_values(self) -> None:
        assert Tier.HOT.value == "hot"
        assert Tier.COLD.value == "cold"
