import hashlib
from datetime import datetime, timezone


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_naive_utc(value: datetime) -> datetime:
    """For TIMESTAMP WITHOUT TIME ZONE columns."""
    return as_utc(value).replace(tzinfo=None)


def digest(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def hex_encode(value: bytes) -> str:
    return value.hex()


def file_digest(content: bytes) -> str:
    """SHA-256 of the entire raw document, hex encoded."""
    return hex_encode(digest(content))


def record_digest(file_digest_hex: str, raw_line: bytes) -> str:
    """
    SHA-256 over the file digest bytes followed by the raw line bytes.

    The same line in two different files yields two different digests; the
    same line twice in one file yields one. The concatenation order is part of
    the stored identity and must not change.
    """
    return hex_encode(digest(bytes.fromhex(file_digest_hex) + raw_line))
