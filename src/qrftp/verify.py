from __future__ import annotations

from .constants import CHECKSUM_MODULUS
from .errors import ChecksumMismatchError, SizeMismatchError


def checksum(buffer: bytes) -> str:
    """Sum of all bytes modulo 2**16 as four lowercase hex digits. Not cryptographic."""
    return f"{sum(buffer) % CHECKSUM_MODULUS:04x}"


def verify(buffer: bytes, expected_size: int, expected_checksum: str) -> None:
    if len(buffer) != expected_size:
        raise SizeMismatchError(expected_size, len(buffer))
    actual = checksum(buffer)
    if actual != expected_checksum:
        raise ChecksumMismatchError(expected_checksum, actual)
