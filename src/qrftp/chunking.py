from __future__ import annotations

import base64
import binascii
from typing import AnyStr

from .errors import VerificationError


def split(stream: AnyStr, size: int) -> list[AnyStr]:
    """Slice an encoded stream into consecutive pieces of at most ``size``."""
    if size <= 0:
        raise ValueError(f"chunk size must be positive, got {size}")
    return [stream[i : i + size] for i in range(0, len(stream), size)]


def encode_payload(buffer: bytes) -> str:
    return base64.b64encode(buffer).decode("ascii")


def decode_payload(text: str) -> bytes:
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise VerificationError(f"reassembled payload is not valid base64: {exc}") from exc
