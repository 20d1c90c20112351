from __future__ import annotations

import logging
import math

from .constants import (
    CAPACITY_ESTIMATES,
    CHUNK_SIZE_BUFFER,
    DATA,
    DEFAULT_LEVEL,
    FINAL,
    HANDSHAKE,
    MAX_CHUNK_SIZE_LIMIT,
    MIN_CHUNK_SIZE,
    MULTI_FILE_ARCHIVE_NAME,
)
from .errors import CapacityError

logger = logging.getLogger(__name__)

# placeholder id length used before a file id has been minted
_UNKNOWN_FILE_ID_LEN = 15


def symbol_capacity(level: str) -> int:
    """Conservative byte budget of one symbol at the given error-correction level."""
    return CAPACITY_ESTIMATES.get(level, CAPACITY_ESTIMATES[DEFAULT_LEVEL])


def estimate_overhead(
    kind: str,
    file_id: str | None = None,
    archive_name_length: int = len(MULTI_FILE_ARCHIVE_NAME),
    original_name_length: int = 0,
) -> int:
    """Estimate the non-data bytes (keys, punctuation, numbers) of a packet."""
    size = 30 + (len(file_id) if file_id else _UNKNOWN_FILE_ID_LEN)
    if kind == HANDSHAKE:
        size += 25 + archive_name_length + 5 + 3 + 5
        if original_name_length > 0:
            size += 10 + original_name_length
    elif kind == DATA:
        size += 15 + 3 + 5
    elif kind == FINAL:
        size += 15 + 5 + 4
    else:
        raise ValueError(f"unknown packet type {kind!r}")
    size += 10
    return math.ceil(size)


def max_data_slice(level: str, file_id: str | None = None) -> int:
    return symbol_capacity(level) - estimate_overhead(DATA, file_id) - CHUNK_SIZE_BUFFER


def effective_chunk_size(target: int, level: str, file_id: str | None = None) -> int:
    if target < MIN_CHUNK_SIZE or target > MAX_CHUNK_SIZE_LIMIT:
        raise ValueError(f"chunk size must be between {MIN_CHUNK_SIZE} and {MAX_CHUNK_SIZE_LIMIT}, got {target}")

    limit = max_data_slice(level, file_id)
    if limit <= 0:
        raise CapacityError(
            f"no room for data at level {level} (max data ~{limit} bytes); lower the error-correction level"
        )
    if target > limit:
        logger.warning("target chunk size %d exceeds capacity at level %s; using %d", target, level, limit)
    return max(1, min(target, limit))


def fits(text: str, level: str) -> bool:
    return len(text.encode("utf-8")) <= symbol_capacity(level)
