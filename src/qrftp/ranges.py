from __future__ import annotations

import math
import re
from typing import Iterable

_NUMBER = re.compile(r"^\d+$")


def compress_ranges(numbers: Iterable[int]) -> list[tuple[int, int]]:
    """Collapse integers into sorted, inclusive (start, end) runs."""
    ranges: list[tuple[int, int]] = []
    for n in sorted(set(numbers)):
        if ranges and n == ranges[-1][1] + 1:
            ranges[-1] = (ranges[-1][0], n)
        else:
            ranges.append((n, n))
    return ranges


def format_missing(missing: Iterable[int]) -> str:
    """[1, 2, 3, 5, 7, 8] -> "1-3, 5, 7-8"; nothing missing -> "None"."""
    ranges = compress_ranges(missing)
    if not ranges:
        return "None"
    return ", ".join(str(a) if a == b else f"{a}-{b}" for a, b in ranges)


def normalize_chunks(numbers: Iterable[int], max_chunk: int) -> list[int]:
    unique = sorted(set(numbers))
    for n in unique:
        if n < 1 or n > max_chunk:
            raise ValueError(f"chunk number {n} outside 1..{max_chunk}")
    return unique


def parse_chunk_input(text: str, max_chunk: int) -> list[int]:
    """Parse user input such as "1,3,5-8" into sorted unique chunk numbers.

    Blank input yields an empty list. Malformed parts, reversed ranges and
    numbers outside 1..max_chunk raise ValueError.
    """
    if not text or not text.strip():
        return []
    if max_chunk <= 0:
        raise ValueError("there are no chunks to select")

    chunks: set[int] = set()
    for part in text.split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            bounds = [b.strip() for b in part.split("-")]
            if len(bounds) != 2 or not all(_NUMBER.match(b) for b in bounds):
                raise ValueError(f"invalid range {part!r}")
            start, end = int(bounds[0]), int(bounds[1])
            if start <= 0 or end < start or end > max_chunk:
                raise ValueError(f"range {part!r} outside 1..{max_chunk}")
            chunks.update(range(start, end + 1))
        else:
            if not _NUMBER.match(part):
                raise ValueError(f"invalid chunk number {part!r}")
            n = int(part)
            if n <= 0 or n > max_chunk:
                raise ValueError(f"chunk number {n} outside 1..{max_chunk}")
            chunks.add(n)
    return sorted(chunks)


def format_time(total_seconds: float) -> str:
    if total_seconds is None or math.isnan(total_seconds) or math.isinf(total_seconds) or total_seconds < 0:
        return ""
    hours, rest = divmod(int(total_seconds), 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"~{hours}:{minutes:02d}:{seconds:02d}"
    return f"~{minutes:02d}:{seconds:02d}"


def format_rate(bytes_per_second: float | None) -> str:
    if bytes_per_second is None or math.isnan(bytes_per_second) or bytes_per_second < 0:
        return "? KB/s"
    if bytes_per_second < 1024:
        return f"{bytes_per_second:.0f} B/s"
    kib = bytes_per_second / 1024
    if kib < 1024:
        return f"{kib:.1f} KB/s"
    return f"{kib / 1024:.1f} MB/s"
