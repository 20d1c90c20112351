from __future__ import annotations

import time
from dataclasses import dataclass, field

from .constants import RATE_UPDATE_INTERVAL_MS


@dataclass(slots=True)
class Metrics:
    packets: int = 0
    bytes: int = 0
    duplicates: int = 0
    dropped: int = 0
    start_ts: float = field(default_factory=time.monotonic)
    end_ts: float | None = None
    rate_bps: float | None = None
    _window_start: float | None = None
    _window_bytes: int = 0

    def record(self, nbytes: int, now: float) -> None:
        """Count one packet and refresh the rolling rate once per update interval."""
        self.packets += 1
        self.bytes += nbytes
        if self._window_start is None:
            self._window_start = self.start_ts
        self._window_bytes += nbytes
        elapsed = now - self._window_start
        if elapsed * 1000 > RATE_UPDATE_INTERVAL_MS:
            self.rate_bps = self._window_bytes / elapsed
            self._window_start = now
            self._window_bytes = 0

    def finish(self, now: float) -> None:
        self.end_ts = now

    @property
    def duration_s(self) -> float:
        if self.end_ts is None:
            return 0.0
        return max(0.0, self.end_ts - self.start_ts)

    @property
    def throughput_bps(self) -> float:
        if self.duration_s <= 0:
            return 0.0
        return self.bytes / self.duration_s


def approx_decoded_size(encoded: str) -> int:
    """Bytes carried by a base64 slice."""
    return (len(encoded) * 3) // 4
