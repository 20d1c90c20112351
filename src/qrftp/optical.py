"""Seams to the optical hardware: a symbol renderer on the sending side and a
camera scanner on the receiving side. Both are supplied by the embedding
application."""
from __future__ import annotations

import logging
from typing import Any, Protocol

from .constants import DEFAULT_LEVEL

logger = logging.getLogger(__name__)


class SymbolEncoder(Protocol):
    def encode(self, payload: str, level: str) -> Any: ...


class Scanner(Protocol):
    def start(self) -> None: ...

    def stop(self) -> None: ...


class SymbolDisplay:
    """Emit target for a sequencer that keeps only the symbol currently on screen."""

    def __init__(self, encoder: SymbolEncoder, level: str = DEFAULT_LEVEL):
        self.encoder = encoder
        self.level = level
        self.current: Any = None
        self.payload: str | None = None
        self.rendered = 0

    def __call__(self, payload: str) -> None:
        # replace, never accumulate: one symbol on screen at a time
        self.current = self.encoder.encode(payload, self.level)
        self.payload = payload
        self.rendered += 1
        logger.debug("rendered symbol %d (%d chars)", self.rendered, len(payload))

    def clear(self) -> None:
        self.current = None
        self.payload = None
