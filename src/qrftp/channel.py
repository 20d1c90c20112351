from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Impairment:
    loss_rate: float = 0.0
    duplicate_rate: float = 0.0
    rng: random.Random = field(default_factory=random.Random, compare=False, repr=False)

    def should_drop(self) -> bool:
        return self.loss_rate > 0 and self.rng.random() < self.loss_rate

    def should_duplicate(self) -> bool:
        return self.duplicate_rate > 0 and self.rng.random() < self.duplicate_rate


class OpticalChannel:
    """In-memory stand-in for a screen and a camera pointed at it.

    ``send`` is the sender's emit target. Symbols reach ``receive`` after the
    impairment has dropped or duplicated them; with a reorder window, up to
    that many symbols are held back and released in random order.
    """

    def __init__(
        self,
        receive: Callable[[str], None],
        impairment: Impairment | None = None,
        reorder_window: int = 0,
    ):
        self.receive = receive
        self.impairment = impairment or Impairment()
        self.reorder_window = max(0, reorder_window)
        self.sent = 0
        self.dropped = 0
        self.duplicated = 0
        self.delivered = 0
        self._held: list[str] = []

    def send(self, text: str) -> None:
        self.sent += 1
        if self.impairment.should_drop():
            self.dropped += 1
            logger.debug("dropped symbol %d", self.sent)
            return
        self._held.append(text)
        if self.impairment.should_duplicate():
            self.duplicated += 1
            self._held.append(text)
        while len(self._held) > self.reorder_window:
            self._release()

    def flush(self) -> None:
        while self._held:
            self._release()

    def _release(self) -> None:
        index = self.impairment.rng.randrange(len(self._held)) if self.reorder_window else 0
        text = self._held.pop(index)
        self.delivered += 1
        self.receive(text)
