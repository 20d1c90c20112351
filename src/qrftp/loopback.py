from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Mapping

from .archive import DownloadSink
from .channel import Impairment, OpticalChannel
from .pacing import VirtualScheduler
from .receiver import Assembler, Delivery, ReceiverPhase
from .sender import SenderPhase, SenderSettings, Sequencer

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LoopbackResult:
    file_id: str
    archive_bytes: int
    data_chunks: int
    rounds: int
    symbols_sent: int
    symbols_dropped: int
    virtual_seconds: float
    delivery: Delivery | None
    error: str | None

    @property
    def complete(self) -> bool:
        return self.delivery is not None


def run_loopback(
    files: Mapping[str, bytes],
    sink: DownloadSink,
    *,
    settings: SenderSettings | None = None,
    loss_rate: float = 0.0,
    duplicate_rate: float = 0.0,
    reorder_window: int = 0,
    seed: int | None = None,
    max_rounds: int = 10,
) -> LoopbackResult:
    """Send ``files`` through a simulated optical link until verified or out of rounds.

    After every pass the sender resends what the receiver still reports
    missing, the way an operator reads the missing ranges off the receiving
    screen and types them into the sender.
    """
    scheduler = VirtualScheduler()
    impair = Impairment(loss_rate=loss_rate, duplicate_rate=duplicate_rate, rng=random.Random(seed))
    assembler = Assembler(sink, clock=scheduler.time)
    channel = OpticalChannel(assembler.feed, impair, reorder_window=reorder_window)
    sequencer = Sequencer(channel.send, scheduler, settings)

    session = sequencer.load(files)
    assembler.start()
    sequencer.start()

    rounds = 1
    while True:
        scheduler.run_until_idle()
        channel.flush()
        if assembler.last_delivery is not None:
            break
        if assembler.phase is ReceiverPhase.ERROR or sequencer.phase is SenderPhase.ERROR:
            break
        if rounds >= max_rounds:
            logger.warning("giving up after %d round(s); missing %s", rounds, assembler.missing_display or "?")
            break

        rounds += 1
        missing = assembler.missing()
        if assembler.session is None:
            logger.info("round %d: handshake not received, resending everything", rounds)
            sequencer.resend_all()
        elif missing:
            logger.info("round %d: resending %d chunk(s)", rounds, len(missing))
            sequencer.resend_specific(missing)
        elif session.total_data_chunks:
            # everything arrived but the final was lost; any resend ends with it
            sequencer.resend_specific([1])
        else:
            sequencer.resend_all()

    error = assembler.error or sequencer.error
    return LoopbackResult(
        file_id=session.file_id,
        archive_bytes=session.archive_size,
        data_chunks=session.total_data_chunks,
        rounds=rounds,
        symbols_sent=channel.sent,
        symbols_dropped=channel.dropped,
        virtual_seconds=scheduler.time(),
        delivery=assembler.last_delivery,
        error=str(error) if error else None,
    )
