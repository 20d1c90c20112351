from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable

from .archive import Archiver, DownloadSink, ZipArchiver
from .chunking import decode_payload
from .errors import (
    ArchiveError,
    PhaseError,
    ScannerError,
    StructureError,
    VerificationError,
    VersionError,
    WrongSessionError,
)
from .metrics import Metrics, approx_decoded_size
from .optical import Scanner
from .packet import Data, Final, Handshake, Packet, parse_packet
from .ranges import format_missing
from .session import TransferSession
from .verify import verify

logger = logging.getLogger(__name__)


class ReceiverPhase(str, enum.Enum):
    IDLE = "idle"
    WAITING_HANDSHAKE = "waiting_handshake"
    RECEIVING_DATA = "receiving_data"
    WAITING_FINAL = "waiting_final"
    WAITING_MISSING = "waiting_missing"
    VERIFYING = "verifying"
    COMPLETE = "complete"
    ERROR = "error"


INTAKE_PHASES = frozenset(
    {
        ReceiverPhase.WAITING_HANDSHAKE,
        ReceiverPhase.RECEIVING_DATA,
        ReceiverPhase.WAITING_FINAL,
        ReceiverPhase.WAITING_MISSING,
    }
)


@dataclass(frozen=True, slots=True)
class Delivery:
    file_id: str
    filename: str
    size: int
    extracted: bool


class Assembler:
    """Receiver state machine: rebuilds one archive from scanned packets.

    The decoder calls :meth:`feed` once per read symbol, in whatever order and
    with whatever duplicates the optical channel produces. Chunks are kept by
    sequence number and concatenated in sequence order once complete.

    After a Final has reported missing chunks, receiving the last of them moves
    the machine to WAITING_FINAL; verification starts on the next Final seen.
    """

    def __init__(
        self,
        sink: DownloadSink,
        archiver: Archiver | None = None,
        scanner: Scanner | None = None,
        clock: Callable[[], float] = time.monotonic,
        on_error: Callable[[Exception], None] | None = None,
        on_complete: Callable[[Delivery], None] | None = None,
    ):
        self.sink = sink
        self.archiver = archiver or ZipArchiver()
        self.scanner = scanner
        self.clock = clock
        self.on_error = on_error
        self.on_complete = on_complete

        self.phase = ReceiverPhase.IDLE
        self.scanning = False
        self.error: Exception | None = None
        self.session: TransferSession | None = None
        self.chunks: dict[int, str] = {}
        self.final: Final | None = None
        self.missing_display = ""
        self.last_delivery: Delivery | None = None
        self.metrics = Metrics(start_ts=clock())

    # -- scanning control --------------------------------------------------

    def start(self) -> None:
        """Begin (or resume) intake.

        A machine stopped mid-transfer resumes in its current phase with its
        chunks intact; otherwise it starts fresh and waits for a handshake.
        """
        if self.scanning:
            logger.warning("scanner start requested but already scanning")
            return
        if self.phase is ReceiverPhase.ERROR:
            raise PhaseError("receiver is in error; reset before scanning again")
        if self.phase not in INTAKE_PHASES:
            self.reset()
            self.phase = ReceiverPhase.WAITING_HANDSHAKE
        if self.scanner is not None:
            try:
                self.scanner.start()
            except (OSError, ScannerError) as exc:
                error = exc if isinstance(exc, ScannerError) else ScannerError(f"cannot start scanner: {exc}")
                self.scanner_failed(error)
                raise error from exc
        self.scanning = True
        logger.info("scanning; %s", self.phase.value)

    def stop(self) -> None:
        """Halt intake. Received chunks are kept."""
        if self.scanner is not None and self.scanning:
            self.scanner.stop()
        self.scanning = False

    def restart(self) -> None:
        """Re-enter WAITING_HANDSHAKE for the current session without dropping chunks.

        A repeated handshake for the same file id is ignored; the next Final
        for it resynchronizes the machine.
        """
        if self.session is None:
            raise PhaseError("no session to restart")
        if self.phase is ReceiverPhase.ERROR:
            raise PhaseError("receiver is in error; reset before scanning again")
        self.phase = ReceiverPhase.WAITING_HANDSHAKE
        if not self.scanning:
            self.start()

    def scanner_failed(self, exc: Exception) -> None:
        """Camera or permission failure: surface it and fall back to IDLE."""
        logger.error("scanner error: %s", exc)
        self.reset()
        self.error = exc
        if self.on_error is not None:
            self.on_error(exc)

    def reset(self) -> None:
        self.stop()
        self.phase = ReceiverPhase.IDLE
        self.error = None
        self._drop_session()
        self.metrics = Metrics(start_ts=self.clock())

    def _drop_session(self) -> None:
        self.session = None
        self.chunks.clear()
        self.final = None
        self.missing_display = ""

    # -- progress ----------------------------------------------------------

    @property
    def received_count(self) -> int:
        return len(self.chunks)

    @property
    def total(self) -> int | None:
        return self.session.total_data_chunks if self.session else None

    def missing(self) -> list[int]:
        if self.session is None:
            return []
        return [seq for seq in range(1, self.session.total_data_chunks + 1) if seq not in self.chunks]

    @property
    def progress(self) -> int:
        """Received share of the expected chunks, in percent."""
        total = self.total
        if not total:
            return 0
        return min(100, round(self.received_count * 100 / total))

    # -- intake ------------------------------------------------------------

    def feed(self, raw: str | bytes | None) -> None:
        """Handle one decoded symbol; ``None`` means no code was found in the frame."""
        if raw is None or not self.scanning or self.phase not in INTAKE_PHASES:
            return
        try:
            packet = parse_packet(raw)
        except StructureError as exc:
            self.metrics.dropped += 1
            logger.debug("dropping malformed packet: %s", exc)
            return
        except VersionError as exc:
            self._drop_session()
            self._fail(exc)
            return

        try:
            self._dispatch(packet)
        except (StructureError, WrongSessionError) as exc:
            self.metrics.dropped += 1
            logger.debug("ignoring packet: %s", exc)

    def _dispatch(self, packet: Packet) -> None:
        if isinstance(packet, Handshake):
            self._on_handshake(packet)
            return

        self._check_session(packet.file_id)
        if isinstance(packet, Data):
            if self.phase is ReceiverPhase.WAITING_HANDSHAKE:
                logger.debug("data chunk %d before handshake; ignored", packet.seq)
                return
            self._on_data(packet)
        elif isinstance(packet, Final):
            self._on_final(packet)
        else:
            raise StructureError(f"unhandled packet {packet!r}")

    def _check_session(self, file_id: str) -> None:
        expected = self.session.file_id if self.session else None
        if file_id != expected:
            raise WrongSessionError(file_id, expected)

    def _on_handshake(self, packet: Handshake) -> None:
        if self.session is not None and self.session.file_id == packet.file_id:
            logger.debug("duplicate handshake for %s", packet.file_id)
            return

        self.session = TransferSession.from_handshake(packet)
        self.chunks.clear()
        self.final = None
        self.missing_display = ""
        self.metrics = Metrics(start_ts=self.clock())
        what = (
            f"single file {self.session.original_filename}"
            if self.session.original_filename
            else f"archive {self.session.archive_name}"
        )
        logger.info(
            "handshake %s: %s, %d bytes, %d chunk(s)",
            packet.file_id,
            what,
            packet.size,
            packet.total,
        )
        if packet.total == 0:
            self.phase = ReceiverPhase.WAITING_FINAL
        else:
            self.phase = ReceiverPhase.RECEIVING_DATA

    def _on_data(self, packet: Data) -> None:
        assert self.session is not None
        total = self.session.total_data_chunks
        if packet.seq > total:
            raise StructureError(f"sequence number {packet.seq} beyond total {total}")
        if packet.seq in self.chunks:
            self.metrics.duplicates += 1
            logger.debug("duplicate chunk %d", packet.seq)
            return

        self.chunks[packet.seq] = packet.data
        self.metrics.record(approx_decoded_size(packet.data), self.clock())
        logger.debug("chunk %d/%d; %d unique", packet.seq, total, len(self.chunks))

        complete = len(self.chunks) == total
        if self.phase is ReceiverPhase.WAITING_MISSING:
            self._refresh_missing()
            if complete:
                logger.info("all missing chunks received; waiting for final again")
                self.phase = ReceiverPhase.WAITING_FINAL
        elif complete and self.phase is ReceiverPhase.RECEIVING_DATA:
            logger.info("all %d data chunks received; waiting for final", total)
            self.phase = ReceiverPhase.WAITING_FINAL

    def _on_final(self, packet: Final) -> None:
        self.final = packet
        missing = self.missing()
        if not missing:
            self._verify(packet)
            return
        self.phase = ReceiverPhase.WAITING_MISSING
        self._refresh_missing()
        logger.info("final seen but %d chunk(s) missing: %s", len(missing), self.missing_display)

    def _refresh_missing(self) -> None:
        self.missing_display = format_missing(self.missing())

    # -- verification ------------------------------------------------------

    def _verify(self, final: Final) -> None:
        assert self.session is not None
        session = self.session
        self.phase = ReceiverPhase.VERIFYING
        self.missing_display = ""
        self.stop()

        encoded = "".join(self.chunks[seq] for seq in range(1, session.total_data_chunks + 1))
        try:
            buffer = decode_payload(encoded)
            verify(buffer, session.archive_size, final.checksum)
        except VerificationError as exc:
            self._fail(exc)
            return
        logger.info("verified %s: %d bytes, checksum %s", session.file_id, len(buffer), final.checksum)

        self.phase = ReceiverPhase.COMPLETE
        try:
            delivery = self._deliver(session, buffer)
        except OSError as exc:
            self._fail(exc)
            return
        self.metrics.finish(self.clock())
        self.last_delivery = delivery
        if self.on_complete is not None:
            self.on_complete(delivery)
        self.reset()

    def _deliver(self, session: TransferSession, buffer: bytes) -> Delivery:
        filename = session.download_name
        original = session.original_filename
        if original:
            try:
                content = self.archiver.extract(buffer, original)
            except ArchiveError as exc:
                logger.warning("cannot extract %s (%s); delivering the raw archive", original, exc)
                content = None
            else:
                if content is None:
                    logger.warning("%s not found in archive; delivering the raw archive", original)
            if content is not None:
                self.sink.deliver(content, filename)
                return Delivery(session.file_id, filename, len(content), extracted=True)

        self.sink.deliver(buffer, filename)
        return Delivery(session.file_id, filename, len(buffer), extracted=False)

    def _fail(self, exc: Exception) -> None:
        self.stop()
        self.phase = ReceiverPhase.ERROR
        self.error = exc
        logger.error("receiver stopped: %s", exc)
        if self.on_error is not None:
            self.on_error(exc)
