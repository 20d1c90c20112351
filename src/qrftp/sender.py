from __future__ import annotations

import dataclasses
import enum
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Mapping

from .archive import Archiver, ZipArchiver
from .capacity import effective_chunk_size, fits, symbol_capacity
from .chunking import encode_payload, split
from .constants import (
    CAPACITY_ESTIMATES,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_DELAY_MS,
    DEFAULT_LEVEL,
    MAX_CHUNK_SIZE_LIMIT,
    MIN_CHUNK_SIZE,
    MIN_DELAY_MS,
    MULTI_FILE_ARCHIVE_NAME,
)
from .errors import CapacityError, PhaseError
from .metrics import Metrics, approx_decoded_size
from .packet import Data, Final, Packet
from .pacing import Handle, Scheduler
from .ranges import normalize_chunks, parse_chunk_input
from .session import TransferSession, new_file_id
from .verify import checksum

logger = logging.getLogger(__name__)


class SenderPhase(str, enum.Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    READY = "ready"
    TRANSFERRING = "transferring"
    FINAL_DISPLAYED = "final_displayed"
    POST_FINAL = "post_final"
    SENDING_SPECIFIC = "sending_specific"
    ERROR = "error"


EMITTING_PHASES = frozenset({SenderPhase.TRANSFERRING, SenderPhase.FINAL_DISPLAYED, SenderPhase.SENDING_SPECIFIC})


@dataclass(frozen=True, slots=True)
class SenderSettings:
    level: str = DEFAULT_LEVEL
    chunk_size: int = DEFAULT_CHUNK_SIZE
    delay_ms: int = DEFAULT_DELAY_MS

    def __post_init__(self) -> None:
        if self.level not in CAPACITY_ESTIMATES:
            raise ValueError(f"unknown error-correction level {self.level!r}")
        if not MIN_CHUNK_SIZE <= self.chunk_size <= MAX_CHUNK_SIZE_LIMIT:
            raise ValueError(f"chunk size must be between {MIN_CHUNK_SIZE} and {MAX_CHUNK_SIZE_LIMIT}")
        if self.delay_ms < 0:
            raise ValueError("delay must not be negative")

    @property
    def step_delay_s(self) -> float:
        return max(MIN_DELAY_MS, self.delay_ms) / 1000.0

    @property
    def final_delay_s(self) -> float:
        # the final symbol stays up long enough for the receiver to check completeness
        return max(DEFAULT_DELAY_MS, self.delay_ms) / 1000.0

    @property
    def resend_final_delay_s(self) -> float:
        return max(DEFAULT_DELAY_MS / 2, self.delay_ms) / 1000.0


@dataclass(frozen=True, slots=True)
class LoadedArchive:
    buffer: bytes
    encoded: str
    checksum: str
    archive_name: str
    original_filename: str | None


@dataclass(frozen=True, slots=True)
class Estimate:
    chunk_size: int
    data_chunks: int
    symbols: int
    seconds: float | None


class Sequencer:
    """Sender state machine: turns a loaded archive into a paced stream of symbols.

    ``emit`` receives every serialized packet in display order. Automatic
    pacing is driven by ``scheduler``; in manual mode the caller invokes
    :meth:`advance` for every step.
    """

    def __init__(
        self,
        emit: Callable[[str], None],
        scheduler: Scheduler,
        settings: SenderSettings | None = None,
        archiver: Archiver | None = None,
        on_error: Callable[[Exception], None] | None = None,
    ):
        self.emit = emit
        self.scheduler = scheduler
        self.settings = settings or SenderSettings()
        self.archiver = archiver or ZipArchiver()
        self.on_error = on_error

        self.phase = SenderPhase.IDLE
        self.error: Exception | None = None
        self.archive: LoadedArchive | None = None
        self.session: TransferSession | None = None
        self.chunks: list[str] = []
        self.manual = False
        self.metrics = Metrics(start_ts=scheduler.time())
        self.total_steps = 0

        self._cursor = -1
        self._specific: list[int] = []
        self._specific_index = 0
        self._timer: Handle | None = None

    # -- loading -----------------------------------------------------------

    def load(self, files: Mapping[str, bytes]) -> TransferSession:
        """Archive and encode ``files`` (entry name -> content) and plan the chunks."""
        self.reset()
        self.phase = SenderPhase.PROCESSING
        names = list(files)
        single = names[0] if len(names) == 1 and "/" not in names[0] else None
        try:
            buffer, size = self.archiver.pack(files)
        except Exception as exc:
            self._fail(exc)
            raise

        self.archive = LoadedArchive(
            buffer=buffer,
            encoded=encode_payload(buffer),
            checksum=checksum(buffer),
            archive_name=MULTI_FILE_ARCHIVE_NAME,
            original_filename=single,
        )
        self._plan(new_file_id())
        self.phase = SenderPhase.READY
        logger.info(
            "loaded %d entr%s: archive %d bytes, %d data chunk(s), file id %s",
            len(names),
            "y" if len(names) == 1 else "ies",
            size,
            len(self.chunks),
            self.file_id,
        )
        assert self.session is not None
        return self.session

    def configure(self, **changes: object) -> SenderSettings:
        """Change level, chunk size or delay; re-plans chunks for a loaded archive."""
        if self.phase not in (SenderPhase.IDLE, SenderPhase.READY):
            raise PhaseError(f"cannot change settings while {self.phase.value}")
        self.settings = dataclasses.replace(self.settings, **changes)  # type: ignore[arg-type]
        if self.archive is not None and self.session is not None:
            previous = list(self.chunks)
            self._plan(self.session.file_id)
            if self.chunks != previous:
                # a receiver may already hold the old plan under this id
                self._plan(new_file_id())
        return self.settings

    def _plan(self, file_id: str) -> None:
        assert self.archive is not None
        try:
            size = effective_chunk_size(self.settings.chunk_size, self.settings.level, file_id)
        except CapacityError as exc:
            self._fail(exc)
            raise
        self.chunks = split(self.archive.encoded, size)
        self.session = TransferSession(
            file_id=file_id,
            total_data_chunks=len(self.chunks),
            archive_size=len(self.archive.buffer),
            archive_name=self.archive.archive_name,
            original_filename=self.archive.original_filename,
        )

    @property
    def file_id(self) -> str | None:
        return self.session.file_id if self.session else None

    def estimate(self, manual: bool = False) -> Estimate:
        if self.session is None or self.archive is None:
            raise PhaseError("no archive loaded")
        symbols = self.session.total_data_chunks + 2
        delay_ms = self.settings.delay_ms if self.settings.delay_ms >= MIN_DELAY_MS else DEFAULT_DELAY_MS
        seconds = None if manual else symbols * delay_ms / 1000.0
        size = effective_chunk_size(self.settings.chunk_size, self.settings.level, self.session.file_id)
        return Estimate(chunk_size=size, data_chunks=self.session.total_data_chunks, symbols=symbols, seconds=seconds)

    # -- sequences ---------------------------------------------------------

    def start(self, manual: bool = False) -> None:
        if self.phase is not SenderPhase.READY:
            raise PhaseError(f"cannot start from {self.phase.value}")
        logger.info("starting transfer %s (%s)", self.file_id, "manual" if manual else "automatic")
        self._begin_full_sequence(manual)

    def resend_all(self, manual: bool = False) -> None:
        if self.phase is not SenderPhase.POST_FINAL:
            raise PhaseError(f"cannot resend from {self.phase.value}")
        logger.info("resending full sequence for %s", self.file_id)
        self._begin_full_sequence(manual)

    def resend_specific(self, chunks: Iterable[int] | str, manual: bool = False) -> list[int]:
        """Re-emit selected data chunks, then the final packet.

        ``chunks`` is either sequence numbers or user text such as ``"1,3,5-8"``.
        Returns the normalized, ascending list that will be sent.
        """
        if self.phase is not SenderPhase.POST_FINAL:
            raise PhaseError(f"cannot resend from {self.phase.value}")
        total = len(self.chunks)
        if isinstance(chunks, str):
            wanted = parse_chunk_input(chunks, total)
        else:
            wanted = normalize_chunks(chunks, total)
        if not wanted:
            raise ValueError("no chunk numbers specified")

        self._cancel_timer()
        self._specific = wanted
        self._specific_index = 0
        self.manual = manual
        self.total_steps = len(wanted)
        self.metrics = Metrics(start_ts=self.scheduler.time())
        self.phase = SenderPhase.SENDING_SPECIFIC
        logger.info("resending %d chunk(s) for %s: %s", len(wanted), self.file_id, wanted)
        self._step()
        return list(wanted)

    def _begin_full_sequence(self, manual: bool) -> None:
        self._cancel_timer()
        self.phase = SenderPhase.TRANSFERRING
        self.manual = manual
        self._cursor = -1
        self._specific = []
        self._specific_index = 0
        self.total_steps = len(self.chunks) + 2
        self.error = None
        self.metrics = Metrics(start_ts=self.scheduler.time())
        self._step()

    # -- the advance event -------------------------------------------------

    def advance(self) -> None:
        """Move to the next step. Manual callers press this; timers call it in auto mode."""
        self._cancel_timer()
        self._step()

    def _on_timer(self) -> None:
        self._timer = None
        try:
            self._step()
        except CapacityError:
            # recorded on self.error and reported through on_error by _fail
            logger.debug("scheduled emission aborted for %s", self.file_id)

    def _step(self) -> None:
        if self.phase is SenderPhase.TRANSFERRING:
            self._emit_next()
        elif self.phase is SenderPhase.SENDING_SPECIFIC:
            self._emit_specific()
        elif self.phase is SenderPhase.FINAL_DISPLAYED:
            self._enter_post_final()
        else:
            logger.debug("advance ignored while %s", self.phase.value)

    def _emit_next(self) -> None:
        assert self.session is not None and self.archive is not None
        self._cursor += 1
        total = len(self.chunks)
        if self._cursor == 0:
            self._emit(self.session.handshake())
        elif self._cursor <= total:
            self._emit(Data(self.session.file_id, self._cursor, self.chunks[self._cursor - 1]))
        else:
            self._emit_final()
            return
        self._schedule(self.settings.step_delay_s)

    def _emit_specific(self) -> None:
        assert self.session is not None
        if self._specific_index >= len(self._specific):
            self._emit_final()
            return
        seq = self._specific[self._specific_index]
        self._specific_index += 1
        self._emit(Data(self.session.file_id, seq, self.chunks[seq - 1]))
        if self._specific_index < len(self._specific):
            self._schedule(self.settings.step_delay_s)
        else:
            self._schedule(self.settings.resend_final_delay_s)

    def _emit_final(self) -> None:
        assert self.session is not None and self.archive is not None
        self._emit(Final(self.session.file_id, self.archive.checksum))
        self.phase = SenderPhase.FINAL_DISPLAYED
        self._schedule(self.settings.final_delay_s)

    def _enter_post_final(self) -> None:
        self._cancel_timer()
        self.phase = SenderPhase.POST_FINAL
        self.manual = False
        self.metrics.finish(self.scheduler.time())
        logger.info("sequence complete for %s; waiting for resend requests", self.file_id)

    def _emit(self, packet: Packet) -> None:
        text = packet.to_text()
        if not fits(text, self.settings.level):
            exc = CapacityError(
                f"{packet.kind.name.lower()} packet is {len(text)} bytes, "
                f"over the {symbol_capacity(self.settings.level)} byte budget at level {self.settings.level}"
            )
            self._fail(exc)
            raise exc
        self.emit(text)
        if isinstance(packet, Data):
            self.metrics.record(approx_decoded_size(packet.data), self.scheduler.time())
        logger.debug("emitted %s packet (%d chars)", packet.kind.name.lower(), len(text))

    def _schedule(self, delay: float) -> None:
        if self.manual:
            return
        self._timer = self.scheduler.call_later(delay, self._on_timer)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    # -- progress ----------------------------------------------------------

    @property
    def step(self) -> int:
        """1-based position within the current sequence."""
        if self._specific and self.phase in (SenderPhase.SENDING_SPECIFIC, SenderPhase.FINAL_DISPLAYED):
            return self._specific_index
        if self.phase in (SenderPhase.TRANSFERRING, SenderPhase.FINAL_DISPLAYED):
            return self._cursor + 1
        return 0

    @property
    def remaining_seconds(self) -> float | None:
        if self.manual or self.phase not in EMITTING_PHASES:
            return None
        return max(0, self.total_steps - self.step) * self.settings.step_delay_s

    # -- stopping ----------------------------------------------------------

    def stop(self, keep_data: bool = True) -> None:
        """Cancel any pending emission; keep the loaded archive unless told otherwise."""
        logger.info("stopping transfer %s (keep data: %s)", self.file_id, keep_data)
        self._cancel_timer()
        if keep_data and self.archive is not None and self.session is not None:
            self.phase = SenderPhase.READY
            self.manual = False
            self.error = None
            self._cursor = -1
            self._specific = []
            self._specific_index = 0
            self.total_steps = 0
        else:
            self.reset()

    def reset(self) -> None:
        self._cancel_timer()
        self.phase = SenderPhase.IDLE
        self.error = None
        self.archive = None
        self.session = None
        self.chunks = []
        self.manual = False
        self.total_steps = 0
        self._cursor = -1
        self._specific = []
        self._specific_index = 0

    def _fail(self, exc: Exception) -> None:
        self._cancel_timer()
        self.phase = SenderPhase.ERROR
        self.error = exc
        logger.error("sender aborted: %s", exc)
        if self.on_error is not None:
            self.on_error(exc)
