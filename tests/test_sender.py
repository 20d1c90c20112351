from __future__ import annotations

import pytest

from conftest import EmptyArchiver, kinds
from qrftp.errors import ArchiveError, CapacityError, PhaseError
from qrftp.packet import Data, Final, Handshake, parse_packet
from qrftp.pacing import VirtualScheduler
from qrftp.sender import SenderPhase, SenderSettings, Sequencer
from qrftp.verify import checksum


def test_load_plans_chunks(sequencer, payload):
    session = sequencer.load({"data.bin": payload})
    assert sequencer.phase is SenderPhase.READY
    assert session.total_data_chunks == len(sequencer.chunks) > 3
    assert "".join(sequencer.chunks) == sequencer.archive.encoded
    assert all(len(c) <= 100 for c in sequencer.chunks)
    assert session.original_filename == "data.bin"
    assert session.archive_size == len(sequencer.archive.buffer)


@pytest.mark.parametrize("files", [{"a.txt": b"a", "b.txt": b"b"}, {"dir/a.txt": b"a"}])
def test_original_filename_only_for_single_file(sequencer, files):
    assert sequencer.load(files).original_filename is None


def test_load_nothing_is_error(sequencer):
    with pytest.raises(ArchiveError):
        sequencer.load({})
    assert sequencer.phase is SenderPhase.ERROR


def test_auto_sequence_in_order(sequencer, scheduler, sent, payload):
    session = sequencer.load({"data.bin": payload})
    sequencer.start()
    scheduler.run_until_idle()

    n = session.total_data_chunks
    assert kinds(sent) == ["h"] + ["d"] * n + ["f"]
    packets = [parse_packet(t) for t in sent]
    assert {p.file_id for p in packets} == {session.file_id}
    assert [p.seq for p in packets if isinstance(p, Data)] == list(range(1, n + 1))
    assert packets[-1] == Final(session.file_id, checksum(sequencer.archive.buffer))
    assert sequencer.phase is SenderPhase.POST_FINAL


def test_handshake_describes_archive(sequencer, sent, payload):
    session = sequencer.load({"data.bin": payload})
    sequencer.start(manual=True)
    h = parse_packet(sent[0])
    assert isinstance(h, Handshake)
    assert h.total == session.total_data_chunks
    assert h.size == session.archive_size
    assert h.name == "transfer_archive.zip"
    assert h.original_name == "data.bin"


def test_automatic_pacing_waits_between_symbols(sequencer, scheduler, sent, payload):
    sequencer.load({"data.bin": payload})
    sequencer.start()
    assert kinds(sent) == ["h"]
    assert scheduler.advance(0.1) == 0
    assert scheduler.advance(0.1) == 1
    assert kinds(sent) == ["h", "d"]


def test_final_stays_up_before_post_final(sequencer, scheduler, payload):
    sequencer.load({"data.bin": payload})
    sequencer.start()
    while sequencer.phase is SenderPhase.TRANSFERRING:
        scheduler.run_next()
    assert sequencer.phase is SenderPhase.FINAL_DISPLAYED
    scheduler.advance(0.4)
    assert sequencer.phase is SenderPhase.FINAL_DISPLAYED
    scheduler.advance(0.2)
    assert sequencer.phase is SenderPhase.POST_FINAL


def test_delay_is_clamped():
    s = SenderSettings(delay_ms=0)
    assert s.step_delay_s == 0.05
    assert s.final_delay_s == 0.5
    assert s.resend_final_delay_s == 0.25
    assert SenderSettings(delay_ms=1000).final_delay_s == 1.0


@pytest.mark.parametrize("kwargs", [{"level": "X"}, {"chunk_size": 50}, {"chunk_size": 3000}, {"delay_ms": -1}])
def test_invalid_settings(kwargs):
    with pytest.raises(ValueError):
        SenderSettings(**kwargs)


def test_manual_mode_waits_for_advance(sequencer, scheduler, sent, payload):
    session = sequencer.load({"data.bin": payload})
    sequencer.start(manual=True)
    assert kinds(sent) == ["h"]
    assert scheduler.pending == 0
    assert sequencer.step == 1
    assert sequencer.total_steps == session.total_data_chunks + 2
    assert sequencer.remaining_seconds is None

    for _ in range(session.total_data_chunks + 1):
        sequencer.advance()
    assert kinds(sent)[-1] == "f"
    assert sequencer.phase is SenderPhase.FINAL_DISPLAYED
    assert sequencer.step == sequencer.total_steps

    sequencer.advance()
    assert sequencer.phase is SenderPhase.POST_FINAL
    assert len(sent) == session.total_data_chunks + 2


def test_resend_specific_normalizes_and_ends_with_final(sequencer, scheduler, sent, payload):
    session = sequencer.load({"data.bin": payload})
    sequencer.start()
    scheduler.run_until_idle()
    sent.clear()

    assert sequencer.resend_specific([3, 3, 1]) == [1, 3]
    assert sequencer.phase is SenderPhase.SENDING_SPECIFIC
    scheduler.run_until_idle()

    packets = [parse_packet(t) for t in sent]
    assert [type(p) for p in packets] == [Data, Data, Final]
    assert [p.seq for p in packets[:2]] == [1, 3]
    assert packets[1].data == sequencer.chunks[2]
    assert {p.file_id for p in packets} == {session.file_id}
    assert sequencer.phase is SenderPhase.POST_FINAL


def test_resend_specific_from_text_manual(sequencer, scheduler, sent, payload):
    sequencer.load({"data.bin": payload})
    sequencer.start()
    scheduler.run_until_idle()
    sent.clear()

    sequencer.resend_specific("2-3", manual=True)
    assert kinds(sent) == ["d"]
    sequencer.advance()
    sequencer.advance()
    assert kinds(sent) == ["d", "d", "f"]
    assert sequencer.phase is SenderPhase.FINAL_DISPLAYED
    sequencer.advance()
    assert sequencer.phase is SenderPhase.POST_FINAL


def test_resend_specific_rejects_bad_lists(sequencer, scheduler, payload):
    sequencer.load({"data.bin": payload})
    with pytest.raises(PhaseError):
        sequencer.resend_specific([1])
    sequencer.start()
    scheduler.run_until_idle()
    with pytest.raises(ValueError):
        sequencer.resend_specific([])
    with pytest.raises(ValueError):
        sequencer.resend_specific([len(sequencer.chunks) + 1])
    with pytest.raises(ValueError):
        sequencer.resend_specific("1-x")
    assert sequencer.phase is SenderPhase.POST_FINAL


def test_resend_all_keeps_file_id(sequencer, scheduler, sent, payload):
    session = sequencer.load({"data.bin": payload})
    sequencer.start()
    scheduler.run_until_idle()
    first = list(sent)
    sent.clear()

    sequencer.resend_all(manual=True)
    assert scheduler.pending == 0
    while sequencer.phase is not SenderPhase.POST_FINAL:
        sequencer.advance()
    assert sent == first
    assert sequencer.file_id == session.file_id


def test_start_requires_ready(sequencer):
    with pytest.raises(PhaseError):
        sequencer.start()


def test_stop_cancels_pending_and_keeps_data(sequencer, scheduler, sent, payload):
    session = sequencer.load({"data.bin": payload})
    sequencer.start()
    sequencer.stop()
    assert scheduler.pending == 0
    scheduler.run_until_idle()
    assert kinds(sent) == ["h"]
    assert sequencer.phase is SenderPhase.READY
    assert sequencer.file_id == session.file_id

    sequencer.start()
    assert kinds(sent) == ["h", "h"]


def test_full_stop_clears_archive(sequencer, scheduler, payload):
    sequencer.load({"data.bin": payload})
    sequencer.start()
    sequencer.stop(keep_data=False)
    assert sequencer.phase is SenderPhase.IDLE
    assert sequencer.archive is None
    assert scheduler.pending == 0


def test_oversized_packet_aborts_before_emission(scheduler, sent):
    errors = []
    seq = Sequencer(sent.append, scheduler, SenderSettings(level="H"), on_error=errors.append)
    seq.load({"n" * 900 + ".txt": b"x"})
    with pytest.raises(CapacityError):
        seq.start()
    assert sent == []
    assert seq.phase is SenderPhase.ERROR
    assert isinstance(errors[0], CapacityError)
    assert scheduler.pending == 0

    seq.stop()
    assert seq.phase is SenderPhase.READY


def test_empty_archive_sends_handshake_and_final(scheduler, sent):
    seq = Sequencer(sent.append, scheduler, archiver=EmptyArchiver())
    session = seq.load({"empty": b""})
    assert session.total_data_chunks == 0
    seq.start()
    scheduler.run_until_idle()
    assert kinds(sent) == ["h", "f"]
    assert parse_packet(sent[-1]).checksum == "0000"


def test_configure_replans_and_remints_id(sequencer, payload):
    session = sequencer.load({"data.bin": payload})
    sequencer.configure(delay_ms=100)
    assert sequencer.file_id == session.file_id

    before = len(sequencer.chunks)
    sequencer.configure(chunk_size=300)
    assert len(sequencer.chunks) < before
    assert sequencer.session.total_data_chunks == len(sequencer.chunks)
    assert sequencer.file_id != session.file_id


def test_configure_not_while_sending(sequencer, payload):
    sequencer.load({"data.bin": payload})
    sequencer.start()
    with pytest.raises(PhaseError):
        sequencer.configure(delay_ms=100)


def test_estimate(sequencer, payload):
    session = sequencer.load({"data.bin": payload})
    est = sequencer.estimate()
    assert est.symbols == session.total_data_chunks + 2
    assert est.seconds == pytest.approx(est.symbols * 0.2)
    assert est.chunk_size == 100
    assert sequencer.estimate(manual=True).seconds is None


def test_estimate_uses_default_for_tiny_delay(scheduler, payload):
    seq = Sequencer(lambda _t: None, scheduler, SenderSettings(delay_ms=10))
    seq.load({"data.bin": payload})
    est = seq.estimate()
    assert est.seconds == pytest.approx(est.symbols * 0.5)


def test_remaining_seconds(sequencer, payload):
    sequencer.load({"data.bin": payload})
    sequencer.start()
    assert sequencer.remaining_seconds == pytest.approx((sequencer.total_steps - 1) * 0.2)


def test_send_metrics(sequencer, scheduler, payload):
    session = sequencer.load({"data.bin": payload})
    sequencer.start()
    scheduler.run_until_idle()
    assert sequencer.metrics.packets == session.total_data_chunks
    assert sequencer.metrics.duration_s > 0
    assert sequencer.metrics.rate_bps is not None


def test_scheduler_is_injected():
    sched = VirtualScheduler(start=10.0)
    seq = Sequencer(lambda _t: None, sched)
    assert seq.metrics.start_ts == 10.0


def test_step_stays_within_specific_resend(sequencer, scheduler, payload):
    sequencer.load({"data.bin": payload})
    sequencer.start()
    scheduler.run_until_idle()

    sequencer.resend_specific([1], manual=True)
    assert (sequencer.step, sequencer.total_steps) == (1, 1)
    sequencer.advance()
    assert sequencer.phase is SenderPhase.FINAL_DISPLAYED
    assert sequencer.step <= sequencer.total_steps


class BrokenArchiver(EmptyArchiver):
    def pack(self, files):
        raise TypeError("entry is not bytes")


def test_unexpected_archiver_failure_ends_in_error(scheduler, sent):
    errors = []
    seq = Sequencer(sent.append, scheduler, archiver=BrokenArchiver(), on_error=errors.append)
    with pytest.raises(TypeError):
        seq.load({"a.txt": "not bytes"})
    assert seq.phase is SenderPhase.ERROR
    assert isinstance(seq.error, TypeError)
    assert errors == [seq.error]
