from __future__ import annotations

import argparse
import json
import logging

from .archive import DirectorySink, collect_files
from .constants import CAPACITY_ESTIMATES, DEFAULT_CHUNK_SIZE, DEFAULT_DELAY_MS, DEFAULT_LEVEL
from .errors import TransferError
from .loopback import run_loopback
from .pacing import VirtualScheduler
from .ranges import format_time
from .sender import SenderSettings, Sequencer


def _settings(args: argparse.Namespace) -> SenderSettings:
    return SenderSettings(level=args.level, chunk_size=args.chunk_size, delay_ms=args.delay_ms)


def _print(payload: dict, as_json: bool) -> None:
    print(json.dumps(payload, indent=2) if as_json else payload)


def cmd_plan(args: argparse.Namespace) -> int:
    files = collect_files(args.files)
    sequencer = Sequencer(lambda _text: None, VirtualScheduler(), _settings(args))
    session = sequencer.load(files)
    estimate = sequencer.estimate(manual=args.manual)

    payload = {
        "role": "plan",
        "entries": len(files),
        "archive_bytes": session.archive_size,
        "single_file": session.original_filename,
        "chunk_size": estimate.chunk_size,
        "data_chunks": estimate.data_chunks,
        "symbols": estimate.symbols,
        "seconds": estimate.seconds,
        "time": format_time(estimate.seconds) if estimate.seconds is not None else "manual",
    }
    _print(payload, args.json)
    return 0


def cmd_loopback(args: argparse.Namespace) -> int:
    files = collect_files(args.files)
    sink = DirectorySink(args.out)
    r = run_loopback(
        files,
        sink,
        settings=_settings(args),
        loss_rate=args.loss_rate,
        duplicate_rate=args.duplicate_rate,
        reorder_window=args.reorder_window,
        seed=args.seed,
        max_rounds=args.max_rounds,
    )
    payload = {
        "role": "loopback",
        "file_id": r.file_id,
        "archive_bytes": r.archive_bytes,
        "data_chunks": r.data_chunks,
        "rounds": r.rounds,
        "symbols_sent": r.symbols_sent,
        "symbols_dropped": r.symbols_dropped,
        "virtual_seconds": r.virtual_seconds,
        "complete": r.complete,
        "written": [str(p) for p in sink.written],
        "error": r.error,
    }
    _print(payload, args.json)
    return 0 if r.complete else 1


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(prog="qrftp", description="File transfer over a sequence of scanned QR codes.")
    p.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_common(x: argparse.ArgumentParser) -> None:
        x.add_argument("files", nargs="+", help="files or directories to send")
        x.add_argument("--level", choices=sorted(CAPACITY_ESTIMATES), default=DEFAULT_LEVEL)
        x.add_argument("--chunk-size", type=int, default=DEFAULT_CHUNK_SIZE)
        x.add_argument("--delay-ms", type=int, default=DEFAULT_DELAY_MS)
        x.add_argument("--json", action="store_true")

    plan = sub.add_parser("plan", help="show chunking and timing for a transfer")
    add_common(plan)
    plan.add_argument("--manual", action="store_true", help="estimate for manual pacing")
    plan.set_defaults(func=cmd_plan)

    loop = sub.add_parser("loopback", help="simulate a transfer through an impaired in-memory link")
    add_common(loop)
    loop.add_argument("--out", required=True, help="directory for received files")
    loop.add_argument("--loss-rate", type=float, default=0.0)
    loop.add_argument("--duplicate-rate", type=float, default=0.0)
    loop.add_argument("--reorder-window", type=int, default=0)
    loop.add_argument("--seed", type=int, default=None)
    loop.add_argument("--max-rounds", type=int, default=10)
    loop.set_defaults(func=cmd_loopback)

    args = p.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s [%(levelname)s] %(message)s")
    try:
        return int(args.func(args))
    except (TransferError, ValueError, OSError) as exc:
        p.exit(2, f"qrftp: error: {exc}\n")


if __name__ == "__main__":
    raise SystemExit(main())
