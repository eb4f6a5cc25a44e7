# dnd/cli.py
"""
Command line entry point.

    dnd start [--foreground]
    dnd stop
    dnd status
    dnd submit --destination-host H [--destination-host H2 ...] --command C [...]
    dnd wait FILENAME [--success-dir D] [--failure-dir D] [--timeout S]
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from dnd.config import Settings, settings
from dnd.core.errors import DndError
from dnd.core.producer import submit
from dnd.core.record import SpoolState
from dnd.infra.fs_watch import watch_for_outcome
from dnd.infra.logging_config import setup_logging
from dnd.infra.spool_store import SpoolStore
from dnd.service import DaemonService, describe_status, status_exit_code


def _settings_from(args: argparse.Namespace) -> Settings:
    overrides = {}
    if args.spool_dir:
        overrides["spool_dir"] = Path(args.spool_dir)
    if args.pid_file:
        overrides["pid_file"] = Path(args.pid_file)
    return settings.model_copy(update=overrides) if overrides else settings


def _client_logging(cfg: Settings) -> None:
    setup_logging(level=cfg.log_level, use_json=cfg.log_json, log_file=None)


def cmd_start(args: argparse.Namespace) -> int:
    cfg = _settings_from(args)
    return DaemonService(cfg).start(foreground=True if args.foreground else None)


def cmd_stop(args: argparse.Namespace) -> int:
    cfg = _settings_from(args)
    _client_logging(cfg)
    if DaemonService(cfg).stop():
        return 0
    print("dnd is not running", file=sys.stderr)
    return 1


def cmd_status(args: argparse.Namespace) -> int:
    cfg = _settings_from(args)
    status = DaemonService(cfg).status()
    print(describe_status(status))
    return status_exit_code(status)


def cmd_submit(args: argparse.Namespace) -> int:
    cfg = _settings_from(args)
    _client_logging(cfg)
    fields = {"src_host": args.source_host} if args.source_host else None
    store = SpoolStore(cfg.spool_dir, hostname=cfg.local_hostname)
    try:
        path = submit(
            fields=fields,
            commands=args.command,
            destinations=args.destination_host,
            comments=args.comments,
            target_dir=args.dir,
            store=store,
        )
    except ValueError as exc:
        print(exc, file=sys.stderr)
        return 2
    except DndError as exc:
        print(exc.detail, file=sys.stderr)
        return exc.exit_code
    print(path)
    return 0


def cmd_wait(args: argparse.Namespace) -> int:
    cfg = _settings_from(args)
    _client_logging(cfg)
    success_dir = args.success_dir or cfg.spool_dir / SpoolState.SENT.value
    failure_dir = args.failure_dir or cfg.spool_dir / SpoolState.FAILED.value
    try:
        status = asyncio.run(
            watch_for_outcome(
                args.filename,
                success_dir,
                failure_dir,
                timeout=args.timeout,
                polling=cfg.watch_polling,
                polling_interval=cfg.watch_polling_interval,
            )
        )
    except TimeoutError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    print(status.name)
    return int(status)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="dnd", description="Distributed notification daemon")
    ap.add_argument("--spool-dir", default=None, help="Override DND_SPOOL_DIR")
    ap.add_argument("--pid-file", default=None, help="Override DND_PID_FILE")
    sub = ap.add_subparsers(dest="cmd", required=True)

    p = sub.add_parser("start", help="Start the daemon")
    p.add_argument("--foreground", action="store_true", help="Do not detach from the terminal")
    p.set_defaults(func=cmd_start)

    p = sub.add_parser("stop", help="Send SIGTERM to the running daemon")
    p.set_defaults(func=cmd_stop)

    p = sub.add_parser("status", help="Report whether the daemon is running")
    p.set_defaults(func=cmd_status)

    p = sub.add_parser("submit", help="Write an entry to the spool queue")
    p.add_argument("--destination-host", "--dest", action="append", required=True,
                   help="Target host; repeat for fallbacks in priority order")
    p.add_argument("--command", action="append", required=True,
                   help="Command to run on the target host; repeat to run several in order")
    p.add_argument("--source-host", "-s", default=None, help="Defaults to this host")
    p.add_argument("--comments", default=None, help="Free text; '=' is stripped")
    p.add_argument("--dir", default=None, help="Write here instead of the queue directory")
    p.set_defaults(func=cmd_submit)

    p = sub.add_parser("wait", help="Block until a file lands in the success or failure directory")
    p.add_argument("filename")
    p.add_argument("--success-dir", type=Path, default=None)
    p.add_argument("--failure-dir", type=Path, default=None)
    p.add_argument("--timeout", type=float, default=None)
    p.set_defaults(func=cmd_wait)

    return ap


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
