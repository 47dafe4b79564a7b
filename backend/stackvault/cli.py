"""Command line entry point.

Exit status: 0 on success, 1 when a run failed or was aborted, 2 when
`--strict` is given and some project or container failed, 130 when the
run was interrupted by SIGINT or SIGTERM.
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
from typing import List, Optional

from stackvault.core.config import FleetSettings
from stackvault.core.logging import setup_logging
from stackvault.domain.enums import RunStatus
from stackvault.domain.errors import StackVaultError
from stackvault.domain.timestamps import parse_timestamp

logger = logging.getLogger("stackvault.cli")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_PARTIAL = 2
EXIT_INTERRUPTED = 130


def _raise_interrupt(signum, frame) -> None:
    raise KeyboardInterrupt(f"received signal {signum}")


def _timestamp_arg(value: str):
    try:
        return parse_timestamp(value)
    except ValueError:
        raise argparse.ArgumentTypeError("expected YYYYMMDD_HHMMSS")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stackvault",
        description="Incremental backup and restore for compose-managed container fleets",
    )
    parser.add_argument("--log-level", default=None, help="Overrides LOG_LEVEL")
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit with status 2 when any project or container failed",
    )
    parser.add_argument(
        "--history",
        action="store_true",
        help="Record the run in the SQLite history database (implied by STACKVAULT_DB_DIR)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    backup = sub.add_parser("backup", help="Stop all projects, archive appdata, restart")
    backup.add_argument("--no-restart", action="store_true", help="Leave the fleet stopped afterwards")

    restore = sub.add_parser("restore", help="Replay a backup chain and restart recorded containers")
    restore.add_argument("--timestamp", type=_timestamp_arg, default=None, help="YYYYMMDD_HHMMSS; newest when omitted")
    restore.add_argument("--concurrency", type=int, default=None, help="Containers restored in parallel")

    sub.add_parser("start", help="Down, pull and up every compose project")

    chain = sub.add_parser("chain", help="Print and verify the restore chain for a timestamp")
    chain.add_argument("--timestamp", type=_timestamp_arg, default=None)

    serve = sub.add_parser("serve", help="Run the API and the backup scheduler")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8080)
    return parser


def _exit_code(status: str, strict: bool) -> int:
    if status == RunStatus.FAILED.value:
        return EXIT_FAILED
    if status == RunStatus.PARTIAL.value:
        return EXIT_PARTIAL if strict else EXIT_OK
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    if args.command == "serve":
        import uvicorn

        uvicorn.run("stackvault.main:app", host=args.host, port=args.port)
        return EXIT_OK

    from stackvault.services.fleet import FleetService

    # SIGTERM unwinds the same way Ctrl-C does
    signal.signal(signal.SIGTERM, _raise_interrupt)

    db = None
    if args.history or os.getenv("STACKVAULT_DB_DIR"):
        from stackvault.core.db import init_db, open_session

        init_db()
        db = open_session()

    try:
        svc = FleetService(db, FleetSettings.from_env())
        if args.command == "chain":
            chain = svc.describe_chain(args.timestamp)
            for member in chain:
                print(f"{member.stamp}  {member.kind.value:<11}  {member.archive_path}")
            return EXIT_OK
        if args.command == "backup":
            run = svc.backup_cycle(trigger="cli", restart=False if args.no_restart else None)
        elif args.command == "restore":
            run = svc.restore(trigger="cli", timestamp=args.timestamp, concurrency=args.concurrency)
        else:
            run = svc.start_all(trigger="cli")
    except StackVaultError as exc:
        logger.error("%s failed | code=%s error=%s", args.command, exc.code, exc)
        return EXIT_FAILED
    except KeyboardInterrupt as exc:
        logger.error("%s interrupted | reason=%s", args.command, exc or "SIGINT")
        return EXIT_INTERRUPTED
    finally:
        if db is not None:
            db.close()

    print(f"{run.operation}: {run.status} ({run.message})")
    return _exit_code(run.status, args.strict)


if __name__ == "__main__":
    sys.exit(main())
