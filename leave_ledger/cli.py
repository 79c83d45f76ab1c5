"""Operator command line for the leave-year rollover.

Usage:
    python -m leave_ledger.cli rollover status
    python -m leave_ledger.cli rollover advance [--strategy batched] [--batch-size 500]
    python -m leave_ledger.cli rollover revert-previous
    python -m leave_ledger.cli rollover revert-next
    python -m leave_ledger.cli rollover resume <run-id>
    python -m leave_ledger.cli rollover resolve <run-id> [--note "fixed by hand"]

Runs against ``DATABASE_URL``; ``--actor`` is recorded as the operator.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import uuid
from typing import Any, Optional, Sequence

import leave_ledger.models  # noqa: F401
from leave_ledger.common.constants import RolloverStrategy
from leave_ledger.common.exceptions import AppException
from leave_ledger.config import settings
from leave_ledger.database import async_session_factory, engine
from leave_ledger.rollover.engine import YearRolloverEngine

logger = logging.getLogger("leave_ledger.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="leave_ledger.cli", description=__doc__.splitlines()[0])
    commands = parser.add_subparsers(dest="command", required=True)

    rollover = commands.add_parser("rollover", help="Leave-year rollover operations")
    rollover.add_argument(
        "--strategy",
        choices=[s.value for s in RolloverStrategy],
        default=settings.ROLLOVER_STRATEGY,
    )
    rollover.add_argument("--batch-size", type=int, default=settings.ROLLOVER_BATCH_SIZE)
    rollover.add_argument("--actor", type=uuid.UUID, default=None, help="Operator id to record")

    actions = rollover.add_subparsers(dest="action", required=True)
    actions.add_parser("status", help="Show the active leave year and recent runs")
    actions.add_parser("advance", help="Move to the next leave year")
    actions.add_parser("revert-previous", help="Undo the last advance")
    actions.add_parser("revert-next", help="Redo a reverted advance")
    resume = actions.add_parser("resume", help="Continue a halted run")
    resume.add_argument("run_id", type=uuid.UUID)
    resolve = actions.add_parser("resolve", help="Close a halted run after manual repair")
    resolve.add_argument("run_id", type=uuid.UUID)
    resolve.add_argument("--note", default=None)
    return parser


async def run_rollover(args: argparse.Namespace, rollover: YearRolloverEngine) -> Any:
    actor: Optional[uuid.UUID] = args.actor
    if args.action == "status":
        current = await rollover.get_settings()
        runs = await rollover.list_runs(limit=5)
        return {
            "settings": current.model_dump(mode="json"),
            "recent_runs": [r.model_dump(mode="json") for r in runs],
        }
    if args.action == "advance":
        return (await rollover.advance(actor)).model_dump(mode="json")
    if args.action == "revert-previous":
        return (await rollover.revert_to_previous(actor)).model_dump(mode="json")
    if args.action == "revert-next":
        return (await rollover.revert_to_next(actor)).model_dump(mode="json")
    if args.action == "resume":
        return (await rollover.resume(args.run_id, actor)).model_dump(mode="json")
    if args.action == "resolve":
        return (await rollover.resolve(args.run_id, actor, args.note)).model_dump(mode="json")
    raise ValueError(f"Unknown rollover action: {args.action}")


async def _main(args: argparse.Namespace) -> int:
    rollover = YearRolloverEngine(
        async_session_factory,
        settings_id=settings.LEAVE_YEAR_SETTINGS_ID,
        grant=settings.ANNUAL_LEAVE_GRANT,
        strategy=RolloverStrategy(args.strategy),
        batch_size=args.batch_size,
    )
    try:
        result = await run_rollover(args, rollover)
    except AppException as exc:
        logger.error("%s: %s", exc.title, exc.detail)
        if exc.errors:
            print(json.dumps(exc.errors, indent=2), file=sys.stderr)
        return 1
    finally:
        await engine.dispose()

    print(json.dumps(result, indent=2))
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    return asyncio.run(_main(args))


if __name__ == "__main__":
    sys.exit(main())
