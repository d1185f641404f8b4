"""
Operator commands for the saga queue.

Usage:
    saga-worker submit GAME_ID WALLET [--no-dispatch]
    saga-worker drain [--max-jobs N]
    saga-worker sweep
    saga-worker purge
    saga-worker status SAGA_ID
    saga-worker counts
    saga-worker init-db
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict
from typing import Any, Sequence

from .db import init_db
from .errors import SagaError
from .persistence.sagas import SagaStore
from .services.job_queue import JobQueue
from .services.status import get_saga_view
from .services.submission import submit_saga
from .services.worker import HandleOutcome, SagaWorker


def _emit(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _queue(dispatch: bool) -> JobQueue:
    if not dispatch:
        return JobQueue()
    from .celery_app import build_job_queue

    return build_job_queue()


def cmd_submit(args: argparse.Namespace) -> int:
    result = submit_saga(args.game_id, args.wallet, store=SagaStore(), queue=_queue(not args.no_dispatch))
    _emit(asdict(result))
    return 0


def cmd_drain(args: argparse.Namespace) -> int:
    with SagaWorker(SagaStore(), JobQueue()) as worker:
        results = worker.drain(max_jobs=args.max_jobs)
    _emit([{"job_id": r.job_id, "outcome": r.outcome.value, "error": r.error} for r in results])
    return 1 if any(r.outcome is HandleOutcome.failed for r in results) else 0


def cmd_sweep(args: argparse.Namespace) -> int:
    outcomes = SagaWorker(SagaStore(), _queue(dispatch=True)).sweep()
    _emit([asdict(outcome) for outcome in outcomes])
    return 0


def cmd_purge(args: argparse.Namespace) -> int:
    purged = _queue(dispatch=True).purge_inactive()
    _emit({"purged": len(purged), "job_ids": purged})
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    view = get_saga_view(args.saga_id, SagaStore())
    data = asdict(view)
    if view.pages is not None:
        data["pages"] = [page.model_dump(mode="json") for page in view.pages]
    _emit(data)
    return 0


def cmd_counts(args: argparse.Namespace) -> int:
    _emit(JobQueue().counts())
    return 0


def cmd_init_db(args: argparse.Namespace) -> int:
    init_db()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="saga-worker", description="Saga queue operations")
    sub = parser.add_subparsers(dest="command", required=True)

    submit = sub.add_parser("submit", help="Submit a saga for a game")
    submit.add_argument("game_id")
    submit.add_argument("wallet")
    submit.add_argument(
        "--no-dispatch",
        action="store_true",
        help="Only record the job; process it later with `drain`",
    )
    submit.set_defaults(func=cmd_submit)

    drain = sub.add_parser("drain", help="Process runnable jobs in this process")
    drain.add_argument("--max-jobs", type=int, default=None)
    drain.set_defaults(func=cmd_drain)

    sub.add_parser("sweep", help="Requeue or fail stalled jobs").set_defaults(func=cmd_sweep)
    sub.add_parser("purge", help="Drop non-active queue entries").set_defaults(func=cmd_purge)

    status = sub.add_parser("status", help="Show a saga")
    status.add_argument("saga_id")
    status.set_defaults(func=cmd_status)

    sub.add_parser("counts", help="Queue entries by state").set_defaults(func=cmd_counts)
    sub.add_parser("init-db", help="Create tables (development only)").set_defaults(func=cmd_init_db)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except SagaError as exc:
        print(f"error: {exc.message}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
