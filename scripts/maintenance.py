"""
Operator commands for the analysis pipeline.

    python -m scripts.maintenance run-once
    python -m scripts.maintenance retry-failed [--owner-id N] [--limit N]
    python -m scripts.maintenance reclaim
"""
import argparse
import logging
import sys
from dataclasses import asdict

from src.alwayscare.core.settings import settings
from src.alwayscare.domain.errors import StoreUnavailable
from src.alwayscare.infra.db import SessionLocal, init_db
from src.alwayscare.infra.uow import SqlAlchemyUoW
from src.alwayscare.ml.registry import build_analyzer
from src.alwayscare.services.dispatcher import Dispatcher


def _positive_int(value: str) -> int:
    n = int(value)
    if n < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {n}")
    return n


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="AlwaysCare analysis maintenance")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("run-once", help="run one scheduled dispatcher pass now")

    retry = sub.add_parser("retry-failed", help="re-analyze failed records")
    retry.add_argument("--owner-id", type=int, default=None)
    retry.add_argument("--limit", type=_positive_int, default=settings.RETRY_BATCH_SIZE)

    sub.add_parser("reclaim", help="return records stuck in processing to pending")
    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    init_db()
    analyzer = build_analyzer(settings)
    db = SessionLocal()
    dispatcher = Dispatcher.from_settings(SqlAlchemyUoW(db), analyzer, settings)
    try:
        if args.command == "run-once":
            report = dispatcher.run_once()
        elif args.command == "retry-failed":
            report = dispatcher.retry_failed(owner_id=args.owner_id, limit=args.limit)
        else:
            report = dispatcher.reclaim_stuck()

    except StoreUnavailable as e:
        print(f"store unavailable: {e}", file=sys.stderr)
        return 2
    finally:
        dispatcher.close()
        db.close()

    print(", ".join(f"{k}={v}" for k, v in asdict(report).items()))
    return 0


if __name__ == "__main__":
    sys.exit(main())
