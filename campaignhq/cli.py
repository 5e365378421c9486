#!/usr/bin/env python3
"""
CampaignHQ operational commands
===============================
Entry points for the external time trigger (cron) and for operators.

Usage:
    python -m campaignhq.cli init-db
    python -m campaignhq.cli dispatch
    python -m campaignhq.cli send-now CAMPAIGN_ID
    python -m campaignhq.cli aggregate [--date YYYY-MM-DD]
"""

import argparse
import asyncio
import json
import sys
from datetime import date

from .config import get_settings
from .database import Base, SessionLocal
from .dependencies import build_provider
from .exceptions import CampaignError
from .logging_config import get_logger
from .worker.metrics import MetricsAggregator
from .worker.scheduler import build_dispatcher

logger = get_logger("cli")


def _print(data: dict):
    print(json.dumps(data, indent=2, default=str))


def cmd_init_db(args, session_factory, provider) -> int:
    Base.metadata.create_all(bind=session_factory.kw["bind"])
    print("Database schema is up to date")
    return 0


def cmd_dispatch(args, session_factory, provider) -> int:
    settings = get_settings()
    db = session_factory()
    try:
        dispatcher = build_dispatcher(db, provider or build_provider(settings), settings)
        result = asyncio.run(dispatcher.run_once())
    finally:
        db.close()
    _print(result.to_dict())
    return 1 if result.failed else 0


def cmd_send_now(args, session_factory, provider) -> int:
    settings = get_settings()
    db = session_factory()
    try:
        dispatcher = build_dispatcher(db, provider or build_provider(settings), settings)
        result = asyncio.run(dispatcher.send_now(args.campaign_id))
    except CampaignError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        db.close()
    _print(result.to_dict())
    return 0


def cmd_aggregate(args, session_factory, provider) -> int:
    db = session_factory()
    try:
        result = MetricsAggregator(db).aggregate(args.date)
    finally:
        db.close()
    _print(result.to_dict())
    return 1 if result.errors else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="campaignhq", description="CampaignHQ operational commands")
    commands = parser.add_subparsers(dest="command", required=True)

    init_db = commands.add_parser("init-db", help="Create database tables")
    init_db.set_defaults(handler=cmd_init_db)

    dispatch = commands.add_parser("dispatch", help="Send every scheduled campaign that is due")
    dispatch.set_defaults(handler=cmd_dispatch)

    send_now = commands.add_parser("send-now", help="Send a draft campaign immediately")
    send_now.add_argument("campaign_id", type=int)
    send_now.set_defaults(handler=cmd_send_now)

    aggregate = commands.add_parser("aggregate", help="Build daily metrics for one UTC day")
    aggregate.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="Day to aggregate, YYYY-MM-DD (default: yesterday)"
    )
    aggregate.set_defaults(handler=cmd_aggregate)

    return parser


def main(argv=None, session_factory=SessionLocal, provider=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return args.handler(args, session_factory, provider)
    except ValueError as e:
        # Missing provider configuration
        logger.error("command_failed", command=args.command, error=e)
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
