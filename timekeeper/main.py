from __future__ import annotations

import argparse
import logging
import os
import sys

from dotenv import load_dotenv

from .archive import DismissalCache
from .commands import App, register_commands
from .config import Config, load_config
from .db import Database
from .errors import TimekeeperError
from .grants import AccessManager
from .reporter import Reporter
from .timesheet import Timesheet

logger = logging.getLogger("timekeeper")


def build_app(config: Config, db: Database, dismissals: DismissalCache) -> App:
    access = AccessManager(
        db,
        require_owner_approval=config.require_owner_approval,
        token_ttl=config.token_ttl,
    )
    timesheet = Timesheet(db, access)
    reporter = Reporter(
        timesheet,
        config.report_settings(),
        dismissals,
        region_code=config.region_code,
    )
    return App(config=config, access=access, timesheet=timesheet, reporter=reporter)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="timekeeper", description="OnSite Timekeeper hours and team access")
    parser.add_argument(
        "--user",
        default=os.getenv("TIMEKEEPER_USER_ID"),
        help="Acting user id (defaults to TIMEKEEPER_USER_ID)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    register_commands(subparsers)
    return parser


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    configure_logging()

    args = build_parser().parse_args(argv)
    config = load_config()

    db = Database(config.database_path)
    db.initialize()
    dismissals = DismissalCache(config.archive_path, expiry_days=config.archive_expiry_days)
    dismissals.initialize()

    try:
        output = args.handler(build_app(config, db, dismissals), args)
    except TimekeeperError as exc:
        logger.warning("%s failed: %s", args.command, exc)
        print(str(exc), file=sys.stderr)
        return 1
    except ValueError as exc:
        print(f"Invalid input: {exc}", file=sys.stderr)
        return 2
    finally:
        dismissals.close()
        db.close()

    print(output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
