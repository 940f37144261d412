"""Main entry point for the rank tracker."""

import argparse
import asyncio
import sys
from pathlib import Path

from loguru import logger

from .errors import RankTrackerError
from .orchestrator.coordinator import RefreshCoordinator
from .storage.database import Database
from .utils.config import get_config
from .utils.logger import setup_logging


def _prepare_sqlite_dir(db_url: str):
    """Create the directory of a file-backed SQLite database."""
    prefix = "sqlite:///"
    if db_url.startswith(prefix) and ":memory:" not in db_url:
        Path(db_url[len(prefix):]).parent.mkdir(parents=True, exist_ok=True)


async def run_refresh(user_id=None):
    """Run one rank refresh and log its summary.

    Args:
        user_id: Restrict the run to this user's products and credentials
    """
    config = get_config()
    setup_logging(config.logging)

    _prepare_sqlite_dir(config.database.url)
    db = Database(config.database.url, echo=config.database.echo)
    coordinator = RefreshCoordinator(db, config)

    summary = await coordinator.refresh(user_id)
    logger.info(f"Refresh summary: {summary.to_response()}")


def run_api():
    """Run the FastAPI server."""
    import uvicorn

    from .api.main import create_app

    config = get_config()
    setup_logging(config.logging)

    logger.info("=" * 80)
    logger.info("Shopping Rank Tracker API - Starting")
    logger.info("=" * 80)

    _prepare_sqlite_dir(config.database.url)
    uvicorn.run(
        create_app(config),
        host=config.api.host,
        port=config.api.port,
        log_level="info",
    )


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Shopping Rank Tracker")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("api", help="Run the API server")

    refresh_parser = subparsers.add_parser("refresh", help="Refresh ranks once")
    refresh_parser.add_argument(
        "--user-id", default=None, help="Only refresh this user's products"
    )

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        if args.command == "api":
            run_api()
        elif args.command == "refresh":
            asyncio.run(run_refresh(args.user_id))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except RankTrackerError as e:
        logger.error(f"Refresh aborted: {e.message}")
        sys.exit(1)
    except Exception as e:
        logger.exception(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
