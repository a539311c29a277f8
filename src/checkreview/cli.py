"""CLI entry point — ``checkreview worker`` and ``checkreview init-db``."""

from __future__ import annotations

# Phase 1: Singleton logging before any transitive litellm imports
from checkreview.logging_config import setup_logging

setup_logging()

import argparse  # noqa: E402
import asyncio  # noqa: E402
import logging  # noqa: E402

from checkreview import __version__  # noqa: E402
from checkreview.config import Settings, create_app_engine  # noqa: E402
from checkreview.logging_config import (  # noqa: E402
    cleanup_third_party_handlers,
)
from checkreview.main import create_tables, lifespan  # noqa: E402

# Phase 2: Clear litellm's duplicate handlers after all imports
cleanup_third_party_handlers()

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"checkreview {__version__}")
        return

    if args.command == "worker":
        _run_worker()
    elif args.command == "init-db":
        asyncio.run(_init_db())
    else:
        parser.print_help()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="checkreview",
        description="Checklist-driven document review queue.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print version and exit",
    )

    sub = parser.add_subparsers(dest="command")
    sub.add_parser(
        "worker",
        help="Recover interrupted tasks and process the queue until stopped",
    )
    sub.add_parser("init-db", help="Create database tables")
    return parser


def _run_worker() -> None:
    try:
        asyncio.run(_serve(Settings()))
    except KeyboardInterrupt:
        logger.info("event=worker_interrupted")


async def _serve(settings: Settings) -> None:
    async with lifespan(settings) as state:
        logger.info(
            "event=worker_ready hashes=%d",
            len(state.workers.running_hashes()),
        )
        await asyncio.Event().wait()


async def _init_db() -> None:
    settings = Settings()
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    engine = create_app_engine(settings.database_url, echo=settings.debug_mode)
    try:
        await create_tables(engine)
    finally:
        await engine.dispose()
    print(f"Initialized {settings.database_url}")
