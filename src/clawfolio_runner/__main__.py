"""Command line entry point.

Usage:
    python -m clawfolio_runner serve   # API + boot tick + repeating ticks
    python -m clawfolio_runner tick    # one tick, then exit
    python -m clawfolio_runner index   # write {out_dir}/index/ and {out_dir}/metrics/{botId}.json
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from pydantic import ValidationError

from clawfolio_runner import __version__
from clawfolio_runner.config import ConfigurationError, Settings, get_settings

logger = logging.getLogger(__name__)


def setup_logging(settings: Settings) -> None:
    """Configure logging for the process."""
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    logging.getLogger("web3").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="clawfolio-runner",
        description="Clawfolio runner - bot fleet indexer and performance simulator",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "command",
        choices=["serve", "tick", "index"],
        help="serve: HTTP API with scheduled ticks; tick: run one tick; index: index event logs and write metrics",
    )
    return parser.parse_args(argv)


def serve(settings: Settings) -> None:
    import uvicorn

    from clawfolio_runner.api.app import create_app
    from clawfolio_runner.scheduler import RunnerScheduler

    app = create_app(RunnerScheduler(settings))
    logger.info("API listening on %s:%d", settings.server.host, settings.server.port)
    uvicorn.run(app, host=settings.server.host, port=settings.server.port, log_config=None)


async def tick_once(settings: Settings) -> int:
    from clawfolio_runner.scheduler import RunnerScheduler

    summary = await RunnerScheduler(settings).run_once()
    print(
        json.dumps(
            {
                "ok": True,
                "indexedBots": summary.indexed_bots,
                "updatedPerf": summary.updated_perf,
                "ts": summary.ts,
                "skipped": summary.skipped,
                "errors": summary.errors,
            }
        )
    )
    return 0


async def index_fleet(settings: Settings) -> int:
    from clawfolio_runner.chain.reader import create_chain_reader
    from clawfolio_runner.indexer.run import FleetIndexer

    reader = create_chain_reader(settings)
    try:
        stats = await FleetIndexer.from_settings(settings, reader).run()
    finally:
        await reader.aclose()
    return 1 if stats.bots_failed and not stats.bots_indexed else 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"Invalid configuration:\n{e}", file=sys.stderr)
        return 2

    setup_logging(settings)
    try:
        settings.validate_requirements(command=args.command)
    except ConfigurationError as e:
        logger.error("%s", e)
        return 2

    logger.info("Configuration: %s", settings.redacted_summary())

    try:
        if args.command == "serve":
            serve(settings)
            return 0
        if args.command == "tick":
            return asyncio.run(tick_once(settings))
        return asyncio.run(index_fleet(settings))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
