from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import NoReturn

import uvicorn

from .api.main import create_app, set_query_engine, set_repository
from .config import settings
from .ingest import IngestionCoordinator, NfdumpExtractor
from .metrics import METRICS
from .query import FlowQueryEngine
from .storage import ConnectionRangeLookup, Database, FlowRepository

logger = logging.getLogger("flowvault.main")


def _build_coordinator(db: Database, directory: str) -> IngestionCoordinator:
    return IngestionCoordinator(
        directory=directory,
        extractor=NfdumpExtractor(
            binary=settings.NFDUMP_BINARY,
            timeout_seconds=settings.NFDUMP_TIMEOUT_SECONDS,
        ),
        repository=FlowRepository(db),
        file_prefix=settings.NFCAPD_FILE_PREFIX,
    )


# ---------------------------------------------------------------------------
# Single pass (--once)
# ---------------------------------------------------------------------------

def run_once(db_path: str, directory: str) -> int:
    """Ingest every pending file once. Returns the number of failed files."""
    db = Database(db_path)
    try:
        db.init_schema()
        report = _build_coordinator(db, directory).run_once()
    finally:
        db.close()
    logger.info("Single pass finished — %r metrics=%s", report, METRICS.as_dict())
    return len(report.failed)


# ---------------------------------------------------------------------------
# Long-running service
# ---------------------------------------------------------------------------

async def run(db_path: str, directory: str, interval: int, serve_api: bool) -> None:
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _signal_handler(_signum, _frame) -> None:
        logger.info("Shutdown signal received")
        loop.call_soon_threadsafe(shutdown_event.set)

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    # Read side: one connection for API requests
    read_db = Database(db_path)
    read_db.init_schema()
    repo = FlowRepository(read_db)
    engine = FlowQueryEngine(
        repo,
        ranges_for_address=ConnectionRangeLookup(read_db),
        default_page_size=settings.SEARCH_DEFAULT_PAGE_SIZE,
        max_page_size=settings.SEARCH_MAX_PAGE_SIZE,
    )
    set_repository(repo)
    set_query_engine(engine)

    # Write side: ingestion owns its own connection
    write_db = Database(db_path)
    coordinator = _build_coordinator(write_db, directory)

    tasks: list[asyncio.Task] = []
    if settings.INGEST_ENABLED:
        tasks.append(asyncio.create_task(
            coordinator.run(interval, shutdown_event), name="ingest"
        ))
    else:
        logger.warning("Ingestion disabled (INGEST_ENABLED=false) — serving queries only")

    uv_server: uvicorn.Server | None = None
    if serve_api:
        uv_config = uvicorn.Config(
            create_app(),
            host=settings.API_HOST,
            port=settings.API_PORT,
            log_level="warning",
            loop="none",
        )
        uv_server = uvicorn.Server(uv_config)
        tasks.append(asyncio.create_task(uv_server.serve(), name="api"))

    logger.info(
        "FlowVault — directory=%r interval=%ds db=%r API=%s",
        directory, interval, db_path,
        f"http://{settings.API_HOST}:{settings.API_PORT}" if serve_api else "off",
    )

    await shutdown_event.wait()

    if uv_server is not None:
        uv_server.should_exit = True
    await asyncio.gather(*tasks, return_exceptions=True)
    write_db.close()
    read_db.close()
    logger.info("Final metrics — %s", METRICS.as_dict())
    logger.info("FlowVault stopped cleanly")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="FlowVault NetFlow ingestion + query service")
    parser.add_argument("--directory", default=settings.NFCAPD_DIRECTORY)
    parser.add_argument("--db-path",   default=settings.DB_PATH)
    parser.add_argument("--interval",  type=int, default=settings.SCAN_INTERVAL_SECONDS)
    parser.add_argument("--once",   action="store_true", help="run one ingestion pass and exit")
    parser.add_argument("--no-api", action="store_true", help="do not start the HTTP API")
    parser.add_argument(
        "--log-level", default=settings.LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    return parser.parse_args()


def main() -> NoReturn:
    args = _parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    if args.interval <= 0:
        print("ERROR: --interval must be a positive number of seconds", file=sys.stderr)
        sys.exit(1)

    if args.once:
        failed = run_once(args.db_path, args.directory)
        sys.exit(1 if failed else 0)

    asyncio.run(run(
        db_path=args.db_path,
        directory=args.directory,
        interval=args.interval,
        serve_api=not args.no_api,
    ))
    sys.exit(0)


if __name__ == "__main__":
    main()
