import argparse
import logging
import sys
import uuid
from datetime import datetime
from logging.config import dictConfig
from pathlib import Path

from core.settings import CONFIG_PATH, LOGGING_CONFIG
from bridge_ingestion.assignment_store import AssignmentStore
from bridge_ingestion.domain import RunContext
from bridge_ingestion.errors import IndexUnavailable, SchemaError
from bridge_ingestion.fetch import CollectorFetcher
from bridge_ingestion.orchestrator import Orchestrator
from bridge_ingestion.pipeline_config import PipelineConfig, load_pipeline_config

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PARTIAL = 1
EXIT_FATAL = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bridge-ingest",
        description="Fetch Tor bridge pool assignment documents from CollecTor and store them in DuckDB.",
    )
    parser.add_argument("--config", type=Path, default=None, help=f"YAML config file (default: {CONFIG_PATH} if present)")
    parser.add_argument("--base-url", default=None, help="CollecTor base URL")
    parser.add_argument("--dirs", default=None, help="Comma-separated directories, e.g. recent/bridge-pool-assignments")
    parser.add_argument("--db-path", default=None, help="DuckDB database file")
    parser.add_argument("--min-last-modified", type=datetime.fromisoformat, default=None, help="ISO timestamp, UTC when no offset is given")
    parser.add_argument("--max-concurrency", type=int, default=None)
    parser.add_argument("--max-documents", type=int, default=None, help="Only fetch the newest N documents")
    parser.add_argument("--clear", action="store_true", help="Truncate both tables before exporting (irreversible)")
    return parser


def resolve_config(args: argparse.Namespace) -> PipelineConfig:
    config_path = args.config or (CONFIG_PATH if CONFIG_PATH.exists() else None)
    config = load_pipeline_config(config_path) if config_path else PipelineConfig()

    database = None
    if args.db_path:
        database = {**config.database.model_dump(), "path": args.db_path}

    return config.with_overrides(
        base_url=args.base_url,
        directories=args.dirs.split(",") if args.dirs else None,
        min_last_modified=args.min_last_modified,
        max_concurrency=args.max_concurrency,
        max_documents=args.max_documents,
        clear=True if args.clear else None,
        database=database,
    )


def main(argv: list[str] | None = None) -> int:
    dictConfig(LOGGING_CONFIG)
    args = build_parser().parse_args(argv)

    try:
        config = resolve_config(args)
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        return EXIT_FATAL

    logger.info("Starting bridge pool assignment ingestion from %s", config.base_url)

    orchestrator = Orchestrator(
        config=config,
        fetcher=CollectorFetcher(timeout_seconds=config.request_timeout_seconds, max_documents=config.max_documents),
        store=AssignmentStore(duckdb_path=config.database.path, batch_size=config.database.batch_size),
    )

    try:
        summary = orchestrator.run(RunContext(run_id=uuid.uuid4().hex[:12]))
    except (IndexUnavailable, SchemaError) as e:
        logger.error("Run aborted (%s): %s", e.kind, e)
        return EXIT_FATAL

    return EXIT_OK if summary.ok else EXIT_PARTIAL


if __name__ == "__main__":
    sys.exit(main())
