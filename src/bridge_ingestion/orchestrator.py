from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Iterable, Protocol

from bridge_ingestion.assignment_store import AssignmentStore
from bridge_ingestion.domain import (
    DocumentFailure,
    ExportResult,
    FetchResult,
    ParsedAssignmentSet,
    RawDocument,
    RunContext,
    RunSummary,
)
from bridge_ingestion.errors import FetchFailed
from bridge_ingestion.parse import parse_documents
from bridge_ingestion.pipeline_config import PipelineConfig

logger = logging.getLogger(__name__)


class Fetcher(Protocol):
    async def fetch(
        self,
        base_url: str,
        directories: Iterable[str],
        min_last_modified: datetime | None = None,
        max_concurrency: int = ...,
    ) -> FetchResult:
        ...


class Orchestrator:
    """
    Coordinates: fetch -> parse -> digest + export.

    Only IndexUnavailable and SchemaError abort a run. Everything scoped to a
    single document (fetch, parse, export) is collected into the summary and
    the remaining documents carry on.
    """

    def __init__(self, *, config: PipelineConfig, fetcher: Fetcher, store: AssignmentStore):
        self.config = config
        self.fetcher = fetcher
        self.store = store

    def run(self, ctx: RunContext) -> RunSummary:
        return asyncio.run(self.run_async(ctx))

    async def run_async(self, ctx: RunContext) -> RunSummary:
        cfg = self.config
        logger.info("[%s] Fetching %s from %s", ctx.run_id, cfg.directories, cfg.base_url)

        fetched = await self.fetcher.fetch(
            cfg.base_url,
            cfg.directories,
            min_last_modified=cfg.min_last_modified,
            max_concurrency=cfg.max_concurrency,
        )
        failures = [
            DocumentFailure(identifier=f.path, kind=FetchFailed.__name__, message=f.error)
            for f in fetched.failures
        ]

        parsed, parse_failures = parse_documents(fetched.documents)
        failures.extend(parse_failures)
        lines_skipped = sum(len(p.skipped) for _, p in parsed)
        logger.info("[%s] Parsed %s of %s documents (%s lines skipped)", ctx.run_id, len(parsed), len(fetched.documents), lines_skipped)

        exported = await asyncio.to_thread(self._export, parsed)
        failures.extend(exported.failures)

        summary = RunSummary(
            run_id=ctx.run_id,
            files_fetched=len(fetched.documents),
            files_parsed=len(parsed),
            files_written=exported.files_written,
            records_written=exported.records_written,
            lines_skipped=lines_skipped,
            failures=failures,
        )
        self._log_summary(summary)
        return summary

    def _export(self, parsed: list[tuple[RawDocument, ParsedAssignmentSet]]) -> ExportResult:
        # Blocking DuckDB calls; the connection lives and dies on this worker thread.
        with self.store as store:
            return store.export(parsed, clear=self.config.clear)

    @staticmethod
    def _log_summary(summary: RunSummary) -> None:
        logger.info(
            "[%s] Run complete. fetched=%s parsed=%s files_written=%s records_written=%s lines_skipped=%s failures=%s",
            summary.run_id,
            summary.files_fetched,
            summary.files_parsed,
            summary.files_written,
            summary.records_written,
            summary.lines_skipped,
            len(summary.failures),
        )
        for failure in summary.failures:
            logger.warning("[%s] %s %s: %s", summary.run_id, failure.kind, failure.identifier, failure.message)
