"""End-to-end runs: fake CollecTor over httpx.MockTransport, DuckDB file in tmp_path."""

import asyncio
import threading

import httpx
import pytest

from bridge_ingestion.assignment_store import AssignmentStore
from bridge_ingestion.domain import ExportResult, RunContext
from bridge_ingestion.errors import IndexUnavailable
from bridge_ingestion.fetch import CollectorFetcher
from bridge_ingestion.orchestrator import Orchestrator
from bridge_ingestion.pipeline_config import DatabaseConfig, PipelineConfig
from conftest import BASE_URL, FP1, FP2, POOL_DIR

GOOD = (
    "bridge-pool-assignment 2022-04-09 00:29:37\n"
    f"{FP1} email transport=obfs4\n"
    "not-a-fingerprint email\n"
    f"{FP2} https\n"
).encode()
GOOD_TOO = f"bridge-pool-assignment 2022-04-10 00:29:37\n{FP1} email transport=obfs4\n".encode()
BAD_HEADER = b"bridge-pool-assignment not-a-date\n"


@pytest.fixture
def collector(index_factory):
    index = index_factory(
        {
            "good": "2022-04-09 00:32",
            "good-too": "2022-04-10 00:32",
            "bad-header": "2022-04-10 00:32",
            "gone": "2022-04-10 00:32",
        }
    )
    bodies = {"good": GOOD, "good-too": GOOD_TOO, "bad-header": BAD_HEADER}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/index/index.json":
            return httpx.Response(200, json=index)
        name = request.url.path.rsplit("/", 1)[1]
        if name in bodies:
            return httpx.Response(200, content=bodies[name])
        return httpx.Response(404)

    return handler


def run_pipeline(handler, db_path, **overrides):
    config = PipelineConfig(
        base_url=BASE_URL,
        directories=[POOL_DIR],
        max_concurrency=2,
        database=DatabaseConfig(path=str(db_path)),
        **overrides,
    )

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            orchestrator = Orchestrator(
                config=config,
                fetcher=CollectorFetcher(client=client),
                store=AssignmentStore(duckdb_path=config.database.path),
            )
            return await orchestrator.run_async(RunContext(run_id="test"))

    return asyncio.run(run())


def table_counts(db_path):
    with AssignmentStore(duckdb_path=str(db_path)) as store:
        return store.count_rows()


def test_full_run_collects_failures(collector, tmp_path):
    db_path = tmp_path / "bpa.duckdb"
    summary = run_pipeline(collector, db_path)

    assert summary.files_fetched == 3
    assert summary.files_parsed == 2
    assert summary.files_written == 2
    assert summary.records_written == 3
    assert summary.lines_skipped == 1
    assert not summary.ok
    assert sorted((f.identifier.rsplit("/", 1)[1], f.kind) for f in summary.failures) == [
        ("bad-header", "HeaderMalformed"),
        ("gone", "FetchFailed"),
    ]
    assert table_counts(db_path) == (2, 3)


def test_rerun_is_idempotent(collector, tmp_path):
    db_path = tmp_path / "bpa.duckdb"
    run_pipeline(collector, db_path)
    run_pipeline(collector, db_path)
    assert table_counts(db_path) == (2, 3)


def test_clear_replaces_previous_state(collector, tmp_path, index_factory):
    db_path = tmp_path / "bpa.duckdb"
    run_pipeline(collector, db_path)

    only_new = index_factory({"good-too": "2022-04-10 00:32"})

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/index/index.json":
            return httpx.Response(200, json=only_new)
        return httpx.Response(200, content=GOOD_TOO)

    summary = run_pipeline(handler, db_path, clear=True)

    assert summary.ok
    assert table_counts(db_path) == (1, 1)


def test_index_unavailable_aborts_without_touching_store(tmp_path):
    db_path = tmp_path / "bpa.duckdb"

    with pytest.raises(IndexUnavailable):
        run_pipeline(lambda request: httpx.Response(503), db_path, clear=True)

    assert not db_path.exists()


class RecordingStore:
    """Stands in for AssignmentStore and notes which thread exported."""

    def __init__(self):
        self.export_thread = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return None

    def export(self, documents, *, clear=False):
        self.export_thread = threading.get_ident()
        return ExportResult(files_written=len(documents), records_written=0)


def test_export_runs_off_the_event_loop_thread(collector):
    config = PipelineConfig(base_url=BASE_URL, directories=[POOL_DIR])
    store = RecordingStore()

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(collector)) as client:
            orchestrator = Orchestrator(config=config, fetcher=CollectorFetcher(client=client), store=store)
            summary = await orchestrator.run_async(RunContext(run_id="test"))
            return summary, threading.get_ident()

    summary, loop_thread = asyncio.run(run())

    assert summary.files_written == 2
    assert store.export_thread is not None
    assert store.export_thread != loop_thread
