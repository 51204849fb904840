import asyncio
import logging
from datetime import datetime
from typing import Iterable

import httpx
from pydantic import ValidationError

from core.settings import DEFAULT_MAX_CONCURRENCY, DEFAULT_REQUEST_TIMEOUT_SECONDS, INDEX_RELPATH
from bridge_ingestion.collector_index import CollectorIndex, collect_remote_entries
from bridge_ingestion.domain import FetchFailure, FetchResult, RawDocument, RemoteIndexEntry
from bridge_ingestion.errors import FetchFailed, IndexUnavailable

logger = logging.getLogger(__name__)


def normalize_url(url: str) -> str:
    return url if url.endswith("/") else url + "/"


class CollectorFetcher:
    """
    Retrieves documents listed in a CollecTor index.

    The httpx.AsyncClient may be injected (tests pass one built on
    httpx.MockTransport); otherwise one is opened per fetch() call and closed
    afterwards.
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        max_documents: int | None = None,
    ):
        self._client = client
        self.timeout_seconds = timeout_seconds
        self.max_documents = max_documents

    async def fetch(
        self,
        base_url: str,
        directories: Iterable[str],
        min_last_modified: datetime | None = None,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ) -> FetchResult:
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")

        base_url = normalize_url(base_url)

        if self._client is not None:
            return await self._fetch_with(self._client, base_url, directories, min_last_modified, max_concurrency)

        async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_seconds), follow_redirects=True) as client:
            return await self._fetch_with(client, base_url, directories, min_last_modified, max_concurrency)

    async def _fetch_with(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        directories: Iterable[str],
        min_last_modified: datetime | None,
        max_concurrency: int,
    ) -> FetchResult:
        index = await self.fetch_index(client, base_url)
        entries = collect_remote_entries(index, directories, min_last_modified, self.max_documents)

        semaphore = asyncio.Semaphore(max_concurrency)
        results = await asyncio.gather(
            *(self._fetch_gated(client, semaphore, base_url, entry) for entry in entries)
        )

        documents: list[RawDocument] = []
        failures: list[FetchFailure] = []
        for result in results:
            if isinstance(result, RawDocument):
                documents.append(result)
            else:
                failures.append(result)

        logger.info("Fetched %s files successfully, %s errors encountered", len(documents), len(failures))
        return FetchResult(documents=documents, failures=failures)

    async def fetch_index(self, client: httpx.AsyncClient, base_url: str) -> CollectorIndex:
        index_url = normalize_url(base_url) + INDEX_RELPATH
        logger.info("Fetching index %s", index_url)

        try:
            resp = await client.get(index_url)
            resp.raise_for_status()
            return CollectorIndex.model_validate_json(resp.content)
        except httpx.HTTPError as e:
            raise IndexUnavailable(f"Failed to get {index_url}: {e}") from e
        except ValidationError as e:
            raise IndexUnavailable(f"Unexpected index format at {index_url}: {e}") from e

    async def _fetch_gated(
        self,
        client: httpx.AsyncClient,
        semaphore: asyncio.Semaphore,
        base_url: str,
        entry: RemoteIndexEntry,
    ) -> RawDocument | FetchFailure:
        async with semaphore:
            try:
                doc = await self.fetch_document(client, base_url, entry)
            except FetchFailed as e:
                logger.error("Failed to fetch %s: %s", entry.path, e.reason)
                return FetchFailure(path=entry.path, error=e.reason)

        logger.debug("Fetched content for %s (%s bytes)", entry.path, len(doc.content))
        return doc

    async def fetch_document(self, client: httpx.AsyncClient, base_url: str, entry: RemoteIndexEntry) -> RawDocument:
        file_url = normalize_url(base_url) + entry.path

        try:
            resp = await client.get(file_url)
        except httpx.TimeoutException as e:
            raise FetchFailed(entry.path, f"timeout: {e!r}") from e
        except httpx.HTTPError as e:
            raise FetchFailed(entry.path, f"request failed: {e!r}") from e
        except httpx.InvalidURL as e:
            raise FetchFailed(entry.path, f"invalid url: {e}") from e

        if not resp.is_success:
            raise FetchFailed(entry.path, f"HTTP {resp.status_code}")

        if not resp.content:
            raise FetchFailed(entry.path, "empty body")

        return RawDocument(path=entry.path, last_modified=entry.last_modified, content=resp.content)
