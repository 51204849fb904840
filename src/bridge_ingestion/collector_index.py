from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable, Iterator

from pydantic import BaseModel, ConfigDict, Field

from core.settings import INDEX_TIMESTAMP_FORMAT
from bridge_ingestion.domain import RemoteIndexEntry

logger = logging.getLogger(__name__)


class IndexModel(BaseModel):
    # CollecTor adds fields over time (index_created, build_revision, ...)
    model_config = ConfigDict(extra="ignore", frozen=True)


class IndexFile(IndexModel):
    path: str
    last_modified: str
    size: int | None = None


class IndexDirectory(IndexModel):
    path: str
    directories: list[IndexDirectory] = Field(default_factory=list)
    files: list[IndexFile] = Field(default_factory=list)


class CollectorIndex(IndexModel):
    """
    CollecTor index.json:

      {"path": "https://collector.torproject.org",
       "directories": [{"path": "recent",
                        "directories": [{"path": "bridge-pool-assignments",
                                         "files": [{"path": "...", "size": 1, "last_modified": "2022-04-09 00:32"}]}]}]}
    """
    path: str | None = None
    directories: list[IndexDirectory] = Field(default_factory=list)
    files: list[IndexFile] = Field(default_factory=list)


def normalize_directory(directory: str) -> str:
    return directory.strip().strip("/")


def parse_index_timestamp(value: str) -> datetime:
    return datetime.strptime(value, INDEX_TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def iter_index_files(index: CollectorIndex) -> Iterator[tuple[str, IndexFile]]:
    """Depth-first walk yielding (full relative path, file)."""
    stack: list[tuple[str, IndexDirectory | CollectorIndex]] = [("", index)]
    while stack:
        prefix, node = stack.pop()
        for f in node.files:
            yield _join(prefix, f.path), f
        for d in reversed(node.directories):
            stack.append((_join(prefix, d.path), d))


def collect_remote_entries(
    index: CollectorIndex,
    directories: Iterable[str],
    min_last_modified: datetime | None = None,
    max_documents: int | None = None,
) -> list[RemoteIndexEntry]:
    """
    Flatten the index and keep files under one of `directories` modified at or after `min_last_modified`.

    A directory prefix matches whole path segments: "recent/bridge-pool-assignments"
    does not match "recent/bridge-pool-assignments-old/x".
    When max_documents is set only the newest entries are kept.
    """
    prefixes = {normalize_directory(d) for d in directories if normalize_directory(d)}

    entries: list[RemoteIndexEntry] = []
    for path, f in iter_index_files(index):
        if not any(path.startswith(prefix + "/") for prefix in prefixes):
            continue

        try:
            last_modified = parse_index_timestamp(f.last_modified)
        except ValueError:
            logger.warning("Dropping %s: unparseable last_modified %r", path, f.last_modified)
            continue

        if min_last_modified is not None and last_modified < min_last_modified:
            continue

        entries.append(RemoteIndexEntry(path=path, last_modified=last_modified, size=f.size))

    if max_documents is not None and len(entries) > max_documents:
        entries.sort(key=lambda e: e.last_modified, reverse=True)
        entries = entries[:max_documents]

    if not entries:
        logger.warning("No files found under %s", sorted(prefixes))
    else:
        logger.info("Index lists %s matching files under %s", len(entries), sorted(prefixes))

    return entries


def _join(prefix: str, name: str) -> str:
    name = name.strip("/")
    return f"{prefix}/{name}" if prefix else name
