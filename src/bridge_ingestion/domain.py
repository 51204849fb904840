from dataclasses import dataclass, field
from datetime import datetime
from typing import Union


@dataclass(frozen=True)
class RemoteIndexEntry:
    """One file listed in the CollecTor index."""
    path: str  # relative to the base url, e.g. recent/bridge-pool-assignments/2022-04-09-00-29-37
    last_modified: datetime  # aware UTC
    size: int | None = None


@dataclass(frozen=True)
class RawDocument:
    """Bytes of one fetched document, exactly as served."""
    path: str
    last_modified: datetime
    content: bytes


@dataclass(frozen=True)
class AssignmentRecord:
    """
    One bridge line of a bridge-pool-assignment document.

    Optional attributes are None when the key is absent from the line.
    raw_line holds the stripped line bytes; it is the input to the record digest.
    """
    fingerprint: str
    distribution_method: str
    raw_line: bytes
    transport: str | None = None
    ip: str | None = None
    blocklist: str | None = None
    state: str | None = None
    bandwidth: str | None = None
    ratio: float | None = None
    distributed: bool = False


@dataclass(frozen=True)
class SkippedLine:
    """A data line the parser refused, with the reason."""
    line_number: int
    reason: str
    raw_line: bytes


LineOutcome = Union[AssignmentRecord, SkippedLine]


@dataclass(frozen=True)
class ParsedAssignmentSet:
    """
    Parsed form of one document.

    entries preserves source line order (fingerprint -> record).
    """
    published: datetime  # aware UTC
    header: str
    entries: dict[str, AssignmentRecord]
    skipped: tuple[SkippedLine, ...] = ()


@dataclass(frozen=True)
class FetchFailure:
    path: str
    error: str


@dataclass(frozen=True)
class FetchResult:
    documents: list[RawDocument]
    failures: list[FetchFailure]


@dataclass(frozen=True)
class DocumentFailure:
    """A document (or index entry) that was skipped, and why."""
    identifier: str
    kind: str
    message: str


@dataclass(frozen=True)
class ExportResult:
    files_written: int
    records_written: int
    failures: list[DocumentFailure] = field(default_factory=list)


@dataclass(frozen=True)
class RunContext:
    """Per-run context."""
    run_id: str


@dataclass(frozen=True)
class RunSummary:
    run_id: str
    files_fetched: int
    files_parsed: int
    files_written: int
    records_written: int
    lines_skipped: int
    failures: list[DocumentFailure]

    @property
    def ok(self) -> bool:
        return not self.failures
