import logging
import re
from datetime import datetime, timezone
from typing import Iterable

from bridge_ingestion.domain import (
    AssignmentRecord,
    DocumentFailure,
    LineOutcome,
    ParsedAssignmentSet,
    RawDocument,
    SkippedLine,
)
from bridge_ingestion.errors import HeaderMalformed, HeaderMissing, ParseError

logger = logging.getLogger(__name__)

HEADER_KEYWORD = "bridge-pool-assignment"
ANNOTATION_PREFIX = b"@"
HEADER_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

FINGERPRINT_RE = re.compile(r"^[0-9a-fA-F]{40}$")

STRING_ATTRIBUTES = {"transport", "ip", "blocklist", "state", "bandwidth"}


def parse_documents(documents: Iterable[RawDocument]) -> tuple[list[tuple[RawDocument, ParsedAssignmentSet]], list[DocumentFailure]]:
    """Parse a batch. A document that fails to parse is reported, not raised."""
    parsed: list[tuple[RawDocument, ParsedAssignmentSet]] = []
    failures: list[DocumentFailure] = []

    for doc in documents:
        try:
            parsed.append((doc, parse_document(doc)))
        except ParseError as e:
            logger.error("Failed to parse %s: %s", doc.path, e)
            failures.append(DocumentFailure(identifier=doc.path, kind=e.kind, message=str(e)))

    return parsed, failures


def parse_document(doc: RawDocument) -> ParsedAssignmentSet:
    """
    Parse one bridge-pool-assignment document.

    Leading "@type" annotation lines are ignored. The first other non-empty
    line must be the header. Every following non-empty line is a bridge line;
    bad bridge lines are skipped and reported in ParsedAssignmentSet.skipped,
    they never fail the document.

    Raises:
        HeaderMissing: the document is empty or does not start with the header keyword.
        HeaderMalformed: the header keyword is present but the timestamp is not.
    """
    lines = [(number, raw.strip()) for number, raw in enumerate(doc.content.split(b"\n"), start=1)]
    lines = [(number, raw) for number, raw in lines if raw]
    while lines and lines[0][1].startswith(ANNOTATION_PREFIX):
        lines.pop(0)

    if not lines:
        raise HeaderMissing(f"{doc.path}: no header line found")

    header_number, header_line = lines[0]
    published = parse_header_line(_decode(header_line), path=doc.path, line_number=header_number)

    entries: dict[str, AssignmentRecord] = {}
    skipped: list[SkippedLine] = []

    for number, raw in lines[1:]:
        outcome = parse_bridge_line(raw, line_number=number)

        if isinstance(outcome, SkippedLine):
            logger.warning("%s line %s skipped: %s", doc.path, number, outcome.reason)
            skipped.append(outcome)
            continue

        if outcome.fingerprint in entries:
            logger.warning("%s line %s repeats fingerprint %s; keeping the later line", doc.path, number, outcome.fingerprint)
        entries[outcome.fingerprint] = outcome

    logger.debug("Parsed %s: %s entries, %s skipped lines", doc.path, len(entries), len(skipped))
    return ParsedAssignmentSet(published=published, header=HEADER_KEYWORD, entries=entries, skipped=tuple(skipped))


def parse_header_line(line: str, *, path: str = "", line_number: int = 1) -> datetime:
    parts = line.split()
    if not parts or parts[0] != HEADER_KEYWORD:
        raise HeaderMissing(f"{path}: line {line_number} is not a '{HEADER_KEYWORD}' header: {line[:80]!r}")

    if len(parts) != 3:
        raise HeaderMalformed(f"{path}: expected '{HEADER_KEYWORD} YYYY-MM-DD HH:MM:SS', got {line!r}")

    try:
        published = datetime.strptime(f"{parts[1]} {parts[2]}", HEADER_TIMESTAMP_FORMAT)
    except ValueError as e:
        raise HeaderMalformed(f"{path}: invalid header timestamp in {line!r}: {e}") from e

    return published.replace(tzinfo=timezone.utc)


def parse_bridge_line(raw_line: bytes, *, line_number: int) -> LineOutcome:
    """`<fingerprint> <distribution_method>[ key=value ...]` -> record, or the reason it was refused."""
    tokens = _decode(raw_line).split()

    fingerprint = tokens[0] if tokens else ""
    if not FINGERPRINT_RE.match(fingerprint):
        return SkippedLine(line_number=line_number, reason=f"invalid fingerprint {fingerprint[:48]!r}", raw_line=raw_line)

    if len(tokens) < 2:
        return SkippedLine(line_number=line_number, reason="missing distribution method", raw_line=raw_line)

    attributes: dict[str, object] = {}
    for token in tokens[2:]:
        key, sep, value = token.partition("=")
        if not sep:
            continue

        if key in STRING_ATTRIBUTES:
            attributes[key] = value
        elif key == "ratio":
            attributes["ratio"] = _parse_ratio(value)
        elif key == "distributed":
            attributes["distributed"] = value.lower() == "true"

    return AssignmentRecord(
        fingerprint=fingerprint,
        distribution_method=tokens[1],
        raw_line=raw_line,
        **attributes,  # type: ignore[arg-type]
    )


def _parse_ratio(value: str) -> float | None:
    try:
        return float(value)
    except ValueError:
        return None


def _decode(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace")
