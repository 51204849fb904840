import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Sequence

import duckdb

from core.settings import INSERT_BATCH_SIZE, TABLE_ASSIGNMENT, TABLE_FILE
from bridge_ingestion.domain import DocumentFailure, ExportResult, ParsedAssignmentSet, RawDocument
from bridge_ingestion.errors import SchemaError, TransactionError
from bridge_ingestion.utils import file_digest, record_digest, to_naive_utc

logger = logging.getLogger(__name__)


ASSIGNMENT_COLUMNS = (
    "published",
    "digest",
    "fingerprint",
    "distribution_method",
    "transport",
    "ip",
    "blocklist",
    "bridge_pool_assignments",
    "distributed",
    "state",
    "bandwidth",
    "ratio",
)

SCHEMA_STATEMENTS = (
    f"""
    CREATE TABLE IF NOT EXISTS {TABLE_FILE} (
      published TIMESTAMP WITHOUT TIME ZONE NOT NULL,
      header    TEXT NOT NULL,
      digest    TEXT NOT NULL,
      PRIMARY KEY(digest)
    )
    """,
    f"CREATE INDEX IF NOT EXISTS bridge_pool_assignment_file_published ON {TABLE_FILE} (published)",
    f"""
    CREATE TABLE IF NOT EXISTS {TABLE_ASSIGNMENT} (
      published               TIMESTAMP WITHOUT TIME ZONE NOT NULL,
      digest                  TEXT NOT NULL,
      fingerprint             TEXT NOT NULL,
      distribution_method     TEXT NOT NULL,
      transport               TEXT,
      ip                      TEXT,
      blocklist               TEXT,
      bridge_pool_assignments TEXT REFERENCES {TABLE_FILE}(digest),
      distributed             BOOLEAN DEFAULT FALSE,
      state                   TEXT,
      bandwidth               TEXT,
      ratio                   REAL,
      PRIMARY KEY(digest)
    )
    """,
    f"CREATE INDEX IF NOT EXISTS bridge_pool_assignment_published ON {TABLE_ASSIGNMENT} (published)",
    f"CREATE INDEX IF NOT EXISTS bridge_pool_assignment_fingerprint ON {TABLE_ASSIGNMENT} (fingerprint)",
    f"""
    CREATE INDEX IF NOT EXISTS bridge_pool_assignment_fingerprint_published_desc_index
    ON {TABLE_ASSIGNMENT} (fingerprint, published DESC)
    """,
)


class AssignmentStore:
    """
    Destination store for parsed bridge pool assignments, backed by DuckDB.

    Both tables are content addressed:
      bridge_pool_assignments_file.digest = sha256(raw document bytes)
      bridge_pool_assignment.digest       = sha256(file digest bytes + raw line bytes)

    Inserts use ON CONFLICT (digest) DO NOTHING, so exporting the same
    document twice leaves the tables unchanged.

    Each document is written in its own transaction: the file row first,
    then its entries in batches of `batch_size` rows per statement.
    """

    def __init__(self, *, duckdb_path: str, auto_bootstrap: bool = True, batch_size: int = INSERT_BATCH_SIZE):
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")

        self._duckdb_path = duckdb_path
        self._auto_bootstrap = auto_bootstrap
        self.batch_size = batch_size

        self._connection: duckdb.DuckDBPyConnection | None = None

    def __enter__(self) -> "AssignmentStore":
        if self._connection is not None:
            raise RuntimeError("Store connection already open")

        if self._duckdb_path != ":memory:":
            Path(self._duckdb_path).parent.mkdir(parents=True, exist_ok=True)

        self._connection = duckdb.connect(self._duckdb_path)

        if self._auto_bootstrap:
            self.bootstrap()

        logger.debug("Store connected. duckdb=%s", self._duckdb_path)
        return self

    def __exit__(self, exc_type, exc_value, tb) -> None:
        if self._connection is None:
            return
        try:
            self._connection.close()
        finally:
            self._connection = None

    def _require_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            raise RuntimeError("Store is not connected; use it as a context manager")
        return self._connection

    # ----------------------------
    # Public API
    # ----------------------------
    def bootstrap(self) -> None:
        """Create tables and indexes if absent. No migrations."""
        conn = self._require_connection()
        try:
            for statement in SCHEMA_STATEMENTS:
                conn.execute(statement)
        except duckdb.Error as e:
            raise SchemaError(f"Failed to create destination schema: {e}") from e

    def clear(self) -> None:
        """Irreversibly delete every row of both tables. Children go first because of the foreign key."""
        conn = self._require_connection()
        logger.warning("Truncating %s and %s", TABLE_ASSIGNMENT, TABLE_FILE)
        try:
            conn.execute(f"TRUNCATE TABLE {TABLE_ASSIGNMENT}")
            conn.execute(f"TRUNCATE TABLE {TABLE_FILE}")
        except duckdb.Error as e:
            raise SchemaError(f"Failed to truncate destination tables: {e}") from e

    def export(
        self,
        documents: Sequence[tuple[RawDocument, ParsedAssignmentSet]],
        *,
        clear: bool = False,
    ) -> ExportResult:
        """
        Write every document; a document that fails is rolled back and reported,
        the others continue.

        Raises:
            SchemaError: the destination schema could not be created or cleared.
        """
        self.bootstrap()
        if clear:
            self.clear()

        files_written = 0
        records_written = 0
        failures: list[DocumentFailure] = []

        for doc, parsed in documents:
            try:
                file_written, records = self.export_document(doc, parsed)
            except TransactionError as e:
                logger.error("Export failed for %s: %s", doc.path, e)
                failures.append(DocumentFailure(identifier=doc.path, kind=e.kind, message=str(e)))
                continue

            files_written += int(file_written)
            records_written += records

        logger.info(
            "Exported %s new files and %s new assignments (%s documents failed)",
            files_written,
            records_written,
            len(failures),
        )
        return ExportResult(files_written=files_written, records_written=records_written, failures=failures)

    def export_document(self, doc: RawDocument, parsed: ParsedAssignmentSet) -> tuple[bool, int]:
        """
        Atomic: file row + all of its entries, or nothing.

        Returns (file row inserted, entry rows inserted); both are zero on a re-run.
        """
        conn = self._require_connection()
        digest = file_digest(doc.content)
        published = to_naive_utc(parsed.published)

        try:
            with self.transaction(conn) as tx:
                inserted = tx.execute(
                    f"""
                    INSERT INTO {TABLE_FILE} (published, header, digest)
                    VALUES (?, ?, ?)
                    ON CONFLICT (digest) DO NOTHING
                    RETURNING digest
                    """,
                    [published, parsed.header, digest],
                ).fetchall()

                rows = self._assignment_rows(parsed, digest, published)
                records = 0
                for start in range(0, len(rows), self.batch_size):
                    records += self._insert_batch(tx, rows[start:start + self.batch_size])
        except duckdb.Error as e:
            raise TransactionError(f"{doc.path} (file digest {digest}): {e}") from e

        logger.debug("Exported %s: file=%s, %s/%s entries new", doc.path, digest[:12], records, len(rows))
        return bool(inserted), records

    def count_rows(self) -> tuple[int, int]:
        conn = self._require_connection()
        files = conn.execute(f"SELECT COUNT(*) FROM {TABLE_FILE}").fetchone()
        records = conn.execute(f"SELECT COUNT(*) FROM {TABLE_ASSIGNMENT}").fetchone()
        return int(files[0]), int(records[0])

    # ----------------------------
    # Helpers
    # ----------------------------
    @contextmanager
    def transaction(self, conn: duckdb.DuckDBPyConnection) -> Iterator[duckdb.DuckDBPyConnection]:
        conn.execute("BEGIN TRANSACTION")
        try:
            yield conn
        except Exception:
            conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")

    @staticmethod
    def _assignment_rows(parsed: ParsedAssignmentSet, digest: str, published: Any) -> list[tuple[Any, ...]]:
        return [
            (
                published,
                record_digest(digest, record.raw_line),
                record.fingerprint,
                record.distribution_method,
                record.transport,
                record.ip,
                record.blocklist,
                digest,
                record.distributed,
                record.state,
                record.bandwidth,
                record.ratio,
            )
            for record in parsed.entries.values()
        ]

    @staticmethod
    def _insert_batch(conn: duckdb.DuckDBPyConnection, batch: list[tuple[Any, ...]]) -> int:
        """One multi-row INSERT per batch; returns the number of rows actually inserted."""
        if not batch:
            return 0

        placeholders = "(" + ", ".join("?" for _ in ASSIGNMENT_COLUMNS) + ")"
        params: list[Any] = [value for row in batch for value in row]

        inserted = conn.execute(
            f"""
            INSERT INTO {TABLE_ASSIGNMENT} ({", ".join(ASSIGNMENT_COLUMNS)})
            VALUES {", ".join(placeholders for _ in batch)}
            ON CONFLICT (digest) DO NOTHING
            RETURNING digest
            """,
            params,
        ).fetchall()
        return len(inserted)
