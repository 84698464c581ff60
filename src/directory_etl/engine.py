"""directory_etl.engine

Chunked upsert engine and the ingestion pipeline built on it.

Pipeline (one call, one batch, nothing persisted between calls):

    rows -> normalize_rows -> validate_rows -> deduplicate
         -> ChunkedUpsertEngine.write -> build_result

Write modes:
  incremental (default)
      Records are upserted by natural key in chunks of 500, one
      transaction per chunk, strictly in order.  On a chunk failure the
      error is classified:
        TRANSIENT  halt; the failed chunk and every later record are
                   reported as not processed.  Re-submitting is safe.
        ROW_LEVEL  retry the chunk row by row; each failure is reported
                   against its row.
        FATAL      escapes the chunk loop; every record not yet handled
                   is then written one at a time.
  replace_all
      Delete every row of the entity, then bulk insert the batch in one
      statement set, skipping natural-key collisions.  If the delete
      fails nothing is written and every record is reported.

Usage:
    store = DirectoryStore(conn)
    pipeline = IngestionPipeline(store)
    result = await pipeline.ingest(CONTACTS, rows)
    result.to_dict()
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from psycopg import errors as pg_errors
from pydantic import BaseModel

from directory_etl.column_map import ColumnAliases
from directory_etl.dedup import deduplicate
from directory_etl.errors import (
    KIND_CONNECTION,
    KIND_DUPLICATE,
    KIND_INSERT,
    SUMMARY_ROW,
    IngestionInputError,
    RowError,
    WriteFailure,
    classify_write_error,
)
from directory_etl.normalize import sanitize_message
from directory_etl.parsing import IndexedRow, normalize_rows, prepare_contact, prepare_document
from directory_etl.report import IngestionResult, build_result
from directory_etl.schemas import ContactRow, DocumentRow, validate_rows
from directory_etl.store import RecordStore

log = logging.getLogger(__name__)

MAX_BATCH_SIZE = 1000
DEFAULT_CHUNK_SIZE = 500
DEFAULT_CHUNK_TIMEOUT = 30.0


# ---------------------------------------------------------------------------
# Entity profiles
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EntityProfile:
    """Everything that differs between contact and document ingestion."""

    entity: str
    plural: str
    schema: type[BaseModel]
    prepare: Callable[[dict[str, Any]], dict[str, Any]]
    natural_key: Callable[[dict[str, Any]], tuple]
    key_label: str
    duplicate_field: str
    survival_fields: tuple[str, ...] = ()


CONTACTS = EntityProfile(
    entity="contact",
    plural="contacts",
    schema=ContactRow,
    prepare=prepare_contact,
    natural_key=lambda r: (r["phone"],),
    key_label="phone number",
    duplicate_field="phone",
    survival_fields=("name", "phone"),
)

DOCUMENTS = EntityProfile(
    entity="document",
    plural="documents",
    schema=DocumentRow,
    prepare=prepare_document,
    natural_key=lambda r: (r["title"], r["link"]),
    key_label="title and link",
    duplicate_field="link",
)

PROFILES = {p.entity: p for p in (CONTACTS, DOCUMENTS)}


# ---------------------------------------------------------------------------
# WriteOutcome
# ---------------------------------------------------------------------------

@dataclass
class WriteOutcome:
    """What the engine did with one batch.

    attempted counts records with a final outcome (written or failed);
    records are handled strictly in order, so it is also the index of the
    next record to write.
    """

    created: int = 0
    attempted: int = 0
    errors: list[RowError] = field(default_factory=list)
    connection_lost: bool = False
    not_processed: int = 0
    message: str | None = None


# ---------------------------------------------------------------------------
# ChunkedUpsertEngine
# ---------------------------------------------------------------------------

class ChunkedUpsertEngine:
    def __init__(
        self,
        store: RecordStore,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_timeout: float | None = DEFAULT_CHUNK_TIMEOUT,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        self._store = store
        self.chunk_size = chunk_size
        self.chunk_timeout = chunk_timeout

    async def write(
        self,
        profile: EntityProfile,
        records: list[IndexedRow],
        replace_all: bool = False,
    ) -> WriteOutcome:
        outcome = WriteOutcome()
        if replace_all:
            await self._replace_all(profile, records, outcome)
        else:
            await self._write_chunked(profile, records, outcome)
        return outcome

    # -- replace_all --------------------------------------------------------

    async def _replace_all(
        self,
        profile: EntityProfile,
        records: list[IndexedRow],
        outcome: WriteOutcome,
    ) -> None:
        try:
            await self._store.delete_all(profile.entity)
        except Exception as exc:
            if classify_write_error(exc) is WriteFailure.TRANSIENT:
                self._halt(profile, records, outcome, exc)
            else:
                self._abort_replace(profile, records, outcome, exc)
            return

        try:
            if records:
                outcome.created = await self._store.insert_many(
                    profile.entity, [r.data for r in records]
                )
            outcome.attempted = len(records)
        except Exception as exc:
            if classify_write_error(exc) is WriteFailure.TRANSIENT:
                self._halt(profile, records, outcome, exc)
                return
            log.warning(
                "Bulk insert of %d %s failed (%s); writing one at a time",
                len(records), profile.plural, exc,
            )
            await self._write_individually(profile, records, outcome)

    def _abort_replace(
        self,
        profile: EntityProfile,
        records: list[IndexedRow],
        outcome: WriteOutcome,
        exc: Exception,
    ) -> None:
        """Delete failed: nothing is written, every record is reported."""
        outcome.not_processed = len(records)
        for rec in records:
            outcome.errors.append(
                RowError(
                    row=rec.row,
                    message=f"Not processed: existing {profile.plural} could not be deleted",
                    kind=KIND_INSERT,
                )
            )
        outcome.message = (
            f"Replace-all aborted: existing {profile.plural} could not be deleted "
            f"({sanitize_message(str(exc), 'Delete failed')}). No {profile.plural} were written."
        )
        outcome.errors.append(RowError(SUMMARY_ROW, outcome.message, KIND_INSERT))
        log.error("Replace-all of %s aborted, delete failed: %s", profile.plural, exc)

    # -- incremental --------------------------------------------------------

    async def _write_chunked(
        self,
        profile: EntityProfile,
        records: list[IndexedRow],
        outcome: WriteOutcome,
    ) -> None:
        try:
            while outcome.attempted < len(records):
                start = outcome.attempted
                chunk = records[start:start + self.chunk_size]
                try:
                    await self._upsert_chunk(profile, chunk)
                except Exception as exc:
                    verdict = classify_write_error(exc)
                    if verdict is WriteFailure.TRANSIENT:
                        self._halt(profile, records, outcome, exc)
                        return
                    if verdict is WriteFailure.FATAL:
                        raise
                    log.warning(
                        "Chunk %d-%d of %s rejected (%s); retrying row by row",
                        start + 1, start + len(chunk), profile.plural, exc,
                    )
                    halted = await self._write_individually(
                        profile, records, outcome, stop=start + len(chunk)
                    )
                    if halted:
                        return
                else:
                    outcome.created += len(chunk)
                    outcome.attempted += len(chunk)
                    log.debug(
                        "Committed %s chunk %d-%d", profile.plural, start + 1, start + len(chunk)
                    )
        except Exception:
            log.exception(
                "Chunked write of %s failed unexpectedly; writing %d remaining records one at a time",
                profile.plural, len(records) - outcome.attempted,
            )
            await self._write_individually(profile, records, outcome)

    async def _upsert_chunk(self, profile: EntityProfile, chunk: list[IndexedRow]) -> None:
        call = self._store.upsert_chunk(
            profile.entity, [r.data for r in chunk], timeout=self.chunk_timeout
        )
        if self.chunk_timeout:
            await asyncio.wait_for(call, timeout=self.chunk_timeout)
        else:
            await call

    # -- row by row ---------------------------------------------------------

    async def _write_individually(
        self,
        profile: EntityProfile,
        records: list[IndexedRow],
        outcome: WriteOutcome,
        stop: int | None = None,
    ) -> bool:
        """Upsert records[outcome.attempted:stop] one at a time.

        Returns True when a transient failure halted the batch.
        """
        stop = len(records) if stop is None else stop
        while outcome.attempted < stop:
            rec = records[outcome.attempted]
            try:
                await self._store.upsert_one(profile.entity, rec.data)
            except Exception as exc:
                if classify_write_error(exc) is WriteFailure.TRANSIENT:
                    self._halt(profile, records, outcome, exc)
                    return True
                outcome.errors.append(self._row_error(profile, rec, exc))
            else:
                outcome.created += 1
            outcome.attempted += 1
        return False

    @staticmethod
    def _row_error(profile: EntityProfile, rec: IndexedRow, exc: Exception) -> RowError:
        if isinstance(exc, pg_errors.UniqueViolation):
            key = " / ".join(map(str, profile.natural_key(rec.data)))
            return RowError(
                row=rec.row,
                message=f"A record with this {profile.key_label} already exists: {key}",
                kind=KIND_DUPLICATE,
                field=profile.duplicate_field,
            )
        return RowError(
            row=rec.row,
            message=sanitize_message(str(exc), "Insert failed"),
            kind=KIND_INSERT,
        )

    # -- halt ---------------------------------------------------------------

    def _halt(
        self,
        profile: EntityProfile,
        records: list[IndexedRow],
        outcome: WriteOutcome,
        exc: BaseException,
    ) -> None:
        remaining = records[outcome.attempted:]
        outcome.connection_lost = True
        outcome.not_processed = len(remaining)
        for rec in remaining:
            outcome.errors.append(
                RowError(
                    row=rec.row,
                    message="Not processed: database connection lost before this record was written",
                    kind=KIND_CONNECTION,
                )
            )
        outcome.message = (
            f"Database connection lost after processing {outcome.attempted} of "
            f"{len(records)} {profile.plural}. {outcome.not_processed} {profile.plural} "
            f"were not processed. Re-submitting the same file is safe: existing "
            f"{profile.plural} are updated, not duplicated."
        )
        outcome.errors.append(RowError(SUMMARY_ROW, outcome.message, KIND_CONNECTION))
        log.warning(
            "Halting %s write after %d of %d records: %s",
            profile.plural, outcome.attempted, len(records), exc,
        )


# ---------------------------------------------------------------------------
# IngestionPipeline
# ---------------------------------------------------------------------------

def check_batch(rows: Any, max_batch_size: int = MAX_BATCH_SIZE) -> list[Any]:
    """Reject input that cannot be ingested at all."""
    if rows is None:
        raise IngestionInputError("Request body is required", code="MISSING_BODY")
    if not isinstance(rows, list):
        raise IngestionInputError("Request body must be an array", code="INVALID_FORMAT")
    if not rows:
        raise IngestionInputError("Batch must contain at least one record", code="EMPTY_BATCH")
    if len(rows) > max_batch_size:
        raise IngestionInputError(
            f"Maximum {max_batch_size} records per request", code="BATCH_TOO_LARGE"
        )
    return rows


class IngestionPipeline:
    def __init__(
        self,
        store: RecordStore,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_timeout: float | None = DEFAULT_CHUNK_TIMEOUT,
        aliases: ColumnAliases | None = None,
        max_batch_size: int = MAX_BATCH_SIZE,
    ) -> None:
        self.engine = ChunkedUpsertEngine(store, chunk_size, chunk_timeout)
        self._aliases = aliases
        self.max_batch_size = max_batch_size

    async def ingest(
        self,
        profile: EntityProfile,
        rows: Any,
        replace_all: bool = False,
    ) -> IngestionResult:
        rows = check_batch(rows, self.max_batch_size)
        candidates, skipped = normalize_rows(rows, profile, self._aliases)
        accepted, invalid = validate_rows(candidates, profile.schema)
        unique, duplicates = deduplicate(accepted, profile)
        log.info(
            "%s batch: %d rows, %d skipped, %d invalid, %d duplicate, %d to write",
            profile.plural, len(rows), skipped, len(invalid), len(duplicates), len(unique),
        )
        outcome = await self.engine.write(profile, unique, replace_all=replace_all)
        return build_result(
            profile,
            total=len(candidates),
            skipped_rows=skipped,
            validation_errors=invalid,
            duplicate_errors=duplicates,
            outcome=outcome,
        )
