"""directory_etl.errors

Error vocabulary for the ingestion pipeline.

  IngestionInputError: the only exception that aborts an ingestion call
      (missing, malformed or oversized input).
  RowError: one per-row problem; collected, never raised.
  WriteFailure: the classifier's verdict on a store exception,
      deciding halt vs. row-by-row fallback.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass
from typing import Any

import psycopg

from directory_etl.store import (
    TRANSIENT_MESSAGE_SIGNATURES,
    TRANSIENT_SQLSTATE_CLASSES,
    TRANSIENT_SQLSTATES,
)

# Report vocabulary
KIND_VALIDATION = "validation_error"
KIND_TOO_SMALL = "too_small"
KIND_TOO_BIG = "too_big"
KIND_INVALID_TYPE = "invalid_type"
KIND_INVALID_STRING = "invalid_string"
KIND_INVALID_FORMAT = "invalid_format"
KIND_DUPLICATE = "duplicate"
KIND_INSERT = "insert_error"
KIND_CONNECTION = "connection_error"

SUMMARY_ROW = -1


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class IngestionInputError(ValueError):
    """Raised when the submitted batch cannot be ingested at all."""

    def __init__(self, message: str, code: str = "INVALID_FORMAT") -> None:
        super().__init__(message)
        self.code = code


# ---------------------------------------------------------------------------
# RowError
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RowError:
    row: int
    message: str
    kind: str
    field: str | None = None

    @property
    def is_summary(self) -> bool:
        return self.row == SUMMARY_ROW

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"row": self.row, "error": self.message, "type": self.kind}
        if self.field:
            out["field"] = self.field
        return out


# ---------------------------------------------------------------------------
# Write failure classification
# ---------------------------------------------------------------------------

class WriteFailure(enum.Enum):
    TRANSIENT = "transient"
    ROW_LEVEL = "row_level"
    FATAL = "fatal"


def _has_transient_signature(exc: BaseException) -> bool:
    text = str(exc).lower()
    return any(sig in text for sig in TRANSIENT_MESSAGE_SIGNATURES)


def classify_write_error(exc: BaseException) -> WriteFailure:
    """Decide how the engine reacts to an exception raised by a store write.

    TRANSIENT: connection or timeout class; halt, the caller re-submits.
    ROW_LEVEL: the store rejected specific values: retry row by row.
    FATAL: anything else, not anticipated by the per-chunk handling.
    """
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError, ConnectionError)):
        return WriteFailure.TRANSIENT
    if isinstance(exc, psycopg.Error):
        state = exc.sqlstate or ""
        if state[:2] in TRANSIENT_SQLSTATE_CLASSES or state in TRANSIENT_SQLSTATES:
            return WriteFailure.TRANSIENT
        if isinstance(exc, (psycopg.IntegrityError, psycopg.DataError)):
            return WriteFailure.ROW_LEVEL
        if isinstance(exc, (psycopg.OperationalError, psycopg.InterfaceError)) and (
            _has_transient_signature(exc)
        ):
            return WriteFailure.TRANSIENT
        return WriteFailure.FATAL
    if _has_transient_signature(exc):
        return WriteFailure.TRANSIENT
    return WriteFailure.FATAL
