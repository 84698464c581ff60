"""directory_etl.parsing

Format normalization: uploaded bytes or a parsed JSON array in, candidate
rows with canonical field names out.

  read_upload     -> list of raw row objects (csv / txt / xlsx / xlsm / json)
  map_columns     -> one row with headers mapped through the alias table
  prepare_contact / prepare_document -> value-level cleanup per entity
  normalize_rows  -> (candidates, dropped) with 1-based row positions

Rows missing a survival field (name or phone, for contacts) are dropped
here without an error entry; only their count is kept.
"""

from __future__ import annotations

import csv
import io
import json
import logging
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from directory_etl.column_map import IGNORED, ColumnAliases, default_aliases
from directory_etl.errors import IngestionInputError
from directory_etl.normalize import (
    canonical_header,
    cell_text,
    normalize_blood_group,
    normalize_phone,
    normalize_space,
    trim,
)

if TYPE_CHECKING:
    from directory_etl.engine import EntityProfile

log = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 10 * 1024 * 1024

DELIMITED_EXTENSIONS = frozenset({".csv", ".txt"})
WORKBOOK_EXTENSIONS = frozenset({".xlsx", ".xlsm"})
JSON_EXTENSIONS = frozenset({".json"})


@dataclass(frozen=True)
class IndexedRow:
    """A row tagged with its 1-based position in the submitted array."""

    row: int
    data: Any


# ---------------------------------------------------------------------------
# Readers
# ---------------------------------------------------------------------------

def read_upload(content: bytes | None, filename: str | None) -> list[Any]:
    """Parse an uploaded file into a list of raw row objects.

    Raises:
        IngestionInputError: MISSING_FILE, FILE_TOO_LARGE, UNSUPPORTED_FILE
            or INVALID_FORMAT.
    """
    if not content:
        raise IngestionInputError("No file uploaded", code="MISSING_FILE")
    if len(content) > MAX_UPLOAD_BYTES:
        raise IngestionInputError(
            f"File exceeds the {MAX_UPLOAD_BYTES // (1024 * 1024)}MB upload limit",
            code="FILE_TOO_LARGE",
        )

    ext = Path(filename or "").suffix.lower()
    if ext in DELIMITED_EXTENSIONS:
        return read_delimited(content)
    if ext in WORKBOOK_EXTENSIONS:
        return read_workbook(content)
    if ext in JSON_EXTENSIONS:
        return read_json(content)
    raise IngestionInputError(
        "Only CSV and Excel files (.csv, .xlsx) or JSON arrays are supported",
        code="UNSUPPORTED_FILE",
    )


def read_delimited(content: bytes) -> list[dict[str, Any]]:
    """First line is the header; blank lines skipped; cells trimmed."""
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise IngestionInputError("File is not valid UTF-8 text") from None

    reader = csv.DictReader(io.StringIO(text, newline=""))
    rows: list[dict[str, Any]] = []
    for raw in reader:
        row = {
            (k.strip() if isinstance(k, str) else k): (v.strip() if isinstance(v, str) else v)
            for k, v in raw.items()
            if k is not None
        }
        if not any(v for v in row.values()):
            continue
        rows.append(row)
    return rows


def read_workbook(content: bytes) -> list[dict[str, Any]]:
    """Read the first worksheet; a workbook without sheets yields []."""
    try:
        wb = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as exc:
        raise IngestionInputError(f"Unreadable spreadsheet: {exc}") from None

    try:
        if not wb.worksheets:
            return []
        ws = wb.worksheets[0]
        cells = ws.iter_rows(values_only=True)
        header = next(cells, None)
        if header is None:
            return []
        headers = [cell_text(h) for h in header]
        rows: list[dict[str, Any]] = []
        for values in cells:
            row = {h: v for h, v in zip(headers, values) if h is not None}
            if all(v is None or (isinstance(v, str) and not v.strip()) for v in row.values()):
                continue
            rows.append(row)
        return rows
    finally:
        wb.close()


def read_json(content: bytes) -> list[Any]:
    try:
        data = json.loads(content.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise IngestionInputError(f"Invalid JSON body: {exc}") from None
    if not isinstance(data, list):
        raise IngestionInputError("Request body must be an array")
    return data


# ---------------------------------------------------------------------------
# Column mapping
# ---------------------------------------------------------------------------

def map_columns(row: dict[Any, Any], lookup: dict[str, str]) -> dict[str, Any]:
    """Map one row's headers to canonical field names.

    Unknown headers pass through (stripped); ignored and blank headers are
    dropped; string cells are trimmed with '' becoming None.  When two
    headers land on the same field the first non-empty value wins.
    """
    out: dict[str, Any] = {}
    for header, value in row.items():
        key = canonical_header(header)
        if key is None:
            continue
        fld = lookup.get(key, str(header).strip())
        if fld == IGNORED:
            continue
        if isinstance(value, str):
            value = trim(value)
        if out.get(fld) is None:
            out[fld] = value
    return out


# ---------------------------------------------------------------------------
# Row preparers
# ---------------------------------------------------------------------------

def _text(value: Any) -> Any:
    if isinstance(value, str):
        return normalize_space(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return cell_text(value)
    return value


def prepare_contact(row: dict[str, Any]) -> dict[str, Any]:
    out = dict(row)
    for fld in ("name", "lobby", "designation"):
        if fld in out:
            out[fld] = _text(out[fld])
    if "phone" in out:
        out["phone"] = normalize_phone(out["phone"])
    if "blood_group" in out:
        out["blood_group"] = normalize_blood_group(out["blood_group"])
    return out


def prepare_document(row: dict[str, Any]) -> dict[str, Any]:
    out = dict(row)
    for fld in ("title", "uploaded_by"):
        if fld in out:
            out[fld] = _text(out[fld])
    if isinstance(out.get("link"), str):
        out["link"] = trim(out["link"])
    return out


# ---------------------------------------------------------------------------
# Normalizer stage
# ---------------------------------------------------------------------------

def normalize_rows(
    rows: list[Any],
    profile: EntityProfile,
    aliases: ColumnAliases | None = None,
) -> tuple[list[IndexedRow], int]:
    """Return (candidates, dropped_count) for one submitted batch."""
    lookup = (aliases or default_aliases()).for_entity(profile.entity)
    candidates: list[IndexedRow] = []
    dropped = 0
    for index, raw in enumerate(rows, start=1):
        if not isinstance(raw, dict):
            candidates.append(IndexedRow(index, raw))
            continue
        prepared = profile.prepare(map_columns(raw, lookup))
        if any(prepared.get(f) in (None, "") for f in profile.survival_fields):
            dropped += 1
            continue
        candidates.append(IndexedRow(index, prepared))
    if dropped:
        log.info("Dropped %d %s rows missing %s", dropped, profile.entity,
                 "/".join(profile.survival_fields))
    return candidates, dropped
