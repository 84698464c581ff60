"""directory_etl.shared

CLI-side helpers shared by every mode: RejectWriter for per-row problems
and the JSON run report.
"""

from __future__ import annotations

import csv
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from directory_etl.errors import RowError

DEFAULT_REPORT_DIR = Path("./artifacts/reports")


# ---------------------------------------------------------------------------
# RejectWriter
# ---------------------------------------------------------------------------

class RejectWriter:
    """Lazy-open CSV writer for rejected rows."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh = None
        self._writer = None
        self.count = 0

    def _open(self, fieldnames: list[str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = open(self._path, "w", newline="", encoding="utf-8")
        self._writer = csv.DictWriter(
            self._fh, fieldnames=fieldnames + ["_reject_reason"], extrasaction="ignore"
        )
        self._writer.writeheader()

    def write(self, row: dict[str, Any], reason: str) -> None:
        if self._fh is None:
            self._open(list(row.keys()))
        out = dict(row)
        out["_reject_reason"] = reason
        self._writer.writerow(out)
        self._fh.flush()
        self.count += 1

    def write_errors(self, errors: list[RowError], source_rows: list[Any]) -> int:
        """Write one reject line per row error, joined to its submitted row.

        The header is the union of every rejected row's keys, so uploads
        whose rows carry different keys keep all submitted values.  A
        submitted row that is not an object lands in the _value column.
        The row -1 summary has no source row and is skipped.
        """
        lines: list[tuple[dict[str, Any], str]] = []
        for err in errors:
            if err.is_summary:
                continue
            source = source_rows[err.row - 1] if 0 < err.row <= len(source_rows) else None
            row: dict[str, Any] = {"_row": err.row, "_type": err.kind, "_field": err.field or ""}
            if isinstance(source, dict):
                row.update({str(k): v for k, v in source.items()})
            elif source is not None:
                row["_value"] = json.dumps(source, default=str)
            lines.append((row, err.message))
        if not lines:
            return self.count

        if self._fh is None:
            fieldnames: dict[str, None] = {}
            for row, _ in lines:
                fieldnames.update(dict.fromkeys(row))
            self._open(list(fieldnames))
        for row, reason in lines:
            self.write(row, reason)
        return self.count

    def close(self) -> None:
        if self._fh:
            self._fh.close()

    @property
    def path(self) -> Path:
        return self._path


# ---------------------------------------------------------------------------
# Report writer
# ---------------------------------------------------------------------------

def write_run_report(
    run_id: str,
    started_at: str,
    mode: str,
    source_paths: dict[str, str | None],
    result: dict[str, Any],
    report_dir: Path = DEFAULT_REPORT_DIR,
) -> Path:
    report = {
        "run_id": run_id,
        "mode": mode,
        "started_at": started_at,
        "finished_at": datetime.now(timezone.utc).isoformat(),
        **source_paths,
        "result": result,
    }
    report_path = report_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
