"""directory_etl.report

Ingestion report builder.

Combines validation, duplicate and write errors into one list ordered by
row number and derives the summary counts returned to the caller:

    {
      "created": 500,
      "errors": [{"row": 3, "error": "...", "type": "duplicate", "field": "phone"}, ...],
      "hasErrors": true,
      "report": {
        "total": 1200, "created": 500, "failed": 700,
        "errorsByType": {...}, "errorsByField": {...}, "skippedRows": 0,
        "connectionLost": true, "partialUpload": true,
        "processedContacts": 500, "notProcessedContacts": 700,
        "message": "..."
      }
    }

The row -1 connection summary is listed in "errors" but never counted in
"failed" or the histograms.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from directory_etl.errors import RowError

if TYPE_CHECKING:
    from directory_etl.engine import EntityProfile, WriteOutcome

STATUS_CREATED = 201
STATUS_PARTIAL_CONTENT = 206


@dataclass
class IngestionResult:
    entity: str
    plural: str
    total: int
    created: int
    errors: list[RowError] = field(default_factory=list)
    skipped_rows: int = 0
    connection_lost: bool = False
    processed: int = 0
    not_processed: int = 0
    message: str | None = None

    @property
    def row_errors(self) -> list[RowError]:
        return [e for e in self.errors if not e.is_summary]

    @property
    def failed(self) -> int:
        return len(self.row_errors)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    @property
    def errors_by_type(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for err in self.row_errors:
            counts[err.kind] = counts.get(err.kind, 0) + 1
        return counts

    @property
    def errors_by_field(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for err in self.row_errors:
            if err.field:
                counts[err.field] = counts.get(err.field, 0) + 1
        return counts

    @property
    def status_code(self) -> int:
        return STATUS_PARTIAL_CONTENT if self.connection_lost else STATUS_CREATED

    def to_dict(self) -> dict[str, Any]:
        report: dict[str, Any] = {
            "total": self.total,
            "created": self.created,
            "failed": self.failed,
            "errorsByType": self.errors_by_type,
            "errorsByField": self.errors_by_field,
            "skippedRows": self.skipped_rows,
        }
        if self.connection_lost:
            label = self.plural.capitalize()
            report["connectionLost"] = True
            report["partialUpload"] = True
            report[f"processed{label}"] = self.processed
            report[f"notProcessed{label}"] = self.not_processed
        if self.message:
            report["message"] = self.message
        return {
            "created": self.created,
            "errors": [e.to_dict() for e in self.errors],
            "hasErrors": self.has_errors,
            "report": report,
        }


def build_result(
    profile: EntityProfile,
    total: int,
    skipped_rows: int,
    validation_errors: list[RowError],
    duplicate_errors: list[RowError],
    outcome: WriteOutcome,
) -> IngestionResult:
    """Merge the per-stage outputs of one ingestion call into its result."""
    errors = sorted(
        [*validation_errors, *duplicate_errors, *outcome.errors],
        key=lambda e: e.row,
    )
    failed = sum(1 for e in errors if not e.is_summary)
    if outcome.message:
        message = outcome.message
    elif errors:
        message = (
            f"Upload completed with errors. {outcome.created} {profile.plural} "
            f"written, {failed} rows failed."
        )
    else:
        message = f"Upload completed. {outcome.created} {profile.plural} written."
    return IngestionResult(
        entity=profile.entity,
        plural=profile.plural,
        total=total,
        created=outcome.created,
        errors=errors,
        skipped_rows=skipped_rows,
        connection_lost=outcome.connection_lost,
        processed=outcome.attempted,
        not_processed=outcome.not_processed,
        message=message,
    )
