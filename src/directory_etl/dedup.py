"""Within-batch duplicate detection on the natural key."""

from __future__ import annotations

from typing import TYPE_CHECKING

from directory_etl.errors import KIND_DUPLICATE, RowError
from directory_etl.parsing import IndexedRow

if TYPE_CHECKING:
    from directory_etl.engine import EntityProfile


def deduplicate(
    records: list[IndexedRow],
    profile: EntityProfile,
) -> tuple[list[IndexedRow], list[RowError]]:
    """Keep the first record per natural key; reject every later repeat.

    Runs after validation, so only valid records consume a key.
    """
    seen: set[tuple] = set()
    unique: list[IndexedRow] = []
    duplicates: list[RowError] = []
    for rec in records:
        key = profile.natural_key(rec.data)
        if key in seen:
            duplicates.append(
                RowError(
                    row=rec.row,
                    message=f"Duplicate {profile.key_label} in upload: {' / '.join(map(str, key))}",
                    kind=KIND_DUPLICATE,
                    field=profile.duplicate_field,
                )
            )
            continue
        seen.add(key)
        unique.append(rec)
    return unique, duplicates
