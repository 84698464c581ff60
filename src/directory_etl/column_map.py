"""directory_etl.column_map

Column-header synonym table for bulk uploads.

Responsibilities:
  - Load and validate the YAML alias file (column_aliases.yml, packaged
    next to this module)
  - Build the per-entity lookup {canonical_header: field | IGNORED}

Usage:
    from directory_etl.column_map import IGNORED, default_aliases

    lookup = default_aliases().for_entity("contact")
    lookup["mobileno"]   # "phone"
    lookup["srno"]       # IGNORED
"""

from __future__ import annotations

import functools
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from directory_etl.normalize import canonical_header

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_ALIASES_PATH = Path(__file__).with_name("column_aliases.yml")

VALID_ENTITIES = frozenset({"contact", "document"})

REQUIRED_YAML_KEYS = frozenset({"version", "ignored", "entities"})

# Marker for headers whose column is dropped during mapping.
IGNORED = "__ignored__"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ColumnMapValidationError(ValueError):
    """Raised when the YAML alias file fails schema validation."""


# ---------------------------------------------------------------------------
# ColumnAliases dataclass
# ---------------------------------------------------------------------------

@dataclass
class ColumnAliases:
    """Parsed, validated alias table."""

    version: str
    ignored: list[str]
    entities: dict[str, dict[str, list[str]]]
    _lookups: dict[str, dict[str, str]] = field(default_factory=dict, repr=False)

    def fields(self, entity: str) -> list[str]:
        return list(self._entity(entity).keys())

    def for_entity(self, entity: str) -> dict[str, str]:
        """Return {canonical_header: field} for one entity, ignored markers included."""
        lookup = self._lookups.get(entity)
        if lookup is None:
            lookup = {}
            for marker in self.ignored:
                key = canonical_header(marker)
                if key:
                    lookup[key] = IGNORED
            for fld, aliases in self._entity(entity).items():
                for alias in [fld, *aliases]:
                    key = canonical_header(alias)
                    if key:
                        lookup[key] = fld
            self._lookups[entity] = lookup
        return lookup

    def _entity(self, entity: str) -> dict[str, list[str]]:
        try:
            return self.entities[entity]
        except KeyError:
            raise ValueError(f"unknown entity: {entity!r}") from None


# ---------------------------------------------------------------------------
# Loader + validator
# ---------------------------------------------------------------------------

def load_column_aliases(yaml_path: Path) -> ColumnAliases:
    """Load, validate, and return the alias table from a YAML file.

    Raises:
        ColumnMapValidationError: If the file does not match the schema.
        FileNotFoundError: If the YAML file does not exist.
    """
    raw = yaml_path.read_text(encoding="utf-8")
    data: dict[str, Any] = yaml.safe_load(raw)
    validate_column_aliases(data)
    return ColumnAliases(
        version=str(data["version"]),
        ignored=[str(m) for m in data.get("ignored") or []],
        entities={
            entity: {
                fld: [str(a) for a in (aliases or [])]
                for fld, aliases in fields.items()
            }
            for entity, fields in data["entities"].items()
        },
    )


def validate_column_aliases(data: dict[str, Any]) -> None:
    """Raise ColumnMapValidationError if data does not match the alias schema.

    Validates:
      - Required top-level keys present
      - entity names are known, each with at least one field
      - within one entity no header maps to two fields or to a field and
        an ignored marker
    """
    if not isinstance(data, dict):
        raise ColumnMapValidationError("YAML root must be a mapping.")

    missing_keys = REQUIRED_YAML_KEYS - set(data.keys())
    if missing_keys:
        raise ColumnMapValidationError(f"Missing required YAML keys: {sorted(missing_keys)}")

    ignored = data.get("ignored") or []
    if not isinstance(ignored, list):
        raise ColumnMapValidationError("'ignored' must be a list of headers.")
    ignored_keys = {canonical_header(m) for m in ignored} - {None}

    entities = data.get("entities")
    if not isinstance(entities, dict) or not entities:
        raise ColumnMapValidationError("'entities' must be a non-empty mapping.")

    for entity, fields in entities.items():
        if entity not in VALID_ENTITIES:
            raise ColumnMapValidationError(
                f"Invalid entity '{entity}'. Must be one of {sorted(VALID_ENTITIES)}."
            )
        if not isinstance(fields, dict) or not fields:
            raise ColumnMapValidationError(f"Entity '{entity}' must map fields to aliases.")

        owner: dict[str, str] = {}
        for fld, aliases in fields.items():
            if aliases is not None and not isinstance(aliases, list):
                raise ColumnMapValidationError(
                    f"Aliases for '{entity}.{fld}' must be a list."
                )
            for alias in [fld, *(aliases or [])]:
                key = canonical_header(alias)
                if key is None:
                    raise ColumnMapValidationError(f"Blank alias under '{entity}.{fld}'.")
                if key in ignored_keys:
                    raise ColumnMapValidationError(
                        f"Alias '{alias}' of '{entity}.{fld}' is also an ignored marker."
                    )
                prev = owner.setdefault(key, fld)
                if prev != fld:
                    raise ColumnMapValidationError(
                        f"Alias '{alias}' maps to both '{entity}.{prev}' and '{entity}.{fld}'."
                    )


@functools.lru_cache(maxsize=1)
def default_aliases() -> ColumnAliases:
    """Alias table shipped with the package, loaded once per process."""
    return load_column_aliases(DEFAULT_ALIASES_PATH)
