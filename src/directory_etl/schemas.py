"""Pydantic row schemas and the record-validation stage."""

from __future__ import annotations

from typing import Any

from pydantic import (
    AnyUrl,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)
from pydantic_core import PydanticCustomError

from directory_etl.errors import (
    KIND_INVALID_FORMAT,
    KIND_INVALID_STRING,
    KIND_INVALID_TYPE,
    KIND_TOO_BIG,
    KIND_TOO_SMALL,
    KIND_VALIDATION,
    RowError,
)
from directory_etl.normalize import sanitize_message
from directory_etl.parsing import IndexedRow

PHONE_MAX_DIGITS = 15

_URL_ADAPTER = TypeAdapter(AnyUrl)


class ContactRow(BaseModel):
    """One contact as accepted for writing."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    phone: str = Field(min_length=1, max_length=20, pattern=r"^[+]?[\d\s\-()]+$")
    blood_group: str | None = Field(default=None, max_length=10)
    lobby: str | None = Field(default=None, max_length=255)
    designation: str | None = Field(default=None, max_length=255)

    @field_validator("phone")
    @classmethod
    def _phone_digit_count(cls, value: str) -> str:
        digits = sum(ch.isdigit() for ch in value)
        if digits < 1:
            raise PydanticCustomError("phone_too_short", "Phone number must contain digits")
        if digits > PHONE_MAX_DIGITS:
            raise PydanticCustomError(
                "phone_too_long",
                "Phone number must have at most {max_digits} digits",
                {"max_digits": PHONE_MAX_DIGITS},
            )
        return value


class DocumentRow(BaseModel):
    """One document link; the link string is stored as submitted."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=500)
    link: str = Field(min_length=1)
    uploaded_by: str | None = Field(default=None, max_length=255)

    @field_validator("link")
    @classmethod
    def _absolute_url(cls, value: str) -> str:
        try:
            _URL_ADAPTER.validate_python(value)
        except ValidationError:
            raise PydanticCustomError("url_parsing", "Invalid document link URL") from None
        return value


# ---------------------------------------------------------------------------
# Issue translation
# ---------------------------------------------------------------------------

ISSUE_KINDS = {
    "string_too_short": KIND_TOO_SMALL,
    "too_short": KIND_TOO_SMALL,
    "phone_too_short": KIND_TOO_SMALL,
    "string_too_long": KIND_TOO_BIG,
    "too_long": KIND_TOO_BIG,
    "phone_too_long": KIND_TOO_BIG,
    "url_too_long": KIND_TOO_BIG,
    "string_type": KIND_INVALID_TYPE,
    "missing": KIND_INVALID_TYPE,
    "model_type": KIND_INVALID_TYPE,
    "model_attributes_type": KIND_INVALID_TYPE,
    "url_type": KIND_INVALID_TYPE,
    "string_pattern_mismatch": KIND_INVALID_STRING,
}

_KIND_MESSAGES = {
    KIND_TOO_SMALL: "Value is too short",
    KIND_TOO_BIG: "Value is too long",
    KIND_INVALID_TYPE: "Invalid value type",
    KIND_INVALID_STRING: "Invalid format",
    KIND_INVALID_FORMAT: "Invalid format",
}

_CUSTOM_ISSUES = frozenset({"phone_too_short", "phone_too_long", "url_parsing"})


def issue_kind(issue_type: str) -> str:
    kind = ISSUE_KINDS.get(issue_type)
    if kind is not None:
        return kind
    if issue_type.startswith("url_"):
        return KIND_INVALID_FORMAT
    return KIND_VALIDATION


def issue_to_row_error(row: int, issue: dict[str, Any]) -> RowError:
    """Translate one pydantic error dict into a RowError."""
    issue_type = str(issue.get("type", ""))
    loc = issue.get("loc") or ()
    field = str(loc[0]) if loc else None
    kind = issue_kind(issue_type)

    if issue_type == "missing":
        text = "Field is required"
    elif issue_type in _CUSTOM_ISSUES:
        text = str(issue.get("msg"))
    else:
        text = _KIND_MESSAGES.get(kind) or sanitize_message(issue.get("msg"), "Validation failed")
    message = f"{field}: {text}" if field else text
    return RowError(row=row, message=message, kind=kind, field=field)


# ---------------------------------------------------------------------------
# Validator stage
# ---------------------------------------------------------------------------

def validate_rows(
    candidates: list[IndexedRow],
    model: type[BaseModel],
) -> tuple[list[IndexedRow], list[RowError]]:
    """Split candidates into (accepted, rejected); one error per failing row."""
    accepted: list[IndexedRow] = []
    rejected: list[RowError] = []
    for cand in candidates:
        try:
            record = model.model_validate(cand.data)
        except ValidationError as exc:
            issues = exc.errors()
            if issues:
                rejected.append(issue_to_row_error(cand.row, issues[0]))
            else:
                rejected.append(RowError(cand.row, "Validation failed", KIND_VALIDATION))
            continue
        except Exception as exc:
            rejected.append(
                RowError(cand.row, sanitize_message(str(exc), "Validation failed"), KIND_VALIDATION)
            )
            continue
        accepted.append(IndexedRow(cand.row, record.model_dump()))
    return accepted, rejected
