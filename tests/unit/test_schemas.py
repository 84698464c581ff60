"""Unit tests for directory_etl.schemas."""

from __future__ import annotations

import pytest
from pydantic import BaseModel, field_validator

from directory_etl.parsing import IndexedRow
from directory_etl.schemas import (
    ContactRow,
    DocumentRow,
    issue_kind,
    validate_rows,
)


def _one_error(data, model=ContactRow, row=1):
    accepted, rejected = validate_rows([IndexedRow(row, data)], model)
    assert accepted == []
    assert len(rejected) == 1
    return rejected[0]


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------

class TestContactRow:
    def test_valid_row_accepted(self):
        accepted, rejected = validate_rows(
            [IndexedRow(4, {"name": "Alice", "phone": "+919876543210", "sno": "1"})],
            ContactRow,
        )
        assert rejected == []
        assert accepted == [
            IndexedRow(4, {
                "name": "Alice",
                "phone": "+919876543210",
                "blood_group": None,
                "lobby": None,
                "designation": None,
            })
        ]

    def test_missing_name(self):
        err = _one_error({"phone": "9876543210"})
        assert err.kind == "invalid_type"
        assert err.field == "name"
        assert err.message == "name: Field is required"

    def test_blank_name_too_small(self):
        err = _one_error({"name": "   ", "phone": "9876543210"})
        assert err.kind == "too_small"
        assert err.message == "name: Value is too short"

    def test_long_name_too_big(self):
        err = _one_error({"name": "x" * 256, "phone": "9876543210"})
        assert err.kind == "too_big"
        assert err.field == "name"

    def test_numeric_name_invalid_type(self):
        err = _one_error({"name": 123, "phone": "9876543210"})
        assert err.kind == "invalid_type"
        assert err.message == "name: Invalid value type"

    def test_phone_pattern(self):
        err = _one_error({"name": "Alice", "phone": "call me"})
        assert err.kind == "invalid_string"
        assert err.field == "phone"
        assert err.message == "phone: Invalid format"

    def test_phone_too_many_digits(self):
        err = _one_error({"name": "Alice", "phone": "1234567890123456"})
        assert err.kind == "too_big"
        assert err.field == "phone"
        assert "15" in err.message

    def test_phone_fifteen_digits_accepted(self):
        accepted, _ = validate_rows(
            [IndexedRow(1, {"name": "Alice", "phone": "+123456789012345"})], ContactRow
        )
        assert len(accepted) == 1

    def test_blood_group_too_long(self):
        err = _one_error({"name": "Alice", "phone": "1", "blood_group": "x" * 11})
        assert err.kind == "too_big"
        assert err.field == "blood_group"

    def test_non_object_row(self):
        err = _one_error("just a string", row=7)
        assert err.row == 7
        assert err.kind == "invalid_type"
        assert err.field is None
        assert err.message == "Invalid value type"

    def test_only_first_issue_reported(self):
        err = _one_error({})
        assert err.field == "name"


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

class TestDocumentRow:
    def test_link_kept_verbatim(self):
        accepted, _ = validate_rows(
            [IndexedRow(1, {"title": "Handbook", "link": "https://example.com"})], DocumentRow
        )
        assert accepted[0].data == {
            "title": "Handbook",
            "link": "https://example.com",
            "uploaded_by": None,
        }

    def test_relative_link_invalid_format(self):
        err = _one_error({"title": "Handbook", "link": "docs/handbook.pdf"}, DocumentRow)
        assert err.kind == "invalid_format"
        assert err.field == "link"
        assert err.message == "link: Invalid document link URL"

    def test_title_too_long(self):
        err = _one_error({"title": "t" * 501, "link": "https://example.com/a"}, DocumentRow)
        assert err.kind == "too_big"
        assert err.field == "title"

    def test_missing_link(self):
        err = _one_error({"title": "Handbook"}, DocumentRow)
        assert err.kind == "invalid_type"
        assert err.field == "link"


# ---------------------------------------------------------------------------
# Issue mapping
# ---------------------------------------------------------------------------

class TestIssueKind:
    @pytest.mark.parametrize(
        "issue_type,kind",
        [
            ("string_too_short", "too_small"),
            ("string_too_long", "too_big"),
            ("string_type", "invalid_type"),
            ("missing", "invalid_type"),
            ("string_pattern_mismatch", "invalid_string"),
            ("url_parsing", "invalid_format"),
            ("url_scheme", "invalid_format"),
            ("value_error", "validation_error"),
        ],
    )
    def test_closed_table(self, issue_type, kind):
        assert issue_kind(issue_type) == kind


class TestNonSchemaFailure:
    def test_unexpected_exception_captured_and_sanitized(self):
        class Exploding(BaseModel):
            name: str

            @field_validator("name")
            @classmethod
            def _boom(cls, value):
                raise RuntimeError("lookup failed in /srv/app/lookup.py")

        accepted, rejected = validate_rows(
            [IndexedRow(1, {"name": "a"}), IndexedRow(2, {"name": "b"})], Exploding
        )
        assert accepted == []
        assert [e.row for e in rejected] == [1, 2]
        assert rejected[0].kind == "validation_error"
        assert rejected[0].message == "lookup failed in"
