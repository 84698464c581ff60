"""Unit tests for directory_etl.normalize."""

import pytest

from directory_etl.normalize import (
    UNKNOWN_BLOOD_GROUP,
    canonical_header,
    cell_text,
    normalize_blood_group,
    normalize_phone,
    normalize_space,
    sanitize_message,
    trim,
)


# ---------------------------------------------------------------------------
# trim
# ---------------------------------------------------------------------------

class TestTrim:
    def test_strips_whitespace(self):
        assert trim("  hello  ") == "hello"

    def test_empty_string_returns_none(self):
        assert trim("") is None

    def test_whitespace_only_returns_none(self):
        assert trim("   ") is None

    def test_none_returns_none(self):
        assert trim(None) is None


# ---------------------------------------------------------------------------
# normalize_space
# ---------------------------------------------------------------------------

class TestNormalizeSpace:
    def test_collapses_internal_spaces(self):
        assert normalize_space("hello   world") == "hello world"

    def test_collapses_tabs(self):
        assert normalize_space("hello\t\tworld") == "hello world"

    def test_none(self):
        assert normalize_space(None) is None


# ---------------------------------------------------------------------------
# cell_text
# ---------------------------------------------------------------------------

class TestCellText:
    def test_integral_float_loses_decimal(self):
        assert cell_text(12.0) == "12"

    def test_fractional_float_kept(self):
        assert cell_text(12.5) == "12.5"

    def test_int(self):
        assert cell_text(42) == "42"

    def test_string_trimmed(self):
        assert cell_text("  Ops  ") == "Ops"

    def test_blank_string(self):
        assert cell_text("   ") is None

    def test_none(self):
        assert cell_text(None) is None


# ---------------------------------------------------------------------------
# normalize_phone
# ---------------------------------------------------------------------------

class TestNormalizePhone:
    def test_scientific_notation_string(self):
        assert normalize_phone("8.98E+09") == "8980000000"

    def test_scientific_matches_integer_cell(self):
        assert normalize_phone("8.98E+09") == normalize_phone(8980000000)

    def test_float_cell(self):
        assert normalize_phone(9876543210.0) == "9876543210"

    def test_whole_decimal_string(self):
        assert normalize_phone("9876543210.0") == "9876543210"

    def test_fractional_string_keeps_digits(self):
        assert normalize_phone("12345.6789") == "123456789"

    def test_scientific_string_rounds_half_up(self):
        assert normalize_phone("9.8765432105E+9") == "9876543211"

    def test_plus_and_punctuation(self):
        assert normalize_phone("+1 (234) 567-890") == "+1234567890"

    def test_plus_kept_on_scientific(self):
        assert normalize_phone("+9.1987654321E+11") == "+919876543210"

    def test_spaces_and_dashes(self):
        assert normalize_phone(" 98765-43210 ") == "9876543210"

    def test_letters_only_returns_none(self):
        assert normalize_phone("n/a") is None

    def test_empty_returns_none(self):
        assert normalize_phone("") is None

    def test_none_returns_none(self):
        assert normalize_phone(None) is None

    def test_bool_returns_none(self):
        assert normalize_phone(True) is None


# ---------------------------------------------------------------------------
# normalize_blood_group
# ---------------------------------------------------------------------------

class TestNormalizeBloodGroup:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("a+", "A+"),
            ("AB-", "AB-"),
            ("ab negative", "AB-"),
            ("O +ve", "O+"),
            ("o-ve", "O-"),
            ("B pos", "B+"),
            ("A neg", "A-"),
            ("0+", "O+"),
            (" b + ", "B+"),
        ],
    )
    def test_canonical_spellings(self, raw, expected):
        assert normalize_blood_group(raw) == expected

    def test_unrecognized_becomes_no_data(self):
        assert normalize_blood_group("XYZ") == UNKNOWN_BLOOD_GROUP

    def test_missing_sign_becomes_no_data(self):
        assert normalize_blood_group("AB") == "No Data"

    def test_empty_returns_none(self):
        assert normalize_blood_group("") is None

    def test_none_returns_none(self):
        assert normalize_blood_group(None) is None


# ---------------------------------------------------------------------------
# canonical_header
# ---------------------------------------------------------------------------

class TestCanonicalHeader:
    @pytest.mark.parametrize(
        "raw", ["Contact Number", "contact_number", "CONTACT-NUMBER", " contact.number "]
    )
    def test_spellings_collapse(self, raw):
        assert canonical_header(raw) == "contactnumber"

    def test_blank_returns_none(self):
        assert canonical_header("  ") is None

    def test_none_returns_none(self):
        assert canonical_header(None) is None


# ---------------------------------------------------------------------------
# sanitize_message
# ---------------------------------------------------------------------------

class TestSanitizeMessage:
    def test_strips_unix_source_path(self):
        assert sanitize_message("Error: failed in /srv/app/store.py") == "failed in"

    def test_strips_windows_path(self):
        assert sanitize_message(r"boom C:\app\src\service.ts") == "boom"

    def test_strips_traceback_frames(self):
        msg = (
            "Traceback (most recent call last):\n"
            '  File "/srv/app/engine.py", line 12, in write\n'
            "ValueError: nope"
        )
        assert sanitize_message(msg) == "ValueError: nope"

    def test_strips_js_frames(self):
        assert sanitize_message("bad row at upsert (/srv/app/x.js:1:2)") == "bad row"

    def test_empty_uses_default(self):
        assert sanitize_message("", "Insert failed") == "Insert failed"

    def test_only_path_uses_default(self):
        assert sanitize_message("/srv/app/store.py", "Insert failed") == "Insert failed"

    def test_plain_message_unchanged(self):
        assert sanitize_message("value too long") == "value too long"
