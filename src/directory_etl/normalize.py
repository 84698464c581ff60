"""Normalization functions for directory ingestion.

Value-level rules shared by the file readers, the row preparers and the
report builder.  Functions accept loosely-typed cell values and return
the cleaned value or None.
"""

from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

BLOOD_GROUPS = ("A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-")
UNKNOWN_BLOOD_GROUP = "No Data"

_SCIENTIFIC_PHONE_RE = re.compile(r"^[+]?\d+(\.\d+)?[eE][+-]?\d+$")
_WHOLE_DECIMAL_RE = re.compile(r"^[+]?\d+\.0+$")
_HEADER_STRIP_RE = re.compile(r"[\s_.\-]+")


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: normalize_space
# ---------------------------------------------------------------------------

def normalize_space(value: str | None) -> str | None:
    """Collapse internal runs of whitespace to single spaces, then trim."""
    v = trim(value)
    if v is None:
        return None
    return re.sub(r"\s+", " ", v)


# ---------------------------------------------------------------------------
# Rule 3: cell_text
# ---------------------------------------------------------------------------

def cell_text(value: Any) -> str | None:
    """Return a spreadsheet cell as trimmed text.

    Integral floats lose their trailing '.0' (openpyxl returns 12.0 for a
    cell typed as 12).  Booleans and other objects are stringified as-is.
    """
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, str):
        return trim(value)
    return trim(str(value))


# ---------------------------------------------------------------------------
# Rule 4: normalize_phone
# ---------------------------------------------------------------------------

def _round_numeric(value: Any) -> str:
    return str(int(Decimal(str(value)).to_integral_value(rounding=ROUND_HALF_UP)))


def normalize_phone(value: Any) -> str | None:
    """Return a digit string, optionally '+'-prefixed, or None.

    Spreadsheet tools store phone numbers as numbers, sometimes rendered in
    scientific notation ('8.98E+09').  Numeric cells, scientific-notation
    strings and whole-number strings such as '9876543210.0' are rounded to
    an integer before the generic rule runs: keep a leading '+', strip every
    other non-digit.  Any other decimal string keeps all of its digits.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            v = _round_numeric(value)
        except (InvalidOperation, ValueError, OverflowError):
            return None
    else:
        v = trim(str(value))
        if v is None:
            return None
        if _SCIENTIFIC_PHONE_RE.match(v) or _WHOLE_DECIMAL_RE.match(v):
            try:
                v = ("+" if v.startswith("+") else "") + _round_numeric(v.lstrip("+"))
            except (InvalidOperation, ValueError, OverflowError):
                pass
    plus = "+" if v.startswith("+") else ""
    digits = re.sub(r"\D", "", v)
    if not digits:
        return None
    return f"{plus}{digits}"


# ---------------------------------------------------------------------------
# Rule 5: normalize_blood_group
# ---------------------------------------------------------------------------

_BLOOD_GROUP_WORDS = (
    ("POSITIVE", "+"),
    ("NEGATIVE", "-"),
    ("+VE", "+"),
    ("-VE", "-"),
    ("POS", "+"),
    ("NEG", "-"),
)


def normalize_blood_group(value: Any) -> str | None:
    """Map a blood group spelling to one of the 8 canonical values.

    'a+' → 'A+', 'ab negative' → 'AB-', 'O +ve' → 'O+'.
    Any other non-empty value → 'No Data'.  Empty or absent → None.
    """
    v = cell_text(value)
    if v is None:
        return None
    compact = re.sub(r"[\s_.]", "", v.upper())
    for word, sign in _BLOOD_GROUP_WORDS:
        compact = compact.replace(word, sign)
    # '0+' typed with a zero
    if compact[:1] == "0":
        compact = "O" + compact[1:]
    return compact if compact in BLOOD_GROUPS else UNKNOWN_BLOOD_GROUP


# ---------------------------------------------------------------------------
# Rule 6: canonical_header
# ---------------------------------------------------------------------------

def canonical_header(header: Any) -> str | None:
    """Lowercase a column header and drop whitespace, '_', '-' and '.'.

    'Contact Number', 'contact_number' and 'CONTACT-NUMBER' all become
    'contactnumber'.  Blank headers → None.
    """
    if header is None:
        return None
    v = _HEADER_STRIP_RE.sub("", str(header).lower())
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 7: sanitize_message
# ---------------------------------------------------------------------------

_WINDOWS_PATH_RE = re.compile(r"[A-Z]:\\[^\s]+", re.IGNORECASE)
_SOURCE_PATH_RE = re.compile(r"/[^\s]+\.(py|pyc|js|ts|json|sql)\b")
_FRAME_RE = re.compile(r'File "[^"]*", line \d+(, in \S+)?')
_JS_FRAME_RE = re.compile(r"at\s+[^\s]+\s+\([^)]+\)")
_TRACEBACK_RE = re.compile(r"Traceback \(most recent call last\):")
_ERROR_PREFIX_RE = re.compile(r"^\s*Error:\s*", re.IGNORECASE)


def sanitize_message(message: str | None, default: str = "An error occurred") -> str:
    """Strip filesystem paths and stack fragments from an error message."""
    if not message:
        return default
    v = _TRACEBACK_RE.sub("", message)
    v = _FRAME_RE.sub("", v)
    v = _JS_FRAME_RE.sub("", v)
    v = _WINDOWS_PATH_RE.sub("", v)
    v = _SOURCE_PATH_RE.sub("", v)
    v = _ERROR_PREFIX_RE.sub("", v)
    v = normalize_space(v)
    return v or default
