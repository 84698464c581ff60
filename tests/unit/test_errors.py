"""Unit tests for directory_etl.errors."""

from __future__ import annotations

import asyncio

import psycopg
import pytest
from psycopg import errors as pg_errors

from directory_etl.errors import (
    IngestionInputError,
    RowError,
    WriteFailure,
    classify_write_error,
)


class DummyError(Exception):
    pass


# ---------------------------------------------------------------------------
# classify_write_error
# ---------------------------------------------------------------------------

class TestTransient:
    @pytest.mark.parametrize(
        "exc",
        [
            TimeoutError(),
            asyncio.TimeoutError(),
            ConnectionResetError("peer reset"),
            pg_errors.QueryCanceled("canceling statement due to statement timeout"),
            pg_errors.AdminShutdown("terminating connection due to administrator command"),
            pg_errors.ConnectionFailure("connection failure"),
            pg_errors.TooManyConnections("too many clients"),
            psycopg.OperationalError("server closed the connection unexpectedly"),
            psycopg.OperationalError("consuming input failed: connection reset"),
            psycopg.InterfaceError("the connection is closed"),
        ],
    )
    def test_connection_class(self, exc):
        assert classify_write_error(exc) is WriteFailure.TRANSIENT

    @pytest.mark.parametrize(
        "message",
        [
            "Transaction API error: Transaction already closed: timeout",
            "Connection reset by peer",
            "connection timed out",
            "could not connect to server: Connection refused",
        ],
    )
    def test_message_signatures(self, message):
        assert classify_write_error(DummyError(message)) is WriteFailure.TRANSIENT


class TestRowLevel:
    @pytest.mark.parametrize(
        "exc",
        [
            pg_errors.UniqueViolation("duplicate key value violates unique constraint"),
            pg_errors.CheckViolation("new row violates check constraint"),
            pg_errors.NotNullViolation("null value in column"),
            pg_errors.StringDataRightTruncation("value too long"),
        ],
    )
    def test_store_rejected_values(self, exc):
        assert classify_write_error(exc) is WriteFailure.ROW_LEVEL


class TestFatal:
    @pytest.mark.parametrize(
        "exc",
        [
            pg_errors.UndefinedTable('relation "contact" does not exist'),
            psycopg.OperationalError("out of shared memory"),
            KeyError("phone"),
            DummyError("some random failure message"),
        ],
    )
    def test_unanticipated(self, exc):
        assert classify_write_error(exc) is WriteFailure.FATAL


# ---------------------------------------------------------------------------
# RowError / IngestionInputError
# ---------------------------------------------------------------------------

class TestRowError:
    def test_to_dict_with_field(self):
        err = RowError(3, "Duplicate phone number", "duplicate", "phone")
        assert err.to_dict() == {
            "row": 3, "error": "Duplicate phone number", "type": "duplicate", "field": "phone",
        }

    def test_to_dict_without_field(self):
        assert "field" not in RowError(1, "boom", "insert_error").to_dict()

    def test_summary_row(self):
        assert RowError(-1, "lost", "connection_error").is_summary
        assert not RowError(1, "lost", "connection_error").is_summary


class TestIngestionInputError:
    def test_default_code(self):
        assert IngestionInputError("bad").code == "INVALID_FORMAT"

    def test_is_value_error(self):
        with pytest.raises(ValueError):
            raise IngestionInputError("too many", code="BATCH_TOO_LARGE")
