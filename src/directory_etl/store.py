"""directory_etl.store

PostgreSQL access for the contact directory.

A DirectoryStore wraps one psycopg AsyncConnection owned by the caller
(the CLI, or an application's composition root) and is passed into the
ingestion engine.  The connection must be in autocommit mode: chunk
writes open their own explicit transaction, single-row writes commit on
their own.

Also exports the closed set of transient failure signatures consumed by
directory_etl.errors.classify_write_error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import psycopg
from psycopg import sql
from psycopg.rows import dict_row

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Transient failure signatures
# ---------------------------------------------------------------------------

# SQLSTATE class 08: connection_exception
TRANSIENT_SQLSTATE_CLASSES = frozenset({"08"})

TRANSIENT_SQLSTATES = frozenset({
    "57014",  # query_canceled (statement_timeout)
    "57P01",  # admin_shutdown
    "57P02",  # crash_shutdown
    "57P03",  # cannot_connect_now
    "53300",  # too_many_connections
    "25P03",  # idle_in_transaction_session_timeout
})

TRANSIENT_MESSAGE_SIGNATURES = (
    "timeout",
    "timed out",
    "connection reset",
    "connection refused",
    "connection is closed",
    "connection is lost",
    "connection failed",
    "server closed the connection",
    "terminating connection",
    "consuming input failed",
    "could not connect",
)


# ---------------------------------------------------------------------------
# Table layout
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TableSpec:
    table: str
    upsert_sql: str
    insert_sql: str


_CONTACT_UPSERT = """
    INSERT INTO contact (name, phone, blood_group, lobby, designation)
    VALUES (%(name)s, %(phone)s, %(blood_group)s, %(lobby)s, %(designation)s)
    ON CONFLICT (phone) DO UPDATE SET
      name = EXCLUDED.name,
      blood_group = EXCLUDED.blood_group,
      lobby = EXCLUDED.lobby,
      designation = EXCLUDED.designation,
      updated_at = now()
"""

_CONTACT_INSERT = """
    INSERT INTO contact (name, phone, blood_group, lobby, designation)
    VALUES (%(name)s, %(phone)s, %(blood_group)s, %(lobby)s, %(designation)s)
    ON CONFLICT (phone) DO NOTHING
"""

# document has no unique key in the store: update the row carrying the same
# (title, link), insert when there is none.
_DOCUMENT_UPSERT = """
    WITH updated AS (
      UPDATE document SET
        uploaded_by = %(uploaded_by)s,
        updated_at = now()
      WHERE title = %(title)s AND link = %(link)s
      RETURNING id
    )
    INSERT INTO document (title, link, uploaded_by)
    SELECT %(title)s, %(link)s, %(uploaded_by)s
    WHERE NOT EXISTS (SELECT 1 FROM updated)
"""

_DOCUMENT_INSERT = """
    INSERT INTO document (title, link, uploaded_by)
    VALUES (%(title)s, %(link)s, %(uploaded_by)s)
"""

TABLES: dict[str, TableSpec] = {
    "contact": TableSpec("contact", _CONTACT_UPSERT, _CONTACT_INSERT),
    "document": TableSpec("document", _DOCUMENT_UPSERT, _DOCUMENT_INSERT),
}

DISTRIBUTION_FIELDS = frozenset({"blood_group", "lobby", "designation"})

_CONTACT_COLUMNS = "id, name, phone, blood_group, lobby, designation, created_at, updated_at"
_DOCUMENT_COLUMNS = "id, title, link, uploaded_by, created_at, updated_at"


def _table(entity: str) -> TableSpec:
    try:
        return TABLES[entity]
    except KeyError:
        raise ValueError(f"unknown entity: {entity!r}") from None


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


# ---------------------------------------------------------------------------
# Write protocol consumed by the engine
# ---------------------------------------------------------------------------

class RecordStore(Protocol):
    async def delete_all(self, entity: str) -> int:
        ...

    async def insert_many(self, entity: str, records: list[dict[str, Any]]) -> int:
        """Insert in one operation, skipping natural-key collisions."""
        ...

    async def upsert_chunk(
        self,
        entity: str,
        records: list[dict[str, Any]],
        timeout: float | None = None,
    ) -> None:
        """Upsert every record inside one transaction."""
        ...

    async def upsert_one(self, entity: str, record: dict[str, Any]) -> None:
        ...


# ---------------------------------------------------------------------------
# DirectoryStore
# ---------------------------------------------------------------------------

class DirectoryStore:
    """psycopg-backed store for contacts, documents and visit counters."""

    def __init__(self, conn: psycopg.AsyncConnection) -> None:
        self._conn = conn

    # -- writes -------------------------------------------------------------

    async def delete_all(self, entity: str) -> int:
        spec = _table(entity)
        cur = await self._conn.execute(
            sql.SQL("DELETE FROM {}").format(sql.Identifier(spec.table))
        )
        log.info("Deleted %s %s rows", cur.rowcount, spec.table)
        return cur.rowcount

    async def insert_many(self, entity: str, records: list[dict[str, Any]]) -> int:
        spec = _table(entity)
        if not records:
            return 0
        async with self._conn.transaction():
            async with self._conn.cursor() as cur:
                await cur.executemany(spec.insert_sql, records)
                return cur.rowcount

    async def upsert_chunk(
        self,
        entity: str,
        records: list[dict[str, Any]],
        timeout: float | None = None,
    ) -> None:
        spec = _table(entity)
        if not records:
            return
        async with self._conn.transaction():
            async with self._conn.cursor() as cur:
                if timeout:
                    await cur.execute(
                        "SELECT set_config('statement_timeout', %s, true)",
                        (f"{int(timeout * 1000)}ms",),
                    )
                await cur.executemany(spec.upsert_sql, records)

    async def upsert_one(self, entity: str, record: dict[str, Any]) -> None:
        spec = _table(entity)
        await self._conn.execute(spec.upsert_sql, record)

    # -- contact reads ------------------------------------------------------

    async def search_contacts(
        self,
        query: str,
        page: int = 1,
        limit: int = 50,
    ) -> dict[str, Any]:
        """Case-insensitive substring search on name, ordered by name."""
        return await self._search(
            "contact", _CONTACT_COLUMNS, "name", "name ASC, id ASC", query, page, limit
        )

    async def _search(
        self,
        table: str,
        columns: str,
        column: str,
        order_by: str,
        query: str,
        page: int,
        limit: int,
    ) -> dict[str, Any]:
        page = max(page, 1)
        pattern = f"%{_escape_like(query)}%"
        where = sql.SQL("FROM {} WHERE {} ILIKE %s").format(
            sql.Identifier(table), sql.Identifier(column)
        )
        async with self._conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                sql.SQL("SELECT {} {} ORDER BY {} LIMIT %s OFFSET %s").format(
                    sql.SQL(columns), where, sql.SQL(order_by)
                ),
                (pattern, limit, (page - 1) * limit),
            )
            data = await cur.fetchall()
            await cur.execute(
                sql.SQL("SELECT count(*) AS total {}").format(where), (pattern,)
            )
            row = await cur.fetchone()
        total = int(row["total"]) if row else 0
        return {
            "data": data,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "totalPages": -(-total // limit) if limit else 0,
            },
        }

    async def find_contact_by_phone(self, phone: str) -> dict[str, Any] | None:
        async with self._conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                f"SELECT {_CONTACT_COLUMNS} FROM contact WHERE phone = %s",
                (phone,),
            )
            return await cur.fetchone()

    async def count(self, entity: str) -> int:
        spec = _table(entity)
        cur = await self._conn.execute(
            sql.SQL("SELECT count(*) FROM {}").format(sql.Identifier(spec.table))
        )
        row = await cur.fetchone()
        return int(row[0]) if row else 0

    async def recent_contacts(self, limit: int = 10) -> list[dict[str, Any]]:
        """The most recently created contacts, newest first."""
        async with self._conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                f"SELECT {_CONTACT_COLUMNS} FROM contact "
                "ORDER BY created_at DESC, id DESC LIMIT %s",
                (limit,),
            )
            return await cur.fetchall()

    async def contacts_growth(self, days: int = 30) -> list[dict[str, Any]]:
        """Contacts created per day over the last `days` days, oldest first.

        Days with no new contacts are omitted.
        """
        async with self._conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                """
                SELECT created_at::date AS date, count(*) AS count
                FROM contact
                WHERE created_at::date > CURRENT_DATE - %s::int
                GROUP BY 1
                ORDER BY 1 ASC
                """,
                (days,),
            )
            return await cur.fetchall()

    async def field_distribution(self, field: str) -> list[dict[str, Any]]:
        """Return [{value, count}] for a contact attribute, most common first."""
        if field not in DISTRIBUTION_FIELDS:
            raise ValueError(f"unsupported distribution field: {field!r}")
        query = sql.SQL(
            """
            SELECT COALESCE({col}, 'No Data') AS value, count(*) AS count
            FROM contact
            GROUP BY 1
            ORDER BY count DESC, value ASC
            """
        ).format(col=sql.Identifier(field))
        async with self._conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(query)
            return await cur.fetchall()

    # -- document reads -----------------------------------------------------

    async def search_documents(
        self,
        query: str,
        page: int = 1,
        limit: int = 50,
    ) -> dict[str, Any]:
        """Case-insensitive substring search on title, newest first."""
        return await self._search(
            "document", _DOCUMENT_COLUMNS, "title", "created_at DESC, id ASC",
            query, page, limit,
        )

    # -- visit counter ------------------------------------------------------

    async def increment_visit_count(self) -> int:
        """Atomically count one visit for today and return the running total."""
        await self._conn.execute(
            """
            INSERT INTO site_visit (visit_date, visit_count)
            VALUES (CURRENT_DATE, 1)
            ON CONFLICT (visit_date) DO UPDATE SET
              visit_count = site_visit.visit_count + 1
            """
        )
        return await self.visit_count()

    async def visit_count(self) -> int:
        cur = await self._conn.execute(
            "SELECT COALESCE(sum(visit_count), 0) FROM site_visit"
        )
        row = await cur.fetchone()
        return int(row[0]) if row else 0

    async def visit_history(self, days: int = 30) -> list[dict[str, Any]]:
        async with self._conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                """
                SELECT visit_date, visit_count
                FROM site_visit
                WHERE visit_date > CURRENT_DATE - %s::int
                ORDER BY visit_date ASC
                """,
                (days,),
            )
            return await cur.fetchall()
