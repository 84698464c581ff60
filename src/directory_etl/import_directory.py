"""directory_etl.import_directory

Unified CLI entrypoint for the contact directory.

Modes (--mode):
  contacts         bulk-ingest a contact upload (CSV, Excel or JSON array)
  documents        bulk-ingest a document-link upload
  search_contacts  name search (--query) or exact phone lookup (--phone)
  search_documents title search (--query)
  stats            counts, attribute distributions and visit history
  record_visit     count one site visit for today

Usage (contacts):
    python -m directory_etl.import_directory \\
        --mode contacts \\
        --db-dsn "$DIRECTORY_DB_DSN" \\
        --file-path "uploads/contacts.xlsx" \\
        --rejects-path "artifacts/rejects/contacts_rejects.csv"

Usage (replace every stored contact):
    python -m directory_etl.import_directory \\
        --mode contacts --file-path "uploads/contacts.csv" \\
        --replace-all --confirm DELETE_ALL

Exit codes: 0 success (row-level errors included), 1 input rejected or bad
flags, 2 database connection lost mid-batch (re-run the same file).
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import click
import psycopg

from directory_etl.engine import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_CHUNK_TIMEOUT,
    PROFILES,
    EntityProfile,
    IngestionPipeline,
    check_batch,
)
from directory_etl.errors import IngestionInputError
from directory_etl.normalize import normalize_phone
from directory_etl.parsing import read_upload
from directory_etl.report import IngestionResult
from directory_etl.shared import DEFAULT_REPORT_DIR, RejectWriter, write_run_report
from directory_etl.store import DirectoryStore

DELETE_ALL_CONFIRMATION = "DELETE_ALL"

EXIT_INPUT_REJECTED = 1
EXIT_CONNECTION_LOST = 2

_INGEST_MODES = {"contacts": "contact", "documents": "document"}

_DISTRIBUTION_KEYS = {
    "blood_group": "bloodGroupDistribution",
    "lobby": "lobbyDistribution",
    "designation": "designationDistribution",
}


@click.command()
@click.option(
    "--mode",
    default="contacts",
    show_default=True,
    type=click.Choice(["contacts", "documents", "search_contacts", "search_documents", "stats", "record_visit"]),
)
@click.option("--db-dsn", envvar="DIRECTORY_DB_DSN", required=True, help="PostgreSQL DSN (env: DIRECTORY_DB_DSN)")
@click.option("--file-path", default=None, type=click.Path(), help="[contacts|documents] Upload file (.csv, .txt, .xlsx, .xlsm, .json)")
@click.option("--replace-all", is_flag=True, default=False, help="[contacts|documents] Delete every stored row before inserting")
@click.option("--confirm", default=None, help=f"[contacts|documents] Must be {DELETE_ALL_CONFIRMATION} with --replace-all")
@click.option("--chunk-size", default=DEFAULT_CHUNK_SIZE, type=click.IntRange(min=1), show_default=True)
@click.option("--chunk-timeout-seconds", default=DEFAULT_CHUNK_TIMEOUT, type=float, show_default=True, help="Per-chunk transaction timeout; 0 disables")
@click.option("--rejects-path", default=None, type=click.Path(), help="CSV of rejected rows (default: ./artifacts/rejects/<run_id>.csv)")
@click.option("--report-dir", default=str(DEFAULT_REPORT_DIR), type=click.Path(), show_default=True)
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option("--query", default=None, help="[search_contacts|search_documents] Case-insensitive name or title substring")
@click.option("--phone", default=None, help="[search_contacts] Exact phone lookup")
@click.option("--page", default=1, type=click.IntRange(min=1), show_default=True)
@click.option("--limit", default=50, type=click.IntRange(1, 100), show_default=True)
@click.option("--days", default=30, type=click.IntRange(1, 365), show_default=True, help="[stats] Visit history and contact growth window")
@click.option("--recent-limit", default=10, type=click.IntRange(1, 100), show_default=True, help="[stats] Number of recent contacts")
@click.option(
    "--log-level",
    default="INFO",
    show_default=True,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
)
def main(
    mode: str,
    db_dsn: str,
    file_path: str | None,
    replace_all: bool,
    confirm: str | None,
    chunk_size: int,
    chunk_timeout_seconds: float,
    rejects_path: str | None,
    report_dir: str,
    run_id: str | None,
    query: str | None,
    phone: str | None,
    page: int,
    limit: int,
    days: int,
    recent_limit: int,
    log_level: str,
) -> None:
    """Contact directory ingestion and query CLI."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.now(timezone.utc).isoformat()

    click.echo(f"[{run_id}] Starting {mode} run")

    if mode in _INGEST_MODES:
        _validate_ingest_flags(file_path, replace_all, confirm, run_id)
        profile = PROFILES[_INGEST_MODES[mode]]
        try:
            content = Path(file_path).read_bytes()  # type: ignore[arg-type]
        except OSError as exc:
            click.echo(f"[{run_id}] FATAL: cannot read {file_path}: {exc}", err=True)
            sys.exit(EXIT_INPUT_REJECTED)
        try:
            rows = check_batch(read_upload(content, file_path))
        except IngestionInputError as exc:
            click.echo(f"[{run_id}] FATAL: {exc.code}: {exc}", err=True)
            sys.exit(EXIT_INPUT_REJECTED)

        click.echo(
            f"[{run_id}] {len(rows)} rows read from {file_path} "
            f"(replace_all={replace_all}, chunk_size={chunk_size})"
        )
        result = asyncio.run(
            _run_ingest(
                db_dsn, profile, rows,
                replace_all=replace_all,
                chunk_size=chunk_size,
                chunk_timeout=chunk_timeout_seconds or None,
            )
        )

        rejects = RejectWriter(
            Path(rejects_path) if rejects_path else Path(f"./artifacts/rejects/{run_id}.csv")
        )
        try:
            rejects.write_errors(result.errors, rows)
        finally:
            rejects.close()

        click.echo(build_ingest_summary(result))
        if rejects.count:
            click.echo(f"[{run_id}] {rejects.count} rejected rows written to {rejects.path}")

        report_path = write_run_report(
            run_id, started_at, mode,
            {"file_path": file_path, "rejects_path": str(rejects.path) if rejects.count else None},
            {"status": result.status_code, **result.to_dict()},
            report_dir=Path(report_dir),
        )
        click.echo(f"[{run_id}] Run report: {report_path}")

        if result.connection_lost:
            click.echo(f"[{run_id}] {result.message}", err=True)
            sys.exit(EXIT_CONNECTION_LOST)
        return

    if mode == "search_contacts":
        if not query and not phone:
            click.echo(f"[{run_id}] FATAL: search_contacts mode requires --query or --phone", err=True)
            sys.exit(EXIT_INPUT_REJECTED)
        payload = asyncio.run(_run_search(db_dsn, query, phone, page, limit))
    elif mode == "search_documents":
        if not query:
            click.echo(f"[{run_id}] FATAL: search_documents mode requires --query", err=True)
            sys.exit(EXIT_INPUT_REJECTED)
        payload = asyncio.run(_run_search_documents(db_dsn, query, page, limit))
    elif mode == "stats":
        payload = asyncio.run(_run_stats(db_dsn, days, recent_limit))
    else:
        payload = asyncio.run(_run_record_visit(db_dsn))

    click.echo(json.dumps(payload, indent=2, default=str))
    report_path = write_run_report(
        run_id, started_at, mode, {}, payload, report_dir=Path(report_dir),
    )
    click.echo(f"[{run_id}] Run report: {report_path}")


# ---------------------------------------------------------------------------
# Flag validation
# ---------------------------------------------------------------------------

def _validate_ingest_flags(
    file_path: str | None,
    replace_all: bool,
    confirm: str | None,
    run_id: str,
) -> None:
    if file_path is None:
        click.echo(f"[{run_id}] FATAL: ingest modes require: --file-path", err=True)
        sys.exit(EXIT_INPUT_REJECTED)
    if replace_all and confirm != DELETE_ALL_CONFIRMATION:
        click.echo(
            f"[{run_id}] FATAL: --replace-all deletes every stored row; "
            f"pass --confirm {DELETE_ALL_CONFIRMATION}",
            err=True,
        )
        sys.exit(EXIT_INPUT_REJECTED)


# ---------------------------------------------------------------------------
# Runners
# ---------------------------------------------------------------------------

async def _connect(db_dsn: str) -> psycopg.AsyncConnection:
    return await psycopg.AsyncConnection.connect(db_dsn, autocommit=True)


async def _run_ingest(
    db_dsn: str,
    profile: EntityProfile,
    rows: list[Any],
    replace_all: bool,
    chunk_size: int,
    chunk_timeout: float | None,
) -> IngestionResult:
    async with await _connect(db_dsn) as conn:
        pipeline = IngestionPipeline(
            DirectoryStore(conn), chunk_size=chunk_size, chunk_timeout=chunk_timeout
        )
        return await pipeline.ingest(profile, rows, replace_all=replace_all)


async def _run_search(
    db_dsn: str,
    query: str | None,
    phone: str | None,
    page: int,
    limit: int,
) -> dict[str, Any]:
    async with await _connect(db_dsn) as conn:
        store = DirectoryStore(conn)
        if phone:
            normalized = normalize_phone(phone)
            contact = await store.find_contact_by_phone(normalized) if normalized else None
            return {"data": contact}
        return await store.search_contacts(query or "", page=page, limit=limit)


async def _run_search_documents(
    db_dsn: str,
    query: str,
    page: int,
    limit: int,
) -> dict[str, Any]:
    async with await _connect(db_dsn) as conn:
        return await DirectoryStore(conn).search_documents(query, page=page, limit=limit)


async def _run_stats(db_dsn: str, days: int, recent_limit: int = 10) -> dict[str, Any]:
    async with await _connect(db_dsn) as conn:
        store = DirectoryStore(conn)
        stats: dict[str, Any] = {
            "totalContacts": await store.count("contact"),
            "totalDocuments": await store.count("document"),
            "visitCount": await store.visit_count(),
        }
        for fld, key in _DISTRIBUTION_KEYS.items():
            stats[key] = await store.field_distribution(fld)
        stats["visitHistory"] = await store.visit_history(days)
        stats["contactsGrowth"] = await store.contacts_growth(days)
        stats["recentContacts"] = await store.recent_contacts(recent_limit)
        return stats


async def _run_record_visit(db_dsn: str) -> dict[str, Any]:
    async with await _connect(db_dsn) as conn:
        return {"visitCount": await DirectoryStore(conn).increment_visit_count()}


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------

def build_ingest_summary(result: IngestionResult) -> str:
    """Human-readable block printed after an ingest run."""
    lines = [
        f"=== {result.plural} ingestion (HTTP-equivalent status {result.status_code}) ===",
        f"  total rows:      {result.total}",
        f"  created:         {result.created}",
        f"  failed:          {result.failed}",
        f"  skipped (blank): {result.skipped_rows}",
    ]
    if result.errors_by_type:
        lines.append("  errors by type:")
        for kind, n in sorted(result.errors_by_type.items()):
            lines.append(f"    {kind:<18} {n}")
    if result.errors_by_field:
        lines.append("  errors by field:")
        for fld, n in sorted(result.errors_by_field.items()):
            lines.append(f"    {fld:<18} {n}")
    if result.connection_lost:
        lines.append(f"  processed:       {result.processed}")
        lines.append(f"  not processed:   {result.not_processed}")
    if result.message:
        lines.append(f"  {result.message}")
    return "\n".join(lines)


if __name__ == "__main__":
    main()
