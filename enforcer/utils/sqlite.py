"""aiosqlite plumbing shared by the key ledger and the audit trail.

Both stores are single-file databases kept in WAL mode, with the schema
version held in ``PRAGMA user_version``. A fresh file (version 0) gets the
schema; a file written by an unknown version is refused. Timestamps are
stored as fixed-width UTC ISO 8601 text so SQL string comparison orders them
chronologically.
"""

from __future__ import annotations

import os
import sqlite3
from datetime import datetime, timezone
from typing import Optional

import aiosqlite

from enforcer.utils.logger import get_logger

logger = get_logger(__name__)

_DB_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


def to_db_timestamp(value: datetime) -> str:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(_DB_TIMESTAMP_FORMAT)


async def open_versioned_db(
    db_path: str,
    schema_sql: str,
    schema_version: int,
    store: str,
) -> aiosqlite.Connection:
    """Open ``db_path`` in WAL mode and create or verify its schema.

    Args:
        db_path: Database file; missing parent directories are created.
        schema_sql: Script applied when the file carries no version yet.
        schema_version: Version this build reads and writes.
        store: Human-readable store name for logs and errors.

    Raises:
        RuntimeError: The file was written with a different schema version.
    """
    parent_dir = os.path.dirname(db_path)
    if parent_dir:
        os.makedirs(parent_dir, exist_ok=True)

    db = await aiosqlite.connect(db_path)
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA journal_mode=WAL;")

    async with db.execute("PRAGMA user_version;") as cursor:
        row = await cursor.fetchone()
    found = row[0] if row else 0

    if found == 0:
        await db.executescript(schema_sql)
        await db.execute(f"PRAGMA user_version = {int(schema_version)};")
        await db.commit()
        logger.info("sqlite_schema_created", store=store, db_path=db_path, schema_version=schema_version)
    elif found == schema_version:
        logger.info("sqlite_schema_ok", store=store, db_path=db_path, schema_version=found)
    else:
        await db.close()
        raise RuntimeError(
            f"Unsupported {store} schema version: {found}. "
            f"Expected {schema_version}; refusing to start."
        )
    return db


async def ping(db: Optional[aiosqlite.Connection]) -> bool:
    """True when ``db`` is open and answers a trivial query."""
    if db is None:
        return False
    try:
        await db.execute("SELECT 1")
    except (sqlite3.Error, ValueError):
        return False
    return True
