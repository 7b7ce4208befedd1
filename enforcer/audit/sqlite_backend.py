"""LocalSQLiteAuditBackend: the governance decision log in SQLite.

One row per AuditEvent. Rows are written with INSERT OR IGNORE keyed on the
event ULID, so a retried write of the same event is harmless. The table is
read back newest first by the /api/audit/events endpoint and pruned by the
daily maintenance task.
"""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import aiosqlite

from enforcer.audit.models import AuditEvent
from enforcer.audit.protocol import EventFilters
from enforcer.constants import DEFAULT_AUDIT_RETENTION_DAYS
from enforcer.utils.logger import get_logger
from enforcer.utils.sqlite import open_versioned_db, ping, to_db_timestamp

logger = get_logger(__name__)

_SCHEMA_VERSION = 1

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS audit_events (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id        TEXT NOT NULL UNIQUE,
    timestamp       TEXT NOT NULL,
    decision        TEXT NOT NULL,
    key_id          INTEGER,
    record_id       INTEGER,
    principal_id    INTEGER,
    key_type        TEXT CHECK(key_type IN ('USER', 'BAMBOO', 'BYPASS') OR key_type IS NULL),
    detail          TEXT,
    schema_version  INTEGER NOT NULL DEFAULT 1
);

CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_events(timestamp DESC);
CREATE INDEX IF NOT EXISTS idx_audit_decision ON audit_events(decision);
CREATE INDEX IF NOT EXISTS idx_audit_principal_id ON audit_events(principal_id);
"""

_EVENT_COLUMNS = (
    "event_id",
    "timestamp",
    "decision",
    "key_id",
    "record_id",
    "principal_id",
    "key_type",
    "detail",
    "schema_version",
)

_INSERT_SQL = (
    f"INSERT OR IGNORE INTO audit_events ({', '.join(_EVENT_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in _EVENT_COLUMNS)})"
)


def _event_params(event: AuditEvent) -> tuple[Any, ...]:
    values = {column: getattr(event, column) for column in _EVENT_COLUMNS}
    values["timestamp"] = to_db_timestamp(event.timestamp)
    return tuple(values[column] for column in _EVENT_COLUMNS)


def _event_from_row(row: aiosqlite.Row) -> AuditEvent:
    fields = {column: row[column] for column in _EVENT_COLUMNS}
    fields["timestamp"] = datetime.fromisoformat(row["timestamp"])
    return AuditEvent(**fields)


def _where(filters: EventFilters) -> tuple[str, list[Any]]:
    """WHERE clause (possibly empty) and its parameters for ``filters``."""
    clauses: list[str] = []
    params: list[Any] = []

    if filters.decision_in is not None:
        clauses.append(f"decision IN ({', '.join('?' for _ in filters.decision_in)})")
        params.extend(filters.decision_in)
    elif filters.decision is not None:
        clauses.append("decision = ?")
        params.append(filters.decision)

    for column in ("principal_id", "key_id"):
        value = getattr(filters, column)
        if value is not None:
            clauses.append(f"{column} = ?")
            params.append(value)

    if filters.since is not None:
        clauses.append("timestamp >= ?")
        params.append(to_db_timestamp(filters.since))
    if filters.until is not None:
        clauses.append("timestamp <= ?")
        params.append(to_db_timestamp(filters.until))

    return (" WHERE " + " AND ".join(clauses)) if clauses else "", params


class LocalSQLiteAuditBackend:
    """Audit backend on a long-lived aiosqlite connection.

    Usage:
        backend = LocalSQLiteAuditBackend("~/.enforcer/audit.db")
        await backend.initialize()
        await backend.log_event(event)
        recent = await backend.query_events(EventFilters(decision="REVOKED"))
        await backend.close()
    """

    def __init__(self, db_path: str = "~/.enforcer/audit.db") -> None:
        self._db_path: str = os.path.expanduser(db_path)
        self._db: Optional[aiosqlite.Connection] = None

    @property
    def db_path(self) -> str:
        return self._db_path

    async def initialize(self) -> None:
        """Raises RuntimeError when the file has an unknown schema version."""
        self._db = await open_versioned_db(self._db_path, _SCHEMA_SQL, _SCHEMA_VERSION, "audit database")

    async def close(self) -> None:
        if self._db is None:
            return
        await self._db.close()
        self._db = None
        logger.debug("audit_db_closed", db_path=self._db_path)

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Audit database not initialized — call initialize() first")
        return self._db

    async def log_event(self, event: AuditEvent) -> None:
        """Persist ``event``. Failures are logged and swallowed."""
        try:
            db = self._conn()
            await db.execute(_INSERT_SQL, _event_params(event))
            await db.commit()
        except Exception as exc:
            logger.error(
                "audit_write_failed",
                audit_event_id=event.event_id,
                decision=event.decision,
                error=str(exc),
                error_type=type(exc).__name__,
            )

    async def query_events(self, filters: EventFilters) -> list[AuditEvent]:
        where, params = _where(filters)
        sql = (
            f"SELECT * FROM audit_events{where} "
            f"ORDER BY timestamp DESC, id DESC "
            f"LIMIT {int(filters.limit)} OFFSET {int(filters.offset)}"
        )
        async with self._conn().execute(sql, params) as cursor:
            return [_event_from_row(row) for row in await cursor.fetchall()]

    async def count_events(self, filters: EventFilters) -> int:
        where, params = _where(filters)
        async with self._conn().execute(f"SELECT COUNT(*) FROM audit_events{where}", params) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0

    async def health_check(self) -> bool:
        return await ping(self._db)

    async def prune_old_events(self, retention_days: int = DEFAULT_AUDIT_RETENTION_DAYS) -> int:
        """Delete events strictly older than ``retention_days``. Returns the count."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)
        db = self._conn()
        cursor = await db.execute("DELETE FROM audit_events WHERE timestamp < ?", (to_db_timestamp(cutoff),))
        await db.commit()
        deleted = cursor.rowcount
        if deleted > 0:
            logger.info(
                "audit_prune_complete",
                deleted_count=deleted,
                retention_days=retention_days,
                cutoff=cutoff.isoformat(),
            )
        return deleted
