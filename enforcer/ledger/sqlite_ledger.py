"""LocalSQLiteKeyLedger — aiosqlite-based durable key ledger.

Uses aiosqlite EXCLUSIVELY; the stdlib sqlite3 synchronous module is never
called from the event loop.

Features:
  - WAL mode: PRAGMA journal_mode=WAL (concurrent reads while writing)
  - Schema version guard: PRAGMA user_version=1 — RuntimeError on mismatch
  - Long-lived connection: opened in initialize(), closed in close()
  - UNIQUE(text) enforced at write time → DuplicateKeyError
  - CHECK constraints for key_type and repo/project mutual exclusion
  - key_id immutability enforced in update_with_native_id()
  - All writes serialized behind one asyncio.Lock so an execute/commit pair
    from one handler is never interleaved with another handler's commit
"""

from __future__ import annotations

import asyncio
import dataclasses
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Optional

import aiosqlite

from enforcer.ledger.models import KeyType, TrackedKeyRecord
from enforcer.ledger.protocol import DuplicateKeyError, LedgerError
from enforcer.platform.models import NativeKey, Principal, ResourceRef
from enforcer.utils.logger import get_logger
from enforcer.utils.sqlite import open_versioned_db, ping, to_db_timestamp

logger = get_logger(__name__)

# ─── Schema DDL ───────────────────────────────────────────────────────────────

_CREATE_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS tracked_keys (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    key_id          INTEGER UNIQUE,
    text            TEXT NOT NULL UNIQUE,
    principal_id    INTEGER NOT NULL,
    principal_name  TEXT,
    key_type        TEXT NOT NULL CHECK(key_type IN ('USER', 'BAMBOO', 'BYPASS')),
    label           TEXT,
    repo_id         INTEGER,
    project_id      INTEGER,
    created_at      TEXT NOT NULL,
    CHECK (repo_id IS NULL OR project_id IS NULL)
);

CREATE INDEX IF NOT EXISTS idx_tracked_keys_principal
    ON tracked_keys(principal_id);

CREATE INDEX IF NOT EXISTS idx_tracked_keys_type_created
    ON tracked_keys(key_type, created_at);
"""

_SCHEMA_VERSION = 1

_DEFAULT_LEDGER_DB_PATH = "~/.enforcer/ledger.db"


# ─── Clock ────────────────────────────────────────────────────────────────────


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ─── Row deserialiser ─────────────────────────────────────────────────────────


def _row_to_record(row: aiosqlite.Row) -> TrackedKeyRecord:
    association: Optional[ResourceRef] = None
    if row["repo_id"] is not None:
        association = ResourceRef.repository(row["repo_id"])
    elif row["project_id"] is not None:
        association = ResourceRef.project(row["project_id"])

    return TrackedKeyRecord(
        id=row["id"],
        key_id=row["key_id"],
        text=row["text"],
        principal_id=row["principal_id"],
        principal_name=row["principal_name"],
        key_type=KeyType(row["key_type"]),
        label=row["label"],
        association=association,
        created_at=datetime.fromisoformat(row["created_at"]),
    )


# ─── LocalSQLiteKeyLedger ─────────────────────────────────────────────────────


class LocalSQLiteKeyLedger:
    """Async SQLite key ledger.

    Usage:
        ledger = LocalSQLiteKeyLedger("/var/lib/enforcer/ledger.db")
        await ledger.initialize()   # raises RuntimeError on schema version mismatch
        record = await ledger.find_by_text(key.text)
        await ledger.close()

    The clock is injectable so expiry behaviour can be exercised without
    waiting for real time to pass.
    """

    def __init__(
        self,
        db_path: str = _DEFAULT_LEDGER_DB_PATH,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._db_path: str = os.path.expanduser(db_path)
        self._db: Optional[aiosqlite.Connection] = None
        self._clock: Callable[[], datetime] = clock or _utcnow
        self._write_lock = asyncio.Lock()

    @property
    def db_path(self) -> str:
        return self._db_path

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Open the connection in WAL mode and create or verify the schema.

        Raises:
            RuntimeError: The file was written with an unknown schema version.
        """
        self._db = await open_versioned_db(self._db_path, _CREATE_SCHEMA_SQL, _SCHEMA_VERSION, "key ledger")

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None
            logger.debug("ledger_closed", db_path=self._db_path)

    async def health_check(self) -> bool:
        return await ping(self._db)

    # ── Internal helpers ──────────────────────────────────────────────────────

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise LedgerError("Key ledger not initialized — call initialize() first")
        return self._db

    @asynccontextmanager
    async def _writing(self, operation: str) -> AsyncIterator[aiosqlite.Connection]:
        """Serialize a write, commit on success, map sqlite errors to LedgerError."""
        db = self._conn()
        async with self._write_lock:
            try:
                yield db
                await db.commit()
            except aiosqlite.IntegrityError as exc:
                await db.rollback()
                if "tracked_keys.text" in str(exc):
                    raise DuplicateKeyError() from exc
                raise LedgerError(f"{operation} violated a ledger constraint: {exc}") from exc
            except aiosqlite.Error as exc:
                await db.rollback()
                raise LedgerError(f"{operation} failed: {exc}") from exc

    async def _fetch_all(self, sql: str, params: tuple) -> list[TrackedKeyRecord]:
        try:
            cursor = await self._conn().execute(sql, params)
            rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise LedgerError(f"Ledger query failed: {exc}") from exc
        return [_row_to_record(row) for row in rows]

    async def _fetch_one(self, sql: str, params: tuple) -> Optional[TrackedKeyRecord]:
        try:
            cursor = await self._conn().execute(sql, params)
            row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise LedgerError(f"Ledger query failed: {exc}") from exc
        return _row_to_record(row) if row is not None else None

    async def _insert(
        self,
        *,
        key_id: Optional[int],
        text: str,
        principal: Principal,
        key_type: KeyType,
        label: Optional[str],
    ) -> TrackedKeyRecord:
        created_at = self._clock()
        async with self._writing("insert") as db:
            cursor = await db.execute(
                """INSERT INTO tracked_keys
                   (key_id, text, principal_id, principal_name, key_type, label, created_at)
                   VALUES (?,?,?,?,?,?,?)""",
                (
                    key_id,
                    text,
                    principal.id,
                    principal.name,
                    key_type.value,
                    label,
                    to_db_timestamp(created_at),
                ),
            )
            row_id = cursor.lastrowid

        return TrackedKeyRecord(
            id=row_id,  # type: ignore[arg-type]
            key_id=key_id,
            text=text,
            principal_id=principal.id,
            principal_name=principal.name,
            key_type=key_type,
            label=label,
            created_at=datetime.fromisoformat(to_db_timestamp(created_at)),
        )

    # ── KeyLedger Protocol Methods ────────────────────────────────────────────

    async def create_from_external_key(
        self, key: NativeKey, principal: Principal, key_type: KeyType
    ) -> TrackedKeyRecord:
        record = await self._insert(
            key_id=key.id,
            text=key.text,
            principal=principal,
            key_type=key_type,
            label=key.label,
        )
        logger.debug(
            "ledger_record_created",
            record_id=record.id,
            key_id=key.id,
            key_type=key_type.value,
            principal_id=principal.id,
        )
        return record

    async def create_for_generated_key(
        self, principal: Principal, text: str, label: str
    ) -> TrackedKeyRecord:
        record = await self._insert(
            key_id=None,
            text=text,
            principal=principal,
            key_type=KeyType.USER,
            label=label,
        )
        logger.debug(
            "ledger_record_created",
            record_id=record.id,
            key_type=KeyType.USER.value,
            principal_id=principal.id,
        )
        return record

    async def update_with_native_id(
        self, record: TrackedKeyRecord, key: NativeKey
    ) -> TrackedKeyRecord:
        async with self._writing("update_with_native_id") as db:
            cursor = await db.execute(
                "UPDATE tracked_keys SET key_id = ? "
                "WHERE id = ? AND (key_id IS NULL OR key_id = ?)",
                (key.id, record.id, key.id),
            )
            updated = cursor.rowcount
        if updated == 0:
            raise LedgerError(
                f"Record {record.id} is missing or already bound to a different native key"
            )
        return dataclasses.replace(record, key_id=key.id)

    async def keys_for_principal(self, principal_id: int) -> list[TrackedKeyRecord]:
        return await self._fetch_all(
            "SELECT * FROM tracked_keys WHERE principal_id = ? ORDER BY created_at DESC",
            (principal_id,),
        )

    async def list_expired(
        self, cutoff: datetime, key_type: KeyType
    ) -> list[TrackedKeyRecord]:
        return await self._fetch_all(
            "SELECT * FROM tracked_keys WHERE key_type = ? AND created_at < ? "
            "ORDER BY created_at ASC",
            (key_type.value, to_db_timestamp(cutoff)),
        )

    async def list_orphans(self, older_than: datetime) -> list[TrackedKeyRecord]:
        return await self._fetch_all(
            "SELECT * FROM tracked_keys WHERE key_id IS NULL AND created_at < ? "
            "ORDER BY created_at ASC",
            (to_db_timestamp(older_than),),
        )

    async def remove(self, record: TrackedKeyRecord) -> None:
        async with self._writing("remove") as db:
            await db.execute("DELETE FROM tracked_keys WHERE id = ?", (record.id,))
        logger.debug("ledger_record_removed", record_id=record.id, key_id=record.key_id)

    async def find_by_text(self, text: str) -> Optional[TrackedKeyRecord]:
        return await self._fetch_one(
            "SELECT * FROM tracked_keys WHERE text = ?",
            (text,),
        )

    async def forget_matching(self, key: NativeKey) -> bool:
        """Delete the record bound to key.id, or an unbound record with key.text.

        The text fallback covers a removal event that arrives before the
        generating call managed to store the native id.
        """
        async with self._writing("forget_matching") as db:
            cursor = await db.execute(
                "DELETE FROM tracked_keys "
                "WHERE key_id = ? OR (key_id IS NULL AND text = ?)",
                (key.id, key.text),
            )
            deleted = cursor.rowcount
        return deleted > 0

    async def update(self, record: TrackedKeyRecord) -> None:
        async with self._writing("update") as db:
            await db.execute(
                "UPDATE tracked_keys SET label = ?, repo_id = ?, project_id = ? WHERE id = ?",
                (record.label, record.repo_id, record.project_id, record.id),
            )
