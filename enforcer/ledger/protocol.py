"""KeyLedger Protocol + ledger exceptions.

Layout:
    models.py        — TrackedKeyRecord + KeyType
    protocol.py      — KeyLedger Protocol + LedgerError / DuplicateKeyError
    sqlite_ledger.py — LocalSQLiteKeyLedger (aiosqlite, WAL, PRAGMA version guard)
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from enforcer.ledger.models import KeyType, TrackedKeyRecord
from enforcer.platform.models import NativeKey, Principal


class LedgerError(Exception):
    """A ledger read or write could not be completed."""

    def __init__(self, message: str = "Key ledger operation failed") -> None:
        super().__init__(message)
        self.message = message


class DuplicateKeyError(LedgerError):
    """Raised when a write would violate uniqueness of the public key text."""

    def __init__(self, message: str = "Public key text is already tracked") -> None:
        super().__init__(message)


@runtime_checkable
class KeyLedger(Protocol):
    """Durable record of every key the enforcer governs.

    Unlike the audit backend, ledger methods DO raise: callers rely on a
    failed write being visible so they never revoke a key whose bypass
    record could not be stored.
    """

    async def create_from_external_key(
        self, key: NativeKey, principal: Principal, key_type: KeyType
    ) -> TrackedKeyRecord:
        """Record an externally created key accepted under bypass policy.

        Raises DuplicateKeyError if key.text is already tracked.
        """
        ...

    async def create_for_generated_key(
        self, principal: Principal, text: str, label: str
    ) -> TrackedKeyRecord:
        """Record a freshly generated USER key before it reaches the platform."""
        ...

    async def update_with_native_id(
        self, record: TrackedKeyRecord, key: NativeKey
    ) -> TrackedKeyRecord:
        """Attach the platform-assigned key id. Raises LedgerError if a
        different id is already set."""
        ...

    async def keys_for_principal(self, principal_id: int) -> list[TrackedKeyRecord]:
        ...

    async def list_expired(
        self, cutoff: datetime, key_type: KeyType
    ) -> list[TrackedKeyRecord]:
        """Records of key_type with created_at strictly before cutoff."""
        ...

    async def list_orphans(self, older_than: datetime) -> list[TrackedKeyRecord]:
        """Records still lacking a native key id, created before older_than."""
        ...

    async def remove(self, record: TrackedKeyRecord) -> None:
        ...

    async def find_by_text(self, text: str) -> Optional[TrackedKeyRecord]:
        """Exact-match lookup on public key text."""
        ...

    async def forget_matching(self, key: NativeKey) -> bool:
        """Remove the record for a native key. Returns False if none matched."""
        ...

    async def update(self, record: TrackedKeyRecord) -> None:
        """Persist mutable fields (association, label)."""
        ...

    async def health_check(self) -> bool:
        """Returns True if the ledger is operational. Must not raise."""
        ...

    async def close(self) -> None:
        ...
