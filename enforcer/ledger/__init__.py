"""Key ledger package.

Re-exports the public API:

    from enforcer.ledger import KeyLedger, KeyType, TrackedKeyRecord

Layout:
    models.py        — TrackedKeyRecord + KeyType
    protocol.py      — KeyLedger Protocol + LedgerError / DuplicateKeyError
    sqlite_ledger.py — LocalSQLiteKeyLedger (aiosqlite, WAL, PRAGMA version guard)
    factory.py       — create_key_ledger() — path resolution + initialize()
"""

from enforcer.ledger.models import KeyType, TrackedKeyRecord
from enforcer.ledger.protocol import DuplicateKeyError, KeyLedger, LedgerError

__all__ = [
    "KeyType",
    "TrackedKeyRecord",
    "KeyLedger",
    "LedgerError",
    "DuplicateKeyError",
]
