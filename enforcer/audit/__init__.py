"""Audit trail package.

Re-exports the public API:

    from enforcer.audit import AuditEvent, AuditBackend, EventFilters

Layout:
    models.py         — AuditEvent + DecisionType
    protocol.py       — AuditBackend Protocol + EventFilters + NullAuditBackend
    sqlite_backend.py — LocalSQLiteAuditBackend (aiosqlite, WAL, PRAGMA version guard)
    factory.py        — create_audit_backend() — backend selection by config/env
"""

from enforcer.audit.models import DECISIONS, AuditEvent, DecisionType
from enforcer.audit.protocol import AuditBackend, EventFilters, NullAuditBackend

__all__ = [
    "DECISIONS",
    "DecisionType",
    "AuditEvent",
    "EventFilters",
    "AuditBackend",
    "NullAuditBackend",
]
