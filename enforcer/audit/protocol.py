"""AuditBackend Protocol + EventFilters dataclass.

AuditEvent is defined in enforcer/audit/models.py. This module defines the
pluggable backend interface and the query filter dataclass.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from enforcer.audit.models import AuditEvent
from enforcer.utils.logger import get_logger

logger = get_logger(__name__)


# ─── EventFilters ─────────────────────────────────────────────────────────────


@dataclass
class EventFilters:
    """Query filters for AuditBackend.query_events() and count_events().

    decision_in takes precedence over decision when set. An empty
    EventFilters() returns all events up to limit=50.
    """

    decision: Optional[str] = None
    decision_in: Optional[list[str]] = None
    principal_id: Optional[int] = None
    key_id: Optional[int] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    limit: int = 50
    offset: int = 0


# ─── AuditBackend Protocol ────────────────────────────────────────────────────


@runtime_checkable
class AuditBackend(Protocol):
    """Pluggable audit backend interface.

    Implementations: LocalSQLiteAuditBackend (default), NullAuditBackend.

    log_event() must NEVER raise: a failed audit write is logged and
    swallowed so it can never change the outcome of a governance decision.
    """

    async def log_event(self, event: AuditEvent) -> None:
        ...

    async def query_events(self, filters: EventFilters) -> list[AuditEvent]:
        """Matching events, newest first."""
        ...

    async def count_events(self, filters: EventFilters) -> int:
        ...

    async def health_check(self) -> bool:
        ...

    async def prune_old_events(self, retention_days: int = 365) -> int:
        """Delete events older than retention_days. Returns count of deleted rows."""
        ...

    async def close(self) -> None:
        ...


# ─── NullAuditBackend ────────────────────────────────────────────────────────


class NullAuditBackend:
    """No-op AuditBackend, used when audit.enabled is false and in tests."""

    async def log_event(self, event: AuditEvent) -> None:
        logger.debug("NullAuditBackend.log_event", event_id=event.event_id, decision=event.decision)

    async def query_events(self, filters: EventFilters) -> list[AuditEvent]:
        return []

    async def count_events(self, filters: EventFilters) -> int:
        return 0

    async def health_check(self) -> bool:
        return True

    async def prune_old_events(self, retention_days: int = 365) -> int:
        return 0

    async def close(self) -> None:
        logger.debug("NullAuditBackend.close")


assert isinstance(NullAuditBackend(), AuditBackend), (
    "NullAuditBackend does not satisfy AuditBackend protocol — implementation error"
)
