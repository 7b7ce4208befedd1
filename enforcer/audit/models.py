"""AuditEvent dataclass and decision type alias.

Every governance decision produces exactly one AuditEvent. The audit trail is
a side channel: it records what the engine decided, it never feeds back
into a decision.

IMPORTANT: AuditEvent never carries public key text or private key material,
only the native key id and the ledger record id.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Optional

# ─── Type Aliases ─────────────────────────────────────────────────────────────

DecisionType = Literal[
    "ALREADY_TRACKED",
    "ACCEPTED_BAMBOO",
    "ACCEPTED_BYPASS",
    "REVOKED",
    "LEDGER_WRITE_FAILED",
    "GENERATED",
    "GENERATION_FAILED",
    "ASSOCIATED",
    "EXPIRED",
    "EXPIRY_FAILED",
    "FORGOTTEN",
    "FORGET_UNKNOWN",
    "ORPHAN_PURGED",
]

DECISIONS: frozenset[str] = frozenset(DecisionType.__args__)  # type: ignore[attr-defined]


# ─── AuditEvent ───────────────────────────────────────────────────────────────


@dataclass
class AuditEvent:
    """One recorded governance decision.

    Field reference:
        Required: event_id, timestamp, decision
        Optional: key_id, record_id, principal_id, key_type, detail
    """

    event_id: str
    """ULID; the audit table is idempotent on this value."""
    timestamp: datetime
    """UTC time the decision was taken."""
    decision: DecisionType

    key_id: Optional[int] = None
    """Native key id, when known."""
    record_id: Optional[int] = None
    """Ledger row id, when a record was involved."""
    principal_id: Optional[int] = None
    key_type: Optional[str] = None
    """USER / BAMBOO / BYPASS, when a record was involved."""
    detail: Optional[str] = None
    """Short free-text context (error type, resource, etc.)."""
    schema_version: int = 1
