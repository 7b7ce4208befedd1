"""TrackedKeyRecord dataclass and KeyType enum for the key ledger.

The ledger is the enforcer's own source of truth for "keys this system
sanctions". It is deliberately independent of the platform's native key
store, which only answers "keys the platform will accept".

Invariants (enforced by LocalSQLiteKeyLedger at write time):
    - text is unique across records
    - key_type is exactly one of USER / BAMBOO / BYPASS
    - at most one of repository / project association
    - key_id, once assigned, never changes
    - only USER records expire
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from enforcer.platform.models import ResourceRef


class KeyType(str, Enum):
    """Why a key is allowed to exist.

    Inherits from str so members compare equal to their stored column values.
    """

    USER = "USER"
    """Self-service key generated by the enforcer. Subject to expiry."""
    BAMBOO = "BAMBOO"
    """Externally created by the configured automation (build server) account."""
    BYPASS = "BYPASS"
    """Externally created by a member of the configured bypass group."""


@dataclass
class TrackedKeyRecord:
    """One governed key.

    Field reference:
        id:             Ledger row id (assigned on insert).
        key_id:         Native key id; None until the platform accepts the key.
        text:           Public key text. Unique, immutable, exact-match lookup key.
        principal_id:   Numeric id of the owning user.
        principal_name: Owning user's name at write time (reporting only).
        key_type:       KeyType classification.
        label:          Key comment, e.g. "ENTERPRISE USER KEY".
        association:    Repository/project the key grants access to, if any.
        created_at:     UTC creation time; expiry is computed from it.
    """

    id: int
    key_id: Optional[int]
    text: str
    principal_id: int
    key_type: KeyType
    created_at: datetime
    principal_name: Optional[str] = None
    label: Optional[str] = None
    association: Optional[ResourceRef] = None

    @property
    def repo_id(self) -> Optional[int]:
        if self.association is not None and self.association.kind == "REPOSITORY":
            return self.association.id
        return None

    @property
    def project_id(self) -> Optional[int]:
        if self.association is not None and self.association.kind == "PROJECT":
            return self.association.id
        return None

    def to_dict(self) -> dict:
        """JSON-safe representation used by the HTTP surface."""
        return {
            "id": self.id,
            "key_id": self.key_id,
            "text": self.text,
            "principal_id": self.principal_id,
            "principal_name": self.principal_name,
            "key_type": self.key_type.value,
            "label": self.label,
            "repo_id": self.repo_id,
            "project_id": self.project_id,
            "created_at": self.created_at.isoformat(),
        }
