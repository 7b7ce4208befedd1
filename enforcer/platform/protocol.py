"""Collaborator interfaces consumed by the governance engine.

Each Protocol is the narrow slice of the platform (or of an out-of-band
service) the engine actually needs. Concrete implementations:

    NativeKeyStore     — BitbucketClient (platform/bitbucket.py)
    AccessGrantIndex   — BitbucketClient
    PrincipalDirectory — BitbucketClient
    KeyPairGenerator   — OpenSSHKeyPairGenerator (platform/keygen.py)
    NotificationSink   — LoggingNotificationSink, WebhookNotificationSink
                         (platform/notifications.py)

Timeouts are the collaborator's concern; the engine never wraps these calls
in its own deadline.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from enforcer.platform.models import AccessGrant, KeyPair, NativeKey, Page, Principal


class PlatformError(Exception):
    """Raised by platform adapters when a call fails (transport or non-2xx status)."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@runtime_checkable
class NativeKeyStore(Protocol):
    """The platform's authoritative registry of accepted SSH keys.

    Every removal, by any actor, is echoed back to the enforcer as a
    key-removed event. remove() returning does NOT mean that event has
    been processed yet.
    """

    async def remove(self, key_id: int) -> None:
        ...

    async def add_for_user(self, principal: Principal, public_key_text: str) -> NativeKey:
        ...


@runtime_checkable
class AccessGrantIndex(Protocol):
    """Lookup of repository/project access grants referencing a key."""

    async def find_grants_for_key(
        self, key_id: int, start: int = 0, limit: int = 25
    ) -> Page[AccessGrant]:
        ...


@runtime_checkable
class PrincipalDirectory(Protocol):
    """User and group resolution."""

    async def get_by_name(self, name: str) -> Optional[Principal]:
        ...

    async def get_by_id(self, principal_id: int) -> Optional[Principal]:
        ...

    async def group_exists(self, group: str) -> bool:
        ...

    async def is_member(self, principal: Principal, group: str) -> bool:
        ...


@runtime_checkable
class KeyPairGenerator(Protocol):
    async def generate(self, comment: str) -> KeyPair:
        ...


@runtime_checkable
class NotificationSink(Protocol):
    """Fire-and-forget user notification.

    notify_expired_key() must NEVER raise; delivery failures are logged by
    the sink itself.
    """

    async def notify_expired_key(self, principal_id: int) -> None:
        ...
