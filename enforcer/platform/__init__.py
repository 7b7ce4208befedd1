"""Platform boundary package.

Re-exports the value types and collaborator protocols:

    from enforcer.platform import NativeKey, Principal, NativeKeyStore

Layout:
    models.py        — NativeKey, Principal, ResourceRef, AccessGrant, KeyPair, Page
    protocol.py      — collaborator Protocols + PlatformError
    bitbucket.py     — BitbucketClient (httpx) implementing the platform protocols
    keygen.py        — OpenSSHKeyPairGenerator (cryptography)
    notifications.py — LoggingNotificationSink, WebhookNotificationSink
"""

from enforcer.platform.models import AccessGrant, KeyPair, NativeKey, Page, Principal, ResourceRef
from enforcer.platform.protocol import (
    AccessGrantIndex,
    KeyPairGenerator,
    NativeKeyStore,
    NotificationSink,
    PlatformError,
    PrincipalDirectory,
)

__all__ = [
    "AccessGrant",
    "KeyPair",
    "NativeKey",
    "Page",
    "Principal",
    "ResourceRef",
    "AccessGrantIndex",
    "KeyPairGenerator",
    "NativeKeyStore",
    "NotificationSink",
    "PlatformError",
    "PrincipalDirectory",
]
