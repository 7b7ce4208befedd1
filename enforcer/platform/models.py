"""Value types exchanged with the source-hosting platform.

These mirror the platform's own entities at the interface boundary only:
the enforcer never owns a NativeKey or a Principal, it just reacts to them.

ResourceRef is a tagged variant over {Repository, Project}; "no resource"
is represented by None at the use site, never by a third tag.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, Literal, Optional, TypeVar

T = TypeVar("T")

ResourceKind = Literal["REPOSITORY", "PROJECT"]


@dataclass(frozen=True)
class NativeKey:
    """An SSH public key as held by the platform's native key store."""

    id: int
    text: str
    label: Optional[str] = None


@dataclass(frozen=True)
class Principal:
    """A platform user account.

    ``name`` is the login name matched against the configured authorized user;
    ``slug`` is the URL-safe form the REST API addresses users by.
    """

    id: int
    name: str
    slug: Optional[str] = None
    display_name: Optional[str] = None
    email: Optional[str] = None

    @property
    def url_slug(self) -> str:
        return self.slug or self.name


@dataclass(frozen=True)
class ResourceRef:
    """Repository or project a key's access grant targets."""

    kind: ResourceKind
    id: int

    @classmethod
    def repository(cls, repository_id: int) -> "ResourceRef":
        return cls(kind="REPOSITORY", id=repository_id)

    @classmethod
    def project(cls, project_id: int) -> "ResourceRef":
        return cls(kind="PROJECT", id=project_id)


@dataclass(frozen=True)
class AccessGrant:
    """One access-key grant: a key is allowed onto a repository or project."""

    resource: ResourceRef
    permission: Optional[str] = None


@dataclass(frozen=True)
class KeyPair:
    """Generated key material. The private half is returned once, never stored."""

    public_key: str
    private_key: str


@dataclass
class Page(Generic[T]):
    """One page of a paged platform listing."""

    values: list[T] = field(default_factory=list)
    start: int = 0
    limit: int = 25
    is_last_page: bool = True

    @property
    def size(self) -> int:
        return len(self.values)
