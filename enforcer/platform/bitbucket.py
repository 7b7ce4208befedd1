"""Bitbucket Server REST adapter.

One BitbucketClient implements the three platform-facing protocols the engine
consumes (NativeKeyStore, AccessGrantIndex, PrincipalDirectory) over a single
shared httpx.AsyncClient. Never instantiate an httpx client per call.

Failure mapping:
  - httpx.TransportError (connect, timeout, protocol) → PlatformError, no status
  - non-2xx response                                  → PlatformError(status_code)
  - DELETE of an already-deleted key (404)            → success
  - user / group lookups answering 404                → None / False
"""

from __future__ import annotations

from typing import Any, Optional
from urllib.parse import quote

import httpx

from enforcer.constants import (
    DEFAULT_PLATFORM_TIMEOUT_S,
    USER_DIRECTORY_MAX_PAGES,
    USER_DIRECTORY_PAGE_SIZE,
)
from enforcer.platform.models import AccessGrant, NativeKey, Page, Principal, ResourceRef
from enforcer.platform.protocol import PlatformError
from enforcer.utils.logger import get_logger

logger = get_logger(__name__)

_SSH_KEYS = "/rest/ssh/1.0/keys"
_ACCESS_KEYS = "/rest/keys/1.0/ssh"
_API = "/rest/api/1.0"


def create_platform_client(
    base_url: str,
    token: Optional[str] = None,
    timeout_s: float = DEFAULT_PLATFORM_TIMEOUT_S,
) -> httpx.AsyncClient:
    """Create the shared httpx.AsyncClient used for all platform calls."""
    headers = {"Accept": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return httpx.AsyncClient(
        base_url=base_url.rstrip("/"),
        headers=headers,
        timeout=httpx.Timeout(timeout_s),
    )


def _principal_from_json(data: dict[str, Any]) -> Principal:
    return Principal(
        id=int(data["id"]),
        name=data["name"],
        slug=data.get("slug"),
        display_name=data.get("displayName"),
        email=data.get("emailAddress"),
    )


class BitbucketClient:
    """NativeKeyStore + AccessGrantIndex + PrincipalDirectory over REST."""

    def __init__(self, http_client: httpx.AsyncClient) -> None:
        self._http = http_client

    async def _request(
        self,
        method: str,
        url: str,
        *,
        ok_statuses: tuple[int, ...] = (),
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            response = await self._http.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            logger.warning(
                "platform_unreachable",
                method=method,
                url=url,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise PlatformError(f"{method} {url} failed: {type(exc).__name__}") from exc

        if response.is_success or response.status_code in ok_statuses:
            return response

        logger.warning(
            "platform_request_failed",
            method=method,
            url=url,
            status_code=response.status_code,
        )
        raise PlatformError(
            f"{method} {url} returned HTTP {response.status_code}",
            status_code=response.status_code,
        )

    # ─── NativeKeyStore ───────────────────────────────────────────────────────

    async def remove(self, key_id: int) -> None:
        response = await self._request("DELETE", f"{_SSH_KEYS}/{key_id}", ok_statuses=(404,))
        if response.status_code == 404:
            logger.debug("native_key_already_removed", key_id=key_id)

    async def add_for_user(self, principal: Principal, public_key_text: str) -> NativeKey:
        response = await self._request(
            "POST",
            _SSH_KEYS,
            params={"user": principal.url_slug},
            json={"text": public_key_text},
        )
        data = response.json()
        return NativeKey(id=int(data["id"]), text=data.get("text", public_key_text), label=data.get("label"))

    # ─── AccessGrantIndex ─────────────────────────────────────────────────────

    async def find_grants_for_key(
        self, key_id: int, start: int = 0, limit: int = 25
    ) -> Page[AccessGrant]:
        """Repository grants first; project grants only if the key opens no repository."""
        params = {"start": start, "limit": limit}

        response = await self._request("GET", f"{_ACCESS_KEYS}/{key_id}/repos", params=params)
        page = self._grant_page(response.json(), "repository", ResourceRef.repository)
        if page.values:
            return page

        response = await self._request("GET", f"{_ACCESS_KEYS}/{key_id}/projects", params=params)
        return self._grant_page(response.json(), "project", ResourceRef.project)

    @staticmethod
    def _grant_page(data: dict[str, Any], field: str, ref) -> Page[AccessGrant]:
        grants = [
            AccessGrant(resource=ref(int(item[field]["id"])), permission=item.get("permission"))
            for item in data.get("values", [])
            if item.get(field) and "id" in item[field]
        ]
        return Page(
            values=grants,
            start=data.get("start", 0),
            limit=data.get("limit", len(grants)),
            is_last_page=data.get("isLastPage", True),
        )

    # ─── PrincipalDirectory ───────────────────────────────────────────────────

    async def get_by_name(self, name: str) -> Optional[Principal]:
        response = await self._request(
            "GET", f"{_API}/users/{quote(name, safe='')}", ok_statuses=(404,)
        )
        if response.status_code == 404:
            return None
        return _principal_from_json(response.json())

    async def get_by_id(self, principal_id: int) -> Optional[Principal]:
        """Scan the user directory for a numeric id.

        The REST API only addresses users by slug, so this pages through the
        listing. Bounded by USER_DIRECTORY_MAX_PAGES; past that the user is
        reported as unknown.
        """
        start = 0
        for _ in range(USER_DIRECTORY_MAX_PAGES):
            response = await self._request(
                "GET",
                f"{_API}/users",
                params={"start": start, "limit": USER_DIRECTORY_PAGE_SIZE},
            )
            data = response.json()
            for item in data.get("values", []):
                if int(item.get("id", -1)) == principal_id:
                    return _principal_from_json(item)
            if data.get("isLastPage", True):
                return None
            start = data.get("nextPageStart", start + USER_DIRECTORY_PAGE_SIZE)

        logger.warning("user_directory_scan_truncated", principal_id=principal_id, pages=USER_DIRECTORY_MAX_PAGES)
        return None

    async def group_exists(self, group: str) -> bool:
        response = await self._request("GET", f"{_API}/admin/groups", params={"filter": group})
        return any(item.get("name") == group for item in response.json().get("values", []))

    async def is_member(self, principal: Principal, group: str) -> bool:
        response = await self._request(
            "GET",
            f"{_API}/admin/groups/more-members",
            params={"context": group, "filter": principal.name},
        )
        return any(
            int(item.get("id", -1)) == principal.id
            for item in response.json().get("values", [])
        )
