"""API token authentication dependency.

Header extraction precedence:
  1. X-Enforcer-Token: <token>        (preferred)
  2. Authorization: Bearer <token>    (fallback)

Auth control:
  - ENFORCER_AUTH_REQUIRED=true  → token checked against ENFORCER_API_TOKEN (default)
  - ENFORCER_AUTH_REQUIRED=false → auth bypassed, caller='anonymous' (testing/dev only)

With auth required and no ENFORCER_API_TOKEN configured, every request is
refused: there is nothing to compare against.
"""

from __future__ import annotations

import hmac
import os
import re

from fastapi import HTTPException, Request

from enforcer.utils.logger import get_logger

logger = get_logger(__name__)

_BEARER_RE = re.compile(r"^Bearer\s+(\S+)", re.IGNORECASE)


def _is_auth_required() -> bool:
    """Read ENFORCER_AUTH_REQUIRED per request so tests can monkeypatch it."""
    return os.environ.get("ENFORCER_AUTH_REQUIRED", "true").lower() == "true"


def _extract_bearer(authorization: str) -> str | None:
    if not authorization:
        return None
    m = _BEARER_RE.match(authorization.strip())
    return m.group(1) if m else None


async def authenticate_request(request: Request) -> str:
    """FastAPI dependency: check the caller's API token.

    Returns:
        'token' on success, 'anonymous' when auth is disabled.

    Raises:
        HTTPException(401): token missing, wrong, or not configured.
    """
    if not _is_auth_required():
        return "anonymous"

    token = request.headers.get("X-Enforcer-Token") or _extract_bearer(
        request.headers.get("Authorization", "")
    )
    expected = os.environ.get("ENFORCER_API_TOKEN", "")

    if not expected:
        logger.error(
            "auth_token_not_configured",
            path=str(request.url.path),
        )
        raise HTTPException(status_code=401, detail="API token not configured")

    if not token:
        logger.warning(
            "auth_token_missing",
            path=str(request.url.path),
            method=request.method,
        )
        raise HTTPException(status_code=401, detail="Missing API token")

    if not hmac.compare_digest(token.encode(), expected.encode()):
        logger.warning(
            "auth_token_invalid",
            path=str(request.url.path),
            method=request.method,
        )
        raise HTTPException(status_code=401, detail="Invalid API token")

    return "token"
