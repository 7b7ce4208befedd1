"""HTTP API package.

Public API:
  - events_router         — platform key-added / key-removed webhooks
  - api_router            — key generation, listing, sweep, audit queries
  - authenticate_request  — FastAPI Depends() token check
  - limiter               — shared slowapi Limiter
"""

from __future__ import annotations

from enforcer.api.auth import authenticate_request
from enforcer.api.limiter import limiter
from enforcer.api.router import api_router, events_router

__all__ = [
    "authenticate_request",
    "limiter",
    "api_router",
    "events_router",
]
