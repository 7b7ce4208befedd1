"""HTTP surface over the governance engine.

Provides:
  POST /events/keys/added    — platform webhook: a key was registered
  POST /events/keys/removed  — platform webhook: a key was deleted
  POST /api/keys/generate    — issue a fresh USER key pair (private key shown once)
  GET  /api/keys/{username}  — the user's tracked keys
  POST /api/admin/sweep      — run the expiry sweep now
  GET  /api/audit/events     — recent governance decisions, filterable by time window

Every route depends on authenticate_request and on the app being ready.
The handlers only translate between JSON and engine calls; all policy lives
in GovernanceEngine.

Status mapping:
  LedgerError   → 503 (the platform should re-deliver the event)
  PlatformError → 502
"""

from __future__ import annotations

import dataclasses
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from enforcer.api.auth import authenticate_request
from enforcer.api.limiter import KEY_GENERATION_RATE_LIMIT, limiter
from enforcer.audit.models import DECISIONS, AuditEvent
from enforcer.audit.protocol import AuditBackend, EventFilters
from enforcer.governance.engine import GovernanceEngine
from enforcer.ledger.protocol import LedgerError
from enforcer.platform.models import NativeKey, Principal
from enforcer.platform.protocol import PlatformError
from enforcer.utils.logger import clear_event_id, get_logger, set_event_id
from enforcer.utils.ulid import generate_ulid

logger = get_logger(__name__)


# ─── Dependencies ─────────────────────────────────────────────────────────────


async def get_engine(request: Request) -> GovernanceEngine:
    """Raises HTTP 503 until lifespan startup has finished."""
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(status_code=503, detail="Enforcer is starting up")
    return request.app.state.engine


async def get_audit_backend(request: Request) -> AuditBackend:
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(status_code=503, detail="Enforcer is starting up")
    return request.app.state.audit_backend


events_router = APIRouter(tags=["events"], dependencies=[Depends(authenticate_request)])
api_router = APIRouter(tags=["keys"], dependencies=[Depends(authenticate_request)])


# ─── Request Models ───────────────────────────────────────────────────────────


class KeyPayload(BaseModel):
    id: int
    text: str
    label: Optional[str] = None

    def to_native(self) -> NativeKey:
        return NativeKey(id=self.id, text=self.text, label=self.label)


class UserPayload(BaseModel):
    """Platform user as sent in webhook bodies (Bitbucket field names)."""

    id: int
    name: str
    slug: Optional[str] = None
    displayName: Optional[str] = None
    emailAddress: Optional[str] = None

    def to_principal(self) -> Principal:
        return Principal(
            id=self.id,
            name=self.name,
            slug=self.slug,
            display_name=self.displayName,
            email=self.emailAddress,
        )


class KeyAddedEvent(BaseModel):
    key: KeyPayload
    user: UserPayload
    event_id: Optional[str] = None


class KeyRemovedEvent(BaseModel):
    key: KeyPayload
    event_id: Optional[str] = None


class GenerateKeyRequest(BaseModel):
    username: str = Field(min_length=1)


def _audit_event_to_dict(event: AuditEvent) -> dict:
    data = dataclasses.asdict(event)
    data["timestamp"] = event.timestamp.isoformat()
    return data


# ─── Platform Events ──────────────────────────────────────────────────────────


@events_router.post("/keys/added")
async def key_added(
    body: KeyAddedEvent,
    engine: GovernanceEngine = Depends(get_engine),
) -> dict:
    set_event_id(body.event_id or generate_ulid())
    try:
        outcome = await engine.intercept_system_key(body.key.to_native(), body.user.to_principal())
    except LedgerError as exc:
        raise HTTPException(status_code=503, detail=f"Ledger unavailable: {exc}") from exc
    except PlatformError as exc:
        raise HTTPException(status_code=502, detail=f"Platform call failed: {exc}") from exc
    finally:
        clear_event_id()
    return {"key_id": body.key.id, "outcome": outcome.value}


@events_router.post("/keys/removed")
async def key_removed(
    body: KeyRemovedEvent,
    engine: GovernanceEngine = Depends(get_engine),
) -> dict:
    set_event_id(body.event_id or generate_ulid())
    try:
        forgotten = await engine.forget_deleted_key(body.key.to_native())
    except LedgerError as exc:
        raise HTTPException(status_code=503, detail=f"Ledger unavailable: {exc}") from exc
    finally:
        clear_event_id()
    return {"key_id": body.key.id, "forgotten": forgotten}


# ─── Key Management ───────────────────────────────────────────────────────────


@api_router.post("/keys/generate")
@limiter.limit(KEY_GENERATION_RATE_LIMIT)
async def generate_key(
    body: GenerateKeyRequest,
    request: Request,
    engine: GovernanceEngine = Depends(get_engine),
) -> dict:
    """Issue a new USER key pair. The private key is in this response only.

    Raises:
        HTTP 404: Unknown user.
        HTTP 502: The platform rejected or could not be reached.
        HTTP 503: The ledger could not be written.
    """
    directory = request.app.state.directory
    try:
        principal = await directory.get_by_name(body.username)
    except PlatformError as exc:
        raise HTTPException(status_code=502, detail=f"Platform call failed: {exc}") from exc
    if principal is None:
        raise HTTPException(status_code=404, detail=f"Unknown user '{body.username}'")

    try:
        key_pair = await engine.generate_new_key_pair_for(principal)
    except PlatformError as exc:
        raise HTTPException(status_code=502, detail=f"Platform call failed: {exc}") from exc
    except LedgerError as exc:
        raise HTTPException(status_code=503, detail=f"Ledger unavailable: {exc}") from exc

    return {
        "username": principal.url_slug,
        "public_key": key_pair.public_key,
        "private_key": key_pair.private_key,
    }


@api_router.get("/keys/{username}")
async def list_user_keys(
    username: str,
    engine: GovernanceEngine = Depends(get_engine),
) -> dict:
    try:
        records = await engine.get_keys_for_user(username)
    except PlatformError as exc:
        raise HTTPException(status_code=502, detail=f"Platform call failed: {exc}") from exc
    return {"username": username, "keys": [record.to_dict() for record in records]}


@api_router.post("/admin/sweep")
async def run_sweep(engine: GovernanceEngine = Depends(get_engine)) -> dict:
    result = await engine.replace_expired_keys_and_notify_users()
    return result.to_dict()


# ─── Audit ────────────────────────────────────────────────────────────────────


@api_router.get("/audit/events")
async def audit_events(
    principal_id: Optional[int] = Query(default=None),
    key_id: Optional[int] = Query(default=None),
    decision: Optional[str] = Query(default=None),
    since: Optional[datetime] = Query(default=None),
    until: Optional[datetime] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    backend: AuditBackend = Depends(get_audit_backend),
) -> dict:
    if decision is not None and decision not in DECISIONS:
        raise HTTPException(status_code=400, detail=f"Unknown decision '{decision}'")

    filters = EventFilters(
        decision=decision,
        principal_id=principal_id,
        key_id=key_id,
        since=since,
        until=until,
        limit=limit,
        offset=offset,
    )
    events = await backend.query_events(filters)
    total = await backend.count_events(filters)
    return {"events": [_audit_event_to_dict(e) for e in events], "total": total}
