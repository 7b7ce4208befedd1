"""Health endpoint.

GET /health is unauthenticated and gated on ``app.state.ready``: 503 during
lifespan startup, 200 afterwards with the ledger and audit backends checked.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    """Primary health check.

    Response body (200):
        {
          "status": "ok" | "degraded",
          "ledger": "healthy" | "error",
          "audit": "healthy" | "error",
          "policy_reloads": 0,
          "sweep_scheduled": true
        }

    "degraded" means the ledger is unreachable: key events will be answered
    with 503 until it recovers. An audit failure alone does not degrade.
    """
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(
            status_code=503,
            detail={"status": "starting", "message": "Enforcer is starting up"},
        )

    ledger_ok = await request.app.state.ledger.health_check()
    audit_ok = await request.app.state.audit_backend.health_check()
    settings = request.app.state.settings

    return {
        "status": "ok" if ledger_ok else "degraded",
        "ledger": "healthy" if ledger_ok else "error",
        "audit": "healthy" if audit_ok else "error",
        "policy_reloads": getattr(settings, "reload_count", 0),
        "sweep_scheduled": getattr(request.app.state, "sweep_task", None) is not None,
    }
