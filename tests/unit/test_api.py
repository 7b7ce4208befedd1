"""Route tests for the HTTP surface: events, key management, audit, health, auth.

The app comes from create_app(); lifespan is not run. app.state is populated
with the engine and fakes from conftest, mirroring what lifespan would do.
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from enforcer.ledger.protocol import LedgerError
from enforcer.main import create_app
from enforcer.platform.protocol import PlatformError


@pytest.fixture
def app(engine, ledger, audit, directory, settings) -> FastAPI:
    application = create_app()
    application.state.engine = engine
    application.state.ledger = ledger
    application.state.audit_backend = audit
    application.state.directory = directory
    application.state.settings = settings
    application.state.sweep_task = None
    application.state.ready = True
    return application


@pytest.fixture
async def client(app: FastAPI):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


def _added(key_id: int, user: dict, text: str | None = None) -> dict:
    return {"key": {"id": key_id, "text": text or f"ssh-rsa KEY{key_id}"}, "user": user}


ALICE = {"id": 1, "name": "alice", "slug": "alice"}
BAMBOO = {"id": 2, "name": "bamboo", "slug": "bamboo"}


# ─── Health ───────────────────────────────────────────────────────────────────


class TestHealth:
    async def test_503_before_ready(self, app: FastAPI, client: AsyncClient) -> None:
        app.state.ready = False

        response = await client.get("/health")

        assert response.status_code == 503
        assert response.json()["error"]["status"] == "starting"

    async def test_ok_after_ready(self, client: AsyncClient) -> None:
        response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["ledger"] == "healthy"
        assert body["sweep_scheduled"] is False

    async def test_degraded_when_ledger_down(self, ledger, client: AsyncClient) -> None:
        await ledger.close()

        body = (await client.get("/health")).json()

        assert body["status"] == "degraded"
        assert body["ledger"] == "error"


# ─── Platform events ──────────────────────────────────────────────────────────


class TestEvents:
    async def test_unauthorized_key_revoked(self, client, key_store, alice) -> None:
        response = await client.post("/events/keys/added", json=_added(7, ALICE))

        assert response.status_code == 200
        assert response.json() == {"key_id": 7, "outcome": "REVOKED"}
        assert key_store.removed == [7]

    async def test_bamboo_key_accepted(self, client, key_store, bamboo) -> None:
        response = await client.post("/events/keys/added", json=_added(8, BAMBOO))

        assert response.json()["outcome"] == "ACCEPTED_BAMBOO"
        assert key_store.removed == []

    async def test_ledger_failure_is_503(self, client, engine, monkeypatch) -> None:
        monkeypatch.setattr(engine, "intercept_system_key", AsyncMock(side_effect=LedgerError("locked")))

        response = await client.post("/events/keys/added", json=_added(9, BAMBOO))

        assert response.status_code == 503

    async def test_platform_failure_is_502(self, client, engine, monkeypatch) -> None:
        monkeypatch.setattr(engine, "intercept_system_key", AsyncMock(side_effect=PlatformError("down")))

        response = await client.post("/events/keys/added", json=_added(9, ALICE))

        assert response.status_code == 502

    async def test_malformed_event_is_422(self, client) -> None:
        response = await client.post("/events/keys/added", json={"key": {"id": "x"}})
        assert response.status_code == 422

    async def test_removed_event(self, client, bamboo) -> None:
        await client.post("/events/keys/added", json=_added(10, BAMBOO))

        first = await client.post("/events/keys/removed", json={"key": {"id": 10, "text": "ssh-rsa KEY10"}})
        second = await client.post("/events/keys/removed", json={"key": {"id": 10, "text": "ssh-rsa KEY10"}})

        assert first.json() == {"key_id": 10, "forgotten": True}
        assert second.json() == {"key_id": 10, "forgotten": False}

    async def test_not_ready_is_503(self, app, client) -> None:
        app.state.ready = False
        response = await client.post("/events/keys/added", json=_added(1, ALICE))
        assert response.status_code == 503


# ─── Key management ───────────────────────────────────────────────────────────


class TestKeyManagement:
    async def test_generate_returns_private_key_once(self, client, ledger, alice) -> None:
        response = await client.post("/api/keys/generate", json={"username": "alice"})

        assert response.status_code == 200
        body = response.json()
        assert body["username"] == "alice"
        assert "PRIVATE KEY" in body["private_key"]
        (record,) = await ledger.keys_for_principal(alice.id)
        assert record.text == body["public_key"]

        listing = (await client.get("/api/keys/alice")).json()
        assert "private_key" not in str(listing)
        assert listing["keys"][0]["key_type"] == "USER"

    async def test_generate_unknown_user_is_404(self, client) -> None:
        response = await client.post("/api/keys/generate", json={"username": "ghost"})
        assert response.status_code == 404

    async def test_generate_platform_failure_is_502(self, client, key_store, alice) -> None:
        key_store.fail_add = PlatformError("rejected", status_code=400)

        response = await client.post("/api/keys/generate", json={"username": "alice"})

        assert response.status_code == 502

    async def test_generate_rate_limited(self, client, alice) -> None:
        statuses = [
            (await client.post("/api/keys/generate", json={"username": "alice"})).status_code
            for _ in range(11)
        ]
        assert statuses[:10] == [200] * 10
        assert statuses[10] == 429

    async def test_list_unknown_user_is_empty(self, client) -> None:
        response = await client.get("/api/keys/nobody")
        assert response.json() == {"username": "nobody", "keys": []}

    async def test_manual_sweep(self, client) -> None:
        response = await client.post("/api/admin/sweep")
        assert response.json() == {"candidates": 0, "expired": 0, "failed": 0}


# ─── Audit ────────────────────────────────────────────────────────────────────


class TestAuditEndpoint:
    async def test_filter_by_decision(self, client, alice, bamboo) -> None:
        await client.post("/events/keys/added", json=_added(1, ALICE))
        await client.post("/events/keys/added", json=_added(2, BAMBOO))

        body = (await client.get("/api/audit/events", params={"decision": "REVOKED"})).json()

        assert body["total"] == 1
        assert body["events"][0]["key_id"] == 1
        assert body["events"][0]["decision"] == "REVOKED"

    async def test_filter_by_time_window(self, client, clock, alice) -> None:
        start = clock.now
        await client.post("/events/keys/added", json=_added(1, ALICE))
        clock.advance(hours=1)
        await client.post("/events/keys/added", json=_added(2, ALICE))
        clock.advance(hours=1)
        await client.post("/events/keys/added", json=_added(3, ALICE))

        window = {
            "since": (start + timedelta(minutes=30)).isoformat(),
            "until": (start + timedelta(minutes=90)).isoformat(),
        }
        body = (await client.get("/api/audit/events", params=window)).json()

        assert body["total"] == 1
        assert body["events"][0]["key_id"] == 2

    async def test_malformed_since_is_422(self, client) -> None:
        response = await client.get("/api/audit/events", params={"since": "yesterday"})
        assert response.status_code == 422

    async def test_unknown_decision_is_400(self, client) -> None:
        response = await client.get("/api/audit/events", params={"decision": "NOPE"})
        assert response.status_code == 400


# ─── Auth ─────────────────────────────────────────────────────────────────────


class TestAuth:
    @pytest.fixture(autouse=True)
    def require_auth(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ENFORCER_AUTH_REQUIRED", "true")
        monkeypatch.setenv("ENFORCER_API_TOKEN", "t0ken")

    async def test_missing_token_is_401(self, client) -> None:
        assert (await client.get("/api/keys/alice")).status_code == 401

    async def test_wrong_token_is_401(self, client) -> None:
        response = await client.get("/api/keys/alice", headers={"X-Enforcer-Token": "nope"})
        assert response.status_code == 401

    async def test_header_token_accepted(self, client) -> None:
        response = await client.get("/api/keys/alice", headers={"X-Enforcer-Token": "t0ken"})
        assert response.status_code == 200

    async def test_bearer_token_accepted(self, client) -> None:
        response = await client.get("/api/keys/alice", headers={"Authorization": "Bearer t0ken"})
        assert response.status_code == 200

    async def test_events_require_token(self, client, key_store) -> None:
        response = await client.post("/events/keys/added", json=_added(1, ALICE))

        assert response.status_code == 401
        assert key_store.removed == []

    async def test_unconfigured_token_refuses_everything(self, client, monkeypatch) -> None:
        monkeypatch.delenv("ENFORCER_API_TOKEN")
        response = await client.get("/api/keys/alice", headers={"X-Enforcer-Token": ""})
        assert response.status_code == 401

    async def test_health_needs_no_token(self, client) -> None:
        assert (await client.get("/health")).status_code == 200
