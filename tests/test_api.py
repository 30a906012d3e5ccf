"""Tests for the FastAPI lockout guard and rejection handler."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from starlette.responses import JSONResponse

from exponential_lockout.api import install_lockout_handler, lockout_guard
from exponential_lockout.backends import MemoryBackend
from exponential_lockout.config import LockoutSettings, PolicyConfig
from exponential_lockout.engine import LockoutEngine
from exponential_lockout.policy import PolicyResolver
from exponential_lockout.store import AttemptStore

CONTEXTS = {
    "api_login": {"min_attempts": 2, "delays": [60, 300], "key": "email", "response_mode": "json"},
    "web_login": {
        "min_attempts": 1,
        "delays": [60],
        "key": "email",
        "response_mode": "redirect",
        "redirect_route": "/login-page",
    },
    "auto_login": {"min_attempts": 1, "delays": [60], "key": "email"},
    "hook_login": {"min_attempts": 1, "delays": [45], "key": "email", "response_mode": "callback"},
}


@pytest.fixture
def engine(make_engine):
    return make_engine(CONTEXTS)


def _app(engine, callback=None) -> FastAPI:
    app = FastAPI()
    install_lockout_handler(app, LockoutSettings(), callback=callback)

    @app.get("/login", name="login")
    async def login_page():
        return {}

    for context in CONTEXTS:

        def make_route(ctx: str):
            async def attempt(identity: str = Depends(lockout_guard(ctx, engine))):
                engine.record_failure(ctx, identity)
                return {"identity": identity}

            return attempt

        app.post(f"/{context}")(make_route(context))
    return app


class TestGuard:
    def test_allows_until_locked(self, engine):
        client = TestClient(_app(engine))
        resp = client.post("/api_login", json={"email": "a@example.com"})
        assert resp.status_code == 200
        assert resp.json() == {"identity": "a@example.com"}

    def test_json_rejection(self, engine):
        client = TestClient(_app(engine))
        for _ in range(2):
            client.post("/api_login", json={"email": "a@example.com"})
        resp = client.post("/api_login", json={"email": "a@example.com"})
        assert resp.status_code == 429
        body = resp.json()
        assert body["error"] == "lockout_active"
        assert body["context"] == "api_login"
        assert body["retry_after"] == 60
        assert resp.headers["Retry-After"] == "60"
        assert resp.headers["X-RateLimit-Limit"] == "exponential"
        assert resp.headers["X-RateLimit-Remaining"] == "0"

    def test_lock_times_come_from_engine_clock(self, engine, clock):
        client = TestClient(_app(engine))
        for _ in range(2):
            client.post("/api_login", json={"email": "a@example.com"})
        resp = client.post("/api_login", json={"email": "a@example.com"})
        expected = datetime.fromtimestamp(clock.now + 60, tz=timezone.utc)
        assert resp.json()["locked_until"] == expected.isoformat()
        assert resp.headers["X-RateLimit-Reset"] == str(int(clock.now) + 60)

    def test_other_identity_is_not_rejected(self, engine):
        client = TestClient(_app(engine))
        for _ in range(2):
            client.post("/api_login", json={"email": "a@example.com"})
        assert client.post("/api_login", json={"email": "b@example.com"}).status_code == 200

    def test_form_fields_are_read(self, engine):
        client = TestClient(_app(engine))
        resp = client.post("/api_login", data={"email": "form@example.com"})
        assert resp.json() == {"identity": "form@example.com"}

    def test_missing_field_falls_back_to_client_host(self, engine):
        client = TestClient(_app(engine))
        resp = client.post("/api_login", json={})
        assert resp.json() == {"identity": "testclient"}

    def test_redirect_rejection(self, engine):
        client = TestClient(_app(engine))
        client.post("/web_login", data={"email": "a@example.com"})
        resp = client.post("/web_login", data={"email": "a@example.com"}, follow_redirects=False)
        assert resp.status_code == 303
        assert resp.headers["location"] == "/login-page"

    def test_auto_mode_json_for_json_clients(self, engine):
        client = TestClient(_app(engine))
        client.post("/auto_login", json={"email": "a@example.com"})
        resp = client.post(
            "/auto_login",
            json={"email": "a@example.com"},
            headers={"Accept": "application/json"},
        )
        assert resp.status_code == 429

    def test_auto_mode_redirects_browsers(self, engine):
        client = TestClient(_app(engine))
        client.post("/auto_login", data={"email": "a@example.com"})
        resp = client.post(
            "/auto_login",
            data={"email": "a@example.com"},
            headers={"Accept": "text/html"},
            follow_redirects=False,
        )
        assert resp.status_code == 303
        assert resp.headers["location"].endswith("/login")

    def test_callback_rejection(self, engine):
        def callback(context, identity, remaining):
            return JSONResponse({"ctx": context, "wait": remaining}, status_code=423)

        client = TestClient(_app(engine, callback=callback))
        client.post("/hook_login", json={"email": "a@example.com"})
        resp = client.post("/hook_login", json={"email": "a@example.com"})
        assert resp.status_code == 423
        assert resp.json() == {"ctx": "hook_login", "wait": 45}
        assert resp.headers["Retry-After"] == "45"

    def test_callback_returning_non_response_falls_back_to_json(self, engine):
        def callback(context, identity, remaining):
            return {"ctx": context}

        client = TestClient(_app(engine, callback=callback))
        client.post("/hook_login", json={"email": "a@example.com"})
        resp = client.post("/hook_login", json={"email": "a@example.com"})
        assert resp.status_code == 429
        assert resp.json()["error"] == "lockout_active"
        assert resp.json()["retry_after"] == 45
        assert resp.headers["Retry-After"] == "45"

    def test_callback_mode_without_callback_uses_json(self, engine):
        client = TestClient(_app(engine))
        client.post("/hook_login", json={"email": "a@example.com"})
        resp = client.post("/hook_login", json={"email": "a@example.com"})
        assert resp.status_code == 429
        assert resp.json()["retry_after"] == 45

    def test_headers_can_be_disabled(self, engine):
        app = FastAPI()
        install_lockout_handler(app, LockoutSettings(include_headers=False, http_status_code=423))

        @app.post("/login")
        async def login(identity: str = Depends(lockout_guard("api_login", engine))):
            engine.record_failure("api_login", identity)
            return {}

        client = TestClient(app)
        for _ in range(2):
            client.post("/login", json={"email": "a@example.com"})
        resp = client.post("/login", json={"email": "a@example.com"})
        assert resp.status_code == 423
        assert "Retry-After" not in resp.headers


class SteppingClock:
    """Moves forward by *step* seconds every time it is read."""

    def __init__(self, now: float) -> None:
        self.now = now
        self.step = 0.0

    def __call__(self) -> float:
        current = self.now
        self.now += self.step
        return current


class TestGuardConsistency:
    def test_rejection_reads_lock_state_once(self):
        clock = SteppingClock(1_700_000_000.0)
        config = PolicyConfig.model_validate({"contexts": CONTEXTS})
        store = AttemptStore(MemoryBackend(clock=clock), prefix="test")
        engine = LockoutEngine(PolicyResolver(config), store, clock=clock)
        client = TestClient(_app(engine))

        start = clock.now
        client.post("/api_login", json={"email": "a@example.com"})
        client.post("/api_login", json={"email": "a@example.com"})
        # Half a second before the lock ends, with time moving on every read
        clock.now = start + 59.5
        clock.step = 1.0

        resp = client.post("/api_login", json={"email": "a@example.com"})
        assert resp.status_code == 429
        assert resp.json()["retry_after"] == 1
        assert resp.headers["Retry-After"] == "1"
