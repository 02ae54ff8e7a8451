"""Tests for the rate limit middleware and application wiring."""

import time
import pytest
from fastapi.testclient import TestClient

from ipgate.app.core.config import LimiterConfig, LimiterConfigBuilder
from ipgate.app.exceptions import ConfigurationError, StoreUnavailableError
from ipgate.app.main import create_app
from ipgate.app.store import BLACKLIST_KEY, CONTROL_KEY, EXPIRES_KEY, InMemoryStateStore


CLIENT_IP = "testclient"


class BrokenStore(InMemoryStateStore):
    """Store that answers pings but fails every data operation."""

    def __init__(self, ping_ok: bool = True):
        super().__init__()
        self.ping_ok = ping_ok

    async def hget(self, namespace, field):
        raise StoreUnavailableError("hget")

    async def ping(self):
        if not self.ping_ok:
            raise StoreUnavailableError("ping")
        return True


def _config(**options) -> LimiterConfig:
    options.setdefault("gc_probability", 0.0)
    return LimiterConfigBuilder().configure(**options).build()


@pytest.fixture
def store():
    return InMemoryStateStore()


class TestRateLimitMiddleware:
    """End-to-end tests through the FastAPI app."""

    def test_allowed_request_reaches_app(self, store):
        app = create_app(config=_config(), store=store)
        with TestClient(app) as client:
            response = client.get("/")
            assert response.status_code == 200
            assert "time" in response.json()
            assert "X-Request-ID" in response.headers

    @pytest.mark.asyncio
    async def test_requests_are_counted(self, store):
        app = create_app(config=_config(), store=store)
        with TestClient(app) as client:
            for _ in range(3):
                client.get("/")
        assert await store.hget(CONTROL_KEY, CLIENT_IP) == "3"

    @pytest.mark.asyncio
    async def test_banned_client_gets_json_429(self, store):
        await store.hset(BLACKLIST_KEY, CLIENT_IP, int(time.time()) + 300)
        app = create_app(config=_config(ban_time=300), store=store)
        with TestClient(app) as client:
            response = client.get("/", headers={"Accept": "application/json"})

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "300"
        assert response.json()["error"] is True

    @pytest.mark.asyncio
    async def test_banned_client_gets_html_429(self, store, tmp_path):
        page = tmp_path / "ban.html"
        page.write_text("<p>banned</p>", encoding="utf-8")
        await store.hset(BLACKLIST_KEY, CLIENT_IP, int(time.time()) + 300)
        app = create_app(config=_config(ban_page=str(page)), store=store)
        with TestClient(app) as client:
            response = client.get("/", headers={"Accept": "text/html"})

        assert response.status_code == 429
        assert response.text == "<p>banned</p>"

    @pytest.mark.asyncio
    async def test_exception_path_bypasses_ban(self, store):
        await store.hset(BLACKLIST_KEY, CLIENT_IP, int(time.time()) + 300)
        app = create_app(config=_config(), store=store)
        with TestClient(app) as client:
            response = client.get("/assets/app.js")
        # Not rate limited, so the router answers 404 instead of 429
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_requests_trigger_window_sweep(self, store):
        """With gc_probability=1 every request schedules a sweep of stale windows."""
        await store.hset(EXPIRES_KEY, "198.51.100.9", 1)
        await store.hset(CONTROL_KEY, "198.51.100.9", 4)
        app = create_app(config=_config(gc_probability=1.0), store=store)
        with TestClient(app) as client:
            client.get("/")
            client.get("/")
        # Shutdown waits for a sweep still in flight
        assert await store.hget(EXPIRES_KEY, "198.51.100.9") is None
        assert await store.hget(CONTROL_KEY, "198.51.100.9") is None
        assert await store.hget(CONTROL_KEY, CLIENT_IP) == "2"

    def test_store_failure_fail_closed(self):
        app = create_app(config=_config(fail_closed=True), store=BrokenStore())
        with TestClient(app) as client:
            response = client.get("/")
        assert response.status_code == 503
        assert response.json()["error"] == "store_unavailable"

    def test_store_failure_fail_open(self):
        app = create_app(config=_config(fail_closed=False), store=BrokenStore())
        with TestClient(app) as client:
            response = client.get("/")
        assert response.status_code == 200

    def test_startup_requires_store(self):
        app = create_app(config=_config(), store=BrokenStore(ping_ok=False))
        with pytest.raises(ConfigurationError):
            with TestClient(app):
                pass


class TestHealth:
    """Tests for the health endpoint."""

    def test_health_ok(self, store):
        app = create_app(config=_config(), store=store)
        with TestClient(app) as client:
            response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["components"]["store"]["type"] == "InMemoryStateStore"
