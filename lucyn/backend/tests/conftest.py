"""Shared fixtures for Lucyn backend tests."""

import os
import sys

import fakeredis
import pytest
import pytest_asyncio

# Ensure backend is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

TEST_ENCRYPTION_KEY = "0123456789abcdef" * 4


@pytest.fixture(autouse=True)
async def test_db(tmp_path):
    """Patch DB_PATH to a per-test temp file, init schema, clean after."""
    import database as db_module

    db_path = str(tmp_path / "test.db")
    original = db_module.DB_PATH
    db_module.DB_PATH = db_path

    await db_module.init_db()
    yield

    db_module.DB_PATH = original


@pytest.fixture(autouse=True)
def fake_redis():
    """Route rate limiting and verification tokens to an in-memory Redis."""
    import ratelimit

    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    ratelimit.set_redis(client)
    yield client
    ratelimit.set_redis(None)


@pytest.fixture(autouse=True)
def test_settings():
    """Deterministic secrets and OAuth client credentials for every test."""
    from config import settings

    overrides = {
        "APP_URL": "http://localhost:3000",
        "ENVIRONMENT": "development",
        "TOKEN_ENCRYPTION_KEY": TEST_ENCRYPTION_KEY,
        "SESSION_SECRET": "test-session-secret-with-enough-length-for-hs256",
        "UNSUBSCRIBE_TOKEN_SECRET": "test-unsubscribe-secret",
        "GITHUB_WEBHOOK_SECRET": "",
        "SLACK_SIGNING_SECRET": "",
        "DISCORD_PUBLIC_KEY": "",
        "DISCORD_BOT_ID": "",
        "GITHUB_CLIENT_ID": "gh-client",
        "GITHUB_CLIENT_SECRET": "gh-secret",
        "SLACK_CLIENT_ID": "slack-client",
        "SLACK_CLIENT_SECRET": "slack-secret",
        "DISCORD_CLIENT_ID": "discord-client",
        "DISCORD_CLIENT_SECRET": "discord-secret",
        "API_REQUESTS_PER_MINUTE": 60,
    }
    original = {key: getattr(settings, key) for key in overrides}
    for key, value in overrides.items():
        setattr(settings, key, value)
    yield settings
    for key, value in original.items():
        setattr(settings, key, value)


@pytest_asyncio.fixture
async def async_client():
    """HTTPX async client wired to the FastAPI app without invoking lifespan."""
    import httpx
    from main import app

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest_asyncio.fixture
async def seeded_user():
    """An admin user with their own organization."""
    import accounts

    user, org = await accounts.create_user_with_organization(
        "manager@acme.dev", name="Morgan", organization_name="Acme"
    )
    return user


@pytest.fixture
def auth_headers(seeded_user):
    """Authorization header carrying a valid session for seeded_user."""
    from sessions import create_session_token

    return {"Authorization": f"Bearer {create_session_token(seeded_user)}"}


@pytest.fixture
def mock_transport(monkeypatch):
    """Route every httpx.AsyncClient created by the code under test to a handler.

    Tests set `routes[(METHOD, url_without_query)] = (status_code, json_body)`.
    Unrouted requests get a 404. Sent requests are recorded in `.requests`.
    """
    import httpx

    real_client = httpx.AsyncClient

    class Router:
        def __init__(self):
            self.routes: dict[tuple[str, str], tuple[int, object]] = {}
            self.requests: list[httpx.Request] = []

        def handler(self, request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            key = (request.method, f"{request.url.scheme}://{request.url.host}{request.url.path}")
            status_code, body = self.routes.get(key, (404, {"message": "Not Found"}))
            return httpx.Response(status_code, json=body)

    router = Router()

    def factory(*args, **kwargs):
        # The ASGI test client brings its own transport; leave it alone.
        kwargs.setdefault("transport", httpx.MockTransport(router.handler))
        return real_client(*args, **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", factory)
    return router
