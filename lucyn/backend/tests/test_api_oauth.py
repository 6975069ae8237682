"""Tests for the sign-in OAuth endpoints."""

from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlparse

import database as db
from models import OAuthProfile, TokenGrant
from oauth import OAuthError
from sessions import SESSION_COOKIE, verify_session_token

STATE = "a" * 64


def _set_cookies(resp) -> dict[str, str]:
    cookies = {}
    for header in resp.headers.get_list("set-cookie"):
        name, _, rest = header.partition("=")
        cookies[name] = rest
    return cookies


def _location_query(resp) -> dict:
    return {k: v[0] for k, v in parse_qs(urlparse(resp.headers["location"]).query).items()}


def _profile() -> OAuthProfile:
    return OAuthProfile(
        email="octo@acme.dev",
        name="Octo Cat",
        provider_user_id="42",
        provider_username="octo",
        access_token="gho_abc",
    )


class TestAuthorize:
    async def test_redirects_with_state_cookie(self, async_client):
        resp = await async_client.get("/api/oauth/github/authorize")
        assert resp.status_code == 307
        assert resp.headers["location"].startswith("https://github.com/login/oauth/authorize?")

        state = _location_query(resp)["state"]
        cookie = _set_cookies(resp)["github_oauth_state"]
        assert cookie.startswith(f"{state};")
        assert "HttpOnly" in cookie
        assert "Max-Age=600" in cookie
        assert "samesite=lax" in cookie.lower()

    async def test_unknown_provider(self, async_client):
        resp = await async_client.get("/api/oauth/gitlab/authorize")
        assert resp.status_code == 404

    async def test_missing_client_id(self, async_client, test_settings):
        test_settings.DISCORD_CLIENT_ID = ""
        resp = await async_client.get("/api/oauth/discord/authorize")
        assert resp.status_code == 500
        assert "discord" in resp.json()["error"]


class TestCallback:
    async def _callback(self, async_client, query: str, cookie_state: str | None = STATE):
        headers = {"Cookie": f"github_oauth_state={cookie_state}"} if cookie_state else {}
        return await async_client.get(f"/api/oauth/github/callback?{query}", headers=headers)

    async def test_provider_error(self, async_client):
        resp = await self._callback(async_client, "error=access_denied")
        assert resp.headers["location"] == "http://localhost:3000/login?error=access_denied"

    async def test_missing_code(self, async_client):
        resp = await self._callback(async_client, f"state={STATE}")
        assert _location_query(resp) == {"error": "missing_code"}

    async def test_state_mismatch(self, async_client):
        resp = await self._callback(async_client, "code=c&state=" + "b" * 64)
        assert _location_query(resp) == {"error": "invalid_state"}
        assert SESSION_COOKIE not in _set_cookies(resp)

    async def test_non_ascii_state(self, async_client):
        resp = await self._callback(async_client, "code=c&state=%C3%A9", cookie_state="abc")
        assert resp.status_code == 307
        assert _location_query(resp) == {"error": "invalid_state"}

    async def test_missing_state_cookie(self, async_client):
        resp = await self._callback(async_client, f"code=c&state={STATE}", cookie_state=None)
        assert _location_query(resp) == {"error": "invalid_state"}

    async def test_state_cookie_cleared(self, async_client):
        resp = await self._callback(async_client, "code=c&state=" + "b" * 64)
        cleared = _set_cookies(resp)["github_oauth_state"]
        assert "Max-Age=0" in cleared

    async def test_new_user_goes_to_onboarding(self, async_client):
        with patch("oauth.exchange_code", AsyncMock(return_value=TokenGrant(access_token="gho_abc"))), \
                patch("oauth.fetch_profile", AsyncMock(return_value=_profile())):
            resp = await self._callback(async_client, f"code=c&state={STATE}")

        assert resp.status_code == 307
        assert resp.headers["location"] == "http://localhost:3000/onboarding"

        session_cookie = _set_cookies(resp)[SESSION_COOKIE]
        token = session_cookie.split(";")[0]
        user = await db.get_user_by_email("octo@acme.dev")
        assert verify_session_token(token)["sub"] == str(user["id"])

    async def test_returning_user_goes_to_dashboard(self, async_client, seeded_user):
        profile = _profile().model_copy(update={"email": "Manager@Acme.dev"})
        with patch("oauth.exchange_code", AsyncMock(return_value=TokenGrant(access_token="gho_abc"))), \
                patch("oauth.fetch_profile", AsyncMock(return_value=profile)):
            resp = await self._callback(async_client, f"code=c&state={STATE}")
        assert resp.headers["location"] == "http://localhost:3000/dashboard"

    async def test_oauth_error_code_surfaced(self, async_client):
        with patch("oauth.exchange_code", AsyncMock(side_effect=OAuthError("bad_verification_code"))):
            resp = await self._callback(async_client, f"code=c&state={STATE}")
        assert _location_query(resp) == {"error": "bad_verification_code"}

    async def test_unexpected_failure(self, async_client):
        with patch("oauth.exchange_code", AsyncMock(side_effect=RuntimeError("boom"))):
            resp = await self._callback(async_client, f"code=c&state={STATE}")
        assert _location_query(resp) == {"error": "authentication_failed"}

    async def test_full_flow_against_github(self, async_client, mock_transport):
        mock_transport.routes[("POST", "https://github.com/login/oauth/access_token")] = (
            200, {"access_token": "gho_live"}
        )
        mock_transport.routes[("GET", "https://api.github.com/user")] = (200, {
            "id": 7, "login": "dev", "name": "Dev", "email": "dev@acme.dev",
        })
        resp = await self._callback(async_client, f"code=c&state={STATE}")
        assert resp.headers["location"] == "http://localhost:3000/onboarding"

        user = await db.get_user_by_email("dev@acme.dev")
        assert user["github_username"] == "dev"
