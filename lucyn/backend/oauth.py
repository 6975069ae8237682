"""OAuth 2.0 authorization-code flows for GitHub, Slack and Discord.

Two purposes share the same plumbing:

- ``sign_in``: identify the user by a verified email and start a session.
- ``connect``: attach a workspace account to the signed-in user's dashboard.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Literal
from urllib.parse import urlencode

import httpx

from config import settings
from models import OAuthProfile, TokenGrant

logger = logging.getLogger(__name__)

Purpose = Literal["sign_in", "connect"]

STATE_MAX_AGE = 60 * 10
HTTP_TIMEOUT = 30

GITHUB_API = "https://api.github.com"
GITHUB_ACCEPT = "application/vnd.github.v3+json"


class OAuthError(Exception):
    """A step of the OAuth flow failed. `code` is surfaced in the redirect query."""

    def __init__(self, code: str, message: str = ""):
        super().__init__(message or code)
        self.code = code


@dataclass(frozen=True)
class Provider:
    name: str
    auth_type: str
    authorize_url: str
    token_url: str
    sign_in_scope: str
    connect_scope: str

    @property
    def client_id(self) -> str:
        return getattr(settings, f"{self.name.upper()}_CLIENT_ID")

    @property
    def client_secret(self) -> str:
        return getattr(settings, f"{self.name.upper()}_CLIENT_SECRET")

    def state_cookie(self, purpose: Purpose) -> str:
        suffix = "oauth_state" if purpose == "sign_in" else "connect_state"
        return f"{self.name}_{suffix}"


PROVIDERS: dict[str, Provider] = {
    "github": Provider(
        name="github",
        auth_type="GITHUB",
        authorize_url="https://github.com/login/oauth/authorize",
        token_url="https://github.com/login/oauth/access_token",
        sign_in_scope="user:email read:user",
        connect_scope="repo,user,read:org",
    ),
    "slack": Provider(
        name="slack",
        auth_type="SLACK",
        authorize_url="https://slack.com/oauth/v2/authorize",
        token_url="https://slack.com/api/oauth.v2.access",
        sign_in_scope="identity.basic,identity.email,identity.avatar",
        connect_scope="channels:read,chat:write,users:read,users:read.email",
    ),
    "discord": Provider(
        name="discord",
        auth_type="DISCORD",
        authorize_url="https://discord.com/oauth2/authorize",
        token_url="https://discord.com/api/oauth2/token",
        sign_in_scope="identify email",
        connect_scope="identify email guilds bot",
    ),
}


def get_provider(name: str) -> Provider | None:
    return PROVIDERS.get(name)


def new_state() -> str:
    """CSRF state value for the authorize redirect."""
    return secrets.token_hex(32)


def states_match(query_state: str | None, cookie_state: str | None) -> bool:
    if not query_state or not cookie_state:
        return False
    return secrets.compare_digest(query_state.encode(), cookie_state.encode())


def callback_uri(provider: Provider, purpose: Purpose) -> str:
    if purpose == "sign_in":
        return f"{settings.APP_URL}/api/oauth/{provider.name}/callback"
    return f"{settings.APP_URL}/api/{provider.name}/callback"


def build_authorize_url(provider: Provider, redirect_uri: str, state: str, purpose: Purpose) -> str:
    """Provider authorize URL carrying client_id, redirect_uri, scope and state."""
    params = {
        "client_id": provider.client_id,
        "redirect_uri": redirect_uri,
    }
    if provider.name == "slack" and purpose == "sign_in":
        # Sign in with Slack only accepts identity scopes as user scopes.
        params["scope"] = ""
        params["user_scope"] = provider.sign_in_scope
    else:
        params["scope"] = provider.sign_in_scope if purpose == "sign_in" else provider.connect_scope
    if provider.name == "discord":
        params["response_type"] = "code"
    params["state"] = state
    return f"{provider.authorize_url}?{urlencode(params)}"


# --------------- Code exchange ---------------

async def exchange_code(provider: Provider, code: str, redirect_uri: str, purpose: Purpose = "sign_in") -> TokenGrant:
    """Exchange an authorization code for an access token."""
    async with httpx.AsyncClient(timeout=HTTP_TIMEOUT) as client:
        if provider.name == "github":
            resp = await client.post(
                provider.token_url,
                json={
                    "client_id": provider.client_id,
                    "client_secret": provider.client_secret,
                    "code": code,
                },
                headers={"Accept": "application/json"},
            )
        else:
            form = {
                "client_id": provider.client_id,
                "client_secret": provider.client_secret,
                "code": code,
                "redirect_uri": redirect_uri,
            }
            if provider.name == "discord":
                form["grant_type"] = "authorization_code"
            resp = await client.post(provider.token_url, data=form)

    try:
        data = resp.json()
    except ValueError as e:
        raise OAuthError("token_exchange_failed", f"{provider.name} token endpoint returned {resp.status_code}") from e

    if provider.name == "slack":
        if not data.get("ok"):
            logger.error(f"Slack token exchange error: {data.get('error')}")
            raise OAuthError(data.get("error") or "token_exchange_failed")
        if purpose == "sign_in":
            access_token = (data.get("authed_user") or {}).get("access_token")
        else:
            access_token = data.get("access_token")
    else:
        if data.get("error"):
            logger.error(
                f"{provider.name} token exchange error: {data.get('error_description') or data['error']}"
            )
            raise OAuthError(data["error"])
        access_token = data.get("access_token")

    if not access_token:
        logger.error(f"No access token received from {provider.name}")
        raise OAuthError("no_access_token")

    return TokenGrant(
        access_token=access_token,
        refresh_token=data.get("refresh_token"),
        expires_in=data.get("expires_in"),
        raw=data,
    )


def expires_at(grant: TokenGrant) -> datetime | None:
    if not grant.expires_in:
        return None
    return datetime.now(timezone.utc) + timedelta(seconds=int(grant.expires_in))


# --------------- Profiles ---------------

async def get_github_verified_email(client: httpx.AsyncClient, access_token: str, primary_email: str | None) -> str | None:
    """Public profile email, else the primary verified address, else any verified one."""
    if primary_email and "noreply.github.com" not in primary_email:
        return primary_email

    resp = await client.get(
        f"{GITHUB_API}/user/emails",
        headers={"Authorization": f"Bearer {access_token}", "Accept": GITHUB_ACCEPT},
    )
    if resp.status_code != 200:
        logger.error(f"Failed to fetch GitHub emails: {resp.status_code}")
        return None

    emails = resp.json()
    for entry in emails:
        if entry.get("primary") and entry.get("verified"):
            return entry["email"]
    for entry in emails:
        if entry.get("verified"):
            return entry["email"]
    return None


async def fetch_account(client: httpx.AsyncClient, provider: Provider, access_token: str) -> dict:
    """Raw account document for the token's owner."""
    if provider.name == "github":
        resp = await client.get(
            f"{GITHUB_API}/user",
            headers={"Authorization": f"Bearer {access_token}", "Accept": GITHUB_ACCEPT},
        )
        if resp.status_code != 200:
            logger.error(f"Failed to fetch GitHub user: {resp.status_code}")
            raise OAuthError("github_api_error")
        return resp.json()

    if provider.name == "slack":
        resp = await client.get(
            "https://slack.com/api/users.identity",
            headers={"Authorization": f"Bearer {access_token}"},
        )
        data = resp.json()
        if not data.get("ok"):
            logger.error(f"Failed to fetch Slack user: {data.get('error')}")
            raise OAuthError("slack_api_error")
        return data

    resp = await client.get(
        "https://discord.com/api/users/@me",
        headers={"Authorization": f"Bearer {access_token}"},
    )
    if resp.status_code != 200:
        logger.error(f"Failed to fetch Discord user: {resp.status_code}")
        raise OAuthError("discord_api_error")
    return resp.json()


def _discord_avatar(user: dict) -> str | None:
    if not user.get("avatar"):
        return None
    return f"https://cdn.discordapp.com/avatars/{user['id']}/{user['avatar']}.png"


async def fetch_profile(provider: Provider, grant: TokenGrant) -> OAuthProfile:
    """Build the sign-in profile. Requires a verified email."""
    token = grant.access_token
    async with httpx.AsyncClient(timeout=HTTP_TIMEOUT) as client:
        account = await fetch_account(client, provider, token)

        if provider.name == "github":
            email = await get_github_verified_email(client, token, account.get("email"))
            name = account.get("name") or account.get("login")
            avatar = account.get("avatar_url")
            user_id = account.get("id")
            username = account.get("login")
        elif provider.name == "slack":
            user = account.get("user") or {}
            email = user.get("email")
            name = user.get("name") or user.get("real_name")
            avatar = user.get("image_512") or user.get("image_192")
            user_id = user.get("id")
            username = None
        else:
            email = account.get("email") if account.get("verified") else None
            name = account.get("global_name") or account.get("username")
            avatar = _discord_avatar(account)
            user_id = account.get("id")
            username = account.get("username")

    if not email:
        logger.error(f"{provider.name} OAuth: no verified email available")
        raise OAuthError("no_verified_email")

    return OAuthProfile(
        email=email,
        name=name,
        avatar_url=avatar,
        provider_user_id=str(user_id),
        provider_username=username,
        access_token=token,
        refresh_token=grant.refresh_token,
        expires_at=expires_at(grant),
    )


async def fetch_connection_metadata(provider: Provider, grant: TokenGrant) -> dict:
    """Non-secret details shown on the settings page for a connected workspace."""
    if provider.name == "slack":
        data = grant.raw
        team = data.get("team") or {}
        return {
            "teamId": team.get("id"),
            "teamName": team.get("name"),
            "botUserId": data.get("bot_user_id"),
            "authedUserId": (data.get("authed_user") or {}).get("id"),
        }

    async with httpx.AsyncClient(timeout=HTTP_TIMEOUT) as client:
        account = await fetch_account(client, provider, grant.access_token)

    if provider.name == "github":
        return {
            "githubId": str(account.get("id")),
            "username": account.get("login"),
            "avatarUrl": account.get("avatar_url"),
        }
    return {
        "discordId": account.get("id"),
        "username": account.get("username"),
        "avatarUrl": _discord_avatar(account),
        "guildId": (grant.raw.get("guild") or {}).get("id"),
    }
