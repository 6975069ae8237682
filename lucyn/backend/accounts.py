"""User accounts, provider linking and workspace integrations.

Email is the unique user identifier: signing in with a second provider for
the same address links that provider to the existing user instead of creating
a new one.
"""

import logging
import re
import time
from datetime import datetime, timezone

import database as db
from encryption import encrypt_token
from models import OAuthProfile, OAuthResult, OAuthUser, Session, TokenGrant
from oauth import Provider, expires_at
from sessions import create_session_token

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "org"


def unique_slug(name: str) -> str:
    return f"{slugify(name)}-{int(time.time() * 1000)}"


async def create_user_with_organization(
    email: str,
    name: str | None = None,
    organization_name: str | None = None,
    avatar_url: str | None = None,
) -> tuple[dict, dict]:
    """Create a user and the organization they administer."""
    user_name = name or email.split("@")[0]
    org_name = organization_name or f"{user_name}'s Organization"
    return await db.create_organization_with_admin(
        org_name=org_name,
        slug=unique_slug(organization_name or user_name),
        email=email,
        name=user_name,
        avatar_url=avatar_url,
    )


async def link_provider_to_user(user_id: int, provider: Provider, profile: OAuthProfile) -> None:
    """Attach or refresh a sign-in identity. Idempotent."""
    await db.upsert_auth_provider(
        user_id=user_id,
        provider=provider.auth_type,
        provider_user_id=profile.provider_user_id,
        email=profile.email,
        access_token=encrypt_token(profile.access_token),
        refresh_token=encrypt_token(profile.refresh_token) if profile.refresh_token else None,
        expires_at=profile.expires_at,
    )

    github_id = github_username = None
    if provider.name == "github" and profile.provider_username:
        github_id = profile.provider_user_id
        github_username = profile.provider_username
    await db.update_user_profile(
        user_id,
        avatar_url=profile.avatar_url,
        github_id=github_id,
        github_username=github_username,
    )


async def handle_oauth_callback(provider: Provider, profile: OAuthProfile) -> OAuthResult:
    """Sign in (or sign up) the owner of a provider profile."""
    email = normalize_email(profile.email)
    profile = profile.model_copy(update={"email": email})

    user = await db.get_user_by_email(email)
    is_new_user = user is None
    if is_new_user:
        user, org = await create_user_with_organization(
            email, name=profile.name, avatar_url=profile.avatar_url
        )
        logger.info(f"Created user {user['id']} and organization '{org['slug']}' via {provider.name}")

    await link_provider_to_user(user["id"], provider, profile)
    await db.touch_user(user["id"])

    return OAuthResult(
        user=OAuthUser(
            id=user["id"],
            email=user["email"],
            name=user.get("name"),
            avatar_url=user.get("avatar_url") or profile.avatar_url,
        ),
        session_token=create_session_token(user),
        is_new_user=is_new_user,
    )


# --------------- Integrations ---------------

async def connect_integration(session: Session, provider: Provider, grant: TokenGrant, metadata: dict) -> dict:
    """Store a workspace connection with its tokens encrypted."""
    integration = await db.upsert_integration(
        user_id=session.user_id,
        organization_id=session.organization_id,
        provider=provider.auth_type,
        access_token=encrypt_token(grant.access_token),
        refresh_token=encrypt_token(grant.refresh_token) if grant.refresh_token else None,
        expires_at=expires_at(grant),
        metadata=metadata,
    )
    if provider.name == "github" and metadata.get("username"):
        await db.update_user_profile(
            session.user_id,
            github_id=metadata.get("githubId"),
            github_username=metadata["username"],
        )
    logger.info(f"{provider.name} connected for user {session.user_id}")
    return integration


async def disconnect_integration(session: Session, provider: Provider) -> bool:
    removed = await db.delete_integration(session.user_id, provider.auth_type)
    if provider.name == "github":
        await db.clear_github_identity(session.user_id)
    return removed


def _is_expired(integration: dict) -> bool:
    if not integration.get("expires_at"):
        return False
    expiry = datetime.fromisoformat(integration["expires_at"])
    if expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=timezone.utc)
    return expiry < datetime.now(timezone.utc)


async def integration_status(session: Session, provider: Provider) -> dict:
    """Connection status and metadata. Never includes tokens."""
    integration = await db.get_integration(session.user_id, provider.auth_type)
    label = provider.name.capitalize()
    if not integration:
        return {"connected": False, "message": f"{label} not connected"}
    if _is_expired(integration):
        return {
            "connected": False,
            "expired": True,
            "message": f"{label} token expired, please reconnect",
        }
    return {
        "connected": True,
        provider.name: {**integration["metadata"], "connectedAt": integration["created_at"]},
    }
