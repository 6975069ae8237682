"""SQLite database schema and CRUD operations using aiosqlite."""

import json
from datetime import datetime, timezone

import aiosqlite

from config import settings

DB_PATH = settings.DB_PATH

SCHEMA = """
CREATE TABLE IF NOT EXISTS organizations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    slug TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    email TEXT NOT NULL UNIQUE,
    name TEXT,
    avatar_url TEXT,
    organization_id INTEGER REFERENCES organizations(id),
    role TEXT NOT NULL DEFAULT 'MEMBER',
    github_id TEXT,
    github_username TEXT,
    feedback_enabled INTEGER NOT NULL DEFAULT 1,
    last_active_at TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS auth_providers (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    provider TEXT NOT NULL,
    provider_user_id TEXT NOT NULL,
    email TEXT NOT NULL DEFAULT '',
    access_token TEXT NOT NULL,
    refresh_token TEXT,
    expires_at TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE(provider, provider_user_id)
);

CREATE TABLE IF NOT EXISTS integrations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    organization_id INTEGER REFERENCES organizations(id),
    provider TEXT NOT NULL,
    access_token TEXT NOT NULL,
    refresh_token TEXT,
    expires_at TEXT,
    metadata TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE(user_id, provider)
);

CREATE TABLE IF NOT EXISTS repositories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    organization_id INTEGER NOT NULL REFERENCES organizations(id),
    github_id TEXT NOT NULL,
    name TEXT NOT NULL,
    full_name TEXT NOT NULL,
    description TEXT,
    language TEXT,
    is_private INTEGER NOT NULL DEFAULT 0,
    default_branch TEXT NOT NULL DEFAULT 'main',
    is_active INTEGER NOT NULL DEFAULT 1,
    scan_started_at TEXT,
    last_full_scan_at TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE(organization_id, github_id)
);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


async def get_db() -> aiosqlite.Connection:
    """Open a database connection with row factory enabled."""
    db = await aiosqlite.connect(DB_PATH)
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA journal_mode=WAL")
    await db.execute("PRAGMA foreign_keys=ON")
    return db


async def init_db() -> None:
    """Initialize database schema."""
    db = await get_db()
    try:
        await db.executescript(SCHEMA)
        await db.commit()
    finally:
        await db.close()


# --------------- Organizations & Users ---------------

async def create_organization_with_admin(
    org_name: str,
    slug: str,
    email: str,
    name: str | None = None,
    avatar_url: str | None = None,
) -> tuple[dict, dict]:
    """Create an organization and its first (ADMIN) user in one transaction."""
    db = await get_db()
    try:
        cursor = await db.execute(
            "INSERT INTO organizations (name, slug) VALUES (?, ?)",
            (org_name, slug),
        )
        org_id = cursor.lastrowid
        cursor = await db.execute(
            "INSERT INTO users (email, name, avatar_url, organization_id, role) VALUES (?, ?, ?, ?, 'ADMIN')",
            (email, name, avatar_url, org_id),
        )
        user_id = cursor.lastrowid
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    else:
        org = await (await db.execute("SELECT * FROM organizations WHERE id = ?", (org_id,))).fetchone()
        user = await (await db.execute("SELECT * FROM users WHERE id = ?", (user_id,))).fetchone()
        return dict(user), dict(org)
    finally:
        await db.close()


async def get_organization(org_id: int) -> dict | None:
    db = await get_db()
    try:
        row = await (await db.execute("SELECT * FROM organizations WHERE id = ?", (org_id,))).fetchone()
        return dict(row) if row else None
    finally:
        await db.close()


async def get_user(user_id: int) -> dict | None:
    db = await get_db()
    try:
        row = await (await db.execute("SELECT * FROM users WHERE id = ?", (user_id,))).fetchone()
        return dict(row) if row else None
    finally:
        await db.close()


async def get_user_by_email(email: str) -> dict | None:
    db = await get_db()
    try:
        row = await (await db.execute("SELECT * FROM users WHERE email = ?", (email,))).fetchone()
        return dict(row) if row else None
    finally:
        await db.close()


async def update_user_profile(
    user_id: int,
    avatar_url: str | None = None,
    github_id: str | None = None,
    github_username: str | None = None,
) -> None:
    """Fill in provider-derived profile fields. None leaves a field unchanged."""
    db = await get_db()
    try:
        await db.execute(
            """UPDATE users SET
                avatar_url = COALESCE(?, avatar_url),
                github_id = COALESCE(?, github_id),
                github_username = COALESCE(?, github_username)
            WHERE id = ?""",
            (avatar_url, github_id, github_username, user_id),
        )
        await db.commit()
    finally:
        await db.close()


async def clear_github_identity(user_id: int) -> None:
    db = await get_db()
    try:
        await db.execute(
            "UPDATE users SET github_id = NULL, github_username = NULL WHERE id = ?",
            (user_id,),
        )
        await db.commit()
    finally:
        await db.close()


async def touch_user(user_id: int) -> None:
    """Record that the user was just active."""
    db = await get_db()
    try:
        await db.execute("UPDATE users SET last_active_at = ? WHERE id = ?", (_now(), user_id))
        await db.commit()
    finally:
        await db.close()


async def set_feedback_enabled(email: str, enabled: bool) -> bool:
    """Toggle feedback emails for a user. Returns False when no user has that email."""
    db = await get_db()
    try:
        cursor = await db.execute(
            "UPDATE users SET feedback_enabled = ? WHERE email = ?",
            (1 if enabled else 0, email),
        )
        await db.commit()
        return cursor.rowcount > 0
    finally:
        await db.close()


# --------------- Auth Providers ---------------

async def upsert_auth_provider(
    user_id: int,
    provider: str,
    provider_user_id: str,
    email: str,
    access_token: str,
    refresh_token: str | None = None,
    expires_at: datetime | None = None,
) -> dict:
    """Link a sign-in provider identity to a user. Re-linking refreshes the tokens."""
    db = await get_db()
    try:
        await db.execute(
            """INSERT INTO auth_providers
                (user_id, provider, provider_user_id, email, access_token, refresh_token, expires_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(provider, provider_user_id) DO UPDATE SET
                email = excluded.email,
                access_token = excluded.access_token,
                refresh_token = excluded.refresh_token,
                expires_at = excluded.expires_at,
                updated_at = ?""",
            (user_id, provider, provider_user_id, email, access_token, refresh_token, _iso(expires_at), _now()),
        )
        await db.commit()
        row = await (await db.execute(
            "SELECT * FROM auth_providers WHERE provider = ? AND provider_user_id = ?",
            (provider, provider_user_id),
        )).fetchone()
        return dict(row)
    finally:
        await db.close()


# --------------- Integrations ---------------

def _integration_row(row: aiosqlite.Row | None) -> dict | None:
    if not row:
        return None
    d = dict(row)
    d["metadata"] = json.loads(d.get("metadata") or "{}")
    return d


async def upsert_integration(
    user_id: int,
    organization_id: int | None,
    provider: str,
    access_token: str,
    refresh_token: str | None = None,
    expires_at: datetime | None = None,
    metadata: dict | None = None,
) -> dict:
    db = await get_db()
    try:
        await db.execute(
            """INSERT INTO integrations
                (user_id, organization_id, provider, access_token, refresh_token, expires_at, metadata)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, provider) DO UPDATE SET
                organization_id = excluded.organization_id,
                access_token = excluded.access_token,
                refresh_token = excluded.refresh_token,
                expires_at = excluded.expires_at,
                metadata = excluded.metadata,
                updated_at = ?""",
            (
                user_id, organization_id, provider, access_token, refresh_token,
                _iso(expires_at), json.dumps(metadata or {}), _now(),
            ),
        )
        await db.commit()
        row = await (await db.execute(
            "SELECT * FROM integrations WHERE user_id = ? AND provider = ?", (user_id, provider)
        )).fetchone()
        return _integration_row(row)
    finally:
        await db.close()


async def get_integration(user_id: int, provider: str) -> dict | None:
    db = await get_db()
    try:
        row = await (await db.execute(
            "SELECT * FROM integrations WHERE user_id = ? AND provider = ?", (user_id, provider)
        )).fetchone()
        return _integration_row(row)
    finally:
        await db.close()


async def delete_integration(user_id: int, provider: str) -> bool:
    db = await get_db()
    try:
        cursor = await db.execute(
            "DELETE FROM integrations WHERE user_id = ? AND provider = ?", (user_id, provider)
        )
        await db.commit()
        return cursor.rowcount > 0
    finally:
        await db.close()


# --------------- Repositories ---------------

async def upsert_repository(
    organization_id: int,
    github_id: str,
    name: str,
    full_name: str,
    description: str | None = None,
    language: str | None = None,
    is_private: bool = False,
    default_branch: str = "main",
) -> dict:
    """Connect a repository to an organization, reactivating it if it was connected before."""
    db = await get_db()
    try:
        await db.execute(
            """INSERT INTO repositories
                (organization_id, github_id, name, full_name, description, language, is_private, default_branch)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(organization_id, github_id) DO UPDATE SET
                name = excluded.name,
                full_name = excluded.full_name,
                description = excluded.description,
                language = excluded.language,
                is_private = excluded.is_private,
                default_branch = excluded.default_branch,
                is_active = 1,
                updated_at = ?""",
            (
                organization_id, github_id, name, full_name, description, language,
                1 if is_private else 0, default_branch, _now(),
            ),
        )
        await db.commit()
        row = await (await db.execute(
            "SELECT * FROM repositories WHERE organization_id = ? AND github_id = ?",
            (organization_id, github_id),
        )).fetchone()
        return dict(row)
    finally:
        await db.close()


async def list_repositories(organization_id: int, active_only: bool = True) -> list[dict]:
    db = await get_db()
    try:
        query = "SELECT * FROM repositories WHERE organization_id = ?"
        if active_only:
            query += " AND is_active = 1"
        query += " ORDER BY updated_at DESC, id DESC"
        rows = await (await db.execute(query, (organization_id,))).fetchall()
        return [dict(r) for r in rows]
    finally:
        await db.close()


async def get_repository(organization_id: int, repo_id: int) -> dict | None:
    """A repository by id, only if it belongs to the organization."""
    db = await get_db()
    try:
        row = await (await db.execute(
            "SELECT * FROM repositories WHERE id = ? AND organization_id = ?", (repo_id, organization_id)
        )).fetchone()
        return dict(row) if row else None
    finally:
        await db.close()


async def mark_scan(repo_id: int, completed: bool = False) -> None:
    """Record that a repository scan started, or finished when completed is set."""
    column = "last_full_scan_at" if completed else "scan_started_at"
    db = await get_db()
    try:
        await db.execute(f"UPDATE repositories SET {column} = ? WHERE id = ?", (_now(), repo_id))
        await db.commit()
    finally:
        await db.close()


async def deactivate_repositories(github_id: str) -> int:
    """Mark every tracked copy of a GitHub repository inactive. Returns rows changed."""
    db = await get_db()
    try:
        cursor = await db.execute(
            "UPDATE repositories SET is_active = 0, updated_at = ? WHERE github_id = ?",
            (_now(), github_id),
        )
        await db.commit()
        return cursor.rowcount
    finally:
        await db.close()


async def rename_repositories(github_id: str, name: str, full_name: str) -> int:
    db = await get_db()
    try:
        cursor = await db.execute(
            "UPDATE repositories SET name = ?, full_name = ?, updated_at = ? WHERE github_id = ?",
            (name, full_name, _now(), github_id),
        )
        await db.commit()
        return cursor.rowcount
    finally:
        await db.close()
