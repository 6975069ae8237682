"""GitHub webhook verification and event handlers."""

import hashlib
import hmac
import logging

import database as db

logger = logging.getLogger(__name__)


def verify_signature(body: bytes, signature: str, secret: str) -> bool:
    """Check an X-Hub-Signature-256 header against the raw request body."""
    if not signature:
        return False
    expected = "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature.encode(), expected.encode())


async def handle_installation(payload: dict) -> dict:
    action = payload.get("action")
    account = (payload.get("installation") or {}).get("account") or {}
    login = account.get("login", "unknown")

    if action == "created":
        logger.info(f"GitHub App installed for org: {login}")
    elif action == "deleted":
        logger.info(f"GitHub App uninstalled for org: {login}")
    elif action in ("suspend", "unsuspend"):
        logger.info(f"Installation {action}ed for org: {login}")
    return {"action": action, "account": login}


async def handle_push(payload: dict) -> dict:
    repo = (payload.get("repository") or {}).get("full_name", "")
    commits = payload.get("commits") or []
    logger.info(f"Push to {repo} ({payload.get('ref', '')}): {len(commits)} commits")
    for commit in commits:
        headline = (commit.get("message") or "").split("\n")[0]
        logger.info(f"  - {commit.get('id', '')[:7]}: {headline}")
    return {"repository": repo, "commits": len(commits)}


async def handle_pull_request(payload: dict) -> dict:
    action = payload.get("action")
    pr = payload.get("pull_request") or {}
    repo = (payload.get("repository") or {}).get("full_name", "")
    logger.info(f"PR {action} in {repo}: #{pr.get('number')} {pr.get('title', '')}")

    merged = action == "closed" and bool(pr.get("merged"))
    if merged:
        merged_by = (pr.get("merged_by") or {}).get("login")
        logger.info(f"  PR merged by {merged_by}")
    return {"action": action, "number": pr.get("number"), "merged": merged}


async def handle_pull_request_review(payload: dict) -> dict:
    action = payload.get("action")
    if action != "submitted":
        return {"action": action}
    review = payload.get("review") or {}
    pr = payload.get("pull_request") or {}
    repo = (payload.get("repository") or {}).get("full_name", "")
    reviewer = (review.get("user") or {}).get("login")
    logger.info(f"Review on PR #{pr.get('number')} in {repo} by {reviewer}: {review.get('state')}")
    return {"action": action, "reviewer": reviewer, "state": review.get("state")}


async def handle_repository(payload: dict) -> dict:
    action = payload.get("action")
    repo = payload.get("repository") or {}
    github_id = str(repo.get("id", ""))
    full_name = repo.get("full_name", "")
    updated = 0

    if action == "created":
        logger.info(f"New repository created: {full_name}")
    elif action == "deleted":
        updated = await db.deactivate_repositories(github_id)
        logger.info(f"Repository deleted: {full_name} ({updated} tracked)")
    elif action == "renamed":
        updated = await db.rename_repositories(github_id, repo.get("name", ""), full_name)
        logger.info(f"Repository renamed: {full_name} ({updated} tracked)")
    return {"action": action, "repository": full_name, "updated": updated}


HANDLERS = {
    "installation": handle_installation,
    "push": handle_push,
    "pull_request": handle_pull_request,
    "pull_request_review": handle_pull_request_review,
    "repository": handle_repository,
}


async def dispatch_event(event: str, payload: dict) -> dict | None:
    """Run the handler for a GitHub event. Unknown events return None."""
    handler = HANDLERS.get(event)
    if handler is None:
        logger.info(f"Unhandled event type: {event}")
        return None
    return await handler(payload)
