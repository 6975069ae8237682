"""FastAPI application: dashboard REST API, OAuth flows and webhooks for Lucyn."""

import json
import logging
from contextlib import asynccontextmanager
from urllib.parse import urlencode

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import accounts
import database as db
import demo_data
import events
import oauth
import tokens
import webhooks
from config import settings
from encryption import decrypt_token
from models import RepositoryConnect, Session, UnsubscribeRequest, VerificationPayload, VerificationRequest
from ratelimit import api_rate_limit, close_redis, webhook_rate_limit
from sessions import SESSION_COOKIE, SESSION_MAX_AGE, get_session, require_session

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

VERSION = "0.1.0"

RATE_LIMITED = [Depends(api_rate_limit)]


# --------------- App Lifecycle ---------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    await db.init_db()
    logger.info("Lucyn backend started")
    yield
    await close_redis()
    logger.info("Lucyn backend shutting down")


app = FastAPI(
    title="Lucyn",
    description="Team health analytics for engineering managers",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.APP_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = [err.get("msg", "") for err in exc.errors()]
    return JSONResponse({"error": "Validation failed", "details": details}, status_code=400)


# --------------- Helpers ---------------

def _provider_or_404(name: str) -> oauth.Provider:
    provider = oauth.get_provider(name)
    if provider is None:
        raise HTTPException(status_code=404, detail="Unknown provider")
    return provider


def _app_redirect(path: str, **params: str) -> RedirectResponse:
    url = f"{settings.APP_URL}{path}"
    if params:
        url += "?" + urlencode(params)
    return RedirectResponse(url)


def _set_state_cookie(response: RedirectResponse, name: str, state: str) -> None:
    response.set_cookie(
        name,
        state,
        max_age=oauth.STATE_MAX_AGE,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )


def _repo_status(repo: dict) -> str:
    if repo.get("last_full_scan_at"):
        return "ready"
    if repo.get("scan_started_at"):
        return "analyzing"
    return "pending"


def _format_repo(repo: dict) -> dict:
    return {
        "id": repo["id"],
        "githubId": repo["github_id"],
        "name": repo["name"],
        "fullName": repo["full_name"],
        "description": repo["description"],
        "language": repo["language"],
        "isPrivate": bool(repo["is_private"]),
        "defaultBranch": repo["default_branch"],
        "updatedAt": repo["updated_at"],
        "status": _repo_status(repo),
    }


# --------------- Health ---------------

@app.get("/api/health")
async def health():
    return {"status": "ok", "version": VERSION}


# --------------- Dashboard Endpoints ---------------

@app.get("/api/dashboard/overview", dependencies=RATE_LIMITED)
async def dashboard_overview(session: Session = Depends(require_session)):
    """Team health overview for the caller's organization."""
    try:
        # TODO: compute from the organization's synced activity once the metrics jobs exist
        data = demo_data.overview()
        org = await db.get_organization(session.organization_id) if session.organization_id else None
        if org:
            data["organization"] = {"id": org["id"], "name": org["name"], "slug": org["slug"]}
        return {"success": True, "data": data}
    except Exception as e:
        logger.exception(f"Dashboard overview error: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@app.get("/api/developers", dependencies=RATE_LIMITED)
async def list_developers(session: Session = Depends(require_session)):
    try:
        items = demo_data.developers()
        return {"success": True, "data": {"items": items, "total": len(items)}}
    except Exception as e:
        logger.exception(f"Developers list error: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@app.get("/api/insights", dependencies=RATE_LIMITED)
async def list_insights(session: Session = Depends(require_session)):
    try:
        items = demo_data.insights()
        return {"success": True, "data": {"items": items, "total": len(items)}}
    except Exception as e:
        logger.exception(f"Insights error: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


# --------------- Repository Endpoints ---------------

@app.get("/api/repos", dependencies=RATE_LIMITED)
async def list_repos(session: Session = Depends(require_session)):
    """Active repositories of the caller's organization."""
    try:
        if session.organization_id is None:
            return {"repos": []}
        repos = await db.list_repositories(session.organization_id)
        return {"repos": [_format_repo(r) for r in repos]}
    except Exception as e:
        logger.exception(f"Get repos error: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@app.post("/api/repos", dependencies=RATE_LIMITED)
async def connect_repo(body: RepositoryConnect, session: Session = Depends(require_session)):
    """Connect a GitHub repository to the caller's organization."""
    if not body.github_id or not body.full_name:
        raise HTTPException(status_code=400, detail="Repository ID and full name are required")
    if session.organization_id is None:
        raise HTTPException(status_code=400, detail="User has no organization")

    try:
        repo = await db.upsert_repository(
            organization_id=session.organization_id,
            github_id=str(body.github_id),
            name=body.name or body.full_name.split("/")[-1],
            full_name=body.full_name,
            description=body.description,
            language=body.language,
            is_private=body.is_private,
            default_branch=body.default_branch,
        )
        return {"success": True, "repository": _format_repo(repo)}
    except Exception as e:
        logger.exception(f"Connect repo error: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@app.get("/api/repos/{repo_id}/summary", dependencies=RATE_LIMITED)
async def repo_summary(repo_id: int, session: Session = Depends(require_session)):
    """Scan status and weekly activity for one of the organization's repositories."""
    if session.organization_id is None:
        raise HTTPException(status_code=400, detail="No organization")

    try:
        repo = await db.get_repository(session.organization_id, repo_id)
    except Exception as e:
        logger.exception(f"Get repo summary error: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")
    if repo is None:
        raise HTTPException(status_code=404, detail="Repository not found")

    # TODO: fill stats and velocity from synced commits and pull requests once GitHub sync stores them
    return {
        "id": repo["id"],
        "name": repo["name"],
        "fullName": repo["full_name"],
        "status": _repo_status(repo),
        "lastScanAt": repo["last_full_scan_at"],
        "stats": {
            "totalFiles": 0,
            "totalLines": 0,
            "primaryLanguages": [repo["language"]] if repo["language"] else [],
            "frameworks": [],
        },
        "health": {"score": 75, "trend": 0},
        "velocity": {"prsOpened": 0, "prsMerged": 0, "commits": 0, "avgReviewTime": "N/A"},
    }


@app.get("/api/github/repos", dependencies=RATE_LIMITED)
async def list_github_repos(session: Session = Depends(require_session)):
    """Repositories visible to the connected GitHub account."""
    try:
        integration = await db.get_integration(session.user_id, "GITHUB")
        if not integration:
            return JSONResponse({"error": "GitHub not connected", "connected": False}, status_code=400)

        access_token = decrypt_token(integration["access_token"])
        async with httpx.AsyncClient(timeout=oauth.HTTP_TIMEOUT) as client:
            resp = await client.get(
                f"{oauth.GITHUB_API}/user/repos",
                params={"per_page": 100, "sort": "updated"},
                headers={"Authorization": f"Bearer {access_token}", "Accept": oauth.GITHUB_ACCEPT},
            )

        if resp.status_code != 200:
            logger.error(f"GitHub API error: {resp.status_code}")
            return JSONResponse({"error": "Failed to fetch repos from GitHub"}, status_code=resp.status_code)

        connected: set[str] = set()
        if session.organization_id is not None:
            connected = {r["github_id"] for r in await db.list_repositories(session.organization_id)}

        repos = [
            {
                "id": repo["id"],
                "name": repo["name"],
                "fullName": repo["full_name"],
                "description": repo.get("description"),
                "language": repo.get("language"),
                "isPrivate": repo.get("private", False),
                "defaultBranch": repo.get("default_branch"),
                "updatedAt": repo.get("updated_at"),
                "stars": repo.get("stargazers_count", 0),
                "isConnected": str(repo["id"]) in connected,
            }
            for repo in resp.json()
        ]
        return {"success": True, "repos": repos, "total": len(repos)}
    except Exception as e:
        logger.exception(f"GitHub repos error: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


# --------------- Sign-in OAuth ---------------

@app.get("/api/oauth/{provider_name}/authorize")
async def oauth_authorize(provider_name: str):
    """Redirect to the provider's consent screen for sign-in."""
    provider = _provider_or_404(provider_name)
    if not provider.client_id:
        raise HTTPException(status_code=500, detail=f"Missing required {provider.name} OAuth configuration")

    state = oauth.new_state()
    url = oauth.build_authorize_url(provider, oauth.callback_uri(provider, "sign_in"), state, "sign_in")
    response = RedirectResponse(url)
    _set_state_cookie(response, provider.state_cookie("sign_in"), state)
    return response


@app.get("/api/oauth/{provider_name}/callback")
async def oauth_callback(
    provider_name: str,
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
):
    """Finish sign-in: verify state, exchange the code, and start a session."""
    provider = _provider_or_404(provider_name)
    cookie_name = provider.state_cookie("sign_in")
    stored_state = request.cookies.get(cookie_name)

    if error:
        logger.error(f"{provider.name} OAuth error: {error}")
        response = _app_redirect("/login", error=error)
    elif not code:
        response = _app_redirect("/login", error="missing_code")
    elif not oauth.states_match(state, stored_state):
        logger.error("OAuth state mismatch - possible CSRF attack")
        response = _app_redirect("/login", error="invalid_state")
    else:
        try:
            grant = await oauth.exchange_code(provider, code, oauth.callback_uri(provider, "sign_in"), "sign_in")
            profile = await oauth.fetch_profile(provider, grant)
            result = await accounts.handle_oauth_callback(provider, profile)
        except oauth.OAuthError as e:
            response = _app_redirect("/login", error=e.code)
        except Exception as e:
            logger.exception(f"{provider.name} OAuth callback error: {e}")
            response = _app_redirect("/login", error="authentication_failed")
        else:
            response = _app_redirect("/onboarding" if result.is_new_user else "/dashboard")
            response.set_cookie(
                SESSION_COOKIE,
                result.session_token,
                max_age=SESSION_MAX_AGE,
                path="/",
                httponly=True,
                secure=settings.is_production,
                samesite="lax",
            )

    if stored_state:
        response.delete_cookie(cookie_name, path="/")
    return response


# --------------- Integrations ---------------

@app.get("/api/{provider_name}/connect")
async def integration_connect(provider_name: str, request: Request):
    """Redirect a signed-in user to connect a workspace account."""
    provider = _provider_or_404(provider_name)
    session = await get_session(request)
    if session is None:
        return _app_redirect("/login")
    if not provider.client_id:
        raise HTTPException(status_code=500, detail=f"Missing required {provider.name} OAuth configuration")

    state = oauth.new_state()
    url = oauth.build_authorize_url(provider, oauth.callback_uri(provider, "connect"), state, "connect")
    response = RedirectResponse(url)
    _set_state_cookie(response, provider.state_cookie("connect"), state)
    return response


@app.get("/api/{provider_name}/callback")
async def integration_callback(
    provider_name: str,
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    installation_id: str | None = None,
):
    """Store the connected workspace's credentials and return to settings."""
    provider = _provider_or_404(provider_name)
    cookie_name = provider.state_cookie("connect")
    stored_state = request.cookies.get(cookie_name)

    if error:
        logger.error(f"{provider.name} OAuth error: {error}")
        response = _app_redirect("/dashboard/settings", error=error)
    elif not code:
        response = _app_redirect("/dashboard/settings", error="no_code")
    elif not oauth.states_match(state, stored_state):
        logger.error("OAuth state mismatch - possible CSRF attack")
        response = _app_redirect("/dashboard/settings", error="invalid_state")
    else:
        session = await get_session(request)
        if session is None:
            response = _app_redirect("/login")
        else:
            try:
                grant = await oauth.exchange_code(provider, code, oauth.callback_uri(provider, "connect"), "connect")
                metadata = await oauth.fetch_connection_metadata(provider, grant)
                if installation_id:
                    metadata["installationId"] = installation_id
                await accounts.connect_integration(session, provider, grant, metadata)
            except oauth.OAuthError as e:
                response = _app_redirect("/dashboard/settings", error=e.code)
            except Exception as e:
                logger.exception(f"{provider.name} callback error: {e}")
                response = _app_redirect("/dashboard/settings", error="callback_failed")
            else:
                response = _app_redirect("/dashboard/settings", **{provider.name: "connected"})

    if stored_state:
        response.delete_cookie(cookie_name, path="/")
    return response


@app.get("/api/{provider_name}/status", dependencies=RATE_LIMITED)
async def integration_status(provider_name: str, session: Session = Depends(require_session)):
    provider = _provider_or_404(provider_name)
    try:
        return await accounts.integration_status(session, provider)
    except Exception as e:
        logger.exception(f"{provider.name} status error: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@app.delete("/api/{provider_name}/status", dependencies=RATE_LIMITED)
async def integration_disconnect(provider_name: str, session: Session = Depends(require_session)):
    provider = _provider_or_404(provider_name)
    try:
        await accounts.disconnect_integration(session, provider)
    except Exception as e:
        logger.exception(f"{provider.name} disconnect error: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")
    return {"success": True, "message": f"{provider.name.capitalize()} disconnected"}


# --------------- Webhooks ---------------

@app.post("/api/github/webhook", dependencies=[Depends(webhook_rate_limit)])
async def github_webhook(request: Request):
    """Receive GitHub App events."""
    body = await request.body()
    secret = settings.GITHUB_WEBHOOK_SECRET
    if secret and not webhooks.verify_signature(body, request.headers.get("X-Hub-Signature-256", ""), secret):
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    event = request.headers.get("X-GitHub-Event", "")
    delivery_id = request.headers.get("X-GitHub-Delivery", "")
    logger.info(f"Received GitHub webhook: {event} ({delivery_id})")

    try:
        result = await webhooks.dispatch_event(event, payload)
    except Exception as e:
        logger.exception(f"GitHub webhook error: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")
    return {"received": True, "event": event, "handled": result is not None}


@app.post("/api/slack/events", dependencies=[Depends(webhook_rate_limit)])
async def slack_events(request: Request):
    """Receive Slack Events API callbacks."""
    body = await request.body()
    secret = settings.SLACK_SIGNING_SECRET
    if secret and not events.verify_slack_request(
        body,
        request.headers.get("X-Slack-Request-Timestamp", ""),
        request.headers.get("X-Slack-Signature", ""),
        secret,
    ):
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        data = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    if data.get("type") == "url_verification":
        return {"challenge": data.get("challenge")}

    try:
        if data.get("type") == "event_callback":
            events.dispatch_slack_event(data)
    except Exception as e:
        logger.exception(f"Slack events error: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")
    return {"ok": True}


@app.post("/api/discord/events", dependencies=[Depends(webhook_rate_limit)])
async def discord_events(request: Request):
    """Receive Discord interactions and gateway-forwarded messages."""
    body = await request.body()
    public_key = settings.DISCORD_PUBLIC_KEY
    if public_key and not events.verify_discord_request(
        body,
        request.headers.get("X-Signature-Timestamp", ""),
        request.headers.get("X-Signature-Ed25519", ""),
        public_key,
    ):
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        data = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    if data.get("type") == events.PING:
        return {"type": events.PING}

    try:
        if data.get("type") in (events.APPLICATION_COMMAND, events.MESSAGE_COMPONENT):
            return events.handle_interaction(data)
        if data.get("t") == "MESSAGE_CREATE":
            events.handle_message_create(data.get("d") or {}, settings.DISCORD_BOT_ID)
    except Exception as e:
        logger.exception(f"Discord events error: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")
    return {"ok": True}


# --------------- Email Verification ---------------

NEUTRAL_VERIFICATION_MESSAGE = (
    "If an unverified account exists for this email, a new verification link has been sent."
)


@app.post("/api/auth/request-verification", dependencies=RATE_LIMITED)
async def request_verification(body: VerificationRequest):
    """Issue an email verification link. The response never reveals whether the email is known."""
    email = body.email
    neutral = {"success": True, "message": NEUTRAL_VERIFICATION_MESSAGE}
    if await db.get_user_by_email(email):
        return neutral

    name = body.name or email.split("@")[0]
    payload = VerificationPayload(
        email=email,
        name=name,
        organization_name=body.organization_name or f"{name}'s Organization",
    )
    try:
        token = await tokens.create_verification_token(payload)
    except tokens.VerificationRateLimited as e:
        raise HTTPException(status_code=429, detail=str(e))
    except Exception as e:
        logger.exception(f"Verification request error: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")

    verify_url = f"{settings.APP_URL}/api/auth/verify-email?{urlencode({'token': token})}"
    if not settings.is_production:
        logger.info(f"Verification link for {email}: {verify_url}")
    return neutral


@app.get("/api/auth/verify-email")
async def verify_email(token: str | None = None):
    """Consume a verification link and create the account on first use."""
    if not token:
        return _app_redirect("/login", error="missing_token")

    payload = await tokens.verify_email_token(token)
    if payload is None:
        return _app_redirect("/login", error="invalid_or_expired_token")

    try:
        if not await db.get_user_by_email(payload.email):
            await accounts.create_user_with_organization(
                payload.email, name=payload.name, organization_name=payload.organization_name
            )
    except Exception as e:
        logger.exception(f"Email verification error: {e}")
        return _app_redirect("/login", error="verification_failed")

    return _app_redirect("/login", message="Email verified! You can now sign in.")


# --------------- Unsubscribe ---------------

@app.post("/api/unsubscribe", dependencies=RATE_LIMITED)
async def unsubscribe(body: UnsubscribeRequest):
    """Turn off feedback emails for the address a signed unsubscribe token was issued to."""
    try:
        email = tokens.verify_unsubscribe_token(body.token)
    except tokens.InvalidTokenError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except tokens.TokenConfigError as e:
        logger.error(f"Unsubscribe unavailable: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")

    try:
        # Unknown addresses still succeed so the endpoint does not leak which emails exist.
        await db.set_feedback_enabled(email, False)
    except Exception as e:
        logger.exception(f"Unsubscribe error: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")
    return {"success": True}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
