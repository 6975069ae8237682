"""Tests for the GitHub webhook endpoint."""

import hashlib
import hmac
import json

import database as db
import webhooks


def _sign_payload(payload_bytes: bytes, secret: str) -> str:
    return "sha256=" + hmac.new(secret.encode(), payload_bytes, hashlib.sha256).hexdigest()


def _post(async_client, event: str, payload: dict, headers: dict | None = None):
    return async_client.post(
        "/api/github/webhook",
        content=json.dumps(payload).encode(),
        headers={"Content-Type": "application/json", "X-GitHub-Event": event,
                 "X-GitHub-Delivery": "d-1", **(headers or {})},
    )


class TestWebhookEvents:
    async def test_push(self, async_client):
        payload = {
            "ref": "refs/heads/main",
            "repository": {"full_name": "acme/api"},
            "commits": [{"id": "abcdef1234", "message": "Fix bug\n\nDetails"}],
        }
        resp = await _post(async_client, "push", payload)
        assert resp.status_code == 200
        assert resp.json() == {"received": True, "event": "push", "handled": True}

    async def test_unknown_event_acknowledged(self, async_client):
        resp = await _post(async_client, "star", {"action": "created"})
        assert resp.status_code == 200
        assert resp.json()["handled"] is False

    async def test_repository_deleted_deactivates(self, async_client, seeded_user):
        org_id = seeded_user["organization_id"]
        await db.upsert_repository(org_id, "555", "api", "acme/api")
        payload = {"action": "deleted", "repository": {"id": 555, "name": "api", "full_name": "acme/api"}}
        resp = await _post(async_client, "repository", payload)
        assert resp.status_code == 200
        assert await db.list_repositories(org_id) == []

    async def test_repository_renamed(self, async_client, seeded_user):
        org_id = seeded_user["organization_id"]
        await db.upsert_repository(org_id, "555", "api", "acme/api")
        payload = {"action": "renamed", "repository": {"id": 555, "name": "core", "full_name": "acme/core"}}
        await _post(async_client, "repository", payload)
        [repo] = await db.list_repositories(org_id)
        assert repo["full_name"] == "acme/core"

    async def test_invalid_json(self, async_client):
        resp = await async_client.post(
            "/api/github/webhook", content=b"{nope", headers={"X-GitHub-Event": "push"}
        )
        assert resp.status_code == 400


class TestWebhookSignature:
    async def test_valid(self, async_client, test_settings):
        test_settings.GITHUB_WEBHOOK_SECRET = "test-secret-123"
        payload = {"action": "created", "installation": {"account": {"login": "acme"}}}
        body = json.dumps(payload).encode()
        resp = await _post(async_client, "installation", payload,
                           {"X-Hub-Signature-256": _sign_payload(body, "test-secret-123")})
        assert resp.status_code == 200
        assert resp.json()["handled"] is True

    async def test_invalid(self, async_client, test_settings):
        test_settings.GITHUB_WEBHOOK_SECRET = "test-secret-123"
        resp = await _post(async_client, "push", {"commits": []}, {"X-Hub-Signature-256": "sha256=invalid"})
        assert resp.status_code == 401
        assert resp.json() == {"error": "Invalid signature"}

    async def test_missing_when_required(self, async_client, test_settings):
        test_settings.GITHUB_WEBHOOK_SECRET = "test-secret-123"
        resp = await _post(async_client, "push", {"commits": []})
        assert resp.status_code == 401

    async def test_non_ascii_signature_rejected(self, async_client, test_settings):
        test_settings.GITHUB_WEBHOOK_SECRET = "test-secret-123"
        resp = await _post(async_client, "push", {"commits": []}, {"X-Hub-Signature-256": b"sha256=\xe9"})
        assert resp.status_code == 401
        assert resp.json() == {"error": "Invalid signature"}


class TestVerifySignature:
    def test_matches(self):
        body = b'{"zen": "ok"}'
        assert webhooks.verify_signature(body, _sign_payload(body, "s3cret"), "s3cret") is True

    def test_empty_header(self):
        assert webhooks.verify_signature(b"{}", "", "s3cret") is False

    def test_non_ascii_header(self):
        assert webhooks.verify_signature(b"{}", "sha256=é", "s3cret") is False
