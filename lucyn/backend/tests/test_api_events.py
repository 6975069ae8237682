"""Tests for the Slack and Discord event endpoints."""

import hashlib
import hmac
import json
import time

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

import events

SLACK_SECRET = "slack-signing-secret"


def _slack_headers(body: bytes, secret: str = SLACK_SECRET, timestamp: int | None = None) -> dict:
    ts = str(int(time.time()) if timestamp is None else timestamp)
    digest = hmac.new(secret.encode(), f"v0:{ts}:".encode() + body, hashlib.sha256).hexdigest()
    return {
        "Content-Type": "application/json",
        "X-Slack-Request-Timestamp": ts,
        "X-Slack-Signature": f"v0={digest}",
    }


@pytest.fixture
def discord_key(test_settings):
    key = Ed25519PrivateKey.generate()
    test_settings.DISCORD_PUBLIC_KEY = key.public_key().public_bytes_raw().hex()
    return key


def _discord_headers(key: Ed25519PrivateKey, body: bytes, timestamp: str = "1700000000") -> dict:
    return {
        "Content-Type": "application/json",
        "X-Signature-Timestamp": timestamp,
        "X-Signature-Ed25519": key.sign(timestamp.encode() + body).hex(),
    }


class TestSlackEvents:
    async def test_url_verification(self, async_client, test_settings):
        test_settings.SLACK_SIGNING_SECRET = SLACK_SECRET
        body = json.dumps({"type": "url_verification", "challenge": "3eZbrw1a"}).encode()
        resp = await async_client.post("/api/slack/events", content=body, headers=_slack_headers(body))
        assert resp.status_code == 200
        assert resp.json() == {"challenge": "3eZbrw1a"}

    async def test_event_callback(self, async_client, test_settings, monkeypatch):
        test_settings.SLACK_SIGNING_SECRET = SLACK_SECRET
        payload = {"type": "event_callback", "team_id": "T1",
                   "event": {"type": "app_mention", "user": "U1", "channel": "C1", "text": "hi"}}
        body = json.dumps(payload).encode()
        seen = []
        monkeypatch.setitem(events.SLACK_HANDLERS, "app_mention", lambda event, team: seen.append((event["user"], team)))
        resp = await async_client.post("/api/slack/events", content=body, headers=_slack_headers(body))
        assert resp.status_code == 200
        assert resp.json() == {"ok": True}
        assert seen == [("U1", "T1")]

    async def test_bad_signature(self, async_client, test_settings):
        test_settings.SLACK_SIGNING_SECRET = SLACK_SECRET
        body = b'{"type": "url_verification", "challenge": "x"}'
        resp = await async_client.post("/api/slack/events", content=body,
                                       headers=_slack_headers(body, secret="other"))
        assert resp.status_code == 401
        assert resp.json() == {"error": "Invalid signature"}

    async def test_stale_timestamp(self, async_client, test_settings):
        test_settings.SLACK_SIGNING_SECRET = SLACK_SECRET
        body = b'{"type": "url_verification", "challenge": "x"}'
        headers = _slack_headers(body, timestamp=int(time.time()) - events.SLACK_MAX_SKEW - 60)
        resp = await async_client.post("/api/slack/events", content=body, headers=headers)
        assert resp.status_code == 401

    async def test_unsigned_allowed_without_secret(self, async_client):
        body = b'{"type": "event_callback", "event": {"type": "channel_created"}}'
        resp = await async_client.post("/api/slack/events", content=body)
        assert resp.json() == {"ok": True}

    async def test_invalid_json(self, async_client):
        resp = await async_client.post("/api/slack/events", content=b"{nope")
        assert resp.status_code == 400


class TestSlackDispatch:
    def test_direct_message(self):
        data = {"event": {"type": "message", "channel_type": "im", "user": "U1"}}
        assert events.dispatch_slack_event(data) is True

    def test_channel_message_ignored(self):
        assert events.dispatch_slack_event({"event": {"type": "message", "channel_type": "channel"}}) is False

    def test_bot_message_ignored(self):
        data = {"event": {"type": "message", "channel_type": "im", "bot_id": "B1"}}
        assert events.dispatch_slack_event(data) is False

    def test_unknown_event(self):
        assert events.dispatch_slack_event({"event": {"type": "team_join"}}) is False


class TestVerifySlackRequest:
    def test_non_ascii_signature(self):
        ts = str(int(time.time()))
        assert events.verify_slack_request(b"{}", ts, "v0=é", SLACK_SECRET) is False

    def test_non_numeric_timestamp(self):
        assert events.verify_slack_request(b"{}", "soon", "v0=abc", SLACK_SECRET) is False


class TestDiscordEvents:
    async def test_ping(self, async_client, discord_key):
        body = b'{"type": 1}'
        resp = await async_client.post("/api/discord/events", content=body,
                                       headers=_discord_headers(discord_key, body))
        assert resp.status_code == 200
        assert resp.json() == {"type": 1}

    async def test_slash_command_acknowledged(self, async_client, discord_key):
        body = json.dumps({"type": 2, "channel_id": "42", "data": {"name": "lucyn"},
                           "member": {"user": {"username": "octo"}}}).encode()
        resp = await async_client.post("/api/discord/events", content=body,
                                       headers=_discord_headers(discord_key, body))
        assert resp.json() == {"type": 4, "data": {"content": "Processing your request..."}}

    async def test_component_acknowledged(self, async_client, discord_key):
        body = json.dumps({"type": 3, "data": {"custom_id": "helpful"}}).encode()
        resp = await async_client.post("/api/discord/events", content=body,
                                       headers=_discord_headers(discord_key, body))
        assert resp.json()["type"] == 4

    async def test_message_create(self, async_client, discord_key, test_settings):
        test_settings.DISCORD_BOT_ID = "999"
        body = json.dumps({"t": "MESSAGE_CREATE",
                           "d": {"author": {"username": "octo"}, "mentions": [{"id": "999"}]}}).encode()
        resp = await async_client.post("/api/discord/events", content=body,
                                       headers=_discord_headers(discord_key, body))
        assert resp.json() == {"ok": True}

    async def test_bad_signature(self, async_client, discord_key):
        body = b'{"type": 1}'
        headers = _discord_headers(Ed25519PrivateKey.generate(), body)
        resp = await async_client.post("/api/discord/events", content=body, headers=headers)
        assert resp.status_code == 401
        assert resp.json() == {"error": "Invalid signature"}

    async def test_tampered_body(self, async_client, discord_key):
        headers = _discord_headers(discord_key, b'{"type": 1}')
        resp = await async_client.post("/api/discord/events", content=b'{"type": 2}', headers=headers)
        assert resp.status_code == 401

    async def test_missing_signature(self, async_client, discord_key):
        resp = await async_client.post("/api/discord/events", content=b'{"type": 1}')
        assert resp.status_code == 401


class TestDiscordHelpers:
    def test_malformed_hex_rejected(self):
        key = Ed25519PrivateKey.generate().public_key().public_bytes_raw().hex()
        assert events.verify_discord_request(b"{}", "1", "zz", key) is False

    def test_mention_from_bot_ignored(self):
        message = {"author": {"bot": True}, "mentions": [{"id": "999"}]}
        assert events.handle_message_create(message, "999") is False

    def test_mention_of_someone_else(self):
        message = {"author": {"username": "octo"}, "mentions": [{"id": "1"}]}
        assert events.handle_message_create(message, "999") is False

    def test_bot_mentioned(self):
        message = {"author": {"username": "octo"}, "mentions": [{"id": "999"}]}
        assert events.handle_message_create(message, "999") is True
