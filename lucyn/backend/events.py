"""Slack Events API and Discord interactions: request verification and dispatch."""

import hashlib
import hmac
import logging
import time

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

logger = logging.getLogger(__name__)

SLACK_MAX_SKEW = 60 * 5

PING = 1
APPLICATION_COMMAND = 2
MESSAGE_COMPONENT = 3
CHANNEL_MESSAGE_WITH_SOURCE = 4

SLASH_COMMAND = "lucyn"


# --------------- Slack ---------------

def verify_slack_request(body: bytes, timestamp: str, signature: str, secret: str) -> bool:
    """Check X-Slack-Signature (v0=hex HMAC-SHA256 of "v0:{timestamp}:{body}")."""
    if not signature or not timestamp:
        return False
    try:
        sent_at = int(timestamp)
    except ValueError:
        return False
    if abs(time.time() - sent_at) > SLACK_MAX_SKEW:
        return False
    basestring = b"v0:" + timestamp.encode() + b":" + body
    expected = "v0=" + hmac.new(secret.encode(), basestring, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature.encode(), expected.encode())


def handle_app_mention(event: dict, team_id: str | None) -> bool:
    logger.info(f"App mentioned by {event.get('user')} in {event.get('channel')} (team {team_id})")
    return True


def handle_direct_message(event: dict, team_id: str | None) -> bool:
    if event.get("channel_type") != "im" or event.get("bot_id"):
        return False
    logger.info(f"DM from {event.get('user')} (team {team_id})")
    return True


def handle_reaction(event: dict, team_id: str | None) -> bool:
    logger.info(f"Reaction {event.get('reaction')} added by {event.get('user')}")
    return True


SLACK_HANDLERS = {
    "app_mention": handle_app_mention,
    "message": handle_direct_message,
    "reaction_added": handle_reaction,
}


def dispatch_slack_event(data: dict) -> bool:
    """Run the handler for an event_callback envelope. Returns whether anything handled it."""
    event = data.get("event") or {}
    event_type = event.get("type", "")
    logger.info(f"Slack event received: {event_type}")
    handler = SLACK_HANDLERS.get(event_type)
    if handler is None:
        logger.info(f"Unhandled Slack event: {event_type}")
        return False
    return handler(event, data.get("team_id"))


# --------------- Discord ---------------

def verify_discord_request(body: bytes, timestamp: str, signature: str, public_key: str) -> bool:
    """Check X-Signature-Ed25519 over timestamp + body with the application's public key."""
    if not signature or not timestamp:
        return False
    try:
        key = Ed25519PublicKey.from_public_bytes(bytes.fromhex(public_key))
        key.verify(bytes.fromhex(signature), timestamp.encode() + body)
    except (InvalidSignature, ValueError) as e:
        logger.warning(f"Discord signature verification failed: {e!r}")
        return False
    return True


def handle_interaction(interaction: dict) -> dict:
    """Acknowledge an application command or component interaction."""
    name = (interaction.get("data") or {}).get("name")
    logger.info(f"Discord interaction received: {name or 'component'}")
    if name == SLASH_COMMAND:
        user = (interaction.get("member") or {}).get("user") or interaction.get("user") or {}
        logger.info(f"Slash command from {user.get('username')} in channel {interaction.get('channel_id')}")
    else:
        logger.info(f"Unhandled Discord interaction: {name}")
    return {"type": CHANNEL_MESSAGE_WITH_SOURCE, "data": {"content": "Processing your request..."}}


def handle_message_create(message: dict, bot_id: str) -> bool:
    """Note a message that mentions the bot. Messages from bots are ignored."""
    mentioned = bool(bot_id) and any(m.get("id") == bot_id for m in message.get("mentions") or [])
    author = message.get("author") or {}
    if not mentioned or author.get("bot"):
        return False
    logger.info(f"Bot mentioned by {author.get('username')} in channel {message.get('channel_id')}")
    return True
