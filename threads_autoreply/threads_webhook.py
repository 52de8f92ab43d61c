"""Threads webhook verification and mention extraction."""

import hashlib
import hmac
import json
import logging
from typing import Any, Optional

from .errors import MalformedPayloadError
from .models import MentionAuthor, MentionEvent
from .threads_client import parse_timestamp

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="
MENTIONS_FIELD = "mentions"


class WebhookVerifier:
    """Subscription handshake and payload signature checks."""

    def __init__(self, app_secret: str, verify_token: str):
        self.app_secret = app_secret
        self.verify_token = verify_token

    def verify_challenge(self, mode: str, token: str, challenge: str) -> tuple[Optional[str], bool]:
        """Answer the one-time ``hub.challenge`` handshake.

        Returns:
            ``(challenge, True)`` for a subscribe request carrying our verify
            token, otherwise ``(None, False)``.
        """
        if mode == "subscribe" and hmac.compare_digest(
            token.encode("utf-8"), self.verify_token.encode("utf-8")
        ):
            return challenge, True
        return None, False

    def verify_signature(self, payload: bytes, signature: str) -> bool:
        """Verify ``X-Hub-Signature-256`` against the raw request body.

        Args:
            payload: Raw, unparsed request body bytes
            signature: Header value (format: "sha256=<hex>")

        Returns:
            True if signature is valid, False otherwise
        """
        if not signature or len(signature) <= len(SIGNATURE_PREFIX):
            logger.warning("Signature header missing or too short")
            return False
        if not signature.startswith(SIGNATURE_PREFIX):
            logger.warning("Invalid signature format (missing sha256= prefix)")
            return False

        received_signature = signature[len(SIGNATURE_PREFIX):]
        expected_signature = hmac.new(
            self.app_secret.encode("utf-8"),
            payload,
            hashlib.sha256,
        ).hexdigest()

        # Timing-safe comparison
        is_valid = hmac.compare_digest(
            expected_signature.encode("utf-8"), received_signature.encode("utf-8")
        )
        if not is_valid:
            logger.warning("Webhook signature verification failed")
        return is_valid


def parse_webhook_payload(body: bytes) -> dict[str, Any]:
    """Decode the webhook envelope.

    Raises:
        MalformedPayloadError: If the body is not a JSON object with an entry list.
    """
    try:
        payload = json.loads(body.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedPayloadError(f"Invalid JSON payload: {e}") from e

    if not isinstance(payload, dict):
        raise MalformedPayloadError("Webhook payload must be a JSON object")
    entries = payload.get("entry", [])
    if not isinstance(entries, list):
        raise MalformedPayloadError("Webhook payload 'entry' must be a list")
    return payload


def _decode_mention(account_platform_id: str, value: Any) -> MentionEvent:
    if not isinstance(value, dict):
        raise ValueError("change value is not an object")

    sender = value.get("from") or {}
    post_id = value.get("media_id") or value.get("id")
    if not post_id:
        raise ValueError("mention has no media_id")
    if not sender.get("id") and not sender.get("username"):
        raise ValueError("mention has no author")

    username = sender.get("username") or sender.get("id")
    return MentionEvent(
        account_platform_id=account_platform_id,
        post_id=str(post_id),
        author=MentionAuthor(
            platform_user_id=str(sender.get("id") or username),
            username=username,
            display_name=sender.get("name") or username,
        ),
        text=value.get("text") or "",
        timestamp=parse_timestamp(value.get("timestamp")),
    )


def extract_mentions(payload: dict[str, Any]) -> list[MentionEvent]:
    """Collect every ``mentions`` change in the envelope.

    Changes for other fields are ignored; a mention change that cannot be
    decoded is logged and skipped without affecting the rest of the batch.
    """
    mentions: list[MentionEvent] = []

    for entry in payload.get("entry", []):
        if not isinstance(entry, dict):
            logger.warning("Skipping non-object webhook entry")
            continue
        account_platform_id = str(entry.get("id", ""))

        for change in entry.get("changes") or []:
            if not isinstance(change, dict) or change.get("field") != MENTIONS_FIELD:
                continue
            try:
                mentions.append(_decode_mention(account_platform_id, change.get("value")))
            except (ValueError, TypeError, AttributeError) as e:
                logger.warning("Skipping undecodable mention change: %s", e)

    return mentions
