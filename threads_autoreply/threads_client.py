"""Threads Graph API client for publishing replies and reading conversations."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional, TypeVar

import httpx

from .config import ThreadsConfig
from .errors import ThreadsAPIError

logger = logging.getLogger(__name__)

POST_FIELDS = "id,text,timestamp,media_type,permalink,username"
REPLY_FIELDS = "id,text,timestamp,media_type,permalink,username,is_reply,root_post,replied_to,hide_status"

T = TypeVar("T")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse Threads timestamps such as ``2024-05-01T12:00:00+0000``."""
    if not value:
        return None
    for fmt in ("%Y-%m-%dT%H:%M:%S%z", "%Y-%m-%dT%H:%M:%S.%f%z"):
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Unparseable timestamp: %s", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _require_id(data: dict[str, Any]) -> str:
    item_id = data.get("id")
    if not isinstance(item_id, str) or not item_id:
        raise ValueError(f"missing or invalid id: {item_id!r}")
    return item_id


def _parse_items(items: Any, parse: Callable[[dict[str, Any]], T], kind: str) -> list[T]:
    """Decode a list response, skipping items that cannot be decoded."""
    parsed: list[T] = []
    for item in items or []:
        try:
            parsed.append(parse(item))
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning("Skipping undecodable %s: %s", kind, e)
    return parsed


@dataclass
class ThreadsPost:
    """A post published by the account."""

    id: str
    text: str
    username: str
    timestamp: Optional[datetime] = None
    permalink: Optional[str] = None
    media_type: Optional[str] = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "ThreadsPost":
        return cls(
            id=_require_id(data),
            text=data.get("text", ""),
            username=data.get("username", ""),
            timestamp=parse_timestamp(data.get("timestamp")),
            permalink=data.get("permalink"),
            media_type=data.get("media_type"),
        )


@dataclass
class ThreadsReply:
    """A reply to one of the account's posts."""

    id: str
    text: str
    username: str
    timestamp: Optional[datetime] = None
    permalink: Optional[str] = None
    root_post_id: Optional[str] = None
    replied_to_id: Optional[str] = None
    hide_status: Optional[str] = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "ThreadsReply":
        return cls(
            id=_require_id(data),
            text=data.get("text", ""),
            username=data.get("username", ""),
            timestamp=parse_timestamp(data.get("timestamp")),
            permalink=data.get("permalink"),
            root_post_id=(data.get("root_post") or {}).get("id"),
            replied_to_id=(data.get("replied_to") or {}).get("id"),
            hide_status=data.get("hide_status"),
        )


@dataclass
class TokenRefresh:
    """Result of refreshing a long-lived access token."""

    access_token: str
    expires_in: int


class ThreadsClient:
    """Async wrapper around the Threads Graph API."""

    def __init__(self, config: ThreadsConfig, http_client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.client = http_client or httpx.AsyncClient(
            base_url=config.api_base_url,
            timeout=httpx.Timeout(config.timeout_seconds),
        )

    async def close(self) -> None:
        await self.client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any],
        action: str,
    ) -> dict[str, Any]:
        try:
            response = await self.client.request(method, path, params=params)
        except httpx.HTTPError as e:
            raise ThreadsAPIError(f"Failed to {action}: {e}") from e

        if response.status_code != 200:
            raise self._error_from_response(response, action)

        try:
            return response.json()
        except ValueError as e:
            raise ThreadsAPIError(
                f"Failed to {action}: invalid JSON response", status_code=response.status_code
            ) from e

    @staticmethod
    def _error_from_response(response: httpx.Response, action: str) -> ThreadsAPIError:
        try:
            error = response.json().get("error") or {}
        except ValueError:
            error = {}
        if isinstance(error, dict) and error.get("message"):
            return ThreadsAPIError(
                f"threads API error: {error['message']} (code: {error.get('code')})",
                status_code=response.status_code,
                error_code=error.get("code"),
            )
        return ThreadsAPIError(
            f"Failed to {action}: status {response.status_code}, body: {response.text}",
            status_code=response.status_code,
        )

    async def create_reply(
        self,
        access_token: str,
        account_platform_id: str,
        text: str,
        reply_to_id: str,
    ) -> tuple[str, dict[str, Any]]:
        """Publish a text reply under ``reply_to_id``.

        Threads publishing is two calls: create a media container, then
        publish it.

        Returns:
            The published post ID and the raw publish response.
        """
        container = await self._request(
            "POST",
            f"/{account_platform_id}/threads",
            {
                "media_type": "TEXT",
                "text": text,
                "reply_to_id": reply_to_id,
                "access_token": access_token,
            },
            action="create reply container",
        )
        creation_id = container.get("id")
        if not creation_id:
            raise ThreadsAPIError("Reply container response did not include an id")

        published = await self._request(
            "POST",
            f"/{account_platform_id}/threads_publish",
            {"creation_id": creation_id, "access_token": access_token},
            action="publish reply",
        )
        reply_id = published.get("id")
        if not reply_id:
            raise ThreadsAPIError("Publish response did not include an id")

        logger.debug("Published reply %s to post %s", reply_id, reply_to_id)
        return reply_id, published

    async def list_own_posts(
        self,
        access_token: str,
        account_platform_id: str,
        limit: int = 25,
        since: Optional[datetime] = None,
    ) -> list[ThreadsPost]:
        """Fetch the account's recent posts."""
        params: dict[str, Any] = {"fields": POST_FIELDS, "access_token": access_token}
        if limit > 0:
            params["limit"] = limit
        if since is not None:
            params["since"] = int(since.timestamp())

        data = await self._request(
            "GET", f"/{account_platform_id}/threads", params, action="get user threads"
        )
        return _parse_items(data.get("data"), ThreadsPost.from_api, "post")

    async def list_replies(self, access_token: str, post_id: str) -> list[ThreadsReply]:
        """Fetch direct replies to a post, oldest first."""
        data = await self._request(
            "GET",
            f"/{post_id}/replies",
            {"fields": REPLY_FIELDS, "reverse": "true", "access_token": access_token},
            action="get replies",
        )
        return _parse_items(data.get("data"), ThreadsReply.from_api, "reply")

    async def refresh_token(self, access_token: str) -> TokenRefresh:
        """Exchange a long-lived token for a fresh one."""
        data = await self._request(
            "GET",
            "/refresh_access_token",
            {"grant_type": "th_refresh_token", "access_token": access_token},
            action="refresh token",
        )
        return TokenRefresh(
            access_token=data["access_token"],
            expires_in=int(data.get("expires_in", 0)),
        )
