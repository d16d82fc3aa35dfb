"""
Telegram Bot API client used as the outbound notification channel.

Messages go out through ``sendMessage`` (HTML formatted, with an optional
inline button that opens the Mini App); stale order offers are taken back
with ``deleteMessage``.  Recipients that are not numeric chat ids
(e.g. test or web-only users) are skipped.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from taxi_dispatch.config import settings

logger = logging.getLogger(__name__)


class TelegramDeliveryError(Exception):
    """The Bot API rejected a message or could not be reached."""


def open_app_button(webapp_url: str, path: str = "") -> dict[str, Any]:
    return {
        "inline_keyboard": [
            [{"text": "🚖 Open app", "web_app": {"url": f"{webapp_url}{path}"}}]
        ]
    }


class TelegramChannel:
    def __init__(
        self,
        token: Optional[str],
        api_url: str = "https://api.telegram.org",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self.token = token
        self.api_url = api_url.rstrip("/")
        self._client = client
        self._timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.token)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def send(
        self,
        chat_id: str,
        text: str,
        reply_markup: Optional[dict[str, Any]] = None,
    ) -> Optional[dict[str, Any]]:
        """
        Send one message.  Returns the Bot API ``result`` object, or
        ``None`` when the message was skipped.  Raises
        ``TelegramDeliveryError`` on failure.
        """
        if not self.enabled:
            logger.debug("Telegram disabled, skipping message to %s", chat_id)
            return None
        if not str(chat_id).lstrip("-").isdigit():
            logger.debug("Recipient %s is not a Telegram chat, skipping", chat_id)
            return None

        body: dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": "HTML",
        }
        if reply_markup:
            body["reply_markup"] = reply_markup

        return await self._call("sendMessage", body)

    async def delete(self, chat_id: str, message_id: int) -> bool:
        """Remove a message sent earlier.  Returns False when skipped."""
        if not self.enabled:
            return False
        await self._call("deleteMessage", {"chat_id": chat_id, "message_id": message_id})
        return True

    async def _call(self, method: str, body: dict[str, Any]) -> Any:
        client = await self._get_client()
        try:
            resp = await client.post(
                f"{self.api_url}/bot{self.token}/{method}", json=body
            )
            payload = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise TelegramDeliveryError(str(exc)) from exc

        if not payload.get("ok"):
            raise TelegramDeliveryError(
                payload.get("description", f"HTTP {resp.status_code}")
            )
        return payload.get("result")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def build_channel() -> TelegramChannel:
    return TelegramChannel(settings.telegram_bot_token, settings.telegram_api_url)
