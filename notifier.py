"""Telegram Bot API transport for operator messages."""

from __future__ import annotations

import logging
import time
from typing import Any, Optional

import requests

from config import RETRY_DELAYS, TELEGRAM_API_URL
from errors import TransportError

logger = logging.getLogger(__name__)

# Telegram rejects longer messages
MAX_MESSAGE_LENGTH = 4096


class TelegramClient:
    """Minimal Bot API client: send, edit, and long-poll for updates."""

    def __init__(self, token: str, api_url: str = TELEGRAM_API_URL,
                 session: Optional[requests.Session] = None,
                 timeout: float = 10,
                 retry_delays: Optional[list[float]] = None):
        if not token:
            raise ValueError("Telegram bot token is required")
        self.base_url = f"{api_url.rstrip('/')}/bot{token}"
        self.session = session or requests.Session()
        self.timeout = timeout
        self.retry_delays = RETRY_DELAYS if retry_delays is None else retry_delays

    def _call(self, method: str, payload: dict[str, Any], timeout: Optional[float] = None) -> Any:
        url = f"{self.base_url}/{method}"
        timeout = timeout or self.timeout
        for idx in range(len(self.retry_delays) + 1):
            try:
                resp = self.session.post(url, json=payload, timeout=timeout)
                body = resp.json()
            except (requests.RequestException, ValueError) as e:
                if idx >= len(self.retry_delays):
                    raise TransportError(f"{method} failed: {e}") from e
                delay = self.retry_delays[idx]
                logger.warning(f"Telegram {method} failed: {e}; retrying in {delay}s")
                time.sleep(delay)
                continue
            if not body.get("ok"):
                raise TransportError(f"{method} rejected: {body.get('description', resp.status_code)}")
            return body.get("result")
        raise TransportError(f"{method} failed")

    def send_text(self, chat_id: int, text: str) -> int:
        """Send a message and return its message id."""
        result = self._call("sendMessage", {"chat_id": chat_id, "text": text[:MAX_MESSAGE_LENGTH]})
        return result["message_id"]

    def edit_text(self, chat_id: int, message_id: int, text: str):
        self._call("editMessageText", {
            "chat_id": chat_id,
            "message_id": message_id,
            "text": text[:MAX_MESSAGE_LENGTH],
        })

    def get_updates(self, offset: Optional[int] = None, timeout: int = 30) -> list[dict[str, Any]]:
        payload: dict[str, Any] = {"timeout": timeout, "allowed_updates": ["message"]}
        if offset is not None:
            payload["offset"] = offset
        return self._call("getUpdates", payload, timeout=timeout + 10) or []

    def get_me(self) -> dict[str, Any]:
        return self._call("getMe", {})
