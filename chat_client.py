"""HTTP client for the safety chat assistant backend."""

from __future__ import annotations

import logging
from typing import Optional

import requests

from errors import ChatError

logger = logging.getLogger(__name__)

NO_REPLY_MESSAGE = "I'm sorry, I couldn't process your request."


class HttpChatClient:
    def __init__(
        self,
        endpoint: str,
        api_key: str = "",
        request_timeout_s: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._endpoint = endpoint
        self._api_key = api_key
        self._request_timeout_s = request_timeout_s
        self._session = session or requests.Session()
        self._conversation_id: Optional[str] = None

    def __call__(self, message: str) -> str:
        return self.chat(message)

    def chat(self, message: str) -> str:
        if not self._endpoint:
            raise ChatError("no chat endpoint configured")

        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        body = {"message": message}
        if self._conversation_id:
            body["conversationId"] = self._conversation_id

        try:
            response = self._session.post(
                self._endpoint, json=body, headers=headers, timeout=self._request_timeout_s
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise ChatError(f"chat request failed: {exc}") from exc

        if not isinstance(payload, dict):
            return NO_REPLY_MESSAGE
        data = payload.get("data", payload)
        if isinstance(data, dict) and data.get("conversationId"):
            self._conversation_id = str(data["conversationId"])
        reply = data.get("message") if isinstance(data, dict) else None
        if not reply:
            logger.info("Chat backend returned no message")
            return NO_REPLY_MESSAGE
        return str(reply)
