from __future__ import annotations

import logging
import os
from typing import Any, Callable, Protocol

import httpx

GRAPH_SEND_ENDPOINT = "https://graph.facebook.com/v19.0/me/messages"
PLACEHOLDER_TOKEN = "PLACEHOLDER_TOKEN"

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify(self, recipient: str, text: str) -> bool: ...


def env_access_token() -> str | None:
    return os.environ.get("PAGE_ACCESS_TOKEN")


class InstagramNotifier:
    """Send direct-message replies through the Instagram Graph API.

    Delivery is fire-and-forget: failures are written to ``activity_log`` and
    the standard logger, and ``notify`` returns False instead of raising.
    """

    def __init__(
        self,
        token_provider: Callable[[], str | None],
        activity_log: Callable[[str, str], Any] | None = None,
        send_endpoint: str = GRAPH_SEND_ENDPOINT,
        client: httpx.Client | None = None,
    ) -> None:
        self._token_provider = token_provider
        self._activity_log = activity_log
        self._send_endpoint = send_endpoint
        self._client = client or httpx.Client(timeout=10.0)

    def _record(self, message: str, kind: str) -> None:
        if self._activity_log is not None:
            self._activity_log(message, kind)

    def notify(self, recipient: str, text: str) -> bool:
        token = self._token_provider()
        if not token or token == PLACEHOLDER_TOKEN:
            logger.error("Missing Instagram access token; reply to %s dropped", recipient)
            self._record("Missing Access Token. Cannot reply.", "error")
            return False

        payload = {
            "recipient": {"id": recipient},
            "message": {"text": text},
        }
        try:
            response = self._client.post(self._send_endpoint, params={"access_token": token}, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as error:
            reason = _graph_error_message(error.response)
            logger.error(
                "Instagram send failed",
                extra={"status": error.response.status_code, "recipient_id": recipient, "error_message": reason},
            )
            self._record(f"Failed to send message: {reason}", "error")
            return False
        except httpx.HTTPError as error:
            logger.error("Instagram send failed: %s", error)
            self._record(f"Failed to send message: {error}", "error")
            return False

        self._record(f'Sent reply to {recipient}: "{text[:20]}..."', "outgoing")
        return True

    def close(self) -> None:
        self._client.close()


def _graph_error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"

    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        message = body["error"].get("message")
        if message:
            return str(message)
    return response.text or f"HTTP {response.status_code}"
