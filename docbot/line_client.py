from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from .config import Settings
from .errors import CollaboratorError

logger = logging.getLogger("docbot.line")

MAX_TEXT_LENGTH = 5000


class LineClient:
    """LINE Messaging API client: media download and reply delivery."""

    def __init__(self, settings: Settings) -> None:
        """Purpose: Keep the channel token, API hosts and request timeout.
        Side Effects / State: Logs a warning when no channel token is configured; calls
            made without a token will be rejected by LINE and surface as CollaboratorError.
        """
        self._token = settings.line_channel_access_token
        self._api_base = settings.line_api_base.rstrip("/")
        self._data_api_base = settings.line_data_api_base.rstrip("/")
        self._timeout = settings.http_timeout_seconds
        if not self._token:
            logger.warning("LINE_CHANNEL_ACCESS_TOKEN is not configured - replies and media downloads will fail")

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {"Authorization": f"Bearer {self._token}"}
        if extra:
            headers.update(extra)
        return headers

    def fetch_media(self, media_id: str) -> bytes:
        """Purpose: Download the photo attached to an image message.
        Inputs/Outputs: Input is the LINE message id; output is the raw image bytes.
        Failure Modes: Network errors and non-2xx responses raise CollaboratorError.
        """
        if not media_id:
            raise CollaboratorError("line", "image message has no id")
        url = f"{self._data_api_base}/v2/bot/message/{media_id}/content"
        try:
            response = requests.get(url, headers=self._headers(), timeout=self._timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise CollaboratorError("line", f"media download failed: {exc}") from exc
        logger.debug("media=%s bytes=%d", media_id, len(response.content))
        return response.content

    def send_reply(self, reply_token: str, text: str) -> Dict[str, Any]:
        """Purpose: Answer an event through its reply token.
        Inputs/Outputs: Inputs are the reply token and message text (trimmed to the
            platform limit); output is the decoded response body ({} when empty).
        Failure Modes: Network errors and non-2xx responses raise CollaboratorError.
        """
        payload = {
            "replyToken": reply_token,
            "messages": [{"type": "text", "text": text[:MAX_TEXT_LENGTH]}],
        }
        try:
            response = requests.post(
                f"{self._api_base}/v2/bot/message/reply",
                json=payload,
                headers=self._headers({"Content-Type": "application/json"}),
                timeout=self._timeout,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise CollaboratorError("line", f"reply failed: {exc}") from exc
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {}
