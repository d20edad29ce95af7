from __future__ import annotations

import logging

import requests

from .config import Settings
from .errors import CollaboratorError

logger = logging.getLogger("docbot.ocr")


class OcrSpaceClient:
    """Text recognition through the OCR.space parse/image endpoint."""

    def __init__(self, settings: Settings) -> None:
        self._api_key = settings.ocrspace_key
        self._url = settings.ocrspace_url
        self._timeout = settings.recognition_timeout_seconds
        if not self._api_key:
            logger.warning("OCRSPACE_KEY is not configured - recognition requests will be rejected")

    def recognize_text(self, image_bytes: bytes, language_hint: str) -> str:
        """Purpose: Recognize the text in a photographed document.
        Inputs/Outputs: Inputs are image bytes and an OCR.space language code ("tha");
            output is the parsed text of the first page, "" when nothing was read.
        Failure Modes: Network errors, non-2xx responses, undecodable bodies and
            IsErroredOnProcessing responses raise CollaboratorError.
        """
        data = {
            "apikey": self._api_key,
            "language": language_hint,
            "OCREngine": "2",
            "scale": "true",
        }
        files = {"file": ("image.jpg", image_bytes, "image/jpeg")}
        try:
            response = requests.post(self._url, data=data, files=files, timeout=self._timeout)
            response.raise_for_status()
            body = response.json()
        except requests.RequestException as exc:
            raise CollaboratorError("ocrspace", f"request failed: {exc}") from exc
        except ValueError as exc:
            raise CollaboratorError("ocrspace", "response is not JSON") from exc

        if not isinstance(body, dict):
            raise CollaboratorError("ocrspace", "unexpected response shape")
        if body.get("IsErroredOnProcessing"):
            message = body.get("ErrorMessage") or "processing error"
            if isinstance(message, list):
                message = "; ".join(str(part) for part in message)
            raise CollaboratorError("ocrspace", str(message))

        results = body.get("ParsedResults") or []
        if not results or not isinstance(results[0], dict):
            return ""
        text = results[0].get("ParsedText") or ""
        return text.strip()
