from __future__ import annotations

import logging
from typing import Optional

import google.generativeai as genai

from .config import Settings
from .errors import CollaboratorError

logger = logging.getLogger("docbot.gemini")

DEFAULT_SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_NONE"},
]

LANGUAGE_NAMES = {"tha": "Thai", "eng": "English"}

TRANSCRIBE_PROMPT = (
    "Transcribe all text visible in this photographed document exactly as printed. "
    "The main language is {language}. Keep the original line breaks, one printed line per "
    "output line. Do not translate, summarize, or add commentary. "
    "If there is no readable text, return an empty response."
)


class GeminiRecognizer:
    """Text recognition through a Gemini vision model."""

    def __init__(self, settings: Settings) -> None:
        """Purpose: Configure the Gemini SDK and build the model instance.
        Inputs/Outputs: Input is Settings; no return value.
        Side Effects / State: Configures the SDK's global API key.
        Failure Modes: Raises ValueError if the API key or model name is missing.
        """
        if not settings.gemini_api_key:
            raise ValueError("GEMINI_API_KEY is required when OCR_PROVIDER=gemini")
        model_name = _normalize_model_name(settings.gemini_model)
        if not model_name:
            raise ValueError("GEMINI_MODEL is required when OCR_PROVIDER=gemini")
        genai.configure(api_key=settings.gemini_api_key)
        self._model = genai.GenerativeModel(model_name)
        self._timeout = settings.recognition_timeout_seconds

    def recognize_text(self, image_bytes: bytes, language_hint: str) -> str:
        """Purpose: Transcribe a document photo.
        Inputs/Outputs: Inputs are image bytes and a language code; output is the
            transcription, "" when the model returns nothing.
        Failure Modes: SDK and transport errors raise CollaboratorError.
        """
        prompt = TRANSCRIBE_PROMPT.format(language=LANGUAGE_NAMES.get(language_hint, language_hint))
        try:
            response = self._model.generate_content(
                [prompt, {"mime_type": "image/jpeg", "data": image_bytes}],
                generation_config={"temperature": 0.0},
                safety_settings=DEFAULT_SAFETY_SETTINGS,
                request_options={"timeout": self._timeout},
            )
        except Exception as exc:
            raise CollaboratorError("gemini", f"generate_content failed: {exc}") from exc
        try:
            text: Optional[str] = response.text
        except ValueError:
            # Raised by the SDK when the candidate was blocked or has no text part.
            logger.info("gemini returned no text part")
            return ""
        return (text or "").strip()


def _normalize_model_name(name: Optional[str]) -> str:
    """Strip a "models/" prefix and whitespace from a model name."""
    if not name:
        return ""
    cleaned = name.strip()
    if cleaned.startswith("models/"):
        return cleaned.split("/", 1)[1]
    return cleaned
