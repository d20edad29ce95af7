from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

from .labels import RECEIPT_REQUIRED_TOKENS
from .models import DocumentType

BASE_DIR = Path(__file__).resolve().parent

OCR_PROVIDERS = ("ocrspace", "gemini")


@dataclass(frozen=True)
class Settings:
    """Configuration container for collaborators, flow limits, and timeouts."""
    line_channel_access_token: str
    line_api_base: str
    line_data_api_base: str
    ocr_provider: str
    ocrspace_key: str
    ocrspace_url: str
    ocr_language: str
    gemini_api_key: str
    gemini_model: str
    sheet_url: str
    document_type: DocumentType
    max_images: int
    session_timeout_seconds: int
    search_timeout_seconds: int
    session_retention_seconds: int
    search_preview_limit: int
    recognition_timeout_seconds: int
    http_timeout_seconds: int
    receipt_required_tokens: Tuple[str, ...]


def _parse_csv(value: str | None) -> Tuple[str, ...]:
    if not value:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


def load_settings() -> Settings:
    """Purpose: Load configuration from environment variables and defaults.
    Inputs/Outputs: No inputs; returns a Settings instance.
    Side Effects / State: Reads environment variables only.
    Failure Modes: Invalid integer values, an unknown OCR_PROVIDER or an unknown
    If Removed: Every collaborator would need its own env parsing.
    Testing Notes: Use monkeypatch.setenv and call load_settings directly.
        DOCUMENT_TYPE raise ValueError so the app fails at startup.
    """
    # Values are validated here so a bad deploy fails before serving traffic.
    provider = os.getenv("OCR_PROVIDER", "ocrspace").strip().lower()
    if provider not in OCR_PROVIDERS:
        raise ValueError(f"OCR_PROVIDER must be one of {OCR_PROVIDERS}, got {provider!r}")

    document_type = DocumentType(os.getenv("DOCUMENT_TYPE", DocumentType.FORM.value).strip().lower())

    max_images = int(os.getenv("MAX_IMAGES", "2"))
    if max_images < 1:
        raise ValueError("MAX_IMAGES must be at least 1")

    return Settings(
        line_channel_access_token=os.getenv("LINE_CHANNEL_ACCESS_TOKEN") or os.getenv("LINE_TOKEN", ""),
        line_api_base=os.getenv("LINE_API_BASE", "https://api.line.me"),
        line_data_api_base=os.getenv("LINE_DATA_API_BASE", "https://api-data.line.me"),
        ocr_provider=provider,
        ocrspace_key=os.getenv("OCRSPACE_KEY", ""),
        ocrspace_url=os.getenv("OCRSPACE_URL", "https://api.ocr.space/parse/image"),
        ocr_language=os.getenv("OCR_LANGUAGE", "tha"),
        gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
        sheet_url=os.getenv("SHEET_URL", ""),
        document_type=document_type,
        max_images=max_images,
        session_timeout_seconds=int(os.getenv("SESSION_TIMEOUT_SECONDS", "60")),
        search_timeout_seconds=int(os.getenv("SEARCH_TIMEOUT_SECONDS", "60")),
        session_retention_seconds=int(os.getenv("SESSION_RETENTION_SECONDS", "3600")),
        search_preview_limit=int(os.getenv("SEARCH_PREVIEW_LIMIT", "10")),
        recognition_timeout_seconds=int(os.getenv("RECOGNITION_TIMEOUT_SECONDS", "30")),
        http_timeout_seconds=int(os.getenv("HTTP_TIMEOUT_SECONDS", "15")),
        receipt_required_tokens=_parse_csv(os.getenv("RECEIPT_REQUIRED_TOKENS")) or RECEIPT_REQUIRED_TOKENS,
    )
