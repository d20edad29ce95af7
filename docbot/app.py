from __future__ import annotations

import logging
import os
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError

from .config import BASE_DIR, Settings, load_settings
from .conversation import ConversationEngine, TextRecognizer
from .gemini_client import GeminiRecognizer
from .line_client import LineClient
from .models import InboundEvent, WebhookRequest
from .ocr_client import OcrSpaceClient
from .session_store import SessionRepository
from .sheet_client import SheetClient
from .utils import mask_user_id

log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
log_level = getattr(logging, log_level_name, logging.INFO)
if not logging.getLogger().handlers:
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

logging.getLogger("docbot").setLevel(log_level)
logger = logging.getLogger("docbot.app")

ENV_PATH = BASE_DIR / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH, override=True)
else:
    load_dotenv()


def build_recognizer(settings: Settings) -> TextRecognizer:
    """Pick the text recognition backend named by OCR_PROVIDER."""
    if settings.ocr_provider == "gemini":
        return GeminiRecognizer(settings)
    return OcrSpaceClient(settings)


def build_engine(settings: Settings) -> ConversationEngine:
    """Purpose: Wire the conversation engine to the real collaborators.
    Inputs/Outputs: Input is Settings; output is a ready ConversationEngine.
    Failure Modes: Propagates ValueError from a misconfigured recognizer.
    """
    line = LineClient(settings)
    return ConversationEngine(
        sessions=SessionRepository(max_records=settings.max_images),
        media=line,
        recognizer=build_recognizer(settings),
        store=SheetClient(settings),
        replier=line,
        document_type=settings.document_type,
        session_timeout_seconds=settings.session_timeout_seconds,
        search_timeout_seconds=settings.search_timeout_seconds,
        language_hint=settings.ocr_language,
        search_preview_limit=settings.search_preview_limit,
        receipt_required_tokens=settings.receipt_required_tokens,
        session_retention_seconds=settings.session_retention_seconds,
    )


def create_app(settings: Optional[Settings] = None, engine: Optional[ConversationEngine] = None) -> FastAPI:
    """Purpose: Build the FastAPI application exposing the LINE webhook.
    Inputs/Outputs: Optional Settings and a prebuilt engine (tests inject one with
        fake collaborators); returns the FastAPI app.
    Side Effects / State: Loads settings from the environment when none are given.
    """
    if engine is None:
        engine = build_engine(settings or load_settings())

    app = FastAPI(title="LINE Document Bot")
    app.state.engine = engine

    @app.get("/healthz")
    def healthz() -> dict:
        return {"status": "ok"}

    @app.post("/webhook")
    async def webhook(request: Request) -> dict:
        """Purpose: Receive LINE webhook deliveries.
        Inputs/Outputs: Input is the raw JSON body; output is always {"status": "ok"}
            with HTTP 200 so the platform never retries a delivery.
        Side Effects / State: Handles every event in order through the engine, off the
            event loop. Malformed bodies and failed events are logged, never raised.
        """
        body = await request.body()
        try:
            payload = WebhookRequest.model_validate_json(body or b"{}")
        except ValidationError as exc:
            logger.warning("webhook body rejected: %s", exc.errors()[:3])
            return {"status": "ok"}

        for line_event in payload.events:
            event = InboundEvent.from_line_event(line_event)
            if event is None:
                logger.debug("ignored event type=%s", line_event.type)
                continue
            try:
                outcome = await run_in_threadpool(engine.handle_event, event)
            except Exception:
                logger.exception("user=%s event handling crashed", mask_user_id(event.user_id))
                continue
            logger.info(
                "user=%s status=%s mode=%s step=%s",
                mask_user_id(event.user_id),
                outcome.status.value,
                outcome.mode.value,
                outcome.step.value,
            )
        return {"status": "ok"}

    return app


app = create_app()
