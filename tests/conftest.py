import os

os.environ.setdefault("OCR_PROVIDER", "ocrspace")
os.environ.setdefault("DOCUMENT_TYPE", "form")
os.environ.setdefault("LINE_CHANNEL_ACCESS_TOKEN", "test-token")
os.environ.setdefault("SHEET_URL", "https://sheet.example.test/exec")
os.environ.setdefault("OCRSPACE_KEY", "test-key")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from typing import Any, Dict, List, Optional  # noqa: E402

import pytest  # noqa: E402

from docbot.conversation import ConversationEngine  # noqa: E402
from docbot.errors import CollaboratorError  # noqa: E402
from docbot.models import DocumentType, EventKind, InboundEvent, QueryResult  # noqa: E402
from docbot.session_store import SessionRepository  # noqa: E402

FORM_TEXT = "แบบฟอร์มส่งเอกสาร\nวันที่: 12/01/2569\nเลขที่เอกสาร: DOC-001\nชื่อ: สมชาย ใจดี"
FORM_TEXT_2 = "วันที่: 13/01/2569\nเลขที่เอกสาร: DOC-002\nชื่อ: สมหญิง ใจงาม"


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeMedia:
    def __init__(self) -> None:
        self.fetched: List[str] = []
        self.error: Optional[CollaboratorError] = None

    def fetch_media(self, media_id: str) -> bytes:
        if self.error:
            raise self.error
        self.fetched.append(media_id)
        return b"jpeg:" + media_id.encode()


class FakeRecognizer:
    def __init__(self) -> None:
        self.texts: List[str] = []
        self.calls = 0
        self.error: Optional[CollaboratorError] = None

    def recognize_text(self, image_bytes: bytes, language_hint: str) -> str:
        self.calls += 1
        if self.error:
            raise self.error
        return self.texts.pop(0) if self.texts else ""


class FakeStore:
    def __init__(self) -> None:
        self.persisted: List[Dict[str, Any]] = []
        self.queries: List[tuple] = []
        self.result = QueryResult()
        self.fail_persist_at: Optional[int] = None
        self.query_error: Optional[CollaboratorError] = None

    def persist(self, record: Dict[str, Any]) -> Dict[str, Any]:
        if self.fail_persist_at is not None and len(self.persisted) == self.fail_persist_at:
            raise CollaboratorError("sheet", "append failed")
        self.persisted.append(dict(record))
        return {"ok": True}

    def query(self, action: str, employee_code: str, params: Dict[str, Any]) -> QueryResult:
        if self.query_error:
            raise self.query_error
        self.queries.append((action, employee_code, dict(params)))
        return self.result


class FakeReplier:
    def __init__(self) -> None:
        self.replies: List[tuple] = []
        self.error: Optional[CollaboratorError] = None

    def send_reply(self, reply_token: str, text: str) -> Dict[str, Any]:
        if self.error:
            raise self.error
        self.replies.append((reply_token, text))
        return {}

    @property
    def last_text(self) -> str:
        return self.replies[-1][1]


class Harness:
    """Engine wired to fakes, plus helpers to send events as one user."""

    def __init__(self, document_type: DocumentType = DocumentType.FORM, max_images: int = 2) -> None:
        self.clock = FakeClock()
        self.sessions = SessionRepository(max_records=max_images, clock=self.clock)
        self.media = FakeMedia()
        self.recognizer = FakeRecognizer()
        self.store = FakeStore()
        self.replier = FakeReplier()
        self.engine = ConversationEngine(
            sessions=self.sessions,
            media=self.media,
            recognizer=self.recognizer,
            store=self.store,
            replier=self.replier,
            document_type=document_type,
            session_timeout_seconds=60,
            search_timeout_seconds=60,
            search_preview_limit=10,
        )

    def text(self, text: str, user_id: str = "U-alice-0001"):
        event = InboundEvent(kind=EventKind.TEXT, user_id=user_id, reply_token="rt-text", text=text)
        return self.engine.handle_event(event)

    def image(self, media_id: str = "m1", user_id: str = "U-alice-0001"):
        event = InboundEvent(kind=EventKind.IMAGE, user_id=user_id, reply_token="rt-image", media_id=media_id)
        return self.engine.handle_event(event)

    def sticker(self, user_id: str = "U-alice-0001"):
        event = InboundEvent(kind=EventKind.OTHER, user_id=user_id, reply_token="rt-other")
        return self.engine.handle_event(event)

    def session(self, user_id: str = "U-alice-0001"):
        return self.sessions.get_or_create(user_id)


@pytest.fixture()
def harness() -> Harness:
    return Harness()


@pytest.fixture()
def receipt_harness() -> Harness:
    return Harness(document_type=DocumentType.RECEIPT)
