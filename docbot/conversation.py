"""Per-user conversation state machine for document upload and search.

Role:
    Consumes one inbound chat event at a time, gates it against the user's Session and
    decides what to extract, persist, query and reply. Owns the EventContext contract
    and the reply texts.

Event handling order (one StepRunner stage each, first stage that answers wins):
    expiry_check   - a non-Idle session past its timeout is reset and told so.
    cancel_check   - cancel command; no-op reply when already Idle.
    help_check     - static instructions, no mutation.
    start_commands - upload / search start commands, from any state.
    dispatch       - image pipeline or the (mode, step) text handler.
    record_state   - always runs; notes the resulting mode/step on the trail.

Session contract:
    Handlers mutate context.session, a copy of the stored session. The copy is saved
    only when every outbound call of the event (recognition, persistence, query, reply)
    succeeded, so a failed event leaves the stored session as it was. Two resets are
    committed directly through the repository: expiry, and a save that failed after
    some rows were already appended.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Protocol

from .errors import CollaboratorError
from .extraction.engine import ExtractedRecord, extract, record_identifier, shape_is_valid
from .labels import RECEIPT_REQUIRED_TOKENS
from .models import DocumentType, EventKind, ExtractedReceipt, InboundEvent, QueryResult
from .session_store import Mode, SearchType, Session, SessionRepository, Step
from .step_runner import EventStep, StepRunner
from .utils import mask_user_id, normalize_text
from .validators import validate_date, validate_employee_code

logger = logging.getLogger("docbot.conversation")

START_UPLOAD_COMMANDS = frozenset(normalize_text(c) for c in ("ส่งเอกสาร", "START_UPLOAD"))
START_SEARCH_COMMANDS = frozenset(normalize_text(c) for c in ("ค้นหาเอกสาร", "ค้นหา", "START_SEARCH"))
CANCEL_COMMANDS = frozenset(normalize_text(c) for c in ("ยกเลิก", "CANCEL"))
HELP_COMMANDS = frozenset(normalize_text(c) for c in ("วิธีใช้", "ช่วยเหลือ", "HELP"))

SEARCH_SELECTORS: Dict[str, SearchType] = {
    "1": SearchType.BY_IDENTIFIER,
    "2": SearchType.BY_SECONDARY_IDENTIFIER,
    "3": SearchType.BY_NAME,
    "4": SearchType.BY_DATE,
    "เลขที่": SearchType.BY_IDENTIFIER,
    "id": SearchType.BY_IDENTIFIER,
    "hn": SearchType.BY_SECONDARY_IDENTIFIER,
    "ชื่อ": SearchType.BY_NAME,
    "name": SearchType.BY_NAME,
    "วันที่": SearchType.BY_DATE,
    "date": SearchType.BY_DATE,
}
SEARCH_ACTIONS: Dict[SearchType, str] = {
    SearchType.BY_IDENTIFIER: "findById",
    SearchType.BY_SECONDARY_IDENTIFIER: "findByHn",
    SearchType.BY_NAME: "findByName",
    SearchType.BY_DATE: "countByDate",
}

ASK_EMPLOYEE_CODE = "กรุณากรอกรหัสพนักงาน (A0001 - A2000) ครับ"
ASK_SEARCH_EMPLOYEE_CODE = "🔎 ค้นหาเอกสาร\nกรุณากรอกรหัสพนักงาน (A0001 - A2000) ครับ"
INVALID_EMPLOYEE_CODE = "❌ รหัสพนักงานไม่ถูกต้อง\nกรุณากรอกใหม่ (A0001 - A2000)"
CODE_ACCEPTED = "✅ ตรวจสอบรหัสพนักงานแล้ว ({code})\nส่งรูปเอกสารมาได้เลยครับ 📄 (ทั้งหมด {max_images} รูป)"
WAITING_FOR_IMAGE = "ตอนนี้พร้อมรับรูปเอกสารแล้วครับ 📄\nกรุณาส่งรูปได้เลย (รูปที่ {next}/{max_images})"
IDLE_GUIDANCE = (
    'ถ้าต้องการส่งเอกสาร กรุณาพิมพ์คำว่า "ส่งเอกสาร"\n'
    'ถ้าต้องการค้นหาเอกสาร กรุณาพิมพ์คำว่า "ค้นหาเอกสาร" ครับ'
)
IMAGE_OUTSIDE_FLOW = 'ก่อนส่งรูป กรุณาพิมพ์ "ส่งเอกสาร" และกรอกรหัสพนักงานก่อนครับ'
UNREADABLE_IMAGE = "อ่านตัวอักษรไม่ออกครับ 😅\nกรุณาถ่ายรูปใหม่ให้ชัดขึ้นแล้วส่งอีกครั้ง"
WRONG_DOCUMENT_SHAPE = "รูปนี้ไม่ใช่เอกสารที่รองรับ หรืออ่านหัวข้อในเอกสารไม่ครบครับ\nกรุณาถ่ายรูปใหม่แล้วส่งอีกครั้ง"
MISSING_IDENTIFIER = "อ่านเลขที่ใบเสร็จไม่พบครับ\nกรุณาถ่ายรูปใหม่ให้เห็นเลขที่ใบเสร็จชัดเจนแล้วส่งอีกครั้ง"
NEXT_IMAGE = "✅ รับรูปที่ {count}/{max_images} แล้ว\n{summary}\nส่งรูปถัดไปได้เลยครับ"
SAVED_SUMMARY = "✅ บันทึกเรียบร้อย {count} รายการ\n👤 รหัสพนักงาน: {code}\n{summary}"
RECOGNITION_FAILED = "⚠️ ระบบอ่านรูปขัดข้องชั่วคราว กรุณาส่งรูปเดิมอีกครั้งครับ"
SAVE_FAILED = (
    "⚠️ บันทึกข้อมูลไม่สำเร็จ ยังไม่มีรายการใดถูกบันทึก\n"
    'กรุณาส่งรูปล่าสุดอีกครั้ง หรือพิมพ์ "ยกเลิก"'
)
PARTIAL_SAVE_FAILED = (
    "⚠️ บันทึกได้เพียง {saved}/{total} รายการ\n"
    "รูปที่ {unsaved} ยังไม่ได้บันทึก และระบบยกเลิกขั้นตอนนี้แล้ว\n"
    'กรุณาพิมพ์ "ส่งเอกสาร" แล้วส่งเฉพาะรูปที่ยังไม่ได้บันทึกครับ'
)
TIMEOUT_NOTICE = "⏰ หมดเวลาทำรายการ ระบบยกเลิกขั้นตอนเดิมแล้ว\nกรุณาเริ่มใหม่อีกครั้งครับ"
CANCELLED = "ยกเลิกรายการเรียบร้อยแล้วครับ"
NOTHING_TO_CANCEL = "ตอนนี้ไม่มีรายการที่กำลังทำอยู่ครับ"
HELP_TEXT = (
    "📖 วิธีใช้งาน\n"
    '• ส่งเอกสาร: พิมพ์ "ส่งเอกสาร" → กรอกรหัสพนักงาน → ส่งรูปเอกสาร\n'
    '• ค้นหาเอกสาร: พิมพ์ "ค้นหาเอกสาร" → กรอกรหัสพนักงาน → เลือกประเภท → กรอกคำค้น\n'
    '• ยกเลิกขั้นตอนที่ทำอยู่: พิมพ์ "ยกเลิก"\n'
    "• ถ้าไม่ตอบภายในเวลาที่กำหนด ระบบจะยกเลิกให้อัตโนมัติ"
)
SEARCH_MENU = (
    "เลือกประเภทการค้นหา (พิมพ์ตัวเลข)\n"
    "1. เลขที่เอกสาร / เลขที่ใบเสร็จ\n"
    "2. HN (รหัสผู้ป่วย)\n"
    "3. ชื่อ\n"
    "4. วันที่ (นับจำนวนเอกสาร)"
)
SEARCH_CODE_ACCEPTED = "✅ ตรวจสอบรหัสพนักงานแล้ว ({code})\n" + SEARCH_MENU
ASK_SEARCH_VALUE: Dict[SearchType, str] = {
    SearchType.BY_IDENTIFIER: "กรุณากรอกเลขที่เอกสาร / เลขที่ใบเสร็จ",
    SearchType.BY_SECONDARY_IDENTIFIER: "กรุณากรอก HN",
    SearchType.BY_NAME: "กรุณากรอกชื่อที่ต้องการค้นหา",
    SearchType.BY_DATE: "กรุณากรอกวันที่ รูปแบบ วว/ดด/ปปปป เช่น 31/01/2569",
}
INVALID_DATE = "❌ รูปแบบวันที่ไม่ถูกต้อง\nกรุณากรอกเป็น วว/ดด/ปปปป เช่น 31/01/2569"
SEARCH_NOT_FOUND = "ไม่พบข้อมูลที่ค้นหาครับ ({value})"
SEARCH_FAILED = "⚠️ ระบบค้นหาขัดข้องชั่วคราว กรุณาลองใหม่อีกครั้งครับ"
DATE_COUNT = "📅 วันที่ {date}\nพบเอกสาร {count} รายการ"
LIST_HEADER = "🔎 พบ {total} รายการ"
LIST_TRUNCATED = "(แสดง {shown} รายการแรก)"
PRUNE_INTERVAL_SECONDS = 60

# Sheet columns rendered in search results, in display order.
RESULT_FIELDS = (
    ("identifier", "เลขที่ใบเสร็จ"),
    ("doc_number", "เลขที่"),
    ("secondary_identifier", "HN"),
    ("date", "วันที่"),
    ("date_raw", "วันที่"),
    ("name", "ชื่อ"),
    ("patient_name", "ชื่อผู้ป่วย"),
    ("total", "ยอดรวม"),
    ("detail", "รายละเอียด"),
    ("remark", "หมายเหตุ"),
)


class MediaFetcher(Protocol):
    def fetch_media(self, media_id: str) -> bytes: ...


class TextRecognizer(Protocol):
    def recognize_text(self, image_bytes: bytes, language_hint: str) -> str: ...


class RecordStore(Protocol):
    def persist(self, record: Mapping[str, Any]) -> Dict[str, Any]: ...

    def query(self, action: str, employee_code: str, params: Mapping[str, Any]) -> QueryResult: ...


class ReplySender(Protocol):
    def send_reply(self, reply_token: str, text: str) -> Any: ...


class EventStatus(str, Enum):
    SUCCESS = "success"
    REJECTED = "rejected"
    COLLABORATOR_FAILURE = "collaborator_failure"


@dataclass
class EventOutcome:
    """Typed result of one handled event, returned to the webhook boundary."""
    status: EventStatus
    reply_text: str
    mode: Mode
    step: Step
    error: str = ""
    trail: List[Dict[str, str]] = field(default_factory=list)


@dataclass
class EventContext:
    """Mutable context passed through each event-handling stage."""
    event: InboundEvent
    session: Session
    reply_text: str = ""
    status: EventStatus = EventStatus.SUCCESS
    handled: bool = False
    commit: bool = True
    error: str = ""
    trail: List[Dict[str, str]] = field(default_factory=list)

    @property
    def text(self) -> str:
        return self.event.text.strip()

    @property
    def command(self) -> str:
        if self.event.kind is not EventKind.TEXT:
            return ""
        return normalize_text(self.event.text)

    def log(self, event: str, detail: str, status: str = "success") -> None:
        self.trail.append({"event": event, "detail": detail, "status": status})

    def respond(self, text: str, status: EventStatus = EventStatus.SUCCESS) -> None:
        """Set the reply and stop the remaining stages."""
        self.reply_text = text
        self.status = status
        self.handled = True

    def fail(self, exc: CollaboratorError, reply_text: str = "") -> None:
        """Record a collaborator failure; the working session will not be saved."""
        self.reply_text = reply_text
        self.status = EventStatus.COLLABORATOR_FAILURE
        self.error = str(exc)
        self.commit = False
        self.handled = True
        self.log(exc.collaborator, exc.message, status="error")


def build_record_payload(record: ExtractedRecord, employee_code: str, document_type: DocumentType) -> Dict[str, Any]:
    """Flatten an extracted record into the row sent to the sheet."""
    payload = record.model_dump()
    payload["employee_code"] = employee_code
    payload["document_type"] = DocumentType(document_type).value
    return payload


def summarize_record(record: ExtractedRecord) -> str:
    if isinstance(record, ExtractedReceipt):
        return (
            f"🧾 เลขที่ใบเสร็จ: {record.identifier or '-'}\n"
            f"🏥 HN: {record.secondary_identifier or '-'}\n"
            f"📅 วันที่: {record.date_raw or '-'}\n"
            f"💰 ยอดรวม: {record.total or '-'}"
        )
    return f"📄 เลขที่: {record.doc_number or '-'}\n📅 วันที่: {record.date or '-'}"


def _format_match(match: Mapping[str, Any]) -> str:
    lines = [f"{label}: {match[key]}" for key, label in RESULT_FIELDS if match.get(key)]
    if not lines:
        lines = [f"{key}: {value}" for key, value in match.items() if value not in (None, "")]
    return "\n".join(lines)


def _format_match_line(match: Mapping[str, Any]) -> str:
    parts = [str(match[key]) for key, _label in RESULT_FIELDS if match.get(key)]
    if not parts:
        parts = [str(value) for value in match.values() if value not in (None, "")]
    return " | ".join(parts[:4])


def format_query_result(search_type: SearchType, value: str, result: QueryResult, preview_limit: int) -> str:
    """Purpose: Render a search answer as chat text.
    Inputs/Outputs: Inputs are the search type, the searched value, the QueryResult and
        the preview cap; output is the reply text (a not-found message when empty).
    """
    if search_type is SearchType.BY_DATE:
        count = result.count if result.count is not None else len(result.matches)
        return DATE_COUNT.format(date=value, count=count)

    if search_type is SearchType.BY_IDENTIFIER:
        match = result.match or (result.matches[0] if result.matches else None)
        if not match:
            return SEARCH_NOT_FOUND.format(value=value)
        return "🔎 ผลการค้นหา\n" + _format_match(match)

    matches = result.matches or ([result.match] if result.match else [])
    total = result.total if result.total is not None else len(matches)
    if not matches:
        return SEARCH_NOT_FOUND.format(value=value)
    shown = matches[:preview_limit]
    lines = [LIST_HEADER.format(total=total)]
    lines.extend(f"{index}) {_format_match_line(match)}" for index, match in enumerate(shown, start=1))
    if total > len(shown):
        lines.append(LIST_TRUNCATED.format(shown=len(shown)))
    return "\n".join(lines)


class ConversationEngine:
    def __init__(
        self,
        sessions: SessionRepository,
        media: MediaFetcher,
        recognizer: TextRecognizer,
        store: RecordStore,
        replier: ReplySender,
        document_type: DocumentType = DocumentType.FORM,
        session_timeout_seconds: float = 60,
        search_timeout_seconds: float = 60,
        language_hint: str = "tha",
        search_preview_limit: int = 10,
        receipt_required_tokens: tuple = RECEIPT_REQUIRED_TOKENS,
        session_retention_seconds: float = 3600,
    ) -> None:
        """Purpose: Wire the session repository, collaborators and flow limits.
        Side Effects / State: Builds the StepRunner with the fixed stage order.
        """
        self._sessions = sessions
        self._media = media
        self._recognizer = recognizer
        self._store = store
        self._replier = replier
        self._document_type = DocumentType(document_type)
        self._session_timeout = session_timeout_seconds
        self._search_timeout = search_timeout_seconds
        self._language_hint = language_hint
        self._preview_limit = search_preview_limit
        self._required_tokens = tuple(receipt_required_tokens)
        self._retention = session_retention_seconds
        self._next_prune_at = 0.0
        self._text_handlers: Dict[tuple, Callable[[EventContext], None]] = {
            (Mode.IDLE, Step.NONE): self._idle_text,
            (Mode.UPLOAD, Step.WAITING_CODE): self._upload_code,
            (Mode.UPLOAD, Step.WAITING_IMAGE): self._upload_text_instead_of_image,
            (Mode.SEARCH, Step.WAITING_CODE): self._search_code,
            (Mode.SEARCH, Step.CHOOSE_TYPE): self._search_choose_type,
            (Mode.SEARCH, Step.WAITING_VALUE): self._search_value,
        }
        self._runner = StepRunner(
            steps=[
                EventStep("expiry_check", self._step_expiry_check),
                EventStep("cancel_check", self._step_cancel_check, skip_if=lambda ctx: not ctx.command),
                EventStep("help_check", self._step_help_check, skip_if=lambda ctx: not ctx.command),
                EventStep("start_commands", self._step_start_commands, skip_if=lambda ctx: not ctx.command),
                EventStep("dispatch", self._step_dispatch),
                EventStep("record_state", self._step_record_state, always_run=True),
            ],
            stop_when=lambda ctx: ctx.handled,
        )

    def handle_event(self, event: InboundEvent) -> EventOutcome:
        """Purpose: Process one inbound event start-to-finish for its user.
        Inputs/Outputs: Input is an InboundEvent; output is an EventOutcome.
        Side Effects / State: Holds the user's lock for the whole call; may call the
            recognition, sheet and reply collaborators; saves the working session only
            when none of them failed.
        Dependencies: SessionRepository, StepRunner and the four collaborators.
        Failure Modes: CollaboratorError never escapes; it becomes a
            COLLABORATOR_FAILURE outcome. Programming errors propagate.
        If Removed: The webhook has nothing to hand events to.
        Testing Notes: Drive it with fake collaborators and a fake clock; assert the
            reply text and the stored session after each event.
        """
        # Everything touching this user's session happens under their lock.
        user = mask_user_id(event.user_id)
        with self._sessions.lock(event.user_id):
            stored = self._sessions.get_or_create(event.user_id)
            context = EventContext(event=event, session=stored.copy())
            logger.info(
                "user=%s kind=%s mode=%s step=%s", user, event.kind.value, stored.mode.value, stored.step.value
            )
            self._runner.run(context)

            if context.reply_text:
                try:
                    self._replier.send_reply(event.reply_token, context.reply_text)
                except CollaboratorError as exc:
                    logger.error("user=%s reply failed: %s", user, exc)
                    context.fail(exc, context.reply_text)

            if context.commit:
                self._sessions.save(event.user_id, context.session)
            else:
                logger.warning("user=%s status=%s error=%s session not advanced", user, context.status.value, context.error)

            final = context.session if context.commit else self._sessions.get_or_create(event.user_id)
            outcome = EventOutcome(
                status=context.status,
                reply_text=context.reply_text,
                mode=final.mode,
                step=final.step,
                error=context.error,
                trail=context.trail,
            )
        self._prune_sessions()
        return outcome

    def _prune_sessions(self) -> None:
        """Drop long-inactive identities, at most once per PRUNE_INTERVAL_SECONDS."""
        now = self._sessions.now()
        if now < self._next_prune_at:
            return
        self._next_prune_at = now + PRUNE_INTERVAL_SECONDS
        removed = self._sessions.prune(self._retention)
        if removed:
            logger.info("pruned sessions=%d remaining=%d", removed, len(self._sessions))

    # ---- stages -----------------------------------------------------------

    def _step_expiry_check(self, context: EventContext) -> None:
        session = context.session
        expired = self._sessions.is_expired(session, self._session_timeout)
        search_expired = self._sessions.is_search_expired(session, self._search_timeout)
        if not (expired or search_expired):
            return
        logger.info(
            "user=%s session expired mode=%s step=%s",
            mask_user_id(context.event.user_id),
            session.mode.value,
            session.step.value,
        )
        context.session = self._sessions.reset(context.event.user_id).copy()
        context.log("expiry_check", "session timed out")
        context.respond(TIMEOUT_NOTICE)

    def _step_cancel_check(self, context: EventContext) -> None:
        if context.command not in CANCEL_COMMANDS:
            return
        if context.session.mode is Mode.IDLE:
            context.respond(NOTHING_TO_CANCEL)
            return
        context.session = self._sessions.new_session()
        context.log("cancel_check", "flow cancelled")
        context.respond(CANCELLED)

    def _step_help_check(self, context: EventContext) -> None:
        if context.command in HELP_COMMANDS:
            context.respond(HELP_TEXT)

    def _step_start_commands(self, context: EventContext) -> None:
        command = context.command
        if command in START_UPLOAD_COMMANDS:
            if context.session.mode is not Mode.IDLE:
                logger.info("user=%s restarting from mode=%s", mask_user_id(context.event.user_id), context.session.mode.value)
            session = self._sessions.new_session()
            session.move_to(Mode.UPLOAD, Step.WAITING_CODE)
            context.session = session
            context.log("start_commands", "upload started")
            context.respond(ASK_EMPLOYEE_CODE)
        elif command in START_SEARCH_COMMANDS:
            session = self._sessions.new_session()
            session.move_to(Mode.SEARCH, Step.WAITING_CODE)
            session.search_waiting_since = self._sessions.now()
            context.session = session
            context.log("start_commands", "search started")
            context.respond(ASK_SEARCH_EMPLOYEE_CODE)

    def _step_dispatch(self, context: EventContext) -> None:
        kind = context.event.kind
        if kind is EventKind.IMAGE:
            self._handle_image(context)
        elif kind is EventKind.TEXT:
            handler = self._text_handlers[(context.session.mode, context.session.step)]
            handler(context)
        else:
            context.respond(self._state_guidance(context.session), EventStatus.REJECTED)

    def _step_record_state(self, context: EventContext) -> None:
        context.log("record_state", f"{context.session.mode.value}/{context.session.step.value}")

    # ---- text handlers ----------------------------------------------------

    def _state_guidance(self, session: Session) -> str:
        if session.mode is Mode.UPLOAD and session.step is Step.WAITING_IMAGE:
            return WAITING_FOR_IMAGE.format(next=session.image_count + 1, max_images=session.max_records)
        if session.step is Step.WAITING_CODE:
            return ASK_EMPLOYEE_CODE
        if session.step is Step.CHOOSE_TYPE:
            return SEARCH_MENU
        if session.step is Step.WAITING_VALUE:
            return ASK_SEARCH_VALUE.get(session.search_type, SEARCH_MENU)
        return IDLE_GUIDANCE

    def _idle_text(self, context: EventContext) -> None:
        context.respond(IDLE_GUIDANCE, EventStatus.REJECTED)

    def _upload_code(self, context: EventContext) -> None:
        code = validate_employee_code(context.text)
        if code is None:
            context.respond(INVALID_EMPLOYEE_CODE, EventStatus.REJECTED)
            return
        session = context.session
        session.set_employee_code(code)
        session.move_to(Mode.UPLOAD, Step.WAITING_IMAGE)
        self._sessions.touch(session)
        context.respond(CODE_ACCEPTED.format(code=code, max_images=session.max_records))

    def _upload_text_instead_of_image(self, context: EventContext) -> None:
        context.respond(self._state_guidance(context.session), EventStatus.REJECTED)

    def _search_code(self, context: EventContext) -> None:
        code = validate_employee_code(context.text)
        if code is None:
            context.respond(INVALID_EMPLOYEE_CODE, EventStatus.REJECTED)
            return
        session = context.session
        session.set_employee_code(code)
        session.move_to(Mode.SEARCH, Step.CHOOSE_TYPE)
        self._sessions.touch(session)
        context.respond(SEARCH_CODE_ACCEPTED.format(code=code))

    def _search_choose_type(self, context: EventContext) -> None:
        search_type = SEARCH_SELECTORS.get(normalize_text(context.text))
        if search_type is None:
            context.respond(SEARCH_MENU, EventStatus.REJECTED)
            return
        session = context.session
        session.search_type = search_type
        session.search_waiting_since = self._sessions.now()
        session.move_to(Mode.SEARCH, Step.WAITING_VALUE)
        self._sessions.touch(session)
        context.respond(ASK_SEARCH_VALUE[search_type])

    def _search_value(self, context: EventContext) -> None:
        session = context.session
        value = context.text
        if not value:
            context.respond(ASK_SEARCH_VALUE[session.search_type], EventStatus.REJECTED)
            return
        if session.search_type is SearchType.BY_DATE:
            date = validate_date(value)
            if date is None:
                context.respond(INVALID_DATE, EventStatus.REJECTED)
                return
            value = date
            params = {"date": value}
        else:
            params = {"value": value}

        action = SEARCH_ACTIONS[session.search_type]
        try:
            result = self._store.query(action, session.employee_code, params)
        except CollaboratorError as exc:
            logger.error("user=%s query=%s failed: %s", mask_user_id(context.event.user_id), action, exc)
            context.fail(exc, SEARCH_FAILED)
            return
        context.log("query", action)
        reply = format_query_result(session.search_type, value, result, self._preview_limit)
        context.session = self._sessions.new_session()
        context.respond(reply)

    # ---- image pipeline ---------------------------------------------------

    def _handle_image(self, context: EventContext) -> None:
        """Purpose: Turn one image event into a collected record.
        Inputs/Outputs: Input is the event context; the reply and status are set on it.
        Side Effects / State: Fetches media and runs recognition; appends a record to the
            working session and persists the batch once it is full.
        Dependencies: MediaFetcher, TextRecognizer, validators and extraction.
        Failure Modes: Collaborator errors mark the context failed and leave the
            session uncommitted. Unreadable or wrong-shaped images are REJECTED without
            counting toward the batch.
        If Removed: Upload mode never collects anything.
        Testing Notes: FakeRecognizer returns queued texts; assert image_count and reply.
        """
        # Only an Upload session waiting for an image accepts one.
        session = context.session
        if not (session.mode is Mode.UPLOAD and session.step is Step.WAITING_IMAGE):
            context.respond(IMAGE_OUTSIDE_FLOW, EventStatus.REJECTED)
            return

        user = mask_user_id(context.event.user_id)
        try:
            image = self._media.fetch_media(context.event.media_id)
            text = self._recognizer.recognize_text(image, self._language_hint)
        except CollaboratorError as exc:
            logger.error("user=%s recognition failed: %s", user, exc)
            context.fail(exc, RECOGNITION_FAILED)
            return
        logger.debug("user=%s recognized=%r", user, text)

        if not (text or "").strip():
            context.log("recognition", "empty text", status="rejected")
            context.respond(UNREADABLE_IMAGE, EventStatus.REJECTED)
            return
        if not shape_is_valid(text, self._document_type, self._required_tokens):
            context.log("shape_check", self._document_type.value, status="rejected")
            context.respond(WRONG_DOCUMENT_SHAPE, EventStatus.REJECTED)
            return

        record = extract(text, self._document_type)
        if self._document_type is DocumentType.RECEIPT and not record_identifier(record):
            context.log("extraction", "identifier missing", status="rejected")
            context.respond(MISSING_IDENTIFIER, EventStatus.REJECTED)
            return

        session.add_record(record)
        self._sessions.touch(session)
        context.log("extraction", f"record {session.image_count}/{session.max_records}")
        if not session.is_full:
            context.respond(
                NEXT_IMAGE.format(
                    count=session.image_count,
                    max_images=session.max_records,
                    summary=summarize_record(record),
                )
            )
            return
        self._persist_all(context)

    def _persist_all(self, context: EventContext) -> None:
        """Purpose: Append every collected record to the sheet in collection order.
        Inputs/Outputs: Input is the event context holding a full session.
        Side Effects / State: One persist call per record. Success replaces the
            working session with a fresh Idle one. A failure before any row leaves the
            stored session untouched so the last image can be resent; a failure after
            some rows resets the flow directly.
        Failure Modes: CollaboratorError is reported through context.fail.
        Testing Notes: FakeStore.fail_persist_at picks the failing call.
        """
        # saved counts rows already accepted by the sheet.
        session = context.session
        records = session.collected_records
        for saved, record in enumerate(records):
            payload = build_record_payload(record, session.employee_code, self._document_type)
            try:
                self._store.persist(payload)
            except CollaboratorError as exc:
                logger.error(
                    "user=%s persist failed after %d/%d records: %s",
                    mask_user_id(context.event.user_id),
                    saved,
                    len(records),
                    exc,
                )
                if not saved:
                    context.fail(exc, SAVE_FAILED)
                    return
                # Rows already appended cannot be withdrawn; drop the flow so a resend
                # cannot append them twice.
                unsaved = ", ".join(str(number) for number in range(saved + 1, len(records) + 1))
                context.fail(exc, PARTIAL_SAVE_FAILED.format(saved=saved, total=len(records), unsaved=unsaved))
                context.session = self._sessions.reset(context.event.user_id).copy()
                return
        context.log("persist", f"{len(records)} records")
        summary = "\n".join(summarize_record(record) for record in records)
        reply = SAVED_SUMMARY.format(count=len(records), code=session.employee_code, summary=summary)
        context.session = self._sessions.new_session()
        context.respond(reply)
