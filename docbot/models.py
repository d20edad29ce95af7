from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class DocumentType(str, Enum):
    """Document family handled by the upload flow."""
    FORM = "form"
    RECEIPT = "receipt"


class EventKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    OTHER = "other"


class LineSource(BaseModel):
    """Sender of a LINE webhook event."""
    type: str = "user"
    user_id: Optional[str] = Field(default=None, alias="userId")


class LineMessage(BaseModel):
    """Message body of a LINE message event."""
    id: Optional[str] = None
    type: str
    text: Optional[str] = None


class LineEvent(BaseModel):
    """Single event inside a LINE webhook request."""
    type: str
    reply_token: Optional[str] = Field(default=None, alias="replyToken")
    source: Optional[LineSource] = None
    message: Optional[LineMessage] = None


class WebhookRequest(BaseModel):
    """Request payload posted by the LINE platform."""
    destination: Optional[str] = None
    events: List[LineEvent] = Field(default_factory=list)


class InboundEvent(BaseModel):
    """Platform-neutral event consumed by the conversation engine."""
    kind: EventKind
    user_id: str
    reply_token: str
    text: str = ""
    media_id: str = ""

    @classmethod
    def from_line_event(cls, event: LineEvent) -> Optional["InboundEvent"]:
        """Map a LINE message event; returns None for events the bot cannot answer."""
        if event.type != "message" or event.message is None:
            return None
        user_id = event.source.user_id if event.source else None
        if not user_id or not event.reply_token:
            return None
        message = event.message
        if message.type == EventKind.TEXT.value:
            return cls(kind=EventKind.TEXT, user_id=user_id, reply_token=event.reply_token, text=message.text or "")
        if message.type == EventKind.IMAGE.value:
            return cls(kind=EventKind.IMAGE, user_id=user_id, reply_token=event.reply_token, media_id=message.id or "")
        return cls(kind=EventKind.OTHER, user_id=user_id, reply_token=event.reply_token)


class ExtractedDocument(BaseModel):
    """Fields extracted from a generic labelled form."""
    date: str = ""
    doc_number: str = ""
    name: str = ""
    detail: str = ""
    remark: str = ""
    raw: str = ""
    timestamp: str = ""


class ReceiptItem(BaseModel):
    description: str
    amount: str


class ExtractedReceipt(BaseModel):
    """Fields extracted from an itemized receipt."""
    identifier: str = ""
    secondary_identifier: str = ""
    date_raw: str = ""
    time_raw: str = ""
    patient_name: str = ""
    payment_type: str = ""
    vat: str = ""
    total: str = ""
    items: List[ReceiptItem] = Field(default_factory=list)
    raw: str = ""
    timestamp: str = ""


class QueryResult(BaseModel):
    """Answer returned by the spreadsheet web app for a search action."""
    match: Optional[Dict[str, Any]] = None
    matches: List[Dict[str, Any]] = Field(default_factory=list)
    total: Optional[int] = None
    count: Optional[int] = None
