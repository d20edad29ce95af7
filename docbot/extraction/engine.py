"""Single entry point for extraction and shape checks, keyed by document type."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, Optional, Union

from ..labels import RECEIPT_REQUIRED_TOKENS
from ..models import DocumentType, ExtractedDocument, ExtractedReceipt
from ..validators import is_form_shaped, is_receipt_shaped
from .generic_form import extract_form
from .receipt import extract_receipt

ExtractedRecord = Union[ExtractedDocument, ExtractedReceipt]

STRATEGIES: Dict[DocumentType, Callable[[str, str], ExtractedRecord]] = {
    DocumentType.FORM: extract_form,
    DocumentType.RECEIPT: extract_receipt,
}


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with milliseconds, e.g. 2026-01-31T03:04:05.678Z."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def extract(text: str, document_type: DocumentType, timestamp: Optional[str] = None) -> ExtractedRecord:
    """Purpose: Turn recognized text into a typed record for the given document family.
    Inputs/Outputs: Inputs are raw text, the document type and an optional timestamp;
        output is an ExtractedDocument or ExtractedReceipt.
    Side Effects / State: None beyond reading the clock when no timestamp is passed.
    Dependencies: generic_form.extract_form and receipt.extract_receipt.
    Failure Modes: Unknown document types raise KeyError.
    """
    # Strategies are pure; the timestamp is fixed before dispatch.
    strategy = STRATEGIES[DocumentType(document_type)]
    return strategy(text or "", timestamp or utc_timestamp())


def shape_is_valid(
    text: str,
    document_type: DocumentType,
    required_tokens: Iterable[str] = RECEIPT_REQUIRED_TOKENS,
) -> bool:
    """Run the plausibility check that gates extraction for the document type."""
    if DocumentType(document_type) is DocumentType.RECEIPT:
        return is_receipt_shaped(text, required_tokens)
    return is_form_shaped(text)


def record_identifier(record: ExtractedRecord) -> str:
    """The identifier a stored record is looked up by."""
    if isinstance(record, ExtractedReceipt):
        return record.identifier
    return record.doc_number
