from __future__ import annotations

import re
from datetime import datetime
from typing import Iterable, Optional

from .labels import FORM_FIELDS, FORM_LABELS
from .utils import normalize_key

EMPLOYEE_CODE_RE = re.compile(r"^A(\d{4})$")
EMPLOYEE_CODE_MIN = 1
EMPLOYEE_CODE_MAX = 2000
DATE_INPUT_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
MIN_FORM_LABELS = 2


def normalize_employee_code(text: str) -> str:
    """Uppercase and drop all whitespace, e.g. " a 0123 " -> "A0123"."""
    return "".join((text or "").split()).upper()


def validate_employee_code(text: str) -> Optional[str]:
    """Purpose: Validate an employee code typed in chat.
    Inputs/Outputs: Input is raw text; output is the canonical code ("A0001".."A2000")
        or None when the shape or the numeric range is wrong.
    Side Effects / State: None.
    If Removed: Any text would be accepted as an employee code.
    Testing Notes: "A123" -> None, "a 0123" -> "A0123", "A2001" -> None.
    """
    # Case and whitespace are folded before matching.
    match = EMPLOYEE_CODE_RE.match(normalize_employee_code(text))
    if not match:
        return None
    number = int(match.group(1))
    if not EMPLOYEE_CODE_MIN <= number <= EMPLOYEE_CODE_MAX:
        return None
    return f"A{number:04d}"


def validate_date(text: str) -> Optional[str]:
    """Purpose: Validate a DD/MM/YYYY search date.
    Inputs/Outputs: Input is raw text; output is the zero-padded date or None.
    Failure Modes: Impossible calendar dates ("31/02/2026") are rejected. Buddhist-era
        years pass unchanged since the sheet stores what the receipt prints.
    """
    match = DATE_INPUT_RE.match((text or "").strip())
    if not match:
        return None
    day, month, year = (int(part) for part in match.groups())
    try:
        datetime(year, month, day)
    except ValueError:
        return None
    return f"{day:02d}/{month:02d}/{year:04d}"


def count_form_labels(text: str) -> int:
    """Count canonical form fields with at least one synonym present in the text."""
    compact = normalize_key(text)
    found = 0
    for field_name in FORM_FIELDS:
        if any(normalize_key(label) in compact for label in FORM_LABELS[field_name]):
            found += 1
    return found


def is_form_shaped(text: str) -> bool:
    """Purpose: Decide whether recognized text looks like a labelled form.
    Inputs/Outputs: Input is recognized text; output is True when at least two of the
        five canonical fields have a label in the text (whitespace/case-insensitive).
    """
    return count_form_labels(text) >= MIN_FORM_LABELS


def is_receipt_shaped(text: str, required_tokens: Iterable[str]) -> bool:
    """Purpose: Decide whether recognized text looks like a supported receipt.
    Inputs/Outputs: Inputs are recognized text and the mandatory tokens (receipt marker,
        issuer marker); output is True only when every token is present.
    Dependencies: normalize_key, so spacing and case in OCR output do not matter.
    Failure Modes: None; an empty token list accepts any non-empty text.
    """
    # Compare whitespace-free, case-folded forms.
    compact = normalize_key(text)
    tokens = [normalize_key(token) for token in required_tokens]
    if not tokens:
        return bool(compact)
    return all(token in compact for token in tokens)
