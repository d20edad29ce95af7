"""Targeted pattern extraction for itemized hospital receipts.

Unlike the form strategy this one does not scan generic labels: every field has its
own marker tokens (see labels.py) and a capture rule. Nothing here raises on odd
input; a field that cannot be found stays empty.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Optional, Sequence, Tuple

from .. import labels
from ..models import ExtractedReceipt, ReceiptItem
from ..utils import WHITESPACE_RE, is_garbage_line, normalize_key, split_lines

MAX_ITEMS = 30
DESCRIPTION_LOOKBACK = 3
MIN_DESCRIPTION_LENGTH = 3

# 1,234.56 | 1234.56; exactly two decimals so dates like 12.03.2569 stay out
MONEY_RE = re.compile(r"(?<![\d,.])(?:\d{1,3}(?:,\d{3})+|\d+)\.\d{2}(?!\.?\d)")
TIME_RE = re.compile(r"(?<!\d)(\d{1,2}:\d{2}(?::\d{2})?)(?!\d)")
ID_VALUE_RE = re.compile(r"^\s*[:：.#]?\s*([A-Za-z0-9][A-Za-z0-9-]*)")
SEPARATOR = r"\s*[:：.\-–=]?\s*"
CURRENCY_RE = re.compile(r"(บาท|THB|฿)", re.IGNORECASE)
DESCRIPTION_STRIP = " \t:：-–=*|"
THAI_CHARS = "\u0E00-\u0E7F"
# Thai has no spaces between words, so short Thai markers ("รวม", "หน้า") must not
# continue another word ("ค่ารวมยา", "ครีมผิวหน้า").
SHORT_THAI_MARKER_LENGTH = 4
PAGE_NUMBER = r"\s*(?:ที่\s*)?\d+(?:\s*/\s*\d+)?(?![\d,.])"


def _marker_body(marker: str) -> str:
    body = r"\s*".join(re.escape(ch) for ch in marker if not ch.isspace())
    if not marker[0].isascii() and len(marker) <= SHORT_THAI_MARKER_LENGTH:
        body = rf"(?<![{THAI_CHARS}])" + body
    if marker[0].isascii() and marker[0].isalpha():
        body = r"(?<![A-Za-z])" + body
    if marker[-1].isascii() and marker[-1].isalpha():
        body += r"(?![A-Za-z])"
    return body


def _compile(markers: Iterable[str]) -> Tuple[re.Pattern, ...]:
    return tuple(re.compile(_marker_body(marker), re.IGNORECASE) for marker in markers)


def _compile_leading(markers: Iterable[str]) -> Tuple[re.Pattern, ...]:
    return tuple(
        re.compile(r"^\s*" + _marker_body(marker) + SEPARATOR + r"(?P<rest>.*)$", re.IGNORECASE)
        for marker in markers
    )


ID_PATTERNS = _compile(labels.RECEIPT_ID_MARKERS)
SECONDARY_ID_PATTERNS = _compile(labels.RECEIPT_SECONDARY_ID_MARKERS)
DATE_LEADING = _compile_leading(labels.RECEIPT_DATE_MARKERS)
TIME_PATTERNS = _compile(labels.RECEIPT_TIME_MARKERS)
NAME_LEADING = _compile_leading(labels.RECEIPT_NAME_MARKERS)
PAYMENT_PATTERNS = _compile(labels.RECEIPT_PAYMENT_MARKERS)
TOTAL_PATTERNS = _compile(labels.RECEIPT_TOTAL_MARKERS)
VAT_PATTERNS = _compile(labels.RECEIPT_VAT_MARKERS)
SIGNATURE_PATTERNS = _compile(labels.RECEIPT_SIGNATURE_MARKERS)
PAGE_PATTERNS = tuple(
    re.compile(_marker_body(marker) + PAGE_NUMBER, re.IGNORECASE) for marker in labels.RECEIPT_PAGE_MARKERS
)
NON_TOTAL_PATTERNS = SIGNATURE_PATTERNS + PAGE_PATTERNS
HEADER_PATTERNS = _compile(labels.RECEIPT_HEADER_MARKERS)
MARKER_PATTERNS = (
    ID_PATTERNS
    + SECONDARY_ID_PATTERNS
    + _compile(labels.RECEIPT_DATE_MARKERS)
    + TIME_PATTERNS
    + _compile(labels.RECEIPT_NAME_MARKERS)
    + PAYMENT_PATTERNS
    + TOTAL_PATTERNS
    + VAT_PATTERNS
    + NON_TOTAL_PATTERNS
    + HEADER_PATTERNS
)
HONORIFIC_KEYS = frozenset(normalize_key(title).rstrip(".") for title in labels.HONORIFICS)


def _has_any(line: str, patterns: Sequence[re.Pattern]) -> bool:
    return any(pattern.search(line) for pattern in patterns)


def find_amounts(line: str) -> List[str]:
    """All monetary amounts on a line, as printed."""
    return MONEY_RE.findall(line)


def extract_identifier(lines: Sequence[str], patterns: Sequence[re.Pattern]) -> str:
    """Capture the alphanumeric/hyphen run after the first marker that has one."""
    for pattern in patterns:
        for line in lines:
            match = pattern.search(line)
            if not match:
                continue
            value = ID_VALUE_RE.match(line[match.end() :])
            if value:
                return value.group(1)
    return ""


def _time_after_marker(line: str) -> str:
    for pattern in TIME_PATTERNS:
        match = pattern.search(line)
        if match:
            found = TIME_RE.search(line[match.end() :])
            if found:
                return found.group(1)
    return ""


def extract_date_time(lines: Sequence[str]) -> Tuple[str, str]:
    """Purpose: Capture the printed date and time.
    Rules: a line starting with a date marker wins. When a time marker follows on the
        same line, the date is the text between the two markers; otherwise date and time
        come from whichever lines carry each marker.
    """
    date_raw = ""
    for line in lines:
        for pattern in DATE_LEADING:
            match = pattern.match(line)
            if not match:
                continue
            rest = match.group("rest")
            for time_pattern in TIME_PATTERNS:
                time_match = time_pattern.search(rest)
                if time_match:
                    found = TIME_RE.search(rest[time_match.end() :])
                    return rest[: time_match.start()].strip(DESCRIPTION_STRIP), found.group(1) if found else ""
            date_raw = rest.strip(DESCRIPTION_STRIP)
            break
        if date_raw:
            break

    time_raw = ""
    for line in lines:
        time_raw = _time_after_marker(line)
        if time_raw:
            break
    return date_raw, time_raw


def is_honorific(line: str) -> bool:
    key = normalize_key(line).rstrip(".")
    return bool(key) and key in HONORIFIC_KEYS


def extract_patient_name(lines: Sequence[str]) -> str:
    """Name after the name marker, skipping an honorific that OCR split onto its own line."""
    for index, line in enumerate(lines):
        for pattern in NAME_LEADING:
            match = pattern.match(line)
            if not match:
                continue
            following = lines[index + 1 : index + 3]
            if following and is_honorific(following[0]):
                return following[1] if len(following) > 1 else ""
            rest = match.group("rest").strip()
            if not is_garbage_line(rest):
                return rest
            if following and not is_garbage_line(following[0]):
                return following[0]
            return ""
    return ""


def extract_payment_type(lines: Sequence[str]) -> str:
    for pattern in PAYMENT_PATTERNS:
        for line in lines:
            match = pattern.search(line)
            if not match:
                continue
            tail = line[match.end() :]
            if ":" in tail or "：" in tail:
                tail = re.split(r"[:：]", tail, maxsplit=1)[1]
            value = tail.strip(DESCRIPTION_STRIP)
            if value:
                return value
    return ""


def _amount_on_marker_line(lines: Sequence[str], patterns: Sequence[re.Pattern]) -> Optional[str]:
    for pattern in patterns:
        for line in lines:
            if not pattern.search(line) or _has_any(line, NON_TOTAL_PATTERNS):
                continue
            amounts = find_amounts(line)
            if amounts:
                return amounts[-1]
    return None


def extract_totals(lines: Sequence[str]) -> Tuple[str, str]:
    """Purpose: Find (total, vat).
    Rules: the last amount on the first total-marker line without a signature, cashier
        or page marker; when no such line exists the last amount in the whole text.
        VAT uses the same search with VAT markers and has no fallback.
    """
    total = _amount_on_marker_line(lines, TOTAL_PATTERNS)
    if total is None:
        every_amount = [amount for line in lines for amount in find_amounts(line)]
        total = every_amount[-1] if every_amount else ""
    vat = _amount_on_marker_line(lines, VAT_PATTERNS) or ""
    return total, vat


def _clean_description(line: str) -> str:
    text = CURRENCY_RE.sub(" ", MONEY_RE.sub(" ", line))
    return WHITESPACE_RE.sub(" ", text).strip(DESCRIPTION_STRIP)


def _is_usable_description(text: str) -> bool:
    return len(text) >= MIN_DESCRIPTION_LENGTH and not is_garbage_line(text)


def extract_items(lines: Sequence[str]) -> List[ReceiptItem]:
    """Purpose: Pair every item amount with its description.
    Rules: amount lines carrying total, VAT, signature or header markers are skipped.
        The description is the amount line's own text when usable, otherwise the
        nearest of the previous three lines that has no amount, no marker and at least
        three characters. Duplicate (description, amount) pairs are dropped and the list
        is capped at MAX_ITEMS.
    """
    items: List[ReceiptItem] = []
    seen = set()
    ignored = TOTAL_PATTERNS + VAT_PATTERNS + NON_TOTAL_PATTERNS + HEADER_PATTERNS
    for index, line in enumerate(lines):
        amounts = find_amounts(line)
        if not amounts or _has_any(line, ignored):
            continue
        description = _clean_description(line)
        if not _is_usable_description(description):
            description = ""
            for candidate in reversed(lines[max(0, index - DESCRIPTION_LOOKBACK) : index]):
                if find_amounts(candidate) or _has_any(candidate, MARKER_PATTERNS):
                    continue
                if len(candidate) >= MIN_DESCRIPTION_LENGTH:
                    description = candidate
                    break
        if not description:
            continue
        key = (description, amounts[-1])
        if key in seen:
            continue
        seen.add(key)
        items.append(ReceiptItem(description=description, amount=amounts[-1]))
        if len(items) >= MAX_ITEMS:
            break
    return items


def extract_receipt(text: str, timestamp: str) -> ExtractedReceipt:
    """Purpose: Map recognized receipt text to an ExtractedReceipt.
    Inputs/Outputs: Inputs are raw text and the generation timestamp; output is the
        best-effort record with missing fields left empty.
    Side Effects / State: None; the same inputs always give the same output.
    Failure Modes: None; unmatched markers yield empty strings and no items.
    Testing Notes: Feed multi-line OCR text with Thai markers and compare fields.
    """
    # Each field reads the same normalized line list.
    lines = split_lines(text)
    date_raw, time_raw = extract_date_time(lines)
    total, vat = extract_totals(lines)
    return ExtractedReceipt(
        identifier=extract_identifier(lines, ID_PATTERNS),
        secondary_identifier=extract_identifier(lines, SECONDARY_ID_PATTERNS),
        date_raw=date_raw,
        time_raw=time_raw,
        patient_name=extract_patient_name(lines),
        payment_type=extract_payment_type(lines),
        vat=vat,
        total=total,
        items=extract_items(lines),
        raw=text or "",
        timestamp=timestamp,
    )
