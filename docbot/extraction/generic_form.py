"""Label-driven extraction for generic paper forms.

Each canonical field is looked up with two strategies over the recognized lines:
same-line ("วันที่: 12/01/2569") first, then next-line (a label alone on its line
followed by the value a few lines later). Afterwards the date and document number
are swapped once when their shapes say OCR assigned them the wrong way round.
"""

from __future__ import annotations

import re
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from ..labels import FORM_FIELDS, FORM_LABELS
from ..models import ExtractedDocument
from ..utils import is_garbage_line, normalize_key, split_lines, strip_trailing_separators

NEXT_LINE_LOOKAHEAD = 6
MAX_DOC_NUMBER_LENGTH = 40

DATE_SHAPE_RE = re.compile(r"^\d{1,2}[/-]\d{1,2}[/-]\d{2,4}$")
ISO_DATE_SHAPE_RE = re.compile(r"^\d{4}[/-]\d{1,2}[/-]\d{1,2}$")
DOC_NUMBER_SHAPE_RE = re.compile(r"^(?=.*\d)(?=.*[A-Za-z-])[A-Za-z0-9][A-Za-z0-9/_.-]*$")
SEPARATOR = r"\s*[:：.\-–=]?\s*"


def _label_pattern(label: str) -> re.Pattern:
    chars = [re.escape(ch) for ch in label if not ch.isspace()]
    body = r"\s*".join(chars)
    if label and label[-1].isascii() and label[-1].isalpha():
        body += r"(?![A-Za-z])"
    return re.compile(r"^" + body + SEPARATOR + r"(?P<value>.*)$", re.IGNORECASE)


def _compile_labels(labels: Mapping[str, Sequence[str]]) -> Dict[str, List[Tuple[str, re.Pattern]]]:
    return {field: [(label, _label_pattern(label)) for label in synonyms] for field, synonyms in labels.items()}


_DEFAULT_PATTERNS = _compile_labels(FORM_LABELS)


def find_same_line(lines: Sequence[str], patterns: Sequence[Tuple[str, re.Pattern]]) -> Optional[str]:
    """Return the value trailing the first synonym found at the start of a line.

    A line belongs to the earliest synonym that matches it, so "เลขที่" never reads
    "เอกสาร" off a "เลขที่เอกสาร" line.
    """
    for index, (_label, pattern) in enumerate(patterns):
        for line in lines:
            match = pattern.match(line)
            if not match:
                continue
            if any(earlier.match(line) for _other, earlier in patterns[:index]):
                continue
            value = match.group("value").strip()
            if not is_garbage_line(value):
                return value
    return None


def find_next_line(lines: Sequence[str], synonyms: Sequence[str], lookahead: int = NEXT_LINE_LOOKAHEAD) -> Optional[str]:
    """Return the first non-garbage line after a line holding only a synonym."""
    keys = [normalize_key(label) for label in synonyms]
    line_keys = [strip_trailing_separators(normalize_key(line)) for line in lines]
    for key in keys:
        for index, line_key in enumerate(line_keys):
            if line_key != key:
                continue
            for candidate in lines[index + 1 : index + 1 + lookahead]:
                if not is_garbage_line(candidate):
                    return candidate
    return None


def looks_like_date(value: str) -> bool:
    """Day-first (31/01/2569) or year-first ISO (2026-01-31) numeric date."""
    value = value.strip()
    return bool(DATE_SHAPE_RE.match(value) or ISO_DATE_SHAPE_RE.match(value))


def looks_like_doc_number(value: str) -> bool:
    """Single token with a digit and a letter or hyphen that is not a date."""
    value = value.strip()
    return bool(DOC_NUMBER_SHAPE_RE.match(value)) and not looks_like_date(value)


def correct_swapped_fields(date: str, doc_number: str) -> Tuple[str, str]:
    """Purpose: Swap date and document number once when their shapes are crossed.
    Inputs/Outputs: Inputs are the extracted date and doc number; output is the
        (date, doc_number) pair, swapped at most once.
    Rules: swap when doc_number is date-shaped and date is not; otherwise swap when
        date is doc-number-shaped and doc_number is not. The result never triggers a
        second swap, so repeated calls are stable.
    """
    if looks_like_date(doc_number) and not looks_like_date(date):
        return doc_number, date
    if looks_like_doc_number(date) and not looks_like_doc_number(doc_number) and not looks_like_date(doc_number):
        return doc_number, date
    return date, doc_number


def extract_form(
    text: str,
    timestamp: str,
    labels: Optional[Mapping[str, Sequence[str]]] = None,
) -> ExtractedDocument:
    """Purpose: Map recognized form text to an ExtractedDocument.
    Inputs/Outputs: Inputs are raw text, the generation timestamp and an optional label
        dictionary; output has every unmatched field as "".
    Side Effects / State: None; the same inputs always give the same output.
    Failure Modes: None; missing labels leave the field empty.
    """
    # Custom label maps are compiled per call; the default is compiled once.
    patterns = _DEFAULT_PATTERNS if labels is None else _compile_labels(labels)
    synonyms = FORM_LABELS if labels is None else labels
    lines = split_lines(text)

    values: Dict[str, str] = {}
    for field_name in FORM_FIELDS:
        value = find_same_line(lines, patterns.get(field_name, []))
        if value is None:
            value = find_next_line(lines, synonyms.get(field_name, ()))
        values[field_name] = value or ""

    values["date"], values["doc_number"] = correct_swapped_fields(values["date"], values["doc_number"])
    if len(values["doc_number"]) > MAX_DOC_NUMBER_LENGTH:
        values["doc_number"] = ""

    return ExtractedDocument(raw=text or "", timestamp=timestamp, **values)
