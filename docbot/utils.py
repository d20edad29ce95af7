import re
import unicodedata

WHITESPACE_RE = re.compile(r"\s+")
TRAILING_SEPARATOR_RE = re.compile(r"[\s:：.\-–=]+$")


def normalize_text(text: str) -> str:
    """Purpose: Normalize free-form chat text for command matching.
    Inputs/Outputs: Input is a raw string; output is case-folded text with whitespace
        collapsed and trimmed. Thai characters are kept as-is.
    Failure Modes: Returns an empty string when input is falsy.
    Testing Notes: "  Start_Upload " -> "start_upload".
    """
    if not text:
        return ""
    return WHITESPACE_RE.sub(" ", text).strip().casefold()


def normalize_key(text: str) -> str:
    """Purpose: Produce a compact key without whitespace for label comparisons.
    Inputs/Outputs: Input is a raw string; output is normalize_text with spaces removed.
    Testing Notes: "Doc  No" and "docno" share the key "docno".
    """
    return normalize_text(text).replace(" ", "")


def strip_trailing_separators(text: str) -> str:
    """Drop separators OCR leaves after a label, e.g. "วันที่ :" -> "วันที่"."""
    return TRAILING_SEPARATOR_RE.sub("", text)


def split_lines(text: str) -> list[str]:
    """Split recognized text into trimmed, non-empty lines."""
    if not text:
        return []
    return [line.strip() for line in text.splitlines() if line.strip()]


def is_garbage_line(line: str) -> bool:
    """Purpose: Decide whether a recognized line is too uninformative to be a value.
    Inputs/Outputs: Input is a line; output is True for garbage.
    Rules: length <= 1 after trimming, only combining marks (stray Thai vowels and
        tone marks), or no alphanumeric character of any script.
    Testing Notes: "", "-", "่ั", "..." are garbage; "A1", "นาย ก" are not.
    """
    stripped = (line or "").strip()
    if len(stripped) <= 1:
        return True
    visible = [ch for ch in stripped if not ch.isspace()]
    if all(unicodedata.category(ch).startswith("M") for ch in visible):
        return True
    return not any(ch.isalnum() for ch in stripped)


def mask_user_id(value: object) -> str:
    """Purpose: Mask a platform user id for safe logging.
    Inputs/Outputs: Input is any value; output keeps only the last four characters.
    Testing Notes: "U1234567890" -> "***7890"; short values become "***".
    """
    if value is None:
        return ""
    text = str(value)
    if len(text) <= 4:
        return "***"
    return "***" + text[-4:]
