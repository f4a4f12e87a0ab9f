"""Candidate indicators from unstructured (OCR) text.

This is a best-effort filter, not a classifier: every candidate it returns is
still run through `classify_indicator` before lookup.
"""

from __future__ import annotations

import re
from typing import Any, Iterable, Union

from .errors import NoIndicatorsFound

# Strict grammar: explicit scheme, a real-looking host, optional port and
# path/query/fragment. Bare words like "example.com" are not picked up.
_URL_RE = re.compile(
    r"""
    (?:https?|ftp)://
    (?:
        (?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}(?![a-z0-9-])
      | (?:\d{1,3}\.){3}\d{1,3}(?!\d)
    )
    (?::\d{1,5})?
    (?:[/?#][^\s<>"'`]*)?
    """,
    re.IGNORECASE | re.VERBOSE,
)

# OCR tends to split the scheme separator: "https : //", "http:// example".
_SCHEME_GAP_RE = re.compile(r"\b(https?|ftp)\s*:\s*/\s*/\s*", re.IGNORECASE)

_TRAILING_PUNCT = ".,;:!?'\""
_PAIRS = {")": "(", "]": "[", "}": "{"}


def _trim(candidate: str) -> str:
    while candidate:
        last = candidate[-1]
        if last in _TRAILING_PUNCT:
            candidate = candidate[:-1]
        elif last in _PAIRS and candidate.count(last) > candidate.count(_PAIRS[last]):
            candidate = candidate[:-1]
        else:
            break
    return candidate


def extract_indicators(text: Union[str, Iterable[str]]) -> list[str]:
    """Return deduplicated candidate URLs in first-seen order.

    `text` may be a single string or the recognized fragments of a page.
    Raises NoIndicatorsFound when nothing matches.
    """
    if not isinstance(text, str):
        text = "\n".join(str(t) for t in text)

    text = _SCHEME_GAP_RE.sub(lambda m: m.group(1) + "://", text)

    seen: set[str] = set()
    out: list[str] = []
    for match in _URL_RE.finditer(text):
        candidate = _trim(match.group(0))
        if candidate and candidate not in seen:
            seen.add(candidate)
            out.append(candidate)

    if not out:
        raise NoIndicatorsFound()
    return out


def text_from_ocr_response(doc: dict[str, Any]) -> str:
    """Recognized text from an OCR `recognizeText` response document."""
    result = doc.get("result") if isinstance(doc, dict) else None
    annotation = (result or {}).get("textAnnotation") or {}

    full_text = annotation.get("fullText")
    if isinstance(full_text, str) and full_text:
        return full_text

    lines: list[str] = []
    for block in annotation.get("blocks") or []:
        for line in block.get("lines") or []:
            text = line.get("text")
            if isinstance(text, str) and text:
                lines.append(text)
    return "\n".join(lines)
