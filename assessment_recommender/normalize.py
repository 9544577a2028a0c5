from __future__ import annotations

"""
Text cleaning for everything that reaches the recommender as free text:
typed queries, pasted job descriptions and fetched job pages.

:func:`clean_text` is the one entry point most callers need;
:func:`join_inputs` assembles the request text from its parts.
"""

import re
import unicodedata
from typing import Optional

from bs4 import BeautifulSoup

from .config import MAX_INPUT_CHARS

_WS_RE = re.compile(r"\s+")
_SPACE_BEFORE_PUNCT_RE = re.compile(r"\s+([.,!?;:])")
_NON_CONTENT_TAGS = ["script", "style", "noscript", "template"]


def clamp_text_length(text: str, max_chars: int = MAX_INPUT_CHARS) -> str:
    """Cap input size before it reaches an encoder or a prompt."""
    text = text if isinstance(text, str) else str(text)
    return text[:max_chars]


def normalize_whitespace(text: Optional[str]) -> str:
    return _WS_RE.sub(" ", text or "").strip()


def strip_html(raw: Optional[str]) -> str:
    """
    Visible text of an HTML fragment, script and style bodies removed.
    Strings without markup are returned as they are.
    """
    if not raw or "<" not in raw:
        return raw or ""
    soup = BeautifulSoup(raw, "lxml")
    for tag in soup(_NON_CONTENT_TAGS):
        tag.decompose()
    text = normalize_whitespace(soup.get_text(" ", strip=True))
    return _SPACE_BEFORE_PUNCT_RE.sub(r"\1", text)


def clean_text(text: Optional[str]) -> str:
    """Clamp, strip markup, NFC-normalise and collapse whitespace."""
    if text is None:
        return ""
    text = strip_html(clamp_text_length(text))
    return normalize_whitespace(unicodedata.normalize("NFC", text))


def join_inputs(*parts: Optional[str]) -> str:
    """Space-join the non-empty parts, trimmed and length-capped."""
    return clamp_text_length(" ".join(p for p in parts if p).strip())
