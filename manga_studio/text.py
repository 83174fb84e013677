"""Light text normalization for Japanese sources and Spanish output."""

from __future__ import annotations

import re
from typing import List, Tuple

_DOTS_RE = re.compile(r"[･•·●◦・]+")
_MARUS_RE = re.compile(r"。{2,}")
_SPACES_RE = re.compile(r"[\s\u3000]+")
_SENTENCE_END_RE = re.compile(r"(?<=[。！？!?])")
_KATAKANA_NAME_RE = re.compile(r"([ァ-ヴー]{2,}(?:さん|ちゃん|くん|様)?)")
_SLOT_RE = re.compile(r"__KEEP_(\d+)__")
_SPACE_BEFORE_PUNCT_RE = re.compile(r"\s([,.;!?])")
_QUOTE_PAIRS_RE = re.compile(r"``|''")


def collapse_spaces(text: str) -> str:
    return _SPACES_RE.sub(" ", text).strip()


def normalize_ja(text: str) -> str:
    """Canonicalize middle dots, repeated full stops and whitespace.

    Applying it twice gives the same result as applying it once.
    """
    text = _DOTS_RE.sub("・", text)
    text = _MARUS_RE.sub("。", text)
    return collapse_spaces(text)


def normalize_source(text: str, source_lang: str) -> str:
    if source_lang == "ja":
        return normalize_ja(text)
    return collapse_spaces(text)


def fragment_separator(source_lang: str) -> str:
    """Japanese OCR fragments are glued together; other scripts keep word spacing."""
    return "" if source_lang == "ja" else " "


def split_sentences_ja(text: str) -> List[str]:
    parts = _SENTENCE_END_RE.split(normalize_ja(text))
    return [part.strip() for part in parts if part.strip()]


def freeze_katakana_names(text: str) -> Tuple[str, List[str]]:
    """Replace katakana names (with an optional honorific) by ``__KEEP_n__`` slots."""
    slots: List[str] = []

    def _freeze(match: "re.Match[str]") -> str:
        slots.append(match.group(1))
        return f"__KEEP_{len(slots) - 1}__"

    return _KATAKANA_NAME_RE.sub(_freeze, text), slots


def unfreeze_slots(text: str, slots: List[str]) -> str:
    def _unfreeze(match: "re.Match[str]") -> str:
        index = int(match.group(1))
        return slots[index] if index < len(slots) else ""

    return _SLOT_RE.sub(_unfreeze, text)


def post_es(text: str) -> str:
    text = _SPACES_RE.sub(" ", text)
    text = _SPACE_BEFORE_PUNCT_RE.sub(r"\1", text)
    text = _QUOTE_PAIRS_RE.sub('"', text)
    return text.strip()


__all__ = [
    "collapse_spaces",
    "normalize_ja",
    "normalize_source",
    "fragment_separator",
    "split_sentences_ja",
    "freeze_katakana_names",
    "unfreeze_slots",
    "post_es",
]
