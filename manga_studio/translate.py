"""Batched translation of ROI text into Spanish."""

from __future__ import annotations

import base64
import json
import logging
import os
from typing import Any, Dict, Iterable, List, Protocol, Sequence

import requests

from .errors import ProviderError, ProviderFormatError, QuotaExceededError, ValidationError
from .text import post_es
from .types import RoiCrop, TranslationItem

# Guardrails checked before any provider call
MAX_ITEMS_PER_REQUEST = 64
MAX_CHARS_PER_REQUEST = 8000
MAX_DIRECT_CROPS = 32  # multimodal requests are pricier than text
MAX_CROP_BASE64_CHARS = 1_600_000
REQUEST_TIMEOUT_SECONDS = 60

DEFAULT_GEMINI_MODEL = "gemini-2.5-pro"
DEFAULT_GEMINI_DIRECT_MODEL = "gemini-2.0-flash"
GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

_LANGUAGE_NAMES = {"ja": "japonés", "en": "inglés"}

logger = logging.getLogger(__name__)


def _language_name(source_lang: str) -> str:
    return _LANGUAGE_NAMES.get(source_lang, _LANGUAGE_NAMES["ja"])


def text_instruction(source_lang: str) -> str:
    language = _language_name(source_lang)
    return (
        "Eres un traductor profesional de manga.\n"
        f"Traduce cada fragmento del {language} al español neutro latinoamericano.\n"
        "- Sé natural y conversacional.\n"
        f"- No dejes palabras en {language}.\n"
        "- Nombres propios: usa la forma más conocida en español si existe; "
        "si no, transcribe a romaji.\n"
        "Devuelve SOLO JSON:\n"
        '{"items":[{"id":"<id>","text":"<es>"}]}'
    )


def image_instruction(source_lang: str) -> str:
    language = _language_name(source_lang)
    return (
        "Eres un traductor profesional de manga.\n"
        "Para cada imagen de globo (ROI), realiza OCR y traducción "
        f"del {language} al español neutro latinoamericano.\n"
        "- Devuelve SOLO JSON válido:\n"
        '{"items":[{"id":"<id>","text":"<es>"}]}\n'
        "- Mantén el id tal cual.\n"
        f"- Sé natural y conversacional. No dejes palabras en {language}.\n"
        '- Si no hay texto legible, devuelve text = "" para ese id.'
    )


class Translator(Protocol):
    name: str
    model: str

    def translate_text(self, instruction: str, payload: str) -> str:
        """Return the raw provider answer for a numbered text batch."""

    def translate_images(self, instruction: str, crops: Sequence[RoiCrop]) -> str:
        """Return the raw provider answer for a batch of labelled crops."""


class GeminiTranslator:
    """Gemini ``generateContent`` over plain HTTP. One call per batch, no retries."""

    name = "gemini"

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self._api_key = api_key or os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_GEMINI_KEY")
        self.model = model or os.environ.get("GEMINI_MODEL", DEFAULT_GEMINI_MODEL)
        self._session = session or requests.Session()

    def is_available(self) -> bool:
        return bool(self._api_key)

    def translate_text(self, instruction: str, payload: str) -> str:
        contents = [
            {"role": "user", "parts": [{"text": instruction}]},
            {"role": "user", "parts": [{"text": payload}]},
        ]
        return self._generate(contents)

    def translate_images(self, instruction: str, crops: Sequence[RoiCrop]) -> str:
        parts: List[Dict[str, Any]] = [{"text": instruction}]
        for crop in crops:
            parts.append({"text": f"ROI id={crop['roi_id']}"})
            parts.append(
                {
                    "inlineData": {
                        "mimeType": crop["mime_type"],
                        "data": base64.b64encode(crop["image_data"]).decode("ascii"),
                    }
                }
            )
        return self._generate([{"role": "user", "parts": parts}])

    def _generate(self, contents: List[Dict[str, Any]]) -> str:
        if not self._api_key:
            raise ProviderError("GEMINI_API_KEY not configured")

        try:
            response = self._session.post(
                GEMINI_URL.format(model=self.model),
                params={"key": self._api_key},
                json={
                    "contents": contents,
                    "generationConfig": {
                        "temperature": 0.2,
                        "responseMimeType": "application/json",
                    },
                },
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
        except requests.RequestException as exc:
            logger.error("Gemini request failed: %s", exc)
            raise ProviderError("Gemini request failed") from exc

        if response.status_code == 429:
            raise QuotaExceededError("Gemini rate limited", reason="rate_limited")
        if not response.ok:
            logger.error("Gemini returned HTTP %s: %s", response.status_code, response.text[:500])
            raise ProviderError(f"Gemini returned HTTP {response.status_code}")

        try:
            body = response.json()
            return str(body["candidates"][0]["content"]["parts"][0].get("text", ""))
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as exc:
            raise ProviderFormatError("Gemini response has no candidate text") from exc


def _item_id(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError("Invalid payload: item id must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError("Invalid payload: item id must be an integer") from exc


def char_count(items: Iterable[TranslationItem]) -> int:
    return sum(len(item["text"]) for item in items)


def validate_items(
    items: Sequence[TranslationItem],
    *,
    max_items: int = MAX_ITEMS_PER_REQUEST,
    max_chars: int = MAX_CHARS_PER_REQUEST,
) -> List[TranslationItem]:
    """Check shape and guardrails; exceeding a limit rejects the batch, never truncates."""
    if not items:
        raise ValidationError("Invalid payload: no items")
    cleaned: List[TranslationItem] = []
    for item in items:
        text = item.get("text")
        if not isinstance(text, str):
            raise ValidationError("Invalid payload: item text must be a string")
        cleaned.append({"id": _item_id(item.get("id")), "text": text})
    total = char_count(cleaned)
    if len(cleaned) > max_items:
        raise ValidationError("Too many regions in a single request", status_code=413)
    if total > max_chars:
        raise ValidationError("Text too long", status_code=413)
    if total == 0:
        raise ValidationError("Empty text. No credits were spent.", status_code=422)
    return cleaned


def validate_crops(
    crops: Sequence[RoiCrop],
    *,
    max_crops: int = MAX_DIRECT_CROPS,
    max_crop_base64_chars: int = MAX_CROP_BASE64_CHARS,
) -> None:
    if not crops:
        raise ValidationError("Invalid payload: no crops")
    if len(crops) > max_crops:
        raise ValidationError("Too many regions for direct image translation", status_code=413)
    for crop in crops:
        if 4 * ((len(crop["image_data"]) + 2) // 3) > max_crop_base64_chars:
            raise ValidationError(f"ROI {crop['roi_id']}: image too large", status_code=413)


def build_numbered_payload(items: Sequence[TranslationItem]) -> str:
    return "\n".join(f"id={item['id']} :: {item['text']}" for item in items)


def parse_translation_response(raw: str) -> Dict[str, str]:
    """Parse ``{"items": [{"id", "text"}]}`` into a map keyed by string id."""
    try:
        data = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as exc:
        raise ProviderFormatError("Provider returned invalid JSON") from exc
    if not isinstance(data, dict) or not isinstance(data.get("items"), list):
        raise ProviderFormatError("Provider JSON has no items list")

    translations: Dict[str, str] = {}
    for entry in data["items"]:
        if not isinstance(entry, dict) or entry.get("id") is None:
            raise ProviderFormatError("Provider item is missing an id")
        text = entry.get("text")
        translations[str(entry["id"]).strip()] = post_es(text) if isinstance(text, str) else ""
    return translations


def resolve_results(roi_ids: Iterable[int], translations: Dict[str, str]) -> List[TranslationItem]:
    """One item per ROI id, missing translations as empty text, ascending by id."""
    return sorted(
        ({"id": roi_id, "text": translations.get(str(roi_id), "")} for roi_id in set(roi_ids)),
        key=lambda item: item["id"],
    )


def translate_items(
    items: Sequence[TranslationItem],
    *,
    source_lang: str,
    request_id: str,
    translator: Translator,
) -> List[TranslationItem]:
    cleaned = validate_items(items)
    logger.info(
        "Translating %s items (%s chars) request=%s via %s",
        len(cleaned),
        char_count(cleaned),
        request_id,
        translator.name,
    )
    raw = translator.translate_text(text_instruction(source_lang), build_numbered_payload(cleaned))
    try:
        translations = parse_translation_response(raw)
    except ProviderFormatError:
        logger.error("Invalid translation output for request=%s", request_id)
        raise
    return resolve_results((item["id"] for item in cleaned), translations)


def translate_crops(
    crops: Sequence[RoiCrop],
    *,
    source_lang: str,
    request_id: str,
    translator: Translator,
) -> List[TranslationItem]:
    validate_crops(crops)
    logger.info("Translating %s crops request=%s via %s", len(crops), request_id, translator.name)
    raw = translator.translate_images(image_instruction(source_lang), crops)
    try:
        translations = parse_translation_response(raw)
    except ProviderFormatError:
        logger.error("Invalid multimodal output for request=%s", request_id)
        raise
    return resolve_results((crop["roi_id"] for crop in crops), translations)


__all__ = [
    "MAX_ITEMS_PER_REQUEST",
    "MAX_CHARS_PER_REQUEST",
    "MAX_DIRECT_CROPS",
    "MAX_CROP_BASE64_CHARS",
    "Translator",
    "GeminiTranslator",
    "validate_items",
    "validate_crops",
    "build_numbered_payload",
    "parse_translation_response",
    "resolve_results",
    "translate_items",
    "translate_crops",
    "text_instruction",
    "image_instruction",
    "char_count",
]
