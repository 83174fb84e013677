"""OCR helpers for the studio backend."""

from __future__ import annotations

import base64
import logging
from typing import Any, Iterable, List, Protocol, Tuple

from google.cloud import vision

from .errors import ProviderError, ValidationError
from .types import OCRResult, OCRWord

logger = logging.getLogger(__name__)

# Roughly 5 MB of binary image data once decoded.
MAX_BASE64_CHARS = 6_500_000

WordPoly = List[Tuple[int, int]]


class OCRProvider(Protocol):
    def detect(self, image_bytes: bytes, language_hint: str | None = "ja") -> OCRResult:
        ...


def strip_data_url(value: str) -> str:
    """Return the base64 payload of a data URL, or the value itself."""
    return value.split(",")[-1].strip()


def check_image_size(image_bytes: bytes, max_base64_chars: int = MAX_BASE64_CHARS) -> None:
    encoded_len = 4 * ((len(image_bytes) + 2) // 3)
    if encoded_len > max_base64_chars:
        raise ValidationError("Image too large for OCR", status_code=413)


def decode_image_b64(value: str, max_base64_chars: int = MAX_BASE64_CHARS) -> bytes:
    data = strip_data_url(value)
    if not data:
        raise ValidationError("imageBase64 required")
    if len(data) > max_base64_chars:
        raise ValidationError("Image too large", status_code=413)
    try:
        return base64.b64decode(data, validate=False)
    except ValueError as exc:
        raise ValidationError("imageBase64 is not valid base64") from exc


def words_from_annotation(annotation: Any) -> List[OCRWord]:
    """Flatten a Vision ``full_text_annotation`` into non-blank words."""
    words: List[OCRWord] = []
    pages: Iterable[Any] = getattr(annotation, "pages", [])
    for page in pages:
        blocks: Iterable[Any] = getattr(page, "blocks", [])
        for block in blocks:
            paragraphs: Iterable[Any] = getattr(block, "paragraphs", [])
            for paragraph in paragraphs:
                vision_words: Iterable[Any] = getattr(paragraph, "words", [])
                for word in vision_words:
                    symbols: Iterable[Any] = getattr(word, "symbols", [])
                    text = "".join(str(getattr(symbol, "text", "")) for symbol in symbols)
                    if not text.strip():
                        continue
                    bounding_box: Any = getattr(word, "bounding_box", None)
                    vertices: Iterable[Any] = getattr(bounding_box, "vertices", [])
                    verts: WordPoly = [
                        (int(getattr(vertex, "x", 0) or 0), int(getattr(vertex, "y", 0) or 0))
                        for vertex in vertices
                    ]
                    words.append({"text": text, "box": verts})
    return words


class VisionOCRProvider:
    """Google Cloud Vision ``document_text_detection`` backed OCR."""

    def __init__(self, client: Any | None = None) -> None:
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = vision.ImageAnnotatorClient()
        return self._client

    def detect(self, image_bytes: bytes, language_hint: str | None = "ja") -> OCRResult:
        check_image_size(image_bytes)
        image = vision.Image(content=image_bytes)
        image_context: Any | None = None
        if language_hint:
            image_context = vision.ImageContext(language_hints=[language_hint])

        try:
            response: Any = self._get_client().document_text_detection(
                image=image, image_context=image_context
            )
        except Exception as exc:
            logger.error("Vision OCR request failed: %s", exc)
            raise ProviderError("OCR failed") from exc

        error = getattr(getattr(response, "error", None), "message", "")
        if error:
            logger.error("Vision OCR returned an error: %s", error)
            raise ProviderError(f"OCR failed: {error}")

        annotation: Any = getattr(response, "full_text_annotation", None)
        words = words_from_annotation(annotation)
        if not words:
            logger.info("Vision OCR returned no words")
        return {"full_text": str(getattr(annotation, "text", "") or ""), "words": words}


__all__ = [
    "MAX_BASE64_CHARS",
    "OCRProvider",
    "VisionOCRProvider",
    "check_image_size",
    "decode_image_b64",
    "strip_data_url",
    "words_from_annotation",
]
