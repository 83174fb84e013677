from __future__ import annotations

import io
import json
import re
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import pytest
from PIL import Image

from manga_studio.ledger import JsonCreditLedger
from manga_studio.types import OCRResult, OCRWord, RoiCrop

_LINE_RE = re.compile(r"^id=(\d+) :: (.*)$")


def box_at(cx: float, cy: float, half: float = 5.0) -> List[tuple[float, float]]:
    return [(cx - half, cy - half), (cx + half, cy - half), (cx + half, cy + half), (cx - half, cy + half)]


def word(text: str, cx: float, cy: float) -> OCRWord:
    return {"text": text, "box": box_at(cx, cy)}


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeOCR:
    def __init__(self, words: Sequence[OCRWord] = ()) -> None:
        self.words = list(words)
        self.calls: List[bytes] = []

    def detect(self, image_bytes: bytes, language_hint: Optional[str] = "ja") -> OCRResult:
        self.calls.append(image_bytes)
        return {"full_text": " ".join(w["text"] for w in self.words), "words": list(self.words)}


class FakeTranslator:
    """Answers ``es:<text>`` per id unless told to drop ids or return raw content."""

    name = "fake"
    model = "fake-1"

    def __init__(self, drop_ids: Iterable[int] = (), raw: Optional[str] = None) -> None:
        self.drop_ids = {str(i) for i in drop_ids}
        self.raw = raw
        self.text_calls: List[str] = []
        self.image_calls: List[List[RoiCrop]] = []

    def _answer(self, pairs: List[tuple[str, str]]) -> str:
        if self.raw is not None:
            return self.raw
        items = [{"id": i, "text": f"es:{t}"} for i, t in pairs if i not in self.drop_ids]
        return json.dumps({"items": items}, ensure_ascii=False)

    def translate_text(self, instruction: str, payload: str) -> str:
        self.text_calls.append(payload)
        pairs = []
        for line in payload.splitlines():
            match = _LINE_RE.match(line)
            if match:
                pairs.append((match.group(1), match.group(2)))
        return self._answer(pairs)

    def translate_images(self, instruction: str, crops: Sequence[RoiCrop]) -> str:
        self.image_calls.append(list(crops))
        return self._answer([(str(c["roi_id"]), f"img{c['roi_id']}") for c in crops])

    @property
    def calls(self) -> int:
        return len(self.text_calls) + len(self.image_calls)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger(tmp_path: Path) -> JsonCreditLedger:
    return JsonCreditLedger(tmp_path / "ledger.json", initial_credits=20)


@pytest.fixture
def page() -> Image.Image:
    """A 1000x800 white page with a red block in the top-left quarter."""
    image = Image.new("RGB", (1000, 800), (255, 255, 255))
    image.paste((255, 0, 0), (0, 0, 500, 400))
    return image


@pytest.fixture
def page_png(page: Image.Image) -> bytes:
    buffer = io.BytesIO()
    page.save(buffer, format="PNG")
    return buffer.getvalue()

