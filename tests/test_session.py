from __future__ import annotations

import io

import pytest
from conftest import FakeOCR, FakeTranslator, word
from PIL import Image

from manga_studio.errors import ProviderFormatError, ValidationError
from manga_studio.ledger import JsonCreditLedger
from manga_studio.pipeline import TranslationPipeline
from manga_studio.session import SourceImage, StudioSession
from manga_studio.strategies import build_strategies


def _draw(session: StudioSession, start: tuple[float, float], end: tuple[float, float]) -> None:
    session.store.press(start)
    session.store.update_draw(end)
    session.store.commit_draw()


def _png(width: int, height: int) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), (255, 255, 255)).save(buffer, format="PNG")
    return buffer.getvalue()


def test_load_image_reports_natural_size(page_png: bytes) -> None:
    session = StudioSession(display_width=500)
    source = session.load_image(page_png)
    assert (source.natural_width, source.natural_height) == (1000, 800)
    assert session.display_height == 400


def test_unreadable_image_is_rejected() -> None:
    with pytest.raises(ValidationError):
        SourceImage.from_bytes(b"definitely not a png")


def test_new_image_clears_regions_and_results(page_png: bytes) -> None:
    session = StudioSession(display_width=500)
    session.load_image(page_png)
    _draw(session, (0, 0), (100, 50))
    session.store.select(1)
    session.store.begin_draw((300, 300))
    generation = session.begin_run()
    assert session.finish_run(generation, [{"id": 1, "text": "Hola"}])

    session.load_image(_png(200, 100))
    assert len(session.store) == 0
    assert session.store.selected_id is None
    assert session.store.pending is None
    assert session.results == []
    assert not session.running


def test_results_for_a_replaced_image_are_discarded(page_png: bytes) -> None:
    session = StudioSession(display_width=500)
    session.load_image(page_png)
    _draw(session, (0, 0), (100, 50))
    generation = session.begin_run()

    session.load_image(page_png)
    assert not session.finish_run(generation, [{"id": 1, "text": "tarde"}])
    assert session.results == []


def test_run_requires_image_and_regions(page_png: bytes) -> None:
    session = StudioSession()
    with pytest.raises(ValidationError):
        session.begin_run()
    session.load_image(page_png)
    with pytest.raises(ValidationError):
        session.begin_run()


def test_only_one_run_in_flight(page_png: bytes) -> None:
    session = StudioSession()
    session.load_image(page_png)
    _draw(session, (0, 0), (100, 50))
    session.begin_run()
    with pytest.raises(ValidationError) as excinfo:
        session.begin_run()
    assert excinfo.value.status_code == 409
    session.abort_run()
    session.begin_run()


def test_translate_and_export(page_png: bytes, ledger: JsonCreditLedger) -> None:
    session = StudioSession(display_width=500)
    session.load_image(page_png)
    _draw(session, (200, 200), (300, 250))
    _draw(session, (0, 0), (100, 50))
    ocr = FakeOCR([word("こんにちは", 300, 168)])
    translator = FakeTranslator()
    pipeline = TranslationPipeline(ledger, build_strategies(ocr, translator, translator))

    result = session.translate(pipeline, "u1", "ocr-text")
    assert result.credits_spent == 1
    assert session.results == [{"id": 1, "text": "es:こんにちは"}, {"id": 2, "text": ""}]
    assert session.export_text() == "#1 es:こんにちは\n#2 (sin texto)"
    assert not session.running


def test_failed_translate_releases_the_run(page_png: bytes, ledger: JsonCreditLedger) -> None:
    session = StudioSession(display_width=500)
    session.load_image(page_png)
    _draw(session, (0, 0), (100, 50))
    translator = FakeTranslator(raw="not json")
    pipeline = TranslationPipeline(ledger, build_strategies(FakeOCR([word("あ", 300, 168)]), translator, translator))

    with pytest.raises(ProviderFormatError):
        session.translate(pipeline, "u1", "ocr-text")
    assert not session.running
    assert session.results == []
