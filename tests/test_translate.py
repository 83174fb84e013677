from __future__ import annotations

import json
from typing import Any, Dict, List

import pytest
import requests
from conftest import FakeTranslator

from manga_studio.errors import ProviderError, ProviderFormatError, QuotaExceededError, ValidationError
from manga_studio.translate import (
    GeminiTranslator,
    build_numbered_payload,
    parse_translation_response,
    resolve_results,
    text_instruction,
    translate_crops,
    translate_items,
    validate_items,
)


def test_numbered_payload_labels_each_item() -> None:
    payload = build_numbered_payload([{"id": 3, "text": "やあ"}, {"id": 1, "text": "ね"}])
    assert payload == "id=3 :: やあ\nid=1 :: ね"


def test_single_provider_call_and_sorted_output() -> None:
    translator = FakeTranslator()
    items = [{"id": 3, "text": "c"}, {"id": 1, "text": "a"}, {"id": 2, "text": "b"}]
    result = translate_items(items, source_lang="ja", request_id="r1", translator=translator)
    assert translator.calls == 1
    assert result == [{"id": 1, "text": "es:a"}, {"id": 2, "text": "es:b"}, {"id": 3, "text": "es:c"}]


def test_missing_ids_resolve_to_empty_text() -> None:
    translator = FakeTranslator(drop_ids=[2])
    items = [{"id": 1, "text": "a"}, {"id": 2, "text": "b"}, {"id": 3, "text": "c"}]
    result = translate_items(items, source_lang="ja", request_id="r1", translator=translator)
    assert result == [{"id": 1, "text": "es:a"}, {"id": 2, "text": ""}, {"id": 3, "text": "es:c"}]


def test_resolve_results_covers_every_roi() -> None:
    assert resolve_results([3, 1, 2], {"1": "uno", "3": "tres", "9": "extra"}) == [
        {"id": 1, "text": "uno"},
        {"id": 2, "text": ""},
        {"id": 3, "text": "tres"},
    ]


def test_too_many_items_rejected_before_provider_call() -> None:
    translator = FakeTranslator()
    items = [{"id": i, "text": "x"} for i in range(1, 66)]
    with pytest.raises(ValidationError) as excinfo:
        translate_items(items, source_lang="ja", request_id="r1", translator=translator)
    assert excinfo.value.status_code == 413
    assert translator.calls == 0
    assert len(validate_items(items[:64])) == 64


def test_too_many_characters_rejected_before_provider_call() -> None:
    translator = FakeTranslator()
    with pytest.raises(ValidationError) as excinfo:
        translate_items([{"id": 1, "text": "a" * 8001}], source_lang="ja", request_id="r1", translator=translator)
    assert excinfo.value.status_code == 413
    assert translator.calls == 0
    assert validate_items([{"id": 1, "text": "a" * 8000}])


def test_empty_text_and_malformed_items() -> None:
    with pytest.raises(ValidationError) as excinfo:
        validate_items([{"id": 1, "text": ""}])
    assert excinfo.value.status_code == 422
    with pytest.raises(ValidationError):
        validate_items([])
    with pytest.raises(ValidationError):
        validate_items([{"id": "abc", "text": "x"}])
    with pytest.raises(ValidationError):
        validate_items([{"id": 1, "text": None}])  # type: ignore[typeddict-item]


@pytest.mark.parametrize("raw", ["not json", "[]", '{"items": {}}', '{"other": []}', '{"items": ["x"]}'])
def test_unparseable_output_is_a_format_error(raw: str) -> None:
    with pytest.raises(ProviderFormatError):
        parse_translation_response(raw)
    translator = FakeTranslator(raw=raw)
    with pytest.raises(ProviderFormatError):
        translate_items([{"id": 1, "text": "a"}], source_lang="ja", request_id="r1", translator=translator)


def test_parse_normalizes_ids_and_text() -> None:
    parsed = parse_translation_response('{"items": [{"id": 4, "text": "  Hola ,  mundo "}, {"id": "5"}]}')
    assert parsed == {"4": "Hola, mundo", "5": ""}


def test_translate_crops_guardrails() -> None:
    translator = FakeTranslator()
    crops = [{"roi_id": i, "mime_type": "image/png", "image_data": b"x"} for i in range(1, 34)]
    with pytest.raises(ValidationError):
        translate_crops(crops, source_lang="ja", request_id="r1", translator=translator)
    big = [{"roi_id": 1, "mime_type": "image/png", "image_data": b"x" * 1_300_000}]
    with pytest.raises(ValidationError):
        translate_crops(big, source_lang="ja", request_id="r1", translator=translator)
    assert translator.calls == 0

    result = translate_crops(crops[:2], source_lang="ja", request_id="r1", translator=translator)
    assert result == [{"id": 1, "text": "es:img1"}, {"id": 2, "text": "es:img2"}]


def test_instruction_mentions_source_language() -> None:
    assert "inglés" in text_instruction("en")
    assert "japonés" in text_instruction("ja")


class _Response:
    def __init__(self, status_code: int, body: Any = None) -> None:
        self.status_code = status_code
        self._body = body
        self.ok = status_code < 400
        self.text = json.dumps(body)

    def json(self) -> Any:
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class _Session:
    def __init__(self, response: Any) -> None:
        self.response = response
        self.posts: List[Dict[str, Any]] = []

    def post(self, url: str, **kwargs: Any) -> Any:
        self.posts.append({"url": url, **kwargs})
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def _gemini(response: Any) -> tuple[GeminiTranslator, _Session]:
    session = _Session(response)
    return GeminiTranslator(api_key="k", model="gemini-test", session=session), session  # type: ignore[arg-type]


def test_gemini_returns_candidate_text() -> None:
    body = {"candidates": [{"content": {"parts": [{"text": '{"items": []}'}]}}]}
    translator, session = _gemini(_Response(200, body))
    assert translator.translate_text("inst", "id=1 :: a") == '{"items": []}'
    sent = session.posts[0]
    assert sent["url"].endswith("/gemini-test:generateContent")
    assert sent["json"]["generationConfig"]["responseMimeType"] == "application/json"
    assert [c["parts"][0]["text"] for c in sent["json"]["contents"]] == ["inst", "id=1 :: a"]


def test_gemini_sends_labelled_inline_images() -> None:
    body = {"candidates": [{"content": {"parts": [{"text": "{}"}]}}]}
    translator, session = _gemini(_Response(200, body))
    translator.translate_images("inst", [{"roi_id": 7, "mime_type": "image/jpeg", "image_data": b"\xff\xd8"}])
    parts = session.posts[0]["json"]["contents"][0]["parts"]
    assert parts[1] == {"text": "ROI id=7"}
    assert parts[2]["inlineData"] == {"mimeType": "image/jpeg", "data": "/9g="}


def test_gemini_error_mapping() -> None:
    translator, _ = _gemini(_Response(429, {}))
    with pytest.raises(QuotaExceededError) as excinfo:
        translator.translate_text("i", "p")
    assert excinfo.value.reason == "rate_limited"

    translator, _ = _gemini(_Response(500, {}))
    with pytest.raises(ProviderError):
        translator.translate_text("i", "p")

    translator, _ = _gemini(requests.ConnectionError("down"))
    with pytest.raises(ProviderError):
        translator.translate_text("i", "p")

    translator, _ = _gemini(_Response(200, {"candidates": []}))
    with pytest.raises(ProviderFormatError):
        translator.translate_text("i", "p")


def test_gemini_without_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("GOOGLE_GEMINI_KEY", raising=False)
    translator = GeminiTranslator(session=_Session(None))  # type: ignore[arg-type]
    assert not translator.is_available()
    with pytest.raises(ProviderError):
        translator.translate_text("i", "p")


def test_count_guardrail_wins_over_empty_text() -> None:
    with pytest.raises(ValidationError) as excinfo:
        validate_items([{"id": i, "text": ""} for i in range(1, 66)])
    assert excinfo.value.status_code == 413
