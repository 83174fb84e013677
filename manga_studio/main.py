"""FastAPI server exposing OCR, translation and the full region pipeline."""

from __future__ import annotations

import base64
import binascii
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .abuse import EmptyResultTracker
from .errors import (
    InvalidDimensions,
    ProviderError,
    ProviderFormatError,
    QuotaExceededError,
    ValidationError,
)
from .ledger import DEFAULT_INITIAL_CREDITS, CreditLedger, JsonCreditLedger, LedgerEntry
from .logging_config import configure_logging
from .ocr import OCRProvider, VisionOCRProvider, decode_image_b64, strip_data_url
from .pipeline import TranslationPipeline, export_text
from .ratelimit import SlidingWindowRateLimiter, client_ip, ratelimit_headers
from .session import DEFAULT_DISPLAY_WIDTH, SourceImage
from .strategies import TranslationStrategy, build_strategies
from .translate import (
    DEFAULT_GEMINI_DIRECT_MODEL,
    MAX_CROP_BASE64_CHARS,
    GeminiTranslator,
    Translator,
    char_count,
    translate_crops,
    translate_items,
)
from .types import ROI, HistoryItem, RoiCrop, TranslationItem

logger = logging.getLogger(__name__)

app: FastAPI = FastAPI(title="Manga Studio API", version="0.1.0")

WINDOW_SECONDS = 60.0
OCR_USER_LIMIT = 30
TEXT_USER_LIMIT = 60
DIRECT_USER_LIMIT = 30
IP_LIMIT = 60
TEXT_IP_LIMIT = 120

INVALID_OUTPUT_MESSAGE = "The translation provider returned invalid output. No credits were spent; please retry."

SourceLang = Literal["ja", "en"]


@dataclass
class Services:
    ledger: CreditLedger
    limiter: SlidingWindowRateLimiter
    ocr: OCRProvider
    strategies: Dict[str, TranslationStrategy]
    pipeline: TranslationPipeline
    text_translator: Translator
    image_translator: Translator


_services: Optional[Services] = None


def build_services(
    ledger: CreditLedger,
    ocr: OCRProvider,
    text_translator: Translator,
    image_translator: Translator,
    limiter: Optional[SlidingWindowRateLimiter] = None,
    abuse: Optional[EmptyResultTracker] = None,
) -> Services:
    strategies = build_strategies(ocr, text_translator, image_translator)
    return Services(
        ledger=ledger,
        limiter=limiter if limiter is not None else SlidingWindowRateLimiter(),
        ocr=ocr,
        strategies=strategies,
        pipeline=TranslationPipeline(ledger, strategies, abuse if abuse is not None else EmptyResultTracker()),
        text_translator=text_translator,
        image_translator=image_translator,
    )


def get_services() -> Services:
    global _services
    if _services is not None:
        return _services
    ledger_path = Path(os.environ.get("STUDIO_LEDGER_PATH", "data/ledger.json"))
    initial_credits = int(os.environ.get("STUDIO_INITIAL_CREDITS", DEFAULT_INITIAL_CREDITS))
    text_translator = GeminiTranslator()
    if not text_translator.is_available():
        logger.warning("GEMINI_API_KEY not set; translation requests will fail")
    _services = build_services(
        ledger=JsonCreditLedger(ledger_path, initial_credits=initial_credits),
        ocr=VisionOCRProvider(),
        text_translator=text_translator,
        image_translator=GeminiTranslator(
            model=os.environ.get("GEMINI_DIRECT_MODEL", DEFAULT_GEMINI_DIRECT_MODEL)
        ),
    )
    return _services


def current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Identity issued by the auth/session service in front of this API."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id


def _error(status_code: int, message: str, request: Request) -> JSONResponse:
    headers = getattr(request.state, "ratelimit_headers", None)
    return JSONResponse({"error": message}, status_code=status_code, headers=headers)


@app.exception_handler(ValidationError)
async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    return _error(exc.status_code, str(exc), request)


@app.exception_handler(InvalidDimensions)
async def _invalid_dimensions(request: Request, exc: InvalidDimensions) -> JSONResponse:
    return _error(400, str(exc), request)


@app.exception_handler(ProviderError)
async def _provider_error(request: Request, exc: ProviderError) -> JSONResponse:
    if isinstance(exc, ProviderFormatError):
        return _error(502, INVALID_OUTPUT_MESSAGE, request)
    return _error(502, "The provider could not be reached. No credits were spent.", request)


@app.exception_handler(QuotaExceededError)
async def _quota_error(request: Request, exc: QuotaExceededError) -> JSONResponse:
    if exc.reason in ("insufficient_credits", "daily_quota"):
        return _error(402, str(exc), request)
    return _error(429, str(exc), request)


def _rate_limit(request: Request, services: Services, user_key: str, user_max: int, ip_max: int) -> None:
    """Count the request for the user and the origin address; reject with 429 when either is out."""
    hit_user = services.limiter.hit(user_key, user_max, WINDOW_SECONDS)
    hit_ip = services.limiter.hit(f"ip:{client_ip(request.headers)}", ip_max, WINDOW_SECONDS)
    if not hit_user.allowed or not hit_ip.allowed:
        headers = ratelimit_headers(
            min(hit_user.remaining, hit_ip.remaining),
            max(hit_user.reset_at, hit_ip.reset_at),
        )
        raise HTTPException(status_code=429, detail="Too Many Requests", headers=headers)
    request.state.ratelimit_headers = ratelimit_headers(hit_user.remaining, hit_user.reset_at)


def _with_headers(request: Request, body: Dict[str, Any]) -> JSONResponse:
    return JSONResponse(body, headers=getattr(request.state, "ratelimit_headers", None))


class OcrRequest(BaseModel):
    imageBase64: str
    languageHint: Optional[str] = Field(default="ja", description="Language hint for OCR")


class ItemModel(BaseModel):
    id: int
    text: str


class Meta(BaseModel):
    requestId: str = Field(..., min_length=1)
    source_lang: str = "ja"
    target_lang: str = "es"
    roi_count: int = Field(..., ge=0)
    char_count: Optional[int] = None
    image_w: Optional[int] = None
    image_h: Optional[int] = None


class TranslateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    items: List[ItemModel]
    meta: Meta
    source: SourceLang = Field(default="ja", alias="from")


class CropModel(BaseModel):
    id: int
    b64: str


class DirectRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    crops: List[CropModel]
    meta: Meta
    source: SourceLang = Field(default="ja", alias="from")


class RoiModel(BaseModel):
    id: int
    x: float
    y: float
    w: float = Field(..., gt=0)
    h: float = Field(..., gt=0)


class RunRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    imageBase64: str
    rois: List[RoiModel]
    displayWidth: float = Field(default=DEFAULT_DISPLAY_WIDTH, gt=0)
    mode: str = "ocr-text"
    source: SourceLang = Field(default="ja", alias="from")


@app.post("/ocr")
def ocr(
    req: OcrRequest,
    request: Request,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> JSONResponse:
    _rate_limit(request, services, f"ocr:{user_id}", OCR_USER_LIMIT, IP_LIMIT)
    image_bytes = decode_image_b64(req.imageBase64)
    result = services.ocr.detect(image_bytes, language_hint=req.languageHint)
    words = [
        {"text": word["text"], "box": [{"x": x, "y": y} for x, y in word["box"]]}
        for word in result["words"]
    ]
    return _with_headers(request, {"fullText": result["full_text"], "words": words})


@app.post("/translate-and-spend")
def translate_and_spend(
    req: TranslateRequest,
    request: Request,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> JSONResponse:
    _rate_limit(request, services, f"tls:{user_id}", TEXT_USER_LIMIT, TEXT_IP_LIMIT)
    items: List[TranslationItem] = [{"id": item.id, "text": item.text} for item in req.items]
    request_id = req.meta.requestId
    translator = services.text_translator
    strategy = services.strategies["ocr-text"]
    base_entry: LedgerEntry = {
        "user_id": user_id,
        "request_id": request_id,
        "source_lang": req.meta.source_lang,
        "target_lang": req.meta.target_lang,
        "roi_count": len(items),
        "char_count": char_count(items),
        "provider": translator.name,
        "model": translator.model,
    }
    try:
        translated = translate_items(items, source_lang=req.source, request_id=request_id, translator=translator)
    except ProviderFormatError as exc:
        services.ledger.record_failure({**base_entry, "error": str(exc)})  # type: ignore[typeddict-item]
        raise

    sources = {item["id"]: item["text"] for item in items}
    history: List[HistoryItem] = [
        {"roi_id": item["id"], "src": sources.get(item["id"], ""), "dst": item["text"]}
        for item in translated
    ]
    services.ledger.spend_and_log(
        {**base_entry, "credits": strategy.credits_per_roi * len(items), "items": history}  # type: ignore[typeddict-item]
    )
    return _with_headers(request, {"items": translated})


def _decode_crop(crop: CropModel) -> RoiCrop:
    data = strip_data_url(crop.b64)
    if len(data) > MAX_CROP_BASE64_CHARS:
        raise ValidationError(f"ROI {crop.id}: image too large", status_code=413)
    try:
        image_data = base64.b64decode(data)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError(f"ROI {crop.id}: invalid base64") from exc
    mime_type = "image/jpeg" if crop.b64.startswith("data:image/jpeg") else "image/png"
    return {"roi_id": crop.id, "mime_type": mime_type, "image_data": image_data}


@app.post("/translate-direct")
def translate_direct(
    req: DirectRequest,
    request: Request,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> JSONResponse:
    _rate_limit(request, services, f"tdirect:{user_id}", DIRECT_USER_LIMIT, IP_LIMIT)
    if not req.crops:
        raise ValidationError("Invalid payload: no crops")
    if req.meta.roi_count != len(req.crops):
        raise ValidationError("roi_count does not match the number of crops")
    crops = [_decode_crop(crop) for crop in req.crops]
    request_id = req.meta.requestId
    translator = services.image_translator
    strategy = services.strategies["direct-image"]
    base_entry: LedgerEntry = {
        "user_id": user_id,
        "request_id": request_id,
        "source_lang": req.meta.source_lang,
        "target_lang": req.meta.target_lang,
        "roi_count": len(crops),
        "provider": f"{translator.name}-multi",
        "model": translator.model,
    }
    try:
        translated = translate_crops(crops, source_lang=req.source, request_id=request_id, translator=translator)
    except ProviderFormatError as exc:
        services.ledger.record_failure({**base_entry, "char_count": 0, "error": str(exc)})  # type: ignore[typeddict-item]
        raise

    history: List[HistoryItem] = [{"roi_id": item["id"], "src": "", "dst": item["text"]} for item in translated]
    services.ledger.spend_and_log(
        {  # type: ignore[typeddict-item]
            **base_entry,
            "credits": strategy.credits_per_roi * len(crops),
            "char_count": char_count(translated),
            "items": history,
        }
    )
    return _with_headers(request, {"items": translated})


@app.post("/studio/run")
def studio_run(
    req: RunRequest,
    request: Request,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> JSONResponse:
    _rate_limit(request, services, f"run:{user_id}", DIRECT_USER_LIMIT, IP_LIMIT)
    source = SourceImage.from_bytes(decode_image_b64(req.imageBase64))
    rois: List[ROI] = [{"id": r.id, "x": r.x, "y": r.y, "w": r.w, "h": r.h} for r in req.rois]
    result = services.pipeline.run(
        user_id,
        source.image,
        rois,
        req.displayWidth,
        req.mode,
        source_lang=req.source,
        reading_order=[roi["id"] for roi in rois],
    )
    return _with_headers(
        request,
        {
            "requestId": result.request_id,
            "mode": result.strategy,
            "items": result.items,
            "creditsSpent": result.credits_spent,
            "empty": result.empty,
            "export": export_text(result.items),
        },
    )


@app.get("/me/credits")
def credits(user_id: str = Depends(current_user), services: Services = Depends(get_services)) -> Dict[str, int]:
    return {"credits": services.ledger.balance(user_id)}


@app.get("/history")
def history(
    page: int = 1,
    limit: int = 20,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    result = services.ledger.history(user_id, page=page, per_page=limit)
    return {
        "items": result["items"],
        "total": result["total"],
        "page": result["page"],
        "perPage": result["per_page"],
    }


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


def serve() -> None:
    configure_logging()
    uvicorn.run(
        app,
        host=os.environ.get("STUDIO_HOST", "127.0.0.1"),
        port=int(os.environ.get("STUDIO_PORT", "8000")),
        log_config=None,
    )
