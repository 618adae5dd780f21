from __future__ import annotations

import logging
import os
import time

from fastapi import FastAPI, File, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .image_preparation import ImageLimits, ImageValidationError
from .rate_limiter import UploadRateLimiter
from .score_extraction import ScreenshotScoreService
from .score_models import RawUpload
from .score_normalization import ScoreParseError
from .vision_providers import (
    VisionAuthenticationError,
    VisionConfigurationError,
    VisionImageTooLargeError,
    VisionModelUnavailableError,
    VisionNetworkError,
    VisionProviderError,
    VisionRateLimitError,
    VisionTimeoutError,
)

logger = logging.getLogger(__name__)

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("SCORESHOT_CORS_ORIGINS", "*").split(",")
    if origin.strip()
]

# First match wins, so subclasses must precede VisionProviderError.
ERROR_RESPONSES: tuple[tuple[type[Exception], int, str], ...] = (
    (
        VisionConfigurationError,
        503,
        "API key not configured. Please contact the administrator.",
    ),
    (
        VisionAuthenticationError,
        503,
        "API authentication failed. Please contact the administrator.",
    ),
    (
        VisionModelUnavailableError,
        503,
        "Screenshot processing model is unavailable. Please contact the administrator to update the app.",
    ),
    (
        VisionRateLimitError,
        429,
        "API rate limit exceeded. Please try again later.",
    ),
    (
        VisionTimeoutError,
        504,
        "Request timed out. The image processing is taking too long. Please try again.",
    ),
    (
        VisionImageTooLargeError,
        413,
        "Image is too large for processing. Please try a smaller screenshot or a different image.",
    ),
    (
        VisionNetworkError,
        502,
        "Cannot connect to API service. Please check your connection and try again.",
    ),
    (
        VisionProviderError,
        502,
        "Screenshot processing failed. Please try again.",
    ),
    (
        ScoreParseError,
        422,
        "Could not read scores from the screenshot. Please try again with the same or a clearer image.",
    ),
)

image_limits = ImageLimits.from_env()
screenshot_service = ScreenshotScoreService(limits=image_limits)
upload_rate_limiter = UploadRateLimiter.from_env()

app = FastAPI(title="Scoreshot Screenshot Scoring Service", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


class ScoringBreakdownBody(BaseModel):
    birds: int
    bonusCards: int
    endOfRoundGoals: int
    eggs: int
    foodOnCards: int
    tuckedCards: int
    nectar: int


class ExtractedPlayerBody(BaseModel):
    playerName: str
    placement: int
    totalScore: int
    scoringBreakdown: ScoringBreakdownBody


class ExtractedGameDataBody(BaseModel):
    players: list[ExtractedPlayerBody]
    extractionNotes: str | None = None


class UploadScreenshotResponse(BaseModel):
    success: bool = True
    extractedData: ExtractedGameDataBody
    confidence: float
    warnings: list[str] | None = None


def _rate_limit_key(request: Request) -> str:
    user_id = (request.headers.get("x-user-id") or "").strip()
    if user_id:
        return f"user:{user_id}"
    if request.client and request.client.host:
        return f"host:{request.client.host}"
    return "anonymous"


def _http_error_for(exc: Exception) -> HTTPException:
    for error_type, status_code, message in ERROR_RESPONSES:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=message)
    return HTTPException(status_code=500, detail="Internal server error")


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/api/screenshots/providers")
def screenshot_providers():
    return {"providers": [screenshot_service.provider_status()]}


@app.post(
    "/api/games/upload-screenshot",
    response_model=UploadScreenshotResponse,
    response_model_exclude_none=True,
)
def upload_screenshot(request: Request, image: UploadFile = File(...)):
    started = time.monotonic()
    rate_limit_key = _rate_limit_key(request)
    decision = upload_rate_limiter.check(rate_limit_key)
    if not decision.allowed:
        raise HTTPException(status_code=429, detail="Rate limit exceeded. Please try again later.")

    max_bytes = screenshot_service.limits.max_upload_bytes
    content = image.file.read(max_bytes + 1)
    upload = RawUpload(
        content=content,
        media_type=image.content_type or "",
        filename=image.filename or "",
    )

    try:
        result = screenshot_service.extract(upload)
    except ImageValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except (VisionProviderError, ScoreParseError) as exc:
        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.error(
            "Screenshot upload failed after %sms for %s: %s: %s",
            elapsed_ms,
            rate_limit_key,
            exc.__class__.__name__,
            exc,
        )
        raise _http_error_for(exc) from exc
    except Exception as exc:
        logger.exception("Unexpected screenshot upload failure for %s", rate_limit_key)
        raise HTTPException(status_code=500, detail="Internal server error") from exc

    elapsed_ms = int((time.monotonic() - started) * 1000)
    logger.info("Screenshot upload completed in %sms for %s", elapsed_ms, rate_limit_key)
    payload = result.to_dict()
    payload["success"] = True
    return payload
