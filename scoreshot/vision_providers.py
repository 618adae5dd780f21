from __future__ import annotations

import base64
import logging
import os
import time
from dataclasses import dataclass
from typing import Any

import httpx

from .score_models import PreparedImage

logger = logging.getLogger(__name__)

DEFAULT_CLAUDE_MODEL = "claude-sonnet-4-5-20250929"
DEFAULT_CLAUDE_BASE_URL = "https://api.anthropic.com"
ANTHROPIC_VERSION = "2023-06-01"
# Vision requests routinely take 30-90s.
DEFAULT_TIMEOUT_SECONDS = 120.0
DEFAULT_MAX_TOKENS = 4096


class VisionProviderError(RuntimeError):
    pass


class VisionConfigurationError(VisionProviderError):
    pass


class VisionTimeoutError(VisionProviderError):
    pass


class VisionRateLimitError(VisionProviderError):
    pass


class VisionAuthenticationError(VisionProviderError):
    pass


class VisionModelUnavailableError(VisionProviderError):
    pass


class VisionNetworkError(VisionProviderError):
    pass


class VisionImageTooLargeError(VisionProviderError):
    pass


@dataclass
class VisionProviderResult:
    text: str
    raw_response: Any
    model_used: str
    base_url_used: str
    request_metadata: dict[str, Any]


def classify_provider_failure(
    message: str,
    *,
    status_code: int | None = None,
    fallback: type[VisionProviderError] = VisionProviderError,
) -> VisionProviderError:
    """Map a transport/service failure onto exactly one typed error."""
    lowered = (message or "").lower()

    if (
        status_code == 413
        or "exceeds 5 mb" in lowered
        or "5242880" in lowered
        or "image exceeds" in lowered
    ):
        return VisionImageTooLargeError(message)
    if "anthropic_api_key" in lowered or "not configured" in lowered:
        return VisionConfigurationError(message)
    if status_code == 429 or "rate limit" in lowered or "rate_limit" in lowered:
        return VisionRateLimitError(message)
    if "timeout" in lowered or "timed out" in lowered or "etimedout" in lowered:
        return VisionTimeoutError(message)
    if (
        status_code in {401, 403}
        or "authentication" in lowered
        or "api key" in lowered
        or "x-api-key" in lowered
    ):
        return VisionAuthenticationError(message)
    if "not_found_error" in lowered or (
        (status_code == 404 or "404" in lowered) and "model" in lowered
    ):
        return VisionModelUnavailableError(message)
    if (
        "enotfound" in lowered
        or "econnrefused" in lowered
        or "connection refused" in lowered
        or "name or service not known" in lowered
    ):
        return VisionNetworkError(message)
    return fallback(message)


class _BaseVisionProvider:
    route_id: str = ""
    label: str = ""

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        default_model: str,
        timeout_seconds: float,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_key = api_key.strip()
        self.base_url = base_url.strip().rstrip("/")
        self.default_model = default_model.strip()
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.default_model)

    def availability(self) -> dict[str, Any]:
        return {
            "id": self.route_id,
            "label": self.label,
            "configured": bool(self.configured),
            "default_model": self.default_model,
        }

    def extract_text(self, *, prompt: str, image: PreparedImage) -> VisionProviderResult:
        raise NotImplementedError

    def _post_json(
        self,
        *,
        url: str,
        headers: dict[str, str],
        request_payload: dict[str, Any],
    ) -> httpx.Response:
        normalized_headers = dict(headers)
        normalized_headers.setdefault("Accept", "application/json")
        normalized_headers.setdefault("User-Agent", "Scoreshot/1.0")

        try:
            with httpx.Client(timeout=self.timeout_seconds, transport=self.transport) as client:
                return client.post(url, headers=normalized_headers, json=request_payload)
        except httpx.TimeoutException as exc:
            raise VisionTimeoutError(
                f"Vision request timed out after {self.timeout_seconds:g}s: {exc}"
            ) from exc
        except httpx.TransportError as exc:
            raise classify_provider_failure(
                f"HTTP request failed: {exc}",
                fallback=VisionNetworkError,
            ) from exc


class ClaudeVisionProvider(_BaseVisionProvider):
    route_id = "claude"
    label = "Claude"

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = DEFAULT_CLAUDE_BASE_URL,
        default_model: str = DEFAULT_CLAUDE_MODEL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        super().__init__(
            api_key=api_key,
            base_url=base_url,
            default_model=default_model,
            timeout_seconds=timeout_seconds,
            transport=transport,
        )
        self.max_tokens = max_tokens

    @classmethod
    def from_env(cls) -> "ClaudeVisionProvider":
        return cls(
            api_key=os.getenv("ANTHROPIC_API_KEY", ""),
            base_url=os.getenv("VISION_CLAUDE_BASE_URL", DEFAULT_CLAUDE_BASE_URL),
            default_model=os.getenv("VISION_CLAUDE_MODEL", DEFAULT_CLAUDE_MODEL),
            timeout_seconds=_parse_timeout_seconds(
                os.getenv("VISION_REQUEST_TIMEOUT_SECONDS"),
                fallback=DEFAULT_TIMEOUT_SECONDS,
            ),
        )

    def extract_text(self, *, prompt: str, image: PreparedImage) -> VisionProviderResult:
        if not self.api_key:
            raise VisionConfigurationError(
                "Claude provider is not configured (missing ANTHROPIC_API_KEY)."
            )
        if not self.default_model:
            raise VisionConfigurationError("Claude provider is not configured (missing model).")
        if not self.base_url.startswith("http"):
            raise VisionConfigurationError("Invalid Claude base URL.")
        if not image.content:
            raise VisionProviderError("An image is required for screenshot extraction.")

        endpoint = (
            f"{self.base_url}/messages"
            if self.base_url.endswith("/v1")
            else f"{self.base_url}/v1/messages"
        )
        request_payload = {
            "model": self.default_model,
            "max_tokens": self.max_tokens,
            "temperature": 0,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "image",
                            "source": {
                                "type": "base64",
                                "media_type": image.media_type,
                                "data": base64.b64encode(image.content).decode("ascii"),
                            },
                        },
                        {"type": "text", "text": prompt},
                    ],
                }
            ],
        }

        logger.info(
            "Starting Claude request (model=%s, image=%s bytes, %s)",
            self.default_model,
            image.size,
            image.media_type,
        )
        started = time.monotonic()
        response = self._post_json(
            url=endpoint,
            headers={
                "x-api-key": self.api_key,
                "anthropic-version": ANTHROPIC_VERSION,
                "content-type": "application/json",
            },
            request_payload=request_payload,
        )
        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info("Claude responded with HTTP %s in %sms", response.status_code, elapsed_ms)

        if response.status_code >= 400:
            detail = _extract_error_detail(response)
            raise classify_provider_failure(
                f"Claude request failed ({response.status_code}): {detail}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise VisionProviderError(f"Claude response was not valid JSON: {exc}") from exc

        text = _extract_claude_text(payload)
        return VisionProviderResult(
            text=text,
            raw_response=payload,
            model_used=self.default_model,
            base_url_used=self.base_url,
            request_metadata={
                "provider": self.route_id,
                "endpoint": endpoint,
                "model": self.default_model,
                "image_bytes": image.size,
                "media_type": image.media_type,
                "elapsed_ms": elapsed_ms,
            },
        )


def build_default_provider() -> ClaudeVisionProvider:
    return ClaudeVisionProvider.from_env()


def _parse_timeout_seconds(raw_value: str | None, *, fallback: float) -> float:
    if raw_value is None:
        return fallback
    try:
        parsed = float(raw_value)
    except ValueError:
        return fallback
    if parsed <= 0:
        return fallback
    return parsed


def _extract_claude_text(payload: Any) -> str:
    if not isinstance(payload, dict):
        raise VisionProviderError("Invalid Claude response payload.")
    content = payload.get("content")
    if not isinstance(content, list):
        raise VisionProviderError("Claude response missing content array.")
    chunks: list[str] = []
    for item in content:
        if isinstance(item, dict) and item.get("type") == "text" and isinstance(item.get("text"), str):
            chunks.append(item["text"])
    if not chunks or not "".join(chunks).strip():
        raise VisionProviderError("Claude response did not include text content.")
    return "\n".join(chunks)


def _extract_error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            error_type = error.get("type")
            message = error.get("message")
            if isinstance(message, str) and message:
                if isinstance(error_type, str) and error_type:
                    return f"{error_type}: {message}"
                return message
        detail = payload.get("detail")
        if isinstance(detail, str) and detail:
            return detail
    body = response.text.strip()
    return body[:300] if body else "Unknown provider error"
