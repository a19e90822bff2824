"""
Google AI Studio image-editing client.

Wraps the blocking google-genai SDK call in an executor with a timeout, retries
transient upstream failures with backoff, and turns every response into one of
a small set of typed results the generation loop can branch on.
"""
import asyncio
import base64
import logging
import random
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Union

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from layoutlock.core.config import settings
from layoutlock.services.design_prompts import CLEARER_PHOTO_SENTINEL
from layoutlock.services.image_sampling import decode_base64_image, split_data_url

logger = logging.getLogger(__name__)

BACKOFF_SCHEDULE_MS = (700, 1500, 2800, 4500)
BACKOFF_JITTER_MS = 250

RETRYABLE_RPC_STATUSES = {"UNAVAILABLE", "RESOURCE_EXHAUSTED", "DEADLINE_EXCEEDED", "INTERNAL"}
BLOCKING_FINISH_REASONS = {"SAFETY", "RECITATION"}

_SENTINEL_PREFIX = re.compile(r"^" + re.escape(CLEARER_PHOTO_SENTINEL), re.IGNORECASE)


@dataclass(frozen=True)
class UpstreamIssue:
    """A normalized model gateway failure."""

    code: str
    message: str
    retryable: bool
    retry_after_seconds: Optional[int] = None
    status: Optional[int] = None


class UpstreamModelError(Exception):
    """Non-retryable model gateway failure; ends the request."""

    def __init__(self, issue: UpstreamIssue):
        super().__init__(issue.message)
        self.issue = issue


@dataclass(frozen=True)
class EditedImage:
    image_ref: str
    text: str = ""


@dataclass(frozen=True)
class Refused:
    """The model asked for a clearer photo instead of editing."""

    reason: Optional[str] = None
    text: str = ""


@dataclass(frozen=True)
class Blocked:
    """The model's safety filter stopped the request."""

    reason: str


@dataclass(frozen=True)
class Empty:
    """No usable image: an empty response or transient upstream trouble."""

    issue: Optional[UpstreamIssue] = None
    text: str = ""


ModelResult = Union[EditedImage, Refused, Blocked, Empty]


def classify_upstream_error(status: Optional[int], rpc_status: Optional[str] = None) -> UpstreamIssue:
    rpc_status = (rpc_status or "").upper()

    if status == 429:
        return UpstreamIssue(
            code="BUSY",
            message="AI is currently busy with high demand. Please try again shortly.",
            retryable=True,
            retry_after_seconds=45,
            status=status,
        )

    if status == 402:
        return UpstreamIssue(
            code="CONFIG_ERROR",
            message="AI service is currently unavailable due to account limits.",
            retryable=False,
            status=status,
        )

    if (status is not None and 500 <= status <= 599) or rpc_status in RETRYABLE_RPC_STATUSES:
        return UpstreamIssue(
            code="BUSY",
            message="AI service is temporarily unavailable. Please try again in about a minute.",
            retryable=True,
            retry_after_seconds=60,
            status=status,
        )

    return UpstreamIssue(
        code="UNKNOWN",
        message="AI service returned an unexpected response.",
        retryable=False,
        status=status,
    )


def classify_exception(error: Exception) -> UpstreamIssue:
    if isinstance(error, asyncio.TimeoutError):
        return UpstreamIssue(
            code="BUSY",
            message="AI is taking longer than expected right now. Please try again in about a minute.",
            retryable=True,
            retry_after_seconds=60,
            status=503,
        )

    if isinstance(error, genai_errors.APIError):
        return classify_upstream_error(getattr(error, "code", None), getattr(error, "status", None))

    # Transport failures never reached the model
    return UpstreamIssue(
        code="BUSY",
        message="Could not reach the AI service right now. Please try again shortly.",
        retryable=True,
        retry_after_seconds=45,
        status=503,
    )


def backoff_seconds(retry: int) -> float:
    base = BACKOFF_SCHEDULE_MS[min(max(retry, 1), len(BACKOFF_SCHEDULE_MS)) - 1]
    return (base + random.randint(0, BACKOFF_JITTER_MS - 1)) / 1000.0


def _enum_name(value: Any) -> str:
    if value is None:
        return ""
    return str(getattr(value, "value", value)).upper()


def _response_parts(response: Any) -> List[Any]:
    # The SDK may return parts directly on response or nested in candidates
    parts = getattr(response, "parts", None)
    if parts:
        return list(parts)
    candidates = getattr(response, "candidates", None) or []
    if candidates:
        content = getattr(candidates[0], "content", None)
        if content is not None and getattr(content, "parts", None):
            return list(content.parts)
    return []


def _inline_image_ref(inline_data: Any) -> Optional[str]:
    image_data = getattr(inline_data, "data", None)
    if not image_data:
        return None
    mime_type = getattr(inline_data, "mime_type", None) or "image/png"

    if isinstance(image_data, bytes):
        # Raw PNG: 89504e47, raw JPEG: ffd8ff; anything else is already base64 text
        first_hex = image_data[:4].hex()
        if first_hex.startswith("89504e47") or first_hex.startswith("ffd8ff"):
            encoded = base64.b64encode(image_data).decode("utf-8")
        else:
            encoded = image_data.decode("utf-8")
    elif isinstance(image_data, str):
        encoded = image_data
    else:
        logger.error(f"Unexpected image data type: {type(image_data)}")
        return None

    return f"data:{mime_type};base64,{encoded}"


def parse_generation_response(response: Any) -> ModelResult:
    """Map a generate_content response onto EditedImage / Refused / Blocked / Empty."""
    candidates = getattr(response, "candidates", None) or []
    if not candidates and not getattr(response, "parts", None):
        feedback = getattr(response, "prompt_feedback", None)
        block_reason = _enum_name(getattr(feedback, "block_reason", None))
        return Blocked(reason=block_reason or "no_candidates")

    if candidates:
        finish_reason = _enum_name(getattr(candidates[0], "finish_reason", None))
        if finish_reason in BLOCKING_FINISH_REASONS:
            return Blocked(reason=finish_reason)

    text = ""
    image_ref = None
    for part in _response_parts(response):
        part_text = getattr(part, "text", None)
        if isinstance(part_text, str):
            text += part_text
        inline_data = getattr(part, "inline_data", None)
        if inline_data is not None:
            image_ref = _inline_image_ref(inline_data) or image_ref

    normalized = text.strip()
    if normalized.upper().startswith(CLEARER_PHOTO_SENTINEL.rstrip(":")):
        reason = _SENTINEL_PREFIX.sub("", normalized).strip() or None
        return Refused(reason=reason, text=text)

    if image_ref:
        return EditedImage(image_ref=image_ref, text=text)

    return Empty(text=text)


class GeminiImageService:
    """Image editing through Gemini 3 Pro Image via the google-genai SDK."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.api_key = settings.google_ai_api_key if api_key is None else api_key
        self.model = model or settings.google_ai_image_model
        self.temperature = settings.google_ai_temperature if temperature is None else temperature
        self.timeout_seconds = settings.model_timeout_seconds if timeout_seconds is None else timeout_seconds
        self.max_retries = settings.gateway_max_retries if max_retries is None else max_retries
        self._sleep = sleep

        if self.api_key:
            self.genai_client = genai.Client(api_key=self.api_key)
            if len(self.api_key) > 12:
                logger.info(f"Google AI API Key loaded: {self.api_key[:8]}...{self.api_key[-4:]}")
            logger.info(f"Google GenAI client initialized for {self.model}")
        else:
            self.genai_client = None
            logger.warning("Google AI API key not configured - image editing will not be available")

    def _build_contents(self, instructions: str, image_data: str) -> List[Any]:
        mime_type, _ = split_data_url(image_data.strip())
        image_bytes = decode_base64_image(image_data)
        return [
            instructions,
            types.Part(inline_data=types.Blob(mime_type=mime_type, data=image_bytes)),
        ]

    async def edit_image(self, image_data: str, instructions: str) -> ModelResult:
        """
        Send the source photo and instruction text to the model.

        Transient failures are retried up to max_retries times; if they persist the
        result is Empty carrying the last issue. Non-retryable failures raise
        UpstreamModelError.
        """
        if self.genai_client is None:
            raise UpstreamModelError(
                UpstreamIssue(code="CONFIG_ERROR", message="AI service is not configured.", retryable=False, status=500)
            )

        contents = self._build_contents(instructions, image_data)
        config = types.GenerateContentConfig(
            response_modalities=["TEXT", "IMAGE"],
            temperature=self.temperature,
        )

        def _run_generate():
            """Run the blocking generate_content call in a separate thread"""
            return self.genai_client.models.generate_content(model=self.model, contents=contents, config=config)

        last_issue = None
        total_tries = self.max_retries + 1
        for gateway_try in range(1, total_tries + 1):
            try:
                loop = asyncio.get_event_loop()
                response = await asyncio.wait_for(loop.run_in_executor(None, _run_generate), timeout=self.timeout_seconds)
                result = parse_generation_response(response)
                logger.info(f"Model responded with {type(result).__name__} (gateway try {gateway_try}/{total_tries})")
                return result
            except Exception as e:
                issue = classify_exception(e)
                last_issue = issue
                logger.error(
                    f"Model gateway error on try {gateway_try}/{total_tries}: {issue.code} "
                    f"(status={issue.status}, retryable={issue.retryable}) {str(e)[:240]}"
                )
                if not issue.retryable:
                    raise UpstreamModelError(issue) from e

            if gateway_try < total_tries:
                wait_time = backoff_seconds(gateway_try)
                logger.warning(f"Retrying model call in {wait_time:.2f}s")
                await self._sleep(wait_time)

        return Empty(issue=last_issue)


# Global service instance
gemini_image_service = GeminiImageService()
