"""
Design generation API routes: layout-locked room photo edits and quota status
"""
import asyncio
import logging

from fastapi import APIRouter, Request

from layoutlock.core import errors
from layoutlock.core.client_identity import assess_suspicious_traffic, get_client_hash, should_apply_suspicious_gate
from layoutlock.core.config import settings
from layoutlock.core.errors import DesignAPIError, invalid_input
from layoutlock.middleware.logging_middleware import ensure_request_id
from layoutlock.schemas.design import (
    DesignGenerationRequest,
    DesignGenerationResponse,
    QuotaStatusResponse,
    normalize_dimension,
    normalize_space_type,
)
from layoutlock.services.design_generation_service import (
    Accepted,
    BestEffort,
    Blocked,
    Exhausted,
    Rejected,
    design_generation_service,
)
from layoutlock.services.design_prompts import build_base_instructions
from layoutlock.services.gemini_image_service import UpstreamIssue, UpstreamModelError
from layoutlock.services.image_sampling import DecodeError, PixelImage, decode_base64_image, decode_image
from layoutlock.services.quota_service import quota_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/design", tags=["design"])


def _client_hash(request: Request) -> str:
    peer_host = request.client.host if request.client else None
    return get_client_hash(request.headers, peer_host, settings.rate_limit_salt)


def _validate_generation_request(body: DesignGenerationRequest):
    """Return (space_type, prompt, width, height) or raise the matching DesignAPIError."""
    if not body.image_base64.strip():
        raise invalid_input("Please upload an image")

    if len(body.image_base64) > settings.max_image_base64_chars:
        raise DesignAPIError(errors.IMAGE_TOO_LARGE, "Image is too large. Please upload a smaller file.", status_code=413)

    space_type = normalize_space_type(body.space_type)
    if space_type is None:
        raise DesignAPIError(
            errors.UNSUPPORTED_SPACE_TYPE,
            f"Unsupported space type '{body.space_type[:40]}'. Choose bathroom, kitchen, laundry or open-plan.",
            status_code=422,
        )

    prompt = body.prompt or ""
    if len(prompt) > settings.max_prompt_chars:
        raise invalid_input(f"Prompt is too long (max {settings.max_prompt_chars} characters)")

    if not prompt and not body.design_style:
        raise invalid_input("Please add your design preferences")

    width = normalize_dimension(body.image_width, settings.max_image_dimension)
    height = normalize_dimension(body.image_height, settings.max_image_dimension)
    return space_type, prompt, width, height


async def _decode_source_image(image_data: str) -> PixelImage:
    try:
        image_bytes = decode_base64_image(image_data)
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, decode_image, image_bytes)
    except DecodeError as e:
        logger.info(f"Source image rejected: {e}")
        raise invalid_input("Could not read the uploaded image. Please upload a JPEG or PNG photo.") from e


def _upstream_error(issue: UpstreamIssue) -> DesignAPIError:
    if issue.code == errors.CONFIG_ERROR:
        return DesignAPIError(errors.CONFIG_ERROR, issue.message, status_code=500)
    if issue.code == errors.BUSY:
        return DesignAPIError(
            errors.BUSY,
            issue.message,
            status_code=503,
            retryable=True,
            retry_after_seconds=issue.retry_after_seconds or 60,
        )
    return DesignAPIError(errors.UPSTREAM_ERROR, issue.message, status_code=502)


async def _enforce_rate_limits(request: Request, client_hash: str) -> None:
    traffic = assess_suspicious_traffic(request.headers)
    if should_apply_suspicious_gate(traffic):
        logger.warning(
            f"Suspicious generate-design traffic: score={traffic.score} reasons={traffic.reasons} client={client_hash[:12]}"
        )
        decision = await quota_service.check_suspicious(client_hash)
        if not decision.allowed:
            raise DesignAPIError(
                errors.RATE_LIMITED,
                "Suspicious traffic limit reached. Please wait and try again later.",
                status_code=429,
                retryable=True,
                retry_after_seconds=decision.retry_after_seconds,
                remaining=decision.remaining,
            )

    decision = await quota_service.check_burst(client_hash)
    if not decision.allowed:
        raise DesignAPIError(
            errors.RATE_LIMITED,
            "Too many generation attempts. Please wait and try again.",
            status_code=429,
            retryable=True,
            retry_after_seconds=decision.retry_after_seconds,
            remaining=decision.remaining,
        )


@router.post("/generate", response_model=DesignGenerationResponse)
async def generate_design(body: DesignGenerationRequest, request: Request):
    """
    Edit a room photo's finishes while keeping its layout.

    The edited image is verified against the source and retried with stricter
    instructions when walls, openings or fixtures moved. Only a returned image
    (accepted or best effort) counts against the daily quota.
    """
    request_id = ensure_request_id()
    space_type, prompt, width, height = _validate_generation_request(body)
    source_image = await _decode_source_image(body.image_base64)

    client_hash = _client_hash(request)
    await _enforce_rate_limits(request, client_hash)

    usage = await quota_service.get_daily_usage(client_hash)
    if usage.limit_reached:
        raise DesignAPIError(
            errors.LIMIT_REACHED,
            f"Daily limit reached. You can generate up to {usage.limit} designs per day. Please try again tomorrow.",
            status_code=429,
            retry_after_seconds=quota_service.seconds_until_daily_reset(),
            remaining=0,
        )

    logger.info(
        f"[{request_id}] generate-design started: client={client_hash[:12]} "
        f"client_request_id={body.client_request_id} space={space_type.value} style={body.design_style} "
        f"prompt_len={len(prompt)} dims={f'{width}x{height}' if width and height else 'unknown'} "
        f"source={source_image.width}x{source_image.height}"
    )

    base_instructions = build_base_instructions(
        space_type.value,
        design_style=body.design_style,
        prompt=prompt,
        color_tone=body.color_tone,
        material_feel=body.material_feel,
        fixture_finish=body.fixture_finish,
        image_width=width,
        image_height=height,
    )

    try:
        outcome = await design_generation_service.generate(source_image, body.image_base64, base_instructions)
    except UpstreamModelError as e:
        raise _upstream_error(e.issue) from e

    if isinstance(outcome, Rejected):
        raise DesignAPIError(
            errors.IMAGE_UNCLEAR,
            "Please upload a clearer photo that shows the full room boundaries.",
            status_code=400,
            retryable=True,
            reason=outcome.reason,
        )

    if isinstance(outcome, Blocked):
        raise DesignAPIError(
            errors.UPSTREAM_BLOCKED,
            f"The AI could not process this image (blocked: {outcome.reason}). Try a different photo.",
            status_code=422,
            reason=outcome.reason,
        )

    if isinstance(outcome, Exhausted):
        if outcome.issue is not None:
            raise _upstream_error(outcome.issue)
        raise DesignAPIError(
            errors.GENERATION_FAILED,
            "I could not generate a stable preview this time. Please try again in about a minute.",
            status_code=503,
            retryable=True,
            retry_after_seconds=60,
        )

    if isinstance(outcome, Accepted):
        layout_warning, reasons, too_subtle = False, [], False
    elif isinstance(outcome, BestEffort):
        layout_warning = outcome.layout_warning
        reasons = [reason.value for reason in outcome.reasons]
        too_subtle = outcome.change_too_subtle
    else:
        raise TypeError(f"Unhandled generation outcome {type(outcome).__name__}")

    new_count = await quota_service.record_generation(client_hash)
    remaining = max(0, usage.limit - new_count) if new_count is not None else 0

    logger.info(
        f"[{request_id}] generate-design success: {type(outcome).__name__} after {len(outcome.attempts)} attempt(s), "
        f"remaining={remaining} warning={layout_warning} reasons={reasons} subtle={too_subtle}"
    )

    return DesignGenerationResponse(
        request_id=request_id,
        image_url=outcome.image_ref,
        description=outcome.description,
        remaining=remaining,
        attempts=len(outcome.attempts),
        layout_warning=layout_warning,
        layout_failure_reasons=reasons,
        change_too_subtle=too_subtle,
    )


@router.get("/quota", response_model=QuotaStatusResponse)
async def get_quota_status(request: Request):
    """Today's remaining generations for the calling client"""
    usage = await quota_service.get_daily_usage(_client_hash(request))
    return QuotaStatusResponse(remaining=usage.remaining, limit=usage.limit, used=usage.used)
