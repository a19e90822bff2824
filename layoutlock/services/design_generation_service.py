"""
Generate / verify / retry loop for layout-locked room edits.

Each attempt sends the source photo with escalating instructions, verifies the
edited image against the source, and either accepts it or tries again. When
attempts run out the last edited image is returned as a best effort, with the
reasons it failed verification.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Union

from layoutlock.core.config import GenerationPolicy, settings
from layoutlock.middleware.logging_middleware import get_logger
from layoutlock.services import gemini_image_service as gemini
from layoutlock.services.design_prompts import build_attempt_instructions
from layoutlock.services.image_sampling import PixelImage, load_image_reference
from layoutlock.services.layout_verification import FailureReason, LayoutVerifier, VerificationDecision

logger = get_logger(__name__)


@dataclass(frozen=True)
class GenerationAttempt:
    number: int
    instructions: str
    result: gemini.ModelResult
    decision: Optional[VerificationDecision] = None

    @property
    def image_ref(self) -> Optional[str]:
        return self.result.image_ref if isinstance(self.result, gemini.EditedImage) else None

    @property
    def inconclusive(self) -> bool:
        """An image came back but could not be verified."""
        return self.image_ref is not None and self.decision is None

    @property
    def reasons(self) -> List[FailureReason]:
        return list(self.decision.reasons) if self.decision else []


@dataclass(frozen=True)
class Accepted:
    image_ref: str
    description: str
    attempts: List[GenerationAttempt] = field(default_factory=list)


@dataclass(frozen=True)
class BestEffort:
    image_ref: str
    description: str
    reasons: List[FailureReason]
    change_too_subtle: bool
    inconclusive: bool = False
    attempts: List[GenerationAttempt] = field(default_factory=list)

    @property
    def layout_warning(self) -> bool:
        return bool(self.reasons) or self.inconclusive


@dataclass(frozen=True)
class Rejected:
    """The model asked for a clearer photo."""

    reason: Optional[str]
    attempts: List[GenerationAttempt] = field(default_factory=list)


@dataclass(frozen=True)
class Blocked:
    """The model's safety filter stopped the request."""

    reason: str
    attempts: List[GenerationAttempt] = field(default_factory=list)


@dataclass(frozen=True)
class Exhausted:
    """No attempt produced an image."""

    issue: Optional[gemini.UpstreamIssue] = None
    attempts: List[GenerationAttempt] = field(default_factory=list)


GenerationOutcome = Union[Accepted, BestEffort, Rejected, Blocked, Exhausted]

ImageLoader = Callable[[str, float], Awaitable[PixelImage]]


class DesignGenerationService:
    """Runs up to policy.max_attempts model calls for one request, strictly in sequence."""

    def __init__(
        self,
        model_client: gemini.GeminiImageService,
        policy: GenerationPolicy,
        verifier: Optional[LayoutVerifier] = None,
        image_loader: ImageLoader = load_image_reference,
    ):
        self.model_client = model_client
        self.policy = policy
        self.verifier = verifier or LayoutVerifier(policy)
        self.image_loader = image_loader

    async def _verify(self, source_image: PixelImage, image_ref: str, attempt: int) -> Optional[VerificationDecision]:
        try:
            output_image = await self.image_loader(image_ref, self.policy.image_fetch_timeout_seconds)
            loop = asyncio.get_event_loop()
            return await loop.run_in_executor(None, self.verifier.verify, source_image, output_image)
        except Exception as e:
            logger.warning(f"Attempt {attempt}: layout verification inconclusive ({type(e).__name__}: {e})")
            return None

    async def generate(self, source_image: PixelImage, source_data: str, base_instructions: str) -> GenerationOutcome:
        """
        Run the attempt loop for one request.

        Args:
            source_image: Decoded source photo used for verification
            source_data: The source photo as sent by the client (data URL or base64)
            base_instructions: Request-specific instructions before escalation

        Raises:
            UpstreamModelError: the model gateway failed in a way retrying will not fix,
                before any attempt produced an image
        """
        max_attempts = self.policy.max_attempts
        attempts: List[GenerationAttempt] = []
        last_with_image: Optional[GenerationAttempt] = None
        last_issue = None

        for number in range(1, max_attempts + 1):
            instructions = build_attempt_instructions(base_instructions, number, max_attempts)
            logger.info(f"Generation attempt {number}/{max_attempts} ({len(instructions)} chars of instructions)")

            try:
                result = await self.model_client.edit_image(source_data, instructions)
            except gemini.UpstreamModelError as e:
                if last_with_image is None:
                    raise
                logger.warning(
                    f"Attempt {number}: model gateway failed ({e.issue.code}: {e.issue.message}); "
                    f"falling back to attempt {last_with_image.number}"
                )
                return self._best_effort(last_with_image, attempts)

            if isinstance(result, gemini.Refused):
                attempts.append(GenerationAttempt(number, instructions, result))
                logger.info(f"Attempt {number}: model asked for a clearer photo ({result.reason})")
                return Rejected(reason=result.reason, attempts=attempts)

            if isinstance(result, gemini.Blocked):
                attempts.append(GenerationAttempt(number, instructions, result))
                logger.warning(f"Attempt {number}: model blocked the request ({result.reason})")
                return Blocked(reason=result.reason, attempts=attempts)

            if isinstance(result, gemini.Empty):
                attempts.append(GenerationAttempt(number, instructions, result))
                last_issue = result.issue or last_issue
                logger.warning(f"Attempt {number}: no image returned")
                continue

            decision = await self._verify(source_image, result.image_ref, number)
            attempt = GenerationAttempt(number, instructions, result, decision)
            attempts.append(attempt)
            last_with_image = attempt

            if decision is not None and decision.acceptable:
                logger.info(f"Attempt {number}: layout verified, accepting ({decision.metrics.summary()})")
                return Accepted(image_ref=result.image_ref, description=result.text, attempts=attempts)

            if decision is not None:
                logger.info(
                    f"Attempt {number}: rejected by verification reasons={[r.value for r in decision.reasons]} "
                    f"subtle={decision.change_too_subtle} ({decision.metrics.summary()})"
                )

        if last_with_image is None:
            logger.warning(f"All {max_attempts} attempts finished without an image")
            return Exhausted(issue=last_issue, attempts=attempts)

        logger.info(f"Attempts exhausted; returning attempt {last_with_image.number} as best effort")
        return self._best_effort(last_with_image, attempts)

    @staticmethod
    def _best_effort(last_with_image: GenerationAttempt, attempts: List[GenerationAttempt]) -> BestEffort:
        decision = last_with_image.decision
        return BestEffort(
            image_ref=last_with_image.image_ref,
            description=last_with_image.result.text,
            reasons=last_with_image.reasons,
            change_too_subtle=decision.change_too_subtle if decision else False,
            inconclusive=last_with_image.inconclusive,
            attempts=attempts,
        )


# Global service instance
design_generation_service = DesignGenerationService(
    gemini.gemini_image_service,
    GenerationPolicy.from_settings(settings),
)
