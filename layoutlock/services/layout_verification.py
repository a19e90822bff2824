"""
Layout verification: compares an edited room photo against its source and
decides whether walls, openings, fixtures and camera framing survived.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Tuple

from layoutlock.core.config import GenerationPolicy
from layoutlock.services import structure_metrics
from layoutlock.services.image_sampling import PixelImage, sample_luma

logger = logging.getLogger(__name__)


class FailureReason(str, Enum):
    """Why an edited image was judged to have broken the room layout."""

    STRUCTURAL_EDGES_CHANGED = "structural_edges_changed"
    CAMERA_OR_GEOMETRY_SHIFTED = "camera_or_geometry_shifted"
    FIXTURES_OR_OPENINGS_MOVED = "fixtures_or_openings_moved"
    ROOM_BOUNDARIES_EXPANDED_OR_COMPRESSED = "room_boundaries_expanded_or_compressed"


@dataclass(frozen=True)
class VerificationMetrics:
    direct_edge_similarity: float
    aligned_edge_similarity: float
    shift: Tuple[int, int]
    shift_magnitude: float
    anchor_consistency: float
    boundary_consistency: float
    change_intensity: float
    anchor_count: int = 0

    def summary(self) -> str:
        return (
            f"edges={self.aligned_edge_similarity:.3f} (direct {self.direct_edge_similarity:.3f}) "
            f"shift={self.shift} |{self.shift_magnitude:.2f}| anchors={self.anchor_consistency:.3f}/{self.anchor_count} "
            f"boundary={self.boundary_consistency:.3f} change={self.change_intensity:.1f}"
        )


@dataclass(frozen=True)
class VerificationDecision:
    metrics: VerificationMetrics
    reasons: List[FailureReason] = field(default_factory=list)
    change_too_subtle: bool = False

    @property
    def passed(self) -> bool:
        return not self.reasons

    @property
    def acceptable(self) -> bool:
        """Layout held and the edit is visible enough to show as-is."""
        return self.passed and not self.change_too_subtle


def decide(metrics: VerificationMetrics, policy: GenerationPolicy) -> VerificationDecision:
    """Apply the thresholds; reasons are always reported in the same order."""
    reasons = []
    if metrics.aligned_edge_similarity < policy.min_aligned_edge_similarity:
        reasons.append(FailureReason.STRUCTURAL_EDGES_CHANGED)
    if metrics.shift_magnitude > policy.max_shift_magnitude:
        reasons.append(FailureReason.CAMERA_OR_GEOMETRY_SHIFTED)
    if metrics.anchor_consistency < policy.min_anchor_consistency:
        reasons.append(FailureReason.FIXTURES_OR_OPENINGS_MOVED)
    if metrics.boundary_consistency < policy.min_boundary_consistency:
        reasons.append(FailureReason.ROOM_BOUNDARIES_EXPANDED_OR_COMPRESSED)

    return VerificationDecision(
        metrics=metrics,
        reasons=reasons,
        change_too_subtle=metrics.change_intensity < policy.min_change_intensity,
    )


class LayoutVerifier:
    """Scores an (input, output) photo pair against a GenerationPolicy."""

    def __init__(self, policy: GenerationPolicy):
        self.policy = policy

    def measure(self, input_image: PixelImage, output_image: PixelImage) -> VerificationMetrics:
        policy = self.policy
        n = policy.sample_resolution

        input_edges = structure_metrics.build_edge_map(sample_luma(input_image, n))
        output_edges = structure_metrics.build_edge_map(sample_luma(output_image, n))

        alignment = structure_metrics.find_best_alignment(input_edges, output_edges, policy.max_shift_radius)
        anchor_score, anchors = structure_metrics.anchor_consistency(
            input_edges,
            output_edges,
            strength_floor=policy.anchor_strength_floor,
            max_count=policy.anchor_max_count,
            min_separation=policy.anchor_min_separation,
            search_radius=policy.anchor_search_radius,
        )
        boundary_score = structure_metrics.boundary_consistency(
            input_edges,
            output_edges,
            std_factor=policy.boundary_std_factor,
            penalty=policy.boundary_penalty,
        )

        return VerificationMetrics(
            direct_edge_similarity=alignment.direct_similarity,
            aligned_edge_similarity=alignment.similarity,
            shift=(alignment.dx, alignment.dy),
            shift_magnitude=alignment.shift_magnitude,
            anchor_consistency=anchor_score,
            boundary_consistency=boundary_score,
            change_intensity=structure_metrics.change_intensity(input_image, output_image, n),
            anchor_count=len(anchors),
        )

    def verify(self, input_image: PixelImage, output_image: PixelImage) -> VerificationDecision:
        metrics = self.measure(input_image, output_image)
        decision = decide(metrics, self.policy)
        logger.debug(
            f"Layout verification {'passed' if decision.passed else 'failed'}: {metrics.summary()} "
            f"reasons={[r.value for r in decision.reasons]} subtle={decision.change_too_subtle}"
        )
        return decision
