"""
Tests for the layout verification decision.
"""
import numpy as np
import pytest
from PIL import Image

from layoutlock.core.config import GenerationPolicy
from layoutlock.services.layout_verification import FailureReason, LayoutVerifier, VerificationMetrics, decide
from layoutlock.tests.conftest import brighten, draw_room, to_pixel_image


def make_metrics(**overrides) -> VerificationMetrics:
    values = dict(
        direct_edge_similarity=0.95,
        aligned_edge_similarity=0.95,
        shift=(0, 0),
        shift_magnitude=0.0,
        anchor_consistency=0.9,
        boundary_consistency=0.9,
        change_intensity=25.0,
    )
    values.update(overrides)
    return VerificationMetrics(**values)


class TestDecide:
    def test_good_metrics_pass(self, policy):
        decision = decide(make_metrics(), policy)

        assert decision.passed
        assert decision.reasons == []
        assert not decision.change_too_subtle
        assert decision.acceptable

    @pytest.mark.parametrize(
        "overrides,reason",
        [
            ({"aligned_edge_similarity": 0.83}, FailureReason.STRUCTURAL_EDGES_CHANGED),
            ({"shift_magnitude": 2.3}, FailureReason.CAMERA_OR_GEOMETRY_SHIFTED),
            ({"anchor_consistency": 0.55}, FailureReason.FIXTURES_OR_OPENINGS_MOVED),
            ({"boundary_consistency": 0.6}, FailureReason.ROOM_BOUNDARIES_EXPANDED_OR_COMPRESSED),
        ],
    )
    def test_each_threshold_fires_its_reason(self, policy, overrides, reason):
        decision = decide(make_metrics(**overrides), policy)

        assert decision.reasons == [reason]
        assert not decision.passed

    def test_small_shift_with_strong_structure_is_accepted(self, policy):
        decision = decide(
            make_metrics(
                direct_edge_similarity=0.9,
                aligned_edge_similarity=0.93,
                shift=(1, 0),
                shift_magnitude=1.0,
                anchor_consistency=0.91,
                boundary_consistency=0.95,
                change_intensity=34.0,
            ),
            policy,
        )

        assert decision.passed
        assert decision.reasons == []
        assert not decision.change_too_subtle
        assert decision.acceptable

    def test_thresholds_are_inclusive_on_the_passing_side(self, policy):
        decision = decide(
            make_metrics(
                aligned_edge_similarity=0.84,
                shift_magnitude=2.2,
                anchor_consistency=0.56,
                boundary_consistency=0.68,
            ),
            policy,
        )

        assert decision.passed

    def test_reasons_are_reported_in_fixed_order(self, policy):
        decision = decide(
            make_metrics(
                boundary_consistency=0.1,
                anchor_consistency=0.1,
                shift_magnitude=4.0,
                aligned_edge_similarity=0.1,
            ),
            policy,
        )

        assert [r.value for r in decision.reasons] == [
            "structural_edges_changed",
            "camera_or_geometry_shifted",
            "fixtures_or_openings_moved",
            "room_boundaries_expanded_or_compressed",
        ]

    def test_subtle_change_does_not_fail_layout(self, policy):
        decision = decide(make_metrics(change_intensity=9.9), policy)

        assert decision.passed
        assert decision.change_too_subtle
        assert not decision.acceptable

    def test_custom_thresholds_are_used(self):
        strict = GenerationPolicy(min_aligned_edge_similarity=0.99)

        assert decide(make_metrics(), strict).reasons == [FailureReason.STRUCTURAL_EDGES_CHANGED]


class TestLayoutVerifier:
    def test_identical_images_pass_but_are_too_subtle(self, policy, room_image):
        decision = LayoutVerifier(policy).verify(room_image, room_image)
        metrics = decision.metrics

        assert metrics.aligned_edge_similarity == 1.0
        assert metrics.shift == (0, 0)
        assert metrics.anchor_consistency == 1.0
        assert metrics.boundary_consistency == 1.0
        assert metrics.change_intensity == 0.0
        assert decision.passed
        assert decision.change_too_subtle

    def test_refinished_room_is_acceptable(self, policy, room_pixels):
        decision = LayoutVerifier(policy).verify(to_pixel_image(room_pixels), to_pixel_image(brighten(room_pixels, -40)))

        assert decision.acceptable
        assert decision.metrics.change_intensity >= policy.min_change_intensity

    def test_larger_photos_are_sampled_to_the_same_grid(self, policy):
        small = draw_room()
        large = draw_room(size=256)

        decision = LayoutVerifier(policy).verify(to_pixel_image(small), to_pixel_image(large))

        assert decision.metrics.aligned_edge_similarity > 0.9
        assert decision.metrics.anchor_count > 0

    def test_lost_structure_fails(self, policy, room_image):
        flat = to_pixel_image(np.full((64, 64, 3), 128, dtype=np.uint8))

        decision = LayoutVerifier(policy).verify(room_image, flat)

        assert not decision.passed
        assert FailureReason.FIXTURES_OR_OPENINGS_MOVED in decision.reasons

    def test_camera_shift_fails(self, policy, room_pixels):
        shifted = np.roll(room_pixels, shift=(3, 3), axis=(0, 1))

        decision = LayoutVerifier(policy).verify(to_pixel_image(room_pixels), to_pixel_image(shifted))

        assert decision.metrics.shift == (3, 3)
        assert FailureReason.CAMERA_OR_GEOMETRY_SHIFTED in decision.reasons

    def test_refinished_portrait_photo_is_acceptable(self, policy):
        # 1000 wide, 1500 high
        portrait = np.asarray(Image.fromarray(draw_room(size=200)).resize((1000, 1500), Image.NEAREST))

        decision = LayoutVerifier(policy).verify(to_pixel_image(portrait), to_pixel_image(brighten(portrait, -40)))

        assert decision.reasons == []
        assert not decision.change_too_subtle
        assert decision.acceptable
