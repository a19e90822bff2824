"""
Tests for the structural comparison metrics.

The synthetic rooms are drawn directly on a 64x64 grid so that sampling is the
identity and every expected value can be reasoned about cell by cell.
"""
import numpy as np
import pytest

from layoutlock.services import structure_metrics
from layoutlock.services.image_sampling import sample_luma
from layoutlock.services.structure_metrics import (
    NOT_FOUND,
    anchor_consistency,
    boundary_consistency,
    build_boundary_profile,
    build_edge_map,
    change_intensity,
    edge_similarity,
    find_best_alignment,
    select_anchors,
)
from layoutlock.tests.conftest import WALL, brighten, draw_room, to_pixel_image


def edges_of(pixels: np.ndarray) -> np.ndarray:
    return build_edge_map(sample_luma(to_pixel_image(pixels), 64))


def anchor_score(input_edges, output_edges, policy):
    score, _ = anchor_consistency(
        input_edges,
        output_edges,
        strength_floor=policy.anchor_strength_floor,
        max_count=policy.anchor_max_count,
        min_separation=policy.anchor_min_separation,
        search_radius=policy.anchor_search_radius,
    )
    return score


class TestEdgeMap:
    def test_gradient_magnitude(self):
        luma = np.array(
            [
                [0.0, 0.0, 0.0],
                [0.0, 10.0, 10.0],
                [0.0, 10.0, 30.0],
            ]
        )

        edges = build_edge_map(luma)

        assert edges[0].tolist() == [0.0, 0.0, 0.0]
        assert edges[:, 0].tolist() == [0.0, 0.0, 0.0]
        assert edges[1, 1] == 20.0  # |10-0| + |10-0|
        assert edges[1, 2] == 10.0  # |10-10| + |10-0|
        assert edges[2, 2] == 40.0  # |30-10| + |30-10|

    def test_edges_are_non_negative_and_read_only(self, room_pixels):
        edges = edges_of(room_pixels)

        assert edges.min() >= 0
        with pytest.raises(ValueError):
            edges[1, 1] = 0

    @pytest.mark.parametrize("shape", [(0, 0), (4, 5), (4,)])
    def test_non_square_grids_rejected(self, shape):
        with pytest.raises(ValueError):
            build_edge_map(np.zeros(shape))


class TestAlignment:
    def test_identical_grids(self, room_pixels):
        edges = edges_of(room_pixels)

        result = find_best_alignment(edges, edges, max_shift=4)

        assert (result.dx, result.dy) == (0, 0)
        assert result.similarity == 1.0
        assert result.direct_similarity == 1.0

    @pytest.mark.parametrize("dx,dy", [(1, 0), (0, -2), (3, 2), (-4, 4), (-2, -3)])
    def test_translation_is_recovered_exactly(self, room_pixels, dx, dy):
        shifted = np.roll(room_pixels, shift=(dy, dx), axis=(0, 1))

        result = find_best_alignment(edges_of(room_pixels), edges_of(shifted), max_shift=4)

        assert (result.dx, result.dy) == (dx, dy)
        assert result.similarity == pytest.approx(1.0)
        assert result.similarity >= result.direct_similarity
        assert result.shift_magnitude == pytest.approx(np.hypot(dx, dy))

    def test_flat_output_keeps_zero_shift(self):
        flat = np.zeros((64, 64))

        result = find_best_alignment(flat, flat, max_shift=4)

        assert (result.dx, result.dy) == (0, 0)

    def test_similarity_stays_in_unit_range(self):
        strong = np.full((8, 8), 510.0)
        weak = np.zeros((8, 8))

        assert edge_similarity(strong, weak) == 0.0
        assert 0.0 <= find_best_alignment(strong, weak, max_shift=2).similarity <= 1.0

    def test_mismatched_shapes_rejected(self):
        with pytest.raises(ValueError):
            edge_similarity(np.zeros((4, 4)), np.zeros((5, 5)))


class TestAnchors:
    def test_anchors_respect_floor_count_and_separation(self, room_pixels, policy):
        edges = edges_of(room_pixels)

        anchors = select_anchors(edges, policy.anchor_strength_floor, policy.anchor_max_count, policy.anchor_min_separation)

        assert 0 < len(anchors) <= policy.anchor_max_count
        assert all(a.strength > policy.anchor_strength_floor for a in anchors)
        strengths = [a.strength for a in anchors]
        assert strengths == sorted(strengths, reverse=True)
        for i, a in enumerate(anchors):
            for b in anchors[i + 1 :]:
                assert np.hypot(a.x - b.x, a.y - b.y) >= policy.anchor_min_separation

    def test_max_count_is_honoured(self):
        edges = np.zeros((64, 64))
        edges[1::8, 1::8] = 100.0  # 64 well separated peaks

        assert len(select_anchors(edges, 18.0, 24, 4)) == 24

    def test_identical_images_score_one(self, room_pixels, policy):
        edges = edges_of(room_pixels)

        assert anchor_score(edges, edges, policy) == 1.0

    def test_no_qualifying_anchor_scores_one(self, policy):
        faint = np.full((64, 64), 5.0)

        score, anchors = anchor_consistency(faint, np.zeros((64, 64)), 18.0, 24, 4, 2)

        assert anchors == []
        assert score == 1.0

    def test_invariant_to_uniform_brightening(self, room_pixels, policy):
        input_edges = edges_of(room_pixels)
        brightened_edges = edges_of(brighten(room_pixels, 30))

        assert anchor_score(input_edges, brightened_edges, policy) == pytest.approx(anchor_score(input_edges, input_edges, policy))

    def test_removed_structure_scores_zero(self, room_pixels, policy):
        flat = np.full_like(room_pixels, WALL)

        assert anchor_score(edges_of(room_pixels), edges_of(flat), policy) == 0.0

    def test_small_local_shift_is_tolerated(self, room_pixels, policy):
        nudged = np.roll(room_pixels, shift=(1, 1), axis=(0, 1))

        assert anchor_score(edges_of(room_pixels), edges_of(nudged), policy) == pytest.approx(1.0)


class TestBoundary:
    def test_profile_marks_empty_scanlines_not_found(self):
        edges = np.zeros((8, 8))
        edges[2, 3] = 50.0
        edges[2, 6] = 50.0

        profile = build_boundary_profile(edges, threshold=10.0)

        assert profile.left[2] == 3 and profile.right[2] == 6
        assert profile.left[0] == NOT_FOUND and profile.right[0] == NOT_FOUND
        assert profile.top[3] == 2 and profile.bottom[3] == 2
        assert profile.widths[2] == 3
        assert profile.widths[0] == NOT_FOUND

    def test_identical_images_score_one(self, room_pixels, policy):
        edges = edges_of(room_pixels)

        assert boundary_consistency(edges, edges, policy.boundary_std_factor, policy.boundary_penalty) == 1.0

    def test_no_comparable_scanlines_scores_one(self, room_pixels, policy):
        flat = np.zeros((64, 64))

        assert boundary_consistency(edges_of(room_pixels), flat, policy.boundary_std_factor, policy.boundary_penalty) == 1.0

    def test_strictly_decreases_as_walls_stretch(self, policy):
        input_edges = edges_of(draw_room())

        scores = [
            boundary_consistency(
                input_edges, edges_of(draw_room(stretch=stretch)), policy.boundary_std_factor, policy.boundary_penalty
            )
            for stretch in (0, 2, 4, 6, 8)
        ]

        assert scores[0] == 1.0
        assert all(later < earlier for earlier, later in zip(scores, scores[1:]))
        assert all(0.0 <= s <= 1.0 for s in scores)


class TestChangeIntensity:
    def test_identical_images_have_zero_change(self, room_image):
        assert change_intensity(room_image, room_image, 64) == 0.0

    def test_uniform_shift_is_mean_channel_difference(self):
        a = to_pixel_image(np.full((32, 48, 3), 100, dtype=np.uint8))
        b = to_pixel_image(np.full((32, 48, 3), 130, dtype=np.uint8))

        assert change_intensity(a, b, 64) == pytest.approx(30.0)

    def test_single_channel_change_is_averaged_over_channels(self):
        pixels = np.full((16, 16, 3), 100, dtype=np.uint8)
        changed = pixels.copy()
        changed[..., 2] = 160

        assert change_intensity(to_pixel_image(pixels), to_pixel_image(changed), 16) == pytest.approx(20.0)

    def test_module_exposes_not_found_sentinel(self):
        assert structure_metrics.NOT_FOUND == -1
