"""
Structural comparison metrics between an input photo and an edited output.

All functions work on small square grids produced by image_sampling and return
plain floats or immutable arrays. They are deterministic and CPU-bound.
"""
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np

from layoutlock.services.image_sampling import PixelImage, sample_rgb

# Largest per-cell edge difference: two 8-bit luma deltas summed
MAX_EDGE_DIFFERENCE = 510.0

NOT_FOUND = -1


@dataclass(frozen=True)
class Anchor:
    """A strong, isolated structural edge point on the input grid."""

    x: int
    y: int
    strength: float


@dataclass(frozen=True)
class AlignmentResult:
    dx: int
    dy: int
    similarity: float
    direct_similarity: float

    @property
    def shift_magnitude(self) -> float:
        return float(np.hypot(self.dx, self.dy))


@dataclass(frozen=True)
class BoundaryProfile:
    """Per-scanline first/last strong-edge index; NOT_FOUND when a line has none."""

    left: np.ndarray
    right: np.ndarray
    top: np.ndarray
    bottom: np.ndarray

    @property
    def widths(self) -> np.ndarray:
        return np.where(self.left != NOT_FOUND, self.right - self.left, NOT_FOUND)

    @property
    def heights(self) -> np.ndarray:
        return np.where(self.top != NOT_FOUND, self.bottom - self.top, NOT_FOUND)


def _clamp01(value: float) -> float:
    return float(min(1.0, max(0.0, value)))


def _require_square(grid: np.ndarray, name: str) -> None:
    if grid.ndim != 2 or grid.shape[0] == 0 or grid.shape[0] != grid.shape[1]:
        raise ValueError(f"{name} must be a non-empty square grid, got shape {grid.shape}")


def build_edge_map(luma: np.ndarray) -> np.ndarray:
    """Gradient magnitude |L(x,y)-L(x-1,y)| + |L(x,y)-L(x,y-1)|; first row/column are zero."""
    _require_square(luma, "Luma grid")

    edges = np.zeros_like(luma, dtype=np.float64)
    horizontal = np.abs(luma[1:, 1:] - luma[1:, :-1])
    vertical = np.abs(luma[1:, 1:] - luma[:-1, 1:])
    edges[1:, 1:] = horizontal + vertical
    edges.setflags(write=False)
    return edges


def edge_similarity(input_edges: np.ndarray, output_edges: np.ndarray, dx: int = 0, dy: int = 0) -> float:
    """1 - mean |Ein(x,y) - Eout(x+dx,y+dy)| / 510 over the overlapping cells."""
    if input_edges.shape != output_edges.shape:
        raise ValueError(f"Edge grids differ in shape: {input_edges.shape} vs {output_edges.shape}")

    n = input_edges.shape[0]
    x0, x1 = max(0, -dx), min(n, n - dx)
    y0, y1 = max(0, -dy), min(n, n - dy)
    if x1 <= x0 or y1 <= y0:
        return 0.0

    a = input_edges[y0:y1, x0:x1]
    b = output_edges[y0 + dy : y1 + dy, x0 + dx : x1 + dx]
    return _clamp01(1.0 - float(np.mean(np.abs(a - b))) / MAX_EDGE_DIFFERENCE)


def find_best_alignment(input_edges: np.ndarray, output_edges: np.ndarray, max_shift: int) -> AlignmentResult:
    """Search integer shifts in [-max_shift, max_shift]^2; keep (0, 0) unless a shift strictly improves it."""
    _require_square(input_edges, "Input edge grid")
    _require_square(output_edges, "Output edge grid")

    direct = edge_similarity(input_edges, output_edges)
    best_dx, best_dy, best = 0, 0, direct

    for dy in range(-max_shift, max_shift + 1):
        for dx in range(-max_shift, max_shift + 1):
            if dx == 0 and dy == 0:
                continue
            similarity = edge_similarity(input_edges, output_edges, dx, dy)
            if similarity > best:
                best_dx, best_dy, best = dx, dy, similarity

    return AlignmentResult(dx=best_dx, dy=best_dy, similarity=best, direct_similarity=direct)


def select_anchors(edges: np.ndarray, strength_floor: float, max_count: int, min_separation: int) -> List[Anchor]:
    """Strongest edge cells above the floor, greedily thinned to a minimum spacing."""
    _require_square(edges, "Edge grid")

    ys, xs = np.nonzero(edges > strength_floor)
    if len(ys) == 0:
        return []

    strengths = edges[ys, xs]
    order = np.argsort(-strengths, kind="stable")

    anchors: List[Anchor] = []
    min_distance_sq = min_separation * min_separation
    for idx in order:
        x, y = int(xs[idx]), int(ys[idx])
        if any((a.x - x) ** 2 + (a.y - y) ** 2 < min_distance_sq for a in anchors):
            continue
        anchors.append(Anchor(x=x, y=y, strength=float(strengths[idx])))
        if len(anchors) >= max_count:
            break

    return anchors


def anchor_consistency(
    input_edges: np.ndarray,
    output_edges: np.ndarray,
    strength_floor: float,
    max_count: int,
    min_separation: int,
    search_radius: int,
) -> Tuple[float, List[Anchor]]:
    """Mean of (strongest nearby output edge / anchor strength), each clamped to [0, 1]."""
    if input_edges.shape != output_edges.shape:
        raise ValueError(f"Edge grids differ in shape: {input_edges.shape} vs {output_edges.shape}")

    anchors = select_anchors(input_edges, strength_floor, max_count, min_separation)
    if not anchors:
        return 1.0, anchors

    n = output_edges.shape[0]
    ratios = []
    for anchor in anchors:
        y0, y1 = max(0, anchor.y - search_radius), min(n, anchor.y + search_radius + 1)
        x0, x1 = max(0, anchor.x - search_radius), min(n, anchor.x + search_radius + 1)
        nearby = float(output_edges[y0:y1, x0:x1].max())
        ratios.append(_clamp01(nearby / anchor.strength))

    return float(np.mean(ratios)), anchors


def edge_presence_threshold(edges: np.ndarray, std_factor: float) -> float:
    return float(edges.mean() + std_factor * edges.std())


def _first_and_last(mask: np.ndarray, axis: int) -> Tuple[np.ndarray, np.ndarray]:
    present = mask.any(axis=axis)
    size = mask.shape[axis]
    first = np.argmax(mask, axis=axis)
    last = size - 1 - np.argmax(np.flip(mask, axis=axis), axis=axis)
    first = np.where(present, first, NOT_FOUND).astype(np.int64)
    last = np.where(present, last, NOT_FOUND).astype(np.int64)
    return first, last


def build_boundary_profile(edges: np.ndarray, threshold: float) -> BoundaryProfile:
    _require_square(edges, "Edge grid")

    mask = edges > threshold
    left, right = _first_and_last(mask, axis=1)  # per row
    top, bottom = _first_and_last(mask, axis=0)  # per column
    for arr in (left, right, top, bottom):
        arr.setflags(write=False)
    return BoundaryProfile(left=left, right=right, top=top, bottom=bottom)


def _normalized_mean_difference(a: np.ndarray, b: np.ndarray, size: int):
    valid = (a != NOT_FOUND) & (b != NOT_FOUND)
    if not valid.any():
        return None
    return float(np.mean(np.abs(a[valid] - b[valid]))) / size


def compare_boundary_profiles(input_profile: BoundaryProfile, output_profile: BoundaryProfile, penalty: float) -> float:
    """Similarity of two silhouette profiles; only lines valid on both sides count."""
    size = len(input_profile.left)
    pairs = (
        (input_profile.left, output_profile.left),
        (input_profile.right, output_profile.right),
        (input_profile.top, output_profile.top),
        (input_profile.bottom, output_profile.bottom),
        (input_profile.widths, output_profile.widths),
        (input_profile.heights, output_profile.heights),
    )

    differences = [d for d in (_normalized_mean_difference(a, b, size) for a, b in pairs) if d is not None]
    if not differences:
        return 1.0

    return _clamp01(1.0 - float(np.mean(differences)) * penalty)


def boundary_consistency(input_edges: np.ndarray, output_edges: np.ndarray, std_factor: float, penalty: float) -> float:
    # Each grid gets its own threshold since absolute edge strength tracks contrast
    input_profile = build_boundary_profile(input_edges, edge_presence_threshold(input_edges, std_factor))
    output_profile = build_boundary_profile(output_edges, edge_presence_threshold(output_edges, std_factor))
    return compare_boundary_profiles(input_profile, output_profile, penalty)


def change_intensity(input_image: PixelImage, output_image: PixelImage, resolution: int) -> float:
    """Mean of (|dr| + |dg| + |db|) / 3 over the sampled grid, on a 0-255 scale."""
    a = sample_rgb(input_image, resolution)
    b = sample_rgb(output_image, resolution)
    return float(np.mean(np.abs(a - b).sum(axis=2) / 3.0))
