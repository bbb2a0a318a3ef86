from __future__ import annotations
"""
Annotation records for a renderer. Nothing here draws pixels.

- build_frame_overlay: outline of the located reference, frame keypoints, highlighted matches
- build_reference_overlay: reference keypoint markers
- build_match_visualization: side-by-side layout (reference left, frame right) with ranked
  point pairs, the top `best_count` emphasized
"""

from dataclasses import dataclass
from enum import Enum
from typing import Tuple

from common.types import DescriptorSet
from locator.results import Found, LocalizationResult, Point


IntPoint = Tuple[int, int]

# Suggested BGRA colors per role.
PALETTE = {
    "outline": (0, 255, 0, 255),
    "keypoint": (255, 0, 0, 255),
    "highlight": (255, 255, 0, 255),
    "line_best": (0, 255, 0, 255),
    "line_good": (0, 255, 255, 255),
    "reference_marker": (0, 0, 255, 255),
    "frame_marker": (255, 255, 0, 255),
    "background": (20, 20, 20, 255),
}


class Emphasis(str, Enum):
    BEST = "best"
    GOOD = "good"


@dataclass(frozen=True, slots=True)
class FrameOverlay:
    outline: Tuple[Point, ...]          # closed polygon, empty when not found
    keypoints: Tuple[Point, ...]
    highlighted: Tuple[Point, ...]

    @property
    def segments(self) -> Tuple[Tuple[Point, Point], ...]:
        n = len(self.outline)
        return tuple((self.outline[i], self.outline[(i + 1) % n]) for i in range(n))


@dataclass(frozen=True, slots=True)
class MatchPair:
    rank: int
    reference_pt: IntPoint
    frame_pt: IntPoint
    distance: float
    emphasis: Emphasis


@dataclass(frozen=True, slots=True)
class MatchVisualization:
    """
    Canvas of `width` x `height`; the reference panel occupies x in [0, reference_size[0]),
    the frame panel starts at `frame_offset_x`. Pair coordinates are canvas pixels.
    """
    width: int
    height: int
    reference_scale: float
    frame_scale: float
    reference_size: IntPoint
    frame_size: IntPoint
    frame_offset_x: int
    pairs: Tuple[MatchPair, ...]


def build_frame_overlay(result: LocalizationResult, highlight_count: int = 30) -> FrameOverlay:
    if not isinstance(result, Found):
        return FrameOverlay(outline=(), keypoints=tuple(result.frame_keypoints), highlighted=())
    outline = tuple((float(x), float(y)) for x, y in result.corners)
    highlighted = tuple((float(x), float(y)) for x, y in result.frame_points[:highlight_count])
    return FrameOverlay(outline=outline, keypoints=tuple(result.frame_keypoints), highlighted=highlighted)


def build_reference_overlay(reference: DescriptorSet) -> Tuple[Point, ...]:
    return tuple(kp.pt for kp in reference.keypoints)


def build_match_visualization(
    found: Found,
    reference_size: Tuple[int, int],
    *,
    target_height: int = 400,
    max_pairs: int = 30,
    best_count: int = 10,
) -> MatchVisualization:
    ref_w, ref_h = int(reference_size[0]), int(reference_size[1])
    frm_w, frm_h = int(found.frame_size[0]), int(found.frame_size[1])
    if min(ref_w, ref_h, frm_w, frm_h) <= 0:
        raise ValueError("reference and frame sizes must be positive")
    if target_height <= 0:
        raise ValueError("target_height must be > 0")

    ref_scale = target_height / float(ref_h)
    frm_scale = target_height / float(frm_h)
    ref_panel = (int(round(ref_w * ref_scale)), target_height)
    frm_panel = (int(round(frm_w * frm_scale)), target_height)
    offset = ref_panel[0]

    pairs = []
    n = min(len(found.matches), max(0, max_pairs))
    for i in range(n):
        rx, ry = found.reference_points[i]
        fx, fy = found.frame_points[i]
        pairs.append(
            MatchPair(
                rank=i,
                reference_pt=(int(round(rx * ref_scale)), int(round(ry * ref_scale))),
                frame_pt=(int(round(fx * frm_scale + offset)), int(round(fy * frm_scale))),
                distance=found.matches[i].distance,
                emphasis=Emphasis.BEST if i < best_count else Emphasis.GOOD,
            )
        )

    return MatchVisualization(
        width=ref_panel[0] + frm_panel[0],
        height=target_height,
        reference_scale=ref_scale,
        frame_scale=frm_scale,
        reference_size=ref_panel,
        frame_size=frm_panel,
        frame_offset_x=offset,
        pairs=tuple(pairs),
    )
