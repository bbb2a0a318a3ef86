from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Tuple, Union

import numpy as np

from common.types import Match


Point = Tuple[float, float]


class NotFoundReason(str, Enum):
    NO_REFERENCE_FEATURES = "no_reference_features"
    NO_FRAME_FEATURES = "no_frame_features"
    INSUFFICIENT_MATCHES = "insufficient_matches"
    NO_HOMOGRAPHY = "no_homography"
    BACKEND_FAULT = "backend_fault"


def _frozen_array(a, dtype) -> np.ndarray:
    out = np.array(a, dtype=dtype, copy=True)
    out.setflags(write=False)
    return out


@dataclass(frozen=True, slots=True)
class NotFound:
    """The reference was not located in this frame (a normal outcome, not an error)."""
    reason: NotFoundReason
    frame_keypoints: Tuple[Point, ...] = ()

    @property
    def found(self) -> bool:
        return False

    def to_dict(self) -> Dict[str, Any]:
        return {"found": False, "reason": self.reason.value, "frame_keypoints": len(self.frame_keypoints)}


@dataclass(frozen=True, slots=True)
class Found:
    """
    Reference located in the frame.

    Attributes:
        corners: (4,2) frame coordinates of the reference's TL, TR, BR, BL corners.
                 Not guaranteed convex; implausible shapes are for the renderer to judge.
        matches: good matches, best first.
        reference_points, frame_points: (N,2) point pairs aligned with `matches`.
        homography: 3x3 reference -> frame transform.
        inliers: RANSAC inlier count.
        rmse_px: reprojection RMSE over inliers (frame pixels).
        frame_size: (width, height) of the frame.
        frame_keypoints: all keypoint locations detected in the frame.
    """
    corners: np.ndarray = field(repr=False)
    matches: Tuple[Match, ...]
    reference_points: np.ndarray = field(repr=False)
    frame_points: np.ndarray = field(repr=False)
    homography: np.ndarray = field(repr=False)
    inliers: int
    rmse_px: float
    frame_size: Tuple[int, int]
    frame_keypoints: Tuple[Point, ...] = field(default=(), repr=False)

    def __post_init__(self) -> None:
        corners = _frozen_array(self.corners, np.float64).reshape(-1, 2)
        if corners.shape != (4, 2):
            raise ValueError("corners must be four 2-D points")
        if len(self.reference_points) != len(self.matches) or len(self.frame_points) != len(self.matches):
            raise ValueError("point pairs must align with matches")
        object.__setattr__(self, "corners", corners)
        object.__setattr__(self, "matches", tuple(self.matches))
        object.__setattr__(self, "reference_points", _frozen_array(self.reference_points, np.float32).reshape(-1, 2))
        object.__setattr__(self, "frame_points", _frozen_array(self.frame_points, np.float32).reshape(-1, 2))
        object.__setattr__(self, "homography", _frozen_array(self.homography, np.float64))

    @property
    def found(self) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "found": True,
            "corners": self.corners.tolist(),
            "matches": len(self.matches),
            "inliers": self.inliers,
            "rmse_px": self.rmse_px,
            "frame_size": list(self.frame_size),
        }


LocalizationResult = Union[Found, NotFound]
