from __future__ import annotations
"""
Geometric verification: reference -> frame homography with RANSAC, plus corner projection.
"""

from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from common.utils import to_numpy_3x3
from locator.config import HomographyConfig


# Smallest/largest singular value ratio below which a point set counts as collinear.
_DEGENERATE_SV_RATIO = 1e-6
_MIN_ABS_DET = 1e-12


@dataclass
class HomographyResult:
    H: Optional[np.ndarray]
    inlier_mask: np.ndarray
    rmse_px: float
    inliers: int
    total: int

    @property
    def ok(self) -> bool:
        return self.H is not None


def _as_points(pts) -> np.ndarray:
    a = np.asarray(pts, dtype=np.float32)
    if a.size == 0:
        return np.zeros((0, 2), dtype=np.float32)
    return a.reshape(-1, 2)


def is_degenerate(pts: np.ndarray) -> bool:
    """True when the points are coincident or all on one line."""
    if len(pts) < 3:
        return True
    centered = pts.astype(np.float64) - pts.astype(np.float64).mean(axis=0)
    sv = np.linalg.svd(centered, compute_uv=False)
    if sv[0] <= 1e-9:
        return True
    return bool(sv[-1] / sv[0] < _DEGENERATE_SV_RATIO)


def reference_corners(width: int, height: int) -> np.ndarray:
    """Reference image outline: top-left, top-right, bottom-right, bottom-left."""
    w, h = float(width), float(height)
    return np.float32([[0.0, 0.0], [w, 0.0], [w, h], [0.0, h]])


def project_points(H: np.ndarray, pts) -> np.ndarray:
    """Apply H to (N,2) points; returns (N,2) float64."""
    src = _as_points(pts).reshape(-1, 1, 2)
    if len(src) == 0:
        return np.zeros((0, 2), dtype=np.float64)
    return cv2.perspectiveTransform(src.astype(np.float64), np.asarray(H, dtype=np.float64)).reshape(-1, 2)


class HomographyEstimator:
    """
    Fits H: reference -> frame from matched point pairs.

    robust=True runs OpenCV's USAC RANSAC with `ransac_px` inlier threshold. Sampling is
    driven by `seed` (UsacParams.randomGeneratorState), so equal seeds give identical fits
    and the process-wide cv2 RNG is left alone. robust=False is a plain least-squares fit
    over all pairs. Degenerate inputs return no homography rather than raising.
    """

    def __init__(
        self,
        ransac_px: float = 5.0,
        max_iters: int = 2000,
        confidence: float = 0.995,
        robust: bool = True,
        seed: int = 0,
        min_correspondences: int = 4,
    ):
        self.ransac_px = float(ransac_px)
        self.max_iters = int(max_iters)
        self.confidence = float(confidence)
        self.robust = bool(robust)
        self.seed = int(seed)
        self.min_correspondences = max(4, int(min_correspondences))

    @classmethod
    def from_config(cls, cfg: HomographyConfig) -> "HomographyEstimator":
        return cls(
            ransac_px=cfg.ransac_px,
            max_iters=cfg.max_iters,
            confidence=cfg.confidence,
            robust=cfg.robust,
            seed=cfg.seed,
            min_correspondences=cfg.min_correspondences,
        )

    def usac_params(self) -> cv2.UsacParams:
        params = cv2.UsacParams()
        params.threshold = self.ransac_px
        params.maxIterations = self.max_iters
        params.confidence = self.confidence
        params.randomGeneratorState = self.seed
        params.sampler = cv2.SAMPLING_UNIFORM
        params.score = cv2.SCORE_METHOD_MSAC
        params.loMethod = cv2.LOCAL_OPTIM_INNER_LO
        return params

    def estimate(self, reference_pts, frame_pts) -> Optional[np.ndarray]:
        return self.fit(reference_pts, frame_pts).H

    def fit(self, reference_pts, frame_pts) -> HomographyResult:
        src = _as_points(reference_pts)
        dst = _as_points(frame_pts)
        if len(src) != len(dst):
            raise ValueError(f"correspondence count mismatch: {len(src)} != {len(dst)}")
        n = len(src)
        if n < self.min_correspondences or is_degenerate(src) or is_degenerate(dst):
            return self._none(n)

        if self.robust:
            H, mask = cv2.findHomography(src.reshape(-1, 1, 2), dst.reshape(-1, 1, 2), self.usac_params())
        else:
            H, mask = cv2.findHomography(src.reshape(-1, 1, 2), dst.reshape(-1, 1, 2), 0)

        if H is None or H.size != 9 or not np.all(np.isfinite(H)):
            return self._none(n)
        H = to_numpy_3x3(H)
        if abs(H[2, 2]) < _MIN_ABS_DET or abs(np.linalg.det(H)) < _MIN_ABS_DET:
            return self._none(n)
        H = H / H[2, 2]

        if mask is None or not self.robust:
            inlier_mask = np.ones(n, dtype=bool)
        else:
            inlier_mask = mask.ravel().astype(bool)
        ninl = int(inlier_mask.sum())
        if ninl < 4:
            return self._none(n)

        proj = project_points(H, src[inlier_mask])
        err = np.linalg.norm(proj - dst[inlier_mask].astype(np.float64), axis=1)
        rmse = float(np.sqrt(np.mean(err ** 2)))
        return HomographyResult(H, inlier_mask, rmse, ninl, n)

    @staticmethod
    def _none(n: int) -> HomographyResult:
        return HomographyResult(None, np.zeros(n, dtype=bool), float("inf"), 0, n)
