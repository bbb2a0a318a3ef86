from __future__ import annotations
"""
Feature extraction & matching for the localization core.

- DescriptorExtractor: ORB keypoints + 256-bit descriptors, one instance per session
- DescriptorMatcher: brute-force Hamming nearest neighbour with optional cross-check
- select_good_matches: rank by distance and keep the best share (with a floor)
"""

import math
from dataclasses import dataclass, field
from typing import List, Sequence

import cv2
import numpy as np

from common.types import DescriptorSet, ImageBuffer, Match
from locator.config import ExtractorConfig, MatcherConfig, SelectorConfig
from locator.preprocess import image_to_gray


# -----------------------------
# Extractor
# -----------------------------

@dataclass
class DescriptorExtractor:
    nfeatures: int = 500
    scale_factor: float = 1.2
    nlevels: int = 8
    edge_threshold: int = 31
    fast_threshold: int = 20
    patch_size: int = 31
    _det: cv2.ORB = field(init=False, repr=False)

    def __post_init__(self):
        if self.nfeatures <= 0:
            raise ValueError("nfeatures must be > 0")
        self._det = cv2.ORB_create(
            nfeatures=int(self.nfeatures),
            scaleFactor=float(self.scale_factor),
            nlevels=int(self.nlevels),
            edgeThreshold=int(self.edge_threshold),
            firstLevel=0,
            WTA_K=2,
            scoreType=cv2.ORB_HARRIS_SCORE,
            patchSize=int(self.patch_size),
            fastThreshold=int(self.fast_threshold),
        )

    @classmethod
    def from_config(cls, cfg: ExtractorConfig) -> "DescriptorExtractor":
        return cls(
            nfeatures=cfg.nfeatures,
            scale_factor=cfg.scale_factor,
            nlevels=cfg.nlevels,
            edge_threshold=cfg.edge_threshold,
            fast_threshold=cfg.fast_threshold,
            patch_size=cfg.patch_size,
        )

    def extract(self, image: ImageBuffer) -> DescriptorSet:
        if image.area == 0:
            return DescriptorSet.empty()
        return self.extract_gray(image_to_gray(image))

    def extract_gray(self, gray_u8: np.ndarray) -> DescriptorSet:
        if gray_u8.ndim != 2:
            raise ValueError("extract_gray expects a single-channel (H,W) image")
        if gray_u8.size == 0:
            return DescriptorSet.empty()
        kps, des = self._det.detectAndCompute(gray_u8, None)
        return DescriptorSet.from_cv(kps, des)


# -----------------------------
# Matching
# -----------------------------

@dataclass
class DescriptorMatcher:
    """
    Hamming nearest neighbour over binary descriptors. With cross_check a pair is kept
    only when each side is the other's nearest neighbour, so every reference descriptor
    yields at most one match.
    """
    cross_check: bool = True

    @classmethod
    def from_config(cls, cfg: MatcherConfig) -> "DescriptorMatcher":
        return cls(cross_check=cfg.cross_check)

    def match(self, reference: DescriptorSet, frame: DescriptorSet) -> List[Match]:
        if reference.is_empty or frame.is_empty:
            return []
        bf = cv2.BFMatcher(cv2.NORM_HAMMING, crossCheck=self.cross_check)
        raw = bf.match(reference.descriptors, frame.descriptors)
        return [Match(m.queryIdx, m.trainIdx, float(m.distance)) for m in raw]


# -----------------------------
# Selection
# -----------------------------

def good_match_count(n: int, keep_ratio: float = 0.5, min_keep: int = 10) -> int:
    """max(floor(keep_ratio * n), min(n, min_keep))"""
    if n <= 0:
        return 0
    return max(int(math.floor(keep_ratio * n)), min(n, min_keep))


def select_good_matches(
    matches: Sequence[Match],
    keep_ratio: float = 0.5,
    min_keep: int = 10,
) -> List[Match]:
    """
    Best-first (stable on ties) truncation of a match list. An empty result means
    "not enough for geometry"; callers do not retry.
    """
    ranked = sorted(matches, key=lambda m: m.distance)
    return ranked[: good_match_count(len(ranked), keep_ratio, min_keep)]


def select_with_config(matches: Sequence[Match], cfg: SelectorConfig) -> List[Match]:
    return select_good_matches(matches, keep_ratio=cfg.keep_ratio, min_keep=cfg.min_keep)


def matched_points(
    reference: DescriptorSet,
    frame: DescriptorSet,
    matches: Sequence[Match],
):
    """(N,2) float32 reference points and frame points for `matches`, in order."""
    if not matches:
        empty = np.zeros((0, 2), dtype=np.float32)
        return empty, empty.copy()
    ref_pts = np.float32([reference.keypoints[m.reference_idx].pt for m in matches])
    frm_pts = np.float32([frame.keypoints[m.frame_idx].pt for m in matches])
    return ref_pts, frm_pts
