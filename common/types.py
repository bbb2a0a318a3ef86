from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Tuple

import cv2
import numpy as np


ORB_DESCRIPTOR_BYTES = 32
_CHANNELS = (1, 3, 4)


def _readonly(a: np.ndarray) -> np.ndarray:
    a.setflags(write=False)
    return a


@dataclass(frozen=True, slots=True)
class ImageBuffer:
    """
    Immutable 2-D pixel grid handed to the localization core.

    Attributes:
        width, height: image dimensions in pixels (either may be 0 while a source warms up).
        data: np.ndarray of shape (H,W) or (H,W,C) with C in {1,3,4}, dtype uint8.
              3 channels are BGR, 4 channels are RGBA (canvas/capture order).

    The constructor takes ownership of `data` and marks it read-only; use
    `from_array(arr, copy=True)` to keep the caller's array untouched.
    """
    width: int
    height: int
    data: np.ndarray

    def __post_init__(self) -> None:
        if not isinstance(self.data, np.ndarray):
            raise TypeError("data must be a numpy ndarray")
        if self.data.ndim not in (2, 3):
            raise ValueError("data must be 2D (gray) or 3D (H,W,C)")
        if self.data.ndim == 3 and self.data.shape[2] not in _CHANNELS:
            raise ValueError(f"unsupported channel count: {self.data.shape[2]}")
        if self.width < 0 or self.height < 0:
            raise ValueError("width/height must be >= 0")
        if self.data.shape[0] != self.height or self.data.shape[1] != self.width:
            raise ValueError("width/height do not match data shape")
        data = self.data
        if data.dtype != np.uint8:
            data = np.clip(data, 0, 255).astype(np.uint8)
        data = np.ascontiguousarray(data)
        object.__setattr__(self, "data", _readonly(data))

    @classmethod
    def from_array(cls, arr: np.ndarray, *, copy: bool = True) -> "ImageBuffer":
        a = np.asarray(arr)
        if a.ndim < 2:
            raise ValueError("image array must be at least 2D")
        if copy:
            a = a.copy()
        return cls(width=int(a.shape[1]), height=int(a.shape[0]), data=a)

    @classmethod
    def blank(cls, width: int, height: int, channels: int = 4, value: int = 0) -> "ImageBuffer":
        shape = (height, width) if channels == 1 else (height, width, channels)
        return cls(width=width, height=height, data=np.full(shape, value, dtype=np.uint8))

    @property
    def channels(self) -> int:
        return 1 if self.data.ndim == 2 else int(self.data.shape[2])

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def size(self) -> Tuple[int, int]:
        return (self.width, self.height)

    def copy(self) -> "ImageBuffer":
        return ImageBuffer(width=self.width, height=self.height, data=self.data.copy())

    def to_meta(self) -> Dict[str, Any]:
        """Metadata without pixels (safe to log/serialize)."""
        return {"width": self.width, "height": self.height, "channels": self.channels}


@dataclass(frozen=True, slots=True)
class Keypoint:
    """Sub-pixel image location with orientation (deg) and scale (diameter px)."""
    x: float
    y: float
    angle: float = -1.0
    size: float = 31.0
    response: float = 0.0
    octave: int = 0

    @classmethod
    def from_cv(cls, kp: cv2.KeyPoint) -> "Keypoint":
        return cls(
            x=float(kp.pt[0]),
            y=float(kp.pt[1]),
            angle=float(kp.angle),
            size=float(kp.size),
            response=float(kp.response),
            octave=int(kp.octave),
        )

    @property
    def pt(self) -> Tuple[float, float]:
        return (self.x, self.y)


@dataclass(frozen=True, slots=True)
class DescriptorSet:
    """
    Keypoints and their binary descriptors, index-aligned.

    Attributes:
        keypoints: tuple of Keypoint.
        descriptors: np.ndarray (N, D) uint8, row i describes keypoints[i].
    """
    keypoints: Tuple[Keypoint, ...]
    descriptors: np.ndarray

    def __post_init__(self) -> None:
        kps = tuple(self.keypoints)
        if not isinstance(self.descriptors, np.ndarray):
            raise TypeError("descriptors must be a numpy ndarray")
        if self.descriptors.ndim != 2:
            raise ValueError("descriptors must be 2D (N, D)")
        if self.descriptors.dtype != np.uint8:
            raise ValueError("binary descriptors must be uint8")
        if len(kps) != self.descriptors.shape[0]:
            raise ValueError(
                f"keypoints/descriptors misaligned: {len(kps)} != {self.descriptors.shape[0]}"
            )
        object.__setattr__(self, "keypoints", kps)
        object.__setattr__(self, "descriptors", _readonly(np.ascontiguousarray(self.descriptors)))

    @classmethod
    def empty(cls, descriptor_bytes: int = ORB_DESCRIPTOR_BYTES) -> "DescriptorSet":
        return cls(keypoints=(), descriptors=np.zeros((0, descriptor_bytes), dtype=np.uint8))

    @classmethod
    def from_cv(cls, kps: Optional[Sequence[cv2.KeyPoint]], des: Optional[np.ndarray]) -> "DescriptorSet":
        if des is None or kps is None or len(kps) == 0:
            return cls.empty()
        return cls(keypoints=tuple(Keypoint.from_cv(k) for k in kps), descriptors=des)

    def __len__(self) -> int:
        return len(self.keypoints)

    @property
    def is_empty(self) -> bool:
        return len(self.keypoints) == 0

    def points(self) -> np.ndarray:
        """(N,2) float32 keypoint locations."""
        if not self.keypoints:
            return np.zeros((0, 2), dtype=np.float32)
        return np.float32([kp.pt for kp in self.keypoints])


@dataclass(frozen=True, slots=True)
class Match:
    """Correspondence between reference keypoint and frame keypoint; lower distance is better."""
    reference_idx: int
    frame_idx: int
    distance: float

    def __post_init__(self) -> None:
        if self.reference_idx < 0 or self.frame_idx < 0:
            raise ValueError("match indices must be >= 0")
        if self.distance < 0:
            raise ValueError("distance must be >= 0")
