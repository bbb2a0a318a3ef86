from __future__ import annotations
"""
Intensity conversion for the extractor.

- to_gray_u8: BGR / RGBA / gray -> single-channel uint8 using OpenCV's luma weights
  (0.299 R + 0.587 G + 0.114 B), optionally into a caller-owned buffer
"""

from typing import Optional

import cv2
import numpy as np

from common.types import ImageBuffer


_GRAY_CODES = {
    3: cv2.COLOR_BGR2GRAY,
    4: cv2.COLOR_RGBA2GRAY,
}


def to_gray_u8(img: np.ndarray, dst: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Convert an (H,W), (H,W,1), (H,W,3) BGR or (H,W,4) RGBA uint8 array to (H,W) uint8.
    When `dst` is given it must be (H,W) uint8 and is written in place.
    """
    if dst is not None and dst.shape != img.shape[:2]:
        raise ValueError(f"dst shape {dst.shape} does not match image {img.shape[:2]}")
    if img.ndim == 2 or img.shape[2] == 1:
        g = img.reshape(img.shape[0], img.shape[1])
        if dst is None:
            return g.astype(np.uint8, copy=True)
        np.copyto(dst, g, casting="unsafe")
        return dst
    code = _GRAY_CODES.get(img.shape[2])
    if code is None:
        raise ValueError(f"unsupported channel count: {img.shape[2]}")
    if dst is None:
        return cv2.cvtColor(img, code)
    return cv2.cvtColor(img, code, dst=dst)


def image_to_gray(image: ImageBuffer, dst: Optional[np.ndarray] = None) -> np.ndarray:
    return to_gray_u8(image.data, dst=dst)
