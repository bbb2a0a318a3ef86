"""
Shared fixtures: deterministic synthetic textures for the ORB pipeline.
"""

import os
import sys

import cv2
import numpy as np
import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from common.types import ImageBuffer


def make_texture(width: int = 320, height: int = 240, seed: int = 7) -> np.ndarray:
    """Gray uint8 image full of random blocks, discs and bars (plenty of corners)."""
    rng = np.random.default_rng(seed)
    img = np.full((height, width), 127, dtype=np.uint8)
    for _ in range(90):
        x0, y0 = int(rng.integers(0, width - 8)), int(rng.integers(0, height - 8))
        w, h = int(rng.integers(6, 45)), int(rng.integers(6, 45))
        cv2.rectangle(img, (x0, y0), (x0 + w, y0 + h), int(rng.integers(0, 256)), thickness=-1)
    for _ in range(40):
        c = (int(rng.integers(0, width)), int(rng.integers(0, height)))
        cv2.circle(img, c, int(rng.integers(4, 18)), int(rng.integers(0, 256)), thickness=-1)
    for _ in range(25):
        p1 = (int(rng.integers(0, width)), int(rng.integers(0, height)))
        p2 = (int(rng.integers(0, width)), int(rng.integers(0, height)))
        cv2.line(img, p1, p2, int(rng.integers(0, 256)), thickness=int(rng.integers(1, 4)))
    return img


def gray_to_rgba(gray: np.ndarray) -> np.ndarray:
    return cv2.cvtColor(gray, cv2.COLOR_GRAY2RGBA)


def place_on_canvas(img: np.ndarray, canvas_size, offset, fill: int = 127) -> np.ndarray:
    """Paste `img` into a larger uniform canvas at integer (x, y) offset."""
    W, H = canvas_size
    x, y = offset
    shape = (H, W) + img.shape[2:]
    canvas = np.full(shape, fill, dtype=np.uint8)
    if canvas.ndim == 3 and canvas.shape[2] == 4:
        canvas[..., 3] = 255
    canvas[y:y + img.shape[0], x:x + img.shape[1]] = img
    return canvas


@pytest.fixture
def texture_gray() -> np.ndarray:
    return make_texture()


@pytest.fixture
def reference_image(texture_gray) -> ImageBuffer:
    """320x240 RGBA reference, as a canvas capture would deliver it."""
    return ImageBuffer.from_array(gray_to_rgba(texture_gray))


@pytest.fixture
def shifted_frame(texture_gray) -> ImageBuffer:
    """Reference pasted at (40, 30) in a 420x320 frame."""
    return ImageBuffer.from_array(place_on_canvas(gray_to_rgba(texture_gray), (420, 320), (40, 30)))


@pytest.fixture
def blank_image() -> ImageBuffer:
    return ImageBuffer.blank(320, 240, channels=4, value=90)


@pytest.fixture
def unrelated_frame() -> ImageBuffer:
    """Different random texture, same size as the reference."""
    return ImageBuffer.from_array(gray_to_rgba(make_texture(seed=1234)))
