import struct
import sys
import zlib
from pathlib import Path

import cv2
import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]

# Make the top-level packages importable without installing the project.
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from models.image import ColorMode, Image  # noqa: E402
from models.processing_engine import OpenCVEngine  # noqa: E402


@pytest.fixture
def engine():
    """A loaded OpenCV engine."""
    eng = OpenCVEngine(num_threads=1)
    eng.load()
    return eng


def make_image(rgb, height=8, width=8) -> Image:
    pixels = np.empty((height, width, 3), dtype=np.uint8)
    pixels[:, :] = rgb
    return Image(pixels=pixels, color_mode=ColorMode.RGB)


def encode_png(pixels: np.ndarray) -> bytes:
    """PNG bytes for an RGB(A) or gray array."""
    if pixels.ndim == 3 and pixels.shape[2] == 3:
        pixels = cv2.cvtColor(pixels, cv2.COLOR_RGB2BGR)
    elif pixels.ndim == 3 and pixels.shape[2] == 4:
        pixels = cv2.cvtColor(pixels, cv2.COLOR_RGBA2BGRA)
    ok, buf = cv2.imencode(".png", pixels)
    assert ok
    return buf.tobytes()


def png_header(width: int, height: int) -> bytes:
    """A PNG holding only IHDR and IEND, declaring *width* x *height* RGB pixels."""
    def chunk(tag: bytes, body: bytes) -> bytes:
        return struct.pack(">I", len(body)) + tag + body + struct.pack(">I", zlib.crc32(tag + body))

    ihdr = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    return b"\x89PNG\r\n\x1a\n" + chunk(b"IHDR", ihdr) + chunk(b"IEND", b"")


@pytest.fixture
def gradient_pixels():
    """16x16 RGB test card with distinct values in every channel."""
    y, x = np.mgrid[0:16, 0:16]
    return np.dstack([x * 16, y * 16, (x + y) * 8]).astype(np.uint8)


@pytest.fixture
def gradient_image(gradient_pixels):
    return Image(pixels=gradient_pixels.copy(), color_mode=ColorMode.RGB)
