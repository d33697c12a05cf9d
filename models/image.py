from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
import numpy as np


class ColorMode(str, Enum):
    """Channel layout of an Image's pixel array."""
    GRAY = "GRAY"   # (H, W)
    RGB = "RGB"     # (H, W, 3)
    RGBA = "RGBA"   # (H, W, 4)

    @property
    def channels(self) -> int:
        return {"GRAY": 1, "RGB": 3, "RGBA": 4}[self.value]

    @property
    def has_alpha(self) -> bool:
        return self is ColorMode.RGBA


@dataclass(frozen=True)
class Image:
    """
    Simple data object: uint8 pixels in RGB(A) order (+ optional source path).
    No OpenCV logic outside the engine.
    The pixel array is made read-only so a buffer can be shared by concurrent
    renders; every stage returns a new Image.
    """
    pixels: np.ndarray  # Shape (H, W) / (H, W, 3) / (H, W, 4), dtype uint8.
    color_mode: ColorMode = ColorMode.RGB
    path: Path | None = None  # Source of the image, if it came from disk.

    def __post_init__(self):
        if self.pixels.dtype != np.uint8:
            raise ValueError(f"Image pixels must be uint8, got {self.pixels.dtype}")
        expected = self.color_mode.channels
        actual = 1 if self.pixels.ndim == 2 else self.pixels.shape[2]
        if self.pixels.ndim not in (2, 3) or actual != expected:
            raise ValueError(
                f"Pixel shape {self.pixels.shape} does not match color mode {self.color_mode.value}"
            )
        self.pixels.setflags(write=False)

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]
