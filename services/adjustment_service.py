from __future__ import annotations

import logging
import math

import numpy as np

from models.image import Image
from models.processing_engine import ProcessingEngine

logger = logging.getLogger(__name__)

# brightness slider units per output level; keeps the slider's effective range narrower
BRIGHTNESS_DIVISOR = 1.5


def blur_kernel_size(blur: float) -> int:
    """
    Odd Gaussian window width for a blur slider value.
    Fractional values are floored, so 0.5 and 1.4 give the same kernel as 0 and 1.
    """
    return int(math.floor(blur)) * 2 + 1


class AdjustmentService:
    """
    Numeric adjustment stages of the render pipeline.
    *   After normalisation works only on RGB uint8 arrays. No I/O here.
    *   Every stage returns a new array and leaves its input alone.
    """

    def __init__(self, engine: ProcessingEngine):
        self.engine = engine

    # ─── Stage 1 ───────────────────────────────────────────────────
    def normalize(self, image: Image) -> np.ndarray:
        """Convert any supported Image to the RGB working space (alpha dropped)."""
        return self.engine.to_rgb(image)

    # ─── Stage 2 ───────────────────────────────────────────────────
    def brightness_contrast(self, rgb: np.ndarray, brightness: int, contrast: int) -> np.ndarray:
        """
        Single affine map ``clamp(v * alpha + beta, 0, 255)`` per channel.

        Args:
            brightness: [0, 200], 100 = unchanged.
            contrast:   [0, 200], 100 = unchanged.
        """
        alpha = contrast / 100
        beta = (brightness - 100) / BRIGHTNESS_DIVISOR
        return self.engine.scale_offset(rgb, alpha, beta)

    # ─── Stage 3 ───────────────────────────────────────────────────
    def saturation(self, rgb: np.ndarray, saturation: int) -> np.ndarray:
        """
        Scale the HSV saturation channel by ``saturation / 100``.
        The scaled channel is capped at 255 so strong boosts cannot wrap around.
        """
        if saturation == 100:
            return rgb.copy()

        hsv = self.engine.rgb_to_hsv(rgb)
        scaled = np.rint(hsv[:, :, 1].astype(np.float32) * (saturation / 100))
        hsv[:, :, 1] = np.minimum(scaled, 255).astype(np.uint8)
        return self.engine.hsv_to_rgb(hsv)

    # ─── Stage 4 ───────────────────────────────────────────────────
    def blur(self, rgb: np.ndarray, blur: float) -> np.ndarray:
        ksize = blur_kernel_size(blur)
        if ksize <= 1:
            return rgb.copy()
        logger.debug(f"Gaussian blur ksize={ksize} (blur={blur})")
        return self.engine.gaussian_blur(rgb, ksize)
