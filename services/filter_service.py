from typing import Callable, Dict

import numpy as np

from models.adjustment_params import FilterType
from models.processing_engine import ProcessingEngine

# Rows produce output R, G, B from input (R, G, B)
SEPIA_MATRIX = np.array(
    [
        [0.393, 0.769, 0.189],
        [0.349, 0.686, 0.168],
        [0.272, 0.534, 0.131],
    ],
    dtype=np.float32,
)

POSTERIZE_LEVELS = 5
POSTERIZE_STEP = 255 / (POSTERIZE_LEVELS - 1)


def _posterize_table() -> np.ndarray:
    values = np.arange(256, dtype=np.float64)
    quantised = np.round(values / POSTERIZE_STEP) * POSTERIZE_STEP
    return np.clip(np.rint(quantised), 0, 255).astype(np.uint8)


class FilterService:
    """
    Stylistic filters, the last stage of the render pipeline.
    Coefficients and level counts are fixed.
    """

    _POSTERIZE_TABLE = _posterize_table()

    def __init__(self, engine: ProcessingEngine):
        self.engine = engine
        self._filters: Dict[FilterType, Callable[[np.ndarray], np.ndarray]] = {
            FilterType.NONE: self.none,
            FilterType.GRAYSCALE: self.grayscale,
            FilterType.SEPIA: self.sepia,
            FilterType.INVERT: self.invert,
            FilterType.POSTERIZE: self.posterize,
        }

    def apply(self, rgb: np.ndarray, filter_type: FilterType) -> np.ndarray:
        return self._filters[FilterType(filter_type)](rgb)

    @staticmethod
    def none(rgb: np.ndarray) -> np.ndarray:
        return rgb.copy()

    def grayscale(self, rgb: np.ndarray) -> np.ndarray:
        """Luma, replicated back to three channels."""
        return self.engine.luma_to_rgb(self.engine.rgb_to_luma(rgb))

    def sepia(self, rgb: np.ndarray) -> np.ndarray:
        return self.engine.color_transform(rgb, SEPIA_MATRIX)

    def invert(self, rgb: np.ndarray) -> np.ndarray:
        return self.engine.invert(rgb)

    def posterize(self, rgb: np.ndarray) -> np.ndarray:
        """Quantise each channel to 0, 64, 128, 191 or 255."""
        return self.engine.lookup(rgb, self._POSTERIZE_TABLE)
