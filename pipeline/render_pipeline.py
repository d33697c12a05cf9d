"""
Render Pipeline
Turns the untouched source image plus one full AdjustmentParams value into a
freshly rendered Image. Pure: same input, same output, no shared state.
"""
from __future__ import annotations

import logging
import time

from models.adjustment_params import AdjustmentParams
from models.image import ColorMode, Image
from models.processing_engine import ProcessingEngine
from services.adjustment_service import AdjustmentService
from services.filter_service import FilterService

logger = logging.getLogger(__name__)


def render(
    source: Image,
    params: AdjustmentParams,
    *,
    engine: ProcessingEngine,
    adjustment_service: AdjustmentService | None = None,
    filter_service: FilterService | None = None,
) -> Image:
    """
    Apply every adjustment to *source* in a fixed order.

    Stages (later stages assume the RGB output of earlier ones):
    1. normalise to RGB, alpha dropped
    2. brightness / contrast
    3. saturation (skipped at 100)
    4. Gaussian blur (skipped while the kernel is 1 wide)
    5. stylistic filter

    Args:
        source: Original image, never modified.
        params: Fully populated, already validated adjustment values.
        engine: Loaded processing engine providing the stage primitives.

    Returns:
        Image: New RGB image.
    """
    engine.require_ready()
    adjustment_service = adjustment_service or AdjustmentService(engine)
    filter_service = filter_service or FilterService(engine)

    started = time.perf_counter()

    rgb = adjustment_service.normalize(source)
    # every later stage is the identity at neutral values
    if not params.is_neutral:
        rgb = adjustment_service.brightness_contrast(rgb, params.brightness, params.contrast)
        rgb = adjustment_service.saturation(rgb, params.saturation)
        rgb = adjustment_service.blur(rgb, params.blur)
        rgb = filter_service.apply(rgb, params.filter)

    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.debug(f"Rendered {source.width}x{source.height} with {params} in {elapsed_ms:.1f} ms")

    return Image(pixels=rgb, color_mode=ColorMode.RGB, path=None)
