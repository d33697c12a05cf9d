from __future__ import annotations
from dataclasses import dataclass
from enum import Enum

from models.adjustment_params import AdjustmentParams, NEUTRAL_PARAMS
from models.image import Image


class ViewMode(str, Enum):
    EDITED = "edited"
    SPLIT = "split"
    ORIGINAL = "original"


@dataclass
class Session:
    """
    State for the single image being edited. Owned and mutated by
    SessionController only; the render pipeline never sees it.
    """
    original_image: Image | None = None
    current_params: AdjustmentParams = NEUTRAL_PARAMS
    rendered_output: Image | None = None
    view_mode: ViewMode = ViewMode.SPLIT
    show_original: bool = False
    is_processing: bool = False
