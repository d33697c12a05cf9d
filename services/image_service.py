from __future__ import annotations

from pathlib import Path
from typing import Union
import logging
import os

import numpy as np
from PIL import Image as PILImage
from dotenv import load_dotenv

from models.image import Image
from models.processing_engine import ProcessingEngine
from repositories.image_repository import ImageRepository

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


class ImageService:
    """Intake, export and display hand-off. No adjustment logic here."""
    def __init__(self, engine: ProcessingEngine, image_repository: ImageRepository | None = None):
        self.JPEG_QUALITY = int(os.getenv("JPEG_QUALITY", "95"))
        self.engine = engine
        self.image_repository = image_repository or ImageRepository()

    def decode(self, data: bytes, path: Union[str, Path, None] = None) -> Image:
        """
        Check that *data* is an image, then decode it with the engine.
        Non-image payloads are rejected before they reach the engine.
        """
        mime = self.image_repository.sniff_mime(data)
        img = self.engine.decode(data)
        logger.info(f"Decoded {mime} {img.width}x{img.height} ({img.color_mode.value})")
        if path is None:
            return img
        return Image(pixels=img.pixels, color_mode=img.color_mode, path=Path(path))

    def load(self, path: Union[str, Path]) -> Image:
        """Load a single image from disk into an Image object."""
        return self.decode(self.image_repository.read_bytes(path), path)

    def encode_jpeg(self, image: Image) -> bytes:
        return self.engine.encode_jpeg(image, self.JPEG_QUALITY)

    def save(self, data: bytes, path: Union[str, Path]) -> Path:
        return self.image_repository.write_bytes(data, path)

    @staticmethod
    def to_pil_image(img: Image) -> PILImage.Image:
        """
        Convert Image.pixels → PIL Image object for display.
        Ensures the NumPy array is C-contiguous.
        """
        np_img = img.pixels
        if not np_img.flags['C_CONTIGUOUS']:
            np_img = np.ascontiguousarray(np_img)

        return PILImage.fromarray(np_img)
