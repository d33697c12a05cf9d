from io import BytesIO
from pathlib import Path
from typing import Union
import logging
import os

from PIL import Image as PILImage, UnidentifiedImageError
from dotenv import load_dotenv

from models.errors import DecodeError

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = ".jpg,.jpeg,.png,.bmp,.webp,.tif,.tiff"


class ImageRepository:
    """
    Handles file I/O and the intake check for uploaded image bytes.
    """
    def __init__(self):
        # Load as set, e.g. ".jpg,.png"
        self.VALID_EXTS = {
            ext.strip().lower()
            for ext in os.getenv("VALID_IMAGE_EXTENSIONS", DEFAULT_EXTENSIONS).split(",")
            if ext.strip()
        }

    def read_bytes(self, path: Union[str, Path]) -> bytes:
        path = Path(path)
        if path.suffix.lower() not in self.VALID_EXTS:
            raise DecodeError(f"Unsupported file extension '{path.suffix}': {path.name}")
        if not path.is_file():
            raise FileNotFoundError(f"Image not found: {path}")
        return path.read_bytes()

    @staticmethod
    def sniff_mime(data: bytes) -> str:
        """
        Identify *data* with Pillow without decoding the full raster.

        Returns:
            (str): MIME type such as "image/png".
        Raises:
            DecodeError: if Pillow does not recognise the payload as an image.
        """
        if not data:
            raise DecodeError("Empty upload")
        try:
            with PILImage.open(BytesIO(data)) as pil_img:
                pil_img.verify()
                fmt = pil_img.format
        except PILImage.DecompressionBombError as err:
            raise DecodeError(f"Image is too large: {err}") from err
        except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as err:
            raise DecodeError(f"Not a readable image: {err}") from err

        mime = PILImage.MIME.get(fmt or "", "")
        if not mime.startswith("image/"):
            raise DecodeError(f"Unsupported file type: {fmt or 'unknown'}")
        return mime

    @staticmethod
    def write_bytes(data: bytes, path: Union[str, Path]) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.info(f"Wrote {len(data)} bytes to {path}")
        return path
