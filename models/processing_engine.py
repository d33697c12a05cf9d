from __future__ import annotations
from abc import ABC, abstractmethod
import logging
import os
import threading

import cv2
import numpy as np
from dotenv import load_dotenv

from models.errors import DecodeError, EngineLoadError, EngineNotReadyError
from models.image import ColorMode, Image

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


class ProcessingEngine(ABC):
    """
    Native image-processing capability used by the render pipeline.

    The engine is loaded explicitly (``load``) by whoever owns it; stage
    primitives raise EngineNotReadyError until then. ``decode`` is usable
    before readiness so an upload can be accepted while the engine loads.
    All primitives take and return RGB-ordered uint8 arrays and never
    modify their input.
    """

    name: str = "unknown"

    def __init__(self):
        self._ready = threading.Event()

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    def load(self) -> None:
        """Initialise the runtime. Safe to call more than once."""
        if self.is_ready:
            return
        try:
            self._init_engine()
        except Exception as err:
            raise EngineLoadError(f"Failed to load {self.name} engine: {err}") from err
        self._ready.set()
        logger.info(f"{self.name} engine ready")

    def require_ready(self) -> None:
        if not self.is_ready:
            raise EngineNotReadyError(f"{self.name} engine is not loaded yet")

    @abstractmethod
    def _init_engine(self) -> None:
        """Heavy one-time setup."""

    # ─── Codec ─────────────────────────────────────────────────────
    @abstractmethod
    def decode(self, data: bytes) -> Image:
        """Decode encoded bytes into an Image, raising DecodeError."""

    @abstractmethod
    def encode_jpeg(self, image: Image, quality: int) -> bytes:
        """Encode an RGB Image as JPEG bytes."""

    # ─── Stage primitives ──────────────────────────────────────────
    @abstractmethod
    def to_rgb(self, image: Image) -> np.ndarray:
        """Return a 3-channel RGB copy of *image*, dropping alpha."""

    @abstractmethod
    def scale_offset(self, rgb: np.ndarray, alpha: float, beta: float) -> np.ndarray:
        """Saturating per-channel ``rgb * alpha + beta``."""

    @abstractmethod
    def rgb_to_hsv(self, rgb: np.ndarray) -> np.ndarray: ...

    @abstractmethod
    def hsv_to_rgb(self, hsv: np.ndarray) -> np.ndarray: ...

    @abstractmethod
    def gaussian_blur(self, rgb: np.ndarray, ksize: int) -> np.ndarray:
        """Square Gaussian blur; sigma derived from *ksize*."""

    @abstractmethod
    def rgb_to_luma(self, rgb: np.ndarray) -> np.ndarray: ...

    @abstractmethod
    def luma_to_rgb(self, luma: np.ndarray) -> np.ndarray: ...

    @abstractmethod
    def color_transform(self, rgb: np.ndarray, matrix: np.ndarray) -> np.ndarray:
        """Apply a 3x3 channel-mixing matrix per pixel, saturating to uint8."""

    @abstractmethod
    def invert(self, rgb: np.ndarray) -> np.ndarray: ...

    @abstractmethod
    def lookup(self, rgb: np.ndarray, table: np.ndarray) -> np.ndarray:
        """Map every channel value through a 256-entry uint8 table."""


class OpenCVEngine(ProcessingEngine):
    """
    OpenCV implementation of ProcessingEngine.
    Pixels stay RGB at the boundary; BGR only exists inside decode/encode.
    """

    name = "OpenCV"

    def __init__(self, num_threads: int | None = None):
        super().__init__()
        if num_threads is None:
            num_threads = int(os.getenv("ENGINE_NUM_THREADS", "0"))
        self.num_threads = num_threads

    def _init_engine(self) -> None:
        # 0 keeps OpenCV's own default thread count
        if self.num_threads > 0:
            cv2.setNumThreads(self.num_threads)
        # Warm-up call so a broken native build fails here and not mid-render
        probe = np.zeros((2, 2, 3), dtype=np.uint8)
        cv2.GaussianBlur(cv2.cvtColor(probe, cv2.COLOR_RGB2HSV), (3, 3), 0)
        logger.info(f"OpenCV {cv2.__version__} | threads: {cv2.getNumThreads()}")

    # ─── Codec ─────────────────────────────────────────────────────
    def decode(self, data: bytes) -> Image:
        buf = np.frombuffer(data, dtype=np.uint8)
        try:
            arr = cv2.imdecode(buf, cv2.IMREAD_UNCHANGED) if buf.size else None
        except cv2.error as err:
            raise DecodeError(f"Image data could not be decoded: {err}") from err
        if arr is None:
            raise DecodeError("Image data is unreadable or not a supported format")

        if arr.dtype == np.uint16:
            arr = cv2.convertScaleAbs(arr, alpha=1.0 / 257.0)
        elif arr.dtype != np.uint8:
            raise DecodeError(f"Unsupported sample type: {arr.dtype}")

        if arr.ndim == 2:
            return Image(pixels=arr, color_mode=ColorMode.GRAY)
        channels = arr.shape[2]
        if channels == 1:
            return Image(pixels=arr[:, :, 0].copy(), color_mode=ColorMode.GRAY)
        if channels == 3:
            return Image(pixels=cv2.cvtColor(arr, cv2.COLOR_BGR2RGB), color_mode=ColorMode.RGB)
        if channels == 4:
            return Image(pixels=cv2.cvtColor(arr, cv2.COLOR_BGRA2RGBA), color_mode=ColorMode.RGBA)
        raise DecodeError(f"Unsupported channel count: {channels}")

    def encode_jpeg(self, image: Image, quality: int) -> bytes:
        self.require_ready()
        bgr = cv2.cvtColor(self.to_rgb(image), cv2.COLOR_RGB2BGR)
        ok, encoded = cv2.imencode(".jpg", bgr, [cv2.IMWRITE_JPEG_QUALITY, int(quality)])
        if not ok:
            raise RuntimeError("cv2.imencode failed to produce JPEG data")
        return encoded.tobytes()

    # ─── Stage primitives ──────────────────────────────────────────
    def to_rgb(self, image: Image) -> np.ndarray:
        if image.color_mode is ColorMode.GRAY:
            return cv2.cvtColor(image.pixels, cv2.COLOR_GRAY2RGB)
        if image.color_mode.has_alpha:
            return cv2.cvtColor(image.pixels, cv2.COLOR_RGBA2RGB)
        return image.pixels.copy()

    def scale_offset(self, rgb: np.ndarray, alpha: float, beta: float) -> np.ndarray:
        self.require_ready()
        # addWeighted saturates to [0, 255]; convertScaleAbs would reflect negatives
        return cv2.addWeighted(rgb, alpha, rgb, 0.0, beta)

    def rgb_to_hsv(self, rgb: np.ndarray) -> np.ndarray:
        self.require_ready()
        return cv2.cvtColor(rgb, cv2.COLOR_RGB2HSV)

    def hsv_to_rgb(self, hsv: np.ndarray) -> np.ndarray:
        self.require_ready()
        return cv2.cvtColor(hsv, cv2.COLOR_HSV2RGB)

    def gaussian_blur(self, rgb: np.ndarray, ksize: int) -> np.ndarray:
        self.require_ready()
        return cv2.GaussianBlur(rgb, (ksize, ksize), sigmaX=0, sigmaY=0,
                                borderType=cv2.BORDER_DEFAULT)

    def rgb_to_luma(self, rgb: np.ndarray) -> np.ndarray:
        self.require_ready()
        return cv2.cvtColor(rgb, cv2.COLOR_RGB2GRAY)

    def luma_to_rgb(self, luma: np.ndarray) -> np.ndarray:
        self.require_ready()
        return cv2.cvtColor(luma, cv2.COLOR_GRAY2RGB)

    def color_transform(self, rgb: np.ndarray, matrix: np.ndarray) -> np.ndarray:
        self.require_ready()
        return cv2.transform(rgb, np.asarray(matrix, dtype=np.float32))

    def invert(self, rgb: np.ndarray) -> np.ndarray:
        self.require_ready()
        return cv2.bitwise_not(rgb)

    def lookup(self, rgb: np.ndarray, table: np.ndarray) -> np.ndarray:
        self.require_ready()
        return cv2.LUT(rgb, np.asarray(table, dtype=np.uint8))
