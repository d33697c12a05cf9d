from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Callable, List, Optional, Set, Tuple, Union
import logging
import os
import threading

from dotenv import load_dotenv

from models.adjustment_params import AdjustmentParams, NEUTRAL_PARAMS
from models.errors import DecodeError, DomainError, EditorError, EngineNotReadyError, NoImageError
from models.image import Image
from models.notice import Notice
from models.processing_engine import OpenCVEngine, ProcessingEngine
from models.session import Session, ViewMode
from pipeline.render_pipeline import render
from services.image_service import ImageService

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)-25s - %(levelname)-8s - %(message)s'

Renderer = Callable[[Image, AdjustmentParams], Image]


def configure_logging(level: Union[str, int, None] = None) -> None:
    """Centralised logging setup for applications embedding the editor."""
    logging.basicConfig(
        level=level or os.getenv("LOG_LEVEL", "INFO"),
        format=LOG_FORMAT,
        datefmt='%H:%M:%S'
    )


class SessionController:
    """
    Owns the editing Session and re-renders it whenever the image or the
    adjustments change.

    *   Renders run on a worker pool; each public call returns at once.
    *   Every render gets a sequence number; only the newest one may publish.
    *   EditorError never escapes a public method: it is logged and turned
        into a Notice for the UI.
    """

    def __init__(
        self,
        engine: ProcessingEngine | None = None,
        *,
        renderer: Renderer | None = None,
        image_service: ImageService | None = None,
        on_notice: Callable[[Notice], None] | None = None,
        on_render: Callable[[Image], None] | None = None,
        max_workers: int | None = None,
    ):
        """
        Args:
            engine: Processing engine; loaded later by ``start_engine``.
            renderer: ``(source, params) -> Image``. Defaults to the render pipeline.
            on_notice: Receives every user-visible notice.
            on_render: Receives each published render.
            max_workers: Render pool size (defaults to env RENDER_WORKERS).
        """
        self.engine = engine or OpenCVEngine()
        self.image_service = image_service or ImageService(self.engine)
        self._renderer = renderer or self._render_with_engine
        self._on_notice = on_notice
        self._on_render = on_render

        self.EXPORT_FILENAME = os.getenv("EXPORT_FILENAME", "edited-image.jpg")
        self.EXPORT_DIR = os.getenv("EXPORT_DIR", ".")
        workers = max_workers or int(os.getenv("RENDER_WORKERS", "2"))

        self.session = Session()
        self._lock = threading.RLock()
        self._render_seq = 0
        self._render_deferred = False
        self._pending: Set[Future] = set()
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="RenderWorker")

        logger.info(f"SessionController initialized with {workers} render workers")

    # ─── Engine lifecycle ──────────────────────────────────────────
    @property
    def engine_ready(self) -> bool:
        return self.engine.is_ready

    def start_engine(self) -> Future:
        """Load the engine off the calling thread. Result is True on success."""
        return self._submit(self._load_engine)

    def _load_engine(self) -> bool:
        try:
            self.engine.load()
        except EditorError as err:
            self._notify_error("Failed to load image processing engine", err)
            return False
        self._notify("success", "Image processing engine loaded!")

        with self._lock:
            retry = self._render_deferred and self.session.original_image is not None
            self._render_deferred = False
        if retry:
            logger.info("Engine ready, issuing deferred render")
            self._request_render()
        return True

    # ─── Public API ────────────────────────────────────────────────
    def load_image(self, data: bytes, path: Union[str, Path, None] = None) -> Optional[Future]:
        """Replace the original image, reset adjustments and render."""
        try:
            img = self.image_service.decode(data, path)
        except DecodeError as err:
            self._notify_error("Please select an image file", err)
            return None
        return self._install_image(img)

    def load_file(self, path: Union[str, Path]) -> Optional[Future]:
        try:
            img = self.image_service.load(path)
        except DecodeError as err:
            self._notify_error("Please select an image file", err)
            return None
        except OSError as err:
            self._notify_error(f"Could not read {Path(path).name}", err)
            return None
        return self._install_image(img)

    def set_adjustment(self, field: str, value) -> Optional[Future]:
        """Change one adjustment and re-render from the original."""
        try:
            with self._lock:
                self.session.current_params = self.session.current_params.with_field(field, value)
        except DomainError as err:
            self._notify_error(f"Invalid value for {field}", err)
            return None
        return self._request_render()

    def reset(self) -> Optional[Future]:
        """Back to neutral adjustments. Always re-renders."""
        with self._lock:
            self.session.current_params = NEUTRAL_PARAMS
        self._notify("success", "Adjustments reset")
        return self._request_render()

    def export_current(self) -> Optional[bytes]:
        """JPEG bytes of the latest published render, or None."""
        with self._lock:
            output = self.session.rendered_output
        try:
            if output is None:
                raise NoImageError("There is no rendered image to export")
            return self.image_service.encode_jpeg(output)
        except NoImageError as err:
            self._notify_error("No image to download", err)
        except EngineNotReadyError as err:
            self._notify_error("Image processing engine not loaded yet", err)
        return None

    def save_export(self, path: Union[str, Path, None] = None) -> Optional[Path]:
        data = self.export_current()
        if data is None:
            return None
        target = Path(path) if path else Path(self.EXPORT_DIR) / self.EXPORT_FILENAME
        try:
            saved = self.image_service.save(data, target)
        except OSError as err:
            self._notify_error(f"Could not write {target}", err)
            return None
        self._notify("success", "Image downloaded")
        return saved

    # ─── View state (never renders) ────────────────────────────────
    def toggle_original_view(self) -> bool:
        with self._lock:
            self.session.show_original = not self.session.show_original
            return self.session.show_original

    def set_view_mode(self, mode: Union[ViewMode, str]) -> None:
        try:
            view_mode = ViewMode(mode)
        except ValueError:
            self._notify_error("Unknown view mode", DomainError("view_mode", mode))
            return
        with self._lock:
            self.session.view_mode = view_mode

    def visible_images(self) -> List[Tuple[str, Image]]:
        """(label, image) pairs the UI should currently draw, left to right."""
        with self._lock:
            original = self.session.original_image
            edited = self.session.rendered_output
            mode = self.session.view_mode
            show_original = self.session.show_original

        if original is None:
            return []
        if show_original or mode is ViewMode.ORIGINAL:
            return [("Original", original)]
        edited_pair = [("Edited", edited)] if edited is not None else []
        if mode is ViewMode.EDITED:
            return edited_pair
        return [("Original", original)] + edited_pair

    # ─── Lifecycle helpers ─────────────────────────────────────────
    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no render or engine load is in flight."""
        while True:
            with self._lock:
                pending = [f for f in self._pending if not f.done()]
            if not pending:
                return True
            _, not_done = wait(pending, timeout=timeout)
            if not_done:
                return False

    def shutdown(self, wait_for_renders: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_renders)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()

    # ─── Internal helpers ──────────────────────────────────────────
    def _render_with_engine(self, source: Image, params: AdjustmentParams) -> Image:
        return render(source, params, engine=self.engine)

    def _install_image(self, img: Image) -> Optional[Future]:
        with self._lock:
            self.session.original_image = img
            self.session.current_params = NEUTRAL_PARAMS
            self.session.rendered_output = None
            # renders of the previous image must not publish
            self._render_seq += 1
        self._notify("success", "Image uploaded successfully")
        return self._request_render()

    def _submit(self, fn, *args) -> Future:
        with self._lock:
            future = self._executor.submit(fn, *args)
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _request_render(self) -> Optional[Future]:
        with self._lock:
            source = self.session.original_image
            params = self.session.current_params
            if source is None:
                return None
            ready = self.engine.is_ready
            if ready:
                self._render_seq += 1
                seq = self._render_seq
                self.session.is_processing = True
            else:
                self._render_deferred = True

        if not ready:
            self._notify_error(
                "Image processing engine not loaded yet",
                EngineNotReadyError("Render deferred until the engine is loaded"),
            )
            return None
        logger.debug(f"Render #{seq} requested: {params}")
        return self._submit(self._run_render, seq, source, params)

    def _run_render(self, seq: int, source: Image, params: AdjustmentParams) -> bool:
        """Worker body. Returns True when this render was published."""
        try:
            output = self._renderer(source, params)
        except Exception as err:
            with self._lock:
                if seq != self._render_seq:
                    logger.debug(f"Ignoring failure of stale render #{seq}: {err}")
                    return False
                self.session.is_processing = False
            logger.exception(f"Render #{seq} failed")
            self._notify_error("Failed to process image", err)
            return False

        with self._lock:
            if seq != self._render_seq:
                logger.debug(f"Discarding stale render #{seq} (latest is #{self._render_seq})")
                return False
            self.session.rendered_output = output
            self.session.is_processing = False

        if self._on_render is not None:
            try:
                self._on_render(output)
            except Exception:
                logger.exception(f"on_render callback failed for render #{seq}")
        return True

    def _notify(self, level: str, message: str, error: Exception | None = None) -> None:
        if error is None:
            logger.info(message)
        else:
            logger.warning(f"{message}: {error}")
        if self._on_notice is not None:
            self._on_notice(Notice(level=level, message=message, error=error))

    def _notify_error(self, message: str, error: Exception) -> None:
        self._notify("error", message, error)
