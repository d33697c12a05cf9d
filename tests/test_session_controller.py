"""
Tests for SessionController: upload, adjust, reset, export and the
last-request-wins render policy.
"""

import logging
import threading

import numpy as np
import pytest

from conftest import encode_png, png_header
from models.adjustment_params import NEUTRAL_PARAMS, FilterType
from models.errors import (
    DecodeError, DomainError, EngineLoadError, EngineNotReadyError, NoImageError
)
from models.processing_engine import OpenCVEngine
from models.session import ViewMode
from pipeline.render_pipeline import render
from services import session_controller
from services.session_controller import SessionController

TIMEOUT = 10


class BrokenEngine(OpenCVEngine):
    def _init_engine(self):
        raise RuntimeError("native library missing")


@pytest.fixture
def notices():
    return []


@pytest.fixture
def controller(engine, notices):
    ctrl = SessionController(engine, on_notice=notices.append, max_workers=2)
    yield ctrl
    ctrl.shutdown()


@pytest.fixture
def loaded(controller, gradient_pixels):
    controller.load_image(encode_png(gradient_pixels)).result(TIMEOUT)
    return controller


def messages(notices):
    return [n.message for n in notices]


class TestLoadImage:

    def test_upload_renders_neutral(self, loaded, gradient_pixels, notices):
        session = loaded.session
        assert session.current_params == NEUTRAL_PARAMS
        assert np.array_equal(session.rendered_output.pixels, gradient_pixels)
        assert not session.is_processing
        assert "Image uploaded successfully" in messages(notices)

    def test_new_upload_resets_adjustments(self, loaded, notices):
        loaded.set_adjustment("brightness", 150).result(TIMEOUT)
        other = np.full((4, 4, 3), 10, dtype=np.uint8)
        loaded.load_image(encode_png(other)).result(TIMEOUT)
        assert loaded.session.current_params == NEUTRAL_PARAMS
        assert np.array_equal(loaded.session.rendered_output.pixels, other)

    def test_decode_error_keeps_previous_state(self, loaded, notices):
        before = loaded.session.original_image
        output = loaded.session.rendered_output
        assert loaded.load_image(b"not an image") is None
        assert loaded.session.original_image is before
        assert loaded.session.rendered_output is output
        assert notices[-1].message == "Please select an image file"
        assert isinstance(notices[-1].error, DecodeError)

    def test_oversized_upload_is_recovered(self, loaded, notices):
        before = loaded.session.original_image
        assert loaded.load_image(png_header(20000, 20000)) is None
        assert loaded.session.original_image is before
        assert notices[-1].message == "Please select an image file"
        assert isinstance(notices[-1].error, DecodeError)

    def test_oversized_file_is_recovered(self, controller, notices, tmp_path):
        path = tmp_path / "huge.png"
        path.write_bytes(png_header(20000, 20000))
        assert controller.load_file(path) is None
        assert controller.session.original_image is None
        assert isinstance(notices[-1].error, DecodeError)

    def test_load_file(self, controller, gradient_pixels, tmp_path):
        path = tmp_path / "card.png"
        path.write_bytes(encode_png(gradient_pixels))
        controller.load_file(path).result(TIMEOUT)
        assert controller.session.original_image.path == path
        assert controller.session.rendered_output is not None

    def test_load_missing_file(self, controller, notices, tmp_path):
        assert controller.load_file(tmp_path / "gone.png") is None
        assert notices[-1].level == "error"
        assert isinstance(notices[-1].error, FileNotFoundError)
        assert controller.session.original_image is None


class TestAdjustments:

    def test_set_adjustment_rerenders(self, loaded):
        assert loaded.set_adjustment("filter", "invert").result(TIMEOUT) is True
        src = loaded.session.original_image.pixels
        assert loaded.session.current_params.filter is FilterType.INVERT
        assert np.array_equal(loaded.session.rendered_output.pixels, 255 - src)

    def test_render_always_starts_from_original(self, loaded):
        loaded.set_adjustment("brightness", 150).result(TIMEOUT)
        loaded.set_adjustment("brightness", 150).result(TIMEOUT)
        expected = render(loaded.session.original_image,
                          NEUTRAL_PARAMS.with_field("brightness", 150), engine=loaded.engine)
        assert np.array_equal(loaded.session.rendered_output.pixels, expected.pixels)

    def test_out_of_domain_value_is_rejected(self, loaded, notices):
        output = loaded.session.rendered_output
        assert loaded.set_adjustment("brightness", 250) is None
        assert loaded.session.current_params == NEUTRAL_PARAMS
        assert loaded.session.rendered_output is output
        assert notices[-1].message == "Invalid value for brightness"
        assert isinstance(notices[-1].error, DomainError)

    def test_adjustment_without_image_only_updates_params(self, controller):
        assert controller.set_adjustment("contrast", 120) is None
        assert controller.session.current_params.contrast == 120
        assert controller.session.rendered_output is None

    def test_reset_is_idempotent(self, loaded, gradient_pixels, notices):
        loaded.set_adjustment("saturation", 0).result(TIMEOUT)
        loaded.reset().result(TIMEOUT)
        loaded.reset().result(TIMEOUT)
        assert loaded.session.current_params == NEUTRAL_PARAMS
        assert np.array_equal(loaded.session.rendered_output.pixels, gradient_pixels)
        assert messages(notices).count("Adjustments reset") == 2


class TestLastRequestWins:

    def test_slow_stale_render_is_discarded(self, engine, gradient_pixels):
        gate = threading.Event()
        published = []

        def renderer(source, params):
            if params.brightness == 120:
                gate.wait(TIMEOUT)
            out = render(source, params, engine=engine)
            if params.brightness == 150:
                gate.set()
            return out

        with SessionController(engine, renderer=renderer, on_render=published.append,
                               max_workers=2) as ctrl:
            ctrl.load_image(encode_png(gradient_pixels)).result(TIMEOUT)
            first = ctrl.set_adjustment("brightness", 120)
            second = ctrl.set_adjustment("brightness", 150)

            assert second.result(TIMEOUT) is True
            assert first.result(TIMEOUT) is False
            assert ctrl.wait_idle(TIMEOUT)

            expected = render(ctrl.session.original_image,
                              NEUTRAL_PARAMS.with_field("brightness", 150), engine=engine)
            assert np.array_equal(ctrl.session.rendered_output.pixels, expected.pixels)
            assert ctrl.session.current_params.brightness == 150
            assert len(published) == 2  # the upload and the newest request

    def test_failed_render_keeps_last_output(self, engine, gradient_pixels, notices):
        def renderer(source, params):
            if params.filter is FilterType.SEPIA:
                raise RuntimeError("boom")
            return render(source, params, engine=engine)

        with SessionController(engine, renderer=renderer, on_notice=notices.append) as ctrl:
            ctrl.load_image(encode_png(gradient_pixels)).result(TIMEOUT)
            output = ctrl.session.rendered_output
            assert ctrl.set_adjustment("filter", "sepia").result(TIMEOUT) is False
            assert ctrl.session.rendered_output is output
            assert not ctrl.session.is_processing
            assert notices[-1].message == "Failed to process image"

    def test_stale_failure_is_dropped_silently(self, engine, gradient_pixels, notices):
        gate = threading.Event()

        def renderer(source, params):
            if params.brightness == 120:
                gate.wait(TIMEOUT)
                raise RuntimeError("late failure")
            out = render(source, params, engine=engine)
            if params.brightness == 150:
                gate.set()
            return out

        with SessionController(engine, renderer=renderer, on_notice=notices.append,
                               max_workers=2) as ctrl:
            ctrl.load_image(encode_png(gradient_pixels)).result(TIMEOUT)
            first = ctrl.set_adjustment("brightness", 120)
            second = ctrl.set_adjustment("brightness", 150)

            assert second.result(TIMEOUT) is True
            output = ctrl.session.rendered_output
            assert first.result(TIMEOUT) is False
            assert ctrl.wait_idle(TIMEOUT)

            expected = render(ctrl.session.original_image,
                              NEUTRAL_PARAMS.with_field("brightness", 150), engine=engine)
            assert ctrl.session.rendered_output is output
            assert np.array_equal(output.pixels, expected.pixels)
            assert not ctrl.session.is_processing
            assert "Failed to process image" not in messages(notices)


class TestRenderCallback:

    def test_callback_runs_without_the_lock(self, engine, gradient_pixels):
        blocked = []

        def on_render(output):
            # a UI thread reading the view state while the callback waits on it
            reader = threading.Thread(target=ctrl.visible_images)
            reader.start()
            reader.join(2)
            blocked.append(reader.is_alive())

        with SessionController(engine, on_render=on_render) as ctrl:
            assert ctrl.load_image(encode_png(gradient_pixels)).result(TIMEOUT) is True
            assert blocked == [False]

    def test_failing_callback_keeps_published_output(self, engine, gradient_pixels):
        def on_render(output):
            raise RuntimeError("display went away")

        with SessionController(engine, on_render=on_render) as ctrl:
            assert ctrl.load_image(encode_png(gradient_pixels)).result(TIMEOUT) is True
            assert np.array_equal(ctrl.session.rendered_output.pixels, gradient_pixels)
            assert not ctrl.session.is_processing


class TestEngineReadiness:

    def test_render_deferred_until_engine_loads(self, gradient_pixels, notices):
        with SessionController(OpenCVEngine(num_threads=1), on_notice=notices.append) as ctrl:
            assert not ctrl.engine_ready
            assert ctrl.load_image(encode_png(gradient_pixels)) is None
            assert ctrl.session.original_image is not None
            assert ctrl.session.rendered_output is None
            assert isinstance(notices[-1].error, EngineNotReadyError)

            assert ctrl.start_engine().result(TIMEOUT) is True
            assert ctrl.wait_idle(TIMEOUT)
            assert ctrl.engine_ready
            assert np.array_equal(ctrl.session.rendered_output.pixels, gradient_pixels)
            assert "Image processing engine loaded!" in messages(notices)

    def test_engine_load_failure(self, notices):
        with SessionController(BrokenEngine(), on_notice=notices.append) as ctrl:
            assert ctrl.start_engine().result(TIMEOUT) is False
            assert not ctrl.engine_ready
            assert notices[-1].message == "Failed to load image processing engine"
            assert isinstance(notices[-1].error, EngineLoadError)

    def test_export_before_engine_load(self, gradient_pixels, notices):
        with SessionController(OpenCVEngine(), on_notice=notices.append) as ctrl:
            ctrl.load_image(encode_png(gradient_pixels))
            assert ctrl.export_current() is None
            assert isinstance(notices[-1].error, NoImageError)


class TestExport:

    def test_export_without_image(self, controller, notices):
        assert controller.export_current() is None
        assert notices[-1].message == "No image to download"
        assert isinstance(notices[-1].error, NoImageError)

    def test_export_returns_jpeg(self, loaded):
        data = loaded.export_current()
        assert data[:2] == b"\xff\xd8"

    def test_save_export_default_name(self, loaded, notices, tmp_path):
        loaded.EXPORT_DIR = str(tmp_path)
        saved = loaded.save_export()
        assert saved == tmp_path / "edited-image.jpg"
        assert saved.read_bytes()[:2] == b"\xff\xd8"
        assert notices[-1].message == "Image downloaded"

    def test_save_export_without_image_writes_nothing(self, controller, tmp_path):
        assert controller.save_export(tmp_path / "x.jpg") is None
        assert not (tmp_path / "x.jpg").exists()


class TestViewState:

    def test_nothing_visible_without_image(self, controller):
        assert controller.visible_images() == []

    def test_split_view_shows_both(self, loaded):
        labels = [label for label, _ in loaded.visible_images()]
        assert labels == ["Original", "Edited"]

    def test_edited_view(self, loaded):
        loaded.set_view_mode("edited")
        assert loaded.session.view_mode is ViewMode.EDITED
        assert [label for label, _ in loaded.visible_images()] == ["Edited"]

    def test_toggle_original_does_not_render(self, loaded):
        output = loaded.session.rendered_output
        assert loaded.toggle_original_view() is True
        assert [label for label, _ in loaded.visible_images()] == ["Original"]
        assert loaded.toggle_original_view() is False
        assert loaded.session.rendered_output is output

    def test_unknown_view_mode(self, loaded, notices):
        loaded.set_view_mode("sideways")
        assert loaded.session.view_mode is ViewMode.SPLIT
        assert notices[-1].message == "Unknown view mode"


def test_configure_logging(monkeypatch):
    calls = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kw: calls.append(kw))
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    session_controller.configure_logging()
    session_controller.configure_logging("WARNING")
    assert calls[0]["level"] == "DEBUG"
    assert calls[1]["level"] == "WARNING"
    assert calls[0]["format"] == session_controller.LOG_FORMAT
