import threading
import time
from concurrent.futures import Future

import numpy as np
import pytest

from idscan.camera import CameraSession
from idscan.exceptions import OcrError, OcrInitError
from idscan.models import ErrorKind, PipelineState
from idscan.pipeline import CapturePipeline

from .conftest import FakeCamera, FakeEngine, write_image

ID_TEXT = "Nombre: Juan\nCedula 1234567890 Fin"


def make_pipeline(config, engine, camera=None, **kwargs):
    return CapturePipeline(config, engine, camera=camera, **kwargs)


def test_end_to_end_with_id(config, fake_camera):
    engine = FakeEngine(ID_TEXT)
    with make_pipeline(config, engine, fake_camera) as pipeline:
        result = pipeline.run_once(timeout=5)

    assert result.ok
    assert result.id_number == "1234567890"
    assert result.output == "Nombre: Juan\nCedula 1234567890 Fin\n\nID detectado: 1234567890"
    assert engine.calls == [((64, 32), config.data_dir, "spa")]
    assert (config.data_dir / "tessdata" / "spa.traineddata").exists()


def test_end_to_end_without_id(config, fake_camera):
    text = "Nombre: Juan\nTel 555 1234"
    with make_pipeline(config, FakeEngine(text), fake_camera) as pipeline:
        result = pipeline.run_once(timeout=5)
    assert result.ok
    assert result.id_number is None
    assert result.output == text


def test_empty_text_is_done(config, fake_camera):
    with make_pipeline(config, FakeEngine(""), fake_camera) as pipeline:
        result = pipeline.run_once(timeout=5)
    assert result.ok
    assert result.output == ""


def test_state_sequence_and_reset(config, fake_camera):
    states = []
    with make_pipeline(config, FakeEngine(ID_TEXT), fake_camera,
                       on_state=lambda s, run_id: states.append(s)) as pipeline:
        pipeline.run_once(timeout=5)
        assert pipeline.state is PipelineState.IDLE
    assert states == [
        PipelineState.CAPTURING,
        PipelineState.DECODING,
        PipelineState.STAGING,
        PipelineState.RECOGNIZING,
        PipelineState.EXTRACTING,
        PipelineState.DONE,
    ]


def test_capture_file_removed_after_decode(config, fake_camera):
    with make_pipeline(config, FakeEngine(ID_TEXT), fake_camera) as pipeline:
        pipeline.run_once(timeout=5)
    dest = fake_camera.captured[0]
    assert dest.parent == config.cache_dir
    assert dest.name.startswith("capture_") and dest.suffix == ".jpg"
    assert not dest.exists()


def test_keep_captures(config, fake_camera):
    config.keep_captures = True
    with make_pipeline(config, FakeEngine(ID_TEXT), fake_camera) as pipeline:
        pipeline.run_once(timeout=5)
    assert fake_camera.captured[0].exists()


def test_result_listener(config, fake_camera):
    results = []
    with make_pipeline(config, FakeEngine(ID_TEXT), fake_camera, on_result=results.append) as pipeline:
        pipeline.run_once(timeout=5)
    assert len(results) == 1 and results[0].ok


@pytest.mark.parametrize(
    "camera, engine, kind, message",
    [
        (FakeCamera(failure="sensor error"), FakeEngine(ID_TEXT), ErrorKind.CAPTURE, "Error capturando imagen"),
        (FakeCamera(payload=b"not an image"), FakeEngine(ID_TEXT), ErrorKind.DECODE, "Error leyendo imagen"),
        (FakeCamera(), FakeEngine(error=OcrInitError("bad data")), ErrorKind.OCR_INIT, "Error iniciando OCR"),
        (FakeCamera(), FakeEngine(error=OcrError("crash")), ErrorKind.OCR, "Error reconociendo texto"),
        (FakeCamera(), FakeEngine(error=ValueError("unexpected")), ErrorKind.OCR, "Error reconociendo texto"),
    ],
)
def test_stage_failures(config, camera, engine, kind, message):
    states = []
    with make_pipeline(config, engine, camera, on_state=lambda s, run_id: states.append(s)) as pipeline:
        result = pipeline.run_once(timeout=5)
        assert pipeline.state is PipelineState.IDLE
        assert not pipeline.busy
    assert result.state is PipelineState.FAILED
    assert result.error_kind is kind
    assert result.output == message
    assert states[-1] is PipelineState.FAILED
    assert all(not p.exists() for p in camera.captured)


def test_asset_failure_is_distinct_from_ocr(config, fake_camera, tmp_path):
    config.bundled_tessdata_dir = tmp_path / "missing"
    engine = FakeEngine(ID_TEXT)
    with make_pipeline(config, engine, fake_camera) as pipeline:
        result = pipeline.run_once(timeout=5)
    assert result.error_kind is ErrorKind.ASSET
    assert result.message == "Error preparando datos de OCR"
    assert engine.calls == []


def test_capture_timeout(config):
    config.capture_timeout = 0.1
    camera = FakeCamera(never_resolve=True)
    with make_pipeline(config, FakeEngine(ID_TEXT), camera) as pipeline:
        result = pipeline.run_once(timeout=5)
    assert result.error_kind is ErrorKind.CAPTURE
    assert "timed out" in result.error
    assert not camera.captured[0].exists()


class LateFrameHandle:
    """Camera handle that produces no frame until `delay` seconds after opening."""

    def __init__(self, delay):
        self.ready_at = time.monotonic() + delay

    def read(self):
        if time.monotonic() < self.ready_at:
            return False, None
        return True, np.full((48, 64, 3), 180, dtype=np.uint8)

    def release(self):
        pass


class LateFrameProvider:
    def __init__(self, delay):
        self.delay = delay

    def open(self):
        return LateFrameHandle(self.delay)


def test_late_frame_after_timeout_leaves_no_file(config):
    config.capture_timeout = 0.2
    camera = CameraSession(LateFrameProvider(0.6), first_frame_timeout=3.0, frame_interval=0.005)
    camera.start().result(timeout=5)
    try:
        with make_pipeline(config, FakeEngine(ID_TEXT), camera) as pipeline:
            result = pipeline.run_once(timeout=5)
        assert result.error_kind is ErrorKind.CAPTURE
        assert "timed out" in result.error
        # let the frame arrive and the camera thread finish the abandoned request
        time.sleep(1.0)
    finally:
        camera.stop()
    assert list(config.cache_dir.glob("*.jpg")) == []


class OddCamera:
    """Resolves captures with something that is not a CaptureResult."""

    def capture(self, dest):
        fut = Future()
        fut.set_result("not a capture result")
        return fut


def test_unexpected_capture_result_fails_as_capture(config):
    with make_pipeline(config, FakeEngine(ID_TEXT), OddCamera()) as pipeline:
        result = pipeline.run_once(timeout=5)
    assert result.error_kind is ErrorKind.CAPTURE
    assert "unexpected result" in result.error
    assert list(config.cache_dir.glob("*.jpg")) == []


def test_no_camera(config):
    with make_pipeline(config, FakeEngine(ID_TEXT)) as pipeline:
        result = pipeline.run_once(timeout=5)
    assert result.error_kind is ErrorKind.CAMERA_BIND


class BlockingEngine(FakeEngine):
    def __init__(self, text):
        super().__init__(text)
        self.entered = threading.Event()
        self.release = threading.Event()

    def recognize(self, image, language_data_dir, language_code):
        self.entered.set()
        assert self.release.wait(5)
        return super().recognize(image, language_data_dir, language_code)


def test_single_flight(config, fake_camera):
    engine = BlockingEngine(ID_TEXT)
    states = []
    with make_pipeline(config, engine, fake_camera, on_state=lambda s, run_id: states.append((run_id, s))) as pipeline:
        first = pipeline.trigger()
        assert first is not None
        assert engine.entered.wait(5)
        assert pipeline.busy
        assert pipeline.state is PipelineState.RECOGNIZING

        # concurrent triggers while the first run is in flight are all ignored
        started = []
        barrier = threading.Barrier(6)

        def hammer():
            barrier.wait()
            started.append(pipeline.trigger())

        threads = [threading.Thread(target=hammer) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert started == [None] * 6
        assert pipeline.process_file(fake_camera.captured[0]) is None

        engine.release.set()
        assert first.result(timeout=5).ok

        second = pipeline.trigger()
        assert second is not None
        assert second.result(timeout=5).ok

    run_ids = [run_id for run_id, _ in states]
    assert run_ids == sorted(run_ids)
    assert set(run_ids) == {1, 2}


def test_process_file(config, tmp_path):
    image = write_image(tmp_path / "doc.png", fmt="PNG")
    with make_pipeline(config, FakeEngine(ID_TEXT)) as pipeline:
        result = pipeline.process_file(image)
    assert result.ok
    assert result.source_path == str(image)
    assert image.exists()


def test_process_missing_file(config, tmp_path):
    with make_pipeline(config, FakeEngine(ID_TEXT)) as pipeline:
        result = pipeline.process_file(tmp_path / "nope.jpg")
    assert result.error_kind is ErrorKind.DECODE
