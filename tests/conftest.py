import logging
from concurrent.futures import Future
from pathlib import Path

import pytest
from PIL import Image

from idscan.config import ScanConfig
from idscan.models import CaptureFailure, CaptureSuccess

TRAINEDDATA_BYTES = b"fake-traineddata\x00" * 4096


def write_image(path: Path, fmt: str = "JPEG") -> Path:
    im = Image.new("RGB", (64, 32), (255, 255, 255))
    im.save(path, format=fmt)
    return path


@pytest.fixture
def bundled_dir(tmp_path):
    d = tmp_path / "bundled"
    d.mkdir()
    (d / "spa.traineddata").write_bytes(TRAINEDDATA_BYTES)
    return d


@pytest.fixture
def config(tmp_path, bundled_dir):
    return ScanConfig(
        data_dir=tmp_path / "data",
        cache_dir=tmp_path / "cache",
        bundled_tessdata_dir=bundled_dir,
        capture_timeout=2.0,
    )


class FakeEngine:
    """Stands in for the tesseract engine; returns canned text or raises."""

    def __init__(self, text="", error=None):
        self.text = text
        self.error = error
        self.calls = []

    def recognize(self, image, language_data_dir, language_code):
        self.calls.append((image.size, Path(language_data_dir), language_code))
        if self.error is not None:
            raise self.error
        return self.text


class FakeCamera:
    """Resolves every capture immediately by writing an image (or failing)."""

    def __init__(self, payload=None, failure=None, never_resolve=False):
        self.payload = payload
        self.failure = failure
        self.never_resolve = never_resolve
        self.captured = []

    def capture(self, dest):
        dest = Path(dest)
        self.captured.append(dest)
        fut = Future()
        if self.never_resolve:
            return fut
        if self.failure is not None:
            fut.set_result(CaptureFailure(self.failure))
            return fut
        if self.payload is not None:
            dest.write_bytes(self.payload)
        else:
            write_image(dest)
        fut.set_result(CaptureSuccess(dest))
        return fut


@pytest.fixture
def fake_camera():
    return FakeCamera()


@pytest.fixture(autouse=True)
def reset_idscan_logger():
    yield
    logger = logging.getLogger("idscan")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
