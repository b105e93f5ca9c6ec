# src/idscan/camera.py
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Optional, Union

import cv2
import numpy as np

from .exceptions import CameraBindError
from .models import CaptureFailure, CaptureRequest, CaptureResult, CaptureSuccess
from .utils import remove_quietly

logger = logging.getLogger("idscan")

PreviewSurface = Callable[[np.ndarray], Any]


# --- Step 1, providers ---
class OpenCVCameraProvider:
    """Opens a cv2.VideoCapture for one device index."""

    def __init__(self, device_index: int = 0, width: Optional[int] = None, height: Optional[int] = None):
        self.device_index = device_index
        self.width = width
        self.height = height

    def open(self):
        cap = cv2.VideoCapture(self.device_index)
        if not cap.isOpened():
            cap.release()
            raise CameraBindError(f"Camera {self.device_index} is not available")
        if self.width:
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        if self.height:
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        return cap


# --- Step 2, one active binding (preview + still stream) ---
class CameraBinding:
    """
    Owns an open camera handle. A background thread keeps reading frames,
    hands each one to the preview surface and keeps the latest one for
    still captures. Only that thread touches the handle.
    """

    def __init__(self, handle, preview_surface: Optional[PreviewSurface] = None, frame_interval: float = 0.0):
        self.handle = handle
        self.preview_surface = preview_surface
        self.frame_interval = frame_interval
        self._latest: Optional[np.ndarray] = None
        self._frame_ready = threading.Condition()
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._preview_loop, name="camera-preview", daemon=True)
        self._failed_reads = 0

    def start(self) -> None:
        self._thread.start()

    def _preview_loop(self) -> None:
        while not self._stop.is_set():
            try:
                ok, frame = self.handle.read()
            except Exception:
                logger.exception("Camera read failed")
                ok, frame = False, None

            if not ok or frame is None:
                self._failed_reads += 1
                if self._failed_reads in (1, 50):
                    logger.warning("Camera returned no frame, %d consecutive failures", self._failed_reads)
                self._stop.wait(0.05)
                continue

            self._failed_reads = 0
            with self._frame_ready:
                self._latest = frame
                self._frame_ready.notify_all()

            if self.preview_surface is not None:
                try:
                    self.preview_surface(frame)
                except Exception:
                    logger.exception("Preview surface raised, frame dropped")

            if self.frame_interval:
                self._stop.wait(self.frame_interval)

    def latest_frame(self, timeout: float) -> Optional[np.ndarray]:
        """Most recent frame, waiting up to timeout seconds for the first one."""
        deadline = time.monotonic() + timeout
        with self._frame_ready:
            while self._latest is None and not self._stop.is_set():
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self._frame_ready.wait(remaining)
            return None if self._latest is None else self._latest.copy()

    def release(self) -> None:
        self._stop.set()
        with self._frame_ready:
            self._frame_ready.notify_all()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)
        try:
            self.handle.release()
        except Exception:
            logger.exception("Error releasing camera handle")


# --- Step 3, session ---
class CameraSession:
    """
    Long-lived owner of the process camera binding.

    start() binds asynchronously and returns a future; capture() writes one
    JPEG still and returns a future resolving to a CaptureResult. Both run on
    the session's single camera thread, so a capture submitted right after
    start() runs after the bind finished.
    """

    def __init__(
        self,
        provider=None,
        *,
        device_index: int = 0,
        jpeg_quality: int = 95,
        first_frame_timeout: float = 3.0,
        frame_interval: float = 0.0,
    ):
        self.provider = provider or OpenCVCameraProvider(device_index)
        self.jpeg_quality = jpeg_quality
        self.first_frame_timeout = first_frame_timeout
        self.frame_interval = frame_interval
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="camera")
        self._lock = threading.Lock()
        self._binding: Optional[CameraBinding] = None
        self._closed = False

    @property
    def is_bound(self) -> bool:
        with self._lock:
            return self._binding is not None

    def start(self, preview_surface: Optional[PreviewSurface] = None) -> Future:
        """Bind camera and preview in the background. Rebinding releases the prior binding first."""
        if self._closed:
            raise CameraBindError("Camera session is closed")
        fut = self._executor.submit(self._bind, preview_surface)
        fut.add_done_callback(_log_bind_outcome)
        return fut

    def _bind(self, preview_surface: Optional[PreviewSurface]) -> None:
        with self._lock:
            self._release_binding()
            try:
                handle = self.provider.open()
            except CameraBindError:
                raise
            except Exception as e:
                raise CameraBindError(f"Camera provider failed, {e}") from e
            binding = CameraBinding(handle, preview_surface, self.frame_interval)
            binding.start()
            self._binding = binding

    def capture(self, dest_path: Union[str, Path]) -> Future:
        """Single still capture to dest_path, resolving to CaptureSuccess or CaptureFailure."""
        request = CaptureRequest(dest_path=Path(dest_path))
        if self._closed:
            request.resolve(CaptureFailure("camera session is closed"))
            return request.future
        self._executor.submit(self._run_capture, request)
        return request.future

    def _run_capture(self, request: CaptureRequest) -> None:
        try:
            result = self._take_picture(request)
        except Exception as e:
            logger.exception("Still capture failed")
            result = CaptureFailure(f"capture failed, {e}")
        if not request.resolve(result) and isinstance(result, CaptureSuccess):
            # nobody is waiting for this frame any more
            logger.warning("Capture finished after its request was abandoned, removing %s", result.path)
            remove_quietly(result.path)

    def _take_picture(self, request: CaptureRequest) -> CaptureResult:
        dest = request.dest_path
        with self._lock:
            binding = self._binding
        if binding is None:
            return CaptureFailure("camera not bound")

        frame = binding.latest_frame(self.first_frame_timeout)
        if frame is None:
            return CaptureFailure("no frame available from camera")

        if request.future.cancelled():
            return CaptureFailure("capture request cancelled")

        ok, buf = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), int(self.jpeg_quality)])
        if not ok:
            return CaptureFailure("JPEG encoding failed")
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            with open(dest, "wb") as f:
                f.write(buf.tobytes())
        except OSError as e:
            return CaptureFailure(f"cannot write {dest}, {e}")

        logger.debug("Captured frame %sx%s to %s", frame.shape[1], frame.shape[0], dest)
        return CaptureSuccess(dest)

    def _release_binding(self) -> None:
        if self._binding is not None:
            self._binding.release()
            self._binding = None
            logger.debug("Released previous camera binding")

    def stop(self) -> None:
        """Release the binding and the camera thread. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=True)
        with self._lock:
            self._release_binding()

    def __enter__(self) -> "CameraSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()


def _log_bind_outcome(fut: Future) -> None:
    if fut.cancelled():
        return
    exc = fut.exception()
    if exc is not None:
        logger.error("Camera bind failed, %s", exc)
    else:
        logger.info("Camera bound, preview running")
