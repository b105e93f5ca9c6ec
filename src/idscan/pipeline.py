# src/idscan/pipeline.py
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from pathlib import Path
from typing import Callable, Optional, Union

from PIL import Image

from .assets import AssetStager
from .camera import CameraSession
from .config import ScanConfig
from .exceptions import (
    AssetStagingError,
    CameraBindError,
    CaptureError,
    DecodeError,
    IdScanError,
    OcrError,
    OcrInitError,
)
from .extract import extract_id
from .logger import STAGE
from .models import CaptureFailure, CaptureSuccess, ErrorKind, PipelineState, ScanResult
from .ocr_backends.base import BaseOCREngine
from .utils import new_capture_path, remove_quietly

logger = logging.getLogger("idscan")

StateListener = Callable[[PipelineState, int], None]
ResultListener = Callable[[ScanResult], None]

# Kind reported when a stage fails with something outside the taxonomy
_STAGE_ERROR_KIND = {
    PipelineState.CAPTURING: ErrorKind.CAPTURE,
    PipelineState.DECODING: ErrorKind.DECODE,
    PipelineState.STAGING: ErrorKind.ASSET,
    PipelineState.RECOGNIZING: ErrorKind.OCR,
    PipelineState.EXTRACTING: ErrorKind.OCR,
}


def decode_image(path: Union[str, Path]) -> Image.Image:
    """Read an image file fully into memory as RGB. Raises DecodeError."""
    try:
        with Image.open(path) as im:
            im.load()
            return im.convert("RGB")
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        raise DecodeError(f"Cannot decode image {path}, {e}") from e


class _StageFailed(Exception):
    def __init__(self, kind: ErrorKind, error: Exception):
        super().__init__(str(error))
        self.kind = kind
        self.error = error


class CapturePipeline:
    """
    Orchestrates capture -> decode -> stage -> recognize -> extract.

    Runs execute on a dedicated background thread, one at a time. trigger()
    while a run is in flight is ignored and returns None. Every stage error is
    turned into a FAILED ScanResult; the returned future never raises.
    """

    def __init__(
        self,
        config: ScanConfig,
        engine: BaseOCREngine,
        *,
        camera: Optional[CameraSession] = None,
        stager: Optional[AssetStager] = None,
        on_state: Optional[StateListener] = None,
        on_result: Optional[ResultListener] = None,
    ):
        self.config = config
        self.engine = engine
        self.camera = camera
        self.stager = stager or AssetStager(config.bundled_tessdata_dir, config.language)
        self.on_state = on_state
        self.on_result = on_result

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pipeline")
        self._guard = threading.Lock()
        self._busy = False
        self._run_id = 0
        self._state = PipelineState.IDLE

    # --- state ---
    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def busy(self) -> bool:
        with self._guard:
            return self._busy

    def _set_state(self, state: PipelineState, run_id: int, **extra) -> None:
        self._state = state
        logger.log(
            STAGE, "Run %d, %s", run_id, state.value,
            extra={"run_id": run_id, "state": state.value, **extra},
        )
        if self.on_state is not None:
            try:
                self.on_state(state, run_id)
            except Exception:
                logger.exception("State listener raised")

    def _begin(self) -> Optional[int]:
        with self._guard:
            if self._busy:
                return None
            self._busy = True
            self._run_id += 1
            return self._run_id

    def _end(self, run_id: int, result: ScanResult) -> ScanResult:
        if result.ok:
            self._set_state(PipelineState.DONE, run_id)
        else:
            self._set_state(PipelineState.FAILED, run_id, error_kind=result.error_kind.value)
        if self.on_result is not None:
            try:
                self.on_result(result)
            except Exception:
                logger.exception("Result listener raised")
        with self._guard:
            self._state = PipelineState.IDLE
            self._busy = False
        return result

    # --- entry points ---
    def trigger(self) -> Optional[Future]:
        """Start one capture run. Returns None when a run is already in flight."""
        run_id = self._begin()
        if run_id is None:
            logger.warning("Capture ignored, previous run still in progress")
            return None
        try:
            return self._executor.submit(self._capture_run, run_id)
        except RuntimeError:
            with self._guard:
                self._busy = False
            raise

    def run_once(self, timeout: Optional[float] = None) -> ScanResult:
        """Trigger a capture run and wait for it."""
        fut = self.trigger()
        if fut is None:
            raise IdScanError("A capture is already in progress")
        return fut.result(timeout=timeout)

    def process_file(self, image_path: Union[str, Path]) -> Optional[ScanResult]:
        """Run decode -> extract on an existing image file, on the calling thread."""
        run_id = self._begin()
        if run_id is None:
            logger.warning("Scan of %s ignored, previous run still in progress", image_path)
            return None
        return self._execute(run_id, Path(image_path), capture=False)

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def __enter__(self) -> "CapturePipeline":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --- stages ---
    def _capture_run(self, run_id: int) -> ScanResult:
        return self._execute(run_id, None, capture=True)

    def _execute(self, run_id: int, path: Optional[Path], capture: bool) -> ScanResult:
        start = time.perf_counter()
        source = str(path) if path else None
        stage = PipelineState.IDLE
        try:
            if capture:
                stage = PipelineState.CAPTURING
                self._set_state(stage, run_id)
                path = self._capture()
                source = str(path)

            stage = PipelineState.DECODING
            self._set_state(stage, run_id)
            try:
                image = decode_image(path)
            except DecodeError as e:
                raise _StageFailed(ErrorKind.DECODE, e) from e
            finally:
                if capture and not self.config.keep_captures:
                    remove_quietly(path)

            try:
                stage = PipelineState.STAGING
                self._set_state(stage, run_id)
                try:
                    self.stager.ensure(self.config.data_dir)
                except AssetStagingError as e:
                    raise _StageFailed(ErrorKind.ASSET, e) from e

                stage = PipelineState.RECOGNIZING
                self._set_state(stage, run_id)
                try:
                    text = self.engine.recognize(image, self.config.data_dir, self.config.language)
                except OcrInitError as e:
                    raise _StageFailed(ErrorKind.OCR_INIT, e) from e
                except OcrError as e:
                    raise _StageFailed(ErrorKind.OCR, e) from e
            finally:
                image.close()

            stage = PipelineState.EXTRACTING
            self._set_state(stage, run_id)
            id_number = extract_id(text, self.config.min_id_digits, self.config.max_id_digits)

            logger.info(
                "Run %d recognized %d chars in %.2fs, id, %s",
                run_id, len(text), time.perf_counter() - start, id_number or "-",
            )
            return self._end(run_id, ScanResult.done(text, id_number, source_path=source))

        except _StageFailed as f:
            logger.error("Run %d failed at %s, %s, %s", run_id, stage.value, f.kind.value, f.error)
            return self._end(run_id, ScanResult.failed(f.kind, str(f.error), source_path=source))
        except Exception as e:
            kind = _STAGE_ERROR_KIND.get(stage, ErrorKind.OCR)
            logger.exception("Run %d crashed at %s", run_id, stage.value)
            return self._end(run_id, ScanResult.failed(kind, str(e), source_path=source))

    def _capture(self) -> Path:
        if self.camera is None:
            raise _StageFailed(ErrorKind.CAMERA_BIND, CameraBindError("no camera session attached"))
        try:
            dest = new_capture_path(self.config.cache_dir, self.config.capture_prefix)
        except OSError as e:
            raise _StageFailed(ErrorKind.CAPTURE, CaptureError(f"cannot create capture file, {e}")) from e

        fut = self.camera.capture(dest)
        try:
            result = fut.result(timeout=self.config.capture_timeout)
        except FutureTimeoutError:
            # a late result from the camera is dropped
            fut.cancel()
            remove_quietly(dest)
            raise _StageFailed(
                ErrorKind.CAPTURE,
                CaptureError(f"capture timed out after {self.config.capture_timeout}s"),
            )

        if isinstance(result, CaptureFailure):
            remove_quietly(dest)
            raise _StageFailed(ErrorKind.CAPTURE, CaptureError(result.reason))
        if not isinstance(result, CaptureSuccess):
            remove_quietly(dest)
            raise _StageFailed(
                ErrorKind.CAPTURE,
                CaptureError(f"camera returned an unexpected result, {result!r}"),
            )
        return result.path
