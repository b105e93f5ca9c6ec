# idscan/ocr_backends/tesseract_backend.py
from __future__ import annotations

from typing import Any, Dict, Optional, Union
from pathlib import Path
import logging
import threading
import time

import numpy as np
from PIL import Image
import pytesseract as pt

from ..exceptions import OcrError, OcrInitError
from ..utils import resolve_tesseract_cmd
from .base import BaseOCREngine

logger = logging.getLogger("idscan")

# Messages tesseract prints when the traineddata is missing or unreadable
_INIT_FAILURE_MARKERS = (
    "failed loading language",
    "error opening data file",
    "could not initialize tesseract",
)

# --- Session bookkeeping ---
_session_lock = threading.Lock()
_open_sessions = 0


def open_session_count() -> int:
    """Number of engine sessions currently holding resources."""
    with _session_lock:
        return _open_sessions


def _track(delta: int) -> None:
    global _open_sessions
    with _session_lock:
        _open_sessions += delta


def _to_pil(img: Any) -> Image.Image:
    if isinstance(img, Image.Image):
        return img
    if isinstance(img, np.ndarray):
        if img.ndim == 2:
            return Image.fromarray(img)
        return Image.fromarray(img[..., :3])
    raise TypeError(f"Unsupported image type for OCR, {type(img).__name__}")


class TesseractSession:
    """
    One engine instance bound to a tessdata directory and a language code.

    Use as a context manager. Resources are acquired in open() before the
    language data is validated, and released by close() on every path,
    including a failed open().
    """

    def __init__(self, tessdata_dir: Path, language: str, config: str, tesseract_cmd: Optional[str]):
        self.tessdata_dir = Path(tessdata_dir)
        self.language = language
        self._config = config
        self._cmd = tesseract_cmd
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> "TesseractSession":
        _track(+1)
        self._open = True
        try:
            self._init()
        except BaseException:
            self.close()
            raise
        return self

    def _init(self) -> None:
        cmd = resolve_tesseract_cmd(self._cmd)
        if not cmd:
            raise OcrInitError("Tesseract binary not found (set TESSERACT_CMD or install tesseract)")
        pt.pytesseract.tesseract_cmd = cmd

        traineddata = self.tessdata_dir / f"{self.language}.traineddata"
        try:
            size = traineddata.stat().st_size
        except OSError as e:
            raise OcrInitError(f"Language data not found, {traineddata}") from e
        if size == 0:
            raise OcrInitError(f"Language data is empty, {traineddata}")

    def recognize(self, image: Any) -> str:
        if not self._open:
            raise OcrError("Session is not initialized")
        pil_im = _to_pil(image)
        config = f'--tessdata-dir "{self.tessdata_dir}" {self._config}'
        try:
            text = pt.image_to_string(pil_im, lang=self.language, config=config)
        except pt.TesseractNotFoundError as e:
            raise OcrInitError(str(e)) from e
        except pt.TesseractError as e:
            msg = str(getattr(e, "message", "") or e)
            if any(m in msg.lower() for m in _INIT_FAILURE_MARKERS):
                raise OcrInitError(msg) from e
            raise OcrError(msg) from e
        except RuntimeError as e:
            # pytesseract raises RuntimeError when its timeout kills the process
            raise OcrError(str(e)) from e
        return text or ""

    def close(self) -> None:
        if self._open:
            self._open = False
            _track(-1)

    def __enter__(self) -> "TesseractSession":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class TesseractOCREngine(BaseOCREngine):
    """
    Pytesseract-based engine.

    Kwargs supported (all optional):
      - tesseract_cmd: full path to tesseract binary
      - oem: 0..3 (default 3 = LSTM)
      - psm: page segmentation mode (default 3 = fully automatic)
      - preserve_interword_spaces: bool (default True)
      - extra_config: str of extra flags (appended to config string)
    """

    def __init__(self, **kwargs: Dict[str, Any]):
        k = dict(kwargs)

        self.tesseract_cmd = k.pop("tesseract_cmd", None) or None
        oem = int(k.pop("oem", 3))
        psm = int(k.pop("psm", 3))
        preserve_spaces = bool(k.pop("preserve_interword_spaces", True))
        extra_cfg = str(k.pop("extra_config", "")).strip()
        if k:
            logger.debug("Ignoring unknown tesseract options, %s", sorted(k))

        cfg_parts = [f"--oem {oem}", f"--psm {psm}"]
        if preserve_spaces:
            cfg_parts.append("-c preserve_interword_spaces=1")
        if extra_cfg:
            cfg_parts.append(extra_cfg)
        self._config = " ".join(cfg_parts)

    @classmethod
    def from_config(cls, config) -> "TesseractOCREngine":
        return cls(
            tesseract_cmd=config.tesseract_cmd,
            oem=config.oem,
            psm=config.psm,
            preserve_interword_spaces=config.preserve_interword_spaces,
        )

    def session(self, language_data_dir: Union[str, Path], language_code: str) -> TesseractSession:
        return TesseractSession(
            Path(language_data_dir) / "tessdata", language_code, self._config, self.tesseract_cmd
        )

    def recognize(self, image: Any, language_data_dir: Union[str, Path], language_code: str) -> str:
        start = time.perf_counter()
        with self.session(language_data_dir, language_code) as sess:
            text = sess.recognize(image)
        logger.debug(
            "Tesseract recognized %d chars in %.2fs, lang, %s",
            len(text), time.perf_counter() - start, language_code,
        )
        return text
