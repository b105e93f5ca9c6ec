# idscan/models.py
from __future__ import annotations

from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Union

ID_LINE_PREFIX = "ID detectado: "


class PipelineState(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    DECODING = "decoding"
    STAGING = "staging"
    RECOGNIZING = "recognizing"
    EXTRACTING = "extracting"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineState.DONE, PipelineState.FAILED)


class ErrorKind(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    CAMERA_BIND = "camera_bind"
    CAPTURE = "capture"
    DECODE = "decode"
    ASSET = "asset"
    OCR_INIT = "ocr_init"
    OCR = "ocr"


# Short user-facing status line per failure kind
ERROR_MESSAGES = {
    ErrorKind.PERMISSION_DENIED: "Permiso de cámara requerido",
    ErrorKind.CAMERA_BIND: "Error iniciando cámara",
    ErrorKind.CAPTURE: "Error capturando imagen",
    ErrorKind.DECODE: "Error leyendo imagen",
    ErrorKind.ASSET: "Error preparando datos de OCR",
    ErrorKind.OCR_INIT: "Error iniciando OCR",
    ErrorKind.OCR: "Error reconociendo texto",
}


@dataclass(frozen=True)
class CaptureSuccess:
    path: Path


@dataclass(frozen=True)
class CaptureFailure:
    reason: str


CaptureResult = Union[CaptureSuccess, CaptureFailure]


@dataclass
class CaptureRequest:
    """One capture attempt: where the frame goes and how completion is reported."""
    dest_path: Path
    future: Future = field(default_factory=Future)

    def resolve(self, result: CaptureResult) -> bool:
        """Resolve the request once. Returns False if it was already resolved."""
        if self.future.done():
            return False
        try:
            self.future.set_result(result)
        except Exception:
            # lost a race with another resolver
            return False
        return True


@dataclass(frozen=True)
class ScanResult:
    """Terminal outcome of one pipeline run."""
    state: PipelineState
    text: Optional[str] = None
    id_number: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None
    source_path: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.state is PipelineState.DONE

    @property
    def message(self) -> str:
        """The user-visible status line for a failed run."""
        if self.error_kind is None:
            return ""
        return ERROR_MESSAGES[self.error_kind]

    @property
    def output(self) -> str:
        """Display text: the recognized text, plus the ID line when one was found."""
        if not self.ok:
            return self.message
        text = self.text or ""
        if self.id_number:
            return f"{text}\n\n{ID_LINE_PREFIX}{self.id_number}"
        return text

    def to_dict(self) -> dict:
        return {
            "source_path": self.source_path,
            "state": self.state.value,
            "text": self.text,
            "id_number": self.id_number,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error": self.error,
        }

    @classmethod
    def done(cls, text: str, id_number: Optional[str], source_path: Optional[str] = None) -> "ScanResult":
        return cls(PipelineState.DONE, text=text, id_number=id_number, source_path=source_path)

    @classmethod
    def failed(cls, kind: ErrorKind, error: str, source_path: Optional[str] = None) -> "ScanResult":
        return cls(PipelineState.FAILED, error_kind=kind, error=error, source_path=source_path)
