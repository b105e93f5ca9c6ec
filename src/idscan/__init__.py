# src/idscan/__init__.py
from .config import ScanConfig
from .exceptions import (
    IdScanError,
    PermissionDeniedError,
    CameraBindError,
    CaptureError,
    DecodeError,
    AssetStagingError,
    OcrError,
    OcrInitError,
)
from .extract import extract_id
from .models import CaptureFailure, CaptureSuccess, ErrorKind, PipelineState, ScanResult

__version__ = "0.1.0"

__all__ = [
    "ScanConfig",
    "extract_id",
    "ScanResult",
    "PipelineState",
    "ErrorKind",
    "CaptureSuccess",
    "CaptureFailure",
    "IdScanError",
    "PermissionDeniedError",
    "CameraBindError",
    "CaptureError",
    "DecodeError",
    "AssetStagingError",
    "OcrError",
    "OcrInitError",
]
