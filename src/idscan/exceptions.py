# idscan/exceptions.py
class IdScanError(Exception):
    """Base exception for the idscan library."""
    pass

class PermissionDeniedError(IdScanError):
    """Raised when camera access has not been granted."""
    pass

class CameraBindError(IdScanError):
    """Raised when the camera could not be opened or bound to a preview."""
    pass

class CaptureError(IdScanError):
    """Raised when a still capture fails or times out."""
    pass

class DecodeError(IdScanError):
    """Raised when a captured file cannot be read as an image."""
    pass

class AssetStagingError(IdScanError):
    """Raised when the trained language data cannot be staged."""
    pass

class OcrError(IdScanError):
    """Raised when the OCR engine fails while recognizing an image."""
    pass

class OcrInitError(OcrError):
    """Raised when the OCR engine rejects its language data."""
    pass
