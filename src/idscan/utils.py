# src/idscan/utils.py
from __future__ import annotations

import logging
import os
import platform
import shutil
import time
from pathlib import Path
from typing import Optional, Union

from slugify import slugify

from .exceptions import PermissionDeniedError

logger = logging.getLogger("idscan")


# ----------------------------
# Tesseract binary
# ----------------------------

def resolve_tesseract_cmd(explicit: Optional[str] = None) -> Optional[str]:
    """
    Locate the tesseract binary: explicit path, TESSERACT_CMD, PATH, then
    the usual install locations for the current OS.
    """
    for cmd in (explicit, os.getenv("TESSERACT_CMD")):
        if cmd and Path(cmd).exists():
            return str(cmd)

    cmd = shutil.which("tesseract")
    if cmd:
        return cmd

    system = platform.system()
    if system == "Windows":
        candidates = [
            r"C:\Program Files\Tesseract-OCR\tesseract.exe",
            r"C:\Program Files (x86)\Tesseract-OCR\tesseract.exe",
        ]
    elif system == "Darwin":
        candidates = [
            "/opt/homebrew/bin/tesseract",
            "/usr/local/bin/tesseract",
        ]
    else:
        candidates = [
            "/usr/bin/tesseract",
            "/usr/local/bin/tesseract",
            "/snap/bin/tesseract",
        ]

    for p in candidates:
        if Path(p).exists():
            return p
    return None


# ----------------------------
# Capture files
# ----------------------------

def capture_filename(prefix: str = "capture", millis: Optional[int] = None) -> str:
    """Timestamp-derived JPEG name, e.g. capture_1718031234567.jpg"""
    if millis is None:
        millis = time.time_ns() // 1_000_000
    stem = slugify(prefix or "", separator="_")[:40] or "capture"
    return f"{stem}_{millis}.jpg"


def new_capture_path(cache_dir: Union[str, Path], prefix: str = "capture") -> Path:
    """
    Reserve a unique capture path in cache_dir. Two requests inside the same
    millisecond get consecutive timestamps instead of sharing a file.
    """
    cache_dir = Path(cache_dir)
    cache_dir.mkdir(parents=True, exist_ok=True)
    millis = time.time_ns() // 1_000_000
    while True:
        path = cache_dir / capture_filename(prefix, millis)
        try:
            # O_EXCL so the name is ours even with several sessions on one cache dir
            fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
        except FileExistsError:
            millis += 1
            continue
        os.close(fd)
        return path


def remove_quietly(path: Union[str, Path, None]) -> None:
    if not path:
        return
    try:
        Path(path).unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Failed to remove %s, %s", path, e)


# ----------------------------
# Camera permission
# ----------------------------

def camera_permission_granted(device_index: int = 0) -> bool:
    """
    Whether this process may open the camera at device_index.
    On Linux this is read/write access to /dev/videoN; other platforms gate
    access in the OS itself, so we report True and let binding fail instead.
    """
    if platform.system() != "Linux":
        return True
    dev = Path(f"/dev/video{int(device_index)}")
    if not dev.exists():
        # a missing device is a bind failure, not a permission problem
        return True
    return os.access(dev, os.R_OK | os.W_OK)


def require_camera_permission(device_index: int = 0) -> None:
    """Raise PermissionDeniedError unless the camera at device_index may be opened."""
    if not camera_permission_granted(device_index):
        raise PermissionDeniedError(f"No access to camera {device_index}")
