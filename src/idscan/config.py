# idscan/config.py
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional
import os
import tempfile
from importlib.resources import files


def _user_dir(env_var: str, fallback: str) -> Path:
    # XDG first, then ~/<fallback>, then the temp dir for read-only homes
    base = os.getenv(env_var)
    if base:
        return Path(base) / "idscan"
    home = Path.home()
    if home.exists():
        return home / fallback / "idscan"
    return Path(tempfile.gettempdir()) / "idscan"


def default_data_dir() -> Path:
    return _user_dir("XDG_DATA_HOME", ".local/share")


def default_cache_dir() -> Path:
    return _user_dir("XDG_CACHE_HOME", ".cache")


def default_bundled_tessdata_dir() -> Path:
    """Directory shipped inside the package holding the *.traineddata assets."""
    return Path(str(files("idscan").joinpath("tessdata")))


@dataclass
class ScanConfig:
    """Configuration for a capture and recognition session."""
    data_dir: Path = field(default_factory=default_data_dir)
    cache_dir: Path = field(default_factory=default_cache_dir)
    bundled_tessdata_dir: Path = field(default_factory=default_bundled_tessdata_dir)

    # Fixed per deployment, not a runtime option
    language: str = "spa"

    device_index: int = 0
    capture_timeout: float = 10.0
    jpeg_quality: int = 95
    capture_prefix: str = "capture"
    keep_captures: bool = False

    oem: int = 3
    psm: int = 3
    preserve_interword_spaces: bool = True
    tesseract_cmd: Optional[str] = None

    min_id_digits: int = 8
    max_id_digits: int = 10

    def __post_init__(self):
        if self.min_id_digits < 1 or self.max_id_digits < self.min_id_digits:
            raise ValueError(
                f"Invalid ID length range, [{self.min_id_digits}, {self.max_id_digits}]"
            )
        if not 0 <= self.jpeg_quality <= 100:
            raise ValueError(f"jpeg_quality must be within 0..100, got {self.jpeg_quality}")

    def to_dict(self):
        """Converts config to a plain dictionary (paths as strings)."""
        d = asdict(self)
        for key, value in d.items():
            if isinstance(value, Path):
                d[key] = str(value)
        return d

    @classmethod
    def from_dict(cls, config_dict: dict):
        d = dict(config_dict)

        # normalize path-like fields
        for key in ["data_dir", "cache_dir", "bundled_tessdata_dir"]:
            if key in d and isinstance(d[key], str):
                d[key] = Path(d[key])

        # allow explicit None to mean use default
        for key in ["data_dir", "cache_dir", "bundled_tessdata_dir", "device_index",
                    "capture_timeout", "jpeg_quality", "psm", "oem"]:
            if d.get(key) is None:
                d.pop(key, None)

        if not d.get("tesseract_cmd"):
            d["tesseract_cmd"] = os.getenv("TESSERACT_CMD") or None

        return cls(**d)
