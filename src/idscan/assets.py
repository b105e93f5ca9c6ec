# src/idscan/assets.py
from __future__ import annotations

import logging
import os
import shutil
import tempfile
import threading
from pathlib import Path
from typing import Union

from .exceptions import AssetStagingError

logger = logging.getLogger("idscan")

_COPY_CHUNK = 1024 * 1024


class AssetStager:
    """
    Makes sure the Tesseract trained data for one language exists under
    ``<data_dir>/tessdata/`` before the engine is initialized, copying it once
    from the bundled, read-only resource directory.

    The existence check and the copy run under one lock, so concurrent
    recognitions never race on the destination. The copy goes to a temporary
    file in the target directory and is renamed into place only after it was
    fully written, so a visible ``.traineddata`` is always complete.
    """

    def __init__(self, bundled_dir: Union[str, Path], language: str = "spa"):
        self.bundled_dir = Path(bundled_dir)
        self.language = language
        self._lock = threading.Lock()
        self.copies_performed = 0

    @property
    def filename(self) -> str:
        return f"{self.language}.traineddata"

    @property
    def source_path(self) -> Path:
        return self.bundled_dir / self.filename

    def target_path(self, data_dir: Union[str, Path]) -> Path:
        return Path(data_dir) / "tessdata" / self.filename

    def is_staged(self, data_dir: Union[str, Path]) -> bool:
        return self.target_path(data_dir).is_file()

    def ensure(self, data_dir: Union[str, Path]) -> Path:
        """
        Stage the trained data into ``data_dir`` if needed and return its path.
        Raises AssetStagingError on any filesystem failure.
        """
        target = self.target_path(data_dir)
        with self._lock:
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise AssetStagingError(f"Cannot create tessdata directory {target.parent}, {e}") from e

            if target.is_file():
                logger.debug("Trained data already staged, %s", target)
                return target

            self._copy_atomic(self.source_path, target)
            self.copies_performed += 1
            logger.info("Staged trained data, %s -> %s", self.source_path, target)
            return target

    def _copy_atomic(self, source: Path, target: Path) -> None:
        try:
            src = open(source, "rb")
        except OSError as e:
            raise AssetStagingError(f"Bundled trained data not available, {source}, {e}") from e

        tmp_path = None
        try:
            with src:
                fd, tmp_name = tempfile.mkstemp(
                    prefix=f".{target.name}.", suffix=".part", dir=str(target.parent)
                )
                tmp_path = Path(tmp_name)
                with os.fdopen(fd, "wb") as dst:
                    shutil.copyfileobj(src, dst, _COPY_CHUNK)
                    dst.flush()
                    os.fsync(dst.fileno())
            os.replace(tmp_path, target)
            tmp_path = None
        except OSError as e:
            raise AssetStagingError(f"Failed to write trained data to {target}, {e}") from e
        finally:
            if tmp_path is not None:
                try:
                    tmp_path.unlink()
                except FileNotFoundError:
                    pass
                except OSError:
                    logger.warning("Could not remove partial trained data file, %s", tmp_path)
