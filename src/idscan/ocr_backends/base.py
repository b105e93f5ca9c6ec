# idscan/ocr_backends/base.py
from typing import Any, Union
from pathlib import Path
from abc import ABC, abstractmethod

class BaseOCREngine(ABC):
    @abstractmethod
    def recognize(self, image: Any, language_data_dir: Union[str, Path], language_code: str) -> str:
        """
        Run one recognition in a fresh engine session and return its UTF-8 text.
        An empty string is a valid result.
        Raises OcrInitError when the language data is rejected, OcrError otherwise.
        """
        pass
