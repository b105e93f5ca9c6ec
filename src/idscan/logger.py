# src/idscan/logger.py

import logging
import sys
from pathlib import Path
from queue import Queue
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from typing import Union, Optional

# --- Custom Log Level for pipeline state changes ---
STAGE = 25
logging.addLevelName(STAGE, "STAGE")


class StageEventHandler(logging.Handler):
    """Turns STAGE records into dicts for whatever shows the pipeline state."""
    def __init__(self, q: Queue):
        super().__init__(level=STAGE)
        self.q = q
        self.addFilter(lambda record: record.levelno == STAGE)

    def emit(self, record: logging.LogRecord):
        try:
            self.q.put({
                "run_id": getattr(record, "run_id", None),
                "state": getattr(record, "state", None),
                "error_kind": getattr(record, "error_kind", None),
                "msg": record.getMessage(),
            })
        except Exception:
            self.handleError(record)


# --- Main Configuration Function ---
def setup_logging(
    log_queue: Queue,
    *,
    event_queue: Optional[Queue] = None,
    level: int = logging.INFO,
    console: bool = True,
    file_path: Optional[Union[str, Path]] = None,
    file_level: Optional[int] = None,
) -> QueueListener:
    """
    Sets up the logging listener architecture.

    Args:
        log_queue: The queue that the camera and pipeline threads log to.
        event_queue: Optional queue receiving one dict per pipeline state change.
        level: The base logging level for console output.
        console: Whether to also log to stderr.
        file_path: Path to the persistent log file.
        file_level: The logging level for the file.

    Returns:
        A QueueListener instance. You must call .start() on it.
    """
    handlers = []

    if console:
        ch = logging.StreamHandler(sys.stderr)
        ch.setLevel(level)
        ch.setFormatter(logging.Formatter("%(levelname)-8s | %(message)s"))
        handlers.append(ch)

    if file_path:
        fp = Path(file_path)
        fp.parent.mkdir(parents=True, exist_ok=True)
        fh = RotatingFileHandler(fp, maxBytes=5*1024*1024, backupCount=2, encoding="utf-8")
        fh.setLevel(file_level if file_level is not None else level)
        fh.setFormatter(logging.Formatter("%(asctime)s | %(threadName)-15s | %(levelname)-8s | %(message)s"))
        handlers.append(fh)

    if event_queue is not None:
        handlers.append(StageEventHandler(event_queue))

    return QueueListener(log_queue, *handlers, respect_handler_level=True)


def configure_worker_logging(log_queue: Queue):
    """
    Routes the "idscan" logger through the queue only.
    Removes handlers left over from an earlier configuration.
    """
    logger = logging.getLogger("idscan")
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    logger.handlers.clear()

    qh = QueueHandler(log_queue)
    logger.addHandler(qh)
