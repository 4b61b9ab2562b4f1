from __future__ import annotations

import contextvars
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(batch_id)s | %(take_id)s | %(stage)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

LOG_BATCH_ID: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("log_batch_id", default=None)
LOG_TAKE_ID: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("log_take_id", default=None)
LOG_STAGE: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("log_stage", default=None)


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.batch_id = LOG_BATCH_ID.get() or "-"
        record.take_id = LOG_TAKE_ID.get() or "-"
        record.stage = LOG_STAGE.get() or "-"
        return True


@contextmanager
def log_context(
    batch_id: Optional[str] = None,
    take_id: Optional[str] = None,
    stage: Optional[str] = None,
) -> Iterator[None]:
    tokens = []
    if batch_id is not None:
        tokens.append((LOG_BATCH_ID, LOG_BATCH_ID.set(batch_id)))
    if take_id is not None:
        tokens.append((LOG_TAKE_ID, LOG_TAKE_ID.set(take_id)))
    if stage is not None:
        tokens.append((LOG_STAGE, LOG_STAGE.set(stage)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def configure_logging(
    log_file: str = "logs/reelchain.log",
    level: int = logging.INFO,
    enable_console: bool = False,
    force: bool = False,
) -> logging.Logger:
    root = logging.getLogger()
    if getattr(root, "_reelchain_logging_configured", False) and not force:
        return root

    if force:
        for handler in list(root.handlers):
            root.removeHandler(handler)
        for log_filter in list(root.filters):
            root.removeFilter(log_filter)

    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)
    context_filter = ContextFilter()

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(formatter)
    # Handler-level filters also cover records propagated from child loggers.
    file_handler.addFilter(context_filter)

    root.addHandler(file_handler)
    if enable_console:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        stream_handler.addFilter(context_filter)
        root.addHandler(stream_handler)

    root.addFilter(context_filter)
    root.setLevel(level)
    logging.captureWarnings(True)
    root._reelchain_logging_configured = True
    return root


def setup_logger(name: str) -> logging.Logger:
    """Module logger. Handlers come from configure_logging() at the entry point."""
    return logging.getLogger(name)
