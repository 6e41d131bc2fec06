from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path

LOGGER_NAME = "mathometer"
MSG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


def configure_logging(*, level: str = "INFO", log_path: Path | None = None) -> logging.Logger:
    """Attach console and (optionally) rotating file handlers to the package logger.

    Safe to call more than once; handlers installed by a previous call are replaced.
    """

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        if getattr(handler, "_mathometer", False):
            logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(MSG_FORMAT)
    console_level = logging.getLevelName(str(level).upper())
    if not isinstance(console_level, int):
        console_level = logging.INFO

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(console_level)
    stream_handler.setFormatter(formatter)
    stream_handler._mathometer = True  # type: ignore[attr-defined]
    logger.addHandler(stream_handler)

    if log_path is not None:
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            # New log file every 30 days.
            file_handler = logging.handlers.TimedRotatingFileHandler(
                str(log_path), when="D", interval=30, encoding="utf-8"
            )
        except OSError:
            logger.warning("cannot open log file %s; logging to console only", log_path)
        else:
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(formatter)
            file_handler._mathometer = True  # type: ignore[attr-defined]
            logger.addHandler(file_handler)

    return logger
