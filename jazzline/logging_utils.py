"""Logging setup for jazzline.

The ``jazzline`` logger gets a console handler and a file handler. Both are
tagged, so calling :func:`configure_logging` again (for example after
``JAZZLINE_LOG_DIR`` changed) swaps them out instead of stacking duplicates.
The file records the thread name because notes may be computed on a worker.
"""

from __future__ import annotations

import logging
import os
import sys
import traceback
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path

_LOGGER = logging.getLogger("jazzline.logging")

LOG_DIR_ENV = "JAZZLINE_LOG_DIR"
DEBUG_ENV = "JAZZLINE_DEBUG"
LOG_FILE = "jazzline.log"

_HANDLER_TAG = "_jazzline_handler"
_CONSOLE_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
_CONSOLE_DATE_FORMAT = "%H:%M:%S"
_FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s (%(threadName)s): %(message)s"


def get_log_dir() -> Path:
    configured = os.environ.get(LOG_DIR_ENV)
    if configured:
        return Path(configured).expanduser()
    return Path.home() / ".cache" / "jazzline" / "logs"


def get_log_path() -> Path:
    return get_log_dir() / LOG_FILE


def _tagged(handler: logging.Handler) -> logging.Handler:
    setattr(handler, _HANDLER_TAG, True)
    return handler


def _remove_own_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_TAG, False):
            logger.removeHandler(handler)
            handler.close()


def configure_logging() -> Path | None:
    """Install the console and file handlers; returns the log file path.

    The console handler is skipped when the root logger already has handlers
    (an application or test harness is collecting records). Returns ``None``
    when the log file cannot be opened.
    """
    logger = logging.getLogger("jazzline")
    logger.setLevel(logging.DEBUG)
    _remove_own_handlers(logger)

    if not logging.getLogger().handlers:
        console = logging.StreamHandler(stream=sys.__stderr__)
        console.setLevel(logging.DEBUG if os.environ.get(DEBUG_ENV) else logging.INFO)
        console.setFormatter(logging.Formatter(_CONSOLE_FORMAT, datefmt=_CONSOLE_DATE_FORMAT))
        logger.addHandler(_tagged(console))

    path: Path | None = get_log_path()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
    except OSError as exc:
        _LOGGER.warning("File logging disabled: %s", exc)
        path = None
    else:
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT))
        logger.addHandler(_tagged(file_handler))

    logger.propagate = True
    return path


def _describe(details: Mapping[str, object]) -> str:
    return ", ".join(f"{key}={value!r}" for key, value in details.items())


def log_exception(context: str, exc: BaseException, **details: object) -> Path | None:
    """Append ``exc`` with its traceback to the log file.

    ``details`` (segment index, worker name, the message being handled) are
    written on the header line so a dropped note can be traced back.
    """
    header = f"[{datetime.now().isoformat()}] {context} failed: {type(exc).__name__}: {exc}"
    if details:
        header += f" ({_describe(details)})"
    path = get_log_path()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(header + "\n")
            traceback.print_exception(type(exc), exc, exc.__traceback__, file=handle)
            handle.write("\n")
    except OSError as log_exc:
        _LOGGER.warning("Could not write %s: %s", path, log_exc)
        return None
    return path
