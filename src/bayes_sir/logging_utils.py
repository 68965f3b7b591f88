"""Logging helpers for calibration scripts.

Console + file logging so sampler progress and convergence warnings can be
traced from a run folder. Library modules only ever call
``logging.getLogger(__name__)``; handlers are installed here, once, by the
scripts.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _resolve_level(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    return getattr(logging, str(level).upper(), logging.INFO)


def _make_handler(handler: logging.Handler, level: int) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    return handler


def setup_logging(
    level: Union[str, int] = "INFO",
    log_file: Optional[Union[str, Path]] = None,
    console: bool = True,
) -> logging.Logger:
    """Configure the root logger with optional console and file handlers.

    Existing root handlers are dropped first so that calling this twice in
    one process (e.g. a recovery study looping over trials) does not
    duplicate every line.
    """
    root = logging.getLogger()
    resolved = _resolve_level(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(resolved)

    if console:
        root.addHandler(_make_handler(logging.StreamHandler(), resolved))
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        root.addHandler(_make_handler(logging.FileHandler(path, encoding="utf-8"), resolved))

    return root
