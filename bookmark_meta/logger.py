# === FILE: bookmark_meta/logger.py ===
"""Logging setup for **BookmarkMeta**.

Everything logs under the ``BookmarkMeta`` logger: pipeline modules use
children obtained from :func:`get_logger` (``BookmarkMeta.fetcher``,
``BookmarkMeta.validator``, ...), and security audit records go to
``BookmarkMeta.security``. One :func:`configure` call governs the whole tree:

      from bookmark_meta.logger import configure, get_logger
      configure(level="INFO", audit_file="security.log")
      get_logger("fetcher").info("Fetching metadata")

Once configured, the tree stops propagating to the root logger, so a host
application with its own root handlers does not print each record twice.
Until then records propagate as usual.
"""
from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Final, Union

# --------------------------------------------------------------------------- #
# Constants & basic types                                                     #
# --------------------------------------------------------------------------- #

_DEFAULT_FORMAT: Final[str] = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_LOGGER_NAME: Final[str] = "BookmarkMeta"
_AUDIT_CHANNEL: Final[str] = "security"

_LevelT = Union[int, str]


# --------------------------------------------------------------------------- #
# Helper builders                                                             #
# --------------------------------------------------------------------------- #


def _stderr_handler(fmt: str) -> logging.StreamHandler:
    # stdout is reserved for the JSON printed by the CLI
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(fmt))
    return handler


def _file_handler(file: Path | str, fmt: str) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        filename=str(file),
        maxBytes=5 * 1024 * 1024,
        backupCount=3,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(fmt))
    return handler


def _drop_handlers(lg: logging.Logger) -> None:
    for handler in list(lg.handlers):
        lg.removeHandler(handler)
        handler.close()


# --------------------------------------------------------------------------- #
# Public API                                                                  #
# --------------------------------------------------------------------------- #


def get_logger(name: str | None = None) -> logging.Logger:
    """Return the project logger or one of its children (``BookmarkMeta.<name>``)."""
    if not name:
        return logging.getLogger(_LOGGER_NAME)
    return logging.getLogger(f"{_LOGGER_NAME}.{name}")


def configure(
    *,
    level: _LevelT = "INFO",
    log_file: str | Path | None = None,
    audit_file: str | Path | None = None,
    log_format: str = _DEFAULT_FORMAT,
    replace_handlers: bool = True,
) -> logging.Logger:
    """(Re)configure the project logger tree.

    Parameters
    ----------
    level
        Numeric or textual logging level (e.g. ``"DEBUG"``).
    log_file
        Rotating logfile for every record. *None* → stderr only.
    audit_file
        Extra rotating logfile that receives only ``BookmarkMeta.security``
        records (security events and fetch attempts).
    log_format
        Format string for :class:`logging.Formatter`.
    replace_handlers
        *True* – drop handlers installed earlier; *False* – add to them.
    """
    lg = get_logger()
    audit = get_logger(_AUDIT_CHANNEL)
    lg.setLevel(level)

    if replace_handlers:
        _drop_handlers(lg)
        _drop_handlers(audit)

    lg.addHandler(_stderr_handler(log_format))
    if log_file is not None:
        lg.addHandler(_file_handler(log_file, log_format))
    if audit_file is not None:
        audit.addHandler(_file_handler(audit_file, log_format))

    lg.propagate = False
    return lg


def init_logging(
    level: _LevelT = "INFO",
    log_file: str | Path | None = None,
    audit_file: str | Path | None = None,
    log_format: str = _DEFAULT_FORMAT,
) -> logging.Logger:
    """Shortcut used by the CLI: replace handlers and apply *level*."""
    return configure(
        level=level, log_file=log_file, audit_file=audit_file, log_format=log_format, replace_handlers=True
    )


def reset() -> None:
    """Undo :func:`configure`: no handlers, level unset, propagation back on."""
    lg = get_logger()
    _drop_handlers(lg)
    _drop_handlers(get_logger(_AUDIT_CHANNEL))
    lg.setLevel(logging.NOTSET)
    lg.propagate = True


__all__ = ["configure", "init_logging", "get_logger", "reset"]
