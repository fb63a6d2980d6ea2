"""
Logging setup for the snippets CLI and long-lived embedders.

Three layers:
- quiet: the default for the CLI; HTTP client chatter is held at WARNING
- debug: everything under ``snippets`` plus the HTTP stack goes to stderr
- ops log: a rotating file inside the store's agent directory recording
  captures, dispatches, completions and sweeps, whatever the verbosity
"""

import logging
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

PACKAGE_LOGGER = "snippets"
OPS_LOG_FILENAME = "snippets-ops.log"
OPS_LOG_MAX_BYTES = 1_000_000
OPS_LOG_BACKUPS = 3

_HTTP_LOGGERS = ("httpx", "httpcore")

_DEBUG_FORMAT = logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s", datefmt="%H:%M:%S")
_OPS_FORMAT = logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s", datefmt="%Y-%m-%d %H:%M:%S")


def configure_quiet_mode(quiet: bool = True):
    """Hold library loggers at WARNING and silence Python warnings."""
    if not quiet:
        return
    warnings.simplefilter("ignore")
    for name in _HTTP_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _has_stderr_handler(logger: logging.Logger) -> bool:
    return any(getattr(h, "stream", None) is sys.stderr for h in logger.handlers)


def enable_debug_mode():
    """Send DEBUG records from snippets and the HTTP stack to stderr."""
    warnings.simplefilter("default")
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    if not _has_stderr_handler(root):
        stderr = logging.StreamHandler(sys.stderr)
        stderr.setFormatter(_DEBUG_FORMAT)
        root.addHandler(stderr)

    for name in (PACKAGE_LOGGER, *_HTTP_LOGGERS):
        logging.getLogger(name).setLevel(logging.DEBUG)


def configure_ops_log(agent_path) -> RotatingFileHandler:
    """Attach the operations log for one store.

    Records at INFO and above from the ``snippets`` logger are appended to
    ``<agent_path>/snippets-ops.log``. The caller keeps the returned handler
    and passes it to remove_ops_log() when the store is closed.
    """
    log_file = Path(agent_path) / OPS_LOG_FILENAME
    log_file.parent.mkdir(parents=True, exist_ok=True)

    ops = RotatingFileHandler(log_file, maxBytes=OPS_LOG_MAX_BYTES, backupCount=OPS_LOG_BACKUPS, encoding="utf-8")
    ops.setLevel(logging.INFO)
    ops.setFormatter(_OPS_FORMAT)

    package = logging.getLogger(PACKAGE_LOGGER)
    package.addHandler(ops)
    # Quiet mode must not hide INFO from the ops log
    if package.getEffectiveLevel() > logging.INFO or package.level == logging.NOTSET:
        package.setLevel(logging.INFO)
    return ops


def remove_ops_log(handler: Optional[logging.Handler]) -> None:
    """Detach and close a handler returned by configure_ops_log()."""
    if handler is None:
        return
    logging.getLogger(PACKAGE_LOGGER).removeHandler(handler)
    handler.close()
