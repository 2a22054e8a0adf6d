"""
Logging setup shared by every DocStruct component.

Each logger writes to stderr and to a rotating file. Components get their
own file under the log directory:

    toc      -> toc.log       (DOCSTRUCT_TOC_LOG_FILE)
    pages    -> pages.log     (DOCSTRUCT_PAGES_LOG_FILE)
    pipeline -> pipeline.log  (DOCSTRUCT_PIPELINE_LOG_FILE)

DOCSTRUCT_LOG_DIR moves the directory, DOCSTRUCT_LOG_FILE replaces the
shared fallback file and DOCSTRUCT_LOG_LEVEL sets the default level.
"""

import logging
import os
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Set

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"
MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 5

COMPONENTS = ("toc", "pages", "pipeline")
SHARED_LOG_NAME = "docstruct.log"

_configured: Set[str] = set()
_configure_lock = threading.Lock()


def _log_dir() -> Path:
    return Path(os.getenv("DOCSTRUCT_LOG_DIR", "logs"))


def _default_level() -> int:
    name = os.getenv("DOCSTRUCT_LOG_LEVEL", "INFO").upper()
    return getattr(logging, name, logging.INFO)


def component_log_path(component: Optional[str]) -> Path:
    """Env override first, then <log dir>/<component>.log, then the shared file."""
    if component in COMPONENTS:
        override = os.getenv(f"DOCSTRUCT_{component.upper()}_LOG_FILE")
        if override:
            return Path(override)
        return _log_dir() / f"{component}.log"

    shared = os.getenv("DOCSTRUCT_LOG_FILE")
    return Path(shared) if shared else _log_dir() / SHARED_LOG_NAME


def _file_handler(path: Path, formatter: logging.Formatter) -> Optional[logging.Handler]:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            path,
            maxBytes=MAX_LOG_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8"
        )
    except OSError:
        logging.getLogger(__name__).exception("File logging disabled for %s", path)
        return None

    handler.setFormatter(formatter)
    return handler


def get_logger(
    name: str,
    level: Optional[int] = None,
    log_file: Optional[str] = None
) -> logging.Logger:
    logger = logging.getLogger(name)

    with _configure_lock:
        if name in _configured:
            if level is not None:
                logger.setLevel(level)
            return logger

        logger.setLevel(level if level is not None else _default_level())
        logger.propagate = False

        formatter = logging.Formatter(LOG_FORMAT)

        console = logging.StreamHandler()
        console.setFormatter(formatter)
        logger.addHandler(console)

        path = Path(log_file) if log_file else component_log_path(None)
        handler = _file_handler(path, formatter)
        if handler is not None:
            logger.addHandler(handler)

        _configured.add(name)

    return logger


def get_component_logger(
    name: str,
    component: Optional[str] = None,
    level: Optional[int] = None,
    log_file: Optional[str] = None
) -> logging.Logger:
    return get_logger(name, level=level, log_file=log_file or str(component_log_path(component)))
