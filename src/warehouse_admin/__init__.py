import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


__version__ = "0.1.0"

PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR_ENV = "WAREHOUSE_ADMIN_LOG_DIR"
LOG_LEVEL_ENV = "WAREHOUSE_ADMIN_LOG_LEVEL"
LOG_FILE_NAME = "warehouse_admin.log"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


def _default_log_dir() -> Path:
    override = os.environ.get(LOG_DIR_ENV)
    return Path(override) if override else PROJECT_ROOT / ".logs"


def _console_level() -> int:
    name = os.environ.get(LOG_LEVEL_ENV, "INFO").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def configure_logging(log_dir: Path | None = None, *, force: bool = False) -> logging.Logger:
    """Attach the rotating audit file and the stderr handler to the package logger.

    The audit file always records INFO and above so completed workflows and
    account changes are kept even when the console is quieter. Calling again
    is a no-op unless ``force`` is set, in which case existing handlers are
    closed and replaced.
    """

    logger = logging.getLogger(__name__)
    if logger.handlers and not force:
        return logger
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(logging.INFO)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    target_dir = Path(log_dir) if log_dir is not None else _default_log_dir()
    log_file = target_dir / LOG_FILE_NAME
    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_file, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    except OSError as exc:
        print(f"Warning: audit log disabled, cannot open '{log_file}': {exc}", file=sys.stderr)
    else:
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(_console_level())
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)
    return logger


log = configure_logging()
log.debug("warehouse_admin %s logging ready", __version__)
