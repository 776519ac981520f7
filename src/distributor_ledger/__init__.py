import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Mapping, Optional


PROJECT_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_LOG_DIR = PROJECT_ROOT / ".logs"
LOG_FILE_NAME = "distributor_ledger.log"

# Environment overrides, useful when the workbook lives on a read-only share.
LOG_DIR_ENV = "DISTRIBUTOR_LEDGER_LOG_DIR"
LOG_LEVEL_ENV = "DISTRIBUTOR_LEDGER_LOG_LEVEL"


def resolve_log_file(environ: Optional[Mapping[str, str]] = None) -> Path:
    """Return the rotating log file path, honouring ``DISTRIBUTOR_LEDGER_LOG_DIR``."""

    environ = os.environ if environ is None else environ
    override = environ.get(LOG_DIR_ENV)
    log_dir = Path(override).expanduser() if override else DEFAULT_LOG_DIR
    return log_dir / LOG_FILE_NAME


def resolve_log_level(environ: Optional[Mapping[str, str]] = None) -> int:
    """Map ``DISTRIBUTOR_LEDGER_LOG_LEVEL`` (e.g. ``debug``) to a logging level.

    Unknown or missing names fall back to ``INFO``.
    """

    environ = os.environ if environ is None else environ
    name = environ.get(LOG_LEVEL_ENV, "INFO").strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


LOG_FILE = resolve_log_file()


def _configure_logging() -> logging.Logger:
    """Configure package-wide logging with file and console handlers."""

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    level = resolve_log_level()
    logger.setLevel(level)
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=1_000_000,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except OSError as exc:
        print(
            f"Warning: unable to initialize ledger log file at '{LOG_FILE}': {exc}",
            file=sys.stderr,
        )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


log = _configure_logging()
log.info(
    "Distributor ledger logging at %s to '%s'",
    logging.getLevelName(log.level),
    LOG_FILE,
)
