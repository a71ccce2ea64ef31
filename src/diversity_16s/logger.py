# ===================================== IMPORTS ====================================== #

# Standard Library
from datetime import datetime
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

# 3rd‑party (Rich)
from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

# ================================= DEFAULT VALUES =================================== #

LOGGER_NAME = "diversity_16s"

FILE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s:%(filename)s:%(funcName)s(): %(message)s"

CONSOLE_THEME = Theme({
    "logging.time": "bold white",
    "logging.level.info": "bold white",
    "logging.level.debug": "dim cyan",
    "logging.level.warning": "bold yellow",
    "logging.level.error": "bold red",
    "logging.level.critical": "reverse bold bright_white on red",
})

# ===================================== HANDLERS ===================================== #

def _file_handler(
    log_file_path: Path,
    level: int,
    max_file_size: int,
    backup_count: int
) -> logging.Handler:
    handler = RotatingFileHandler(
        filename=log_file_path,
        maxBytes=max_file_size,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def _console_handler(level: int) -> logging.Handler:
    handler = RichHandler(
        console=Console(theme=CONSOLE_THEME),
        rich_tracebacks=True,
        level=level,
        show_time=True,
        show_level=True,
        show_path=False,
        markup=False,
        log_time_format="[%X]",
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="%H:%M:%S"))
    return handler

# ==================================== FUNCTIONS ===================================== #

def setup_logging(
    log_dir_path: Union[str, Path],
    log_filename: Optional[str] = None,
    max_file_size: int = 5 * 1024 * 1024,  # 5 MB
    backup_count: int = 3,
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG
) -> logging.Logger:
    """Configure the package logger.

    Installs a Rich console handler and a rotating file handler in
    ``log_dir_path``. Warnings issued with :func:`warnings.warn` (for example
    an NMDS ``ConvergenceWarning``) are routed to the same handlers. Calling
    this again replaces the handlers instead of adding duplicates.

    Returns:
        The ``diversity_16s`` logger.
    """
    log_dir_path = Path(log_dir_path)
    log_dir_path.mkdir(parents=True, exist_ok=True)
    if log_filename is None:
        log_filename = datetime.now().strftime("%Y-%m-%d_%H%M%S.log")
    log_file_path = log_dir_path / log_filename

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    warnings_logger = logging.getLogger("py.warnings")
    for existing in (logger, warnings_logger):
        for handler in existing.handlers[:]:
            existing.removeHandler(handler)
            handler.close()

    handlers = [
        _file_handler(log_file_path, file_level, max_file_size, backup_count),
        _console_handler(console_level),
    ]
    logging.captureWarnings(True)
    for handler in handlers:
        logger.addHandler(handler)
        warnings_logger.addHandler(handler)

    logger.info("Logging initialised → %s", log_file_path)
    return logger
