"""
Logging for SwapMatch.

Every logger hangs off the "swapmatch" namespace, one child per subsystem
(auction, ledger, sweeper, storage.sqlite, ...). The console handler is
coloured with colorlog. The CLI adds a plain-text file in the log directory.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

import colorlog

ROOT_LOGGER = "swapmatch"
LOG_FILE_NAME = "swapmatch.log"

_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_FILE_FORMAT = "%(asctime)s [%(name)s] %(levelname)-8s %(message)s"
_CONSOLE_FORMAT = "%(log_color)s%(asctime)s [%(name)s] %(levelname)-8s%(reset)s %(message)s"
_LEVEL_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "red,bg_white",
}


def _console_handler(level: int) -> logging.Handler:
    handler = colorlog.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(
        colorlog.ColoredFormatter(_CONSOLE_FORMAT, datefmt=_DATE_FORMAT, log_colors=_LEVEL_COLORS)
    )
    return handler


def _file_handler(path: Path, level: int) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_DATE_FORMAT))
    return handler


class SwapMatchLogger:
    """
    Configures the swapmatch logger tree once per process.

    The first get_logger() call sets up console output at INFO. The CLI
    calls setup_logging() to pick the level and add the log file.
    """

    _initialized = False
    log_file: Optional[Path] = None

    @classmethod
    def setup(cls, level: int = logging.INFO, log_dir: Optional[Union[str, Path]] = None) -> None:
        """
        Attach handlers to the "swapmatch" logger.

        Args:
            level: Threshold for the logger and its handlers
            log_dir: Also write to <log_dir>/swapmatch.log; console only if None
        """
        if cls._initialized:
            return

        root = logging.getLogger(ROOT_LOGGER)
        root.setLevel(level)
        root.handlers.clear()
        root.addHandler(_console_handler(level))

        if log_dir is not None:
            directory = Path(log_dir)
            directory.mkdir(parents=True, exist_ok=True)
            cls.log_file = directory / LOG_FILE_NAME
            root.addHandler(_file_handler(cls.log_file, level))

        cls._initialized = True

    @classmethod
    def reset(cls) -> None:
        """Close and drop the handlers so setup() can run again."""
        root = logging.getLogger(ROOT_LOGGER)
        for handler in list(root.handlers):
            handler.close()
            root.removeHandler(handler)
        cls._initialized = False
        cls.log_file = None

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        if not cls._initialized:
            cls.setup()
        return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def get_logger(name: str) -> logging.Logger:
    """Logger for one subsystem, e.g. get_logger("auction")."""
    return SwapMatchLogger.get_logger(name)


def setup_logging(level: int = logging.INFO, log_dir: Optional[Union[str, Path]] = None) -> None:
    """Reconfigure logging, replacing whatever was set up before."""
    SwapMatchLogger.reset()
    SwapMatchLogger.setup(level=level, log_dir=log_dir)
