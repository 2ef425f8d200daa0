"""Logging and input validation helpers"""
from swapmatch.utils.logger import SwapMatchLogger, get_logger, setup_logging

__all__ = [
    "SwapMatchLogger",
    "get_logger",
    "setup_logging",
]
