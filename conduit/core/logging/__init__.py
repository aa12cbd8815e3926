"""Logging module for Conduit."""

from .context import clear_job_context, set_job_context
from .logger import get_app_logger, get_logger, setup_app_logging

__all__ = [
    "clear_job_context",
    "get_app_logger",
    "get_logger",
    "set_job_context",
    "setup_app_logging",
]
