"""
Rich-based logger with tenant and job context support.

Context is added as a message prefix (``[T:<tenant>][J:<job>]``) rather than
through the format string, so third-party records keep a plain format.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

from conduit.core.config.settings import settings


class CompactFormatter(logging.Formatter):
    """Shortens ``conduit.*`` module names to their last two parts."""

    def format(self, record):
        if record.name.startswith("conduit."):
            parts = record.name.split(".")
            if len(parts) > 2:
                record.name = ".".join(parts[-2:])
        return super().format(record)


_theme = Theme(
    {
        "info": "cyan",
        "warning": "yellow",
        "error": "bold red",
        "debug": "dim white",
    }
)
_console = Console(theme=_theme)


class ContextLogger:
    """
    Logger wrapper that adds tenant and job context to messages.

    Context variables are read on every call, so a logger created at import time
    still reports the tenant of the job currently being processed.
    """

    def __init__(
        self,
        logger: logging.Logger,
        tenant_id: str | None = None,
        job_id: str | None = None,
    ):
        self.logger = logger
        self.tenant_id = tenant_id
        self.job_id = job_id

    def _format_message(self, message: str) -> str:
        from .context import get_current_job_context, get_current_tenant_context

        tenant = get_current_tenant_context() or self.tenant_id
        job = get_current_job_context() or self.job_id

        prefix = ""
        if tenant:
            prefix += f"[T:{tenant}]"
        if job:
            prefix += f"[J:{job}]"
        return f"{prefix} {message}" if prefix else message

    def debug(self, message: str, *args, **kwargs) -> None:
        self.logger.debug(self._format_message(message), *args, **kwargs)

    def info(self, message: str, *args, **kwargs) -> None:
        self.logger.info(self._format_message(message), *args, **kwargs)

    def warning(self, message: str, *args, **kwargs) -> None:
        self.logger.warning(self._format_message(message), *args, **kwargs)

    def error(self, message: str, *args, **kwargs) -> None:
        self.logger.error(self._format_message(message), *args, **kwargs)

    def critical(self, message: str, *args, **kwargs) -> None:
        self.logger.critical(self._format_message(message), *args, **kwargs)

    def exception(self, message: str, *args, **kwargs) -> None:
        self.logger.exception(self._format_message(message), *args, **kwargs)

    def bind(self, **kwargs) -> ContextLogger:
        """
        Create a new ContextLogger with additional or updated context.

        Args:
            **kwargs: ``tenant_id`` and/or ``job_id``

        Returns:
            New ContextLogger instance with updated context
        """
        return ContextLogger(
            self.logger,
            tenant_id=kwargs.get("tenant_id", self.tenant_id),
            job_id=kwargs.get("job_id", self.job_id),
        )


def setup_logging(
    *,
    level: str = "INFO",
    mode: str = "PROD",
    log_dir: str | None = None,
    console_fmt: str | None = None,
    file_fmt: str | None = None,
) -> None:
    """
    Initialize the root logger with Rich formatting.

    Parameters
    ----------
    level : str
        Logging level ("DEBUG", "INFO", "WARNING", "ERROR")
    mode : str
        "DEV" creates daily log files + console; anything else → console only
    log_dir : str, optional
        Directory for log files (DEV mode only)
    console_fmt : str, optional
        Console format string
    file_fmt : str, optional
        File format string
    """
    lvl = level.upper()
    lvl = lvl if lvl in ("DEBUG", "INFO", "WARNING", "ERROR") else "INFO"

    console_format = console_fmt or "[%(name)s] %(message)s"
    file_format = file_fmt or "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

    rich_handler = RichHandler(
        console=_console,
        rich_tracebacks=True,
        show_time=True,
        show_level=True,
        markup=False,
    )
    rich_handler.setFormatter(CompactFormatter(console_format))

    handlers: list[logging.Handler] = [rich_handler]

    if mode.upper() == "DEV" and log_dir:
        os.makedirs(log_dir, exist_ok=True)
        logfile = os.path.join(log_dir, f"conduit_{datetime.now():%Y%m%d}.log")
        file_handler = logging.FileHandler(logfile, encoding="utf-8")
        file_handler.setFormatter(CompactFormatter(file_format))
        handlers.append(file_handler)
        _console.print(f"[green]DEV mode:[/] console + file → {logfile}")

    logging.basicConfig(level=lvl, handlers=handlers, force=True)

    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

    logging.getLogger("conduit.logging").info(f"Logging initialized ({lvl})")


def setup_app_logging() -> None:
    """Initialize logging from the global settings. Called once per process."""
    setup_logging(
        level=settings.log_level,
        mode="DEV" if settings.is_development else "PROD",
        log_dir=settings.log_dir if settings.is_development else None,
    )


def get_logger(name: str) -> ContextLogger:
    """
    Get a logger that automatically uses job context variables.

    Args:
        name: Logger name (usually __name__)

    Returns:
        ContextLogger instance with automatic context from context variables
    """
    return ContextLogger(logging.getLogger(name))


def get_app_logger() -> ContextLogger:
    """Logger for process-level events (startup, shutdown, etc.)."""
    return get_logger("conduit.app")
