"""
Utility functions for parityci.

Includes logging setup, console output and formatting helpers.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

from parityci.errors import ConfigurationError


# Global console for pretty output
console = Console()

# Console for error output
err_console = Console(stderr=True)

# (log_format, log_level) once logging has been configured for this process
_logging_state: Optional[tuple[str, str]] = None


def setup_logging(log_format: str = "human", log_level: str = "WARNING") -> logging.Logger:
    """
    Set up process-wide logging for parityci.

    Logging is configured once per process. Repeating the call with the same
    arguments returns the existing logger; a different configuration raises.

    Args:
        log_format: "human" (rich) or "jsonl" (structured, one object per line)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        Configured "parityci" logger

    Raises:
        ConfigurationError: If the format or level is invalid, or logging was
            already configured differently
    """
    global _logging_state

    logger = logging.getLogger("parityci")
    requested = (log_format, log_level.upper())
    if _logging_state is not None:
        if _logging_state != requested:
            raise ConfigurationError(
                f"logging already configured as {_logging_state}, refusing {requested}"
            )
        return logger

    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ConfigurationError(f"invalid log level '{log_level}'")

    if log_format == "human":
        handler: logging.Handler = RichHandler(
            console=err_console, rich_tracebacks=True, show_time=False
        )
    elif log_format == "jsonl":
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(StructuredFormatter())
    else:
        raise ConfigurationError(f"invalid --log-format '{log_format}' (expected human|jsonl)")

    logger.setLevel(level)
    logger.handlers = [handler]
    logger.propagate = False

    _logging_state = requested
    return logger


def reset_logging() -> None:
    """Forget the process logging configuration (for tests)."""
    global _logging_state
    _logging_state = None
    logger = logging.getLogger("parityci")
    logger.handlers = []
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add extra fields if present
        if hasattr(record, "event"):
            log_data["event"] = record.event
        if hasattr(record, "metadata"):
            log_data["metadata"] = record.metadata

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def shell_quote(argv: list[str]) -> str:
    """Render argv as a copy-pasteable shell command line."""
    safe = set("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-._/:")
    parts = []
    for arg in argv:
        if arg and all(c in safe for c in arg):
            parts.append(arg)
        else:
            parts.append("'" + arg.replace("'", "'\\''") + "'")
    return " ".join(parts)


def format_duration(seconds: float) -> str:
    """
    Format duration in seconds to human-readable string.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted string (e.g., "1m 23s", "45s")
    """
    if seconds < 60:
        return f"{int(seconds)}s"

    minutes = int(seconds // 60)
    remaining_seconds = int(seconds % 60)

    if minutes < 60:
        return f"{minutes}m {remaining_seconds}s"

    hours = minutes // 60
    remaining_minutes = minutes % 60
    return f"{hours}h {remaining_minutes}m {remaining_seconds}s"


def print_banner(title: str) -> None:
    """
    Print a banner to console.

    Args:
        title: Banner title
    """
    console.rule(f"[bold blue]{title}[/bold blue]")


def print_command(argv: list[str]) -> None:
    """Echo a step command line before it runs."""
    console.print(f"+ {shell_quote(argv)}", markup=False, highlight=False, soft_wrap=True)


def print_success(message: str) -> None:
    """Print success message to console."""
    console.print(f"[bold green]✓[/bold green] {message}")


def print_warning(message: str) -> None:
    """Print warning message to console."""
    console.print(f"[bold yellow]⚠[/bold yellow] {message}")


def print_info(message: str) -> None:
    """Print info message to console."""
    console.print(f"[bold cyan]ℹ[/bold cyan] {message}")
