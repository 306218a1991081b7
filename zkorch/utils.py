"""
Utility functions for zkorch.

Includes logging setup, console reporting, timing and summaries.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from zkorch.config import Config


LOGGER_NAME = "zkorch"


def setup_logging(config: Config, console: Optional[Console] = None) -> logging.Logger:
    """
    Set up logging for a zkorch invocation.

    Args:
        config: Invocation config (verbose/quiet pick the console level,
            log_file adds a structured JSON file handler)
        console: Console the RichHandler writes to (defaults to stderr)

    Returns:
        Configured logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.handlers = []  # Clear existing handlers
    logger.propagate = False

    if config.verbose:
        console_level = logging.DEBUG
    elif config.quiet:
        console_level = logging.WARNING
    else:
        console_level = logging.INFO

    console_handler = RichHandler(
        console=console or Console(stderr=True),
        rich_tracebacks=True,
        show_time=False,
        show_path=False,
    )
    console_handler.setLevel(console_level)
    logger.addHandler(console_handler)

    if config.log_file:
        log_file = Path(config.log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(StructuredFormatter())
        file_handler.setLevel(logging.DEBUG)
        logger.addHandler(file_handler)

    return logger


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

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def format_duration(seconds: float) -> str:
    """
    Format duration in seconds to human-readable string.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted string (e.g., "12ms", "4.2s", "1m 23s")
    """
    if seconds < 1:
        return f"{int(seconds * 1000)}ms"
    if seconds < 60:
        return f"{seconds:.1f}s"

    minutes = int(seconds // 60)
    remaining_seconds = int(seconds % 60)

    if minutes < 60:
        return f"{minutes}m {remaining_seconds}s"

    hours = minutes // 60
    remaining_minutes = minutes % 60
    return f"{hours}h {remaining_minutes}m {remaining_seconds}s"


def format_file_size(path: Path) -> str:
    """Human-readable size of a file, or "missing" when it does not exist."""
    try:
        size = Path(path).stat().st_size
    except OSError:
        return "missing"

    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


class Timer:
    """Wall-clock timer for a single operation."""

    def __init__(self):
        self.started = time.monotonic()

    def elapsed_seconds(self) -> float:
        return time.monotonic() - self.started

    def elapsed(self) -> str:
        return format_duration(self.elapsed_seconds())


@dataclass
class OperationSummary:
    """Completed operations for one verb, printed at the end."""

    operations: list[str] = field(default_factory=list)
    timer: Timer = field(default_factory=Timer)

    def add(self, description: str) -> None:
        self.operations.append(description)

    def add_file(self, description: str, path: Path) -> None:
        self.operations.append(f"{description} ({format_file_size(path)})")

    def __bool__(self) -> bool:
        return bool(self.operations)


class Reporter:
    """
    Console output for one invocation.

    Quiet mode suppresses everything except errors, which are always
    written to stderr.
    """

    def __init__(self, quiet: bool = False, console: Optional[Console] = None, err_console: Optional[Console] = None):
        self.quiet = quiet
        self.console = console or Console()
        self.err_console = err_console or Console(stderr=True)

    def banner(self, title: str) -> None:
        if not self.quiet:
            self.console.rule(f"[bold blue]{title}[/bold blue]")

    def success(self, message: str) -> None:
        if not self.quiet:
            self.console.print(f"[bold green]✓[/bold green] {escape(message)}")

    def warning(self, message: str) -> None:
        if not self.quiet:
            self.console.print(f"[bold yellow]⚠[/bold yellow] {escape(message)}")

    def info(self, message: str) -> None:
        if not self.quiet:
            self.console.print(f"[bold cyan]ℹ[/bold cyan] {escape(message)}")

    def plain(self, message: str) -> None:
        if not self.quiet:
            self.console.print(message, markup=False, highlight=False)

    def error(self, message: str, suggestions: Optional[list[str]] = None) -> None:
        self.err_console.print(f"[bold red]✗[/bold red] {escape(message)}", highlight=False)
        for suggestion in suggestions or []:
            self.err_console.print(f"  • {suggestion}", markup=False, highlight=False)

    def summary(self, summary: OperationSummary) -> None:
        if self.quiet or not summary:
            return
        self.console.print()
        self.console.print(f"[bold]Summary[/bold] ({summary.timer.elapsed()})")
        for operation in summary.operations:
            self.console.print(f"  • {operation}", markup=False, highlight=False)

    def next_steps(self, steps: list[str]) -> None:
        if self.quiet or not steps:
            return
        self.console.print()
        self.console.print("🎯 Next steps:")
        for step in steps:
            self.console.print(f"  • {step}", markup=False, highlight=False)
