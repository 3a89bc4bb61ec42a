"""
Console logging for portbounce.

Library modules only call logging.getLogger(__name__); handlers are installed
here, once, by the command-line entry point.
"""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel

LOGGER_NAME = "portbounce"


def setup_logging(verbose: bool = False, console: Optional[Console] = None) -> logging.Logger:
    """
    Send log records to stderr through rich.

    Args:
        verbose (bool): Emit debug records, including partial sends
        console (Console): Console to write to (default: a new stderr console)

    Returns:
        Logger: The package logger
    """
    level = logging.DEBUG if verbose else logging.INFO
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[handler],
    )
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    return logger


def render_banner(listen_address, target_host: str, target_port: int, idle_timeout=None) -> Panel:
    """Build the startup panel shown once the listening socket is up."""
    host, port = listen_address
    lines = [
        f"[bold]Listening:[/bold] {host}:{port}",
        f"[bold]Target:[/bold] {target_host}:{target_port}",
    ]
    if idle_timeout is not None:
        lines.append(f"[bold]Idle timeout:[/bold] {idle_timeout:g}s")
    return Panel(
        "\n".join(lines),
        title="[bold cyan]portbounce[/bold cyan]",
        border_style="green",
        padding=(0, 2),
        expand=False,
    )
