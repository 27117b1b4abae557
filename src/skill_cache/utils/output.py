"""Rich console output and logging utilities."""

import logging

from rich.console import Console
from rich.logging import RichHandler


console = Console()
err_console = Console(stderr=True)


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[red]✗[/red] {message}", style="red")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow]⚠[/yellow] {message}", style="yellow")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[blue]ℹ[/blue] {message}")


def setup_logging(verbose: bool = False) -> None:
    """Route the package's log records to stderr through Rich.

    Library modules only create loggers; handlers are installed here, once,
    by the command-line entry point.
    """
    level = logging.DEBUG if verbose else logging.WARNING
    logger = logging.getLogger("skill_cache")
    logger.setLevel(level)
    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        logger.addHandler(
            RichHandler(console=err_console, show_path=False, markup=False)
        )
