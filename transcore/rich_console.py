"""
Rich console output and logging setup
"""

import logging
from typing import List, Optional

from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from .command_builder import format_command
from .engine_registry import EngineRegistry
from .models import EngineDescriptor, ExecutableInfo

# Global console instance
console = Console()


def setup_logging(verbose: bool = False):
    """Route library logging through rich"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
        force=True,
    )


class RichOutput:
    """Rich console output manager"""

    def __init__(self):
        self.console = console

    def print_header(self, title: str):
        """Print application header"""
        self.console.print(Panel.fit(
            f"[bold blue]{title}[/bold blue]",
            box=box.DOUBLE,
            border_style="blue"
        ))

    def print_engines(self, registry: EngineRegistry):
        """Engine table in preference order"""
        table = Table(show_header=True, header_style="bold magenta", box=box.ROUNDED)
        table.add_column("#", style="dim", justify="right")
        table.add_column("ID", style="cyan")
        table.add_column("Name", style="white")
        table.add_column("Kind")
        table.add_column("Purpose")
        table.add_column("Seek", justify="center")
        table.add_column("Executable")
        table.add_column("Status")

        for index, engine in enumerate(registry.all_engines(), 1):
            info = registry.executable_info(engine.id)
            table.add_row(
                str(index),
                engine.id.value,
                engine.name,
                engine.kind.value,
                engine.purpose.value,
                "✓" if engine.time_seekable else "",
                registry.executable_for(engine),
                self._status_text(registry, engine, info),
            )
        self.console.print(table)

    @staticmethod
    def _status_text(registry: EngineRegistry, engine: EngineDescriptor,
                     info: Optional[ExecutableInfo]) -> str:
        if not registry.is_enabled(engine):
            return "[dim]disabled[/dim]"
        if info is None:
            return "[yellow]unchecked[/yellow]"
        if info.available:
            return f"[green]✓ {info.version}[/green]"
        return f"[red]✗ {info.error_text}[/red]"

    def print_selection(self, engine: Optional[EngineDescriptor], candidates: List[EngineDescriptor]):
        if engine is None:
            self.print_warning("No engine can play this resource")
            return
        self.console.print(f"[bold green]Selected:[/bold green] {engine.name} ({engine.id.value})")
        if len(candidates) > 1:
            others = ', '.join(c.id.value for c in candidates[1:])
            self.console.print(f"[dim]Other candidates: {others}[/dim]")

    def print_command(self, cmd: List[str], title: str = "Command"):
        """Print a built argument vector"""
        self.console.print(Panel(
            format_command(cmd),
            title=f"[bold yellow]{title}[/bold yellow]",
            border_style="yellow"
        ))

    def print_results(self, lines: List[str], limit: int = 20):
        if not lines:
            return
        self.console.print(Panel(
            "\n".join(lines[-limit:]),
            title="[bold red]Diagnostics[/bold red]",
            border_style="red"
        ))

    def print_success(self, message: str = "Done"):
        """Print success message"""
        self.console.print(f"[bold green]✓ {message}[/bold green]")

    def print_error(self, message: str, details: Optional[str] = None):
        """Print error message"""
        self.console.print(f"[bold red]✗ {message}[/bold red]")
        if details:
            self.console.print(f"[red]Details: {details}[/red]")

    def print_warning(self, message: str):
        """Print warning message"""
        self.console.print(f"[bold yellow]⚠ {message}[/bold yellow]")

    def print_info(self, message: str):
        """Print info message"""
        self.console.print(f"[bold cyan]ℹ {message}[/bold cyan]")


# Global rich output instance
rich_output = RichOutput()
