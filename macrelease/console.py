"""Operator-facing output"""

from contextlib import contextmanager
from typing import Iterator, List, Optional, Tuple

from rich.console import Console  # type: ignore[import]
from rich.panel import Panel  # type: ignore[import]
from rich.table import Table  # type: ignore[import]


# Status icons
class Icons:
    SUCCESS = "[green]✓[/green]"
    WARNING = "[yellow]⚠[/yellow]"
    ERROR = "[red]✗[/red]"
    INFO = "[blue]ℹ[/blue]"
    PROGRESS = "[cyan]➤[/cyan]"


class Reporter:
    """Verbosity-aware wrapper around a rich console"""

    def __init__(
        self,
        console: Optional[Console] = None,
        verbose: bool = False,
        quiet: bool = False,
        debug: bool = False,
    ):
        self.console = console or Console()
        self.verbose = verbose
        self.quiet = quiet
        self.debug = debug

    def rule(self, title: str) -> None:
        if self.quiet:
            return
        self.console.print()
        self.console.rule(f"[bold blue]{title}[/bold blue]")

    def info(self, message: str) -> None:
        if not self.quiet:
            self.console.print(f"{Icons.INFO} {message}")

    def progress(self, message: str) -> None:
        if not self.quiet:
            self.console.print(f"{Icons.PROGRESS} {message}")

    def success(self, message: str) -> None:
        if not self.quiet:
            self.console.print(f"{Icons.SUCCESS} {message}")

    def warning(self, message: str) -> None:
        # Warnings survive --quiet; an unsigned feed or deferred staple matters.
        self.console.print(f"{Icons.WARNING} {message}")

    def error(self, message: str) -> None:
        self.console.print(f"{Icons.ERROR} {message}")

    def detail(self, message: str) -> None:
        """Print only with --verbose"""
        if self.verbose and not self.quiet:
            self.console.print(f"[dim]{message}[/dim]")

    @contextmanager
    def status(self, message: str) -> Iterator[Optional[object]]:
        """Spinner while a long step runs; yields the live status or None"""
        if self.quiet:
            yield None
            return
        with self.console.status(message) as live:
            yield live

    def checklist(self, title: str, rows: List[Tuple[bool, str, str]]) -> None:
        """Render (ok, name, detail) rows as a table"""
        if self.quiet:
            return
        table = Table(title=title, show_header=True, header_style="bold cyan")
        table.add_column("", style="dim")
        table.add_column("Tool")
        table.add_column("Version / detail")
        for ok, name, detail in rows:
            table.add_row(Icons.SUCCESS if ok else Icons.ERROR, name, detail)
        self.console.print(table)

    def panel(self, body: str, title: str, style: str = "blue") -> None:
        self.console.print()
        self.console.print(
            Panel(body, title=f"[bold]{title}[/bold]", border_style=style, padding=(1, 2))
        )
        self.console.print()
