"""Rich backend for interactive terminals."""

from __future__ import annotations

from typing import Optional, Sequence, Tuple

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from slurmjobs.cli.ui.models import MetricItem, TableSection
from slurmjobs.cli.ui.states import state_category


class RichBackend:
    """Rich renderer for interactive terminals."""

    _CATEGORY_STYLES = {
        "completed": "bold green",
        "failed": "bold red",
        "running": "bold yellow",
        "pending": "bold cyan",
    }

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def heading(self, text: str) -> None:
        self.console.print(Panel.fit(text, border_style="cyan"))

    def kv_block(self, rows: Sequence[Tuple[str, str]]) -> None:
        if not rows:
            return
        grid = Table.grid(padding=(0, 2))
        grid.add_column(style="bold cyan", no_wrap=True)
        grid.add_column()
        for label, value in rows:
            grid.add_row(label, value)
        self.console.print(grid)

    def section(self, title: str) -> None:
        self.console.print()
        self.console.print(f"[bold]{title}[/bold]")

    def metrics(self, title: str, metrics: Sequence[MetricItem]) -> None:
        if not metrics:
            return
        self.section(title)
        grid = Table(show_header=False, box=None, pad_edge=False)
        grid.add_column("Metric")
        grid.add_column("Value", style="bold", justify="right")
        for item in metrics:
            label = self.style_status(item.label) if item.state else item.label
            value = item.value
            if item.percent is not None:
                value = f"{value} ({item.percent:.1f}%)"
            grid.add_row(label, value)
        self.console.print(grid)

    def table(self, section: TableSection) -> None:
        self.section(section.title)
        if not section.rows:
            self.console.print(section.empty_message)
            return

        table = Table(header_style="bold cyan")
        for idx, header in enumerate(section.headers):
            table.add_column(header, justify=section.column_align(idx), overflow="fold")
        for row in section.rows:
            table.add_row(*[
                self.style_status(cell) if idx in section.status_columns else cell
                for idx, cell in enumerate(row)
            ])
        self.console.print(table)

    def notes(self, lines: Sequence[str], title: str = "Notes:") -> None:
        if not lines:
            return
        self.section(title)
        for line in lines:
            self.console.print(f"  [dim]-[/dim] {line}")

    def style_status(self, value: str) -> str:
        style = self._CATEGORY_STYLES.get(state_category(value))
        if not style:
            return value
        return f"[{style}]{value}[/{style}]"
