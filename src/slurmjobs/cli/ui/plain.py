"""Plain-text backend using tabulate, with optional ANSI state coloring."""

from __future__ import annotations

import textwrap
from typing import Sequence, Tuple

from tabulate import tabulate

from slurmjobs.cli.ui.models import MetricItem, TableSection
from slurmjobs.cli.ui.states import state_category


class PlainBackend:
    """Renderer for pipes, log files and terminals without rich."""

    _CATEGORY_STYLES = {
        "completed": "\033[32m",
        "failed": "\033[31m",
        "running": "\033[33m",
        "pending": "\033[36m",
    }
    _RESET = "\033[0m"

    def __init__(self, enable_color: bool = False, width: int = 80):
        self.enable_color = enable_color
        self.width = width

    def heading(self, text: str) -> None:
        print(text)
        print("=" * min(self.width, max(len(text), 20)))

    def kv_block(self, rows: Sequence[Tuple[str, str]]) -> None:
        if rows:
            pad = max(len(label) for label, _ in rows) + 1
            for label, value in rows:
                print(f"{label + ':':<{pad}} {value}")

    def section(self, title: str) -> None:
        print(f"\n{title}")

    def metrics(self, title: str, metrics: Sequence[MetricItem]) -> None:
        """Print all metrics on one line: ``FAILED 2 (20.0%) | COMPLETED 8 (80.0%)``."""
        if not metrics:
            return
        self.section(title)
        parts = []
        for item in metrics:
            label = self.style_status(item.label) if item.state else item.label
            part = f"{label} {item.value}"
            if item.percent is not None:
                part += f" ({item.percent:.1f}%)"
            parts.append(part)
        print("  " + " | ".join(parts))

    def table(self, section: TableSection) -> None:
        self.section(section.title)
        if not section.rows:
            print(section.empty_message)
            return

        colalign = [section.column_align(idx) for idx in range(len(section.headers))]
        body = [
            [
                self.style_status(cell) if idx in section.status_columns else cell
                for idx, cell in enumerate(row)
            ]
            for row in section.rows
        ]
        # Cells arrive formatted ("2.50", "-"); keep them verbatim
        print(tabulate(body, headers=section.headers, colalign=colalign, disable_numparse=True))

    def notes(self, lines: Sequence[str], title: str = "Notes:") -> None:
        if not lines:
            return
        self.section(title)
        for line in lines:
            print(textwrap.fill(
                line,
                width=self.width,
                initial_indent="  - ",
                subsequent_indent="    ",
                break_on_hyphens=False,
                break_long_words=False,
            ))

    def style_status(self, value: str) -> str:
        style = self._CATEGORY_STYLES.get(state_category(value)) if self.enable_color else None
        return f"{style}{value}{self._RESET}" if style else value
