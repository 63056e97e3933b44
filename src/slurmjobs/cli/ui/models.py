"""View models shared by the report builders and the UI backends."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple


KeyValueList = Sequence[Tuple[str, str]]

ALIGN_LEFT = "left"
ALIGN_RIGHT = "right"


@dataclass(frozen=True)
class MetricItem:
    """
    One summary figure, e.g. the number of FAILED tasks.

    ``state`` is set when the label is a SLURM state, so backends can color it.
    """

    label: str
    value: str
    percent: Optional[float] = None
    state: Optional[str] = None


@dataclass(frozen=True)
class TableSection:
    """Preformatted rows of a DataFrame plus how to lay them out."""

    title: str
    headers: Sequence[str]
    rows: Sequence[Sequence[str]]
    align: Sequence[str] = field(default_factory=tuple)
    status_columns: Sequence[int] = field(default_factory=tuple)
    empty_message: str = "  (no rows)"

    def column_align(self, idx: int) -> str:
        return self.align[idx] if idx < len(self.align) else ALIGN_LEFT


@dataclass(frozen=True)
class FrameReport:
    """Everything the report, jobs and partitions commands print as a table."""

    title: str
    metadata: KeyValueList
    table: TableSection
    summary_title: str = "Summary"
    summary_metrics: Sequence[MetricItem] = field(default_factory=tuple)
    notes: Sequence[str] = field(default_factory=tuple)
