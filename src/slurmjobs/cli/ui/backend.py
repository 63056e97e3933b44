"""Common interface of the plain and rich report renderers."""

from __future__ import annotations

from typing import Callable, Dict, Protocol, Sequence, Tuple

from slurmjobs.cli.ui.context import UI_MODE_PLAIN, UI_MODE_RICH, UIContext
from slurmjobs.cli.ui.models import MetricItem, TableSection


class UIBackend(Protocol):
    """What render_frame_report needs from a renderer."""

    def heading(self, text: str) -> None: ...

    def kv_block(self, rows: Sequence[Tuple[str, str]]) -> None: ...

    def table(self, section: TableSection) -> None: ...

    def metrics(self, title: str, metrics: Sequence[MetricItem]) -> None: ...

    def notes(self, lines: Sequence[str], title: str = "Notes:") -> None: ...

    def style_status(self, value: str) -> str: ...


def _plain(ctx: UIContext) -> UIBackend:
    from slurmjobs.cli.ui.plain import PlainBackend

    return PlainBackend(enable_color=ctx.color, width=ctx.width)


def _rich(ctx: UIContext) -> UIBackend:
    # rich is an optional extra; import only once it was found installed
    from slurmjobs.cli.ui.rich_backend import RichBackend

    return RichBackend()


_BACKENDS: Dict[str, Callable[[UIContext], UIBackend]] = {
    UI_MODE_PLAIN: _plain,
    UI_MODE_RICH: _rich,
}


def create_ui_backend(ctx: UIContext) -> UIBackend:
    """Instantiate the renderer for a resolved context."""
    try:
        factory = _BACKENDS[ctx.mode]
    except KeyError:
        raise ValueError(f"Unsupported UI mode: {ctx.mode}") from None
    return factory(ctx)
