"""Decide how report tables are rendered: plain text or rich."""

from __future__ import annotations

import importlib.util
import os
import shutil
import sys
from dataclasses import dataclass
from typing import Any, Optional

from slurmjobs.config import Config


UI_MODE_PLAIN = "plain"
UI_MODE_RICH = "rich"
UI_MODE_AUTO = "auto"
UI_MODES = (UI_MODE_PLAIN, UI_MODE_RICH, UI_MODE_AUTO)

# Narrower terminals still get this many columns for the heading rule
MIN_WIDTH = 40
MAX_WIDTH = 120


class UIResolutionError(RuntimeError):
    """Raised when the requested UI mode cannot be used."""


@dataclass(frozen=True)
class UIContext:
    """
    Where and how report output goes.

    Attributes:
        mode: Backend actually used, "plain" or "rich".
        requested: Mode asked for by --ui or ui.mode.
        terminal: Whether stdout is a terminal.
        color: Whether the plain backend may emit ANSI colors.
        width: Width used for rules and separators.
    """

    mode: str
    requested: str
    terminal: bool
    color: bool
    width: int


def _mode(value: Optional[str]) -> Optional[str]:
    mode = str(value or "").strip().lower()
    return mode if mode in UI_MODES else None


def _rich_installed() -> bool:
    return importlib.util.find_spec("rich") is not None


def _stdout_is_terminal() -> bool:
    isatty = getattr(sys.stdout, "isatty", None)
    return bool(isatty and isatty())


def _terminal_width() -> int:
    columns = shutil.get_terminal_size((80, 24)).columns
    return max(MIN_WIDTH, min(columns, MAX_WIDTH))


def resolve_ui_context(args: Any, config: Config) -> UIContext:
    """
    Pick the rendering mode from --ui, then ui.mode, then "plain".

    "auto" uses rich on a terminal when it is installed, plain otherwise.
    Plain output is colored only on a terminal that is not "dumb" and when
    NO_COLOR is unset.

    Raises:
        UIResolutionError: If rich is requested explicitly but not installed.
    """
    requested = (
        _mode(getattr(args, "ui", None))
        or _mode(config.get("ui.mode"))
        or UI_MODE_PLAIN
    )
    terminal = _stdout_is_terminal()

    if requested == UI_MODE_RICH:
        if not _rich_installed():
            raise UIResolutionError(
                "--ui rich needs the optional 'rich' package: pip install slurmjobs[ui]"
            )
        mode = UI_MODE_RICH
    elif requested == UI_MODE_AUTO and terminal and _rich_installed():
        mode = UI_MODE_RICH
    else:
        mode = UI_MODE_PLAIN

    color = (
        terminal
        and "NO_COLOR" not in os.environ
        and os.environ.get("TERM", "").lower() != "dumb"
    )
    return UIContext(
        mode=mode,
        requested=requested,
        terminal=terminal,
        color=color,
        width=_terminal_width(),
    )
