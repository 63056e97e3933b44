"""
Structured representation of a SLURM batch script.

Scripts are handled as an ordered list of line records rather than raw text.
Each record knows what kind of line it is and, for ``#SBATCH`` directives,
which flag and value it carries. Records keep their original line endings so
that ``JobScript.from_text(text).to_text() == text`` always holds, and editing
one directive can never disturb its neighbours.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Iterator, List, Optional, Sequence

from slurmjobs.errors import StructuralParseError


# =============================================================================
# Line Records
# =============================================================================

LINE_SHEBANG = "shebang"
LINE_DIRECTIVE = "directive"
LINE_COMMENT = "comment"
LINE_BLANK = "blank"
LINE_BODY = "body"

DIRECTIVE_PREFIX = "#SBATCH"

# "#SBATCH --mem=10G", "#SBATCH -p shared", "#SBATCH --array=1-10%5"
_DIRECTIVE_RE = re.compile(
    r"^#SBATCH\s+(?P<flag>--?[A-Za-z][A-Za-z0-9-]*)(?:(?P<sep>=|\s+)(?P<value>.*?))?\s*$"
)


@dataclass(frozen=True)
class ScriptLine:
    """
    One line of a job script.

    Attributes:
        kind: One of shebang, directive, comment, blank or body.
        text: Line content without its line ending.
        ending: The original line ending ("\\n", "\\r\\n" or "" for the last line).
        flag: Directive flag (e.g. "--mem" or "-p") for directive lines.
        value: Directive value for directive lines.
        separator: "=" or the whitespace between flag and value.
    """

    kind: str
    text: str
    ending: str = "\n"
    flag: Optional[str] = None
    value: Optional[str] = None
    separator: str = ""

    @classmethod
    def parse(cls, raw: str, first: bool = False) -> "ScriptLine":
        """Classify a raw line (line ending included)."""
        text = raw.rstrip("\r\n")
        ending = raw[len(text):]

        if first and text.startswith("#!"):
            return cls(LINE_SHEBANG, text, ending)

        if text.startswith(DIRECTIVE_PREFIX):
            match = _DIRECTIVE_RE.match(text)
            if match:
                return cls(
                    LINE_DIRECTIVE,
                    text,
                    ending,
                    flag=match.group("flag"),
                    value=match.group("value") or "",
                    separator=match.group("sep") or "",
                )

        if not text.strip():
            return cls(LINE_BLANK, text, ending)
        if text.lstrip().startswith("#"):
            return cls(LINE_COMMENT, text, ending)
        return cls(LINE_BODY, text, ending)

    def with_value(self, value: str) -> "ScriptLine":
        """Return a copy of this directive with a new value."""
        if self.kind != LINE_DIRECTIVE:
            raise ValueError(f"Not a directive line: {self.text!r}")
        text = f"{DIRECTIVE_PREFIX} {self.flag}{self.separator or ' '}{value}"
        return replace(self, text=text, value=value)

    def to_text(self) -> str:
        return self.text + self.ending


# =============================================================================
# Job Script
# =============================================================================

class JobScript:
    """
    An editable, ordered collection of script lines.

    Example:
        >>> script = JobScript.from_text("#!/bin/bash\\n#SBATCH --array=1-10%5\\n")
        >>> [line.value for line in script.directives("--array")]
        ['1-10%5']
    """

    def __init__(self, lines: Sequence[ScriptLine]):
        self.lines: List[ScriptLine] = list(lines)

    @classmethod
    def from_text(cls, text: str) -> "JobScript":
        raw_lines = text.splitlines(keepends=True)
        return cls(
            ScriptLine.parse(raw, first=(i == 0)) for i, raw in enumerate(raw_lines)
        )

    def to_text(self) -> str:
        return "".join(line.to_text() for line in self.lines)

    def __iter__(self) -> Iterator[ScriptLine]:
        return iter(self.lines)

    def __len__(self) -> int:
        return len(self.lines)

    def directive_indices(self, *flags: str) -> List[int]:
        """Indices of directive lines carrying any of ``flags`` (all if none given)."""
        return [
            i for i, line in enumerate(self.lines)
            if line.kind == LINE_DIRECTIVE and (not flags or line.flag in flags)
        ]

    def directives(self, *flags: str) -> List[ScriptLine]:
        return [self.lines[i] for i in self.directive_indices(*flags)]

    def directive_value(self, *flags: str) -> Optional[str]:
        """
        Value of a directive that must appear at most once.

        Raises:
            StructuralParseError: If the directive appears more than once.
        """
        found = self.directives(*flags)
        if not found:
            return None
        if len(found) > 1:
            raise StructuralParseError(
                f"Expected at most one '{DIRECTIVE_PREFIX} {'/'.join(flags)}' line, "
                f"found {len(found)}"
            )
        return found[0].value

    def set_directive(self, flags: Sequence[str], value: str) -> int:
        """
        Change the value of every directive matching ``flags``.

        Returns:
            Number of lines changed.
        """
        indices = self.directive_indices(*flags)
        for i in indices:
            self.lines[i] = self.lines[i].with_value(value)
        return len(indices)

    def find_line(self, pattern: str, start: int = 0) -> Optional[int]:
        """Index of the first line (from ``start``) whose text matches ``pattern``."""
        regex = re.compile(pattern)
        for i in range(start, len(self.lines)):
            if regex.search(self.lines[i].text):
                return i
        return None

    def insert_text(self, index: int, text_lines: Sequence[str]) -> None:
        """Insert plain text lines before ``index``."""
        new_lines = [ScriptLine.parse(text + "\n") for text in text_lines]
        self.lines[index:index] = new_lines
