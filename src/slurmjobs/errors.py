"""
Exception types raised by slurmjobs.

Every error derives from SlurmJobsError so callers (and the CLI) can catch
the whole family at once. Validation and filesystem errors additionally
derive from the matching builtin exception.
"""

from __future__ import annotations

from typing import List, Optional, Sequence


class SlurmJobsError(Exception):
    """Base class for all slurmjobs errors."""


class ValidationError(SlurmJobsError, ValueError):
    """Raised when caller-supplied options violate a documented constraint."""


class AlreadyExistsError(SlurmJobsError, FileExistsError):
    """Raised when a script would be created over an existing file."""


class NotFoundError(SlurmJobsError, FileNotFoundError):
    """Raised when a script that must already exist is missing."""


class MissingDirectoryError(NotFoundError):
    """Raised when the directory meant to contain a script does not exist."""


class StructuralParseError(SlurmJobsError):
    """Raised when expected text structure is missing or ambiguous."""


class TaskDiscoveryError(StructuralParseError):
    """Raised when failed array tasks cannot be inferred automatically."""


class InternalConsistencyError(SlurmJobsError):
    """
    Raised when SLURM output violates an assumption the parser relies on.

    These point at stale parsing logic rather than at user mistakes.
    """

    def __init__(self, message: str):
        super().__init__(
            f"{message} (this is an internal bug in slurmjobs; please report it)"
        )


class ExternalToolError(SlurmJobsError):
    """
    Raised when a SLURM command cannot be run or exits with an error.

    Attributes:
        cmd: The command that was run.
        returncode: Exit code, or None if the executable was not found.
        output: Captured stdout/stderr (possibly truncated in the message).
    """

    max_snippet = 500

    def __init__(
        self,
        cmd: Sequence[str],
        returncode: Optional[int],
        output: str = "",
        reason: Optional[str] = None,
    ):
        self.cmd: List[str] = list(cmd)
        self.returncode = returncode
        self.output = output

        if reason is None:
            reason = f"exited with status {returncode}"
        message = f"Command '{' '.join(self.cmd)}' {reason}"
        snippet = output.strip()
        if snippet:
            if len(snippet) > self.max_snippet:
                snippet = snippet[: self.max_snippet] + "..."
            message += f":\n{snippet}"
        super().__init__(message)
