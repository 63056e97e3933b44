"""
Resolution of job script names and paths.

A script can be named by a bare name ("my_job"), a relative path
("jobs/my_job.sh") or an absolute path. Relative names are always resolved
against an explicitly passed base directory, never the process working
directory.
"""

from __future__ import annotations

import re
import string
from pathlib import Path
from typing import List, Optional, Sequence, Union

from slurmjobs.errors import (
    AlreadyExistsError,
    MissingDirectoryError,
    NotFoundError,
    ValidationError,
)


SHELL_SUFFIX = ".sh"
COMPANION_SUFFIX = ".py"

# argparse owns -h
_RESERVED_SHORT_FLAGS = {"h"}

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def resolve_script_path(
    name: Union[str, Path],
    *,
    base_dir: Optional[Union[str, Path]] = None,
    should_exist: Optional[bool] = None,
    companion_ok: bool = False,
) -> Path:
    """
    Resolve a script name or path to the full path of a shell script.

    Args:
        name: Bare name, relative path or absolute path, with or without
            the ".sh" extension.
        base_dir: Directory that relative names are resolved against.
        should_exist: True to require an existing script, False to require
            that no script exists yet, None to skip the existence check.
        companion_ok: Accept a ".py" name and map it to its ".sh" sibling
            (loop jobs come as a shell + Python pair).

    Returns:
        Absolute path to the shell script.

    Raises:
        ValidationError: Empty name, relative name without base_dir, or a
            ".py" name when companion_ok is False.
        MissingDirectoryError: The containing directory does not exist.
        NotFoundError: should_exist is True and the script is missing.
        AlreadyExistsError: should_exist is False and the script exists.

    Example:
        >>> resolve_script_path("b", base_dir="/tmp")
        PosixPath('/tmp/b.sh')
    """
    raw = str(name).strip()
    if not raw:
        raise ValidationError("Expected a script name or path, got an empty string")

    path = Path(raw).expanduser()
    if not path.is_absolute():
        if base_dir is None:
            raise ValidationError(
                f"Cannot resolve relative script path '{raw}' without a base directory"
            )
        path = Path(base_dir).expanduser() / path

    if path.suffix == COMPANION_SUFFIX:
        if not companion_ok:
            raise ValidationError(
                f"Expected a name or path to a shell script, not a Python script: {raw}"
            )
        path = path.with_suffix(SHELL_SUFFIX)
    elif path.suffix != SHELL_SUFFIX:
        path = path.with_name(path.name + SHELL_SUFFIX)

    path = path.absolute()

    if not path.parent.is_dir():
        raise MissingDirectoryError(
            f"Directory containing shell script must exist: {path.parent}"
        )

    if should_exist is True and not path.exists():
        raise NotFoundError(f"Shell script does not exist: {path}")
    if should_exist is False and path.exists():
        raise AlreadyExistsError(f"Shell script already exists: {path}")

    return path


def script_job_name(script_path: Union[str, Path]) -> str:
    """Job name for a script: its file name without the ".sh" extension."""
    name = Path(script_path).name
    if name.endswith(SHELL_SUFFIX):
        name = name[: -len(SHELL_SUFFIX)]
    return name


def is_shell_identifier(name: str) -> bool:
    return bool(_IDENTIFIER_RE.match(name))


def get_short_flags(names: Sequence[str]) -> List[str]:
    """
    Pick a unique one-letter command-line flag for each variable name.

    Each name gets its own first letter when still available, otherwise the
    first unused letter of the alphabet.

    Args:
        names: Variable names, in order.

    Returns:
        One lowercase letter per name.

    Raises:
        ValidationError: If there are more names than available letters.

    Example:
        >>> get_short_flags(["coconut", "cherry", "banana", "berry"])
        ['c', 'a', 'b', 'd']
    """
    available = [c for c in string.ascii_lowercase if c not in _RESERVED_SHORT_FLAGS]
    if len(names) > len(available):
        raise ValidationError(
            f"Can't handle more than {len(available)} loop variables, got {len(names)}"
        )

    used: List[str] = []
    for name in names:
        first = name[:1].lower()
        if first in available and first not in used:
            used.append(first)
        else:
            used.append(next(c for c in available if c not in used))
    return used
