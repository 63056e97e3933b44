"""
Job script generation.

This module builds SLURM batch scripts from Jinja2 templates:
- single jobs and array jobs (build_single_job)
- loop array jobs that iterate over the cross product of several variables,
  paired with a Python companion script (build_loop_job)

Building is pure: it returns the script text. Writing to disk is a separate,
explicit step (persist). job_single and job_loop compose path resolution,
building and optional persisting for convenience.
"""

from __future__ import annotations

import re
import shlex
import sys
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from jinja2 import Environment, FileSystemLoader

from slurmjobs._version import __version__
from slurmjobs.config import DEFAULT_CONFIG, Config
from slurmjobs.errors import AlreadyExistsError, StructuralParseError, ValidationError
from slurmjobs.indexing import compute_index_plan, total_tasks
from slurmjobs.paths import (
    COMPANION_SUFFIX,
    get_short_flags,
    is_shell_identifier,
    resolve_script_path,
    script_job_name,
)
from slurmjobs.script import JobScript


# =============================================================================
# Constants
# =============================================================================

VALID_EMAIL_OPTIONS = ("BEGIN", "END", "FAIL", "ALL")

MEMORY_RE = re.compile(r"^[1-9][0-9]*[KMGT]$")

# Accepts the sbatch --time family: "MM", "MM:SS", "HH:MM:SS", "D-HH",
# "D-HH:MM", "D-HH:MM:SS". Out-of-range values like "1-25:61:61" slip
# through; sbatch rejects those itself.
TIME_LIMIT_RE = re.compile(r"^([0-9]+-)?[0-9]{1,2}(:[0-9]{1,2}){0,2}$")

DOCS_URL = "http://research.libd.org/slurmjobs/"
VERSION_COMMENT = "## This script was made using slurmjobs version"

# Loop jobs redirect output themselves once the log path is known
DISCARD_LOG = "/dev/null"

LOG_PATH_VAR = "log_path"

TEMPLATES_DIR = Path(__file__).parent / "templates"
SHELL_TEMPLATE = "job.sh.j2"
COMPANION_TEMPLATE = "companion.py.j2"


# =============================================================================
# Data Types
# =============================================================================

@dataclass(frozen=True)
class JobScriptConfig:
    """
    Options for one generated job script.

    Attributes:
        name: Job name; also the stem of the script and log file names.
        partition: SLURM partition (queue).
        memory: Total memory request, e.g. "10G".
        cores: Number of cores (``-c``).
        time_limit: Wall-clock limit in an sbatch ``--time`` format.
        email: Mail notification mode: BEGIN, END, FAIL or ALL.
        logdir: Log directory as written into the script.
        task_num: Number of array tasks; None for a plain job.
        tc: Maximum number of concurrently running array tasks.
        command: Command run by the job.
        modules: Environment modules loaded before the command.
    """

    name: str
    partition: str = DEFAULT_CONFIG["job_defaults"]["partition"]
    memory: str = DEFAULT_CONFIG["job_defaults"]["memory"]
    cores: int = DEFAULT_CONFIG["job_defaults"]["cores"]
    time_limit: str = DEFAULT_CONFIG["job_defaults"]["time_limit"]
    email: str = DEFAULT_CONFIG["job_defaults"]["email"]
    logdir: str = DEFAULT_CONFIG["job_defaults"]["logdir"]
    task_num: Optional[int] = None
    tc: int = DEFAULT_CONFIG["job_defaults"]["tc"]
    command: str = DEFAULT_CONFIG["job_defaults"]["command"]
    modules: Sequence[str] = field(default_factory=tuple)

    def validate(self) -> None:
        """
        Check every option against its documented constraint.

        Raises:
            ValidationError: On the first invalid option.
        """
        if not self.name or any(c.isspace() for c in self.name):
            raise ValidationError(f"Invalid job name: {self.name!r}")

        if self.email not in VALID_EMAIL_OPTIONS:
            raise ValidationError(
                f"Invalid email option {self.email!r}: 'email' should be one of "
                f"the following options: {', '.join(VALID_EMAIL_OPTIONS)}"
            )

        if not _is_number(self.cores) or self.cores < 1:
            raise ValidationError(f"'cores' should be at least 1, got {self.cores!r}")
        if not isinstance(self.cores, int):
            raise ValidationError(f"'cores' should be an integer, got {self.cores!r}")

        if not isinstance(self.memory, str) or not MEMORY_RE.match(self.memory):
            raise ValidationError(
                f"Cannot parse memory request {self.memory!r}. Must be a string "
                "containing a positive integer and units 'K', 'M', 'G', or 'T'."
            )

        if not isinstance(self.time_limit, str) or not TIME_LIMIT_RE.match(self.time_limit):
            raise ValidationError(
                f"Invalid time limit {self.time_limit!r}. See "
                "https://slurm.schedmd.com/sbatch.html for accepted time formats."
            )

        if self.task_num is not None and not _is_positive_int(self.task_num):
            raise ValidationError(
                f"'task_num' should be a positive integer, got {self.task_num!r}"
            )
        if not _is_positive_int(self.tc):
            raise ValidationError(f"'tc' should be a positive integer, got {self.tc!r}")

    @property
    def log_file(self) -> str:
        """Log path written into the -o/-e directives."""
        suffix = ".%a" if self.task_num is not None else ""
        return f"{self.logdir.rstrip('/')}/{self.name}{suffix}.txt"


@dataclass(frozen=True)
class GeneratedScript:
    """
    Text of a generated job script.

    Attributes:
        name: Job name.
        shell: Shell script content.
        companion: Python companion script content (loop jobs only).
    """

    name: str
    shell: str
    companion: Optional[str] = None

    @property
    def is_loop(self) -> bool:
        return self.companion is not None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 1


# =============================================================================
# Template Rendering
# =============================================================================

@lru_cache(maxsize=None)
def _environment() -> Environment:
    return Environment(
        loader=FileSystemLoader(str(TEMPLATES_DIR)),
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )


def _render(template_name: str, **context: Any) -> str:
    template = _environment().get_template(template_name)
    return template.render(
        version=__version__,
        version_comment=VERSION_COMMENT,
        docs_url=DOCS_URL,
        **context,
    )


# =============================================================================
# Builders
# =============================================================================

def build_single_job(config: JobScriptConfig) -> GeneratedScript:
    """
    Build a SLURM batch script for a plain or array job.

    Args:
        config: Job options. When ``config.task_num`` is set the script is an
            array job over tasks 1..task_num, throttled to ``config.tc``.

    Returns:
        GeneratedScript holding the shell script text.

    Raises:
        ValidationError: If any option is invalid.

    Example:
        >>> script = build_single_job(JobScriptConfig(name="align", task_num=20))
        >>> "#SBATCH --array=1-20%20" in script.shell
        True
    """
    config.validate()

    shell = _render(
        SHELL_TEMPLATE,
        name=config.name,
        partition=config.partition,
        memory=config.memory,
        cores=config.cores,
        time_limit=config.time_limit,
        log_file=config.log_file,
        email=config.email,
        task_num=config.task_num,
        tc=config.tc,
        modules=list(config.modules),
        command=config.command,
    )
    return GeneratedScript(name=config.name, shell=shell)


def validate_loops(loops: Any) -> None:
    """
    Check that ``loops`` is a non-empty mapping of names to string values.

    Raises:
        ValidationError: If the loop variables are malformed.
    """
    if not isinstance(loops, Mapping) or not loops:
        raise ValidationError(
            "'loops' should be a non-empty mapping of variable names to values"
        )

    for name, values in loops.items():
        if not isinstance(name, str) or not is_shell_identifier(name):
            raise ValidationError(
                f"Loop variable names must be valid shell identifiers, got {name!r}"
            )
        if isinstance(values, (str, bytes)) or not isinstance(values, Sequence):
            raise ValidationError(
                f"Values of loop variable '{name}' should be a sequence of strings"
            )
        if not values:
            raise ValidationError(f"Loop variable '{name}' has no values")
        if not all(isinstance(value, str) for value in values):
            raise ValidationError(
                f"All values of loop variable '{name}' should be strings"
            )

    get_short_flags(list(loops))


def loop_command(name: str, loops: Mapping[str, Sequence[str]], python_command: str = "python") -> str:
    """Command that runs the companion script with this task's values."""
    args = " ".join(f'--{var} "${{{var}}}"' for var in loops)
    return f"{python_command} {name}{COMPANION_SUFFIX} {args}"


def _loop_statements(loops: Mapping[str, Sequence[str]]) -> List[str]:
    lines = []
    for position, (var, values) in enumerate(loops.items()):
        plan = compute_index_plan(loops, position)
        quoted = " ".join(shlex.quote(value) for value in values)
        lines.append(f"all_{var}=({quoted})")
        lines.append(
            f"{var}=${{all_{var}[$(( $SLURM_ARRAY_TASK_ID / {plan.divisor} % {plan.modulus} ))]}}"
        )
        lines.append("")
    return lines


def build_loop_job(
    loops: Mapping[str, Sequence[str]],
    config: JobScriptConfig,
    python_command: str = "python",
) -> GeneratedScript:
    """
    Build an array job looping over every combination of ``loops``.

    Each array task picks one value per variable (see slurmjobs.indexing),
    passes them to a Python companion script and writes its output to a log
    whose name embeds the chosen values.

    Args:
        loops: Ordered mapping of variable name to its string values.
        config: Job options; ``task_num`` and ``command`` are overridden.
        python_command: Interpreter used to run the companion script.

    Returns:
        GeneratedScript with both the shell and the companion script.

    Raises:
        ValidationError: If ``loops`` or any option is invalid.

    Example:
        >>> script = build_loop_job(
        ...     {"region": ["DLPFC", "HIPPO"], "feature": ["gene", "exon"]},
        ...     JobScriptConfig(name="bsp2"),
        ... )
        >>> "#SBATCH --array=1-4%20" in script.shell
        True
    """
    validate_loops(loops)

    config = replace(
        config,
        task_num=total_tasks(loops),
        command=loop_command(config.name, loops, python_command),
    )
    single = build_single_job(config)

    script = JobScript.from_text(single.shell)
    script.set_directive(("-o", "--output"), DISCARD_LOG)
    script.set_directive(("-e", "--error"), DISCARD_LOG)

    set_e = script.find_line(r"^set -e$")
    version_line = script.find_line("^" + re.escape(VERSION_COMMENT))
    if set_e is None or version_line is None:
        raise StructuralParseError(
            f"Template for '{config.name}' lacks the 'set -e' or version comment line"
        )

    log_path = "{}/{}_{}_${{SLURM_ARRAY_TASK_ID}}.txt".format(
        config.logdir.rstrip("/"),
        config.name,
        "_".join(f"${{{var}}}" for var in loops),
    )

    # Later insertion first so that set_e stays valid
    script.insert_text(version_line, [f'}} > "${LOG_PATH_VAR}" 2>&1', ""])
    script.insert_text(
        set_e,
        ["## Define loops and appropriately subset each variable for the array task ID"]
        + _loop_statements(loops)
        + [
            "## Explicitly pipe script output to a log",
            f"{LOG_PATH_VAR}={log_path}",
            "",
            "{",
        ],
    )

    variables = [
        {"name": var, "short": short}
        for var, short in zip(loops, get_short_flags(list(loops)))
    ]
    companion = _render(COMPANION_TEMPLATE, name=config.name, variables=variables)

    return GeneratedScript(name=config.name, shell=script.to_text(), companion=companion)


# =============================================================================
# Persisting
# =============================================================================

def companion_path(script_path: Union[str, Path]) -> Path:
    return Path(script_path).with_suffix(COMPANION_SUFFIX)


def persist(
    script: GeneratedScript,
    path: Union[str, Path],
    overwrite: bool = False,
) -> Path:
    """
    Write a generated script (and its companion, if any) to disk.

    The existence check and the write are not atomic; two processes creating
    the same script concurrently can still race.

    Args:
        script: Script to write.
        path: Target path of the shell script. The companion goes next to
            it with a ".py" extension.
        overwrite: Replace existing files instead of failing.

    Returns:
        Path of the shell script.

    Raises:
        AlreadyExistsError: If a target exists and overwrite is False.
            Nothing is written in that case.
    """
    path = Path(path)
    targets = {path: script.shell}
    if script.companion is not None:
        targets[companion_path(path)] = script.companion

    if not overwrite:
        for target in targets:
            if target.exists():
                raise AlreadyExistsError(f"Script already exists: {target}")

    for target, content in targets.items():
        target.write_text(content)

    return path


# =============================================================================
# Convenience Functions
# =============================================================================

def _job_config(
    name: str,
    config: Optional[Config],
    overrides: Dict[str, Any],
) -> JobScriptConfig:
    defaults = config.get_job_defaults() if config is not None else dict(DEFAULT_CONFIG["job_defaults"])
    defaults.update({k: v for k, v in overrides.items() if v is not None})
    known = {f.name for f in fields(JobScriptConfig)} - {"name", "modules"}
    unknown = sorted(set(defaults) - known)
    if unknown:
        raise ValidationError(f"Unknown job option(s): {', '.join(unknown)}")
    modules = config.get_modules() if config is not None else []
    return JobScriptConfig(name=name, modules=tuple(modules), **defaults)


def _announce(message: str) -> None:
    print(f"{datetime.now():%Y-%m-%d %H:%M:%S} {message}", file=sys.stderr)


def job_single(
    name: Union[str, Path],
    *,
    base_dir: Optional[Union[str, Path]] = None,
    create: bool = False,
    partition: Optional[str] = None,
    memory: Optional[str] = None,
    cores: Optional[int] = None,
    time_limit: Optional[str] = None,
    email: Optional[str] = None,
    logdir: Optional[str] = None,
    task_num: Optional[int] = None,
    tc: Optional[int] = None,
    command: Optional[str] = None,
    create_logdir: bool = False,
    config: Optional[Config] = None,
) -> GeneratedScript:
    """
    Build a single or array job script, optionally writing it to disk.

    Options left as None fall back to the ``job_defaults`` of ``config``
    (or the built-in defaults).

    Args:
        name: Script name or path (see slurmjobs.paths.resolve_script_path).
        base_dir: Directory relative names are resolved against.
        create: Write the script; fails if it already exists.
        create_logdir: Create the log directory next to the script.
        config: Configuration providing defaults.

    Returns:
        The generated script.

    Raises:
        ValidationError: If any option is invalid (nothing is written).
        AlreadyExistsError: If create is True and the script exists.

    Example:
        >>> script = job_single("jhpce_job", base_dir="/data/jobs", cores=10)
        >>> print(script.shell.splitlines()[4])
        #SBATCH -c 10
    """
    sh_file = resolve_script_path(name, base_dir=base_dir, companion_ok=False)
    job_config = _job_config(
        script_job_name(sh_file),
        config,
        dict(
            partition=partition, memory=memory, cores=cores, time_limit=time_limit,
            email=email, logdir=logdir, task_num=task_num, tc=tc, command=command,
        ),
    )
    script = build_single_job(job_config)

    if create:
        persist(script, sh_file)
        _announce(f"creating the shell file {sh_file}")
        print(f"To submit the job use: sbatch {sh_file}", file=sys.stderr)

    if create_logdir:
        log_dir = sh_file.parent / job_config.logdir
        _announce(f"creating the logs directory at: {log_dir}")
        log_dir.mkdir(parents=True, exist_ok=True)

    return script


def job_loop(
    loops: Mapping[str, Sequence[str]],
    name: Union[str, Path],
    *,
    base_dir: Optional[Union[str, Path]] = None,
    create: bool = False,
    partition: Optional[str] = None,
    memory: Optional[str] = None,
    cores: Optional[int] = None,
    time_limit: Optional[str] = None,
    email: Optional[str] = None,
    logdir: Optional[str] = None,
    tc: Optional[int] = None,
    create_logdir: bool = False,
    config: Optional[Config] = None,
) -> GeneratedScript:
    """
    Build a loop array job (shell + Python companion), optionally writing it.

    Args:
        loops: Ordered mapping of variable name to its string values.
        name: Script name or path; a ".py" name refers to the same pair.
        base_dir: Directory relative names are resolved against.
        create: Write both scripts; fails if either already exists.
        create_logdir: Create the log directory next to the script.
        config: Configuration providing defaults.

    Returns:
        The generated script pair.

    Example:
        >>> pair = job_loop(
        ...     {"region": ["DLPFC", "HIPPO"], "feature": ["gene", "exon", "tx", "jxn"]},
        ...     "bsp2_test_array",
        ...     base_dir="/data/jobs",
        ...     cores=2,
        ... )
        >>> pair.companion is not None
        True
    """
    sh_file = resolve_script_path(name, base_dir=base_dir, companion_ok=True)
    job_config = _job_config(
        script_job_name(sh_file),
        config,
        dict(
            partition=partition, memory=memory, cores=cores, time_limit=time_limit,
            email=email, logdir=logdir, tc=tc,
        ),
    )
    python_command = (
        config.get("python_command", "python") if config is not None
        else DEFAULT_CONFIG["python_command"]
    )
    script = build_loop_job(loops, job_config, python_command=python_command)

    if create:
        persist(script, sh_file)
        _announce(
            f"Creating the shell file {sh_file} and corresponding Python script "
            f"{companion_path(sh_file)}"
        )
        print(f"To submit the script pair, use: sbatch {sh_file}", file=sys.stderr)

    if create_logdir:
        log_dir = sh_file.parent / job_config.logdir
        _announce(f"creating the logs directory at: {log_dir}")
        log_dir.mkdir(parents=True, exist_ok=True)

    return script
