"""
Resubmission of selected tasks of an existing array job.

array_submit rewrites the ``#SBATCH --array=`` line of a generated script to
list only the requested task ids, optionally submits it, and by default puts
the original script back afterwards. When no task ids are given, the tasks
that did not complete during the script's last run are discovered from its
log files and sacct.
"""

from __future__ import annotations

import re
import shlex
import sys
from pathlib import Path
from typing import Iterable, List, Optional, Pattern, Sequence, Union

from slurmjobs import reports, slurm
from slurmjobs.errors import (
    NotFoundError,
    SlurmJobsError,
    StructuralParseError,
    TaskDiscoveryError,
    ValidationError,
)
from slurmjobs.generate import DISCARD_LOG, LOG_PATH_VAR
from slurmjobs.paths import resolve_script_path
from slurmjobs.script import LINE_BODY, JobScript


ARRAY_FLAG = "--array"

# "1-10%5": the only form generated scripts use
_GENERATED_ARRAY_RE = re.compile(r"^[0-9]+-(?P<last>[0-9]+)%[0-9]+$")
_THROTTLE_RE = re.compile(r"%(?P<tc>[0-9]+)$")
_JOB_ID_LINE_RE = re.compile(r"^Job id: (?P<job_id>[0-9]+)\s*$", re.MULTILINE)
_SHELL_VAR_RE = re.compile(r"(\$\{[A-Za-z_][A-Za-z0-9_]*\})")


# =============================================================================
# Task Discovery
# =============================================================================

def highest_task_id(script: JobScript) -> int:
    """
    Last task id of the array range a generated script declares.

    Raises:
        StructuralParseError: If the --array directive is missing, repeated or
            not of the "<start>-<end>%<tc>" form.
    """
    value = script.directive_value(ARRAY_FLAG)
    match = _GENERATED_ARRAY_RE.match(value or "")
    if not match:
        raise StructuralParseError(
            f"Expected a '#SBATCH {ARRAY_FLAG}=<start>-<end>%<tc>' line, got {value!r}"
        )
    return int(match.group("last"))


def _body_assignment(script: JobScript, var: str) -> Optional[str]:
    prefix = f"{var}="
    for line in script:
        if line.kind == LINE_BODY and line.text.startswith(prefix):
            return line.text[len(prefix):].strip().strip("'\"")
    return None


def _loop_values(script: JobScript, var: str) -> Optional[List[str]]:
    """Values of a loop variable, read from its ``all_<var>=(...)`` line."""
    raw = _body_assignment(script, f"all_{var}")
    if raw is None or not (raw.startswith("(") and raw.endswith(")")):
        return None
    return shlex.split(raw[1:-1])


def _log_name_pattern(script: JobScript, template: str, task_id: int) -> Pattern[str]:
    """
    Regex for the log file name of one task of a loop job.

    ``template`` is the file name part of the ``log_path=`` line. Each
    ``${var}`` only matches the values the script declares for that variable,
    so jobs sharing a name prefix do not match each other's logs.
    """
    parts = []
    for piece in _SHELL_VAR_RE.split(template):
        var = piece[2:-1] if _SHELL_VAR_RE.fullmatch(piece) else None
        if var is None:
            parts.append(re.escape(piece))
        elif var == "SLURM_ARRAY_TASK_ID":
            parts.append(str(task_id))
        else:
            values = _loop_values(script, var)
            parts.append(
                "(?:" + "|".join(re.escape(v) for v in values) + ")" if values else "[^/]+"
            )
    return re.compile("".join(parts))


def task_log_file(script: JobScript, script_path: Path, task_id: int) -> Path:
    """
    Log file written by one task of the script's last run.

    Relative log paths are resolved against the script's directory, which is
    where sbatch runs it from.

    Raises:
        StructuralParseError: If the -o/-e directives differ or are missing.
        NotFoundError: If there is not exactly one matching log file.
    """
    output = script.directive_value("-o", "--output")
    error = script.directive_value("-e", "--error")
    if output is None or output != error:
        raise StructuralParseError(
            "Expected identical '#SBATCH -o' and '#SBATCH -e' lines to locate logs"
        )

    if output != DISCARD_LOG:
        if "%" in output.replace("%a", ""):
            raise StructuralParseError(f"Unsupported pattern in log path {output!r}")
        log_file = Path(output.replace("%a", str(task_id)))
        if not log_file.is_absolute():
            log_file = script_path.parent / log_file
        if not log_file.is_file():
            raise NotFoundError(f"Log file for task {task_id} does not exist: {log_file}")
        return log_file

    # Loop jobs log through the shell body; file names embed the task's values
    log_path = _body_assignment(script, LOG_PATH_VAR)
    job_name = script.directive_value("--job-name", "-J")
    if log_path is None or job_name is None:
        raise StructuralParseError(
            f"Expected a '{LOG_PATH_VAR}=' line and a job name to locate logs"
        )
    log_dir = Path(log_path).parent
    if not log_dir.is_absolute():
        log_dir = script_path.parent / log_dir

    name_re = _log_name_pattern(script, Path(log_path).name, task_id)
    candidates = sorted(
        path for path in log_dir.glob(f"{job_name}_*") if name_re.fullmatch(path.name)
    )
    if len(candidates) != 1:
        raise NotFoundError(
            f"Expected exactly one log file for task {task_id} in {log_dir}, "
            f"found {len(candidates)}"
        )
    return candidates[0]


def job_id_from_log(log_file: Path) -> str:
    """
    Job id recorded by the "Job id:" line generated scripts echo.

    Raises:
        StructuralParseError: If the log has no such line.
    """
    match = _JOB_ID_LINE_RE.search(log_file.read_text(errors="replace"))
    if not match:
        raise StructuralParseError(f"No 'Job id:' line in log file {log_file}")
    return match.group("job_id")


def unfinished_tasks(job_id: str) -> List[int]:
    """
    Array task ids of ``job_id`` whose status is not COMPLETED.

    Raises:
        StructuralParseError: If a task id cannot be determined or every
            task completed.
    """
    report = reports.job_report(job_id)
    unfinished = report[report["status"] != "COMPLETED"]

    if unfinished["array_task_id"].isna().any():
        raise StructuralParseError(f"Could not determine array task ids of job {job_id}")
    task_ids = sorted(int(t) for t in unfinished["array_task_id"])
    if not task_ids:
        raise StructuralParseError(f"Every task of job {job_id} completed; nothing to resubmit")
    return task_ids


def discover_failed_tasks(
    script: JobScript,
    script_path: Path,
    verbose: bool = False,
) -> List[int]:
    """
    Infer which array tasks of the script's last run did not complete.

    The last task's log gives the job id, and sacct gives each task's status.

    Raises:
        TaskDiscoveryError: If any step fails; the failing step's error is
            chained as the cause.
    """
    try:
        last_task = highest_task_id(script)
        log_file = task_log_file(script, script_path, last_task)
        job_id = job_id_from_log(log_file)
        if verbose:
            _progress(f"Found job id {job_id} in {log_file}")
        task_ids = unfinished_tasks(job_id)
    except SlurmJobsError as e:
        raise TaskDiscoveryError(
            f"Please specify 'task_ids' explicitly; could not infer them: {e}"
        ) from e

    if verbose:
        _progress(f"Tasks that did not complete: {_join_ids(task_ids)}")
    return task_ids


# =============================================================================
# Patching and Submission
# =============================================================================

def _join_ids(task_ids: Iterable[int]) -> str:
    return ",".join(str(t) for t in task_ids)


def _progress(message: str) -> None:
    print(message, file=sys.stderr)


def _check_task_ids(task_ids: Sequence[int]) -> List[int]:
    task_ids = list(task_ids)
    if not task_ids:
        raise ValidationError("'task_ids' should contain at least one task id")
    for task in task_ids:
        if isinstance(task, bool) or not isinstance(task, int) or task < 0:
            raise ValidationError(
                f"'task_ids' should be non-negative integers, got {task!r}"
            )
    return task_ids


def patch_array_line(script: JobScript, task_ids: Sequence[int]) -> JobScript:
    """
    Point the script's single --array directive at ``task_ids``.

    The throttle ("%<tc>") of the original line is kept. Every other line is
    left untouched.

    Raises:
        StructuralParseError: If there is not exactly one --array line.
    """
    indices = script.directive_indices(ARRAY_FLAG)
    if not indices:
        raise StructuralParseError(
            "Could not find the line that specifies that this is an array job"
        )
    if len(indices) > 1:
        raise StructuralParseError(
            f"Found {len(indices)} lines specifying the array tasks; expected one"
        )

    index = indices[0]
    line = script.lines[index]
    throttle = _THROTTLE_RE.search(line.value or "")
    value = _join_ids(task_ids)
    if throttle:
        value += f"%{throttle.group('tc')}"

    patched = JobScript(script.lines)
    patched.lines[index] = line.with_value(value)
    return patched


def array_submit(
    script: Union[str, Path],
    task_ids: Optional[Sequence[int]] = None,
    *,
    base_dir: Optional[Union[str, Path]] = None,
    submit: bool = False,
    restore: bool = True,
    verbose: bool = False,
) -> Path:
    """
    Resubmit selected tasks of an array job script.

    Args:
        script: Script name or path (see slurmjobs.paths.resolve_script_path).
        task_ids: Task ids to run. None discovers the tasks that did not
            complete in the script's last run.
        base_dir: Directory relative names are resolved against.
        submit: Run sbatch on the patched script.
        restore: Write the original script back afterwards, also when
            submission fails.
        verbose: Print progress messages to stderr.

    Returns:
        Path of the script.

    Raises:
        ValidationError: If ``task_ids`` is empty or not integers.
        TaskDiscoveryError: If task ids were not given and cannot be inferred.
        StructuralParseError: If the script has no single --array line.
        ExternalToolError: If submission fails.

    Example:
        >>> array_submit("align.sh", [3, 7], base_dir="/data/jobs", submit=True)
        PosixPath('/data/jobs/align.sh')
    """
    path = resolve_script_path(script, base_dir=base_dir, should_exist=True)
    original = path.read_bytes()
    # Undecodable bytes survive the round trip unchanged
    job_script = JobScript.from_text(original.decode(errors="surrogateescape"))

    if task_ids is None:
        task_ids = discover_failed_tasks(job_script, path, verbose=verbose)
    task_ids = _check_task_ids(task_ids)

    patched = patch_array_line(job_script, task_ids)
    if verbose:
        _progress(f"Setting the array tasks of {path} to {_join_ids(task_ids)}")
    path.write_bytes(patched.to_text().encode(errors="surrogateescape"))

    try:
        if submit:
            _, output = slurm.submit_job(path)
            print(output)
    finally:
        if restore:
            path.write_bytes(original)
            if verbose:
                _progress(f"Restored the original {path}")

    return path
