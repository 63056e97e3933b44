"""
SLURM command-line utilities.

This module is the only place where SLURM executables are invoked:
- sacct for accounting data of (possibly finished) jobs
- squeue for currently queued/running jobs
- sstat for live memory usage of running jobs
- sinfo for partition and node capacity
- sbatch for submitting job scripts

Each query function returns the raw text output with a fixed column layout;
parsing lives in slurmjobs.reports.
"""

from __future__ import annotations

import re
import subprocess
from pathlib import Path
from typing import List, Optional, Tuple, Union

from slurmjobs.errors import ExternalToolError


# =============================================================================
# Constants
# =============================================================================

# Column layouts; slurmjobs.reports relies on this exact order
SACCT_FIELDS = [
    "JobID", "User", "JobName", "Partition", "AllocCPUS", "ReqMem",
    "State", "MaxRSS", "MaxVMSize", "ExitCode", "Elapsed",
]
SQUEUE_FORMAT = "%u|%F|%K|%j|%P|%C|%m|%T|%M"
SQUEUE_FIELDS = [
    "user", "job_id", "array_task_id", "name", "partition", "cpus",
    "min_memory", "state", "time_used",
]
SSTAT_FIELDS = ["JobID", "MaxRSS", "MaxVMSize"]
SINFO_FIELDS = [
    "PartitionName", "NodeList:50", "FreeMem", "AllocMem", "Memory",
    "StateLong", "CPUsState",
]


# =============================================================================
# Command Execution
# =============================================================================

def run_command(
    cmd: List[str],
    check: bool = False,
    capture_output: bool = True,
    cwd: Optional[Path] = None,
) -> subprocess.CompletedProcess:
    """
    Run a command and return the result.

    Args:
        cmd: Command and arguments as a list.
        check: If True, raise CalledProcessError on non-zero exit.
        capture_output: If True, capture stdout and stderr.
        cwd: Working directory for the command.

    Returns:
        CompletedProcess object with stdout, stderr, and returncode.
    """
    return subprocess.run(
        cmd,
        check=check,
        capture_output=capture_output,
        text=True,
        cwd=cwd,
    )


def run_slurm_command(cmd: List[str], cwd: Optional[Path] = None) -> str:
    """
    Run a SLURM command and return its standard output.

    Raises:
        ExternalToolError: If the executable is missing or exits non-zero.
    """
    try:
        result = run_command(cmd, cwd=cwd)
    except FileNotFoundError:
        raise ExternalToolError(
            cmd, None, reason=f"failed: {cmd[0]} not found. Is SLURM installed?"
        ) from None

    if result.returncode != 0:
        raise ExternalToolError(
            cmd,
            result.returncode,
            output=(result.stderr or "") + (result.stdout or ""),
        )

    return result.stdout


# =============================================================================
# Queries
# =============================================================================

def query_sacct(job_id: Union[int, str]) -> str:
    """
    Query sacct for every task and step of one job.

    Returns:
        Pipe-delimited rows (no header) with SACCT_FIELDS columns.
    """
    cmd = [
        "sacct",
        "-j", str(job_id),
        "--parsable2",
        "--noheader",
        "--units=G",
        f"--format={','.join(SACCT_FIELDS)}",
    ]
    return run_slurm_command(cmd)


def query_squeue() -> str:
    """
    Query squeue for all queued jobs.

    Returns:
        Pipe-delimited rows (no header) with SQUEUE_FIELDS columns.
    """
    cmd = ["squeue", "--noheader", f"--format={SQUEUE_FORMAT}"]
    return run_slurm_command(cmd)


def query_sstat(job_id: str) -> str:
    """
    Query sstat for the live memory usage of every step of a running job.

    Returns:
        Pipe-delimited rows (no header) with SSTAT_FIELDS columns.
    """
    cmd = [
        "sstat",
        "--parsable2",
        "--noheader",
        "--allsteps",
        "-j", str(job_id),
        f"--format={','.join(SSTAT_FIELDS)}",
    ]
    return run_slurm_command(cmd)


def query_sinfo() -> str:
    """
    Query sinfo for per-node capacity.

    Returns:
        Whitespace-aligned rows (no header) with SINFO_FIELDS columns; the
        CPUsState column is "allocated/idle/other/total".
    """
    cmd = ["sinfo", "--Node", "--noheader", f"--Format={','.join(SINFO_FIELDS)}"]
    return run_slurm_command(cmd)


# =============================================================================
# Job Submission
# =============================================================================

def submit_job(
    script_path: Union[str, Path],
    extra_args: Optional[List[str]] = None,
) -> Tuple[Optional[str], str]:
    """
    Submit a job script using sbatch.

    The command runs from the script's own directory so that relative log
    paths inside the script resolve next to it.

    Args:
        script_path: Path to the job script.
        extra_args: Additional arguments to pass to sbatch.

    Returns:
        Tuple of (job_id, message). job_id is None if it could not be read
        from the sbatch output.

    Raises:
        ExternalToolError: If sbatch is missing or fails.

    Example:
        >>> job_id, msg = submit_job("/data/jobs/train.sh")
        >>> print(msg)
        Submitted batch job 12345
    """
    script_path = Path(script_path)

    cmd = ["sbatch"]
    if extra_args:
        cmd.extend(extra_args)
    cmd.append(script_path.name)

    output = run_slurm_command(cmd, cwd=script_path.parent).strip()

    # Typical output: "Submitted batch job 12345"
    job_id = None
    match = re.search(r"Submitted batch job (\d+)", output)
    if match:
        job_id = match.group(1)

    return job_id, output
