"""
Parsing of SLURM monitoring output into pandas DataFrames.

This module provides:
- job_report: accounting data (sacct) for every task of one job
- job_info: currently running jobs (squeue), with live memory usage (sstat)
  for the invoking user's jobs
- partition_info: free and total CPUs/memory per partition or node (sinfo)

Each query has a pure parse_* counterpart taking the raw command output, so
parsing can be exercised without a cluster. Memory is always reported in GB
and durations as timedeltas.
"""

from __future__ import annotations

import getpass
import math
import re
from typing import Any, Iterable, List, NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from slurmjobs.errors import InternalConsistencyError, StructuralParseError
from slurmjobs.slurm import (
    SACCT_FIELDS,
    SINFO_FIELDS,
    SQUEUE_FIELDS,
    SSTAT_FIELDS,
    query_sacct,
    query_sinfo,
    query_squeue,
    query_sstat,
)


# =============================================================================
# Constants
# =============================================================================

SLURM_JOB_STATES = [
    "BOOT_FAIL", "CANCELLED", "COMPLETED", "COMPLETING", "CONFIGURING",
    "DEADLINE", "FAILED", "LAUNCH_FAILED", "NODE_FAIL", "OUT_OF_MEMORY",
    "PENDING", "POWER_UP_NODE", "PREEMPTED", "REQUEUED", "REQUEUE_FED",
    "REQUEUE_HOLD", "RESIZING", "RESV_DEL_HOLD", "REVOKED", "RUNNING",
    "SIGNALING", "SPECIAL_EXIT", "STAGE_OUT", "STOPPED", "SUSPENDED",
    "TIMEOUT", "UPDATE_DB",
]

# Job states that indicate completion
COMPLETED_STATES = {"COMPLETED"}
FAILED_STATES = {"FAILED", "CANCELLED", "TIMEOUT", "NODE_FAIL", "PREEMPTED", "OUT_OF_MEMORY"}
RUNNING_STATES = {"RUNNING", "COMPLETING"}
PENDING_STATES = {"PENDING", "REQUEUED", "SUSPENDED"}

# Multipliers converting a memory unit to GB
MEMORY_SCALE_GB = {"K": 1e-6, "M": 1e-3, "G": 1.0}

# Job steps carrying memory usage: "batch" for sbatch jobs, "0" for
# interactive (srun) jobs. Earlier entries win.
MEMORY_STEPS = ["batch", "0"]

# Nodes whose idle capacity can be used right now
FREE_NODE_STATES = {"mixed", "idle"}

JOB_REPORT_COLUMNS = [
    "job_id", "array_task_id", "user", "name", "partition", "cpus",
    "requested_mem_gb", "max_rss_gb", "max_vmem_gb", "exit_code", "status",
    "wallclock_time",
]
JOB_INFO_COLUMNS = [
    "job_id", "array_task_id", "user", "name", "partition", "cpus",
    "requested_mem_gb", "max_rss_gb", "max_vmem_gb", "status",
    "wallclock_time",
]
NODE_COLUMNS = [
    "partition", "node", "free_mem_gb", "alloc_mem_gb", "total_mem_gb",
    "state", "alloc_cpus", "inactive_cpus", "other_cpus", "total_cpus",
]
PARTITION_COLUMNS = [
    "partition", "free_cpus", "total_cpus", "prop_free_cpus",
    "free_mem_gb", "total_mem_gb", "prop_free_mem_gb",
]

# 12345 | 12345_7 | 12345_[1-10%5] | 12345.batch | 12345_7.extern | 12345.0
_JOB_ID_RE = re.compile(
    r"^(?P<job_id>\d+)"
    r"(?:_(?:(?P<task>\d+)|\[(?P<range>[^\]]+)\]))?"
    r"(?:\.(?P<step>[^.]+))?$"
)
_TASK_RANGE_PART_RE = re.compile(r"^(\d+)(?:-(\d+)(?::(\d+))?)?$")
_MEMORY_RE = re.compile(r"^(?P<number>\d*\.?\d+)?(?P<unit>[A-Za-z]*)$")
_TIME_RE = re.compile(
    r"^(?:(?P<days>\d+)-)?(?:(?P<hours>\d+):)?(?P<minutes>\d+):(?P<seconds>\d+(?:\.\d+)?)$"
)
_NO_TIME_VALUES = {"", "N/A", "UNLIMITED", "INVALID", "UNKNOWN", "NOT_SET"}


# =============================================================================
# Field Parsing
# =============================================================================

class JobIdParts(NamedTuple):
    """Pieces of a sacct JobID field."""

    job_id: int
    array_task_id: Optional[int]
    task_range: Optional[str]
    step: Optional[str]


def parse_job_id(raw: str) -> JobIdParts:
    """
    Split a sacct JobID into job id, array task id, pending range and step.

    Example:
        >>> parse_job_id("270112_5.batch")
        JobIdParts(job_id=270112, array_task_id=5, task_range=None, step='batch')
        >>> parse_job_id("270112_[6-10%5]")
        JobIdParts(job_id=270112, array_task_id=None, task_range='6-10%5', step=None)
    """
    match = _JOB_ID_RE.match(str(raw).strip())
    if not match:
        raise StructuralParseError(f"Could not parse SLURM job identifier: {raw!r}")
    task = match.group("task")
    return JobIdParts(
        job_id=int(match.group("job_id")),
        array_task_id=int(task) if task is not None else None,
        task_range=match.group("range"),
        step=match.group("step"),
    )


def expand_task_range(spec: str) -> List[int]:
    """
    Expand an array task range such as "1-10%5" into task ids.

    Handles "1-10", "1-10%5" (throttle ignored), "1-9:2" and comma lists
    such as "1,3,5-7%2".
    """
    body = spec.split("%", 1)[0]
    task_ids = set()
    for part in body.split(","):
        match = _TASK_RANGE_PART_RE.match(part.strip())
        if not match:
            raise StructuralParseError(f"Could not parse array task range: {spec!r}")
        start = int(match.group(1))
        end = int(match.group(2) or start)
        step = int(match.group(3) or 1)
        if end < start or step < 1:
            raise StructuralParseError(f"Could not parse array task range: {spec!r}")
        task_ids.update(range(start, end + 1, step))
    return sorted(task_ids)


def normalize_memory(value: Any, request: bool = False) -> float:
    """
    Convert a SLURM memory value such as "1024K" or "2.5G" to GB.

    Args:
        value: Memory string; empty or missing values give NaN.
        request: Strip the per-node ("n") / per-cpu ("c") marker that older
            SLURM versions append to requested memory.

    Returns:
        Memory in GB.

    Raises:
        InternalConsistencyError: If the value has an unknown unit, a unit
            without a number, or a non-zero number without a unit.

    Example:
        >>> normalize_memory("10M")
        0.01
    """
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return np.nan
    text = str(value).strip()
    if not text:
        return np.nan

    if request and len(text) > 1 and text[-1] in "nc":
        text = text[:-1]

    match = _MEMORY_RE.match(text)
    if not match or match.group("number") is None:
        raise InternalConsistencyError(f"Memory value {value!r} has no numeric part")

    number = float(match.group("number"))
    unit = match.group("unit").upper()
    if not unit:
        if number == 0:
            return 0.0
        raise InternalConsistencyError(f"Memory value {value!r} has no unit")
    if unit not in MEMORY_SCALE_GB:
        raise InternalConsistencyError(
            f"Memory value {value!r} has unexpected unit {unit!r}; "
            f"expected one of {', '.join(MEMORY_SCALE_GB)}"
        )
    return number * MEMORY_SCALE_GB[unit]


def parse_slurm_time(value: Any) -> pd.Timedelta:
    """
    Parse a SLURM duration ("MM:SS", "HH:MM:SS" or "D-HH:MM:SS").

    Returns:
        The duration, or NaT for missing/unlimited values.

    Example:
        >>> parse_slurm_time("1-01:39:12")
        Timedelta('1 days 01:39:12')
    """
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return pd.NaT
    text = str(value).strip()
    if text.upper() in _NO_TIME_VALUES:
        return pd.NaT

    match = _TIME_RE.match(text)
    if not match:
        raise StructuralParseError(f"Could not parse SLURM time: {value!r}")

    return pd.Timedelta(
        days=int(match.group("days") or 0),
        hours=int(match.group("hours") or 0),
        minutes=int(match.group("minutes")),
        seconds=float(match.group("seconds")),
    )


def normalize_status(value: Any) -> str:
    """
    Reduce a SLURM state to its bare name ("CANCELLED by 123" -> "CANCELLED").

    Raises:
        InternalConsistencyError: If the state is not a known SLURM job state.
    """
    words = str(value).strip().split()
    state = words[0].rstrip("+").upper() if words else ""
    if state not in SLURM_JOB_STATES:
        raise InternalConsistencyError(f"Unknown SLURM job state: {value!r}")
    return state


# =============================================================================
# Helpers
# =============================================================================

def _split_rows(text: str, sep: str, fields: Sequence[str], command: str) -> List[List[str]]:
    rows = []
    for line in text.splitlines():
        if not line.strip():
            continue
        parts = line.split(sep)
        if len(parts) != len(fields):
            raise StructuralParseError(
                f"Expected {len(fields)} fields ({', '.join(fields)}) in {command} "
                f"output, got {len(parts)}: {line!r}"
            )
        rows.append([part.strip() for part in parts])
    return rows


def _empty_frame(columns: Sequence[str]) -> pd.DataFrame:
    return pd.DataFrame({column: pd.Series(dtype=object) for column in columns})


def _task_key(job_id: int, array_task_id: Optional[int]) -> str:
    return f"{job_id}_{'' if array_task_id is None else array_task_id}"


def _to_number(value: str, column: str, command: str) -> float:
    if value.upper() == "N/A":
        return np.nan
    try:
        return float(value)
    except ValueError:
        raise StructuralParseError(
            f"Expected a number in column '{column}' of {command} output, got {value!r}"
        ) from None


def _to_timedelta(values: Iterable[Any], index: pd.Index) -> pd.Series:
    return pd.to_timedelta(pd.Series([parse_slurm_time(v) for v in values], index=index, dtype=object))


def _max_or_nan(values: Sequence[float]) -> float:
    present = [v for v in values if not math.isnan(v)]
    return max(present) if present else np.nan


# =============================================================================
# sacct: job_report
# =============================================================================

def _backfill_step_memory(primary: pd.DataFrame, steps: pd.DataFrame) -> pd.DataFrame:
    """Copy memory usage from each task's batch (or 0) step onto its main row."""
    secondary = steps[steps["job_step"].isin(MEMORY_STEPS)]
    secondary = (
        secondary.assign(_order=secondary["job_step"].map(MEMORY_STEPS.index))
        .sort_values("_order", kind="stable")
        .drop_duplicates("_key")
        .set_index("_key")
    )

    primary = primary.copy()
    for column in ("MaxRSS", "MaxVMSize"):
        from_step = primary["_key"].map(secondary[column])
        primary[column] = primary[column].where(primary[column].notna(), from_step)
    return primary


def _expand_pending_range(primary: pd.DataFrame) -> pd.DataFrame:
    """
    Replace the row standing for a range of pending array tasks with one
    row per task not already listed individually.
    """
    is_range = primary["task_range"].notna()
    n_ranges = int(is_range.sum())
    if n_ranges == 0:
        return primary
    if n_ranges > 1:
        raise InternalConsistencyError(
            f"Expected at most one pending array range in sacct output, found {n_ranges}"
        )

    range_row = primary[is_range].iloc[0]
    if normalize_status(range_row["State"]) != "PENDING":
        raise InternalConsistencyError(
            f"Array range {range_row['JobID']!r} has state {range_row['State']!r}, "
            "expected PENDING"
        )

    listed = primary[~is_range]
    same_job = listed[listed["job_id"] == range_row["job_id"]]
    present = {int(task) for task in same_job["array_task_id"].dropna()}
    missing = [t for t in expand_task_range(range_row["task_range"]) if t not in present]
    if not missing:
        return listed

    expanded = pd.DataFrame([range_row] * len(missing)).reset_index(drop=True)
    expanded["array_task_id"] = missing
    expanded["task_range"] = None
    expanded["_key"] = [_task_key(range_row["job_id"], t) for t in missing]
    if listed.empty:
        return expanded
    return pd.concat([listed, expanded], ignore_index=True)


def parse_sacct_output(text: str, partition: Optional[str] = None) -> pd.DataFrame:
    """
    Parse `sacct --parsable2 --noheader` output into one row per job/task.

    Steps (.batch, .extern, .0, ...) are folded into their task: memory usage
    is taken from the batch step (or step 0 for interactive jobs), everything
    else from the task's main row. A single row covering a range of pending
    array tasks is expanded into one row per task that sacct does not list
    individually yet.

    Args:
        text: Raw output with SACCT_FIELDS columns.
        partition: Keep only jobs on this partition (None keeps all).

    Returns:
        DataFrame with JOB_REPORT_COLUMNS, sorted by job and task id.

    Raises:
        StructuralParseError: Malformed rows or identifiers.
        InternalConsistencyError: Output violating parser assumptions
            (several pending ranges, duplicated tasks, unknown units/states).
    """
    rows = _split_rows(text, "|", SACCT_FIELDS, "sacct")
    if not rows:
        return _empty_frame(JOB_REPORT_COLUMNS)

    raw = pd.DataFrame(rows, columns=SACCT_FIELDS)
    raw = raw.mask(raw == "")

    ids = [parse_job_id(value) for value in raw["JobID"]]
    raw["job_id"] = [p.job_id for p in ids]
    raw["array_task_id"] = pd.array([p.array_task_id for p in ids], dtype="Int64")
    raw["task_range"] = [p.task_range for p in ids]
    raw["job_step"] = [p.step for p in ids]
    raw["_key"] = [_task_key(p.job_id, p.array_task_id) for p in ids]

    is_primary = raw["job_step"].isna()
    primary = _backfill_step_memory(raw[is_primary], raw[~is_primary])
    primary = _expand_pending_range(primary)

    if partition is not None:
        primary = primary[primary["Partition"] == partition]

    index = primary.index
    report = pd.DataFrame(
        {
            "job_id": primary["job_id"].astype("int64"),
            "array_task_id": primary["array_task_id"].astype("Int64"),
            "user": primary["User"],
            "name": primary["JobName"],
            "partition": primary["Partition"].astype("category"),
            "cpus": pd.to_numeric(primary["AllocCPUS"]).astype("Int64"),
            "requested_mem_gb": [normalize_memory(v, request=True) for v in primary["ReqMem"]],
            "max_rss_gb": [normalize_memory(v) for v in primary["MaxRSS"]],
            "max_vmem_gb": [normalize_memory(v) for v in primary["MaxVMSize"]],
            "exit_code": pd.to_numeric(primary["ExitCode"].str.split(":").str[0]).astype("Int64"),
            "status": pd.Categorical(
                [normalize_status(v) for v in primary["State"]],
                categories=SLURM_JOB_STATES,
            ),
            "wallclock_time": _to_timedelta(primary["Elapsed"], index),
        },
        index=index,
    )

    if report.duplicated(["job_id", "array_task_id"]).any():
        raise InternalConsistencyError("sacct output lists the same job or array task twice")

    report = report.sort_values(["job_id", "array_task_id"], na_position="first")
    return report.reset_index(drop=True)


def job_report(job_id: Union[int, str], partition: Optional[str] = None) -> pd.DataFrame:
    """
    Accounting report for every task of a (possibly finished) job.

    Args:
        job_id: SLURM job id (the array job id for array jobs).
        partition: Keep only jobs on this partition (None keeps all).

    Returns:
        DataFrame with JOB_REPORT_COLUMNS.

    Example:
        >>> report = job_report(270112)
        >>> failed = report.loc[report["status"] != "COMPLETED", "array_task_id"]
    """
    return parse_sacct_output(query_sacct(job_id), partition=partition)


# =============================================================================
# squeue + sstat: job_info
# =============================================================================

def parse_squeue_output(
    text: str,
    user: Optional[str] = None,
    partition: Optional[str] = None,
) -> pd.DataFrame:
    """
    Parse squeue output (SQUEUE_FIELDS, no header) into running jobs.

    Only RUNNING jobs are kept. Memory usage columns are left as NaN; see
    add_memory_usage.

    Args:
        text: Raw squeue output.
        user: Keep only this user's jobs (None keeps all).
        partition: Keep only jobs on this partition (None keeps all).

    Returns:
        DataFrame with JOB_INFO_COLUMNS.
    """
    rows = _split_rows(text, "|", SQUEUE_FIELDS, "squeue")
    queue = pd.DataFrame(rows, columns=SQUEUE_FIELDS)

    if user is not None:
        queue = queue[queue["user"] == user]
    if partition is not None:
        queue = queue[queue["partition"] == partition]
    queue = queue[queue["state"] == "RUNNING"]

    if queue.empty:
        return _empty_frame(JOB_INFO_COLUMNS)

    task = queue["array_task_id"].where(queue["array_task_id"] != "N/A")
    jobs = pd.DataFrame(
        {
            "job_id": pd.to_numeric(queue["job_id"]).astype("int64"),
            "array_task_id": pd.to_numeric(task).astype("Int64"),
            "user": queue["user"],
            "name": queue["name"],
            "partition": queue["partition"].astype("category"),
            "cpus": pd.to_numeric(queue["cpus"]).astype("Int64"),
            "requested_mem_gb": [normalize_memory(v) for v in queue["min_memory"]],
            "max_rss_gb": np.nan,
            "max_vmem_gb": np.nan,
            "status": pd.Categorical(
                [normalize_status(v) for v in queue["state"]],
                categories=SLURM_JOB_STATES,
            ),
            "wallclock_time": _to_timedelta(queue["time_used"], queue.index),
        },
        index=queue.index,
    )
    return jobs.sort_values(["job_id", "array_task_id"]).reset_index(drop=True)


def parse_sstat_output(text: str) -> Tuple[float, float]:
    """
    Peak resident and virtual memory (GB) over all steps in sstat output.

    Returns:
        Tuple of (max_rss_gb, max_vmem_gb); NaN when no step is reported.
    """
    rows = _split_rows(text, "|", SSTAT_FIELDS, "sstat")
    rss = [normalize_memory(row[1]) for row in rows]
    vmem = [normalize_memory(row[2]) for row in rows]
    return _max_or_nan(rss), _max_or_nan(vmem)


def add_memory_usage(jobs: pd.DataFrame, current_user: str) -> pd.DataFrame:
    """
    Fill in live memory usage for the jobs owned by ``current_user``.

    sstat only works for one's own jobs, so other users' rows keep NaN.
    Jobs are queried one at a time.
    """
    jobs = jobs.copy()
    for idx in jobs.index[jobs["user"] == current_user]:
        job_id = jobs.at[idx, "job_id"]
        task = jobs.at[idx, "array_task_id"]
        target = str(job_id) if pd.isna(task) else f"{job_id}_{task}"
        max_rss, max_vmem = parse_sstat_output(query_sstat(target))
        jobs.at[idx, "max_rss_gb"] = max_rss
        jobs.at[idx, "max_vmem_gb"] = max_vmem
    return jobs


def job_info(
    user: Optional[str] = None,
    partition: Optional[str] = None,
    all_users: bool = False,
    current_user: Optional[str] = None,
) -> pd.DataFrame:
    """
    Currently running jobs, with memory usage for the invoking user's jobs.

    Args:
        user: Whose jobs to list. Defaults to the invoking user.
        partition: Keep only jobs on this partition (None keeps all).
        all_users: List every user's jobs (overrides ``user``).
        current_user: Invoking user name; detected when None.

    Returns:
        DataFrame with JOB_INFO_COLUMNS.
    """
    if current_user is None:
        current_user = getpass.getuser()
    if all_users:
        user = None
    elif user is None:
        user = current_user

    jobs = parse_squeue_output(query_squeue(), user=user, partition=partition)
    if jobs.empty:
        return jobs
    return add_memory_usage(jobs, current_user)


# =============================================================================
# sinfo: partition_info
# =============================================================================

def parse_sinfo_output(
    text: str,
    partition: Optional[str] = None,
    all_nodes: bool = False,
) -> pd.DataFrame:
    """
    Parse `sinfo --Node` output into per-node or per-partition capacity.

    Memory is reported by sinfo in MB and converted to GB. When summarizing
    partitions, free CPUs and memory only count nodes that are "mixed" or
    "idle" (capacity usable right now), while totals count every node.

    Args:
        text: Raw output with SINFO_FIELDS columns.
        partition: Keep only this partition (None keeps all).
        all_nodes: Return one row per node instead of per partition.

    Returns:
        DataFrame with NODE_COLUMNS (all_nodes) or PARTITION_COLUMNS.
    """
    rows = []
    for line in text.splitlines():
        if not line.strip():
            continue
        # "N/A" can appear in the memory columns; only CPUsState is "/"-separated
        fields = line.split()
        cpus = fields[-1].split("/") if fields else []
        if len(fields) != len(SINFO_FIELDS) or len(cpus) != 4:
            raise StructuralParseError(
                f"Expected {len(SINFO_FIELDS)} fields ending in "
                f"'allocated/idle/other/total' in sinfo output: {line!r}"
            )
        rows.append(fields[:-1] + cpus)

    nodes = pd.DataFrame(rows, columns=NODE_COLUMNS)
    nodes["partition"] = nodes["partition"].str.rstrip("*")
    if partition is not None:
        nodes = nodes[nodes["partition"] == partition].reset_index(drop=True)

    for column in ("free_mem_gb", "alloc_mem_gb", "total_mem_gb"):
        nodes[column] = [_to_number(v, column, "sinfo") / 1000 for v in nodes[column]]
    for column in ("alloc_cpus", "inactive_cpus", "other_cpus", "total_cpus"):
        nodes[column] = [int(_to_number(v, column, "sinfo")) for v in nodes[column]]
        nodes[column] = nodes[column].astype("int64")

    if all_nodes:
        nodes["partition"] = nodes["partition"].astype("category")
        nodes["state"] = nodes["state"].astype("category")
        return nodes[NODE_COLUMNS]

    if nodes.empty:
        return _empty_frame(PARTITION_COLUMNS)

    usable = nodes["state"].isin(FREE_NODE_STATES)
    summary = (
        nodes.assign(
            free_cpus=nodes["inactive_cpus"].where(usable, 0),
            free_mem_gb=nodes["free_mem_gb"].where(usable, 0.0),
        )
        .groupby("partition", sort=True)
        .agg(
            free_cpus=("free_cpus", "sum"),
            total_cpus=("total_cpus", "sum"),
            free_mem_gb=("free_mem_gb", "sum"),
            total_mem_gb=("total_mem_gb", "sum"),
        )
        .reset_index()
    )
    summary["prop_free_cpus"] = summary["free_cpus"] / summary["total_cpus"]
    summary["prop_free_mem_gb"] = summary["free_mem_gb"] / summary["total_mem_gb"]
    summary["partition"] = summary["partition"].astype("category")
    return summary[PARTITION_COLUMNS]


def partition_info(partition: Optional[str] = None, all_nodes: bool = False) -> pd.DataFrame:
    """
    Free and total CPUs and memory, per partition or per node.

    Example:
        >>> partition_info("shared")
          partition  free_cpus  total_cpus  prop_free_cpus  free_mem_gb ...
    """
    return parse_sinfo_output(query_sinfo(), partition=partition, all_nodes=all_nodes)
