"""Report builders and renderers for the report, jobs and partitions commands."""

from __future__ import annotations

from typing import Any, List, Optional, Sequence, Tuple

import pandas as pd

from slurmjobs.cli.ui.backend import UIBackend
from slurmjobs.cli.ui.models import ALIGN_LEFT, ALIGN_RIGHT, FrameReport, MetricItem, TableSection


# (column, header) pairs in display order
JOB_REPORT_DISPLAY = [
    ("array_task_id", "Task"),
    ("name", "Name"),
    ("partition", "Partition"),
    ("cpus", "CPUs"),
    ("requested_mem_gb", "Mem req (GB)"),
    ("max_rss_gb", "Max RSS (GB)"),
    ("max_vmem_gb", "Max VMem (GB)"),
    ("exit_code", "Exit"),
    ("status", "Status"),
    ("wallclock_time", "Elapsed"),
]
JOB_INFO_DISPLAY = [
    ("job_id", "Job ID"),
    ("array_task_id", "Task"),
    ("user", "User"),
    ("name", "Name"),
    ("partition", "Partition"),
    ("cpus", "CPUs"),
    ("requested_mem_gb", "Mem req (GB)"),
    ("max_rss_gb", "Max RSS (GB)"),
    ("max_vmem_gb", "Max VMem (GB)"),
    ("status", "Status"),
    ("wallclock_time", "Elapsed"),
]
PARTITION_DISPLAY = [
    ("partition", "Partition"),
    ("free_cpus", "Free CPUs"),
    ("total_cpus", "Total CPUs"),
    ("prop_free_cpus", "Free CPUs %"),
    ("free_mem_gb", "Free mem (GB)"),
    ("total_mem_gb", "Total mem (GB)"),
    ("prop_free_mem_gb", "Free mem %"),
]
NODE_DISPLAY = [
    ("partition", "Partition"),
    ("node", "Node"),
    ("state", "State"),
    ("alloc_cpus", "Alloc CPUs"),
    ("inactive_cpus", "Idle CPUs"),
    ("total_cpus", "Total CPUs"),
    ("free_mem_gb", "Free mem (GB)"),
    ("total_mem_gb", "Total mem (GB)"),
]

_PERCENT_COLUMNS = {"prop_free_cpus", "prop_free_mem_gb"}
# Everything else is numeric or a duration and is right-aligned
_TEXT_COLUMNS = {"user", "name", "partition", "node", "state", "status"}


def format_duration(value: pd.Timedelta) -> str:
    """Format a duration the way SLURM prints it: [D-]HH:MM:SS."""
    total = int(value.total_seconds())
    days, rest = divmod(total, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, seconds = divmod(rest, 60)
    clock = f"{hours:02d}:{minutes:02d}:{seconds:02d}"
    return f"{days}-{clock}" if days else clock


def format_cell(value: Any, percent: bool = False) -> str:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return "-"
    if isinstance(value, pd.Timedelta):
        return format_duration(value)
    if percent:
        return f"{value * 100.0:.1f}"
    if isinstance(value, float):
        return f"{value:.2f}"
    return str(value)


def frame_rows(frame: pd.DataFrame, display: Sequence[Tuple[str, str]]) -> List[List[str]]:
    """Format the displayed columns of every row as strings."""
    columns = [column for column, _ in display]
    return [
        [format_cell(row[column], percent=column in _PERCENT_COLUMNS) for column in columns]
        for _, row in frame.iterrows()
    ]


def _table(
    title: str,
    frame: pd.DataFrame,
    display: Sequence[Tuple[str, str]],
    status_column: Optional[str] = None,
    empty_message: str = "  (no rows)",
) -> TableSection:
    columns = [column for column, _ in display]
    status_columns = (columns.index(status_column),) if status_column else ()
    return TableSection(
        title=title,
        headers=[header for _, header in display],
        rows=frame_rows(frame, display),
        align=[ALIGN_LEFT if column in _TEXT_COLUMNS else ALIGN_RIGHT for column in columns],
        status_columns=status_columns,
        empty_message=empty_message,
    )


def _status_metrics(statuses: pd.Series) -> List[MetricItem]:
    total = len(statuses)
    counts = statuses.astype(str).value_counts()
    return [
        MetricItem(
            label=str(state),
            value=str(count),
            percent=100.0 * count / total,
            state=str(state),
        )
        for state, count in counts.items()
    ]


def build_job_report(frame: pd.DataFrame, job_id: Any) -> FrameReport:
    """Build view-model for `report` table output."""
    notes = []
    unfinished = frame[frame["status"].astype(str) != "COMPLETED"]
    task_ids = unfinished["array_task_id"].dropna()
    if len(task_ids) and len(task_ids) == len(unfinished):
        ids = ",".join(str(int(t)) for t in task_ids)
        notes.append(f"Resubmit unfinished tasks with: slurmjobs resubmit <script> --task-ids {ids}")

    return FrameReport(
        title=f"Job report: {job_id}",
        metadata=[("Job ID", str(job_id)), ("Tasks", str(len(frame)))],
        table=_table("Tasks", frame, JOB_REPORT_DISPLAY, status_column="status"),
        summary_metrics=_status_metrics(frame["status"]) if len(frame) else (),
        notes=notes,
    )


def build_jobs_report(frame: pd.DataFrame, user_label: str) -> FrameReport:
    """Build view-model for `jobs` table output."""
    metrics = []
    if len(frame):
        metrics = [
            MetricItem(label="Running jobs", value=str(len(frame))),
            MetricItem(label="CPUs in use", value=str(int(frame["cpus"].sum()))),
            MetricItem(
                label="Memory requested (GB)",
                value=format_cell(float(frame["requested_mem_gb"].sum())),
            ),
        ]
    return FrameReport(
        title=f"Running jobs: {user_label}",
        metadata=[("User", user_label)],
        table=_table(
            "Jobs", frame, JOB_INFO_DISPLAY, status_column="status",
            empty_message="  (no running jobs)",
        ),
        summary_metrics=metrics,
        notes=["Memory usage is only available for your own jobs."] if len(frame) else (),
    )


def build_partitions_report(
    frame: pd.DataFrame,
    partition: Optional[str] = None,
    all_nodes: bool = False,
) -> FrameReport:
    """Build view-model for `partitions` table output."""
    display = NODE_DISPLAY if all_nodes else PARTITION_DISPLAY
    notes = [] if all_nodes else [
        "Free resources only count nodes in the 'mixed' or 'idle' state."
    ]
    return FrameReport(
        title="Nodes" if all_nodes else "Partitions",
        metadata=[("Partition", partition or "all")],
        table=_table("Nodes" if all_nodes else "Capacity", frame, display),
        notes=notes,
    )


def render_frame_report(backend: UIBackend, report: FrameReport) -> None:
    """Render any FrameReport through the given backend."""
    backend.heading(report.title)
    backend.kv_block(report.metadata)
    backend.table(report.table)
    backend.metrics(report.summary_title, report.summary_metrics)
    backend.notes(report.notes)


