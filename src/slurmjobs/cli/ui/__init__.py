"""CLI UI helpers and renderers for human-facing output."""

from slurmjobs.cli.ui.backend import UIBackend, create_ui_backend
from slurmjobs.cli.ui.context import UIContext, UIResolutionError, resolve_ui_context
from slurmjobs.cli.ui.models import FrameReport, MetricItem, TableSection
from slurmjobs.cli.ui.reports import (
    build_job_report,
    build_jobs_report,
    build_partitions_report,
    render_frame_report,
)

__all__ = [
    "FrameReport",
    "MetricItem",
    "TableSection",
    "UIBackend",
    "UIContext",
    "UIResolutionError",
    "build_job_report",
    "build_jobs_report",
    "build_partitions_report",
    "create_ui_backend",
    "render_frame_report",
    "resolve_ui_context",
]
