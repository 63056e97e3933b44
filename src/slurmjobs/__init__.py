"""
slurmjobs - generate SLURM job scripts and parse SLURM monitoring output.

A toolkit for working with SLURM from Python including:
- Single, array and loop array job scripts built from templates
- Resubmission of selected (or failed) tasks of array jobs
- Job, queue and partition reports as pandas DataFrames
"""

from slurmjobs._version import __version__

from slurmjobs.config import Config, init_config
from slurmjobs.errors import (
    AlreadyExistsError,
    ExternalToolError,
    InternalConsistencyError,
    MissingDirectoryError,
    NotFoundError,
    SlurmJobsError,
    StructuralParseError,
    TaskDiscoveryError,
    ValidationError,
)
from slurmjobs.indexing import compute_index_plan, select_values, total_tasks
from slurmjobs.paths import get_short_flags, resolve_script_path
from slurmjobs.generate import (
    GeneratedScript,
    JobScriptConfig,
    build_loop_job,
    build_single_job,
    job_loop,
    job_single,
    persist,
)
from slurmjobs.resubmit import array_submit
from slurmjobs.reports import job_info, job_report, partition_info

__all__ = [
    # Version
    "__version__",
    # Config
    "Config",
    "init_config",
    # Errors
    "AlreadyExistsError",
    "ExternalToolError",
    "InternalConsistencyError",
    "MissingDirectoryError",
    "NotFoundError",
    "SlurmJobsError",
    "StructuralParseError",
    "TaskDiscoveryError",
    "ValidationError",
    # Indexing and paths
    "compute_index_plan",
    "select_values",
    "total_tasks",
    "get_short_flags",
    "resolve_script_path",
    # Generation
    "GeneratedScript",
    "JobScriptConfig",
    "build_loop_job",
    "build_single_job",
    "job_loop",
    "job_single",
    "persist",
    # Resubmission
    "array_submit",
    # Reports
    "job_info",
    "job_report",
    "partition_info",
]
