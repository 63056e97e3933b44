"""
Command handlers for slurmjobs CLI.

This module contains the implementation of each CLI command.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from slurmjobs.cli.ui import (
    FrameReport,
    UIResolutionError,
    build_job_report,
    build_jobs_report,
    build_partitions_report,
    create_ui_backend,
    render_frame_report,
    resolve_ui_context,
)
from slurmjobs.cli.ui.reports import format_cell
from slurmjobs.config import CONFIG_DIRNAME, CONFIG_FILENAME, DEFAULT_CONFIG, Config, init_config
from slurmjobs.errors import ValidationError
from slurmjobs.generate import companion_path, job_loop, job_single
from slurmjobs.reports import expand_task_range, job_info, job_report, partition_info
from slurmjobs.resubmit import array_submit


# =============================================================================
# Helper Functions
# =============================================================================

def prompt_yes_no(message: str) -> bool:
    """Prompt user for yes/no confirmation."""
    answer = input(message).strip().lower()
    return answer in ("y", "yes")


def project_root() -> Path:
    """Directory the CLI was invoked from; relative script names resolve here."""
    return Path.cwd()


def get_configured_config(args: Any) -> Config:
    """Get Config instance with CLI overrides."""
    return Config(project_root=project_root(), config_path=getattr(args, "config", None))


def parse_loop_vars(items: Optional[List[str]]) -> Dict[str, List[str]]:
    """
    Parse repeated ``--var NAME=V1,V2`` options into an ordered mapping.

    Raises:
        ValidationError: If an item is malformed or a name repeats.
    """
    loops: Dict[str, List[str]] = {}
    for item in items or []:
        name, sep, raw_values = item.partition("=")
        name = name.strip()
        if not sep or not name:
            raise ValidationError(f"Expected --var NAME=VALUE1,VALUE2,..., got {item!r}")
        if name in loops:
            raise ValidationError(f"Loop variable '{name}' given more than once")
        loops[name] = [value.strip() for value in raw_values.split(",") if value.strip()]
    return loops


def parse_task_ids(raw: Optional[str]) -> Optional[List[int]]:
    """Parse "1,2,5-7" into task ids; None means discover them."""
    if raw is None:
        return None
    return expand_task_range(raw)


def _export_frame(frame: pd.DataFrame) -> pd.DataFrame:
    exported = frame.copy()
    for column in exported.columns:
        if pd.api.types.is_timedelta64_dtype(exported[column]):
            exported[column] = [format_cell(value) for value in exported[column]]
    return exported


def output_frame(args: Any, config: Config, frame: pd.DataFrame, report: FrameReport) -> int:
    """Print a report DataFrame as json, csv or a rendered table."""
    if args.format == "json":
        print(_export_frame(frame).to_json(orient="records", indent=2))
        return 0
    if args.format == "csv":
        print(_export_frame(frame).to_csv(index=False), end="")
        return 0

    try:
        ui_context = resolve_ui_context(args, config)
        backend = create_ui_backend(ui_context)
    except UIResolutionError as exc:
        print(f"Error: {exc}")
        return 1

    render_frame_report(backend, report)
    return 0


# =============================================================================
# init Command
# =============================================================================

def cmd_init(args: Any) -> int:
    """Initialize project configuration."""
    root = project_root()
    config_path = root / CONFIG_DIRNAME / CONFIG_FILENAME

    if config_path.exists() and not args.force:
        print(f"Configuration file already exists: {config_path}")
        if not prompt_yes_no("Overwrite? [y/N]: "):
            print("Aborted.")
            return 0

    print("Initializing slurmjobs configuration...\n")
    print("Enter configuration values (press Enter for defaults):\n")

    defaults = DEFAULT_CONFIG["job_defaults"]
    print("Job script defaults:")
    partition = input(f"  Partition [{defaults['partition']}]: ").strip() or defaults["partition"]
    memory = input(f"  Memory [{defaults['memory']}]: ").strip() or defaults["memory"]
    time_limit = input(f"  Time limit [{defaults['time_limit']}]: ").strip() or defaults["time_limit"]
    logdir = input(f"  Log directory [{defaults['logdir']}]: ").strip() or defaults["logdir"]

    print("\nEnvironment modules (optional, press Enter to skip):")
    modules_raw = input("  Modules to load (comma-separated): ").strip()
    modules = [m.strip() for m in modules_raw.split(",") if m.strip()]

    print("\nCLI output UI:")
    ui_mode = input("  Default UI mode [plain|rich|auto, default: plain]: ").strip().lower() or "plain"
    if ui_mode not in ("plain", "rich", "auto"):
        print("  Invalid UI mode. Falling back to 'plain'.")
        ui_mode = "plain"

    path = init_config(
        root,
        overwrite=True,
        job_defaults={
            "partition": partition,
            "memory": memory,
            "time_limit": time_limit,
            "logdir": logdir,
        },
        modules=modules,
        ui={"mode": ui_mode},
    )
    print(f"\nConfiguration saved to: {path}")
    return 0


# =============================================================================
# single / loop Commands
# =============================================================================

def cmd_single(args: Any) -> int:
    """Generate a single or array job script."""
    config = get_configured_config(args)
    script = job_single(
        args.name,
        base_dir=project_root(),
        create=args.create,
        partition=args.partition,
        memory=args.memory,
        cores=args.cores,
        time_limit=args.time_limit,
        email=args.email,
        logdir=args.logdir,
        task_num=args.task_num,
        tc=args.tc,
        command=args.job_command,
        create_logdir=args.create_logdir,
        config=config,
    )
    if not args.create:
        print(script.shell, end="")
    return 0


def cmd_loop(args: Any) -> int:
    """Generate a loop array job script and its Python companion."""
    config = get_configured_config(args)
    loops = parse_loop_vars(args.var)
    script = job_loop(
        loops,
        args.name,
        base_dir=project_root(),
        create=args.create,
        partition=args.partition,
        memory=args.memory,
        cores=args.cores,
        time_limit=args.time_limit,
        email=args.email,
        logdir=args.logdir,
        tc=args.tc,
        create_logdir=args.create_logdir,
        config=config,
    )
    if not args.create:
        print(script.shell, end="")
        print(f"\n# ---- {companion_path(script.name).name} ----")
        print(script.companion, end="")
    return 0


# =============================================================================
# resubmit Command
# =============================================================================

def cmd_resubmit(args: Any) -> int:
    """Resubmit selected (or unfinished) tasks of an array job."""
    path = array_submit(
        args.script,
        parse_task_ids(args.task_ids),
        base_dir=project_root(),
        submit=args.submit,
        restore=not args.no_restore,
        verbose=args.verbose,
    )
    if not args.submit:
        state = "restored" if not args.no_restore else "left patched"
        print(f"Array tasks of {path} updated ({state}); pass --submit to run sbatch.")
    return 0


# =============================================================================
# Report Commands
# =============================================================================

def cmd_report(args: Any) -> int:
    """Show the accounting report of one job."""
    config = get_configured_config(args)
    partition = args.partition or config.get("report.partition")
    frame = job_report(args.job_id, partition=partition)
    return output_frame(args, config, frame, build_job_report(frame, args.job_id))


def cmd_jobs(args: Any) -> int:
    """Show currently running jobs."""
    config = get_configured_config(args)
    partition = args.partition or config.get("report.partition")
    frame = job_info(user=args.user, partition=partition, all_users=args.all_users)
    user_label = "all users" if args.all_users else (args.user or "you")
    return output_frame(args, config, frame, build_jobs_report(frame, user_label))


def cmd_partitions(args: Any) -> int:
    """Show free and total resources per partition or node."""
    config = get_configured_config(args)
    partition = args.partition or config.get("report.partition")
    frame = partition_info(partition=partition, all_nodes=args.all_nodes)
    report = build_partitions_report(frame, partition=partition, all_nodes=args.all_nodes)
    return output_frame(args, config, frame, report)
