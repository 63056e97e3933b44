"""
Main CLI entry point for slurmjobs.

This module provides the main command-line interface with subcommands
for all slurmjobs functionality.
"""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from slurmjobs import __version__
from slurmjobs.errors import SlurmJobsError


def _add_job_options(parser: argparse.ArgumentParser) -> None:
    """Options shared by single and loop; unset options come from config."""
    parser.add_argument("--partition", "-p", metavar="NAME", help="SLURM partition")
    parser.add_argument("--memory", metavar="MEM", help="Memory request, e.g. 10G")
    parser.add_argument("--cores", "-c", type=int, metavar="N", help="Number of cores")
    parser.add_argument("--time-limit", "-t", metavar="TIME", help="Time limit, e.g. 1-00:00:00")
    parser.add_argument(
        "--email",
        choices=["BEGIN", "END", "FAIL", "ALL"],
        help="Mail notification mode",
    )
    parser.add_argument("--logdir", metavar="DIR", help="Log directory (relative to the script)")
    parser.add_argument("--tc", type=int, metavar="N", help="Max concurrently running array tasks")
    parser.add_argument(
        "--create",
        action="store_true",
        help="Write the script(s) instead of printing them",
    )
    parser.add_argument(
        "--create-logdir",
        action="store_true",
        help="Create the log directory next to the script",
    )


def _add_format_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--format",
        choices=["table", "json", "csv"],
        default="table",
        help="Output format (default: table)",
    )
    parser.add_argument(
        "--partition",
        metavar="NAME",
        help="Only include this partition",
    )


def create_parser() -> argparse.ArgumentParser:
    """
    Create the main argument parser with all subcommands.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        prog="slurmjobs",
        description="Generate SLURM job scripts and inspect SLURM jobs.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  slurmjobs init                              Initialize project configuration
  slurmjobs single align --cores 4 --create   Write align.sh
  slurmjobs loop bsp2 --var region=DLPFC,HIPPO --var feature=gene,exon --create
  slurmjobs resubmit bsp2.sh --task-ids 2,3 --submit
  slurmjobs report 12345                      Accounting report for a job
  slurmjobs jobs                              Your running jobs
  slurmjobs partitions                        Free resources per partition

For more information on a command, run: slurmjobs <command> --help
""",
    )

    parser.add_argument(
        "-V", "--version",
        action="version",
        version=f"slurmjobs {__version__}",
    )

    # Global options
    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Path to config file (default: .slurmjobs/config.yaml)",
    )
    parser.add_argument(
        "--ui",
        choices=["plain", "rich", "auto"],
        default=None,
        help="UI mode override (plain, rich, auto). Defaults to config ui.mode or plain.",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        metavar="<command>",
    )

    # init
    init_parser = subparsers.add_parser(
        "init",
        help="Initialize project configuration",
        description="Create or update the project configuration file.",
    )
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite existing configuration",
    )

    # single
    single_parser = subparsers.add_parser(
        "single",
        help="Generate a single or array job script",
        description="Generate a SLURM batch script for a plain job or an array job.",
    )
    single_parser.add_argument("name", help="Script name or path (.sh is optional)")
    _add_job_options(single_parser)
    single_parser.add_argument(
        "--task-num",
        type=int,
        metavar="N",
        help="Make an array job with tasks 1..N",
    )
    single_parser.add_argument(
        "--command",
        dest="job_command",
        metavar="CMD",
        help="Command run by the job",
    )

    # loop
    loop_parser = subparsers.add_parser(
        "loop",
        help="Generate a loop array job and its Python script",
        description=(
            "Generate an array job running one task per combination of the "
            "given variables, plus a Python script receiving each combination."
        ),
    )
    loop_parser.add_argument("name", help="Script name or path (.sh or .py is optional)")
    loop_parser.add_argument(
        "--var",
        action="append",
        required=True,
        metavar="NAME=V1,V2",
        help="Loop variable and its values (repeatable, order is kept)",
    )
    _add_job_options(loop_parser)

    # resubmit
    resubmit_parser = subparsers.add_parser(
        "resubmit",
        help="Resubmit selected tasks of an array job",
        description=(
            "Point the --array line of a generated script at selected tasks. "
            "Without --task-ids, tasks that did not complete in the last run "
            "are found from the logs and sacct."
        ),
    )
    resubmit_parser.add_argument("script", help="Script name or path")
    resubmit_parser.add_argument(
        "--task-ids",
        metavar="IDS",
        help="Task ids such as 1,2,5-7 (default: unfinished tasks)",
    )
    resubmit_parser.add_argument(
        "--submit",
        action="store_true",
        help="Submit the patched script with sbatch",
    )
    resubmit_parser.add_argument(
        "--no-restore",
        action="store_true",
        help="Leave the patched script in place",
    )
    resubmit_parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Print progress messages",
    )

    # report
    report_parser = subparsers.add_parser(
        "report",
        help="Accounting report for a job",
        description="Show sacct data for every task of a job.",
    )
    report_parser.add_argument("job_id", help="SLURM job ID")
    _add_format_option(report_parser)

    # jobs
    jobs_parser = subparsers.add_parser(
        "jobs",
        help="Show running jobs",
        description="Show running jobs with live memory usage for your own jobs.",
    )
    jobs_user = jobs_parser.add_mutually_exclusive_group()
    jobs_user.add_argument("--user", metavar="NAME", help="Show this user's jobs")
    jobs_user.add_argument("--all-users", action="store_true", help="Show every user's jobs")
    _add_format_option(jobs_parser)

    # partitions
    partitions_parser = subparsers.add_parser(
        "partitions",
        help="Show free and total resources",
        description="Show free and total CPUs and memory per partition.",
    )
    partitions_parser.add_argument(
        "--all-nodes",
        action="store_true",
        help="Show one row per node instead of per partition",
    )
    _add_format_option(partitions_parser)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command-line arguments. If None, uses sys.argv.

    Returns:
        Exit code (0 for success).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    from slurmjobs.cli import commands

    handlers = {
        "init": commands.cmd_init,
        "single": commands.cmd_single,
        "loop": commands.cmd_loop,
        "resubmit": commands.cmd_resubmit,
        "report": commands.cmd_report,
        "jobs": commands.cmd_jobs,
        "partitions": commands.cmd_partitions,
    }

    try:
        return handlers[args.command](args)
    except SlurmJobsError as exc:
        print(f"Error: {exc}")
        return 1
    except KeyboardInterrupt:
        print("\nAborted.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
