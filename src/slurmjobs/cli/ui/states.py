"""Grouping of SLURM job states for display."""

from __future__ import annotations

from typing import Optional

from slurmjobs.reports import (
    COMPLETED_STATES,
    FAILED_STATES,
    PENDING_STATES,
    RUNNING_STATES,
)


def state_category(state: str) -> Optional[str]:
    """Map a SLURM state to completed, failed, running, pending or None."""
    state = state.strip().upper()
    if state in COMPLETED_STATES:
        return "completed"
    if state in FAILED_STATES:
        return "failed"
    if state in RUNNING_STATES:
        return "running"
    if state in PENDING_STATES:
        return "pending"
    return None
