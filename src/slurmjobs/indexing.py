"""
Task indexing for loop array jobs.

A loop job iterates over the cross product of several independent variables
with a single SLURM array. Each array task id is decoded into one value per
variable with mixed-radix arithmetic: the last variable changes fastest.

For variable ``i`` the selected value for task id ``t`` is::

    values[i][(t // divisor) % modulus]

where ``divisor`` is the product of the lengths of all variables after ``i``
and ``modulus`` is the length of variable ``i`` itself.
"""

from __future__ import annotations

from math import prod
from typing import Dict, Mapping, NamedTuple, Sequence


class IndexPlan(NamedTuple):
    """Divisor and modulus used to pick a variable's value from a task id."""

    divisor: int
    modulus: int


def compute_index_plan(loops: Mapping[str, Sequence[str]], position: int) -> IndexPlan:
    """
    Compute the divisor/modulus pair for one loop variable.

    Args:
        loops: Ordered mapping of variable name to its values.
        position: 0-based position of the variable within ``loops``.

    Returns:
        IndexPlan for the variable at ``position``.

    Example:
        >>> loops = {"a": ["x", "y", "z"], "b": ["1", "2"]}
        >>> compute_index_plan(loops, 0)
        IndexPlan(divisor=2, modulus=3)
        >>> compute_index_plan(loops, 1)
        IndexPlan(divisor=1, modulus=2)
    """
    lengths = [len(values) for values in loops.values()]
    return IndexPlan(
        divisor=prod(lengths[position + 1:]),
        modulus=lengths[position],
    )


def total_tasks(loops: Mapping[str, Sequence[str]]) -> int:
    """Number of array tasks needed to cover every combination of ``loops``."""
    return prod(len(values) for values in loops.values())


def select_values(loops: Mapping[str, Sequence[str]], task_id: int) -> Dict[str, str]:
    """
    Select the value of every loop variable for one array task.

    This mirrors the bash statements emitted into loop job scripts.

    Args:
        loops: Ordered mapping of variable name to its values.
        task_id: 1-based SLURM array task id.

    Returns:
        Mapping of variable name to the value used by that task.
    """
    selected = {}
    for position, (name, values) in enumerate(loops.items()):
        plan = compute_index_plan(loops, position)
        selected[name] = values[(task_id // plan.divisor) % plan.modulus]
    return selected
