"""Tests for slurmjobs.indexing module."""

from collections import Counter
from itertools import product

import pytest

from slurmjobs.indexing import IndexPlan, compute_index_plan, select_values, total_tasks


LOOP_SPECS = [
    {"a": ["1"]},
    {"region": ["DLPFC", "HIPPO"], "feature": ["gene", "exon", "tx", "jxn"]},
    {"x": ["a", "b", "c"], "y": ["1", "2"], "z": ["p", "q", "r", "s", "t"]},
    {"one": ["only"], "two": ["u", "v"], "three": ["i", "j", "k"]},
]


class TestComputeIndexPlan:
    """Tests for compute_index_plan function."""

    def test_last_variable_changes_fastest(self):
        loops = {"a": ["x", "y", "z"], "b": ["1", "2"]}
        assert compute_index_plan(loops, 0) == IndexPlan(divisor=2, modulus=3)
        assert compute_index_plan(loops, 1) == IndexPlan(divisor=1, modulus=2)

    def test_divisor_is_product_of_later_lengths(self):
        loops = LOOP_SPECS[2]
        assert compute_index_plan(loops, 0) == IndexPlan(divisor=10, modulus=3)
        assert compute_index_plan(loops, 1) == IndexPlan(divisor=5, modulus=2)
        assert compute_index_plan(loops, 2) == IndexPlan(divisor=1, modulus=5)


class TestTotalTasks:
    """Tests for total_tasks function."""

    def test_product_of_lengths(self):
        assert total_tasks(LOOP_SPECS[0]) == 1
        assert total_tasks(LOOP_SPECS[1]) == 8
        assert total_tasks(LOOP_SPECS[2]) == 30


class TestSelectValues:
    """Properties of the task id -> combination mapping."""

    @pytest.mark.parametrize("loops", LOOP_SPECS)
    def test_tasks_cover_every_combination_once(self, loops):
        """Task ids 1..total form a bijection onto the cross product."""
        total = total_tasks(loops)
        seen = {tuple(select_values(loops, t).values()) for t in range(1, total + 1)}
        assert seen == set(product(*loops.values()))
        assert len(seen) == total

    @pytest.mark.parametrize("loops", LOOP_SPECS)
    def test_each_value_appears_equally_often(self, loops):
        total = total_tasks(loops)
        for name, values in loops.items():
            counts = Counter(select_values(loops, t)[name] for t in range(1, total + 1))
            assert counts == {value: total // len(values) for value in values}

    def test_known_assignment(self):
        loops = LOOP_SPECS[1]
        assert select_values(loops, 1) == {"region": "DLPFC", "feature": "exon"}
        assert select_values(loops, 4) == {"region": "HIPPO", "feature": "gene"}
        assert select_values(loops, 8) == {"region": "DLPFC", "feature": "gene"}
