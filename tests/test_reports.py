"""Tests for slurmjobs.reports module."""

import math

import pandas as pd
import pytest

from slurmjobs.errors import InternalConsistencyError, StructuralParseError
from slurmjobs.reports import (
    JOB_INFO_COLUMNS,
    JOB_REPORT_COLUMNS,
    NODE_COLUMNS,
    PARTITION_COLUMNS,
    JobIdParts,
    expand_task_range,
    job_info,
    job_report,
    normalize_memory,
    normalize_status,
    parse_job_id,
    parse_sacct_output,
    parse_sinfo_output,
    parse_slurm_time,
    parse_squeue_output,
    parse_sstat_output,
    partition_info,
)


PARTLY_PENDING = """\
300_[1-10%10]|bob|job|shared|2|4G|PENDING|||0:0|00:00:00
300_2|bob|job|shared|2|4G|RUNNING|||0:0|00:05:00
300_2.batch||batch||2||RUNNING|||0:0|00:05:00
300_5|bob|job|shared|2|4G|COMPLETED|||0:0|01:00:00
300_5.batch||batch||2||COMPLETED|1024K|2G|0:0|01:00:00
300_5.extern||extern||2||COMPLETED|0|0.01G|0:0|01:00:00
300_9|bob|job|shared|2|4G|FAILED|||1:0|00:00:10
300_9.batch||batch||2||FAILED|10M|20M|1:0|00:00:10
"""

INTERACTIVE = """\
400|carol|bash|interactive|1|2Gn|COMPLETED|||0:0|00:10:00
400.extern||extern||1||COMPLETED|1M|1M|0:0|00:10:00
400.0||bash||1||COMPLETED|500M|1G|0:0|00:10:00
"""

SINFO = """\
shared*             compute-001         10000               0                   20000               idle                0/16/0/16
shared*             compute-002         0                   16000               16000               drained             0/0/32/32
gpu                 gpu-001             N/A                 30000               64000               mixed               8/24/0/32
gpu                 gpu-002             4000                60000               64000               allocated           32/0/0/32
"""

SQUEUE = """\
alice|1001|N/A|train|gpu|4|16G|RUNNING|1:02:03
bob|1002|N/A|eval|shared|1|4000M|RUNNING|05:00
alice|1003|7|align|shared|2|8G|RUNNING|1-00:00:01
alice|1004|N/A|wait|shared|1|2G|PENDING|0:00
"""


class TestParseJobId:
    """Tests for parse_job_id function."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("12345", JobIdParts(12345, None, None, None)),
            ("12345_7", JobIdParts(12345, 7, None, None)),
            ("12345_7.batch", JobIdParts(12345, 7, None, "batch")),
            ("12345.0", JobIdParts(12345, None, None, "0")),
            ("12345_[6-10%5]", JobIdParts(12345, None, "6-10%5", None)),
        ],
    )
    def test_forms(self, raw, expected):
        assert parse_job_id(raw) == expected

    def test_garbage(self):
        with pytest.raises(StructuralParseError):
            parse_job_id("job-12")


class TestExpandTaskRange:
    """Tests for expand_task_range function."""

    def test_range_with_throttle(self):
        assert expand_task_range("1-10%5") == list(range(1, 11))

    def test_list_and_step(self):
        assert expand_task_range("1,3,5-7%2") == [1, 3, 5, 6, 7]
        assert expand_task_range("1-9:4") == [1, 5, 9]

    @pytest.mark.parametrize("spec", ["", "a-b", "5-1", "1-"])
    def test_invalid(self, spec):
        with pytest.raises(StructuralParseError):
            expand_task_range(spec)


class TestNormalizeMemory:
    """Tests for normalize_memory function."""

    def test_units(self):
        assert normalize_memory("1024K") == pytest.approx(0.001024)
        assert normalize_memory("10M") == pytest.approx(0.01)
        assert normalize_memory("2G") == pytest.approx(2.0)
        assert normalize_memory("2.5G") == pytest.approx(2.5)

    def test_zero_and_missing(self):
        assert normalize_memory("0") == 0.0
        assert math.isnan(normalize_memory(""))
        assert math.isnan(normalize_memory(None))
        assert math.isnan(normalize_memory(float("nan")))

    def test_request_markers(self):
        assert normalize_memory("4Gn", request=True) == pytest.approx(4.0)
        assert normalize_memory("500Mc", request=True) == pytest.approx(0.5)

    @pytest.mark.parametrize("value", ["5P", "G", "12", "4Gn"])
    def test_invalid(self, value):
        with pytest.raises(InternalConsistencyError, match="internal bug"):
            normalize_memory(value)


class TestParseSlurmTime:
    """Tests for parse_slurm_time function."""

    def test_formats(self):
        assert parse_slurm_time("05:30") == pd.Timedelta(minutes=5, seconds=30)
        assert parse_slurm_time("1:04:07") == pd.Timedelta(hours=1, minutes=4, seconds=7)
        assert parse_slurm_time("1-01:39:12") == pd.Timedelta(days=1, hours=1, minutes=39, seconds=12)

    def test_missing(self):
        assert parse_slurm_time("") is pd.NaT
        assert parse_slurm_time("UNLIMITED") is pd.NaT
        assert parse_slurm_time(None) is pd.NaT

    def test_invalid(self):
        with pytest.raises(StructuralParseError):
            parse_slurm_time("yesterday")


class TestNormalizeStatus:
    def test_first_word(self):
        assert normalize_status("CANCELLED by 12345") == "CANCELLED"
        assert normalize_status("completed") == "COMPLETED"

    def test_unknown(self):
        with pytest.raises(InternalConsistencyError):
            normalize_status("EXPLODED")


class TestParseSacctOutput:
    """Tests for parse_sacct_output function."""

    def test_pending_range_is_expanded(self):
        """The range row stands for every task not listed on its own."""
        report = parse_sacct_output(PARTLY_PENDING)

        assert list(report.columns) == JOB_REPORT_COLUMNS
        assert report["array_task_id"].tolist() == list(range(1, 11))
        assert report["job_id"].unique().tolist() == [300]

        status = dict(zip(report["array_task_id"], report["status"].astype(str)))
        assert status[2] == "RUNNING"
        assert status[5] == "COMPLETED"
        assert status[9] == "FAILED"
        assert {status[t] for t in (1, 3, 4, 6, 7, 8, 10)} == {"PENDING"}

    def test_memory_comes_from_batch_step(self):
        report = parse_sacct_output(PARTLY_PENDING).set_index("array_task_id")

        assert report.loc[5, "max_rss_gb"] == pytest.approx(0.001024)
        assert report.loc[5, "max_vmem_gb"] == pytest.approx(2.0)
        assert report.loc[9, "max_rss_gb"] == pytest.approx(0.01)
        assert math.isnan(report.loc[1, "max_rss_gb"])
        assert math.isnan(report.loc[2, "max_rss_gb"])
        assert (report["requested_mem_gb"] == 4.0).all()

    def test_other_columns(self):
        report = parse_sacct_output(PARTLY_PENDING).set_index("array_task_id")

        assert report.loc[9, "exit_code"] == 1
        assert report.loc[5, "wallclock_time"] == pd.Timedelta(hours=1)
        assert report.loc[5, "cpus"] == 2
        assert report.loc[5, "user"] == "bob"
        assert isinstance(report["status"].dtype, pd.CategoricalDtype)
        assert isinstance(report["partition"].dtype, pd.CategoricalDtype)

    def test_interactive_job_uses_step_zero(self):
        report = parse_sacct_output(INTERACTIVE)

        assert len(report) == 1
        row = report.iloc[0]
        assert pd.isna(row["array_task_id"])
        assert row["max_rss_gb"] == pytest.approx(0.5)
        assert row["max_vmem_gb"] == pytest.approx(1.0)
        assert row["requested_mem_gb"] == pytest.approx(2.0)

    def test_batch_step_preferred_over_step_zero(self):
        text = INTERACTIVE + "400.batch||batch||1||COMPLETED|3G|4G|0:0|00:10:00\n"
        row = parse_sacct_output(text).iloc[0]
        assert row["max_rss_gb"] == pytest.approx(3.0)
        assert row["max_vmem_gb"] == pytest.approx(4.0)

    def test_fully_pending_array(self):
        report = parse_sacct_output("500_[1-3%1]|bob|job|shared|1|1G|PENDING|||0:0|00:00:00\n")
        assert report["array_task_id"].tolist() == [1, 2, 3]

    def test_two_pending_ranges(self):
        text = (
            "500_[1-3]|bob|job|shared|1|1G|PENDING|||0:0|00:00:00\n"
            "500_[5-6]|bob|job|shared|1|1G|PENDING|||0:0|00:00:00\n"
        )
        with pytest.raises(InternalConsistencyError):
            parse_sacct_output(text)

    def test_range_that_is_not_pending(self):
        with pytest.raises(InternalConsistencyError):
            parse_sacct_output("500_[1-3]|bob|job|shared|1|1G|RUNNING|||0:0|00:00:00\n")

    def test_duplicate_task(self):
        text = (
            "600_1|bob|job|shared|1|1G|FAILED|||1:0|00:00:01\n"
            "600_1|bob|job|shared|1|1G|COMPLETED|||0:0|00:00:01\n"
        )
        with pytest.raises(InternalConsistencyError):
            parse_sacct_output(text)

    def test_wrong_column_count(self):
        with pytest.raises(StructuralParseError, match="sacct"):
            parse_sacct_output("600_1|bob|job\n")

    def test_partition_filter(self):
        text = PARTLY_PENDING + INTERACTIVE
        report = parse_sacct_output(text, partition="interactive")
        assert report["job_id"].tolist() == [400]

    def test_empty(self):
        report = parse_sacct_output("")
        assert report.empty
        assert list(report.columns) == JOB_REPORT_COLUMNS

    def test_job_report_queries_sacct(self, monkeypatch):
        monkeypatch.setattr("slurmjobs.reports.query_sacct", lambda job_id: INTERACTIVE)
        assert job_report(400)["job_id"].tolist() == [400]


class TestParseSinfoOutput:
    """Tests for parse_sinfo_output function."""

    def test_free_capacity_counts_usable_nodes_only(self):
        summary = parse_sinfo_output(SINFO, partition="shared")

        assert list(summary.columns) == PARTITION_COLUMNS
        row = summary.iloc[0]
        assert row["partition"] == "shared"
        assert row["free_cpus"] == 16
        assert row["total_cpus"] == 48
        assert row["free_mem_gb"] == pytest.approx(10.0)
        assert row["total_mem_gb"] == pytest.approx(36.0)
        assert row["prop_free_mem_gb"] == pytest.approx(10.0 / 36.0)
        assert row["prop_free_cpus"] == pytest.approx(16 / 48)

    def test_all_partitions(self):
        summary = parse_sinfo_output(SINFO).set_index("partition")
        assert sorted(summary.index.astype(str)) == ["gpu", "shared"]
        # gpu-001 is mixed (free memory unknown), gpu-002 is allocated
        assert summary.loc["gpu", "free_cpus"] == 24
        assert summary.loc["gpu", "free_mem_gb"] == pytest.approx(0.0)
        assert summary.loc["gpu", "total_mem_gb"] == pytest.approx(128.0)

    def test_all_nodes(self):
        nodes = parse_sinfo_output(SINFO, all_nodes=True)
        assert list(nodes.columns) == NODE_COLUMNS
        assert len(nodes) == 4
        assert nodes["partition"].astype(str).tolist() == ["shared", "shared", "gpu", "gpu"]
        assert nodes.loc[0, "total_mem_gb"] == pytest.approx(20.0)
        assert math.isnan(nodes.loc[2, "free_mem_gb"])
        assert nodes.loc[1, "other_cpus"] == 32

    def test_malformed(self):
        with pytest.raises(StructuralParseError, match="sinfo"):
            parse_sinfo_output("shared compute-001 idle\n")

    def test_malformed_cpu_states(self):
        with pytest.raises(StructuralParseError, match="allocated/idle/other/total"):
            parse_sinfo_output("shared node-1 100 0 200 idle 0/16/0\n")

    def test_down_node_without_free_memory(self):
        """A down node printing N/A free memory parses and adds no free capacity."""
        text = (
            "shared node-1 N/A 0 20000 down 0/0/16/16\n"
            "shared node-2 10000 10000 20000 idle 0/16/0/16\n"
        )
        row = parse_sinfo_output(text).iloc[0]
        assert row["free_cpus"] == 16
        assert row["total_cpus"] == 32
        assert row["free_mem_gb"] == pytest.approx(10.0)
        assert row["total_mem_gb"] == pytest.approx(40.0)

        nodes = parse_sinfo_output(text, all_nodes=True)
        assert math.isnan(nodes.loc[0, "free_mem_gb"])
        assert nodes.loc[0, "other_cpus"] == 16

    def test_partition_info_queries_sinfo(self, monkeypatch):
        monkeypatch.setattr("slurmjobs.reports.query_sinfo", lambda: SINFO)
        assert partition_info(partition="gpu")["partition"].astype(str).tolist() == ["gpu"]


class TestParseSqueueOutput:
    """Tests for parse_squeue_output and parse_sstat_output."""

    def test_running_only(self):
        jobs = parse_squeue_output(SQUEUE)
        assert list(jobs.columns) == JOB_INFO_COLUMNS
        assert jobs["job_id"].tolist() == [1001, 1002, 1003]
        assert jobs["max_rss_gb"].isna().all()

    def test_columns(self):
        jobs = parse_squeue_output(SQUEUE).set_index("job_id")
        assert pd.isna(jobs.loc[1001, "array_task_id"])
        assert jobs.loc[1003, "array_task_id"] == 7
        assert jobs.loc[1002, "requested_mem_gb"] == pytest.approx(4.0)
        assert jobs.loc[1001, "wallclock_time"] == pd.Timedelta(hours=1, minutes=2, seconds=3)
        assert jobs.loc[1003, "wallclock_time"] == pd.Timedelta(days=1, seconds=1)

    def test_filters(self):
        assert parse_squeue_output(SQUEUE, user="bob")["job_id"].tolist() == [1002]
        assert parse_squeue_output(SQUEUE, partition="gpu")["job_id"].tolist() == [1001]
        assert parse_squeue_output(SQUEUE, user="nobody").empty

    def test_sstat_takes_max_over_steps(self):
        rss, vmem = parse_sstat_output("1001.batch|2G|3G\n1001.0|5242880K|6G\n")
        assert rss == pytest.approx(5.24288)
        assert vmem == pytest.approx(6.0)

    def test_sstat_empty(self):
        rss, vmem = parse_sstat_output("")
        assert math.isnan(rss) and math.isnan(vmem)


class TestJobInfo:
    """Tests for job_info with the SLURM commands faked."""

    @pytest.fixture
    def sstat_calls(self, monkeypatch):
        calls = []

        def fake_sstat(job_id):
            calls.append(job_id)
            return f"{job_id}.batch|1G|2G\n{job_id}.0|3G|1G\n"

        monkeypatch.setattr("slurmjobs.reports.query_squeue", lambda: SQUEUE)
        monkeypatch.setattr("slurmjobs.reports.query_sstat", fake_sstat)
        return calls

    def test_own_jobs_are_enriched(self, sstat_calls):
        jobs = job_info(current_user="alice")

        assert jobs["job_id"].tolist() == [1001, 1003]
        assert sstat_calls == ["1001", "1003_7"]
        assert jobs["max_rss_gb"].tolist() == [pytest.approx(3.0), pytest.approx(3.0)]
        assert jobs["max_vmem_gb"].tolist() == [pytest.approx(2.0), pytest.approx(2.0)]

    def test_other_users_keep_missing_memory(self, sstat_calls):
        jobs = job_info(all_users=True, current_user="alice").set_index("job_id")

        assert sorted(sstat_calls) == ["1001", "1003_7"]
        assert math.isnan(jobs.loc[1002, "max_rss_gb"])
        assert jobs.loc[1001, "max_rss_gb"] == pytest.approx(3.0)

    def test_explicit_user(self, sstat_calls):
        jobs = job_info(user="bob", current_user="alice")
        assert jobs["job_id"].tolist() == [1002]
        assert sstat_calls == []
