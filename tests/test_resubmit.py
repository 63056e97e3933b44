"""Tests for slurmjobs.resubmit module."""

import pandas as pd
import pytest

from slurmjobs import resubmit
from slurmjobs.errors import (
    ExternalToolError,
    NotFoundError,
    StructuralParseError,
    TaskDiscoveryError,
    ValidationError,
)
from slurmjobs.generate import JobScriptConfig, build_loop_job, build_single_job, persist
from slurmjobs.resubmit import array_submit


SACCT_TEXT = """\
270112_1|alice|align|shared|1|10G|COMPLETED|||0:0|00:01:05
270112_1.batch||batch||1||COMPLETED|2.5G|3.1G|0:0|00:01:05
270112_2|alice|align|shared|1|10G|FAILED|||1:0|00:00:12
270112_2.batch||batch||1||FAILED|0.1G|0.2G|1:0|00:00:12
270112_3|alice|align|shared|1|10G|COMPLETED|||0:0|00:01:01
270112_4|alice|align|shared|1|10G|OUT_OF_MEMORY|||0:125|00:03:00
"""


@pytest.fixture
def array_script(tmp_path):
    """A generated array job with tasks 1-4, throttled to 5."""
    script = build_single_job(JobScriptConfig(name="align", task_num=4, tc=5))
    return persist(script, tmp_path / "align.sh")


def _fake_report(statuses):
    return pd.DataFrame(
        {
            "array_task_id": pd.array(list(statuses), dtype="Int64"),
            "status": list(statuses.values()),
        }
    )


class TestExplicitTaskIds:
    """Tests for array_submit with task_ids given."""

    def test_restores_original_bytes(self, array_script):
        original = array_script.read_bytes()
        array_submit(array_script, [1, 2, 3])
        assert array_script.read_bytes() == original

    def test_patch_only_changes_array_line(self, array_script):
        before = array_script.read_text().splitlines()
        array_submit(array_script, [1, 2, 3], restore=False)
        after = array_script.read_text().splitlines()

        changed = [i for i, (a, b) in enumerate(zip(before, after)) if a != b]
        assert len(before) == len(after)
        assert len(changed) == 1
        assert after[changed[0]] == "#SBATCH --array=1,2,3%5"

    def test_relative_name(self, array_script, tmp_path):
        array_submit("align", [4], base_dir=tmp_path, restore=False)
        assert "#SBATCH --array=4%5" in array_script.read_text().splitlines()

    def test_crlf_line_endings_preserved(self, tmp_path):
        path = tmp_path / "crlf.sh"
        path.write_bytes(b"#!/bin/bash\r\n#SBATCH --array=1-10%2\r\necho hi\r\n")
        array_submit(path, [3, 7], restore=False)
        assert path.read_bytes() == b"#!/bin/bash\r\n#SBATCH --array=3,7%2\r\necho hi\r\n"

    def test_non_utf8_bytes_preserved(self, tmp_path):
        path = tmp_path / "latin1.sh"
        original = b"#!/bin/bash\n# caf\xe9 \xff\n#SBATCH --array=1-10%2\necho hi\n"
        path.write_bytes(original)

        array_submit(path, [3, 7], restore=False)
        assert path.read_bytes() == original.replace(b"1-10%2", b"3,7%2")

        path.write_bytes(original)
        array_submit(path, [3, 7])
        assert path.read_bytes() == original

    def test_missing_throttle(self, tmp_path):
        path = tmp_path / "nothrottle.sh"
        path.write_text("#!/bin/bash\n#SBATCH --array=1-10\n")
        array_submit(path, [2], restore=False)
        assert path.read_text() == "#!/bin/bash\n#SBATCH --array=2\n"

    def test_not_an_array_job(self, tmp_path):
        path = persist(build_single_job(JobScriptConfig(name="plain")), tmp_path / "plain.sh")
        with pytest.raises(StructuralParseError, match="Could not find the line"):
            array_submit(path, [1])

    def test_two_array_lines(self, tmp_path):
        path = tmp_path / "twice.sh"
        path.write_text("#!/bin/bash\n#SBATCH --array=1-2%1\n#SBATCH --array=1-3%1\n")
        with pytest.raises(StructuralParseError):
            array_submit(path, [1])

    def test_empty_task_ids(self, array_script):
        with pytest.raises(ValidationError):
            array_submit(array_script, [])

    def test_missing_script(self, tmp_path):
        with pytest.raises(NotFoundError):
            array_submit("nope", [1], base_dir=tmp_path)


class TestSubmission:
    """Tests for array_submit with submit=True."""

    def test_submits_patched_script_then_restores(self, array_script, monkeypatch, capsys):
        original = array_script.read_bytes()
        seen = {}

        def fake_submit(path, extra_args=None):
            seen["path"] = path
            seen["content"] = path.read_text()
            return "270200", "Submitted batch job 270200"

        monkeypatch.setattr("slurmjobs.slurm.submit_job", fake_submit)
        array_submit(array_script, [2, 4], submit=True)

        assert seen["path"] == array_script
        assert "#SBATCH --array=2,4%5" in seen["content"].splitlines()
        assert array_script.read_bytes() == original
        assert "Submitted batch job 270200" in capsys.readouterr().out

    def test_restores_when_submission_fails(self, array_script, monkeypatch):
        original = array_script.read_bytes()

        def failing_submit(path, extra_args=None):
            raise ExternalToolError(["sbatch", path.name], 1, output="sbatch: error: invalid partition")

        monkeypatch.setattr("slurmjobs.slurm.submit_job", failing_submit)
        with pytest.raises(ExternalToolError):
            array_submit(array_script, [2], submit=True)
        assert array_script.read_bytes() == original


class TestTaskDiscovery:
    """Tests for automatic discovery of unfinished tasks."""

    def _write_log(self, directory, name, job_id="270112"):
        directory.mkdir(exist_ok=True)
        log = directory / name
        log.write_text(f"**** Job starts ****\nUser: alice\nJob id: {job_id}\nJob name: align\n")
        return log

    def test_discovers_unfinished_tasks(self, array_script, tmp_path, monkeypatch):
        self._write_log(tmp_path / "logs", "align.4.txt")
        queried = []

        def fake_sacct(job_id):
            queried.append(job_id)
            return SACCT_TEXT

        monkeypatch.setattr("slurmjobs.reports.query_sacct", fake_sacct)
        array_submit(array_script, restore=False)

        assert queried == ["270112"]
        assert "#SBATCH --array=2,4%5" in array_script.read_text().splitlines()

    def test_loop_job_logs(self, tmp_path, monkeypatch):
        loops = {"region": ["DLPFC", "HIPPO"], "feature": ["gene", "exon"]}
        path = persist(build_loop_job(loops, JobScriptConfig(name="bsp2")), tmp_path / "bsp2.sh")
        self._write_log(tmp_path / "logs", "bsp2_DLPFC_gene_4.txt", job_id="9001")
        self._write_log(tmp_path / "logs", "bsp2_HIPPO_gene_2.txt", job_id="9001")

        monkeypatch.setattr(
            resubmit.reports,
            "job_report",
            lambda job_id: _fake_report({1: "COMPLETED", 2: "TIMEOUT", 3: "COMPLETED", 4: "FAILED"}),
        )
        array_submit(path, restore=False)
        assert "#SBATCH --array=2,4%20" in path.read_text().splitlines()

    def test_loop_job_ignores_logs_of_prefixed_job(self, tmp_path, monkeypatch):
        """Logs of 'bsp_extra' share the 'bsp_' prefix but belong to another job."""
        path = persist(
            build_loop_job({"region": ["DLPFC", "HIPPO"]}, JobScriptConfig(name="bsp")),
            tmp_path / "bsp.sh",
        )
        self._write_log(tmp_path / "logs", "bsp_DLPFC_2.txt", job_id="9001")
        self._write_log(tmp_path / "logs", "bsp_extra_q_2.txt", job_id="1111")
        queried = []

        def fake_report(job_id):
            queried.append(job_id)
            return _fake_report({1: "FAILED", 2: "COMPLETED"})

        monkeypatch.setattr(resubmit.reports, "job_report", fake_report)
        array_submit(path, restore=False)

        assert queried == ["9001"]
        assert "#SBATCH --array=1%20" in path.read_text().splitlines()

    def test_missing_log(self, array_script):
        with pytest.raises(TaskDiscoveryError, match="^Please specify 'task_ids' explicitly") as info:
            array_submit(array_script)
        assert isinstance(info.value.__cause__, NotFoundError)

    def test_log_without_job_id(self, array_script, tmp_path):
        (tmp_path / "logs").mkdir()
        (tmp_path / "logs" / "align.4.txt").write_text("nothing useful\n")
        with pytest.raises(TaskDiscoveryError) as info:
            array_submit(array_script)
        assert isinstance(info.value.__cause__, StructuralParseError)

    def test_everything_completed(self, array_script, tmp_path, monkeypatch):
        self._write_log(tmp_path / "logs", "align.4.txt")
        monkeypatch.setattr(
            resubmit.reports,
            "job_report",
            lambda job_id: _fake_report({1: "COMPLETED", 2: "COMPLETED"}),
        )
        original = array_script.read_bytes()
        with pytest.raises(TaskDiscoveryError, match="nothing to resubmit"):
            array_submit(array_script, restore=False)
        assert array_script.read_bytes() == original

    def test_sacct_failure_is_chained(self, array_script, tmp_path, monkeypatch):
        self._write_log(tmp_path / "logs", "align.4.txt")

        def failing_sacct(job_id):
            raise ExternalToolError(["sacct", "-j", job_id], None, reason="failed: sacct not found")

        monkeypatch.setattr("slurmjobs.reports.query_sacct", failing_sacct)
        with pytest.raises(TaskDiscoveryError) as info:
            array_submit(array_script)
        assert isinstance(info.value.__cause__, ExternalToolError)

    def test_verbose_goes_to_stderr(self, array_script, tmp_path, monkeypatch, capsys):
        self._write_log(tmp_path / "logs", "align.4.txt")
        monkeypatch.setattr("slurmjobs.reports.query_sacct", lambda job_id: SACCT_TEXT)
        array_submit(array_script, verbose=True)
        captured = capsys.readouterr()
        assert captured.out == ""
        assert "Found job id 270112" in captured.err
