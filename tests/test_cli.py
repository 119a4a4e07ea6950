"""Tests for the CLI entry points."""

import asyncio
import json

from click.testing import CliRunner

from taskwave.cli.main import cli
from taskwave.core.checkpoint import CheckpointStore
from taskwave.models.progress import Progress
from taskwave.models.task import WorkItem


def write_llm(tmp_path, reply: str):
    script = tmp_path / "fake-llm"
    script.write_text(f"#!/bin/sh\ncat > /dev/null\necho '{reply}'\n")
    script.chmod(0o755)
    return script


class TestCLI:
    def test_help(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "taskwave" in result.output
        for command in ("audit", "plan", "execute", "status"):
            assert command in result.output

    def test_audit_help(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["audit", "--help"])
        assert result.exit_code == 0
        assert "--concurrency" in result.output
        assert "--timeout" in result.output
        assert "--resume" in result.output
        assert "--state-dir" in result.output

    def test_plan_help(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["plan", "--help"])
        assert result.exit_code == 0
        assert "--project" in result.output
        assert "--max-parallel" in result.output
        assert "--json" in result.output

    def test_execute_help(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["execute", "--help"])
        assert result.exit_code == 0
        assert "--keep-going" in result.output
        assert "--no-mark-done" in result.output

    def test_version(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "1.0.0" in result.output

    def test_priority_out_of_range(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["plan", "--priority", "5"])
        assert result.exit_code == 2


class TestAuditCommand:
    def test_missing_command(self, tmp_path):
        runner = CliRunner()
        result = runner.invoke(
            cli,
            ["audit", str(tmp_path), "--command", "no-such-llm-wrapper", "-d", str(tmp_path / "s")],
        )
        assert result.exit_code == 1
        assert "no-such-llm-wrapper" in result.output

    def test_audit_run(self, tmp_path):
        repo = tmp_path / "repo"
        repo.mkdir()
        (repo / "main.py").write_text("print('hi')\n")
        llm = write_llm(tmp_path, '{"severity": "low", "issues": [], "summary": "ok"}')
        state = tmp_path / "state"

        runner = CliRunner()
        result = runner.invoke(cli, ["audit", str(repo), "--command", str(llm), "-d", str(state)])

        assert result.exit_code == 0, result.output
        assert (repo / "AUDIT.md").exists()
        summary = json.loads((state / ".code-audit-result.json").read_text())
        assert summary["byStatus"] == {"audited": 1}

    def test_audit_failures_exit_nonzero(self, tmp_path):
        repo = tmp_path / "repo"
        repo.mkdir()
        (repo / "main.py").write_text("print('hi')\n")
        llm = write_llm(tmp_path, "no json here")

        runner = CliRunner()
        result = runner.invoke(
            cli, ["audit", str(repo), "--command", str(llm), "-d", str(tmp_path / "state")]
        )
        assert result.exit_code == 1


class TestStatusCommand:
    def test_idle(self, tmp_path):
        runner = CliRunner()
        result = runner.invoke(cli, ["status", "-d", str(tmp_path)])
        assert result.exit_code == 0
        assert "code-audit: idle" in result.output

    def test_crashed(self, tmp_path):
        store = CheckpointStore("nightly", tmp_path)
        progress = Progress.create([WorkItem("a"), WorkItem("b")])
        progress.add_result({"id": "a", "status": "audited"})
        asyncio.run(store.save_progress(progress))

        runner = CliRunner()
        result = runner.invoke(cli, ["status", "-n", "nightly", "-d", str(tmp_path)])

        assert result.exit_code == 0
        assert "nightly: crashed" in result.output
        assert "completed: 1/2" in result.output
        assert "--resume" in result.output

    def test_finished(self, tmp_path):
        repo = tmp_path / "repo"
        repo.mkdir()
        (repo / "main.py").write_text("print('hi')\n")
        llm = write_llm(tmp_path, '{"severity": "high", "issues": []}')
        state = str(tmp_path / "state")

        runner = CliRunner()
        runner.invoke(cli, ["audit", str(repo), "--command", str(llm), "-d", state])
        result = runner.invoke(cli, ["status", "-d", state])

        assert "code-audit: finished" in result.output
        assert '"processed": 1' in result.output
