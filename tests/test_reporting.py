"""
Tests for reporters and CI integrations
"""

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests

from pipegate.core.errors import StageExecutionError
from pipegate.core.finding import Component, Finding
from pipegate.core.stage import Artifact, FailureMode, Stage, StageOutput
from pipegate.integrations.github import (
    emit_annotations,
    format_annotations,
    resolve_branch,
    resolve_commit,
    write_step_summary,
)
from pipegate.integrations.webhook import notify
from pipegate.pipeline.graph import StageGraph
from pipegate.pipeline.runner import PipelineRunner
from pipegate.policy.gate import GatePolicy
from pipegate.policy.suppressions import SuppressionRegistry
from pipegate.reporting.console import ConsoleReporter
from pipegate.reporting.json_reporter import JSONReporter

NETTY = Finding(
    id="CVE-2023-44487",
    component=Component("io.netty:netty-codec-http2", "4.1.94.Final"),
    description="HTTP/2 rapid reset",
    cvss=7.5,
    scanner="dependency",
)
OPENSSL = Finding(
    id="CVE-2023-0464",
    component=Component("libssl3", "3.0.9-1"),
    description="Excessive resource use verifying policy constraints",
    cvss=5.9,
    scanner="container",
)


@pytest.fixture
def failed_report(config, fixed_clock, suppression_factory):
    """A run where the dependency gate fails and the container scan soft-fails."""
    def build(context):
        return StageOutput(artifacts=[Artifact("build", "target/app.jar")])

    def dependency(context):
        return StageOutput(findings=[NETTY])

    def container(context):
        raise StageExecutionError("trivy exited with status 1", output="DB download failed")

    graph = StageGraph([
        Stage("build", build),
        Stage("dependency-scan", dependency, dependencies=("build",), gated=True),
        Stage("container-scan", container, dependencies=("build",), gated=True,
              failure_mode=FailureMode.SOFT),
        Stage("publish", build, dependencies=("build", "dependency-scan", "container-scan")),
    ])
    registry = SuppressionRegistry([suppression_factory(expires="2025-01-31")])
    return PipelineRunner(graph, config, GatePolicy(registry), clock=fixed_clock,
                          commit="3f9a2c1").run()


@pytest.fixture
def passed_report(config, fixed_clock):
    def build(context):
        return StageOutput(findings=[OPENSSL])

    def publish(context):
        return StageOutput(artifacts=[Artifact("published", "repo", ("3f9a2c1", "latest"))])

    graph = StageGraph([
        Stage("container-scan", build, gated=True),
        Stage("publish", publish, dependencies=("container-scan",)),
    ])
    return PipelineRunner(graph, config, clock=fixed_clock, branch="main").run()


class TestJSONReporter:
    """Tests for JSON report output."""

    def test_build(self, failed_report):
        data = JSONReporter(target="/src").build(failed_report)

        assert data["tool"]["name"] == "PipeGate"
        assert data["target"] == "/src"
        assert data["status"] == "failed"
        assert data["exit_code"] == 1
        assert data["summary"]["stages"] == {"success": 1, "hard-failed": 1,
                                             "soft-failed": 1, "skipped": 1}
        assert data["summary"]["failed_findings"] == 1
        assert data["summary"]["expired_suppressions"] == 1
        assert data["expired_suppressions"][0]["id"] == "CVE-2021-44228"

    def test_write_file(self, failed_report, temp_dir: Path):
        output = temp_dir / "report.json"
        json_str = JSONReporter(target=".").report(failed_report, output_file=str(output))

        assert json.loads(output.read_text()) == json.loads(json_str)

    def test_report_decision(self, config, fixed_clock):
        decision = GatePolicy().evaluate([NETTY, OPENSSL], config, fixed_clock())
        data = json.loads(JSONReporter(target="findings.json").report_decision(decision))

        assert data["gate"]["verdict"] == "fail"
        assert data["expired_suppressions"] == []


class TestConsoleReporter:
    """Tests for console output."""

    def test_failed_report(self, failed_report, capsys):
        ConsoleReporter(target="/src", color=False).report(failed_report)
        out = capsys.readouterr().out

        assert "PipeGate Pipeline Report" in out
        assert "[X] dependency-scan: hard-failed" in out
        assert "[!] container-scan: soft-failed" in out
        assert "CVE-2023-44487" in out
        assert "needs re-review" in out
        assert "PIPELINE FAILED" in out

    def test_passed_report(self, passed_report, capsys):
        ConsoleReporter(target="/src", color=False).report(passed_report)
        out = capsys.readouterr().out

        assert "Published tags: 3f9a2c1, latest" in out
        assert "WARN" in out
        assert "PIPELINE PASSED" in out

    def test_decision_banner(self, config, fixed_clock, capsys):
        decision = GatePolicy().evaluate([OPENSSL], config, fixed_clock())
        ConsoleReporter(target="findings.json", color=False).report_decision(decision)

        assert "GATE: PASS-WITH-WARNINGS" in capsys.readouterr().out


class TestGitHubIntegration:
    """Tests for GitHub Actions helpers."""

    def test_annotations(self, failed_report):
        lines = format_annotations(failed_report)

        assert "::error title=CVE-2023-44487 (dependency-scan)::" \
               "io.netty:netty-codec-http2@4.1.94.Final: HTTP/2 rapid reset" in lines
        assert any(line.startswith("::warning title=Stage container-scan failed::") for line in lines)
        assert any("Expired suppression CVE-2021-44228" in line for line in lines)
        assert not any("Stage dependency-scan failed" in line for line in lines)

    def test_emit_annotations(self, failed_report, capsys):
        emit_annotations(failed_report)

        assert "::error title=CVE-2023-44487" in capsys.readouterr().out

    def test_step_summary(self, passed_report, temp_dir: Path, monkeypatch):
        summary = temp_dir / "summary.md"
        monkeypatch.setenv("GITHUB_ACTIONS", "true")
        monkeypatch.setenv("GITHUB_STEP_SUMMARY", str(summary))

        write_step_summary(passed_report)

        text = summary.read_text(encoding="utf-8")
        assert "| container-scan |" in text
        assert "pass-with-warnings" in text
        assert "PASSED" in text

    def test_step_summary_outside_actions(self, passed_report, temp_dir: Path, monkeypatch):
        summary = temp_dir / "summary.md"
        monkeypatch.delenv("GITHUB_ACTIONS", raising=False)
        monkeypatch.setenv("GITHUB_STEP_SUMMARY", str(summary))

        write_step_summary(passed_report)

        assert not summary.exists()

    def test_resolve_commit(self):
        assert resolve_commit("abc1234", {"GITHUB_SHA": "def5678"}) == "abc1234"
        assert resolve_commit(None, {"GITHUB_SHA": "def5678"}) == "def5678"

    @patch("pipegate.integrations.github.run_tool")
    def test_resolve_commit_from_git(self, mock_run):
        mock_run.return_value = MagicMock(stdout="3f9a2c1e8b7d\n")

        assert resolve_commit(None, {}) == "3f9a2c1e8b7d"

    @patch("pipegate.integrations.github.run_tool",
           side_effect=StageExecutionError("git is not installed or not on PATH"))
    def test_resolve_without_git(self, mock_run):
        assert resolve_commit(None, {}) == ""
        assert resolve_branch(None, {}) == ""

    def test_resolve_branch(self):
        assert resolve_branch(None, {"GITHUB_REF_NAME": "main"}) == "main"


class TestWebhook:
    """Tests for webhook notification."""

    @patch("pipegate.integrations.webhook.requests.post")
    def test_notify(self, mock_post):
        mock_post.return_value = MagicMock(status_code=200)

        assert notify("https://hooks.example.com/pipegate", {"status": "success"})
        mock_post.assert_called_once_with(
            "https://hooks.example.com/pipegate", json={"status": "success"}, timeout=10
        )

    @patch("pipegate.integrations.webhook.requests.post")
    def test_rejected(self, mock_post):
        mock_post.return_value = MagicMock(status_code=500)

        assert not notify("https://hooks.example.com/pipegate", {})

    @patch("pipegate.integrations.webhook.requests.post",
           side_effect=requests.ConnectionError("connection refused"))
    def test_unreachable(self, mock_post):
        assert not notify("https://hooks.example.com/pipegate", {})
