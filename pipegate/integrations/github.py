"""
PipeGate GitHub Actions Integration

Provides helpers for running PipeGate in GitHub Actions:
- GitHub Actions annotations (errors for gate failures, warnings for lapsed suppressions)
- Step summary output
- Commit and branch detection
"""

from __future__ import annotations

import logging
import os
from typing import Mapping, Optional

from pipegate.core.errors import StageExecutionError
from pipegate.core.stage import StageStatus
from pipegate.core.tools import run_tool
from pipegate.pipeline.runner import PipelineReport, PipelineStatus

logger = logging.getLogger(__name__)


def is_github_actions(environ: Optional[Mapping[str, str]] = None) -> bool:
    """Check if currently running inside GitHub Actions."""
    env = os.environ if environ is None else environ
    return env.get("GITHUB_ACTIONS") == "true"


def resolve_commit(explicit: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> str:
    """Commit identity: explicit value, then GITHUB_SHA, then ``git rev-parse HEAD``."""
    env = os.environ if environ is None else environ
    if explicit:
        return explicit
    if env.get("GITHUB_SHA"):
        return env["GITHUB_SHA"]
    try:
        return run_tool(["git", "rev-parse", "HEAD"], timeout=30).stdout.strip()
    except StageExecutionError as exc:
        logger.warning("Cannot determine the commit: %s", exc)
        return ""


def resolve_branch(explicit: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> str:
    """Branch name: explicit value, then GITHUB_REF_NAME, then the checked-out git branch."""
    env = os.environ if environ is None else environ
    if explicit:
        return explicit
    if env.get("GITHUB_REF_NAME"):
        return env["GITHUB_REF_NAME"]
    try:
        return run_tool(["git", "rev-parse", "--abbrev-ref", "HEAD"], timeout=30).stdout.strip()
    except StageExecutionError as exc:
        logger.warning("Cannot determine the branch: %s", exc)
        return ""


def format_annotations(report: PipelineReport) -> list[str]:
    """
    Build GitHub Actions workflow annotations for a report.
    Gate failures show as errors, warnings and lapsed suppressions as warnings.
    """
    lines: list[str] = []
    for result in report.results:
        if result.status is StageStatus.HARD_FAILED and result.decision is None:
            lines.append(f"::error title=Stage {result.stage_id} failed::{result.detail}")
        elif result.status is StageStatus.SOFT_FAILED:
            lines.append(f"::warning title=Stage {result.stage_id} failed::{result.detail}")

        if result.decision is None:
            continue
        for finding in result.decision.failed:
            lines.append(
                f"::error title={finding.id} ({result.stage_id})::"
                f"{finding.component.coordinate}: {finding.description}"
            )
        for finding in result.decision.warned:
            lines.append(
                f"::warning title={finding.id} ({result.stage_id})::"
                f"{finding.component.coordinate}: {finding.description}"
            )

    for suppression in report.expired_suppressions:
        lines.append(
            f"::warning title=Expired suppression {suppression.id_pattern}::"
            f"{suppression.component_pattern} expired "
            f"{suppression.expires.date().isoformat()} - needs re-review"
        )
    return lines


def emit_annotations(report: PipelineReport) -> None:
    for line in format_annotations(report):
        print(line)


def write_step_summary(report: PipelineReport) -> None:
    """
    Write a summary to the GitHub Actions step summary.
    This appears on the workflow run page.
    """
    if not is_github_actions():
        return

    summary_file = os.environ.get("GITHUB_STEP_SUMMARY")
    if not summary_file:
        return

    emoji = {
        StageStatus.SUCCESS: "✅",
        StageStatus.SKIPPED: "⏭️",
        StageStatus.SOFT_FAILED: "⚠️",
        StageStatus.HARD_FAILED: "❌",
    }
    lines = [
        "## 🚦 PipeGate Pipeline Results\n",
        f"**Commit:** `{report.commit or 'unknown'}`\n",
        "| Stage | Status | Gate |",
        "|-------|--------|------|",
    ]
    for result in report.results:
        gate = result.decision.verdict.value if result.decision else ""
        lines.append(
            f"| {result.stage_id} | {emoji.get(result.status, '')} {result.status.value} | {gate} |"
        )
    lines.append("")

    if report.status is PipelineStatus.FAILED:
        lines.append("### ❌ Pipeline Status: FAILED")
    elif report.status is PipelineStatus.FAILED_BUT_CONTINUED:
        lines.append("### ⚠️ Pipeline Status: FAILED BUT CONTINUED")
    else:
        lines.append("### ✅ Pipeline Status: PASSED")

    if report.published_tags:
        lines.append(f"Published tags: `{'`, `'.join(report.published_tags)}`")

    if report.expired_suppressions:
        lines.append("")
        lines.append("<details><summary>⏰ Expired suppressions (click to expand)</summary>\n")
        for s in report.expired_suppressions:
            lines.append(f"- `{s.id_pattern}` on `{s.component_pattern}` "
                         f"expired {s.expires.date().isoformat()}: {s.justification}")
        lines.append("\n</details>")

    try:
        with open(summary_file, "a", encoding="utf-8") as fh:
            fh.write("\n".join(lines) + "\n")
    except OSError as exc:
        logger.warning("Cannot write step summary: %s", exc)
