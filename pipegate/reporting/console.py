"""
PipeGate Console Reporter

Prints a human-readable colored pipeline report: every stage's status,
the findings that failed or warned a gate, and every lapsed suppression,
so a failure can always be traced to a finding or a configuration problem.
"""

from __future__ import annotations

import sys
from typing import Iterable, Optional

import click

from pipegate import __version__
from pipegate.core.finding import Finding
from pipegate.core.stage import StageResult, StageStatus
from pipegate.pipeline.runner import PipelineReport, PipelineStatus
from pipegate.policy.gate import GateDecision, Verdict
from pipegate.policy.suppressions import Suppression


def _safe_echo(text: str = "", **kwargs) -> None:
    """Echo text, handling Unicode issues on Windows consoles."""
    try:
        click.echo(text, **kwargs)
    except UnicodeEncodeError:
        safe = text.encode(sys.stdout.encoding or "utf-8", errors="replace").decode(
            sys.stdout.encoding or "utf-8", errors="replace"
        )
        click.echo(safe, **kwargs)


STATUS_COLORS = {
    StageStatus.SUCCESS: "green",
    StageStatus.SKIPPED: "bright_black",
    StageStatus.SOFT_FAILED: "yellow",
    StageStatus.HARD_FAILED: "bright_red",
}

STATUS_MARKS = {
    StageStatus.SUCCESS: "[+]",
    StageStatus.SKIPPED: "[-]",
    StageStatus.SOFT_FAILED: "[!]",
    StageStatus.HARD_FAILED: "[X]",
}

VERDICT_COLORS = {
    Verdict.PASS: "green",
    Verdict.PASS_WITH_WARNINGS: "yellow",
    Verdict.FAIL: "bright_red",
}


def _severity_label(finding: Finding) -> str:
    if finding.cvss is not None:
        return f"CVSS {finding.cvss:.1f}"
    return finding.bucket.value.upper()


class ConsoleReporter:
    """Prints a formatted pipeline report to the console."""

    def __init__(self, target: str, color: Optional[bool] = None) -> None:
        self.target = target
        self.color = color

    def _echo(self, text: str = "") -> None:
        _safe_echo(text, color=self.color)

    def report(self, report: PipelineReport) -> None:
        """Print the full pipeline report."""
        self._print_header()
        self._echo(click.style(f"  Commit: {report.commit or 'unknown'}", fg="white")
                   + (click.style(f"  Branch: {report.branch}", fg="white") if report.branch else ""))
        self._print_stages(report.results)

        for result in report.results:
            if result.decision is not None:
                self._print_decision(result.stage_id, result.decision)

        self._print_expired(report.expired_suppressions)

        if report.published_tags:
            self._echo("")
            self._echo(click.style("  Published tags: ", fg="bright_white", bold=True)
                       + click.style(", ".join(report.published_tags), fg="green"))

        self._print_footer(report.status)

    def report_decision(self, decision: GateDecision, expired: Iterable[Suppression] = ()) -> None:
        """Print a single gate decision (explain-gate)."""
        self._print_header()
        self._print_decision("gate", decision)
        self._print_expired(list(expired))
        self._echo("")
        color = VERDICT_COLORS[decision.verdict]
        self._echo(click.style("=" * 55, fg="bright_blue"))
        self._echo(click.style(f"  GATE: {decision.verdict.value.upper()}", fg=color, bold=True))
        self._echo(click.style("=" * 55, fg="bright_blue"))
        self._echo("")

    def _print_header(self) -> None:
        self._echo("")
        self._echo(click.style("=" * 55, fg="bright_blue"))
        self._echo(click.style("  PipeGate Pipeline Report", fg="bright_white", bold=True))
        self._echo(click.style(f"  Version: {__version__}", fg="white"))
        self._echo(click.style(f"  Target: {self.target}", fg="white"))
        self._echo(click.style("=" * 55, fg="bright_blue"))

    def _print_stages(self, results: Iterable[StageResult]) -> None:
        self._echo("")
        self._echo(click.style("  Stages:", fg="bright_white", bold=True))
        for result in results:
            color = STATUS_COLORS.get(result.status, "white")
            line = (
                click.style(f"    {STATUS_MARKS.get(result.status, '[?]')} {result.stage_id}: ", fg=color)
                + click.style(result.status.value, fg=color, bold=True)
            )
            if result.status is not StageStatus.SKIPPED:
                line += click.style(f" in {result.duration:.2f}s", fg="bright_black")
            if result.decision is not None:
                line += click.style(f" [gate: {result.decision.verdict.value}]",
                                    fg=VERDICT_COLORS[result.decision.verdict])
            self._echo(line)
            if result.detail:
                self._echo(click.style(f"        {result.reason}: {result.detail}", fg="bright_black"))

    def _print_decision(self, title: str, decision: GateDecision) -> None:
        if not (decision.failed or decision.warned or decision.suppressed):
            return
        self._echo("")
        self._echo(click.style(f"  Gate findings ({title}):", fg="bright_white", bold=True))
        self._echo(click.style("-" * 55, fg="bright_black"))
        for label, color, findings in (
            ("FAIL", "bright_red", decision.failed),
            ("WARN", "yellow", decision.warned),
            ("SUPPRESSED", "bright_black", decision.suppressed),
        ):
            for finding in findings:
                self._echo(
                    click.style(f"    {label:10s}", fg=color, bold=True)
                    + click.style(f" {_severity_label(finding):9s} ", fg=color)
                    + click.style(f"{finding.id}", fg="bright_white")
                    + click.style(f"  {finding.component.coordinate}", fg="white")
                )
                if finding.description and label != "SUPPRESSED":
                    self._echo(click.style(f"               {finding.description}", fg="bright_black"))

    def _print_expired(self, expired: Iterable[Suppression]) -> None:
        expired = list(expired)
        if not expired:
            return
        self._echo("")
        self._echo(click.style("  Expired suppressions:", fg="bright_white", bold=True))
        for suppression in expired:
            self._echo(
                click.style(f"    [!] {suppression.id_pattern} ({suppression.component_pattern})",
                            fg="yellow")
                + click.style(
                    f" expired {suppression.expires.date().isoformat()} - needs re-review",
                    fg="bright_black",
                )
            )

    def _print_footer(self, status: PipelineStatus) -> None:
        self._echo("")
        self._echo(click.style("=" * 55, fg="bright_blue"))

        if status is PipelineStatus.FAILED:
            self._echo(click.style("  [X] PIPELINE FAILED", fg="bright_red", bold=True))
        elif status is PipelineStatus.FAILED_BUT_CONTINUED:
            self._echo(click.style(
                "  [!] FAILED BUT CONTINUED - Soft-failed stages need attention",
                fg="yellow", bold=True,
            ))
        else:
            self._echo(click.style("  [OK] PIPELINE PASSED", fg="green", bold=True))

        self._echo(click.style("=" * 55, fg="bright_blue"))
        self._echo("")
