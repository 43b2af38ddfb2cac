"""
PipeGate Gate Policy

Turns the findings of a scan stage into a pass / pass-with-warnings / fail
verdict:

- Findings covered by an active suppression are set aside
- Findings whose suppression has expired are treated as uncovered and
  always surfaced as warnings, so the suppression gets re-reviewed
- An uncovered finding at or above the fail threshold fails the gate
- An uncovered finding at or above the report threshold produces a warning

A CVSS score is authoritative when present; findings that only carry an
ordinal bucket are compared on the low < medium < high < critical scale.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional

from pipegate.core.config import PipelineConfig
from pipegate.core.errors import SuppressionExpired
from pipegate.core.finding import Finding, Severity
from pipegate.policy.suppressions import SuppressionRegistry, SuppressionStatus


class Verdict(Enum):
    PASS = "pass"
    PASS_WITH_WARNINGS = "pass-with-warnings"
    FAIL = "fail"


@dataclass(frozen=True)
class GateDecision:
    """Result of evaluating a set of findings."""

    verdict: Verdict
    failed: tuple[Finding, ...] = ()
    warned: tuple[Finding, ...] = ()
    suppressed: tuple[Finding, ...] = ()
    expired: tuple[SuppressionExpired, ...] = field(default_factory=tuple)

    @property
    def causes(self) -> tuple[Finding, ...]:
        """The findings that caused the verdict."""
        if self.verdict is Verdict.FAIL:
            return self.failed
        return self.warned

    def to_dict(self) -> dict[str, Any]:
        return {
            "verdict": self.verdict.value,
            "failed": [f.to_dict() for f in self.failed],
            "warned": [f.to_dict() for f in self.warned],
            "suppressed": [f.to_dict() for f in self.suppressed],
            "expired_suppressions": [
                {"finding": w.finding.id, **w.suppression.to_dict()} for w in self.expired
            ],
        }


def meets(finding: Finding, cvss_threshold: float, bucket_threshold: Severity) -> bool:
    """Whether a finding reaches a threshold. The CVSS score wins when present."""
    if finding.cvss is not None:
        return finding.cvss >= cvss_threshold
    return finding.bucket >= bucket_threshold


class GatePolicy:
    """Evaluates findings against the configured thresholds and suppressions."""

    def __init__(self, registry: Optional[SuppressionRegistry] = None) -> None:
        self.registry = registry or SuppressionRegistry()

    def evaluate(
        self,
        findings: Iterable[Finding],
        config: PipelineConfig,
        at: datetime,
    ) -> GateDecision:
        """
        Evaluate a set of findings.

        Args:
            findings: Findings from one or more scanners. Duplicates and
                arrival order do not affect the decision.
            config: Resolved pipeline configuration (thresholds).
            at: Reference instant for suppression expiry.

        Returns:
            GateDecision with the findings sorted deterministically.
        """
        failed: list[Finding] = []
        warned: list[Finding] = []
        suppressed: list[Finding] = []
        expired: list[SuppressionExpired] = []

        fail_cvss = config.fail_cvss
        fail_bucket = config.fail_severity
        report_bucket = config.report_severity
        report_cvss = min(report_bucket.cvss_floor, fail_cvss)

        for finding in sorted(set(findings), key=lambda f: f.sort_key):
            match = self.registry.match(finding, at)

            if match.status is SuppressionStatus.ACTIVE:
                suppressed.append(finding)
                continue

            if match.status is SuppressionStatus.EXPIRED:
                expired.append(SuppressionExpired(finding, match.suppression))

            if meets(finding, fail_cvss, fail_bucket):
                failed.append(finding)
            elif (
                match.status is SuppressionStatus.EXPIRED
                or meets(finding, report_cvss, report_bucket)
            ):
                warned.append(finding)

        if failed:
            verdict = Verdict.FAIL
        elif warned or expired:
            verdict = Verdict.PASS_WITH_WARNINGS
        else:
            verdict = Verdict.PASS

        return GateDecision(
            verdict=verdict,
            failed=tuple(failed),
            warned=tuple(warned),
            suppressed=tuple(suppressed),
            expired=tuple(expired),
        )
