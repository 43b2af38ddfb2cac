"""
PipeGate JSON Reporter

Generates machine-readable JSON output format:
{
    "version": "1.0",
    "tool": {"name": "PipeGate", "version": "..."},
    "status": "success" | "failed-but-continued" | "failed",
    "stages": [...],
    "summary": {"stages": {...}, "failed_findings": N, ...}
}
"""

from __future__ import annotations

import json
from collections import Counter
from pathlib import Path
from typing import Any, Iterable, Optional

from pipegate import __version__
from pipegate.pipeline.runner import PipelineReport
from pipegate.policy.gate import GateDecision
from pipegate.policy.suppressions import Suppression


class JSONReporter:
    """Generates JSON-formatted pipeline reports."""

    def __init__(self, target: str) -> None:
        self.target = target

    def _envelope(self) -> dict[str, Any]:
        return {
            "version": "1.0",
            "tool": {
                "name": "PipeGate",
                "version": __version__,
            },
            "target": self.target,
        }

    def build(self, report: PipelineReport) -> dict[str, Any]:
        decisions = [r.decision for r in report.results if r.decision is not None]
        data = self._envelope()
        data.update(report.to_dict())
        data["exit_code"] = report.exit_code
        data["summary"] = {
            "stages": dict(Counter(r.status.value for r in report.results)),
            "failed_findings": sum(len(d.failed) for d in decisions),
            "warned_findings": sum(len(d.warned) for d in decisions),
            "suppressed_findings": sum(len(d.suppressed) for d in decisions),
            "expired_suppressions": len(report.expired_suppressions),
        }
        return data

    def report(self, report: PipelineReport, output_file: Optional[str] = None) -> str:
        """
        Generate JSON report.

        Args:
            report: Outcome of the pipeline run.
            output_file: Optional file path to write the report to.

        Returns:
            The JSON string.
        """
        return self._write(self.build(report), output_file)

    def report_decision(
        self,
        decision: GateDecision,
        expired: Iterable[Suppression] = (),
        output_file: Optional[str] = None,
    ) -> str:
        data = self._envelope()
        data["gate"] = decision.to_dict()
        data["expired_suppressions"] = [s.to_dict() for s in expired]
        return self._write(data, output_file)

    @staticmethod
    def _write(data: dict[str, Any], output_file: Optional[str]) -> str:
        json_str = json.dumps(data, indent=2, default=str)

        if output_file:
            Path(output_file).write_text(json_str, encoding="utf-8")

        return json_str
