"""
PipeGate Base Scanner

A scanner wraps an external analysis tool: it runs the configured
command, then parses the structured report the tool leaves behind
(or prints) into Findings.

Implementations:
- StaticAnalysisScanner (SARIF)
- DependencyScanner (OWASP Dependency-Check JSON)
- ContainerScanner (Trivy JSON)
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, List, Optional

from pipegate.core.errors import StageExecutionError
from pipegate.core.finding import Finding
from pipegate.core.tools import render_command, run_tool


class BaseScanner(ABC):
    """
    Minimal scanner interface.
    Each scanner must implement parse().
    """

    name: str = "base"

    def __init__(self, command: str, workdir: Path, report: Optional[str] = None):
        self.command = command
        self.workdir = workdir
        self.report = report

    @property
    def report_path(self) -> Optional[Path]:
        if not self.report:
            return None
        return self.workdir / self.report

    def scan(self, timeout: Optional[float] = None, **placeholders: str) -> List[Finding]:
        """
        Run the tool and parse its report.

        The report is read from ``report`` when configured, otherwise from
        the tool's standard output. A configured report is removed before
        the tool runs, so it must be written afresh.
        """
        report_path = self.report_path
        if report_path is not None:
            # A report left by an earlier run must not pass for this one
            try:
                report_path.unlink(missing_ok=True)
            except OSError as exc:
                raise StageExecutionError(
                    f"Cannot remove stale {self.name} report {report_path}: {exc}"
                ) from exc

        values = {"report": self.report or "", **placeholders}
        result = run_tool(render_command(self.command, **values), cwd=self.workdir, timeout=timeout)

        if report_path is None:
            return self.parse_report(result.stdout)

        try:
            text = report_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StageExecutionError(
                f"{self.name} report {report_path} was not produced: {exc}"
            ) from exc
        return self.parse_report(text)

    @abstractmethod
    def parse(self, text: str) -> List[Finding]:
        """
        Turn the tool's report into findings.
        """
        raise NotImplementedError

    def parse_report(self, text: str) -> List[Finding]:
        """parse(), with a malformed report raised as StageExecutionError."""
        try:
            return self.parse(text)
        except (TypeError, ValueError) as exc:
            raise StageExecutionError(f"{self.name} report is invalid: {exc}") from exc

    def _load_json(self, text: str) -> dict[str, Any]:
        try:
            data = json.loads(text) if text.strip() else {}
        except json.JSONDecodeError as exc:
            raise StageExecutionError(f"{self.name} produced an unreadable report: {exc}") from exc
        if not isinstance(data, dict):
            raise StageExecutionError(
                f"{self.name} report is not a JSON object (got {type(data).__name__})"
            )
        return data


def objects(value: Any) -> List[dict]:
    """The JSON objects in a report array; anything else is ignored."""
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]
