"""
PipeGate Error Taxonomy

- ConfigError: missing required key or unreadable configuration, fatal
- StageExecutionError: an external tool invoked by a stage failed
- StageTimeout: a stage exceeded its wall-clock budget
- GateViolation: a finding crossed the fail threshold uncovered
- SuppressionExpired: non-fatal, attached to a gate decision as a warning
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:
    from pipegate.core.finding import Finding
    from pipegate.policy.suppressions import Suppression


class PipeGateError(Exception):
    """Base class for all PipeGate errors."""


class ConfigError(PipeGateError):
    """Configuration could not be resolved. The pipeline never starts."""


class StageExecutionError(PipeGateError):
    """An external tool exited abnormally while a stage was running."""

    def __init__(
        self,
        message: str,
        command: Optional[Sequence[str]] = None,
        returncode: Optional[int] = None,
        output: str = "",
    ) -> None:
        super().__init__(message)
        self.command = list(command) if command else []
        self.returncode = returncode
        self.output = output


class StageTimeout(StageExecutionError):
    """A stage (or the tool it runs) ran past its wall-clock budget."""


class GateViolation(PipeGateError):
    """Findings crossed the fail threshold without an active suppression."""

    def __init__(self, findings: Sequence["Finding"]) -> None:
        self.findings = list(findings)
        ids = ", ".join(f.id for f in self.findings)
        super().__init__(f"{len(self.findings)} finding(s) crossed the fail threshold: {ids}")


class SuppressionExpired(PipeGateError):
    """A finding matched a suppression that has lapsed and needs re-review."""

    def __init__(self, finding: "Finding", suppression: "Suppression") -> None:
        self.finding = finding
        self.suppression = suppression
        super().__init__(
            f"Suppression for {suppression.id_pattern} ({suppression.component_pattern}) "
            f"expired {suppression.expires.date().isoformat()} - needs re-review"
        )


# Process exit statuses of the command-line interface
EXIT_SUCCESS = 0
EXIT_POLICY_FAILURE = 1
EXIT_CONFIG_ERROR = 2
EXIT_TOOL_ERROR = 3
