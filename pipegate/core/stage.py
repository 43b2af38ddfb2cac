"""
PipeGate Stage Model

A stage is one unit of pipeline work: a build, a scan or a publish step.
Stages are declared up front, wired together by their dependencies and
never change during a run. Each execution produces exactly one immutable
StageResult.
"""

from __future__ import annotations

import time as _time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional

from pipegate.core.config import PipelineConfig
from pipegate.core.finding import Finding

if TYPE_CHECKING:
    from pipegate.policy.gate import GateDecision


class StageStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    SKIPPED = "skipped"
    SOFT_FAILED = "soft-failed"
    HARD_FAILED = "hard-failed"

    @property
    def terminal(self) -> bool:
        return self not in (StageStatus.PENDING, StageStatus.RUNNING)


class FailureMode(str, Enum):
    HARD = "hard"
    SOFT = "soft"


# Reasons attached to non-success results
REASON_DISABLED = "disabled"
REASON_TIMEOUT = "timeout"
REASON_GATE = "gate-violation"
REASON_TOOL = "tool-error"
REASON_DEPENDENCY = "dependency-failed"


@dataclass(frozen=True)
class Artifact:
    """Opaque reference to something a stage produced."""

    name: str
    reference: str
    tags: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "reference": self.reference, "tags": list(self.tags)}


@dataclass
class StageOutput:
    """What a stage action hands back to the runner."""

    artifacts: list[Artifact] = field(default_factory=list)
    findings: list[Finding] = field(default_factory=list)


@dataclass(frozen=True)
class StageContext:
    """Read-only view given to a running stage."""

    stage_id: str
    config: PipelineConfig
    upstream: Mapping[str, "StageResult"]
    deadline: float

    def remaining(self) -> float:
        """Seconds left in this stage's wall-clock budget."""
        return max(0.0, self.deadline - _time.monotonic())

    def artifacts(self, stage_id: Optional[str] = None) -> list[Artifact]:
        """Artifacts produced by one upstream stage, or by all of them."""
        results = [self.upstream[stage_id]] if stage_id else list(self.upstream.values())
        return [artifact for result in results for artifact in result.artifacts]

    def artifact(self, name: str) -> Optional[Artifact]:
        for artifact in self.artifacts():
            if artifact.name == name:
                return artifact
        return None


StageAction = Callable[[StageContext], Optional[StageOutput]]


@dataclass(frozen=True)
class Stage:
    """
    Declaration of a pipeline stage.

    Attributes:
        id: Unique stage identity.
        action: Callable run on a worker thread.
        dependencies: Hard dependencies; each must end in success.
        after: Ordering-only dependencies; waited for, outcome ignored.
        enabled: Drawn from the configuration; disabled stages are skipped.
        failure_mode: How a tool error is recorded (hard or soft).
        gated: Whether the findings go through the gate policy.
        timeout: Wall-clock budget in seconds.
    """

    id: str
    action: StageAction
    dependencies: tuple[str, ...] = ()
    after: tuple[str, ...] = ()
    enabled: bool = True
    failure_mode: FailureMode = FailureMode.HARD
    gated: bool = False
    timeout: float = 1800.0

    @property
    def upstream(self) -> tuple[str, ...]:
        return self.dependencies + tuple(s for s in self.after if s not in self.dependencies)


@dataclass(frozen=True)
class StageResult:
    stage_id: str
    status: StageStatus
    started_at: datetime
    ended_at: datetime
    artifacts: tuple[Artifact, ...] = ()
    findings: tuple[Finding, ...] = ()
    decision: Optional["GateDecision"] = None
    reason: Optional[str] = None
    detail: str = ""

    @property
    def duration(self) -> float:
        return (self.ended_at - self.started_at).total_seconds()

    @property
    def satisfies_dependency(self) -> bool:
        """A disabled stage counts as met, anything else must have succeeded."""
        if self.status is StageStatus.SKIPPED:
            return self.reason == REASON_DISABLED
        return self.status is StageStatus.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "stage": self.stage_id,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat(),
            "duration_seconds": round(self.duration, 3),
        }
        if self.reason:
            result["reason"] = self.reason
        if self.detail:
            result["detail"] = self.detail
        if self.artifacts:
            result["artifacts"] = [a.to_dict() for a in self.artifacts]
        if self.findings:
            result["findings"] = [f.to_dict() for f in self.findings]
        if self.decision is not None:
            result["gate"] = self.decision.to_dict()
        return result
