"""
PipeGate Pipeline Runner

Walks the stage graph and executes each stage on a daemon worker thread:
- A stage starts once every upstream stage has reached a terminal state
- Stages without a dependency between them run concurrently
- A stage disabled by configuration is skipped without running
- A hard dependency that did not succeed skips its dependents at once;
  stages that are already running are allowed to finish
- Scan stages feed their findings to the gate policy; a gate failure
  fails the stage according to its failure mode, so a soft scan lets
  the pipeline finish as "failed-but-continued"
- A stage that exceeds its wall-clock budget is hard-failed with reason
  "timeout"

Only the runner thread writes StageResults, once per stage, at the stage's
terminal transition.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from pipegate.core.config import PipelineConfig
from pipegate.core.errors import (
    EXIT_POLICY_FAILURE,
    EXIT_SUCCESS,
    EXIT_TOOL_ERROR,
    GateViolation,
    StageExecutionError,
    StageTimeout,
)
from pipegate.core.stage import (
    REASON_DEPENDENCY,
    REASON_DISABLED,
    REASON_GATE,
    REASON_TIMEOUT,
    REASON_TOOL,
    FailureMode,
    Stage,
    StageContext,
    StageOutput,
    StageResult,
    StageStatus,
)
from pipegate.pipeline.graph import StageGraph
from pipegate.policy.gate import GatePolicy, Verdict
from pipegate.policy.suppressions import Suppression

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PipelineStatus(str, Enum):
    SUCCESS = "success"
    FAILED_BUT_CONTINUED = "failed-but-continued"
    FAILED = "failed"


def pipeline_status(results: list[StageResult]) -> PipelineStatus:
    statuses = {r.status for r in results}
    if StageStatus.HARD_FAILED in statuses:
        return PipelineStatus.FAILED
    if StageStatus.SOFT_FAILED in statuses:
        return PipelineStatus.FAILED_BUT_CONTINUED
    return PipelineStatus.SUCCESS


@dataclass(frozen=True)
class PipelineReport:
    """Outcome of a pipeline run, one StageResult per stage in graph order."""

    results: tuple[StageResult, ...]
    status: PipelineStatus
    started_at: datetime
    ended_at: datetime
    commit: str = ""
    branch: str = ""
    expired_suppressions: tuple[Suppression, ...] = field(default_factory=tuple)

    def result(self, stage_id: str) -> StageResult:
        for result in self.results:
            if result.stage_id == stage_id:
                return result
        raise KeyError(stage_id)

    @property
    def published_tags(self) -> list[str]:
        return [
            tag
            for result in self.results
            if result.stage_id == "publish" and result.status is StageStatus.SUCCESS
            for artifact in result.artifacts
            for tag in artifact.tags
        ]

    @property
    def gate_failures(self) -> list[StageResult]:
        return [
            r for r in self.results
            if r.reason == REASON_GATE and r.status is StageStatus.HARD_FAILED
        ]

    @property
    def exit_code(self) -> int:
        if self.status is not PipelineStatus.FAILED:
            return EXIT_SUCCESS
        if self.gate_failures:
            return EXIT_POLICY_FAILURE
        return EXIT_TOOL_ERROR

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "commit": self.commit,
            "branch": self.branch,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat(),
            "stages": [r.to_dict() for r in self.results],
            "published_tags": self.published_tags,
            "expired_suppressions": [s.to_dict() for s in self.expired_suppressions],
        }


@dataclass
class _Running:
    stage: Stage
    started_at: datetime
    deadline: float


class PipelineRunner:
    """Executes a StageGraph and aggregates the results into a PipelineReport."""

    def __init__(
        self,
        graph: StageGraph,
        config: PipelineConfig,
        gate: Optional[GatePolicy] = None,
        clock: Clock = utcnow,
        max_workers: Optional[int] = None,
        commit: str = "",
        branch: str = "",
    ) -> None:
        self.graph = graph
        self.config = config
        self.gate = gate or GatePolicy()
        self.clock = clock
        self.max_workers = max_workers or max(1, len(graph))
        self.commit = commit
        self.branch = branch

    def run(self) -> PipelineReport:
        started_at = self.clock()
        results: dict[str, StageResult] = {}
        running: dict[Future, _Running] = {}

        while len(results) < len(self.graph):
            self._schedule(results, running)
            if not running:
                continue

            next_deadline = min(r.deadline for r in running.values())
            done, _ = wait(
                list(running),
                timeout=max(0.0, next_deadline - time.monotonic()),
                return_when=FIRST_COMPLETED,
            )
            for future in done:
                del running[future]
                self._record(results, future.result())

            now = time.monotonic()
            for future, entry in list(running.items()):
                if now >= entry.deadline:
                    # Not pre-empted: the daemon worker is abandoned and its
                    # subprocess is bounded by the same budget.
                    del running[future]
                    self._record(results, self._finish(
                        entry.stage, StageStatus.HARD_FAILED, entry.started_at,
                        reason=REASON_TIMEOUT,
                        detail=f"exceeded {entry.stage.timeout:g}s budget",
                    ))

        ordered = [results[stage_id] for stage_id in self.graph.order]
        status = pipeline_status(ordered)
        logger.info("Pipeline finished: %s", status.value)
        return PipelineReport(
            results=tuple(ordered),
            status=status,
            started_at=started_at,
            ended_at=self.clock(),
            commit=self.commit,
            branch=self.branch,
            expired_suppressions=tuple(self.gate.registry.expired_at(self.clock())),
        )

    # ── Scheduling ──

    def _schedule(
        self,
        results: dict[str, StageResult],
        running: dict[Future, _Running],
    ) -> None:
        """
        Skip or start every pending stage whose fate is decided.

        Stages are visited in topological order, so a skip cascades to all
        transitive dependents within a single pass. At most ``max_workers``
        stages run at once; the rest wait for a later pass.
        """
        active = {entry.stage.id for entry in running.values()}

        for stage in self.graph:
            if stage.id in results or stage.id in active:
                continue

            if not stage.enabled:
                self._record(results, self._skip(stage, REASON_DISABLED, "disabled by configuration"))
                continue

            unmet = [
                dep for dep in stage.dependencies
                if dep in results and not results[dep].satisfies_dependency
            ]
            if unmet:
                detail = ", ".join(f"{dep} {results[dep].status.value}" for dep in unmet)
                self._record(results, self._skip(stage, REASON_DEPENDENCY, detail))
                continue

            if len(running) >= self.max_workers:
                continue
            if all(upstream in results for upstream in stage.upstream):
                upstream = {sid: results[sid] for sid in stage.upstream}
                entry = _Running(stage, self.clock(), time.monotonic() + stage.timeout)
                running[self._start(stage, upstream, entry)] = entry
                active.add(stage.id)
                logger.info("Stage %s started", stage.id)

    def _start(self, stage: Stage, upstream: dict[str, StageResult], entry: _Running) -> Future:
        """
        Run a stage on its own daemon thread.

        A stage that overruns its budget is abandoned, and a daemon worker
        does not keep the process alive once the report is out.
        """
        future: Future = Future()

        def work() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(self._execute(stage, upstream, entry))
            except BaseException as exc:
                future.set_exception(exc)

        threading.Thread(target=work, name=f"pipegate-stage-{stage.id}", daemon=True).start()
        return future

    def _record(self, results: dict[str, StageResult], result: StageResult) -> None:
        if result.stage_id in results:
            return
        results[result.stage_id] = result
        log = logger.info if result.status in (StageStatus.SUCCESS, StageStatus.SKIPPED) else logger.error
        log("Stage %s %s%s", result.stage_id, result.status.value,
            f" ({result.detail})" if result.detail else "")

    # ── Execution (worker threads) ──

    def _execute(
        self,
        stage: Stage,
        upstream: dict[str, StageResult],
        entry: _Running,
    ) -> StageResult:
        """Run one stage and convert every stage-local error into a status."""
        context = StageContext(
            stage_id=stage.id,
            config=self.config,
            upstream=upstream,
            deadline=entry.deadline,
        )
        try:
            output = stage.action(context) or StageOutput()
        except StageTimeout as exc:
            return self._finish(stage, StageStatus.HARD_FAILED, entry.started_at,
                                reason=REASON_TIMEOUT, detail=str(exc))
        except StageExecutionError as exc:
            detail = f"{exc}: {exc.output.strip()}" if exc.output.strip() else str(exc)
            return self._finish(stage, self._failure_status(stage), entry.started_at,
                                reason=REASON_TOOL, detail=detail)
        except Exception as exc:
            logger.exception("Stage %s raised an unexpected error", stage.id)
            return self._finish(stage, self._failure_status(stage), entry.started_at,
                                reason=REASON_TOOL, detail=f"{type(exc).__name__}: {exc}")

        findings = tuple(sorted(set(output.findings), key=lambda f: f.sort_key))
        if not stage.gated:
            return self._finish(stage, StageStatus.SUCCESS, entry.started_at,
                                artifacts=output.artifacts, findings=findings)

        decision = self.gate.evaluate(findings, self.config, self.clock())
        if decision.verdict is Verdict.FAIL:
            return self._finish(stage, self._failure_status(stage), entry.started_at,
                                artifacts=output.artifacts, findings=findings,
                                decision=decision, reason=REASON_GATE,
                                detail=str(GateViolation(decision.failed)))
        return self._finish(stage, StageStatus.SUCCESS, entry.started_at,
                            artifacts=output.artifacts, findings=findings, decision=decision)

    @staticmethod
    def _failure_status(stage: Stage) -> StageStatus:
        if stage.failure_mode is FailureMode.SOFT:
            return StageStatus.SOFT_FAILED
        return StageStatus.HARD_FAILED

    def _skip(self, stage: Stage, reason: str, detail: str) -> StageResult:
        now = self.clock()
        return StageResult(stage_id=stage.id, status=StageStatus.SKIPPED,
                           started_at=now, ended_at=now, reason=reason, detail=detail)

    def _finish(self, stage: Stage, status: StageStatus, started_at: datetime,
                **kwargs: Any) -> StageResult:
        return StageResult(
            stage_id=stage.id,
            status=status,
            started_at=started_at,
            ended_at=self.clock(),
            artifacts=tuple(kwargs.pop("artifacts", ())),
            findings=tuple(kwargs.pop("findings", ())),
            **kwargs,
        )
