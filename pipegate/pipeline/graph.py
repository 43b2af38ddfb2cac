"""
PipeGate Stage Graph

Stages and their dependencies form a DAG. The graph is validated once at
startup: duplicate ids, dependencies on unknown stages and cycles are
configuration errors.
"""

from __future__ import annotations

from collections import deque
from typing import Iterable, Iterator

from pipegate.core.errors import ConfigError
from pipegate.core.stage import Stage


class StageGraph:
    def __init__(self, stages: Iterable[Stage]) -> None:
        self._stages: dict[str, Stage] = {}
        for stage in stages:
            if stage.id in self._stages:
                raise ConfigError(f"Duplicate stage id '{stage.id}'")
            self._stages[stage.id] = stage

        for stage in self._stages.values():
            for upstream in stage.upstream:
                if upstream not in self._stages:
                    raise ConfigError(
                        f"Stage '{stage.id}' depends on unknown stage '{upstream}'"
                    )
                if upstream == stage.id:
                    raise ConfigError(f"Stage '{stage.id}' depends on itself")

        self._order = self._topological_order()

    def __len__(self) -> int:
        return len(self._stages)

    def __iter__(self) -> Iterator[Stage]:
        return (self._stages[stage_id] for stage_id in self._order)

    def __contains__(self, stage_id: str) -> bool:
        return stage_id in self._stages

    def __getitem__(self, stage_id: str) -> Stage:
        return self._stages[stage_id]

    @property
    def order(self) -> list[str]:
        return list(self._order)

    def downstream(self, stage_id: str) -> list[str]:
        """Stages that list ``stage_id`` as a hard or ordering dependency."""
        return [s.id for s in self if stage_id in s.upstream]

    def dependents(self, stage_id: str) -> set[str]:
        """All transitive hard dependents of a stage."""
        found: set[str] = set()
        queue = deque([stage_id])
        while queue:
            current = queue.popleft()
            for stage in self._stages.values():
                if current in stage.dependencies and stage.id not in found:
                    found.add(stage.id)
                    queue.append(stage.id)
        return found

    def _topological_order(self) -> list[str]:
        """Kahn's algorithm, keeping declaration order among independent stages."""
        indegree = {sid: len(stage.upstream) for sid, stage in self._stages.items()}
        ready = deque(sid for sid in self._stages if indegree[sid] == 0)
        order: list[str] = []

        while ready:
            current = ready.popleft()
            order.append(current)
            for sid, stage in self._stages.items():
                if current in stage.upstream:
                    indegree[sid] -= 1
                    if indegree[sid] == 0:
                        ready.append(sid)

        if len(order) != len(self._stages):
            cyclic = sorted(sid for sid in self._stages if sid not in order)
            raise ConfigError(f"Stage dependency cycle among: {', '.join(cyclic)}")
        return order
