from __future__ import annotations

import heapq
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from .errors import ConfigurationError
from .models import DependencyEdge, Phase, SequencePlan, WorkItem

logger = logging.getLogger(__name__)


def _index_items(items: Sequence[WorkItem]) -> dict[str, int]:
    index: dict[str, int] = {}
    for position, item in enumerate(items):
        if item.item_id in index:
            raise ConfigurationError(f"Duplicate work item id: {item.item_id}")
        index[item.item_id] = position
    return index


def _internal_dependencies(items: Sequence[WorkItem], index: dict[str, int]) -> list[list[int]]:
    """Per item, the positions of its dependencies that live in this backlog.

    Ids outside the backlog are externally satisfied and dropped here.
    Declared order is kept and duplicates removed.
    """
    resolved: list[list[int]] = []
    for position, item in enumerate(items):
        deps: list[int] = []
        seen: set[int] = set()
        for dep in item.depends_on:
            dep_position = index.get(dep)
            if dep_position is None:
                logger.debug("Dependency %s of %s is outside the backlog; treating as satisfied", dep, item.item_id)
                continue
            if dep_position == position:
                raise ConfigurationError(f"Work item {item.item_id} depends on itself")
            if dep_position not in seen:
                seen.add(dep_position)
                deps.append(dep_position)
        resolved.append(deps)
    return resolved


def _dependents(deps: list[list[int]]) -> list[list[int]]:
    dependents: list[list[int]] = [[] for _ in deps]
    for position, item_deps in enumerate(deps):
        for dep in item_deps:
            dependents[dep].append(position)
    return dependents


def _topological_order(deps: list[list[int]], dependents: list[list[int]]) -> list[int]:
    indegree = [len(item_deps) for item_deps in deps]
    # Min-heap on backlog position keeps ties in original order.
    ready = [position for position, degree in enumerate(indegree) if degree == 0]
    heapq.heapify(ready)
    ordered: list[int] = []
    while ready:
        current = heapq.heappop(ready)
        ordered.append(current)
        for nxt in dependents[current]:
            indegree[nxt] -= 1
            if indegree[nxt] == 0:
                heapq.heappush(ready, nxt)
    return ordered


def _phase_rounds(items: Sequence[WorkItem], deps: list[list[int]], dependents: list[list[int]]) -> list[list[int]]:
    indegree = [len(item_deps) for item_deps in deps]
    remaining = set(range(len(items)))
    rounds: list[list[int]] = []
    while remaining:
        current = sorted(position for position in remaining if indegree[position] == 0)
        if not current:
            stuck = ", ".join(items[position].item_id for position in sorted(remaining))
            raise ConfigurationError(f"Dependency cycle detected among work items: {stuck}")
        for position in current:
            remaining.discard(position)
            for nxt in dependents[position]:
                indegree[nxt] -= 1
        rounds.append(current)
    return rounds


def _critical_path(order: list[int], deps: list[list[int]]) -> list[int]:
    # Longest chain ending at each node, filled in topological order so every
    # dependency is resolved before its dependents.
    longest: dict[int, list[int]] = {}
    for position in order:
        best: list[int] = []
        for dep in deps[position]:
            candidate = longest[dep]
            if len(candidate) > len(best):
                best = candidate
        longest[position] = [*best, position]

    critical: list[int] = []
    for position in sorted(longest):
        if len(longest[position]) > len(critical):
            critical = longest[position]
    return critical


def build_sequence(items: Sequence[WorkItem]) -> SequencePlan:
    """Order a backlog and group it into concurrency-safe phases.

    Raises:
        ConfigurationError: On duplicate ids, self-dependencies or dependency cycles.
            No partial plan is produced in that case.
    """
    index = _index_items(items)
    deps = _internal_dependencies(items, index)
    dependents = _dependents(deps)

    rounds = _phase_rounds(items, deps, dependents)
    order = _topological_order(deps, dependents)
    if len(order) != len(items):
        raise ConfigurationError("Dependency cycle detected while ordering work items")

    phases = [
        Phase(
            number=number,
            name=f"Phase {number}",
            item_ids=[items[position].item_id for position in positions],
            duration_hours=sum(items[position].estimated_hours for position in positions),
        )
        for number, positions in enumerate(rounds, start=1)
    ]
    critical = _critical_path(order, deps)
    edges = [
        DependencyEdge(source=items[dep].item_id, target=items[position].item_id)
        for position, item_deps in enumerate(deps)
        for dep in item_deps
    ]
    plan = SequencePlan(
        original_order=[item.item_id for item in items],
        order=[items[position].item_id for position in order],
        phases=phases,
        critical_path=[items[position].item_id for position in critical],
        edges=edges,
    )
    logger.info(
        "Sequenced %d items into %d phases (critical path %d)",
        len(items),
        len(phases),
        len(plan.critical_path),
    )
    return plan


@dataclass(frozen=True)
class SequencingInsights:
    total_phases: int
    critical_path_length: int
    max_parallel_items: int
    estimated_duration_hours: float
    efficiency_gain_percent: int
    recommendation: str


def sequencing_insights(plan: SequencePlan) -> SequencingInsights:
    total_items = len(plan.original_order)
    longest_phase = max((phase.duration_hours for phase in plan.phases), default=0.0)
    max_parallel = max((len(phase.item_ids) for phase in plan.phases), default=0)
    gain = round((1 - len(plan.critical_path) / total_items) * 100) if total_items else 0
    return SequencingInsights(
        total_phases=len(plan.phases),
        critical_path_length=len(plan.critical_path),
        max_parallel_items=max_parallel,
        estimated_duration_hours=sum(phase.duration_hours for phase in plan.phases),
        efficiency_gain_percent=gain,
        recommendation=f"Execute in {len(plan.phases)} phases. Phase bottleneck: {longest_phase:g} hours.",
    )


class ReadinessTracker:
    """Dependency countdown over a fixed arena of work items.

    Items are addressed by their backlog position. ``ready`` flags flip on when
    an item's outstanding-dependency count reaches zero; completing an item
    counts down its dependents. Already-completed items are pre-applied.
    """

    def __init__(self, items: Sequence[WorkItem]) -> None:
        self._ids = [item.item_id for item in items]
        self._index = _index_items(items)
        deps = _internal_dependencies(items, self._index)
        self._dependents = _dependents(deps)
        self._outstanding = [len(item_deps) for item_deps in deps]
        self._ready = bytearray(len(items))
        self._done = bytearray(len(items))
        for position, count in enumerate(self._outstanding):
            if count == 0:
                self._ready[position] = 1
        for position, item in enumerate(items):
            if item.completed:
                self.mark_complete(item.item_id)

    def __len__(self) -> int:
        return len(self._ids)

    def position(self, item_id: str) -> int:
        return self._index[item_id]

    def is_ready(self, item_id: str) -> bool:
        position = self._index[item_id]
        return bool(self._ready[position]) and not self._done[position]

    def is_done(self, item_id: str) -> bool:
        return bool(self._done[self._index[item_id]])

    def ready_ids(self, exclude: Iterable[str] = ()) -> list[str]:
        """Ready, unfinished item ids in backlog order."""
        skipped = set(exclude)
        return [
            item_id
            for position, item_id in enumerate(self._ids)
            if self._ready[position] and not self._done[position] and item_id not in skipped
        ]

    def mark_complete(self, item_id: str) -> list[str]:
        """Record completion and return the ids that became ready because of it."""
        position = self._index[item_id]
        if self._done[position]:
            return []
        self._done[position] = 1
        released: list[str] = []
        for nxt in self._dependents[position]:
            self._outstanding[nxt] -= 1
            if self._outstanding[nxt] == 0:
                self._ready[nxt] = 1
                if not self._done[nxt]:
                    released.append(self._ids[nxt])
        return released

    def blocked_ids(self) -> list[str]:
        return [
            item_id
            for position, item_id in enumerate(self._ids)
            if not self._ready[position] and not self._done[position]
        ]
