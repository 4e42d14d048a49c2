from __future__ import annotations

import pytest

from campaign_autopilot import ConfigurationError, ReadinessTracker, build_sequence, sequencing_insights
from conftest import make_item


def test_independent_items_share_first_phase() -> None:
    plan = build_sequence([make_item("A"), make_item("B", "A"), make_item("C")])

    assert [phase.item_ids for phase in plan.phases] == [["A", "C"], ["B"]]
    assert len(plan.critical_path) == 2
    assert plan.critical_path == ["A", "B"]
    assert plan.order == ["A", "B", "C"]


def test_order_places_every_item_after_its_dependencies() -> None:
    items = [
        make_item("launch", "copy", "design"),
        make_item("copy", "brief"),
        make_item("design", "brief"),
        make_item("brief"),
        make_item("recap", "launch"),
    ]
    plan = build_sequence(items)

    position = {item_id: index for index, item_id in enumerate(plan.order)}
    for item in items:
        for dep in item.depends_on:
            assert position[dep] < position[item.item_id]
    assert plan.critical_path == ["brief", "copy", "launch", "recap"]


def test_phases_are_exhaustive_and_disjoint() -> None:
    items = [make_item("A"), make_item("B", "A"), make_item("C", "A"), make_item("D", "B", "C"), make_item("E")]
    plan = build_sequence(items)

    seen = [item_id for phase in plan.phases for item_id in phase.item_ids]
    assert sorted(seen) == ["A", "B", "C", "D", "E"]
    assert len(seen) == len(set(seen))
    assert [phase.name for phase in plan.phases] == ["Phase 1", "Phase 2", "Phase 3"]


def test_phase_duration_sums_item_hours() -> None:
    plan = build_sequence([make_item("A", hours=1.5), make_item("B", hours=2.5), make_item("C", "A", hours=4)])

    assert [phase.duration_hours for phase in plan.phases] == [4.0, 4.0]


def test_cycle_raises_configuration_error() -> None:
    with pytest.raises(ConfigurationError, match="cycle"):
        build_sequence([make_item("A", "C"), make_item("B", "A"), make_item("C", "B"), make_item("D")])


def test_self_dependency_and_duplicate_ids_are_rejected() -> None:
    with pytest.raises(ConfigurationError):
        build_sequence([make_item("A", "A")])
    with pytest.raises(ConfigurationError):
        build_sequence([make_item("A"), make_item("A")])


def test_unknown_dependencies_are_treated_as_satisfied() -> None:
    plan = build_sequence([make_item("A", "EXTERNAL-1"), make_item("B", "A")])

    assert [phase.item_ids for phase in plan.phases] == [["A"], ["B"]]
    assert [(edge.source, edge.target) for edge in plan.edges] == [("A", "B")]


def test_critical_path_ties_keep_first_discovered_chain() -> None:
    plan = build_sequence([make_item("A"), make_item("B", "A"), make_item("C"), make_item("D", "C")])

    assert plan.critical_path == ["A", "B"]


def test_sequence_is_deterministic() -> None:
    items = [make_item("X"), make_item("Y", "X"), make_item("Z"), make_item("W", "Z", "X")]

    assert build_sequence(items) == build_sequence(items)


def test_sequencing_insights_reports_efficiency_gain() -> None:
    plan = build_sequence([make_item("A"), make_item("B", "A"), make_item("C"), make_item("D")])
    insights = sequencing_insights(plan)

    assert insights.total_phases == 2
    assert insights.critical_path_length == 2
    assert insights.max_parallel_items == 3
    assert insights.efficiency_gain_percent == 50
    assert insights.estimated_duration_hours == 8.0
    assert insights.recommendation.startswith("Execute in 2 phases")


def test_readiness_tracker_counts_down_dependencies() -> None:
    items = [make_item("A"), make_item("B"), make_item("C", "A", "B")]
    tracker = ReadinessTracker(items)

    assert tracker.ready_ids() == ["A", "B"]
    assert tracker.blocked_ids() == ["C"]
    assert tracker.mark_complete("A") == []
    assert not tracker.is_ready("C")
    assert tracker.mark_complete("B") == ["C"]
    assert tracker.ready_ids() == ["C"]
    assert tracker.mark_complete("B") == []


def test_readiness_tracker_applies_completed_items() -> None:
    items = [make_item("A", completed=True), make_item("B", "A")]
    tracker = ReadinessTracker(items)

    assert tracker.is_done("A")
    assert tracker.ready_ids() == ["B"]
    assert tracker.ready_ids(exclude=["B"]) == []
