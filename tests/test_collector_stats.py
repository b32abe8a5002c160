from datetime import datetime, timedelta, timezone

import pytest

from fieldops.models.domain import FieldCollector
from fieldops.models.events import RouteCompleted, TaskCollected, TaskFailed, TaskSkipped, TaskVisited
from fieldops.services.collectors.stats import apply_event

NOW = datetime(2025, 3, 1, 10, 0, tzinfo=timezone.utc)


def _collector() -> FieldCollector:
    return FieldCollector(user_id="user-1", tenant_id="tenant-1", collector_id="col-1")


def _collected(amount: float, minutes_on_site: float | None = None) -> TaskCollected:
    visited_at = NOW - timedelta(minutes=minutes_on_site) if minutes_on_site is not None else None
    return TaskCollected(
        task_id="t1",
        collector_id="col-1",
        invoice_id="inv-1",
        route_id=None,
        amount=amount,
        payment_method="cash",
        occurred_at=NOW,
        visited_at=visited_at,
    )


def test_collected_increments_totals():
    collector = _collector()

    apply_event(_collected(30.0), collector)
    apply_event(_collected(20.0), collector)

    assert collector.stats.total_collected == 50.0
    assert collector.stats.successful_visits == 2
    assert collector.stats.total_visits == 2
    assert collector.stats.last_active == NOW
    assert collector.success_rate() == 1.0


def test_collection_time_is_a_running_mean():
    collector = _collector()

    apply_event(_collected(10.0, minutes_on_site=4), collector)
    apply_event(_collected(10.0, minutes_on_site=8), collector)

    assert collector.stats.avg_collection_time == pytest.approx(6.0)


def test_skip_and_fail_both_count_as_failed_visits():
    collector = _collector()

    apply_event(TaskSkipped("t1", "col-1", None, "closed", NOW), collector)
    apply_event(TaskFailed("t2", "col-1", None, "moved", NOW), collector)
    apply_event(_collected(5.0), collector)

    assert collector.stats.failed_visits == 2
    assert collector.stats.skipped_visits == 1
    assert collector.stats.total_visits == 3
    assert collector.success_rate() == pytest.approx(1 / 3)


def test_visit_only_touches_last_active():
    collector = _collector()

    apply_event(TaskVisited("t1", "col-1", NOW), collector)

    assert collector.stats.last_active == NOW
    assert collector.stats.total_visits == 0


def test_route_completion_adds_distance_and_clears_current_route():
    collector = _collector()
    collector.current_route_id = "route-1"

    apply_event(RouteCompleted("route-1", "col-1", 1234.5, 60, NOW), collector)

    assert collector.stats.total_distance == 1234.5
    assert collector.current_route_id is None


def test_unknown_event_is_rejected():
    with pytest.raises(TypeError):
        apply_event(object(), _collector())
