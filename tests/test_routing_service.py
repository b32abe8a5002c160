import csv
import io
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from fieldops.errors import NotFoundError, RouteStateError, TaskFinalizedError, ValidationError
from fieldops.models.domain import CollectionTask, FieldCollector, GeoPoint, Invoice, TaskLocation, TaskStatus
from fieldops.persistence.store import InMemoryStore
from fieldops.services.export.geojson import route_to_geojson
from fieldops.services.routing import service as routing_service
from fieldops.services.tasks import service as task_service

NOW = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)


def _task(tid: str, lat: float | None, lng: float | None, amount: float = 10.0) -> CollectionTask:
    return CollectionTask(
        task_id=tid,
        collector_id="col-1",
        customer_id=f"cust-{tid}",
        invoice_id=f"inv-{tid}",
        tenant_id="tenant-1",
        amount=amount,
        status=TaskStatus.ASSIGNED,
        location=TaskLocation(longitude=lng, latitude=lat),
        created_at=NOW,
    )


@pytest.fixture
def store() -> InMemoryStore:
    store = InMemoryStore()
    store.add_collector(FieldCollector(user_id="user-1", tenant_id="tenant-1", collector_id="col-1"))
    for task in (_task("t1", 30.01, 31.0), _task("t2", 30.02, 31.0), _task("t3", None, None)):
        store.add_task(task)
    return store


def test_optimize_route_persists_outputs(store: InMemoryStore, monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    original_storage = routing_service.FileStorage
    monkeypatch.setattr(routing_service, "FileStorage", lambda: original_storage(root=tmp_path))

    route, result = routing_service.optimize_route(
        store,
        collector_id="col-1",
        task_ids=["t1", "t2", "t3"],
        start=GeoPoint(latitude=30.0, longitude=31.0),
        persist=True,
        now=NOW,
    )

    assert route.optimized_order == ["t1", "t2"]
    assert result.excluded_task_ids == ["t3"]

    run_dirs = list((tmp_path / "outputs" / "2025-03-01").iterdir())
    assert len(run_dirs) == 1
    summary = json.loads((run_dirs[0] / "summary.json").read_text(encoding="utf-8"))
    assert summary["route_id"] == route.route_id
    assert summary["optimized_order"] == ["t1", "t2"]
    rows = list(csv.DictReader(io.StringIO((run_dirs[0] / "stops.csv").read_text(encoding="utf-8"))))
    assert [row["task_id"] for row in rows] == ["t1", "t2"]
    geojson = json.loads((run_dirs[0] / "route.geojson").read_text(encoding="utf-8"))
    assert geojson["type"] == "FeatureCollection"


def test_optimize_route_requires_tasks(store: InMemoryStore):
    with pytest.raises(ValidationError, match="no tasks to optimize"):
        routing_service.optimize_route(
            store, collector_id="col-1", task_ids=["unknown"], start=GeoPoint(latitude=30.0, longitude=31.0)
        )
    with pytest.raises(NotFoundError):
        routing_service.optimize_route(
            store, collector_id="col-9", task_ids=["t1"], start=GeoPoint(latitude=30.0, longitude=31.0)
        )


def test_route_lifecycle_updates_collector_distance(store: InMemoryStore):
    route, _ = routing_service.optimize_route(
        store, collector_id="col-1", task_ids=["t1", "t2"], start=GeoPoint(latitude=30.0, longitude=31.0), now=NOW
    )
    routing_service.start_route(store, route.route_id, now=NOW)
    routing_service.track_location(store, route.route_id, lat=30.0, lng=31.0, now=NOW)
    tracked, _ = routing_service.track_location(
        store, route.route_id, lat=30.01, lng=31.0, now=NOW + timedelta(minutes=5)
    )
    task_service.collect_payment(store, "t1", amount=10.0, method="cash", now=NOW + timedelta(minutes=6))

    completed = routing_service.complete_route(store, route.route_id, now=NOW + timedelta(minutes=42))

    assert completed.stats.actual_duration == 42
    assert completed.stats.completed_tasks == 1
    collector = store.get_collector("col-1")
    assert collector.stats.total_distance == pytest.approx(tracked.stats.actual_distance)
    assert collector.current_route_id is None

    again = routing_service.complete_route(store, route.route_id, now=NOW + timedelta(hours=2))
    assert again.stats.actual_duration == 42
    assert store.get_collector("col-1").stats.total_distance == pytest.approx(tracked.stats.actual_distance)


def test_cancelled_route_cannot_start(store: InMemoryStore):
    route, _ = routing_service.optimize_route(
        store, collector_id="col-1", task_ids=["t1"], start=GeoPoint(latitude=30.0, longitude=31.0), now=NOW
    )
    routing_service.cancel_route(store, route.route_id, now=NOW)

    with pytest.raises(RouteStateError):
        routing_service.start_route(store, route.route_id, now=NOW)


def test_today_route_is_empty_result_when_missing(store: InMemoryStore):
    assert routing_service.get_today_route(store, "col-1", now=NOW) is None


def test_reconcile_picks_up_out_of_band_edits(store: InMemoryStore):
    route, _ = routing_service.optimize_route(
        store, collector_id="col-1", task_ids=["t1", "t2"], start=GeoPoint(latitude=30.0, longitude=31.0), now=NOW
    )
    task = store.get_task("t2")
    task.status = TaskStatus.FAILED
    store.save_task(task)

    reconciled = routing_service.reconcile_route(store, route.route_id)

    assert reconciled.stats.failed_tasks == 1


def test_optimizing_leaves_finished_tasks_untouched(store: InMemoryStore):
    store.add_invoice(Invoice("inv-t1", "cust-t1", "tenant-1", total_amount=10.0))
    task_service.collect_payment(store, "t1", amount=10.0, method="cash", now=NOW)

    route, result = routing_service.optimize_route(
        store, collector_id="col-1", task_ids=["t1", "t2"], start=GeoPoint(latitude=30.0, longitude=31.0), now=NOW
    )

    assert route.tasks == ["t2"]
    assert result.task_ids == ["t2"]
    collected = store.get_task("t1")
    assert collected.status == TaskStatus.COLLECTED
    assert collected.route_id is None
    with pytest.raises(TaskFinalizedError):
        task_service.collect_payment(store, "t1", amount=10.0, method="cash", now=NOW)
    assert store.get_invoice("inv-t1").paid_amount == 10.0
    assert store.get_collector("col-1").stats.total_collected == 10.0


def test_optimize_rejects_only_finished_tasks(store: InMemoryStore):
    task_service.fail_task(store, "t1", "closed", now=NOW)

    with pytest.raises(ValidationError, match="no tasks to optimize"):
        routing_service.optimize_route(
            store, collector_id="col-1", task_ids=["t1"], start=GeoPoint(latitude=30.0, longitude=31.0), now=NOW
        )
    assert store.get_task("t1").status == TaskStatus.FAILED


def test_route_geojson_contains_paths_and_points(store: InMemoryStore):
    route, _ = routing_service.optimize_route(
        store,
        collector_id="col-1",
        task_ids=["t1", "t2", "t3"],
        start=GeoPoint(latitude=30.0, longitude=31.0),
        now=NOW,
    )
    route.add_gps_point(31.0, 30.0, now=NOW)
    route.add_gps_point(31.0, 30.005, now=NOW)

    collection = route_to_geojson(route, store.list_tasks(task_ids=route.tasks))

    kinds = [feature["properties"]["kind"] for feature in collection["features"]]
    assert kinds.count("start") == 1
    assert kinds.count("planned") == 1
    assert kinds.count("actual") == 1
    assert kinds.count("task") == 2
    planned = next(f for f in collection["features"] if f["properties"]["kind"] == "planned")
    assert [list(point) for point in planned["geometry"]["coordinates"]] == [[31.0, 30.0], [31.0, 30.01], [31.0, 30.02]]
    assert collection["properties"]["unlocated_task_ids"] == ["t3"]
