import threading
from datetime import date, datetime, timedelta, timezone

import pytest

from fieldops.errors import ConcurrencyError, InvalidAmountError, NotFoundError, TaskFinalizedError
from fieldops.models.domain import (
    CollectionTask,
    Customer,
    FieldCollector,
    GeoPoint,
    Invoice,
    TaskLocation,
    TaskPriority,
    TaskStatus,
)
from fieldops.persistence.store import InMemoryStore
from fieldops.services.collectors import service as collector_service
from fieldops.services.geospatial import haversine_m
from fieldops.services.invoicing import StoreInvoiceGateway
from fieldops.services.routing import service as route_service
from fieldops.services.routing.optimizer import create_optimized_route
from fieldops.services.tasks import service as task_service
from fieldops.services.tasks.assignment import assign_tasks

NOW = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


def _task(tid: str, amount: float = 50.0, **overrides) -> CollectionTask:
    values = dict(
        task_id=tid,
        collector_id="col-1",
        customer_id=f"cust-{tid}",
        invoice_id=f"inv-{tid}",
        tenant_id="tenant-1",
        amount=amount,
        status=TaskStatus.ASSIGNED,
        location=TaskLocation(longitude=31.0, latitude=30.01, address="Main St"),
        created_at=NOW,
    )
    values.update(overrides)
    return CollectionTask(**values)


@pytest.fixture
def store() -> InMemoryStore:
    store = InMemoryStore()
    store.add_collector(
        FieldCollector(user_id="user-1", tenant_id="tenant-1", collector_id="col-1", daily_target=100.0)
    )
    return store


def test_collect_updates_invoice_collector_and_route(store: InMemoryStore):
    tasks = [_task("t1"), _task("t2")]
    for task in tasks:
        store.add_task(task)
        store.add_invoice(Invoice(task.invoice_id, task.customer_id, "tenant-1", total_amount=80.0, paid_amount=30.0))
    route, _ = create_optimized_route(store, "col-1", tasks, GeoPoint(latitude=30.0, longitude=31.0), now=NOW)

    result = task_service.collect_payment(store, "t1", amount=50.0, method="cash", now=NOW)

    assert result.reconciliation_errors == []
    assert result.task.status == TaskStatus.COLLECTED
    assert store.get_invoice("inv-t1").paid_amount == 80.0
    assert store.get_invoice("inv-t1").status == "paid"
    assert store.get_collector("col-1").stats.total_collected == 50.0
    assert store.get_route(route.route_id).stats.completed_tasks == 1
    assert result.route.stats.total_collected == 50.0


def test_partial_payment_marks_invoice_partially_paid(store: InMemoryStore):
    store.add_task(_task("t1"))
    store.add_invoice(Invoice("inv-t1", "cust-t1", "tenant-1", total_amount=50.0))

    result = task_service.collect_payment(store, "t1", amount=20.0, method="card", now=NOW)

    assert result.invoice.status == "partially_paid"
    assert result.invoice.paid_amount == 20.0


def test_missing_invoice_is_reported_but_collection_kept(store: InMemoryStore):
    store.add_task(_task("t1"))

    result = task_service.collect_payment(store, "t1", amount=10.0, method="cash", now=NOW)

    assert result.partial
    assert "inv-t1" in result.reconciliation_errors[0]
    assert store.get_task("t1").status == TaskStatus.COLLECTED
    assert store.get_collector("col-1").stats.successful_visits == 1


def test_missing_collector_and_route_are_reported(store: InMemoryStore):
    store.add_task(_task("t1", collector_id="ghost", route_id="gone"))

    result = task_service.skip_task(store, "t1", "closed", now=NOW)

    assert result.task.status == TaskStatus.SKIPPED
    assert len(result.reconciliation_errors) == 2
    assert result.collector is None
    assert result.route is None


def test_over_amount_collect_changes_nothing(store: InMemoryStore):
    store.add_task(_task("t1", amount=50.0))
    store.add_invoice(Invoice("inv-t1", "cust-t1", "tenant-1", total_amount=50.0))

    with pytest.raises(InvalidAmountError):
        task_service.collect_payment(store, "t1", amount=60.0, method="cash", now=NOW)

    task = store.get_task("t1")
    assert task.status == TaskStatus.ASSIGNED
    assert task.version == 0
    assert store.get_invoice("inv-t1").paid_amount == 0.0
    assert store.get_collector("col-1").stats.total_visits == 0


def test_terminal_task_is_not_transitioned_again(store: InMemoryStore):
    store.add_task(_task("t1"))
    task_service.fail_task(store, "t1", "unreachable", now=NOW)

    with pytest.raises(TaskFinalizedError):
        task_service.visit_task(store, "t1", now=NOW)

    assert store.get_collector("col-1").stats.failed_visits == 1


def test_failed_secondary_write_rolls_back_transition(store: InMemoryStore, monkeypatch: pytest.MonkeyPatch):
    store.add_task(_task("t1"))

    def stale_save(collector):
        raise ConcurrencyError("collector", collector.collector_id, expected=0, actual=1)

    monkeypatch.setattr(store, "save_collector", stale_save)

    with pytest.raises(ConcurrencyError):
        task_service.skip_task(store, "t1", "closed", now=NOW)

    assert store.get_task("t1").status == TaskStatus.ASSIGNED


def test_collector_conflict_is_retried_on_fresh_copy(store: InMemoryStore, monkeypatch: pytest.MonkeyPatch):
    store.add_task(_task("t1"))
    save = store.save_collector
    attempts = []

    def save_after_one_conflict(collector):
        attempts.append(collector.version)
        if len(attempts) == 1:
            raise ConcurrencyError("collector", collector.collector_id, expected=0, actual=1)
        return save(collector)

    monkeypatch.setattr(store, "save_collector", save_after_one_conflict)

    result = task_service.fail_task(store, "t1", "closed", now=NOW)

    assert len(attempts) == 2
    assert result.collector.stats.failed_visits == 1
    assert store.get_collector("col-1").stats.failed_visits == 1


def test_invoice_payment_runs_outside_store_transaction(store: InMemoryStore):
    store.add_task(_task("t1"))
    store.add_invoice(Invoice("inv-t1", "cust-t1", "tenant-1", total_amount=50.0))

    class SlowGateway:
        def __init__(self) -> None:
            self.keys = []
            self.reader_finished = False

        def record_payment(self, invoice_id, amount, *, idempotency_key=None):
            self.keys.append(idempotency_key)
            reader = threading.Thread(target=store.get_collector, args=("col-1",))
            reader.start()
            reader.join(timeout=2)
            self.reader_finished = not reader.is_alive()
            return StoreInvoiceGateway(store).record_payment(invoice_id, amount)

    gateway = SlowGateway()
    result = task_service.collect_payment(store, "t1", amount=50.0, method="cash", invoices=gateway, now=NOW)

    assert gateway.reader_finished
    assert gateway.keys == ["t1"]
    assert result.invoice.status == "paid"
    assert result.collector.stats.total_collected == 50.0


def test_stale_task_write_is_rejected(store: InMemoryStore):
    store.add_task(_task("t1"))
    first = store.get_task("t1")
    second = store.get_task("t1")

    first.visit(NOW)
    store.save_task(first)
    second.skip("late", NOW)

    with pytest.raises(ConcurrencyError):
        store.save_task(second)
    assert store.get_task("t1").status == TaskStatus.VISITED


def test_unknown_task_raises_not_found(store: InMemoryStore):
    with pytest.raises(NotFoundError):
        task_service.visit_task(store, "missing")


def test_today_tasks_sorted_by_priority_then_due_date(store: InMemoryStore):
    store.add_task(_task("low", priority=TaskPriority.LOW, due_date=date(2025, 3, 1)))
    store.add_task(_task("urgent-late", priority=TaskPriority.URGENT, due_date=date(2025, 3, 9)))
    store.add_task(_task("urgent-soon", priority=TaskPriority.URGENT, due_date=date(2025, 3, 2)))
    store.add_task(_task("yesterday", created_at=NOW - timedelta(days=1)))
    store.add_task(_task("done", status=TaskStatus.COLLECTED))

    tasks = task_service.list_today_tasks(store, "col-1", now=NOW)

    assert [task.task_id for task in tasks] == ["urgent-soon", "urgent-late", "low"]


def test_tasks_near_sorted_by_distance(store: InMemoryStore):
    store.add_task(_task("far", location=TaskLocation(longitude=31.0, latitude=30.015)))
    store.add_task(_task("near", location=TaskLocation(longitude=31.0, latitude=30.001)))
    store.add_task(_task("outside", location=TaskLocation(longitude=31.5, latitude=30.5)))
    store.add_task(_task("nowhere", location=None))

    matches = task_service.tasks_near(store, 30.0, 31.0, 2_000)

    assert [task.task_id for task, _ in matches] == ["near", "far"]
    assert matches[0][1] < matches[1][1]


def test_assign_tasks_creates_one_task_per_outstanding_invoice(store: InMemoryStore):
    store.add_customer(Customer("c1", "tenant-1", "Shop 1", TaskLocation(longitude=31.0, latitude=30.0, address="A")))
    store.add_customer(Customer("c2", "tenant-1", "Shop 2", None))
    store.add_invoice(Invoice("i1", "c1", "tenant-1", total_amount=100.0, paid_amount=40.0, status="partially_paid"))
    store.add_invoice(Invoice("i2", "c1", "tenant-1", total_amount=30.0, paid_amount=30.0, status="pending"))
    store.add_invoice(Invoice("i3", "c2", "tenant-1", total_amount=20.0))
    store.add_invoice(Invoice("i4", "c1", "tenant-1", total_amount=15.0, status="paid"))
    store.add_invoice(Invoice("i5", "c1", "tenant-2", total_amount=15.0))

    created = assign_tasks(
        store, customer_ids=["c1", "c2", "c9"], collector_id="col-1", tenant_id="tenant-1", assigned_by="ops", now=NOW
    )

    by_invoice = {task.invoice_id: task for task in created}
    assert set(by_invoice) == {"i1", "i3"}
    assert by_invoice["i1"].amount == 60.0
    assert by_invoice["i1"].status == TaskStatus.ASSIGNED
    assert by_invoice["i1"].location.latitude == 30.0
    assert by_invoice["i3"].location is None
    assert by_invoice["i1"].assigned_by == "ops"
    assert len(store.list_tasks(collector_id="col-1")) == 2


def test_assign_tasks_requires_known_collector(store: InMemoryStore):
    with pytest.raises(NotFoundError):
        assign_tasks(store, customer_ids=["c1"], collector_id="nobody", tenant_id="tenant-1")


def test_today_performance_against_target(store: InMemoryStore):
    for tid, amount in (("a", 5.0), ("b", 10.0), ("c", 3.0)):
        store.add_task(_task(tid, amount=amount))
    store.add_task(_task("old", amount=99.0, created_at=NOW - timedelta(days=2)))
    task_service.collect_payment(store, "a", amount=5.0, method="cash", now=NOW)
    task_service.collect_payment(store, "b", amount=10.0, method="cash", now=NOW)

    performance = collector_service.get_today_performance(store, "col-1", now=NOW)

    assert performance.tasks_assigned == 3
    assert performance.tasks_completed == 2
    assert performance.amount_collected == 15.0
    assert performance.target_progress == 15.0


def test_register_collector_rejects_duplicate_user(store: InMemoryStore):
    collector = collector_service.register_collector(store, user_id="user-2", tenant_id="tenant-1")

    assert collector.stats.total_visits == 0
    with pytest.raises(ValueError):
        collector_service.register_collector(store, user_id="user-2", tenant_id="tenant-1")


def test_concurrent_gps_appends_keep_distance_consistent(store: InMemoryStore):
    tasks = [_task("t1")]
    store.add_task(tasks[0])
    route, _ = create_optimized_route(store, "col-1", tasks, GeoPoint(latitude=30.0, longitude=31.0), now=NOW)

    def worker(offset: int) -> None:
        for step in range(5):
            route_service.track_location(
                store, route.route_id, lat=30.0 + (offset * 5 + step) * 0.001, lng=31.0, now=NOW
            )

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    stored = store.get_route(route.route_id)
    path = stored.actual_path
    expected = sum(
        haversine_m(a.latitude, a.longitude, b.latitude, b.longitude) for a, b in zip(path, path[1:])
    )
    assert len(path) == 20
    assert stored.stats.actual_distance == pytest.approx(expected)
