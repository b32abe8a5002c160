"""Task workflows: visit, collect, skip and fail.

Each workflow takes the task, route and collector locks (in that order) and
one store transaction so the task transition, the collector stats update and
the route reconciliation land together. The invoice payment is recorded
after the transaction, still under the task lock. Invoice failures and
missing collectors/routes are reported on the result instead of aborting
the transition.
"""

from __future__ import annotations

import logging
from contextlib import nullcontext
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

import httpx

from ...errors import NotFoundError
from ...models.domain import (
    OPEN_TASK_STATUSES,
    CollectionTask,
    FieldCollector,
    Invoice,
    PaymentMethod,
    Route,
    utcnow,
)
from ...models.events import DomainEvent, TaskCollected, TaskVisited
from ...persistence.store import CollectionStore
from ..collectors.stats import record_event
from ..invoicing import InvoiceGateway, StoreInvoiceGateway
from ..routing.service import update_route_stats

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TransitionResult:
    task: CollectionTask
    event: DomainEvent
    collector: Optional[FieldCollector] = None
    route: Optional[Route] = None
    invoice: Optional[Invoice] = None
    reconciliation_errors: list[str] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.reconciliation_errors)


def get_task(store: CollectionStore, task_id: str) -> CollectionTask:
    task = store.get_task(task_id)
    if task is None:
        raise NotFoundError("task", task_id)
    return task


def day_bounds(now: datetime) -> tuple[datetime, datetime]:
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def list_today_tasks(
    store: CollectionStore, collector_id: str, now: Optional[datetime] = None
) -> list[CollectionTask]:
    """Open tasks created today, most urgent first, then earliest due."""
    start, end = day_bounds(now or utcnow())
    tasks = store.list_tasks(
        collector_id=collector_id,
        statuses=OPEN_TASK_STATUSES,
        created_from=start,
        created_to=end,
    )
    tasks.sort(key=lambda t: (-t.priority.rank, t.due_date is None, t.due_date or datetime.max.date()))
    return tasks


def tasks_near(store: CollectionStore, lat: float, lng: float, radius_m: float) -> list[tuple[CollectionTask, float]]:
    return store.tasks_near(lat, lng, radius_m)


def _run_transition(
    store: CollectionStore,
    task_id: str,
    transition: Callable[[CollectionTask], DomainEvent],
    invoices: Optional[InvoiceGateway] = None,
) -> TransitionResult:
    with store.lock("task", task_id):
        task = get_task(store, task_id)
        route_lock = store.lock("route", task.route_id) if task.route_id else nullcontext()
        with route_lock, store.lock("collector", task.collector_id), store.transaction():
            event = transition(task)
            store.save_task(task)
            result = TransitionResult(task=task, event=event)

            result.collector = record_event(store, task.collector_id, event)
            if result.collector is None:
                _report(result, f"collector {task.collector_id} not found; stats not updated")

            if task.route_id and not isinstance(event, TaskVisited):
                route = update_route_stats(store, task.route_id)
                if route is None:
                    _report(result, f"route {task.route_id} not found; route stats not reconciled")
                result.route = route

        # outside the transaction: a slow invoicing service must not hold the store
        if isinstance(event, TaskCollected):
            _record_invoice_payment(store, event, invoices, result)

    if result.partial:
        logger.warning(f"Task {task_id} transition completed with reconciliation errors: {result.reconciliation_errors}")
    return result


def _record_invoice_payment(
    store: CollectionStore,
    event: TaskCollected,
    invoices: Optional[InvoiceGateway],
    result: TransitionResult,
) -> None:
    gateway = invoices or StoreInvoiceGateway(store)
    try:
        result.invoice = gateway.record_payment(event.invoice_id, event.amount, idempotency_key=event.task_id)
    except NotFoundError:
        _report(result, f"invoice {event.invoice_id} not found; payment of {event.amount} not recorded")
    except (httpx.HTTPError, ConnectionError) as exc:
        _report(result, f"invoice {event.invoice_id} update failed: {exc}")


def _report(result: TransitionResult, message: str) -> None:
    logger.warning(f"Task {result.task.task_id}: {message}")
    result.reconciliation_errors.append(message)


def visit_task(store: CollectionStore, task_id: str, now: Optional[datetime] = None) -> TransitionResult:
    return _run_transition(store, task_id, lambda task: task.visit(now))


def collect_payment(
    store: CollectionStore,
    task_id: str,
    *,
    amount: float,
    method: PaymentMethod | str,
    signature: Optional[str] = None,
    receipt_photo: Optional[str] = None,
    notes: Optional[str] = None,
    invoices: Optional[InvoiceGateway] = None,
    now: Optional[datetime] = None,
) -> TransitionResult:
    return _run_transition(
        store,
        task_id,
        lambda task: task.collect(amount, method, signature, receipt_photo, notes, now),
        invoices=invoices,
    )


def skip_task(
    store: CollectionStore, task_id: str, reason: Optional[str] = None, now: Optional[datetime] = None
) -> TransitionResult:
    return _run_transition(store, task_id, lambda task: task.skip(reason, now))


def fail_task(
    store: CollectionStore, task_id: str, reason: Optional[str] = None, now: Optional[datetime] = None
) -> TransitionResult:
    return _run_transition(store, task_id, lambda task: task.fail(reason, now))
