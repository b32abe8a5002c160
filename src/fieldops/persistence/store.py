"""Persistence contract and the in-memory implementation."""

from __future__ import annotations

import copy
import threading
from collections import defaultdict
from contextlib import contextmanager
from datetime import date, datetime
from typing import Iterable, Iterator, Optional, Protocol, Sequence

from ..errors import ConcurrencyError, DuplicateRouteError
from ..models.domain import (
    CollectionTask,
    Customer,
    FieldCollector,
    GPSSample,
    Invoice,
    Route,
    TaskStatus,
)
from ..services.geospatial import haversine_m


class CollectionStore(Protocol):
    """Storage for tasks, collectors, routes and the invoice/customer views."""

    @contextmanager
    def lock(self, kind: str, entity_id: str) -> Iterator[None]: ...

    @contextmanager
    def transaction(self) -> Iterator[None]: ...

    def add_task(self, task: CollectionTask) -> CollectionTask: ...
    def get_task(self, task_id: str) -> Optional[CollectionTask]: ...
    def save_task(self, task: CollectionTask) -> CollectionTask: ...
    def list_tasks(
        self,
        *,
        collector_id: Optional[str] = None,
        task_ids: Optional[Sequence[str]] = None,
        statuses: Optional[Iterable[TaskStatus]] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
        tenant_id: Optional[str] = None,
    ) -> list[CollectionTask]: ...
    def tasks_near(self, lat: float, lng: float, radius_m: float) -> list[tuple[CollectionTask, float]]: ...
    def assign_route(self, task_orders: dict[str, Optional[int]], route_id: str) -> int: ...

    def add_collector(self, collector: FieldCollector) -> FieldCollector: ...
    def get_collector(self, collector_id: str) -> Optional[FieldCollector]: ...
    def save_collector(self, collector: FieldCollector) -> FieldCollector: ...
    def list_collectors(self, tenant_id: Optional[str] = None) -> list[FieldCollector]: ...

    def add_route(self, route: Route) -> Route: ...
    def get_route(self, route_id: str) -> Optional[Route]: ...
    def save_route(self, route: Route) -> Route: ...
    def find_route(self, collector_id: str, day: date) -> Optional[Route]: ...
    def append_gps_sample(self, route_id: str, sample: GPSSample) -> None: ...

    def add_invoice(self, invoice: Invoice) -> Invoice: ...
    def get_invoice(self, invoice_id: str) -> Optional[Invoice]: ...
    def save_invoice(self, invoice: Invoice) -> Invoice: ...
    def list_invoices(
        self,
        *,
        customer_ids: Sequence[str],
        tenant_id: Optional[str] = None,
        statuses: Optional[Iterable[str]] = None,
    ) -> list[Invoice]: ...

    def add_customer(self, customer: Customer) -> Customer: ...
    def list_customers(self, customer_ids: Sequence[str], tenant_id: Optional[str] = None) -> list[Customer]: ...


class InMemoryStore:
    """Thread-safe store keeping deep copies of every entity.

    Reads hand out copies, so callers mutate their own instance and must
    ``save_*`` it back. Saves compare the caller's ``version`` with the stored
    one and raise ``ConcurrencyError`` when they differ.
    """

    def __init__(self) -> None:
        self._guard = threading.RLock()
        self._entity_locks: dict[tuple[str, str], threading.RLock] = defaultdict(threading.RLock)
        self._tasks: dict[str, CollectionTask] = {}
        self._collectors: dict[str, FieldCollector] = {}
        self._routes: dict[str, Route] = {}
        self._gps: dict[str, list[GPSSample]] = defaultdict(list)
        self._invoices: dict[str, Invoice] = {}
        self._customers: dict[str, Customer] = {}

    @contextmanager
    def lock(self, kind: str, entity_id: str) -> Iterator[None]:
        with self._guard:
            entity_lock = self._entity_locks[(kind, entity_id)]
        with entity_lock:
            yield

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Apply every write inside the block, or none of them."""
        with self._guard:
            snapshot = copy.deepcopy(
                (self._tasks, self._collectors, self._routes, self._gps, self._invoices, self._customers)
            )
            try:
                yield
            except BaseException:
                (
                    self._tasks,
                    self._collectors,
                    self._routes,
                    self._gps,
                    self._invoices,
                    self._customers,
                ) = snapshot
                raise

    # tasks

    def add_task(self, task: CollectionTask) -> CollectionTask:
        with self._guard:
            self._tasks[task.task_id] = copy.deepcopy(task)
        return task

    def get_task(self, task_id: str) -> Optional[CollectionTask]:
        with self._guard:
            task = self._tasks.get(task_id)
            return copy.deepcopy(task) if task else None

    def save_task(self, task: CollectionTask) -> CollectionTask:
        with self._guard:
            self._check_version("task", task.task_id, self._tasks.get(task.task_id), task.version)
            task.version += 1
            self._tasks[task.task_id] = copy.deepcopy(task)
        return task

    def list_tasks(
        self,
        *,
        collector_id: Optional[str] = None,
        task_ids: Optional[Sequence[str]] = None,
        statuses: Optional[Iterable[TaskStatus]] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
        tenant_id: Optional[str] = None,
    ) -> list[CollectionTask]:
        status_set = set(statuses) if statuses is not None else None
        with self._guard:
            if task_ids is not None:
                candidates = [self._tasks[tid] for tid in task_ids if tid in self._tasks]
            else:
                candidates = list(self._tasks.values())
            return [
                copy.deepcopy(task)
                for task in candidates
                if (collector_id is None or task.collector_id == collector_id)
                and (tenant_id is None or task.tenant_id == tenant_id)
                and (status_set is None or task.status in status_set)
                and (created_from is None or task.created_at >= created_from)
                and (created_to is None or task.created_at < created_to)
            ]

    def tasks_near(self, lat: float, lng: float, radius_m: float) -> list[tuple[CollectionTask, float]]:
        with self._guard:
            matches: list[tuple[CollectionTask, float]] = []
            for task in self._tasks.values():
                if not task.has_location():
                    continue
                distance = haversine_m(lat, lng, task.location.latitude, task.location.longitude)
                if distance <= radius_m:
                    matches.append((copy.deepcopy(task), distance))
        matches.sort(key=lambda item: item[1])
        return matches

    def assign_route(self, task_orders: dict[str, Optional[int]], route_id: str) -> int:
        updated = 0
        with self._guard:
            for task_id, order in task_orders.items():
                task = self._tasks.get(task_id)
                # finished tasks keep their outcome and original route
                if task is None or task.is_terminal:
                    continue
                task.route_id = route_id
                task.route_order = order
                task.status = TaskStatus.ASSIGNED
                updated += 1
        return updated

    # collectors

    def add_collector(self, collector: FieldCollector) -> FieldCollector:
        with self._guard:
            self._collectors[collector.collector_id] = copy.deepcopy(collector)
        return collector

    def get_collector(self, collector_id: str) -> Optional[FieldCollector]:
        with self._guard:
            collector = self._collectors.get(collector_id)
            return copy.deepcopy(collector) if collector else None

    def save_collector(self, collector: FieldCollector) -> FieldCollector:
        with self._guard:
            self._check_version(
                "collector", collector.collector_id, self._collectors.get(collector.collector_id), collector.version
            )
            collector.version += 1
            self._collectors[collector.collector_id] = copy.deepcopy(collector)
        return collector

    def list_collectors(self, tenant_id: Optional[str] = None) -> list[FieldCollector]:
        with self._guard:
            collectors = [
                copy.deepcopy(c)
                for c in self._collectors.values()
                if tenant_id is None or c.tenant_id == tenant_id
            ]
        collectors.sort(key=lambda c: c.created_at, reverse=True)
        return collectors

    # routes

    def add_route(self, route: Route) -> Route:
        with self._guard:
            existing = self._find_route_unlocked(route.collector_id, route.date)
            if existing is not None:
                raise DuplicateRouteError(
                    f"Collector {route.collector_id} already has route {existing.route_id} for {route.date}."
                )
            stored = copy.deepcopy(route)
            self._gps[route.route_id] = list(stored.actual_path)
            stored.actual_path = []
            self._routes[route.route_id] = stored
        return route

    def get_route(self, route_id: str) -> Optional[Route]:
        with self._guard:
            route = self._routes.get(route_id)
            return self._hydrate(route) if route else None

    def save_route(self, route: Route) -> Route:
        with self._guard:
            self._check_version("route", route.route_id, self._routes.get(route.route_id), route.version)
            route.version += 1
            stored = copy.deepcopy(route)
            # breadcrumbs live in their own append-only series
            stored.actual_path = []
            self._routes[route.route_id] = stored
        return route

    def find_route(self, collector_id: str, day: date) -> Optional[Route]:
        with self._guard:
            route = self._find_route_unlocked(collector_id, day)
            return self._hydrate(route) if route else None

    def append_gps_sample(self, route_id: str, sample: GPSSample) -> None:
        with self._guard:
            self._gps[route_id].append(copy.deepcopy(sample))

    def _find_route_unlocked(self, collector_id: str, day: date) -> Optional[Route]:
        for route in self._routes.values():
            if route.collector_id == collector_id and route.date == day:
                return route
        return None

    def _hydrate(self, route: Route) -> Route:
        hydrated = copy.deepcopy(route)
        hydrated.actual_path = copy.deepcopy(self._gps.get(route.route_id, []))
        return hydrated

    # invoices and customers

    def add_invoice(self, invoice: Invoice) -> Invoice:
        with self._guard:
            self._invoices[invoice.invoice_id] = copy.deepcopy(invoice)
        return invoice

    def get_invoice(self, invoice_id: str) -> Optional[Invoice]:
        with self._guard:
            invoice = self._invoices.get(invoice_id)
            return copy.deepcopy(invoice) if invoice else None

    def save_invoice(self, invoice: Invoice) -> Invoice:
        with self._guard:
            self._invoices[invoice.invoice_id] = copy.deepcopy(invoice)
        return invoice

    def list_invoices(
        self,
        *,
        customer_ids: Sequence[str],
        tenant_id: Optional[str] = None,
        statuses: Optional[Iterable[str]] = None,
    ) -> list[Invoice]:
        id_set = set(customer_ids)
        status_set = set(statuses) if statuses is not None else None
        with self._guard:
            return [
                copy.deepcopy(invoice)
                for invoice in self._invoices.values()
                if invoice.customer_id in id_set
                and (tenant_id is None or invoice.tenant_id == tenant_id)
                and (status_set is None or invoice.status in status_set)
            ]

    def add_customer(self, customer: Customer) -> Customer:
        with self._guard:
            self._customers[customer.customer_id] = copy.deepcopy(customer)
        return customer

    def list_customers(self, customer_ids: Sequence[str], tenant_id: Optional[str] = None) -> list[Customer]:
        with self._guard:
            return [
                copy.deepcopy(self._customers[cid])
                for cid in customer_ids
                if cid in self._customers
                and (tenant_id is None or self._customers[cid].tenant_id == tenant_id)
            ]

    @staticmethod
    def _check_version(kind: str, entity_id: str, stored, version: int) -> None:
        if stored is not None and stored.version != version:
            raise ConcurrencyError(kind, entity_id, expected=version, actual=stored.version)
