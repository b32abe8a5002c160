"""Supabase-backed persistence for tasks, collectors and routes.

PostgREST offers no multi-statement transactions, so every update is
guarded by a ``version`` column instead (optimistic concurrency) and the
in-process entity locks serialize writers within one worker.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Iterable, Iterator, Optional, Sequence

from ..errors import ConcurrencyError, DuplicateRouteError
from ..models.domain import (
    OPEN_TASK_STATUSES,
    CollectionTask,
    CollectorSettings,
    CollectorStats,
    Customer,
    FieldCollector,
    GeoPoint,
    GPSSample,
    Invoice,
    PaymentMethod,
    Route,
    RouteStats,
    RouteStatus,
    TaskLocation,
    TaskPriority,
    TaskStatus,
)

logger = logging.getLogger(__name__)

TASKS_TABLE = "collection_tasks"
COLLECTORS_TABLE = "field_collectors"
ROUTES_TABLE = "routes"
GPS_TABLE = "route_gps_points"
INVOICES_TABLE = "invoices"
CUSTOMERS_TABLE = "customers"


def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _parse_date(value: Any) -> date | None:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _location_to_row(location: TaskLocation | None) -> dict | None:
    if location is None:
        return None
    coordinates = [location.longitude, location.latitude] if location.has_location() else None
    return {"type": "Point", "coordinates": coordinates, "address": location.address}


def _location_from_row(value: dict | None) -> TaskLocation | None:
    if not value:
        return None
    coordinates = value.get("coordinates") or [None, None]
    return TaskLocation(longitude=coordinates[0], latitude=coordinates[1], address=value.get("address"))


def _point_to_row(point: GeoPoint | None) -> dict | None:
    if point is None:
        return None
    return {"type": "Point", "coordinates": point.coordinates, "address": point.address}


def _point_from_row(value: dict | None) -> GeoPoint | None:
    if not value or not value.get("coordinates"):
        return None
    lng, lat = value["coordinates"]
    return GeoPoint(latitude=lat, longitude=lng, address=value.get("address"))


def task_to_row(task: CollectionTask) -> dict:
    return {
        "id": task.task_id,
        "collector_id": task.collector_id,
        "customer_id": task.customer_id,
        "invoice_id": task.invoice_id,
        "tenant_id": task.tenant_id,
        "amount": task.amount,
        "due_date": _iso(task.due_date),
        "priority": task.priority.value,
        "status": task.status.value,
        "location": _location_to_row(task.location),
        "visited_at": _iso(task.visited_at),
        "visit_duration": task.visit_duration,
        "travel_distance": task.travel_distance,
        "collected_amount": task.collected_amount,
        "collected_at": _iso(task.collected_at),
        "payment_method": task.payment_method.value if task.payment_method else None,
        "signature": task.signature,
        "receipt_photo": task.receipt_photo,
        "notes": task.notes,
        "skip_reason": task.skip_reason,
        "failure_reason": task.failure_reason,
        "route_id": task.route_id,
        "route_order": task.route_order,
        "assigned_by": task.assigned_by,
        "assigned_at": _iso(task.assigned_at),
        "synced_at": _iso(task.synced_at),
        "local_id": task.local_id,
        "created_at": _iso(task.created_at),
        "updated_at": _iso(task.updated_at),
        "version": task.version,
    }


def task_from_row(row: dict) -> CollectionTask:
    return CollectionTask(
        task_id=row["id"],
        collector_id=row["collector_id"],
        customer_id=row["customer_id"],
        invoice_id=row["invoice_id"],
        tenant_id=row["tenant_id"],
        amount=float(row["amount"]),
        due_date=_parse_date(row.get("due_date")),
        priority=TaskPriority(row.get("priority") or "medium"),
        status=TaskStatus(row.get("status") or "pending"),
        location=_location_from_row(row.get("location")),
        visited_at=_parse_datetime(row.get("visited_at")),
        visit_duration=row.get("visit_duration"),
        travel_distance=row.get("travel_distance"),
        collected_amount=row.get("collected_amount"),
        collected_at=_parse_datetime(row.get("collected_at")),
        payment_method=PaymentMethod(row["payment_method"]) if row.get("payment_method") else None,
        signature=row.get("signature"),
        receipt_photo=row.get("receipt_photo"),
        notes=row.get("notes"),
        skip_reason=row.get("skip_reason"),
        failure_reason=row.get("failure_reason"),
        route_id=row.get("route_id"),
        route_order=row.get("route_order"),
        assigned_by=row.get("assigned_by"),
        assigned_at=_parse_datetime(row.get("assigned_at")),
        synced_at=_parse_datetime(row.get("synced_at")),
        local_id=row.get("local_id"),
        created_at=_parse_datetime(row.get("created_at")),
        updated_at=_parse_datetime(row.get("updated_at")),
        version=int(row.get("version") or 0),
    )


def collector_to_row(collector: FieldCollector) -> dict:
    stats = collector.stats
    return {
        "id": collector.collector_id,
        "user_id": collector.user_id,
        "tenant_id": collector.tenant_id,
        "is_active": collector.is_active,
        "assigned_regions": list(collector.assigned_regions),
        "daily_target": collector.daily_target,
        "monthly_target": collector.monthly_target,
        "stats": {
            "total_collected": stats.total_collected,
            "total_visits": stats.total_visits,
            "successful_visits": stats.successful_visits,
            "failed_visits": stats.failed_visits,
            "skipped_visits": stats.skipped_visits,
            "total_distance": stats.total_distance,
            "avg_collection_time": stats.avg_collection_time,
            "last_active": _iso(stats.last_active),
        },
        "current_route_id": collector.current_route_id,
        "settings": {
            "auto_optimize_route": collector.settings.auto_optimize_route,
            "gps_tracking_enabled": collector.settings.gps_tracking_enabled,
            "notifications_enabled": collector.settings.notifications_enabled,
        },
        "created_at": _iso(collector.created_at),
        "updated_at": _iso(collector.updated_at),
        "version": collector.version,
    }


def collector_from_row(row: dict) -> FieldCollector:
    stats = dict(row.get("stats") or {})
    stats["last_active"] = _parse_datetime(stats.get("last_active"))
    return FieldCollector(
        collector_id=row["id"],
        user_id=row["user_id"],
        tenant_id=row["tenant_id"],
        is_active=bool(row.get("is_active", True)),
        assigned_regions=list(row.get("assigned_regions") or []),
        daily_target=float(row.get("daily_target") or 0.0),
        monthly_target=float(row.get("monthly_target") or 0.0),
        stats=CollectorStats(**stats),
        current_route_id=row.get("current_route_id"),
        settings=CollectorSettings(**(row.get("settings") or {})),
        created_at=_parse_datetime(row.get("created_at")),
        updated_at=_parse_datetime(row.get("updated_at")),
        version=int(row.get("version") or 0),
    )


def route_to_row(route: Route) -> dict:
    stats = route.stats
    return {
        "id": route.route_id,
        "collector_id": route.collector_id,
        "tenant_id": route.tenant_id,
        "date": _iso(route.date),
        "tasks": list(route.tasks),
        "optimized_order": list(route.optimized_order),
        "start_location": _point_to_row(route.start_location),
        "end_location": _point_to_row(route.end_location),
        "total_distance": route.total_distance,
        "estimated_duration": route.estimated_duration,
        "status": route.status.value,
        "started_at": _iso(route.started_at),
        "completed_at": _iso(route.completed_at),
        "stats": {
            "total_collected": stats.total_collected,
            "total_tasks": stats.total_tasks,
            "completed_tasks": stats.completed_tasks,
            "skipped_tasks": stats.skipped_tasks,
            "failed_tasks": stats.failed_tasks,
            "actual_distance": stats.actual_distance,
            "actual_duration": stats.actual_duration,
        },
        "optimized_by": route.optimized_by,
        "optimized_at": _iso(route.optimized_at),
        "notes": route.notes,
        "created_at": _iso(route.created_at),
        "updated_at": _iso(route.updated_at),
        "version": route.version,
    }


def route_from_row(row: dict, samples: list[GPSSample]) -> Route:
    return Route(
        route_id=row["id"],
        collector_id=row["collector_id"],
        tenant_id=row.get("tenant_id"),
        date=_parse_date(row["date"]),
        tasks=list(row.get("tasks") or []),
        optimized_order=list(row.get("optimized_order") or []),
        start_location=_point_from_row(row.get("start_location")),
        end_location=_point_from_row(row.get("end_location")),
        total_distance=float(row.get("total_distance") or 0.0),
        estimated_duration=float(row.get("estimated_duration") or 0.0),
        status=RouteStatus(row.get("status") or "planned"),
        actual_path=samples,
        started_at=_parse_datetime(row.get("started_at")),
        completed_at=_parse_datetime(row.get("completed_at")),
        stats=RouteStats(**(row.get("stats") or {})),
        optimized_by=row.get("optimized_by"),
        optimized_at=_parse_datetime(row.get("optimized_at")),
        notes=row.get("notes"),
        created_at=_parse_datetime(row.get("created_at")),
        updated_at=_parse_datetime(row.get("updated_at")),
        version=int(row.get("version") or 0),
    )


class SupabaseStore:
    """``CollectionStore`` backed by Supabase tables."""

    def __init__(self, client) -> None:
        self.client = client
        self._guard = threading.Lock()
        self._entity_locks: dict[tuple[str, str], threading.RLock] = defaultdict(threading.RLock)

    @contextmanager
    def lock(self, kind: str, entity_id: str) -> Iterator[None]:
        with self._guard:
            entity_lock = self._entity_locks[(kind, entity_id)]
        with entity_lock:
            yield

    @contextmanager
    def transaction(self) -> Iterator[None]:
        yield

    def _select_one(self, table: str, entity_id: str) -> dict | None:
        response = self.client.table(table).select("*").eq("id", entity_id).limit(1).execute()
        return response.data[0] if response.data else None

    def _update_versioned(self, table: str, kind: str, row: dict) -> dict:
        expected = row["version"]
        payload = {**row, "version": expected + 1}
        response = (
            self.client.table(table)
            .update(payload)
            .eq("id", row["id"])
            .eq("version", expected)
            .execute()
        )
        if not response.data:
            current = self._select_one(table, row["id"])
            actual = int(current.get("version") or 0) if current else -1
            raise ConcurrencyError(kind, row["id"], expected=expected, actual=actual)
        return payload

    # tasks

    def add_task(self, task: CollectionTask) -> CollectionTask:
        self.client.table(TASKS_TABLE).insert(task_to_row(task)).execute()
        return task

    def get_task(self, task_id: str) -> Optional[CollectionTask]:
        row = self._select_one(TASKS_TABLE, task_id)
        return task_from_row(row) if row else None

    def save_task(self, task: CollectionTask) -> CollectionTask:
        self._update_versioned(TASKS_TABLE, "task", task_to_row(task))
        task.version += 1
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
        query = self.client.table(TASKS_TABLE).select("*")
        if collector_id is not None:
            query = query.eq("collector_id", collector_id)
        if tenant_id is not None:
            query = query.eq("tenant_id", tenant_id)
        if task_ids is not None:
            if not task_ids:
                return []
            query = query.in_("id", list(task_ids))
        if statuses is not None:
            query = query.in_("status", [TaskStatus(s).value for s in statuses])
        if created_from is not None:
            query = query.gte("created_at", created_from.isoformat())
        if created_to is not None:
            query = query.lt("created_at", created_to.isoformat())
        response = query.execute()
        tasks = [task_from_row(row) for row in (response.data or [])]
        if task_ids is not None:
            # PostgREST returns table order; callers rely on the requested order
            position = {task_id: index for index, task_id in enumerate(task_ids)}
            tasks.sort(key=lambda task: position.get(task.task_id, len(position)))
        return tasks

    def tasks_near(self, lat: float, lng: float, radius_m: float) -> list[tuple[CollectionTask, float]]:
        # Uses the collection_tasks_near() SQL function over the PostGIS index.
        response = self.client.rpc(
            "collection_tasks_near", {"lat": lat, "lng": lng, "radius_m": radius_m}
        ).execute()
        rows = response.data or []
        return [(task_from_row(row), float(row.get("distance_m") or 0.0)) for row in rows]

    def assign_route(self, task_orders: dict[str, Optional[int]], route_id: str) -> int:
        # terminal rows are filtered out by the status condition
        open_statuses = [status.value for status in OPEN_TASK_STATUSES]
        updated = 0
        for task_id, order in task_orders.items():
            response = (
                self.client.table(TASKS_TABLE)
                .update({"route_id": route_id, "route_order": order, "status": TaskStatus.ASSIGNED.value})
                .eq("id", task_id)
                .in_("status", open_statuses)
                .execute()
            )
            updated += len(response.data or [])
        if updated != len(task_orders):
            logger.warning(f"Route {route_id}: stamped {updated} of {len(task_orders)} tasks")
        return updated

    # collectors

    def add_collector(self, collector: FieldCollector) -> FieldCollector:
        self.client.table(COLLECTORS_TABLE).insert(collector_to_row(collector)).execute()
        return collector

    def get_collector(self, collector_id: str) -> Optional[FieldCollector]:
        row = self._select_one(COLLECTORS_TABLE, collector_id)
        return collector_from_row(row) if row else None

    def save_collector(self, collector: FieldCollector) -> FieldCollector:
        self._update_versioned(COLLECTORS_TABLE, "collector", collector_to_row(collector))
        collector.version += 1
        return collector

    def list_collectors(self, tenant_id: Optional[str] = None) -> list[FieldCollector]:
        query = self.client.table(COLLECTORS_TABLE).select("*")
        if tenant_id is not None:
            query = query.eq("tenant_id", tenant_id)
        response = query.order("created_at", desc=True).execute()
        return [collector_from_row(row) for row in (response.data or [])]

    # routes

    def add_route(self, route: Route) -> Route:
        if self.find_route(route.collector_id, route.date) is not None:
            raise DuplicateRouteError(f"Collector {route.collector_id} already has a route for {route.date}.")
        self.client.table(ROUTES_TABLE).insert(route_to_row(route)).execute()
        for sample in route.actual_path:
            self.append_gps_sample(route.route_id, sample)
        return route

    def get_route(self, route_id: str) -> Optional[Route]:
        row = self._select_one(ROUTES_TABLE, route_id)
        return route_from_row(row, self._load_samples(route_id)) if row else None

    def save_route(self, route: Route) -> Route:
        self._update_versioned(ROUTES_TABLE, "route", route_to_row(route))
        route.version += 1
        return route

    def find_route(self, collector_id: str, day: date) -> Optional[Route]:
        response = (
            self.client.table(ROUTES_TABLE)
            .select("*")
            .eq("collector_id", collector_id)
            .eq("date", day.isoformat())
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        row = response.data[0]
        return route_from_row(row, self._load_samples(row["id"]))

    def append_gps_sample(self, route_id: str, sample: GPSSample) -> None:
        self.client.table(GPS_TABLE).insert(
            {
                "route_id": route_id,
                "longitude": sample.longitude,
                "latitude": sample.latitude,
                "timestamp": _iso(sample.timestamp),
                "accuracy": sample.accuracy,
            }
        ).execute()

    def _load_samples(self, route_id: str) -> list[GPSSample]:
        response = (
            self.client.table(GPS_TABLE)
            .select("*")
            .eq("route_id", route_id)
            .order("timestamp")
            .execute()
        )
        return [
            GPSSample(
                longitude=float(row["longitude"]),
                latitude=float(row["latitude"]),
                timestamp=_parse_datetime(row["timestamp"]),
                accuracy=row.get("accuracy"),
            )
            for row in (response.data or [])
        ]

    # invoices and customers

    def add_invoice(self, invoice: Invoice) -> Invoice:
        self.client.table(INVOICES_TABLE).insert(_invoice_to_row(invoice)).execute()
        return invoice

    def get_invoice(self, invoice_id: str) -> Optional[Invoice]:
        row = self._select_one(INVOICES_TABLE, invoice_id)
        return _invoice_from_row(row) if row else None

    def save_invoice(self, invoice: Invoice) -> Invoice:
        row = _invoice_to_row(invoice)
        self.client.table(INVOICES_TABLE).update(
            {"paid_amount": row["paid_amount"], "status": row["status"]}
        ).eq("id", invoice.invoice_id).execute()
        return invoice

    def list_invoices(
        self,
        *,
        customer_ids: Sequence[str],
        tenant_id: Optional[str] = None,
        statuses: Optional[Iterable[str]] = None,
    ) -> list[Invoice]:
        if not customer_ids:
            return []
        query = self.client.table(INVOICES_TABLE).select("*").in_("customer_id", list(customer_ids))
        if tenant_id is not None:
            query = query.eq("tenant_id", tenant_id)
        if statuses is not None:
            query = query.in_("status", list(statuses))
        response = query.execute()
        return [_invoice_from_row(row) for row in (response.data or [])]

    def add_customer(self, customer: Customer) -> Customer:
        self.client.table(CUSTOMERS_TABLE).insert(
            {
                "id": customer.customer_id,
                "tenant_id": customer.tenant_id,
                "name": customer.name,
                "location": _location_to_row(customer.location),
            }
        ).execute()
        return customer

    def list_customers(self, customer_ids: Sequence[str], tenant_id: Optional[str] = None) -> list[Customer]:
        if not customer_ids:
            return []
        query = self.client.table(CUSTOMERS_TABLE).select("*").in_("id", list(customer_ids))
        if tenant_id is not None:
            query = query.eq("tenant_id", tenant_id)
        response = query.execute()
        return [
            Customer(
                customer_id=row["id"],
                tenant_id=row["tenant_id"],
                name=row.get("name") or "",
                location=_location_from_row(row.get("location")),
            )
            for row in (response.data or [])
        ]


def _invoice_to_row(invoice: Invoice) -> dict:
    return {
        "id": invoice.invoice_id,
        "customer_id": invoice.customer_id,
        "tenant_id": invoice.tenant_id,
        "total_amount": invoice.total_amount,
        "paid_amount": invoice.paid_amount,
        "due_date": _iso(invoice.due_date),
        "status": invoice.status,
    }


def _invoice_from_row(row: dict) -> Invoice:
    return Invoice(
        invoice_id=row["id"],
        customer_id=row["customer_id"],
        tenant_id=row["tenant_id"],
        total_amount=float(row.get("total_amount") or 0.0),
        paid_amount=float(row.get("paid_amount") or 0.0),
        due_date=_parse_date(row.get("due_date")),
        status=row.get("status") or "pending",
    )
