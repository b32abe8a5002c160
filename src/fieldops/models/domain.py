"""Domain models for collection tasks, field collectors and daily routes."""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Iterable, Optional

from ..errors import InvalidAmountError, RouteStateError, TaskFinalizedError, ValidationError
from ..services.geospatial import haversine_m, validate_coordinates
from .events import RouteCompleted, TaskCollected, TaskFailed, TaskSkipped, TaskVisited


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class TaskStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in-progress"
    VISITED = "visited"
    COLLECTED = "collected"
    SKIPPED = "skipped"
    FAILED = "failed"


TERMINAL_TASK_STATUSES = frozenset({TaskStatus.COLLECTED, TaskStatus.SKIPPED, TaskStatus.FAILED})
OPEN_TASK_STATUSES = frozenset(
    {TaskStatus.PENDING, TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS, TaskStatus.VISITED}
)


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    TaskPriority.LOW: 0,
    TaskPriority.MEDIUM: 1,
    TaskPriority.HIGH: 2,
    TaskPriority.URGENT: 3,
}


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    MOBILE_WALLET = "mobile_wallet"


class RouteStatus(str, Enum):
    PLANNED = "planned"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class GeoPoint:
    """A latitude/longitude pair with an optional label."""

    latitude: float
    longitude: float
    address: Optional[str] = None

    @property
    def coordinates(self) -> list[float]:
        """GeoJSON ordered ``[lng, lat]``."""
        return [self.longitude, self.latitude]


@dataclass(slots=True)
class TaskLocation:
    """Customer location attached to a task. Coordinates may be missing."""

    longitude: Optional[float] = None
    latitude: Optional[float] = None
    address: Optional[str] = None

    def has_location(self) -> bool:
        return self.longitude is not None and self.latitude is not None

    def as_point(self) -> Optional[GeoPoint]:
        if not self.has_location():
            return None
        return GeoPoint(latitude=self.latitude, longitude=self.longitude, address=self.address)


@dataclass(slots=True)
class Customer:
    customer_id: str
    tenant_id: str
    name: str
    location: Optional[TaskLocation] = None


@dataclass(slots=True)
class Invoice:
    invoice_id: str
    customer_id: str
    tenant_id: str
    total_amount: float
    paid_amount: float = 0.0
    due_date: Optional[date] = None
    status: str = "pending"

    @property
    def outstanding(self) -> float:
        return self.total_amount - self.paid_amount


@dataclass(slots=True)
class CollectionTask:
    """One customer visit obligation derived from an outstanding invoice.

    State changes go through ``visit``/``collect``/``skip``/``fail``. Each
    returns the domain event describing the outcome; the caller is
    responsible for persisting the task and dispatching the event.
    """

    collector_id: str
    customer_id: str
    invoice_id: str
    tenant_id: str
    amount: float
    due_date: Optional[date] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    location: Optional[TaskLocation] = None
    task_id: str = field(default_factory=new_id)

    visited_at: Optional[datetime] = None
    visit_duration: Optional[int] = None
    travel_distance: Optional[float] = None

    collected_amount: Optional[float] = None
    collected_at: Optional[datetime] = None
    payment_method: Optional[PaymentMethod] = None
    signature: Optional[str] = None
    receipt_photo: Optional[str] = None

    notes: Optional[str] = None
    skip_reason: Optional[str] = None
    failure_reason: Optional[str] = None

    route_id: Optional[str] = None
    route_order: Optional[int] = None

    assigned_by: Optional[str] = None
    assigned_at: Optional[datetime] = None
    synced_at: Optional[datetime] = None
    local_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    version: int = 0

    def __post_init__(self) -> None:
        if not (self.amount > 0) or math.isinf(self.amount):
            raise ValidationError(f"Task amount must be positive, got {self.amount}.")
        for name in ("collector_id", "customer_id", "invoice_id", "tenant_id"):
            if not getattr(self, name):
                raise ValidationError(f"Task is missing required identifier '{name}'.")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TASK_STATUSES

    def has_location(self) -> bool:
        return self.location is not None and self.location.has_location()

    def _ensure_open(self) -> None:
        if self.is_terminal:
            raise TaskFinalizedError(self.task_id, self.status.value)

    def visit(self, now: Optional[datetime] = None) -> TaskVisited:
        # Re-visiting only re-stamps visited_at.
        self._ensure_open()
        now = now or utcnow()
        self.status = TaskStatus.VISITED
        self.visited_at = now
        self.updated_at = now
        return TaskVisited(task_id=self.task_id, collector_id=self.collector_id, occurred_at=now)

    def collect(
        self,
        amount: float,
        method: PaymentMethod | str,
        signature: Optional[str] = None,
        receipt_photo: Optional[str] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TaskCollected:
        self._ensure_open()
        if amount is None or not (0 < amount <= self.amount):
            raise InvalidAmountError(amount, self.amount)
        try:
            payment_method = PaymentMethod(method)
        except ValueError as exc:
            raise ValidationError(f"Unsupported payment method '{method}'.") from exc

        now = now or utcnow()
        self.status = TaskStatus.COLLECTED
        self.collected_amount = amount
        self.collected_at = now
        self.payment_method = payment_method
        if signature:
            self.signature = signature
        if receipt_photo:
            self.receipt_photo = receipt_photo
        if notes:
            self.notes = notes
        self.updated_at = now
        return TaskCollected(
            task_id=self.task_id,
            collector_id=self.collector_id,
            invoice_id=self.invoice_id,
            route_id=self.route_id,
            amount=amount,
            payment_method=payment_method.value,
            occurred_at=now,
            visited_at=self.visited_at,
        )

    def skip(self, reason: Optional[str] = None, now: Optional[datetime] = None) -> TaskSkipped:
        self._ensure_open()
        now = now or utcnow()
        self.status = TaskStatus.SKIPPED
        self.skip_reason = reason
        self.visited_at = now
        self.updated_at = now
        return TaskSkipped(
            task_id=self.task_id,
            collector_id=self.collector_id,
            route_id=self.route_id,
            reason=reason,
            occurred_at=now,
        )

    def fail(self, reason: Optional[str] = None, now: Optional[datetime] = None) -> TaskFailed:
        self._ensure_open()
        now = now or utcnow()
        self.status = TaskStatus.FAILED
        self.failure_reason = reason
        self.visited_at = now
        self.updated_at = now
        return TaskFailed(
            task_id=self.task_id,
            collector_id=self.collector_id,
            route_id=self.route_id,
            reason=reason,
            occurred_at=now,
        )


@dataclass(slots=True)
class CollectorStats:
    total_collected: float = 0.0
    total_visits: int = 0
    successful_visits: int = 0
    failed_visits: int = 0
    skipped_visits: int = 0
    total_distance: float = 0.0
    avg_collection_time: float = 0.0
    last_active: Optional[datetime] = None


@dataclass(slots=True)
class CollectorSettings:
    auto_optimize_route: bool = True
    gps_tracking_enabled: bool = True
    notifications_enabled: bool = True


@dataclass(slots=True)
class FieldCollector:
    """A field collector account and its running statistics.

    ``stats`` is maintained incrementally by the event handler in
    ``services.collectors.stats``; nothing else writes to it.
    """

    user_id: str
    tenant_id: str
    collector_id: str = field(default_factory=new_id)
    is_active: bool = True
    assigned_regions: list[str] = field(default_factory=list)
    daily_target: float = 0.0
    monthly_target: float = 0.0
    stats: CollectorStats = field(default_factory=CollectorStats)
    current_route_id: Optional[str] = None
    settings: CollectorSettings = field(default_factory=CollectorSettings)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    version: int = 0

    def success_rate(self) -> float:
        if self.stats.total_visits == 0:
            return 0.0
        return self.stats.successful_visits / self.stats.total_visits


@dataclass(slots=True)
class GPSSample:
    longitude: float
    latitude: float
    timestamp: datetime
    accuracy: Optional[float] = None

    @property
    def coordinates(self) -> list[float]:
        return [self.longitude, self.latitude]


@dataclass(slots=True)
class RouteStats:
    total_collected: float = 0.0
    total_tasks: int = 0
    completed_tasks: int = 0
    skipped_tasks: int = 0
    failed_tasks: int = 0
    actual_distance: float = 0.0
    actual_duration: int = 0


@dataclass(slots=True)
class Route:
    """A collector's tasks for one calendar day.

    ``tasks`` is the unordered set of work for the day. ``optimized_order``
    is the visiting sequence suggested by the optimizer and may omit tasks
    that carry no coordinates.
    """

    collector_id: str
    tenant_id: Optional[str]
    date: date
    route_id: str = field(default_factory=new_id)
    tasks: list[str] = field(default_factory=list)
    optimized_order: list[str] = field(default_factory=list)
    start_location: Optional[GeoPoint] = None
    end_location: Optional[GeoPoint] = None
    total_distance: float = 0.0
    estimated_duration: float = 0.0
    status: RouteStatus = RouteStatus.PLANNED
    actual_path: list[GPSSample] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    stats: RouteStats = field(default_factory=RouteStats)
    optimized_by: Optional[str] = None
    optimized_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    version: int = 0

    def start(self, now: Optional[datetime] = None) -> None:
        if self.status != RouteStatus.PLANNED:
            raise RouteStateError(f"Route {self.route_id} cannot start from status '{self.status.value}'.")
        now = now or utcnow()
        self.status = RouteStatus.IN_PROGRESS
        self.started_at = now
        self.updated_at = now

    def complete(self, now: Optional[datetime] = None) -> Optional[RouteCompleted]:
        """Mark the route completed.

        Returns the completion event, or ``None`` when the route was already
        completed (the second call changes nothing).
        """
        if self.status == RouteStatus.COMPLETED:
            return None
        if self.status == RouteStatus.CANCELLED:
            raise RouteStateError(f"Route {self.route_id} was cancelled and cannot be completed.")
        now = now or utcnow()
        self.status = RouteStatus.COMPLETED
        self.completed_at = now
        if self.started_at:
            self.stats.actual_duration = int((now - self.started_at).total_seconds() // 60)
        self.updated_at = now
        return RouteCompleted(
            route_id=self.route_id,
            collector_id=self.collector_id,
            actual_distance=self.stats.actual_distance,
            actual_duration=self.stats.actual_duration,
            occurred_at=now,
        )

    def cancel(self, now: Optional[datetime] = None) -> None:
        if self.status not in (RouteStatus.PLANNED, RouteStatus.IN_PROGRESS):
            raise RouteStateError(f"Route {self.route_id} cannot be cancelled from status '{self.status.value}'.")
        now = now or utcnow()
        self.status = RouteStatus.CANCELLED
        self.updated_at = now

    def add_gps_point(
        self,
        lng: float,
        lat: float,
        accuracy: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> GPSSample:
        """Append a breadcrumb and extend ``stats.actual_distance``.

        Callers must serialize appends per route; the segment is measured
        against whatever sample is last at the time of the call.
        """
        validate_coordinates(lat, lng)
        now = now or utcnow()
        sample = GPSSample(longitude=lng, latitude=lat, timestamp=now, accuracy=accuracy)
        if self.actual_path:
            previous = self.actual_path[-1]
            self.stats.actual_distance += haversine_m(previous.latitude, previous.longitude, lat, lng)
        self.actual_path.append(sample)
        self.updated_at = now
        return sample

    def reconcile_stats(self, tasks: Iterable[CollectionTask]) -> RouteStats:
        """Recompute task counters from the tasks' current statuses.

        Route stats are derived rather than incremented so that tasks edited
        outside the normal transitions are still reflected. GPS-derived
        fields are left untouched.
        """
        member_ids = set(self.tasks)
        members = [task for task in tasks if task.task_id in member_ids]
        collected = [task for task in members if task.status == TaskStatus.COLLECTED]
        self.stats.total_tasks = len(self.tasks)
        self.stats.completed_tasks = len(collected)
        self.stats.skipped_tasks = sum(1 for task in members if task.status == TaskStatus.SKIPPED)
        self.stats.failed_tasks = sum(1 for task in members if task.status == TaskStatus.FAILED)
        self.stats.total_collected = sum(task.collected_amount or 0.0 for task in collected)
        return self.stats
