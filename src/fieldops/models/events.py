"""Domain events emitted by task and route transitions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union


@dataclass(frozen=True, slots=True)
class TaskVisited:
    task_id: str
    collector_id: str
    occurred_at: datetime


@dataclass(frozen=True, slots=True)
class TaskCollected:
    task_id: str
    collector_id: str
    invoice_id: str
    route_id: Optional[str]
    amount: float
    payment_method: str
    occurred_at: datetime
    visited_at: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class TaskSkipped:
    task_id: str
    collector_id: str
    route_id: Optional[str]
    reason: Optional[str]
    occurred_at: datetime


@dataclass(frozen=True, slots=True)
class TaskFailed:
    task_id: str
    collector_id: str
    route_id: Optional[str]
    reason: Optional[str]
    occurred_at: datetime


@dataclass(frozen=True, slots=True)
class RouteCompleted:
    route_id: str
    collector_id: str
    actual_distance: float
    actual_duration: int
    occurred_at: datetime


TaskOutcome = Union[TaskCollected, TaskSkipped, TaskFailed]
DomainEvent = Union[TaskVisited, TaskCollected, TaskSkipped, TaskFailed, RouteCompleted]
