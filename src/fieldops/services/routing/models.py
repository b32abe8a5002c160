"""Routing result models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from ...models.domain import CollectionTask


@dataclass(slots=True)
class RouteStop:
    task_id: str
    sequence: int
    latitude: float
    longitude: float
    distance_from_prev_m: float
    arrival_min: float


@dataclass(slots=True)
class OptimizationResult:
    order: List[CollectionTask]
    stops: List[RouteStop]
    total_distance_m: float
    estimated_duration_min: float
    excluded_task_ids: List[str] = field(default_factory=list)

    @property
    def task_ids(self) -> list[str]:
        return [task.task_id for task in self.order]
