"""Nearest-neighbor visit sequencing for a collector's daily tasks."""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Optional, Sequence

from ...config import settings
from ...models.domain import CollectionTask, GeoPoint, Route, TaskStatus, utcnow
from ...persistence.store import CollectionStore
from ..geospatial import haversine_m
from .models import OptimizationResult, RouteStop

ALGORITHM = "nearest-neighbor"

logger = logging.getLogger(__name__)


def nearest_neighbor(tasks: Sequence[CollectionTask], start: GeoPoint) -> list[CollectionTask]:
    """Greedy ordering: always visit the closest remaining located task.

    Tasks without coordinates are never placed; once only such tasks remain
    the loop stops. Ties keep the earlier task in input order.
    """
    remaining = list(tasks)
    optimized: list[CollectionTask] = []
    current_lat, current_lng = start.latitude, start.longitude

    while remaining:
        nearest_index: Optional[int] = None
        min_distance = math.inf
        for index, task in enumerate(remaining):
            if not task.has_location():
                continue
            distance = haversine_m(current_lat, current_lng, task.location.latitude, task.location.longitude)
            if distance < min_distance:
                min_distance = distance
                nearest_index = index

        if nearest_index is None:
            break
        nearest = remaining.pop(nearest_index)
        optimized.append(nearest)
        current_lat, current_lng = nearest.location.latitude, nearest.location.longitude

    return optimized


def estimate_route(
    order: Sequence[CollectionTask],
    start: GeoPoint,
    *,
    meters_per_minute: float | None = None,
    dwell_minutes: float | None = None,
) -> tuple[list[RouteStop], float, float]:
    """Return stops, total distance (m) and duration (min) for an ordering.

    Every stop contributes ``leg / meters_per_minute + dwell_minutes``; with
    the defaults (30 km/h, 10 minutes) that is ``leg / 500 + 10``.
    """
    speed = meters_per_minute if meters_per_minute is not None else settings.meters_per_minute
    dwell = dwell_minutes if dwell_minutes is not None else settings.dwell_minutes

    stops: list[RouteStop] = []
    total_distance = 0.0
    total_duration = 0.0
    current_lat, current_lng = start.latitude, start.longitude

    for sequence, task in enumerate(order, start=1):
        if not task.has_location():
            continue
        lat, lng = task.location.latitude, task.location.longitude
        leg = haversine_m(current_lat, current_lng, lat, lng)
        total_distance += leg
        total_duration += leg / speed
        stops.append(
            RouteStop(
                task_id=task.task_id,
                sequence=sequence,
                latitude=lat,
                longitude=lng,
                distance_from_prev_m=leg,
                arrival_min=total_duration,
            )
        )
        total_duration += dwell
        current_lat, current_lng = lat, lng

    return stops, total_distance, total_duration


def optimize(tasks: Sequence[CollectionTask], start: GeoPoint) -> OptimizationResult:
    order = nearest_neighbor(tasks, start)
    stops, total_distance, total_duration = estimate_route(order, start)
    placed = {task.task_id for task in order}
    excluded = [task.task_id for task in tasks if task.task_id not in placed]
    if excluded:
        logger.info(f"{len(excluded)} task(s) without coordinates left out of the optimized order")
    return OptimizationResult(
        order=order,
        stops=stops,
        total_distance_m=total_distance,
        estimated_duration_min=total_duration,
        excluded_task_ids=excluded,
    )


def create_optimized_route(
    store: CollectionStore,
    collector_id: str,
    tasks: Sequence[CollectionTask],
    start: GeoPoint,
    *,
    tenant_id: Optional[str] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> tuple[Route, OptimizationResult]:
    """Sequence ``tasks`` and persist them as the collector's route for today.

    An empty or fully locationless task list still produces a route, with an
    empty optimized order and zero estimates. Every open input task is
    stamped with the route, its position in the order and the ``assigned``
    status; finished tasks are left as they are.
    """
    now = now or utcnow()
    result = optimize(tasks, start)

    if start.address is None:
        start = GeoPoint(latitude=start.latitude, longitude=start.longitude, address=settings.default_start_address)

    route = Route(
        collector_id=collector_id,
        tenant_id=tenant_id or (tasks[0].tenant_id if tasks else None),
        date=now.date(),
        tasks=[task.task_id for task in tasks],
        optimized_order=result.task_ids,
        start_location=start,
        total_distance=round(result.total_distance_m),
        estimated_duration=round(result.estimated_duration_min),
        optimized_by=ALGORITHM,
        optimized_at=now,
        notes=notes,
        created_at=now,
        updated_at=now,
    )
    route.stats.total_tasks = len(tasks)

    positions = {task_id: index for index, task_id in enumerate(result.task_ids, start=1)}
    task_orders = {task.task_id: positions.get(task.task_id) for task in tasks}

    with store.transaction():
        store.add_route(route)
        store.assign_route(task_orders, route.route_id)
        collector = store.get_collector(collector_id)
        if collector is not None:
            collector.current_route_id = route.route_id
            store.save_collector(collector)
        else:
            logger.warning(f"Route {route.route_id} created for unknown collector {collector_id}")

    for task in tasks:
        if task.is_terminal:
            continue
        task.route_id = route.route_id
        task.route_order = task_orders[task.task_id]
        task.status = TaskStatus.ASSIGNED

    logger.info(
        f"Optimized route {route.route_id} for collector {collector_id}: "
        f"{len(result.order)}/{len(tasks)} stops, {route.total_distance:.0f} m, ~{route.estimated_duration:.0f} min"
    )
    return route, result
