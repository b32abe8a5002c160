"""Route lifecycle orchestration: optimize, track, start/complete, reconcile."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, Sequence

from ...config import settings
from ...errors import NotFoundError, ValidationError
from ...models.domain import OPEN_TASK_STATUSES, CollectionTask, GeoPoint, GPSSample, Route, utcnow
from ...persistence.filesystem import FileStorage
from ...persistence.store import CollectionStore
from ..collectors.stats import record_event
from ..export.geojson import route_to_geojson
from ..outputs.route_formatter import route_to_csv, route_to_json
from .models import OptimizationResult
from .optimizer import create_optimized_route

logger = logging.getLogger(__name__)


def get_route(store: CollectionStore, route_id: str) -> Route:
    route = store.get_route(route_id)
    if route is None:
        raise NotFoundError("route", route_id)
    return route


def route_tasks(store: CollectionStore, route: Route) -> list[CollectionTask]:
    return store.list_tasks(task_ids=route.tasks)


def get_today_route(
    store: CollectionStore, collector_id: str, now: Optional[datetime] = None
) -> Optional[Route]:
    """Return the collector's route for the current day, or None."""
    now = now or utcnow()
    return store.find_route(collector_id, now.date())


def optimize_route(
    store: CollectionStore,
    *,
    collector_id: str,
    task_ids: Sequence[str],
    start: GeoPoint,
    persist: bool = False,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> tuple[Route, OptimizationResult]:
    if not collector_id:
        raise ValidationError("collector_id is required.")
    if store.get_collector(collector_id) is None:
        raise NotFoundError("collector", collector_id)

    tasks = store.list_tasks(task_ids=list(task_ids), collector_id=collector_id, statuses=OPEN_TASK_STATUSES)
    if len(tasks) < len(set(task_ids)):
        found = {task.task_id for task in tasks}
        skipped = [task_id for task_id in task_ids if task_id not in found]
        logger.warning(f"Optimizing for {collector_id}: ignoring unknown, foreign or finished tasks {skipped}")
    if not tasks:
        raise ValidationError("no tasks to optimize")

    with store.lock("collector", collector_id):
        route, result = create_optimized_route(store, collector_id, tasks, start, notes=notes, now=now)

    if persist or settings.persist_route_exports:
        try:
            export_route(route, result, tasks)
        except OSError as exc:
            # exports are a convenience copy; the route itself is already stored
            logger.warning(f"Failed to write exports for route {route.route_id}: {exc}")

    return route, result


def export_route(route: Route, result: OptimizationResult, tasks: Sequence[CollectionTask]):
    storage = FileStorage()
    run_dir = storage.make_run_directory(prefix=f"route_{route.collector_id}", day=route.date)
    storage.write_json(run_dir / "summary.json", route_to_json(route, result.stops))
    storage.write_csv(run_dir / "stops.csv", route_to_csv(route, result.stops))
    storage.write_geojson(run_dir / "route.geojson", route_to_geojson(route, tasks))
    logger.info(f"Route {route.route_id} exported to {run_dir}")
    return run_dir


def update_route_stats(store: CollectionStore, route_id: str) -> Optional[Route]:
    """Recompute route stats from member tasks. Returns None for unknown routes."""
    route = store.get_route(route_id)
    if route is None:
        return None
    route.reconcile_stats(route_tasks(store, route))
    route.updated_at = utcnow()
    return store.save_route(route)


def reconcile_route(store: CollectionStore, route_id: str) -> Route:
    with store.lock("route", route_id):
        route = update_route_stats(store, route_id)
    if route is None:
        raise NotFoundError("route", route_id)
    return route


def start_route(store: CollectionStore, route_id: str, now: Optional[datetime] = None) -> Route:
    with store.lock("route", route_id):
        route = get_route(store, route_id)
        route.start(now)
        store.save_route(route)
    logger.info(f"Route {route_id} started")
    return route


def complete_route(store: CollectionStore, route_id: str, now: Optional[datetime] = None) -> Route:
    with store.lock("route", route_id):
        route = get_route(store, route_id)
        with store.lock("collector", route.collector_id), store.transaction():
            event = route.complete(now)
            if event is None:
                logger.info(f"Route {route_id} already completed")
                return route
            route.reconcile_stats(route_tasks(store, route))
            store.save_route(route)
            if record_event(store, route.collector_id, event) is None:
                logger.warning(f"Route {route_id} completed but collector {route.collector_id} not found")
    logger.info(f"Route {route_id} completed in {route.stats.actual_duration} min")
    return route


def cancel_route(store: CollectionStore, route_id: str, now: Optional[datetime] = None) -> Route:
    with store.lock("route", route_id):
        route = get_route(store, route_id)
        route.cancel(now)
        store.save_route(route)
    return route


def track_location(
    store: CollectionStore,
    route_id: str,
    *,
    lat: float,
    lng: float,
    accuracy: Optional[float] = None,
    now: Optional[datetime] = None,
) -> tuple[Route, GPSSample]:
    """Append a GPS breadcrumb to a route.

    Appends for one route are serialized by the route lock so each segment
    is measured against the sample stored immediately before it.
    """
    with store.lock("route", route_id):
        route = get_route(store, route_id)
        with store.transaction():
            sample = route.add_gps_point(lng, lat, accuracy, now)
            store.append_gps_sample(route_id, sample)
            store.save_route(route)
    return route, sample


def route_map(store: CollectionStore, route_id: str) -> dict:
    route = get_route(store, route_id)
    return route_to_geojson(route, route_tasks(store, route))
