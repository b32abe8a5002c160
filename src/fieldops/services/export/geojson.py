"""GeoJSON export of routes for map rendering."""

from __future__ import annotations

from typing import Any, Dict, List, Sequence

from shapely.geometry import LineString, Point, mapping

from ...models.domain import CollectionTask, Route

PLANNED_COLOR = "#13aae0"
ACTUAL_COLOR = "#e0003e"


def _feature(geometry, properties: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": "Feature", "geometry": mapping(geometry), "properties": properties}


def route_to_geojson(route: Route, tasks: Sequence[CollectionTask]) -> Dict[str, Any]:
    """Build a FeatureCollection with the planned path, the GPS trail and task points.

    Coordinates are emitted in GeoJSON ``[lng, lat]`` order. Tasks without
    coordinates are listed in the collection properties instead.
    """
    by_id = {task.task_id: task for task in tasks}
    features: List[Dict[str, Any]] = []

    planned: list[tuple[float, float]] = []
    if route.start_location is not None:
        planned.append((route.start_location.longitude, route.start_location.latitude))
        features.append(
            _feature(
                Point(route.start_location.longitude, route.start_location.latitude),
                {"kind": "start", "address": route.start_location.address},
            )
        )
    for task_id in route.optimized_order:
        task = by_id.get(task_id)
        if task is not None and task.has_location():
            planned.append((task.location.longitude, task.location.latitude))
    if len(planned) >= 2:
        features.append(
            _feature(
                LineString(planned),
                {
                    "kind": "planned",
                    "route_id": route.route_id,
                    "total_distance_m": route.total_distance,
                    "estimated_duration_min": route.estimated_duration,
                    "color": PLANNED_COLOR,
                },
            )
        )

    trail = [(sample.longitude, sample.latitude) for sample in route.actual_path]
    if len(trail) >= 2:
        features.append(
            _feature(
                LineString(trail),
                {
                    "kind": "actual",
                    "route_id": route.route_id,
                    "actual_distance_m": route.stats.actual_distance,
                    "samples": len(trail),
                    "color": ACTUAL_COLOR,
                },
            )
        )

    order_index = {task_id: index for index, task_id in enumerate(route.optimized_order, start=1)}
    unlocated: list[str] = []
    for task_id in route.tasks:
        task = by_id.get(task_id)
        if task is None or not task.has_location():
            unlocated.append(task_id)
            continue
        features.append(
            _feature(
                Point(task.location.longitude, task.location.latitude),
                {
                    "kind": "task",
                    "task_id": task.task_id,
                    "sequence": order_index.get(task_id),
                    "status": task.status.value,
                    "amount": task.amount,
                    "collected_amount": task.collected_amount,
                    "address": task.location.address,
                },
            )
        )

    return {
        "type": "FeatureCollection",
        "features": features,
        "properties": {
            "route_id": route.route_id,
            "collector_id": route.collector_id,
            "status": route.status.value,
            "optimized_order": list(route.optimized_order),
            "unlocated_task_ids": unlocated,
            "stats": {
                "total_collected": route.stats.total_collected,
                "total_tasks": route.stats.total_tasks,
                "completed_tasks": route.stats.completed_tasks,
                "skipped_tasks": route.stats.skipped_tasks,
                "failed_tasks": route.stats.failed_tasks,
                "actual_distance": route.stats.actual_distance,
                "actual_duration": route.stats.actual_duration,
            },
        },
    }
