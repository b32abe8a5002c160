"""Serializers for route outputs."""

from __future__ import annotations

import csv
import io
from dataclasses import asdict
from typing import Sequence

from ...models.domain import Route
from ..routing.models import RouteStop


def route_to_json(route: Route, stops: Sequence[RouteStop]) -> dict:
    return {
        "route_id": route.route_id,
        "collector_id": route.collector_id,
        "date": route.date.isoformat(),
        "status": route.status.value,
        "optimized_by": route.optimized_by,
        "optimized_at": route.optimized_at.isoformat() if route.optimized_at else None,
        "start_location": route.start_location.coordinates if route.start_location else None,
        "total_distance_m": route.total_distance,
        "estimated_duration_min": route.estimated_duration,
        "tasks": list(route.tasks),
        "optimized_order": list(route.optimized_order),
        "stats": asdict(route.stats),
        "stops": [asdict(stop) for stop in stops],
    }


def route_to_csv(route: Route, stops: Sequence[RouteStop]) -> str:
    buffer = io.StringIO()
    fieldnames = [
        "route_id",
        "sequence",
        "task_id",
        "latitude",
        "longitude",
        "distance_from_prev_m",
        "arrival_min",
        "total_distance_m",
        "estimated_duration_min",
    ]
    writer = csv.DictWriter(buffer, fieldnames=fieldnames)
    writer.writeheader()
    for stop in stops:
        writer.writerow(
            {
                "route_id": route.route_id,
                "sequence": stop.sequence,
                "task_id": stop.task_id,
                "latitude": stop.latitude,
                "longitude": stop.longitude,
                "distance_from_prev_m": round(stop.distance_from_prev_m, 1),
                "arrival_min": round(stop.arrival_min, 1),
                "total_distance_m": route.total_distance,
                "estimated_duration_min": route.estimated_duration,
            }
        )
    return buffer.getvalue()
