"""Daily route endpoints: optimization, lifecycle, GPS tracking and map export."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...models.domain import GeoPoint
from ...persistence.provider import get_store
from ...persistence.store import CollectionStore
from ...schemas.collection import TaskModel
from ...schemas.routing import (
    GPSSampleModel,
    OptimizeRequest,
    OptimizeResponse,
    RouteModel,
    RouteStopModel,
    TodayRouteResponse,
    TrackRequest,
    TrackResponse,
)
from ...services.routing import service as route_service
from ..errors import translate_errors

router = APIRouter(prefix="/collection/routes", tags=["routes"])


@router.get("/today", response_model=TodayRouteResponse, status_code=status.HTTP_200_OK)
def today_route(
    collector_id: str = Query(..., description="Collector whose route to load"),
    store: CollectionStore = Depends(get_store),
) -> TodayRouteResponse:
    with translate_errors("load today's route"):
        route = route_service.get_today_route(store, collector_id)
        if route is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"No route for collector {collector_id} today",
            )
        tasks = route_service.route_tasks(store, route)
        order = {task_id: index for index, task_id in enumerate(route.optimized_order)}
        # unsequenced tasks go last, in route order
        tasks.sort(key=lambda task: order.get(task.task_id, len(order)))
        return TodayRouteResponse(
            route=RouteModel.model_validate(route),
            tasks=[TaskModel.model_validate(task) for task in tasks],
        )


@router.post("/optimize", response_model=OptimizeResponse, status_code=status.HTTP_200_OK)
def optimize(payload: OptimizeRequest, store: CollectionStore = Depends(get_store)) -> OptimizeResponse:
    with translate_errors("optimize route"):
        start = GeoPoint(
            latitude=payload.start_location.latitude,
            longitude=payload.start_location.longitude,
            address=payload.start_location.address,
        )
        route, result = route_service.optimize_route(
            store,
            collector_id=payload.collector_id,
            task_ids=payload.task_ids,
            start=start,
            persist=payload.persist,
            notes=payload.notes,
        )
        return OptimizeResponse(
            route=RouteModel.model_validate(route),
            stops=[RouteStopModel.model_validate(stop) for stop in result.stops],
            excluded_task_ids=result.excluded_task_ids,
        )


@router.post("/track", response_model=TrackResponse, status_code=status.HTTP_200_OK)
def track(payload: TrackRequest, store: CollectionStore = Depends(get_store)) -> TrackResponse:
    with translate_errors("record GPS point"):
        route, sample = route_service.track_location(
            store,
            payload.route_id,
            lat=payload.latitude,
            lng=payload.longitude,
            accuracy=payload.accuracy,
        )
        return TrackResponse(
            route_id=route.route_id,
            sample=GPSSampleModel.model_validate(sample),
            actual_distance=route.stats.actual_distance,
            samples=len(route.actual_path),
        )


@router.post("/{route_id}/start", response_model=RouteModel, status_code=status.HTTP_200_OK)
def start(route_id: str, store: CollectionStore = Depends(get_store)) -> RouteModel:
    with translate_errors("start route"):
        return RouteModel.model_validate(route_service.start_route(store, route_id))


@router.post("/{route_id}/complete", response_model=RouteModel, status_code=status.HTTP_200_OK)
def complete(route_id: str, store: CollectionStore = Depends(get_store)) -> RouteModel:
    with translate_errors("complete route"):
        return RouteModel.model_validate(route_service.complete_route(store, route_id))


@router.post("/{route_id}/cancel", response_model=RouteModel, status_code=status.HTTP_200_OK)
def cancel(route_id: str, store: CollectionStore = Depends(get_store)) -> RouteModel:
    with translate_errors("cancel route"):
        return RouteModel.model_validate(route_service.cancel_route(store, route_id))


@router.post("/{route_id}/reconcile", response_model=RouteModel, status_code=status.HTTP_200_OK)
def reconcile(route_id: str, store: CollectionStore = Depends(get_store)) -> RouteModel:
    """Recompute route stats from the current state of its tasks."""
    with translate_errors("reconcile route"):
        return RouteModel.model_validate(route_service.reconcile_route(store, route_id))


@router.get("/{route_id}/geojson", status_code=status.HTTP_200_OK)
def route_geojson(route_id: str, store: CollectionStore = Depends(get_store)) -> dict:
    """Planned path, GPS trail and task points as a GeoJSON FeatureCollection."""
    with translate_errors("build route map"):
        return route_service.route_map(store, route_id)
