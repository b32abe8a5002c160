"""Collection task endpoints used by the collector app."""

from __future__ import annotations

from typing import Iterator, List

from fastapi import APIRouter, Depends, Query, status

from ...config import settings
from ...persistence.provider import get_store
from ...persistence.store import CollectionStore
from ...schemas.collection import (
    CollectorStatsModel,
    CollectRequest,
    InvoiceModel,
    NearbyTaskModel,
    ReasonRequest,
    TaskModel,
)
from ...schemas.routing import RouteStatsModel, TransitionResponse
from ...services.geospatial import validate_coordinates
from ...services.invoicing import InvoiceGateway, get_invoice_gateway
from ...services.tasks import service as task_service
from ..errors import translate_errors

router = APIRouter(prefix="/collection/tasks", tags=["tasks"])


def get_invoices(store: CollectionStore = Depends(get_store)) -> Iterator[InvoiceGateway]:
    gateway = get_invoice_gateway(store)
    try:
        yield gateway
    finally:
        close = getattr(gateway, "close", None)
        if close is not None:
            close()


def _transition_response(result: task_service.TransitionResult) -> TransitionResponse:
    return TransitionResponse(
        task=TaskModel.model_validate(result.task),
        collector_stats=CollectorStatsModel.model_validate(result.collector.stats) if result.collector else None,
        route_stats=RouteStatsModel.model_validate(result.route.stats) if result.route else None,
        invoice=InvoiceModel.model_validate(result.invoice) if result.invoice else None,
        reconciliation_errors=list(result.reconciliation_errors),
    )


@router.get("/today", response_model=List[TaskModel], status_code=status.HTTP_200_OK)
def today_tasks(
    collector_id: str = Query(..., description="Collector whose tasks to list"),
    store: CollectionStore = Depends(get_store),
) -> List[TaskModel]:
    """Open tasks created today, most urgent first."""
    with translate_errors("list today's tasks"):
        tasks = task_service.list_today_tasks(store, collector_id)
        return [TaskModel.model_validate(task) for task in tasks]


@router.get("/near", response_model=List[NearbyTaskModel], status_code=status.HTTP_200_OK)
def tasks_near(
    lat: float = Query(..., description="Latitude of the search centre"),
    lng: float = Query(..., description="Longitude of the search centre"),
    radius_m: float | None = Query(default=None, gt=0, description="Search radius in meters"),
    store: CollectionStore = Depends(get_store),
) -> List[NearbyTaskModel]:
    with translate_errors("find nearby tasks"):
        validate_coordinates(lat, lng)
        radius = radius_m or settings.default_near_radius_m
        return [
            NearbyTaskModel(distance_m=round(distance, 1), task=TaskModel.model_validate(task))
            for task, distance in task_service.tasks_near(store, lat, lng, radius)
        ]


@router.get("/{task_id}", response_model=TaskModel, status_code=status.HTTP_200_OK)
def get_task(task_id: str, store: CollectionStore = Depends(get_store)) -> TaskModel:
    with translate_errors("load task"):
        return TaskModel.model_validate(task_service.get_task(store, task_id))


@router.post("/{task_id}/visit", response_model=TransitionResponse, status_code=status.HTTP_200_OK)
def visit(task_id: str, store: CollectionStore = Depends(get_store)) -> TransitionResponse:
    with translate_errors("record visit"):
        return _transition_response(task_service.visit_task(store, task_id))


@router.post("/{task_id}/collect", response_model=TransitionResponse, status_code=status.HTTP_200_OK)
def collect(
    task_id: str,
    payload: CollectRequest,
    store: CollectionStore = Depends(get_store),
    invoices: InvoiceGateway = Depends(get_invoices),
) -> TransitionResponse:
    """Record a payment. Invoice or stats reconciliation problems are listed
    in ``reconciliation_errors``; the collection itself is kept."""
    with translate_errors("record collection"):
        result = task_service.collect_payment(
            store,
            task_id,
            amount=payload.amount,
            method=payload.payment_method,
            signature=payload.signature,
            receipt_photo=payload.receipt_photo,
            notes=payload.notes,
            invoices=invoices,
        )
        return _transition_response(result)


@router.post("/{task_id}/skip", response_model=TransitionResponse, status_code=status.HTTP_200_OK)
def skip(
    task_id: str,
    payload: ReasonRequest | None = None,
    store: CollectionStore = Depends(get_store),
) -> TransitionResponse:
    reason = payload.reason if payload else None
    with translate_errors("skip task"):
        return _transition_response(task_service.skip_task(store, task_id, reason))


@router.post("/{task_id}/fail", response_model=TransitionResponse, status_code=status.HTTP_200_OK)
def fail(
    task_id: str,
    payload: ReasonRequest | None = None,
    store: CollectionStore = Depends(get_store),
) -> TransitionResponse:
    reason = payload.reason if payload else None
    with translate_errors("mark task failed"):
        return _transition_response(task_service.fail_task(store, task_id, reason))
