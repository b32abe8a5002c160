"""Collector endpoints."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query, status

from ...persistence.provider import get_store
from ...persistence.store import CollectionStore
from ...schemas.collection import (
    AssignTasksRequest,
    AssignTasksResponse,
    CollectorCreateRequest,
    CollectorModel,
    CollectorStatsResponse,
    TaskModel,
    TodayPerformanceModel,
)
from ...services.collectors import service as collector_service
from ...services.invoicing import InvoiceGateway
from ...services.tasks.assignment import assign_tasks
from ..errors import translate_errors
from .tasks import get_invoices

router = APIRouter(prefix="/collection/collectors", tags=["collectors"])


@router.get("", response_model=List[CollectorModel], status_code=status.HTTP_200_OK)
def list_collectors(
    tenant_id: str | None = Query(default=None, description="Filter collectors by tenant"),
    store: CollectionStore = Depends(get_store),
) -> List[CollectorModel]:
    with translate_errors("list collectors"):
        return [
            CollectorModel.model_validate(collector)
            for collector in collector_service.list_collectors(store, tenant_id)
        ]


@router.post("", response_model=CollectorModel, status_code=status.HTTP_201_CREATED)
def create_collector(payload: CollectorCreateRequest, store: CollectionStore = Depends(get_store)) -> CollectorModel:
    with translate_errors("register collector"):
        collector = collector_service.register_collector(
            store,
            user_id=payload.user_id,
            tenant_id=payload.tenant_id,
            daily_target=payload.daily_target,
            monthly_target=payload.monthly_target,
            assigned_regions=payload.assigned_regions,
        )
        return CollectorModel.model_validate(collector)


@router.get("/{collector_id}/stats", response_model=CollectorStatsResponse, status_code=status.HTTP_200_OK)
def collector_stats(collector_id: str, store: CollectionStore = Depends(get_store)) -> CollectorStatsResponse:
    """Running totals plus today's progress against the daily target."""
    with translate_errors("load collector stats"):
        collector = collector_service.get_collector(store, collector_id)
        today = collector_service.get_today_performance(store, collector_id)
        return CollectorStatsResponse(
            collector=CollectorModel.model_validate(collector),
            success_rate=round(collector.success_rate(), 4),
            today=TodayPerformanceModel.model_validate(today),
        )


@router.post("/{collector_id}/assign", response_model=AssignTasksResponse, status_code=status.HTTP_201_CREATED)
def assign(
    collector_id: str,
    payload: AssignTasksRequest,
    store: CollectionStore = Depends(get_store),
    invoices: InvoiceGateway = Depends(get_invoices),
) -> AssignTasksResponse:
    """Create tasks for the customers' outstanding invoices."""
    with translate_errors("assign tasks"):
        tasks = assign_tasks(
            store,
            customer_ids=payload.customer_ids,
            collector_id=collector_id,
            tenant_id=payload.tenant_id,
            assigned_by=payload.assigned_by,
            invoices=invoices,
            priority=payload.priority,
        )
        return AssignTasksResponse(
            collector_id=collector_id,
            created=len(tasks),
            tasks=[TaskModel.model_validate(task) for task in tasks],
        )
