"""Collector registration, lookup and daily performance."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from ...errors import NotFoundError, ValidationError
from ...models.domain import FieldCollector, TaskStatus, utcnow
from ...persistence.store import CollectionStore
from ..tasks.service import day_bounds

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TodayPerformance:
    tasks_assigned: int
    tasks_completed: int
    amount_collected: float
    target_progress: float


def register_collector(
    store: CollectionStore,
    *,
    user_id: str,
    tenant_id: str,
    daily_target: float = 0.0,
    monthly_target: float = 0.0,
    assigned_regions: Optional[Sequence[str]] = None,
) -> FieldCollector:
    if not user_id or not tenant_id:
        raise ValidationError("user_id and tenant_id are required.")
    if daily_target < 0 or monthly_target < 0:
        raise ValidationError("Targets must not be negative.")
    if any(existing.user_id == user_id for existing in store.list_collectors()):
        raise ValidationError(f"User {user_id} is already registered as a collector.")

    collector = FieldCollector(
        user_id=user_id,
        tenant_id=tenant_id,
        daily_target=daily_target,
        monthly_target=monthly_target,
        assigned_regions=list(assigned_regions or []),
    )
    store.add_collector(collector)
    logger.info(f"Registered collector {collector.collector_id} for user {user_id}")
    return collector


def get_collector(store: CollectionStore, collector_id: str) -> FieldCollector:
    collector = store.get_collector(collector_id)
    if collector is None:
        raise NotFoundError("collector", collector_id)
    return collector


def list_collectors(store: CollectionStore, tenant_id: Optional[str] = None) -> list[FieldCollector]:
    return store.list_collectors(tenant_id=tenant_id)


def get_today_performance(
    store: CollectionStore, collector_id: str, now: Optional[datetime] = None
) -> TodayPerformance:
    """Aggregate the collector's tasks created today.

    Computed from task state on every call rather than kept on the
    collector, so out-of-band task edits are always reflected.
    """
    collector = get_collector(store, collector_id)
    start, end = day_bounds(now or utcnow())
    tasks = store.list_tasks(collector_id=collector_id, created_from=start, created_to=end)
    collected = [task for task in tasks if task.status == TaskStatus.COLLECTED]
    amount = sum(task.collected_amount or 0.0 for task in collected)
    progress = round(amount / collector.daily_target * 100, 1) if collector.daily_target > 0 else 0.0
    return TodayPerformance(
        tasks_assigned=len(tasks),
        tasks_completed=len(collected),
        amount_collected=amount,
        target_progress=progress,
    )
