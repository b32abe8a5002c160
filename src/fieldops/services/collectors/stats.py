"""Collector statistics driven by domain events.

Collector stats are incremented here and only here, unlike route stats which
are recomputed from member tasks on demand (see ``Route.reconcile_stats``).
"""

from __future__ import annotations

import logging
from functools import singledispatch
from typing import Optional

from ...errors import ConcurrencyError
from ...models.domain import FieldCollector, utcnow
from ...models.events import RouteCompleted, TaskCollected, TaskFailed, TaskSkipped, TaskVisited
from ...persistence.store import CollectionStore

MAX_UPDATE_ATTEMPTS = 3

logger = logging.getLogger(__name__)


@singledispatch
def apply_event(event, collector: FieldCollector) -> FieldCollector:
    raise TypeError(f"Unsupported collector event: {type(event).__name__}")


@apply_event.register
def _(event: TaskVisited, collector: FieldCollector) -> FieldCollector:
    collector.stats.last_active = event.occurred_at
    return _touch(collector)


@apply_event.register
def _(event: TaskCollected, collector: FieldCollector) -> FieldCollector:
    stats = collector.stats
    previous_successes = stats.successful_visits
    stats.total_collected += event.amount
    stats.successful_visits += 1
    stats.total_visits += 1
    stats.last_active = event.occurred_at

    if event.visited_at is not None:
        minutes = max(0.0, (event.occurred_at - event.visited_at).total_seconds() / 60.0)
        # running mean over successful visits
        stats.avg_collection_time = (
            stats.avg_collection_time * previous_successes + minutes
        ) / stats.successful_visits
    return _touch(collector)


@apply_event.register
def _(event: TaskSkipped, collector: FieldCollector) -> FieldCollector:
    # Skips count as failed visits; skipped_visits keeps them distinguishable.
    stats = collector.stats
    stats.failed_visits += 1
    stats.skipped_visits += 1
    stats.total_visits += 1
    stats.last_active = event.occurred_at
    return _touch(collector)


@apply_event.register
def _(event: TaskFailed, collector: FieldCollector) -> FieldCollector:
    stats = collector.stats
    stats.failed_visits += 1
    stats.total_visits += 1
    stats.last_active = event.occurred_at
    return _touch(collector)


@apply_event.register
def _(event: RouteCompleted, collector: FieldCollector) -> FieldCollector:
    collector.stats.total_distance += event.actual_distance
    collector.stats.last_active = event.occurred_at
    if collector.current_route_id == event.route_id:
        collector.current_route_id = None
    logger.debug(
        f"Route {event.route_id} completed: {event.actual_distance:.0f} m in {event.actual_duration} min"
    )
    return _touch(collector)


def record_event(
    store: CollectionStore, collector_id: str, event, attempts: int = MAX_UPDATE_ATTEMPTS
) -> Optional[FieldCollector]:
    """Apply ``event`` to the stored collector and save it.

    A version conflict means another worker saved the collector in between;
    the collector is re-read and the event applied to the fresh copy. Returns
    None when the collector does not exist.
    """
    for attempt in range(1, attempts + 1):
        collector = store.get_collector(collector_id)
        if collector is None:
            return None
        apply_event(event, collector)
        try:
            return store.save_collector(collector)
        except ConcurrencyError:
            if attempt >= attempts:
                raise
            logger.info(f"Collector {collector_id} changed concurrently, retrying ({attempt}/{attempts})")
    return None


def _touch(collector: FieldCollector) -> FieldCollector:
    collector.updated_at = utcnow()
    return collector
