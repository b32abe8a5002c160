"""Create collection tasks from customers' outstanding invoices."""

from __future__ import annotations

import copy
import logging
from datetime import datetime
from typing import Optional, Sequence

from ...errors import NotFoundError, ValidationError
from ...models.domain import CollectionTask, TaskPriority, TaskStatus, utcnow
from ...persistence.store import CollectionStore
from ..invoicing import InvoiceGateway, StoreInvoiceGateway

logger = logging.getLogger(__name__)


def assign_tasks(
    store: CollectionStore,
    *,
    customer_ids: Sequence[str],
    collector_id: str,
    tenant_id: str,
    assigned_by: Optional[str] = None,
    invoices: Optional[InvoiceGateway] = None,
    priority: TaskPriority = TaskPriority.MEDIUM,
    now: Optional[datetime] = None,
) -> list[CollectionTask]:
    """Create one assigned task per outstanding invoice of the given customers.

    The task amount is what is still owed on the invoice. Invoices with
    nothing outstanding and customers unknown to the store are skipped.
    """
    if not customer_ids:
        raise ValidationError("customer_ids must not be empty.")
    if store.get_collector(collector_id) is None:
        raise NotFoundError("collector", collector_id)

    gateway = invoices or StoreInvoiceGateway(store)
    now = now or utcnow()
    customers = {c.customer_id: c for c in store.list_customers(customer_ids, tenant_id=tenant_id)}
    for missing in sorted(set(customer_ids) - set(customers)):
        logger.warning(f"Customer {missing} not found for tenant {tenant_id}; no tasks created")

    created: list[CollectionTask] = []
    with store.transaction():
        for invoice in gateway.list_outstanding(list(customers), tenant_id):
            customer = customers.get(invoice.customer_id)
            if customer is None:
                continue
            outstanding = round(invoice.outstanding, 2)
            if outstanding <= 0:
                logger.debug(f"Invoice {invoice.invoice_id} has nothing outstanding; skipped")
                continue
            task = CollectionTask(
                collector_id=collector_id,
                customer_id=customer.customer_id,
                invoice_id=invoice.invoice_id,
                tenant_id=tenant_id,
                amount=outstanding,
                due_date=invoice.due_date,
                priority=priority,
                status=TaskStatus.ASSIGNED,
                location=copy.deepcopy(customer.location),
                assigned_by=assigned_by,
                assigned_at=now,
                created_at=now,
                updated_at=now,
            )
            created.append(store.add_task(task))

    logger.info(f"Assigned {len(created)} task(s) to collector {collector_id} from {len(customers)} customer(s)")
    return created
