"""Access to the invoicing system that owns invoice balances."""

from __future__ import annotations

import logging
import time
from datetime import date
from typing import Optional, Protocol, Sequence

import httpx

from ..config import settings
from ..errors import NotFoundError
from ..models.domain import Invoice
from ..persistence.store import CollectionStore

OUTSTANDING_STATUSES = ("pending", "partially_paid")

logger = logging.getLogger(__name__)


def apply_payment(invoice: Invoice, amount: float) -> Invoice:
    """Increase the paid amount and recompute the invoice status."""
    invoice.paid_amount += amount
    invoice.status = "paid" if invoice.paid_amount >= invoice.total_amount else "partially_paid"
    return invoice


class InvoiceGateway(Protocol):
    def get_invoice(self, invoice_id: str) -> Optional[Invoice]: ...
    def record_payment(
        self, invoice_id: str, amount: float, *, idempotency_key: Optional[str] = None
    ) -> Invoice: ...
    def list_outstanding(self, customer_ids: Sequence[str], tenant_id: str) -> list[Invoice]: ...


class StoreInvoiceGateway:
    """Reads and writes invoices kept in the collection store."""

    def __init__(self, store: CollectionStore) -> None:
        self.store = store

    def get_invoice(self, invoice_id: str) -> Optional[Invoice]:
        return self.store.get_invoice(invoice_id)

    def record_payment(
        self, invoice_id: str, amount: float, *, idempotency_key: Optional[str] = None
    ) -> Invoice:
        # store writes are never retried, so the key is not needed here
        invoice = self.store.get_invoice(invoice_id)
        if invoice is None:
            raise NotFoundError("invoice", invoice_id)
        apply_payment(invoice, amount)
        return self.store.save_invoice(invoice)

    def list_outstanding(self, customer_ids: Sequence[str], tenant_id: str) -> list[Invoice]:
        return self.store.list_invoices(
            customer_ids=customer_ids, tenant_id=tenant_id, statuses=OUTSTANDING_STATUSES
        )


class HttpInvoiceGateway:
    """Talks to an external invoicing service over HTTP.

    Expected endpoints, relative to ``base_url``:
    ``GET /invoices/{id}``, ``POST /invoices/{id}/payments`` with
    ``{"amount": ...}`` (and an ``Idempotency-Key`` header when the caller has one)
    and ``GET /invoices?customer_ids=a,b&tenant_id=t&status=pending,partially_paid``.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.base_url = (base_url or settings.invoice_api_base_url or "").rstrip("/")
        if not self.base_url:
            raise ValueError("Invoice API base URL is not configured.")
        self.timeout = timeout if timeout is not None else settings.invoice_api_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.invoice_api_max_retries
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else settings.invoice_api_backoff_seconds
        )
        self._client = client or httpx.Client(timeout=httpx.Timeout(self.timeout, connect=5.0))

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, *, retry: bool = True, **kwargs) -> httpx.Response:
        url = f"{self.base_url}{path}"
        attempt = 0
        max_retries = self.max_retries if retry else 0
        while True:
            try:
                response = self._client.request(method, url, **kwargs)
                if response.status_code == 404:
                    return response
                response.raise_for_status()
                return response
            except httpx.HTTPStatusError as e:
                # client errors are not retried
                if e.response.status_code < 500:
                    raise
                attempt += 1
                if attempt > max_retries:
                    raise
                time.sleep(self.backoff_seconds * attempt)
            except (httpx.TimeoutException, httpx.NetworkError) as e:
                attempt += 1
                if attempt > max_retries:
                    raise ConnectionError(f"Invoice service at {self.base_url} is not reachable: {e}") from e
                wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                logger.debug(
                    f"Invoice service request failed, retrying in {wait_time:.1f}s "
                    f"(attempt {attempt}/{max_retries}): {e}"
                )
                time.sleep(wait_time)

    def get_invoice(self, invoice_id: str) -> Optional[Invoice]:
        response = self._request("GET", f"/invoices/{invoice_id}")
        if response.status_code == 404:
            return None
        return _invoice_from_payload(response.json())

    def record_payment(
        self, invoice_id: str, amount: float, *, idempotency_key: Optional[str] = None
    ) -> Invoice:
        """Post a payment. Without an idempotency key the POST is sent once:
        a timeout may hide a payment the server already applied."""
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        response = self._request(
            "POST",
            f"/invoices/{invoice_id}/payments",
            retry=bool(idempotency_key),
            json={"amount": amount},
            headers=headers,
        )
        if response.status_code == 404:
            raise NotFoundError("invoice", invoice_id)
        return _invoice_from_payload(response.json())

    def list_outstanding(self, customer_ids: Sequence[str], tenant_id: str) -> list[Invoice]:
        if not customer_ids:
            return []
        params = {
            "customer_ids": ",".join(customer_ids),
            "tenant_id": tenant_id,
            "status": ",".join(OUTSTANDING_STATUSES),
        }
        response = self._request("GET", "/invoices", params=params)
        if response.status_code == 404:
            return []
        payload = response.json()
        items = payload.get("items", []) if isinstance(payload, dict) else payload
        return [_invoice_from_payload(item) for item in items]


def _invoice_from_payload(payload: dict) -> Invoice:
    due_date = payload.get("due_date") or payload.get("dueDate")
    return Invoice(
        invoice_id=str(payload.get("id") or payload.get("invoice_id")),
        customer_id=str(payload.get("customer_id") or payload.get("customer")),
        tenant_id=str(payload.get("tenant_id") or payload.get("tenant") or ""),
        total_amount=float(payload.get("total_amount", payload.get("totalAmount", 0.0))),
        paid_amount=float(payload.get("paid_amount", payload.get("paidAmount", 0.0))),
        due_date=date.fromisoformat(str(due_date)[:10]) if due_date else None,
        status=str(payload.get("status") or "pending"),
    )


def get_invoice_gateway(store: CollectionStore) -> InvoiceGateway:
    if settings.invoice_api_base_url:
        return HttpInvoiceGateway()
    return StoreInvoiceGateway(store)
