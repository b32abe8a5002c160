import httpx
import pytest

from fieldops.errors import NotFoundError
from fieldops.models.domain import Invoice
from fieldops.persistence.store import InMemoryStore
from fieldops.services import invoicing
from fieldops.services.invoicing import HttpInvoiceGateway, StoreInvoiceGateway, apply_payment


def _gateway(handler, **kwargs) -> HttpInvoiceGateway:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpInvoiceGateway(
        base_url="http://billing.test/api", max_retries=2, backoff_seconds=0.0, client=client, **kwargs
    )


def test_apply_payment_recomputes_status():
    invoice = Invoice("i1", "c1", "t1", total_amount=100.0, paid_amount=20.0)

    apply_payment(invoice, 30.0)
    assert invoice.status == "partially_paid"
    apply_payment(invoice, 50.0)
    assert invoice.status == "paid"
    assert invoice.paid_amount == 100.0


def test_store_gateway_missing_invoice_raises_not_found():
    with pytest.raises(NotFoundError):
        StoreInvoiceGateway(InMemoryStore()).record_payment("nope", 10.0)


def test_http_gateway_records_payment_after_server_error():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(503)
        return httpx.Response(
            200,
            json={"id": "i1", "customer_id": "c1", "tenant_id": "t1", "total_amount": 50, "paid_amount": 50, "status": "paid"},
        )

    invoice = _gateway(handler).record_payment("i1", 50.0, idempotency_key="task-1")

    assert len(calls) == 2
    assert [call.headers["Idempotency-Key"] for call in calls] == ["task-1", "task-1"]
    assert calls[-1].url.path == "/api/invoices/i1/payments"
    assert invoice.status == "paid"
    assert invoice.paid_amount == 50.0


def test_http_gateway_unknown_invoice_raises_not_found():
    gateway = _gateway(lambda request: httpx.Response(404))

    with pytest.raises(NotFoundError):
        gateway.record_payment("missing", 5.0)
    assert gateway.get_invoice("missing") is None


def test_http_gateway_gives_up_when_unreachable(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(invoicing.time, "sleep", lambda seconds: None)
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(ConnectionError):
        _gateway(handler).record_payment("i1", 5.0, idempotency_key="task-1")
    assert len(calls) == 3


def test_http_gateway_posts_unkeyed_payment_once(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(invoicing.time, "sleep", lambda seconds: None)
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ReadTimeout("no response", request=request)

    with pytest.raises(ConnectionError):
        _gateway(handler).record_payment("i1", 5.0)
    assert len(calls) == 1
    assert "Idempotency-Key" not in calls[0].headers


def test_http_gateway_retries_reads_on_timeout(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(invoicing.time, "sleep", lambda seconds: None)
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ReadTimeout("slow", request=request)
        return httpx.Response(200, json={"id": "i1", "customer_id": "c1", "tenant_id": "t1", "total_amount": 50})

    invoice = _gateway(handler).get_invoice("i1")

    assert len(calls) == 2
    assert invoice.total_amount == 50.0


def test_http_gateway_lists_outstanding_invoices():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["customer_ids"] == "c1,c2"
        return httpx.Response(
            200,
            json={"items": [{"id": "i1", "customer_id": "c1", "tenant_id": "t1", "totalAmount": 80, "paidAmount": 20, "dueDate": "2025-03-10"}]},
        )

    invoices = _gateway(handler).list_outstanding(["c1", "c2"], "t1")

    assert len(invoices) == 1
    assert invoices[0].outstanding == 60.0
    assert invoices[0].due_date.isoformat() == "2025-03-10"
