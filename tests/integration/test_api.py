"""Integration tests for API endpoints"""

import pytest
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient
from crediario_engine.config import settings
from crediario_engine.domain.exceptions import GatewayUnavailable


def _sale_body(**overrides):
    body = {
        "user_id": "user_1",
        "product_name": "Smartphone X",
        "total_amount": "1000.00",
        "installment_count": 3,
        "sale_type": "crediario",
        "payment_method": "pix",
        "down_payment": "100.00",
        "signature": "assinatura-base64",
    }
    body.update(overrides)
    return body


def test_health_endpoint(client: TestClient):
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_metrics_endpoint(client: TestClient):
    """Test Prometheus metrics endpoint"""
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "crediario_webhook_events_total" in response.text


def test_sale_then_webhook(client: TestClient, make_profile):
    """POST /v1/sales followed by the gateway approval webhook"""
    make_profile()

    response = client.post("/v1/sales", json=_sale_body())
    assert response.status_code == 200
    sale = response.json()
    assert sale["payment_artifact"]["status"] == "created"
    assert sale["payment_artifact"]["payment_id"] == "pay-1"

    response = client.post("/v1/webhooks/payments", json={"type": "payment", "data": {"id": "pay-1"}})
    assert response.status_code == 200
    assert response.json()["outcome"] == "applied"
    assert response.json()["installments_generated"] == 3

    # Gateway re-delivers: still 200, nothing applied twice
    response = client.post("/v1/webhooks/payments", json={"type": "payment", "data": {"id": "pay-1"}})
    assert response.status_code == 200
    assert response.json()["outcome"] == "stale"

    response = client.get("/v1/invoices/open")
    assert len(response.json()["invoices"]) == 3


def test_webhook_from_query_params(client: TestClient, gateway: AsyncMock):
    response = client.post("/v1/webhooks/payments?type=payment&data.id=pay-1")

    assert response.status_code == 200
    gateway.get_payment.assert_awaited_once_with("pay-1")


def test_webhook_with_numeric_payment_id(client: TestClient, gateway: AsyncMock):
    response = client.post("/v1/webhooks/payments", json={"type": "payment", "data": {"id": 123456789}})

    assert response.status_code == 200
    assert response.json()["outcome"] != "ignored"
    gateway.get_payment.assert_awaited_once_with("123456789")


def test_webhook_for_other_topics_is_acknowledged(client: TestClient, gateway: AsyncMock):
    response = client.post("/v1/webhooks/payments", json={"type": "merchant_order", "data": {"id": "9"}})

    assert response.status_code == 200
    assert response.json()["outcome"] == "ignored"
    gateway.get_payment.assert_not_awaited()


def test_webhook_gateway_outage_asks_for_retry(client: TestClient, gateway: AsyncMock):
    gateway.get_payment.side_effect = GatewayUnavailable("timeout")

    response = client.post("/v1/webhooks/payments", json={"type": "payment", "data": {"id": "pay-1"}})

    assert response.status_code == 503


def test_webhook_unknown_invoice_is_logged(client: TestClient):
    response = client.post("/v1/webhooks/payments", json={"type": "payment", "data": {"id": "pay-1"}})
    assert response.status_code == 200
    assert response.json()["outcome"] == "invoice_not_found"

    entries = client.get("/v1/action-logs/webhooks").json()["entries"]
    assert entries[0]["action_type"] == "WEBHOOK_INVOICE_NOT_FOUND"
    assert entries[0]["status"] == "FAILURE"


def test_sale_insufficient_credit(client: TestClient, make_profile):
    make_profile(credit_limit_cents=1000)

    response = client.post("/v1/sales", json=_sale_body())

    assert response.status_code == 400


def test_sale_unknown_profile(client: TestClient):
    response = client.post("/v1/sales", json=_sale_body(user_id="ghost"))
    assert response.status_code == 404


def test_sale_request_validation(client: TestClient, make_profile):
    make_profile()
    response = client.post("/v1/sales", json=_sale_body(total_amount="-5"))
    assert response.status_code == 422


def test_sale_with_gateway_failure(client: TestClient, gateway: AsyncMock, make_profile):
    make_profile()
    gateway.create_payment_intent.side_effect = GatewayUnavailable("Gateway error: 502")

    response = client.post("/v1/sales", json=_sale_body())

    assert response.status_code == 200
    assert response.json()["payment_artifact"]["status"] == "failed"

    invoice_id = response.json()["invoice_id"]
    gateway.create_payment_intent.side_effect = None
    response = client.post(f"/v1/invoices/{invoice_id}/payment-intent", json={"payment_method": "pix"})
    assert response.status_code == 200
    assert response.json()["status"] == "created"


def test_sign_contract_endpoint(client: TestClient, make_profile):
    make_profile()
    sale = client.post("/v1/sales", json=_sale_body(signature=None)).json()

    response = client.post(f"/v1/contracts/{sale['contract_id']}/sign", json={"signature": "assinatura"})

    assert response.status_code == 200
    assert response.json()["status"] == "Assinado"


def test_manual_approval_endpoint(client: TestClient, make_profile):
    make_profile()
    sale = client.post("/v1/sales", json=_sale_body(sale_type="direct", payment_method="cash")).json()

    response = client.post(f"/v1/invoices/{sale['invoice_id']}/approve")
    assert response.status_code == 200
    assert response.json()["status"] == "Paga"

    response = client.post(f"/v1/invoices/{sale['invoice_id']}/approve")
    assert response.status_code == 409


def test_cron_sweep(client: TestClient):
    for method in ("get", "post"):
        response = getattr(client, method)("/v1/cron/sweep")
        assert response.status_code == 200
        assert response.json()["success"] is True


def test_cron_sweep_requires_secret_when_configured(client: TestClient, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(settings, "cron_secret", "s3cret")

    assert client.post("/v1/cron/sweep").status_code == 401
    assert client.post("/v1/cron/sweep", headers={"Authorization": "Bearer s3cret"}).status_code == 200


def test_credit_and_quote(client: TestClient, make_profile):
    make_profile(credit_limit_cents=100000)

    response = client.get("/v1/profiles/user_1/credit")
    assert response.status_code == 200
    assert response.json()["available_cents"] == 100000

    response = client.get("/v1/financing/quote", params={"price": "1000", "installments": 10})
    assert response.status_code == 200
    assert response.json()["installment_value"] == "100.00"


def test_settings_change_quote(client: TestClient):
    assert client.put("/v1/settings/interest_rate", json={"value": "abc"}).status_code == 400

    response = client.put("/v1/settings/interest_rate", json={"value": "2"})
    assert response.status_code == 200
    assert response.json()["settings"]["interest_rate"] == "2"

    quote = client.get("/v1/financing/quote", params={"price": "1000", "installments": 2}).json()
    assert quote["financed_total"] == "1040.40"


def test_due_day_and_coins_endpoints(client: TestClient, make_profile):
    make_profile(coins_balance=100)

    assert client.post("/v1/profiles/user_1/due-day", json={"due_day": 20}).status_code == 200
    assert client.post("/v1/profiles/user_1/due-day", json={"due_day": 5}).status_code == 409

    response = client.post("/v1/profiles/user_1/coins", json={"amount": 40, "action": "remove"})
    assert response.json()["coins_balance"] == 60
