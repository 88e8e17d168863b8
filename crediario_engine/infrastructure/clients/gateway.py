"""Payment gateway HTTP client (Mercado Pago style REST API)"""

import httpx
from typing import Any, Dict, Optional
from crediario_engine.domain.models import GatewayPayment, PayerInfo, PaymentIntent
from crediario_engine.domain.exceptions import GatewayUnavailable, ValidationError
from crediario_engine.domain.financing import from_cents, to_cents
from crediario_engine.config import settings
from crediario_engine.infrastructure.observability.metrics import gateway_failure_counter, gateway_latency_histogram

# Our method name -> gateway payment_method_id
PAYMENT_METHOD_IDS = {
    "pix": "pix",
    "boleto": "bolbradesco",
}


class PaymentGatewayClient:
    """Client for the external payment gateway"""

    def __init__(
        self,
        base_url: str | None = None,
        access_token: str | None = None,
        timeout: float | None = None,
        notification_url: str | None = None,
    ):
        self.base_url = (base_url or settings.gateway_api_base).rstrip("/")
        self.access_token = access_token if access_token is not None else settings.gateway_access_token
        self.timeout = timeout or settings.http_timeout_seconds
        self.notification_url = notification_url or settings.gateway_notification_url

    def _headers(self, idempotency_key: str | None = None) -> Dict[str, str]:
        headers = {"Authorization": f"Bearer {self.access_token}"}
        if idempotency_key:
            headers["X-Idempotency-Key"] = idempotency_key
        return headers

    async def create_payment_intent(
        self,
        invoice_id: str,
        amount_cents: int,
        method: str,
        description: str,
        payer: PayerInfo,
    ) -> PaymentIntent:
        """
        Create the payment artifact (PIX QR, boleto or checkout link) for an invoice.

        The invoice id travels as external_reference so webhooks can be matched
        even when the returned id never reaches our store.

        Raises:
            GatewayUnavailable: On timeout, HTTP errors, or invalid response
        """
        if method == "link":
            return await self._create_preference(invoice_id, amount_cents, description, payer)

        if method not in PAYMENT_METHOD_IDS:
            raise ValidationError(f"Payment method '{method}' is not generated by the gateway")

        body: Dict[str, Any] = {
            "transaction_amount": float(from_cents(amount_cents)),
            "description": description,
            "payment_method_id": PAYMENT_METHOD_IDS[method],
            "payer": _payer_payload(payer, with_address=method == "boleto"),
            "external_reference": invoice_id,
        }
        if self.notification_url:
            body["notification_url"] = self.notification_url

        data = await self._request("create_payment", "POST", "/v1/payments", json=body, idempotency_key=invoice_id)

        try:
            transaction_data = (data.get("point_of_interaction") or {}).get("transaction_data") or {}
            return PaymentIntent(
                id=str(data["id"]),
                qr_code=transaction_data.get("qr_code"),
                qr_code_base64=transaction_data.get("qr_code_base64"),
                barcode=(data.get("barcode") or {}).get("content"),
                boleto_url=(data.get("transaction_details") or {}).get("external_resource_url")
                or transaction_data.get("ticket_url"),
            )
        except (KeyError, TypeError, AttributeError) as e:
            gateway_failure_counter.labels(operation="create_payment").inc()
            raise GatewayUnavailable(f"Invalid payment data from gateway: {e}") from e

    async def _create_preference(
        self, invoice_id: str, amount_cents: int, description: str, payer: PayerInfo
    ) -> PaymentIntent:
        body = {
            "items": [
                {
                    "id": invoice_id,
                    "title": description,
                    "quantity": 1,
                    "unit_price": float(from_cents(amount_cents)),
                    "currency_id": "BRL",
                }
            ],
            "external_reference": invoice_id,
            "payer": {"email": payer.email},
            "auto_return": "approved",
        }
        if self.notification_url:
            body["notification_url"] = self.notification_url

        data = await self._request(
            "create_preference", "POST", "/checkout/preferences", json=body, idempotency_key=invoice_id
        )
        try:
            return PaymentIntent(id=str(data["id"]), redirect_url=data["init_point"])
        except (KeyError, TypeError) as e:
            gateway_failure_counter.labels(operation="create_preference").inc()
            raise GatewayUnavailable(f"Invalid preference data from gateway: {e}") from e

    async def get_payment(self, payment_id: str) -> Optional[GatewayPayment]:
        """
        Fetch authoritative payment status.

        Returns None when the gateway does not know the id.

        Raises:
            GatewayUnavailable: On timeout, HTTP errors, or invalid response
        """
        data = await self._request("get_payment", "GET", f"/v1/payments/{payment_id}", missing_ok=True)
        if data is None or not data.get("id"):
            return None

        try:
            amount = data.get("transaction_amount")
            external_reference = data.get("external_reference")
            return GatewayPayment(
                id=str(data["id"]),
                status=data["status"],
                status_detail=data.get("status_detail"),
                amount_cents=to_cents(amount) if amount is not None else None,
                external_reference=str(external_reference) if external_reference else None,
            )
        except (KeyError, TypeError, ArithmeticError) as e:
            gateway_failure_counter.labels(operation="get_payment").inc()
            raise GatewayUnavailable(f"Invalid payment data from gateway: {e}") from e

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        idempotency_key: str | None = None,
        missing_ok: bool = False,
    ) -> Optional[Dict[str, Any]]:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                with gateway_latency_histogram.labels(operation=operation).time():
                    response = await client.request(
                        method,
                        f"{self.base_url}{path}",
                        json=json,
                        headers=self._headers(idempotency_key),
                    )
                if missing_ok and response.status_code == 404:
                    return None
                response.raise_for_status()
                return response.json()

            except httpx.TimeoutException as e:
                gateway_failure_counter.labels(operation=operation).inc()
                raise GatewayUnavailable(f"Gateway timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                gateway_failure_counter.labels(operation=operation).inc()
                raise GatewayUnavailable(f"Gateway error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                gateway_failure_counter.labels(operation=operation).inc()
                raise GatewayUnavailable(f"Gateway unreachable: {e}") from e
            except ValueError as e:
                gateway_failure_counter.labels(operation=operation).inc()
                raise GatewayUnavailable(f"Gateway returned invalid JSON: {e}") from e


def _payer_payload(payer: PayerInfo, with_address: bool) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "email": payer.email,
        "first_name": payer.first_name,
        "last_name": payer.last_name,
    }
    if payer.identification_number:
        payload["identification"] = {
            "type": "CPF",
            "number": "".join(ch for ch in payer.identification_number if ch.isdigit()),
        }
    if with_address:
        payload["address"] = {
            "zip_code": "".join(ch for ch in (payer.zip_code or "") if ch.isdigit()),
            "street_name": payer.street_name,
            "street_number": payer.street_number,
            "neighborhood": payer.neighborhood,
            "city": payer.city,
            "federal_unit": payer.federal_unit,
        }
    return payload
