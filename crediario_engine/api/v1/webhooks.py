"""POST /v1/webhooks/payments - gateway payment notifications"""

import json
import logging
import time
from typing import Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from crediario_engine.api.dependencies import get_config_snapshot, get_gateway_client, get_request_id
from crediario_engine.api.v1.schemas import ReconcileResponse, WebhookEvent
from crediario_engine.domain.exceptions import GatewayUnavailable
from crediario_engine.domain.models import ConfigSnapshot
from crediario_engine.infrastructure.clients.gateway import PaymentGatewayClient
from crediario_engine.infrastructure.database.session import get_db
from crediario_engine.infrastructure.observability.logging import log_reconciliation
from crediario_engine.infrastructure.observability.metrics import record_webhook
from crediario_engine.services.reconciler import reconcile_payment_event

router = APIRouter()


async def _parse_event(request: Request) -> Tuple[Optional[str], Optional[str]]:
    """Event type and payment id from the JSON body, else from the query string"""
    event = WebhookEvent()
    body = await request.body()
    if body:
        try:
            event = WebhookEvent.model_validate(json.loads(body))
        except (ValueError, PydanticValidationError):
            logging.warning("Unparseable webhook body", extra={"request_id": get_request_id(request)})

    params = request.query_params
    event_type = event.type or params.get("type") or params.get("topic")
    body_id = event.data.id if event.data else None
    payment_id = str(body_id) if body_id is not None else params.get("data.id") or params.get("id")
    return event_type, payment_id


@router.post("/webhooks/payments", response_model=ReconcileResponse)
async def receive_payment_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateway: PaymentGatewayClient = Depends(get_gateway_client),
    config: ConfigSnapshot = Depends(get_config_snapshot),
):
    """
    Reconcile one gateway notification.

    200 means the ledger is consistent with the event (applied or no-op).
    5xx tells the gateway to deliver again later.
    """
    start_time = time.time()
    request_id = get_request_id(request)
    event_type, payment_id = await _parse_event(request)

    try:
        outcome = await reconcile_payment_event(db, gateway, event_type, payment_id, config)

    except GatewayUnavailable as e:
        record_webhook("gateway_unavailable")
        logging.error(f"Gateway unavailable during webhook: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=503, detail="Payment gateway unavailable")

    except Exception as e:
        logging.error(f"Webhook processing failed: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    duration_ms = (time.time() - start_time) * 1000
    log_reconciliation(str(payment_id), outcome.outcome, outcome.invoice_id, outcome.new_status, duration_ms, request_id)

    return ReconcileResponse(
        outcome=outcome.outcome,
        invoice_id=outcome.invoice_id,
        status=outcome.new_status,
        cashback_points=outcome.cashback_points,
        installments_generated=outcome.installments_generated,
    )
