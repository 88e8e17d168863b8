"""Invoice operations: payment artifact retry, manual approval, audit listings"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from crediario_engine.api.dependencies import get_config_snapshot, get_gateway_client, get_request_id
from crediario_engine.api.errors import http_error
from crediario_engine.api.v1.schemas import (
    ActionLogListResponse,
    ActionLogSchema,
    InvoiceListResponse,
    InvoiceSchema,
    PaymentArtifactSchema,
    PaymentIntentRequest,
    ReconcileResponse,
)
from crediario_engine.domain.exceptions import DomainException
from crediario_engine.domain.models import ConfigSnapshot, PayerInfo
from crediario_engine.infrastructure.clients.gateway import PaymentGatewayClient
from crediario_engine.infrastructure.database.repositories import ActionLogRepository, InvoiceRepository
from crediario_engine.infrastructure.database.session import get_db
from crediario_engine.services.reconciler import approve_invoice_manually
from crediario_engine.services.sales import retry_payment_intent

router = APIRouter()


@router.post("/invoices/{invoice_id}/payment-intent", response_model=PaymentArtifactSchema)
async def create_payment_intent(
    invoice_id: str,
    request_body: PaymentIntentRequest,
    request: Request,
    db: Session = Depends(get_db),
    gateway: PaymentGatewayClient = Depends(get_gateway_client),
):
    """Generate a new PIX/boleto/link artifact for an open invoice"""
    try:
        artifact = await retry_payment_intent(
            db,
            gateway,
            invoice_id,
            request_body.payment_method,
            PayerInfo(**request_body.payer.model_dump()),
        )
    except DomainException as e:
        db.rollback()
        raise http_error(e, get_request_id(request))

    return PaymentArtifactSchema(
        status=artifact.status,
        method=artifact.method,
        payment_id=artifact.payment_id,
        qr_code=artifact.qr_code,
        qr_code_base64=artifact.qr_code_base64,
        boleto_url=artifact.boleto_url,
        barcode=artifact.barcode,
        redirect_url=artifact.redirect_url,
        error=artifact.error,
    )


@router.post("/invoices/{invoice_id}/approve", response_model=ReconcileResponse)
def approve_invoice(
    invoice_id: str,
    request: Request,
    db: Session = Depends(get_db),
    config: ConfigSnapshot = Depends(get_config_snapshot),
):
    """Operator confirmation of a payment received outside the gateway"""
    request_id = get_request_id(request)
    try:
        outcome = approve_invoice_manually(db, invoice_id, config)
    except DomainException as e:
        db.rollback()
        raise http_error(e, request_id)
    except Exception as e:
        db.rollback()
        logging.error(f"Manual approval failed: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    return ReconcileResponse(
        outcome=outcome.outcome,
        invoice_id=outcome.invoice_id,
        status=outcome.new_status,
        cashback_points=outcome.cashback_points,
        installments_generated=outcome.installments_generated,
    )


@router.get("/invoices/open", response_model=InvoiceListResponse)
def list_open_invoices(
    limit: int = Query(200, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    """Open invoices ordered by due date, for auditing"""
    invoices = InvoiceRepository(db).list_open(limit=limit)
    return InvoiceListResponse(
        invoices=[
            InvoiceSchema(
                invoice_id=str(inv.id),
                user_id=inv.user_id,
                checkout_id=inv.checkout_id,
                kind=inv.kind,
                month=inv.month,
                due_date=inv.due_date,
                amount_cents=inv.amount_cents,
                status=inv.status,
                payment_method=inv.payment_method,
                payment_id=inv.payment_id,
            )
            for inv in invoices
        ]
    )


@router.get("/action-logs/webhooks", response_model=ActionLogListResponse)
def list_webhook_logs(
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    """Most recent webhook ActionLog entries, newest first"""
    entries = ActionLogRepository(db).recent(prefix="WEBHOOK", limit=limit)
    return ActionLogListResponse(
        entries=[
            ActionLogSchema(
                action_type=entry.action_type,
                status=entry.status,
                description=entry.description,
                details=entry.details,
                created_at=entry.created_at.isoformat() if entry.created_at else "",
            )
            for entry in entries
        ]
    )
