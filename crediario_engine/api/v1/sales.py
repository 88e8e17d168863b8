"""POST /v1/sales and POST /v1/contracts/{contract_id}/sign"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from crediario_engine.api.dependencies import get_config_snapshot, get_gateway_client, get_request_id
from crediario_engine.api.errors import http_error
from crediario_engine.api.v1.schemas import (
    ContractResponse,
    PaymentArtifactSchema,
    SaleRequestSchema,
    SaleResponse,
    SignContractRequest,
)
from crediario_engine.domain.exceptions import DomainException
from crediario_engine.domain.models import ConfigSnapshot, PayerInfo, SaleRequest
from crediario_engine.infrastructure.clients.gateway import PaymentGatewayClient
from crediario_engine.infrastructure.database.session import get_db
from crediario_engine.infrastructure.observability.logging import log_sale
from crediario_engine.services.sales import create_sale, sign_contract

router = APIRouter()


@router.post("/sales", response_model=SaleResponse)
async def create_sale_endpoint(
    request_body: SaleRequestSchema,
    request: Request,
    db: Session = Depends(get_db),
    gateway: PaymentGatewayClient = Depends(get_gateway_client),
    config: ConfigSnapshot = Depends(get_config_snapshot),
):
    """
    Record a crediário or direct sale.

    The sale is committed before the gateway is called; a failed payment
    artifact is reported in the response instead of failing the request.
    """
    request_id = get_request_id(request)
    sale = SaleRequest(
        user_id=request_body.user_id,
        product_name=request_body.product_name,
        total_amount=request_body.total_amount,
        installment_count=request_body.installment_count,
        sale_type=request_body.sale_type,
        payment_method=request_body.payment_method,
        down_payment=request_body.down_payment,
        coupon_code=request_body.coupon_code,
        coins_used=request_body.coins_used,
        due_day=request_body.due_day,
        signature=request_body.signature,
        idempotency_key=request_body.idempotency_key,
        payer=PayerInfo(**request_body.payer.model_dump()),
    )

    try:
        result = await create_sale(db, gateway, sale, config)

    except DomainException as e:
        db.rollback()
        raise http_error(e, request_id)

    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    log_sale(request_id, sale.user_id, sale.sale_type, result.total_cents, result.payment_artifact.status)

    artifact = result.payment_artifact
    return SaleResponse(
        contract_id=result.contract_id,
        checkout_id=result.checkout_id,
        invoice_id=result.invoice_id,
        total_cents=result.total_cents,
        duplicate=result.duplicate,
        payment_artifact=PaymentArtifactSchema(
            status=artifact.status,
            method=artifact.method,
            payment_id=artifact.payment_id,
            qr_code=artifact.qr_code,
            qr_code_base64=artifact.qr_code_base64,
            boleto_url=artifact.boleto_url,
            barcode=artifact.barcode,
            redirect_url=artifact.redirect_url,
            error=artifact.error,
        ),
    )


@router.post("/contracts/{contract_id}/sign", response_model=ContractResponse)
def sign_contract_endpoint(
    contract_id: str,
    request_body: SignContractRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """Sign a pending contract and release its invoices for payment"""
    try:
        contract = sign_contract(db, contract_id, request_body.signature)
    except DomainException as e:
        db.rollback()
        raise http_error(e, get_request_id(request))

    return ContractResponse(contract_id=str(contract.id), status=contract.status)
