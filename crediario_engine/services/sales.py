"""Sale creation: coupon, coins, credit check, contract + invoice, payment intent"""

import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from crediario_engine.domain.exceptions import (
    ConflictError,
    GatewayUnavailable,
    InsufficientBalance,
    InsufficientCredit,
    NotFoundError,
    StoreWriteFailure,
    ValidationError,
)
from crediario_engine.domain.financing import (
    apply_coupon,
    available_monthly_credit,
    coins_to_cents,
    financed_total,
    from_cents,
    installment_value,
    required_down_payment,
    round_money,
    to_cents,
    to_decimal,
)
from crediario_engine.domain.installments import generate_installment_schedule
from crediario_engine.domain.models import (
    CONTRACT_ACTIVE,
    CONTRACT_CANCELLED,
    CONTRACT_PENDING_SIGNATURE,
    CONTRACT_SIGNED,
    GATEWAY_METHODS,
    INVOICE_AWAITING_SIGNATURE,
    INVOICE_BOLETO_GENERATED,
    INVOICE_OPEN,
    KIND_DOWN_PAYMENT,
    KIND_FULL_PAYMENT,
    OPEN_INVOICE_STATUSES,
    PAYABLE_INVOICE_STATUSES,
    SALE_CREDIARIO,
    SALE_DIRECT,
    SETTLED_INVOICE_STATUSES,
    ConfigSnapshot,
    PayerInfo,
    PaymentArtifact,
    PendingInstallmentPlan,
    SaleRequest,
    SaleResult,
)
from crediario_engine.infrastructure.clients.gateway import PaymentGatewayClient
from crediario_engine.infrastructure.database.models import Contract, Invoice
from crediario_engine.infrastructure.database.repositories import (
    ContractRepository,
    InstallmentPlanRepository,
    InvoiceRepository,
    ProfileRepository,
)
from crediario_engine.infrastructure.observability.metrics import record_sale
from crediario_engine.services.action_log import FAILURE, SUCCESS, log_action
from crediario_engine.services.profiles import commitments_by_month, get_profile_or_raise
from crediario_engine.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


def validate_sale_request(request: SaleRequest) -> None:
    """Reject malformed input before anything is written"""
    errors = []
    if not request.user_id:
        errors.append("user_id is required")
    if not request.product_name:
        errors.append("product_name is required")
    if request.total_amount is None or to_decimal(request.total_amount) <= 0:
        errors.append("total_amount must be > 0")
    if request.installment_count is None or request.installment_count < 1:
        errors.append("installment_count must be >= 1")
    if request.sale_type not in (SALE_CREDIARIO, SALE_DIRECT):
        errors.append("sale_type must be 'crediario' or 'direct'")
    if request.down_payment is not None and to_decimal(request.down_payment) < 0:
        errors.append("down_payment must be >= 0")
    if request.coins_used < 0:
        errors.append("coins_used must be >= 0")
    if request.due_day is not None and not 1 <= request.due_day <= 31:
        errors.append("due_day must be between 1 and 31")
    if not request.payment_method:
        errors.append("payment_method is required")

    if errors:
        raise ValidationError("; ".join(errors))


async def create_sale(
    db: Session,
    gateway: PaymentGatewayClient,
    request: SaleRequest,
    config: ConfigSnapshot,
    now: Optional[datetime] = None,
) -> SaleResult:
    """
    Record a purchase and request the first payment artifact.

    Flow:
    1. Validate input; replay a previous result for a known idempotency key
    2. Apply coupon and coin discount
    3. Crediário: check the installment against the monthly credit headroom
    4. Debit coins (conditional on balance)
    5. Persist Contract + payable Invoice (+ pending installment plan) and commit
    6. Ask the gateway for a payment intent; a gateway failure leaves the sale recorded
    """
    validate_sale_request(request)
    now = now or utcnow()

    contracts = ContractRepository(db)
    invoices = InvoiceRepository(db)

    if request.idempotency_key:
        existing = contracts.get_by_checkout(request.idempotency_key)
        if existing is not None:
            if existing.user_id != request.user_id:
                raise ConflictError("idempotency_key already used by another customer")
            return _replay_sale(db, existing)

    profile = get_profile_or_raise(db, request.user_id)
    checkout_id = request.idempotency_key or str(uuid.uuid4())
    due_day = request.due_day or profile.preferred_due_day or config.default_due_day

    # 1. Coupon, then coins (100 coins = R$1, capped at the total)
    total = apply_coupon(request.total_amount, request.coupon_code)
    total_cents = to_cents(total)
    coin_discount_cents = min(coins_to_cents(request.coins_used), total_cents)
    total_cents -= coin_discount_cents
    coins_to_debit = coin_discount_cents

    if total_cents <= 0:
        raise ValidationError("sale total after discounts must be > 0")

    is_crediario = request.sale_type == SALE_CREDIARIO
    down_payment_cents = to_cents(request.down_payment or 0) if is_crediario else 0
    if down_payment_cents > total_cents:
        raise ValidationError("down_payment cannot exceed the sale total")

    # 2. Credit headroom (peak-month rule) and minimum entry
    financed_cents = total_cents - down_payment_cents
    remaining_cents = 0
    if is_crediario and financed_cents > 0:
        remaining_cents = _check_credit(
            db,
            request,
            config,
            profile.credit_limit_cents or 0,
            total_cents,
            financed_cents,
            down_payment_cents,
        )

    # 3. Coins
    if coins_to_debit > 0:
        if not ProfileRepository(db).debit_coins_if_sufficient(request.user_id, coins_to_debit):
            db.rollback()
            raise InsufficientBalance(requested=coins_to_debit, available=profile.coins_balance or 0)

    # 4. Contract
    if is_crediario:
        contract_status = CONTRACT_SIGNED if request.signature else CONTRACT_PENDING_SIGNATURE
    else:
        contract_status = CONTRACT_ACTIVE

    try:
        contract = contracts.create_contract(
            user_id=request.user_id,
            checkout_id=checkout_id,
            title=f"Contrato - {request.product_name}",
            items=f"Aquisição de {request.product_name}. Total: R$ {from_cents(total_cents)}.",
            total_cents=total_cents,
            installment_count=request.installment_count if is_crediario else 1,
            status=contract_status,
            signature_data=request.signature,
        )
    except IntegrityError:
        return _replay_concurrent_sale(db, request, checkout_id)

    invoice_status = INVOICE_AWAITING_SIGNATURE if contract_status == CONTRACT_PENDING_SIGNATURE else INVOICE_OPEN
    today = now.date()

    # 5. Payable invoice
    payable: Optional[Invoice] = None
    first_invoice: Optional[Invoice] = None
    if not is_crediario:
        payable = invoices.create_invoice(
            user_id=request.user_id,
            checkout_id=checkout_id,
            contract_id=contract.id,
            kind=KIND_FULL_PAYMENT,
            month=f"Compra Avulsa - {request.product_name}",
            due_date=today,
            amount_cents=total_cents,
            status=invoice_status,
            payment_method=request.payment_method,
            notes="VENDA_AVISTA",
        )
        first_invoice = payable
    elif down_payment_cents > 0:
        plan = PendingInstallmentPlan(
            contract_id=str(contract.id),
            remaining_cents=remaining_cents,
            installment_count=request.installment_count,
            due_day=due_day,
        )
        payable = invoices.create_invoice(
            user_id=request.user_id,
            checkout_id=checkout_id,
            contract_id=contract.id,
            kind=KIND_DOWN_PAYMENT,
            month=f"Entrada - {request.product_name}",
            due_date=today,
            amount_cents=down_payment_cents,
            status=invoice_status,
            payment_method=request.payment_method,
            notes=plan.to_notes(),
        )
        InstallmentPlanRepository(db).create_plan(
            down_payment_invoice_id=payable.id,
            contract_id=contract.id,
            remaining_cents=remaining_cents,
            installment_count=request.installment_count,
            due_day=due_day,
        )
        first_invoice = payable
    else:
        # No entry to wait for: the schedule is known now
        schedule = generate_installment_schedule(remaining_cents, request.installment_count, due_day, today)
        created = invoices.create_installments(
            user_id=request.user_id,
            checkout_id=checkout_id,
            contract_id=contract.id,
            installments=schedule,
            suffix=f" - {request.product_name}",
            status=invoice_status,
        )
        first_invoice = created[0] if created else None

    try:
        db.commit()
    except IntegrityError:
        return _replay_concurrent_sale(db, request, checkout_id)
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Sale could not be persisted", extra={"checkout_id": checkout_id})
        raise StoreWriteFailure(f"Sale for checkout {checkout_id} could not be saved") from e

    # 6. Payment artifact
    artifact = PaymentArtifact(status="not_required", method=request.payment_method)
    if payable is not None and payable.status == INVOICE_OPEN and request.payment_method in GATEWAY_METHODS:
        artifact = await request_payment_intent(
            db, gateway, payable, request.payment_method, request.payer, payable.month
        )

    log_action(
        db,
        "SALE_CREATED",
        SUCCESS,
        f"Sale {request.sale_type} of R$ {from_cents(total_cents)} recorded",
        {
            "userId": request.user_id,
            "contractId": str(contract.id),
            "checkoutId": checkout_id,
            "coinsUsed": coins_to_debit,
            "paymentArtifact": artifact.status,
        },
    )
    record_sale(request.sale_type, artifact.status)

    return SaleResult(
        contract_id=str(contract.id),
        checkout_id=checkout_id,
        invoice_id=str(first_invoice.id) if first_invoice is not None else None,
        total_cents=total_cents,
        payment_artifact=artifact,
    )


def _check_credit(
    db: Session,
    request: SaleRequest,
    config: ConfigSnapshot,
    credit_limit_cents: int,
    total_cents: int,
    financed_cents: int,
    down_payment_cents: int,
) -> int:
    """Validate the crediário terms; returns the amount to spread over installments (cents)"""
    n = request.installment_count
    principal = from_cents(financed_cents)

    commitments = commitments_by_month(InvoiceRepository(db).list_open_for_user(request.user_id))
    available = available_monthly_credit(from_cents(credit_limit_cents), commitments)

    required = required_down_payment(
        from_cents(total_cents), config.min_entry_pct, available, n, config.interest_rate_pct
    )
    if down_payment_cents < to_cents(required):
        raise InsufficientCredit(f"Down payment must be at least R$ {round_money(required)}")

    monthly = installment_value(principal, config.interest_rate_pct, n)
    if monthly > available:
        raise InsufficientCredit(
            f"Installment R$ {round_money(monthly)} exceeds available monthly credit R$ {round_money(available)}; "
            "increase the down payment"
        )

    return to_cents(financed_total(principal, config.interest_rate_pct, n))


async def request_payment_intent(
    db: Session,
    gateway: PaymentGatewayClient,
    invoice: Invoice,
    method: str,
    payer: PayerInfo,
    description: str,
) -> PaymentArtifact:
    """
    Ask the gateway for a payment artifact and store it on the invoice.

    GatewayUnavailable is turned into a failed artifact plus an ActionLog
    entry; the invoice stays open for a manual retry.
    """
    invoice_id = str(invoice.id)
    try:
        intent = await gateway.create_payment_intent(
            invoice_id=invoice_id,
            amount_cents=invoice.amount_cents,
            method=method,
            description=description,
            payer=payer,
        )
    except GatewayUnavailable as e:
        logger.warning("Payment intent failed", extra={"invoice_id": invoice_id, "error": str(e)})
        log_action(
            db,
            "PAYMENT_INTENT",
            FAILURE,
            f"Payment artifact for invoice {invoice_id} could not be created",
            {"invoiceId": invoice_id, "method": method, "error": str(e)},
        )
        return PaymentArtifact(status="failed", method=method, error=str(e))

    invoices = InvoiceRepository(db)
    invoices.attach_payment_intent(invoice, intent, method)
    if method == "boleto":
        invoices.transition_if_open(invoice.id, INVOICE_BOLETO_GENERATED, allowed=(INVOICE_OPEN,))
    db.commit()

    return PaymentArtifact(
        status="created",
        method=method,
        payment_id=intent.id,
        qr_code=intent.qr_code,
        qr_code_base64=intent.qr_code_base64,
        boleto_url=intent.boleto_url,
        barcode=intent.barcode,
        redirect_url=intent.redirect_url,
    )


async def retry_payment_intent(
    db: Session,
    gateway: PaymentGatewayClient,
    invoice_id: str,
    method: str,
    payer: PayerInfo,
) -> PaymentArtifact:
    """Manual retry path for an invoice whose artifact failed or expired"""
    if method not in GATEWAY_METHODS:
        raise ValidationError(f"payment_method must be one of {', '.join(GATEWAY_METHODS)}")

    invoice = InvoiceRepository(db).get(invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice", invoice_id)
    if invoice.status not in PAYABLE_INVOICE_STATUSES:
        raise ConflictError(f"Invoice is '{invoice.status}' and cannot be paid")

    artifact = await request_payment_intent(db, gateway, invoice, method, payer, invoice.month)
    if artifact.status == "created":
        log_action(
            db,
            "PAYMENT_INTENT",
            SUCCESS,
            f"Payment artifact regenerated for invoice {invoice_id}",
            {"invoiceId": str(invoice_id), "method": method, "paymentId": artifact.payment_id},
        )
    return artifact


def sign_contract(db: Session, contract_id: str, signature: str) -> Contract:
    """Sign a pending contract and release its invoices for payment"""
    if not signature:
        raise ValidationError("signature is required")

    contracts = ContractRepository(db)
    contract = contracts.get(contract_id)
    if contract is None:
        raise NotFoundError("Contract", contract_id)
    if contract.status == CONTRACT_CANCELLED:
        raise ConflictError("Contract was cancelled and can no longer be signed")
    if contract.status != CONTRACT_PENDING_SIGNATURE:
        return contract

    if not contracts.sign_if_pending(contract.id, signature):
        db.rollback()
        raise ConflictError("Contract is no longer pending signature")

    invoices = InvoiceRepository(db)
    if contract.checkout_id:
        waiting = invoices.find_by_checkout(contract.checkout_id, (INVOICE_AWAITING_SIGNATURE,))
    else:
        waiting = invoices.find_for_contract(contract.id, (INVOICE_AWAITING_SIGNATURE,))
    released = invoices.release_awaiting_signature([inv.id for inv in waiting])
    db.commit()

    log_action(
        db,
        "CONTRACT_SIGNED",
        SUCCESS,
        f"Contract {contract_id} signed",
        {"contractId": str(contract.id), "invoicesReleased": released},
    )
    db.refresh(contract)
    return contract


def _replay_concurrent_sale(db: Session, request: SaleRequest, checkout_id: str) -> SaleResult:
    """Another submission with the same idempotency key committed first; answer with its result"""
    db.rollback()
    existing = ContractRepository(db).get_by_checkout(checkout_id)
    if existing is None:
        logger.exception("Sale could not be persisted", extra={"checkout_id": checkout_id})
        raise StoreWriteFailure(f"Sale for checkout {checkout_id} could not be saved")
    if existing.user_id != request.user_id:
        raise ConflictError("idempotency_key already used by another customer")
    return _replay_sale(db, existing)


def _replay_sale(db: Session, contract: Contract) -> SaleResult:
    """Rebuild the result of an already recorded checkout"""
    invoices = InvoiceRepository(db).find_by_checkout(
        contract.checkout_id,
        OPEN_INVOICE_STATUSES + SETTLED_INVOICE_STATUSES,
    )
    payable = next((inv for inv in invoices if inv.kind in (KIND_DOWN_PAYMENT, KIND_FULL_PAYMENT)), None)
    first = payable or (invoices[0] if invoices else None)

    if payable is not None and payable.payment_id:
        artifact = PaymentArtifact(
            status="created",
            method=payable.payment_method,
            payment_id=payable.payment_id,
            qr_code=payable.payment_code,
            boleto_url=payable.boleto_url,
            barcode=payable.boleto_barcode,
            redirect_url=payable.payment_url,
        )
    else:
        artifact = PaymentArtifact(status="not_required", method=payable.payment_method if payable else None)

    logger.info("Duplicate sale submission replayed", extra={"checkout_id": contract.checkout_id})
    return SaleResult(
        contract_id=str(contract.id),
        checkout_id=contract.checkout_id,
        invoice_id=str(first.id) if first is not None else None,
        total_cents=contract.total_cents,
        payment_artifact=artifact,
        duplicate=True,
    )
