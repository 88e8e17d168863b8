"""Webhook reconciliation: gateway payment events -> ledger transitions, exactly once"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from crediario_engine.domain.exceptions import ConflictError, GatewayUnavailable, NotFoundError, StaleEventIgnored
from crediario_engine.domain.financing import cashback_points, from_cents
from crediario_engine.domain.installments import generate_installment_schedule
from crediario_engine.domain.models import (
    DOWN_PAYMENT_TAG,
    INVOICE_CANCELLED,
    INVOICE_EXPIRED,
    INVOICE_PAID,
    KIND_DOWN_PAYMENT,
    PAYABLE_INVOICE_STATUSES,
    ConfigSnapshot,
    PendingInstallmentPlan,
    ReconcileOutcome,
)
from crediario_engine.domain.payments import is_payment_event, map_gateway_status
from crediario_engine.infrastructure.clients.gateway import PaymentGatewayClient
from crediario_engine.infrastructure.database.models import Invoice
from crediario_engine.infrastructure.database.repositories import (
    InstallmentPlanRepository,
    InvoiceRepository,
    NotificationRepository,
    ProfileRepository,
    parse_uuid,
)
from crediario_engine.infrastructure.observability.metrics import record_webhook
from crediario_engine.services.action_log import FAILURE, SUCCESS, log_action
from crediario_engine.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


async def reconcile_payment_event(
    db: Session,
    gateway: PaymentGatewayClient,
    event_type: Optional[str],
    payment_id: Optional[object],
    config: ConfigSnapshot,
    now: Optional[datetime] = None,
) -> ReconcileOutcome:
    """
    Apply one gateway notification to the ledger.

    The webhook body is only a hint: the payment is re-read from the gateway
    and the invoice transition is conditional on the invoice still being
    open, so duplicate or reordered deliveries are harmless.

    Raises:
        GatewayUnavailable: status unknown, the gateway should retry
        Exception: anything else after rollback and an ActionLog FAILURE entry
    """
    if not is_payment_event(event_type, payment_id):
        outcome = ReconcileOutcome(outcome="ignored")
        record_webhook(outcome.outcome)
        return outcome

    now = now or utcnow()
    payment_id = str(payment_id)

    try:
        payment = await gateway.get_payment(payment_id)
    except GatewayUnavailable as e:
        log_action(
            db,
            "WEBHOOK_GATEWAY_UNAVAILABLE",
            FAILURE,
            f"Could not read payment {payment_id} from gateway",
            {"paymentId": payment_id, "error": str(e)},
        )
        raise
    except Exception as e:
        log_action(
            db,
            "WEBHOOK_PROCESSING",
            FAILURE,
            f"Failed to read payment {payment_id}",
            {"paymentId": payment_id, "error": str(e)},
        )
        record_webhook("error")
        raise

    if payment is None:
        logger.warning("Payment not found at gateway", extra={"payment_id": payment_id})
        outcome = ReconcileOutcome(outcome="ignored")
        record_webhook(outcome.outcome)
        return outcome

    new_status = map_gateway_status(payment.status, payment.status_detail)
    if new_status is None:
        logger.info(
            "Payment status does not settle the invoice",
            extra={"payment_id": payment_id, "gateway_status": payment.status},
        )
        outcome = ReconcileOutcome(outcome="no_op")
        record_webhook(outcome.outcome)
        return outcome

    invoices = InvoiceRepository(db)
    try:
        invoice = invoices.find_by_payment_id(payment.id)
        if invoice is None and payment.external_reference:
            # The intent may have been created before our write of payment_id landed
            invoice = invoices.get(payment.external_reference)
            if invoice is not None:
                invoices.backfill_payment_id(invoice.id, payment.id)

        if invoice is None:
            db.rollback()
            log_action(
                db,
                "WEBHOOK_INVOICE_NOT_FOUND",
                FAILURE,
                f"No invoice matches payment {payment_id}",
                {
                    "paymentId": payment_id,
                    "externalReference": payment.external_reference,
                    "gatewayStatus": payment.status,
                },
            )
            outcome = ReconcileOutcome(outcome="invoice_not_found", new_status=new_status)
            record_webhook(outcome.outcome)
            return outcome

        if new_status != INVOICE_PAID and invoice.payment_id and invoice.payment_id != payment.id:
            # A newer artifact replaced this payment; its expiry says nothing about the invoice
            db.commit()
            outcome = ReconcileOutcome(outcome="stale", invoice_id=str(invoice.id), new_status=new_status)
            record_webhook(outcome.outcome)
            return outcome

        outcome = settle_invoice(
            db,
            invoice,
            new_status,
            config,
            now,
            amount_paid_cents=payment.amount_cents,
            payment_reference=payment.id,
        )
        db.commit()

    except StaleEventIgnored as stale:
        db.commit()
        return _handle_stale(db, stale, new_status, payment_id)

    except Exception as e:
        db.rollback()
        log_action(
            db,
            "WEBHOOK_PROCESSING",
            FAILURE,
            f"Failed to reconcile payment {payment_id}",
            {"paymentId": payment_id, "error": str(e)},
        )
        record_webhook("error")
        raise

    record_webhook(outcome.outcome, outcome.cashback_points, outcome.installments_generated)
    return outcome


def settle_invoice(
    db: Session,
    invoice: Invoice,
    new_status: str,
    config: ConfigSnapshot,
    now: datetime,
    amount_paid_cents: Optional[int] = None,
    payment_method: Optional[str] = None,
    payment_reference: Optional[str] = None,
) -> ReconcileOutcome:
    """
    Move an open invoice to a settled status and run the side effects of payment.

    Does not commit. Raises StaleEventIgnored when the invoice already left
    the open set, which is what makes cashback and installment generation
    happen at most once.
    """
    invoices = InvoiceRepository(db)
    invoice_id = str(invoice.id)

    applied = invoices.transition_if_open(
        invoice.id,
        new_status,
        allowed=PAYABLE_INVOICE_STATUSES,
        payment_date=now if new_status == INVOICE_PAID else None,
        payment_method=payment_method,
    )
    if not applied:
        db.refresh(invoice)
        raise StaleEventIgnored(invoice_id, invoice.status)

    outcome = ReconcileOutcome(outcome="applied", invoice_id=invoice_id, new_status=new_status)
    if new_status != INVOICE_PAID:
        log_action(
            db,
            "WEBHOOK_STATUS_UPDATE",
            SUCCESS,
            f"Invoice {invoice_id} set to {new_status}",
            {"invoiceId": invoice_id, "paymentId": payment_reference},
            commit=False,
        )
        return outcome

    outcome.cashback_points = _award_cashback(db, invoice, amount_paid_cents, config)
    outcome.installments_generated = _expand_installment_plan(db, invoice, now)

    log_action(
        db,
        "WEBHOOK_PAYMENT_APPROVED",
        SUCCESS,
        f"Invoice {invoice_id} paid",
        {
            "invoiceId": invoice_id,
            "paymentId": payment_reference,
            "cashback": outcome.cashback_points,
            "installmentsGenerated": outcome.installments_generated,
        },
        commit=False,
    )
    return outcome


def _award_cashback(db: Session, invoice: Invoice, amount_paid_cents: Optional[int], config: ConfigSnapshot) -> int:
    amount = amount_paid_cents if amount_paid_cents is not None else invoice.amount_cents
    points = cashback_points(amount, config.cashback_pct)
    if points <= 0:
        return 0

    if not ProfileRepository(db).credit_coins(invoice.user_id, points):
        logger.warning("Cashback skipped, profile missing", extra={"user_id": invoice.user_id})
        return 0

    NotificationRepository(db).create_notification(
        user_id=invoice.user_id,
        title="Cashback recebido!",
        message=f"Você ganhou {points} Relp Coins pelo pagamento de R$ {from_cents(amount)}.",
        type="success",
    )
    log_action(
        db,
        "CASHBACK_AWARDED",
        SUCCESS,
        f"Cashback: {points}",
        {"userId": invoice.user_id, "invoiceId": str(invoice.id)},
        commit=False,
    )
    return points


def _expand_installment_plan(db: Session, invoice: Invoice, now: datetime) -> int:
    """Generate the remaining installments of a paid down payment, at most once"""
    is_down_payment = invoice.kind == KIND_DOWN_PAYMENT or (invoice.notes or "").startswith(DOWN_PAYMENT_TAG)
    if not is_down_payment:
        return 0

    plans = InstallmentPlanRepository(db)
    contract_ref: Optional[str] = None
    plan_row = plans.get_for_invoice(invoice.id)

    if plan_row is not None:
        if not plans.consume_if_pending(plan_row.id, now):
            return 0
        contract_id = plan_row.contract_id
        remaining_cents = plan_row.remaining_cents
        count = plan_row.installment_count
        due_day = plan_row.due_day
    else:
        # Rows written before structured plans existed carry the plan in notes
        legacy = PendingInstallmentPlan.from_notes(invoice.notes)
        if legacy is None:
            logger.warning("Down payment without a usable plan", extra={"invoice_id": str(invoice.id)})
            return 0
        contract_id = parse_uuid(legacy.contract_id) if legacy.contract_id else invoice.contract_id
        contract_ref = legacy.contract_id
        remaining_cents = legacy.remaining_cents
        count = legacy.installment_count
        due_day = legacy.due_day

    schedule = generate_installment_schedule(remaining_cents, count, due_day, now.date())
    if not schedule:
        return 0

    InvoiceRepository(db).create_installments(
        user_id=invoice.user_id,
        checkout_id=invoice.checkout_id,
        contract_id=contract_id,
        installments=schedule,
        contract_ref=contract_ref,
    )
    NotificationRepository(db).create_notification(
        user_id=invoice.user_id,
        title="Entrada confirmada!",
        message=f"Recebemos sua entrada. Suas {count} parcelas já estão disponíveis.",
        type="success",
    )
    log_action(
        db,
        "INSTALLMENTS_GENERATED",
        SUCCESS,
        f"Geradas {count} parcelas após entrada paga.",
        {"invoiceId": str(invoice.id), "contractId": str(contract_id) if contract_id else contract_ref},
        commit=False,
    )
    return len(schedule)


def _handle_stale(db: Session, stale: StaleEventIgnored, new_status: str, payment_id: str) -> ReconcileOutcome:
    invoice_id = str(stale.invoice_id)

    if new_status == INVOICE_PAID and stale.current_status in (INVOICE_CANCELLED, INVOICE_EXPIRED):
        # Money arrived after the order was cancelled: flag for refund, never reopen
        invoice = InvoiceRepository(db).get(invoice_id)
        if invoice is not None:
            NotificationRepository(db).create_notification(
                user_id=invoice.user_id,
                title="Pagamento recebido após cancelamento",
                message="Seu pedido já havia sido cancelado. O valor pago será estornado.",
                type="warning",
            )
        log_action(
            db,
            "WEBHOOK_LATE_PAYMENT",
            FAILURE,
            f"Payment {payment_id} approved for invoice already '{stale.current_status}'",
            {"invoiceId": invoice_id, "paymentId": payment_id, "refund_required": True},
        )
        logger.warning(
            "Late payment for settled invoice",
            extra={"invoice_id": invoice_id, "payment_id": payment_id, "status": stale.current_status},
        )
        outcome = ReconcileOutcome(outcome="late_payment", invoice_id=invoice_id, new_status=stale.current_status)
        record_webhook(outcome.outcome)
        return outcome

    if new_status == INVOICE_PAID and stale.current_status == INVOICE_PAID:
        invoice = InvoiceRepository(db).get(invoice_id)
        if invoice is not None and invoice.payment_id and invoice.payment_id != payment_id:
            # Paid twice through different artifacts; the second charge is owed back
            log_action(
                db,
                "WEBHOOK_DUPLICATE_PAYMENT",
                FAILURE,
                f"Payment {payment_id} approved for invoice already paid by {invoice.payment_id}",
                {
                    "invoiceId": invoice_id,
                    "paymentId": payment_id,
                    "settledBy": invoice.payment_id,
                    "refund_required": True,
                },
            )
            logger.warning(
                "Second payment for paid invoice",
                extra={"invoice_id": invoice_id, "payment_id": payment_id, "settled_by": invoice.payment_id},
            )
            outcome = ReconcileOutcome(outcome="duplicate_payment", invoice_id=invoice_id, new_status=INVOICE_PAID)
            record_webhook(outcome.outcome)
            return outcome

    logger.debug(
        "Stale webhook ignored",
        extra={"invoice_id": invoice_id, "payment_id": payment_id, "status": stale.current_status},
    )
    outcome = ReconcileOutcome(outcome="stale", invoice_id=invoice_id, new_status=stale.current_status)
    record_webhook(outcome.outcome)
    return outcome


def approve_invoice_manually(
    db: Session,
    invoice_id: str,
    config: ConfigSnapshot,
    now: Optional[datetime] = None,
) -> ReconcileOutcome:
    """Operator confirmation of an off-gateway payment; same effects as an approved webhook"""
    invoice = InvoiceRepository(db).get(invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice", invoice_id)

    try:
        outcome = settle_invoice(db, invoice, INVOICE_PAID, config, now or utcnow(), payment_method="manual_admin")
    except StaleEventIgnored as stale:
        db.rollback()
        raise ConflictError(f"Invoice is already '{stale.current_status}'") from stale

    db.commit()
    record_webhook("manual_approval", outcome.cashback_points, outcome.installments_generated)
    return outcome
