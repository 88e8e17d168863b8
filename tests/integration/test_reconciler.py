"""Integration tests for webhook reconciliation against the ledger"""

import pytest
from datetime import date
from decimal import Decimal
from crediario_engine.domain.exceptions import ConflictError, GatewayUnavailable
from crediario_engine.domain.models import (
    INVOICE_BOLETO_GENERATED,
    INVOICE_CANCELLED,
    INVOICE_EXPIRED,
    INVOICE_OPEN,
    INVOICE_PAID,
    KIND_DOWN_PAYMENT,
    KIND_INSTALLMENT,
    PLAN_CONSUMED,
    GatewayPayment,
    SaleRequest,
)
from crediario_engine.infrastructure.database.models import ActionLog, InstallmentPlan, Invoice, Profile
from crediario_engine.infrastructure.database.repositories import InvoiceRepository
from crediario_engine.services.reconciler import approve_invoice_manually, reconcile_payment_event
from crediario_engine.services.sales import create_sale


async def _crediario_sale(db, gateway, config, **overrides):
    request = SaleRequest(
        user_id="user_1",
        product_name="Smartphone X",
        total_amount=Decimal("1000"),
        installment_count=3,
        sale_type="crediario",
        payment_method="pix",
        down_payment=Decimal("100"),
        signature="assinatura-base64",
    )
    for key, value in overrides.items():
        setattr(request, key, value)
    return await create_sale(db, gateway, request, config)


def _legacy_invoice(db, status=INVOICE_OPEN, payment_id="pay-1", notes=None, amount_cents=10000, kind=KIND_INSTALLMENT):
    invoice = InvoiceRepository(db).create_invoice(
        user_id="user_1",
        checkout_id=None,
        contract_id=None,
        kind=kind,
        month="Entrada - Geladeira",
        due_date=date.today(),
        amount_cents=amount_cents,
        status=status,
        payment_method="pix",
        notes=notes,
    )
    invoice.payment_id = payment_id
    db.commit()
    return invoice


def _installments(db, checkout_id=None):
    query = db.query(Invoice).filter(Invoice.kind == KIND_INSTALLMENT)
    if checkout_id:
        query = query.filter(Invoice.checkout_id == checkout_id)
    return query.order_by(Invoice.due_date).all()


def _logs(db, action_type):
    return db.query(ActionLog).filter(ActionLog.action_type == action_type).all()


async def test_approved_down_payment_generates_installments_and_cashback(db, gateway, config, make_profile):
    make_profile()
    sale = await _crediario_sale(db, gateway, config)

    outcome = await reconcile_payment_event(db, gateway, "payment", "pay-1", config)

    assert outcome.outcome == "applied"
    assert outcome.new_status == INVOICE_PAID
    assert outcome.installments_generated == 3
    assert outcome.cashback_points == 150  # 1.5% of R$100.00

    down_payment = InvoiceRepository(db).get(sale.invoice_id)
    assert down_payment.status == INVOICE_PAID
    assert down_payment.payment_date is not None

    installments = _installments(db, sale.checkout_id)
    assert [inv.amount_cents for inv in installments] == [30000, 30000, 30000]
    assert all(inv.due_date.day == 10 for inv in installments)
    assert all(inv.status == INVOICE_OPEN for inv in installments)

    plan = db.query(InstallmentPlan).one()
    assert plan.status == PLAN_CONSUMED
    assert db.get(Profile, "user_1").coins_balance == 150


async def test_duplicate_delivery_is_a_no_op(db, gateway, config, make_profile):
    make_profile()
    sale = await _crediario_sale(db, gateway, config)

    first = await reconcile_payment_event(db, gateway, "payment", "pay-1", config)
    second = await reconcile_payment_event(db, gateway, "payment", "pay-1", config)

    assert first.outcome == "applied"
    assert second.outcome == "stale"
    assert second.new_status == INVOICE_PAID
    assert len(_installments(db, sale.checkout_id)) == 3
    assert db.get(Profile, "user_1").coins_balance == 150
    assert len(_logs(db, "CASHBACK_AWARDED")) == 1


async def test_legacy_notes_expand_into_installments(db, gateway, config, make_profile):
    make_profile()
    invoice = _legacy_invoice(db, notes="ENTRADA|C1|900|3|10")

    outcome = await reconcile_payment_event(db, gateway, "payment", "pay-1", config)

    assert outcome.outcome == "applied"
    installments = [inv for inv in _installments(db) if inv.id != invoice.id]
    assert len(installments) == 3
    assert sum(inv.amount_cents for inv in installments) == 90000
    assert all(inv.due_date.day == 10 for inv in installments)
    assert all(inv.notes == "Contrato C1" for inv in installments)


async def test_direct_payment_awards_cashback_only(db, gateway, config, make_profile):
    make_profile()
    _legacy_invoice(db, notes="VENDA_AVISTA", amount_cents=30000)
    gateway.get_payment.return_value = GatewayPayment(
        id="pay-1", status="approved", status_detail="accredited", amount_cents=30000
    )

    outcome = await reconcile_payment_event(db, gateway, "payment", "pay-1", config)

    assert outcome.outcome == "applied"
    assert outcome.cashback_points == 450
    assert outcome.installments_generated == 0


async def test_boleto_generated_invoice_can_be_paid(db, gateway, config, make_profile):
    make_profile()
    invoice = _legacy_invoice(db, status=INVOICE_BOLETO_GENERATED)

    outcome = await reconcile_payment_event(db, gateway, "payment", "pay-1", config)

    assert outcome.outcome == "applied"
    db.refresh(invoice)
    assert invoice.status == INVOICE_PAID


async def test_falls_back_to_external_reference_and_backfills(db, gateway, config, make_profile):
    make_profile()
    invoice = _legacy_invoice(db, payment_id=None)
    gateway.get_payment.return_value = GatewayPayment(
        id="pay-9",
        status="approved",
        status_detail="accredited",
        amount_cents=10000,
        external_reference=str(invoice.id),
    )

    outcome = await reconcile_payment_event(db, gateway, "payment", "pay-9", config)

    assert outcome.outcome == "applied"
    db.refresh(invoice)
    assert invoice.status == INVOICE_PAID
    assert invoice.payment_id == "pay-9"


async def test_expired_payment_expires_invoice(db, gateway, config, make_profile):
    make_profile()
    invoice = _legacy_invoice(db)
    gateway.get_payment.return_value = GatewayPayment(
        id="pay-1", status="cancelled", status_detail="expired", amount_cents=10000
    )

    outcome = await reconcile_payment_event(db, gateway, "payment", "pay-1", config)

    assert outcome.outcome == "applied"
    assert outcome.cashback_points == 0
    db.refresh(invoice)
    assert invoice.status == INVOICE_EXPIRED


async def test_cancellation_of_superseded_payment_is_stale(db, gateway, config, make_profile):
    make_profile()
    invoice = _legacy_invoice(db, payment_id="pay-2")
    gateway.get_payment.return_value = GatewayPayment(
        id="pay-1",
        status="cancelled",
        status_detail="expired",
        amount_cents=10000,
        external_reference=str(invoice.id),
    )

    outcome = await reconcile_payment_event(db, gateway, "payment", "pay-1", config)

    assert outcome.outcome == "stale"
    db.refresh(invoice)
    assert invoice.status == INVOICE_OPEN
    assert invoice.payment_id == "pay-2"


async def test_late_payment_for_cancelled_invoice_is_flagged_not_applied(db, gateway, config, make_profile):
    make_profile()
    invoice = _legacy_invoice(db, status=INVOICE_CANCELLED, notes="ENTRADA|C1|900|3|10")

    outcome = await reconcile_payment_event(db, gateway, "payment", "pay-1", config)

    assert outcome.outcome == "late_payment"
    db.refresh(invoice)
    assert invoice.status == INVOICE_CANCELLED
    assert len(_installments(db)) == 1  # only the legacy row itself
    assert db.get(Profile, "user_1").coins_balance == 0

    entries = _logs(db, "WEBHOOK_LATE_PAYMENT")
    assert len(entries) == 1
    assert entries[0].details["refund_required"] is True


async def test_second_payment_for_paid_invoice_is_flagged_for_refund(db, gateway, config, make_profile):
    make_profile()
    invoice = _legacy_invoice(db, payment_id="pay-2")

    gateway.get_payment.return_value = GatewayPayment(
        id="pay-2", status="approved", status_detail="accredited", amount_cents=None, external_reference=str(invoice.id)
    )
    first = await reconcile_payment_event(db, gateway, "payment", "pay-2", config)

    # The customer also paid the artifact that pay-2 replaced
    gateway.get_payment.return_value = GatewayPayment(
        id="pay-1", status="approved", status_detail="accredited", amount_cents=None, external_reference=str(invoice.id)
    )
    second = await reconcile_payment_event(db, gateway, "payment", "pay-1", config)

    assert first.outcome == "applied"
    assert second.outcome == "duplicate_payment"
    db.refresh(invoice)
    assert invoice.status == INVOICE_PAID
    assert invoice.payment_id == "pay-2"
    assert len(_logs(db, "CASHBACK_AWARDED")) == 1

    entries = _logs(db, "WEBHOOK_DUPLICATE_PAYMENT")
    assert len(entries) == 1
    assert entries[0].status == "FAILURE"
    assert entries[0].details["paymentId"] == "pay-1"
    assert entries[0].details["refund_required"] is True


async def test_unknown_invoice_is_logged(db, gateway, config):
    outcome = await reconcile_payment_event(db, gateway, "payment", "pay-404", config)

    assert outcome.outcome == "invoice_not_found"
    assert len(_logs(db, "WEBHOOK_INVOICE_NOT_FOUND")) == 1


async def test_non_payment_events_are_ignored(db, gateway, config):
    outcome = await reconcile_payment_event(db, gateway, "merchant_order", "123", config)

    assert outcome.outcome == "ignored"
    gateway.get_payment.assert_not_awaited()


async def test_payment_unknown_to_gateway_is_ignored(db, gateway, config):
    gateway.get_payment.return_value = None

    outcome = await reconcile_payment_event(db, gateway, "payment", "pay-1", config)

    assert outcome.outcome == "ignored"


async def test_pending_payment_changes_nothing(db, gateway, config, make_profile):
    make_profile()
    invoice = _legacy_invoice(db)
    gateway.get_payment.return_value = GatewayPayment(
        id="pay-1", status="pending", status_detail="pending_waiting_payment", amount_cents=10000
    )

    outcome = await reconcile_payment_event(db, gateway, "payment", "pay-1", config)

    assert outcome.outcome == "no_op"
    db.refresh(invoice)
    assert invoice.status == INVOICE_OPEN


async def test_gateway_outage_propagates_for_retry(db, gateway, config):
    gateway.get_payment.side_effect = GatewayUnavailable("timeout")

    with pytest.raises(GatewayUnavailable):
        await reconcile_payment_event(db, gateway, "payment", "pay-1", config)

    failures = db.query(ActionLog).filter(ActionLog.status == "FAILURE").all()
    assert [entry.action_type for entry in failures] == ["WEBHOOK_GATEWAY_UNAVAILABLE"]
    assert failures[0].details["paymentId"] == "pay-1"


def test_manual_approval_settles_once(db, config, make_profile):
    make_profile()
    invoice = _legacy_invoice(db, payment_id=None, kind=KIND_DOWN_PAYMENT)

    outcome = approve_invoice_manually(db, str(invoice.id), config)

    assert outcome.outcome == "applied"
    db.refresh(invoice)
    assert invoice.status == INVOICE_PAID
    assert invoice.payment_method == "manual_admin"

    with pytest.raises(ConflictError):
        approve_invoice_manually(db, str(invoice.id), config)
