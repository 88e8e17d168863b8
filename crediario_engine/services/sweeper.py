"""Scheduled sweep: expire unpaid down payments, cancel unsigned contracts, send due-date reminders"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from crediario_engine.config import Settings, settings as default_settings
from crediario_engine.domain.financing import from_cents
from crediario_engine.domain.models import (
    CONTRACT_PENDING_SIGNATURE,
    INVOICE_AWAITING_SIGNATURE,
    INVOICE_CANCELLED,
    INVOICE_OPEN,
    OPEN_INVOICE_STATUSES,
    SweepReport,
)
from crediario_engine.infrastructure.clients.mailer import Mailer
from crediario_engine.infrastructure.database.models import Contract, Invoice
from crediario_engine.infrastructure.database.repositories import (
    ContractRepository,
    InstallmentPlanRepository,
    InvoiceRepository,
    NotificationRepository,
    ProfileRepository,
)
from crediario_engine.infrastructure.observability.metrics import record_sweep
from crediario_engine.services.action_log import FAILURE, SUCCESS, log_action
from crediario_engine.utils.date_utils import start_of_day, utcnow

logger = logging.getLogger(__name__)

DUE_TODAY_TITLE = "⚠️ Fatura Vence Hoje!"
DUE_SOON_TITLE = "📅 Fatura Vencendo"


async def run_sweep(
    db: Session,
    mailer: Mailer,
    now: Optional[datetime] = None,
    config: Settings = default_settings,
) -> SweepReport:
    """
    Run the three passes and write one summary ActionLog entry.

    Each row is handled in its own transaction; a failing row is counted
    and skipped. Safe to re-run: every write is conditional on the row
    still being in its expected state.
    """
    now = now or utcnow()
    report = SweepReport()

    try:
        expire_stale_down_payments(db, now, report, config)
        cancel_unsigned_contracts(db, now, report, config)
        await send_due_reminders(db, mailer, now, report, config)
    except Exception as e:
        db.rollback()
        log_action(
            db,
            "CRON_INVOICE_CHECK",
            FAILURE,
            "Erro ao executar verificação de faturas.",
            {"error": str(e), **report.as_dict()},
        )
        raise

    log_action(
        db,
        "CRON_INVOICE_CHECK",
        SUCCESS,
        (
            f"Verificação automática realizada. {report.down_payments_expired} entradas expiradas, "
            f"{report.contracts_cancelled} contratos cancelados, {report.reminders_sent} lembretes, "
            f"{report.emails_sent} emails."
        ),
        {**report.as_dict(), "errors": report.errors[:20]},
    )
    record_sweep(report)
    return report


def _record_failure(db: Session, report: SweepReport, what: str, row_id: object, error: Exception) -> None:
    db.rollback()
    report.failures += 1
    report.errors.append(f"{what} {row_id}: {error}")
    logger.exception("Sweep row failed", extra={"pass": what, "row_id": str(row_id)})


def expire_stale_down_payments(db: Session, now: datetime, report: SweepReport, config: Settings = default_settings) -> None:
    """Pass 1: down payments unpaid after the timeout cancel their whole checkout"""
    cutoff = now - timedelta(hours=config.down_payment_timeout_hours)
    stale = InvoiceRepository(db).find_stale_down_payments(cutoff)

    for invoice_id in [inv.id for inv in stale]:
        try:
            _cancel_checkout_of_down_payment(db, invoice_id, report, config)
            db.commit()
        except Exception as e:
            _record_failure(db, report, "down_payment", invoice_id, e)


def _cancel_checkout_of_down_payment(db: Session, invoice_id, report: SweepReport, config: Settings) -> None:
    invoices = InvoiceRepository(db)
    invoice = invoices.get(invoice_id)
    if invoice is None or not invoices.transition_if_open(invoice.id, INVOICE_CANCELLED, allowed=(INVOICE_OPEN,)):
        return  # paid or cancelled meanwhile

    report.down_payments_expired += 1
    report.invoices_cancelled += 1
    InstallmentPlanRepository(db).discard_for_invoice(invoice.id)

    window = timedelta(seconds=config.sibling_window_seconds)
    siblings = invoices.find_siblings(
        invoice.id,
        invoice.user_id,
        invoice.checkout_id,
        invoice.created_at - window,
        invoice.created_at + window,
        OPEN_INVOICE_STATUSES,
    )
    for sibling in siblings:
        if invoices.transition_if_open(sibling.id, INVOICE_CANCELLED):
            report.invoices_cancelled += 1

    for contract in _contracts_of_checkout(db, invoice.user_id, invoice.checkout_id, invoice.contract_id, invoice.created_at, window):
        if ContractRepository(db).cancel(contract.id):
            report.contracts_cancelled += 1

    NotificationRepository(db).create_notification(
        user_id=invoice.user_id,
        title="Pedido cancelado",
        message=(
            f"O pagamento da entrada de R$ {from_cents(invoice.amount_cents)} não foi identificado em "
            f"{config.down_payment_timeout_hours} horas e seu pedido foi cancelado."
        ),
        type="alert",
    )
    report.notifications_sent += 1


def _contracts_of_checkout(db: Session, user_id: str, checkout_id, contract_id, created_at: datetime, window: timedelta) -> List[Contract]:
    contracts = ContractRepository(db)
    if checkout_id:
        contract = contracts.get_by_checkout(checkout_id)
        return [contract] if contract is not None else []
    if contract_id:
        contract = contracts.get(contract_id)
        return [contract] if contract is not None else []
    return contracts.find_in_window(user_id, created_at - window, created_at + window)


def cancel_unsigned_contracts(db: Session, now: datetime, report: SweepReport, config: Settings = default_settings) -> None:
    """Pass 2: contracts never signed within the timeout are cancelled with their waiting invoices"""
    cutoff = now - timedelta(hours=config.signature_timeout_hours)
    pending = ContractRepository(db).find_pending_signature_before(cutoff)

    for contract_id in [c.id for c in pending]:
        try:
            _cancel_unsigned_contract(db, contract_id, report, config)
            db.commit()
        except Exception as e:
            _record_failure(db, report, "contract", contract_id, e)


def _cancel_unsigned_contract(db: Session, contract_id, report: SweepReport, config: Settings) -> None:
    contracts = ContractRepository(db)
    invoices = InvoiceRepository(db)
    contract = contracts.get(contract_id)
    if contract is None or not contracts.cancel(contract.id, allowed=(CONTRACT_PENDING_SIGNATURE,)):
        return

    report.contracts_cancelled += 1

    waiting: List[Invoice]
    if contract.checkout_id:
        waiting = invoices.find_by_checkout(contract.checkout_id, (INVOICE_AWAITING_SIGNATURE,))
    else:
        window = timedelta(seconds=config.sibling_window_seconds)
        waiting = invoices.find_in_window(
            contract.user_id,
            contract.created_at - window,
            contract.created_at + window,
            (INVOICE_AWAITING_SIGNATURE,),
        )

    plans = InstallmentPlanRepository(db)
    for invoice in waiting:
        if invoices.transition_if_open(invoice.id, INVOICE_CANCELLED, allowed=(INVOICE_AWAITING_SIGNATURE,)):
            report.invoices_cancelled += 1
            plans.discard_for_invoice(invoice.id)

    NotificationRepository(db).create_notification(
        user_id=contract.user_id,
        title="Contrato cancelado",
        message=(
            f"Seu contrato não foi assinado em {config.signature_timeout_hours} horas "
            "e o pedido foi cancelado."
        ),
        type="alert",
    )
    report.notifications_sent += 1


async def send_due_reminders(
    db: Session,
    mailer: Mailer,
    now: datetime,
    report: SweepReport,
    config: Settings = default_settings,
) -> None:
    """Pass 3: one reminder per user and title per day, for invoices due today or in N days"""
    today = now.date()
    ahead = today + timedelta(days=config.reminder_days_ahead)
    since = start_of_day(now)

    due = InvoiceRepository(db).find_due_on([today, ahead])
    for invoice_id in [inv.id for inv in due]:
        try:
            await _remind(db, mailer, invoice_id, today, since, report, config)
        except Exception as e:
            _record_failure(db, report, "reminder", invoice_id, e)


async def _remind(db: Session, mailer: Mailer, invoice_id, today, since: datetime, report: SweepReport, config: Settings) -> None:
    invoice = InvoiceRepository(db).get(invoice_id)
    if invoice is None or invoice.status != INVOICE_OPEN:
        return

    profile = ProfileRepository(db).get(invoice.user_id)
    first_name = (profile.first_name if profile else None) or "cliente"
    amount = from_cents(invoice.amount_cents)

    is_due_today = invoice.due_date == today
    if is_due_today:
        title = DUE_TODAY_TITLE
        message = f"Olá {first_name}, sua fatura de R$ {amount} vence hoje. Evite juros!"
        kind = "alert"
    else:
        title = DUE_SOON_TITLE
        message = (
            f"Olá {first_name}, lembrete: sua fatura de R$ {amount} vence em {config.reminder_days_ahead} dias."
        )
        kind = "warning"

    notifications = NotificationRepository(db)
    if notifications.exists_since(invoice.user_id, title, since):
        return

    notifications.create_notification(user_id=invoice.user_id, title=title, message=message, type=kind)
    db.commit()
    report.reminders_sent += 1
    report.notifications_sent += 1

    body = (
        "<h1>Relp Cell - Aviso de Fatura</h1>"
        f"<p>Olá <strong>{first_name}</strong>,</p>"
        f"<p>{message}</p>"
        "<p>Acesse o aplicativo para realizar o pagamento via PIX ou Boleto.</p>"
    )
    if await mailer.send(profile.email if profile else None, title, body):
        report.emails_sent += 1
