"""Data access layer for ledger entities

Every status change goes through a conditional UPDATE whose WHERE clause
names the states the row may still be in; the affected row count tells the
caller whether it won the transition.
"""

import uuid
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import or_
from sqlalchemy.orm import Session

from crediario_engine.domain.models import (
    CONTRACT_CANCELLED,
    CONTRACT_PENDING_SIGNATURE,
    CONTRACT_SIGNED,
    DOWN_PAYMENT_TAG,
    INVOICE_AWAITING_SIGNATURE,
    INVOICE_OPEN,
    KIND_DOWN_PAYMENT,
    KIND_INSTALLMENT,
    OPEN_INVOICE_STATUSES,
    PLAN_CONSUMED,
    PLAN_DISCARDED,
    PLAN_PENDING,
    Installment,
    PaymentIntent,
)
from crediario_engine.infrastructure.database.models import (
    ActionLog,
    Contract,
    InstallmentPlan,
    Invoice,
    Notification,
    Profile,
    SystemSetting,
)


def parse_uuid(value: object) -> Optional[uuid.UUID]:
    """Return a UUID for ids arriving as strings; None when malformed"""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


class ProfileRepository:
    """Repository for customer profiles"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: str) -> Optional[Profile]:
        return self.db.query(Profile).filter(Profile.id == user_id).first()

    def debit_coins_if_sufficient(self, user_id: str, coins: int) -> bool:
        """Debit coins only while the balance still covers them"""
        updated = (
            self.db.query(Profile)
            .filter(Profile.id == user_id, Profile.coins_balance >= coins)
            .update({Profile.coins_balance: Profile.coins_balance - coins}, synchronize_session="fetch")
        )
        return updated == 1

    def credit_coins(self, user_id: str, coins: int) -> bool:
        """Atomic increment, no read-modify-write"""
        updated = (
            self.db.query(Profile)
            .filter(Profile.id == user_id)
            .update({Profile.coins_balance: Profile.coins_balance + coins}, synchronize_session="fetch")
        )
        return updated == 1

    def set_coins(self, profile: Profile, balance: int) -> None:
        profile.coins_balance = max(0, balance)
        self.db.flush()

    def set_due_day(self, profile: Profile, due_day: int, changed_at: datetime) -> None:
        profile.preferred_due_day = due_day
        profile.last_due_date_change = changed_at
        self.db.flush()


class ContractRepository:
    """Repository for credit contracts"""

    def __init__(self, db: Session):
        self.db = db

    def create_contract(
        self,
        user_id: str,
        checkout_id: str,
        title: str,
        items: str,
        total_cents: int,
        installment_count: int,
        status: str,
        signature_data: Optional[str] = None,
    ) -> Contract:
        db_contract = Contract(
            user_id=user_id,
            checkout_id=checkout_id,
            title=title,
            items=items,
            total_cents=total_cents,
            installment_count=installment_count,
            status=status,
            signature_data=signature_data,
            terms_accepted=signature_data is not None,
        )
        self.db.add(db_contract)
        self.db.flush()  # Get ID without committing
        return db_contract

    def get(self, contract_id: object) -> Optional[Contract]:
        contract_uuid = parse_uuid(contract_id)
        if contract_uuid is None:
            return None
        return self.db.query(Contract).filter(Contract.id == contract_uuid).first()

    def get_by_checkout(self, checkout_id: str) -> Optional[Contract]:
        return self.db.query(Contract).filter(Contract.checkout_id == checkout_id).first()

    def find_pending_signature_before(self, cutoff: datetime) -> List[Contract]:
        return (
            self.db.query(Contract)
            .filter(Contract.status == CONTRACT_PENDING_SIGNATURE, Contract.created_at < cutoff)
            .order_by(Contract.created_at)
            .all()
        )

    def find_in_window(self, user_id: str, start: datetime, end: datetime) -> List[Contract]:
        """Legacy grouping: contracts of the user created inside [start, end]"""
        return (
            self.db.query(Contract)
            .filter(
                Contract.user_id == user_id,
                Contract.created_at >= start,
                Contract.created_at <= end,
            )
            .all()
        )

    def cancel(self, contract_id: uuid.UUID, allowed: Sequence[str] | None = None) -> bool:
        """Cancel unless already cancelled (or outside `allowed` when given)"""
        query = self.db.query(Contract).filter(Contract.id == contract_id)
        if allowed is not None:
            query = query.filter(Contract.status.in_(allowed))
        else:
            query = query.filter(Contract.status != CONTRACT_CANCELLED)
        return query.update({Contract.status: CONTRACT_CANCELLED}, synchronize_session="fetch") == 1

    def sign_if_pending(self, contract_id: uuid.UUID, signature_data: str) -> bool:
        updated = (
            self.db.query(Contract)
            .filter(Contract.id == contract_id, Contract.status == CONTRACT_PENDING_SIGNATURE)
            .update(
                {
                    Contract.status: CONTRACT_SIGNED,
                    Contract.signature_data: signature_data,
                    Contract.terms_accepted: True,
                },
                synchronize_session="fetch",
            )
        )
        return updated == 1


class InvoiceRepository:
    """Repository for invoices"""

    def __init__(self, db: Session):
        self.db = db

    def create_invoice(
        self,
        user_id: str,
        checkout_id: Optional[str],
        contract_id: Optional[uuid.UUID],
        kind: str,
        month: str,
        due_date: date,
        amount_cents: int,
        status: str = INVOICE_OPEN,
        payment_method: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Invoice:
        db_invoice = Invoice(
            user_id=user_id,
            checkout_id=checkout_id,
            contract_id=contract_id,
            kind=kind,
            month=month,
            due_date=due_date,
            amount_cents=amount_cents,
            status=status,
            payment_method=payment_method,
            notes=notes,
        )
        self.db.add(db_invoice)
        self.db.flush()
        return db_invoice

    def create_installments(
        self,
        user_id: str,
        checkout_id: Optional[str],
        contract_id: Optional[uuid.UUID],
        installments: Iterable[Installment],
        suffix: str = "",
        status: str = INVOICE_OPEN,
        contract_ref: Optional[str] = None,
    ) -> List[Invoice]:
        """Insert one invoice per scheduled installment"""
        reference = contract_ref or (str(contract_id) if contract_id else None)
        created = []
        for inst in installments:
            db_invoice = Invoice(
                user_id=user_id,
                checkout_id=checkout_id,
                contract_id=contract_id,
                kind=KIND_INSTALLMENT,
                month=f"{inst.label}{suffix}",
                due_date=inst.due_date,
                amount_cents=inst.amount_cents,
                status=status,
                notes=f"Contrato {reference}" if reference else None,
            )
            self.db.add(db_invoice)
            created.append(db_invoice)
        self.db.flush()
        return created

    def get(self, invoice_id: object) -> Optional[Invoice]:
        invoice_uuid = parse_uuid(invoice_id)
        if invoice_uuid is None:
            return None
        return self.db.query(Invoice).filter(Invoice.id == invoice_uuid).first()

    def find_by_payment_id(self, payment_id: str) -> Optional[Invoice]:
        return self.db.query(Invoice).filter(Invoice.payment_id == str(payment_id)).first()

    def backfill_payment_id(self, invoice_id: uuid.UUID, payment_id: str) -> bool:
        """Store the gateway reference if none was persisted yet"""
        updated = (
            self.db.query(Invoice)
            .filter(Invoice.id == invoice_id, Invoice.payment_id.is_(None))
            .update({Invoice.payment_id: str(payment_id)}, synchronize_session="fetch")
        )
        return updated == 1

    def transition_if_open(
        self,
        invoice_id: uuid.UUID,
        new_status: str,
        allowed: Sequence[str] = OPEN_INVOICE_STATUSES,
        payment_date: Optional[datetime] = None,
        payment_method: Optional[str] = None,
    ) -> bool:
        """
        Move an invoice to `new_status` only if it is still in `allowed`.

        Returns False when another writer (or an earlier delivery of the
        same event) already moved it.
        """
        values: Dict = {Invoice.status: new_status}
        if payment_date is not None:
            values[Invoice.payment_date] = payment_date
        if payment_method is not None:
            values[Invoice.payment_method] = payment_method

        updated = (
            self.db.query(Invoice)
            .filter(Invoice.id == invoice_id, Invoice.status.in_(allowed))
            .update(values, synchronize_session="fetch")
        )
        return updated == 1

    def attach_payment_intent(self, invoice: Invoice, intent: PaymentIntent, method: str) -> None:
        invoice.payment_id = str(intent.id)
        invoice.payment_method = method
        invoice.payment_code = intent.qr_code
        invoice.boleto_url = intent.boleto_url
        invoice.boleto_barcode = intent.barcode
        invoice.payment_url = intent.redirect_url
        self.db.flush()

    def list_open_for_user(self, user_id: str) -> List[Invoice]:
        return (
            self.db.query(Invoice)
            .filter(Invoice.user_id == user_id, Invoice.status.in_(OPEN_INVOICE_STATUSES))
            .all()
        )

    def list_open(self, limit: int = 200) -> List[Invoice]:
        return (
            self.db.query(Invoice)
            .filter(Invoice.status.in_(OPEN_INVOICE_STATUSES))
            .order_by(Invoice.due_date)
            .limit(limit)
            .all()
        )

    def find_stale_down_payments(self, cutoff: datetime) -> List[Invoice]:
        """Unpaid down payments created before `cutoff`"""
        return (
            self.db.query(Invoice)
            .filter(
                or_(Invoice.kind == KIND_DOWN_PAYMENT, Invoice.notes.like(f"{DOWN_PAYMENT_TAG}%")),
                Invoice.status == INVOICE_OPEN,
                Invoice.created_at < cutoff,
            )
            .order_by(Invoice.created_at)
            .all()
        )

    def find_siblings(
        self,
        invoice_id: uuid.UUID,
        user_id: str,
        checkout_id: Optional[str],
        window_start: datetime,
        window_end: datetime,
        statuses: Sequence[str],
    ) -> List[Invoice]:
        """
        Other invoices of the same checkout.

        Rows carrying a checkout id are matched on it; legacy rows fall back
        to same user and created_at inside the window.
        """
        query = self.db.query(Invoice).filter(Invoice.id != invoice_id, Invoice.status.in_(statuses))
        if checkout_id:
            query = query.filter(Invoice.checkout_id == checkout_id)
        else:
            query = query.filter(
                Invoice.user_id == user_id,
                Invoice.created_at >= window_start,
                Invoice.created_at <= window_end,
            )
        return query.all()

    def find_in_window(
        self, user_id: str, start: datetime, end: datetime, statuses: Sequence[str]
    ) -> List[Invoice]:
        """Legacy grouping: invoices of the user created inside [start, end]"""
        return (
            self.db.query(Invoice)
            .filter(
                Invoice.user_id == user_id,
                Invoice.status.in_(statuses),
                Invoice.created_at >= start,
                Invoice.created_at <= end,
            )
            .all()
        )

    def find_by_checkout(self, checkout_id: str, statuses: Sequence[str]) -> List[Invoice]:
        return (
            self.db.query(Invoice)
            .filter(Invoice.checkout_id == checkout_id, Invoice.status.in_(statuses))
            .order_by(Invoice.due_date)
            .all()
        )

    def find_for_contract(self, contract_id: uuid.UUID, statuses: Sequence[str]) -> List[Invoice]:
        return (
            self.db.query(Invoice)
            .filter(Invoice.contract_id == contract_id, Invoice.status.in_(statuses))
            .all()
        )

    def find_due_on(self, due_dates: Sequence[date]) -> List[Invoice]:
        """Open installments due on one of `due_dates`, down payments excluded"""
        return (
            self.db.query(Invoice)
            .filter(
                Invoice.status == INVOICE_OPEN,
                Invoice.due_date.in_(due_dates),
                Invoice.kind != KIND_DOWN_PAYMENT,
                or_(Invoice.notes.is_(None), ~Invoice.notes.like(f"{DOWN_PAYMENT_TAG}%")),
            )
            .order_by(Invoice.due_date)
            .all()
        )

    def release_awaiting_signature(self, invoice_ids: Sequence[uuid.UUID]) -> int:
        if not invoice_ids:
            return 0
        return (
            self.db.query(Invoice)
            .filter(Invoice.id.in_(invoice_ids), Invoice.status == INVOICE_AWAITING_SIGNATURE)
            .update({Invoice.status: INVOICE_OPEN}, synchronize_session="fetch")
        )


class InstallmentPlanRepository:
    """Repository for pending installment plans"""

    def __init__(self, db: Session):
        self.db = db

    def create_plan(
        self,
        down_payment_invoice_id: uuid.UUID,
        contract_id: Optional[uuid.UUID],
        remaining_cents: int,
        installment_count: int,
        due_day: int,
    ) -> InstallmentPlan:
        db_plan = InstallmentPlan(
            down_payment_invoice_id=down_payment_invoice_id,
            contract_id=contract_id,
            remaining_cents=remaining_cents,
            installment_count=installment_count,
            due_day=due_day,
            status=PLAN_PENDING,
        )
        self.db.add(db_plan)
        self.db.flush()
        return db_plan

    def get_for_invoice(self, invoice_id: uuid.UUID) -> Optional[InstallmentPlan]:
        return (
            self.db.query(InstallmentPlan)
            .filter(InstallmentPlan.down_payment_invoice_id == invoice_id)
            .first()
        )

    def consume_if_pending(self, plan_id: uuid.UUID, consumed_at: datetime) -> bool:
        updated = (
            self.db.query(InstallmentPlan)
            .filter(InstallmentPlan.id == plan_id, InstallmentPlan.status == PLAN_PENDING)
            .update(
                {InstallmentPlan.status: PLAN_CONSUMED, InstallmentPlan.consumed_at: consumed_at},
                synchronize_session="fetch",
            )
        )
        return updated == 1

    def discard_for_invoice(self, invoice_id: uuid.UUID) -> bool:
        updated = (
            self.db.query(InstallmentPlan)
            .filter(
                InstallmentPlan.down_payment_invoice_id == invoice_id,
                InstallmentPlan.status == PLAN_PENDING,
            )
            .update({InstallmentPlan.status: PLAN_DISCARDED}, synchronize_session="fetch")
        )
        return updated == 1


class NotificationRepository:
    """Repository for in-app notifications"""

    def __init__(self, db: Session):
        self.db = db

    def create_notification(self, user_id: str, title: str, message: str, type: str = "info") -> Notification:
        db_notification = Notification(user_id=user_id, title=title, message=message, type=type, read=False)
        self.db.add(db_notification)
        self.db.flush()
        return db_notification

    def exists_since(self, user_id: str, title: str, since: datetime) -> bool:
        return (
            self.db.query(Notification.id)
            .filter(
                Notification.user_id == user_id,
                Notification.title == title,
                Notification.created_at >= since,
            )
            .first()
            is not None
        )


class ActionLogRepository:
    """Repository for the audit trail"""

    def __init__(self, db: Session):
        self.db = db

    def recent(self, prefix: str = "", limit: int = 50) -> List[ActionLog]:
        query = self.db.query(ActionLog)
        if prefix:
            query = query.filter(ActionLog.action_type.like(f"{prefix}%"))
        return query.order_by(ActionLog.created_at.desc()).limit(limit).all()


class SettingsRepository:
    """Repository for key/value system settings"""

    def __init__(self, db: Session):
        self.db = db

    def all(self) -> Dict[str, str]:
        return {row.key: row.value for row in self.db.query(SystemSetting).all()}

    def upsert(self, key: str, value: str) -> SystemSetting:
        row = self.db.query(SystemSetting).filter(SystemSetting.key == key).first()
        if row is None:
            row = SystemSetting(key=key, value=value)
            self.db.add(row)
        else:
            row.value = value
        self.db.flush()
        return row
