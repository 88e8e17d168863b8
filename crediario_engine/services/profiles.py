"""Customer credit position, due-day preference and loyalty coin adjustments"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, Optional

from sqlalchemy.orm import Session

from crediario_engine.config import settings
from crediario_engine.domain.exceptions import ConflictError, NotFoundError, ValidationError
from crediario_engine.domain.financing import (
    available_monthly_credit,
    from_cents,
    monthly_commitments,
    peak_month,
    to_cents,
)
from crediario_engine.domain.models import DOWN_PAYMENT_TAG, KIND_INSTALLMENT, CreditSummary
from crediario_engine.infrastructure.database.models import Invoice, Profile
from crediario_engine.infrastructure.database.repositories import InvoiceRepository, ProfileRepository
from crediario_engine.services.action_log import SUCCESS, log_action
from crediario_engine.utils.date_utils import month_key, utcnow


def counts_against_credit(invoice: Invoice) -> bool:
    """Down payments and one-off cash purchases do not consume monthly credit"""
    if invoice.kind != KIND_INSTALLMENT:
        return False
    notes = invoice.notes or ""
    return DOWN_PAYMENT_TAG not in notes and "VENDA_AVISTA" not in notes


def commitments_by_month(invoices: Iterable[Invoice]) -> Dict[str, Decimal]:
    """Open installment amounts (reais) grouped by due month"""
    return monthly_commitments(
        (month_key(inv.due_date), from_cents(inv.amount_cents)) for inv in invoices if counts_against_credit(inv)
    )


def get_profile_or_raise(db: Session, user_id: str) -> Profile:
    profile = ProfileRepository(db).get(user_id)
    if profile is None:
        raise NotFoundError("Profile", user_id)
    return profile


def credit_summary(db: Session, user_id: str) -> CreditSummary:
    """Available monthly credit under the peak-month rule"""
    profile = get_profile_or_raise(db, user_id)
    commitments = commitments_by_month(InvoiceRepository(db).list_open_for_user(user_id))
    month, peak = peak_month(commitments)
    available = available_monthly_credit(from_cents(profile.credit_limit_cents or 0), commitments)

    return CreditSummary(
        user_id=user_id,
        credit_limit_cents=profile.credit_limit_cents or 0,
        peak_month=month,
        peak_commitment_cents=to_cents(peak),
        available_cents=to_cents(available),
        coins_balance=profile.coins_balance or 0,
    )


def change_due_day(db: Session, user_id: str, due_day: int, now: Optional[datetime] = None) -> Profile:
    """
    Update the preferred due day.

    Allowed once every `due_day_change_cooldown_days` (90 by default).
    """
    if not 1 <= due_day <= 31:
        raise ValidationError("due_day must be between 1 and 31")

    now = now or utcnow()
    profile = get_profile_or_raise(db, user_id)

    last_change = profile.last_due_date_change
    if last_change is not None:
        if last_change.tzinfo is None and now.tzinfo is not None:
            last_change = last_change.replace(tzinfo=now.tzinfo)
        next_allowed = last_change + timedelta(days=settings.due_day_change_cooldown_days)
        if now < next_allowed:
            raise ConflictError(f"Due day can be changed again after {next_allowed.date().isoformat()}")

    ProfileRepository(db).set_due_day(profile, due_day, now)
    db.commit()
    log_action(db, "DUE_DAY_CHANGED", SUCCESS, f"Due day set to {due_day}", {"userId": user_id})
    return profile


def manage_coins(db: Session, user_id: str, amount: int, action: str) -> int:
    """Operator adjustment of the coin balance; never goes below zero"""
    if amount < 0:
        raise ValidationError("amount must be >= 0")

    profile = get_profile_or_raise(db, user_id)
    balance = profile.coins_balance or 0

    if action == "add":
        balance += amount
    elif action == "remove":
        balance -= amount
    elif action == "set":
        balance = amount
    else:
        raise ValidationError("action must be one of add, remove, set")

    ProfileRepository(db).set_coins(profile, balance)
    db.commit()
    log_action(
        db,
        "COINS_ADJUSTED",
        SUCCESS,
        f"Coins {action} {amount}",
        {"userId": user_id, "newBalance": profile.coins_balance},
    )
    return profile.coins_balance
