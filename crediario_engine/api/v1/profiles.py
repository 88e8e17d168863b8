"""Customer credit position, due-day preference, coin adjustments and financing quotes"""

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from crediario_engine.api.dependencies import get_config_snapshot, get_request_id
from crediario_engine.api.errors import http_error
from crediario_engine.api.v1.schemas import (
    CoinsRequest,
    CoinsResponse,
    CreditSummaryResponse,
    DueDayRequest,
    DueDayResponse,
    QuoteResponse,
)
from crediario_engine.domain.exceptions import DomainException
from crediario_engine.domain.financing import (
    financed_total,
    from_cents,
    installment_value,
    required_down_payment,
    round_money,
)
from crediario_engine.domain.models import ConfigSnapshot
from crediario_engine.infrastructure.database.session import get_db
from crediario_engine.services.profiles import change_due_day, credit_summary, manage_coins

router = APIRouter()


@router.get("/profiles/{user_id}/credit", response_model=CreditSummaryResponse)
def get_credit(user_id: str, request: Request, db: Session = Depends(get_db)):
    """Available monthly credit under the peak-month rule"""
    try:
        summary = credit_summary(db, user_id)
    except DomainException as e:
        raise http_error(e, get_request_id(request))

    return CreditSummaryResponse(
        user_id=summary.user_id,
        credit_limit_cents=summary.credit_limit_cents,
        peak_month=summary.peak_month,
        peak_commitment_cents=summary.peak_commitment_cents,
        available_cents=summary.available_cents,
        coins_balance=summary.coins_balance,
    )


@router.post("/profiles/{user_id}/due-day", response_model=DueDayResponse)
def update_due_day(
    user_id: str,
    request_body: DueDayRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    try:
        profile = change_due_day(db, user_id, request_body.due_day)
    except DomainException as e:
        db.rollback()
        raise http_error(e, get_request_id(request))

    return DueDayResponse(
        user_id=profile.id,
        preferred_due_day=profile.preferred_due_day,
        last_due_date_change=profile.last_due_date_change.isoformat(),
    )


@router.post("/profiles/{user_id}/coins", response_model=CoinsResponse)
def adjust_coins(
    user_id: str,
    request_body: CoinsRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    try:
        balance = manage_coins(db, user_id, request_body.amount, request_body.action)
    except DomainException as e:
        db.rollback()
        raise http_error(e, get_request_id(request))

    return CoinsResponse(user_id=user_id, coins_balance=balance)


@router.get("/financing/quote", response_model=QuoteResponse)
def quote(
    request: Request,
    price: Decimal = Query(..., gt=0),
    installments: int = Query(..., ge=1, le=48),
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
    config: ConfigSnapshot = Depends(get_config_snapshot),
):
    """
    Preview crediário terms for a price and term.

    With a user_id, the required down payment also accounts for the
    customer's monthly credit headroom.
    """
    available: Optional[Decimal] = None
    try:
        if user_id:
            available = from_cents(credit_summary(db, user_id).available_cents)
            down_payment = required_down_payment(
                price, config.min_entry_pct, available, installments, config.interest_rate_pct
            )
        else:
            down_payment = price * config.min_entry_pct
    except DomainException as e:
        raise http_error(e, get_request_id(request))

    financed = max(price - down_payment, Decimal("0"))
    return QuoteResponse(
        price=round_money(price),
        installment_count=installments,
        monthly_rate_pct=config.interest_rate_pct,
        installment_value=round_money(installment_value(financed, config.interest_rate_pct, installments)),
        financed_total=round_money(financed_total(financed, config.interest_rate_pct, installments)),
        required_down_payment=round_money(down_payment),
        available_monthly_credit=available,
    )
