"""Financing calculator - pure functions for crediário terms"""

from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP
from typing import Dict, Iterable, Mapping, Optional, Tuple, Union

from crediario_engine.domain.exceptions import ValidationError

Number = Union[Decimal, int, float, str]

CENT = Decimal("0.01")

# Coupon table: code -> (kind, value)
COUPONS: Dict[str, Tuple[str, Decimal]] = {
    "RELP10": ("percent", Decimal("10")),
    "BOASVINDAS": ("flat", Decimal("20")),
    "PROMO5": ("percent", Decimal("5")),
}


def to_decimal(value: Number) -> Decimal:
    """Convert input to Decimal without going through binary float digits"""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def to_cents(value: Number) -> int:
    """Round a reais amount to integer centavos (half up)"""
    return int((to_decimal(value) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def round_money(value: Number) -> Decimal:
    """Display rounding; keep full precision everywhere else"""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _growth_factor(monthly_rate_pct: Number, n: int) -> Decimal:
    rate = to_decimal(monthly_rate_pct) / 100
    return (1 + rate) ** n


def installment_value(principal: Number, monthly_rate_pct: Number, n: int) -> Decimal:
    """
    Value of each of n equal installments under compound monthly interest.

    installment = principal * (1 + r)^n / n, with r = monthly_rate_pct / 100.

    - n <= 0 is rejected
    - n == 1 returns the principal (no financing)
    - a rate of 0 is plain division
    - negative principal clamps to 0

    No rounding is applied here; callers round at persistence/display time.
    """
    if n <= 0:
        raise ValidationError("installment count must be >= 1")

    amount = max(to_decimal(principal), Decimal("0"))
    if n == 1:
        return amount

    rate = to_decimal(monthly_rate_pct)
    if rate == 0:
        return amount / n

    return amount * _growth_factor(rate, n) / n


def financed_total(principal: Number, monthly_rate_pct: Number, n: int) -> Decimal:
    """Total repaid over the whole plan"""
    return installment_value(principal, monthly_rate_pct, n) * n


def required_down_payment(
    price: Number,
    min_entry_pct: Number,
    available_credit: Number,
    n: int,
    monthly_rate_pct: Number,
) -> Decimal:
    """
    Smallest down payment that satisfies both constraints:

    - regulatory minimum: price * min_entry_pct (fraction, 0.10 = 10%)
    - credit headroom: price - available_credit * (1 + r)^n

    The binding constraint is whichever is larger.
    """
    if n <= 0:
        raise ValidationError("installment count must be >= 1")

    price_d = to_decimal(price)
    minimum = price_d * to_decimal(min_entry_pct)
    headroom = price_d - to_decimal(available_credit) * _growth_factor(monthly_rate_pct, n)

    return max(minimum, headroom)


def available_monthly_credit(credit_limit: Number, open_invoices_by_due_month: Mapping[str, Number]) -> Decimal:
    """
    Credit left for a new monthly installment.

    Credit is consumed per calendar month: the busiest future month decides,
    not the sum of everything outstanding.
    """
    limit = to_decimal(credit_limit)
    commitments = [to_decimal(v) for v in open_invoices_by_due_month.values()]
    peak = max(commitments) if commitments else Decimal("0")
    return max(Decimal("0"), limit - peak)


def monthly_commitments(invoices: Iterable[Tuple[str, Number]]) -> Dict[str, Decimal]:
    """Group (due_month 'YYYY-MM', amount) pairs into per-month totals"""
    totals: Dict[str, Decimal] = {}
    for month, amount in invoices:
        totals[month] = totals.get(month, Decimal("0")) + to_decimal(amount)
    return totals


def peak_month(commitments: Mapping[str, Number]) -> Tuple[Optional[str], Decimal]:
    """Return the month with the highest commitment and its amount"""
    if not commitments:
        return None, Decimal("0")
    month = max(commitments, key=lambda m: to_decimal(commitments[m]))
    return month, to_decimal(commitments[month])


def apply_coupon(total: Number, code: Optional[str]) -> Decimal:
    """Apply a coupon code; unknown codes leave the total unchanged"""
    amount = to_decimal(total)
    if not code:
        return amount

    coupon = COUPONS.get(code.strip().upper())
    if coupon is None:
        return amount

    kind, value = coupon
    if kind == "percent":
        discounted = amount - amount * value / 100
    else:
        discounted = amount - value

    return max(discounted, Decimal("0"))


def cashback_points(amount_paid_cents: int, cashback_pct: Number) -> int:
    """
    Loyalty points for a paid amount: floor(amount_reais * pct/100 * 100).

    With the amount already in cents this is floor(cents * pct / 100).
    """
    if amount_paid_cents <= 0:
        return 0
    points = Decimal(amount_paid_cents) * to_decimal(cashback_pct) / 100
    return int(points.to_integral_value(rounding=ROUND_FLOOR))


def coins_to_cents(coins: int) -> int:
    """100 coins are worth R$1.00"""
    return max(coins, 0)
