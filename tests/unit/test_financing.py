"""Unit tests for the financing calculator"""

import pytest
from decimal import Decimal
from crediario_engine.domain.exceptions import ValidationError
from crediario_engine.domain.financing import (
    apply_coupon,
    available_monthly_credit,
    cashback_points,
    financed_total,
    installment_value,
    monthly_commitments,
    peak_month,
    required_down_payment,
    round_money,
    to_cents,
)


def test_installment_value_zero_rate_is_plain_division():
    assert installment_value(Decimal("900"), 0, 3) == Decimal("300")


def test_installment_value_single_installment_returns_principal():
    assert installment_value(Decimal("500"), Decimal("5"), 1) == Decimal("500")


def test_installment_value_compound_interest():
    """1000 at 2% over 2 months: 1000 * 1.02^2 / 2 = 520.20"""
    assert round_money(installment_value(Decimal("1000"), Decimal("2"), 2)) == Decimal("520.20")


def test_installment_value_negative_principal_clamps_to_zero():
    assert installment_value(Decimal("-100"), Decimal("2"), 3) == Decimal("0")


def test_installment_value_rejects_zero_count():
    with pytest.raises(ValidationError):
        installment_value(Decimal("100"), Decimal("2"), 0)


@pytest.mark.parametrize("n", [2, 6, 12, 24])
def test_installment_value_increases_with_rate(n):
    values = [installment_value(Decimal("1000"), Decimal(rate), n) for rate in ("0", "1", "2.5", "5")]
    assert values == sorted(values)
    assert len(set(values)) == len(values)


@pytest.mark.parametrize("n", [2, 6, 12])
def test_installment_value_increases_with_principal(n):
    values = [installment_value(Decimal(p), Decimal("3"), n) for p in ("100", "500", "1000", "5000")]
    assert values == sorted(values)
    assert len(set(values)) == len(values)


def test_financed_total():
    assert financed_total(Decimal("900"), 0, 3) == Decimal("900")
    assert round_money(financed_total(Decimal("1000"), Decimal("2"), 2)) == Decimal("1040.40")


@pytest.mark.parametrize(
    "price,min_entry,available,n,rate",
    [
        ("1000", "0.10", "5000", 10, "2"),
        ("1000", "0.10", "0", 10, "2"),
        ("2500", "0.20", "100", 6, "0"),
        ("300", "0", "1000", 3, "4.5"),
    ],
)
def test_required_down_payment_never_below_minimum_entry(price, min_entry, available, n, rate):
    down = required_down_payment(Decimal(price), Decimal(min_entry), Decimal(available), n, Decimal(rate))
    assert down >= Decimal(price) * Decimal(min_entry)


def test_required_down_payment_credit_headroom_binds():
    """No interest: 1000 - 50 * 1.0^10 = 950 > 10% minimum"""
    assert required_down_payment(Decimal("1000"), Decimal("0.10"), Decimal("50"), 10, 0) == Decimal("950")


def test_required_down_payment_rejects_zero_count():
    with pytest.raises(ValidationError):
        required_down_payment(Decimal("1000"), Decimal("0.1"), Decimal("100"), 0, 0)


def test_available_credit_uses_peak_month_not_sum():
    """Limit 1000 with 400 due in March and 700 in April leaves 300"""
    commitments = {"2025-03": Decimal("400"), "2025-04": Decimal("700")}
    assert available_monthly_credit(Decimal("1000"), commitments) == Decimal("300")


def test_available_credit_no_commitments():
    assert available_monthly_credit(Decimal("1000"), {}) == Decimal("1000")


def test_available_credit_never_negative():
    assert available_monthly_credit(Decimal("100"), {"2025-03": Decimal("700")}) == Decimal("0")


def test_monthly_commitments_and_peak():
    commitments = monthly_commitments(
        [("2025-03", Decimal("250")), ("2025-03", Decimal("150")), ("2025-04", Decimal("700"))]
    )
    assert commitments == {"2025-03": Decimal("400"), "2025-04": Decimal("700")}
    assert peak_month(commitments) == ("2025-04", Decimal("700"))
    assert peak_month({}) == (None, Decimal("0"))


@pytest.mark.parametrize(
    "code,expected",
    [
        ("RELP10", Decimal("450")),
        ("relp10", Decimal("450")),
        ("BOASVINDAS", Decimal("480")),
        ("PROMO5", Decimal("475")),
        ("XXXX", Decimal("500")),
        (None, Decimal("500")),
    ],
)
def test_apply_coupon(code, expected):
    assert apply_coupon(Decimal("500"), code) == expected


def test_apply_coupon_flat_never_negative():
    assert apply_coupon(Decimal("15"), "BOASVINDAS") == Decimal("0")


def test_cashback_points_floor():
    """R$300.00 at 1.5% → 450 points; R$99.99 at 1.5% → 149 points"""
    assert cashback_points(30000, Decimal("1.5")) == 450
    assert cashback_points(9999, Decimal("1.5")) == 149
    assert cashback_points(0, Decimal("1.5")) == 0


def test_to_cents_rounds_half_up():
    assert to_cents(Decimal("10.005")) == 1001
    assert to_cents("0.1") == 10
