"""Installment schedule generation for crediário repayment"""

from datetime import date
from typing import List

from crediario_engine.domain.models import Installment
from crediario_engine.utils.date_utils import add_months_clamped


def generate_installment_schedule(
    remaining_cents: int,
    installment_count: int,
    due_day: int,
    start_date: date | None = None,
) -> List[Installment]:
    """
    Split the financed remainder into monthly installments.

    Requirements:
    - `installment_count` installments, one per month, starting the month after `start_date`
    - due on `due_day`, clamped to the last valid day of shorter months
    - equal split in cents; last installment absorbs the rounding remainder
      so the schedule sums exactly to `remaining_cents`

    Example:
        R$1000.00 in 3 → [333.33, 333.33, 333.34]
        100000 cents / 3 = 33333 base, remainder 1
    """
    if remaining_cents <= 0 or installment_count <= 0:
        return []

    if start_date is None:
        start_date = date.today()

    base_amount = remaining_cents // installment_count
    remainder = remaining_cents % installment_count

    installments = []
    for i in range(1, installment_count + 1):
        due_date = add_months_clamped(start_date, i, due_day)

        # Last installment absorbs remainder to ensure exact total
        amount = base_amount + (remainder if i == installment_count else 0)

        installments.append(
            Installment(
                due_date=due_date,
                amount_cents=amount,
                label=f"Parcela {i}/{installment_count}",
            )
        )

    return installments
