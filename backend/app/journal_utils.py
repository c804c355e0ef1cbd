from __future__ import annotations

from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from fastapi import HTTPException

AMT_Q = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(v) -> Decimal:
    if v is None or v == "":
        return ZERO
    return Decimal(str(v))


def q_amt(v) -> Decimal:
    return to_decimal(v).quantize(AMT_Q, rounding=ROUND_HALF_UP)


def parse_period(year, month) -> tuple[int, int]:
    try:
        y = int(year)
        m = int(month)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="invalid year or month")
    if m < 1 or m > 12 or y < 2000 or y > 2099:
        raise HTTPException(status_code=400, detail="invalid year or month")
    return y, m


def voucher_reference(voucher_type: str, year: int, month: int) -> str:
    # e.g. JVSL/03/25 for March 2025.
    return f"{voucher_type}/{month:02d}/{year % 100:02d}"


def period_bounds(year: int, month: int) -> tuple[date, date]:
    """Half-open [start, end) range covering the payroll month."""
    start = date(year, month, 1)
    if month == 12:
        end = date(year + 1, 1, 1)
    else:
        end = date(year, month + 1, 1)
    return start, end


class VoucherImbalanced(ValueError):
    def __init__(self, voucher_type: str, total_debit: Decimal, total_credit: Decimal):
        self.voucher_type = voucher_type
        self.total_debit = total_debit
        self.total_credit = total_credit
        super().__init__(
            f"{voucher_type} is imbalanced: debit {total_debit} != credit {total_credit}"
        )


def line_totals(lines: Iterable) -> tuple[Decimal, Decimal]:
    total_debit = ZERO
    total_credit = ZERO
    for line in lines:
        total_debit += q_amt(line.debit_amount)
        total_credit += q_amt(line.credit_amount)
    return q_amt(total_debit), q_amt(total_credit)


def assert_postable(voucher_type: str, lines: list) -> tuple[Decimal, Decimal]:
    """
    Guard run right before a voucher is written: one-sided lines, contiguous numbering
    with debits first, and debits equal to credits at 2dp.
    """
    seen_credit = False
    for idx, line in enumerate(lines, start=1):
        debit = q_amt(line.debit_amount)
        credit = q_amt(line.credit_amount)
        if line.line_number != idx:
            raise ValueError(f"{voucher_type} line {idx}: line_number is {line.line_number}")
        if (debit > 0) == (credit > 0) or debit < 0 or credit < 0:
            raise ValueError(f"{voucher_type} line {idx}: exactly one of debit/credit must be > 0")
        if credit > 0:
            seen_credit = True
        elif seen_credit:
            raise ValueError(f"{voucher_type} line {idx}: debit line after a credit line")
    total_debit, total_credit = line_totals(lines)
    if total_debit != total_credit:
        raise VoucherImbalanced(voucher_type, total_debit, total_credit)
    return total_debit, total_credit
