"""
Payroll rules.

Pay periods are calendar dates on the business calendar (settings.TIME_ZONE):
a semi-monthly period is the 1st-15th or the 16th-last day of the month,
both ends inclusive. Everything here is pure and works on plain objects so it
can be used on model instances and in tests alike.
"""
import calendar
from datetime import date
from decimal import Decimal

from .status import LogPaymentType

ZERO = Decimal("0")

QUANTITY_TYPES = {
    LogPaymentType.PER_PIECE,
    LogPaymentType.PER_DOZEN,
    LogPaymentType.PER_VISS,
}

SEMI_MONTHLY = "semi-monthly"
MONTHLY = "monthly"

FIRST_HALF = "firstHalf"
SECOND_HALF = "secondHalf"


def _dec(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def calculate_log_salary(log) -> Decimal:
    """
    Pay for one work log, from the rate and payment type frozen on it.
    An admin override amount wins over the formula.
    """
    if log.is_admin_edited and log.edited_total_payment is not None:
        return _dec(log.edited_total_payment)

    rate = _dec(log.rate_at_time)
    payment_type = log.payment_type_at_time

    if payment_type in QUANTITY_TYPES:
        return _dec(log.quantity) * rate
    if payment_type == LogPaymentType.PER_HOUR:
        return _dec(log.hours_worked) * rate
    if payment_type == LogPaymentType.PER_DAY:
        return rate
    # delivery and unknown types carry no pay
    return ZERO


def total_salary(logs) -> Decimal:
    return sum((calculate_log_salary(log) for log in logs), ZERO)


def month_bounds(year: int, month: int) -> tuple[date, date]:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def half_month_bounds(year: int, month: int, half: str) -> tuple[date, date]:
    if half == MONTHLY:
        return month_bounds(year, month)
    if half == SECOND_HALF:
        return date(year, month, 16), month_bounds(year, month)[1]
    if half == FIRST_HALF:
        return date(year, month, 1), date(year, month, 15)
    raise ValueError(f"Unknown period half: {half!r}")


def period_bounds(day: date, kind: str = SEMI_MONTHLY) -> tuple[date, date]:
    """The pay period containing ``day``."""
    if kind == MONTHLY:
        return month_bounds(day.year, day.month)
    if kind != SEMI_MONTHLY:
        raise ValueError(f"Unknown period type: {kind!r}")
    half = FIRST_HALF if day.day <= 15 else SECOND_HALF
    return half_month_bounds(day.year, day.month, half)


def allocate_deduction(advances, requested) -> list[tuple[object, Decimal]]:
    """
    Split a requested advance deduction over advance records, in the order given.

    Each record gives at most its remaining balance (amount - paid_amount), so
    no balance goes below zero and the allocated total is
    min(requested, sum of positive balances). Records that receive nothing are
    left out of the result.
    """
    remaining = _dec(requested)
    if remaining < 0:
        raise ValueError("Deduction cannot be negative.")

    allocation = []
    for advance in advances:
        if remaining <= 0:
            break
        balance = _dec(advance.amount) - _dec(advance.paid_amount)
        if balance <= 0:
            continue
        take = min(balance, remaining)
        allocation.append((advance, take))
        remaining -= take
    return allocation
