"""Expected settlement date calculation."""

from datetime import date, datetime, timedelta
from typing import Union, TypeVar

DateLike = TypeVar("DateLike", date, datetime)

# Business-day offsets by payment method
IMMEDIATE_METHODS = frozenset({"DEBIT_CARD", "QR"})
CREDIT_METHODS = frozenset({"CREDIT_CARD"})

IMMEDIATE_OFFSET_DAYS = 1
CREDIT_OFFSET_DAYS = 18
DEFAULT_OFFSET_DAYS = 5


def is_business_day(day: Union[date, datetime]) -> bool:
    """Saturdays and Sundays are the only non-business days; no holiday calendar."""
    return day.weekday() < 5


def add_business_days(start: DateLike, days: int) -> DateLike:
    """Move forward (or backward) by a number of business days.

    Weekend days are stepped over without being counted, so a Saturday plus
    one business day lands on Monday. The time of day is preserved.
    """
    step = 1 if days >= 0 else -1
    remaining = abs(days)
    current = start
    while remaining > 0:
        current = current + timedelta(days=step)
        if is_business_day(current):
            remaining -= 1
    return current


def settlement_offset(payment_method: str) -> int:
    method = (payment_method or "").strip().upper()
    if method in IMMEDIATE_METHODS:
        return IMMEDIATE_OFFSET_DAYS
    if method in CREDIT_METHODS:
        return CREDIT_OFFSET_DAYS
    return DEFAULT_OFFSET_DAYS


def expected_payment_date(
    transaction_date: DateLike,
    payment_method: str,
    installments: int = 1,
) -> DateLike:
    """Compute when a transaction should be paid out.

    Debit card and QR settle the next business day, credit card after 18
    business days, everything else after 5.

    Args:
        transaction_date: Date (or datetime) of the transaction.
        payment_method: Processor payment method code, e.g. "DEBIT_CARD".
        installments: Installment count. Accepted but does not change the
            offset.

    Returns:
        The expected settlement date, same type as transaction_date.
    """
    return add_business_days(transaction_date, settlement_offset(payment_method))
