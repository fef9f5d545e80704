"""
Quote calculation for a vehicle over an inclusive day range.

quote() is a pure function of (daily rate, range, deposit rate): the same
inputs always give the same figures, so a customer-facing quote can be
reproduced later during a dispute.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Mapping, Union

from config import Config
from date_ranges import parse_date, validate_range
from models import Quote, Vehicle, to_decimal

MONEY_FIELDS = ('daily_rate', 'subtotal', 'deposit_amount', 'final_amount')


def round_currency(value: Decimal) -> Decimal:
    """Round half-up to a whole currency unit."""
    return to_decimal(value).quantize(Decimal('1'), rounding=ROUND_HALF_UP)


def calculate_deposit(subtotal: Decimal, deposit_rate: Decimal = None) -> Decimal:
    rate = Config.DEPOSIT_RATE if deposit_rate is None else to_decimal(deposit_rate)
    return round_currency(to_decimal(subtotal) * rate)


def quote(vehicle: Vehicle, start, end, reference_today=None, max_days: int = None,
          deposit_rate: Decimal = None) -> Quote:
    """
    Price a rental of vehicle from start to end (inclusive).

    The range is validated like a booking; the "not in the past" rule only
    applies when reference_today is given.
    """
    start, end = parse_date(start), parse_date(end)
    if reference_today is not None:
        total_days = validate_range(start, end, reference_today, max_days=max_days)
    else:
        # Same checks minus the past-date rule: re-pricing a historical range is allowed
        total_days = validate_range(start, end, start, max_days=max_days)

    daily_rate = to_decimal(vehicle.daily_rate)
    subtotal = daily_rate * total_days
    deposit_amount = calculate_deposit(subtotal, deposit_rate)
    return Quote(
        daily_rate=daily_rate,
        total_days=total_days,
        subtotal=subtotal,
        deposit_amount=deposit_amount,
        final_amount=subtotal - deposit_amount,
    )


def day_price(vehicle: Vehicle) -> Decimal:
    return to_decimal(vehicle.daily_rate)


def quotes_match(server: Quote, client: Union[Quote, Mapping], epsilon: Decimal = None) -> bool:
    """True when every figure of the client quote is within epsilon of the server's."""
    epsilon = Config.QUOTE_EPSILON if epsilon is None else epsilon
    if not isinstance(client, Quote):
        try:
            client = Quote.from_dict(client)
        except (KeyError, TypeError, ValueError, ArithmeticError):
            return False

    if not all(getattr(client, name).is_finite() for name in MONEY_FIELDS):
        return False
    if client.total_days != server.total_days:
        return False
    for name in MONEY_FIELDS:
        if abs(getattr(client, name) - getattr(server, name)) > epsilon:
            return False
    return True
