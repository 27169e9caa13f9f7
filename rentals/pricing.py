"""
Pricing engine for storage space rentals.

All money values are Decimal with two decimal places. Rounding (ROUND_HALF_UP)
happens only when the total and the deposit are computed; the remaining
amount is derived by subtraction so deposit + remaining == total exactly.
"""

import calendar
import datetime
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from rest_framework.exceptions import ValidationError

from .exceptions import PriceMismatch, UnavailablePeriod


CENT = Decimal('0.01')
HUNDRED = Decimal('100')

PERIOD_UNITS = ('day', 'week', 'month', 'quarter', 'semester', 'year')

PERIOD_CHOICES = [
    ('day', 'Day'),
    ('week', 'Week'),
    ('month', 'Month'),
    ('quarter', 'Quarter'),
    ('semester', 'Semester'),
    ('year', 'Year'),
]

DAYS_PER_UNIT = {
    'day': 1,
    'week': 7,
}

MONTHS_PER_UNIT = {
    'month': 1,
    'quarter': 3,
    'semester': 6,
    'year': 12,
}


@dataclass(frozen=True)
class Quote:
    """Price breakdown for an area rented for a number of periods."""
    period_type: str
    period_count: int
    area: Decimal
    rate: Decimal
    total: Decimal
    deposit_percentage: Decimal
    deposit: Decimal
    remaining: Decimal

    def as_dict(self):
        return {
            'period_type': self.period_type,
            'period_count': self.period_count,
            'area': self.area,
            'price_per_sqm': self.rate,
            'total_amount': self.total,
            'deposit_percentage': self.deposit_percentage,
            'deposit_amount': self.deposit,
            'remaining_amount': self.remaining,
        }


def to_decimal(value, field='value'):
    """
    Convert ints, strings and Decimals to Decimal without going through float.

    Raises:
        ValidationError: If the value is not a number
    """
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError({field: f'{value!r} is not a valid number.'})


def quantize(amount):
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def select_rate(price_table, period_type):
    """
    Return the per-square-metre rate for a period unit.

    Raises:
        UnavailablePeriod: If the unit is unknown, unset or not positive
    """
    if period_type not in PERIOD_UNITS:
        raise UnavailablePeriod(f'Unknown period type: {period_type}.', period_type=period_type)

    rate = price_table.get(period_type)
    if rate is None:
        raise UnavailablePeriod(
            f'The space is not offered per {period_type}.',
            period_type=period_type,
        )

    rate = to_decimal(rate, 'price_per_sqm')
    if rate <= 0:
        raise UnavailablePeriod(
            f'The space is not offered per {period_type}.',
            period_type=period_type,
        )
    return rate


def price_period(price_table, area, period_type, period_count):
    """
    Price an area for a number of periods.

    Returns:
        tuple: (rate, total) with total rounded to cents
    """
    area = to_decimal(area, 'area')
    if area <= 0:
        raise ValidationError({'area': 'Area must be greater than zero.'})
    if isinstance(period_count, bool) or not isinstance(period_count, int) or period_count < 1:
        raise ValidationError({'period_count': 'Period count must be a positive integer.'})

    rate = select_rate(price_table, period_type)
    return rate, quantize(rate * area * period_count)


def quote(price_table, area, period_type, period_count, deposit_percentage):
    """
    Build the full price breakdown.

    Args:
        price_table: Mapping of period unit to rate (None when not offered)
        area: Square metres requested
        period_type: One of PERIOD_UNITS
        period_count: Number of periods (>= 1)
        deposit_percentage: Deposit ratio in percent (0-100)

    Returns:
        Quote

    Raises:
        UnavailablePeriod: If the space has no positive rate for the unit
        ValidationError: If area, count or percentage are out of range
    """
    deposit_percentage = to_decimal(deposit_percentage, 'deposit_percentage')
    if deposit_percentage < 0 or deposit_percentage > HUNDRED:
        raise ValidationError({'deposit_percentage': 'Deposit percentage must be between 0 and 100.'})

    area = to_decimal(area, 'area')
    rate, total = price_period(price_table, area, period_type, period_count)
    deposit = quantize(total * deposit_percentage / HUNDRED)

    return Quote(
        period_type=period_type,
        period_count=period_count,
        area=area,
        rate=rate,
        total=total,
        deposit_percentage=deposit_percentage,
        deposit=deposit,
        remaining=total - deposit,
    )


def verify_quote(expected, actual):
    """
    Compare a previously quoted breakdown with a freshly derived one.

    Args:
        expected: Mapping with 'total_amount' and 'deposit_amount'
        actual: Quote derived now

    Raises:
        PriceMismatch: If either amount differs
    """
    expected_total = quantize(to_decimal(expected['total_amount'], 'total_amount'))
    expected_deposit = quantize(to_decimal(expected['deposit_amount'], 'deposit_amount'))

    if expected_total != actual.total or expected_deposit != actual.deposit:
        raise PriceMismatch(
            expected_total=expected_total,
            expected_deposit=expected_deposit,
            current_total=actual.total,
            current_deposit=actual.deposit,
        )


def split_commission(amount, commission_rate):
    """
    Split an escrowed amount into platform commission and host payout.

    Returns:
        tuple: (commission, payout) where commission + payout == amount
    """
    commission = quantize(amount * to_decimal(commission_rate, 'commission_rate') / HUNDRED)
    return commission, amount - commission


def add_months(start, months):
    """Add calendar months, clamping the day to the end of the target month."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def period_end_date(start, period_type, period_count):
    """
    Compute the end date of a rental starting on start.

    Day and week units add days; month based units add calendar months.
    """
    if period_type in DAYS_PER_UNIT:
        return start + datetime.timedelta(days=DAYS_PER_UNIT[period_type] * period_count)
    if period_type in MONTHS_PER_UNIT:
        return add_months(start, MONTHS_PER_UNIT[period_type] * period_count)
    raise UnavailablePeriod(f'Unknown period type: {period_type}.', period_type=period_type)
