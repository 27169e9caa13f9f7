"""
Field validators for rental models.
"""

import re
from decimal import Decimal

from django.core.exceptions import ValidationError


def validate_phone_number(value):
    """
    Validate a contact phone number.

    Accepts digits with optional leading plus sign, spaces, dashes and
    parentheses. Requires between 8 and 15 digits (E.164 upper bound).

    Raises:
        ValidationError: If the phone number format is invalid
    """
    if not value:
        return

    if not re.match(r'^\+?[\d\s\-\(\)]+$', value):
        raise ValidationError(
            'Phone number can only contain digits, spaces, dashes, parentheses, and a leading plus sign.',
            code='invalid_phone_chars'
        )

    digits = re.sub(r'\D', '', value)
    if len(digits) < 8 or len(digits) > 15:
        raise ValidationError(
            'Phone number must contain between 8 and 15 digits.',
            code='invalid_phone_length'
        )

    if len(set(digits)) == 1:
        raise ValidationError(
            'Phone number cannot be all the same digit.',
            code='invalid_phone_pattern'
        )


def validate_positive_rate(value):
    """Price tiers are either unset (None) or strictly positive."""
    if value is not None and value <= Decimal('0'):
        raise ValidationError(
            'Price per square metre must be greater than zero.',
            code='non_positive_rate'
        )


def validate_percentage(value):
    if value is None:
        return
    if value < Decimal('0') or value > Decimal('100'):
        raise ValidationError(
            f'Percentage must be between 0 and 100. Got {value}.',
            code='invalid_percentage'
        )
