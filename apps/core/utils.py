# core/utils.py

"""
Shared helpers for money and dates.
"""
from django.utils import timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
import logging

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')


# =============================================================================
# MONEY
# =============================================================================

def safe_decimal(value, default=Decimal('0.00')):
    """
    Safely convert value to Decimal.

    Example:
        >>> safe_decimal("1500.50")
        Decimal('1500.50')
        >>> safe_decimal("invalid")
        Decimal('0.00')
    """
    if value is None or isinstance(value, bool):
        return default
    try:
        return Decimal(str(value))
    except (ValueError, TypeError, InvalidOperation):
        return default


def round_to_currency(amount):
    """Round an amount to two decimal places, half up."""
    return safe_decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def amounts_match(first, second, tolerance):
    """True when two amounts differ by no more than the tolerance."""
    return abs(safe_decimal(first) - safe_decimal(second)) <= tolerance


# =============================================================================
# DATES
# =============================================================================

def get_school_today():
    """
    Today's date in the configured TIME_ZONE.

    Use this instead of date.today() for business dates.
    """
    return timezone.localdate()
