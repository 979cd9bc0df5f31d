# fees/conf.py

from django.conf import settings
from decimal import Decimal

DEFAULTS = {
    'ALLOCATION_TOLERANCE': '0.01',
    'INCOME_BOOKING_FUNCTION': 'finance.services.create_income_from_payment',
    'MAX_SIDE_EFFECT_ATTEMPTS': 5,
    'STAFF_ID_HEADER': 'HTTP_X_STAFF_ID',
    'IDEMPOTENCY_KEY_HEADER': 'HTTP_IDEMPOTENCY_KEY',
}


def get_setting(name):
    """Read a key of settings.FEE_COLLECTION, falling back to DEFAULTS."""
    overrides = getattr(settings, 'FEE_COLLECTION', {}) or {}
    if name in overrides:
        return overrides[name]
    return DEFAULTS[name]


def get_tolerance():
    """Allowed rounding difference when comparing amounts, as a Decimal."""
    return Decimal(str(get_setting('ALLOCATION_TOLERANCE')))
