# fees/exceptions.py

"""
Errors raised by the fee collection flow.

Each error carries the HTTP status the views answer with and an optional
details payload. Receipt, income and audit failures happen after the
payment is committed and are never shown to the client.
"""


class FeeCollectionError(Exception):
    """Base class for fee collection errors"""

    status_code = 500
    default_message = "Fee collection failed"

    def __init__(self, message=None, details=None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def as_dict(self):
        payload = {'error': self.message}
        if self.details is not None:
            payload['details'] = self.details
        return payload


# -----------------------------------------------------------------------------
# Request problems (nothing written)
# -----------------------------------------------------------------------------

class ValidationError(FeeCollectionError):
    status_code = 400
    default_message = "Invalid payment request"


class AllocationMismatch(ValidationError):
    """Allocations do not add up to the payment amount"""


class OverAllocation(ValidationError):
    """An allocation is larger than the fee's balance"""


class NotFoundError(FeeCollectionError):
    status_code = 404
    default_message = "Not found"


class UnknownObligation(NotFoundError):
    """A fee id that does not exist or belongs to another student"""

    status_code = 400
    default_message = "Invalid student fee IDs or fees not found"


class CollectorUnresolved(FeeCollectionError):
    status_code = 400
    default_message = "Collector information is required"


class IdempotencyConflict(FeeCollectionError):
    status_code = 409
    default_message = "Idempotency key was already used for a different payment"


# -----------------------------------------------------------------------------
# Write problems (transaction rolled back)
# -----------------------------------------------------------------------------

class AllocationWriteFailed(FeeCollectionError):
    default_message = "Failed to create payment allocations"


class BalanceUpdateFailed(FeeCollectionError):
    default_message = "Failed to update student fee"


class BalanceConflict(BalanceUpdateFailed):
    """The fee's balance was used up by another payment in the meantime"""

    status_code = 409
    default_message = "Fee balance changed while the payment was being recorded"


# -----------------------------------------------------------------------------
# Post-commit problems (logged, response degraded)
# -----------------------------------------------------------------------------

class ReceiptFailure(FeeCollectionError):
    default_message = "Failed to issue receipt"


class IncomeBookingFailure(FeeCollectionError):
    default_message = "Failed to book income entry"


class AuditFailure(FeeCollectionError):
    default_message = "Failed to write audit log"
