# utils/audit.py

import logging
from decimal import Decimal

from utils.context import get_request_context
from utils.models import AuditLog

logger = logging.getLogger(__name__)

PAYMENT_COLLECTED = 'payment_collected'


def _json_safe(value):
    """Convert Decimals and UUIDs nested in a payload into JSON-friendly values."""
    if isinstance(value, dict):
        return {key: _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    if isinstance(value, Decimal):
        return str(value)
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def log_audit_event(
    action,
    entity_type,
    entity_id,
    school=None,
    performed_by=None,
    changes=None,
    metadata=None,
):
    """
    Append one audit log entry.

    Args:
        action (str): What happened (e.g., 'payment_collected').
        entity_type (str): Kind of entity acted upon (e.g., 'payment').
        entity_id: Primary key of that entity.
        school (School, optional): Owning school.
        performed_by (Staff, optional): Staff member who acted.
        changes (dict, optional): Payload describing the action.
        metadata (dict, optional): Extra context (linked records, etc.).

    Returns:
        AuditLog: The created entry.

    Raises whatever the database raises; callers decide whether an audit
    failure matters.
    """
    context = get_request_context() or {}

    entry = AuditLog.objects.create(
        school=school,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        performed_by_id=str(performed_by.pk) if performed_by else None,
        performed_by_staff_id=getattr(performed_by, 'staff_id', '') or '',
        changes=_json_safe(changes or {}),
        metadata=_json_safe(metadata or {}),
        ip_address=context.get('ip_address'),
        user_agent=(context.get('user_agent') or '')[:512],
    )

    logger.debug(f"Audit: {action} {entity_type} {entity_id}")
    return entry


def log_payment_collected(payment, allocations, receipt=None):
    """
    Record the 'payment_collected' action for a committed payment.

    Args:
        payment: Payment instance (collector, student and school loaded)
        allocations: iterable of PaymentAllocation instances
        receipt: Receipt instance or None
    """
    return log_audit_event(
        action=PAYMENT_COLLECTED,
        entity_type='payment',
        entity_id=payment.pk,
        school=payment.school,
        performed_by=payment.collected_by,
        changes={
            'amount': payment.amount,
            'payment_mode': payment.payment_mode,
            'student_id': payment.student_id,
            'allocations': [
                {
                    'student_fee_id': allocation.student_fee_id,
                    'allocated_amount': allocation.allocated_amount,
                }
                for allocation in allocations
            ],
        },
        metadata={
            'receipt_id': receipt.pk if receipt else None,
        },
    )
