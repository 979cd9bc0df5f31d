# finance/services.py

"""
Income Booking Operations

Books fee payments as income. Two entry points:

- create_income_from_payment(payment_id): atomic and keyed by payment id.
  Calling it again for the same payment returns the existing entry.
- record_income_entry(...): plain insert of one income entry, used by the
  fee collection fallback path.
"""

from django.db import transaction, IntegrityError
from django.utils import timezone
import logging

from core.models import FinancialSettings, FinancialYear
from core.utils import get_school_today
from finance.models import IncomeEntry

logger = logging.getLogger(__name__)


# =============================================================================
# NARRATIVE HELPERS
# =============================================================================

def build_income_reference(payment):
    """
    Reference number for income booked from a payment.

    Uses the payment's own reference when it has one, otherwise
    'PAY-' followed by the first eight characters of the payment id.
    """
    if payment.reference_number:
        return payment.reference_number
    return f"PAY-{str(payment.pk)[:8].upper()}"


def build_income_narrative(payment, receipt_number=None):
    """
    Narrative for income booked from a payment.

    Example:
        'Fee payment - Student: ADM-001 | Receipt: SPS01/REC/2026/000012 | Paid at counter'
    """
    notes = f"Fee payment - Student: {payment.student.admission_number}"
    if receipt_number:
        notes += f" | Receipt: {receipt_number}"
    if payment.remarks:
        notes += f" | {payment.remarks}"
    return notes


def _payment_entry_date(payment):
    if payment.payment_date:
        return timezone.localdate(payment.payment_date)
    return get_school_today()


# =============================================================================
# INCOME BOOKING
# =============================================================================

def record_income_entry(
    school,
    amount,
    entry_date,
    reference_number='',
    notes='',
    source=None,
    financial_year=None,
    created_by=None,
    payment=None,
):
    """
    Insert one income entry.

    Returns:
        IncomeEntry instance
    """
    if source is None:
        source = FinancialSettings.get_for_school(school).income_source

    entry = IncomeEntry.objects.create(
        school=school,
        financial_year=financial_year,
        source=source,
        amount=amount,
        entry_date=entry_date,
        reference_number=reference_number,
        notes=notes,
        created_by=created_by,
        payment=payment,
    )

    logger.info(f"Recorded income entry {entry.pk}: {source} {amount} ({reference_number})")
    return entry


@transaction.atomic
def create_income_from_payment(payment_id):
    """
    Book a fee payment as income, at most once.

    Args:
        payment_id: primary key of a fees.Payment

    Returns:
        str: id of the income entry for this payment (existing or new)

    Raises:
        Payment.DoesNotExist: unknown payment id
    """
    from fees.models import Payment, Receipt

    payment = Payment.objects.select_related(
        'school', 'student', 'collected_by'
    ).get(pk=payment_id)

    existing = IncomeEntry.objects.filter(payment=payment).first()
    if existing:
        logger.debug(f"Income for payment {payment.pk} already booked as {existing.pk}")
        return str(existing.pk)

    receipt = Receipt.objects.filter(payment=payment).first()
    entry_date = _payment_entry_date(payment)

    try:
        with transaction.atomic():
            entry = record_income_entry(
                school=payment.school,
                amount=payment.amount,
                entry_date=entry_date,
                reference_number=build_income_reference(payment),
                notes=build_income_narrative(payment, receipt.receipt_number if receipt else None),
                financial_year=FinancialYear.get_for_date(payment.school, entry_date),
                created_by=payment.collected_by,
                payment=payment,
            )
    except IntegrityError:
        # Another caller booked it between our check and insert
        entry = IncomeEntry.objects.get(payment=payment)
        logger.info(f"Income for payment {payment.pk} was booked concurrently as {entry.pk}")

    return str(entry.pk)
