# fees/services.py

"""
Fee Collection Operations

Collects one payment from a student and splits it across their fees:

    validate -> record payment -> write allocations -> (receipt) -> (income) -> (audit)

The payment row, its allocations, the fee balance updates and the
side-effect intents are written in one transaction. Receipt, income and
audit run after commit; their failures are logged and retried by the
process_payment_side_effects command, never surfaced to the client.

For receipt numbering and PDFs, see fees/receipts.py.
For the retry loop, see fees/outbox.py.
"""

from collections import namedtuple
from decimal import Decimal
from django.db import transaction, IntegrityError, DatabaseError
from django.db.models import F, Case, When, Value
from django.utils import timezone
from django.utils.module_loading import import_string
import logging
import uuid

from core.models import School, FinancialYear
from core.utils import safe_decimal, round_to_currency, amounts_match
from students.models import Student
from hr.models import Staff
from finance.services import build_income_reference, build_income_narrative, record_income_entry
from fees.models import StudentFee, Payment, PaymentAllocation, Receipt
from fees.forms import (
    PaymentCollectionForm, AllocationForm, REQUIRED_FIELDS_MESSAGE, flatten_form_errors
)
from fees.conf import get_setting, get_tolerance
from fees import exceptions

logger = logging.getLogger(__name__)


PlannedAllocation = namedtuple('PlannedAllocation', ['student_fee', 'amount'])


class PaymentPlan:
    """A payment request that passed validation, ready to be written."""

    def __init__(self, school, student, amount, payment_mode, allocations,
                 reference_number='', remarks='', idempotency_key=None):
        self.school = school
        self.student = student
        self.amount = amount
        self.payment_mode = payment_mode
        self.allocations = allocations
        self.reference_number = reference_number
        self.remarks = remarks
        self.idempotency_key = idempotency_key

    @property
    def total_allocated(self):
        return sum((allocation.amount for allocation in self.allocations), Decimal('0.00'))


# =============================================================================
# ALLOCATION VALIDATOR
# =============================================================================

class AllocationValidator:
    """
    Checks a payment request before anything is written.

    Read-only: loads the student's fees once and never writes.
    """

    @staticmethod
    def validate(data, tolerance=None):
        """
        Validate a payment request.

        Args:
            data (dict): Request body
                Required:
                    - school_code: str
                    - student_id: str
                    - amount: number or numeric string, > 0
                    - payment_mode: one of Payment.PAYMENT_MODE_CHOICES
                    - allocations: [{'student_fee_id': str, 'allocated_amount': number}]
                Optional:
                    - reference_no, remarks, idempotency_key: str
            tolerance (Decimal): allowed rounding difference (default from settings)

        Returns:
            PaymentPlan

        Raises:
            ValidationError, AllocationMismatch, NotFoundError,
            UnknownObligation, OverAllocation

        Example:
            plan = AllocationValidator.validate({
                'school_code': 'SPS01',
                'student_id': str(student.pk),
                'amount': '500.00',
                'payment_mode': 'cash',
                'allocations': [
                    {'student_fee_id': str(april.pk), 'allocated_amount': '300.00'},
                    {'student_fee_id': str(may.pk), 'allocated_amount': '200.00'},
                ],
            })
        """
        if tolerance is None:
            tolerance = get_tolerance()

        form = AllocationValidator.clean_header(data)
        requested = AllocationValidator.clean_allocations(data.get('allocations'))

        # Compare the amounts as sent; client-side float drift is absorbed here
        raw_total = sum((line['allocated_amount'] for line in requested), Decimal('0'))
        if not amounts_match(raw_total, form.cleaned_data['amount'], tolerance):
            AllocationValidator.raise_mismatch(raw_total, form.cleaned_data['amount'])

        amount = round_to_currency(form.cleaned_data['amount'])

        school = School.get_by_code(form.cleaned_data['school_code'])
        if school is None:
            raise exceptions.NotFoundError("School not found")

        student = Student.get_for_school(school, form.cleaned_data['student_id'])
        if student is None:
            raise exceptions.NotFoundError("Student not found")

        fees_by_id = AllocationValidator.load_obligations(school, student, requested)

        allocations = []
        for line in requested:
            student_fee = fees_by_id[line['student_fee_id']]
            allocated = round_to_currency(line['allocated_amount'])
            if allocated <= Decimal('0'):
                raise exceptions.ValidationError("Allocated amount must be greater than 0")
            balance_due = student_fee.balance_due
            if allocated > balance_due + tolerance or balance_due <= Decimal('0'):
                raise exceptions.OverAllocation(
                    f"Allocation amount exceeds balance due for fee {student_fee.pk}",
                    details={
                        'student_fee_id': str(student_fee.pk),
                        'balance_due': str(balance_due),
                        'allocated_amount': str(allocated),
                    },
                )
            # Overshoot within tolerance settles the fee exactly
            allocations.append(PlannedAllocation(student_fee, min(allocated, balance_due)))

        total_allocated = sum((allocation.amount for allocation in allocations), Decimal('0.00'))
        if not amounts_match(total_allocated, amount, tolerance):
            AllocationValidator.raise_mismatch(total_allocated, amount)

        return PaymentPlan(
            school=school,
            student=student,
            amount=amount,
            payment_mode=form.cleaned_data['payment_mode'],
            allocations=allocations,
            reference_number=(form.cleaned_data.get('reference_no') or '').strip(),
            remarks=(form.cleaned_data.get('remarks') or '').strip(),
            idempotency_key=form.cleaned_data.get('idempotency_key'),
        )

    @staticmethod
    def raise_mismatch(total_allocated, amount):
        total_allocated = round_to_currency(total_allocated)
        amount = round_to_currency(amount)
        raise exceptions.AllocationMismatch(
            f"Total allocated amount ({total_allocated}) must equal payment amount ({amount})",
            details={'total_allocated': str(total_allocated), 'amount': str(amount)},
        )

    @staticmethod
    def clean_header(data):
        """Run the header form; returns the bound, valid form."""
        form = PaymentCollectionForm(data=data)
        if form.is_valid():
            return form

        details = flatten_form_errors(form)
        if form.missing_required():
            raise exceptions.ValidationError(REQUIRED_FIELDS_MESSAGE, details=details)

        # Surface the first problem as the message, e.g. a non-positive amount
        first_field = next(iter(details))
        raise exceptions.ValidationError(details[first_field][0], details=details)

    @staticmethod
    def clean_allocations(raw_allocations):
        """
        Shape-check the allocation lines.

        Fee ids that parse as UUIDs are normalized, so the same fee written
        in another letter case still counts as a duplicate. Amounts are
        returned unrounded.

        Returns:
            list of {'student_fee_id': UUID or str, 'allocated_amount': Decimal}
        """
        if not isinstance(raw_allocations, (list, tuple)) or not raw_allocations:
            raise exceptions.ValidationError("At least one payment allocation is required")

        cleaned = []
        details = {}
        for index, raw in enumerate(raw_allocations):
            form = AllocationForm(data=raw if isinstance(raw, dict) else {})
            if not form.is_valid():
                details.update(flatten_form_errors(form, prefix=f"allocations[{index}]"))
                continue
            student_fee_id = form.cleaned_data['student_fee_id'].strip()
            try:
                student_fee_id = uuid.UUID(student_fee_id)
            except ValueError:
                # Left as text; reported as an unknown fee once ownership is checked
                pass
            cleaned.append({
                'student_fee_id': student_fee_id,
                'allocated_amount': form.cleaned_data['allocated_amount'],
            })

        if details:
            raise exceptions.ValidationError("Invalid payment allocation", details=details)

        seen = set()
        duplicates = []
        for line in cleaned:
            if line['student_fee_id'] in seen:
                duplicates.append(str(line['student_fee_id']))
            seen.add(line['student_fee_id'])
        if duplicates:
            raise exceptions.ValidationError(
                "Each student fee can appear only once in a payment",
                details={'student_fee_ids': duplicates},
            )

        return cleaned

    @staticmethod
    def load_obligations(school, student, requested):
        """
        Load the requested fees, all of which must belong to the student.

        Returns:
            dict: student_fee_id (UUID) -> StudentFee
        """
        fee_ids = [line['student_fee_id'] for line in requested]
        invalid = [str(fee_id) for fee_id in fee_ids if not isinstance(fee_id, uuid.UUID)]
        if invalid:
            raise exceptions.UnknownObligation(details={'student_fee_ids': invalid})

        found = {
            student_fee.pk: student_fee
            for student_fee in StudentFee.objects.filter(
                school=school,
                student=student,
                pk__in=fee_ids,
            )
        }

        missing = [str(fee_id) for fee_id in fee_ids if fee_id not in found]
        if missing:
            raise exceptions.UnknownObligation(details={'student_fee_ids': missing})

        return found


# =============================================================================
# PAYMENT RECORDER
# =============================================================================

class PaymentRecorder:
    """Resolves the collector and inserts the payment row"""

    @staticmethod
    def resolve_collector(school, staff_token):
        """
        Map the caller's staff identifier to a staff record.

        Raises:
            CollectorUnresolved: no identifier, or no active staff with it
        """
        collector = Staff.resolve(school, staff_token)
        if collector is None:
            logger.warning(f"Unresolved collector '{staff_token}' for school {school.code}")
            raise exceptions.CollectorUnresolved()
        return collector

    @staticmethod
    def find_by_key(school, idempotency_key):
        if not idempotency_key:
            return None
        return Payment.objects.filter(school=school, idempotency_key=idempotency_key).first()

    @staticmethod
    def record(plan, collector, idempotency_key=None):
        """
        Insert the payment.

        Without an idempotency key every call creates a new payment.
        """
        payment = Payment.objects.create(
            school=plan.school,
            student=plan.student,
            amount=plan.amount,
            payment_mode=plan.payment_mode,
            reference_number=plan.reference_number,
            payment_date=timezone.now(),
            remarks=plan.remarks,
            collected_by=collector,
            collected_by_staff_id=collector.staff_id,
            is_reversed=False,
            idempotency_key=idempotency_key or None,
        )
        logger.info(
            f"Recorded payment {payment.pk}: {payment.amount} ({payment.payment_mode}) "
            f"from student {plan.student.admission_number}"
        )
        return payment


# =============================================================================
# ALLOCATION WRITER
# =============================================================================

class AllocationWriter:
    """Writes allocation rows and applies them to fee balances"""

    @staticmethod
    def write(payment, planned_allocations, tolerance):
        """
        Insert the allocations for a payment and increment each fee.

        Must run inside the transaction that created the payment; any
        error here rolls the whole payment back.

        Returns:
            list of PaymentAllocation

        Raises:
            AllocationWriteFailed: allocation insert failed
            BalanceUpdateFailed: a fee update failed
            BalanceConflict: a fee no longer has room for its allocation
        """
        rows = []
        for planned in planned_allocations:
            row = PaymentAllocation(
                payment=payment,
                student_fee=planned.student_fee,
                allocated_amount=planned.amount,
            )
            row.stamp_audit_fields(is_new=True)
            rows.append(row)

        try:
            allocations = PaymentAllocation.objects.bulk_create(rows)
        except DatabaseError as e:
            raise exceptions.AllocationWriteFailed(details=str(e)) from e

        for planned in planned_allocations:
            AllocationWriter.apply_to_fee(planned.student_fee.pk, planned.amount, tolerance)

        return allocations

    @staticmethod
    def apply_to_fee(student_fee_id, amount, tolerance):
        """
        Add amount to a fee's paid_amount in one conditional UPDATE.

        The row only matches while paid + amount stays within
        base + adjustment, so concurrent collections can never overpay a
        fee. Status follows the new paid amount.
        """
        total_due = F('base_amount') + F('adjustment_amount')

        try:
            updated = StudentFee.objects.filter(
                pk=student_fee_id,
                paid_amount__lte=total_due - amount,
            ).update(
                paid_amount=F('paid_amount') + amount,
                status=Case(
                    When(paid_amount__gte=total_due - amount - tolerance, then=Value('PAID')),
                    default=Value('PARTIAL'),
                ),
                updated_at=timezone.now(),
            )
        except DatabaseError as e:
            raise exceptions.BalanceUpdateFailed(details=str(e)) from e

        if updated == 0:
            raise exceptions.BalanceConflict(
                details={'student_fee_id': str(student_fee_id), 'allocated_amount': str(amount)}
            )


# =============================================================================
# INCOME LEDGER BRIDGE
# =============================================================================

class IncomeLedgerBridge:
    """Books a committed payment as income"""

    @staticmethod
    def get_booking_function():
        """
        Resolve the configured booking function.

        Returns:
            callable or None when the setting is empty or not importable
        """
        path = get_setting('INCOME_BOOKING_FUNCTION')
        if not path:
            return None
        try:
            return import_string(path)
        except ImportError as e:
            logger.warning(f"Income booking function '{path}' unavailable, booking directly: {e}")
            return None

    @staticmethod
    def book(payment):
        """
        Book income for a payment.

        Returns:
            str: income entry id

        Raises:
            IncomeBookingFailure
        """
        booking_function = IncomeLedgerBridge.get_booking_function()
        try:
            if booking_function is not None:
                income_entry_id = booking_function(payment.pk)
            else:
                income_entry_id = IncomeLedgerBridge.book_directly(payment).pk
        except Exception as e:
            raise exceptions.IncomeBookingFailure(details=str(e)) from e

        if not income_entry_id:
            raise exceptions.IncomeBookingFailure(details="Booking function returned no income entry")

        return str(income_entry_id)

    @staticmethod
    def book_directly(payment):
        """Fallback: insert one income entry for the payment."""
        entry_date = timezone.localdate(payment.payment_date)

        try:
            financial_year = FinancialYear.get_for_date(payment.school, entry_date)
        except DatabaseError as e:
            logger.warning(f"Could not determine financial year for payment {payment.pk}: {e}")
            financial_year = None

        receipt = Receipt.objects.filter(payment=payment).first()

        return record_income_entry(
            school=payment.school,
            amount=payment.amount,
            entry_date=entry_date,
            reference_number=build_income_reference(payment),
            notes=build_income_narrative(payment, receipt.receipt_number if receipt else None),
            financial_year=financial_year,
            created_by=payment.collected_by,
            payment=payment,
        )


# =============================================================================
# PAYMENT COLLECTION SERVICE - ORCHESTRATION
# =============================================================================

class PaymentCollectionService:
    """Runs the whole collection pipeline for one request"""

    @staticmethod
    def collect_payment(data, staff_token, idempotency_key=None):
        """
        Collect a payment.

        Args:
            data (dict): Request body (see AllocationValidator.validate)
            staff_token (str): Collector's staff identifier (X-Staff-Id)
            idempotency_key (str, optional): Overrides data['idempotency_key']

        Returns:
            dict: {
                'payment': Payment,
                'allocations': [PaymentAllocation],
                'receipt': Receipt or None,
                'income_entry_id': str or None,
                'replayed': bool,
            }

        Raises:
            FeeCollectionError subclasses for validation and write failures
        """
        tolerance = get_tolerance()
        idempotency_key = (idempotency_key or data.get('idempotency_key') or '').strip() or None

        if idempotency_key:
            replay = PaymentCollectionService.find_replay(data, staff_token, idempotency_key, tolerance)
            if replay is not None:
                return replay

        plan = AllocationValidator.validate(data, tolerance)
        collector = PaymentRecorder.resolve_collector(plan.school, staff_token)

        try:
            payment, allocations = PaymentCollectionService.record_and_allocate(
                plan, collector, idempotency_key, tolerance
            )
        except (exceptions.AllocationWriteFailed, exceptions.BalanceUpdateFailed) as e:
            logger.error(
                f"Rolled back payment of {plan.amount} for student {plan.student.admission_number}: "
                f"{e.message} ({e.details})",
                exc_info=True
            )
            raise
        except IntegrityError:
            # A concurrent request with the same key committed first
            existing = PaymentRecorder.find_by_key(plan.school, idempotency_key)
            if existing is None:
                raise
            return PaymentCollectionService.replay(existing, data, tolerance)

        from fees.outbox import SideEffectProcessor
        SideEffectProcessor().run_for_payment(payment)

        return PaymentCollectionService.build_result(payment, allocations, replayed=False)

    @staticmethod
    @transaction.atomic
    def record_and_allocate(plan, collector, idempotency_key, tolerance):
        """
        Write the payment, its allocations, the fee increments and the
        side-effect intents as one unit.

        Returns:
            tuple: (Payment, [PaymentAllocation])
        """
        from fees.outbox import enqueue_side_effects

        payment = PaymentRecorder.record(plan, collector, idempotency_key)
        allocations = AllocationWriter.write(payment, plan.allocations, tolerance)
        enqueue_side_effects(payment)
        return payment, allocations

    @staticmethod
    def find_replay(data, staff_token, idempotency_key, tolerance):
        school = School.get_by_code(data.get('school_code'))
        if school is None:
            return None
        existing = PaymentRecorder.find_by_key(school, idempotency_key)
        if existing is None:
            return None
        PaymentRecorder.resolve_collector(school, staff_token)
        return PaymentCollectionService.replay(existing, data, tolerance)

    @staticmethod
    def replay(existing, data, tolerance):
        """
        Return the outcome of an earlier request with the same key.

        Raises:
            IdempotencyConflict: the key was used for another student,
                amount or allocation split
        """
        allocations = list(existing.allocations.select_related('student_fee'))

        same_student = str(existing.student_id) == str(data.get('student_id') or '').strip()
        same_amount = amounts_match(existing.amount, safe_decimal(data.get('amount')), tolerance)
        same_split = PaymentCollectionService.same_allocations(
            allocations, data.get('allocations'), tolerance
        )
        if not (same_student and same_amount and same_split):
            raise exceptions.IdempotencyConflict(
                details={'payment_id': str(existing.pk), 'idempotency_key': existing.idempotency_key}
            )

        logger.info(f"Replaying payment {existing.pk} for idempotency key {existing.idempotency_key}")
        return PaymentCollectionService.build_result(existing, allocations, replayed=True)

    @staticmethod
    def same_allocations(allocations, raw_allocations, tolerance):
        """True when a request splits its amount over the same fees as the stored allocations."""
        try:
            requested = AllocationValidator.clean_allocations(raw_allocations)
        except exceptions.ValidationError:
            return False

        stored = {allocation.student_fee_id: allocation.allocated_amount for allocation in allocations}
        if set(stored) != {line['student_fee_id'] for line in requested}:
            return False
        return all(
            amounts_match(stored[line['student_fee_id']], line['allocated_amount'], tolerance)
            for line in requested
        )

    @staticmethod
    def build_result(payment, allocations, replayed):
        from finance.models import IncomeEntry

        receipt = Receipt.objects.filter(payment=payment, is_cancelled=False).first()
        income_entry = IncomeEntry.objects.filter(payment=payment).values_list('pk', flat=True).first()
        return {
            'payment': payment,
            'allocations': allocations,
            'receipt': receipt,
            'income_entry_id': str(income_entry) if income_entry else None,
            'replayed': replayed,
        }
