# fees/models.py

"""
Fee Collection Models

- StudentFee: one fee obligation of a student (a month's tuition, a fine, ...)
- Payment: money received from a student in one transaction
- PaymentAllocation: the part of a payment applied to one obligation
- Receipt: the legal receipt issued for a payment, with a frozen snapshot
- ReceiptSequence: per school, per year receipt counter
- PaymentSideEffect: durable intents for the steps that follow a payment
  (receipt, income, audit), retried until done

All user tracking handled automatically by BaseModel
"""

from django.db import models, transaction
from django.db.models import F, Q
from django.core.validators import MinValueValidator
from django.utils import timezone
from decimal import Decimal
import logging

from utils.models import BaseModel
from core.models import School
from students.models import Student

logger = logging.getLogger(__name__)


# =============================================================================
# FEE OBLIGATIONS
# =============================================================================

class StudentFee(BaseModel):
    """
    A single amount a student owes.

    Created by billing; the collection flow only ever increments
    paid_amount (and moves status along with it).
    """

    STATUS_CHOICES = [
        ('PENDING', 'Pending'),
        ('PARTIAL', 'Partially Paid'),
        ('PAID', 'Paid'),
    ]

    school = models.ForeignKey(
        School,
        verbose_name="School",
        on_delete=models.PROTECT,
        related_name='student_fees'
    )
    student = models.ForeignKey(
        Student,
        verbose_name="Student",
        on_delete=models.PROTECT,
        related_name='fees'
    )
    description = models.CharField("Description", max_length=200, blank=True)
    due_month = models.CharField(
        "Due Month",
        max_length=7,
        blank=True,
        db_index=True,
        help_text="Billing month in YYYY-MM form"
    )
    due_date = models.DateField("Due Date", null=True, blank=True, db_index=True)

    # -------------------------------------------------------------------------
    # AMOUNTS
    # -------------------------------------------------------------------------

    base_amount = models.DecimalField(
        "Base Amount",
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.00'))]
    )
    adjustment_amount = models.DecimalField(
        "Adjustment",
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
        help_text="Negative for discounts, positive for fines"
    )
    paid_amount = models.DecimalField(
        "Paid Amount",
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00')
    )
    status = models.CharField(
        "Status",
        max_length=10,
        choices=STATUS_CHOICES,
        default='PENDING',
        db_index=True
    )

    class Meta:
        ordering = ['due_date', 'due_month', 'created_at']
        verbose_name = "Student Fee"
        verbose_name_plural = "Student Fees"
        indexes = [
            models.Index(fields=['school', 'student', 'status']),
        ]

    def __str__(self):
        label = self.description or self.due_month or 'Fee'
        return f"{label} - {self.student_id} ({self.balance_due} due)"

    @property
    def total_due(self):
        return (self.base_amount or Decimal('0.00')) + (self.adjustment_amount or Decimal('0.00'))

    @property
    def balance_due(self):
        """Amount still owed: base + adjustment - paid"""
        return self.total_due - (self.paid_amount or Decimal('0.00'))


# =============================================================================
# PAYMENTS
# =============================================================================

class Payment(BaseModel):
    """Money received from a student, split across one or more fees"""

    PAYMENT_MODE_CHOICES = [
        ('cash', 'Cash'),
        ('card', 'Card'),
        ('upi', 'UPI'),
        ('cheque', 'Cheque'),
        ('bank', 'Bank Transfer'),
        ('bank_transfer', 'Bank Transfer'),
        ('online', 'Online'),
        ('dd', 'Demand Draft'),
        ('other', 'Other'),
    ]

    school = models.ForeignKey(
        School,
        verbose_name="School",
        on_delete=models.PROTECT,
        related_name='payments'
    )
    student = models.ForeignKey(
        Student,
        verbose_name="Student",
        on_delete=models.PROTECT,
        related_name='payments'
    )

    # -------------------------------------------------------------------------
    # PAYMENT DETAILS
    # -------------------------------------------------------------------------

    amount = models.DecimalField(
        "Amount",
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))]
    )
    payment_mode = models.CharField(
        "Payment Mode",
        max_length=20,
        choices=PAYMENT_MODE_CHOICES,
        db_index=True
    )
    reference_number = models.CharField(
        "Reference Number",
        max_length=100,
        blank=True,
        db_index=True,
        help_text="Transaction id, UPI reference, cheque number, etc."
    )
    payment_date = models.DateTimeField("Payment Date", default=timezone.now, db_index=True)
    remarks = models.TextField("Remarks", blank=True)

    # -------------------------------------------------------------------------
    # COLLECTOR
    # -------------------------------------------------------------------------

    collected_by = models.ForeignKey(
        'hr.Staff',
        verbose_name="Collected By",
        on_delete=models.PROTECT,
        related_name='collected_payments'
    )
    collected_by_staff_id = models.CharField(
        "Collector Staff ID",
        max_length=30,
        blank=True,
        help_text="Staff identifier presented when the payment was collected"
    )

    # -------------------------------------------------------------------------
    # STATUS
    # -------------------------------------------------------------------------

    is_reversed = models.BooleanField("Reversed", default=False, db_index=True)
    idempotency_key = models.CharField(
        "Idempotency Key",
        max_length=100,
        null=True,
        blank=True,
        help_text="Client supplied key; a repeated key returns the original payment"
    )

    class Meta:
        ordering = ['-payment_date']
        verbose_name = "Payment"
        verbose_name_plural = "Payments"
        indexes = [
            models.Index(fields=['school', 'student', 'payment_date']),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['school', 'idempotency_key'],
                condition=Q(idempotency_key__isnull=False),
                name='unique_payment_idempotency_key_per_school'
            ),
        ]

    def __str__(self):
        return f"Payment {self.pk} - {self.amount} ({self.payment_mode})"


class PaymentAllocation(BaseModel):
    """The part of a payment applied to one fee"""

    payment = models.ForeignKey(
        Payment,
        verbose_name="Payment",
        on_delete=models.PROTECT,
        related_name='allocations'
    )
    student_fee = models.ForeignKey(
        StudentFee,
        verbose_name="Student Fee",
        on_delete=models.PROTECT,
        related_name='allocations'
    )
    allocated_amount = models.DecimalField(
        "Allocated Amount",
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))]
    )

    class Meta:
        ordering = ['created_at']
        verbose_name = "Payment Allocation"
        verbose_name_plural = "Payment Allocations"
        constraints = [
            models.UniqueConstraint(
                fields=['payment', 'student_fee'],
                name='unique_allocation_per_payment_fee'
            ),
        ]

    def __str__(self):
        return f"{self.allocated_amount} to {self.student_fee_id}"


# =============================================================================
# RECEIPTS
# =============================================================================

class Receipt(BaseModel):
    """
    Legal receipt for a payment.

    receipt_number and receipt_data are written once; the snapshot keeps
    the receipt reproducible even if student or staff records change later.
    """

    payment = models.OneToOneField(
        Payment,
        verbose_name="Payment",
        on_delete=models.PROTECT,
        related_name='receipt'
    )
    school = models.ForeignKey(
        School,
        verbose_name="School",
        on_delete=models.PROTECT,
        related_name='receipts'
    )
    student = models.ForeignKey(
        Student,
        verbose_name="Student",
        on_delete=models.PROTECT,
        related_name='receipts'
    )
    receipt_number = models.CharField("Receipt Number", max_length=60, unique=True, db_index=True)
    issued_by = models.ForeignKey(
        'hr.Staff',
        verbose_name="Issued By",
        on_delete=models.PROTECT,
        related_name='issued_receipts'
    )
    issued_at = models.DateTimeField("Issued At", default=timezone.now)
    receipt_data = models.JSONField("Receipt Data", default=dict)
    is_degraded = models.BooleanField(
        "Fallback Number",
        default=False,
        help_text="Numbered from the timestamp because the receipt counter was unavailable"
    )
    is_cancelled = models.BooleanField("Cancelled", default=False)

    class Meta:
        ordering = ['-issued_at']
        verbose_name = "Receipt"
        verbose_name_plural = "Receipts"

    def __str__(self):
        return self.receipt_number

    def save(self, *args, **kwargs):
        if not self._state.adding:
            original = Receipt.objects.filter(pk=self.pk).values(
                'receipt_number', 'receipt_data'
            ).first()
            if original and (
                original['receipt_number'] != self.receipt_number
                or original['receipt_data'] != self.receipt_data
            ):
                raise ValueError("Receipt number and snapshot cannot be changed once issued")
        return super().save(*args, **kwargs)


class ReceiptSequence(BaseModel):
    """Receipt counter for one school and year"""

    school = models.ForeignKey(
        School,
        verbose_name="School",
        on_delete=models.CASCADE,
        related_name='receipt_sequences'
    )
    year = models.PositiveIntegerField("Year")
    last_number = models.PositiveIntegerField("Last Number", default=0)

    class Meta:
        verbose_name = "Receipt Sequence"
        verbose_name_plural = "Receipt Sequences"
        constraints = [
            models.UniqueConstraint(fields=['school', 'year'], name='unique_receipt_sequence_per_year'),
        ]

    def __str__(self):
        return f"{self.school_id} {self.year}: {self.last_number}"

    @classmethod
    def next_number(cls, school, year):
        """
        Reserve the next receipt number for a school and year.

        The counter row is locked for the rest of the surrounding
        transaction, so two receipts never get the same number.

        Returns:
            int: the reserved number (1 for the first receipt of the year)
        """
        with transaction.atomic():
            sequence, created = cls.objects.select_for_update().get_or_create(
                school=school,
                year=year,
            )
            cls.objects.filter(pk=sequence.pk).update(
                last_number=F('last_number') + 1,
                updated_at=timezone.now(),
            )
            sequence.refresh_from_db(fields=['last_number'])

        if created:
            logger.info(f"Started receipt sequence for {school.code} {year}")
        return sequence.last_number


# =============================================================================
# SIDE EFFECT OUTBOX
# =============================================================================

class PaymentSideEffect(BaseModel):
    """
    A step to run after a payment commits.

    Written in the payment's own transaction, then marked DONE in the same
    transaction as the work it stands for. Rows left PENDING are retried by
    the process_payment_side_effects command.
    """

    RECEIPT = 'RECEIPT'
    INCOME = 'INCOME'
    AUDIT = 'AUDIT'

    EFFECT_TYPE_CHOICES = [
        (RECEIPT, 'Issue Receipt'),
        (INCOME, 'Book Income'),
        (AUDIT, 'Write Audit Log'),
    ]

    # Run order for one payment
    EFFECT_ORDER = [RECEIPT, INCOME, AUDIT]

    STATUS_CHOICES = [
        ('PENDING', 'Pending'),
        ('DONE', 'Done'),
        ('FAILED', 'Failed'),
    ]

    payment = models.ForeignKey(
        Payment,
        verbose_name="Payment",
        on_delete=models.PROTECT,
        related_name='side_effects'
    )
    effect_type = models.CharField("Effect", max_length=10, choices=EFFECT_TYPE_CHOICES)
    status = models.CharField(
        "Status",
        max_length=10,
        choices=STATUS_CHOICES,
        default='PENDING',
        db_index=True
    )
    attempts = models.PositiveIntegerField("Attempts", default=0)
    last_error = models.TextField("Last Error", blank=True)
    completed_at = models.DateTimeField("Completed At", null=True, blank=True)

    class Meta:
        ordering = ['created_at']
        verbose_name = "Payment Side Effect"
        verbose_name_plural = "Payment Side Effects"
        constraints = [
            models.UniqueConstraint(
                fields=['payment', 'effect_type'],
                name='unique_side_effect_per_payment'
            ),
        ]

    def __str__(self):
        return f"{self.effect_type} for {self.payment_id}: {self.status}"

    def mark_done(self):
        self.status = 'DONE'
        self.completed_at = timezone.now()
        self.last_error = ''
        self.save(update_fields=['status', 'completed_at', 'last_error', 'updated_at',
                                 'updated_by_id', 'updated_from_ip'])

    def mark_failed_attempt(self, error, max_attempts):
        """Record a failed attempt; give up after max_attempts."""
        self.attempts += 1
        self.last_error = str(error)[:2000]
        if self.attempts >= max_attempts:
            self.status = 'FAILED'
            logger.error(
                f"Giving up on {self.effect_type} for payment {self.payment_id} "
                f"after {self.attempts} attempts: {error}"
            )
        self.save(update_fields=['attempts', 'last_error', 'status', 'updated_at',
                                 'updated_by_id', 'updated_from_ip'])
