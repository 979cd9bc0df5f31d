# finance/models.py

"""
Income bookkeeping.

Income entries recognise money received as revenue. Entries booked from
fee payments link back to the payment; the link is unique, so a payment
is booked as income at most once.
"""

from django.db import models
from django.core.validators import MinValueValidator
from decimal import Decimal
import logging

from utils.models import BaseModel
from core.models import School, FinancialYear

logger = logging.getLogger(__name__)


# =============================================================================
# INCOME ENTRIES
# =============================================================================

class IncomeEntry(BaseModel):
    """One income record in a school's books"""

    school = models.ForeignKey(
        School,
        verbose_name="School",
        on_delete=models.PROTECT,
        related_name='income_entries'
    )
    financial_year = models.ForeignKey(
        FinancialYear,
        verbose_name="Financial Year",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='income_entries'
    )

    # -------------------------------------------------------------------------
    # DETAILS
    # -------------------------------------------------------------------------

    source = models.CharField("Source", max_length=50, default='Fees', db_index=True)
    amount = models.DecimalField(
        "Amount",
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))]
    )
    entry_date = models.DateField("Entry Date", db_index=True)
    reference_number = models.CharField("Reference Number", max_length=100, blank=True, db_index=True)
    notes = models.TextField("Notes", blank=True)

    created_by = models.ForeignKey(
        'hr.Staff',
        verbose_name="Recorded By",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='income_entries'
    )

    # -------------------------------------------------------------------------
    # SOURCE DOCUMENT
    # -------------------------------------------------------------------------

    payment = models.OneToOneField(
        'fees.Payment',
        verbose_name="Fee Payment",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='income_entry',
        help_text="Fee payment this income was booked from"
    )

    is_active = models.BooleanField("Is Active", default=True, db_index=True)

    class Meta:
        verbose_name = "Income Entry"
        verbose_name_plural = "Income Entries"
        ordering = ['-entry_date', '-created_at']
        indexes = [
            models.Index(fields=['school', 'entry_date']),
            models.Index(fields=['source']),
        ]

    def __str__(self):
        return f"{self.source} {self.amount} on {self.entry_date}"
