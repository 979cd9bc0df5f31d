# core/models.py

"""
School registry and per-school financial configuration.

- School: the registry that maps a school code to its internal record
- FinancialSettings: per-school currency, receipt numbering and income source
- FinancialYear: per-school financial years used when booking income
"""

from django.db import models
from django.core.exceptions import ValidationError
from decimal import Decimal
import logging

from utils.models import BaseModel

logger = logging.getLogger(__name__)


# =============================================================================
# SCHOOL REGISTRY
# =============================================================================

class School(BaseModel):
    """A school served by this installation, identified by its code."""

    code = models.CharField(
        "School Code",
        max_length=20,
        unique=True,
        db_index=True,
        help_text="Short upper-case code, e.g. 'SPS01'"
    )
    name = models.CharField("School Name", max_length=200)
    is_active = models.BooleanField("Is Active", default=True, db_index=True)

    class Meta:
        ordering = ['code']
        verbose_name = "School"
        verbose_name_plural = "Schools"

    def __str__(self):
        return f"{self.code} - {self.name}"

    def save(self, *args, **kwargs):
        self.code = (self.code or '').strip().upper()
        super().save(*args, **kwargs)

    @classmethod
    def get_by_code(cls, code):
        """
        Look up an active school by code (case-insensitive).

        Returns:
            School or None
        """
        if not code:
            return None
        return cls.objects.filter(code=str(code).strip().upper(), is_active=True).first()


# =============================================================================
# FINANCIAL SETTINGS
# =============================================================================

class FinancialSettings(BaseModel):
    """
    Per-school financial configuration.

    One row per school, created with defaults on first use.
    """

    school = models.OneToOneField(
        School,
        verbose_name="School",
        on_delete=models.CASCADE,
        related_name='financial_settings'
    )
    school_currency = models.CharField("Currency", max_length=3, default='INR')
    receipt_prefix = models.CharField(
        "Receipt Prefix",
        max_length=10,
        default='REC',
        help_text="Middle segment of receipt numbers: {SCHOOL}/{PREFIX}/{YEAR}/{NUMBER}"
    )
    receipt_number_padding = models.PositiveSmallIntegerField(
        "Receipt Number Padding",
        default=6,
        help_text="Digits used for the sequence part of receipt numbers"
    )
    income_source = models.CharField(
        "Income Source",
        max_length=50,
        default='Fees',
        help_text="Source recorded on income entries booked from fee payments"
    )

    class Meta:
        verbose_name = "Financial Settings"
        verbose_name_plural = "Financial Settings"

    def __str__(self):
        return f"Financial settings for {self.school.code}"

    @classmethod
    def get_for_school(cls, school):
        """Get or create the settings row for a school."""
        instance, created = cls.objects.get_or_create(school=school)
        if created:
            logger.info(f"Created default financial settings for {school.code}")
        return instance

    def format_currency(self, amount, include_symbol=True):
        """Format an amount in the school's currency, e.g. 'INR 1,500.00'"""
        formatted = f"{Decimal(str(amount or 0)):,.2f}"
        return f"{self.school_currency} {formatted}" if include_symbol else formatted


# =============================================================================
# FINANCIAL YEAR REGISTRY
# =============================================================================

class FinancialYear(BaseModel):
    """
    Financial year of a school (typically April to March).

    Income entries reference the year they were booked in.
    """

    school = models.ForeignKey(
        School,
        verbose_name="School",
        on_delete=models.CASCADE,
        related_name='financial_years'
    )
    name = models.CharField(
        "Year Name",
        max_length=50,
        help_text="e.g., '2025-26'"
    )
    start_date = models.DateField("Start Date", db_index=True)
    end_date = models.DateField("End Date", db_index=True)
    is_active = models.BooleanField("Is Active", default=True, db_index=True)

    class Meta:
        ordering = ['-start_date']
        constraints = [
            models.UniqueConstraint(fields=['school', 'name'], name='unique_financial_year_name_per_school'),
        ]
        verbose_name = "Financial Year"
        verbose_name_plural = "Financial Years"

    def __str__(self):
        return f"{self.school.code} {self.name}"

    def clean(self):
        super().clean()
        if self.start_date and self.end_date and self.start_date >= self.end_date:
            raise ValidationError({'end_date': "End date must be after start date"})

    @classmethod
    def get_for_date(cls, school, check_date):
        """
        Resolve the active financial year for a date.

        Prefers an active year whose range contains the date, otherwise the
        most recently started active year.

        Returns:
            FinancialYear or None
        """
        active = cls.objects.filter(school=school, is_active=True)
        return (
            active.filter(start_date__lte=check_date, end_date__gte=check_date).first()
            or active.order_by('-start_date').first()
        )
