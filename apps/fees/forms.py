# fees/forms.py

"""
Fee Collection Forms

Shape validation for the JSON payment request. Business rules (totals,
balances, ownership) are checked by AllocationValidator in services.py.
"""

from django import forms
from decimal import Decimal
import logging

from .models import Payment

logger = logging.getLogger(__name__)

REQUIRED_FIELDS_MESSAGE = "School code, student ID, amount, and payment mode are required"


class PaymentCollectionForm(forms.Form):
    """Header of a payment request"""

    school_code = forms.CharField(max_length=20)
    student_id = forms.CharField(max_length=64)
    # Unrounded; rounded to currency after the allocation total check
    amount = forms.DecimalField()
    payment_mode = forms.ChoiceField(choices=Payment.PAYMENT_MODE_CHOICES)
    reference_no = forms.CharField(max_length=100, required=False)
    remarks = forms.CharField(required=False)
    idempotency_key = forms.CharField(max_length=100, required=False)

    REQUIRED = ('school_code', 'student_id', 'amount', 'payment_mode')

    def clean_school_code(self):
        return self.cleaned_data['school_code'].strip().upper()

    def clean_amount(self):
        amount = self.cleaned_data['amount']
        if amount <= Decimal('0'):
            raise forms.ValidationError("Payment amount must be greater than 0", code='not_positive')
        return amount

    def clean_idempotency_key(self):
        return self.cleaned_data.get('idempotency_key', '').strip() or None

    def missing_required(self):
        """True when any of the four required fields was left out."""
        errors = self.errors.as_data()
        return any(
            error.code == 'required'
            for field in self.REQUIRED
            for error in errors.get(field, [])
        )


class AllocationForm(forms.Form):
    """One line of a payment request: how much goes to which fee"""

    student_fee_id = forms.CharField(max_length=64)
    allocated_amount = forms.DecimalField()

    def clean_allocated_amount(self):
        amount = self.cleaned_data['allocated_amount']
        if amount <= Decimal('0'):
            raise forms.ValidationError("Allocated amount must be greater than 0", code='not_positive')
        return amount


def flatten_form_errors(form, prefix=None):
    """
    Turn form errors into a plain dict for JSON responses.

    Example:
        {'amount': ['Enter a number.'], 'allocations[0].allocated_amount': ['This field is required.']}
    """
    flattened = {}
    for field, messages in form.errors.items():
        key = f"{prefix}.{field}" if prefix else field
        flattened[key] = [str(message) for message in messages]
    return flattened
