from datetime import date
from decimal import Decimal

from django.test import TestCase, override_settings
from django.utils import timezone

from core.models import FinancialYear
from fees.services import PaymentCollectionService, IncomeLedgerBridge
from fees.tests.helpers import FeeCollectionFixtures
from finance.models import IncomeEntry
from finance.services import (
    create_income_from_payment, build_income_reference, build_income_narrative
)


class CreateIncomeFromPaymentTest(FeeCollectionFixtures, TestCase):
    def setUp(self):
        self.create_fixtures()
        today = timezone.localdate()
        self.financial_year = FinancialYear.objects.create(
            school=self.school,
            name='current',
            start_date=date(today.year - 1, 1, 1),
            end_date=date(today.year + 1, 12, 31),
        )
        self.payment = PaymentCollectionService.collect_payment(
            self.payload('300', [(self.april, '300')], remarks='Paid at counter'),
            staff_token='EMP-7'
        )['payment']

    def test_calling_twice_books_once(self):
        first = create_income_from_payment(self.payment.pk)
        second = create_income_from_payment(self.payment.pk)

        self.assertEqual(first, second)
        self.assertEqual(IncomeEntry.objects.filter(payment=self.payment).count(), 1)

    def test_entry_details(self):
        entry = IncomeEntry.objects.get(payment=self.payment)

        self.assertEqual(entry.school, self.school)
        self.assertEqual(entry.amount, Decimal('300.00'))
        self.assertEqual(entry.source, 'Fees')
        self.assertEqual(entry.financial_year, self.financial_year)
        self.assertEqual(entry.created_by, self.collector)
        self.assertEqual(entry.reference_number, f"PAY-{str(self.payment.pk)[:8].upper()}")
        self.assertTrue(entry.notes.startswith('Fee payment - Student: ADM-001 | Receipt: SPS01/REC/'))
        self.assertTrue(entry.notes.endswith(' | Paid at counter'))


class NarrativeTest(FeeCollectionFixtures, TestCase):
    def setUp(self):
        self.create_fixtures()
        self.payment = PaymentCollectionService.collect_payment(
            self.payload('300', [(self.april, '300')], reference_no='UPI-991'),
            staff_token='EMP-7'
        )['payment']

    def test_reference_prefers_payment_reference(self):
        self.assertEqual(build_income_reference(self.payment), 'UPI-991')

    def test_narrative_parts_only_when_present(self):
        self.assertEqual(build_income_narrative(self.payment), 'Fee payment - Student: ADM-001')
        self.assertEqual(
            build_income_narrative(self.payment, 'SPS01/REC/2026/000003'),
            'Fee payment - Student: ADM-001 | Receipt: SPS01/REC/2026/000003'
        )


@override_settings(FEE_COLLECTION={'INCOME_BOOKING_FUNCTION': ''})
class DirectIncomeBookingTest(FeeCollectionFixtures, TestCase):
    """Booking without the payment-keyed function"""

    def setUp(self):
        self.create_fixtures()

    def test_fallback_books_entry_with_narrative(self):
        result = PaymentCollectionService.collect_payment(
            self.payload('300', [(self.april, '300')], remarks='Cheque cleared'),
            staff_token='EMP-7'
        )

        entry = IncomeEntry.objects.get(payment=result['payment'])
        self.assertEqual(result['income_entry_id'], str(entry.pk))
        self.assertEqual(
            entry.notes,
            f"Fee payment - Student: ADM-001 | Receipt: {result['receipt'].receipt_number} | Cheque cleared"
        )
        self.assertIsNone(entry.financial_year)
        self.assertEqual(entry.entry_date, timezone.localdate(result['payment'].payment_date))

    def test_fallback_uses_latest_active_year_when_none_contains_date(self):
        year = FinancialYear.objects.create(
            school=self.school, name='old', start_date=date(2001, 4, 1), end_date=date(2002, 3, 31)
        )
        result = PaymentCollectionService.collect_payment(
            self.payload('300', [(self.april, '300')]), staff_token='EMP-7'
        )
        self.assertEqual(IncomeEntry.objects.get(payment=result['payment']).financial_year, year)


@override_settings(FEE_COLLECTION={'INCOME_BOOKING_FUNCTION': 'finance.services.no_such_function'})
class UnavailableBookingFunctionTest(FeeCollectionFixtures, TestCase):
    def setUp(self):
        self.create_fixtures()

    def test_unimportable_function_falls_back(self):
        self.assertIsNone(IncomeLedgerBridge.get_booking_function())

        result = PaymentCollectionService.collect_payment(
            self.payload('300', [(self.april, '300')]), staff_token='EMP-7'
        )
        self.assertIsNotNone(result['income_entry_id'])
        self.assertTrue(IncomeEntry.objects.filter(payment=result['payment']).exists())
