from decimal import Decimal

from django.test import TestCase

from core.models import FinancialSettings
from fees.models import Receipt, ReceiptSequence
from fees.receipts import ReceiptIssuer, render_receipt_pdf
from fees.services import PaymentCollectionService

from .helpers import FeeCollectionFixtures


class ReceiptSequenceTest(FeeCollectionFixtures, TestCase):
    def setUp(self):
        self.create_fixtures()

    def test_numbers_increase_per_school_and_year(self):
        self.assertEqual(ReceiptSequence.next_number(self.school, 2026), 1)
        self.assertEqual(ReceiptSequence.next_number(self.school, 2026), 2)
        self.assertEqual(ReceiptSequence.next_number(self.school, 2027), 1)
        self.assertEqual(ReceiptSequence.objects.get(school=self.school, year=2026).last_number, 2)


class ReceiptIssuerTest(FeeCollectionFixtures, TestCase):
    def setUp(self):
        self.create_fixtures()
        self.result = PaymentCollectionService.collect_payment(
            self.payload('500', [(self.april, '300'), (self.may, '200')], reference_no='UPI-77'),
            staff_token='EMP-7'
        )
        self.payment = self.result['payment']
        self.receipt = self.result['receipt']

    def test_snapshot_contents(self):
        data = self.receipt.receipt_data
        self.assertEqual(data['student'], {
            'id': str(self.student.pk),
            'admission_no': 'ADM-001',
            'name': 'Asha Verma',
            'class': '5',
            'section': 'A',
        })
        self.assertEqual(data['payment']['id'], str(self.payment.pk))
        self.assertEqual(data['payment']['amount'], '500.00')
        self.assertEqual(data['payment']['mode'], 'cash')
        self.assertEqual(data['payment']['reference_no'], 'UPI-77')
        self.assertEqual(data['collector']['staff_id'], 'EMP-7')
        self.assertEqual(
            {(line['student_fee_id'], line['allocated_amount'], line['due_month']) for line in data['allocations']},
            {(str(self.april.pk), '300.00', '2026-04'), (str(self.may.pk), '200.00', '2026-05')}
        )

    def test_issue_is_idempotent_per_payment(self):
        again = ReceiptIssuer.issue(self.payment)
        self.assertEqual(again.pk, self.receipt.pk)
        self.assertEqual(Receipt.objects.filter(payment=self.payment).count(), 1)

    def test_number_and_snapshot_are_frozen(self):
        self.receipt.receipt_number = 'SPS01/REC/1999/000001'
        with self.assertRaises(ValueError):
            self.receipt.save()

        receipt = Receipt.objects.get(pk=self.receipt.pk)
        receipt.is_cancelled = True
        receipt.save()
        self.assertTrue(Receipt.objects.get(pk=self.receipt.pk).is_cancelled)

    def test_prefix_and_padding_from_settings(self):
        settings = FinancialSettings.get_for_school(self.school)
        settings.receipt_prefix = 'FEE'
        settings.receipt_number_padding = 4
        settings.save()

        number, is_degraded = ReceiptIssuer.next_receipt_number(self.school, 2030)

        self.assertEqual(number, 'SPS01/FEE/2030/0001')
        self.assertFalse(is_degraded)

    def test_render_pdf(self):
        pdf = render_receipt_pdf(self.receipt)
        self.assertTrue(pdf.startswith(b'%PDF'))
        self.assertGreater(len(pdf), 1000)

    def test_render_pdf_for_cancelled_receipt(self):
        self.receipt.is_cancelled = True
        self.receipt.save()
        self.assertTrue(render_receipt_pdf(self.receipt).startswith(b'%PDF'))

    def test_amounts_in_snapshot_add_up(self):
        data = self.receipt.receipt_data
        total = sum(Decimal(line['allocated_amount']) for line in data['allocations'])
        self.assertEqual(total, Decimal(data['payment']['amount']))
