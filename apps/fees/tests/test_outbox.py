from decimal import Decimal
from io import StringIO
from unittest.mock import patch

from django.core.management import call_command
from django.db import DatabaseError
from django.test import TestCase

from fees.models import Receipt, PaymentSideEffect
from fees.outbox import SideEffectProcessor
from fees.services import PaymentCollectionService
from finance.models import IncomeEntry
from utils.models import AuditLog

from .helpers import FeeCollectionFixtures


class SideEffectProcessorTest(FeeCollectionFixtures, TestCase):
    def setUp(self):
        self.create_fixtures()

    def collect_with_broken_receipts(self):
        with patch('fees.receipts.build_receipt_snapshot', side_effect=ValueError('printer offline')):
            return PaymentCollectionService.collect_payment(
                self.payload('300', [(self.april, '300')]), staff_token='EMP-7'
            )

    def test_pending_receipt_is_issued_on_retry(self):
        result = self.collect_with_broken_receipts()
        payment = result['payment']
        self.assertFalse(Receipt.objects.filter(payment=payment).exists())

        summary = SideEffectProcessor().process_pending()

        self.assertEqual(summary, {'payments': 1, 'done': 1, 'failed': 0})
        receipt = Receipt.objects.get(payment=payment)
        self.assertFalse(receipt.is_degraded)
        effect = PaymentSideEffect.objects.get(payment=payment, effect_type='RECEIPT')
        self.assertEqual(effect.status, 'DONE')
        self.assertIsNotNone(effect.completed_at)
        self.assertEqual(effect.last_error, '')

    def test_done_effects_are_not_repeated(self):
        result = PaymentCollectionService.collect_payment(
            self.payload('300', [(self.april, '300')]), staff_token='EMP-7'
        )

        summary = SideEffectProcessor().process_pending()

        self.assertEqual(summary['payments'], 0)
        self.assertEqual(IncomeEntry.objects.filter(payment=result['payment']).count(), 1)
        self.assertEqual(AuditLog.objects.filter(entity_id=str(result['payment'].pk)).count(), 1)

    def test_effect_fails_after_max_attempts(self):
        result = self.collect_with_broken_receipts()
        processor = SideEffectProcessor(max_attempts=3)

        with patch('fees.receipts.build_receipt_snapshot', side_effect=ValueError('printer offline')):
            processor.process_pending()
            processor.process_pending()

        effect = PaymentSideEffect.objects.get(payment=result['payment'], effect_type='RECEIPT')
        self.assertEqual(effect.attempts, 3)
        self.assertEqual(effect.status, 'FAILED')

        self.assertEqual(processor.process_pending()['payments'], 0)

    def test_income_retry_books_once(self):
        with patch('finance.services.record_income_entry', side_effect=DatabaseError('ledger locked')):
            result = PaymentCollectionService.collect_payment(
                self.payload('300', [(self.april, '300')]), staff_token='EMP-7'
            )
        self.assertIsNone(result['income_entry_id'])

        SideEffectProcessor().process_pending()
        SideEffectProcessor().process_pending()

        self.assertEqual(IncomeEntry.objects.filter(payment=result['payment']).count(), 1)

    def test_limit_caps_payments(self):
        self.collect_with_broken_receipts()
        with patch('fees.receipts.build_receipt_snapshot', side_effect=ValueError('printer offline')):
            PaymentCollectionService.collect_payment(
                self.payload('100', [(self.may, '100')]), staff_token='EMP-7'
            )

        summary = SideEffectProcessor().process_pending(limit=1)

        self.assertEqual(summary['payments'], 1)
        self.assertEqual(PaymentSideEffect.objects.filter(status='PENDING').count(), 1)


class ProcessPaymentSideEffectsCommandTest(FeeCollectionFixtures, TestCase):
    def setUp(self):
        self.create_fixtures()

    def test_reports_nothing_pending(self):
        out = StringIO()
        call_command('process_payment_side_effects', stdout=out)
        self.assertIn('No pending side effects.', out.getvalue())

    def test_drains_pending_effects(self):
        with patch('fees.receipts.build_receipt_snapshot', side_effect=ValueError('printer offline')):
            result = PaymentCollectionService.collect_payment(
                self.payload('300', [(self.april, '300')]), staff_token='EMP-7'
            )

        out = StringIO()
        call_command('process_payment_side_effects', '--limit', '10', stdout=out)

        self.assertIn('Processed 1 payments: 1 done, 0 failed', out.getvalue())
        self.assertTrue(Receipt.objects.filter(payment=result['payment']).exists())
        self.assertEqual(
            Decimal(Receipt.objects.get(payment=result['payment']).receipt_data['payment']['amount']),
            Decimal('300.00')
        )
