from decimal import Decimal
from unittest.mock import patch
import json

from django.db import DatabaseError
from django.test import TestCase, Client
from django.urls import reverse

from fees.models import Payment

from .helpers import FeeCollectionFixtures


class PaymentsViewTest(FeeCollectionFixtures, TestCase):
    def setUp(self):
        self.create_fixtures()
        self.client = Client()
        self.url = reverse('fees:payments')

    def post(self, data, staff_id='EMP-7', **headers):
        if staff_id:
            headers['HTTP_X_STAFF_ID'] = staff_id
        return self.client.post(self.url, data=json.dumps(data), content_type='application/json', **headers)

    def test_collect_payment(self):
        response = self.post(self.payload(500, [(self.april, 300), (self.may, 200)], remarks='Paid at counter'))

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body['message'], 'Payment collected successfully')
        data = body['data']
        self.assertEqual(data['payment']['amount'], '500.00')
        self.assertEqual(data['payment']['collected_by_staff_id'], 'EMP-7')
        self.assertFalse(data['payment']['is_reversed'])
        self.assertEqual(len(data['allocations']), 2)
        self.assertTrue(data['receipt']['receipt_no'].startswith('SPS01/REC/'))
        self.assertIsNotNone(data['income_entry_id'])
        self.assertFalse(data['replayed'])

    def test_validation_error(self):
        response = self.post(self.payload(500, [(self.april, 300)]))
        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.json()['error'],
            'Total allocated amount (300.00) must equal payment amount (500.00)'
        )

    def test_missing_fields(self):
        response = self.post({'school_code': 'SPS01'})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.json()['error'],
            'School code, student ID, amount, and payment mode are required'
        )
        self.assertIn('details', response.json())

    def test_invalid_json(self):
        response = self.client.post(self.url, data='{not json', content_type='application/json',
                                    HTTP_X_STAFF_ID='EMP-7')
        self.assertEqual(response.status_code, 400)

    def test_unknown_school(self):
        response = self.post(self.payload(300, [(self.april, 300)], school_code='XYZ'))
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {'error': 'School not found'})

    def test_collector_required(self):
        response = self.post(self.payload(300, [(self.april, 300)]), staff_id=None)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Collector information is required')

    def test_unknown_fee(self):
        data = self.payload(300, [(self.april, 300)])
        data['allocations'][0]['student_fee_id'] = '00000000-0000-0000-0000-000000000000'
        response = self.post(data)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Invalid student fee IDs or fees not found')

    def test_allocation_write_failure(self):
        with patch('fees.services.PaymentAllocation.objects.bulk_create', side_effect=DatabaseError('boom')):
            response = self.post(self.payload(300, [(self.april, 300)]))
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()['error'], 'Failed to create payment allocations')
        self.assertFalse(Payment.objects.exists())

    def test_unexpected_error(self):
        with patch('fees.views.PaymentCollectionService.collect_payment', side_effect=RuntimeError('kaboom')):
            response = self.post(self.payload(300, [(self.april, 300)]))
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {'error': 'Internal server error', 'details': 'kaboom'})

    def test_idempotency_key_header(self):
        data = self.payload(300, [(self.april, 300)])
        first = self.post(data, HTTP_IDEMPOTENCY_KEY='till-1-42')
        second = self.post(data, HTTP_IDEMPOTENCY_KEY='till-1-42')

        self.assertEqual(first.status_code, 201)
        self.assertEqual(second.status_code, 200)
        self.assertTrue(second.json()['data']['replayed'])
        self.assertEqual(first.json()['data']['payment']['id'], second.json()['data']['payment']['id'])

        conflict = self.post(self.payload(200, [(self.may, 200)]), HTTP_IDEMPOTENCY_KEY='till-1-42')
        self.assertEqual(conflict.status_code, 409)

    def test_float_amounts_from_json(self):
        response = self.post(self.payload(100, [(self.april, 0.1 + 0.2), (self.may, 99.7)]))

        self.assertEqual(response.status_code, 201)
        data = response.json()['data']
        self.assertEqual(data['payment']['amount'], '100.00')
        self.assertEqual(
            sorted(allocation['allocated_amount'] for allocation in data['allocations']),
            ['0.30', '99.70']
        )

    def test_same_fee_twice_in_other_case_is_rejected(self):
        data = self.payload(300, [(self.april, 150), (self.april, 150)])
        data['allocations'][1]['student_fee_id'] = str(self.april.pk).upper()
        response = self.post(data)
        self.assertEqual(response.status_code, 400)
        self.assertFalse(Payment.objects.exists())

    def test_method_not_allowed(self):
        response = self.client.put(self.url)
        self.assertEqual(response.status_code, 405)

    def test_list_requires_school_code(self):
        response = self.client.get(self.url)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {'error': 'School code is required'})

    def test_list_round_trip(self):
        self.post(self.payload(500, [(self.april, 300), (self.may, 200)]))

        response = self.client.get(self.url, {'school_code': 'sps01', 'student_id': str(self.student.pk)})

        self.assertEqual(response.status_code, 200)
        payments = response.json()['data']
        self.assertEqual(len(payments), 1)
        payment = payments[0]
        self.assertEqual(Decimal(payment['amount']), Decimal('500'))
        self.assertEqual(
            {(a['student_fee_id'], Decimal(a['allocated_amount'])) for a in payment['allocations']},
            {(str(self.april.pk), Decimal('300')), (str(self.may.pk), Decimal('200'))}
        )
        self.assertEqual(payment['student']['admission_no'], 'ADM-001')
        self.assertEqual(payment['collector']['staff_id'], 'EMP-7')
        self.assertTrue(payment['receipt']['receipt_no'].startswith('SPS01/REC/'))

    def test_list_excludes_reversed_and_failed(self):
        self.post(self.payload(300, [(self.april, 300)]))
        Payment.objects.update(is_reversed=True)
        with patch('fees.services.PaymentAllocation.objects.bulk_create', side_effect=DatabaseError('boom')):
            self.post(self.payload(200, [(self.may, 200)]))

        response = self.client.get(self.url, {'school_code': 'SPS01'})
        self.assertEqual(response.json(), {'data': []})

    def test_list_date_filters(self):
        self.post(self.payload(300, [(self.april, 300)]))

        response = self.client.get(self.url, {'school_code': 'SPS01', 'start_date': '2999-01-01'})
        self.assertEqual(response.json()['data'], [])

        response = self.client.get(self.url, {'school_code': 'SPS01', 'end_date': 'yesterday'})
        self.assertEqual(response.status_code, 400)


class StudentFeesViewTest(FeeCollectionFixtures, TestCase):
    def setUp(self):
        self.create_fixtures()
        self.client = Client()

    def test_lists_balances(self):
        self.create_fee('2026-06', Decimal('500.00'), adjustment=Decimal('50.00'), paid=Decimal('100.00'))
        url = reverse('fees:student_fees', args=[self.student.pk])

        response = self.client.get(url, {'school_code': 'SPS01'})

        self.assertEqual(response.status_code, 200)
        balances = {fee['due_month']: Decimal(fee['balance_due']) for fee in response.json()['data']}
        self.assertEqual(balances, {
            '2026-04': Decimal('300.00'),
            '2026-05': Decimal('300.00'),
            '2026-06': Decimal('450.00'),
        })
        june = next(fee for fee in response.json()['data'] if fee['due_month'] == '2026-06')
        self.assertEqual(Decimal(june['total_due']), Decimal('550.00'))

    def test_unknown_student(self):
        url = reverse('fees:student_fees', args=['missing'])
        response = self.client.get(url, {'school_code': 'SPS01'})
        self.assertEqual(response.status_code, 404)


class ReceiptDownloadViewTest(FeeCollectionFixtures, TestCase):
    def setUp(self):
        self.create_fixtures()
        self.client = Client()

    def test_download_pdf(self):
        response = self.client.post(
            reverse('fees:payments'),
            data=json.dumps(self.payload(300, [(self.april, 300)])),
            content_type='application/json',
            HTTP_X_STAFF_ID='EMP-7',
        )
        payment_id = response.json()['data']['payment']['id']

        response = self.client.get(reverse('fees:receipt_download', args=[payment_id]))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response['Content-Type'], 'application/pdf')
        self.assertIn('attachment; filename="receipt_SPS01-REC-', response['Content-Disposition'])
        self.assertTrue(response.content.startswith(b'%PDF'))

    def test_missing_receipt(self):
        url = reverse('fees:receipt_download', args=['00000000-0000-0000-0000-000000000000'])
        response = self.client.get(url)
        self.assertEqual(response.status_code, 404)
