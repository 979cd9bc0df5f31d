from decimal import Decimal

from django.contrib.auth.models import AnonymousUser
from django.test import TestCase

from core.models import School
from utils.audit import log_audit_event
from utils.context import RequestContext, set_request_context, get_request_context, clear_request_context
from utils.models import AuditLog


class AuditLogTest(TestCase):
    def setUp(self):
        self.school = School.objects.create(code='SPS01', name='Springfield Public School')

    def test_event_takes_ip_and_agent_from_context(self):
        with RequestContext(ip_address='10.0.0.5', user_agent='till/1.0'):
            entry = log_audit_event(
                'payment_collected', 'payment', 'abc', school=self.school,
                changes={'amount': Decimal('12.50')}
            )

        self.assertEqual(entry.ip_address, '10.0.0.5')
        self.assertEqual(entry.user_agent, 'till/1.0')
        self.assertEqual(entry.changes, {'amount': '12.50'})
        self.assertEqual(entry.metadata, {})

    def test_entries_are_immutable(self):
        entry = log_audit_event('payment_collected', 'payment', 'abc', school=self.school)

        entry.action = 'edited'
        with self.assertRaises(ValueError):
            entry.save()
        with self.assertRaises(ValueError):
            entry.delete()
        self.assertEqual(AuditLog.objects.get(pk=entry.pk).action, 'payment_collected')

    def test_entity_history_filters_by_entity(self):
        first = log_audit_event('payment_collected', 'payment', 'abc')
        second = log_audit_event('payment_collected', 'payment', 'abc')
        log_audit_event('payment_collected', 'payment', 'other')

        history = list(AuditLog.get_entity_history('payment', 'abc'))
        self.assertCountEqual([entry.pk for entry in history], [first.pk, second.pk])


class RequestContextTest(TestCase):
    def tearDown(self):
        clear_request_context()

    def test_anonymous_user_is_not_recorded(self):
        set_request_context(user=AnonymousUser(), ip_address='10.0.0.9', request_path='/fees/v2/payments/')

        context = get_request_context()
        self.assertIsNone(context['user'])
        self.assertEqual(context['ip_address'], '10.0.0.9')
        self.assertEqual(context['user_agent'], '')
        self.assertEqual(context['request_path'], '/fees/v2/payments/')

    def test_clear_removes_context(self):
        set_request_context(ip_address='10.0.0.9')
        clear_request_context()
        self.assertIsNone(get_request_context())
