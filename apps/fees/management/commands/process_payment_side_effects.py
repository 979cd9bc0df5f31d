# fees/management/commands/process_payment_side_effects.py

from django.core.management.base import BaseCommand

from utils.context import RequestContext
from fees.outbox import SideEffectProcessor


class Command(BaseCommand):
    help = 'Retry pending receipt, income and audit steps of collected payments'

    def add_arguments(self, parser):
        parser.add_argument(
            '--limit',
            type=int,
            default=None,
            help='Maximum number of payments to process in this run'
        )
        parser.add_argument(
            '--max-attempts',
            type=int,
            default=None,
            help='Attempts before a side effect is marked FAILED (default from settings)'
        )

    def handle(self, *args, **options):
        processor = SideEffectProcessor(max_attempts=options['max_attempts'])

        with RequestContext(request_path='command:process_payment_side_effects'):
            summary = processor.process_pending(limit=options['limit'])

        if not summary['payments']:
            self.stdout.write('No pending side effects.')
            return

        message = (
            f"Processed {summary['payments']} payments: "
            f"{summary['done']} done, {summary['failed']} failed"
        )
        if summary['failed']:
            self.stdout.write(self.style.WARNING(message))
        else:
            self.stdout.write(self.style.SUCCESS(message))
