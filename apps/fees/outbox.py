# fees/outbox.py

"""
Side effects of a committed payment.

Every payment is written together with one PaymentSideEffect row per
follow-up step (receipt, income, audit). The steps run right after the
payment commits; a step that fails stays PENDING and is picked up again by
SideEffectProcessor.process_pending(), until it succeeds or runs out of
attempts.
"""

from django.db import transaction, DatabaseError
import logging

from utils.audit import log_payment_collected
from fees.models import Payment, Receipt, PaymentSideEffect
from fees.conf import get_setting
from fees import exceptions

logger = logging.getLogger(__name__)


def enqueue_side_effects(payment):
    """Create the pending receipt/income/audit intents for a new payment."""
    effects = []
    for effect_type in PaymentSideEffect.EFFECT_ORDER:
        effect = PaymentSideEffect(payment=payment, effect_type=effect_type)
        effect.stamp_audit_fields(is_new=True)
        effects.append(effect)
    return PaymentSideEffect.objects.bulk_create(effects)


class SideEffectProcessor:
    """Runs pending side effects, one transaction per effect"""

    def __init__(self, max_attempts=None):
        self.max_attempts = max_attempts or int(get_setting('MAX_SIDE_EFFECT_ATTEMPTS'))
        self.handlers = {
            PaymentSideEffect.RECEIPT: self.issue_receipt,
            PaymentSideEffect.INCOME: self.book_income,
            PaymentSideEffect.AUDIT: self.write_audit_log,
        }

    # -------------------------------------------------------------------------
    # HANDLERS
    # -------------------------------------------------------------------------

    def issue_receipt(self, payment):
        from fees.receipts import ReceiptIssuer
        return ReceiptIssuer.issue(payment)

    def book_income(self, payment):
        from fees.services import IncomeLedgerBridge
        return IncomeLedgerBridge.book(payment)

    def write_audit_log(self, payment):
        allocations = list(payment.allocations.all())
        receipt = Receipt.objects.filter(payment=payment).first()
        try:
            return log_payment_collected(payment, allocations, receipt)
        except Exception as e:
            raise exceptions.AuditFailure(details=str(e)) from e

    # -------------------------------------------------------------------------
    # RUNNING
    # -------------------------------------------------------------------------

    def run_effect(self, effect):
        """
        Run one side effect and mark it done in the same transaction.

        Returns:
            bool: True when the effect is done (now or already)
        """
        handler = self.handlers[effect.effect_type]

        try:
            with transaction.atomic():
                locked = PaymentSideEffect.objects.select_for_update().select_related(
                    'payment__school', 'payment__student', 'payment__collected_by'
                ).get(pk=effect.pk)
                if locked.status != 'PENDING':
                    return locked.status == 'DONE'

                handler(locked.payment)
                locked.mark_done()
        except (exceptions.FeeCollectionError, DatabaseError) as e:
            logger.error(
                f"{effect.effect_type} failed for payment {effect.payment_id}: {e}",
                exc_info=True
            )
            effect.refresh_from_db()
            effect.mark_failed_attempt(getattr(e, 'details', None) or e, self.max_attempts)
            return False

        logger.debug(f"{effect.effect_type} done for payment {effect.payment_id}")
        return True

    def run_for_payment(self, payment):
        """
        Run the pending side effects of one payment in order.

        Returns:
            dict: effect_type -> True/False
        """
        effects = {
            effect.effect_type: effect
            for effect in PaymentSideEffect.objects.filter(payment=payment, status='PENDING')
        }

        results = {}
        for effect_type in PaymentSideEffect.EFFECT_ORDER:
            if effect_type in effects:
                results[effect_type] = self.run_effect(effects[effect_type])
        return results

    def process_pending(self, limit=None):
        """
        Retry pending side effects, oldest payments first.

        Args:
            limit (int, optional): maximum number of payments to process

        Returns:
            dict: {'payments': n, 'done': n, 'failed': n}
        """
        payment_ids = (
            PaymentSideEffect.objects.filter(status='PENDING')
            .order_by('created_at')
            .values_list('payment_id', flat=True)
        )

        seen = []
        for payment_id in payment_ids:
            if payment_id not in seen:
                seen.append(payment_id)
            if limit and len(seen) >= limit:
                break

        summary = {'payments': 0, 'done': 0, 'failed': 0}
        for payment in Payment.objects.filter(pk__in=seen).order_by('payment_date'):
            results = self.run_for_payment(payment)
            summary['payments'] += 1
            summary['done'] += sum(1 for ok in results.values() if ok)
            summary['failed'] += sum(1 for ok in results.values() if not ok)

        if summary['payments']:
            logger.info(
                f"Processed side effects for {summary['payments']} payments: "
                f"{summary['done']} done, {summary['failed']} failed"
            )
        return summary
