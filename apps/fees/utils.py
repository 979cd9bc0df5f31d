# fees/utils.py

"""
JSON shapes for fee collection responses.

Values are left as Decimal/UUID/datetime; JsonResponse's DjangoJSONEncoder
turns them into strings.
"""


def serialize_payment(payment):
    return {
        'id': payment.pk,
        'school_code': payment.school.code,
        'student_id': payment.student_id,
        'amount': payment.amount,
        'payment_mode': payment.payment_mode,
        'reference_no': payment.reference_number or None,
        'payment_date': payment.payment_date,
        'collected_by': payment.collected_by_id,
        'collected_by_staff_id': payment.collected_by_staff_id or None,
        'remarks': payment.remarks or None,
        'is_reversed': payment.is_reversed,
        'idempotency_key': payment.idempotency_key,
    }


def serialize_allocation(allocation):
    return {
        'id': allocation.pk,
        'payment_id': allocation.payment_id,
        'student_fee_id': allocation.student_fee_id,
        'allocated_amount': allocation.allocated_amount,
    }


def serialize_receipt(receipt):
    if receipt is None:
        return None
    return {
        'id': receipt.pk,
        'receipt_no': receipt.receipt_number,
        'payment_id': receipt.payment_id,
        'student_id': receipt.student_id,
        'issued_by': receipt.issued_by_id,
        'issued_at': receipt.issued_at,
        'receipt_data': receipt.receipt_data,
        'is_degraded': receipt.is_degraded,
        'is_cancelled': receipt.is_cancelled,
    }


def serialize_student_fee(student_fee):
    return {
        'id': student_fee.pk,
        'student_id': student_fee.student_id,
        'description': student_fee.description,
        'due_month': student_fee.due_month or None,
        'due_date': student_fee.due_date,
        'base_amount': student_fee.base_amount,
        'adjustment_amount': student_fee.adjustment_amount,
        'paid_amount': student_fee.paid_amount,
        'total_due': student_fee.total_due,
        'balance_due': student_fee.balance_due,
        'status': student_fee.status,
    }


def serialize_collection_result(result):
    """Shape of the data block returned by a payment collection."""
    return {
        'payment': serialize_payment(result['payment']),
        'receipt': serialize_receipt(result['receipt']),
        'allocations': [serialize_allocation(allocation) for allocation in result['allocations']],
        'income_entry_id': result['income_entry_id'],
        'replayed': result['replayed'],
    }


def serialize_payment_listing(payment):
    """A payment with its student, collector, allocations and receipt, for listings."""
    student = payment.student
    collector = payment.collected_by
    receipt = getattr(payment, 'receipt', None)

    data = serialize_payment(payment)
    data.update({
        'student': {
            'id': student.pk,
            'admission_no': student.admission_number,
            'student_name': student.get_full_name(),
            'class': student.class_name,
            'section': student.section,
        },
        'collector': {
            'id': collector.pk,
            'full_name': collector.get_full_name(),
            'staff_id': collector.staff_id,
        },
        'allocations': [
            dict(
                serialize_allocation(allocation),
                student_fee={
                    'id': allocation.student_fee.pk,
                    'due_month': allocation.student_fee.due_month or None,
                    'due_date': allocation.student_fee.due_date,
                    'base_amount': allocation.student_fee.base_amount,
                    'status': allocation.student_fee.status,
                },
            )
            for allocation in payment.allocations.all()
        ],
        'receipt': {
            'id': receipt.pk,
            'receipt_no': receipt.receipt_number,
            'issued_at': receipt.issued_at,
        } if receipt else None,
    })
    return data
