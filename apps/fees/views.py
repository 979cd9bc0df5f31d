# fees/views.py

"""
Fee Collection API

JSON endpoints for:
- Collecting a payment and listing payments
- Listing a student's fees with balances
- Downloading a receipt PDF

Errors are returned as {'error': ..., 'details': ...} with the status
carried by the raised FeeCollectionError.
"""

from django.http import JsonResponse, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods
from django.utils.dateparse import parse_date
import json
import logging

from core.models import School
from students.models import Student
from .models import Payment, StudentFee, Receipt
from .services import PaymentCollectionService
from .receipts import render_receipt_pdf
from .conf import get_setting
from .exceptions import FeeCollectionError
from .utils import serialize_collection_result, serialize_payment_listing, serialize_student_fee

logger = logging.getLogger(__name__)


def error_response(message, status, details=None):
    payload = {'error': message}
    if details is not None:
        payload['details'] = details
    return JsonResponse(payload, status=status)


def internal_error_response(e):
    return error_response('Internal server error', 500, details=str(e) or e.__class__.__name__)


# =============================================================================
# PAYMENTS
# =============================================================================

@csrf_exempt
@require_http_methods(["GET", "POST"])
def payments(request):
    """GET lists payments, POST collects one"""
    if request.method == 'POST':
        return collect_payment(request)
    return list_payments(request)


def collect_payment(request):
    """
    Collect a payment split across a student's fees.

    Body: {school_code, student_id, amount, payment_mode, reference_no?,
           allocations: [{student_fee_id, allocated_amount}], remarks?, idempotency_key?}
    Headers: X-Staff-Id (required), Idempotency-Key (optional)
    """
    try:
        data = json.loads(request.body or b'{}')
    except (ValueError, UnicodeDecodeError):
        return error_response('Invalid JSON body', 400)
    if not isinstance(data, dict):
        return error_response('Invalid JSON body', 400)

    staff_token = request.META.get(get_setting('STAFF_ID_HEADER'))
    idempotency_key = request.META.get(get_setting('IDEMPOTENCY_KEY_HEADER'))

    try:
        result = PaymentCollectionService.collect_payment(
            data,
            staff_token=staff_token,
            idempotency_key=idempotency_key,
        )
    except FeeCollectionError as e:
        if e.status_code >= 500:
            logger.error(f"Payment collection failed: {e.message} ({e.details})")
        else:
            logger.info(f"Payment collection rejected ({e.status_code}): {e.message}")
        return JsonResponse(e.as_dict(), status=e.status_code)
    except Exception as e:
        logger.error(f"Error collecting payment: {e}", exc_info=True)
        return internal_error_response(e)

    return JsonResponse(
        {
            'message': 'Payment collected successfully',
            'data': serialize_collection_result(result),
        },
        status=200 if result['replayed'] else 201
    )


def list_payments(request):
    """
    Payments of a school, newest first. Reversed payments are left out.

    Query params: school_code (required), student_id, start_date, end_date
    (dates as YYYY-MM-DD, both inclusive)
    """
    school_code = request.GET.get('school_code')
    if not school_code:
        return error_response('School code is required', 400)

    school = School.get_by_code(school_code)
    if school is None:
        return error_response('School not found', 404)

    queryset = Payment.objects.filter(
        school=school,
        is_reversed=False,
    ).select_related(
        'school', 'student', 'collected_by', 'receipt'
    ).prefetch_related(
        'allocations__student_fee'
    ).order_by('-payment_date')

    student_id = request.GET.get('student_id')
    if student_id:
        student = Student.get_for_school(school, student_id)
        if student is None:
            return JsonResponse({'data': []})
        queryset = queryset.filter(student=student)

    for param, lookup in (('start_date', 'payment_date__date__gte'), ('end_date', 'payment_date__date__lte')):
        value = request.GET.get(param)
        if not value:
            continue
        try:
            parsed = parse_date(value)
        except ValueError:
            parsed = None
        if parsed is None:
            return error_response(f'Invalid {param}, expected YYYY-MM-DD', 400)
        queryset = queryset.filter(**{lookup: parsed})

    try:
        data = [serialize_payment_listing(payment) for payment in queryset]
    except Exception as e:
        logger.error(f"Error fetching payments: {e}", exc_info=True)
        return error_response('Failed to fetch payments', 500, details=str(e))

    return JsonResponse({'data': data})


# =============================================================================
# STUDENT FEES
# =============================================================================

@require_http_methods(["GET"])
def student_fees(request, student_id):
    """A student's fees with their balance due. Query param: school_code"""
    school_code = request.GET.get('school_code')
    if not school_code:
        return error_response('School code is required', 400)

    school = School.get_by_code(school_code)
    if school is None:
        return error_response('School not found', 404)

    student = Student.get_for_school(school, student_id)
    if student is None:
        return error_response('Student not found', 404)

    fees = StudentFee.objects.filter(school=school, student=student).order_by('due_date', 'due_month')
    return JsonResponse({'data': [serialize_student_fee(fee) for fee in fees]})


# =============================================================================
# RECEIPTS
# =============================================================================

@require_http_methods(["GET"])
def receipt_download(request, payment_id):
    """Receipt of a payment as a PDF attachment"""
    receipt = Receipt.objects.select_related('school').filter(payment_id=payment_id).first()
    if receipt is None:
        return error_response('Receipt not found', 404)

    try:
        pdf = render_receipt_pdf(receipt)
    except Exception as e:
        logger.error(f"Error rendering receipt {receipt.receipt_number}: {e}", exc_info=True)
        return internal_error_response(e)

    filename = receipt.receipt_number.replace('/', '-')
    response = HttpResponse(pdf, content_type='application/pdf')
    response['Content-Disposition'] = f'attachment; filename="receipt_{filename}.pdf"'
    return response
