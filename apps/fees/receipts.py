# fees/receipts.py

"""
Receipt issuing and rendering.

Receipt numbers look like SPS01/REC/2026/000042: school code, the prefix
from FinancialSettings, the payment's year, and the next number from
ReceiptSequence. If the counter cannot be used the number falls back to
the current timestamp in milliseconds and the receipt is flagged
is_degraded.
"""

from io import BytesIO
from django.db import DatabaseError
from django.utils import timezone
import logging
import time

from reportlab.lib import colors
from reportlab.lib.pagesizes import A5
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.enums import TA_CENTER
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer

from core.models import FinancialSettings
from fees.models import Receipt, ReceiptSequence
from fees import exceptions

logger = logging.getLogger(__name__)

FALLBACK_PREFIX = 'REC'


class ReceiptIssuer:
    """Numbers and stores the receipt for a committed payment"""

    @staticmethod
    def issue(payment):
        """
        Issue the receipt for a payment, once.

        Returns:
            Receipt (the existing one if the payment already has a receipt)

        Raises:
            ReceiptFailure
        """
        existing = Receipt.objects.filter(payment=payment).first()
        if existing:
            return existing

        try:
            year = timezone.localdate(payment.payment_date).year
            receipt_number, is_degraded = ReceiptIssuer.next_receipt_number(payment.school, year)

            receipt = Receipt.objects.create(
                payment=payment,
                school=payment.school,
                student=payment.student,
                receipt_number=receipt_number,
                issued_by=payment.collected_by,
                issued_at=timezone.now(),
                receipt_data=build_receipt_snapshot(payment),
                is_degraded=is_degraded,
            )
        except Exception as e:
            raise exceptions.ReceiptFailure(details=str(e)) from e

        logger.info(f"Issued receipt {receipt.receipt_number} for payment {payment.pk}")
        return receipt

    @staticmethod
    def next_receipt_number(school, year):
        """
        Returns:
            tuple: (receipt_number, is_degraded)
        """
        try:
            settings = FinancialSettings.get_for_school(school)
            number = ReceiptSequence.next_number(school, year)
            padded = str(number).zfill(settings.receipt_number_padding)
            return f"{school.code}/{settings.receipt_prefix}/{year}/{padded}", False
        except DatabaseError as e:
            fallback = f"{school.code}/{FALLBACK_PREFIX}/{year}/{int(time.time() * 1000)}"
            logger.warning(f"Receipt counter unavailable for {school.code} {year}, using {fallback}: {e}")
            return fallback, True


def build_receipt_snapshot(payment):
    """
    Frozen copy of everything printed on the receipt.

    Amounts are stored as strings so the snapshot round-trips through JSON
    unchanged.
    """
    student = payment.student
    collector = payment.collected_by

    allocations = []
    for allocation in payment.allocations.select_related('student_fee').order_by('created_at'):
        student_fee = allocation.student_fee
        allocations.append({
            'student_fee_id': str(student_fee.pk),
            'allocated_amount': str(allocation.allocated_amount),
            'description': student_fee.description,
            'due_month': student_fee.due_month or None,
            'due_date': student_fee.due_date.isoformat() if student_fee.due_date else None,
        })

    return {
        'school': {
            'code': payment.school.code,
            'name': payment.school.name,
        },
        'student': {
            'id': str(student.pk),
            'admission_no': student.admission_number,
            'name': student.get_full_name(),
            'class': student.class_name,
            'section': student.section,
        },
        'payment': {
            'id': str(payment.pk),
            'amount': str(payment.amount),
            'mode': payment.payment_mode,
            'reference_no': payment.reference_number or None,
            'date': payment.payment_date.isoformat(),
        },
        'allocations': allocations,
        'collector': {
            'id': str(collector.pk),
            'staff_id': payment.collected_by_staff_id or collector.staff_id,
            'name': collector.get_full_name(),
        },
    }


# =============================================================================
# PDF
# =============================================================================

def render_receipt_pdf(receipt):
    """
    Render a receipt as PDF from its frozen snapshot.

    Returns:
        bytes
    """
    data = receipt.receipt_data or {}
    school = data.get('school', {})
    student = data.get('student', {})
    payment = data.get('payment', {})
    collector = data.get('collector', {})
    currency = FinancialSettings.get_for_school(receipt.school)

    buffer = BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A5, title=f"Receipt {receipt.receipt_number}")
    elements = []

    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        'ReceiptTitle',
        parent=styles['Heading1'],
        fontSize=16,
        textColor=colors.HexColor('#1a1a1a'),
        spaceAfter=6,
        alignment=TA_CENTER
    )
    centered = ParagraphStyle('ReceiptCentered', parent=styles['Normal'], alignment=TA_CENTER)

    elements.append(Paragraph(school.get('name') or receipt.school.name, title_style))
    elements.append(Paragraph('Fee Receipt', centered))
    if receipt.is_cancelled:
        elements.append(Paragraph('CANCELLED', centered))
    elements.append(Spacer(1, 12))

    details = [
        ['Receipt No', receipt.receipt_number],
        ['Date', (payment.get('date') or '')[:10]],
        ['Student', f"{student.get('name', '')} ({student.get('admission_no', '')})"],
        ['Payment Mode', (payment.get('mode') or '').upper()],
    ]
    if payment.get('reference_no'):
        details.append(['Reference', payment['reference_no']])

    details_table = Table(details, colWidths=[90, 250])
    details_table.setStyle(TableStyle([
        ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 9),
        ('BOTTOMPADDING', (0, 0), (-1, -1), 4),
    ]))
    elements.append(details_table)
    elements.append(Spacer(1, 12))

    rows = [['Fee', 'Due', 'Amount']]
    for allocation in data.get('allocations', []):
        rows.append([
            allocation.get('description') or 'Fee',
            allocation.get('due_month') or allocation.get('due_date') or '',
            currency.format_currency(allocation.get('allocated_amount'), include_symbol=False),
        ])
    rows.append(['Total', '', currency.format_currency(payment.get('amount'))])

    table = Table(rows, colWidths=[170, 70, 100])
    table.setStyle(TableStyle([
        ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#4472C4')),
        ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('FONTNAME', (0, -1), (-1, -1), 'Helvetica-Bold'),
        ('ALIGN', (2, 0), (2, -1), 'RIGHT'),
        ('FONTSIZE', (0, 0), (-1, -1), 9),
        ('GRID', (0, 0), (-1, -1), 0.5, colors.black),
    ]))
    elements.append(table)
    elements.append(Spacer(1, 18))

    elements.append(Paragraph(f"Collected by: {collector.get('name', '')} ({collector.get('staff_id', '')})",
                              styles['Normal']))

    doc.build(elements)
    return buffer.getvalue()
