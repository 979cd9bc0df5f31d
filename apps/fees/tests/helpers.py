from decimal import Decimal
from datetime import date

from core.models import School, FinancialSettings
from students.models import Student
from hr.models import Staff
from fees.models import StudentFee


class FeeCollectionFixtures:
    """Mixin: one school with a student, a collector and two monthly fees."""

    def create_fixtures(self):
        self.school = School.objects.create(code='sps01', name='Springfield Public School')
        FinancialSettings.get_for_school(self.school)
        self.student = Student.objects.create(
            school=self.school,
            admission_number='ADM-001',
            first_name='Asha',
            last_name='Verma',
            class_name='5',
            section='A',
        )
        self.collector = Staff.objects.create(
            school=self.school,
            first_name='Ravi',
            last_name='Kumar',
            staff_id='EMP-7',
            designation='Accountant',
        )
        self.april = self.create_fee('2026-04', Decimal('300.00'))
        self.may = self.create_fee('2026-05', Decimal('300.00'))

    def create_fee(self, due_month, base_amount, adjustment=Decimal('0.00'), paid=Decimal('0.00'),
                   student=None):
        year, month = (int(part) for part in due_month.split('-'))
        return StudentFee.objects.create(
            school=self.school,
            student=student or self.student,
            description=f'Tuition {due_month}',
            due_month=due_month,
            due_date=date(year, month, 10),
            base_amount=base_amount,
            adjustment_amount=adjustment,
            paid_amount=paid,
            status='PARTIAL' if paid else 'PENDING',
        )

    def payload(self, amount, allocations, **extra):
        data = {
            'school_code': self.school.code,
            'student_id': str(self.student.pk),
            'amount': amount,
            'payment_mode': 'cash',
            'allocations': [
                {'student_fee_id': str(fee.pk), 'allocated_amount': allocated}
                for fee, allocated in allocations
            ],
        }
        data.update(extra)
        return data
