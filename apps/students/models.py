# students/models.py

"""
Student directory.

Only the identity fields the fee subsystem needs: which school a student
belongs to, their admission number and name.
"""

from django.db import models
from django.core.exceptions import ValidationError
import logging

from utils.models import BaseModel
from core.models import School

logger = logging.getLogger(__name__)


class Student(BaseModel):
    """Core model for student identity"""

    ENROLLMENT_STATUS_CHOICES = (
        ('ACTIVE', 'Active'),
        ('SUSPENDED', 'Suspended'),
        ('GRADUATED', 'Graduated'),
        ('TRANSFERRED', 'Transferred'),
        ('WITHDRAWN', 'Withdrawn'),
    )

    school = models.ForeignKey(
        School,
        verbose_name="School",
        on_delete=models.PROTECT,
        related_name='students'
    )
    admission_number = models.CharField("Admission Number", max_length=20, db_index=True)
    first_name = models.CharField("First Name", max_length=50)
    middle_name = models.CharField("Middle Name", max_length=50, blank=True)
    last_name = models.CharField("Last Name", max_length=50)
    class_name = models.CharField("Class", max_length=50, blank=True)
    section = models.CharField("Section", max_length=10, blank=True)
    enrollment_status = models.CharField(
        "Enrollment Status",
        max_length=15,
        choices=ENROLLMENT_STATUS_CHOICES,
        default='ACTIVE',
        db_index=True
    )

    class Meta:
        ordering = ['admission_number']
        verbose_name = "Student"
        verbose_name_plural = "Students"
        constraints = [
            models.UniqueConstraint(
                fields=['school', 'admission_number'],
                name='unique_admission_number_per_school'
            ),
        ]

    def __str__(self):
        return f"{self.get_full_name()} ({self.admission_number})"

    def get_full_name(self):
        """Get student's full name"""
        if self.middle_name:
            return f"{self.first_name} {self.middle_name} {self.last_name}"
        return f"{self.first_name} {self.last_name}"

    @classmethod
    def get_for_school(cls, school, student_id):
        """
        Look up a student by primary key within a school.

        Returns:
            Student or None (also None for malformed ids)
        """
        try:
            return cls.objects.filter(school=school, pk=student_id).first()
        except (ValueError, TypeError, ValidationError):
            return None
