# hr/models.py

"""
Staff directory.

Maps the external staff identifier carried by a request to the internal
staff record that collects a payment.
"""

from django.db import models
import logging

from utils.models import BaseModel
from core.models import School

logger = logging.getLogger(__name__)


class Staff(BaseModel):
    """Staff member of a school"""

    school = models.ForeignKey(
        School,
        verbose_name="School",
        on_delete=models.PROTECT,
        related_name='staff'
    )
    first_name = models.CharField("First Name", max_length=50, db_index=True)
    middle_name = models.CharField("Middle Name", max_length=50, blank=True)
    last_name = models.CharField("Last Name", max_length=50, db_index=True)

    # -------------------------------------------------------------------------
    # STAFF ID
    # -------------------------------------------------------------------------

    staff_id = models.CharField(
        "Staff ID",
        max_length=30,
        db_index=True,
        help_text="School-issued identifier, sent by clients as X-Staff-Id"
    )
    designation = models.CharField("Designation", max_length=100, blank=True)
    is_active = models.BooleanField("Is Active", default=True, db_index=True)

    class Meta:
        ordering = ['last_name', 'first_name']
        verbose_name = "Staff"
        verbose_name_plural = "Staff"
        constraints = [
            models.UniqueConstraint(fields=['school', 'staff_id'], name='unique_staff_id_per_school'),
        ]

    def __str__(self):
        return f"{self.get_full_name()} ({self.staff_id})"

    def get_full_name(self):
        if self.middle_name:
            return f"{self.first_name} {self.middle_name} {self.last_name}"
        return f"{self.first_name} {self.last_name}"

    @classmethod
    def resolve(cls, school, staff_id):
        """
        Resolve an external staff identifier to an active staff record.

        Returns:
            Staff or None
        """
        staff_id = (staff_id or '').strip()
        if not staff_id:
            return None
        return cls.objects.filter(school=school, staff_id=staff_id, is_active=True).first()
