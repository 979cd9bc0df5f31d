# utils/models.py

"""
Base models for the bursary project.

Key Features:
- UUID primary keys on every school record
- Timestamps and user/IP tracking populated from the request context
- Append-only audit trail for financial actions
"""

from django.db import models
from django.utils import timezone
import uuid
import logging

logger = logging.getLogger(__name__)


# =============================================================================
# BASE MODEL - SCHOOL-SPECIFIC DATA
# =============================================================================

class BaseModel(models.Model):
    """
    Base model with audit trail fields.

    Features:
    - Automatic user tracking (who created/updated)
    - Real IP address tracking (where operations came from)
    - Timestamps with defaults, so rows written by bulk_create() or
      queryset.update() still carry them
    """

    # Core identification
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    created_at = models.DateTimeField(
        "Created At",
        default=timezone.now,
        db_index=True,
        help_text="When this record was created"
    )
    updated_at = models.DateTimeField(
        "Updated At",
        default=timezone.now,
        db_index=True,
        help_text="When this record was last updated"
    )

    # User tracking - CharField so records never depend on the auth tables
    created_by_id = models.CharField(
        "Created By ID",
        max_length=50,
        null=True,
        blank=True,
        db_index=True,
        help_text="ID of user who created this record"
    )
    updated_by_id = models.CharField(
        "Updated By ID",
        max_length=50,
        null=True,
        blank=True,
        help_text="ID of user who last updated this record"
    )

    created_from_ip = models.GenericIPAddressField(
        "Created From IP",
        null=True,
        blank=True,
        help_text="IP address from which this record was created"
    )
    updated_from_ip = models.GenericIPAddressField(
        "Updated From IP",
        null=True,
        blank=True,
        help_text="IP address from which this record was last updated"
    )

    class Meta:
        abstract = True

    def stamp_audit_fields(self, is_new=None):
        """
        Populate timestamps and audit fields from the request context.

        Called by save(); call it directly on instances passed to
        bulk_create(), which skips save().
        """
        from utils.context import get_request_context

        if is_new is None:
            is_new = self._state.adding

        now = timezone.now()
        if is_new:
            if not self.created_at:
                self.created_at = now
            if not self.updated_at:
                self.updated_at = now
        else:
            self.updated_at = now

        context = get_request_context()
        if not context:
            if is_new:
                logger.debug(
                    f"No request context available when creating {self.__class__.__name__}. "
                    f"Audit fields will not be populated."
                )
            return

        user = context.get('user')
        ip_address = context.get('ip_address')

        if is_new:
            if user and not self.created_by_id:
                self.created_by_id = str(user.pk)
            if ip_address and not self.created_from_ip:
                self.created_from_ip = ip_address

        if user:
            self.updated_by_id = str(user.pk)
        if ip_address:
            self.updated_from_ip = ip_address

    def save(self, *args, **kwargs):
        self.stamp_audit_fields()
        return super().save(*args, **kwargs)


# =============================================================================
# AUDIT LOG MODEL
# =============================================================================

class AuditLog(models.Model):
    """
    Append-only record of who did what to which entity, with what payload.

    Entries are written once and never changed: save() refuses updates and
    delete() refuses deletion.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    school = models.ForeignKey(
        'core.School',
        verbose_name="School",
        on_delete=models.PROTECT,
        related_name='audit_logs',
        null=True,
        blank=True,
    )

    # What happened
    action = models.CharField("Action", max_length=50, db_index=True)
    entity_type = models.CharField("Entity Type", max_length=50, db_index=True)
    entity_id = models.CharField("Entity ID", max_length=100, db_index=True)

    # Who did it - CharField so the trail survives staff record changes
    performed_by_id = models.CharField(
        "Performed By ID",
        max_length=50,
        null=True,
        blank=True,
        db_index=True,
        help_text="Internal ID of the staff member who performed this action"
    )
    performed_by_staff_id = models.CharField(
        "Performed By Staff ID",
        max_length=50,
        blank=True,
        help_text="External staff identifier used at the time"
    )

    # Payload
    changes = models.JSONField("Changes", default=dict, blank=True)
    metadata = models.JSONField("Metadata", default=dict, blank=True)

    # Where it came from
    ip_address = models.GenericIPAddressField("IP Address", null=True, blank=True)
    user_agent = models.TextField("User Agent", blank=True)

    timestamp = models.DateTimeField("Timestamp", default=timezone.now, db_index=True)

    class Meta:
        ordering = ['-timestamp']
        indexes = [
            models.Index(fields=['entity_type', 'entity_id']),
            models.Index(fields=['performed_by_id', 'timestamp']),
            models.Index(fields=['action', 'timestamp']),
        ]
        verbose_name = "Audit Log"
        verbose_name_plural = "Audit Logs"

    def __str__(self):
        return f"{self.action} {self.entity_type} {self.entity_id} at {self.timestamp}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Audit log entries are immutable")
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Audit log entries cannot be deleted")

    # -------------------------------------------------------------------------
    # CLASS METHODS - QUERYING AUDIT LOGS
    # -------------------------------------------------------------------------

    @classmethod
    def get_entity_history(cls, entity_type, entity_id):
        """Get complete history for one entity, oldest first"""
        return cls.objects.filter(
            entity_type=entity_type,
            entity_id=str(entity_id)
        ).order_by('timestamp')
