"""
Django signals that write the audit trail.

post_init remembers the status each lifecycle instance was loaded with;
post_save compares it with the saved status and appends an AuditLog row
when it changed (or when the instance was created).
"""

import logging

from django.db import transaction
from django.db.models.signals import post_init, post_save
from django.dispatch import receiver

from . import audit
from .models import Appointment, Contract, Payment, PlatformSetting, Reservation

logger = logging.getLogger(__name__)

LIFECYCLE_MODELS = (Reservation, Payment, Contract, Appointment)


def remember_initial_status(sender, instance, **kwargs):
    field = sender.AUDIT_STATUS_FIELD
    # Deferred loads (e.g. .only()) do not carry the status
    if field in instance.get_deferred_fields():
        instance._initial_status = None
        return
    instance._initial_status = getattr(instance, field) if instance.pk else None


def audit_status_change(sender, instance, created, raw=False, **kwargs):
    """
    Append an AuditLog row for a creation or a status change.

    Runs inside the transaction of the save; a failure here re-raises so
    the lifecycle change rolls back together with its audit row.
    """
    if raw:
        return

    field = sender.AUDIT_STATUS_FIELD
    new_status = getattr(instance, field)
    old_status = getattr(instance, '_initial_status', None)

    if not created and old_status == new_status:
        return

    try:
        with transaction.atomic():
            audit.record(
                instance,
                action='created' if created else f'{field}_changed',
                old_data=None if created else {field: old_status},
                new_data={field: new_status},
            )
    except Exception as e:
        logger.error(
            f"Error writing audit entry for {sender.__name__} {instance.pk}: {e}",
            exc_info=True
        )
        raise

    instance._initial_status = new_status


for model in LIFECYCLE_MODELS:
    post_init.connect(remember_initial_status, sender=model, dispatch_uid=f'audit-init-{model.__name__}')
    post_save.connect(audit_status_change, sender=model, dispatch_uid=f'audit-save-{model.__name__}')


@receiver(post_init, sender=PlatformSetting)
def remember_initial_value(sender, instance, **kwargs):
    instance._initial_value = instance.value if instance.pk else None


@receiver(post_save, sender=PlatformSetting)
def audit_setting_change(sender, instance, created, raw=False, **kwargs):
    if raw or (not created and instance._initial_value == instance.value):
        return

    audit.record(
        instance,
        action='setting_changed',
        old_data=None if created else {instance.key: str(instance._initial_value)},
        new_data={instance.key: str(instance.value)},
    )
    instance._initial_value = instance.value
