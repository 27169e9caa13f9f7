"""
Audit trail helpers.

Services tag the instance they are about to save with the acting user and
client IP; the post_save receivers in signals.py turn status changes into
AuditLog rows inside the same transaction.
"""

from .models import AuditLog


def attribute(instance, actor=None, ip_address=None):
    """Attach the acting user and IP to an instance before it is saved."""
    instance._audit_actor = actor
    instance._audit_ip = ip_address
    return instance


def record(instance, action, old_data=None, new_data=None):
    actor = getattr(instance, '_audit_actor', None)
    return AuditLog.objects.create(
        actor=actor if actor is not None and actor.pk else None,
        action=action,
        entity_type=instance._meta.model_name,
        entity_id=str(instance.pk),
        old_data=old_data,
        new_data=new_data,
        ip_address=getattr(instance, '_audit_ip', None),
    )
