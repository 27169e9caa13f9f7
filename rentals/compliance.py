"""
Anti-bypass compliance gate.

Hosts accept the anti-bypass clause once per account; guests accept it for
every appointment. Gated operations call the require_* helpers, which raise
ComplianceGateClosed naming the missing clause.
"""

import logging

from django.conf import settings
from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import NotFound, PermissionDenied

from .exceptions import ComplianceGateClosed, InvalidTransition
from .models import Appointment


logger = logging.getLogger(__name__)

HOST_CLAUSE = 'anti_bypass_host'
GUEST_CLAUSE = 'anti_bypass_guest'


def require_host_clause(user):
    if not user.anti_bypass_accepted:
        raise ComplianceGateClosed(
            clause=HOST_CLAUSE,
            detail='The host must accept the anti-bypass clause before signing.',
        )


def require_guest_visit_clause(appointment):
    if not appointment.guest_accepted_anti_bypass:
        raise ComplianceGateClosed(
            clause=GUEST_CLAUSE,
            detail='The guest must accept the anti-bypass clause for this visit first.',
        )


def accept_host_clause(user, client_ip=None):
    """Record account-level acceptance. Accepting again keeps the first timestamp."""
    if user.anti_bypass_accepted:
        return user

    user.anti_bypass_accepted = True
    user.anti_bypass_accepted_at = timezone.now()
    user.anti_bypass_legal_version = settings.LEGAL_TEXT_VERSIONS[HOST_CLAUSE]
    user.save(update_fields=[
        'anti_bypass_accepted',
        'anti_bypass_accepted_at',
        'anti_bypass_legal_version',
        'updated_at',
    ])
    logger.info(f"User {user.pk} accepted the host anti-bypass clause from IP {client_ip}")
    return user


def accept_guest_visit_clause(appointment_id, guest, client_ip=None):
    """
    Record the guest's acceptance for one appointment.

    Raises:
        PermissionDenied: If the user is not the guest of the reservation
        InvalidTransition: If the appointment is closed or the reservation no longer awaits a visit
    """
    with transaction.atomic():
        try:
            appointment = (
                Appointment.objects
                .select_for_update(of=('self',))
                .select_related('reservation')
                .get(pk=appointment_id)
            )
        except Appointment.DoesNotExist:
            raise NotFound(f'Appointment {appointment_id} not found.')
        if appointment.party_role(guest) != 'guest':
            raise PermissionDenied('Only the guest of this reservation can accept the visit clause.')
        if appointment.status not in Appointment.OPEN_STATUSES:
            raise InvalidTransition(
                f'Appointment {appointment.pk} is {appointment.status}.',
                current_status=appointment.status,
            )
        if appointment.reservation.status != 'visit_required':
            raise InvalidTransition(
                f'The reservation is {appointment.reservation.status} and no longer awaits a visit.',
                current_status=appointment.reservation.status,
            )
        if appointment.guest_accepted_anti_bypass:
            return appointment

        appointment.guest_accepted_anti_bypass = True
        appointment.guest_accepted_anti_bypass_at = timezone.now()
        appointment.guest_accepted_anti_bypass_ip = client_ip
        appointment.guest_anti_bypass_legal_version = settings.LEGAL_TEXT_VERSIONS[GUEST_CLAUSE]
        appointment.save()

    logger.info(f"Guest {guest.pk} accepted the anti-bypass clause for appointment {appointment.pk}")
    return appointment
