"""
Appointment (site visit) services.

Every action locks the reservation (aggregate root) and then the
appointment, checks the acting party against Appointment.TRANSITIONS and
only then applies the compliance gate.
"""

import logging

from django.db import transaction
from rest_framework.exceptions import NotFound, PermissionDenied

from . import audit
from .compliance import require_guest_visit_clause
from .exceptions import InvalidTransition
from .models import Appointment
from .reservations import lock_reservation


logger = logging.getLogger(__name__)


def request_visit(reservation_id, guest, scheduled_date, scheduled_time, client_ip=None):
    """
    Ask the host for a visit.

    The first request moves the reservation deposit_held -> visit_required.
    After a rejected or missed visit the guest may request another one.

    Raises:
        PermissionDenied: If the user is not the reservation's guest
        InvalidTransition: If the reservation is in another state or a
            visit is already open
    """
    with transaction.atomic():
        reservation = lock_reservation(reservation_id)
        if reservation.guest_id != guest.pk:
            raise PermissionDenied('Only the guest can request a visit.')

        if reservation.status == 'deposit_held':
            reservation.transition_to('visit_required')
            audit.attribute(reservation, guest, client_ip)
            reservation.save()
        elif reservation.status == 'visit_required':
            if reservation.appointments.filter(status__in=Appointment.OPEN_STATUSES).exists():
                raise InvalidTransition(
                    'A visit is already open for this reservation.',
                    current_status=reservation.status,
                )
        else:
            raise InvalidTransition(
                f'Visits cannot be requested while the reservation is {reservation.status}.',
                current_status=reservation.status,
            )

        appointment = Appointment(
            reservation=reservation,
            scheduled_date=scheduled_date,
            scheduled_time=scheduled_time,
        )
        audit.attribute(appointment, guest, client_ip)
        appointment.save()

    logger.info(
        f"Visit {appointment.pk} requested for reservation {reservation.pk} "
        f"on {scheduled_date} {scheduled_time}"
    )
    return appointment


def _transition(appointment_id, actor, new_status, gated=False, apply=None, client_ip=None):
    """
    Apply one role-gated appointment transition.

    Args:
        appointment_id: Appointment primary key
        actor: Authenticated user
        new_status: Target status
        gated: Require the guest's anti-bypass acceptance for this visit
        apply: Optional callable mutating the appointment before save
        client_ip: Caller IP for the audit trail
    """
    with transaction.atomic():
        reservation_id = (
            Appointment.objects
            .filter(pk=appointment_id)
            .values_list('reservation_id', flat=True)
            .first()
        )
        if reservation_id is None:
            raise NotFound(f'Appointment {appointment_id} not found.')

        reservation = lock_reservation(reservation_id)
        appointment = Appointment.objects.select_for_update().get(pk=appointment_id)
        appointment.reservation = reservation

        role = appointment.party_role(actor)
        if role is None:
            raise PermissionDenied('You are not a party of this appointment.')

        previous_status = appointment.status
        appointment.transition_to(new_status, role)

        if reservation.status != 'visit_required':
            raise InvalidTransition(
                f'The reservation is {reservation.status} and no longer awaits a visit.',
                current_status=reservation.status,
            )

        if gated:
            require_guest_visit_clause(appointment)

        if apply is not None:
            apply(appointment)

        audit.attribute(appointment, actor, client_ip)
        appointment.save()

        if new_status == 'realizada':
            reservation.transition_to('confirmable')
            audit.attribute(reservation, actor, client_ip)
            reservation.save()

    logger.info(
        f"Appointment {appointment.pk}: {previous_status} -> {new_status} by {role} {actor.pk}"
    )
    return appointment


def accept(appointment_id, host, client_ip=None):
    return _transition(appointment_id, host, 'aceptada', gated=True, client_ip=client_ip)


def reject(appointment_id, host, reason='', client_ip=None):
    def add_reason(appointment):
        if reason:
            appointment.notes = reason

    return _transition(appointment_id, host, 'rechazada', apply=add_reason, client_ip=client_ip)


def propose_reschedule(appointment_id, host, new_date, new_time, reason='', client_ip=None):
    """Host proposes another slot. The original schedule stays until the guest accepts."""
    def set_proposal(appointment):
        appointment.reschedule_date = new_date
        appointment.reschedule_time = new_time
        appointment.reschedule_reason = reason

    return _transition(appointment_id, host, 'reprogramada', apply=set_proposal, client_ip=client_ip)


def accept_reschedule(appointment_id, guest, client_ip=None):
    """Guest accepts the host's proposal, which becomes the schedule."""
    def apply_proposal(appointment):
        appointment.scheduled_date = appointment.reschedule_date
        appointment.scheduled_time = appointment.reschedule_time

    return _transition(
        appointment_id, guest, 'aceptada', gated=True, apply=apply_proposal, client_ip=client_ip
    )


def mark_completed(appointment_id, host, client_ip=None):
    return _transition(appointment_id, host, 'realizada', client_ip=client_ip)


def mark_no_show(appointment_id, host, client_ip=None):
    return _transition(appointment_id, host, 'no_asistida', client_ip=client_ip)
