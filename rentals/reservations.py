"""
Reservation lifecycle services.

A reservation is created in pending_payment together with its deposit
Payment, under a lock on the Space row so concurrent requests cannot
oversell the area. The deposit is then captured in a second transaction
holding the Reservation lock. A gateway failure leaves the reservation in
pending_payment; the guest retries by sending the same idempotency key.
"""

import logging

from django.db import IntegrityError, transaction
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from . import audit, escrow, pricing
from .exceptions import CapacityExceeded, InvalidTransition, PaymentCapabilityError
from .models import PlatformSetting, Reservation, Space


logger = logging.getLogger(__name__)


def lock_reservation(reservation_id):
    """Fetch a reservation with a row lock. Call inside transaction.atomic()."""
    try:
        return (
            Reservation.objects
            .select_for_update()
            .get(pk=reservation_id)
        )
    except Reservation.DoesNotExist:
        raise NotFound(f'Reservation {reservation_id} not found.')


def lock_space(space_id):
    try:
        return Space.objects.select_for_update().get(pk=space_id)
    except Space.DoesNotExist:
        raise NotFound(f'Space {space_id} not found.')


def party_role(reservation, user):
    if user.pk == reservation.guest_id:
        return 'guest'
    if user.pk == reservation.host_id:
        return 'host'
    return None


def quote_for_space(space, area, period_type, period_count, deposit_percentage=None):
    """
    Quote a published space with the live price table.

    deposit_percentage defaults to the platform ratio currently in effect.
    """
    if space.status != 'published':
        raise ValidationError({'space': 'This space is not available for reservation.'})
    if deposit_percentage is None:
        deposit_percentage = PlatformSetting.current_value('deposit_percentage')
    return pricing.quote(space.price_table(), area, period_type, period_count, deposit_percentage)


def check_capacity(space, area, exclude_reservation_id=None):
    """
    Ensure area fits in what the space has left.

    Must be called with the Space row locked.

    Raises:
        CapacityExceeded: If held area + area > available area
    """
    reserved = space.reserved_sqm(exclude_reservation_id=exclude_reservation_id)
    remaining = space.available_sqm - reserved
    if area > remaining:
        raise CapacityExceeded(
            f'Only {remaining} m2 of this space is currently available.',
            requested_sqm=area,
            remaining_sqm=remaining,
        )


def create_reservation(*, guest, space_id, area, period_type, period_count, quoted,
                       method, idempotency_key, client_ip=None):
    """
    Reserve area of a space and capture the deposit into escrow.

    Re-submitting with an idempotency key already used by this guest
    returns that reservation; if its deposit was never captured the
    capture is retried.

    Args:
        guest: Authenticated guest
        space_id: Space to reserve
        area: Square metres requested
        period_type: Period unit
        period_count: Number of periods
        quoted: Mapping with the total_amount and deposit_amount the guest saw
        method: 'card' or 'qr'
        idempotency_key: Client generated key for this submission
        client_ip: Caller IP for the audit trail

    Returns:
        Reservation

    Raises:
        CapacityExceeded, UnavailablePeriod, PriceMismatch, PaymentCapabilityError
    """
    existing = Reservation.objects.filter(guest=guest, idempotency_key=idempotency_key).first()
    if existing is not None:
        logger.info(f"Idempotent resubmission of reservation {existing.pk} by guest {guest.pk}")
        return capture_deposit(existing.pk, actor=guest, client_ip=client_ip)

    try:
        with transaction.atomic():
            space = lock_space(space_id)

            if space.host_id == guest.pk:
                raise ValidationError({'space': 'Hosts cannot reserve their own space.'})

            current = quote_for_space(space, area, period_type, period_count)
            pricing.verify_quote(quoted, current)
            if current.deposit <= 0:
                raise ValidationError({'deposit_amount': 'A positive deposit is required to reserve.'})
            check_capacity(space, current.area)

            reservation = Reservation(
                space=space,
                guest=guest,
                host=space.host,
                requested_sqm=current.area,
                period_type=period_type,
                period_count=period_count,
                price_per_sqm_applied=current.rate,
                total_amount=current.total,
                deposit_percentage=current.deposit_percentage,
                deposit_amount=current.deposit,
                remaining_amount=current.remaining,
                frozen_pricing={
                    unit: str(rate) if rate is not None else None
                    for unit, rate in space.price_table().items()
                },
                idempotency_key=idempotency_key,
            )
            audit.attribute(reservation, guest, client_ip)
            reservation.save()

            escrow.open_payment(
                reservation=reservation,
                payer=guest,
                amount=current.deposit,
                method=method,
                idempotency_key=f'reservation-{reservation.pk}-deposit',
                payment_type='deposit',
                client_ip=client_ip,
            )
    except IntegrityError:
        # A concurrent submission with the same key won the insert
        existing = Reservation.objects.filter(guest=guest, idempotency_key=idempotency_key).first()
        if existing is None:
            raise
        return capture_deposit(existing.pk, actor=guest, client_ip=client_ip)

    logger.info(
        f"Reservation {reservation.pk} created by guest {guest.pk} for {current.area} m2 "
        f"of space {space.pk}: total {current.total}, deposit {current.deposit}. IP: {client_ip}"
    )
    return capture_deposit(reservation.pk, actor=guest, client_ip=client_ip)


def capture_deposit(reservation_id, actor=None, client_ip=None):
    """
    Capture the deposit of a pending_payment reservation.

    Reservations already past pending_payment are returned unchanged.

    Raises:
        PaymentCapabilityError: If the gateway fails; the reservation stays
            in pending_payment and the failure is recorded on the Payment
        InvalidTransition: If the reservation was cancelled
    """
    payment_id = None
    try:
        with transaction.atomic():
            reservation = lock_reservation(reservation_id)
            if reservation.status == 'cancelled':
                raise InvalidTransition(
                    f'Reservation {reservation.pk} was cancelled.',
                    current_status=reservation.status,
                )
            if reservation.status != 'pending_payment':
                return reservation

            payment = reservation.payments.select_for_update().get(payment_type='deposit')
            payment_id = payment.pk
            audit.attribute(payment, actor, client_ip)
            escrow.hold(payment)

            reservation.transition_to('deposit_held')
            audit.attribute(reservation, actor, client_ip)
            reservation.save()
    except PaymentCapabilityError as e:
        if payment_id is not None:
            escrow.record_failure(payment_id, e.detail)
        logger.warning(f"Deposit capture failed for reservation {reservation_id}: {e.detail}")
        raise

    logger.info(f"Deposit held for reservation {reservation.pk}")
    return reservation


def cancel_reservation(reservation_id, guest, client_ip=None):
    """
    Cancel a reservation before any contract exists.

    - pending_payment: the uncaptured deposit is voided, status cancelled
    - deposit_held / visit_required / confirmable: the deposit is refunded
      in full, status refunded

    Raises:
        PermissionDenied: If the user is not the reservation's guest
        InvalidTransition: From contract_pending onward or from a terminal state
        PaymentCapabilityError: If the refund fails (nothing changes)
    """
    with transaction.atomic():
        reservation = lock_reservation(reservation_id)
        if reservation.guest_id != guest.pk:
            raise PermissionDenied('Only the guest can cancel this reservation.')

        deposit = reservation.payments.select_for_update().get(payment_type='deposit')
        audit.attribute(deposit, guest, client_ip)

        if reservation.status == 'pending_payment':
            escrow.void(deposit)
            reservation.transition_to('cancelled')
        elif reservation.status in Reservation.CANCELLABLE_STATUSES:
            escrow.refund(deposit.pk, actor=guest, client_ip=client_ip)
            reservation.transition_to('refunded')
        else:
            raise InvalidTransition(
                f'Reservation {reservation.pk} cannot be cancelled while {reservation.status}.',
                current_status=reservation.status,
            )

        audit.attribute(reservation, guest, client_ip)
        reservation.save()

    logger.info(f"Reservation {reservation.pk} {reservation.status} by guest {guest.pk}. IP: {client_ip}")
    return reservation
