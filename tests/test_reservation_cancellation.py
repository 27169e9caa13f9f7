"""
Test suite for reservation cancellation.

Tests cover:
- Full refund from deposit_held, visit_required and confirmable
- Voiding an uncaptured deposit from pending_payment
- Cancellation blocked once a contract exists
- Authorization (guest of the reservation only)
- Released capacity
"""

from decimal import Decimal
from unittest.mock import patch

import pytest
from django.urls import reverse
from rest_framework import status
from rest_framework.exceptions import PermissionDenied

from rentals import appointments, compliance, reservations
from rentals.exceptions import InvalidTransition, PaymentCapabilityError
from rentals.models import Contract, Reservation
from rentals.payments import GatewayError, GatewayTimeout


@pytest.mark.django_db
class TestCancelReservation:

    def test_cancel_with_deposit_held_refunds(self, held_reservation, guest_user):
        reservation = reservations.cancel_reservation(held_reservation.pk, guest_user)

        assert reservation.status == 'refunded'
        deposit = reservation.payments.get()
        assert deposit.escrow_status == 'refunded'
        assert deposit.commission_amount is None
        assert not Contract.objects.filter(reservation=reservation).exists()

    def test_cancel_during_visit_refunds(self, visit, guest_user):
        reservation = reservations.cancel_reservation(visit.reservation_id, guest_user)

        assert reservation.status == 'refunded'

    def test_cancel_when_confirmable_refunds(self, visit, guest_user, host_user):
        compliance.accept_guest_visit_clause(visit.pk, guest_user)
        appointments.accept(visit.pk, host_user)
        appointments.mark_completed(visit.pk, host_user)

        reservation = reservations.cancel_reservation(visit.reservation_id, guest_user)

        assert reservation.status == 'refunded'

    def test_cancel_pending_payment_voids_deposit(self, guest_user, space, make_reservation):
        with patch('rentals.escrow.get_payment_gateway') as mock_gateway:
            mock_gateway.return_value.authorize.side_effect = GatewayTimeout('no answer')
            with pytest.raises(PaymentCapabilityError):
                make_reservation(guest_user, space, idempotency_key='abandoned')

        pending = Reservation.objects.get(idempotency_key='abandoned')
        reservation = reservations.cancel_reservation(pending.pk, guest_user)

        assert reservation.status == 'cancelled'
        assert reservation.payments.get().escrow_status == 'voided'

    def test_retry_after_cancellation_is_rejected(self, guest_user, space, make_reservation):
        with patch('rentals.escrow.get_payment_gateway') as mock_gateway:
            mock_gateway.return_value.authorize.side_effect = GatewayTimeout('no answer')
            with pytest.raises(PaymentCapabilityError):
                make_reservation(guest_user, space, idempotency_key='abandoned')

        pending = Reservation.objects.get(idempotency_key='abandoned')
        reservations.cancel_reservation(pending.pk, guest_user)

        with pytest.raises(InvalidTransition):
            make_reservation(guest_user, space, idempotency_key='abandoned')

    def test_cancel_after_contract_initiated(self, draft_contract, guest_user):
        with pytest.raises(InvalidTransition):
            reservations.cancel_reservation(draft_contract.reservation_id, guest_user)

        reservation = Reservation.objects.get(pk=draft_contract.reservation_id)
        assert reservation.status == 'contract_pending'
        assert reservation.payments.get().escrow_status == 'held'

    def test_cancel_twice(self, held_reservation, guest_user):
        reservations.cancel_reservation(held_reservation.pk, guest_user)

        with pytest.raises(InvalidTransition):
            reservations.cancel_reservation(held_reservation.pk, guest_user)

    def test_host_cannot_cancel(self, held_reservation, host_user):
        with pytest.raises(PermissionDenied):
            reservations.cancel_reservation(held_reservation.pk, host_user)

    def test_refund_failure_changes_nothing(self, held_reservation, guest_user):
        with patch('rentals.escrow.get_payment_gateway') as mock_gateway:
            mock_gateway.return_value.refund.side_effect = GatewayError('processor down')
            with pytest.raises(PaymentCapabilityError):
                reservations.cancel_reservation(held_reservation.pk, guest_user)

        held_reservation.refresh_from_db()
        assert held_reservation.status == 'deposit_held'
        assert held_reservation.payments.get().escrow_status == 'held'

    def test_cancellation_frees_capacity(self, guest_user, another_guest, space, make_reservation):
        first = make_reservation(guest_user, space, area='90.00')
        reservations.cancel_reservation(first.pk, guest_user)

        second = make_reservation(another_guest, space, area='90.00')

        assert second.status == 'deposit_held'
        assert space.reserved_sqm() == Decimal('90.00')


@pytest.mark.django_db
class TestCancelEndpoint:

    def test_guest_cancels(self, api_client, guest_user, held_reservation):
        api_client.force_authenticate(user=guest_user)

        response = api_client.post(reverse('reservation_cancel', kwargs={'pk': held_reservation.pk}))

        assert response.status_code == status.HTTP_200_OK
        assert response.data['status'] == 'refunded'
        assert response.data['payments'][0]['escrow_status'] == 'refunded'

    def test_other_guest_gets_403(self, api_client, another_guest, held_reservation):
        api_client.force_authenticate(user=another_guest)

        response = api_client.post(reverse('reservation_cancel', kwargs={'pk': held_reservation.pk}))

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_unknown_reservation_gets_404(self, api_client, guest_user):
        api_client.force_authenticate(user=guest_user)

        response = api_client.post(reverse('reservation_cancel', kwargs={'pk': 9999}))

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_cancel_with_contract_gets_409(self, api_client, guest_user, draft_contract):
        api_client.force_authenticate(user=guest_user)

        response = api_client.post(reverse('reservation_cancel', kwargs={'pk': draft_contract.reservation_id}))

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data['code'] == 'invalid_transition'
        assert response.data['current_status'] == 'contract_pending'
