"""
Contract services: initiation, OTP signature, extension, balance payment,
activation and completion.

All operations lock the reservation row first, then the contract, so they
serialize with every other action on the same rental.
"""

import logging

from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from . import audit, escrow, pricing
from .compliance import require_host_clause
from .exceptions import InvalidOtp, InvalidTransition
from .models import Contract, ContractExtension, PlatformSetting, Reservation
from .otp import get_otp_provider
from .reservations import check_capacity, lock_reservation, lock_space, party_role


logger = logging.getLogger(__name__)


def _lock_contract(contract_id):
    """Lock the reservation and then the contract. Call inside transaction.atomic()."""
    reservation_id = (
        Contract.objects
        .filter(pk=contract_id)
        .values_list('reservation_id', flat=True)
        .first()
    )
    if reservation_id is None:
        raise NotFound(f'Contract {contract_id} not found.')

    reservation = lock_reservation(reservation_id)
    contract = Contract.objects.select_for_update().get(pk=contract_id)
    contract.reservation = reservation
    return reservation, contract


def _require_party(reservation, user):
    role = party_role(reservation, user)
    if role is None:
        raise PermissionDenied('You are not a party of this contract.')
    return role


def initiate_contract(reservation_id, actor, client_ip=None):
    """
    Create the contract of a deposit_held or confirmable reservation.

    The price is re-derived from the space's live price table with the
    deposit percentage of the reservation; any drift raises PriceMismatch.
    The space capacity is re-checked under the Space lock.

    Returns:
        Contract in draft

    Raises:
        PermissionDenied, InvalidTransition, PriceMismatch, CapacityExceeded,
        UnavailablePeriod
    """
    space_id = Reservation.objects.filter(pk=reservation_id).values_list('space_id', flat=True).first()
    if space_id is None:
        raise NotFound(f'Reservation {reservation_id} not found.')

    with transaction.atomic():
        space = lock_space(space_id)
        reservation = lock_reservation(reservation_id)
        _require_party(reservation, actor)

        if Contract.objects.filter(reservation=reservation).exists():
            raise InvalidTransition(
                'A contract already exists for this reservation.',
                current_status=reservation.status,
            )
        if reservation.status not in ('deposit_held', 'confirmable'):
            raise InvalidTransition(
                f'A contract cannot be initiated while the reservation is {reservation.status}.',
                current_status=reservation.status,
            )

        current = pricing.quote(
            space.price_table(),
            reservation.requested_sqm,
            reservation.period_type,
            reservation.period_count,
            reservation.deposit_percentage,
        )
        pricing.verify_quote(reservation.quoted_breakdown(), current)
        check_capacity(space, reservation.requested_sqm, exclude_reservation_id=reservation.pk)

        start_date = timezone.localdate()
        contract = Contract(
            reservation=reservation,
            sqm=reservation.requested_sqm,
            period_type=reservation.period_type,
            period_count=reservation.period_count,
            start_date=start_date,
            end_date=pricing.period_end_date(start_date, reservation.period_type, reservation.period_count),
            total_amount=reservation.total_amount,
        )
        audit.attribute(contract, actor, client_ip)
        contract.save()

        reservation.transition_to('contract_pending')
        audit.attribute(reservation, actor, client_ip)
        reservation.save()

    logger.info(f"Contract {contract.contract_number} initiated for reservation {reservation.pk} by user {actor.pk}")
    return contract


def request_signature_code(contract_id, actor, client_ip=None):
    """
    Issue a one-time signature code to a party.

    The first code moves the contract draft -> pending_signatures.

    Returns:
        int: seconds until the code expires

    Raises:
        InvalidTransition: If the contract is already signed or the party signed
        OtpDeliveryError: If the code could not be delivered
    """
    with transaction.atomic():
        reservation, contract = _lock_contract(contract_id)
        role = _require_party(reservation, actor)

        if contract.status not in ('draft', 'pending_signatures'):
            raise InvalidTransition(
                f'Contract {contract.contract_number} is {contract.status}.',
                current_status=contract.status,
            )
        if getattr(contract, f'{role}_signed'):
            raise InvalidTransition(
                f'The {role} has already signed this contract.',
                current_status=contract.status,
            )

        expires_in = get_otp_provider().generate(actor, contract)

        if contract.status == 'draft':
            contract.transition_to('pending_signatures')
            audit.attribute(contract, actor, client_ip)
            contract.save()

    return expires_in


def sign_contract(contract_id, actor, code, client_ip=None):
    """
    Sign a contract with a one-time code.

    Signatures are order independent. When the second party signs, the
    commission rate in effect is snapshotted, the deposit is released to the
    host and the reservation becomes active.

    Raises:
        InvalidTransition: If the contract awaits no signature or the party already signed
        ComplianceGateClosed: If a host signs without accepting the anti-bypass clause
        InvalidOtp: If the code is wrong, expired or already used
    """
    with transaction.atomic():
        reservation, contract = _lock_contract(contract_id)
        role = _require_party(reservation, actor)

        if getattr(contract, f'{role}_signed'):
            raise InvalidTransition(
                f'The {role} has already signed this contract.',
                current_status=contract.status,
            )
        if contract.status != 'pending_signatures':
            raise InvalidTransition(
                f'Contract {contract.contract_number} is {contract.status}; request a code first.',
                current_status=contract.status,
            )
        if role == 'host':
            require_host_clause(actor)

        if not get_otp_provider().validate_and_consume(actor, contract, code):
            logger.warning(f"Invalid OTP for contract {contract.pk} from user {actor.pk}. IP: {client_ip}")
            raise InvalidOtp()

        setattr(contract, f'{role}_signed', True)
        setattr(contract, f'{role}_signed_at', timezone.now())
        setattr(contract, f'{role}_signed_ip', client_ip)
        audit.attribute(contract, actor, client_ip)

        if contract.both_signed:
            _finalize_signatures(reservation, contract, actor, client_ip)
        else:
            contract.save()

    logger.info(f"Contract {contract.contract_number} signed by {role} {actor.pk}. IP: {client_ip}")
    return contract


def _finalize_signatures(reservation, contract, actor, client_ip):
    rate = PlatformSetting.current_value('commission_percentage')
    commission, payout = pricing.split_commission(contract.total_amount, rate)
    contract.commission_rate = rate
    contract.commission_amount = commission
    contract.host_payout_amount = payout
    contract.transition_to('signed')
    contract.save()

    deposit = reservation.payments.get(payment_type='deposit')
    escrow.release(deposit.pk, rate, actor=actor, client_ip=client_ip)

    reservation.transition_to('active')
    audit.attribute(reservation, actor, client_ip)
    reservation.save()

    logger.info(
        f"Contract {contract.contract_number} fully signed; commission {rate}% snapshotted, "
        f"deposit {deposit.pk} released"
    )


def extend_contract(contract_id, guest, period_type, period_count, method, idempotency_key, client_ip=None):
    """
    Extend a signed or active contract by more periods.

    Priced from the price table frozen on the reservation; the extension
    payment is held in escrow like the deposit. No new signatures.

    Returns:
        ContractExtension

    Raises:
        InvalidTransition: If the caller is not the guest or the contract cannot be extended
        UnavailablePeriod: If the frozen price table has no rate for period_type
        PaymentCapabilityError: If the gateway fails (nothing is recorded)
    """
    with transaction.atomic():
        reservation, contract = _lock_contract(contract_id)
        role = _require_party(reservation, guest)
        if role != 'guest':
            raise InvalidTransition('Only the guest can extend a contract.', current_status=contract.status)

        key = f'contract-{contract.pk}-extension-{idempotency_key}'
        existing = contract.extensions.filter(payment__idempotency_key=key).first()
        if existing is not None:
            return existing

        if contract.status not in ('signed', 'active'):
            raise InvalidTransition(
                f'Contract {contract.contract_number} is {contract.status} and cannot be extended.',
                current_status=contract.status,
            )

        rate, amount = pricing.price_period(
            reservation.frozen_pricing, contract.sqm, period_type, period_count
        )
        commission, payout = pricing.split_commission(amount, contract.commission_rate)
        original_end_date = contract.end_date
        new_end_date = pricing.period_end_date(original_end_date, period_type, period_count)

        contract.transition_to('extended')
        contract.total_amount += amount
        contract.commission_amount += commission
        contract.host_payout_amount += payout
        contract.end_date = new_end_date
        audit.attribute(contract, guest, client_ip)
        contract.save()

        payment = escrow.open_payment(
            contract=contract,
            payer=guest,
            amount=amount,
            method=method,
            idempotency_key=key,
            payment_type='extension',
            client_ip=client_ip,
        )
        escrow.hold(payment)

        extension = ContractExtension.objects.create(
            contract=contract,
            payment=payment,
            period_type=period_type,
            period_count=period_count,
            price_per_sqm_applied=rate,
            amount=amount,
            commission_amount=commission,
            host_payout_amount=payout,
            original_end_date=original_end_date,
            new_end_date=new_end_date,
        )

        contract.transition_to('active')
        contract.save()

    logger.info(
        f"Contract {contract.contract_number} extended by {period_count} {period_type} "
        f"to {new_end_date}: {amount}"
    )
    return extension


def pay_balance(contract_id, guest, method, idempotency_key, client_ip=None):
    """
    Pay the reservation's remaining amount into escrow.

    A replay with the same key returns the existing payment, whatever its
    escrow status.

    Returns:
        Payment

    Raises:
        InvalidTransition: If the contract is not signed yet, or the balance is already paid
        PaymentCapabilityError: If the gateway fails (nothing is recorded)
    """
    with transaction.atomic():
        reservation, contract = _lock_contract(contract_id)
        role = _require_party(reservation, guest)
        if role != 'guest':
            raise InvalidTransition('Only the guest pays the balance.', current_status=contract.status)

        key = f'contract-{contract.pk}-balance-{idempotency_key}'
        existing = contract.payments.filter(idempotency_key=key).first()
        if existing is not None:
            return existing

        if contract.status not in ('signed', 'active'):
            raise InvalidTransition(
                f'The balance can be paid once the contract is signed; it is {contract.status}.',
                current_status=contract.status,
            )
        if reservation.remaining_amount <= 0:
            raise ValidationError({'amount': 'There is no remaining balance to pay.'})
        if contract.payments.filter(payment_type='balance').exclude(
            escrow_status__in=['voided', 'refunded']
        ).exists():
            raise InvalidTransition('The balance has already been paid.', current_status=contract.status)

        payment = escrow.open_payment(
            contract=contract,
            payer=guest,
            amount=reservation.remaining_amount,
            method=method,
            idempotency_key=key,
            payment_type='balance',
            client_ip=client_ip,
        )
        escrow.hold(payment)

    logger.info(f"Balance {payment.amount} held for contract {contract.contract_number}")
    return payment


def activate_contract(contract_id, actor=None, today=None):
    """
    Move a signed contract to active once its start date is reached.

    Returns:
        bool: True if the contract was activated
    """
    today = today or timezone.localdate()
    with transaction.atomic():
        reservation, contract = _lock_contract(contract_id)
        if contract.status != 'signed' or contract.start_date > today:
            return False
        contract.transition_to('active')
        audit.attribute(contract, actor)
        contract.save()

    logger.info(f"Contract {contract.contract_number} activated")
    return True


def complete_contract(contract_id, actor=None, client_ip=None):
    """
    Close a contract: release its held payments and complete the reservation.

    A signed contract that never became active is activated first.

    Raises:
        InvalidTransition: If the contract is not signed or active
    """
    with transaction.atomic():
        reservation, contract = _lock_contract(contract_id)

        if contract.status == 'signed':
            contract.transition_to('active')
            audit.attribute(contract, actor, client_ip)
            contract.save()
        if contract.status != 'active':
            raise InvalidTransition(
                f'Contract {contract.contract_number} is {contract.status} and cannot be completed.',
                current_status=contract.status,
            )

        for payment in contract.payments.filter(escrow_status='held'):
            escrow.release(payment.pk, contract.commission_rate, actor=actor, client_ip=client_ip)

        contract.transition_to('completed')
        audit.attribute(contract, actor, client_ip)
        contract.save()

        reservation.transition_to('completed')
        audit.attribute(reservation, actor, client_ip)
        reservation.save()

    logger.info(f"Contract {contract.contract_number} completed; reservation {reservation.pk} completed")
    return contract
