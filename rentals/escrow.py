"""
Escrow ledger operations.

Payments move pending -> held (authorize + capture), then held -> released
(split between host payout and platform commission) or held -> refunded.
pending payments that are abandoned become voided. Nothing moves backward.

release() and refund() are idempotent: repeating them on a payment already
in the target state returns it without calling the gateway again.
"""

import logging

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from . import audit
from .exceptions import InvalidTransition, NotHeld, PaymentCapabilityError
from .models import Payment
from .payments import GatewayError, GatewayTimeout, get_payment_gateway
from .pricing import split_commission


logger = logging.getLogger(__name__)


def _call_gateway(payment, operation, call, *args):
    """Run a gateway call, translating gateway failures into PaymentCapabilityError."""
    try:
        return call(*args)
    except GatewayTimeout as e:
        logger.warning(f"Gateway timeout during {operation} of payment {payment.pk}: {e}")
        raise PaymentCapabilityError(
            f'The payment provider timed out during {operation}. Retry with the same idempotency key.',
            payment_id=payment.pk,
        )
    except GatewayError as e:
        logger.warning(f"Gateway error during {operation} of payment {payment.pk}: {e}")
        raise PaymentCapabilityError(
            f'The payment provider failed during {operation}: {e}',
            payment_id=payment.pk,
        )


def open_payment(*, payer, amount, method, idempotency_key, payment_type,
                 reservation=None, contract=None, client_ip=None):
    """Create a pending escrow record for a reservation or a contract."""
    payment = Payment(
        reservation=reservation,
        contract=contract,
        payer=payer,
        amount=amount,
        method=method,
        idempotency_key=idempotency_key,
        payment_type=payment_type,
    )
    audit.attribute(payment, payer, client_ip)
    payment.save()
    return payment


def hold(payment):
    """
    Authorize and capture a pending payment into escrow.

    Must run inside the caller's atomic block with the owning aggregate
    locked. Gateway calls reuse keys derived from the payment's key, so a
    retry after a failure never charges twice.

    Returns:
        Payment: the held payment

    Raises:
        PaymentCapabilityError: If the gateway fails or times out
        InvalidTransition: If the payment was already released, refunded or voided
    """
    if payment.escrow_status == 'held':
        return payment
    if payment.escrow_status != 'pending':
        raise InvalidTransition(
            f'Payment {payment.pk} is {payment.escrow_status} and cannot be captured.',
            current_status=payment.escrow_status,
        )

    gateway = get_payment_gateway()
    authorization = _call_gateway(
        payment, 'authorization', gateway.authorize,
        payment.amount, payment.method, f'{payment.idempotency_key}:authorize'
    )
    capture = _call_gateway(
        payment, 'capture', gateway.capture,
        authorization, payment.amount, f'{payment.idempotency_key}:capture'
    )

    payment.authorization_reference = authorization
    payment.capture_reference = capture
    payment.escrow_status = 'held'
    payment.held_at = timezone.now()
    payment.attempts += 1
    payment.last_error = ''
    payment.save()

    logger.info(f"Payment {payment.pk} held in escrow: {payment.amount} ({payment.payment_type})")
    return payment


def record_failure(payment_id, error):
    """Record a failed capture attempt. Called after the failing transaction rolled back."""
    Payment.objects.filter(pk=payment_id).update(
        attempts=F('attempts') + 1,
        last_error=str(error),
        updated_at=timezone.now(),
    )


def release(payment_id, commission_rate, actor=None, client_ip=None):
    """
    Release a held payment to the host, minus the platform commission.

    Args:
        payment_id: Payment primary key
        commission_rate: Percentage snapshotted when the contract was signed

    Returns:
        Payment

    Raises:
        NotHeld: If the payment is neither held nor already released
    """
    with transaction.atomic():
        payment = Payment.objects.select_for_update().get(pk=payment_id)

        if payment.escrow_status == 'released':
            return payment
        if payment.escrow_status != 'held':
            raise NotHeld(
                f'Payment {payment.pk} is {payment.escrow_status}; only held payments can be released.',
                payment_id=payment.pk,
            )

        commission, payout = split_commission(payment.amount, commission_rate)
        payment.commission_rate = commission_rate
        payment.commission_amount = commission
        payment.host_payout_amount = payout
        payment.escrow_status = 'released'
        payment.released_at = timezone.now()
        audit.attribute(payment, actor, client_ip)
        payment.save()

    logger.info(
        f"Payment {payment.pk} released: host payout {payout}, "
        f"commission {commission} at {commission_rate}%"
    )
    return payment


def refund(payment_id, actor=None, client_ip=None):
    """
    Refund the full held amount to the original method.

    Raises:
        NotHeld: If the payment is neither held nor already refunded
        PaymentCapabilityError: If the gateway refund fails
    """
    with transaction.atomic():
        payment = Payment.objects.select_for_update().get(pk=payment_id)

        if payment.escrow_status == 'refunded':
            return payment
        if payment.escrow_status != 'held':
            raise NotHeld(
                f'Payment {payment.pk} is {payment.escrow_status}; only held payments can be refunded.',
                payment_id=payment.pk,
            )

        gateway = get_payment_gateway()
        reference = _call_gateway(
            payment, 'refund', gateway.refund,
            payment.capture_reference, payment.amount, f'{payment.idempotency_key}:refund'
        )

        payment.refund_reference = reference
        payment.escrow_status = 'refunded'
        payment.refunded_at = timezone.now()
        audit.attribute(payment, actor, client_ip)
        payment.save()

    logger.info(f"Payment {payment.pk} refunded: {payment.amount}")
    return payment


def void(payment):
    """Abandon a payment that was never captured."""
    if payment.escrow_status == 'voided':
        return payment
    if payment.escrow_status != 'pending':
        raise InvalidTransition(
            f'Payment {payment.pk} is {payment.escrow_status} and cannot be voided.',
            current_status=payment.escrow_status,
        )
    payment.escrow_status = 'voided'
    payment.save()
    logger.info(f"Payment {payment.pk} voided")
    return payment
