"""
Payment gateway capability.

The escrow ledger talks to a gateway through PaymentGateway. The concrete
class is loaded from the ESCROW_PAYMENT_GATEWAY setting (dotted path) so a
real processor can be plugged in without touching the engine.

Every call carries an idempotency key: calling twice with the same key must
return the same reference without moving money twice.
"""

import logging
import uuid
from abc import ABC, abstractmethod

from django.conf import settings
from django.core.cache import cache
from django.utils.module_loading import import_string


logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """The gateway rejected or failed an operation."""


class GatewayTimeout(GatewayError):
    """The gateway did not answer within the configured timeout."""


class PaymentGateway(ABC):
    """
    Interface of the payment capability.

    Implementations must honour ``timeout`` (seconds) on every remote call
    and raise GatewayTimeout when it elapses.
    """

    def __init__(self, timeout=None):
        self.timeout = timeout

    @abstractmethod
    def authorize(self, amount, method, idempotency_key):
        """Reserve amount on the payer's method. Returns an authorization reference."""

    @abstractmethod
    def capture(self, authorization_reference, amount, idempotency_key):
        """Capture an authorization into the platform escrow account. Returns a capture reference."""

    @abstractmethod
    def refund(self, capture_reference, amount, idempotency_key):
        """Return a captured amount to the original method. Returns a refund reference."""


class SimulatedPaymentGateway(PaymentGateway):
    """
    In-process gateway for development and tests.

    References are remembered in the Django cache per idempotency key so
    retries return the original reference.
    """

    cache_prefix = 'simulated-gateway'

    def _remember(self, operation, idempotency_key, prefix):
        key = f'{self.cache_prefix}:{operation}:{idempotency_key}'
        cache.add(key, f'{prefix}_{uuid.uuid4().hex[:20]}', timeout=None)
        return cache.get(key)

    def authorize(self, amount, method, idempotency_key):
        if amount <= 0:
            raise GatewayError(f'Declined: invalid amount {amount}.')
        if method not in ('card', 'qr'):
            raise GatewayError(f'Declined: unsupported method {method}.')
        reference = self._remember('authorize', idempotency_key, 'auth')
        logger.info(f"Simulated authorization {reference} for {amount} via {method}")
        return reference

    def capture(self, authorization_reference, amount, idempotency_key):
        if not authorization_reference:
            raise GatewayError('Cannot capture without an authorization.')
        reference = self._remember('capture', idempotency_key, 'cap')
        logger.info(f"Simulated capture {reference} of {authorization_reference} for {amount}")
        return reference

    def refund(self, capture_reference, amount, idempotency_key):
        if not capture_reference:
            raise GatewayError('Cannot refund a payment that was never captured.')
        reference = self._remember('refund', idempotency_key, 'ref')
        logger.info(f"Simulated refund {reference} of {capture_reference} for {amount}")
        return reference


def get_payment_gateway():
    """Instantiate the gateway configured in ESCROW_PAYMENT_GATEWAY."""
    gateway_class = import_string(settings.ESCROW_PAYMENT_GATEWAY)
    return gateway_class(timeout=settings.ESCROW_GATEWAY_TIMEOUT_SECONDS)
