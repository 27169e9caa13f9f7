"""
Domain errors for the rental lifecycle engine.

Every error is a DRF APIException so views can let them propagate and the
custom exception handler renders a uniform body:

    {"detail": "...", "code": "...", <context fields>}
"""

import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from rest_framework import status
from rest_framework.exceptions import APIException, ValidationError
from rest_framework.views import exception_handler


logger = logging.getLogger(__name__)


class LifecycleError(APIException):
    """
    Base class for lifecycle errors.

    Extra keyword arguments are kept as context and merged into the
    response body (e.g. the clause id of a closed compliance gate).
    """
    retryable = False

    def __init__(self, detail=None, code=None, **context):
        super().__init__(detail, code)
        self.context = context


class InvalidTransition(LifecycleError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'This action is not allowed in the current state.'
    default_code = 'invalid_transition'


class ComplianceGateClosed(LifecycleError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'The anti-bypass clause must be accepted first.'
    default_code = 'compliance_gate_closed'

    def __init__(self, clause, detail=None):
        super().__init__(detail, clause=clause)
        self.clause = clause


class UnavailablePeriod(LifecycleError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'The space has no price for the requested period.'
    default_code = 'unavailable_period'


class PriceMismatch(LifecycleError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'The quoted price no longer matches. Please request a new quote.'
    default_code = 'price_mismatch'


class CapacityExceeded(LifecycleError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'The requested area exceeds the space currently available.'
    default_code = 'capacity_exceeded'


class PaymentCapabilityError(LifecycleError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = 'The payment provider is unavailable. Retry with the same idempotency key.'
    default_code = 'payment_unavailable'
    retryable = True


class InvalidOtp(LifecycleError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'The verification code is invalid or expired. Request a new code.'
    default_code = 'invalid_otp'


class OtpDeliveryError(LifecycleError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = 'The verification code could not be delivered.'
    default_code = 'otp_delivery_failed'
    retryable = True


class NotHeld(LifecycleError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'The payment is not held in escrow.'
    default_code = 'not_held'


def lifecycle_exception_handler(exc, context):
    """
    DRF exception handler.

    - Converts Django model ValidationError (raised by full_clean in save)
      into a DRF 400 instead of a server error
    - Adds code, context fields and the retryable flag to lifecycle errors
    """
    if isinstance(exc, DjangoValidationError):
        if hasattr(exc, 'message_dict'):
            exc = ValidationError(exc.message_dict)
        else:
            exc = ValidationError(exc.messages)

    response = exception_handler(exc, context)

    if response is not None and isinstance(exc, LifecycleError):
        response.data = {
            'detail': str(exc.detail),
            'code': exc.detail.code,
            **exc.context,
        }
        if exc.retryable:
            response.data['retryable'] = True
        logger.info(
            f"Lifecycle error {exc.detail.code} returned with status "
            f"{response.status_code}: {exc.detail}"
        )

    return response
