"""
One-time codes for contract signatures.

The engine only depends on OTPProvider.generate and
OTPProvider.validate_and_consume. The default provider keeps a hashed code
in the Django cache (expiring after SIGNATURE_OTP_TTL_SECONDS) and e-mails
the plain code to the signer. A code is removed on the first validation
attempt, whether it matches or not.
"""

import logging
import secrets
import smtplib
from abc import ABC, abstractmethod

from django.conf import settings
from django.contrib.auth.hashers import check_password, make_password
from django.core.cache import cache
from django.core.mail import send_mail
from django.utils.module_loading import import_string

from .exceptions import OtpDeliveryError


logger = logging.getLogger(__name__)


class OTPProvider(ABC):
    """Interface of the OTP capability."""

    def __init__(self, ttl=None):
        self.ttl = ttl

    @abstractmethod
    def generate(self, user, contract):
        """Issue and deliver a fresh code, replacing any previous one."""

    @abstractmethod
    def validate_and_consume(self, user, contract, code):
        """Return True if code is the live code for (user, contract). Always consumes it."""


class CacheOTPProvider(OTPProvider):
    """Hashed six digit codes in the Django cache, delivered by e-mail."""

    code_length = 6

    def _key(self, user, contract):
        return f'signature-otp:{contract.pk}:{user.pk}'

    def _new_code(self):
        return ''.join(secrets.choice('0123456789') for _ in range(self.code_length))

    def generate(self, user, contract):
        code = self._new_code()
        key = self._key(user, contract)
        cache.set(key, make_password(code), timeout=self.ttl)

        try:
            self.deliver(user, contract, code)
        except (smtplib.SMTPException, OSError) as e:
            cache.delete(key)
            logger.error(f"OTP delivery failed for contract {contract.pk}, user {user.pk}: {e}")
            raise OtpDeliveryError(contract_id=contract.pk)

        logger.info(f"OTP issued for contract {contract.pk}, user {user.pk}")
        return self.ttl

    def deliver(self, user, contract, code):
        minutes = (self.ttl or 0) // 60
        send_mail(
            subject=f'Signature code for contract {contract.contract_number}',
            message=(
                f'Your code to sign contract {contract.contract_number} is {code}.\n'
                f'It expires in {minutes} minutes and can be used once.'
            ),
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[user.email],
            fail_silently=False,
        )

    def validate_and_consume(self, user, contract, code):
        key = self._key(user, contract)
        hashed = cache.get(key)
        cache.delete(key)
        if not hashed or not code:
            return False
        return check_password(str(code), hashed)


def get_otp_provider():
    """Instantiate the provider configured in SIGNATURE_OTP_PROVIDER."""
    provider_class = import_string(settings.SIGNATURE_OTP_PROVIDER)
    return provider_class(ttl=settings.SIGNATURE_OTP_TTL_SECONDS)
