"""
Shared fixtures for the rental engine test suite.

Fixtures build rentals through the service modules so every test starts
from a state the engine itself produced.
"""

import datetime
import re
import uuid
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.core import mail
from django.core.cache import cache
from django.utils import timezone
from rest_framework.test import APIClient

from rentals import appointments, compliance, contracts, reservations
from rentals.models import PlatformSetting, Space

User = get_user_model()

OTP_PATTERN = re.compile(r'is (\d{6})\.')


@pytest.fixture(autouse=True)
def clear_cache():
    """OTP codes, throttles and gateway references live in the cache."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def api_client():
    """Return API client for testing."""
    return APIClient()


@pytest.fixture
def platform_rates(db):
    """Deposit 20% and commission 10%."""
    PlatformSetting.objects.create(key='deposit_percentage', value=Decimal('20.00'))
    PlatformSetting.objects.create(key='commission_percentage', value=Decimal('10.00'))


@pytest.fixture
def guest_user(db):
    return User.objects.create_user(
        email='guest@test.com',
        username='guest@test.com',
        password='TestPass123!',
        role='guest'
    )


@pytest.fixture
def another_guest(db):
    return User.objects.create_user(
        email='guest2@test.com',
        username='guest2@test.com',
        password='TestPass123!',
        role='guest'
    )


@pytest.fixture
def host_user(db):
    """Host that has accepted the anti-bypass clause."""
    user = User.objects.create_user(
        email='host@test.com',
        username='host@test.com',
        password='TestPass123!',
        role='host'
    )
    return compliance.accept_host_clause(user, '10.0.0.1')


@pytest.fixture
def admin_user(db):
    return User.objects.create_user(
        email='admin@test.com',
        username='admin@test.com',
        password='TestPass123!',
        role='admin'
    )


@pytest.fixture
def space(host_user, platform_rates):
    """Published space: 100 m2 rentable, 50.00 per m2 per month, 15.00 per week."""
    return Space.objects.create(
        host=host_user,
        title='Dry storeroom',
        total_sqm=Decimal('120.00'),
        available_sqm=Decimal('100.00'),
        price_per_sqm_month=Decimal('50.00'),
        price_per_sqm_week=Decimal('15.00'),
        city='Santiago',
        status='published'
    )


@pytest.fixture
def make_reservation():
    """Create a reservation with the figures of a fresh quote."""
    def _make(guest, space, area='10.00', period_type='month', period_count=2, idempotency_key=None):
        offer = reservations.quote_for_space(space, Decimal(area), period_type, period_count)
        return reservations.create_reservation(
            guest=guest,
            space_id=space.pk,
            area=Decimal(area),
            period_type=period_type,
            period_count=period_count,
            quoted=offer.as_dict(),
            method='card',
            idempotency_key=idempotency_key or str(uuid.uuid4()),
            client_ip='10.0.0.2',
        )
    return _make


@pytest.fixture
def held_reservation(guest_user, space, make_reservation):
    """10 m2 for 2 months: total 1000.00, deposit 200.00, status deposit_held."""
    return make_reservation(guest_user, space)


@pytest.fixture
def visit(held_reservation, guest_user):
    """Requested visit three days from now."""
    when = timezone.localdate() + datetime.timedelta(days=3)
    return appointments.request_visit(held_reservation.pk, guest_user, when, datetime.time(10, 30))


@pytest.fixture
def request_code():
    """Request a signature code and return it as read from the e-mail."""
    def _request(contract, user):
        contracts.request_signature_code(contract.pk, user)
        message = mail.outbox[-1]
        assert message.to == [user.email]
        return OTP_PATTERN.search(message.body).group(1)
    return _request


@pytest.fixture
def draft_contract(held_reservation, guest_user):
    return contracts.initiate_contract(held_reservation.pk, guest_user)


@pytest.fixture
def signed_contract(draft_contract, guest_user, host_user, request_code):
    code = request_code(draft_contract, guest_user)
    contracts.sign_contract(draft_contract.pk, guest_user, code)
    code = request_code(draft_contract, host_user)
    return contracts.sign_contract(draft_contract.pk, host_user, code)
