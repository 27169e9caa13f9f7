"""
Test suite for accounts: registration, e-mail login, profile and the host
anti-bypass acceptance.

Tests cover:
- Registration with role and password confirmation
- Duplicate e-mails (case-insensitive)
- JWT login with e-mail and password, logout with blacklisting
- Profile read and contact update (role and compliance flags are read-only)
- Host clause acceptance and the space publication gate
"""

from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.urls import reverse
from rest_framework import status
from rest_framework_simplejwt.token_blacklist.models import BlacklistedToken
from rest_framework_simplejwt.tokens import RefreshToken

from rentals.models import Space

User = get_user_model()


def registration_payload(**overrides):
    payload = {
        'email': 'new.guest@test.com',
        'password': 'SecurePass123!',
        'confirm_password': 'SecurePass123!',
        'role': 'guest',
    }
    payload.update(overrides)
    return payload


@pytest.mark.django_db
class TestRegistration:

    def test_register_guest(self, api_client):
        response = api_client.post(reverse('user_register'), registration_payload(), format='json')

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['email'] == 'new.guest@test.com'
        assert response.data['role'] == 'guest'
        assert 'password' not in response.data

        user = User.objects.get(email='new.guest@test.com')
        assert user.check_password('SecurePass123!')
        assert user.anti_bypass_accepted is False

    def test_register_host(self, api_client):
        response = api_client.post(
            reverse('user_register'), registration_payload(email='new.host@test.com', role='host'), format='json'
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert User.objects.get(email='new.host@test.com').role == 'host'

    def test_email_is_normalized(self, api_client):
        api_client.post(reverse('user_register'), registration_payload(email='  Mixed.Case@Test.com '), format='json')

        assert User.objects.filter(email='mixed.case@test.com').exists()

    def test_admin_role_cannot_be_self_assigned(self, api_client):
        response = api_client.post(reverse('user_register'), registration_payload(role='admin'), format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert 'role' in response.data

    def test_duplicate_email_case_insensitive(self, api_client, guest_user):
        response = api_client.post(
            reverse('user_register'), registration_payload(email='GUEST@test.com'), format='json'
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert 'email' in response.data

    def test_password_mismatch(self, api_client):
        response = api_client.post(
            reverse('user_register'), registration_payload(confirm_password='Different123!'), format='json'
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert 'confirm_password' in response.data

    def test_weak_password(self, api_client):
        response = api_client.post(
            reverse('user_register'),
            registration_payload(password='123', confirm_password='123'),
            format='json'
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert 'password' in response.data

    def test_invalid_phone_number(self, api_client):
        response = api_client.post(
            reverse('user_register'), registration_payload(phone_number='call me'), format='json'
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert 'phone_number' in response.data


@pytest.mark.django_db
class TestLogin:

    def test_login_with_email(self, api_client, guest_user):
        response = api_client.post(
            reverse('token_obtain_pair'), {'email': 'guest@test.com', 'password': 'TestPass123!'}, format='json'
        )

        assert response.status_code == status.HTTP_200_OK
        assert 'access' in response.data
        assert 'refresh' in response.data

    def test_login_email_is_case_insensitive(self, api_client, guest_user):
        response = api_client.post(
            reverse('token_obtain_pair'), {'email': 'Guest@Test.com', 'password': 'TestPass123!'}, format='json'
        )

        assert response.status_code == status.HTTP_200_OK

    def test_wrong_password(self, api_client, guest_user):
        response = api_client.post(
            reverse('token_obtain_pair'), {'email': 'guest@test.com', 'password': 'WrongPass123!'}, format='json'
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert 'access' not in response.data

    def test_unknown_email(self, api_client):
        response = api_client.post(
            reverse('token_obtain_pair'), {'email': 'nobody@test.com', 'password': 'TestPass123!'}, format='json'
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_inactive_user_cannot_login(self, api_client, guest_user):
        guest_user.is_active = False
        guest_user.save()

        response = api_client.post(
            reverse('token_obtain_pair'), {'email': 'guest@test.com', 'password': 'TestPass123!'}, format='json'
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_access_token_authenticates_requests(self, api_client, guest_user):
        tokens = api_client.post(
            reverse('token_obtain_pair'), {'email': 'guest@test.com', 'password': 'TestPass123!'}, format='json'
        ).data

        api_client.credentials(HTTP_AUTHORIZATION=f"Bearer {tokens['access']}")
        response = api_client.get(reverse('user_profile'))

        assert response.status_code == status.HTTP_200_OK
        assert response.data['email'] == 'guest@test.com'

    def test_logout_blacklists_refresh_token(self, api_client, guest_user):
        refresh = RefreshToken.for_user(guest_user)

        response = api_client.post(reverse('user_logout'), {'refresh': str(refresh)}, format='json')

        assert response.status_code == status.HTTP_200_OK
        assert BlacklistedToken.objects.filter(token__jti=refresh['jti']).exists()

        response = api_client.post(reverse('token_refresh'), {'refresh': str(refresh)}, format='json')
        assert response.status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.django_db
class TestProfile:

    def test_get_profile(self, api_client, host_user):
        api_client.force_authenticate(user=host_user)

        response = api_client.get(reverse('user_profile'))

        assert response.status_code == status.HTTP_200_OK
        assert response.data['role'] == 'host'
        assert response.data['anti_bypass_accepted'] is True
        assert response.data['anti_bypass_legal_version'] == 'ANTIBYPASS_HOST_V1'

    def test_profile_requires_authentication(self, api_client):
        response = api_client.get(reverse('user_profile'))

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_update_phone_number(self, api_client, guest_user):
        api_client.force_authenticate(user=guest_user)

        response = api_client.patch(reverse('user_profile'), {'phone_number': '+56 9 1234 5678'}, format='json')

        assert response.status_code == status.HTTP_200_OK
        guest_user.refresh_from_db()
        assert guest_user.phone_number == '+56 9 1234 5678'

    def test_role_and_compliance_are_read_only(self, api_client, guest_user):
        api_client.force_authenticate(user=guest_user)

        api_client.patch(
            reverse('user_profile'),
            {'role': 'admin', 'anti_bypass_accepted': True},
            format='json'
        )

        guest_user.refresh_from_db()
        assert guest_user.role == 'guest'
        assert guest_user.anti_bypass_accepted is False

    def test_invalid_phone_update(self, api_client, guest_user):
        api_client.force_authenticate(user=guest_user)

        response = api_client.patch(reverse('user_profile'), {'phone_number': '1111111111'}, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST


@pytest.mark.django_db
class TestHostAntiBypass:

    @pytest.fixture
    def new_host(self, db):
        return User.objects.create_user(
            email='fresh.host@test.com',
            username='fresh.host@test.com',
            password='TestPass123!',
            role='host'
        )

    def test_host_accepts_clause(self, api_client, new_host):
        api_client.force_authenticate(user=new_host)

        response = api_client.post(reverse('accept_host_anti_bypass'))

        assert response.status_code == status.HTTP_200_OK
        assert response.data['anti_bypass_accepted'] is True
        new_host.refresh_from_db()
        assert new_host.anti_bypass_accepted_at is not None
        assert new_host.anti_bypass_legal_version == 'ANTIBYPASS_HOST_V1'

    def test_accepting_again_keeps_first_timestamp(self, api_client, new_host):
        api_client.force_authenticate(user=new_host)
        api_client.post(reverse('accept_host_anti_bypass'))
        new_host.refresh_from_db()
        first_accepted_at = new_host.anti_bypass_accepted_at

        api_client.post(reverse('accept_host_anti_bypass'))

        new_host.refresh_from_db()
        assert new_host.anti_bypass_accepted_at == first_accepted_at

    def test_guest_cannot_accept_host_clause(self, api_client, guest_user):
        api_client.force_authenticate(user=guest_user)

        response = api_client.post(reverse('accept_host_anti_bypass'))

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_space_cannot_be_published_before_clause(self, new_host):
        with pytest.raises(ValidationError) as exc_info:
            Space.objects.create(
                host=new_host,
                title='Garage corner',
                total_sqm=Decimal('20.00'),
                available_sqm=Decimal('20.00'),
                price_per_sqm_month=Decimal('40.00'),
                status='published'
            )

        assert 'status' in exc_info.value.message_dict

    def test_draft_space_allowed_before_clause(self, new_host):
        space = Space.objects.create(
            host=new_host,
            title='Garage corner',
            total_sqm=Decimal('20.00'),
            available_sqm=Decimal('20.00'),
            price_per_sqm_month=Decimal('40.00'),
        )

        assert space.status == 'draft'

    def test_space_needs_a_price_to_publish(self, host_user):
        with pytest.raises(ValidationError):
            Space.objects.create(
                host=host_user,
                title='Empty shed',
                total_sqm=Decimal('20.00'),
                available_sqm=Decimal('20.00'),
                status='published'
            )

    def test_rentable_area_cannot_exceed_total(self, host_user):
        with pytest.raises(ValidationError):
            Space.objects.create(
                host=host_user,
                title='Loft',
                total_sqm=Decimal('20.00'),
                available_sqm=Decimal('25.00'),
                price_per_sqm_month=Decimal('40.00'),
            )
