"""
Test suite for platform administration endpoints.

Tests cover:
- Reading and updating deposit and commission percentages
- Admin-only access
- Audit entries for setting changes
- Audit log listing and filtering
- New ratios apply to future operations only
"""

from decimal import Decimal

import pytest
from django.urls import reverse
from rest_framework import status

from rentals.models import AuditLog, PlatformSetting


@pytest.mark.django_db
class TestPlatformConfig:

    def test_admin_reads_config(self, api_client, admin_user, platform_rates):
        api_client.force_authenticate(user=admin_user)

        response = api_client.get(reverse('platform_config'))

        assert response.status_code == status.HTTP_200_OK
        assert response.data == {'deposit_percentage': '20.00', 'commission_percentage': '10.00'}

    def test_defaults_without_rows(self, api_client, admin_user):
        api_client.force_authenticate(user=admin_user)

        response = api_client.get(reverse('platform_config'))

        assert response.data['deposit_percentage'] == '10.00'
        assert response.data['commission_percentage'] == '10.00'

    def test_admin_updates_one_key(self, api_client, admin_user, platform_rates):
        api_client.force_authenticate(user=admin_user)

        response = api_client.put(
            reverse('platform_config'), {'commission_percentage': '12.50'}, format='json'
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['commission_percentage'] == '12.50'
        assert response.data['deposit_percentage'] == '20.00'
        assert PlatformSetting.current_value('commission_percentage') == Decimal('12.50')

    def test_update_creates_missing_row(self, api_client, admin_user):
        api_client.force_authenticate(user=admin_user)

        api_client.put(reverse('platform_config'), {'deposit_percentage': '25.00'}, format='json')

        setting = PlatformSetting.objects.get(key='deposit_percentage')
        assert setting.value == Decimal('25.00')
        assert setting.updated_by == admin_user

    def test_update_writes_audit_entry(self, api_client, admin_user, platform_rates):
        api_client.force_authenticate(user=admin_user)

        api_client.put(reverse('platform_config'), {'deposit_percentage': '30.00'}, format='json')

        entry = AuditLog.objects.filter(action='setting_changed', actor=admin_user).get()
        assert entry.entity_type == 'platformsetting'
        assert entry.old_data == {'deposit_percentage': '20.00'}
        assert entry.new_data == {'deposit_percentage': '30.00'}
        assert entry.ip_address == '127.0.0.1'

    def test_unchanged_value_writes_no_entry(self, api_client, admin_user, platform_rates):
        api_client.force_authenticate(user=admin_user)

        api_client.put(reverse('platform_config'), {'deposit_percentage': '20.00'}, format='json')

        assert not AuditLog.objects.filter(action='setting_changed', actor=admin_user).exists()

    @pytest.mark.parametrize('payload', [
        {},
        {'deposit_percentage': '101.00'},
        {'commission_percentage': '-1.00'},
        {'commission_percentage': 'ten'},
    ])
    def test_invalid_update(self, api_client, admin_user, platform_rates, payload):
        api_client.force_authenticate(user=admin_user)

        response = api_client.put(reverse('platform_config'), payload, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert PlatformSetting.current_value('deposit_percentage') == Decimal('20.00')

    def test_guest_is_forbidden(self, api_client, guest_user):
        api_client.force_authenticate(user=guest_user)

        assert api_client.get(reverse('platform_config')).status_code == status.HTTP_403_FORBIDDEN
        response = api_client.put(reverse('platform_config'), {'deposit_percentage': '5.00'}, format='json')
        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_host_is_forbidden(self, api_client, host_user):
        api_client.force_authenticate(user=host_user)

        assert api_client.get(reverse('platform_config')).status_code == status.HTTP_403_FORBIDDEN

    def test_anonymous_is_rejected(self, api_client):
        assert api_client.get(reverse('platform_config')).status_code == status.HTTP_401_UNAUTHORIZED

    def test_new_deposit_applies_to_new_quotes_only(
        self, api_client, admin_user, guest_user, space, held_reservation
    ):
        api_client.force_authenticate(user=admin_user)
        api_client.put(reverse('platform_config'), {'deposit_percentage': '50.00'}, format='json')

        api_client.force_authenticate(user=guest_user)
        response = api_client.post(
            reverse('space_quote', kwargs={'pk': space.pk}),
            {'area': '10.00', 'period_type': 'month', 'period_count': 2},
            format='json'
        )

        assert response.data['deposit_amount'] == '500.00'
        held_reservation.refresh_from_db()
        assert held_reservation.deposit_percentage == Decimal('20.00')
        assert held_reservation.deposit_amount == Decimal('200.00')


@pytest.mark.django_db
class TestAuditLogList:

    def test_admin_lists_entries(self, api_client, admin_user, held_reservation):
        api_client.force_authenticate(user=admin_user)

        response = api_client.get(reverse('audit_log'))

        assert response.status_code == status.HTTP_200_OK
        assert response.data['count'] == AuditLog.objects.count()

    def test_filter_by_entity(self, api_client, admin_user, held_reservation):
        api_client.force_authenticate(user=admin_user)

        response = api_client.get(
            reverse('audit_log'),
            {'entity_type': 'reservation', 'entity_id': held_reservation.pk}
        )

        actions = sorted(entry['action'] for entry in response.data['results'])
        assert actions == ['created', 'status_changed']
        changed = next(e for e in response.data['results'] if e['action'] == 'status_changed')
        assert changed['old_data'] == {'status': 'pending_payment'}
        assert changed['new_data'] == {'status': 'deposit_held'}
        assert changed['actor_email'] == 'guest@test.com'

    def test_guest_is_forbidden(self, api_client, guest_user):
        api_client.force_authenticate(user=guest_user)

        response = api_client.get(reverse('audit_log'))

        assert response.status_code == status.HTTP_403_FORBIDDEN
