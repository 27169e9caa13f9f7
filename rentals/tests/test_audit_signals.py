"""
Tests for the signals that write the audit trail, and for capacity locking
under concurrent reservations.
"""

import threading
import uuid
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.db import connection
from django.db.utils import OperationalError
from django.test import TransactionTestCase

from rentals import compliance, reservations
from rentals.exceptions import CapacityExceeded, InvalidTransition
from rentals.models import AuditLog, PlatformSetting, Reservation, Space

User = get_user_model()


class AuditSignalTests(TransactionTestCase):
    """
    Lifecycle saves append AuditLog rows in the same transaction.

    Uses TransactionTestCase so that rolled back lifecycle changes are
    visible as rolled back audit rows.
    """

    def setUp(self):
        cache.clear()
        PlatformSetting.objects.create(key='deposit_percentage', value=Decimal('20.00'))
        PlatformSetting.objects.create(key='commission_percentage', value=Decimal('10.00'))

        self.guest = User.objects.create_user(
            username='audit_guest@test.com',
            email='audit_guest@test.com',
            password='testpass123',
            role='guest'
        )
        self.host = User.objects.create_user(
            username='audit_host@test.com',
            email='audit_host@test.com',
            password='testpass123',
            role='host'
        )
        compliance.accept_host_clause(self.host)

        self.space = Space.objects.create(
            host=self.host,
            title='Basement unit',
            total_sqm=Decimal('50.00'),
            available_sqm=Decimal('50.00'),
            price_per_sqm_month=Decimal('50.00'),
            status='published'
        )

    def reserve(self, area='10.00', key=None):
        offer = reservations.quote_for_space(self.space, Decimal(area), 'month', 2)
        return reservations.create_reservation(
            guest=self.guest,
            space_id=self.space.pk,
            area=Decimal(area),
            period_type='month',
            period_count=2,
            quoted=offer.as_dict(),
            method='card',
            idempotency_key=key or str(uuid.uuid4()),
            client_ip='192.168.1.20',
        )

    def entries_for(self, instance):
        return AuditLog.objects.filter(
            entity_type=instance._meta.model_name,
            entity_id=str(instance.pk)
        ).order_by('id')

    def test_reservation_creation_is_audited(self):
        """Creation and the deposit capture each leave one entry, attributed to the guest."""
        reservation = self.reserve()

        entries = list(self.entries_for(reservation))

        self.assertEqual([e.action for e in entries], ['created', 'status_changed'])
        self.assertEqual(entries[0].new_data, {'status': 'pending_payment'})
        self.assertIsNone(entries[0].old_data)
        self.assertEqual(entries[1].old_data, {'status': 'pending_payment'})
        self.assertEqual(entries[1].new_data, {'status': 'deposit_held'})
        for entry in entries:
            self.assertEqual(entry.actor, self.guest)
            self.assertEqual(entry.ip_address, '192.168.1.20')

    def test_payment_escrow_changes_are_audited(self):
        reservation = self.reserve()
        deposit = reservation.payments.get()

        actions = [(e.action, e.new_data) for e in self.entries_for(deposit)]

        self.assertEqual(actions, [
            ('created', {'escrow_status': 'pending'}),
            ('escrow_status_changed', {'escrow_status': 'held'}),
        ])

    def test_refund_is_audited(self):
        reservation = self.reserve()

        reservations.cancel_reservation(reservation.pk, self.guest, client_ip='192.168.1.21')

        last = self.entries_for(reservation).last()
        self.assertEqual(last.new_data, {'status': 'refunded'})
        self.assertEqual(last.ip_address, '192.168.1.21')

    def test_save_without_status_change_writes_nothing(self):
        reservation = self.reserve()
        before = self.entries_for(reservation).count()

        reservation = Reservation.objects.get(pk=reservation.pk)
        reservation.save()

        self.assertEqual(self.entries_for(reservation).count(), before)

    def test_rejected_transition_writes_nothing(self):
        reservation = self.reserve()
        reservations.cancel_reservation(reservation.pk, self.guest)
        before = AuditLog.objects.count()

        with self.assertRaises(InvalidTransition):
            reservations.cancel_reservation(reservation.pk, self.guest)

        self.assertEqual(AuditLog.objects.count(), before)

    def test_setting_change_is_audited(self):
        setting = PlatformSetting.objects.get(key='commission_percentage')
        setting.value = Decimal('15.00')
        setting.save()

        entry = AuditLog.objects.filter(action='setting_changed', entity_id=str(setting.pk)).order_by('-pk').first()
        self.assertEqual(entry.old_data, {'commission_percentage': '10.00'})
        self.assertEqual(entry.new_data, {'commission_percentage': '15.00'})
        self.assertIsNone(entry.actor)


class ConcurrentCapacityTests(TransactionTestCase):
    """
    Concurrent reservations for the same space never exceed its rentable area.
    """

    def setUp(self):
        cache.clear()
        PlatformSetting.objects.create(key='deposit_percentage', value=Decimal('20.00'))
        self.host = User.objects.create_user(
            username='lock_host@test.com',
            email='lock_host@test.com',
            password='testpass123',
            role='host'
        )
        compliance.accept_host_clause(self.host)
        self.space = Space.objects.create(
            host=self.host,
            title='Shared warehouse',
            total_sqm=Decimal('100.00'),
            available_sqm=Decimal('100.00'),
            price_per_sqm_month=Decimal('10.00'),
            status='published'
        )
        self.guests = [
            User.objects.create_user(
                username=f'lock_guest{i}@test.com',
                email=f'lock_guest{i}@test.com',
                password='testpass123',
                role='guest'
            )
            for i in range(4)
        ]

    def test_concurrent_reservations_respect_capacity(self):
        """Four guests ask for 40 m2 of 100 m2 at once; exactly two succeed."""
        area = Decimal('40.00')
        offer = reservations.quote_for_space(self.space, area, 'month', 1)
        outcomes = []
        lock = threading.Lock()
        start = threading.Barrier(len(self.guests))

        def reserve(guest):
            start.wait()
            try:
                reservations.create_reservation(
                    guest=guest,
                    space_id=self.space.pk,
                    area=area,
                    period_type='month',
                    period_count=1,
                    quoted=offer.as_dict(),
                    method='card',
                    idempotency_key=str(uuid.uuid4()),
                )
                result = 'ok'
            except CapacityExceeded:
                result = 'full'
            except OperationalError as e:
                result = f'error: {e}'
            finally:
                connection.close()
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=reserve, args=(guest,)) for guest in self.guests]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(sorted(outcomes), ['full', 'full', 'ok', 'ok'])
        self.assertEqual(self.space.reserved_sqm(), Decimal('80.00'))
