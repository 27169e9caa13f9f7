import datetime
from io import StringIO

import pytest
from django.core.management import call_command
from django.utils import timezone

from rentals import contracts
from rentals.models import Contract, Reservation


def run_command(**options):
    out = StringIO()
    call_command('sync_contract_lifecycle', stdout=out, stderr=StringIO(), **options)
    return out.getvalue()


def shift_dates(contract, start_offset, end_offset):
    today = timezone.localdate()
    Contract.objects.filter(pk=contract.pk).update(
        start_date=today + datetime.timedelta(days=start_offset),
        end_date=today + datetime.timedelta(days=end_offset),
    )


@pytest.mark.django_db
class TestSyncContractLifecycleCommand:

    def test_activates_contract_starting_today(self, signed_contract):
        output = run_command()

        signed_contract.refresh_from_db()
        assert signed_contract.status == 'active'
        assert 'Activated 1 contracts.' in output
        assert 'Completed 0 contracts.' in output
        assert 'Contract lifecycle synchronized.' in output

    def test_future_contract_is_left_signed(self, signed_contract):
        shift_dates(signed_contract, 5, 65)

        output = run_command()

        signed_contract.refresh_from_db()
        assert signed_contract.status == 'signed'
        assert 'Activated 0 contracts.' in output

    def test_elapsed_contract_is_completed(self, signed_contract, guest_user):
        balance = contracts.pay_balance(signed_contract.pk, guest_user, 'qr', 'bal-1')
        shift_dates(signed_contract, -70, -10)

        output = run_command()

        signed_contract.refresh_from_db()
        balance.refresh_from_db()
        assert signed_contract.status == 'completed'
        assert Reservation.objects.get(pk=signed_contract.reservation_id).status == 'completed'
        assert balance.escrow_status == 'released'
        assert 'Completed 1 contracts.' in output

    def test_contract_ending_today_is_not_completed(self, signed_contract):
        shift_dates(signed_contract, -60, 0)

        run_command()

        signed_contract.refresh_from_db()
        assert signed_contract.status == 'active'

    def test_dry_run_does_not_change_data(self, signed_contract):
        output = run_command(dry_run=True)

        signed_contract.refresh_from_db()
        assert signed_contract.status == 'signed'
        assert f'[DRY-RUN] Contract {signed_contract.pk}: signed -> active' in output
        assert 'Dry run completed. No changes saved.' in output

    def test_activate_only_flag(self, signed_contract):
        shift_dates(signed_contract, -70, -10)

        run_command(activate_only=True)

        signed_contract.refresh_from_db()
        assert signed_contract.status == 'active'

    def test_complete_only_flag(self, signed_contract):
        shift_dates(signed_contract, -70, -10)

        output = run_command(complete_only=True)

        signed_contract.refresh_from_db()
        assert signed_contract.status == 'signed'
        assert 'Activating' not in output
        assert 'Completed 0 contracts.' in output

    def test_draft_contracts_are_ignored(self, draft_contract):
        shift_dates(draft_contract, -70, -10)

        output = run_command(batch_size=1)

        draft_contract.refresh_from_db()
        assert draft_contract.status == 'draft'
        assert 'Activated 0 contracts.' in output
