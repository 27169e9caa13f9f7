# Sync Contract Lifecycle Management Command
from django.core.management.base import BaseCommand
from django.utils import timezone

from rentals import contracts
from rentals.exceptions import LifecycleError
from rentals.models import Contract


class Command(BaseCommand):
    help = 'Activates signed contracts whose start date arrived and completes contracts whose end date passed.'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='List the contracts that would change without saving anything.',
        )
        parser.add_argument(
            '--activate-only',
            action='store_true',
            help='Only move signed contracts to active.',
        )
        parser.add_argument(
            '--complete-only',
            action='store_true',
            help='Only complete active contracts past their end date.',
        )
        parser.add_argument(
            '--batch-size',
            type=int,
            default=500,
            help='Chunk size used when iterating contracts.',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        batch_size = options['batch_size']
        today = timezone.localdate()

        if not options['complete_only']:
            self.activate_contracts(today, dry_run, batch_size)
        if not options['activate_only']:
            self.complete_contracts(today, dry_run, batch_size)

        if dry_run:
            self.stdout.write(self.style.SUCCESS('Dry run completed. No changes saved.'))
        else:
            self.stdout.write(self.style.SUCCESS('Contract lifecycle synchronized.'))

    def activate_contracts(self, today, dry_run, batch_size):
        self.stdout.write('Activating signed contracts...')
        due = Contract.objects.filter(status='signed', start_date__lte=today).values_list('pk', flat=True)
        count = 0

        for contract_id in due.iterator(chunk_size=batch_size):
            if dry_run:
                self.stdout.write(f'  [DRY-RUN] Contract {contract_id}: signed -> active')
                count += 1
                continue
            if contracts.activate_contract(contract_id, today=today):
                count += 1

        self.stdout.write(f'Activated {count} contracts.')

    def complete_contracts(self, today, dry_run, batch_size):
        self.stdout.write('Completing elapsed contracts...')
        due = Contract.objects.filter(status='active', end_date__lt=today).values_list('pk', flat=True)
        count = 0
        failed = 0

        for contract_id in due.iterator(chunk_size=batch_size):
            if dry_run:
                self.stdout.write(f'  [DRY-RUN] Contract {contract_id}: active -> completed')
                count += 1
                continue
            try:
                contracts.complete_contract(contract_id)
            except LifecycleError as e:
                # Contract changed since it was listed; the next run picks it up again
                failed += 1
                self.stderr.write(f'  Contract {contract_id} skipped: {e.detail}')
                continue
            count += 1

        self.stdout.write(f'Completed {count} contracts.')
        if failed:
            self.stdout.write(self.style.WARNING(f'{failed} contracts could not be completed.'))
