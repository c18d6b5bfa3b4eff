"""
Management command to sync the permissions table with the catalog.

Creates a row for every catalog action, refreshes labels and categories,
and removes rows for actions no longer in the catalog. Idempotent; also
runs automatically after ``migrate``.
"""
from django.core.management.base import BaseCommand
from apps.rbac.catalog import get_permissions_by_category
from apps.rbac.models import Permission


class Command(BaseCommand):
    help = 'Sync the permissions table with the permission catalog (idempotent)'

    def handle(self, *args, **options):
        self.stdout.write('Syncing permission catalog...\n')

        created, updated, removed = Permission.objects.sync_from_catalog()

        self.stdout.write(
            self.style.SUCCESS(
                f'✓ Sync complete: {created} created, {updated} refreshed, {removed} removed'
            )
        )

        # Display summary by category
        self.stdout.write('\nPermissions by category:')
        for category, actions in get_permissions_by_category().items():
            self.stdout.write(f'  {category}: {len(actions)}')
