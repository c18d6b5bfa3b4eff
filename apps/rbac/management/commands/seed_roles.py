"""
Management command to provision the system roles.

Creates the global system roles (admin, operation_manager, accountant, ...)
with their default permission sets, or resyncs them when they exist.
Idempotent and safe to re-run after a catalog change.
"""
from django.core.management.base import BaseCommand
from apps.rbac.engine import get_engine
from apps.rbac.models import Permission, User, UserRoleAssignment


class Command(BaseCommand):
    help = 'Provision system roles with their default permissions (idempotent)'

    def add_arguments(self, parser):
        parser.add_argument(
            '--assign-defaults',
            action='store_true',
            help='Assign the default role to every company user without any role assignment',
        )

    def handle(self, *args, **options):
        store = get_engine().role_store

        Permission.objects.sync_from_catalog()
        created = store.provision_system_roles()
        for name in created:
            self.stdout.write(self.style.SUCCESS(f'✓ Created role: {name}'))
        self.stdout.write(
            self.style.SUCCESS(f'\n✓ System roles provisioned: {len(created)} created')
        )

        if options['assign_defaults']:
            assigned = 0
            holders = UserRoleAssignment.objects.values_list('user_id', flat=True)
            users = User.objects.filter(company__isnull=False).exclude(id__in=holders)
            for user in users:
                if store.assign_default_role(user) is not None:
                    assigned += 1
            self.stdout.write(self.style.SUCCESS(f'✓ Default roles assigned to {assigned} users'))
