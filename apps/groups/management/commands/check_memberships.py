"""
Management command to audit clan and federation memberships.

Runs the membership invariant checks over every clan, federation and
affiliated user. With --repair, user back-references are re-aligned to
the groups' membership rows and dangling references are cleared.

Usage:
    python manage.py check_memberships
    python manage.py check_memberships --repair
    python manage.py check_memberships --kind clan
"""

from django.core.management.base import BaseCommand
from django.db.models import Q

from apps.accounts.models import User
from apps.groups.models import GroupKind
from apps.groups.services import GroupsServiceError
from apps.groups.services.invariants import ViolationKind, validate, validate_user
from apps.groups.services.repair import clear_dangling_reference, realign_members
from apps.groups.services.store import EntityStore, get_tier

REPAIRABLE_GROUP_KINDS = {
    ViolationKind.BACK_REFERENCE_MISMATCH,
    ViolationKind.ROLE_MISMATCH,
}


class Command(BaseCommand):
    help = 'Check clan and federation memberships for broken invariants'

    def add_arguments(self, parser):
        parser.add_argument(
            '--repair',
            action='store_true',
            help='Re-align user back-references to the membership rows',
        )
        parser.add_argument(
            '--kind',
            choices=GroupKind.values,
            help='Only check clans or only federations',
        )

    def handle(self, *args, **options):
        repair = options['repair']
        kinds = [options['kind']] if options['kind'] else GroupKind.values
        store = EntityStore()
        found = 0
        repaired = 0

        for kind in kinds:
            tier = get_tier(kind)

            for group_id in tier.model.objects.order_by('created_at', 'id').values_list('id', flat=True):
                group = store.find_group(kind, group_id)
                if group is None:
                    continue
                parent = store.find_group(GroupKind.FEDERATION, group.parent_id) if group.parent_id is not None else None
                violations = validate(group, parent, allow_empty=True)
                if not violations:
                    continue

                found += len(violations)
                for violation in violations:
                    self.stdout.write(f'  - {violation}')

                if repair and any(v.kind in REPAIRABLE_GROUP_KINDS for v in violations):
                    try:
                        fixed = realign_members(kind=kind, group_id=group_id, store=store)
                    except GroupsServiceError as e:
                        self.stdout.write(self.style.ERROR(f'  ! {kind} {group_id}: {e}'))
                        continue
                    repaired += len(fixed)

            affiliated = User.objects.filter(
                Q(**{f'{tier.group_field}__isnull': False}) | Q(**{f'{tier.role_field}__isnull': False})
            ).order_by('created_at', 'id').values_list('id', flat=True)

            for user_id in affiliated:
                user = store.load_user(user_id)
                group_id = user.group_id(kind)
                group = store.find_group(kind, group_id) if group_id is not None else None
                violations = validate_user(user, kind, group)
                if not violations:
                    continue

                found += len(violations)
                for violation in violations:
                    self.stdout.write(f'  - {violation}')

                if repair:
                    try:
                        if clear_dangling_reference(kind=kind, user_id=user_id, store=store):
                            repaired += 1
                    except GroupsServiceError as e:
                        self.stdout.write(self.style.ERROR(f'  ! user {user_id}: {e}'))

        if found == 0:
            self.stdout.write(
                self.style.SUCCESS('No membership problems found. All good!')
            )
            return

        self.stdout.write(self.style.WARNING(f'\nFound {found} membership problem(s).'))

        if not repair:
            self.stdout.write(
                self.style.WARNING('Run with --repair to re-align back-references.')
            )
            return

        self.stdout.write(
            self.style.SUCCESS(f'Repaired {repaired} user record(s).')
        )
