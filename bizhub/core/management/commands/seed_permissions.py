from django.core.management.base import BaseCommand
from django.db import transaction

from bizhub.core.cache_utils import invalidate_role_matrix
from bizhub.core.models import Permission, RolePermission, ADMIN, COMPANY_ADMIN, MANAGER, EMPLOYEE, USER

ACTIONS = [action for action, _label in Permission.ACTION_CHOICES]
RESOURCES = [resource for resource, _label in Permission.RESOURCE_CHOICES]

BUSINESS_RESOURCES = ['CLIENT', 'PROJECT', 'TASK', 'PAYMENT', 'INVOICE', 'PRODUCT', 'LEAD', 'OPPORTUNITY', 'OTHER']


def _grid(resources, actions=None):
    return [(action, resource) for resource in resources for action in (actions or ACTIONS)]


# Role -> (action, resource) pairs. SUPER_ADMIN needs no rows, it bypasses every check.
DEFAULT_ROLE_MATRIX = {
    ADMIN: (
        _grid([resource for resource in RESOURCES if resource != 'COMPANY'])
        + _grid(['COMPANY'], ['READ', 'UPDATE'])
    ),
    COMPANY_ADMIN: (
        _grid(BUSINESS_RESOURCES)
        + _grid(['USER'], ['READ', 'UPDATE', 'DELETE'])
        + _grid(['COMPANY'], ['READ', 'UPDATE'])
    ),
    MANAGER: (
        _grid(['CLIENT', 'PROJECT', 'TASK', 'LEAD', 'OPPORTUNITY', 'OTHER'])
        + _grid(['INVOICE', 'PAYMENT', 'PRODUCT'], ['CREATE', 'READ', 'UPDATE'])
        + _grid(['USER', 'COMPANY'], ['READ'])
    ),
    EMPLOYEE: (
        _grid(['CLIENT', 'PROJECT', 'LEAD', 'OPPORTUNITY', 'PRODUCT', 'INVOICE', 'USER', 'COMPANY'], ['READ'])
        + _grid(['TASK', 'OTHER'], ['CREATE', 'READ', 'UPDATE'])
    ),
    USER: (
        _grid(['PROJECT', 'TASK', 'CLIENT'], ['READ'])
        + _grid(['TASK'], ['UPDATE'])
    ),
}


def seed_permissions(reset=False):
    """
    Create the full permission grid and the default role matrix.

    Returns (permissions_created, grants_created). With ``reset`` the existing
    role grants are removed first.
    """
    permissions_created = 0
    grants_created = 0
    with transaction.atomic():
        permissions = {}
        for resource in RESOURCES:
            for action in ACTIONS:
                permission, created = Permission.objects.get_or_create(action=action, resource_type=resource)
                permissions[(action, resource)] = permission
                permissions_created += int(created)

        if reset:
            RolePermission.objects.all().delete()

        for role, pairs in DEFAULT_ROLE_MATRIX.items():
            for pair in pairs:
                _grant, created = RolePermission.objects.get_or_create(role=role, permission=permissions[pair])
                grants_created += int(created)

    invalidate_role_matrix()
    return permissions_created, grants_created


class Command(BaseCommand):
    help = 'Create every (action, resource) permission and the default role permission matrix'

    def add_arguments(self, parser):
        parser.add_argument(
            '--reset',
            action='store_true',
            help='Remove existing role grants before seeding the defaults',
        )

    def handle(self, *args, **options):
        permissions_created, grants_created = seed_permissions(reset=options['reset'])

        for role, pairs in DEFAULT_ROLE_MATRIX.items():
            self.stdout.write(f'  {role}: {len(pairs)} permissions')

        self.stdout.write(self.style.SUCCESS(
            f'\nCompleted: {permissions_created} permissions created, {grants_created} role grants created'
        ))
