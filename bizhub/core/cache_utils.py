"""
Cached role permission matrix
The matrix maps each role to the set of "ACTION:RESOURCE" pairs it holds
"""
from django.core.cache import cache
import logging

logger = logging.getLogger(__name__)

ROLE_MATRIX_CACHE_KEY = 'role_permission_matrix'
ROLE_MATRIX_CACHE_TTL = 600  # 10 minutes


def permission_key(action, resource):
    return f"{action}:{resource}"


def build_role_matrix():
    """Read every RolePermission row into {role: {"ACTION:RESOURCE", ...}}"""
    from .models import RolePermission

    matrix = {}
    rows = RolePermission.objects.values_list('role', 'permission__action', 'permission__resource_type')
    for role, action, resource in rows:
        matrix.setdefault(role, set()).add(permission_key(action, resource))
    return matrix


def get_role_matrix():
    matrix = cache.get(ROLE_MATRIX_CACHE_KEY)
    if matrix is not None:
        logger.debug("Cache HIT for role permission matrix")
        return matrix

    logger.debug("Cache MISS for role permission matrix")
    matrix = build_role_matrix()
    cache.set(ROLE_MATRIX_CACHE_KEY, matrix, ROLE_MATRIX_CACHE_TTL)
    return matrix


def invalidate_role_matrix():
    try:
        cache.delete(ROLE_MATRIX_CACHE_KEY)
        logger.info("Invalidated role permission matrix cache")
    except Exception as e:
        logger.warning(f"Could not invalidate role permission matrix: {str(e)}")


def has_role_permission(role, action, resource):
    """True when a RolePermission grants ``action`` on ``resource`` to ``role``"""
    if not role:
        return False
    return permission_key(action, resource) in get_role_matrix().get(role, set())


def role_permissions(role):
    """Sorted "ACTION:RESOURCE" pairs held by a role"""
    return sorted(get_role_matrix().get(role, set()))
