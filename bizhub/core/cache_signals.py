"""
Cache invalidation signals
Drop the cached role permission matrix whenever grants change
"""
from django.db import transaction
from django.db.models.signals import post_save, post_delete
from django.dispatch import receiver
import logging

from .cache_utils import invalidate_role_matrix
from .models import Permission, RolePermission

logger = logging.getLogger(__name__)


@receiver([post_save, post_delete], sender=Permission)
@receiver([post_save, post_delete], sender=RolePermission)
def invalidate_role_matrix_cache(sender, instance, **kwargs):
    """Invalidate now and again once the transaction commits"""
    logger.debug(f"Role permission matrix invalidated by {sender.__name__} change")
    invalidate_role_matrix()
    transaction.on_commit(invalidate_role_matrix)
