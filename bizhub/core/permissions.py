"""
Role-based permission check

Every business endpoint asks ``check_permission`` (usually through the
``require_permission`` decorator) whether the requesting user may perform an
action on a resource type, then narrows its queries with ``scope_to_company``.
"""
import logging
from functools import wraps

from django.contrib.auth import get_user_model
from rest_framework import status
from rest_framework.response import Response

from .cache_utils import has_role_permission
from .models import SUPER_ADMIN, COMPANY_ADMIN, Company, Permission
from .utils import create_audit_log, error_response, not_found, parse_int

logger = logging.getLogger(__name__)

User = get_user_model()

# HTTP method -> permission action
METHOD_ACTIONS = {
    'GET': Permission.READ,
    'HEAD': Permission.READ,
    'OPTIONS': Permission.READ,
    'POST': Permission.CREATE,
    'PUT': Permission.UPDATE,
    'PATCH': Permission.UPDATE,
    'DELETE': Permission.DELETE,
}


class PermissionResult:
    """Outcome of a permission check"""

    def __init__(self, allowed, status_code=status.HTTP_200_OK, error=None, user=None):
        self.allowed = allowed
        self.status_code = status_code
        self.error = error
        self.user = user

    @property
    def role(self):
        return getattr(self.user, 'role', None)

    @property
    def company_id(self):
        return getattr(self.user, 'company_id', None)

    @property
    def is_super_admin(self):
        return self.role == SUPER_ADMIN

    def response(self):
        return Response({'error': self.error}, status=self.status_code)

    def __bool__(self):
        return self.allowed

    def __repr__(self):
        return f"<PermissionResult allowed={self.allowed} status={self.status_code} role={self.role}>"


def check_permission(request, action, resource, allow_self=False, target_id=None):
    """
    Decide whether ``request.user`` may perform ``action`` on ``resource``.

    Rules, first match wins:
      1. no authenticated user -> 401
      2. SUPER_ADMIN -> allowed
      3. ``allow_self`` on a USER resource whose id is the user's own -> allowed
      4. COMPANY_ADMIN on USER: create is allowed, other actions when the
         target user belongs to the admin's company
      5. a RolePermission grants (role, action, resource) -> allowed
      6. otherwise 403, recorded as an ACCESS_DENIED audit entry
    """
    user = getattr(request, 'user', None)
    if user is None or not user.is_authenticated:
        return PermissionResult(False, status.HTTP_401_UNAUTHORIZED, 'Not authenticated')

    if user.role == SUPER_ADMIN:
        return PermissionResult(True, user=user)

    if allow_self and resource == 'USER' and target_id is not None and str(target_id) == str(user.pk):
        return PermissionResult(True, user=user)

    if user.role == COMPANY_ADMIN and resource == 'USER' and user.company_id:
        if action == Permission.CREATE:
            return PermissionResult(True, user=user)
        target_pk = parse_int(target_id)
        if target_pk is not None and User.objects.filter(pk=target_pk, company_id=user.company_id).exists():
            return PermissionResult(True, user=user)

    if has_role_permission(user.role, action, resource):
        return PermissionResult(True, user=user)

    create_audit_log(
        request=request,
        action='ACCESS_DENIED',
        resource=resource,
        resource_id=target_id,
        details={
            'requested_action': action,
            'request_url': request.build_absolute_uri() if hasattr(request, 'build_absolute_uri') else None,
            'method': getattr(request, 'method', None),
        },
    )
    logger.info(f"Access denied: user={user.pk} role={user.role} action={action} resource={resource} target={target_id}")
    return PermissionResult(False, status.HTTP_403_FORBIDDEN, 'Access denied', user=user)


def require_permission(resource, action=None, allow_self=False, target_kwarg=None):
    """
    Decorator for DRF function views.

    ``action`` defaults to the action matching the HTTP method. ``target_kwarg``
    names the URL kwarg holding the target id for allow-self and company admin
    checks. The result is stored on ``request.permission``.

    Usage:
        @api_view(['GET', 'POST'])
        @permission_classes([IsAuthenticated])
        @require_permission('PROJECT')
        def project_list_create(request):
            ...
    """
    def decorator(view_func):
        @wraps(view_func)
        def wrapper(request, *args, **kwargs):
            requested_action = action or METHOD_ACTIONS.get(request.method, Permission.READ)
            target_id = kwargs.get(target_kwarg) if target_kwarg else None
            result = check_permission(
                request, requested_action, resource,
                allow_self=allow_self, target_id=target_id,
            )
            if not result.allowed:
                return result.response()
            request.permission = result
            return view_func(request, *args, **kwargs)
        return wrapper
    return decorator


def requested_company_id(request):
    return parse_int(request.query_params.get('company_id'))


def scope_to_company(queryset, request, field='company'):
    """
    Restrict ``queryset`` to the companies the user may see.

    Super admins see every row, narrowed by ``?company_id=`` when given.
    Everyone else only sees their own company; the query parameter never
    widens that. Users without a company see nothing.
    """
    user = request.user
    lookup = f'{field}_id'
    if user.role == SUPER_ADMIN:
        company_id = requested_company_id(request)
        if company_id is not None:
            return queryset.filter(**{lookup: company_id})
        return queryset
    if not user.company_id:
        return queryset.none()
    return queryset.filter(**{lookup: user.company_id})


def can_access_company(user, company_id):
    if user.role == SUPER_ADMIN:
        return True
    return company_id is not None and user.company_id is not None and user.company_id == company_id


def ensure_same_company(request, company_id, message='You do not have access to this resource'):
    """Return a 403 response when the user may not touch rows of ``company_id``, else None"""
    if can_access_company(request.user, company_id):
        return None
    create_audit_log(
        request=request,
        action='ACCESS_DENIED',
        resource='COMPANY',
        resource_id=company_id,
        details={'reason': 'cross_company', 'method': request.method},
    )
    return Response({'error': message}, status=status.HTTP_403_FORBIDDEN)


def resolve_company_id(request, value=None):
    """
    Company a new row should belong to, as ``(company_id, error_response)``.

    Super admins may name any existing company (``value``), everyone else
    always writes into their own company.
    """
    user = request.user
    if user.role == SUPER_ADMIN and value not in (None, ''):
        company_id = parse_int(value)
        if company_id is None or not Company.objects.filter(pk=company_id).exists():
            return None, not_found('Company')
        return company_id, None
    if user.company_id is None:
        return None, error_response('Company is required')
    return user.company_id, None


def deny_unless_super_admin(request, resource='OTHER', action=Permission.CREATE):
    """Return a 403 response (and audit it) unless the user is a super admin"""
    if request.user.role == SUPER_ADMIN:
        return None
    create_audit_log(
        request=request,
        action='ACCESS_DENIED',
        resource=resource,
        details={'requested_action': action, 'method': request.method, 'reason': 'super_admin_only'},
    )
    return Response({'error': 'Only super administrators can perform this action'}, status=status.HTTP_403_FORBIDDEN)


def get_company_object(request, queryset, pk, label, company_attr='company_id'):
    """
    Fetch row ``pk`` and check the user may access its company.

    ``company_attr`` is a dotted path to the company id (``project.company_id``
    for rows owned through a project). Returns ``(obj, None)`` or
    ``(None, error_response)``.
    """
    obj = queryset.filter(pk=pk).first()
    if obj is None:
        return None, not_found(label)
    company_id = obj
    for attr in company_attr.split('.'):
        company_id = getattr(company_id, attr, None)
    denied = ensure_same_company(request, company_id)
    if denied:
        return None, denied
    return obj, None
