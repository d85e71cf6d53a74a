"""Shared helpers: audit logging, pagination and error responses"""
import logging

from django.core.paginator import Paginator
from rest_framework import status
from rest_framework.response import Response

from .models import AuditLog

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


def get_client_ip(request):
    """Extract client IP address from request"""
    if not request or not hasattr(request, 'META'):
        return None
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        ip = x_forwarded_for.split(',')[0].strip()
    else:
        ip = request.META.get('REMOTE_ADDR')
    return ip or None


def create_audit_log(request=None, action=None, resource=None, resource_id=None,
                     details=None, user=None, company_id=None):
    """
    Create an audit log entry

    Args:
        request: request object (for user and IP), optional if user is provided
        action: CREATE, READ, UPDATE, DELETE, LIST, CONVERT, ACCESS_DENIED...
        resource: resource type acted upon (PROJECT, INVOICE...)
        resource_id: id of the object, if any
        details: JSON-serialisable dict with extra context
        user: optional user override (defaults to request.user)
        company_id: optional company override (defaults to the user's company)

    Never raises: a failed audit write must not fail the request.
    """
    try:
        audit_user = None
        if user is not None:
            audit_user = user
        elif request is not None and hasattr(request, 'user'):
            audit_user = request.user
        if audit_user is not None and not audit_user.is_authenticated:
            audit_user = None

        if not action or not resource:
            logger.warning(f"Audit log skipped: missing required fields (action={action}, resource={resource})")
            return None

        if company_id is None and audit_user is not None:
            company_id = audit_user.company_id

        return AuditLog.objects.create(
            user=audit_user,
            company_id=company_id,
            action=action,
            resource=resource,
            resource_id=str(resource_id) if resource_id is not None else None,
            details=details or {},
            ip_address=get_client_ip(request) if request is not None else None,
        )
    except Exception as e:
        logger.error(f"Failed to create audit log: {str(e)}")
        return None


def error_response(message, status_code=status.HTTP_400_BAD_REQUEST, **extra):
    """JSON error body used by every endpoint: {'error': message, ...}"""
    body = {'error': message}
    body.update(extra)
    return Response(body, status=status_code)


def validation_error_response(errors, message='Invalid data'):
    return Response({'error': message, 'details': errors}, status=status.HTTP_400_BAD_REQUEST)


def not_found(thing):
    return error_response(f'{thing} not found', status.HTTP_404_NOT_FOUND)


def parse_int(value, default=None):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_bool(value):
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


def paginate(request, queryset, serializer_class, context=None, default_page_size=DEFAULT_PAGE_SIZE,
             transform=None):
    """
    Paginate a queryset with Django's Paginator and serialize the current page.

    Reads ``page`` and ``page_size`` (alias ``limit``) from the query string.
    ``transform`` may post-process the serialized list before it is returned.
    """
    page_number = max(1, parse_int(request.query_params.get('page'), 1))
    page_size = parse_int(
        request.query_params.get('page_size', request.query_params.get('limit')),
        default_page_size,
    )
    page_size = max(1, min(page_size, MAX_PAGE_SIZE))

    paginator = Paginator(queryset, page_size)
    page = paginator.get_page(page_number)

    serializer_context = {'request': request}
    if context:
        serializer_context.update(context)
    results = serializer_class(page.object_list, many=True, context=serializer_context).data
    if transform is not None:
        results = transform(results)

    return {
        'results': results,
        'count': paginator.count,
        'page': page.number,
        'page_size': page_size,
        'total_pages': paginator.num_pages,
        'next': page.next_page_number() if page.has_next() else None,
        'previous': page.previous_page_number() if page.has_previous() else None,
    }
