import django_filters
from django.db.models import Q
from .models import AuditLog, User


class AuditLogFilter(django_filters.FilterSet):
    """Filters for the audit log listing"""
    user = django_filters.NumberFilter(field_name='user_id')
    action = django_filters.CharFilter(field_name='action', lookup_expr='iexact')
    resource = django_filters.CharFilter(field_name='resource', lookup_expr='iexact')
    resource_id = django_filters.CharFilter(field_name='resource_id')
    date_from = django_filters.IsoDateTimeFilter(field_name='created_at', lookup_expr='gte')
    date_to = django_filters.IsoDateTimeFilter(field_name='created_at', lookup_expr='lte')

    class Meta:
        model = AuditLog
        fields = ['user', 'action', 'resource', 'resource_id', 'date_from', 'date_to']


class UserFilter(django_filters.FilterSet):
    search = django_filters.CharFilter(method='filter_search', label='Search')
    role = django_filters.CharFilter(field_name='role')
    is_active = django_filters.BooleanFilter(field_name='is_active')

    class Meta:
        model = User
        fields = ['search', 'role', 'is_active']

    def filter_search(self, queryset, name, value):
        if not value:
            return queryset
        return queryset.filter(
            Q(email__icontains=value) |
            Q(name__icontains=value) |
            Q(phone__icontains=value)
        )
