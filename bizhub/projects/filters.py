import django_filters
from django.db.models import Q
from .models import Project, Task


class ProjectFilter(django_filters.FilterSet):
    search = django_filters.CharFilter(method='filter_search', label='Search')
    status = django_filters.CharFilter(field_name='status', lookup_expr='iexact')
    client = django_filters.NumberFilter(field_name='client_id')
    owner = django_filters.NumberFilter(field_name='owner_id')
    start_after = django_filters.DateFilter(field_name='start_date', lookup_expr='gte')
    end_before = django_filters.DateFilter(field_name='end_date', lookup_expr='lte')

    class Meta:
        model = Project
        fields = ['search', 'status', 'client', 'owner', 'start_after', 'end_before']

    def filter_search(self, queryset, name, value):
        if not value:
            return queryset
        return queryset.filter(
            Q(name__icontains=value) |
            Q(description__icontains=value) |
            Q(client__name__icontains=value)
        )


class TaskFilter(django_filters.FilterSet):
    search = django_filters.CharFilter(field_name='title', lookup_expr='icontains')
    project = django_filters.NumberFilter(field_name='project_id')
    status = django_filters.CharFilter(field_name='status', lookup_expr='iexact')
    priority = django_filters.CharFilter(field_name='priority', lookup_expr='iexact')
    assigned_to = django_filters.NumberFilter(field_name='assigned_to_id')
    parent = django_filters.NumberFilter(field_name='parent_id')
    top_level = django_filters.BooleanFilter(field_name='parent', lookup_expr='isnull')
    due_before = django_filters.DateFilter(field_name='due_date', lookup_expr='lte')

    class Meta:
        model = Task
        fields = ['search', 'project', 'status', 'priority', 'assigned_to', 'parent', 'top_level', 'due_before']
