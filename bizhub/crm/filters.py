import django_filters
from django.db.models import Q
from .models import Client, Lead, Opportunity, Activity


class ClientFilter(django_filters.FilterSet):
    search = django_filters.CharFilter(method='filter_search', label='Search')

    class Meta:
        model = Client
        fields = ['search']

    def filter_search(self, queryset, name, value):
        if not value:
            return queryset
        return queryset.filter(
            Q(name__icontains=value) |
            Q(email__icontains=value) |
            Q(phone__icontains=value)
        )


class LeadFilter(django_filters.FilterSet):
    search = django_filters.CharFilter(method='filter_search', label='Search')
    status = django_filters.CharFilter(field_name='status', lookup_expr='iexact')
    source = django_filters.CharFilter(field_name='source', lookup_expr='iexact')
    unconverted = django_filters.BooleanFilter(method='filter_unconverted', label='Unconverted')

    class Meta:
        model = Lead
        fields = ['search', 'status', 'source', 'unconverted']

    def filter_search(self, queryset, name, value):
        if not value:
            return queryset
        return queryset.filter(
            Q(name__icontains=value) |
            Q(email__icontains=value) |
            Q(organisation__icontains=value)
        )

    def filter_unconverted(self, queryset, name, value):
        if value:
            return queryset.filter(converted_client__isnull=True).exclude(status='CONVERTED')
        return queryset


class OpportunityFilter(django_filters.FilterSet):
    status = django_filters.CharFilter(field_name='status', lookup_expr='iexact')
    pipeline = django_filters.NumberFilter(field_name='pipeline_id')
    stage = django_filters.NumberFilter(field_name='stage_id')
    lead = django_filters.NumberFilter(field_name='lead_id')

    class Meta:
        model = Opportunity
        fields = ['status', 'pipeline', 'stage', 'lead']


class ActivityFilter(django_filters.FilterSet):
    type = django_filters.CharFilter(field_name='type', lookup_expr='iexact')
    status = django_filters.CharFilter(field_name='status', lookup_expr='iexact')
    related_to = django_filters.CharFilter(field_name='related_to', lookup_expr='iexact')
    related_id = django_filters.NumberFilter(field_name='related_id')
    user = django_filters.NumberFilter(field_name='user_id')
    date_from = django_filters.IsoDateTimeFilter(field_name='scheduled_at', lookup_expr='gte')
    date_to = django_filters.IsoDateTimeFilter(field_name='scheduled_at', lookup_expr='lte')

    class Meta:
        model = Activity
        fields = ['type', 'status', 'related_to', 'related_id', 'user', 'date_from', 'date_to']
