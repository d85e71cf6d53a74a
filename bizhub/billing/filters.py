import django_filters
from django.db.models import Q
from .models import Quote, Invoice, Contract, Payment


class QuoteFilter(django_filters.FilterSet):
    search = django_filters.CharFilter(field_name='reference', lookup_expr='icontains')
    status = django_filters.CharFilter(field_name='status', lookup_expr='iexact')
    project = django_filters.NumberFilter(field_name='project_id')

    class Meta:
        model = Quote
        fields = ['search', 'status', 'project']


class InvoiceFilter(django_filters.FilterSet):
    search = django_filters.CharFilter(method='filter_search', label='Search')
    status = django_filters.CharFilter(field_name='status', lookup_expr='iexact')
    client = django_filters.NumberFilter(field_name='client_id')
    date_from = django_filters.DateFilter(field_name='issue_date', lookup_expr='gte')
    date_to = django_filters.DateFilter(field_name='issue_date', lookup_expr='lte')

    class Meta:
        model = Invoice
        fields = ['search', 'status', 'client', 'date_from', 'date_to']

    def filter_search(self, queryset, name, value):
        if not value:
            return queryset
        return queryset.filter(
            Q(invoice_number__icontains=value) |
            Q(client__name__icontains=value)
        )


class ContractFilter(django_filters.FilterSet):
    search = django_filters.CharFilter(field_name='title', lookup_expr='icontains')
    status = django_filters.CharFilter(field_name='status', lookup_expr='iexact')
    project = django_filters.NumberFilter(field_name='project_id')

    class Meta:
        model = Contract
        fields = ['search', 'status', 'project']


class PaymentFilter(django_filters.FilterSet):
    search = django_filters.CharFilter(method='filter_search', label='Search')
    payment_type = django_filters.CharFilter(field_name='payment_type', lookup_expr='iexact')
    status = django_filters.CharFilter(field_name='status', lookup_expr='iexact')
    client = django_filters.NumberFilter(field_name='client_id')
    project = django_filters.NumberFilter(field_name='project_id')
    provider = django_filters.NumberFilter(field_name='provider_id')
    start_date = django_filters.DateFilter(field_name='date', lookup_expr='gte')
    end_date = django_filters.DateFilter(field_name='date', lookup_expr='lte')

    class Meta:
        model = Payment
        fields = ['search', 'payment_type', 'status', 'client', 'project', 'provider', 'start_date', 'end_date']

    def filter_search(self, queryset, name, value):
        if not value:
            return queryset
        return queryset.filter(
            Q(reference__icontains=value) |
            Q(description__icontains=value)
        )
