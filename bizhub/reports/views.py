import logging
from datetime import datetime, timedelta
from decimal import Decimal

from django.db.models import Sum, Count, DecimalField
from django.db.models.functions import TruncMonth
from django.utils import timezone
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from bizhub.billing.models import Invoice, Payment
from bizhub.billing.views import scope_payments
from bizhub.core.permissions import require_permission, scope_to_company
from bizhub.core.utils import error_response

logger = logging.getLogger('bizhub.reports')

# Payments flowing into the company; everything else is money paid out
INCOMING_PAYMENT_TYPES = ['CLIENT']
OUTSTANDING_INVOICE_STATUSES = ['SENT', 'PARTIAL', 'OVERDUE']
SETTLED_PAYMENT_STATUSES = ['COMPLETE', 'PARTIAL']


def _parse_period(request):
    date_from = request.query_params.get('date_from', None)
    date_to = request.query_params.get('date_to', None)

    # Default to last 30 days if no dates provided
    if not date_from:
        date_from = (timezone.now() - timedelta(days=30)).date()
    else:
        date_from = datetime.strptime(date_from, '%Y-%m-%d').date()

    if not date_to:
        date_to = timezone.now().date()
    else:
        date_to = datetime.strptime(date_to, '%Y-%m-%d').date()

    return date_from, date_to


def _total(queryset, field):
    return queryset.aggregate(total=Sum(field, output_field=DecimalField()))['total'] or Decimal('0.00')


def _grouped(queryset, field, amount_field):
    rows = queryset.values(field).annotate(
        total=Sum(amount_field, output_field=DecimalField()),
        count=Count('id'),
    ).order_by(field)
    return [{field: row[field], 'total': float(row['total'] or 0), 'count': row['count']} for row in rows]


@api_view(['GET'])
@permission_classes([IsAuthenticated])
@require_permission('INVOICE', action='READ')
def financial_summary(request):
    """Invoiced and paid amounts of the visible companies over a date range"""
    try:
        date_from, date_to = _parse_period(request)
    except ValueError:
        return error_response('Dates must use the YYYY-MM-DD format')
    if date_to < date_from:
        return error_response('date_to cannot be before date_from')

    logger.info(f"User {request.user.pk} requested financial summary ({date_from} -> {date_to})")

    invoices = scope_to_company(Invoice.objects.all(), request).filter(
        issue_date__gte=date_from,
        issue_date__lte=date_to,
    ).exclude(status='CANCELLED')

    payments = scope_payments(Payment.objects.all(), request).filter(
        date__gte=date_from,
        date__lte=date_to,
        status__in=SETTLED_PAYMENT_STATUSES,
    )
    incoming = payments.filter(payment_type__in=INCOMING_PAYMENT_TYPES)
    outgoing = payments.exclude(payment_type__in=INCOMING_PAYMENT_TYPES)
    outstanding = invoices.filter(status__in=OUTSTANDING_INVOICE_STATUSES)

    invoiced_total = _total(invoices, 'total')
    received_total = _total(incoming, 'amount')
    paid_total = _total(outgoing, 'amount')

    # Monthly breakdown
    monthly = {}
    for row in invoices.annotate(month=TruncMonth('issue_date')).values('month').annotate(
            total=Sum('total', output_field=DecimalField())):
        monthly.setdefault(row['month'], {'invoiced': 0.0, 'received': 0.0, 'paid': 0.0})
        monthly[row['month']]['invoiced'] = float(row['total'] or 0)
    for key, queryset in (('received', incoming), ('paid', outgoing)):
        for row in queryset.annotate(month=TruncMonth('date')).values('month').annotate(
                total=Sum('amount', output_field=DecimalField())):
            monthly.setdefault(row['month'], {'invoiced': 0.0, 'received': 0.0, 'paid': 0.0})
            monthly[row['month']][key] = float(row['total'] or 0)

    return Response({
        'period': {
            'from': date_from.isoformat(),
            'to': date_to.isoformat()
        },
        'invoices': {
            'total': float(invoiced_total),
            'count': invoices.count(),
            'by_status': _grouped(invoices, 'status', 'total'),
        },
        'payments': {
            'received': float(received_total),
            'paid': float(paid_total),
            'net': float(received_total - paid_total),
            'by_type': _grouped(payments, 'payment_type', 'amount'),
            'by_status': _grouped(payments, 'status', 'amount'),
        },
        'outstanding': {
            'count': outstanding.count(),
            'amount': float(_total(outstanding, 'total')),
        },
        'monthly_breakdown': [
            {'month': month.strftime('%Y-%m'), **values}
            for month, values in sorted(monthly.items())
        ],
    })
