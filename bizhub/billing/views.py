import logging

from django.db import transaction
from django.db.models import Q
from django.utils import timezone
from rest_framework import serializers, status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from bizhub.core.models import SUPER_ADMIN
from bizhub.core.permissions import (
    require_permission, scope_to_company, resolve_company_id, get_company_object,
    ensure_same_company, requested_company_id,
)
from bizhub.core.utils import (
    create_audit_log, error_response, validation_error_response, not_found, paginate,
)
from bizhub.crm.models import Client, Provider
from bizhub.projects.models import Project
from .filters import QuoteFilter, InvoiceFilter, ContractFilter, PaymentFilter
from .models import Quote, Invoice, Contract, Payment, Subscription
from .serializers import (
    QuoteSerializer, InvoiceSerializer, ContractSerializer, PaymentSerializer, SubscriptionSerializer,
    QuoteToContractSerializer, QuoteConvertSerializer, validate_line_items,
)

logger = logging.getLogger(__name__)


def _pop_lines(data, required=True):
    """Take ``items`` out of the request body and validate them"""
    items_data = data.pop('items', None)
    if items_data is None:
        if required:
            return None, validation_error_response({'items': ['At least one item is required.']})
        return None, None
    if required and not items_data:
        return None, validation_error_response({'items': ['At least one item is required.']})
    try:
        return validate_line_items(items_data), None
    except serializers.ValidationError as e:
        return None, validation_error_response(e.detail)


def _quote_queryset():
    return Quote.objects.select_related('project').prefetch_related('items')


def _invoice_queryset():
    return Invoice.objects.select_related('client', 'created_by').prefetch_related('items')


# Quote views
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
@require_permission('INVOICE')
def quote_list_create(request):
    """List quotes or create a quote with at least one line item"""
    if request.method == 'GET':
        queryset = scope_to_company(_quote_queryset(), request)
        quote_filter = QuoteFilter(request.query_params, queryset=queryset)
        if not quote_filter.is_valid():
            return validation_error_response(quote_filter.errors)
        return Response(paginate(request, quote_filter.qs.order_by('-created_at'), QuoteSerializer))

    data = request.data.copy()
    lines, error = _pop_lines(data)
    if error:
        return error

    serializer = QuoteSerializer(data=data, context={'lines': lines})
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)

    project_id = serializer.validated_data.get('project_id')
    if project_id is not None:
        project = Project.objects.filter(pk=project_id).first()
        if project is None:
            return not_found('Project')
        denied = ensure_same_company(request, project.company_id,
                                     'You do not have permission to create a quote for this project')
        if denied:
            return denied
        company_id = project.company_id
    else:
        company_id, error = resolve_company_id(request, request.data.get('company_id'))
        if error:
            return error

    with transaction.atomic():
        quote = serializer.save(company_id=company_id, created_by=request.user)

    create_audit_log(request=request, action='CREATE', resource='INVOICE', resource_id=quote.pk,
                     company_id=company_id, details={'quote': quote.reference, 'items': len(lines)})
    return Response(QuoteSerializer(_quote_queryset().get(pk=quote.pk)).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
@require_permission('INVOICE')
def quote_detail(request, pk):
    """Retrieve, update (optionally replacing its items) or delete a quote"""
    quote, error = get_company_object(request, _quote_queryset(), pk, 'Quote')
    if error:
        return error

    if request.method == 'GET':
        return Response(QuoteSerializer(quote).data)

    elif request.method == 'PATCH':
        data = request.data.copy()
        lines, error = _pop_lines(data, required=False)
        if error:
            return error
        # The project of a quote is fixed at creation
        data.pop('project_id', None)
        serializer = QuoteSerializer(quote, data=data, partial=True, context={'lines': lines})
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)
        with transaction.atomic():
            serializer.save()
        create_audit_log(request=request, action='UPDATE', resource='INVOICE', resource_id=quote.pk,
                         details={'quote': quote.reference, 'fields': sorted(serializer.validated_data.keys()),
                                  'items_replaced': lines is not None})
        return Response(QuoteSerializer(_quote_queryset().get(pk=quote.pk)).data)

    else:  # DELETE
        quote_id = quote.pk
        quote.delete()
        create_audit_log(request=request, action='DELETE', resource='INVOICE', resource_id=quote_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
@require_permission('PROJECT', action='CREATE')
def quote_convert_to_contract(request, pk):
    """Draft a contract for the project of a quote"""
    quote = Quote.objects.select_related('project').filter(pk=pk).first()
    if quote is None:
        return not_found('Quote')
    if quote.project_id is None:
        return error_response('This quote is not linked to a project')
    denied = ensure_same_company(request, quote.project.company_id,
                                 'You do not have permission to create a contract for this project')
    if denied:
        return denied

    serializer = QuoteToContractSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)
    options = serializer.validated_data

    with transaction.atomic():
        contract = Contract.objects.create(
            company_id=quote.project.company_id,
            project_id=quote.project_id,
            quote=quote,
            title=options.get('title') or f"Contract - {quote.reference}",
            content=options.get('content') or f"Contract based on quote {quote.reference}",
            status='DRAFT',
            total_amount=quote.total,
            created_by=request.user,
        )
        if options['update_quote_status']:
            quote.status = 'ACCEPTED'
            quote.save(update_fields=['status', 'updated_at'])

    create_audit_log(request=request, action='CREATE', resource='PROJECT', resource_id=contract.pk,
                     company_id=contract.company_id,
                     details={'action': 'quote_to_contract', 'quote_id': quote.pk, 'project_id': quote.project_id})
    return Response(ContractSerializer(contract).data, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
@require_permission('INVOICE', action='CREATE')
def quote_convert(request):
    """Turn an accepted quote into an active contract"""
    serializer = QuoteConvertSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)
    options = serializer.validated_data

    quote = Quote.objects.select_related('project').filter(pk=options['quote_id']).first()
    if quote is None:
        return not_found('Quote')
    if quote.status != 'ACCEPTED':
        return error_response('Only accepted quotes can be converted into contracts')
    denied = ensure_same_company(request, quote.company_id,
                                 'You do not have permission to convert this quote')
    if denied:
        return denied
    if quote.project_id is None:
        return error_response('This quote is not linked to a valid project')

    with transaction.atomic():
        # Re-read under lock so two conversions cannot both succeed
        locked = Quote.objects.select_for_update().get(pk=quote.pk)
        if locked.status != 'ACCEPTED':
            return error_response('Only accepted quotes can be converted into contracts')
        locked.status = 'CONVERTED'
        logger.info(f"Quote {quote.pk} converted into a contract")
        locked.save(update_fields=['status', 'updated_at'])
        contract = Contract.objects.create(
            company_id=quote.project.company_id,
            project_id=quote.project_id,
            quote=quote,
            title=f"Contract based on quote: {quote.reference}",
            status=options['status'],
            start_date=options.get('start_date') or timezone.localdate(),
            end_date=options.get('end_date'),
            terms=options['terms'],
            notes=options['notes'],
            total_amount=quote.total,
            created_by=request.user,
        )

    create_audit_log(request=request, action='CONVERT', resource='INVOICE', resource_id=quote.pk,
                     company_id=contract.company_id, details={'contract_id': contract.pk})
    return Response(ContractSerializer(contract).data, status=status.HTTP_201_CREATED)


# Invoice views
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
@require_permission('INVOICE')
def invoice_list_create(request):
    """List invoices or create one, optionally from a quote"""
    if request.method == 'GET':
        queryset = scope_to_company(_invoice_queryset(), request)
        invoice_filter = InvoiceFilter(request.query_params, queryset=queryset)
        if not invoice_filter.is_valid():
            return validation_error_response(invoice_filter.errors)
        return Response(paginate(request, invoice_filter.qs, InvoiceSerializer))

    company_id, error = resolve_company_id(request, request.data.get('company_id'))
    if error:
        return error

    data = request.data.copy()
    from_quote = data.get('source_quote_id') not in (None, '')
    lines, error = _pop_lines(data, required=not from_quote)
    if error:
        return error

    serializer = InvoiceSerializer(data=data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)
    validated = serializer.validated_data

    client_id = validated.get('client_id')
    if client_id is not None and not Client.objects.filter(pk=client_id, company_id=company_id).exists():
        return not_found('Client')

    quote = None
    if validated.get('source_quote_id') is not None:
        quote = Quote.objects.select_related('project').prefetch_related('items').filter(
            pk=validated['source_quote_id']).first()
        if quote is None:
            return not_found('Source quote')
        quote_company_id = quote.project.company_id if quote.project_id else quote.company_id
        if quote_company_id != company_id:
            return error_response('You do not have permission to use this quote', status.HTTP_403_FORBIDDEN)
        if client_id is None and quote.project_id and quote.project.client_id:
            client_id = quote.project.client_id
        if not lines:
            lines = [
                {'description': item.description, 'quantity': item.quantity,
                 'unit_price': item.unit_price, 'total': item.total}
                for item in quote.items.all()
            ]

    invoice_number = validated.get('invoice_number')
    if invoice_number:
        existing = Invoice.objects.filter(company_id=company_id, invoice_number=invoice_number).first()
        if existing is not None:
            return error_response('An invoice with this number already exists', status.HTTP_409_CONFLICT,
                                  existing_id=existing.pk)

    serializer.context['lines'] = lines or []
    with transaction.atomic():
        invoice = serializer.save(company_id=company_id, client_id=client_id, created_by=request.user)
        if quote is not None:
            quote.status = 'INVOICED'
            quote.save(update_fields=['status', 'updated_at'])
            logger.info(f"Quote {quote.pk} invoiced as {invoice.invoice_number}")

    create_audit_log(request=request, action='CREATE', resource='INVOICE', resource_id=invoice.pk,
                     company_id=company_id,
                     details={'invoice_number': invoice.invoice_number,
                              'source_quote_id': quote.pk if quote else None})
    return Response(InvoiceSerializer(_invoice_queryset().get(pk=invoice.pk)).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
@require_permission('INVOICE')
def invoice_detail(request, pk):
    """Retrieve, update or delete an invoice"""
    invoice, error = get_company_object(request, _invoice_queryset(), pk, 'Invoice')
    if error:
        return error

    if request.method == 'GET':
        return Response(InvoiceSerializer(invoice).data)

    elif request.method == 'PATCH':
        data = request.data.copy()
        lines, error = _pop_lines(data, required=False)
        if error:
            return error
        data.pop('source_quote_id', None)
        serializer = InvoiceSerializer(invoice, data=data, partial=True, context={'lines': lines})
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)
        validated = serializer.validated_data

        client_id = validated.get('client_id')
        if client_id is not None and not Client.objects.filter(pk=client_id, company_id=invoice.company_id).exists():
            return not_found('Client')
        invoice_number = validated.get('invoice_number')
        if invoice_number:
            existing = Invoice.objects.filter(company_id=invoice.company_id, invoice_number=invoice_number) \
                .exclude(pk=invoice.pk).first()
            if existing is not None:
                return error_response('An invoice with this number already exists', status.HTTP_409_CONFLICT,
                                      existing_id=existing.pk)

        with transaction.atomic():
            serializer.save()
        create_audit_log(request=request, action='UPDATE', resource='INVOICE', resource_id=invoice.pk,
                         details={'invoice_number': invoice.invoice_number, 'fields': sorted(validated.keys())})
        return Response(InvoiceSerializer(_invoice_queryset().get(pk=invoice.pk)).data)

    else:  # DELETE
        invoice_id = invoice.pk
        invoice.delete()
        create_audit_log(request=request, action='DELETE', resource='INVOICE', resource_id=invoice_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


# Contract views
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
@require_permission('INVOICE')
def contract_list_create(request):
    """List contracts or create one for a project"""
    if request.method == 'GET':
        queryset = scope_to_company(Contract.objects.select_related('project'), request)
        contract_filter = ContractFilter(request.query_params, queryset=queryset)
        if not contract_filter.is_valid():
            return validation_error_response(contract_filter.errors)
        return Response(paginate(request, contract_filter.qs.order_by('-created_at'), ContractSerializer))

    serializer = ContractSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)
    validated = serializer.validated_data

    project, error = get_company_object(request, Project.objects.all(), validated['project_id'], 'Project')
    if error:
        return error
    quote_id = validated.get('quote_id')
    if quote_id is not None and not Quote.objects.filter(pk=quote_id, company_id=project.company_id).exists():
        return not_found('Quote')

    contract = serializer.save(company_id=project.company_id, created_by=request.user)
    create_audit_log(request=request, action='CREATE', resource='INVOICE', resource_id=contract.pk,
                     company_id=project.company_id, details={'contract': contract.title})
    return Response(ContractSerializer(contract).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
@require_permission('INVOICE')
def contract_detail(request, pk):
    """Retrieve, update or delete a contract"""
    contract, error = get_company_object(request, Contract.objects.select_related('project'), pk, 'Contract')
    if error:
        return error

    if request.method == 'GET':
        return Response(ContractSerializer(contract).data)

    elif request.method == 'PATCH':
        data = request.data.copy()
        data.pop('project_id', None)
        serializer = ContractSerializer(contract, data=data, partial=True)
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)
        if serializer.validated_data.get('status') == 'ACTIVE' and not contract.signed_at \
                and 'signed_at' not in serializer.validated_data:
            serializer.validated_data['signed_at'] = timezone.now()
        serializer.save()
        create_audit_log(request=request, action='UPDATE', resource='INVOICE', resource_id=contract.pk,
                         details={'contract': contract.title, 'fields': sorted(serializer.validated_data.keys())})
        return Response(serializer.data)

    else:  # DELETE
        contract_id = contract.pk
        contract.delete()
        create_audit_log(request=request, action='DELETE', resource='INVOICE', resource_id=contract_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


# Payment views
COUNTERPARTS = [
    ('client_id', Client, 'Client'),
    ('project_id', Project, 'Project'),
    ('provider_id', Provider, 'Provider'),
    ('subscription_id', Subscription, 'Subscription'),
]


def _payment_company(request, values):
    """
    Company a payment belongs to, taken from its counterparts.

    Every counterpart must exist (404) and all of them must share one
    company (400). Returns ``(company_id, None)`` or ``(None, response)``.
    """
    company_id = None
    for field, model, label in COUNTERPARTS:
        object_id = values.get(field)
        if object_id is None:
            continue
        counterpart = model.objects.filter(pk=object_id).only('company_id').first()
        if counterpart is None:
            return None, not_found(label)
        if company_id is not None and counterpart.company_id != company_id:
            return None, error_response(f'{label} must belong to the same company as the other counterparts')
        company_id = counterpart.company_id

    if company_id is None:
        return resolve_company_id(request, request.data.get('company_id'))

    denied = ensure_same_company(request, company_id,
                                 'You do not have permission to record a payment for this company')
    if denied:
        return None, denied
    return company_id, None


def scope_payments(queryset, request):
    """Payments whose company, client, project or provider belongs to a visible company"""
    user = request.user
    if user.role == SUPER_ADMIN:
        company_id = requested_company_id(request)
    elif user.company_id:
        company_id = user.company_id
    else:
        return queryset.none()
    if company_id is None:
        return queryset
    return queryset.filter(
        Q(company_id=company_id) |
        Q(client__company_id=company_id) |
        Q(project__company_id=company_id) |
        Q(provider__company_id=company_id)
    )


def _payment_queryset():
    return Payment.objects.select_related('client', 'project', 'provider', 'subscription')


def _create_payment(request, data):
    serializer = PaymentSerializer(data=data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)
    company_id, error = _payment_company(request, serializer.validated_data)
    if error:
        return error
    payment = serializer.save(company_id=company_id, created_by=request.user)
    create_audit_log(request=request, action='CREATE', resource='PAYMENT', resource_id=payment.pk,
                     company_id=company_id,
                     details={'payment_type': payment.payment_type, 'amount': str(payment.amount)})
    return Response(PaymentSerializer(payment).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
@require_permission('PAYMENT')
def payment_list_create(request):
    """List payments or record a new one"""
    if request.method == 'GET':
        queryset = scope_payments(_payment_queryset(), request)
        payment_filter = PaymentFilter(request.query_params, queryset=queryset)
        if not payment_filter.is_valid():
            return validation_error_response(payment_filter.errors)
        return Response(paginate(request, payment_filter.qs.order_by('-date', '-created_at'), PaymentSerializer))

    return _create_payment(request, request.data)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
@require_permission('PAYMENT')
def payment_detail(request, pk):
    """Retrieve, update or delete a payment"""
    payment, error = get_company_object(request, _payment_queryset(), pk, 'Payment')
    if error:
        return error

    if request.method == 'GET':
        return Response(PaymentSerializer(payment).data)

    elif request.method == 'PATCH':
        serializer = PaymentSerializer(payment, data=request.data, partial=True)
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)
        validated = serializer.validated_data
        if any(field in validated for field, _, _ in COUNTERPARTS):
            values = {field: validated.get(field, getattr(payment, field)) for field, _, _ in COUNTERPARTS}
            company_id, error = _payment_company(request, values)
            if error:
                return error
            if company_id != payment.company_id:
                return error_response('Counterparts must belong to the company of the payment')
        serializer.save()
        create_audit_log(request=request, action='UPDATE', resource='PAYMENT', resource_id=payment.pk,
                         details={'fields': sorted(validated.keys())})
        return Response(serializer.data)

    else:  # DELETE
        payment_id = payment.pk
        payment.delete()
        create_audit_log(request=request, action='DELETE', resource='PAYMENT', resource_id=payment_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
@require_permission('PAYMENT')
def project_payments(request, pk):
    """List or record the payments of a project"""
    project, error = get_company_object(request, Project.objects.all(), pk, 'Project')
    if error:
        return error

    if request.method == 'GET':
        queryset = _payment_queryset().filter(project=project)
        payment_filter = PaymentFilter(request.query_params, queryset=queryset)
        if not payment_filter.is_valid():
            return validation_error_response(payment_filter.errors)
        return Response(paginate(request, payment_filter.qs.order_by('-date', '-created_at'), PaymentSerializer,
                                 default_page_size=50))

    data = request.data.copy()
    data['project_id'] = project.pk
    return _create_payment(request, data)


# Subscription views
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
@require_permission('PAYMENT')
def subscription_list_create(request):
    """List the company's subscriptions or add one"""
    if request.method == 'GET':
        queryset = scope_to_company(Subscription.objects.all(), request)
        return Response(paginate(request, queryset.order_by('service_name'), SubscriptionSerializer))

    company_id, error = resolve_company_id(request, request.data.get('company_id'))
    if error:
        return error
    serializer = SubscriptionSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)
    subscription = serializer.save(company_id=company_id)
    create_audit_log(request=request, action='CREATE', resource='PAYMENT', resource_id=subscription.pk,
                     company_id=company_id, details={'subscription': subscription.service_name})
    return Response(SubscriptionSerializer(subscription).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
@require_permission('PAYMENT')
def subscription_detail(request, pk):
    """Retrieve, update or delete a subscription"""
    subscription, error = get_company_object(request, Subscription.objects.all(), pk, 'Subscription')
    if error:
        return error

    if request.method == 'GET':
        return Response(SubscriptionSerializer(subscription).data)

    elif request.method == 'PATCH':
        serializer = SubscriptionSerializer(subscription, data=request.data, partial=True)
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)
        serializer.save()
        return Response(serializer.data)

    else:  # DELETE
        subscription.delete()
        return Response(status=status.HTTP_204_NO_CONTENT)
