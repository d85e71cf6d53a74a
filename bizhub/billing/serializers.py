import logging
from decimal import Decimal

from django.db import IntegrityError, transaction
from django.utils import timezone
from rest_framework import serializers
from bizhub.core.serializers import UserBriefSerializer
from bizhub.crm.serializers import ClientBriefSerializer
from bizhub.core.exceptions import BusinessRuleError
from .models import Quote, QuoteItem, Invoice, InvoiceItem, Contract, Payment, Subscription

logger = logging.getLogger(__name__)

# Tries at a free generated invoice number before giving up
INVOICE_NUMBER_ATTEMPTS = 5


class LineItemSerializer(serializers.Serializer):
    description = serializers.CharField(min_length=2, max_length=500)
    quantity = serializers.IntegerField(min_value=1, default=1)
    unit_price = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=Decimal('0'), default=Decimal('0'))
    total = serializers.DecimalField(max_digits=14, decimal_places=2, required=False, allow_null=True)


def validate_line_items(items_data, field='items'):
    """Validate raw line dicts; each gets ``total = quantity * unit_price`` unless one is given"""
    lines = []
    for index, item_data in enumerate(items_data):
        item_serializer = LineItemSerializer(data=item_data)
        if not item_serializer.is_valid():
            raise serializers.ValidationError({field: {index: item_serializer.errors}})
        line = dict(item_serializer.validated_data)
        if line.get('total') is None:
            line['total'] = Decimal(line['quantity']) * line['unit_price']
        lines.append(line)
    return lines


def lines_total(lines):
    return sum((line['total'] for line in lines), Decimal('0.00'))


class QuoteItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = QuoteItem
        fields = ['id', 'description', 'quantity', 'unit_price', 'total']


class InvoiceItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = InvoiceItem
        fields = ['id', 'description', 'quantity', 'unit_price', 'total']


class QuoteSerializer(serializers.ModelSerializer):
    project_id = serializers.IntegerField(required=False, allow_null=True)
    project_name = serializers.CharField(source='project.name', read_only=True, default=None)
    items = QuoteItemSerializer(many=True, read_only=True)
    total = serializers.DecimalField(max_digits=14, decimal_places=2, required=False, allow_null=True)

    class Meta:
        model = Quote
        fields = ['id', 'company_id', 'project_id', 'project_name', 'reference', 'status', 'total',
                  'valid_until', 'document', 'items', 'created_at', 'updated_at']
        read_only_fields = ['created_at', 'updated_at']

    def validate_reference(self, value):
        if len(value.strip()) < 3:
            raise serializers.ValidationError('Reference must be at least 3 characters')
        return value.strip()

    def create(self, validated_data):
        lines = self.context.get('lines', [])
        if not validated_data.get('total'):
            validated_data['total'] = lines_total(lines)
        quote = Quote.objects.create(**validated_data)
        QuoteItem.objects.bulk_create([QuoteItem(quote=quote, **line) for line in lines])
        return quote

    def update(self, instance, validated_data):
        lines = self.context.get('lines')
        if lines is not None:
            instance.items.all().delete()
            QuoteItem.objects.bulk_create([QuoteItem(quote=instance, **line) for line in lines])
            if 'total' not in validated_data or not validated_data['total']:
                validated_data['total'] = lines_total(lines)
        if validated_data.get('total', 0) is None:
            validated_data['total'] = instance.get_items_total()
        return super().update(instance, validated_data)


def generate_invoice_number(company_id, skip=0):
    """INV-YYYYMMDD-NNNN, unique within the company; ``skip`` moves past numbers lost to a race"""
    prefix = f"INV-{timezone.now().strftime('%Y%m%d')}-"
    sequence = Invoice.objects.filter(company_id=company_id, invoice_number__startswith=prefix).count() + 1 + skip
    invoice_number = f"{prefix}{sequence:04d}"
    while Invoice.objects.filter(company_id=company_id, invoice_number=invoice_number).exists():
        sequence += 1
        invoice_number = f"{prefix}{sequence:04d}"
    return invoice_number


def create_numbered_invoice(validated_data):
    """
    Insert an invoice under a generated number.

    Concurrent creates may pick the same number; the loser retries with the
    next one inside a savepoint so the surrounding transaction survives.
    """
    for attempt in range(INVOICE_NUMBER_ATTEMPTS):
        validated_data['invoice_number'] = generate_invoice_number(validated_data['company_id'], skip=attempt)
        try:
            with transaction.atomic():
                return Invoice.objects.create(**validated_data)
        except IntegrityError:
            logger.warning(f"Invoice number {validated_data['invoice_number']} already taken, retrying")
    raise BusinessRuleError('Could not allocate an invoice number, please try again')


class InvoiceSerializer(serializers.ModelSerializer):
    client_id = serializers.IntegerField(required=False, allow_null=True)
    client = ClientBriefSerializer(read_only=True)
    source_quote_id = serializers.IntegerField(required=False, allow_null=True)
    invoice_number = serializers.CharField(required=False, allow_blank=True, max_length=100)
    issue_date = serializers.DateField(required=False)
    total = serializers.DecimalField(max_digits=14, decimal_places=2, required=False, allow_null=True)
    items = InvoiceItemSerializer(many=True, read_only=True)
    created_by = UserBriefSerializer(read_only=True)

    class Meta:
        model = Invoice
        fields = ['id', 'company_id', 'client_id', 'client', 'invoice_number', 'status', 'issue_date', 'due_date',
                  'total', 'source_quote_id', 'items', 'created_by', 'created_at', 'updated_at']
        read_only_fields = ['created_at', 'updated_at']

    def validate_invoice_number(self, value):
        value = value.strip()
        if value and len(value) < 3:
            raise serializers.ValidationError('Invoice number must be at least 3 characters')
        return value

    def validate(self, attrs):
        issue_date = attrs.get('issue_date', getattr(self.instance, 'issue_date', None))
        due_date = attrs.get('due_date', getattr(self.instance, 'due_date', None))
        if issue_date and due_date and due_date < issue_date:
            raise serializers.ValidationError({'due_date': 'Due date cannot be before issue date'})
        return attrs

    def create(self, validated_data):
        lines = self.context.get('lines', [])
        validated_data.setdefault('issue_date', timezone.localdate())
        if not validated_data.get('total'):
            validated_data['total'] = lines_total(lines)
        if validated_data.get('invoice_number'):
            invoice = Invoice.objects.create(**validated_data)
        else:
            invoice = create_numbered_invoice(validated_data)
        InvoiceItem.objects.bulk_create([InvoiceItem(invoice=invoice, **line) for line in lines])
        return invoice

    def update(self, instance, validated_data):
        lines = self.context.get('lines')
        if lines is not None:
            instance.items.all().delete()
            InvoiceItem.objects.bulk_create([InvoiceItem(invoice=instance, **line) for line in lines])
            if not validated_data.get('total'):
                validated_data['total'] = lines_total(lines)
        if not validated_data.get('invoice_number', instance.invoice_number):
            validated_data.pop('invoice_number')
        if validated_data.get('total', 0) is None:
            validated_data.pop('total')
        return super().update(instance, validated_data)


class ContractSerializer(serializers.ModelSerializer):
    project_id = serializers.IntegerField()
    project_name = serializers.CharField(source='project.name', read_only=True)
    quote_id = serializers.IntegerField(required=False, allow_null=True)

    class Meta:
        model = Contract
        fields = ['id', 'company_id', 'project_id', 'project_name', 'quote_id', 'title', 'content', 'status',
                  'total_amount', 'signed_at', 'start_date', 'end_date', 'terms', 'notes',
                  'created_at', 'updated_at']
        read_only_fields = ['created_at', 'updated_at']

    def validate(self, attrs):
        start_date = attrs.get('start_date', getattr(self.instance, 'start_date', None))
        end_date = attrs.get('end_date', getattr(self.instance, 'end_date', None))
        if start_date and end_date and end_date < start_date:
            raise serializers.ValidationError({'end_date': 'End date cannot be before start date'})
        return attrs


class QuoteToContractSerializer(serializers.Serializer):
    """Body of ``/quotes/<id>/convert-to-contract/`` (every field optional)"""
    title = serializers.CharField(required=False, max_length=255)
    content = serializers.CharField(required=False, allow_blank=True)
    update_quote_status = serializers.BooleanField(required=False, default=False)


class QuoteConvertSerializer(serializers.Serializer):
    """Body of ``/quotes/convert/``"""
    STATUS_CHOICES = ['PENDING', 'ACTIVE', 'COMPLETED', 'CANCELLED']

    quote_id = serializers.IntegerField()
    status = serializers.ChoiceField(choices=STATUS_CHOICES, default='ACTIVE')
    start_date = serializers.DateField(required=False, allow_null=True)
    end_date = serializers.DateField(required=False, allow_null=True)
    terms = serializers.CharField(required=False, allow_blank=True, default='')
    notes = serializers.CharField(required=False, allow_blank=True, default='')


class SubscriptionSerializer(serializers.ModelSerializer):
    class Meta:
        model = Subscription
        fields = ['id', 'company_id', 'service_name', 'cost', 'billing_cycle', 'next_billing_date', 'is_active',
                  'created_at', 'updated_at']
        read_only_fields = ['created_at', 'updated_at']

    def validate_cost(self, value):
        if value < 0:
            raise serializers.ValidationError('Cost cannot be negative')
        return value


class PaymentSerializer(serializers.ModelSerializer):
    project_id = serializers.IntegerField(required=False, allow_null=True)
    client_id = serializers.IntegerField(required=False, allow_null=True)
    provider_id = serializers.IntegerField(required=False, allow_null=True)
    subscription_id = serializers.IntegerField(required=False, allow_null=True)
    project_name = serializers.CharField(source='project.name', read_only=True, default=None)
    client_name = serializers.CharField(source='client.name', read_only=True, default=None)
    provider_name = serializers.CharField(source='provider.name', read_only=True, default=None)
    date = serializers.DateField(required=False)

    class Meta:
        model = Payment
        fields = ['id', 'company_id', 'payment_type', 'amount', 'date', 'description', 'method', 'status',
                  'reference', 'is_partial', 'part_number', 'total_parts',
                  'project_id', 'project_name', 'client_id', 'client_name', 'provider_id', 'provider_name',
                  'subscription_id', 'created_at', 'updated_at']
        read_only_fields = ['created_at', 'updated_at']

    def validate_amount(self, value):
        if value < Decimal('0.01'):
            raise serializers.ValidationError('Amount must be greater than 0')
        return value

    def validate(self, attrs):
        def current(field):
            return attrs.get(field, getattr(self.instance, field, None))

        payment_type = current('payment_type')
        required_counterpart = {
            'CLIENT': ('client_id', 'A client is required for a CLIENT payment'),
            'PROVIDER': ('provider_id', 'A provider is required for a PROVIDER payment'),
            'SUBSCRIPTION': ('subscription_id', 'A subscription is required for a SUBSCRIPTION payment'),
        }.get(payment_type)
        if required_counterpart and not current(required_counterpart[0]):
            field, message = required_counterpart
            raise serializers.ValidationError({field: message})

        if current('is_partial'):
            part_number = current('part_number')
            total_parts = current('total_parts')
            if not part_number or not total_parts:
                raise serializers.ValidationError(
                    {'part_number': 'Partial payments need part_number and total_parts'})
            if part_number > total_parts:
                raise serializers.ValidationError(
                    {'part_number': 'Part number cannot be greater than the total number of parts'})

        if self.instance is None:
            attrs.setdefault('date', timezone.localdate())
        return attrs
