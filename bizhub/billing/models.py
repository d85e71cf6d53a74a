from decimal import Decimal

from django.conf import settings
from django.db import models


class LineItem(models.Model):
    """Shared columns of quote and invoice lines"""
    description = models.CharField(max_length=500)
    quantity = models.PositiveIntegerField(default=1)
    unit_price = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0.00'))
    total = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0.00'))

    def get_line_total(self):
        return Decimal(self.quantity) * self.unit_price

    class Meta:
        abstract = True


class Quote(models.Model):
    """Quote ("devis") sent to a client, optionally attached to a project"""
    STATUS_CHOICES = [
        ('DRAFT', 'Draft'),
        ('SENT', 'Sent'),
        ('ACCEPTED', 'Accepted'),
        ('REJECTED', 'Rejected'),
        ('INVOICED', 'Invoiced'),
        ('CONVERTED', 'Converted'),
    ]

    company = models.ForeignKey('core.Company', on_delete=models.CASCADE, related_name='quotes')
    project = models.ForeignKey('projects.Project', on_delete=models.SET_NULL, null=True, blank=True,
                                related_name='quotes')
    reference = models.CharField(max_length=100)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='DRAFT')
    total = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0.00'))
    valid_until = models.DateField(null=True, blank=True)
    document = models.URLField(max_length=500, blank=True)
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
                                   related_name='created_quotes')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.reference

    def get_items_total(self):
        return sum((item.total for item in self.items.all()), Decimal('0.00'))

    class Meta:
        db_table = 'quotes'
        ordering = ['-created_at']


class QuoteItem(LineItem):
    quote = models.ForeignKey(Quote, on_delete=models.CASCADE, related_name='items')

    def __str__(self):
        return f"{self.quote.reference} - {self.description}"

    class Meta:
        db_table = 'quote_items'
        ordering = ['id']


class Invoice(models.Model):
    STATUS_CHOICES = [
        ('DRAFT', 'Draft'),
        ('SENT', 'Sent'),
        ('PAID', 'Paid'),
        ('PARTIAL', 'Partially paid'),
        ('OVERDUE', 'Overdue'),
        ('CANCELLED', 'Cancelled'),
    ]

    company = models.ForeignKey('core.Company', on_delete=models.CASCADE, related_name='invoices')
    client = models.ForeignKey('crm.Client', on_delete=models.SET_NULL, null=True, blank=True,
                               related_name='invoices')
    invoice_number = models.CharField(max_length=100)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='DRAFT')
    issue_date = models.DateField()
    due_date = models.DateField(null=True, blank=True)
    total = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0.00'))
    source_quote = models.ForeignKey(Quote, on_delete=models.SET_NULL, null=True, blank=True,
                                     related_name='invoices')
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
                                   related_name='created_invoices')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.invoice_number

    class Meta:
        db_table = 'invoices'
        ordering = ['-issue_date', '-created_at']
        unique_together = [['company', 'invoice_number']]
        indexes = [
            models.Index(fields=['company', 'status'], name='invoices_company_8b2d5f_idx'),
        ]


class InvoiceItem(LineItem):
    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name='items')

    def __str__(self):
        return f"{self.invoice.invoice_number} - {self.description}"

    class Meta:
        db_table = 'invoice_items'
        ordering = ['id']


class Contract(models.Model):
    STATUS_CHOICES = [
        ('DRAFT', 'Draft'),
        ('PENDING', 'Pending'),
        ('ACTIVE', 'Active'),
        ('COMPLETED', 'Completed'),
        ('CANCELLED', 'Cancelled'),
    ]

    company = models.ForeignKey('core.Company', on_delete=models.CASCADE, related_name='contracts')
    project = models.ForeignKey('projects.Project', on_delete=models.CASCADE, related_name='contracts')
    quote = models.ForeignKey(Quote, on_delete=models.SET_NULL, null=True, blank=True, related_name='contracts')
    title = models.CharField(max_length=255)
    content = models.TextField(blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='DRAFT')
    total_amount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0.00'))
    signed_at = models.DateTimeField(null=True, blank=True)
    start_date = models.DateField(null=True, blank=True)
    end_date = models.DateField(null=True, blank=True)
    terms = models.TextField(blank=True)
    notes = models.TextField(blank=True)
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
                                   related_name='created_contracts')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.title

    class Meta:
        db_table = 'contracts'
        ordering = ['-created_at']


class Subscription(models.Model):
    """Recurring service the company pays for"""
    BILLING_CYCLE_CHOICES = [
        ('MONTHLY', 'Monthly'),
        ('YEARLY', 'Yearly'),
    ]

    company = models.ForeignKey('core.Company', on_delete=models.CASCADE, related_name='subscriptions')
    service_name = models.CharField(max_length=200)
    cost = models.DecimalField(max_digits=12, decimal_places=2)
    billing_cycle = models.CharField(max_length=10, choices=BILLING_CYCLE_CHOICES, default='MONTHLY')
    next_billing_date = models.DateField(null=True, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.service_name} ({self.get_billing_cycle_display()})"

    class Meta:
        db_table = 'subscriptions'
        ordering = ['service_name']


class Payment(models.Model):
    TYPE_CHOICES = [
        ('CLIENT', 'Client'),
        ('PROVIDER', 'Provider'),
        ('SUBSCRIPTION', 'Subscription'),
        ('OTHER', 'Other'),
    ]

    METHOD_CHOICES = [
        ('BANK_TRANSFER', 'Bank transfer'),
        ('CARD', 'Card'),
        ('CASH', 'Cash'),
        ('CHECK', 'Check'),
        ('OTHER', 'Other'),
    ]

    STATUS_CHOICES = [
        ('PENDING', 'Pending'),
        ('PARTIAL', 'Partial'),
        ('COMPLETE', 'Complete'),
        ('REFUNDED', 'Refunded'),
        ('CANCELLED', 'Cancelled'),
    ]

    # Resolved from the counterparts when the payment is recorded
    company = models.ForeignKey('core.Company', on_delete=models.CASCADE, null=True, blank=True,
                                related_name='payments')
    payment_type = models.CharField(max_length=20, choices=TYPE_CHOICES)
    amount = models.DecimalField(max_digits=14, decimal_places=2)
    date = models.DateField()
    description = models.TextField(blank=True)
    method = models.CharField(max_length=20, choices=METHOD_CHOICES, default='BANK_TRANSFER')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='PENDING')
    reference = models.CharField(max_length=100, blank=True)
    is_partial = models.BooleanField(default=False)
    part_number = models.PositiveIntegerField(null=True, blank=True)
    total_parts = models.PositiveIntegerField(null=True, blank=True)
    project = models.ForeignKey('projects.Project', on_delete=models.SET_NULL, null=True, blank=True,
                                related_name='payments')
    client = models.ForeignKey('crm.Client', on_delete=models.SET_NULL, null=True, blank=True,
                               related_name='payments')
    provider = models.ForeignKey('crm.Provider', on_delete=models.SET_NULL, null=True, blank=True,
                                 related_name='payments')
    subscription = models.ForeignKey(Subscription, on_delete=models.SET_NULL, null=True, blank=True,
                                     related_name='payments')
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
                                   related_name='recorded_payments')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.get_payment_type_display()} payment of {self.amount} on {self.date}"

    class Meta:
        db_table = 'payments'
        ordering = ['-date', '-created_at']
        indexes = [
            models.Index(fields=['payment_type', 'status'], name='payments_payment_6e3a9c_idx'),
            models.Index(fields=['date'], name='payments_date_1d7b4e_idx'),
        ]
