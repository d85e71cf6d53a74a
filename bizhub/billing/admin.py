from django.contrib import admin
from .models import Quote, QuoteItem, Invoice, InvoiceItem, Contract, Payment, Subscription


class QuoteItemInline(admin.TabularInline):
    model = QuoteItem
    extra = 0


@admin.register(Quote)
class QuoteAdmin(admin.ModelAdmin):
    list_display = ['reference', 'company', 'project', 'status', 'total', 'valid_until', 'created_at']
    list_filter = ['status', 'company']
    search_fields = ['reference', 'project__name']
    ordering = ['-created_at']
    inlines = [QuoteItemInline]


class InvoiceItemInline(admin.TabularInline):
    model = InvoiceItem
    extra = 0


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ['invoice_number', 'company', 'client', 'status', 'total', 'issue_date', 'due_date']
    list_filter = ['status', 'company']
    search_fields = ['invoice_number', 'client__name']
    ordering = ['-issue_date']
    inlines = [InvoiceItemInline]


@admin.register(Contract)
class ContractAdmin(admin.ModelAdmin):
    list_display = ['title', 'company', 'project', 'status', 'total_amount', 'start_date', 'end_date']
    list_filter = ['status', 'company']
    search_fields = ['title', 'project__name']
    ordering = ['-created_at']


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ['payment_type', 'amount', 'date', 'method', 'status', 'company', 'client', 'provider']
    list_filter = ['payment_type', 'status', 'method']
    search_fields = ['reference', 'description']
    date_hierarchy = 'date'
    ordering = ['-date']


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    list_display = ['service_name', 'company', 'cost', 'billing_cycle', 'next_billing_date', 'is_active']
    list_filter = ['billing_cycle', 'is_active']
    search_fields = ['service_name']
