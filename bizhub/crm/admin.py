from django.contrib import admin
from .models import Client, Provider, Lead, Pipeline, PipelineStage, Opportunity, Activity


@admin.register(Client)
class ClientAdmin(admin.ModelAdmin):
    list_display = ['name', 'company', 'email', 'phone', 'created_at']
    list_filter = ['company']
    search_fields = ['name', 'email', 'phone']
    ordering = ['name']


@admin.register(Provider)
class ProviderAdmin(admin.ModelAdmin):
    list_display = ['name', 'company', 'role', 'email', 'phone']
    list_filter = ['company']
    search_fields = ['name', 'email', 'role']
    ordering = ['name']


@admin.register(Lead)
class LeadAdmin(admin.ModelAdmin):
    list_display = ['name', 'company', 'email', 'source', 'status', 'converted_client', 'created_at']
    list_filter = ['status', 'source', 'company']
    search_fields = ['name', 'email', 'organisation']
    ordering = ['-created_at']


class PipelineStageInline(admin.TabularInline):
    model = PipelineStage
    extra = 0


@admin.register(Pipeline)
class PipelineAdmin(admin.ModelAdmin):
    list_display = ['name', 'company', 'is_default', 'created_at']
    list_filter = ['company', 'is_default']
    inlines = [PipelineStageInline]


@admin.register(Opportunity)
class OpportunityAdmin(admin.ModelAdmin):
    list_display = ['name', 'company', 'lead', 'stage', 'amount', 'status', 'closing_date']
    list_filter = ['status', 'company', 'pipeline']
    search_fields = ['name', 'lead__name']
    ordering = ['-created_at']


@admin.register(Activity)
class ActivityAdmin(admin.ModelAdmin):
    list_display = ['subject', 'type', 'status', 'company', 'user', 'related_to', 'related_id', 'scheduled_at']
    list_filter = ['type', 'status', 'related_to']
    search_fields = ['subject', 'description']
    ordering = ['-created_at']
