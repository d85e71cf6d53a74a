from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from .models import Company, User, Permission, RolePermission, AuditLog


@admin.register(Company)
class CompanyAdmin(admin.ModelAdmin):
    list_display = ['name', 'email', 'phone', 'subscription_type', 'is_active', 'created_at']
    list_filter = ['is_active', 'subscription_type']
    search_fields = ['name', 'email', 'phone']
    ordering = ['name']


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ['email', 'name', 'role', 'company', 'is_active', 'is_staff', 'date_joined']
    list_filter = ['role', 'is_active', 'is_staff', 'is_superuser', 'company']
    search_fields = ['email', 'name', 'phone']
    ordering = ['email']
    fieldsets = (
        (None, {'fields': ('email', 'password')}),
        ('Personal info', {'fields': ('name', 'phone', 'avatar')}),
        ('Organisation', {'fields': ('role', 'company')}),
        ('Permissions', {'fields': ('is_active', 'is_staff', 'is_superuser', 'groups', 'user_permissions')}),
        ('Important dates', {'fields': ('last_login', 'date_joined')}),
    )
    add_fieldsets = (
        (None, {
            'classes': ('wide',),
            'fields': ('email', 'name', 'role', 'company', 'password1', 'password2'),
        }),
    )


@admin.register(Permission)
class PermissionAdmin(admin.ModelAdmin):
    list_display = ['action', 'resource_type', 'created_at']
    list_filter = ['action', 'resource_type']
    ordering = ['resource_type', 'action']


@admin.register(RolePermission)
class RolePermissionAdmin(admin.ModelAdmin):
    list_display = ['role', 'permission', 'created_at']
    list_filter = ['role', 'permission__resource_type']
    ordering = ['role']


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ['user', 'company', 'action', 'resource', 'resource_id', 'ip_address', 'created_at']
    list_filter = ['action', 'resource', 'created_at']
    search_fields = ['user__email', 'resource', 'resource_id']
    ordering = ['-created_at']
    readonly_fields = ['user', 'company', 'action', 'resource', 'resource_id', 'details', 'ip_address', 'created_at']
