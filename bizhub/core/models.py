from django.contrib.auth.models import AbstractUser, BaseUserManager
from django.db import models

# Roles
USER = 'USER'
ADMIN = 'ADMIN'
SUPER_ADMIN = 'SUPER_ADMIN'
COMPANY_ADMIN = 'COMPANY_ADMIN'
MANAGER = 'MANAGER'
EMPLOYEE = 'EMPLOYEE'

ROLE_CHOICES = [
    (USER, 'User'),
    (ADMIN, 'Admin'),
    (SUPER_ADMIN, 'Super admin'),
    (COMPANY_ADMIN, 'Company admin'),
    (MANAGER, 'Manager'),
    (EMPLOYEE, 'Employee'),
]

# Roles a company admin may hand out to members of its company
COMPANY_MEMBER_ROLES = [USER, EMPLOYEE, MANAGER, COMPANY_ADMIN]


class Company(models.Model):
    """Tenant: every business record belongs to one company"""
    SUBSCRIPTION_CHOICES = [
        ('MONTHLY', 'Monthly'),
        ('YEARLY', 'Yearly'),
    ]

    name = models.CharField(max_length=200)
    email = models.EmailField(blank=True)
    phone = models.CharField(max_length=30, blank=True)
    address = models.TextField(blank=True)
    subscription_type = models.CharField(max_length=20, choices=SUBSCRIPTION_CHOICES, blank=True, null=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name

    class Meta:
        db_table = 'companies'
        ordering = ['name']
        verbose_name_plural = 'Companies'


class UserManager(BaseUserManager):
    """Manager for users identified by email"""
    use_in_migrations = True

    def _create_user(self, email, password, **extra_fields):
        if not email:
            raise ValueError('The email address must be set')
        email = self.normalize_email(email)
        user = self.model(email=email, **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_user(self, email, password=None, **extra_fields):
        extra_fields.setdefault('is_staff', False)
        extra_fields.setdefault('is_superuser', False)
        return self._create_user(email, password, **extra_fields)

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault('is_staff', True)
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('role', SUPER_ADMIN)
        if extra_fields.get('is_staff') is not True:
            raise ValueError('Superuser must have is_staff=True.')
        if extra_fields.get('is_superuser') is not True:
            raise ValueError('Superuser must have is_superuser=True.')
        return self._create_user(email, password, **extra_fields)


class User(AbstractUser):
    """Application user, logs in with email"""
    username = None
    first_name = None
    last_name = None
    email = models.EmailField(unique=True)
    name = models.CharField(max_length=150, blank=True)
    phone = models.CharField(max_length=20, blank=True, null=True)
    avatar = models.URLField(max_length=500, blank=True, null=True)
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default=USER)
    company = models.ForeignKey(Company, on_delete=models.SET_NULL, null=True, blank=True, related_name='users')
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = []

    objects = UserManager()

    def __str__(self):
        return self.email

    def get_full_name(self):
        return self.name or self.email

    def get_short_name(self):
        return self.name or self.email.split('@')[0]

    @property
    def is_super_admin(self):
        return self.role == SUPER_ADMIN

    @property
    def is_company_admin(self):
        return self.role == COMPANY_ADMIN

    class Meta:
        db_table = 'users'
        ordering = ['email']


class Permission(models.Model):
    """An action allowed on a resource type"""
    CREATE = 'CREATE'
    READ = 'READ'
    UPDATE = 'UPDATE'
    DELETE = 'DELETE'

    ACTION_CHOICES = [
        (CREATE, 'Create'),
        (READ, 'Read'),
        (UPDATE, 'Update'),
        (DELETE, 'Delete'),
    ]

    RESOURCE_CHOICES = [
        ('USER', 'User'),
        ('COMPANY', 'Company'),
        ('CLIENT', 'Client'),
        ('PROJECT', 'Project'),
        ('TASK', 'Task'),
        ('PAYMENT', 'Payment'),
        ('INVOICE', 'Invoice'),
        ('PRODUCT', 'Product'),
        ('LEAD', 'Lead'),
        ('OPPORTUNITY', 'Opportunity'),
        ('OTHER', 'Other'),
    ]

    action = models.CharField(max_length=20, choices=ACTION_CHOICES)
    resource_type = models.CharField(max_length=20, choices=RESOURCE_CHOICES)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.action}:{self.resource_type}"

    class Meta:
        db_table = 'permissions'
        ordering = ['resource_type', 'action']
        unique_together = [['action', 'resource_type']]


class RolePermission(models.Model):
    """Grants a permission to every user holding a role"""
    role = models.CharField(max_length=20, choices=ROLE_CHOICES)
    permission = models.ForeignKey(Permission, on_delete=models.CASCADE, related_name='role_permissions')
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.role} -> {self.permission}"

    class Meta:
        db_table = 'role_permissions'
        ordering = ['role']
        unique_together = [['role', 'permission']]


class AuditLog(models.Model):
    """Audit trail of user actions, including denied access attempts"""
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='audit_logs')
    company = models.ForeignKey(Company, on_delete=models.SET_NULL, null=True, blank=True, related_name='audit_logs')
    action = models.CharField(max_length=50)
    resource = models.CharField(max_length=50)
    resource_id = models.CharField(max_length=100, blank=True, null=True)
    details = models.JSONField(default=dict, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.action} {self.resource} {self.resource_id or ''}".strip()

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['-created_at'], name='audit_logs_created_7b6f1e_idx'),
            models.Index(fields=['action'], name='audit_logs_action_3c9d2a_idx'),
            models.Index(fields=['resource'], name='audit_logs_resourc_5e1a8b_idx'),
            models.Index(fields=['company', '-created_at'], name='audit_logs_company_9f4c0d_idx'),
        ]
