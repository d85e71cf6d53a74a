from decimal import Decimal

from django.conf import settings
from django.db import models
from django.utils import timezone


class Client(models.Model):
    """Customer of a company"""
    company = models.ForeignKey('core.Company', on_delete=models.CASCADE, related_name='clients')
    name = models.CharField(max_length=200)
    email = models.EmailField(blank=True)
    phone = models.CharField(max_length=30, blank=True)
    address = models.TextField(blank=True)
    logo = models.URLField(max_length=500, blank=True, null=True)
    notes = models.TextField(blank=True)
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
                                   related_name='clients_created')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name

    class Meta:
        db_table = 'clients'
        ordering = ['name']


class Provider(models.Model):
    """Service provider (freelancer or subcontractor) hired on projects"""
    company = models.ForeignKey('core.Company', on_delete=models.CASCADE, related_name='providers')
    name = models.CharField(max_length=200)
    email = models.EmailField(blank=True)
    phone = models.CharField(max_length=30, blank=True)
    role = models.CharField(max_length=100, blank=True, help_text="Speciality, e.g. developer, designer")
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name

    class Meta:
        db_table = 'providers'
        ordering = ['name']


class Lead(models.Model):
    STATUS_CHOICES = [
        ('NEW', 'New'),
        ('CONTACTED', 'Contacted'),
        ('QUALIFIED', 'Qualified'),
        ('CONVERTED', 'Converted'),
        ('LOST', 'Lost'),
    ]

    company = models.ForeignKey('core.Company', on_delete=models.CASCADE, related_name='leads')
    name = models.CharField(max_length=200)
    email = models.EmailField(blank=True)
    phone = models.CharField(max_length=30, blank=True)
    organisation = models.CharField(max_length=200, blank=True, help_text="Prospect's own company name")
    source = models.CharField(max_length=100, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='NEW')
    notes = models.TextField(blank=True)
    assigned_to = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
                                    related_name='assigned_leads')
    converted_client = models.ForeignKey(Client, on_delete=models.SET_NULL, null=True, blank=True,
                                         related_name='source_leads')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name

    class Meta:
        db_table = 'leads'
        ordering = ['-created_at']


class Pipeline(models.Model):
    """Sales pipeline made of ordered stages"""
    company = models.ForeignKey('core.Company', on_delete=models.CASCADE, related_name='pipelines')
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    is_default = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name

    class Meta:
        db_table = 'pipelines'
        ordering = ['name']


class PipelineStage(models.Model):
    pipeline = models.ForeignKey(Pipeline, on_delete=models.CASCADE, related_name='stages')
    name = models.CharField(max_length=100)
    order = models.PositiveIntegerField(default=0)
    probability = models.PositiveSmallIntegerField(default=0, help_text="Win probability in percent")

    def __str__(self):
        return f"{self.pipeline.name} / {self.name}"

    class Meta:
        db_table = 'pipeline_stages'
        ordering = ['pipeline', 'order', 'id']


class Opportunity(models.Model):
    STATUS_CHOICES = [
        ('OPEN', 'Open'),
        ('WON', 'Won'),
        ('LOST', 'Lost'),
    ]

    company = models.ForeignKey('core.Company', on_delete=models.CASCADE, related_name='opportunities')
    lead = models.ForeignKey(Lead, on_delete=models.CASCADE, related_name='opportunities')
    pipeline = models.ForeignKey(Pipeline, on_delete=models.PROTECT, related_name='opportunities')
    stage = models.ForeignKey(PipelineStage, on_delete=models.SET_NULL, null=True, blank=True,
                              related_name='opportunities')
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    amount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0.00'))
    currency = models.CharField(max_length=3, default='XOF')
    closing_date = models.DateField(null=True, blank=True)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='OPEN')
    owner = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
                              related_name='opportunities')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name

    @property
    def is_closed(self):
        return self.status in ('WON', 'LOST')

    class Meta:
        db_table = 'opportunities'
        ordering = ['-created_at']
        verbose_name_plural = 'Opportunities'


class Activity(models.Model):
    """CRM timeline entry: planned work or an automatically recorded event"""
    TYPE_CHOICES = [
        ('CALL', 'Call'),
        ('EMAIL', 'Email'),
        ('MEETING', 'Meeting'),
        ('TASK', 'Task'),
        ('NOTE', 'Note'),
        ('LEAD_CREATED', 'Lead created'),
        ('OPPORTUNITY_CREATED', 'Opportunity created'),
        ('CLIENT_CONVERTED', 'Client converted'),
    ]

    STATUS_CHOICES = [
        ('PLANNED', 'Planned'),
        ('IN_PROGRESS', 'In progress'),
        ('COMPLETED', 'Completed'),
        ('CANCELLED', 'Cancelled'),
    ]

    RELATED_CHOICES = [
        ('LEAD', 'Lead'),
        ('OPPORTUNITY', 'Opportunity'),
        ('CLIENT', 'Client'),
    ]

    company = models.ForeignKey('core.Company', on_delete=models.CASCADE, related_name='activities')
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
                             related_name='activities')
    type = models.CharField(max_length=30, choices=TYPE_CHOICES)
    subject = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='PLANNED')
    scheduled_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    related_to = models.CharField(max_length=20, choices=RELATED_CHOICES, blank=True, null=True)
    related_id = models.PositiveBigIntegerField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.subject

    @classmethod
    def record(cls, company_id, user, type, subject, related_to=None, related_id=None, description=''):
        """Store an automatic, already completed activity"""
        now = timezone.now()
        return cls.objects.create(
            company_id=company_id,
            user=user if user is not None and user.is_authenticated else None,
            type=type,
            subject=subject,
            description=description,
            status='COMPLETED',
            scheduled_at=now,
            completed_at=now,
            related_to=related_to,
            related_id=related_id,
        )

    class Meta:
        db_table = 'activities'
        ordering = ['-created_at']
        verbose_name_plural = 'Activities'
        indexes = [
            models.Index(fields=['related_to', 'related_id'], name='activities_related_4a1c7e_idx'),
        ]
