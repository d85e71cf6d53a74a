from decimal import Decimal

from django.conf import settings
from django.db import models


class Project(models.Model):
    STATUS_CHOICES = [
        ('PENDING_VALIDATION', 'Pending validation'),
        ('IN_PROGRESS', 'In progress'),
        ('COMPLETED', 'Completed'),
        ('PUBLISHED', 'Published'),
        ('FUTURE', 'Future'),
        ('PERSONAL', 'Personal'),
    ]

    company = models.ForeignKey('core.Company', on_delete=models.CASCADE, related_name='projects')
    client = models.ForeignKey('crm.Client', on_delete=models.SET_NULL, null=True, blank=True, related_name='projects')
    owner = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
                              related_name='owned_projects')
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='PENDING_VALIDATION')
    start_date = models.DateField(null=True, blank=True)
    end_date = models.DateField(null=True, blank=True)
    total_price = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0.00'))
    currency = models.CharField(max_length=3, default='XOF')
    is_fixed_price = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name

    def completion_summary(self):
        """Share of completed parts and tasks, and the value of the completed parts"""
        parts = list(self.parts.all())
        tasks = list(self.tasks.all())
        completed_parts = [part for part in parts if part.completed]
        done_tasks = [task for task in tasks if task.status == 'DONE']
        return {
            'parts_total': len(parts),
            'parts_completed': len(completed_parts),
            'parts_percent': round(len(completed_parts) * 100 / len(parts)) if parts else 0,
            'completed_amount': sum((part.price for part in completed_parts), Decimal('0.00')),
            'parts_amount': sum((part.price for part in parts), Decimal('0.00')),
            'tasks_total': len(tasks),
            'tasks_done': len(done_tasks),
            'tasks_percent': round(len(done_tasks) * 100 / len(tasks)) if tasks else 0,
        }

    class Meta:
        db_table = 'projects'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['company', 'status'], name='projects_company_2d8e4b_idx'),
        ]


class ProjectPart(models.Model):
    """Billable deliverable of a project"""
    project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name='parts')
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    price = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0.00'))
    completed = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.project.name} / {self.name}"

    class Meta:
        db_table = 'project_parts'
        ordering = ['created_at', 'id']


class ProjectProvider(models.Model):
    """Service provider assigned to a project"""
    project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name='provider_assignments')
    provider = models.ForeignKey('crm.Provider', on_delete=models.CASCADE, related_name='project_assignments')
    role = models.CharField(max_length=100, blank=True)
    hourly_rate = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    fixed_amount = models.DecimalField(max_digits=14, decimal_places=2, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.provider} on {self.project}"

    class Meta:
        db_table = 'project_providers'
        unique_together = [['project', 'provider']]


class Task(models.Model):
    STATUS_CHOICES = [
        ('TODO', 'To do'),
        ('IN_PROGRESS', 'In progress'),
        ('DONE', 'Done'),
    ]

    PRIORITY_CHOICES = [
        ('LOW', 'Low'),
        ('MEDIUM', 'Medium'),
        ('HIGH', 'High'),
        ('URGENT', 'Urgent'),
    ]

    project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name='tasks')
    parent = models.ForeignKey('self', on_delete=models.CASCADE, null=True, blank=True, related_name='subtasks')
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='TODO')
    priority = models.CharField(max_length=10, choices=PRIORITY_CHOICES, default='MEDIUM')
    due_date = models.DateField(null=True, blank=True)
    assigned_to = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
                                    related_name='assigned_tasks')
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
                                   related_name='created_tasks')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.title

    class Meta:
        db_table = 'tasks'
        ordering = ['-created_at']


class TaskComment(models.Model):
    task = models.ForeignKey(Task, on_delete=models.CASCADE, related_name='comments')
    author = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True,
                               related_name='task_comments')
    content = models.TextField()
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"Comment on {self.task}"

    class Meta:
        db_table = 'task_comments'
        ordering = ['created_at']
