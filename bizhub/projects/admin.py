from django.contrib import admin
from .models import Project, ProjectPart, ProjectProvider, Task, TaskComment


class ProjectPartInline(admin.TabularInline):
    model = ProjectPart
    extra = 0


class ProjectProviderInline(admin.TabularInline):
    model = ProjectProvider
    extra = 0


@admin.register(Project)
class ProjectAdmin(admin.ModelAdmin):
    list_display = ['name', 'company', 'client', 'status', 'total_price', 'currency', 'start_date', 'end_date']
    list_filter = ['status', 'company', 'is_fixed_price']
    search_fields = ['name', 'description', 'client__name']
    ordering = ['-created_at']
    inlines = [ProjectPartInline, ProjectProviderInline]


class TaskCommentInline(admin.TabularInline):
    model = TaskComment
    extra = 0


@admin.register(Task)
class TaskAdmin(admin.ModelAdmin):
    list_display = ['title', 'project', 'status', 'priority', 'assigned_to', 'due_date']
    list_filter = ['status', 'priority']
    search_fields = ['title', 'description', 'project__name']
    ordering = ['-created_at']
    inlines = [TaskCommentInline]
