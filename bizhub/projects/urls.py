from django.urls import path
from .views import (
    project_list_create, project_detail,
    project_parts, project_part_detail,
    project_tasks, task_list_create, task_detail, task_comments,
)

urlpatterns = [
    # Project endpoints
    path('projects/', project_list_create, name='project-list-create'),
    path('projects/<int:pk>/', project_detail, name='project-detail'),
    path('projects/<int:pk>/parts/', project_parts, name='project-parts'),
    path('project-parts/<int:pk>/', project_part_detail, name='project-part-detail'),

    # Task endpoints
    path('projects/<int:pk>/tasks/', project_tasks, name='project-tasks'),
    path('tasks/', task_list_create, name='task-list-create'),
    path('tasks/<int:pk>/', task_detail, name='task-detail'),
    path('tasks/<int:pk>/comments/', task_comments, name='task-comments'),
]
