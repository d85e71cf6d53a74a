import logging

from django.db import transaction
from django.db.models import Count
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from bizhub.core.models import User
from bizhub.core.permissions import (
    require_permission, scope_to_company, resolve_company_id, get_company_object,
)
from bizhub.core.utils import (
    create_audit_log, error_response, validation_error_response, not_found, paginate, parse_bool,
)
from bizhub.crm.models import Client
from .filters import ProjectFilter, TaskFilter
from .models import Project, ProjectPart, Task, TaskComment
from .serializers import (
    ProjectSerializer, ProjectDetailSerializer, ProjectPartSerializer, replace_providers,
    TaskSerializer, TaskDetailSerializer, TaskCommentSerializer,
)

logger = logging.getLogger(__name__)


def _project_queryset():
    return Project.objects.select_related('client', 'owner').prefetch_related(
        'parts', 'provider_assignments__provider')


def _task_queryset():
    return Task.objects.select_related('project', 'assigned_to', 'created_by').annotate(
        subtask_count=Count('subtasks'))


def _is_descendant(task, candidate_id):
    """True when ``candidate_id`` is ``task`` itself or sits below it in the subtask tree"""
    seen = set()
    while candidate_id is not None and candidate_id not in seen:
        if candidate_id == task.pk:
            return True
        seen.add(candidate_id)
        candidate_id = Task.objects.filter(pk=candidate_id).values_list('parent_id', flat=True).first()
    return False


def _check_member(user_id, company_id, label='Assignee'):
    if user_id is None:
        return None
    if not User.objects.filter(pk=user_id, company_id=company_id).exists():
        return not_found(label)
    return None


# Project views
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
@require_permission('PROJECT')
def project_list_create(request):
    """List projects or create a project with its parts and providers"""
    if request.method == 'GET':
        queryset = scope_to_company(_project_queryset(), request)
        project_filter = ProjectFilter(request.query_params, queryset=queryset)
        if not project_filter.is_valid():
            return validation_error_response(project_filter.errors)
        return Response(paginate(request, project_filter.qs.order_by('-created_at'), ProjectSerializer))

    company_id, error = resolve_company_id(request, request.data.get('company_id'))
    if error:
        return error

    data = request.data.copy()
    parts_data = data.pop('parts', [])
    providers_data = data.pop('providers', [])
    owner_id = data.pop('owner_id', None)

    serializer = ProjectSerializer(data=data, context={'parts_data': parts_data, 'providers_data': providers_data})
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)

    client_id = serializer.validated_data.get('client_id')
    if client_id is not None and not Client.objects.filter(pk=client_id, company_id=company_id).exists():
        return not_found('Client')

    error = _check_member(owner_id, company_id, 'Owner')
    if error:
        return error

    with transaction.atomic():
        project = serializer.save(company_id=company_id, owner_id=owner_id or request.user.pk)
    logger.info(f"Project {project.pk} created for company {company_id}")

    create_audit_log(request=request, action='CREATE', resource='PROJECT', resource_id=project.pk,
                     company_id=company_id,
                     details={'name': project.name, 'parts': len(parts_data), 'providers': len(providers_data)})
    project = _project_queryset().get(pk=project.pk)
    return Response(ProjectDetailSerializer(project).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
@require_permission('PROJECT')
def project_detail(request, pk):
    """Retrieve (with completion summary), update or delete a project"""
    project, error = get_company_object(request, _project_queryset().prefetch_related('tasks'), pk, 'Project')
    if error:
        return error

    if request.method == 'GET':
        return Response(ProjectDetailSerializer(project).data)

    elif request.method == 'PATCH':
        data = request.data.copy()
        providers_data = data.pop('providers', None)
        serializer = ProjectSerializer(project, data=data, partial=True)
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)

        client_id = serializer.validated_data.get('client_id')
        if client_id is not None and not Client.objects.filter(pk=client_id, company_id=project.company_id).exists():
            return not_found('Client')

        with transaction.atomic():
            serializer.save()
            if providers_data is not None:
                replace_providers(project, providers_data)

        create_audit_log(request=request, action='UPDATE', resource='PROJECT', resource_id=project.pk,
                         details={'fields': sorted(serializer.validated_data.keys()),
                                  'providers_replaced': providers_data is not None})
        project = _project_queryset().prefetch_related('tasks').get(pk=project.pk)
        return Response(ProjectDetailSerializer(project).data)

    else:  # DELETE
        project_id = project.pk
        project.delete()
        create_audit_log(request=request, action='DELETE', resource='PROJECT', resource_id=project_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
@require_permission('PROJECT')
def project_parts(request, pk):
    """List or add the parts of a project"""
    project, error = get_company_object(request, Project.objects.all(), pk, 'Project')
    if error:
        return error

    if request.method == 'GET':
        return Response(ProjectPartSerializer(project.parts.all(), many=True).data)

    serializer = ProjectPartSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)
    part = serializer.save(project=project)
    return Response(ProjectPartSerializer(part).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
@require_permission('PROJECT')
def project_part_detail(request, pk):
    """Retrieve, update or delete a project part"""
    part, error = get_company_object(request, ProjectPart.objects.select_related('project'), pk,
                                     'Project part', company_attr='project.company_id')
    if error:
        return error

    if request.method == 'GET':
        return Response(ProjectPartSerializer(part).data)

    elif request.method == 'PATCH':
        serializer = ProjectPartSerializer(part, data=request.data, partial=True)
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)
        serializer.save()
        return Response(serializer.data)

    else:  # DELETE
        part.delete()
        return Response(status=status.HTTP_204_NO_CONTENT)


# Task views
def _create_task(request, project, serializer):
    data = serializer.validated_data
    parent_id = data.get('parent_id')
    if parent_id is not None and not Task.objects.filter(pk=parent_id, project=project).exists():
        return error_response('Parent task must belong to the same project')

    error = _check_member(data.get('assigned_to_id'), project.company_id)
    if error:
        return error

    task = serializer.save(project_id=project.pk, created_by=request.user)
    create_audit_log(request=request, action='CREATE', resource='TASK', resource_id=task.pk,
                     company_id=project.company_id, details={'project_id': project.pk, 'title': task.title})
    task = _task_queryset().get(pk=task.pk)
    return Response(TaskSerializer(task).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
@require_permission('TASK')
def project_tasks(request, pk):
    """List or create the tasks of a project"""
    project, error = get_company_object(request, Project.objects.all(), pk, 'Project')
    if error:
        return error

    if request.method == 'GET':
        queryset = _task_queryset().filter(project=project)
        task_filter = TaskFilter(request.query_params, queryset=queryset)
        if not task_filter.is_valid():
            return validation_error_response(task_filter.errors)
        return Response(paginate(request, task_filter.qs.order_by('-created_at'), TaskSerializer, default_page_size=50))

    serializer = TaskSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)
    return _create_task(request, project, serializer)


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
@require_permission('TASK')
def task_list_create(request):
    """List tasks across visible projects or create one (project_id required)"""
    if request.method == 'GET':
        queryset = scope_to_company(_task_queryset(), request, field='project__company')
        if parse_bool(request.query_params.get('mine', False)):
            queryset = queryset.filter(assigned_to=request.user)
        task_filter = TaskFilter(request.query_params, queryset=queryset)
        if not task_filter.is_valid():
            return validation_error_response(task_filter.errors)
        return Response(paginate(request, task_filter.qs.order_by('-created_at'), TaskSerializer))

    serializer = TaskSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)
    project_id = serializer.validated_data.get('project_id')
    if project_id is None:
        return validation_error_response({'project_id': ['This field is required.']})

    project, error = get_company_object(request, Project.objects.all(), project_id, 'Project')
    if error:
        return error
    return _create_task(request, project, serializer)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
@require_permission('TASK')
def task_detail(request, pk):
    """Retrieve (with subtasks and comments), update or delete a task"""
    queryset = _task_queryset().prefetch_related('subtasks', 'comments__author')
    task, error = get_company_object(request, queryset, pk, 'Task', company_attr='project.company_id')
    if error:
        return error

    if request.method == 'GET':
        return Response(TaskDetailSerializer(task).data)

    elif request.method == 'PATCH':
        data = request.data.copy()
        # Moving a task to another project is not supported
        data.pop('project_id', None)
        serializer = TaskSerializer(task, data=data, partial=True)
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)

        validated = serializer.validated_data
        if 'parent_id' in validated and validated['parent_id'] is not None:
            parent_id = validated['parent_id']
            if not Task.objects.filter(pk=parent_id, project_id=task.project_id).exists():
                return error_response('Parent task must be another task of the same project')
            if _is_descendant(task, parent_id):
                return error_response('A task cannot be moved below itself or one of its subtasks')
        error = _check_member(validated.get('assigned_to_id'), task.project.company_id)
        if error:
            return error

        serializer.save()
        create_audit_log(request=request, action='UPDATE', resource='TASK', resource_id=task.pk,
                         details={'fields': sorted(validated.keys())})
        task = queryset.get(pk=task.pk)
        return Response(TaskDetailSerializer(task).data)

    else:  # DELETE
        task_id = task.pk
        task.delete()
        create_audit_log(request=request, action='DELETE', resource='TASK', resource_id=task_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
@require_permission('TASK', action='READ')
def task_comments(request, pk):
    """List or add comments on a task"""
    task, error = get_company_object(request, Task.objects.select_related('project'), pk, 'Task',
                                     company_attr='project.company_id')
    if error:
        return error

    if request.method == 'GET':
        comments = TaskComment.objects.filter(task=task).select_related('author')
        return Response(TaskCommentSerializer(comments, many=True).data)

    serializer = TaskCommentSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)
    comment = serializer.save(task=task, author=request.user)
    return Response(TaskCommentSerializer(comment).data, status=status.HTTP_201_CREATED)
