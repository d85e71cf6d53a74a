import logging

from django.db import transaction
from django.db.models import ProtectedError
from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from bizhub.core.models import User
from bizhub.core.permissions import (
    require_permission, scope_to_company, resolve_company_id, get_company_object,
)
from bizhub.core.utils import (
    create_audit_log, error_response, validation_error_response, not_found, paginate,
)
from .filters import ClientFilter, LeadFilter, OpportunityFilter, ActivityFilter
from .models import Client, Provider, Lead, Pipeline, PipelineStage, Opportunity, Activity
from .serializers import (
    ClientSerializer, ProviderSerializer, LeadSerializer, PipelineSerializer,
    OpportunitySerializer, OpportunityUpdateSerializer, ActivitySerializer,
)

logger = logging.getLogger(__name__)

RELATED_MODELS = {
    'LEAD': (Lead, 'Lead'),
    'OPPORTUNITY': (Opportunity, 'Opportunity'),
    'CLIENT': (Client, 'Client'),
}


def _company_for_create(request):
    return resolve_company_id(request, request.data.get('company_id'))


def _duplicate_email(model, company_id, email, exclude_pk=None):
    if not email:
        return None
    queryset = model.objects.filter(company_id=company_id, email__iexact=email)
    if exclude_pk is not None:
        queryset = queryset.exclude(pk=exclude_pk)
    return queryset.first()


# Client views
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
@require_permission('CLIENT')
def client_list_create(request):
    """List clients of the company or create a new client"""
    if request.method == 'GET':
        queryset = scope_to_company(Client.objects.all(), request)
        client_filter = ClientFilter(request.query_params, queryset=queryset)
        if not client_filter.is_valid():
            return validation_error_response(client_filter.errors)
        return Response(paginate(request, client_filter.qs.order_by('name'), ClientSerializer))

    company_id, error = _company_for_create(request)
    if error:
        return error

    serializer = ClientSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)

    existing = _duplicate_email(Client, company_id, serializer.validated_data.get('email'))
    if existing is not None:
        return error_response('A client with this email already exists', status.HTTP_409_CONFLICT,
                              existing_id=existing.pk)

    client = serializer.save(company_id=company_id, created_by=request.user)
    create_audit_log(request=request, action='CREATE', resource='CLIENT', resource_id=client.pk,
                     company_id=company_id, details={'name': client.name})
    return Response(ClientSerializer(client).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
@require_permission('CLIENT')
def client_detail(request, pk):
    """Retrieve, update or delete a client"""
    client, error = get_company_object(request, Client.objects.all(), pk, 'Client')
    if error:
        return error

    if request.method == 'GET':
        return Response(ClientSerializer(client).data)

    elif request.method == 'PATCH':
        serializer = ClientSerializer(client, data=request.data, partial=True)
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)
        existing = _duplicate_email(Client, client.company_id, serializer.validated_data.get('email'),
                                    exclude_pk=client.pk)
        if existing is not None:
            return error_response('A client with this email already exists', status.HTTP_409_CONFLICT,
                                  existing_id=existing.pk)
        serializer.save()
        create_audit_log(request=request, action='UPDATE', resource='CLIENT', resource_id=client.pk,
                         details={'fields': sorted(serializer.validated_data.keys())})
        return Response(serializer.data)

    else:  # DELETE
        client_id = client.pk
        client.delete()
        create_audit_log(request=request, action='DELETE', resource='CLIENT', resource_id=client_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


# Provider views
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
@require_permission('CLIENT')
def provider_list_create(request):
    """List service providers or create one"""
    if request.method == 'GET':
        queryset = scope_to_company(Provider.objects.all(), request)
        search = request.query_params.get('search')
        if search:
            queryset = queryset.filter(name__icontains=search)
        return Response(paginate(request, queryset.order_by('name'), ProviderSerializer))

    company_id, error = _company_for_create(request)
    if error:
        return error

    serializer = ProviderSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)

    existing = _duplicate_email(Provider, company_id, serializer.validated_data.get('email'))
    if existing is not None:
        return error_response('A provider with this email already exists', status.HTTP_409_CONFLICT,
                              existing_id=existing.pk)

    provider = serializer.save(company_id=company_id)
    create_audit_log(request=request, action='CREATE', resource='CLIENT', resource_id=provider.pk,
                     company_id=company_id, details={'provider': provider.name})
    return Response(ProviderSerializer(provider).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
@require_permission('CLIENT')
def provider_detail(request, pk):
    """Retrieve, update or delete a service provider"""
    provider, error = get_company_object(request, Provider.objects.all(), pk, 'Provider')
    if error:
        return error

    if request.method == 'GET':
        return Response(ProviderSerializer(provider).data)

    elif request.method == 'PATCH':
        serializer = ProviderSerializer(provider, data=request.data, partial=True)
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)
        serializer.save()
        return Response(serializer.data)

    else:  # DELETE
        provider.delete()
        return Response(status=status.HTTP_204_NO_CONTENT)


# Lead views
def _check_assignee(assignee_id, company_id):
    if assignee_id is None:
        return None
    if not User.objects.filter(pk=assignee_id, company_id=company_id).exists():
        return not_found('Assignee')
    return None


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
@require_permission('LEAD')
def lead_list_create(request):
    """List leads or create a new lead"""
    if request.method == 'GET':
        queryset = scope_to_company(Lead.objects.select_related('assigned_to', 'converted_client'), request)
        lead_filter = LeadFilter(request.query_params, queryset=queryset)
        if not lead_filter.is_valid():
            return validation_error_response(lead_filter.errors)
        return Response(paginate(request, lead_filter.qs.order_by('-created_at'), LeadSerializer))

    company_id, error = _company_for_create(request)
    if error:
        return error

    serializer = LeadSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)

    existing = _duplicate_email(Lead, company_id, serializer.validated_data.get('email'))
    if existing is not None:
        return error_response('A lead with this email already exists', status.HTTP_409_CONFLICT,
                              existing_id=existing.pk)

    error = _check_assignee(serializer.validated_data.get('assigned_to_id'), company_id)
    if error:
        return error

    with transaction.atomic():
        lead = serializer.save(company_id=company_id)
        Activity.record(company_id, request.user, 'LEAD_CREATED', f'Lead created: {lead.name}',
                        related_to='LEAD', related_id=lead.pk)

    create_audit_log(request=request, action='CREATE', resource='LEAD', resource_id=lead.pk,
                     company_id=company_id, details={'name': lead.name, 'source': lead.source})
    return Response(LeadSerializer(lead).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
@require_permission('LEAD')
def lead_detail(request, pk):
    """Retrieve, update or delete a lead"""
    lead, error = get_company_object(request, Lead.objects.select_related('assigned_to', 'converted_client'),
                                     pk, 'Lead')
    if error:
        return error

    if request.method == 'GET':
        data = LeadSerializer(lead).data
        data['opportunities'] = OpportunitySerializer(lead.opportunities.select_related('stage'), many=True).data
        return Response(data)

    elif request.method == 'PATCH':
        serializer = LeadSerializer(lead, data=request.data, partial=True)
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)
        existing = _duplicate_email(Lead, lead.company_id, serializer.validated_data.get('email'), exclude_pk=lead.pk)
        if existing is not None:
            return error_response('A lead with this email already exists', status.HTTP_409_CONFLICT,
                                  existing_id=existing.pk)
        error = _check_assignee(serializer.validated_data.get('assigned_to_id'), lead.company_id)
        if error:
            return error
        lead = serializer.save()
        create_audit_log(request=request, action='UPDATE', resource='LEAD', resource_id=lead.pk,
                         details={'fields': sorted(serializer.validated_data.keys())})
        return Response(LeadSerializer(lead).data)

    else:  # DELETE
        lead_id = lead.pk
        lead.delete()
        create_audit_log(request=request, action='DELETE', resource='LEAD', resource_id=lead_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


# Pipeline views
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
@require_permission('OPPORTUNITY')
def pipeline_list_create(request):
    """List sales pipelines or create one with its stages"""
    if request.method == 'GET':
        queryset = scope_to_company(Pipeline.objects.prefetch_related('stages'), request)
        return Response(PipelineSerializer(queryset.order_by('name'), many=True).data)

    company_id, error = _company_for_create(request)
    if error:
        return error

    data = request.data.copy()
    stages_data = data.pop('stages', [])
    serializer = PipelineSerializer(data=data, context={'stages_data': stages_data})
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)

    with transaction.atomic():
        pipeline = serializer.save(company_id=company_id)
        if pipeline.is_default:
            Pipeline.objects.filter(company_id=company_id).exclude(pk=pipeline.pk).update(is_default=False)

    return Response(PipelineSerializer(pipeline).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
@require_permission('OPPORTUNITY')
def pipeline_detail(request, pk):
    """Retrieve, update or delete a pipeline"""
    pipeline, error = get_company_object(request, Pipeline.objects.prefetch_related('stages'), pk, 'Pipeline')
    if error:
        return error

    if request.method == 'GET':
        return Response(PipelineSerializer(pipeline).data)

    elif request.method == 'PATCH':
        serializer = PipelineSerializer(pipeline, data=request.data, partial=True)
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)
        serializer.save()
        return Response(serializer.data)

    else:  # DELETE
        try:
            pipeline.delete()
        except ProtectedError:
            return error_response('Pipeline still has opportunities', status.HTTP_409_CONFLICT)
        return Response(status=status.HTTP_204_NO_CONTENT)


# Opportunity views
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
@require_permission('OPPORTUNITY')
def opportunity_list_create(request):
    """List opportunities or open a new one on a lead"""
    if request.method == 'GET':
        queryset = scope_to_company(Opportunity.objects.select_related('stage', 'owner'), request)
        opportunity_filter = OpportunityFilter(request.query_params, queryset=queryset)
        if not opportunity_filter.is_valid():
            return validation_error_response(opportunity_filter.errors)
        return Response(paginate(request, opportunity_filter.qs.order_by('-created_at'), OpportunitySerializer))

    company_id, error = _company_for_create(request)
    if error:
        return error

    serializer = OpportunitySerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)
    data = serializer.validated_data

    lead = Lead.objects.filter(pk=data['lead_id'], company_id=company_id).first()
    if lead is None:
        return not_found('Lead')

    pipeline = Pipeline.objects.filter(pk=data['pipeline_id']).first()
    if pipeline is None:
        return not_found('Pipeline')
    if pipeline.company_id != company_id:
        return error_response('Pipeline does not belong to this company')

    stage_id = data.get('stage_id')
    if stage_id is not None:
        stage = PipelineStage.objects.filter(pk=stage_id, pipeline=pipeline).first()
        if stage is None:
            return error_response('Stage not found in this pipeline', status.HTTP_404_NOT_FOUND)
    else:
        stage = pipeline.stages.order_by('order', 'id').first()

    with transaction.atomic():
        opportunity = serializer.save(company_id=company_id, stage_id=stage.pk if stage else None,
                                      owner=request.user)
        if lead.status in ('NEW', 'CONTACTED'):
            lead.status = 'QUALIFIED'
            lead.save(update_fields=['status', 'updated_at'])
        Activity.record(company_id, request.user, 'OPPORTUNITY_CREATED',
                        f'Opportunity created: {opportunity.name}',
                        related_to='OPPORTUNITY', related_id=opportunity.pk)

    create_audit_log(request=request, action='CREATE', resource='OPPORTUNITY', resource_id=opportunity.pk,
                     company_id=company_id, details={'lead_id': lead.pk, 'amount': str(opportunity.amount)})
    return Response(OpportunitySerializer(opportunity).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
@require_permission('OPPORTUNITY')
def opportunity_detail(request, pk):
    """Retrieve, update or delete an opportunity"""
    opportunity, error = get_company_object(request, Opportunity.objects.select_related('stage', 'owner'),
                                            pk, 'Opportunity')
    if error:
        return error

    if request.method == 'GET':
        return Response(OpportunitySerializer(opportunity).data)

    elif request.method == 'PATCH':
        serializer = OpportunityUpdateSerializer(opportunity, data=request.data, partial=True)
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)
        opportunity = serializer.save()
        create_audit_log(request=request, action='UPDATE', resource='OPPORTUNITY', resource_id=opportunity.pk,
                         details={'fields': sorted(serializer.validated_data.keys())})
        return Response(OpportunitySerializer(opportunity).data)

    else:  # DELETE
        opportunity_id = opportunity.pk
        opportunity.delete()
        create_audit_log(request=request, action='DELETE', resource='OPPORTUNITY', resource_id=opportunity_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
@require_permission('OPPORTUNITY', action='UPDATE')
def opportunity_convert(request, pk):
    """Win an opportunity: turn its lead into a client"""
    opportunity, error = get_company_object(request, Opportunity.objects.select_related('lead'), pk, 'Opportunity')
    if error:
        return error
    if opportunity.is_closed:
        return error_response('Opportunity is already closed')

    with transaction.atomic():
        lead = Lead.objects.select_for_update().get(pk=opportunity.lead_id)
        client = lead.converted_client
        if client is None:
            client = Client.objects.create(
                company_id=opportunity.company_id,
                name=lead.organisation or lead.name,
                email=lead.email,
                phone=lead.phone,
                notes=lead.notes,
                created_by=request.user,
            )
        lead.status = 'CONVERTED'
        lead.converted_client = client
        lead.save(update_fields=['status', 'converted_client', 'updated_at'])

        opportunity.status = 'WON'
        opportunity.save(update_fields=['status', 'updated_at'])

        Activity.record(opportunity.company_id, request.user, 'CLIENT_CONVERTED',
                        f'Client converted: {client.name}',
                        related_to='CLIENT', related_id=client.pk,
                        description=f'From opportunity "{opportunity.name}"')

    create_audit_log(request=request, action='CONVERT', resource='OPPORTUNITY', resource_id=opportunity.pk,
                     company_id=opportunity.company_id, details={'client_id': client.pk, 'lead_id': lead.pk})
    logger.info(f"Opportunity {opportunity.pk} converted to client {client.pk}")
    return Response({
        'opportunity': OpportunitySerializer(opportunity).data,
        'lead': LeadSerializer(lead).data,
        'client': ClientSerializer(client).data,
    })


# Activity views
def _check_related(related_to, related_id, company_id):
    if not related_to:
        return None
    model, label = RELATED_MODELS[related_to]
    if not model.objects.filter(pk=related_id, company_id=company_id).exists():
        return not_found(label)
    return None


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
@require_permission('LEAD')
def activity_list_create(request):
    """List CRM activities or plan a new one"""
    if request.method == 'GET':
        queryset = scope_to_company(Activity.objects.select_related('user'), request)
        activity_filter = ActivityFilter(request.query_params, queryset=queryset)
        if not activity_filter.is_valid():
            return validation_error_response(activity_filter.errors)
        return Response(paginate(request, activity_filter.qs.order_by('-created_at'), ActivitySerializer))

    company_id, error = _company_for_create(request)
    if error:
        return error

    serializer = ActivitySerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)
    data = serializer.validated_data

    error = _check_related(data.get('related_to'), data.get('related_id'), company_id)
    if error:
        return error

    extra = {}
    if data.get('status') == 'COMPLETED' and not data.get('completed_at'):
        extra['completed_at'] = timezone.now()
    activity = serializer.save(company_id=company_id, user=request.user, **extra)
    return Response(ActivitySerializer(activity).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
@require_permission('LEAD')
def activity_detail(request, pk):
    """Retrieve, update or delete an activity"""
    activity, error = get_company_object(request, Activity.objects.select_related('user'), pk, 'Activity')
    if error:
        return error

    if request.method == 'GET':
        return Response(ActivitySerializer(activity).data)

    elif request.method == 'PATCH':
        serializer = ActivitySerializer(activity, data=request.data, partial=True)
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)
        data = serializer.validated_data
        if 'related_to' in data or 'related_id' in data:
            error = _check_related(data.get('related_to', activity.related_to),
                                   data.get('related_id', activity.related_id), activity.company_id)
            if error:
                return error
        extra = {}
        if data.get('status') == 'COMPLETED' and not activity.completed_at and not data.get('completed_at'):
            extra['completed_at'] = timezone.now()
        activity = serializer.save(**extra)
        return Response(ActivitySerializer(activity).data)

    else:  # DELETE
        activity.delete()
        return Response(status=status.HTTP_204_NO_CONTENT)
