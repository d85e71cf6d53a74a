from rest_framework import serializers
from bizhub.core.serializers import UserBriefSerializer
from .models import Client, Provider, Lead, Pipeline, PipelineStage, Opportunity, Activity


class ClientSerializer(serializers.ModelSerializer):
    class Meta:
        model = Client
        fields = ['id', 'company_id', 'name', 'email', 'phone', 'address', 'logo', 'notes',
                  'created_at', 'updated_at']
        read_only_fields = ['created_at', 'updated_at']


class ClientBriefSerializer(serializers.ModelSerializer):
    class Meta:
        model = Client
        fields = ['id', 'name', 'email']


class ProviderSerializer(serializers.ModelSerializer):
    class Meta:
        model = Provider
        fields = ['id', 'company_id', 'name', 'email', 'phone', 'role', 'notes', 'created_at', 'updated_at']
        read_only_fields = ['created_at', 'updated_at']


class LeadSerializer(serializers.ModelSerializer):
    assigned_to = UserBriefSerializer(read_only=True)
    assigned_to_id = serializers.IntegerField(required=False, allow_null=True, write_only=True)
    converted_client = ClientBriefSerializer(read_only=True)

    class Meta:
        model = Lead
        fields = ['id', 'company_id', 'name', 'email', 'phone', 'organisation', 'source', 'status', 'notes',
                  'assigned_to', 'assigned_to_id', 'converted_client', 'created_at', 'updated_at']
        read_only_fields = ['created_at', 'updated_at']


class PipelineStageSerializer(serializers.ModelSerializer):
    class Meta:
        model = PipelineStage
        fields = ['id', 'name', 'order', 'probability']


class PipelineSerializer(serializers.ModelSerializer):
    stages = PipelineStageSerializer(many=True, read_only=True)

    class Meta:
        model = Pipeline
        fields = ['id', 'company_id', 'name', 'description', 'is_default', 'stages', 'created_at', 'updated_at']
        read_only_fields = ['created_at', 'updated_at']

    def create(self, validated_data):
        stages_data = self.context.get('stages_data', [])
        pipeline = Pipeline.objects.create(**validated_data)
        for index, stage_data in enumerate(stages_data):
            stage_serializer = PipelineStageSerializer(data=stage_data)
            if not stage_serializer.is_valid():
                raise serializers.ValidationError({'stages': {index: stage_serializer.errors}})
            stage_values = dict(stage_serializer.validated_data)
            stage_values.setdefault('order', index)
            PipelineStage.objects.create(pipeline=pipeline, **stage_values)
        return pipeline


class OpportunitySerializer(serializers.ModelSerializer):
    lead_id = serializers.IntegerField()
    pipeline_id = serializers.IntegerField()
    stage_id = serializers.IntegerField(required=False, allow_null=True)
    stage = PipelineStageSerializer(read_only=True)
    owner = UserBriefSerializer(read_only=True)

    class Meta:
        model = Opportunity
        fields = ['id', 'company_id', 'lead_id', 'pipeline_id', 'stage_id', 'stage', 'name', 'description',
                  'amount', 'currency', 'closing_date', 'status', 'owner', 'created_at', 'updated_at']
        read_only_fields = ['status', 'created_at', 'updated_at']

    def validate_amount(self, value):
        if value < 0:
            raise serializers.ValidationError('Amount cannot be negative')
        return value


class OpportunityUpdateSerializer(serializers.ModelSerializer):
    stage_id = serializers.IntegerField(required=False, allow_null=True)

    class Meta:
        model = Opportunity
        fields = ['name', 'description', 'amount', 'currency', 'closing_date', 'status', 'stage_id']

    def validate_stage_id(self, value):
        if value is not None and not PipelineStage.objects.filter(pk=value, pipeline_id=self.instance.pipeline_id).exists():
            raise serializers.ValidationError('Stage does not belong to this pipeline')
        return value


class ActivitySerializer(serializers.ModelSerializer):
    user = UserBriefSerializer(read_only=True)

    class Meta:
        model = Activity
        fields = ['id', 'company_id', 'user', 'type', 'subject', 'description', 'status', 'scheduled_at',
                  'completed_at', 'related_to', 'related_id', 'created_at', 'updated_at']
        read_only_fields = ['created_at', 'updated_at']

    def validate(self, attrs):
        related_to = attrs.get('related_to', getattr(self.instance, 'related_to', None))
        related_id = attrs.get('related_id', getattr(self.instance, 'related_id', None))
        if bool(related_to) != (related_id is not None):
            raise serializers.ValidationError('related_to and related_id must be given together')
        return attrs
