from rest_framework import serializers
from bizhub.core.exceptions import BusinessRuleError
from bizhub.core.serializers import UserBriefSerializer
from bizhub.crm.models import Provider
from bizhub.crm.serializers import ClientBriefSerializer
from .models import Project, ProjectPart, ProjectProvider, Task, TaskComment


class ProjectPartSerializer(serializers.ModelSerializer):
    class Meta:
        model = ProjectPart
        fields = ['id', 'project_id', 'name', 'description', 'price', 'completed', 'created_at', 'updated_at']
        read_only_fields = ['created_at', 'updated_at']

    def validate_price(self, value):
        if value < 0:
            raise serializers.ValidationError('Price cannot be negative')
        return value


class ProjectProviderSerializer(serializers.ModelSerializer):
    provider_id = serializers.IntegerField()
    provider_name = serializers.CharField(source='provider.name', read_only=True)

    class Meta:
        model = ProjectProvider
        fields = ['id', 'provider_id', 'provider_name', 'role', 'hourly_rate', 'fixed_amount']


def replace_providers(project, providers_data):
    """Replace every provider assignment of ``project`` with ``providers_data``"""
    project.provider_assignments.all().delete()
    for index, provider_data in enumerate(providers_data):
        serializer = ProjectProviderSerializer(data=provider_data)
        if not serializer.is_valid():
            raise serializers.ValidationError({'providers': {index: serializer.errors}})
        values = dict(serializer.validated_data)
        provider = Provider.objects.filter(pk=values.pop('provider_id'), company_id=project.company_id).first()
        if provider is None:
            raise BusinessRuleError(f'Provider not found (providers[{index}])')
        ProjectProvider.objects.update_or_create(project=project, provider=provider, defaults=values)


class ProjectSerializer(serializers.ModelSerializer):
    client_id = serializers.IntegerField(required=False, allow_null=True)
    client = ClientBriefSerializer(read_only=True)
    owner = UserBriefSerializer(read_only=True)
    parts = ProjectPartSerializer(many=True, read_only=True)
    providers = ProjectProviderSerializer(source='provider_assignments', many=True, read_only=True)

    class Meta:
        model = Project
        fields = ['id', 'company_id', 'client_id', 'client', 'owner', 'name', 'description', 'status',
                  'start_date', 'end_date', 'total_price', 'currency', 'is_fixed_price',
                  'parts', 'providers', 'created_at', 'updated_at']
        read_only_fields = ['created_at', 'updated_at']

    def validate(self, attrs):
        start_date = attrs.get('start_date', getattr(self.instance, 'start_date', None))
        end_date = attrs.get('end_date', getattr(self.instance, 'end_date', None))
        if start_date and end_date and end_date < start_date:
            raise serializers.ValidationError({'end_date': 'End date cannot be before start date'})
        if attrs.get('total_price') is not None and attrs['total_price'] < 0:
            raise serializers.ValidationError({'total_price': 'Total price cannot be negative'})
        return attrs

    def create(self, validated_data):
        parts_data = self.context.get('parts_data', [])
        providers_data = self.context.get('providers_data', [])

        project = super().create(validated_data)

        for index, part_data in enumerate(parts_data):
            part_serializer = ProjectPartSerializer(data=part_data)
            if not part_serializer.is_valid():
                raise serializers.ValidationError({'parts': {index: part_serializer.errors}})
            ProjectPart.objects.create(project=project, **part_serializer.validated_data)

        if providers_data:
            replace_providers(project, providers_data)

        return project


class ProjectDetailSerializer(ProjectSerializer):
    completion = serializers.SerializerMethodField()

    class Meta(ProjectSerializer.Meta):
        fields = ProjectSerializer.Meta.fields + ['completion']

    def get_completion(self, obj):
        summary = obj.completion_summary()
        summary['completed_amount'] = str(summary['completed_amount'])
        summary['parts_amount'] = str(summary['parts_amount'])
        return summary


class TaskCommentSerializer(serializers.ModelSerializer):
    author = UserBriefSerializer(read_only=True)

    class Meta:
        model = TaskComment
        fields = ['id', 'task_id', 'author', 'content', 'created_at']
        read_only_fields = ['created_at']


class SubtaskSerializer(serializers.ModelSerializer):
    class Meta:
        model = Task
        fields = ['id', 'title', 'status', 'priority', 'due_date', 'assigned_to_id']


class TaskSerializer(serializers.ModelSerializer):
    project_id = serializers.IntegerField(required=False)
    parent_id = serializers.IntegerField(required=False, allow_null=True)
    assigned_to_id = serializers.IntegerField(required=False, allow_null=True)
    assigned_to = UserBriefSerializer(read_only=True)
    created_by = UserBriefSerializer(read_only=True)
    subtask_count = serializers.SerializerMethodField()

    class Meta:
        model = Task
        fields = ['id', 'project_id', 'parent_id', 'title', 'description', 'status', 'priority', 'due_date',
                  'assigned_to_id', 'assigned_to', 'created_by', 'subtask_count', 'created_at', 'updated_at']
        read_only_fields = ['created_at', 'updated_at']

    def get_subtask_count(self, obj):
        annotated = getattr(obj, 'subtask_count', None)
        if annotated is not None:
            return annotated
        return obj.subtasks.count()


class TaskDetailSerializer(TaskSerializer):
    subtasks = SubtaskSerializer(many=True, read_only=True)
    comments = TaskCommentSerializer(many=True, read_only=True)

    class Meta(TaskSerializer.Meta):
        fields = TaskSerializer.Meta.fields + ['subtasks', 'comments']
