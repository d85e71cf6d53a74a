from rest_framework import serializers
from bizhub.core.serializers import UserBriefSerializer
from .models import Conversation, ConversationParticipant, Message


class ParticipantSerializer(serializers.ModelSerializer):
    user = UserBriefSerializer(read_only=True)

    class Meta:
        model = ConversationParticipant
        fields = ['user', 'last_read_at', 'joined_at']


class MessageSerializer(serializers.ModelSerializer):
    sender = UserBriefSerializer(read_only=True)

    class Meta:
        model = Message
        fields = ['id', 'conversation_id', 'sender', 'content', 'attachments', 'is_system_message', 'created_at']


class ConversationSerializer(serializers.ModelSerializer):
    participants = ParticipantSerializer(source='memberships', many=True, read_only=True)
    last_message = serializers.SerializerMethodField()
    unread_count = serializers.SerializerMethodField()

    class Meta:
        model = Conversation
        fields = ['id', 'name', 'company_id', 'is_direct_message', 'participants', 'last_message', 'unread_count',
                  'created_at', 'updated_at']

    def get_last_message(self, obj):
        message = obj.messages.select_related('sender').order_by('-created_at', '-id').first()
        return MessageSerializer(message).data if message else None

    def get_unread_count(self, obj):
        annotated = getattr(obj, 'unread_count', None)
        if annotated is not None:
            return annotated
        request = self.context.get('request')
        if request is None:
            return 0
        membership = next((m for m in obj.memberships.all() if m.user_id == request.user.pk), None)
        if membership is None:
            return 0
        unread = obj.messages.exclude(sender=request.user)
        if membership.last_read_at:
            unread = unread.filter(created_at__gt=membership.last_read_at)
        return unread.count()


class ConversationCreateSerializer(serializers.Serializer):
    name = serializers.CharField(required=False, allow_blank=True, max_length=200)
    company_id = serializers.IntegerField(required=False, allow_null=True)
    is_direct_message = serializers.BooleanField(default=False)
    participants = serializers.ListField(child=serializers.IntegerField(), min_length=1)
    initial_message = serializers.CharField(required=False, allow_blank=True)


class ConversationUpdateSerializer(serializers.Serializer):
    name = serializers.CharField(required=False, allow_blank=True, max_length=200)
    add_participants = serializers.ListField(child=serializers.IntegerField(), required=False, default=list)
    remove_participants = serializers.ListField(child=serializers.IntegerField(), required=False, default=list)


class MessageCreateSerializer(serializers.Serializer):
    conversation_id = serializers.IntegerField()
    content = serializers.CharField(min_length=1)
    attachments = serializers.ListField(child=serializers.CharField(), required=False, default=list)
    is_system_message = serializers.BooleanField(default=False)
