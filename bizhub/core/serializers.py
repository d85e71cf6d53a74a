from rest_framework import serializers
from django.contrib.auth.password_validation import validate_password
from .models import Company, User, Permission, AuditLog, ROLE_CHOICES, COMPANY_MEMBER_ROLES


class CompanySerializer(serializers.ModelSerializer):
    user_count = serializers.SerializerMethodField()

    class Meta:
        model = Company
        fields = ['id', 'name', 'email', 'phone', 'address', 'subscription_type', 'is_active',
                  'user_count', 'created_at', 'updated_at']
        read_only_fields = ['created_at', 'updated_at']

    def get_user_count(self, obj):
        annotated = getattr(obj, 'user_count', None)
        if annotated is not None:
            return annotated
        return obj.users.count()


class CompanyBriefSerializer(serializers.ModelSerializer):
    class Meta:
        model = Company
        fields = ['id', 'name']


class UserSerializer(serializers.ModelSerializer):
    company = CompanyBriefSerializer(read_only=True)

    class Meta:
        model = User
        fields = ['id', 'email', 'name', 'phone', 'avatar', 'role', 'company', 'company_id',
                  'is_active', 'created_at', 'updated_at']
        read_only_fields = ['email', 'role', 'company_id', 'is_active', 'created_at', 'updated_at']


class UserBriefSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = ['id', 'email', 'name', 'avatar', 'role']


class UserAdminUpdateSerializer(serializers.ModelSerializer):
    """Fields an administrator may change on someone else's account"""

    class Meta:
        model = User
        fields = ['name', 'phone', 'avatar', 'role', 'company', 'is_active']

    def validate(self, attrs):
        request = self.context.get('request')
        actor = getattr(request, 'user', None)
        if actor is not None and not actor.is_super_admin:
            if 'company' in attrs and attrs['company'] is not None and attrs['company'].pk != actor.company_id:
                raise serializers.ValidationError({'company': 'You can only assign users to your own company'})
            if 'role' in attrs and attrs['role'] not in COMPANY_MEMBER_ROLES:
                raise serializers.ValidationError({'role': f"Role must be one of {', '.join(COMPANY_MEMBER_ROLES)}"})
        return attrs


class UserCreateSerializer(serializers.ModelSerializer):
    password = serializers.CharField(write_only=True, validators=[validate_password])
    password_confirm = serializers.CharField(write_only=True)

    class Meta:
        model = User
        fields = ['email', 'password', 'password_confirm', 'name', 'phone']

    def validate(self, attrs):
        if attrs['password'] != attrs['password_confirm']:
            raise serializers.ValidationError({"password": "Passwords don't match"})
        return attrs

    def create(self, validated_data):
        validated_data.pop('password_confirm')
        password = validated_data.pop('password')
        return User.objects.create_user(password=password, is_active=True, **validated_data)


class MemberCreateSerializer(serializers.Serializer):
    """Payload for adding a user to a company"""
    email = serializers.EmailField()
    name = serializers.CharField(max_length=150, required=False, allow_blank=True)
    phone = serializers.CharField(max_length=20, required=False, allow_blank=True)
    password = serializers.CharField(write_only=True, validators=[validate_password])
    role = serializers.ChoiceField(choices=ROLE_CHOICES, default='USER')

    def validate_email(self, value):
        return User.objects.normalize_email(value)

    def validate_role(self, value):
        allowed = self.context.get('allowed_roles', COMPANY_MEMBER_ROLES)
        if value not in allowed:
            raise serializers.ValidationError(f"Role must be one of {', '.join(allowed)}")
        return value


class ChangePasswordSerializer(serializers.Serializer):
    current_password = serializers.CharField(write_only=True)
    new_password = serializers.CharField(write_only=True, validators=[validate_password])


class CompanyCreateSerializer(serializers.ModelSerializer):
    """Company payload with an optional first administrator"""
    admin_email = serializers.EmailField(required=False, write_only=True)
    admin_name = serializers.CharField(max_length=150, required=False, allow_blank=True, write_only=True)
    admin_password = serializers.CharField(required=False, write_only=True, validators=[validate_password])

    class Meta:
        model = Company
        fields = ['name', 'email', 'phone', 'address', 'subscription_type', 'is_active',
                  'admin_email', 'admin_name', 'admin_password']

    def validate(self, attrs):
        if attrs.get('admin_email') and not attrs.get('admin_password'):
            raise serializers.ValidationError({'admin_password': 'Required when admin_email is given'})
        return attrs


class PermissionSerializer(serializers.ModelSerializer):
    class Meta:
        model = Permission
        fields = ['id', 'action', 'resource_type', 'created_at']
        read_only_fields = ['created_at']
        # Duplicates are reported as 409 by the view
        validators = []


class RolePermissionCreateSerializer(serializers.Serializer):
    role = serializers.ChoiceField(choices=ROLE_CHOICES)
    permission_id = serializers.IntegerField()


class CheckPermissionSerializer(serializers.Serializer):
    user_id = serializers.IntegerField(required=False)
    action = serializers.ChoiceField(choices=Permission.ACTION_CHOICES)
    resource_type = serializers.ChoiceField(choices=Permission.RESOURCE_CHOICES)


class AuditLogSerializer(serializers.ModelSerializer):
    user = UserBriefSerializer(read_only=True)

    class Meta:
        model = AuditLog
        fields = ['id', 'user', 'company_id', 'action', 'resource', 'resource_id', 'details',
                  'ip_address', 'created_at']
