import logging

from django.contrib.auth import authenticate, get_user_model, login, logout, update_session_auth_hash
from django.core.exceptions import ObjectDoesNotExist
from django.db import transaction
from django.db.models import Count
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework_simplejwt.exceptions import AuthenticationFailed, InvalidToken, TokenError
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer, TokenRefreshSerializer
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from .cache_utils import has_role_permission, role_permissions
from .filters import AuditLogFilter, UserFilter
from .models import (
    Company, Permission, RolePermission, AuditLog,
    ROLE_CHOICES, SUPER_ADMIN, COMPANY_ADMIN,
)
from .permissions import (
    require_permission, scope_to_company, ensure_same_company, deny_unless_super_admin,
    requested_company_id,
)
from .serializers import (
    UserSerializer, UserCreateSerializer, UserAdminUpdateSerializer, MemberCreateSerializer,
    ChangePasswordSerializer, CompanySerializer, CompanyCreateSerializer,
    PermissionSerializer, RolePermissionCreateSerializer, CheckPermissionSerializer,
    AuditLogSerializer,
)
from .utils import (
    create_audit_log, error_response, validation_error_response, not_found, paginate, parse_int,
)

logger = logging.getLogger(__name__)

User = get_user_model()


class CustomTokenObtainPairSerializer(TokenObtainPairSerializer):
    def validate(self, attrs):
        data = super().validate(attrs)
        if not self.user.is_active:
            raise AuthenticationFailed('User account is disabled.')
        data['user'] = UserSerializer(self.user).data
        return data

    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token['email'] = user.email
        token['role'] = user.role
        token['company_id'] = user.company_id
        return token


class CustomTokenObtainPairView(TokenObtainPairView):
    serializer_class = CustomTokenObtainPairSerializer


class CustomTokenRefreshSerializer(TokenRefreshSerializer):
    """Token refresh that reports deleted users as an invalid token"""
    def validate(self, attrs):
        try:
            return super().validate(attrs)
        except (InvalidToken, TokenError):
            raise InvalidToken('Token is invalid or expired.')
        except ObjectDoesNotExist:
            raise InvalidToken('Token is invalid. User no longer exists.')


class CustomTokenRefreshView(TokenRefreshView):
    serializer_class = CustomTokenRefreshSerializer


def issue_tokens(user):
    token = CustomTokenObtainPairSerializer.get_token(user)
    return {'access': str(token.access_token), 'refresh': str(token)}


@api_view(['POST'])
@permission_classes([AllowAny])
def register(request):
    """User registration endpoint"""
    serializer = UserCreateSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)
    user = serializer.save()
    create_audit_log(request=request, user=user, action='CREATE', resource='USER', resource_id=user.pk,
                     details={'via': 'register'})
    return Response({'user': UserSerializer(user).data, **issue_tokens(user)}, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([AllowAny])
def session_login(request):
    """Log in with email and password and start a cookie session"""
    email = request.data.get('email')
    password = request.data.get('password')
    if not email or not password:
        return error_response('Email and password are required')

    user = authenticate(request, email=email, password=password)
    if user is None:
        return error_response('Invalid credentials', status.HTTP_401_UNAUTHORIZED)
    if not user.is_active:
        return error_response('User account is disabled.', status.HTTP_401_UNAUTHORIZED)

    login(request, user)
    create_audit_log(request=request, user=user, action='LOGIN', resource='USER', resource_id=user.pk)
    return Response({'user': UserSerializer(user).data})


@api_view(['POST'])
@permission_classes([AllowAny])
def session_logout(request):
    """End the cookie session"""
    if request.user.is_authenticated:
        create_audit_log(request=request, action='LOGOUT', resource='USER', resource_id=request.user.pk)
    logout(request)
    return Response({'message': 'Logged out'})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def user_me(request):
    """Current user with the permission matrix of its role"""
    user = request.user
    user_data = UserSerializer(user).data
    user_data['is_super_admin'] = user.role == SUPER_ADMIN
    user_data['is_company_admin'] = user.role == COMPANY_ADMIN
    user_data['permissions'] = role_permissions(user.role)
    return Response(user_data)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def change_password(request):
    serializer = ChangePasswordSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)

    user = request.user
    if not user.check_password(serializer.validated_data['current_password']):
        return error_response('Current password is incorrect')

    user.set_password(serializer.validated_data['new_password'])
    user.save()
    # Keep the cookie session alive after the hash change
    if request.session.session_key:
        update_session_auth_hash(request, user)
    create_audit_log(request=request, action='UPDATE', resource='USER', resource_id=user.pk,
                     details={'field': 'password'})
    return Response({'message': 'Password updated'})


# User views
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
@require_permission('USER')
def user_list_create(request):
    """List users of the company or create a new user"""
    if request.method == 'GET':
        queryset = scope_to_company(User.objects.select_related('company'), request)
        user_filter = UserFilter(request.query_params, queryset=queryset)
        if not user_filter.is_valid():
            return validation_error_response(user_filter.errors)
        return Response(paginate(request, user_filter.qs.order_by('email'), UserSerializer))

    is_super_admin = request.user.role == SUPER_ADMIN
    context = {'allowed_roles': [role for role, _label in ROLE_CHOICES]} if is_super_admin else {}
    serializer = MemberCreateSerializer(data=request.data, context=context)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)

    if is_super_admin:
        company_id = parse_int(request.data.get('company_id'))
        company = Company.objects.filter(pk=company_id).first() if company_id is not None else None
        if company_id is not None and company is None:
            return not_found('Company')
    else:
        if not request.user.company_id:
            return error_response('You must belong to a company to create users')
        company = request.user.company

    return _create_member(request, company, serializer.validated_data)


def _create_member(request, company, data):
    role = data['role']
    existing = User.objects.filter(email__iexact=data['email']).first()
    if existing is not None:
        return error_response('A user with this email already exists', status.HTTP_409_CONFLICT,
                              existing_id=existing.pk)

    user = User.objects.create_user(
        email=data['email'],
        password=data['password'],
        name=data.get('name', ''),
        phone=data.get('phone') or None,
        role=role,
        company=company,
    )
    create_audit_log(request=request, action='CREATE', resource='USER', resource_id=user.pk,
                     details={'email': user.email, 'role': role, 'company_id': user.company_id})
    return Response(UserSerializer(user).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
@require_permission('USER', allow_self=True, target_kwarg='pk')
def user_detail(request, pk):
    """Retrieve, update or delete a user"""
    target = User.objects.select_related('company').filter(pk=pk).first()
    if target is None:
        return not_found('User')

    is_self = target.pk == request.user.pk
    if not is_self:
        denied = ensure_same_company(request, target.company_id)
        if denied:
            return denied

    if request.method == 'GET':
        return Response(UserSerializer(target).data)

    elif request.method == 'PATCH':
        is_admin = request.user.role in (SUPER_ADMIN, COMPANY_ADMIN)
        if is_admin and not is_self:
            serializer = UserAdminUpdateSerializer(target, data=request.data, partial=True,
                                                   context={'request': request})
        else:
            serializer = UserSerializer(target, data=request.data, partial=True)
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)
        serializer.save()
        create_audit_log(request=request, action='UPDATE', resource='USER', resource_id=target.pk,
                         details={'fields': sorted(serializer.validated_data.keys())})
        target.refresh_from_db()
        return Response(UserSerializer(target).data)

    else:  # DELETE
        if is_self:
            return error_response('You cannot delete your own account')
        target_id = target.pk
        target.delete()
        create_audit_log(request=request, action='DELETE', resource='USER', resource_id=target_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


# Company views
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
@require_permission('COMPANY')
def company_list_create(request):
    """List visible companies or create one, optionally with its first administrator"""
    if request.method == 'GET':
        queryset = Company.objects.annotate(user_count=Count('users'))
        if request.user.role != SUPER_ADMIN:
            queryset = queryset.filter(pk=request.user.company_id)
        search = request.query_params.get('search')
        if search:
            queryset = queryset.filter(name__icontains=search)
        return Response(paginate(request, queryset.order_by('name'), CompanySerializer))

    serializer = CompanyCreateSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)

    data = dict(serializer.validated_data)
    admin_email = data.pop('admin_email', None)
    admin_name = data.pop('admin_name', '')
    admin_password = data.pop('admin_password', None)

    if admin_email:
        existing = User.objects.filter(email__iexact=admin_email).first()
        if existing is not None:
            return error_response('A user with this email already exists', status.HTTP_409_CONFLICT,
                                  existing_id=existing.pk)

    with transaction.atomic():
        company = Company.objects.create(**data)
        admin_user = None
        if admin_email:
            admin_user = User.objects.create_user(
                email=admin_email,
                password=admin_password,
                name=admin_name,
                role=COMPANY_ADMIN,
                company=company,
            )
    logger.info(f"Company {company.pk} created by user {request.user.pk}")

    create_audit_log(request=request, action='CREATE', resource='COMPANY', resource_id=company.pk,
                     company_id=company.pk,
                     details={'name': company.name, 'admin_id': admin_user.pk if admin_user else None})
    response_data = CompanySerializer(company).data
    if admin_user is not None:
        response_data['admin'] = UserSerializer(admin_user).data
    return Response(response_data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
@require_permission('COMPANY')
def company_detail(request, pk):
    """Retrieve, update or delete a company"""
    company = Company.objects.annotate(user_count=Count('users')).filter(pk=pk).first()
    if company is None:
        return not_found('Company')
    denied = ensure_same_company(request, company.pk)
    if denied:
        return denied

    if request.method == 'GET':
        return Response(CompanySerializer(company).data)

    elif request.method == 'PATCH':
        serializer = CompanySerializer(company, data=request.data, partial=True)
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)
        serializer.save()
        create_audit_log(request=request, action='UPDATE', resource='COMPANY', resource_id=company.pk,
                         details={'fields': sorted(serializer.validated_data.keys())})
        return Response(serializer.data)

    else:  # DELETE
        company_id = company.pk
        company.delete()
        create_audit_log(request=request, action='DELETE', resource='COMPANY', resource_id=company_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
@require_permission('USER')
def company_users(request, pk):
    """List or add the users of a company"""
    company = Company.objects.filter(pk=pk).first()
    if company is None:
        return not_found('Company')
    denied = ensure_same_company(request, company.pk)
    if denied:
        return denied

    if request.method == 'GET':
        queryset = company.users.select_related('company').order_by('email')
        user_filter = UserFilter(request.query_params, queryset=queryset)
        if not user_filter.is_valid():
            return validation_error_response(user_filter.errors)
        return Response(paginate(request, user_filter.qs, UserSerializer))

    serializer = MemberCreateSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)
    return _create_member(request, company, serializer.validated_data)


# Permission views
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def permission_list_create(request):
    """List permissions or create one (super admins only)"""
    if request.method == 'GET':
        queryset = Permission.objects.all()
        resource_type = request.query_params.get('resource_type')
        if resource_type:
            queryset = queryset.filter(resource_type=resource_type.upper())
        action = request.query_params.get('action')
        if action:
            queryset = queryset.filter(action=action.upper())
        return Response(PermissionSerializer(queryset, many=True).data)

    denied = deny_unless_super_admin(request, resource='OTHER')
    if denied:
        return denied

    serializer = PermissionSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)

    existing = Permission.objects.filter(
        action=serializer.validated_data['action'],
        resource_type=serializer.validated_data['resource_type'],
    ).first()
    if existing is not None:
        return error_response('This permission already exists', status.HTTP_409_CONFLICT,
                              existing_id=existing.pk)

    permission = serializer.save()
    create_audit_log(request=request, action='CREATE', resource='OTHER', resource_id=permission.pk,
                     details={'permission': str(permission)})
    return Response(PermissionSerializer(permission).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def role_list_create(request):
    """Role -> permissions map, or grant a permission to a role (super admins only)"""
    if request.method == 'GET':
        roles = {role: [] for role, _label in ROLE_CHOICES}
        grants = RolePermission.objects.select_related('permission').order_by(
            'role', 'permission__resource_type', 'permission__action')
        for grant in grants:
            roles[grant.role].append(PermissionSerializer(grant.permission).data)
        return Response([{'role': role, 'permissions': permissions} for role, permissions in roles.items()])

    denied = deny_unless_super_admin(request, resource='OTHER')
    if denied:
        return denied

    serializer = RolePermissionCreateSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)

    role = serializer.validated_data['role']
    permission = Permission.objects.filter(pk=serializer.validated_data['permission_id']).first()
    if permission is None:
        return not_found('Permission')

    existing = RolePermission.objects.filter(role=role, permission=permission).first()
    if existing is not None:
        return error_response('This role already has this permission', status.HTTP_409_CONFLICT,
                              existing_id=existing.pk)

    grant = RolePermission.objects.create(role=role, permission=permission)
    create_audit_log(request=request, action='CREATE', resource='OTHER', resource_id=grant.pk,
                     details={'role': role, 'permission': str(permission)})
    return Response({'id': grant.pk, 'role': role, 'permission': PermissionSerializer(permission).data},
                    status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def check_user_permission(request):
    """Whether a user (default: the requester) holds a permission"""
    serializer = CheckPermissionSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)
    data = serializer.validated_data

    target = request.user
    user_id = data.get('user_id')
    if user_id is not None and user_id != request.user.pk:
        target = User.objects.filter(pk=user_id).first()
        if target is None:
            return not_found('User')
        denied = ensure_same_company(request, target.company_id)
        if denied:
            return denied

    if target.role == SUPER_ADMIN:
        allowed = True
    else:
        allowed = has_role_permission(target.role, data['action'], data['resource_type'])
    return Response({
        'user_id': target.pk,
        'action': data['action'],
        'resource_type': data['resource_type'],
        'has_permission': allowed,
    })


# AuditLog views (read-only)
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def audit_log_list(request):
    """Audit trail: super admins see everything, company admins their company"""
    user = request.user
    if user.role not in (SUPER_ADMIN, COMPANY_ADMIN):
        create_audit_log(request=request, action='ACCESS_DENIED', resource='OTHER',
                         details={'requested_action': 'READ', 'target': 'audit_logs'})
        return error_response('Access denied', status.HTTP_403_FORBIDDEN)

    queryset = AuditLog.objects.select_related('user')
    if user.role == SUPER_ADMIN:
        company_id = requested_company_id(request)
        if company_id is not None:
            queryset = queryset.filter(company_id=company_id)
    else:
        queryset = scope_to_company(queryset, request)

    audit_filter = AuditLogFilter(request.query_params, queryset=queryset)
    if not audit_filter.is_valid():
        return validation_error_response(audit_filter.errors)
    return Response(paginate(request, audit_filter.qs.order_by('-created_at'), AuditLogSerializer,
                             default_page_size=20))
