from django.urls import path
from .views import (
    CustomTokenObtainPairView, CustomTokenRefreshView, register, session_login, session_logout,
    user_me, change_password,
    user_list_create, user_detail, check_user_permission,
    company_list_create, company_detail, company_users,
    permission_list_create, role_list_create,
    audit_log_list,
)

urlpatterns = [
    # Auth endpoints
    path('auth/register/', register, name='register'),
    path('auth/login/', CustomTokenObtainPairView.as_view(), name='token_obtain_pair'),
    path('auth/refresh/', CustomTokenRefreshView.as_view(), name='token_refresh'),
    path('auth/session/login/', session_login, name='session-login'),
    path('auth/session/logout/', session_logout, name='session-logout'),
    path('auth/me/', user_me, name='user-me'),
    path('auth/change-password/', change_password, name='change-password'),

    # User endpoints
    path('users/', user_list_create, name='user-list-create'),
    path('users/check-permission/', check_user_permission, name='user-check-permission'),
    path('users/<int:pk>/', user_detail, name='user-detail'),

    # Company endpoints
    path('companies/', company_list_create, name='company-list-create'),
    path('companies/<int:pk>/', company_detail, name='company-detail'),
    path('companies/<int:pk>/users/', company_users, name='company-users'),

    # Permission endpoints
    path('permissions/', permission_list_create, name='permission-list-create'),
    path('roles/', role_list_create, name='role-list-create'),

    # AuditLog endpoints
    path('audit-logs/', audit_log_list, name='audit-log-list'),
]
