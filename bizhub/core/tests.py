"""
Tests for authentication, users, companies, permissions and the audit trail
"""
from django.test import TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient
from bizhub.core.cache_utils import has_role_permission
from bizhub.core.models import AuditLog, Permission, RolePermission, SUPER_ADMIN, COMPANY_ADMIN, MANAGER, USER
from bizhub.core.test_utils import TestDataFactory, AuthenticatedAPIClient


class AuthAPITests(TestCase):
    """Test registration, token login and the current user endpoint"""

    def setUp(self):
        TestDataFactory.seed_permissions()
        self.client = APIClient()

    def test_register_returns_tokens(self):
        """Registering creates a plain user and hands out a token pair"""
        response = self.client.post(reverse('register'), {
            'email': 'new.person@test.com',
            'password': 'Str0ng-passw0rd!',
            'password_confirm': 'Str0ng-passw0rd!',
            'name': 'New Person',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertIn('access', response.data)
        self.assertIn('refresh', response.data)
        self.assertEqual(response.data['user']['role'], USER)
        self.assertTrue(AuditLog.objects.filter(action='CREATE', resource='USER').exists())

    def test_register_password_mismatch(self):
        """Mismatching passwords are rejected with the standard error body"""
        response = self.client.post(reverse('register'), {
            'email': 'mismatch@test.com',
            'password': 'Str0ng-passw0rd!',
            'password_confirm': 'Different-passw0rd!',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Invalid data')
        self.assertIn('password', response.data['details'])

    def test_login_includes_user(self):
        """Token login returns the serialized user next to the tokens"""
        user = TestDataFactory.create_user(email='login@test.com', password='testpass123')
        response = self.client.post(reverse('token_obtain_pair'), {
            'email': 'login@test.com',
            'password': 'testpass123',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['user']['id'], user.pk)
        self.assertIn('access', response.data)

    def test_login_wrong_password(self):
        """Bad credentials get a 401"""
        TestDataFactory.create_user(email='login@test.com', password='testpass123')
        response = self.client.post(reverse('token_obtain_pair'), {
            'email': 'login@test.com',
            'password': 'wrong',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_me_requires_authentication(self):
        """Anonymous requests to /auth/me/ get a 401"""
        response = self.client.get(reverse('user-me'))
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_me_lists_role_permissions(self):
        """The current user comes with the permission pairs of its role"""
        company = TestDataFactory.create_company()
        user = TestDataFactory.create_user(role=MANAGER, company=company)
        client = AuthenticatedAPIClient().authenticate_user(user)
        response = client.get(reverse('user-me'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.data['is_super_admin'])
        self.assertIn('READ:PROJECT', response.data['permissions'])
        self.assertNotIn('DELETE:INVOICE', response.data['permissions'])

    def test_session_login(self):
        """Session login starts a cookie session usable by the API"""
        TestDataFactory.create_user(email='session@test.com', password='testpass123')
        response = self.client.post(reverse('session-login'), {
            'email': 'session@test.com',
            'password': 'testpass123',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(self.client.get(reverse('user-me')).status_code, status.HTTP_200_OK)


class PermissionCheckTests(TestCase):
    """Test the role permission matrix as seen by the endpoints"""

    def setUp(self):
        TestDataFactory.seed_permissions()
        self.company = TestDataFactory.create_company()
        self.user = TestDataFactory.create_user(role=USER, company=self.company)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

    def test_default_matrix(self):
        """Plain users read projects but never create clients"""
        self.assertTrue(has_role_permission(USER, 'READ', 'PROJECT'))
        self.assertFalse(has_role_permission(USER, 'CREATE', 'CLIENT'))
        self.assertTrue(has_role_permission(COMPANY_ADMIN, 'DELETE', 'INVOICE'))

    def test_denied_request_is_audited(self):
        """A 403 from the permission check leaves an ACCESS_DENIED entry"""
        response = self.client.post(reverse('client-list-create'), {'name': 'Acme'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['error'], 'Access denied')
        log = AuditLog.objects.get(action='ACCESS_DENIED')
        self.assertEqual(log.resource, 'CLIENT')
        self.assertEqual(log.user, self.user)
        self.assertEqual(log.details['requested_action'], 'CREATE')

    def test_granting_permission_takes_effect(self):
        """A new role grant is visible to the next request"""
        permission = Permission.objects.get(action='CREATE', resource_type='CLIENT')
        RolePermission.objects.create(role=USER, permission=permission)
        response = self.client.post(reverse('client-list-create'), {'name': 'Acme'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

    def test_check_permission_endpoint(self):
        """check-permission reports the flag for the requester"""
        response = self.client.post(reverse('user-check-permission'), {
            'action': 'READ',
            'resource_type': 'PROJECT',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['has_permission'])

    def test_user_may_read_self(self):
        """A user without USER permissions still reads its own record"""
        response = self.client.get(reverse('user-detail', args=[self.user.pk]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['email'], self.user.email)


class UserAPITests(TestCase):
    """Test user management by company admins and super admins"""

    def setUp(self):
        TestDataFactory.seed_permissions()
        self.company = TestDataFactory.create_company()
        self.other_company = TestDataFactory.create_company()
        self.admin = TestDataFactory.create_user(role=COMPANY_ADMIN, company=self.company)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.admin)

    def test_list_is_company_scoped(self):
        """Company admins only list the users of their company"""
        member = TestDataFactory.create_user(company=self.company)
        TestDataFactory.create_user(company=self.other_company)
        response = self.client.get(reverse('user-list-create'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        ids = {row['id'] for row in response.data['results']}
        self.assertEqual(ids, {self.admin.pk, member.pk})

    def test_company_id_parameter_never_widens_scope(self):
        """?company_id= pointing elsewhere does not leak other companies"""
        TestDataFactory.create_user(company=self.other_company)
        response = self.client.get(reverse('user-list-create'), {'company_id': self.other_company.pk})
        ids = {row['id'] for row in response.data['results']}
        self.assertEqual(ids, {self.admin.pk})

    def test_create_member(self):
        """The new member lands in the admin's company"""
        response = self.client.post(reverse('user-list-create'), {
            'email': 'member@test.com',
            'password': 'Str0ng-passw0rd!',
            'role': MANAGER,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['company_id'], self.company.pk)

    def test_create_member_rejects_super_admin_role(self):
        """Company admins cannot hand out the super admin role"""
        response = self.client.post(reverse('user-list-create'), {
            'email': 'boss@test.com',
            'password': 'Str0ng-passw0rd!',
            'role': SUPER_ADMIN,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_create_duplicate_email(self):
        """An existing email answers 409 with the existing id"""
        existing = TestDataFactory.create_user(email='taken@test.com', company=self.company)
        response = self.client.post(reverse('user-list-create'), {
            'email': 'taken@test.com',
            'password': 'Str0ng-passw0rd!',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['existing_id'], existing.pk)

    def test_other_company_user_is_forbidden(self):
        """Reading a user of another company is a 403"""
        outsider = TestDataFactory.create_user(company=self.other_company)
        response = self.client.get(reverse('user-detail', args=[outsider.pk]))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_cannot_delete_self(self):
        """Users cannot delete their own account"""
        response = self.client.delete(reverse('user-detail', args=[self.admin.pk]))
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class CompanyAPITests(TestCase):
    """Test company endpoints"""

    def setUp(self):
        TestDataFactory.seed_permissions()
        self.super_admin = TestDataFactory.create_user(role=SUPER_ADMIN)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.super_admin)

    def test_create_company_with_admin(self):
        """Super admins create a company together with its first administrator"""
        response = self.client.post(reverse('company-list-create'), {
            'name': 'Acme',
            'admin_email': 'admin@acme.com',
            'admin_password': 'Str0ng-passw0rd!',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['admin']['role'], COMPANY_ADMIN)
        self.assertEqual(response.data['admin']['company_id'], response.data['id'])

    def test_company_admin_cannot_create_company(self):
        """Creating companies is reserved to super admins"""
        company = TestDataFactory.create_company()
        admin = TestDataFactory.create_user(role=COMPANY_ADMIN, company=company)
        self.client.authenticate_user(admin)
        response = self.client.post(reverse('company-list-create'), {'name': 'Other'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_company_admin_sees_own_company(self):
        """Listing companies shows only the admin's own company"""
        company = TestDataFactory.create_company()
        TestDataFactory.create_company()
        admin = TestDataFactory.create_user(role=COMPANY_ADMIN, company=company)
        self.client.authenticate_user(admin)
        response = self.client.get(reverse('company-list-create'))
        self.assertEqual([row['id'] for row in response.data['results']], [company.pk])


class RoleAPITests(TestCase):
    """Test the role and permission management endpoints"""

    def setUp(self):
        TestDataFactory.seed_permissions()
        self.super_admin = TestDataFactory.create_user(role=SUPER_ADMIN)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.super_admin)

    def test_roles_listing(self):
        """Every role appears with its permissions"""
        response = self.client.get(reverse('role-list-create'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        roles = {row['role']: row['permissions'] for row in response.data}
        self.assertIn(SUPER_ADMIN, roles)
        self.assertTrue(roles[MANAGER])

    def test_duplicate_grant(self):
        """Granting a permission twice is a conflict"""
        permission = Permission.objects.get(action='READ', resource_type='PROJECT')
        response = self.client.post(reverse('role-list-create'), {
            'role': USER,
            'permission_id': permission.pk,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_grant_requires_super_admin(self):
        """Company admins cannot change the role matrix"""
        company = TestDataFactory.create_company()
        admin = TestDataFactory.create_user(role=COMPANY_ADMIN, company=company)
        self.client.authenticate_user(admin)
        permission = Permission.objects.get(action='DELETE', resource_type='CLIENT')
        response = self.client.post(reverse('role-list-create'), {
            'role': USER,
            'permission_id': permission.pk,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class AuditLogAPITests(TestCase):
    """Test the audit trail endpoint"""

    def setUp(self):
        TestDataFactory.seed_permissions()
        self.company = TestDataFactory.create_company()
        self.admin = TestDataFactory.create_user(role=COMPANY_ADMIN, company=self.company)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.admin)

    def test_company_admin_sees_own_company_entries(self):
        """Entries of other companies stay hidden"""
        other = TestDataFactory.create_company()
        AuditLog.objects.create(action='CREATE', resource='CLIENT', company=self.company)
        AuditLog.objects.create(action='CREATE', resource='CLIENT', company=other)
        response = self.client.get(reverse('audit-log-list'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)

    def test_regular_user_is_refused(self):
        """Only admins read the audit trail"""
        user = TestDataFactory.create_user(company=self.company)
        self.client.authenticate_user(user)
        response = self.client.get(reverse('audit-log-list'))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
