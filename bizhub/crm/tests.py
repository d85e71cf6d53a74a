"""
Tests for clients, providers, leads, pipelines, opportunities and activities
"""
from decimal import Decimal
from django.test import TestCase
from django.urls import reverse
from rest_framework import status
from bizhub.core.models import AuditLog, SUPER_ADMIN, COMPANY_ADMIN, MANAGER, USER
from bizhub.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from bizhub.crm.models import Activity, Client, Lead, Opportunity


class ClientAPITests(TestCase):
    """Test client endpoints"""

    def setUp(self):
        TestDataFactory.seed_permissions()
        self.company = TestDataFactory.create_company()
        self.other_company = TestDataFactory.create_company()
        self.user = TestDataFactory.create_user(role=MANAGER, company=self.company)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

    def test_create_client(self):
        """Clients are created in the requester's company"""
        response = self.client.post(reverse('client-list-create'), {
            'name': 'Acme',
            'email': 'contact@acme.com',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['company_id'], self.company.pk)
        self.assertTrue(AuditLog.objects.filter(action='CREATE', resource='CLIENT').exists())

    def test_company_id_in_body_is_ignored(self):
        """Non super admins cannot write into another company"""
        response = self.client.post(reverse('client-list-create'), {
            'name': 'Acme',
            'company_id': self.other_company.pk,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['company_id'], self.company.pk)

    def test_duplicate_email_conflicts(self):
        """Same email in the same company is a 409"""
        existing = TestDataFactory.create_client(self.company, email='dup@acme.com')
        response = self.client.post(reverse('client-list-create'), {
            'name': 'Acme bis',
            'email': 'DUP@acme.com',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['existing_id'], existing.pk)

    def test_same_email_other_company_allowed(self):
        """Email uniqueness is per company"""
        TestDataFactory.create_client(self.other_company, email='dup@acme.com')
        response = self.client.post(reverse('client-list-create'), {
            'name': 'Acme',
            'email': 'dup@acme.com',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

    def test_list_scoped_and_searchable(self):
        """Listing only shows the company's clients and supports search"""
        TestDataFactory.create_client(self.company, name='Alpha')
        TestDataFactory.create_client(self.company, name='Beta')
        TestDataFactory.create_client(self.other_company, name='Alphabet')
        response = self.client.get(reverse('client-list-create'), {'search': 'alp'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([row['name'] for row in response.data['results']], ['Alpha'])
        self.assertEqual(response.data['count'], 1)

    def test_other_company_client_forbidden(self):
        """A client of another company is out of reach"""
        outsider = TestDataFactory.create_client(self.other_company)
        response = self.client.get(reverse('client-detail', args=[outsider.pk]))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_missing_client(self):
        """Unknown ids are a 404"""
        response = self.client.get(reverse('client-detail', args=[999999]))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_manager_deletes_client(self):
        """Managers hold DELETE on clients"""
        client = TestDataFactory.create_client(self.company)
        response = self.client.delete(reverse('client-detail', args=[client.pk]))
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(Client.objects.filter(pk=client.pk).exists())

    def test_super_admin_narrows_with_company_id(self):
        """Super admins see every company, narrowed by ?company_id="""
        TestDataFactory.create_client(self.company)
        TestDataFactory.create_client(self.other_company)
        super_admin = TestDataFactory.create_user(role=SUPER_ADMIN)
        self.client.authenticate_user(super_admin)
        response = self.client.get(reverse('client-list-create'))
        self.assertEqual(response.data['count'], 2)
        response = self.client.get(reverse('client-list-create'), {'company_id': self.other_company.pk})
        self.assertEqual(response.data['count'], 1)

    def test_super_admin_creates_for_existing_company_only(self):
        """Super admins pick the company of a new client, which must exist"""
        self.client.authenticate_user(TestDataFactory.create_user(role=SUPER_ADMIN))
        response = self.client.post(reverse('client-list-create'), {
            'name': 'Acme',
            'company_id': self.other_company.pk,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['company_id'], self.other_company.pk)

        response = self.client.post(reverse('client-list-create'), {
            'name': 'Ghost',
            'company_id': 987654,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'Company not found')
        self.assertFalse(Client.objects.filter(name='Ghost').exists())


class ProviderAPITests(TestCase):
    """Test provider endpoints"""

    def setUp(self):
        TestDataFactory.seed_permissions()
        self.company = TestDataFactory.create_company()
        self.user = TestDataFactory.create_user(role=COMPANY_ADMIN, company=self.company)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

    def test_create_and_update_provider(self):
        """Providers are created and updated like clients"""
        response = self.client.post(reverse('provider-list-create'), {
            'name': 'Jane Dev',
            'role': 'developer',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        provider_id = response.data['id']

        response = self.client.patch(reverse('provider-detail', args=[provider_id]), {
            'role': 'designer',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['role'], 'designer')


class LeadAPITests(TestCase):
    """Test lead endpoints"""

    def setUp(self):
        TestDataFactory.seed_permissions()
        self.company = TestDataFactory.create_company()
        self.user = TestDataFactory.create_user(role=MANAGER, company=self.company)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

    def test_create_lead_records_activity(self):
        """A new lead is logged as an automatic activity"""
        response = self.client.post(reverse('lead-list-create'), {
            'name': 'Prospect',
            'email': 'prospect@test.com',
            'source': 'website',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        activity = Activity.objects.get(related_to='LEAD', related_id=response.data['id'])
        self.assertEqual(activity.type, 'LEAD_CREATED')
        self.assertEqual(activity.status, 'COMPLETED')

    def test_assignee_must_be_company_member(self):
        """Assigning a lead to an outsider is a 404"""
        outsider = TestDataFactory.create_user(company=TestDataFactory.create_company())
        response = self.client.post(reverse('lead-list-create'), {
            'name': 'Prospect',
            'assigned_to_id': outsider.pk,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_filter_by_status(self):
        """Leads can be filtered by status"""
        TestDataFactory.create_lead(self.company, status='NEW')
        TestDataFactory.create_lead(self.company, status='QUALIFIED')
        response = self.client.get(reverse('lead-list-create'), {'status': 'qualified'})
        self.assertEqual(response.data['count'], 1)

    def test_plain_user_cannot_read_leads(self):
        """Leads are not part of the plain user grid"""
        user = TestDataFactory.create_user(role=USER, company=self.company)
        self.client.authenticate_user(user)
        response = self.client.get(reverse('lead-list-create'))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class OpportunityAPITests(TestCase):
    """Test pipelines, opportunities and their conversion"""

    def setUp(self):
        TestDataFactory.seed_permissions()
        self.company = TestDataFactory.create_company()
        self.user = TestDataFactory.create_user(role=MANAGER, company=self.company)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)
        self.pipeline = TestDataFactory.create_pipeline(self.company)
        self.lead = TestDataFactory.create_lead(self.company, organisation='Prospect Ltd')

    def test_create_pipeline_with_stages(self):
        """Stages are created in order with the pipeline"""
        response = self.client.post(reverse('pipeline-list-create'), {
            'name': 'Sales',
            'stages': [{'name': 'Contact'}, {'name': 'Offer', 'probability': 60}],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual([stage['name'] for stage in response.data['stages']], ['Contact', 'Offer'])
        self.assertEqual(response.data['stages'][1]['order'], 1)

    def test_create_opportunity_defaults_to_first_stage(self):
        """Without a stage the opportunity starts on the first one and qualifies the lead"""
        response = self.client.post(reverse('opportunity-list-create'), {
            'lead_id': self.lead.pk,
            'pipeline_id': self.pipeline.pk,
            'name': 'Website redesign',
            'amount': '2500.00',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['stage']['name'], 'Qualification')
        self.lead.refresh_from_db()
        self.assertEqual(self.lead.status, 'QUALIFIED')

    def test_stage_from_other_pipeline(self):
        """A stage outside the pipeline is a 404"""
        other = TestDataFactory.create_pipeline(self.company)
        response = self.client.post(reverse('opportunity-list-create'), {
            'lead_id': self.lead.pk,
            'pipeline_id': self.pipeline.pk,
            'stage_id': other.stages.first().pk,
            'name': 'Deal',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_negative_amount_rejected(self):
        """Amounts cannot be negative"""
        response = self.client.post(reverse('opportunity-list-create'), {
            'lead_id': self.lead.pk,
            'pipeline_id': self.pipeline.pk,
            'name': 'Deal',
            'amount': '-1.00',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_convert_creates_client(self):
        """Winning an opportunity converts its lead into a client"""
        opportunity = TestDataFactory.create_opportunity(self.company, lead=self.lead, pipeline=self.pipeline,
                                                         amount=Decimal('900.00'))
        response = self.client.post(reverse('opportunity-convert', args=[opportunity.pk]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['opportunity']['status'], 'WON')
        self.assertEqual(response.data['client']['name'], 'Prospect Ltd')

        self.lead.refresh_from_db()
        self.assertEqual(self.lead.status, 'CONVERTED')
        self.assertEqual(self.lead.converted_client_id, response.data['client']['id'])
        self.assertTrue(Activity.objects.filter(type='CLIENT_CONVERTED').exists())

    def test_convert_closed_opportunity(self):
        """A closed opportunity cannot be converted twice"""
        opportunity = TestDataFactory.create_opportunity(self.company, lead=self.lead, pipeline=self.pipeline)
        Opportunity.objects.filter(pk=opportunity.pk).update(status='LOST')
        response = self.client.post(reverse('opportunity-convert', args=[opportunity.pk]))
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_convert_reuses_existing_client(self):
        """A lead converted before keeps its client"""
        client = TestDataFactory.create_client(self.company)
        Lead.objects.filter(pk=self.lead.pk).update(converted_client=client)
        opportunity = TestDataFactory.create_opportunity(self.company, lead=self.lead, pipeline=self.pipeline)
        response = self.client.post(reverse('opportunity-convert', args=[opportunity.pk]))
        self.assertEqual(response.data['client']['id'], client.pk)
        self.assertEqual(Client.objects.filter(company=self.company).count(), 1)

    def test_delete_pipeline_in_use(self):
        """Pipelines with opportunities are protected"""
        TestDataFactory.create_opportunity(self.company, lead=self.lead, pipeline=self.pipeline)
        admin = TestDataFactory.create_user(role=COMPANY_ADMIN, company=self.company)
        self.client.authenticate_user(admin)
        response = self.client.delete(reverse('pipeline-detail', args=[self.pipeline.pk]))
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)


class ActivityAPITests(TestCase):
    """Test activity endpoints"""

    def setUp(self):
        TestDataFactory.seed_permissions()
        self.company = TestDataFactory.create_company()
        self.user = TestDataFactory.create_user(role=MANAGER, company=self.company)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

    def test_related_requires_pair(self):
        """related_to and related_id go together"""
        response = self.client.post(reverse('activity-list-create'), {
            'type': 'CALL',
            'subject': 'Intro call',
            'related_to': 'LEAD',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_completing_sets_timestamp(self):
        """Moving an activity to COMPLETED stamps completed_at"""
        lead = TestDataFactory.create_lead(self.company)
        response = self.client.post(reverse('activity-list-create'), {
            'type': 'CALL',
            'subject': 'Intro call',
            'related_to': 'LEAD',
            'related_id': lead.pk,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertIsNone(response.data['completed_at'])

        response = self.client.patch(reverse('activity-detail', args=[response.data['id']]), {
            'status': 'COMPLETED',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIsNotNone(response.data['completed_at'])
