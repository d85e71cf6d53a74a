"""
Tests for projects, parts, provider assignments, tasks and comments
"""
from decimal import Decimal
from django.test import TestCase
from django.urls import reverse
from rest_framework import status
from bizhub.core.models import SUPER_ADMIN, COMPANY_ADMIN, MANAGER, USER
from bizhub.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from bizhub.projects.models import Project, ProjectPart, ProjectProvider, Task


class ProjectAPITests(TestCase):
    """Test project endpoints"""

    def setUp(self):
        TestDataFactory.seed_permissions()
        self.company = TestDataFactory.create_company()
        self.other_company = TestDataFactory.create_company()
        self.user = TestDataFactory.create_user(role=MANAGER, company=self.company)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)
        self.customer = TestDataFactory.create_client(self.company)

    def test_create_project_with_parts_and_providers(self):
        """Parts and provider assignments are created with the project"""
        provider = TestDataFactory.create_provider(self.company)
        response = self.client.post(reverse('project-list-create'), {
            'name': 'Website',
            'client_id': self.customer.pk,
            'total_price': '3000.00',
            'parts': [
                {'name': 'Design', 'price': '1000.00'},
                {'name': 'Build', 'price': '2000.00'},
            ],
            'providers': [
                {'provider_id': provider.pk, 'role': 'developer', 'fixed_amount': '800.00'},
            ],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(len(response.data['parts']), 2)
        self.assertEqual(response.data['providers'][0]['provider_name'], provider.name)
        self.assertEqual(response.data['owner']['id'], self.user.pk)
        self.assertEqual(response.data['completion']['parts_total'], 2)

    def test_provider_of_other_company_rolls_back(self):
        """A foreign provider fails the whole creation"""
        provider = TestDataFactory.create_provider(self.other_company)
        response = self.client.post(reverse('project-list-create'), {
            'name': 'Website',
            'parts': [{'name': 'Design', 'price': '100.00'}],
            'providers': [{'provider_id': provider.pk}],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('error', response.data)
        self.assertFalse(Project.objects.exists())
        self.assertFalse(ProjectPart.objects.exists())

    def test_invalid_part_rolls_back(self):
        """A negative part price is rejected and nothing is stored"""
        response = self.client.post(reverse('project-list-create'), {
            'name': 'Website',
            'parts': [{'name': 'Design', 'price': '-5.00'}],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(Project.objects.exists())

    def test_client_must_belong_to_company(self):
        """A client from another company is a 404"""
        outsider = TestDataFactory.create_client(self.other_company)
        response = self.client.post(reverse('project-list-create'), {
            'name': 'Website',
            'client_id': outsider.pk,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_super_admin_unknown_company(self):
        """A super admin naming a company that does not exist gets a 404"""
        self.client.authenticate_user(TestDataFactory.create_user(role=SUPER_ADMIN))
        response = self.client.post(reverse('project-list-create'), {
            'name': 'Website',
            'company_id': 987654,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'Company not found')
        self.assertFalse(Project.objects.filter(name='Website').exists())

    def test_end_before_start(self):
        """End date cannot precede the start date"""
        response = self.client.post(reverse('project-list-create'), {
            'name': 'Website',
            'start_date': '2024-05-10',
            'end_date': '2024-05-01',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('end_date', response.data['details'])

    def test_other_company_project_forbidden(self):
        """Projects of another company answer 403"""
        project = TestDataFactory.create_project(self.other_company)
        response = self.client.get(reverse('project-detail', args=[project.pk]))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_list_filters_by_status(self):
        """Listing is scoped and filterable by status"""
        TestDataFactory.create_project(self.company, status='IN_PROGRESS')
        TestDataFactory.create_project(self.company, status='COMPLETED')
        TestDataFactory.create_project(self.other_company, status='COMPLETED')
        response = self.client.get(reverse('project-list-create'), {'status': 'completed'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)

    def test_completion_summary(self):
        """Completion counts parts and done tasks"""
        project = TestDataFactory.create_project(self.company)
        TestDataFactory.create_part(project, price=Decimal('300.00'), completed=True)
        TestDataFactory.create_part(project, price=Decimal('700.00'))
        TestDataFactory.create_task(project, status='DONE')
        TestDataFactory.create_task(project)
        response = self.client.get(reverse('project-detail', args=[project.pk]))
        completion = response.data['completion']
        self.assertEqual(completion['parts_percent'], 50)
        self.assertEqual(completion['completed_amount'], '300.00')
        self.assertEqual(completion['parts_amount'], '1000.00')
        self.assertEqual(completion['tasks_done'], 1)

    def test_patch_replaces_providers(self):
        """Sending providers on update replaces the assignments"""
        project = TestDataFactory.create_project(self.company)
        first = TestDataFactory.create_provider(self.company)
        second = TestDataFactory.create_provider(self.company)
        ProjectProvider.objects.create(project=project, provider=first)
        response = self.client.patch(reverse('project-detail', args=[project.pk]), {
            'providers': [{'provider_id': second.pk, 'hourly_rate': '45.00'}],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([row['provider_id'] for row in response.data['providers']], [second.pk])

    def test_plain_user_reads_but_cannot_create(self):
        """Users read projects but cannot create them"""
        user = TestDataFactory.create_user(role=USER, company=self.company)
        self.client.authenticate_user(user)
        self.assertEqual(self.client.get(reverse('project-list-create')).status_code, status.HTTP_200_OK)
        response = self.client.post(reverse('project-list-create'), {'name': 'Nope'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class ProjectPartAPITests(TestCase):
    """Test project part endpoints"""

    def setUp(self):
        TestDataFactory.seed_permissions()
        self.company = TestDataFactory.create_company()
        self.user = TestDataFactory.create_user(role=COMPANY_ADMIN, company=self.company)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)
        self.project = TestDataFactory.create_project(self.company)

    def test_add_and_complete_part(self):
        """Parts are added to a project and marked completed"""
        response = self.client.post(reverse('project-parts', args=[self.project.pk]), {
            'name': 'Hosting setup',
            'price': '150.00',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        response = self.client.patch(reverse('project-part-detail', args=[response.data['id']]), {
            'completed': True,
        }, format='json')
        self.assertTrue(response.data['completed'])

    def test_part_of_other_company(self):
        """Parts are checked through their project's company"""
        other_project = TestDataFactory.create_project(TestDataFactory.create_company())
        part = TestDataFactory.create_part(other_project)
        response = self.client.delete(reverse('project-part-detail', args=[part.pk]))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertTrue(ProjectPart.objects.filter(pk=part.pk).exists())


class TaskAPITests(TestCase):
    """Test task and comment endpoints"""

    def setUp(self):
        TestDataFactory.seed_permissions()
        self.company = TestDataFactory.create_company()
        self.user = TestDataFactory.create_user(role=MANAGER, company=self.company)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)
        self.project = TestDataFactory.create_project(self.company)

    def test_create_task_requires_project(self):
        """project_id is mandatory on /tasks/"""
        response = self.client.post(reverse('task-list-create'), {'title': 'Orphan'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('project_id', response.data['details'])

    def test_create_task_with_assignee(self):
        """Tasks are created on a project and assigned to a colleague"""
        colleague = TestDataFactory.create_user(company=self.company)
        response = self.client.post(reverse('task-list-create'), {
            'project_id': self.project.pk,
            'title': 'Write copy',
            'assigned_to_id': colleague.pk,
            'priority': 'HIGH',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['assigned_to']['id'], colleague.pk)
        self.assertEqual(response.data['created_by']['id'], self.user.pk)

    def test_assignee_outside_company(self):
        """Assigning outside the company is a 404"""
        outsider = TestDataFactory.create_user(company=TestDataFactory.create_company())
        response = self.client.post(reverse('project-tasks', args=[self.project.pk]), {
            'title': 'Write copy',
            'assigned_to_id': outsider.pk,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_parent_in_other_project(self):
        """Subtasks stay in their parent's project"""
        other_project = TestDataFactory.create_project(self.company)
        parent = TestDataFactory.create_task(other_project)
        response = self.client.post(reverse('project-tasks', args=[self.project.pk]), {
            'title': 'Child',
            'parent_id': parent.pk,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_task_detail_lists_subtasks(self):
        """Task detail includes subtasks and the subtask count"""
        parent = TestDataFactory.create_task(self.project)
        TestDataFactory.create_task(self.project, parent=parent)
        response = self.client.get(reverse('task-detail', args=[parent.pk]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['subtask_count'], 1)
        self.assertEqual(len(response.data['subtasks']), 1)

    def test_task_cannot_be_its_own_parent(self):
        """A task cannot be reparented onto itself"""
        task = TestDataFactory.create_task(self.project)
        response = self.client.patch(reverse('task-detail', args=[task.pk]), {'parent_id': task.pk}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_task_cannot_move_below_its_subtask(self):
        """Reparenting a task under one of its descendants is refused"""
        top = TestDataFactory.create_task(self.project)
        child = TestDataFactory.create_task(self.project, parent=top)
        grandchild = TestDataFactory.create_task(self.project, parent=child)
        for descendant in (child, grandchild):
            response = self.client.patch(reverse('task-detail', args=[top.pk]), {'parent_id': descendant.pk},
                                         format='json')
            self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIsNone(Task.objects.get(pk=top.pk).parent_id)

        sibling = TestDataFactory.create_task(self.project)
        response = self.client.patch(reverse('task-detail', args=[grandchild.pk]), {'parent_id': sibling.pk},
                                     format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_mine_filter(self):
        """?mine=true keeps the tasks assigned to the requester"""
        TestDataFactory.create_task(self.project, assigned_to=self.user)
        TestDataFactory.create_task(self.project)
        response = self.client.get(reverse('task-list-create'), {'mine': 'true'})
        self.assertEqual(response.data['count'], 1)

    def test_plain_user_updates_status_and_comments(self):
        """Plain users move tasks along and comment on them"""
        user = TestDataFactory.create_user(role=USER, company=self.company)
        task = TestDataFactory.create_task(self.project, assigned_to=user)
        self.client.authenticate_user(user)

        response = self.client.patch(reverse('task-detail', args=[task.pk]), {'status': 'DONE'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(Task.objects.get(pk=task.pk).status, 'DONE')

        response = self.client.post(reverse('task-comments', args=[task.pk]), {'content': 'Done!'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['author']['id'], user.pk)

        response = self.client.delete(reverse('task-detail', args=[task.pk]))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
