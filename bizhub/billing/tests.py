"""
Tests for quotes, invoices, contracts, payments and subscriptions
"""
from datetime import date
from unittest.mock import patch
from decimal import Decimal
from django.test import TestCase
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from bizhub.core.models import SUPER_ADMIN, COMPANY_ADMIN, MANAGER, EMPLOYEE
from bizhub.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from bizhub.billing.models import Invoice, Contract, Payment


class QuoteAPITests(TestCase):
    """Test quote endpoints"""

    def setUp(self):
        TestDataFactory.seed_permissions()
        self.company = TestDataFactory.create_company()
        self.other_company = TestDataFactory.create_company()
        self.user = TestDataFactory.create_user(role=COMPANY_ADMIN, company=self.company)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)
        self.project = TestDataFactory.create_project(self.company)

    def test_create_quote_computes_total(self):
        """Line totals and the quote total come from quantity and unit price"""
        response = self.client.post(reverse('quote-list-create'), {
            'project_id': self.project.pk,
            'reference': 'Q-2024-001',
            'items': [
                {'description': 'Design', 'quantity': 2, 'unit_price': '150.00'},
                {'description': 'Hosting', 'quantity': 1, 'unit_price': '99.90'},
            ],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['total'], '399.90')
        self.assertEqual(response.data['items'][0]['total'], '300.00')
        self.assertEqual(response.data['company_id'], self.company.pk)
        self.assertEqual(response.data['project_name'], self.project.name)

    def test_quote_needs_items(self):
        """A quote without items is rejected"""
        response = self.client.post(reverse('quote-list-create'), {
            'project_id': self.project.pk,
            'reference': 'Q-2024-001',
            'items': [],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('items', response.data['details'])

    def test_invalid_item_is_reported_by_index(self):
        """Item errors are keyed by their position"""
        response = self.client.post(reverse('quote-list-create'), {
            'reference': 'Q-2024-001',
            'items': [
                {'description': 'Design', 'quantity': 1, 'unit_price': '10.00'},
                {'description': 'Bad', 'quantity': 0, 'unit_price': '10.00'},
            ],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn(1, response.data['details']['items'])

    def test_short_reference(self):
        """References need at least three characters"""
        response = self.client.post(reverse('quote-list-create'), {
            'reference': 'Q1',
            'items': [{'description': 'Design', 'unit_price': '10.00'}],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('reference', response.data['details'])

    def test_quote_for_other_company_project(self):
        """Quoting a project of another company is forbidden"""
        project = TestDataFactory.create_project(self.other_company)
        response = self.client.post(reverse('quote-list-create'), {
            'project_id': project.pk,
            'reference': 'Q-2024-001',
            'items': [{'description': 'Design', 'unit_price': '10.00'}],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_quote_for_missing_project(self):
        """An unknown project is a 404"""
        response = self.client.post(reverse('quote-list-create'), {
            'project_id': 999999,
            'reference': 'Q-2024-001',
            'items': [{'description': 'Design', 'unit_price': '10.00'}],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_patch_replaces_items(self):
        """Sending items on update replaces them and recomputes the total"""
        quote = TestDataFactory.create_quote(self.company, project=self.project)
        response = self.client.patch(reverse('quote-detail', args=[quote.pk]), {
            'items': [{'description': 'Maintenance', 'quantity': 3, 'unit_price': '20.00'}],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data['items']), 1)
        self.assertEqual(response.data['total'], '60.00')

    def test_convert_to_contract(self):
        """A draft contract is created from the quote of a project"""
        quote = TestDataFactory.create_quote(self.company, project=self.project,
                                             items=[('Build', 1, Decimal('1200.00'))])
        response = self.client.post(reverse('quote-convert-to-contract', args=[quote.pk]), {
            'update_quote_status': True,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['status'], 'DRAFT')
        self.assertEqual(response.data['total_amount'], '1200.00')
        self.assertEqual(response.data['title'], f'Contract - {quote.reference}')
        quote.refresh_from_db()
        self.assertEqual(quote.status, 'ACCEPTED')

    def test_convert_to_contract_without_project(self):
        """Quotes without a project cannot become contracts"""
        quote = TestDataFactory.create_quote(self.company)
        response = self.client.post(reverse('quote-convert-to-contract', args=[quote.pk]), {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_convert_accepted_quote(self):
        """Converting an accepted quote creates an active contract and marks it converted"""
        quote = TestDataFactory.create_quote(self.company, project=self.project, status='ACCEPTED')
        response = self.client.post(reverse('quote-convert'), {'quote_id': quote.pk}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['status'], 'ACTIVE')
        self.assertEqual(response.data['start_date'], timezone.localdate().isoformat())
        quote.refresh_from_db()
        self.assertEqual(quote.status, 'CONVERTED')

    def test_convert_draft_quote_refused(self):
        """Only accepted quotes convert"""
        quote = TestDataFactory.create_quote(self.company, project=self.project, status='DRAFT')
        response = self.client.post(reverse('quote-convert'), {'quote_id': quote.pk}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(Contract.objects.exists())

    def test_convert_twice(self):
        """A converted quote cannot be converted again"""
        quote = TestDataFactory.create_quote(self.company, project=self.project, status='ACCEPTED')
        self.client.post(reverse('quote-convert'), {'quote_id': quote.pk}, format='json')
        response = self.client.post(reverse('quote-convert'), {'quote_id': quote.pk}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(Contract.objects.count(), 1)


class InvoiceAPITests(TestCase):
    """Test invoice endpoints"""

    def setUp(self):
        TestDataFactory.seed_permissions()
        self.company = TestDataFactory.create_company()
        self.user = TestDataFactory.create_user(role=MANAGER, company=self.company)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)
        self.customer = TestDataFactory.create_client(self.company)

    def test_create_invoice_generates_number(self):
        """Without a number one is generated for the day"""
        response = self.client.post(reverse('invoice-list-create'), {
            'client_id': self.customer.pk,
            'items': [{'description': 'Consulting', 'quantity': 4, 'unit_price': '75.00'}],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        today = timezone.now().strftime('%Y%m%d')
        self.assertEqual(response.data['invoice_number'], f'INV-{today}-0001')
        self.assertEqual(response.data['total'], '300.00')
        self.assertEqual(response.data['issue_date'], timezone.localdate().isoformat())

    def test_generated_number_taken_concurrently(self):
        """A generated number lost to a concurrent insert is replaced by the next one"""
        existing = TestDataFactory.create_invoice(self.company)
        Invoice.objects.filter(pk=existing.pk).update(invoice_number='INV-RACE-0001')
        with patch('bizhub.billing.serializers.generate_invoice_number',
                   side_effect=['INV-RACE-0001', 'INV-RACE-0002']):
            response = self.client.post(reverse('invoice-list-create'), {
                'client_id': self.customer.pk,
                'items': [{'description': 'Consulting', 'unit_price': '75.00'}],
            }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['invoice_number'], 'INV-RACE-0002')
        self.assertEqual(len(response.data['items']), 1)

    def test_generated_number_gives_up(self):
        """Repeated collisions end in a 400 and nothing is stored"""
        existing = TestDataFactory.create_invoice(self.company)
        Invoice.objects.filter(pk=existing.pk).update(invoice_number='INV-RACE-0001')
        with patch('bizhub.billing.serializers.generate_invoice_number', return_value='INV-RACE-0001'):
            response = self.client.post(reverse('invoice-list-create'), {
                'client_id': self.customer.pk,
                'items': [{'description': 'Consulting', 'unit_price': '75.00'}],
            }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('error', response.data)
        self.assertEqual(Invoice.objects.filter(company=self.company).count(), 1)

    def test_duplicate_number_conflicts(self):
        """Invoice numbers are unique per company"""
        existing = TestDataFactory.create_invoice(self.company)
        response = self.client.post(reverse('invoice-list-create'), {
            'invoice_number': existing.invoice_number,
            'items': [{'description': 'Consulting', 'unit_price': '75.00'}],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['existing_id'], existing.pk)

    def test_due_date_before_issue_date(self):
        """Due date cannot precede the issue date"""
        response = self.client.post(reverse('invoice-list-create'), {
            'issue_date': '2024-03-10',
            'due_date': '2024-03-01',
            'items': [{'description': 'Consulting', 'unit_price': '75.00'}],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('due_date', response.data['details'])

    def test_invoice_from_quote(self):
        """Invoicing a quote copies its lines and client and marks it invoiced"""
        project = TestDataFactory.create_project(self.company, client=self.customer)
        quote = TestDataFactory.create_quote(self.company, project=project, status='ACCEPTED',
                                             items=[('Design', 2, Decimal('100.00')), ('Build', 1, Decimal('800.00'))])
        response = self.client.post(reverse('invoice-list-create'), {'source_quote_id': quote.pk}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(len(response.data['items']), 2)
        self.assertEqual(response.data['total'], '1000.00')
        self.assertEqual(response.data['client']['id'], self.customer.pk)
        self.assertEqual(response.data['source_quote_id'], quote.pk)
        quote.refresh_from_db()
        self.assertEqual(quote.status, 'INVOICED')

    def test_invoice_from_foreign_quote(self):
        """Quotes of another company cannot be invoiced"""
        other_company = TestDataFactory.create_company()
        quote = TestDataFactory.create_quote(other_company, project=TestDataFactory.create_project(other_company))
        response = self.client.post(reverse('invoice-list-create'), {'source_quote_id': quote.pk}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertFalse(Invoice.objects.exists())

    def test_filter_by_status_and_dates(self):
        """Invoices filter by status and issue date"""
        TestDataFactory.create_invoice(self.company, status='PAID', issue_date=timezone.localdate())
        TestDataFactory.create_invoice(self.company, status='SENT', issue_date=timezone.localdate())
        TestDataFactory.create_invoice(self.company, status='PAID', issue_date=date(2000, 1, 15))
        response = self.client.get(reverse('invoice-list-create'), {
            'status': 'paid',
            'date_from': timezone.localdate().replace(day=1).isoformat(),
        })
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)

    def test_manager_cannot_delete_invoice(self):
        """Deleting invoices is not in the manager grid"""
        invoice = TestDataFactory.create_invoice(self.company)
        response = self.client.delete(reverse('invoice-detail', args=[invoice.pk]))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class ContractAPITests(TestCase):
    """Test contract endpoints"""

    def setUp(self):
        TestDataFactory.seed_permissions()
        self.company = TestDataFactory.create_company()
        self.user = TestDataFactory.create_user(role=COMPANY_ADMIN, company=self.company)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)
        self.project = TestDataFactory.create_project(self.company)

    def test_activation_stamps_signature(self):
        """Moving a contract to ACTIVE records when it was signed"""
        response = self.client.post(reverse('contract-list-create'), {
            'project_id': self.project.pk,
            'title': 'Maintenance agreement',
            'total_amount': '500.00',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertIsNone(response.data['signed_at'])

        response = self.client.patch(reverse('contract-detail', args=[response.data['id']]), {
            'status': 'ACTIVE',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIsNotNone(response.data['signed_at'])

    def test_contract_for_foreign_project(self):
        """Contracts cannot target another company's project"""
        project = TestDataFactory.create_project(TestDataFactory.create_company())
        response = self.client.post(reverse('contract-list-create'), {
            'project_id': project.pk,
            'title': 'Nope',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class PaymentAPITests(TestCase):
    """Test payment and subscription endpoints"""

    def setUp(self):
        TestDataFactory.seed_permissions()
        self.company = TestDataFactory.create_company()
        self.other_company = TestDataFactory.create_company()
        self.user = TestDataFactory.create_user(role=COMPANY_ADMIN, company=self.company)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)
        self.customer = TestDataFactory.create_client(self.company)
        self.project = TestDataFactory.create_project(self.company, client=self.customer)

    def test_client_payment_requires_client(self):
        """CLIENT payments name their client"""
        response = self.client.post(reverse('payment-list-create'), {
            'payment_type': 'CLIENT',
            'amount': '100.00',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('client_id', response.data['details'])

    def test_amount_must_be_positive(self):
        """Zero payments are rejected"""
        response = self.client.post(reverse('payment-list-create'), {
            'payment_type': 'OTHER',
            'amount': '0.00',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('amount', response.data['details'])

    def test_partial_payment_parts(self):
        """part_number cannot exceed total_parts"""
        response = self.client.post(reverse('payment-list-create'), {
            'payment_type': 'CLIENT',
            'client_id': self.customer.pk,
            'amount': '100.00',
            'is_partial': True,
            'part_number': 3,
            'total_parts': 2,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('part_number', response.data['details'])

    def test_create_client_payment(self):
        """The payment takes the company of its counterparts and today's date"""
        response = self.client.post(reverse('payment-list-create'), {
            'payment_type': 'CLIENT',
            'client_id': self.customer.pk,
            'project_id': self.project.pk,
            'amount': '250.00',
            'status': 'COMPLETE',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['company_id'], self.company.pk)
        self.assertEqual(response.data['client_name'], self.customer.name)
        self.assertEqual(response.data['date'], timezone.localdate().isoformat())

    def test_counterparts_must_share_company(self):
        """Mixing counterparts of two companies is rejected"""
        provider = TestDataFactory.create_provider(self.other_company)
        response = self.client.post(reverse('payment-list-create'), {
            'payment_type': 'PROVIDER',
            'provider_id': provider.pk,
            'project_id': self.project.pk,
            'amount': '80.00',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_foreign_counterpart_forbidden(self):
        """Recording a payment for another company's client is a 403"""
        outsider = TestDataFactory.create_client(self.other_company)
        response = self.client.post(reverse('payment-list-create'), {
            'payment_type': 'CLIENT',
            'client_id': outsider.pk,
            'amount': '80.00',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertFalse(Payment.objects.exists())

    def test_missing_counterpart(self):
        """An unknown provider is a 404"""
        response = self.client.post(reverse('payment-list-create'), {
            'payment_type': 'PROVIDER',
            'provider_id': 999999,
            'amount': '80.00',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_list_scoped_to_company(self):
        """Payments of other companies stay hidden"""
        TestDataFactory.create_payment(self.company, client=self.customer)
        TestDataFactory.create_payment(self.other_company, payment_type='OTHER')
        response = self.client.get(reverse('payment-list-create'))
        self.assertEqual(response.data['count'], 1)

    def test_filter_by_type(self):
        """Payments filter by type"""
        TestDataFactory.create_payment(self.company, client=self.customer)
        TestDataFactory.create_payment(self.company, payment_type='OTHER')
        response = self.client.get(reverse('payment-list-create'), {'payment_type': 'OTHER'})
        self.assertEqual(response.data['count'], 1)

    def test_project_payments(self):
        """Payments recorded on a project are attached to it"""
        response = self.client.post(reverse('project-payments', args=[self.project.pk]), {
            'payment_type': 'CLIENT',
            'client_id': self.customer.pk,
            'amount': '120.00',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['project_id'], self.project.pk)

        response = self.client.get(reverse('project-payments', args=[self.project.pk]))
        self.assertEqual(response.data['count'], 1)

    def test_patch_to_foreign_client(self):
        """A payment cannot be moved onto another company's client"""
        payment = TestDataFactory.create_payment(self.company, client=self.customer)
        outsider = TestDataFactory.create_client(self.other_company)
        response = self.client.patch(reverse('payment-detail', args=[payment.pk]), {
            'client_id': outsider.pk,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_employee_cannot_read_payments(self):
        """Payments are not in the employee grid"""
        employee = TestDataFactory.create_user(role=EMPLOYEE, company=self.company)
        self.client.authenticate_user(employee)
        response = self.client.get(reverse('payment-list-create'))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_subscription_payment(self):
        """Subscriptions are created and paid like any counterpart"""
        response = self.client.post(reverse('subscription-list-create'), {
            'service_name': 'Hosting',
            'cost': '29.00',
            'billing_cycle': 'MONTHLY',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        response = self.client.post(reverse('payment-list-create'), {
            'payment_type': 'SUBSCRIPTION',
            'subscription_id': response.data['id'],
            'amount': '29.00',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['company_id'], self.company.pk)

    def test_super_admin_sees_every_company(self):
        """Super admins list payments across companies"""
        TestDataFactory.create_payment(self.company, client=self.customer)
        TestDataFactory.create_payment(self.other_company, payment_type='OTHER')
        self.client.authenticate_user(TestDataFactory.create_user(role=SUPER_ADMIN))
        response = self.client.get(reverse('payment-list-create'))
        self.assertEqual(response.data['count'], 2)
