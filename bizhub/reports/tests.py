"""
Tests for the financial summary report
"""
from datetime import date
from decimal import Decimal
from django.test import TestCase
from django.urls import reverse
from rest_framework import status
from bizhub.core.models import SUPER_ADMIN, COMPANY_ADMIN, EMPLOYEE, USER
from bizhub.core.test_utils import TestDataFactory, AuthenticatedAPIClient


class FinancialSummaryTests(TestCase):
    """Test the financial summary endpoint"""

    def setUp(self):
        TestDataFactory.seed_permissions()
        self.company = TestDataFactory.create_company()
        self.other_company = TestDataFactory.create_company()
        self.user = TestDataFactory.create_user(role=COMPANY_ADMIN, company=self.company)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)
        self.customer = TestDataFactory.create_client(self.company)
        self.provider = TestDataFactory.create_provider(self.company)
        self.period = {'date_from': '2024-01-01', 'date_to': '2024-02-29'}

        TestDataFactory.create_invoice(self.company, self.customer, status='PAID', total=Decimal('1000.00'),
                                       issue_date=date(2024, 1, 10))
        TestDataFactory.create_invoice(self.company, self.customer, status='SENT', total=Decimal('500.00'),
                                       issue_date=date(2024, 2, 5))
        TestDataFactory.create_invoice(self.company, self.customer, status='CANCELLED', total=Decimal('9999.00'),
                                       issue_date=date(2024, 2, 6))
        TestDataFactory.create_invoice(self.company, self.customer, status='PAID', total=Decimal('300.00'),
                                       issue_date=date(2023, 12, 31))

        TestDataFactory.create_payment(self.company, 'CLIENT', Decimal('1000.00'), client=self.customer,
                                       date=date(2024, 1, 20))
        TestDataFactory.create_payment(self.company, 'PROVIDER', Decimal('400.00'), provider=self.provider,
                                       date=date(2024, 2, 1))
        TestDataFactory.create_payment(self.company, 'CLIENT', Decimal('50.00'), status='PENDING',
                                       client=self.customer, date=date(2024, 2, 2))

        # Another company's figures never leak in
        TestDataFactory.create_invoice(self.other_company, status='PAID', total=Decimal('7777.00'),
                                       issue_date=date(2024, 1, 15))
        TestDataFactory.create_payment(self.other_company, 'OTHER', Decimal('7777.00'), date=date(2024, 1, 15))

    def test_summary_totals(self):
        """Cancelled invoices and unsettled payments are left out"""
        response = self.client.get(reverse('financial-summary'), self.period)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['period'], {'from': '2024-01-01', 'to': '2024-02-29'})
        self.assertEqual(response.data['invoices']['total'], 1500.0)
        self.assertEqual(response.data['invoices']['count'], 2)
        self.assertEqual(response.data['payments']['received'], 1000.0)
        self.assertEqual(response.data['payments']['paid'], 400.0)
        self.assertEqual(response.data['payments']['net'], 600.0)
        self.assertEqual(response.data['outstanding'], {'count': 1, 'amount': 500.0})

    def test_grouped_figures(self):
        """Invoices group by status and payments by type"""
        response = self.client.get(reverse('financial-summary'), self.period)
        by_status = {row['status']: row['total'] for row in response.data['invoices']['by_status']}
        self.assertEqual(by_status, {'PAID': 1000.0, 'SENT': 500.0})
        by_type = {row['payment_type']: row['count'] for row in response.data['payments']['by_type']}
        self.assertEqual(by_type, {'CLIENT': 1, 'PROVIDER': 1})

    def test_monthly_breakdown(self):
        """Each month carries its invoiced, received and paid amounts"""
        response = self.client.get(reverse('financial-summary'), self.period)
        self.assertEqual(response.data['monthly_breakdown'], [
            {'month': '2024-01', 'invoiced': 1000.0, 'received': 1000.0, 'paid': 0.0},
            {'month': '2024-02', 'invoiced': 500.0, 'received': 0.0, 'paid': 400.0},
        ])

    def test_super_admin_narrows_by_company(self):
        """Super admins see all companies unless they pick one"""
        self.client.authenticate_user(TestDataFactory.create_user(role=SUPER_ADMIN))
        response = self.client.get(reverse('financial-summary'), self.period)
        self.assertEqual(response.data['invoices']['total'], 9277.0)
        response = self.client.get(reverse('financial-summary'), {**self.period, 'company_id': self.company.pk})
        self.assertEqual(response.data['invoices']['total'], 1500.0)

    def test_bad_date_format(self):
        """Dates must be ISO formatted"""
        response = self.client.get(reverse('financial-summary'), {'date_from': '01/01/2024'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_reversed_period(self):
        """date_to cannot precede date_from"""
        response = self.client.get(reverse('financial-summary'), {'date_from': '2024-02-01', 'date_to': '2024-01-01'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_default_period(self):
        """Without dates the report covers the last 30 days"""
        response = self.client.get(reverse('financial-summary'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['invoices']['count'], 0)

    def test_requires_invoice_read(self):
        """Plain users cannot read financial figures, employees can"""
        self.client.authenticate_user(TestDataFactory.create_user(role=USER, company=self.company))
        response = self.client.get(reverse('financial-summary'), self.period)
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.client.authenticate_user(TestDataFactory.create_user(role=EMPLOYEE, company=self.company))
        response = self.client.get(reverse('financial-summary'), self.period)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
