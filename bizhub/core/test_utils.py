"""
Test utilities and factories for creating test data
"""
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken
from bizhub.core.models import Company, USER
from bizhub.core.management.commands.seed_permissions import seed_permissions
from bizhub.crm.models import Client, Provider, Lead, Pipeline, PipelineStage, Opportunity
from bizhub.projects.models import Project, ProjectPart, Task
from bizhub.billing.models import Quote, QuoteItem, Invoice, InvoiceItem, Payment, Subscription
from bizhub.messaging.models import Conversation, ConversationParticipant, Message
from decimal import Decimal
from django.utils import timezone
import random
import string

User = get_user_model()


class TestDataFactory:
    """Factory class for creating test data"""

    @staticmethod
    def random_string(length=10):
        """Generate a random string"""
        return ''.join(random.choices(string.ascii_letters + string.digits, k=length))

    @staticmethod
    def seed_permissions():
        """Create the permission grid and the default role matrix"""
        return seed_permissions()

    @staticmethod
    def create_company(name=None, **extra):
        """Create a test company"""
        if not name:
            name = f'Company_{TestDataFactory.random_string(6)}'
        return Company.objects.create(name=name, email=f'{name.lower()}@test.com', **extra)

    @staticmethod
    def create_user(email=None, password='testpass123', role=USER, company=None, name=None):
        """Create a test user"""
        if not email:
            email = f'user_{TestDataFactory.random_string(6).lower()}@test.com'
        return User.objects.create_user(
            email=email,
            password=password,
            name=name or email.split('@')[0],
            role=role,
            company=company,
        )

    @staticmethod
    def create_client(company, name=None, email=None):
        """Create a test client"""
        if not name:
            name = f'Client_{TestDataFactory.random_string(6)}'
        return Client.objects.create(company=company, name=name, email=email or f'{name.lower()}@client.com')

    @staticmethod
    def create_provider(company, name=None, role='developer'):
        """Create a test provider"""
        if not name:
            name = f'Provider_{TestDataFactory.random_string(6)}'
        return Provider.objects.create(company=company, name=name, role=role,
                                       email=f'{name.lower()}@provider.com')

    @staticmethod
    def create_lead(company, name=None, status='NEW', organisation=''):
        """Create a test lead"""
        if not name:
            name = f'Lead_{TestDataFactory.random_string(6)}'
        return Lead.objects.create(company=company, name=name, status=status, organisation=organisation,
                                   email=f'{name.lower()}@lead.com')

    @staticmethod
    def create_pipeline(company, name=None, stages=('Qualification', 'Proposal', 'Negotiation')):
        """Create a test pipeline with its stages"""
        pipeline = Pipeline.objects.create(company=company, name=name or f'Pipeline_{TestDataFactory.random_string(4)}')
        for order, stage_name in enumerate(stages):
            PipelineStage.objects.create(pipeline=pipeline, name=stage_name, order=order,
                                         probability=min(100, (order + 1) * 25))
        return pipeline

    @staticmethod
    def create_opportunity(company, lead=None, pipeline=None, amount=Decimal('1000.00'), owner=None):
        """Create a test opportunity on the first stage of a pipeline"""
        lead = lead or TestDataFactory.create_lead(company)
        pipeline = pipeline or TestDataFactory.create_pipeline(company)
        return Opportunity.objects.create(
            company=company,
            lead=lead,
            pipeline=pipeline,
            stage=pipeline.stages.order_by('order').first(),
            name=f'Deal_{TestDataFactory.random_string(6)}',
            amount=amount,
            owner=owner,
        )

    @staticmethod
    def create_project(company, client=None, owner=None, name=None, total_price=Decimal('0.00'), status='IN_PROGRESS'):
        """Create a test project"""
        return Project.objects.create(
            company=company,
            client=client,
            owner=owner,
            name=name or f'Project_{TestDataFactory.random_string(6)}',
            total_price=total_price,
            status=status,
        )

    @staticmethod
    def create_part(project, name=None, price=Decimal('100.00'), completed=False):
        """Create a test project part"""
        return ProjectPart.objects.create(project=project, name=name or f'Part_{TestDataFactory.random_string(4)}',
                                          price=price, completed=completed)

    @staticmethod
    def create_task(project, title=None, status='TODO', assigned_to=None, parent=None, created_by=None):
        """Create a test task"""
        return Task.objects.create(
            project=project,
            title=title or f'Task_{TestDataFactory.random_string(6)}',
            status=status,
            assigned_to=assigned_to,
            parent=parent,
            created_by=created_by,
        )

    @staticmethod
    def create_quote(company, project=None, status='DRAFT', items=None, created_by=None):
        """
        Create a test quote

        ``items`` is a list of (description, quantity, unit_price) tuples; the
        quote total is their sum.
        """
        quote = Quote.objects.create(
            company=company,
            project=project,
            reference=f'Q-{TestDataFactory.random_string(6).upper()}',
            status=status,
            created_by=created_by,
        )
        for description, quantity, unit_price in items or [('Design', 1, Decimal('500.00'))]:
            QuoteItem.objects.create(quote=quote, description=description, quantity=quantity,
                                     unit_price=unit_price, total=unit_price * quantity)
        quote.total = quote.get_items_total()
        quote.save(update_fields=['total'])
        return quote

    @staticmethod
    def create_invoice(company, client=None, status='SENT', total=Decimal('1000.00'), issue_date=None):
        """Create a test invoice with a single line"""
        invoice = Invoice.objects.create(
            company=company,
            client=client,
            invoice_number=f'INV-{TestDataFactory.random_string(8).upper()}',
            status=status,
            issue_date=issue_date or timezone.localdate(),
            total=total,
        )
        InvoiceItem.objects.create(invoice=invoice, description='Services', quantity=1, unit_price=total, total=total)
        return invoice

    @staticmethod
    def create_payment(company, payment_type='CLIENT', amount=Decimal('100.00'), status='COMPLETE',
                       client=None, project=None, provider=None, date=None):
        """Create a test payment"""
        return Payment.objects.create(
            company=company,
            payment_type=payment_type,
            amount=amount,
            status=status,
            date=date or timezone.localdate(),
            client=client,
            project=project,
            provider=provider,
        )

    @staticmethod
    def create_subscription(company, service_name=None, cost=Decimal('29.00'), billing_cycle='MONTHLY'):
        """Create a test subscription"""
        return Subscription.objects.create(
            company=company,
            service_name=service_name or f'Service_{TestDataFactory.random_string(4)}',
            cost=cost,
            billing_cycle=billing_cycle,
        )

    @staticmethod
    def create_conversation(participants, company=None, is_direct=False, name=None):
        """Create a test conversation between ``participants``"""
        conversation = Conversation.objects.create(
            name=name or ('' if is_direct else f'Group_{TestDataFactory.random_string(4)}'),
            company=company,
            is_direct_message=is_direct,
        )
        for user in participants:
            ConversationParticipant.objects.create(conversation=conversation, user=user)
        return conversation

    @staticmethod
    def create_message(conversation, sender, content=None):
        """Create a test message"""
        return Message.objects.create(conversation=conversation, sender=sender,
                                      content=content or f'Hello {TestDataFactory.random_string(4)}')


class AuthenticatedAPIClient(APIClient):
    """API client with authentication helpers"""

    def authenticate_user(self, user):
        """Authenticate a user and set JWT token"""
        refresh = RefreshToken.for_user(user)
        self.credentials(HTTP_AUTHORIZATION=f'Bearer {refresh.access_token}')
        return self

    def logout(self):
        """Remove authentication"""
        self.credentials()
