from django.urls import path
from .views import (
    quote_list_create, quote_detail, quote_convert_to_contract, quote_convert,
    invoice_list_create, invoice_detail,
    contract_list_create, contract_detail,
    payment_list_create, payment_detail, project_payments,
    subscription_list_create, subscription_detail,
)

urlpatterns = [
    # Quote endpoints
    path('quotes/', quote_list_create, name='quote-list-create'),
    path('quotes/convert/', quote_convert, name='quote-convert'),
    path('quotes/<int:pk>/', quote_detail, name='quote-detail'),
    path('quotes/<int:pk>/convert-to-contract/', quote_convert_to_contract, name='quote-convert-to-contract'),

    # Invoice endpoints
    path('invoices/', invoice_list_create, name='invoice-list-create'),
    path('invoices/<int:pk>/', invoice_detail, name='invoice-detail'),

    # Contract endpoints
    path('contracts/', contract_list_create, name='contract-list-create'),
    path('contracts/<int:pk>/', contract_detail, name='contract-detail'),

    # Payment endpoints
    path('payments/', payment_list_create, name='payment-list-create'),
    path('payments/<int:pk>/', payment_detail, name='payment-detail'),
    path('projects/<int:pk>/payments/', project_payments, name='project-payments'),

    # Subscription endpoints
    path('subscriptions/', subscription_list_create, name='subscription-list-create'),
    path('subscriptions/<int:pk>/', subscription_detail, name='subscription-detail'),
]
