from django.urls import path
from .views import (
    client_list_create, client_detail,
    provider_list_create, provider_detail,
    lead_list_create, lead_detail,
    pipeline_list_create, pipeline_detail,
    opportunity_list_create, opportunity_detail, opportunity_convert,
    activity_list_create, activity_detail,
)

urlpatterns = [
    # Client endpoints
    path('clients/', client_list_create, name='client-list-create'),
    path('clients/<int:pk>/', client_detail, name='client-detail'),

    # Provider endpoints
    path('providers/', provider_list_create, name='provider-list-create'),
    path('providers/<int:pk>/', provider_detail, name='provider-detail'),

    # Lead endpoints
    path('leads/', lead_list_create, name='lead-list-create'),
    path('leads/<int:pk>/', lead_detail, name='lead-detail'),

    # Pipeline endpoints
    path('pipelines/', pipeline_list_create, name='pipeline-list-create'),
    path('pipelines/<int:pk>/', pipeline_detail, name='pipeline-detail'),

    # Opportunity endpoints
    path('opportunities/', opportunity_list_create, name='opportunity-list-create'),
    path('opportunities/<int:pk>/', opportunity_detail, name='opportunity-detail'),
    path('opportunities/<int:pk>/convert/', opportunity_convert, name='opportunity-convert'),

    # Activity endpoints
    path('activities/', activity_list_create, name='activity-list-create'),
    path('activities/<int:pk>/', activity_detail, name='activity-detail'),
]
