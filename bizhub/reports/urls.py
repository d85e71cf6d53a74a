from django.urls import path
from . import views

urlpatterns = [
    path('reports/financial/', views.financial_summary, name='financial-summary'),
]
