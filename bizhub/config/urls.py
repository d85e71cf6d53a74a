"""
URL configuration for the bizhub project.

Every app exposes its REST endpoints under ``api/v1/``. The Socket.IO
endpoint is mounted by the ASGI entry point, not here.
"""
from django.contrib import admin
from django.urls import path, include

admin.site.site_header = "BizHub Administration"
admin.site.site_title = "BizHub Admin Portal"
admin.site.index_title = "Welcome to BizHub"

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/v1/', include('bizhub.core.urls')),
    path('api/v1/', include('bizhub.crm.urls')),
    path('api/v1/', include('bizhub.projects.urls')),
    path('api/v1/', include('bizhub.billing.urls')),
    path('api/v1/', include('bizhub.messaging.urls')),
    path('api/v1/', include('bizhub.reports.urls')),
]
