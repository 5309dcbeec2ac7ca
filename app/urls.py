"""
URL configuration for the clinic SaaS backend.
"""
from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    path('admin/', admin.site.urls),
    path('clinical/', include('clinical.urls')),
    path('billing/', include('billing.urls')),
]
