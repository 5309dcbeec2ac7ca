from django.urls import path, include
from rest_framework.routers import DefaultRouter

from .views import AppointmentViewSet, DentistViewSet, PatientViewSet

router = DefaultRouter()
router.register(r'patients', PatientViewSet, basename='patient')
router.register(r'dentists', DentistViewSet, basename='dentist')
router.register(r'appointments', AppointmentViewSet, basename='appointment')

urlpatterns = [
    path('api/', include(router.urls)),
]
