"""
Tenant-scoped clinical records. Creation is gated by the clinic's plan
limits through ``WithinPlanLimit``.
"""
from rest_framework import viewsets
from rest_framework.permissions import IsAuthenticated

from billing.permissions import HasClinic, WithinPlanLimit
from .models import Appointment, Dentist, Patient
from .serializers import AppointmentSerializer, DentistSerializer, PatientSerializer


class ClinicScopedViewSet(viewsets.ModelViewSet):
    permission_classes = [IsAuthenticated, HasClinic, WithinPlanLimit]
    model = None

    def get_queryset(self):
        return self.model.objects.filter(clinic=self.request.user.clinic)

    def perform_create(self, serializer):
        serializer.save(clinic=self.request.user.clinic)


class PatientViewSet(ClinicScopedViewSet):
    model = Patient
    serializer_class = PatientSerializer
    plan_limit_resource = 'patients'


class DentistViewSet(ClinicScopedViewSet):
    model = Dentist
    serializer_class = DentistSerializer
    plan_limit_resource = 'dentists'


class AppointmentViewSet(ClinicScopedViewSet):
    model = Appointment
    serializer_class = AppointmentSerializer
    plan_limit_resource = 'appointments'

    def get_queryset(self):
        return super().get_queryset().select_related('patient', 'dentist')
