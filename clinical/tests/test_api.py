"""
API tests for clinic-scoped records and plan limits
"""
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from accounts.models import Clinic
from billing.models import Plan, Subscription
from billing.services import SubscriptionService
from clinical.models import Dentist, Patient

User = get_user_model()


class ClinicalAPITestCase(APITestCase):

    def setUp(self):
        self.clinic = Clinic.objects.create(name='Sorriso Clinic', cnpj='12.345.678/0001-90',
                                            email='billing@sorriso.example.com')
        self.user = User.objects.create_user(
            email='reception@sorriso.example.com',
            password='testpass123',
            name='Reception',
            clinic=self.clinic,
        )
        self.plan = Plan.objects.create(
            name='free',
            display_name='Free',
            price_monthly=Decimal('0.00'),
            max_patients=2,
            max_dentists=1,
            max_appointments_month=1,
        )
        self.subscription = SubscriptionService().start(self.clinic, self.plan)
        self.client.force_authenticate(user=self.user)

    def test_patient_creation_blocked_at_limit(self):
        for name in ('Ana', 'Bruno'):
            response = self.client.post('/clinical/api/patients/', {'name': name}, format='json')
            self.assertEqual(response.status_code, status.HTTP_201_CREATED)

        response = self.client.post('/clinical/api/patients/', {'name': 'Carla'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertIn('Limit of 2 patients reached on plan Free', str(response.data['detail']))
        self.assertEqual(Patient.objects.filter(clinic=self.clinic).count(), 2)

    def test_updates_are_not_limited(self):
        Dentist.objects.create(clinic=self.clinic, name='Dr. Lima')
        dentist = Dentist.objects.get(clinic=self.clinic)

        response = self.client.patch(f'/clinical/api/dentists/{dentist.id}/', {'cro': 'SP-12345'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_expired_trial_blocks_creation(self):
        self.subscription.transition(Subscription.STATUS_EXPIRED, (Subscription.STATUS_TRIALING,))

        response = self.client.post('/clinical/api/dentists/', {'name': 'Dr. Souza'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertIn('No active subscription', str(response.data['detail']))

    def test_appointment_limit_and_clinic_scoping(self):
        patient = Patient.objects.create(clinic=self.clinic, name='Ana')
        dentist = Dentist.objects.create(clinic=self.clinic, name='Dr. Lima')
        data = {
            'patient': str(patient.id),
            'dentist': str(dentist.id),
            'scheduled_at': timezone.now().isoformat(),
        }

        response = self.client.post('/clinical/api/appointments/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

        response = self.client.post('/clinical/api/appointments/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_records_from_other_clinics_are_hidden(self):
        other = Clinic.objects.create(name='Other', cnpj='98.765.432/0001-10', email='other@example.com')
        Patient.objects.create(clinic=other, name='Hidden')
        Patient.objects.create(clinic=self.clinic, name='Visible')

        response = self.client.get('/clinical/api/patients/')

        self.assertEqual([patient['name'] for patient in response.data], ['Visible'])

    def test_user_without_clinic(self):
        loner = User.objects.create_user(email='loner@example.com', password='testpass123', name='Loner')
        self.client.force_authenticate(user=loner)

        response = self.client.get('/clinical/api/patients/')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
