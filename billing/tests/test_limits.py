"""
Tests for plan limit enforcement
"""
from datetime import timedelta

from django.contrib.auth import get_user_model
from django.core.exceptions import PermissionDenied
from django.test import TestCase
from django.utils import timezone

from billing.models import Subscription
from billing.services import SubscriptionService
from billing.utils import PlanLimitChecker
from clinical.models import Appointment, Dentist, Patient

from .utils import create_clinic, create_clinic_owner, create_plan, make_config

User = get_user_model()


class PlanLimitCheckerTestCase(TestCase):

    def setUp(self):
        self.clinic = create_clinic()
        self.user = create_clinic_owner(self.clinic)
        self.plan = create_plan(name='basic', max_patients=10, max_dentists=1, max_appointments_month=2)
        self.service = SubscriptionService(make_config())
        self.subscription = self.service.start(self.clinic, self.plan, status=Subscription.STATUS_ACTIVE)

    def add_patients(self, count):
        for i in range(count):
            Patient.objects.create(clinic=self.clinic, name=f"Patient {i}")

    def test_allows_up_to_the_cap(self):
        self.add_patients(9)
        result = PlanLimitChecker.check(self.user, self.clinic, 'patients')
        self.assertTrue(result['allowed'])
        self.assertEqual(result['current'], 9)
        self.assertEqual(result['limit'], 10)

    def test_denies_past_the_cap(self):
        self.add_patients(10)
        with self.assertRaises(PermissionDenied) as ctx:
            PlanLimitChecker.check(self.user, self.clinic, 'patients')
        self.assertIn('Limit of 10 patients reached', str(ctx.exception))

        result = PlanLimitChecker.check(self.user, self.clinic, 'patients', raise_exception=False)
        self.assertFalse(result['allowed'])
        self.assertEqual(result['current'], 10)

    def test_inactive_records_do_not_count(self):
        self.add_patients(10)
        Patient.objects.filter(clinic=self.clinic).update(status=Patient.STATUS_INACTIVE)
        self.assertTrue(PlanLimitChecker.check(self.user, self.clinic, 'patients')['allowed'])

    def test_appointments_count_this_month_only(self):
        patient = Patient.objects.create(clinic=self.clinic, name='Ana')
        dentist = Dentist.objects.create(clinic=self.clinic, name='Dr. Lima')
        now = timezone.now()
        Appointment.objects.create(clinic=self.clinic, patient=patient, dentist=dentist, scheduled_at=now)
        Appointment.objects.create(clinic=self.clinic, patient=patient, dentist=dentist,
                                   scheduled_at=now, status=Appointment.STATUS_CANCELLED)
        Appointment.objects.create(clinic=self.clinic, patient=patient, dentist=dentist,
                                   scheduled_at=now - timedelta(days=40))

        result = PlanLimitChecker.check(self.user, self.clinic, 'appointments', raise_exception=False)
        self.assertTrue(result['allowed'])
        self.assertEqual(result['current'], 1)

    def test_unlimited_plan(self):
        self.plan.max_patients = None
        self.plan.save()
        self.add_patients(12)
        self.assertTrue(PlanLimitChecker.check(self.user, self.clinic, 'patients')['allowed'])

    def test_ended_trial_is_denied_before_sweep(self):
        self.subscription.transition(
            Subscription.STATUS_TRIALING,
            (Subscription.STATUS_ACTIVE,),
            trial_end=timezone.now() - timedelta(hours=1),
        )
        with self.assertRaises(PermissionDenied):
            PlanLimitChecker.check(self.user, self.clinic, 'patients')

    def test_past_due_is_denied(self):
        self.subscription.transition(Subscription.STATUS_PAST_DUE, (Subscription.STATUS_ACTIVE,))
        result = PlanLimitChecker.check(self.user, self.clinic, 'patients', raise_exception=False)
        self.assertFalse(result['allowed'])

    def test_super_admin_bypasses(self):
        self.add_patients(10)
        admin = User.objects.create_user(
            email='root@platform.example.com',
            password='testpass123',
            name='Platform Admin',
            clinic=self.clinic,
            platform_role=User.PLATFORM_SUPER_ADMIN,
        )
        self.assertTrue(PlanLimitChecker.check(admin, self.clinic, 'patients')['allowed'])

    def test_unknown_resource(self):
        with self.assertRaises(ValueError):
            PlanLimitChecker.check(self.user, self.clinic, 'x-rays')
