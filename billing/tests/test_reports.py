"""
Tests for the platform billing overview
"""
from datetime import timedelta
from decimal import Decimal

from django.test import TestCase
from django.utils import timezone

from billing.models import Invoice, Subscription
from billing.services import BillingOverview, InvoicingService, SubscriptionService

from .utils import create_clinic, create_plan, make_config


class BillingOverviewTestCase(TestCase):

    def setUp(self):
        self.service = SubscriptionService(make_config())
        self.monthly_plan = create_plan(name='professional', price_monthly='199.90', price_yearly='2400.00')
        self.clinics = [
            create_clinic(name=f"Clinic {i}", cnpj=f"00.000.000/000{i}-00", email=f"c{i}@example.com")
            for i in range(4)
        ]

    def test_mrr_uses_monthly_equivalent(self):
        self.service.start(self.clinics[0], self.monthly_plan, status=Subscription.STATUS_ACTIVE)
        self.service.start(self.clinics[1], self.monthly_plan, 'yearly', status=Subscription.STATUS_ACTIVE)
        # Trials and past-due subscriptions are not recurring revenue
        self.service.start(self.clinics[2], self.monthly_plan)
        past_due = self.service.start(self.clinics[3], self.monthly_plan, status=Subscription.STATUS_ACTIVE)
        past_due.transition(Subscription.STATUS_PAST_DUE, (Subscription.STATUS_ACTIVE,))

        # 199.90 + 2400.00 / 12
        self.assertEqual(BillingOverview.monthly_recurring_revenue(), Decimal('399.90'))

    def test_overview(self):
        subscription = self.service.start(self.clinics[0], self.monthly_plan)
        InvoicingService().record_confirmed_payment(subscription, 'stripe', 'in_1', amount=19990)
        old_invoice, _ = InvoicingService().record_confirmed_payment(subscription, 'stripe', 'in_0', amount=10000)
        Invoice.objects.filter(pk=old_invoice.pk).update(paid_at=timezone.now() - timedelta(days=62))

        overview = BillingOverview.build()

        self.assertEqual(overview['subscriptions']['trialing'], 1)
        self.assertEqual(overview['subscriptions']['expired'], 0)
        self.assertEqual(overview['total_subscriptions'], 1)
        self.assertEqual(overview['total_revenue'], Decimal('299.90'))
        self.assertEqual(overview['revenue_this_month'], Decimal('199.90'))
        self.assertEqual(overview['mrr'], Decimal('0.00'))
