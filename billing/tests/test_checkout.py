"""
Tests for the checkout orchestrator
"""
from unittest.mock import patch

from django.test import TestCase

from billing.exceptions import ConflictError, NotFound, UpstreamError, ValidationError
from billing.models import Coupon, Subscription
from billing.payment_gateways import CheckoutResult
from billing.services import CheckoutService, CouponService, SubscriptionService

from .utils import FakeGateway, create_clinic, create_plan, make_config


class CheckoutTestCase(TestCase):

    def setUp(self):
        self.config = make_config()
        self.clinic = create_clinic()
        self.plan = create_plan()
        self.gateway = FakeGateway()
        self.service = CheckoutService(self.config, gateway_factory=self.gateway)

    def test_paid_checkout_with_coupon(self):
        """SAVE20 on a 199.90 plan charges 159.92 and consumes one use"""
        Coupon.objects.create(code='SAVE20', discount_percent=20)

        result = self.service.checkout(self.clinic.id, self.plan.id, coupon_code='save20')

        self.assertEqual(result['amount'], 15992)
        self.assertEqual(result['status'], Subscription.STATUS_TRIALING)
        self.assertEqual(result['checkout']['checkout_url'], 'https://checkout.example.com/cs_test_1')
        self.assertEqual(Coupon.objects.get(code='SAVE20').current_uses, 1)

        params = self.gateway.checkouts[0]
        self.assertEqual(params.amount, 15992)
        self.assertEqual(params.coupon_discount_percent, 20)
        self.assertEqual(params.metadata['subscription_id'], result['subscription_id'])
        self.assertEqual(params.customer_document, self.clinic.cnpj)
        self.assertEqual(params.success_url, 'https://app.example.com/settings/billing?success=true')

        subscription = Subscription.objects.get(pk=result['subscription_id'])
        self.assertEqual(subscription.payment_gateway, 'stripe')
        self.assertEqual(subscription.metadata['coupon_code'], 'SAVE20')

    def test_yearly_cycle_uses_yearly_price(self):
        result = self.service.checkout(self.clinic.id, self.plan.id, billing_cycle='yearly')
        self.assertEqual(result['amount'], 199900)

    def test_full_discount_skips_gateway(self):
        Coupon.objects.create(code='FREE100', discount_percent=100)

        result = self.service.checkout(self.clinic.id, self.plan.id, coupon_code='FREE100')

        self.assertEqual(result['amount'], 0)
        self.assertEqual(self.gateway.checkouts, [])
        self.assertEqual(result['subscription'].status, Subscription.STATUS_ACTIVE)
        self.assertEqual(Coupon.objects.get(code='FREE100').current_uses, 1)

    def test_free_plan_starts_trial(self):
        free = create_plan(name='free', price_monthly='0.00', price_yearly=None)

        result = self.service.checkout(self.clinic.id, free.id)

        self.assertEqual(self.gateway.checkouts, [])
        subscription = result['subscription']
        self.assertEqual(subscription.status, Subscription.STATUS_TRIALING)
        self.assertIsNotNone(subscription.trial_end)

    def test_gateway_failure_cancels_local_subscription(self):
        self.gateway.result = CheckoutResult(status='failed', error='card declined')
        Coupon.objects.create(code='SAVE20', discount_percent=20)

        with self.assertRaises(UpstreamError):
            self.service.checkout(self.clinic.id, self.plan.id, coupon_code='SAVE20')

        subscription = Subscription.objects.get(clinic=self.clinic)
        self.assertEqual(subscription.status, Subscription.STATUS_CANCELLED)
        self.assertEqual(Coupon.objects.get(code='SAVE20').current_uses, 0)

    def test_gateway_failure_leaves_room_for_retry(self):
        self.gateway.result = CheckoutResult(status='failed', error='timeout')
        with self.assertRaises(UpstreamError):
            self.service.checkout(self.clinic.id, self.plan.id)

        self.gateway.result = CheckoutResult(status='pending', checkout_url='https://checkout.example.com/2')
        result = self.service.checkout(self.clinic.id, self.plan.id)
        self.assertEqual(result['status'], Subscription.STATUS_TRIALING)

    def test_abandoned_checkout_is_superseded(self):
        first = self.service.checkout(self.clinic.id, self.plan.id)
        second = self.service.checkout(self.clinic.id, self.plan.id)

        self.assertNotEqual(first['subscription_id'], second['subscription_id'])
        self.assertEqual(
            Subscription.objects.get(pk=first['subscription_id']).status,
            Subscription.STATUS_CANCELLED,
        )
        self.assertEqual(
            Subscription.objects.filter(clinic=self.clinic, status__in=Subscription.CURRENT_STATUSES).count(),
            1,
        )

    def test_active_subscription_conflicts(self):
        SubscriptionService(self.config).start(self.clinic, self.plan, status=Subscription.STATUS_ACTIVE)

        with self.assertRaises(ConflictError):
            self.service.checkout(self.clinic.id, self.plan.id)
        self.assertEqual(self.gateway.checkouts, [])

    def test_inactive_plan_not_found(self):
        self.plan.status = 'inactive'
        self.plan.save()
        with self.assertRaises(NotFound):
            self.service.checkout(self.clinic.id, self.plan.id)

    def test_unknown_clinic_not_found(self):
        with self.assertRaises(NotFound):
            self.service.checkout('00000000-0000-0000-0000-000000000000', self.plan.id)

    def test_invalid_coupon_rejected_before_subscription(self):
        Coupon.objects.create(code='OFF', discount_percent=10, is_active=False)
        with self.assertRaises(ValidationError):
            self.service.checkout(self.clinic.id, self.plan.id, coupon_code='OFF')
        self.assertFalse(Subscription.objects.filter(clinic=self.clinic).exists())

    def test_unsupported_billing_cycle(self):
        with self.assertRaises(ValidationError):
            self.service.checkout(self.clinic.id, self.plan.id, billing_cycle='weekly')

    def test_coupon_use_is_reserved_before_gateway_call(self):
        Coupon.objects.create(code='LAST', discount_percent=20, max_uses=1)
        seen_uses = []

        class CountingGateway(FakeGateway):
            def create_checkout(self, params):
                seen_uses.append(Coupon.objects.get(code='LAST').current_uses)
                return super().create_checkout(params)

        service = CheckoutService(self.config, gateway_factory=CountingGateway())
        service.checkout(self.clinic.id, self.plan.id, coupon_code='LAST')

        self.assertEqual(seen_uses, [1])
        with self.assertRaises(ValidationError):
            CouponService().apply('LAST')

    def test_coupon_used_up_after_validation_leaves_nothing_behind(self):
        Coupon.objects.create(code='LAST', discount_percent=20, max_uses=1)

        class RedeemedElsewhere(CouponService):
            def validate(self, code):
                result = super().validate(code)
                CouponService().apply(code)
                return result

        service = CheckoutService(self.config, coupons=RedeemedElsewhere(), gateway_factory=self.gateway)
        with self.assertRaises(ValidationError):
            service.checkout(self.clinic.id, self.plan.id, coupon_code='LAST')

        self.assertEqual(self.gateway.checkouts, [])
        self.assertFalse(Subscription.objects.filter(clinic=self.clinic).exists())
        self.assertEqual(Coupon.objects.get(code='LAST').current_uses, 1)

    def test_gateway_error_releases_reserved_coupon(self):
        Coupon.objects.create(code='LAST', discount_percent=20, max_uses=1)

        class BrokenGateway(FakeGateway):
            def create_checkout(self, params):
                raise UpstreamError('stripe unreachable')

        service = CheckoutService(self.config, gateway_factory=BrokenGateway())
        with self.assertRaises(UpstreamError):
            service.checkout(self.clinic.id, self.plan.id, coupon_code='LAST')

        self.assertEqual(Coupon.objects.get(code='LAST').current_uses, 0)
        self.assertEqual(Subscription.objects.get(clinic=self.clinic).status, Subscription.STATUS_CANCELLED)

    def test_concurrent_checkout_conflicts_instead_of_failing(self):
        SubscriptionService(self.config).start(self.clinic, self.plan, status=Subscription.STATUS_ACTIVE)

        # Both requests read "no current subscription" before either inserts
        with patch.object(self.service.subscriptions, 'find_current', return_value=None):
            with self.assertRaises(ConflictError):
                self.service.checkout(self.clinic.id, self.plan.id)

        self.assertEqual(self.gateway.checkouts, [])
        self.assertEqual(Subscription.objects.filter(clinic=self.clinic).count(), 1)

    def test_superseded_checkout_is_tagged(self):
        first = self.service.checkout(self.clinic.id, self.plan.id)
        self.service.checkout(self.clinic.id, self.plan.id)

        self.assertTrue(Subscription.objects.get(pk=first['subscription_id']).metadata['superseded'])
