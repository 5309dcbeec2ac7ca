"""
Checkout Orchestrator
Prices a plan (plus optional coupon), creates the local subscription and
hands off to the selected payment gateway.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.utils import timezone

from accounts.models import Clinic
from ..config import BillingConfig
from ..exceptions import ConflictError, NotFound, UpstreamError, ValidationError
from ..models import BILLING_CYCLE_CHOICES, PAYMENT_METHOD_CHOICES, Subscription, to_minor_units
from ..payment_gateways import CheckoutParams, get_payment_gateway
from .coupons import CouponService
from .subscriptions import SubscriptionService

logger = logging.getLogger(__name__)


def apply_discount(amount, discount_percent):
    """Discount an amount in minor units, rounding half-up to a whole unit"""
    factor = (Decimal(100) - Decimal(discount_percent)) / Decimal(100)
    return int((Decimal(amount) * factor).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


class CheckoutService:
    """Turns a checkout request into a subscription and a gateway checkout"""

    def __init__(self, config=None, coupons=None, subscriptions=None, gateway_factory=None):
        self.config = config or BillingConfig.from_settings()
        self.coupons = coupons or CouponService()
        self.subscriptions = subscriptions or SubscriptionService(self.config)
        self.gateway_factory = gateway_factory or get_payment_gateway

    @staticmethod
    def _get_clinic(clinic_id):
        try:
            return Clinic.objects.get(pk=clinic_id)
        except (Clinic.DoesNotExist, DjangoValidationError, ValueError):
            raise NotFound('Clinic not found')

    def _retire_abandoned_checkout(self, clinic):
        """
        Make room for a new checkout. A trial that never reached the gateway
        (no external id) is superseded; anything else must use change-plan.
        Its gateway session may still be paid, so the row is tagged and
        webhooks move such payments to the clinic's current subscription.
        """
        current = self.subscriptions.find_current(clinic)
        if not current:
            return
        if current.status == Subscription.STATUS_TRIALING and not current.external_id:
            current.transition(Subscription.STATUS_CANCELLED, (Subscription.STATUS_TRIALING,),
                               cancelled_at=timezone.now(),
                               metadata={**current.metadata, 'superseded': True})
            logger.info(f"Superseded unpaid trial {current.id} for clinic {clinic.id}")
            return
        raise ConflictError('Clinic already has an active subscription. Use change-plan instead.')

    def checkout(self, clinic_id, plan_id, billing_cycle='monthly', payment_method='credit_card',
                 gateway=None, coupon_code=None):
        """
        Start paying for a plan.

        Returns a dict with the subscription id and status, plus either the
        gateway ``checkout`` artifacts or, when nothing is owed, the
        ``subscription`` itself.
        """
        billing_cycle = billing_cycle or 'monthly'
        payment_method = payment_method or 'credit_card'
        if billing_cycle not in dict(BILLING_CYCLE_CHOICES):
            raise ValidationError(f"Unsupported billing cycle: {billing_cycle}")
        if payment_method not in dict(PAYMENT_METHOD_CHOICES):
            raise ValidationError(f"Unsupported payment method: {payment_method}")

        plan = self.subscriptions.get_active_plan(plan_id)
        clinic = self._get_clinic(clinic_id)

        base_amount = to_minor_units(plan.price_for_cycle(billing_cycle))
        amount = base_amount
        coupon = None
        if coupon_code:
            coupon = self.coupons.validate(coupon_code)
            amount = apply_discount(base_amount, coupon['discount_percent'])

        metadata = {'clinic_id': str(clinic.id), 'plan_id': str(plan.id)}
        if coupon:
            metadata.update(coupon_code=coupon['code'], discount_percent=str(coupon['discount_percent']))

        if amount == 0:
            return self._checkout_free(clinic, plan, billing_cycle, payment_method, base_amount, coupon, metadata)

        gateway_name = gateway or self.config.default_gateway
        payment_gateway = self.gateway_factory(gateway_name, self.config)

        subscription = self._start_subscription(
            clinic,
            plan,
            billing_cycle,
            coupon,
            status=Subscription.STATUS_TRIALING,
            payment_method=payment_method,
            payment_gateway=gateway_name,
            metadata=metadata,
        )

        params = CheckoutParams(
            clinic_id=str(clinic.id),
            plan_id=str(plan.id),
            plan_name=plan.display_name,
            amount=amount,
            billing_cycle=billing_cycle,
            customer_email=clinic.email,
            customer_name=clinic.name,
            customer_document=clinic.cnpj,
            payment_method=payment_method,
            coupon_discount_percent=coupon['discount_percent'] if coupon else None,
            metadata={**metadata, 'subscription_id': str(subscription.id)},
            success_url=self.config.checkout_success_url,
            cancel_url=self.config.checkout_cancel_url,
        )

        try:
            result = payment_gateway.create_checkout(params)
        except UpstreamError:
            self._abandon(subscription, coupon)
            raise

        if result.failed:
            self._abandon(subscription, coupon)
            raise UpstreamError(f"Checkout failed at {gateway_name}: {result.error or 'unknown error'}")

        logger.info(f"Checkout started for clinic {clinic.id}: subscription {subscription.id}, "
                    f"{amount} via {gateway_name}")
        return {
            'subscription_id': str(subscription.id),
            'status': subscription.status,
            'amount': amount,
            'checkout': result.as_dict(),
        }

    def _checkout_free(self, clinic, plan, billing_cycle, payment_method, base_amount, coupon, metadata):
        # Free plans start as trials; a paid plan discounted to zero is active immediately
        status = Subscription.STATUS_TRIALING if base_amount == 0 else Subscription.STATUS_ACTIVE

        subscription = self._start_subscription(
            clinic,
            plan,
            billing_cycle,
            coupon,
            status=status,
            payment_method=payment_method if status == Subscription.STATUS_ACTIVE else '',
            metadata=metadata,
        )

        logger.info(f"Free checkout for clinic {clinic.id}: subscription {subscription.id} ({status})")
        return {
            'subscription_id': str(subscription.id),
            'status': subscription.status,
            'amount': 0,
            'subscription': subscription,
        }

    def _start_subscription(self, clinic, plan, billing_cycle, coupon, **fields):
        """
        Retire any abandoned checkout, insert the new row and redeem the
        coupon in one transaction. The coupon use is reserved before the
        gateway is called and released again if the checkout is abandoned.
        """
        try:
            with transaction.atomic():
                self._retire_abandoned_checkout(clinic)
                subscription = self.subscriptions.start(clinic, plan, billing_cycle, **fields)
                if coupon:
                    self.coupons.apply(coupon['code'])
        except IntegrityError:
            raise ConflictError('Another checkout for this clinic is in progress, try again')
        return subscription

    def _abandon(self, subscription, coupon=None):
        subscription.transition(Subscription.STATUS_CANCELLED, Subscription.CURRENT_STATUSES,
                                cancelled_at=timezone.now())
        logger.warning(f"Checkout for subscription {subscription.id} failed at the gateway, cancelled locally")
        if coupon:
            self.coupons.release(coupon['code'])
