"""
Subscription state machine.

States: trialing, active, past_due, cancelled, expired. cancelled and
expired are terminal. Every transition is a conditional single-row UPDATE
(see ``Subscription.transition``) so replayed or racing webhooks converge on
the same state.
"""
import logging
from datetime import timedelta

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.utils import timezone

from ..config import BillingConfig
from ..exceptions import ConflictError, NotFound, ValidationError
from ..models import Invoice, Plan, Subscription, period_end_for
from ..notifications import notify_clinic
from ..payment_gateways import GATEWAYS, get_payment_gateway
from ..utils import PlanLimitChecker
from .base import ServiceResult

logger = logging.getLogger(__name__)


class SubscriptionService:
    """Lifecycle operations on a clinic's subscriptions"""

    def __init__(self, config=None):
        self.config = config or BillingConfig.from_settings()

    # Lookups

    @staticmethod
    def find_current(clinic):
        return Subscription.objects.filter(
            clinic=clinic,
            status__in=Subscription.CURRENT_STATUSES,
        ).select_related('plan').order_by('-created_at').first()

    def get_current(self, clinic):
        subscription = self.find_current(clinic)
        if not subscription:
            raise NotFound('No active subscription found')
        return subscription

    def get_usage(self, clinic):
        """Current counts against the plan's caps"""
        subscription = self.get_current(clinic)
        plan = subscription.plan
        counts = PlanLimitChecker.usage_counts(clinic)
        return {
            'plan': plan.name,
            'status': subscription.status,
            'patients': {'current': counts['patients'], 'limit': plan.max_patients},
            'dentists': {'current': counts['dentists'], 'limit': plan.max_dentists},
            'appointments_month': {'current': counts['appointments'], 'limit': plan.max_appointments_month},
        }

    def get_invoices(self, clinic):
        return Invoice.objects.filter(clinic=clinic).order_by('-created_at')

    @staticmethod
    def get_active_plan(plan_id):
        try:
            plan = Plan.objects.get(pk=plan_id)
        except (Plan.DoesNotExist, DjangoValidationError, ValueError, TypeError):
            raise NotFound('Plan not found')
        if not plan.is_active:
            raise NotFound('Plan not found or inactive')
        return plan

    # Creation

    def start(self, clinic, plan, billing_cycle='monthly', status=Subscription.STATUS_TRIALING,
              payment_method='', payment_gateway='', external_id='', metadata=None, trial_end=None):
        """Insert a new current subscription row. Callers must have retired the previous one."""
        now = timezone.now()
        fields = {
            'clinic': clinic,
            'plan': plan,
            'billing_cycle': billing_cycle,
            'status': status,
            'current_period_start': now,
            'payment_method': payment_method or '',
            'payment_gateway': payment_gateway or '',
            'external_id': external_id or '',
            'metadata': metadata or {},
        }
        if status == Subscription.STATUS_TRIALING:
            trial_end = trial_end or now + timedelta(days=self.config.trial_days)
            fields.update(trial_start=now, trial_end=trial_end, current_period_end=trial_end)
        else:
            fields['current_period_end'] = period_end_for(now, billing_cycle)

        subscription = Subscription.objects.create(**fields)
        logger.info(f"Subscription {subscription.id} started for clinic {clinic.id} "
                    f"on plan {plan.name} ({status})")
        return subscription

    def create(self, clinic, plan_id, billing_cycle='monthly', payment_method=''):
        """
        Start a trial on a plan for a clinic that has no current subscription.

        Raises ConflictError when one exists; plan changes go through
        ``change_plan``.
        """
        plan = self.get_active_plan(plan_id)
        if self.find_current(clinic):
            raise ConflictError('Clinic already has an active subscription. Use change-plan instead.')
        try:
            with transaction.atomic():
                return self.start(clinic, plan, billing_cycle, payment_method=payment_method)
        except IntegrityError:
            raise ConflictError('Clinic already has an active subscription. Use change-plan instead.')

    def change_plan(self, clinic, plan_id, billing_cycle=None):
        """
        Replace the current subscription with one on another plan.

        The old row is cancelled and a new one created from now; nothing is
        prorated. Asking for the plan already in use is rejected, so a
        repeated request never creates a third row.
        """
        new_plan = self.get_active_plan(plan_id)

        with transaction.atomic():
            current = self.get_current(clinic)
            if current.plan_id == new_plan.id:
                raise ValidationError('Already on this plan')

            if not current.transition(Subscription.STATUS_CANCELLED, Subscription.CURRENT_STATUSES,
                                      cancelled_at=timezone.now(), cancel_at_period_end=False):
                raise ConflictError('Subscription changed while switching plans, try again')

            replacement = self.start(
                clinic,
                new_plan,
                billing_cycle or current.billing_cycle,
                status=current.status,
                payment_method=current.payment_method,
                payment_gateway=current.payment_gateway,
                external_id=current.external_id,
                metadata={**current.metadata, 'previous_subscription_id': str(current.id)},
                trial_end=current.trial_end if current.status == Subscription.STATUS_TRIALING else None,
            )

        logger.info(f"Clinic {clinic.id} changed plan {current.plan.name} -> {new_plan.name}")
        return replacement

    # Tenant cancellation

    def cancel(self, clinic):
        """Schedule cancellation at the end of the current period"""
        subscription = self.get_current(clinic)
        if subscription.cancel_at_period_end:
            return subscription
        subscription.transition(subscription.status, (subscription.status,),
                                cancel_at_period_end=True, cancelled_at=timezone.now())
        logger.info(f"Subscription {subscription.id} will cancel at {subscription.current_period_end}")
        return subscription

    def reactivate(self, clinic):
        """Undo a scheduled cancellation"""
        subscription = self.get_current(clinic)
        if not subscription.cancel_at_period_end:
            raise ValidationError('Subscription is not scheduled for cancellation')
        subscription.transition(subscription.status, (subscription.status,),
                                cancel_at_period_end=False, cancelled_at=None)
        logger.info(f"Subscription {subscription.id} reactivated")
        return subscription

    # Gateway-driven transitions

    def activate_from_payment(self, subscription, external_id=None):
        """
        Apply a confirmed payment: trialing/past_due -> active, or renew an
        active subscription for one more period.

        Returns False for terminal subscriptions, which are never revived.
        """
        if subscription.is_terminal:
            logger.warning(f"Payment received for {subscription.status} subscription {subscription.id}, "
                           f"not reactivating")
            return False

        now = timezone.now()
        if subscription.status == Subscription.STATUS_ACTIVE and subscription.current_period_end > now:
            period_start = subscription.current_period_end
        else:
            period_start = now

        fields = {
            'current_period_start': period_start,
            'current_period_end': period_end_for(period_start, subscription.billing_cycle),
        }
        if external_id:
            fields['external_id'] = external_id

        previous_status = subscription.status
        changed = subscription.transition(Subscription.STATUS_ACTIVE, (previous_status,), **fields)
        if changed and previous_status != Subscription.STATUS_ACTIVE:
            logger.info(f"Subscription {subscription.id} {previous_status} -> active")
            notify_clinic(
                subscription.clinic,
                'Subscription active',
                f"Your payment was confirmed and your {subscription.plan.display_name} plan is active.",
            )
        return changed

    def mark_past_due(self, subscription):
        changed = subscription.transition(Subscription.STATUS_PAST_DUE, (Subscription.STATUS_ACTIVE,))
        if changed:
            logger.info(f"Subscription {subscription.id} active -> past_due")
            notify_clinic(
                subscription.clinic,
                'Payment failed',
                'We could not process your last payment. Please update your payment method.',
            )
        return changed

    def mark_cancelled(self, subscription):
        changed = subscription.transition(
            Subscription.STATUS_CANCELLED,
            Subscription.CURRENT_STATUSES,
            cancelled_at=subscription.cancelled_at or timezone.now(),
            cancel_at_period_end=False,
        )
        if changed:
            logger.info(f"Subscription {subscription.id} cancelled by gateway")
        return changed

    # Periodic sweeps

    def expire_trials(self, now=None):
        """trialing -> expired once trial_end has passed. Returns the count."""
        now = now or timezone.now()
        expired = 0
        candidates = Subscription.objects.filter(
            status=Subscription.STATUS_TRIALING,
            trial_end__lte=now,
        ).select_related('clinic', 'plan')

        for subscription in candidates:
            if subscription.transition(Subscription.STATUS_EXPIRED, (Subscription.STATUS_TRIALING,)):
                expired += 1
                notify_clinic(
                    subscription.clinic,
                    'Trial ended',
                    f"Your trial of the {subscription.plan.display_name} plan has ended. "
                    f"Choose a plan to keep using the platform.",
                )

        logger.info(f"Expired {expired} trials")
        return expired

    def process_period_end_cancellations(self, now=None):
        """
        Cancel subscriptions whose tenant asked to stop at period end.

        Gateway-side cancellation is best effort; its failures come back as
        warnings on the result and never keep the local row alive.
        """
        now = now or timezone.now()
        result = ServiceResult(value=0)
        due = Subscription.objects.filter(
            status__in=Subscription.CURRENT_STATUSES,
            cancel_at_period_end=True,
            current_period_end__lte=now,
        )

        for subscription in due:
            if not subscription.transition(Subscription.STATUS_CANCELLED, Subscription.CURRENT_STATUSES,
                                           cancelled_at=subscription.cancelled_at or now):
                continue
            result.value += 1
            result.warnings.extend(self.cancel_on_gateway(subscription))

        logger.info(f"Processed {result.value} period-end cancellations ({len(result.warnings)} warnings)")
        return result

    def cancel_on_gateway(self, subscription):
        """Best-effort provider cancellation; returns warnings"""
        if not subscription.external_id or subscription.payment_gateway not in GATEWAYS:
            return []
        # A plan change hands the same gateway subscription to the new row
        still_used = Subscription.objects.filter(
            external_id=subscription.external_id,
            status__in=Subscription.CURRENT_STATUSES,
        ).exclude(pk=subscription.pk).exists()
        if still_used:
            return []
        gateway = get_payment_gateway(subscription.payment_gateway, self.config)
        return gateway.cancel_subscription(subscription.external_id)
