"""
Celery Tasks for Subscription Management
Periodic sweeps for trial expiry, period-end cancellation, trial reminders
and NFS-e retries. Schedules live in app/celery.py.
"""
from celery import shared_task
from django.utils import timezone
import logging

from .config import BillingConfig
from .models import Invoice, Subscription
from .nfse import NfseService
from .notifications import notify_clinic
from .services import SubscriptionService

logger = logging.getLogger(__name__)


@shared_task
def expire_trials():
    """
    Move trials past their end date to expired
    Run daily
    """
    return SubscriptionService(BillingConfig.from_settings()).expire_trials()


@shared_task
def process_period_end_cancellations():
    """
    Cancel subscriptions flagged cancel_at_period_end whose period is over
    Run hourly
    """
    result = SubscriptionService(BillingConfig.from_settings()).process_period_end_cancellations()
    for warning in result.warnings:
        logger.warning(warning)
    return {'cancelled': result.value, 'warnings': result.warnings}


@shared_task
def send_trial_reminders():
    """
    Remind clinics 7, 3 and 1 days before their trial ends
    Run daily
    """
    config = BillingConfig.from_settings()
    now = timezone.now()
    sent = 0

    trials = Subscription.objects.filter(
        status=Subscription.STATUS_TRIALING,
        trial_end__gt=now,
    ).select_related('clinic', 'plan')

    for subscription in trials:
        days_left = subscription.days_until_trial_end(now)
        if days_left not in config.trial_reminder_days:
            continue
        plural = 's' if days_left != 1 else ''
        sent += notify_clinic(
            subscription.clinic,
            f"Your trial ends in {days_left} day{plural}",
            f"Your trial of the {subscription.plan.display_name} plan ends on "
            f"{subscription.trial_end.date()}. Choose a plan to keep your data and access.",
        )

    logger.info(f"Sent {sent} trial reminders")
    return sent


@shared_task
def reprocess_failed_nfse():
    """
    Retry NFS-e emission for paid invoices whose last attempt failed
    Run every 6 hours
    """
    service = NfseService(BillingConfig.from_settings())
    if not service.enabled:
        return 0

    issued = 0
    failed = Invoice.objects.filter(
        status=Invoice.STATUS_PAID,
        nfse_status=Invoice.NFSE_ERROR,
    ).select_related('clinic')

    for invoice in failed:
        if service.reprocess(invoice).status == Invoice.NFSE_ISSUED:
            issued += 1

    logger.info(f"Reprocessed NFS-e: {issued} issued")
    return issued
