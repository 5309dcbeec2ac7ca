"""
Billing notifications: email to a clinic's owners and admins.
"""
import logging

from django.conf import settings
from django.core.mail import send_mail

logger = logging.getLogger(__name__)


def notify_clinic(clinic, subject, message):
    """
    Email the clinic's billing contacts. Delivery problems are logged and
    never raised to the caller.

    Returns the number of messages sent.
    """
    recipients = list(clinic.billing_contacts.values_list('email', flat=True))
    if not recipients and clinic.email:
        recipients = [clinic.email]
    if not recipients:
        logger.info(f"No billing contacts for clinic {clinic.id}, skipping '{subject}'")
        return 0

    try:
        return send_mail(
            subject=subject,
            message=message,
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=recipients,
            fail_silently=False,
        )
    except Exception:
        logger.exception(f"Failed to send '{subject}' to clinic {clinic.id}")
        return 0
