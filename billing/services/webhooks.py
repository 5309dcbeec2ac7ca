"""
Webhook Normalizer & Dispatcher

Providers deliver at least once, possibly out of order and possibly before
the checkout's own write is visible. Unknown subscriptions are dropped with
a log line, payments are keyed on the gateway payment id and every status
change is a conditional update, so replays are harmless.
"""
import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction

from ..config import BillingConfig
from ..exceptions import WebhookAuthenticationError
from ..models import Subscription
from ..nfse import NfseService
from ..payment_gateways import GATEWAYS, get_payment_gateway
from .invoicing import InvoicingService
from .subscriptions import SubscriptionService

logger = logging.getLogger(__name__)


class WebhookProcessor:
    """Verify, normalize and apply provider webhooks"""

    def __init__(self, config=None, subscriptions=None, invoicing=None, nfse=None, gateway_factory=None):
        self.config = config or BillingConfig.from_settings()
        self.subscriptions = subscriptions or SubscriptionService(self.config)
        self.invoicing = invoicing or InvoicingService()
        self.nfse = nfse or NfseService(self.config)
        self.gateway_factory = gateway_factory or get_payment_gateway

        self.handlers = {
            'checkout.completed': self.handle_payment_succeeded,
            'payment.succeeded': self.handle_payment_succeeded,
            'payment.failed': self.handle_payment_failed,
            'subscription.cancelled': self.handle_subscription_cancelled,
        }

    def handle(self, gateway_name, raw_body, headers):
        """
        Entry point for webhook views. Never raises.

        Returns True when the event was verified and processed, False
        otherwise; the provider gets HTTP 200 either way.
        """
        if gateway_name not in GATEWAYS:
            logger.error(f"Webhook for unknown gateway {gateway_name}")
            return False

        headers = {str(key).lower(): value for key, value in (headers or {}).items()}
        event = None
        try:
            gateway = self.gateway_factory(gateway_name, self.config)
            event = gateway.parse_webhook(raw_body, headers)
            self.process_event(event)
        except WebhookAuthenticationError as e:
            logger.warning(f"Rejected {gateway_name} webhook: {str(e)}")
            return False
        except Exception:
            logger.exception(
                f"Webhook processing failed (gateway={gateway_name}, "
                f"event_id={getattr(event, 'gateway_event_id', None)}, type={getattr(event, 'type', None)})"
            )
            return False
        return True

    def process_event(self, event):
        logger.info(f"Webhook {event.gateway}:{event.gateway_event_id} type={event.type}")
        handler = self.handlers.get(event.type)
        if handler is None:
            logger.info(f"Ignoring {event.gateway} event type {event.type} ({event.gateway_event_id})")
            return
        handler(event)

    @staticmethod
    def _by_local_id(local_id):
        if not local_id:
            return None
        try:
            return Subscription.objects.select_related('plan', 'clinic').filter(pk=local_id).first()
        except (DjangoValidationError, ValueError):
            return None

    @staticmethod
    def _by_external_id(external_id):
        if not external_id:
            return None
        return Subscription.objects.select_related('plan', 'clinic').filter(
            external_id=external_id,
        ).order_by('-created_at').first()

    def resolve_subscription(self, event, metadata_first=True):
        """
        Find the local subscription an event refers to.

        Payment events look up the local id carried in metadata first, then
        the newest row holding the gateway subscription id. A plan change
        hands the gateway id to a new row while the provider keeps the old
        metadata, so a terminal metadata match yields to that newer row.
        A checkout superseded by a later one can still be paid at the
        gateway; its payments go to the clinic's current subscription.
        """
        by_metadata = self._by_local_id(event.local_subscription_id)
        by_gateway = self._by_external_id(event.gateway_subscription_id)

        if not metadata_first:
            return by_gateway or by_metadata
        if by_metadata and by_metadata.is_terminal:
            if by_gateway and not by_gateway.is_terminal:
                return by_gateway
            if not by_gateway and by_metadata.metadata.get('superseded'):
                current = self.subscriptions.find_current(by_metadata.clinic)
                if current:
                    logger.info(f"Payment for superseded checkout {by_metadata.id} "
                                f"moved to subscription {current.id}")
                    return current
        return by_metadata or by_gateway

    def handle_payment_succeeded(self, event):
        subscription = self.resolve_subscription(event)
        if subscription is None:
            logger.warning(f"No subscription for {event.gateway} event {event.gateway_event_id} "
                           f"(subscription={event.gateway_subscription_id}), dropping")
            return

        payment_key = event.gateway_payment_id or event.gateway_event_id
        with transaction.atomic():
            invoice, created = self.invoicing.record_confirmed_payment(
                subscription,
                gateway=event.gateway,
                gateway_payment_id=payment_key,
                amount=event.amount,
                gateway_event_id=event.gateway_event_id,
            )
            if created:
                self.subscriptions.activate_from_payment(
                    subscription, external_id=event.gateway_subscription_id,
                )

        if created and subscription.plan.has_feature('has_nfse_auto'):
            result = self.nfse.emit(invoice)
            for warning in result.warnings:
                logger.warning(f"NFS-e for invoice {invoice.number}: {warning}")

    def handle_payment_failed(self, event):
        subscription = self.resolve_subscription(event, metadata_first=False)
        if subscription is None:
            logger.warning(f"No subscription for failed payment {event.gateway_event_id}, dropping")
            return
        self.subscriptions.mark_past_due(subscription)

    def handle_subscription_cancelled(self, event):
        subscription = self.resolve_subscription(event, metadata_first=False)
        if subscription is None:
            logger.warning(f"No subscription for cancellation {event.gateway_event_id}, dropping")
            return
        self.subscriptions.mark_cancelled(subscription)
