"""
Payment Gateway Integrations
Stripe (cards) and Asaas (PIX, boleto, cards) behind one interface.

Every adapter turns a provider webhook into a ``NormalizedWebhookEvent`` so
the subscription state machine never sees provider payloads.
"""
import hmac
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

import requests
import stripe
from django.utils import timezone

from .exceptions import GatewayNotConfigured, UpstreamError, ValidationError, WebhookAuthenticationError
from .models import from_minor_units, period_end_for

logger = logging.getLogger(__name__)


@dataclass
class CheckoutParams:
    clinic_id: str
    plan_id: str
    plan_name: str
    amount: int  # Minor units, discount already applied
    billing_cycle: str
    customer_email: str
    customer_name: str
    customer_document: str = ''
    payment_method: str = 'credit_card'
    coupon_discount_percent: Optional[int] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    success_url: str = ''
    cancel_url: str = ''


@dataclass
class CheckoutResult:
    status: str  # pending | processing | paid | failed
    checkout_url: Optional[str] = None
    payment_id: Optional[str] = None
    pix_qr_code: Optional[str] = None
    pix_copy_paste: Optional[str] = None
    boleto_url: Optional[str] = None
    error: Optional[str] = None

    @property
    def failed(self):
        return self.status == 'failed'

    def as_dict(self):
        return {key: value for key, value in self.__dict__.items() if value is not None}


@dataclass
class SubscriptionParams:
    clinic_id: str
    plan_name: str
    amount: int
    billing_cycle: str
    customer_email: str
    customer_name: str
    customer_document: str = ''
    payment_method: str = 'credit_card'
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass
class GatewaySubscriptionResult:
    gateway_subscription_id: str
    status: str
    current_period_start: datetime
    current_period_end: datetime


@dataclass
class NormalizedWebhookEvent:
    type: str
    gateway: str
    gateway_event_id: str
    gateway_subscription_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    amount: Optional[int] = None  # Minor units
    status: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def local_subscription_id(self):
        return self.metadata.get('subscription_id') or None


class PaymentGateway(ABC):
    """Interface every payment provider adapter implements"""
    name = ''
    EVENT_MAP: Dict[str, str] = {}

    def __init__(self, config):
        self.config = config

    @abstractmethod
    def is_configured(self) -> bool:
        ...

    def ensure_configured(self):
        if not self.is_configured():
            raise GatewayNotConfigured(f"{self.name} gateway is not configured")

    @abstractmethod
    def create_checkout(self, params: CheckoutParams) -> CheckoutResult:
        ...

    @abstractmethod
    def create_subscription(self, params: SubscriptionParams) -> GatewaySubscriptionResult:
        ...

    @abstractmethod
    def _cancel_remote_subscription(self, external_id: str):
        ...

    def cancel_subscription(self, external_id: str) -> List[str]:
        """
        Best-effort cancellation on the provider side.

        Returns a list of warnings; provider errors are logged and reported
        there instead of raised, so local cancellation always goes through.
        """
        if not external_id:
            return []
        if not self.is_configured():
            message = f"{self.name} not configured, gateway subscription {external_id} left active"
            logger.warning(message)
            return [message]
        try:
            self._cancel_remote_subscription(external_id)
        except Exception as e:
            message = f"Failed to cancel {self.name} subscription {external_id}: {str(e)}"
            logger.exception(message)
            return [message]
        logger.info(f"Cancelled {self.name} subscription {external_id}")
        return []

    @abstractmethod
    def parse_webhook(self, raw_body, headers: Dict[str, str]) -> NormalizedWebhookEvent:
        ...

    def normalize_event_type(self, provider_type):
        return self.EVENT_MAP.get(provider_type, provider_type)


class StripeGateway(PaymentGateway):
    """Stripe integration (international cards, recurring billing)"""
    name = 'stripe'
    EVENT_MAP = {
        'checkout.session.completed': 'checkout.completed',
        'invoice.paid': 'payment.succeeded',
        'invoice.payment_failed': 'payment.failed',
        'customer.subscription.updated': 'subscription.updated',
        'customer.subscription.deleted': 'subscription.cancelled',
    }

    def __init__(self, config):
        super().__init__(config)
        self.secret_key = config.stripe_secret_key
        self.webhook_secret = config.stripe_webhook_secret

    def is_configured(self):
        return bool(self.secret_key)

    def _product_name(self, plan_name):
        return f"Odonto SaaS - {plan_name}"

    def _interval(self, billing_cycle):
        return 'year' if billing_cycle == 'yearly' else 'month'

    def create_checkout(self, params):
        self.ensure_configured()
        metadata = {'clinic_id': params.clinic_id, 'plan_id': params.plan_id, **params.metadata}

        try:
            session = stripe.checkout.Session.create(
                api_key=self.secret_key,
                mode='subscription',
                payment_method_types=['card'],
                customer_email=params.customer_email,
                line_items=[{
                    'price_data': {
                        'currency': self.config.currency,
                        'product_data': {'name': self._product_name(params.plan_name)},
                        'unit_amount': params.amount,
                        'recurring': {'interval': self._interval(params.billing_cycle)},
                    },
                    'quantity': 1,
                }],
                success_url=params.success_url or self.config.checkout_success_url,
                cancel_url=params.cancel_url or self.config.checkout_cancel_url,
                client_reference_id=params.metadata.get('subscription_id'),
                metadata=metadata,
                # Copied onto the Stripe subscription so invoice events carry it too
                subscription_data={'metadata': metadata},
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout error: {str(e)}")
            return CheckoutResult(status='failed', error=str(e))

        return CheckoutResult(status='pending', checkout_url=session.url, payment_id=session.id)

    def create_subscription(self, params):
        self.ensure_configured()
        try:
            customers = stripe.Customer.list(email=params.customer_email, limit=1, api_key=self.secret_key)
            if customers.data:
                customer = customers.data[0]
            else:
                customer = stripe.Customer.create(
                    api_key=self.secret_key,
                    email=params.customer_email,
                    name=params.customer_name,
                    metadata={'clinic_id': params.clinic_id},
                )

            price = stripe.Price.create(
                api_key=self.secret_key,
                currency=self.config.currency,
                unit_amount=params.amount,
                recurring={'interval': self._interval(params.billing_cycle)},
                product_data={'name': self._product_name(params.plan_name)},
            )

            subscription = stripe.Subscription.create(
                api_key=self.secret_key,
                customer=customer.id,
                items=[{'price': price.id}],
                payment_behavior='default_incomplete',
                metadata={'clinic_id': params.clinic_id, **params.metadata},
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe subscription error: {str(e)}")
            raise UpstreamError(f"Failed to create Stripe subscription: {str(e)}")

        now = timezone.now()
        period_start = getattr(subscription, 'current_period_start', None)
        period_end = getattr(subscription, 'current_period_end', None)
        return GatewaySubscriptionResult(
            gateway_subscription_id=subscription.id,
            status=subscription.status,
            current_period_start=(
                datetime.fromtimestamp(period_start, tz=dt_timezone.utc) if period_start else now
            ),
            current_period_end=(
                datetime.fromtimestamp(period_end, tz=dt_timezone.utc) if period_end
                else period_end_for(now, params.billing_cycle)
            ),
        )

    def _cancel_remote_subscription(self, external_id):
        stripe.Subscription.cancel(external_id, api_key=self.secret_key)

    @staticmethod
    def _subscription_details(obj):
        # Newer API versions nest subscription details under ``parent``
        parent = obj.get('parent') or {}
        return parent.get('subscription_details') or obj.get('subscription_details') or {}

    def parse_webhook(self, raw_body, headers):
        if not self.webhook_secret:
            raise WebhookAuthenticationError('STRIPE_WEBHOOK_SECRET not configured')

        if isinstance(raw_body, bytes):
            raw_body = raw_body.decode('utf-8')
        signature = headers.get('stripe-signature', '')

        try:
            stripe.WebhookSignature.verify_header(raw_body, signature, self.webhook_secret)
            event = json.loads(raw_body)
        except stripe.SignatureVerificationError as e:
            raise WebhookAuthenticationError(f"Invalid Stripe signature: {str(e)}")
        except ValueError as e:
            raise WebhookAuthenticationError(f"Invalid Stripe payload: {str(e)}")

        obj = (event.get('data') or {}).get('object') or {}
        object_type = obj.get('object')
        details = self._subscription_details(obj)

        if object_type == 'subscription':
            subscription_id = obj.get('id')
        else:
            subscription_id = obj.get('subscription') or details.get('subscription')

        # The Stripe invoice id is shared by checkout.session.completed and
        # invoice.paid for the first charge, which lets the two deduplicate.
        if object_type == 'invoice':
            payment_id = obj.get('id')
        elif object_type == 'checkout.session':
            payment_id = obj.get('invoice') or obj.get('payment_intent')
        else:
            payment_id = obj.get('payment_intent')

        amount = obj.get('amount_paid')
        if amount is None:
            amount = obj.get('amount_total')

        return NormalizedWebhookEvent(
            type=self.normalize_event_type(event.get('type', '')),
            gateway=self.name,
            gateway_event_id=event.get('id', ''),
            gateway_subscription_id=subscription_id or None,
            gateway_payment_id=payment_id or None,
            amount=amount,
            status=obj.get('status'),
            metadata=dict(obj.get('metadata') or details.get('metadata') or {}),
            raw=event,
        )


class AsaasGateway(PaymentGateway):
    """Asaas integration (Brazil: PIX, boleto and cards)"""
    name = 'asaas'
    EVENT_MAP = {
        'PAYMENT_CONFIRMED': 'payment.succeeded',
        'PAYMENT_RECEIVED': 'payment.succeeded',
        'PAYMENT_OVERDUE': 'payment.failed',
        'PAYMENT_DELETED': 'payment.cancelled',
        'PAYMENT_REFUNDED': 'payment.refunded',
        'SUBSCRIPTION_CREATED': 'subscription.created',
        'SUBSCRIPTION_UPDATED': 'subscription.updated',
        'SUBSCRIPTION_DELETED': 'subscription.cancelled',
    }
    BILLING_TYPES = {
        'credit_card': 'CREDIT_CARD',
        'pix': 'PIX',
        'boleto': 'BOLETO',
    }
    CHECKOUT_DUE_DAYS = 3

    def __init__(self, config):
        super().__init__(config)
        self.api_key = config.asaas_api_key
        self.base_url = config.asaas_base_url
        self.webhook_token = config.asaas_webhook_token

    def is_configured(self):
        return bool(self.api_key)

    def _make_request(self, method, endpoint, data=None, params=None):
        """Make API request to Asaas"""
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        headers = {
            'access_token': self.api_key,
            'Content-Type': 'application/json',
        }

        try:
            response = requests.request(
                method, url, headers=headers, json=data, params=params,
                timeout=self.config.request_timeout,
            )
            response.raise_for_status()
            return response.json() if response.content else {}
        except requests.exceptions.RequestException as e:
            logger.error(f"Asaas API error: {str(e)}")
            raise UpstreamError(f"Asaas API error: {str(e)}")

    def _billing_type(self, payment_method):
        return self.BILLING_TYPES.get(payment_method, 'PIX')

    @staticmethod
    def _to_value(amount):
        # Asaas takes decimal major units
        return float(from_minor_units(amount))

    def _find_or_create_customer(self, name, email, document=''):
        if document:
            found = self._make_request('GET', 'customers', params={'cpfCnpj': document})
            if found.get('data'):
                return found['data'][0]['id']

        customer = self._make_request('POST', 'customers', data={
            'name': name,
            'email': email,
            'cpfCnpj': document or None,
        })
        return customer['id']

    def create_checkout(self, params):
        self.ensure_configured()
        billing_type = self._billing_type(params.payment_method)
        due_date = (timezone.now() + timedelta(days=self.CHECKOUT_DUE_DAYS)).date()

        try:
            customer_id = self._find_or_create_customer(
                params.customer_name, params.customer_email, params.customer_document,
            )
            payment = self._make_request('POST', 'payments', data={
                'customer': customer_id,
                'billingType': billing_type,
                'value': self._to_value(params.amount),
                'dueDate': due_date.isoformat(),
                'description': f"Odonto SaaS - {params.plan_name}",
                'externalReference': params.metadata.get('subscription_id') or params.clinic_id,
            })
        except UpstreamError as e:
            return CheckoutResult(status='failed', error=str(e.detail))

        result = CheckoutResult(
            status='pending',
            payment_id=payment.get('id'),
            checkout_url=payment.get('invoiceUrl'),
        )

        if billing_type == 'PIX' and result.payment_id:
            try:
                pix = self._make_request('GET', f"payments/{result.payment_id}/pixQrCode")
                result.pix_qr_code = pix.get('encodedImage')
                result.pix_copy_paste = pix.get('payload')
            except UpstreamError as e:
                logger.warning(f"Failed to get PIX QR code for {result.payment_id}: {e.detail}")

        if billing_type == 'BOLETO':
            result.boleto_url = payment.get('bankSlipUrl')

        return result

    def create_subscription(self, params):
        self.ensure_configured()
        customer_id = self._find_or_create_customer(
            params.customer_name, params.customer_email, params.customer_document,
        )
        now = timezone.now()
        subscription = self._make_request('POST', 'subscriptions', data={
            'customer': customer_id,
            'billingType': self._billing_type(params.payment_method),
            'value': self._to_value(params.amount),
            'cycle': 'YEARLY' if params.billing_cycle == 'yearly' else 'MONTHLY',
            'nextDueDate': (now + timedelta(days=1)).date().isoformat(),
            'description': f"Odonto SaaS - {params.plan_name}",
            'externalReference': params.metadata.get('subscription_id') or params.clinic_id,
        })

        return GatewaySubscriptionResult(
            gateway_subscription_id=subscription['id'],
            status='active' if subscription.get('status') == 'ACTIVE' else 'pending',
            current_period_start=now,
            current_period_end=period_end_for(now, params.billing_cycle),
        )

    def _cancel_remote_subscription(self, external_id):
        self._make_request('DELETE', f"subscriptions/{external_id}")

    def parse_webhook(self, raw_body, headers):
        if self.webhook_token:
            supplied = headers.get('asaas-access-token', '')
            if not hmac.compare_digest(supplied.encode(), self.webhook_token.encode()):
                raise WebhookAuthenticationError('Invalid Asaas webhook token')

        try:
            payload = json.loads(raw_body)
        except ValueError as e:
            raise WebhookAuthenticationError(f"Invalid Asaas payload: {str(e)}")

        payment = payload.get('payment') or {}
        value = payment.get('value')
        amount = None
        if value is not None:
            amount = int((Decimal(str(value)) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))
        status = payment.get('status')

        return NormalizedWebhookEvent(
            type=self.normalize_event_type(payload.get('event', '')),
            gateway=self.name,
            gateway_event_id=payload.get('id', ''),
            gateway_subscription_id=payment.get('subscription') or None,
            gateway_payment_id=payment.get('id') or None,
            amount=amount,
            status=status.lower() if status else None,
            metadata={'subscription_id': payment.get('externalReference')} if payment.get('externalReference') else {},
            raw=payload,
        )


GATEWAYS = {
    StripeGateway.name: StripeGateway,
    AsaasGateway.name: AsaasGateway,
}


def get_payment_gateway(name, config):
    """Factory function to get the adapter registered under ``name``"""
    try:
        gateway_class = GATEWAYS[name]
    except KeyError:
        raise ValidationError(f"Unsupported payment gateway: {name}")
    return gateway_class(config)
