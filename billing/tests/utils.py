import hashlib
import hmac
import time
from decimal import Decimal
from unittest.mock import MagicMock

from django.contrib.auth import get_user_model

from accounts.models import Clinic
from billing.config import BillingConfig
from billing.models import Plan
from billing.payment_gateways import CheckoutResult

User = get_user_model()


def make_config(**overrides):
    """Billing config with test credentials and no settings lookups."""
    values = {
        'default_gateway': 'stripe',
        'stripe_secret_key': 'sk_test_123',
        'stripe_webhook_secret': 'whsec_test_123',
        'asaas_api_key': 'asaas_test_key',
        'asaas_webhook_token': 'asaas-token',
        'frontend_url': 'https://app.example.com',
    }
    values.update(overrides)
    return BillingConfig(**values)


def create_clinic(name='Sorriso Clinic', cnpj='12.345.678/0001-90', email='billing@sorriso.example.com'):
    return Clinic.objects.create(name=name, cnpj=cnpj, email=email)


def create_clinic_owner(clinic, email='owner@sorriso.example.com'):
    return User.objects.create_user(
        email=email,
        password='testpass123',
        name='Clinic Owner',
        clinic=clinic,
        role=User.ROLE_OWNER,
    )


def create_plan(name='professional', price_monthly='199.90', price_yearly='1999.00', **kwargs):
    defaults = {
        'display_name': name.title(),
        'max_patients': 500,
        'max_dentists': 5,
        'max_appointments_month': 1000,
    }
    defaults.update(kwargs)
    return Plan.objects.create(
        name=name,
        price_monthly=Decimal(price_monthly),
        price_yearly=Decimal(price_yearly) if price_yearly is not None else None,
        **defaults
    )


class FakeGateway:
    """Records checkout requests and answers with a canned result."""

    name = 'stripe'

    def __init__(self, result=None):
        self.result = result or CheckoutResult(
            status='pending',
            checkout_url='https://checkout.example.com/cs_test_1',
            payment_id='cs_test_1',
        )
        self.checkouts = []
        self.cancelled = []

    def __call__(self, name, config):
        self.name = name
        return self

    def create_checkout(self, params):
        self.checkouts.append(params)
        return self.result

    def cancel_subscription(self, external_id):
        self.cancelled.append(external_id)
        return []


def provider_response(data):
    """A requests response returning ``data`` as JSON."""
    response = MagicMock()
    response.content = b'{}'
    response.json.return_value = data
    response.raise_for_status.return_value = None
    return response


def stripe_signature(payload, secret, timestamp=None):
    """Stripe-Signature header value for ``payload`` signed with ``secret``."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode('utf-8')
    digest = hmac.new(secret.encode('utf-8'), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"
