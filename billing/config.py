"""
Billing configuration.

Services and gateways take a ``BillingConfig`` at construction instead of
reading Django settings on every call; tests build their own instance.
"""
from dataclasses import dataclass, field, replace

from django.conf import settings


@dataclass(frozen=True)
class BillingConfig:
    default_gateway: str = 'stripe'
    currency: str = 'brl'
    trial_days: int = 14
    frontend_url: str = 'http://localhost:3000'
    request_timeout: int = 30

    stripe_secret_key: str = ''
    stripe_webhook_secret: str = ''

    asaas_api_key: str = ''
    asaas_sandbox: bool = True
    asaas_webhook_token: str = ''

    nfse_provider: str = 'enotas'
    nfse_api_key: str = ''

    trial_reminder_days: tuple = field(default=(7, 3, 1))

    @classmethod
    def from_settings(cls):
        """Build a config from the Django settings module"""
        return cls(
            default_gateway=getattr(settings, 'BILLING_DEFAULT_GATEWAY', 'stripe'),
            currency=getattr(settings, 'BILLING_CURRENCY', 'brl'),
            trial_days=getattr(settings, 'BILLING_TRIAL_DAYS', 14),
            frontend_url=getattr(settings, 'FRONTEND_URL', 'http://localhost:3000'),
            request_timeout=getattr(settings, 'BILLING_REQUEST_TIMEOUT', 30),
            stripe_secret_key=getattr(settings, 'STRIPE_SECRET_KEY', ''),
            stripe_webhook_secret=getattr(settings, 'STRIPE_WEBHOOK_SECRET', ''),
            asaas_api_key=getattr(settings, 'ASAAS_API_KEY', ''),
            asaas_sandbox=getattr(settings, 'ASAAS_SANDBOX', True),
            asaas_webhook_token=getattr(settings, 'ASAAS_WEBHOOK_TOKEN', ''),
            nfse_provider=getattr(settings, 'NFSE_PROVIDER', 'enotas'),
            nfse_api_key=getattr(settings, 'NFSE_API_KEY', ''),
            trial_reminder_days=tuple(getattr(settings, 'BILLING_TRIAL_REMINDER_DAYS', (7, 3, 1))),
        )

    def with_overrides(self, **changes):
        return replace(self, **changes)

    @property
    def asaas_base_url(self):
        if self.asaas_sandbox:
            return 'https://sandbox.asaas.com/api/v3'
        return 'https://api.asaas.com/api/v3'

    @property
    def checkout_success_url(self):
        return f"{self.frontend_url}/settings/billing?success=true"

    @property
    def checkout_cancel_url(self):
        return f"{self.frontend_url}/settings/billing?cancelled=true"
