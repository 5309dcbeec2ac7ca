"""
Tests for building BillingConfig from Django settings
"""
from django.test import SimpleTestCase, override_settings

from billing.config import BillingConfig


class BillingConfigTestCase(SimpleTestCase):

    @override_settings(
        BILLING_REQUEST_TIMEOUT=5,
        BILLING_TRIAL_REMINDER_DAYS=[10, 2],
        BILLING_TRIAL_DAYS=30,
        NFSE_PROVIDER='nfeio',
        FRONTEND_URL='https://app.example.com',
    )
    def test_from_settings(self):
        config = BillingConfig.from_settings()

        self.assertEqual(config.request_timeout, 5)
        self.assertEqual(config.trial_reminder_days, (10, 2))
        self.assertEqual(config.trial_days, 30)
        self.assertEqual(config.nfse_provider, 'nfeio')
        self.assertEqual(config.checkout_cancel_url, 'https://app.example.com/settings/billing?cancelled=true')

    def test_with_overrides_keeps_other_fields(self):
        config = BillingConfig(request_timeout=10).with_overrides(asaas_sandbox=False)

        self.assertEqual(config.request_timeout, 10)
        self.assertEqual(config.asaas_base_url, 'https://api.asaas.com/api/v3')
