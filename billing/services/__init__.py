from .base import ServiceResult
from .checkout import CheckoutService, apply_discount
from .coupons import CouponService
from .invoicing import InvoicingService
from .reports import BillingOverview
from .subscriptions import SubscriptionService
from .webhooks import WebhookProcessor

__all__ = [
    'ServiceResult',
    'CheckoutService',
    'apply_discount',
    'CouponService',
    'InvoicingService',
    'BillingOverview',
    'SubscriptionService',
    'WebhookProcessor',
]
