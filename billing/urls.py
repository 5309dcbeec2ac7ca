from django.urls import path, include
from rest_framework.routers import DefaultRouter

from .views import (
    AdminCouponViewSet,
    AdminInvoiceViewSet,
    BillingAdminViewSet,
    CheckoutView,
    NfseViewSet,
    PaymentWebhookView,
    PlanViewSet,
    SubscriptionViewSet,
    ValidateCouponView,
)

router = DefaultRouter()
router.register(r'plans', PlanViewSet, basename='plan')
router.register(r'subscriptions', SubscriptionViewSet, basename='subscription')
router.register(r'nfse', NfseViewSet, basename='nfse')
router.register(r'admin/invoices', AdminInvoiceViewSet, basename='admin-invoice')
router.register(r'admin/coupons', AdminCouponViewSet, basename='admin-coupon')
router.register(r'admin', BillingAdminViewSet, basename='billing-admin')

urlpatterns = [
    path('api/', include(router.urls)),
    path('api/checkout/', CheckoutView.as_view(), name='checkout'),
    path('api/coupons/validate/', ValidateCouponView.as_view(), name='coupon-validate'),
    path('api/webhooks/stripe/', PaymentWebhookView.as_view(gateway_name='stripe'), name='stripe-webhook'),
    path('api/webhooks/asaas/', PaymentWebhookView.as_view(gateway_name='asaas'), name='asaas-webhook'),
]
