"""
Billing Serializers
"""
from rest_framework import serializers

from .models import (
    BILLING_CYCLE_CHOICES,
    GATEWAY_CHOICES,
    PAYMENT_METHOD_CHOICES,
    Coupon,
    Invoice,
    Payment,
    Plan,
    Subscription,
)


class PlanSerializer(serializers.ModelSerializer):
    class Meta:
        model = Plan
        fields = [
            'id', 'name', 'display_name', 'description',
            'price_monthly', 'price_yearly',
            'max_patients', 'max_dentists', 'max_appointments_month',
            'features', 'status', 'sort_order',
            'created_at', 'updated_at',
        ]
        read_only_fields = ['id', 'created_at', 'updated_at']


class SubscriptionSerializer(serializers.ModelSerializer):
    plan = PlanSerializer(read_only=True)
    clinic_name = serializers.CharField(source='clinic.name', read_only=True)

    class Meta:
        model = Subscription
        fields = [
            'id', 'clinic', 'clinic_name', 'plan', 'billing_cycle', 'status',
            'current_period_start', 'current_period_end',
            'trial_start', 'trial_end',
            'cancel_at_period_end', 'cancelled_at',
            'payment_method', 'payment_gateway', 'external_id',
            'created_at', 'updated_at',
        ]
        read_only_fields = fields


class PaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = ['id', 'gateway', 'gateway_payment_id', 'method', 'amount', 'status', 'paid_at']
        read_only_fields = fields


class InvoiceSerializer(serializers.ModelSerializer):
    clinic_name = serializers.CharField(source='clinic.name', read_only=True)
    payments = PaymentSerializer(many=True, read_only=True)

    class Meta:
        model = Invoice
        fields = [
            'id', 'number', 'clinic', 'clinic_name', 'subscription',
            'amount', 'discount', 'total', 'status', 'due_date', 'paid_at',
            'payment_method', 'payment_gateway', 'external_id', 'description',
            'nfse_status', 'nfse_id', 'nfse_pdf_url', 'nfse_error',
            'payments', 'created_at',
        ]
        read_only_fields = fields


class CouponSerializer(serializers.ModelSerializer):
    class Meta:
        model = Coupon
        fields = [
            'id', 'code', 'description', 'discount_percent', 'discount_months',
            'max_uses', 'current_uses', 'valid_from', 'valid_until', 'is_active',
            'created_at', 'updated_at',
        ]
        read_only_fields = ['id', 'current_uses', 'created_at', 'updated_at']
        extra_kwargs = {
            # Uniqueness is checked case-insensitively by CouponService
            'code': {'validators': []},
        }


class CheckoutSerializer(serializers.Serializer):
    plan_id = serializers.UUIDField()
    billing_cycle = serializers.ChoiceField(choices=BILLING_CYCLE_CHOICES, default='monthly')
    payment_method = serializers.ChoiceField(choices=PAYMENT_METHOD_CHOICES, default='credit_card')
    gateway = serializers.ChoiceField(choices=GATEWAY_CHOICES, required=False)
    coupon_code = serializers.CharField(max_length=50, required=False, allow_blank=True)


class ValidateCouponSerializer(serializers.Serializer):
    code = serializers.CharField(max_length=50)


class CreateSubscriptionSerializer(serializers.Serializer):
    plan_id = serializers.UUIDField()
    billing_cycle = serializers.ChoiceField(choices=BILLING_CYCLE_CHOICES, default='monthly')
    payment_method = serializers.ChoiceField(choices=PAYMENT_METHOD_CHOICES, required=False, allow_blank=True)


class ChangePlanSerializer(serializers.Serializer):
    plan_id = serializers.UUIDField()
    billing_cycle = serializers.ChoiceField(choices=BILLING_CYCLE_CHOICES, required=False)


class NfseCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=255)


class BillingOverviewSerializer(serializers.Serializer):
    subscriptions = serializers.DictField(child=serializers.IntegerField())
    total_subscriptions = serializers.IntegerField()
    total_revenue = serializers.DecimalField(max_digits=14, decimal_places=2)
    revenue_this_month = serializers.DecimalField(max_digits=14, decimal_places=2)
    mrr = serializers.DecimalField(max_digits=14, decimal_places=2)
