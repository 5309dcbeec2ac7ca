"""
Django Admin for Billing
"""
from django.contrib import admin
from django.utils import timezone
from django.utils.html import format_html

from .models import Coupon, Invoice, Payment, Plan, Subscription


@admin.register(Plan)
class PlanAdmin(admin.ModelAdmin):
    list_display = ['display_name', 'name', 'price_monthly', 'price_yearly', 'max_patients',
                    'max_dentists', 'max_appointments_month', 'status', 'sort_order']
    list_filter = ['status']
    search_fields = ['name', 'display_name']
    ordering = ['sort_order']


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    list_display = ['clinic', 'plan', 'billing_cycle', 'status_badge', 'payment_gateway',
                    'current_period_end', 'cancel_at_period_end']
    list_filter = ['status', 'billing_cycle', 'payment_gateway', 'cancel_at_period_end', 'created_at']
    search_fields = ['clinic__name', 'clinic__cnpj', 'external_id']
    readonly_fields = ['id', 'created_at', 'updated_at']
    date_hierarchy = 'created_at'

    fieldsets = (
        ('Subscription Info', {
            'fields': ('id', 'clinic', 'plan', 'billing_cycle', 'status')
        }),
        ('Billing Period', {
            'fields': ('current_period_start', 'current_period_end', 'trial_start', 'trial_end')
        }),
        ('Payment', {
            'fields': ('payment_method', 'payment_gateway', 'external_id', 'metadata')
        }),
        ('Cancellation', {
            'fields': ('cancel_at_period_end', 'cancelled_at')
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at')
        }),
    )

    STATUS_COLORS = {
        'trialing': 'blue',
        'active': 'green',
        'past_due': 'orange',
        'cancelled': 'gray',
        'expired': 'red',
    }

    def status_badge(self, obj):
        color = self.STATUS_COLORS.get(obj.status, 'black')
        return format_html('<span style="color: {};">{}</span>', color, obj.get_status_display())
    status_badge.short_description = 'Status'

    actions = ['cancel_subscriptions']

    def cancel_subscriptions(self, request, queryset):
        """Bulk cancel current subscriptions"""
        updated = queryset.filter(status__in=Subscription.CURRENT_STATUSES).update(
            status=Subscription.STATUS_CANCELLED, cancelled_at=timezone.now(),
        )
        self.message_user(request, f'{updated} subscriptions cancelled.')
    cancel_subscriptions.short_description = 'Cancel selected subscriptions'


class PaymentInline(admin.TabularInline):
    model = Payment
    extra = 0
    readonly_fields = ['gateway', 'gateway_payment_id', 'gateway_event_id', 'method', 'amount', 'status', 'paid_at']
    can_delete = False


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ['number', 'clinic', 'total', 'status', 'paid_at', 'payment_gateway', 'nfse_status']
    list_filter = ['status', 'nfse_status', 'payment_gateway', 'created_at']
    search_fields = ['number', 'clinic__name', 'external_id', 'nfse_id']
    readonly_fields = ['id', 'number', 'created_at', 'updated_at']
    date_hierarchy = 'created_at'
    inlines = [PaymentInline]


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ['gateway_payment_id', 'invoice', 'gateway', 'amount', 'status', 'paid_at']
    list_filter = ['status', 'gateway']
    search_fields = ['gateway_payment_id', 'gateway_event_id', 'invoice__number']


@admin.register(Coupon)
class CouponAdmin(admin.ModelAdmin):
    list_display = ['code', 'discount_percent', 'discount_months', 'current_uses', 'max_uses',
                    'valid_until', 'is_active']
    list_filter = ['is_active']
    search_fields = ['code', 'description']
    readonly_fields = ['current_uses', 'created_at', 'updated_at']
