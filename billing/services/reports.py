"""
Platform-wide billing figures for the admin dashboard.
"""
from decimal import Decimal

from django.db.models import Count, Sum

from ..models import Invoice, Subscription
from ..utils import start_of_month


class BillingOverview:
    """Subscription counts, revenue and MRR across all clinics"""

    @staticmethod
    def status_counts():
        counts = {status: 0 for status, _ in Subscription.STATUS_CHOICES}
        rows = Subscription.objects.values('status').annotate(total=Count('id'))
        for row in rows:
            counts[row['status']] = row['total']
        return counts

    @staticmethod
    def paid_revenue(since=None):
        invoices = Invoice.objects.filter(status=Invoice.STATUS_PAID)
        if since is not None:
            invoices = invoices.filter(paid_at__gte=since)
        return invoices.aggregate(total=Sum('total'))['total'] or Decimal('0.00')

    @staticmethod
    def monthly_recurring_revenue():
        """Sum of monthly-equivalent prices of active subscriptions (yearly / 12)"""
        mrr = Decimal('0.00')
        active = Subscription.objects.filter(status=Subscription.STATUS_ACTIVE).select_related('plan')
        for subscription in active:
            mrr += subscription.monthly_price()
        return mrr.quantize(Decimal('0.01'))

    @classmethod
    def build(cls, now=None):
        counts = cls.status_counts()
        return {
            'subscriptions': counts,
            'total_subscriptions': sum(counts.values()),
            'total_revenue': cls.paid_revenue(),
            'revenue_this_month': cls.paid_revenue(since=start_of_month(now)),
            'mrr': cls.monthly_recurring_revenue(),
        }
