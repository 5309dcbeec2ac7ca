import secrets
import uuid
from decimal import Decimal, ROUND_HALF_UP

from dateutil.relativedelta import relativedelta
from django.core.validators import MinValueValidator, MaxValueValidator
from django.db import models
from django.db.models import Q
from django.utils import timezone


BILLING_CYCLE_CHOICES = [
    ('monthly', 'Monthly'),
    ('yearly', 'Yearly'),
]

PAYMENT_METHOD_CHOICES = [
    ('credit_card', 'Credit Card'),
    ('pix', 'PIX'),
    ('boleto', 'Boleto'),
]

GATEWAY_CHOICES = [
    ('stripe', 'Stripe'),
    ('asaas', 'Asaas'),
]


def to_minor_units(amount):
    """Convert a Decimal amount in major units to integer cents."""
    return int((Decimal(amount) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def from_minor_units(amount):
    """Convert integer cents back to a two-place Decimal."""
    return (Decimal(amount) / 100).quantize(Decimal('0.01'))


def period_end_for(start, billing_cycle):
    """End of a billing period starting at ``start``."""
    if billing_cycle == 'yearly':
        return start + relativedelta(years=1)
    return start + relativedelta(months=1)


class Plan(models.Model):
    """Pricing tier clinics subscribe to"""
    STATUS_ACTIVE = 'active'
    STATUS_INACTIVE = 'inactive'
    STATUS_CHOICES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_INACTIVE, 'Inactive'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=50, unique=True)
    display_name = models.CharField(max_length=100)
    description = models.TextField(blank=True)
    price_monthly = models.DecimalField(max_digits=10, decimal_places=2, validators=[MinValueValidator(Decimal('0.00'))])
    price_yearly = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True,
                                       validators=[MinValueValidator(Decimal('0.00'))])
    max_patients = models.PositiveIntegerField(null=True, blank=True)  # None = unlimited
    max_dentists = models.PositiveIntegerField(null=True, blank=True)
    max_appointments_month = models.PositiveIntegerField(null=True, blank=True)
    features = models.JSONField(default=dict, blank=True)  # e.g. {"has_nfse_auto": true}
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_ACTIVE)
    sort_order = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'billing_plans'
        ordering = ['sort_order', 'price_monthly']

    def __str__(self):
        return f"{self.display_name} ({self.price_monthly}/month)"

    @property
    def is_active(self):
        return self.status == self.STATUS_ACTIVE

    def price_for_cycle(self, billing_cycle):
        """Yearly price when requested and set, otherwise the monthly price"""
        if billing_cycle == 'yearly' and self.price_yearly is not None:
            return self.price_yearly
        return self.price_monthly

    def has_feature(self, feature):
        return bool((self.features or {}).get(feature))


class Subscription(models.Model):
    """A clinic's subscription to a plan.

    A clinic keeps one row per plan it has been on; only one of them may be
    current (trialing, active or past_due) at a time.
    """
    STATUS_TRIALING = 'trialing'
    STATUS_ACTIVE = 'active'
    STATUS_PAST_DUE = 'past_due'
    STATUS_CANCELLED = 'cancelled'
    STATUS_EXPIRED = 'expired'
    STATUS_CHOICES = [
        (STATUS_TRIALING, 'Trialing'),
        (STATUS_ACTIVE, 'Active'),
        (STATUS_PAST_DUE, 'Past Due'),
        (STATUS_CANCELLED, 'Cancelled'),
        (STATUS_EXPIRED, 'Expired'),
    ]
    CURRENT_STATUSES = (STATUS_TRIALING, STATUS_ACTIVE, STATUS_PAST_DUE)
    USABLE_STATUSES = (STATUS_TRIALING, STATUS_ACTIVE)
    TERMINAL_STATUSES = (STATUS_CANCELLED, STATUS_EXPIRED)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    clinic = models.ForeignKey('accounts.Clinic', on_delete=models.CASCADE, related_name='subscriptions')
    plan = models.ForeignKey(Plan, on_delete=models.PROTECT, related_name='subscriptions')
    billing_cycle = models.CharField(max_length=10, choices=BILLING_CYCLE_CHOICES, default='monthly')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_TRIALING)

    current_period_start = models.DateTimeField(default=timezone.now)
    current_period_end = models.DateTimeField()
    trial_start = models.DateTimeField(null=True, blank=True)
    trial_end = models.DateTimeField(null=True, blank=True)

    cancel_at_period_end = models.BooleanField(default=False)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    payment_method = models.CharField(max_length=20, choices=PAYMENT_METHOD_CHOICES, blank=True)
    payment_gateway = models.CharField(max_length=20, choices=GATEWAY_CHOICES, blank=True)
    external_id = models.CharField(max_length=255, blank=True, db_index=True)  # Gateway subscription id
    metadata = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'billing_subscriptions'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['clinic'],
                condition=Q(status__in=['trialing', 'active', 'past_due']),
                name='one_current_subscription_per_clinic',
            ),
        ]

    def __str__(self):
        return f"{self.clinic} - {self.plan.name} ({self.status})"

    @property
    def is_current(self):
        return self.status in self.CURRENT_STATUSES

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    def trial_has_ended(self, now=None):
        """True when a trialing subscription is past its trial end, swept or not."""
        if self.status != self.STATUS_TRIALING or not self.trial_end:
            return False
        return (now or timezone.now()) > self.trial_end

    def days_until_trial_end(self, now=None):
        if not self.trial_end:
            return None
        return (self.trial_end.date() - (now or timezone.now()).date()).days

    def monthly_price(self):
        """Monthly-equivalent price, used for MRR"""
        if self.billing_cycle == 'yearly' and self.plan.price_yearly is not None:
            return self.plan.price_yearly / 12
        return self.plan.price_monthly

    def transition(self, new_status, allowed_from, **fields):
        """
        Move to ``new_status`` only if the row is still in one of
        ``allowed_from``. Runs as a single conditional UPDATE.

        Returns True when the row changed.
        """
        updated = Subscription.objects.filter(
            pk=self.pk,
            status__in=allowed_from,
        ).update(status=new_status, updated_at=timezone.now(), **fields)
        self.refresh_from_db()
        return bool(updated)


class Invoice(models.Model):
    """Invoice for a confirmed subscription payment"""
    STATUS_PENDING = 'pending'
    STATUS_PAID = 'paid'
    STATUS_CANCELLED = 'cancelled'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_PAID, 'Paid'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    NFSE_NONE = 'none'
    NFSE_PENDING = 'pending'
    NFSE_ISSUED = 'issued'
    NFSE_ERROR = 'error'
    NFSE_CANCELLED = 'cancelled'
    NFSE_STATUS_CHOICES = [
        (NFSE_NONE, 'None'),
        (NFSE_PENDING, 'Pending'),
        (NFSE_ISSUED, 'Issued'),
        (NFSE_ERROR, 'Error'),
        (NFSE_CANCELLED, 'Cancelled'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    clinic = models.ForeignKey('accounts.Clinic', on_delete=models.CASCADE, related_name='invoices')
    subscription = models.ForeignKey(Subscription, on_delete=models.SET_NULL, null=True, blank=True,
                                     related_name='invoices')
    number = models.CharField(max_length=50, unique=True)
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    discount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    total = models.DecimalField(max_digits=10, decimal_places=2)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING)
    due_date = models.DateField(null=True, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    payment_method = models.CharField(max_length=20, blank=True)
    payment_gateway = models.CharField(max_length=20, blank=True)
    external_id = models.CharField(max_length=255, blank=True)  # Gateway payment id
    description = models.CharField(max_length=255, blank=True)

    # NFS-e (tax invoice)
    nfse_status = models.CharField(max_length=20, choices=NFSE_STATUS_CHOICES, default=NFSE_NONE)
    nfse_id = models.CharField(max_length=255, blank=True)
    nfse_pdf_url = models.URLField(blank=True)
    nfse_error = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'billing_invoices'
        ordering = ['-created_at']

    def __str__(self):
        return f"Invoice {self.number} - {self.clinic}"

    @staticmethod
    def generate_number():
        """Timestamp plus random suffix; unique, not ordered."""
        stamp = timezone.now().strftime('%Y%m%d%H%M%S')
        return f"INV-{stamp}-{secrets.token_hex(3).upper()}"


class Payment(models.Model):
    """A payment attempt reported by a gateway against an invoice"""
    STATUS_CONFIRMED = 'confirmed'
    STATUS_FAILED = 'failed'
    STATUS_CHOICES = [
        (STATUS_CONFIRMED, 'Confirmed'),
        (STATUS_FAILED, 'Failed'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name='payments')
    gateway = models.CharField(max_length=20, choices=GATEWAY_CHOICES)
    gateway_payment_id = models.CharField(max_length=255)
    gateway_event_id = models.CharField(max_length=255, blank=True)
    method = models.CharField(max_length=20, blank=True)
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES)
    paid_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'billing_payments'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['invoice'],
                condition=Q(status='confirmed'),
                name='one_confirmed_payment_per_invoice',
            ),
            models.UniqueConstraint(
                fields=['gateway', 'gateway_payment_id'],
                condition=Q(status='confirmed'),
                name='unique_confirmed_gateway_payment',
            ),
        ]

    def __str__(self):
        return f"{self.gateway} {self.gateway_payment_id} - {self.amount} ({self.status})"


class Coupon(models.Model):
    """Platform-wide discount code"""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    code = models.CharField(max_length=50, unique=True)
    description = models.CharField(max_length=255, blank=True)
    discount_percent = models.PositiveSmallIntegerField(
        validators=[MinValueValidator(1), MaxValueValidator(100)]
    )
    discount_months = models.PositiveSmallIntegerField(default=1)
    max_uses = models.PositiveIntegerField(null=True, blank=True)  # None = unlimited
    current_uses = models.PositiveIntegerField(default=0)
    valid_from = models.DateTimeField(null=True, blank=True)
    valid_until = models.DateTimeField(null=True, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'billing_coupons'
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.code} ({self.discount_percent}%)"

    def save(self, *args, **kwargs):
        self.code = self.code.strip().upper()
        super().save(*args, **kwargs)

    @property
    def is_exhausted(self):
        return self.max_uses is not None and self.current_uses >= self.max_uses
