"""
Invoices and payments for confirmed gateway charges.
"""
import logging
from decimal import Decimal

from django.db import IntegrityError, transaction
from django.utils import timezone

from ..models import Invoice, Payment, from_minor_units

logger = logging.getLogger(__name__)


class InvoicingService:
    """Records paid invoices, keyed on the gateway's payment id"""

    @staticmethod
    def find_confirmed_payment(gateway, gateway_payment_id):
        return Payment.objects.filter(
            gateway=gateway,
            gateway_payment_id=gateway_payment_id,
            status=Payment.STATUS_CONFIRMED,
        ).select_related('invoice').first()

    def record_confirmed_payment(self, subscription, gateway, gateway_payment_id, amount=None,
                                 gateway_event_id=''):
        """
        Create a paid invoice plus its confirmed payment.

        A payment already recorded under the same gateway payment id is
        returned as is, so redelivered events never produce a second invoice.

        Returns:
            (invoice, created) tuple
        """
        existing = self.find_confirmed_payment(gateway, gateway_payment_id)
        if existing:
            logger.info(f"Payment {gateway}:{gateway_payment_id} already recorded on invoice "
                        f"{existing.invoice.number}")
            return existing.invoice, False

        plan = subscription.plan
        gross = Decimal(plan.price_for_cycle(subscription.billing_cycle))
        total = from_minor_units(amount) if amount is not None else gross
        discount = max(gross - total, Decimal('0.00'))
        now = timezone.now()

        try:
            with transaction.atomic():
                invoice = Invoice.objects.create(
                    clinic=subscription.clinic,
                    subscription=subscription,
                    number=Invoice.generate_number(),
                    amount=gross,
                    discount=discount,
                    total=total,
                    status=Invoice.STATUS_PAID,
                    due_date=now.date(),
                    paid_at=now,
                    payment_method=subscription.payment_method,
                    payment_gateway=gateway,
                    external_id=gateway_payment_id,
                    description=f"{plan.display_name} - {subscription.get_billing_cycle_display()}",
                )
                Payment.objects.create(
                    invoice=invoice,
                    gateway=gateway,
                    gateway_payment_id=gateway_payment_id,
                    gateway_event_id=gateway_event_id or '',
                    method=subscription.payment_method,
                    amount=total,
                    status=Payment.STATUS_CONFIRMED,
                    paid_at=now,
                )
        except IntegrityError:
            # Lost a race with a concurrent delivery of the same payment
            existing = self.find_confirmed_payment(gateway, gateway_payment_id)
            if existing is None:
                raise
            return existing.invoice, False

        logger.info(f"Invoice {invoice.number} paid ({total}) for subscription {subscription.id}")
        return invoice, True
