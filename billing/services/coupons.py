"""
Coupon Engine
Validation and atomic redemption of platform-wide discount codes.
"""
import logging

from django.db import IntegrityError
from django.db.models import F, Q
from django.utils import timezone

from ..exceptions import ConflictError, NotFound, ValidationError
from ..models import Coupon

logger = logging.getLogger(__name__)


class CouponService:
    """Validate, redeem and administer coupons"""

    EDITABLE_FIELDS = (
        'description', 'discount_percent', 'discount_months', 'max_uses',
        'valid_from', 'valid_until', 'is_active',
    )

    @staticmethod
    def normalize_code(code):
        return (code or '').strip().upper()

    def _get(self, code):
        normalized = self.normalize_code(code)
        try:
            return Coupon.objects.get(code=normalized)
        except Coupon.DoesNotExist:
            raise NotFound(f"Coupon {normalized} not found")

    def _check_usable(self, coupon, now=None):
        now = now or timezone.now()
        if not coupon.is_active:
            raise ValidationError(f"Coupon {coupon.code} is inactive")
        if coupon.valid_from and now < coupon.valid_from:
            raise ValidationError(f"Coupon {coupon.code} is not valid yet")
        if coupon.valid_until and now > coupon.valid_until:
            raise ValidationError(f"Coupon {coupon.code} has expired")
        if coupon.is_exhausted:
            raise ValidationError(f"Coupon {coupon.code} has reached its usage limit")

    def validate(self, code):
        """
        Check a code without consuming it.

        Raises:
            NotFound: the code does not exist
            ValidationError: inactive, not yet valid, expired or exhausted
        """
        coupon = self._get(code)
        self._check_usable(coupon)
        return {
            'code': coupon.code,
            'discount_percent': coupon.discount_percent,
            'discount_months': coupon.discount_months,
            'valid': True,
        }

    def apply(self, code):
        """
        Consume one use of a coupon.

        Always re-validates, then increments with a single conditional
        UPDATE so concurrent redemptions can never pass ``max_uses``.
        """
        coupon = self._get(code)
        now = timezone.now()
        self._check_usable(coupon, now)

        updated = Coupon.objects.filter(
            pk=coupon.pk,
            is_active=True,
        ).filter(
            Q(valid_until__isnull=True) | Q(valid_until__gte=now),
        ).filter(
            Q(max_uses__isnull=True) | Q(current_uses__lt=F('max_uses')),
        ).update(current_uses=F('current_uses') + 1, updated_at=now)

        if not updated:
            raise ValidationError(f"Coupon {coupon.code} has reached its usage limit")

        coupon.refresh_from_db()
        logger.info(f"Coupon {coupon.code} applied ({coupon.current_uses}/{coupon.max_uses or 'unlimited'})")
        return coupon

    def release(self, code):
        """Give back one use taken by ``apply`` for a checkout that never completed"""
        normalized = self.normalize_code(code)
        released = Coupon.objects.filter(code=normalized, current_uses__gt=0).update(
            current_uses=F('current_uses') - 1, updated_at=timezone.now(),
        )
        if released:
            logger.info(f"Coupon {normalized} use released")
        return bool(released)

    def list(self):
        return Coupon.objects.all()

    def create(self, data):
        code = self.normalize_code(data.get('code'))
        if not code:
            raise ValidationError('Coupon code is required')
        if Coupon.objects.filter(code=code).exists():
            raise ConflictError(f"Coupon {code} already exists")

        fields = {key: data[key] for key in self.EDITABLE_FIELDS if key in data}
        try:
            coupon = Coupon.objects.create(code=code, **fields)
        except IntegrityError:
            raise ConflictError(f"Coupon {code} already exists")
        logger.info(f"Coupon {code} created ({coupon.discount_percent}%)")
        return coupon

    def update(self, coupon_id, data):
        try:
            coupon = Coupon.objects.get(pk=coupon_id)
        except Coupon.DoesNotExist:
            raise NotFound('Coupon not found')

        fields = {key: data[key] for key in self.EDITABLE_FIELDS if key in data}
        if not fields:
            return coupon

        updates = Coupon.objects.filter(pk=coupon.pk)
        max_uses = fields.get('max_uses')
        if max_uses is not None:
            # current_uses must stay within the new cap
            updates = updates.filter(current_uses__lte=max_uses)
        if not updates.update(updated_at=timezone.now(), **fields):
            coupon.refresh_from_db()
            raise ValidationError(f"Coupon {coupon.code} has already been used {coupon.current_uses} times, "
                                  f"max_uses cannot be lower")

        coupon.refresh_from_db()
        logger.info(f"Coupon {coupon.code} updated: {', '.join(sorted(fields))}")
        return coupon
