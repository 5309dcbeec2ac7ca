"""
Tests for coupon validation and redemption
"""
import threading
import time
from datetime import timedelta

from django.db import OperationalError, connection
from django.test import TestCase, TransactionTestCase
from django.utils import timezone

from billing.exceptions import ConflictError, NotFound, ValidationError
from billing.models import Coupon
from billing.services import CouponService, apply_discount


class CouponValidationTestCase(TestCase):
    """Validation never consumes a use"""

    def setUp(self):
        self.service = CouponService()
        self.coupon = Coupon.objects.create(code='save20', discount_percent=20, max_uses=2)

    def test_code_is_stored_uppercase(self):
        self.assertEqual(self.coupon.code, 'SAVE20')

    def test_validate_is_case_insensitive(self):
        result = self.service.validate(' save20 ')
        self.assertEqual(result['code'], 'SAVE20')
        self.assertEqual(result['discount_percent'], 20)
        self.assertTrue(result['valid'])

        self.coupon.refresh_from_db()
        self.assertEqual(self.coupon.current_uses, 0)

    def test_unknown_code(self):
        with self.assertRaises(NotFound):
            self.service.validate('NOPE')

    def test_inactive_coupon(self):
        self.coupon.is_active = False
        self.coupon.save()
        with self.assertRaises(ValidationError):
            self.service.validate('SAVE20')

    def test_expired_coupon(self):
        self.coupon.valid_until = timezone.now() - timedelta(days=1)
        self.coupon.save()
        with self.assertRaises(ValidationError):
            self.service.validate('SAVE20')

    def test_not_yet_valid_coupon(self):
        self.coupon.valid_from = timezone.now() + timedelta(days=1)
        self.coupon.save()
        with self.assertRaises(ValidationError):
            self.service.validate('SAVE20')

    def test_exhausted_coupon(self):
        self.coupon.current_uses = 2
        self.coupon.save()
        with self.assertRaises(ValidationError):
            self.service.validate('SAVE20')


class CouponRedemptionTestCase(TestCase):
    """apply() increments atomically and never passes max_uses"""

    def setUp(self):
        self.service = CouponService()
        Coupon.objects.create(code='ONCE', discount_percent=50, max_uses=1)

    def test_apply_increments_uses(self):
        coupon = self.service.apply('once')
        self.assertEqual(coupon.current_uses, 1)

    def test_apply_stops_at_max_uses(self):
        self.service.apply('ONCE')
        with self.assertRaises(ValidationError):
            self.service.apply('ONCE')
        self.assertEqual(Coupon.objects.get(code='ONCE').current_uses, 1)

    def test_unlimited_coupon(self):
        Coupon.objects.create(code='FOREVER', discount_percent=10)
        for _ in range(3):
            self.service.apply('FOREVER')
        self.assertEqual(Coupon.objects.get(code='FOREVER').current_uses, 3)


class CouponAdministrationTestCase(TestCase):

    def setUp(self):
        self.service = CouponService()

    def test_create_normalizes_code(self):
        coupon = self.service.create({'code': ' welcome ', 'discount_percent': 15})
        self.assertEqual(coupon.code, 'WELCOME')
        self.assertEqual(coupon.current_uses, 0)

    def test_duplicate_code_conflicts(self):
        self.service.create({'code': 'WELCOME', 'discount_percent': 15})
        with self.assertRaises(ConflictError):
            self.service.create({'code': 'welcome', 'discount_percent': 30})

    def test_update_ignores_usage_counter(self):
        coupon = self.service.create({'code': 'WELCOME', 'discount_percent': 15})
        updated = self.service.update(coupon.id, {'discount_percent': 25, 'current_uses': 99})
        self.assertEqual(updated.discount_percent, 25)
        self.assertEqual(updated.current_uses, 0)

    def test_max_uses_cannot_drop_below_current_uses(self):
        coupon = self.service.create({'code': 'WELCOME', 'discount_percent': 15, 'max_uses': 5})
        for _ in range(3):
            self.service.apply('WELCOME')

        with self.assertRaises(ValidationError):
            self.service.update(coupon.id, {'max_uses': 1, 'discount_percent': 50})

        coupon.refresh_from_db()
        self.assertEqual(coupon.max_uses, 5)
        self.assertEqual(coupon.discount_percent, 15)

        updated = self.service.update(coupon.id, {'max_uses': 3})
        self.assertEqual(updated.max_uses, 3)
        self.assertTrue(updated.is_exhausted)

    def test_max_uses_can_be_cleared(self):
        coupon = self.service.create({'code': 'WELCOME', 'discount_percent': 15, 'max_uses': 1})
        self.service.apply('WELCOME')
        updated = self.service.update(coupon.id, {'max_uses': None})
        self.assertIsNone(updated.max_uses)

    def test_release_gives_back_one_use(self):
        self.service.create({'code': 'WELCOME', 'discount_percent': 15, 'max_uses': 1})
        self.service.apply('WELCOME')

        self.assertTrue(self.service.release('welcome'))
        self.assertEqual(Coupon.objects.get(code='WELCOME').current_uses, 0)
        self.assertFalse(self.service.release('WELCOME'))


class ConcurrentRedemptionTestCase(TransactionTestCase):
    """Redemptions racing from separate connections"""

    def redeem(self, code, results, barrier):
        try:
            barrier.wait()
            for _ in range(50):
                try:
                    CouponService().apply(code)
                except ValidationError:
                    results.append('rejected')
                    return
                except OperationalError:
                    # SQLite reports a locked table instead of waiting
                    time.sleep(0.01)
                    continue
                results.append('applied')
                return
        finally:
            connection.close()

    def test_only_one_concurrent_redemption_succeeds(self):
        Coupon.objects.create(code='LAST', discount_percent=50, max_uses=1)
        results = []
        barrier = threading.Barrier(5)
        threads = [
            threading.Thread(target=self.redeem, args=('LAST', results, barrier))
            for _ in range(5)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(results.count('applied'), 1)
        self.assertEqual(results.count('rejected'), 4)
        self.assertEqual(Coupon.objects.get(code='LAST').current_uses, 1)


class ApplyDiscountTestCase(TestCase):

    def test_rounds_half_up_to_whole_minor_unit(self):
        self.assertEqual(apply_discount(19990, 20), 15992)
        self.assertEqual(apply_discount(999, 50), 500)
        self.assertEqual(apply_discount(19990, 100), 0)
