"""
Plan limit enforcement.

Consulted before a clinic creates a patient, dentist or appointment. The
check reads timestamps directly instead of trusting the periodic sweeps to
have already moved a finished trial to ``expired``.
"""
from django.core.exceptions import PermissionDenied
from django.utils import timezone

from clinical.models import Appointment, Dentist, Patient
from .models import Subscription


def start_of_month(now=None):
    now = timezone.localtime(now or timezone.now())
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


class PlanLimitChecker:
    """
    Utility class for plan limit validation.

    Resources map to the plan field holding their cap and a label used in
    error messages. A cap of None means unlimited.
    """

    RESOURCES = {
        'patients': ('max_patients', 'patients'),
        'dentists': ('max_dentists', 'dentists'),
        'appointments': ('max_appointments_month', 'appointments this month'),
    }

    @staticmethod
    def get_usable_subscription(clinic):
        """Newest active or trialing subscription for the clinic, or None"""
        if not clinic:
            return None
        return Subscription.objects.filter(
            clinic=clinic,
            status__in=Subscription.USABLE_STATUSES,
        ).select_related('plan').order_by('-created_at').first()

    @staticmethod
    def count(clinic, resource, now=None):
        if resource == 'patients':
            return Patient.objects.filter(clinic=clinic, status=Patient.STATUS_ACTIVE).count()
        if resource == 'dentists':
            return Dentist.objects.filter(clinic=clinic, status=Dentist.STATUS_ACTIVE).count()
        if resource == 'appointments':
            return Appointment.objects.filter(
                clinic=clinic,
                scheduled_at__gte=start_of_month(now),
            ).exclude(status=Appointment.STATUS_CANCELLED).count()
        raise ValueError(f"Unknown plan resource: {resource}")

    @classmethod
    def usage_counts(cls, clinic, now=None):
        return {resource: cls.count(clinic, resource, now) for resource in cls.RESOURCES}

    @classmethod
    def check(cls, user, clinic, resource, raise_exception=True):
        """
        Check whether ``clinic`` may add one more ``resource``.

        Args:
            user: The requesting user; platform super admins bypass the check
            clinic: The Clinic the resource is created for
            resource: One of 'patients', 'dentists', 'appointments'
            raise_exception: If True, raise PermissionDenied instead of
                returning a negative result

        Returns:
            dict with 'allowed', 'current', 'limit' and 'message'
        """
        if resource not in cls.RESOURCES:
            raise ValueError(f"Unknown plan resource: {resource}")

        if user is not None and getattr(user, 'is_platform_super_admin', False):
            return {'allowed': True, 'current': None, 'limit': None, 'message': 'Platform admin bypass'}

        def deny(message, current=None, limit=None):
            if raise_exception:
                raise PermissionDenied(message)
            return {'allowed': False, 'current': current, 'limit': limit, 'message': message}

        subscription = cls.get_usable_subscription(clinic)
        if not subscription:
            return deny('No active subscription. Subscribe to a plan to continue.')

        if subscription.trial_has_ended():
            return deny('Trial period has ended. Choose a plan to continue.')

        field, label = cls.RESOURCES[resource]
        limit = getattr(subscription.plan, field)
        current = cls.count(clinic, resource)

        if limit is not None and current >= limit:
            return deny(
                f"Limit of {limit} {label} reached on plan {subscription.plan.display_name}. "
                f"Upgrade your plan to add more.",
                current=current,
                limit=limit,
            )

        return {'allowed': True, 'current': current, 'limit': limit, 'message': ''}
