"""
Permissions for billing endpoints and plan-limit enforcement
"""
from rest_framework import permissions
from rest_framework.permissions import BasePermission

from .utils import PlanLimitChecker


class IsPlatformAdmin(BasePermission):
    """
    Permission check for platform administrators.
    Allows SUPER_ADMIN and SAAS_ADMIN roles.
    """
    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        platform_role = getattr(request.user, 'platform_role', None)
        return platform_role in ['SUPER_ADMIN', 'SAAS_ADMIN'] or request.user.is_superuser


class HasClinic(BasePermission):
    """User must belong to a clinic."""
    message = "User must be associated with a clinic."

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        return getattr(request.user, 'clinic_id', None) is not None


class IsClinicAdmin(HasClinic):
    """
    Clinic owners and admins manage billing. Platform admins act on any
    clinic they belong to as well.
    """
    message = "Only clinic owners and admins can manage billing."

    def has_permission(self, request, view):
        if not super().has_permission(request, view):
            return False
        return request.user.is_clinic_admin or request.user.is_platform_admin


class WithinPlanLimit(permissions.BasePermission):
    """
    Blocks creation of a resource once the clinic's plan cap is reached.

    The view names the resource with ``plan_limit_resource`` ('patients',
    'dentists' or 'appointments'). Only create requests are checked.
    """

    message = "Plan limit reached."

    def has_permission(self, request, view):
        if request.method != 'POST' or getattr(view, 'action', 'create') != 'create':
            return True

        resource = getattr(view, 'plan_limit_resource', None)
        if resource is None:
            return True

        result = PlanLimitChecker.check(
            request.user,
            getattr(request.user, 'clinic', None),
            resource,
            raise_exception=False,
        )
        if not result['allowed']:
            self.message = result['message']
            return False
        return True
