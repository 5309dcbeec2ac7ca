"""
Billing exceptions.

NotFound and ValidationError are DRF's own classes; the ones below add the
conflict and upstream cases so views can let DRF render every failure.
"""
from rest_framework import status
from rest_framework.exceptions import APIException, NotFound, ValidationError  # noqa: F401


class ConflictError(APIException):
    """Request clashes with existing state (duplicate coupon, current subscription)"""
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Conflict with current state.'
    default_code = 'conflict'


class UpstreamError(APIException):
    """Payment gateway or NFS-e provider failed or is unreachable"""
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = 'Upstream provider error.'
    default_code = 'upstream_error'


class GatewayNotConfigured(UpstreamError):
    default_detail = 'Payment gateway is not configured.'
    default_code = 'gateway_not_configured'


class WebhookAuthenticationError(Exception):
    """Webhook payload could not be verified as coming from the provider"""
    pass
