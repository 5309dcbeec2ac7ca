"""
Billing Views
API endpoints for checkout, subscriptions, coupons, NFS-e, admin reporting
and payment gateway webhooks
"""
import logging

from django.shortcuts import get_object_or_404
from django.utils.decorators import method_decorator
from django.views.decorators.csrf import csrf_exempt
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.pagination import PageNumberPagination
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from .config import BillingConfig
from .filters import InvoiceFilter
from .models import Invoice, Plan
from .nfse import NfseService
from .permissions import IsClinicAdmin, IsPlatformAdmin
from .serializers import (
    BillingOverviewSerializer,
    ChangePlanSerializer,
    CheckoutSerializer,
    CouponSerializer,
    CreateSubscriptionSerializer,
    InvoiceSerializer,
    NfseCancelSerializer,
    PlanSerializer,
    SubscriptionSerializer,
    ValidateCouponSerializer,
)
from .services import (
    BillingOverview,
    CheckoutService,
    CouponService,
    SubscriptionService,
    WebhookProcessor,
)

logger = logging.getLogger(__name__)


class AdminInvoicePagination(PageNumberPagination):
    """Page-number pagination sized with ``limit``."""
    page_size = 20
    page_size_query_param = 'limit'
    max_page_size = 100


class PlanViewSet(viewsets.ModelViewSet):
    """
    Plan catalogue. Anyone can list active plans; platform admins manage
    them. Deleting a plan deactivates it so existing subscriptions keep it.
    """
    serializer_class = PlanSerializer

    def get_permissions(self):
        if self.action in ['list', 'retrieve']:
            permission_classes = [AllowAny]
        else:
            permission_classes = [IsPlatformAdmin]
        return [permission() for permission in permission_classes]

    def get_queryset(self):
        queryset = Plan.objects.all()
        user = self.request.user
        if not (user and user.is_authenticated and getattr(user, 'is_platform_admin', False)):
            queryset = queryset.filter(status=Plan.STATUS_ACTIVE)
        return queryset

    def perform_destroy(self, instance):
        instance.status = Plan.STATUS_INACTIVE
        instance.save(update_fields=['status', 'updated_at'])
        logger.info(f"Plan {instance.name} deactivated")


class CheckoutView(APIView):
    """Start a paid (or free) subscription for the user's clinic"""
    permission_classes = [IsClinicAdmin]

    def post(self, request):
        serializer = CheckoutSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = CheckoutService(BillingConfig.from_settings()).checkout(
            clinic_id=request.user.clinic_id,
            plan_id=data['plan_id'],
            billing_cycle=data['billing_cycle'],
            payment_method=data['payment_method'],
            gateway=data.get('gateway'),
            coupon_code=data.get('coupon_code') or None,
        )

        if 'subscription' in result:
            result['subscription'] = SubscriptionSerializer(result['subscription']).data
        return Response(result, status=status.HTTP_201_CREATED)


class ValidateCouponView(APIView):
    """Check a coupon code without redeeming it"""
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = ValidateCouponSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return Response(CouponService().validate(serializer.validated_data['code']))


class SubscriptionViewSet(viewsets.ViewSet):
    """The requesting user's clinic subscription"""
    permission_classes = [IsClinicAdmin]

    def get_service(self):
        return SubscriptionService(BillingConfig.from_settings())

    def create(self, request):
        serializer = CreateSubscriptionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        subscription = self.get_service().create(
            request.user.clinic,
            data['plan_id'],
            billing_cycle=data['billing_cycle'],
            payment_method=data.get('payment_method', ''),
        )
        return Response(SubscriptionSerializer(subscription).data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=['get'])
    def current(self, request):
        subscription = self.get_service().get_current(request.user.clinic)
        return Response(SubscriptionSerializer(subscription).data)

    @action(detail=False, methods=['get'])
    def usage(self, request):
        return Response(self.get_service().get_usage(request.user.clinic))

    @action(detail=False, methods=['post'], url_path='change-plan')
    def change_plan(self, request):
        serializer = ChangePlanSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        subscription = self.get_service().change_plan(
            request.user.clinic,
            serializer.validated_data['plan_id'],
            billing_cycle=serializer.validated_data.get('billing_cycle'),
        )
        return Response(SubscriptionSerializer(subscription).data)

    @action(detail=False, methods=['post'])
    def cancel(self, request):
        subscription = self.get_service().cancel(request.user.clinic)
        return Response(SubscriptionSerializer(subscription).data)

    @action(detail=False, methods=['post'])
    def reactivate(self, request):
        subscription = self.get_service().reactivate(request.user.clinic)
        return Response(SubscriptionSerializer(subscription).data)

    @action(detail=False, methods=['get'])
    def invoices(self, request):
        invoices = self.get_service().get_invoices(request.user.clinic).prefetch_related('payments')
        return Response(InvoiceSerializer(invoices, many=True).data)


class NfseViewSet(viewsets.ViewSet):
    """NFS-e actions on an invoice, addressed by invoice id"""
    permission_classes = [IsClinicAdmin]

    def get_invoice(self, request, pk):
        queryset = Invoice.objects.select_related('clinic')
        if not request.user.is_platform_admin:
            queryset = queryset.filter(clinic=request.user.clinic)
        return get_object_or_404(queryset, pk=pk)

    def get_service(self):
        return NfseService(BillingConfig.from_settings())

    def _respond(self, result):
        return Response({
            'status': result.status,
            'nfse_id': result.nfse_id,
            'warnings': result.warnings,
        })

    @action(detail=True, methods=['post'])
    def emit(self, request, pk=None):
        invoice = self.get_invoice(request, pk)
        return self._respond(self.get_service().emit(invoice))

    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        invoice = self.get_invoice(request, pk)
        serializer = NfseCancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self._respond(self.get_service().cancel(invoice, serializer.validated_data['reason']))

    @action(detail=True, methods=['post'])
    def reprocess(self, request, pk=None):
        invoice = self.get_invoice(request, pk)
        return self._respond(self.get_service().reprocess(invoice))

    @action(detail=True, methods=['get'])
    def pdf(self, request, pk=None):
        invoice = self.get_invoice(request, pk)
        return Response({'url': NfseService.get_pdf_url(invoice)})


class BillingAdminViewSet(viewsets.ViewSet):
    """Platform-wide billing statistics (Platform Admin only)"""
    permission_classes = [IsPlatformAdmin]

    @action(detail=False, methods=['get'])
    def overview(self, request):
        serializer = BillingOverviewSerializer(BillingOverview.build())
        return Response(serializer.data)


class AdminInvoiceViewSet(viewsets.ReadOnlyModelViewSet):
    """All invoices across clinics, filterable by status and clinic"""
    serializer_class = InvoiceSerializer
    permission_classes = [IsPlatformAdmin]
    pagination_class = AdminInvoicePagination
    filterset_class = InvoiceFilter
    queryset = Invoice.objects.select_related('clinic').prefetch_related('payments').order_by('-created_at')


class AdminCouponViewSet(viewsets.ModelViewSet):
    """Coupon administration (Platform Admin only)"""
    serializer_class = CouponSerializer
    permission_classes = [IsPlatformAdmin]
    http_method_names = ['get', 'post', 'patch', 'head', 'options']

    def get_queryset(self):
        return CouponService().list()

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        coupon = CouponService().create(serializer.validated_data)
        return Response(self.get_serializer(coupon).data, status=status.HTTP_201_CREATED)

    def partial_update(self, request, *args, **kwargs):
        serializer = self.get_serializer(self.get_object(), data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        data = {key: value for key, value in serializer.validated_data.items() if key != 'code'}
        coupon = CouponService().update(kwargs['pk'], data)
        return Response(self.get_serializer(coupon).data)


@method_decorator(csrf_exempt, name='dispatch')
class PaymentWebhookView(APIView):
    """
    Receive a gateway webhook. Always answers 200 so providers do not retry
    forever on a local bug; failures are logged instead.
    """
    permission_classes = [AllowAny]
    authentication_classes = []
    gateway_name = None

    def post(self, request):
        received = WebhookProcessor(BillingConfig.from_settings()).handle(
            self.gateway_name,
            request.body,
            dict(request.headers),
        )
        return Response({'received': received}, status=status.HTTP_200_OK)
