"""
Filters for the admin invoice listing
"""
from django_filters import rest_framework as filters

from .models import Invoice


class InvoiceFilter(filters.FilterSet):
    status = filters.MultipleChoiceFilter(
        choices=Invoice.STATUS_CHOICES,
        conjoined=False  # OR logic
    )
    clinic = filters.UUIDFilter(field_name='clinic__id')
    nfse_status = filters.ChoiceFilter(choices=Invoice.NFSE_STATUS_CHOICES)
    paid_from = filters.DateTimeFilter(field_name='paid_at', lookup_expr='gte')
    paid_to = filters.DateTimeFilter(field_name='paid_at', lookup_expr='lte')

    class Meta:
        model = Invoice
        fields = ['status', 'clinic', 'nfse_status']
