"""
NFS-e (Brazilian service tax invoice) emission.

One backend is active at a time, chosen by ``NFSE_PROVIDER``: eNotas or
NFE.io. Emission is a best-effort side effect of a paid invoice; failures
are stored on the invoice and can be retried with ``reprocess``.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

import requests

from .exceptions import UpstreamError
from .models import Invoice

logger = logging.getLogger(__name__)

DEFAULT_DESCRIPTION = 'Servico de gestao odontologica'


@dataclass
class NfseResult:
    status: str  # issued | error | cancelled | disabled | not_found
    nfse_id: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


class EnotasBackend:
    name = 'enotas'
    base_url = 'https://api.enotas.com.br/v2'

    def emit_path(self, cnpj):
        return f"empresas/{cnpj}/nfes"

    def cancel_path(self, cnpj, nfse_id):
        return f"empresas/{cnpj}/nfes/{nfse_id}"

    def payload(self, amount, description):
        return {
            'tipo': 'NFS-e',
            'valorTotal': float(amount),
            'servico': {'descricao': description},
        }

    def parse(self, data):
        return data.get('nfeId') or data.get('id'), data.get('linkDownloadPDF') or ''


class NfeioBackend:
    name = 'nfeio'
    base_url = 'https://api.nfe.io/v1'
    CITY_SERVICE_CODE = '1.05'

    def emit_path(self, cnpj):
        return f"companies/{cnpj}/serviceinvoices"

    def cancel_path(self, cnpj, nfse_id):
        return f"companies/{cnpj}/serviceinvoices/{nfse_id}"

    def payload(self, amount, description):
        return {
            'cityServiceCode': self.CITY_SERVICE_CODE,
            'description': description,
            'servicesAmount': float(amount),
        }

    def parse(self, data):
        return data.get('id'), data.get('pdfUrl') or ''


NFSE_BACKENDS = {
    EnotasBackend.name: EnotasBackend,
    NfeioBackend.name: NfeioBackend,
}


class NfseService:
    """Emit, cancel and retry NFS-e documents for invoices"""

    def __init__(self, config):
        self.config = config
        self.api_key = config.nfse_api_key
        backend_class = NFSE_BACKENDS.get(config.nfse_provider)
        self.backend = backend_class() if backend_class else None
        if self.backend is None:
            logger.error(f"Unknown NFSE_PROVIDER '{config.nfse_provider}', NFS-e emission disabled")
        elif not self.api_key:
            logger.warning('NFSE_API_KEY not configured, NFS-e emission disabled')

    @property
    def enabled(self):
        return bool(self.api_key and self.backend)

    def _make_request(self, method, path, data=None):
        url = f"{self.backend.base_url}/{path}"
        headers = {
            'Authorization': f"Bearer {self.api_key}",
            'Content-Type': 'application/json',
        }
        try:
            response = requests.request(method, url, headers=headers, json=data,
                                        timeout=self.config.request_timeout)
            response.raise_for_status()
            return response.json() if response.content else {}
        except requests.exceptions.RequestException as e:
            raise UpstreamError(f"{self.backend.name} NFS-e error: {str(e)}")

    def _set_status(self, invoice, **fields):
        Invoice.objects.filter(pk=invoice.pk).update(**fields)
        for key, value in fields.items():
            setattr(invoice, key, value)

    def emit(self, invoice):
        """Emit an NFS-e for a paid invoice. Never raises for provider errors."""
        if not self.enabled:
            return NfseResult(status='disabled')

        clinic = invoice.clinic
        self._set_status(invoice, nfse_status=Invoice.NFSE_PENDING, nfse_error='')
        try:
            data = self._make_request(
                'POST',
                self.backend.emit_path(clinic.cnpj),
                self.backend.payload(Decimal(invoice.total), invoice.description or DEFAULT_DESCRIPTION),
            )
            nfse_id, pdf_url = self.backend.parse(data)
            if not nfse_id:
                raise UpstreamError(f"{self.backend.name} response had no document id")
        except UpstreamError as e:
            reason = str(e.detail)
            logger.error(f"Failed to emit NFS-e for invoice {invoice.number}: {reason}")
            self._set_status(invoice, nfse_status=Invoice.NFSE_ERROR, nfse_error=reason)
            return NfseResult(status=Invoice.NFSE_ERROR, warnings=[reason])

        self._set_status(invoice, nfse_status=Invoice.NFSE_ISSUED, nfse_id=str(nfse_id),
                         nfse_pdf_url=pdf_url, nfse_error='')
        logger.info(f"NFS-e {nfse_id} issued for invoice {invoice.number}")
        return NfseResult(status=Invoice.NFSE_ISSUED, nfse_id=str(nfse_id))

    def cancel(self, invoice, reason=''):
        if not self.enabled:
            return NfseResult(status='disabled')
        if not invoice.nfse_id:
            return NfseResult(status='not_found')

        try:
            self._make_request('DELETE', self.backend.cancel_path(invoice.clinic.cnpj, invoice.nfse_id))
        except UpstreamError as e:
            message = str(e.detail)
            logger.error(f"Failed to cancel NFS-e {invoice.nfse_id}: {message}")
            return NfseResult(status=Invoice.NFSE_ERROR, nfse_id=invoice.nfse_id, warnings=[message])

        self._set_status(invoice, nfse_status=Invoice.NFSE_CANCELLED, nfse_error=reason)
        logger.info(f"NFS-e {invoice.nfse_id} cancelled: {reason}")
        return NfseResult(status=Invoice.NFSE_CANCELLED, nfse_id=invoice.nfse_id)

    def reprocess(self, invoice):
        """Retry emission for an invoice, reusing the existing invoice row"""
        if invoice.nfse_status == Invoice.NFSE_ISSUED:
            return NfseResult(status=Invoice.NFSE_ISSUED, nfse_id=invoice.nfse_id)
        return self.emit(invoice)

    @staticmethod
    def get_pdf_url(invoice):
        return invoice.nfse_pdf_url or None
