"""
Issuance pipeline: draft creation, stamping, cancellation and rendering of
invoices and payment complements for one tenant.

Stamping order is fixed: the document is assembled and sent to the PAC with
no database transaction open; only a complete stamping response moves the
document out of draft, in a single compare-and-set UPDATE. Artifact upload
happens after that commit and can be repeated with `publish_*_artifacts`.
"""
from __future__ import annotations

import logging

from django.db import transaction
from django.utils import timezone

from cfdi.audit import AuditEvent, DatabaseAuditSink
from cfdi.exceptions import ConflictError, ExternalServiceError, NotFoundError
from cfdi.models import AuditLog, DocumentStatus, DocumentType, PaymentRelatedDocument
from cfdi.repositories import InvoiceRepository, PaymentRepository
from cfdi.schemas import CancelIn, InvoiceIn, PaymentIn, SeriesIn, parse_request
from cfdi.services.folios import allocate_folio, create_series
from cfdi.services.pac import PacClient, PacCredentials
from cfdi.services.payments import PaymentLine, link_related_documents
from cfdi.services.pdf import render_invoice_pdf, render_payment_pdf
from cfdi.services.status import ensure_transition
from cfdi.services.taxes import calculate_totals
from cfdi.services.xml_builder import build_invoice_xml, build_payment_xml
from cfdi.storage import ArtifactStorage
from core.models import Customer

logger = logging.getLogger(__name__)


def _issue_moment(value=None):
    value = value or timezone.now()
    if timezone.is_naive(value):
        value = timezone.make_aware(value)
    return value.replace(microsecond=0)


class IssuanceService:
    def __init__(self, *, pac_client=None, storage=None, audit=None, invoices=None, payments=None):
        self.pac = pac_client or PacClient()
        self.storage = storage or ArtifactStorage()
        self.audit = audit or DatabaseAuditSink()
        self.invoices = invoices or InvoiceRepository()
        self.payments = payments or PaymentRepository()

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _record(self, business, action, resource_type, resource_id="", *, success=True, message="", **details):
        self.audit.record(
            AuditEvent(
                business=business,
                action=action,
                resource_type=resource_type,
                resource_id=str(resource_id or ""),
                success=success,
                message=message,
                details=details,
            )
        )

    def _get_customer(self, business, customer_id) -> Customer:
        customer = Customer.objects.filter(business=business, pk=customer_id, is_active=True).first()
        if customer is None:
            raise NotFoundError("customer", customer_id)
        return customer

    def _logo_bytes(self, business) -> bytes | None:
        logo = getattr(business, "logo", None)
        if not logo:
            return None
        try:
            with logo.open("rb") as handle:
                return handle.read()
        except (OSError, ValueError):
            logger.warning("Logo for business %s could not be read", business.pk, exc_info=True)
            return None

    def _stamp(self, business, unsigned_xml: str, *, action: str, resource_type: str, resource_id):
        try:
            return self.pac.stamp(unsigned_xml, PacCredentials.for_business(business))
        except ExternalServiceError as exc:
            self._record(
                business,
                action,
                resource_type,
                resource_id,
                success=False,
                message=exc.message,
                retryable=exc.retryable,
                **exc.context,
            )
            raise

    # ------------------------------------------------------------------
    # series
    # ------------------------------------------------------------------

    def create_series(self, business, payload):
        data = payload if isinstance(payload, SeriesIn) else parse_request(SeriesIn, payload)
        series = create_series(
            business=business,
            series_label=data.series,
            document_type=data.document_type,
            initial_folio=data.initial_folio,
        )
        self._record(business, AuditLog.Action.SERIES_CREATE, "series", series.pk, series=series.series)
        return series

    # ------------------------------------------------------------------
    # invoices
    # ------------------------------------------------------------------

    def issue_invoice(self, business, payload):
        """Validate the request, compute totals and persist a numbered draft invoice."""
        data = payload if isinstance(payload, InvoiceIn) else parse_request(InvoiceIn, payload)
        customer = self._get_customer(business, data.customer_id)
        totals = calculate_totals(data.concepts)
        fields = {
            "cfdi_use": data.cfdi_use or customer.cfdi_use,
            "payment_method": data.payment_method,
            "payment_form": data.payment_form,
            "payment_conditions": data.payment_conditions,
            "currency": data.currency,
            "issue_date": _issue_moment(data.issue_date),
            "relation_type": data.relation_type,
            "related_uuids": [value.upper() for value in data.related_uuids],
        }

        with transaction.atomic():
            allocation = allocate_folio(
                business=business,
                document_type=DocumentType.INVOICE,
                series_label=data.series,
            )
            invoice = self.invoices.create(
                business=business,
                customer=customer,
                allocation=allocation,
                totals=totals,
                fields=fields,
                concepts=zip(data.concepts, totals.lines),
            )

        logger.info("Draft invoice %s created for business %s (total %s)", invoice.document_number, business.pk, invoice.total)
        self._record(
            business,
            AuditLog.Action.INVOICE_CREATE,
            "invoice",
            invoice.pk,
            document=invoice.document_number,
            total=str(invoice.total),
        )
        return invoice

    def stamp_invoice(self, business, invoice_id):
        invoice = self.invoices.get(business, invoice_id)
        ensure_transition(invoice.status, DocumentStatus.STAMPED, document="invoice")

        items = self.invoices.items(invoice)
        unsigned_xml = build_invoice_xml(invoice, items, invoice.customer, business)
        stamp = self._stamp(
            business,
            unsigned_xml,
            action=AuditLog.Action.INVOICE_STAMP,
            resource_type="invoice",
            resource_id=invoice.pk,
        )

        invoice = self.invoices.mark_stamped(business, invoice, stamp)
        self._record(
            business,
            AuditLog.Action.INVOICE_STAMP,
            "invoice",
            invoice.pk,
            fiscal_uuid=invoice.fiscal_uuid,
        )

        try:
            self._publish_invoice(business, invoice, items)
        except Exception:
            # The invoice is fiscally valid already; artifacts can be published again later.
            logger.exception("Artifact upload failed for stamped invoice %s", invoice.pk)
        return invoice

    def _publish_invoice(self, business, invoice, items):
        pdf = render_invoice_pdf(invoice, items, invoice.customer, business, logo=self._logo_bytes(business))
        xml_url = self.storage.save_xml(business.pk, "invoices", invoice.fiscal_uuid, invoice.stamped_xml)
        pdf_url = self.storage.save_pdf(business.pk, "invoices", invoice.fiscal_uuid, pdf)
        return self.invoices.attach_artifacts(business, invoice, xml_url=xml_url, pdf_url=pdf_url)

    def publish_invoice_artifacts(self, business, invoice_id):
        invoice = self.invoices.get(business, invoice_id)
        if not invoice.is_stamped:
            raise ConflictError("only stamped invoices have artifacts to publish")
        return self._publish_invoice(business, invoice, self.invoices.items(invoice))

    def cancel_invoice(self, business, invoice_id, reason: str = "02"):
        reason = parse_request(CancelIn, {"reason": reason}).reason
        invoice = self.invoices.get(business, invoice_id)
        ensure_transition(invoice.status, DocumentStatus.CANCELED, document="invoice")

        active_payments = (
            PaymentRelatedDocument.objects.filter(invoice=invoice)
            .exclude(payment__status=DocumentStatus.CANCELED)
            .exists()
        )
        if active_payments:
            raise ConflictError("invoice has payment complements; cancel or discard them first")

        invoice = self.invoices.mark_canceled(business, invoice, reason)
        self._record(business, AuditLog.Action.INVOICE_CANCEL, "invoice", invoice.pk, reason=reason)
        return invoice

    def render_invoice(self, business, invoice_id) -> bytes:
        invoice = self.invoices.get(business, invoice_id)
        return render_invoice_pdf(
            invoice,
            self.invoices.items(invoice),
            invoice.customer,
            business,
            logo=self._logo_bytes(business),
        )

    def preview_invoice_xml(self, business, invoice_id) -> str:
        invoice = self.invoices.get(business, invoice_id)
        if invoice.is_stamped and invoice.stamped_xml:
            return invoice.stamped_xml
        return build_invoice_xml(invoice, self.invoices.items(invoice), invoice.customer, business)

    # ------------------------------------------------------------------
    # payment complements
    # ------------------------------------------------------------------

    def register_payment(self, business, payload):
        """
        Record money received against stamped PPD invoices as a draft payment
        complement. The applied amounts count against the invoices' balances
        until the payment is canceled, or discarded while still a draft.
        """
        data = payload if isinstance(payload, PaymentIn) else parse_request(PaymentIn, payload)
        customer = self._get_customer(business, data.customer_id)

        with transaction.atomic():
            linked = link_related_documents(
                business=business,
                customer=customer,
                lines=[PaymentLine(invoice_id=doc.invoice_id, amount=doc.amount) for doc in data.related_documents],
                declared_total=data.total_amount,
                currency=data.currency,
            )
            allocation = allocate_folio(
                business=business,
                document_type=DocumentType.PAYMENT,
                series_label=data.series,
            )
            payment = self.payments.create(
                business=business,
                customer=customer,
                allocation=allocation,
                fields={
                    "issue_date": _issue_moment(),
                    "payment_date": _issue_moment(data.payment_date),
                    "payment_form": data.payment_form,
                    "currency": data.currency,
                    "operation_number": data.operation_number,
                    "total_amount": sum(doc.amount_paid for doc in linked),
                },
                linked=linked,
            )

        logger.info("Draft payment %s created for business %s (amount %s)", payment.document_number, business.pk, payment.total_amount)
        self._record(
            business,
            AuditLog.Action.PAYMENT_CREATE,
            "payment",
            payment.pk,
            document=payment.document_number,
            amount=str(payment.total_amount),
            invoices=[doc.invoice.pk for doc in linked],
        )
        return payment

    def stamp_payment(self, business, payment_id):
        payment = self.payments.get(business, payment_id)
        ensure_transition(payment.status, DocumentStatus.STAMPED, document="payment")

        related = self.payments.related_documents(payment)
        for doc in related:
            if doc.invoice.status != DocumentStatus.STAMPED:
                raise ConflictError(f"related invoice {doc.invoice.document_number} is no longer stamped")
        unsigned_xml = build_payment_xml(payment, related, payment.customer, business)
        stamp = self._stamp(
            business,
            unsigned_xml,
            action=AuditLog.Action.PAYMENT_STAMP,
            resource_type="payment",
            resource_id=payment.pk,
        )

        payment = self.payments.mark_stamped(business, payment, stamp)
        self._record(business, AuditLog.Action.PAYMENT_STAMP, "payment", payment.pk, fiscal_uuid=payment.fiscal_uuid)

        try:
            self._publish_payment(business, payment, related)
        except Exception:
            logger.exception("Artifact upload failed for stamped payment %s", payment.pk)
        return payment

    def _publish_payment(self, business, payment, related):
        pdf = render_payment_pdf(payment, related, payment.customer, business, logo=self._logo_bytes(business))
        xml_url = self.storage.save_xml(business.pk, "payments", payment.fiscal_uuid, payment.stamped_xml)
        pdf_url = self.storage.save_pdf(business.pk, "payments", payment.fiscal_uuid, pdf)
        return self.payments.attach_artifacts(business, payment, xml_url=xml_url, pdf_url=pdf_url)

    def publish_payment_artifacts(self, business, payment_id):
        payment = self.payments.get(business, payment_id)
        if not payment.is_stamped:
            raise ConflictError("only stamped payments have artifacts to publish")
        return self._publish_payment(business, payment, self.payments.related_documents(payment))

    def cancel_payment(self, business, payment_id, reason: str = "02"):
        reason = parse_request(CancelIn, {"reason": reason}).reason
        payment = self.payments.get(business, payment_id)
        payment = self.payments.mark_canceled(business, payment, reason)
        self._record(business, AuditLog.Action.PAYMENT_CANCEL, "payment", payment.pk, reason=reason)
        return payment

    def discard_payment(self, business, payment_id) -> None:
        """
        Remove a draft payment complement that was never stamped, e.g. after the
        PAC rejected it, so its amounts no longer count against the invoices.
        Stamped complements must be canceled instead.
        """
        payment = self.payments.get(business, payment_id)
        invoice_ids = self.payments.discard(business, payment)
        self._record(
            business,
            AuditLog.Action.PAYMENT_DISCARD,
            "payment",
            payment_id,
            document=payment.document_number,
            invoices=invoice_ids,
        )

    def render_payment(self, business, payment_id) -> bytes:
        payment = self.payments.get(business, payment_id)
        return render_payment_pdf(
            payment,
            self.payments.related_documents(payment),
            payment.customer,
            business,
            logo=self._logo_bytes(business),
        )
