"""
Persistence for fiscal documents.

Every write the issuance pipeline performs goes through these repositories so
that database failures surface as `cfdi.exceptions` errors and cached detail
payloads are dropped once the change is committed.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterable

from django.core.cache import cache
from django.db import DatabaseError as DjangoDatabaseError
from django.db import IntegrityError, transaction
from django.utils import timezone

from cfdi.exceptions import ConflictError, DatabaseError, NotFoundError
from cfdi.models import DocumentStatus, Invoice, InvoiceItem, Payment, PaymentRelatedDocument
from cfdi.services.status import ensure_transition

logger = logging.getLogger(__name__)


def invoice_cache_key(business_id, invoice_id) -> str:
    return f"cfdi_invoice_{business_id}_{invoice_id}"


def payment_cache_key(business_id, payment_id) -> str:
    return f"cfdi_payment_{business_id}_{payment_id}"


@contextmanager
def translate_database_errors(operation: str):
    try:
        yield
    except IntegrityError as exc:
        logger.warning("Integrity error during %s: %s", operation, exc)
        raise ConflictError(f"{operation} conflicts with an existing record") from exc
    except DjangoDatabaseError as exc:
        logger.exception("Database error during %s", operation)
        raise DatabaseError(f"{operation} failed", context={"error": exc.__class__.__name__}) from exc


class DocumentRepository:
    model = None
    resource = "document"

    def cache_key(self, business_id, pk) -> str:
        raise NotImplementedError

    def invalidate(self, business_id, pk) -> None:
        """Drop the cached detail payload after the current transaction commits."""
        key = self.cache_key(business_id, pk)
        transaction.on_commit(lambda: cache.delete(key))

    def get(self, business, pk):
        with translate_database_errors(f"{self.resource} lookup"):
            document = self.model.objects.filter(business=business, pk=pk).select_related("customer").first()
        if document is None:
            raise NotFoundError(self.resource, pk)
        return document

    def transition(self, business, document, target: str, **fields):
        """
        Move `document` to `target` with a compare-and-set UPDATE guarded by its
        current status; `fields` are written in the same statement.
        """
        expected = document.status
        ensure_transition(expected, target, document=self.resource)
        now = timezone.now()
        with translate_database_errors(f"{self.resource} status update"):
            with transaction.atomic():
                updated = self.model.objects.filter(business=business, pk=document.pk, status=expected).update(
                    status=target, updated_at=now, **fields
                )
                if updated:
                    self.invalidate(business.pk, document.pk)
        if not updated:
            current = self.model.objects.filter(pk=document.pk).values_list("status", flat=True).first()
            if current is None:
                raise NotFoundError(self.resource, document.pk)
            ensure_transition(current, target, document=self.resource)
            raise ConflictError(f"{self.resource} was modified concurrently", context={"current": current})

        document.status = target
        document.updated_at = now
        for name, value in fields.items():
            setattr(document, name, value)
        logger.info("%s %s moved %s -> %s", self.resource.capitalize(), document.pk, expected, target)
        return document

    def mark_stamped(self, business, document, stamp):
        return self.transition(
            business,
            document,
            DocumentStatus.STAMPED,
            fiscal_uuid=stamp.fiscal_uuid,
            stamped_at=stamp.stamped_at,
            stamped_xml=stamp.stamped_xml,
        )

    def mark_canceled(self, business, document, reason: str):
        return self.transition(
            business,
            document,
            DocumentStatus.CANCELED,
            canceled_at=timezone.now(),
            cancellation_reason=reason,
        )

    def attach_artifacts(self, business, document, *, xml_url: str = "", pdf_url: str = ""):
        fields = {}
        if xml_url:
            fields["xml_url"] = xml_url
        if pdf_url:
            fields["pdf_url"] = pdf_url
        if not fields:
            return document
        with translate_database_errors(f"{self.resource} artifact update"):
            with transaction.atomic():
                self.model.objects.filter(business=business, pk=document.pk).update(updated_at=timezone.now(), **fields)
                self.invalidate(business.pk, document.pk)
        for name, value in fields.items():
            setattr(document, name, value)
        return document


class InvoiceRepository(DocumentRepository):
    model = Invoice
    resource = "invoice"

    def cache_key(self, business_id, pk) -> str:
        return invoice_cache_key(business_id, pk)

    def create(self, *, business, customer, allocation, totals, fields: dict, concepts: Iterable) -> Invoice:
        """
        Persist a draft invoice and its concepts. `concepts` pairs each input
        concept with its computed `LineAmounts`, in input order.
        """
        with translate_database_errors("invoice creation"):
            with transaction.atomic():
                invoice = Invoice.objects.create(
                    business=business,
                    customer=customer,
                    series=allocation.series,
                    folio=allocation.folio,
                    status=DocumentStatus.DRAFT,
                    subtotal=totals.subtotal,
                    discount_total=totals.discount_total,
                    tax_total=totals.tax_total,
                    total=totals.total,
                    **fields,
                )
                InvoiceItem.objects.bulk_create(
                    [
                        InvoiceItem(
                            invoice=invoice,
                            position=position,
                            product_key=concept.product_key,
                            unit_key=concept.unit_key,
                            description=concept.description,
                            tax_object=concept.tax_object,
                            quantity=line.quantity,
                            unit_price=line.unit_price,
                            discount=line.discount,
                            amount=line.amount,
                            tax_amount=line.tax,
                        )
                        for position, (concept, line) in enumerate(concepts, start=1)
                    ]
                )
        return invoice

    def items(self, invoice):
        return list(invoice.items.order_by("position", "id"))


class PaymentRepository(DocumentRepository):
    model = Payment
    resource = "payment"

    def cache_key(self, business_id, pk) -> str:
        return payment_cache_key(business_id, pk)

    def create(self, *, business, customer, allocation, fields: dict, linked: Iterable) -> Payment:
        linked = list(linked)
        with translate_database_errors("payment creation"):
            with transaction.atomic():
                payment = Payment.objects.create(
                    business=business,
                    customer=customer,
                    series=allocation.series,
                    folio=allocation.folio,
                    status=DocumentStatus.DRAFT,
                    **fields,
                )
                PaymentRelatedDocument.objects.bulk_create(
                    [
                        PaymentRelatedDocument(
                            payment=payment,
                            invoice=doc.invoice,
                            partiality_number=doc.partiality_number,
                            previous_balance=doc.previous_balance,
                            amount_paid=doc.amount_paid,
                            outstanding_balance=doc.outstanding_balance,
                        )
                        for doc in linked
                    ]
                )
                # Balances of the settled invoices change with this payment.
                for doc in linked:
                    InvoiceRepository().invalidate(business.pk, doc.invoice.pk)
        return payment

    def related_documents(self, payment):
        return list(payment.related_documents.select_related("invoice").order_by("id"))

    def mark_canceled(self, business, document, reason: str):
        document = super().mark_canceled(business, document, reason)
        for invoice_id in document.related_documents.values_list("invoice_id", flat=True):
            InvoiceRepository().invalidate(business.pk, invoice_id)
        return document

    def discard(self, business, document) -> list[int]:
        """
        Delete a draft payment and its related-document rows, releasing the
        balance it reserved. Returns the ids of the invoices it referenced.
        """
        if document.status != DocumentStatus.DRAFT:
            raise ConflictError(
                f"payment is {document.status}; only drafts can be discarded",
                context={"current": document.status},
            )
        with translate_database_errors("payment discard"):
            with transaction.atomic():
                invoice_ids = list(
                    PaymentRelatedDocument.objects.filter(payment_id=document.pk).values_list("invoice_id", flat=True)
                )
                deleted, _ = Payment.objects.filter(
                    business=business, pk=document.pk, status=DocumentStatus.DRAFT
                ).delete()
                if deleted:
                    self.invalidate(business.pk, document.pk)
                    for invoice_id in invoice_ids:
                        InvoiceRepository().invalidate(business.pk, invoice_id)
        if not deleted:
            current = Payment.objects.filter(pk=document.pk).values_list("status", flat=True).first()
            if current is None:
                raise NotFoundError(self.resource, document.pk)
            raise ConflictError("payment was modified concurrently", context={"current": current})
        logger.info("Draft payment %s discarded", document.pk)
        return invoice_ids
