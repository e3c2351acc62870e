from unittest import mock

from django.db import OperationalError
from django.test import TestCase

from cfdi.audit import AuditEvent, DatabaseAuditSink
from cfdi.exceptions import ConflictError, DatabaseError, NotFoundError
from cfdi.models import AuditLog, DocumentStatus, DocumentType, Invoice
from cfdi.repositories import InvoiceRepository, translate_database_errors
from cfdi.services.pac import StampResult
from cfdi.tests.helpers import FISCAL_UUID, create_customer, create_series, create_tenant, invoice_payload
from cfdi.tests.test_issuance import IssuanceTestCase


class InvoiceRepositoryTests(IssuanceTestCase):
    def setUp(self):
        super().setUp()
        self.repo = InvoiceRepository()
        self.invoice = self.service.issue_invoice(self.business, invoice_payload(self.customer))
        self.stamp = StampResult(
            stamped_xml="<stamped/>",
            fiscal_uuid=FISCAL_UUID,
            stamped_at=self.invoice.issue_date,
        )

    def test_compare_and_set_rejects_stale_document(self):
        stale = self.repo.get(self.business, self.invoice.pk)
        Invoice.objects.filter(pk=self.invoice.pk).update(status=DocumentStatus.STAMPED)

        with self.assertRaises(ConflictError):
            self.repo.mark_stamped(self.business, stale, self.stamp)

        self.invoice.refresh_from_db()
        self.assertIsNone(self.invoice.fiscal_uuid)

    def test_mark_stamped_writes_stamp_fields_together(self):
        invoice = self.repo.mark_stamped(self.business, self.repo.get(self.business, self.invoice.pk), self.stamp)
        self.assertEqual(invoice.status, DocumentStatus.STAMPED)

        stored = Invoice.objects.get(pk=self.invoice.pk)
        self.assertEqual(stored.fiscal_uuid, FISCAL_UUID)
        self.assertEqual(stored.stamped_xml, "<stamped/>")
        self.assertEqual(stored.stamped_at, self.invoice.issue_date)

    def test_duplicate_fiscal_uuid_conflicts(self):
        self.repo.mark_stamped(self.business, self.repo.get(self.business, self.invoice.pk), self.stamp)
        other = self.service.issue_invoice(self.business, invoice_payload(self.customer))

        with self.assertRaises(ConflictError):
            self.repo.mark_stamped(self.business, self.repo.get(self.business, other.pk), self.stamp)
        self.assertEqual(Invoice.objects.get(pk=other.pk).status, DocumentStatus.DRAFT)

    def test_get_scopes_by_tenant(self):
        _, other = create_tenant("otro-tenant")
        with self.assertRaises(NotFoundError):
            self.repo.get(other, self.invoice.pk)


class DatabaseErrorTranslationTests(TestCase):
    def test_operational_error_becomes_database_error(self):
        with self.assertRaises(DatabaseError) as ctx:
            with translate_database_errors("invoice lookup"):
                raise OperationalError("server closed the connection")
        self.assertEqual(ctx.exception.status_code, 500)
        self.assertEqual(ctx.exception.user_message, "storage failure, please try again")


class AuditSinkTests(TestCase):
    def setUp(self):
        self.user, self.business = create_tenant("auditoria")
        create_customer(self.business)
        create_series(self.business, "A", DocumentType.INVOICE)

    def test_records_event(self):
        DatabaseAuditSink().record(
            AuditEvent(business=self.business, action=AuditLog.Action.SERIES_CREATE, resource_type="series",
                       resource_id="1", details={"series": "A"})
        )
        log = AuditLog.objects.get()
        self.assertEqual(log.details, {"series": "A"})
        self.assertTrue(log.success)

    def test_write_failure_is_logged_not_raised(self):
        with mock.patch.object(AuditLog.objects, "create", side_effect=OperationalError("disk full")):
            with self.assertLogs("cfdi.audit", level="WARNING"):
                DatabaseAuditSink().record(
                    AuditEvent(business=self.business, action=AuditLog.Action.INVOICE_CREATE, resource_type="invoice")
                )
