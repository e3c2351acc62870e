from decimal import Decimal

from django.db import models
from django.utils import timezone


class DocumentStatus(models.TextChoices):
    DRAFT = "draft", "Draft"
    STAMPED = "stamped", "Stamped"
    CANCELED = "canceled", "Canceled"


class DocumentType(models.TextChoices):
    INVOICE = "I", "Ingreso (invoice)"
    PAYMENT = "P", "Pago (payment complement)"


class PaymentMethod(models.TextChoices):
    SINGLE = "PUE", "Pago en una sola exhibición"
    DEFERRED = "PPD", "Pago en parcialidades o diferido"


class Series(models.Model):
    """
    Folio counter for one (tenant, series label).

    `last_folio` holds the most recently issued folio and only ever grows;
    see `cfdi.services.folios.allocate_folio`.
    """

    business = models.ForeignKey(
        "core.Business",
        on_delete=models.CASCADE,
        related_name="cfdi_series",
    )
    series = models.CharField(max_length=10)
    document_type = models.CharField(
        max_length=1,
        choices=DocumentType.choices,
        default=DocumentType.INVOICE,
    )
    last_folio = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["business", "series"]
        constraints = [
            models.UniqueConstraint(
                fields=["business", "series"],
                name="uniq_series_per_business",
            )
        ]

    def __str__(self):
        return f"{self.series} ({self.get_document_type_display()}) @ {self.last_folio}"


class FiscalDocument(models.Model):
    """Fields shared by every stamped document kind (invoice, payment complement)."""

    series = models.CharField(max_length=10)
    folio = models.PositiveIntegerField()
    issue_date = models.DateTimeField(default=timezone.now)
    currency = models.CharField(max_length=3, default="MXN")
    status = models.CharField(
        max_length=10,
        choices=DocumentStatus.choices,
        default=DocumentStatus.DRAFT,
        db_index=True,
    )
    fiscal_uuid = models.CharField(max_length=36, blank=True, null=True, unique=True)
    stamped_at = models.DateTimeField(blank=True, null=True)
    stamped_xml = models.TextField(blank=True, default="")
    xml_url = models.CharField(max_length=500, blank=True, default="")
    pdf_url = models.CharField(max_length=500, blank=True, default="")
    canceled_at = models.DateTimeField(blank=True, null=True)
    cancellation_reason = models.CharField(
        max_length=2,
        blank=True,
        default="",
        help_text="SAT cancellation motive code (01-04).",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True

    @property
    def document_number(self) -> str:
        return f"{self.series}-{self.folio}"

    @property
    def is_stamped(self) -> bool:
        return bool(self.fiscal_uuid) and self.status in {DocumentStatus.STAMPED, DocumentStatus.CANCELED}


class Invoice(FiscalDocument):
    business = models.ForeignKey(
        "core.Business",
        on_delete=models.CASCADE,
        related_name="cfdi_invoices",
    )
    customer = models.ForeignKey(
        "core.Customer",
        on_delete=models.PROTECT,
        related_name="cfdi_invoices",
    )
    cfdi_use = models.CharField(max_length=4, default="G03")
    payment_method = models.CharField(
        max_length=3,
        choices=PaymentMethod.choices,
        default=PaymentMethod.SINGLE,
    )
    payment_form = models.CharField(max_length=2, default="99")
    payment_conditions = models.CharField(max_length=255, blank=True, default="")
    exportation = models.CharField(max_length=2, default="01")
    relation_type = models.CharField(max_length=2, blank=True, default="")
    related_uuids = models.JSONField(default=list, blank=True)
    subtotal = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    discount_total = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    tax_total = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    total = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))

    class Meta:
        ordering = ["-issue_date", "-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["business", "series", "folio"],
                name="uniq_invoice_folio_per_series",
            )
        ]

    def __str__(self):
        return f"Invoice {self.document_number} ({self.status})"


class InvoiceItem(models.Model):
    invoice = models.ForeignKey(
        Invoice,
        on_delete=models.CASCADE,
        related_name="items",
    )
    position = models.PositiveIntegerField()
    product_key = models.CharField(max_length=8, help_text="SAT c_ClaveProdServ.")
    unit_key = models.CharField(max_length=3, default="E48", help_text="SAT c_ClaveUnidad.")
    description = models.CharField(max_length=1000)
    tax_object = models.CharField(max_length=2, default="02")
    quantity = models.DecimalField(max_digits=18, decimal_places=6)
    unit_price = models.DecimalField(max_digits=18, decimal_places=6)
    discount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    amount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        help_text="quantity x unit_price - discount.",
    )
    tax_amount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))

    class Meta:
        ordering = ["invoice", "position"]

    def __str__(self):
        return f"{self.quantity} x {self.description}"

    @property
    def gross_amount(self) -> Decimal:
        return self.amount + self.discount


class Payment(FiscalDocument):
    """Payment complement (REP) recording money received against PPD invoices."""

    business = models.ForeignKey(
        "core.Business",
        on_delete=models.CASCADE,
        related_name="cfdi_payments",
    )
    customer = models.ForeignKey(
        "core.Customer",
        on_delete=models.PROTECT,
        related_name="cfdi_payments",
    )
    payment_date = models.DateTimeField()
    payment_form = models.CharField(max_length=2)
    operation_number = models.CharField(max_length=100, blank=True, default="")
    total_amount = models.DecimalField(max_digits=14, decimal_places=2)

    class Meta:
        ordering = ["-issue_date", "-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["business", "series", "folio"],
                name="uniq_payment_folio_per_series",
            )
        ]

    def __str__(self):
        return f"Payment {self.document_number} ({self.status})"


class PaymentRelatedDocument(models.Model):
    payment = models.ForeignKey(
        Payment,
        on_delete=models.CASCADE,
        related_name="related_documents",
    )
    invoice = models.ForeignKey(
        Invoice,
        on_delete=models.PROTECT,
        related_name="payment_documents",
    )
    partiality_number = models.PositiveIntegerField()
    previous_balance = models.DecimalField(max_digits=14, decimal_places=2)
    amount_paid = models.DecimalField(max_digits=14, decimal_places=2)
    outstanding_balance = models.DecimalField(max_digits=14, decimal_places=2)

    class Meta:
        ordering = ["payment", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["invoice", "partiality_number"],
                name="uniq_partiality_per_invoice",
            )
        ]

    def __str__(self):
        return f"{self.invoice.document_number} #{self.partiality_number}: {self.amount_paid}"


class AuditLog(models.Model):
    class Action(models.TextChoices):
        INVOICE_CREATE = "INVOICE_CREATE", "Invoice created"
        INVOICE_STAMP = "INVOICE_STAMP", "Invoice stamped"
        INVOICE_CANCEL = "INVOICE_CANCEL", "Invoice canceled"
        PAYMENT_CREATE = "PAYMENT_CREATE", "Payment created"
        PAYMENT_STAMP = "PAYMENT_STAMP", "Payment stamped"
        PAYMENT_CANCEL = "PAYMENT_CANCEL", "Payment canceled"
        PAYMENT_DISCARD = "PAYMENT_DISCARD", "Draft payment discarded"
        SERIES_CREATE = "SERIES_CREATE", "Series created"

    business = models.ForeignKey(
        "core.Business",
        on_delete=models.CASCADE,
        related_name="cfdi_audit_logs",
    )
    action = models.CharField(max_length=32, choices=Action.choices)
    resource_type = models.CharField(max_length=32)
    resource_id = models.CharField(max_length=64, blank=True, default="")
    success = models.BooleanField(default=True)
    message = models.TextField(blank=True, default="")
    details = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["business", "resource_type", "resource_id"], name="cfdi_audit_resource_idx"),
        ]

    def __str__(self):
        outcome = "ok" if self.success else "failed"
        return f"{self.action} {self.resource_type}:{self.resource_id} ({outcome})"
