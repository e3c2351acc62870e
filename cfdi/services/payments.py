from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, List

from django.db import transaction
from django.db.models import Max, Sum

from cfdi.exceptions import ValidationError
from cfdi.models import DocumentStatus, Invoice, PaymentMethod, PaymentRelatedDocument

logger = logging.getLogger(__name__)

MONEY_QUANT = Decimal("0.01")


def _money(value) -> Decimal:
    return Decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PaymentLine:
    invoice_id: int
    amount: Decimal


@dataclass(frozen=True)
class LinkedDocument:
    invoice: Invoice
    partiality_number: int
    previous_balance: Decimal
    amount_paid: Decimal
    outstanding_balance: Decimal


def paid_amount(invoice) -> Decimal:
    """Sum applied to `invoice` by payment complements that are not canceled."""
    total = (
        PaymentRelatedDocument.objects.filter(invoice=invoice)
        .exclude(payment__status=DocumentStatus.CANCELED)
        .aggregate(total=Sum("amount_paid"))["total"]
    )
    return _money(total or 0)


def outstanding_balance(invoice) -> Decimal:
    return _money(invoice.total) - paid_amount(invoice)


def next_partiality_number(invoice) -> int:
    # Canceled complements keep their numbers; partialities are never reused.
    current = PaymentRelatedDocument.objects.filter(invoice=invoice).aggregate(n=Max("partiality_number"))["n"]
    return (current or 0) + 1


def _check_invoice(invoice, *, customer, currency: str, field: str) -> None:
    if invoice.customer_id != customer.pk:
        raise ValidationError("invoice belongs to a different customer", field=field)
    if invoice.status != DocumentStatus.STAMPED:
        raise ValidationError("only stamped invoices can receive payments", field=field)
    if invoice.payment_method != PaymentMethod.DEFERRED:
        raise ValidationError("only PPD invoices can receive payment complements", field=field)
    if (invoice.currency or "MXN") != currency:
        raise ValidationError("invoice currency does not match the payment currency", field=field)


@transaction.atomic
def link_related_documents(
    *,
    business,
    customer,
    lines: Iterable[PaymentLine],
    declared_total=None,
    currency: str = "MXN",
) -> List[LinkedDocument]:
    """
    Resolve and validate the invoices a payment settles.

    Invoices are locked in id order for the rest of the caller's transaction so
    concurrent payments against the same invoice see each other's balance.
    """
    lines = list(lines)
    if not lines:
        raise ValidationError("at least one related document is required", field="related_documents")

    seen = set()
    for index, line in enumerate(lines):
        if line.invoice_id in seen:
            raise ValidationError("invoice referenced more than once", field=f"related_documents.{index}.invoice_id")
        seen.add(line.invoice_id)

    invoices = {
        invoice.pk: invoice
        for invoice in Invoice.objects.select_for_update()
        .filter(business=business, pk__in=seen)
        .order_by("pk")
    }

    linked: List[LinkedDocument] = []
    for index, line in enumerate(lines):
        field = f"related_documents.{index}"
        invoice = invoices.get(line.invoice_id)
        if invoice is None:
            raise ValidationError("invoice not found for this business", field=f"{field}.invoice_id")
        _check_invoice(invoice, customer=customer, currency=currency, field=f"{field}.invoice_id")

        try:
            amount = _money(line.amount)
        except (InvalidOperation, TypeError, ValueError) as exc:
            raise ValidationError("must be a number", field=f"{field}.amount") from exc
        if amount <= 0:
            raise ValidationError("amount must be greater than zero", field=f"{field}.amount")

        previous = outstanding_balance(invoice)
        if amount > previous:
            raise ValidationError(
                f"amount exceeds the outstanding balance of {previous}",
                field=f"{field}.amount",
                context={"invoice_id": invoice.pk, "outstanding": str(previous)},
            )

        linked.append(
            LinkedDocument(
                invoice=invoice,
                partiality_number=next_partiality_number(invoice),
                previous_balance=previous,
                amount_paid=amount,
                outstanding_balance=previous - amount,
            )
        )

    applied = sum((doc.amount_paid for doc in linked), Decimal("0"))
    if declared_total is not None and _money(declared_total) != applied:
        raise ValidationError(
            f"payment total {_money(declared_total)} does not match the applied amounts {applied}",
            field="total_amount",
        )

    logger.debug("Linked %d invoice(s) for business %s, %s applied", len(linked), business.pk, applied)
    return linked
