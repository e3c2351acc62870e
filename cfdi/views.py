import json
import logging

from django.conf import settings
from django.contrib.auth.decorators import login_required
from django.core.cache import cache
from django.http import HttpResponse, JsonResponse
from django.views.decorators.http import require_GET, require_POST

from core.utils import get_current_business

from .exceptions import IssuanceError
from .models import Invoice, Payment
from .repositories import InvoiceRepository, PaymentRepository, invoice_cache_key, payment_cache_key
from .services.issuance import IssuanceService
from .services.payments import outstanding_balance

logger = logging.getLogger(__name__)


def _service():
    return IssuanceService()


def _error_response(exc: IssuanceError):
    logger.info("Request failed (%s): %s", exc.__class__.__name__, exc.message)
    return JsonResponse({"error": exc.user_message, "retryable": exc.retryable}, status=exc.status_code)


def _no_business():
    return JsonResponse({"error": "No business context"}, status=400)


def _json_body(request):
    try:
        payload = json.loads(request.body or "{}")
    except (TypeError, ValueError):
        return None
    return payload if isinstance(payload, dict) else None


def _money(value):
    return None if value is None else f"{value:.2f}"


def _iso(value):
    return value.isoformat() if value else None


def _document_fields(document):
    return {
        "id": document.pk,
        "series": document.series,
        "folio": document.folio,
        "document_number": document.document_number,
        "status": document.status,
        "issue_date": _iso(document.issue_date),
        "currency": document.currency,
        "fiscal_uuid": document.fiscal_uuid,
        "stamped_at": _iso(document.stamped_at),
        "xml_url": document.xml_url or None,
        "pdf_url": document.pdf_url or None,
        "canceled_at": _iso(document.canceled_at),
        "cancellation_reason": document.cancellation_reason or None,
        "customer": {
            "id": document.customer_id,
            "name": document.customer.name,
            "rfc": document.customer.rfc,
        },
    }


def _serialize_invoice(invoice: Invoice):
    data = _document_fields(invoice)
    data.update(
        {
            "cfdi_use": invoice.cfdi_use,
            "payment_method": invoice.payment_method,
            "payment_form": invoice.payment_form,
            "payment_conditions": invoice.payment_conditions,
            "relation_type": invoice.relation_type or None,
            "related_uuids": invoice.related_uuids,
            "subtotal": _money(invoice.subtotal),
            "discount_total": _money(invoice.discount_total),
            "tax_total": _money(invoice.tax_total),
            "total": _money(invoice.total),
            "outstanding_balance": _money(outstanding_balance(invoice)),
            "items": [
                {
                    "position": item.position,
                    "product_key": item.product_key,
                    "unit_key": item.unit_key,
                    "description": item.description,
                    "quantity": str(item.quantity.normalize()),
                    "unit_price": str(item.unit_price.normalize()),
                    "discount": _money(item.discount),
                    "amount": _money(item.amount),
                    "tax_amount": _money(item.tax_amount),
                }
                for item in invoice.items.order_by("position", "id")
            ],
        }
    )
    return data


def _serialize_payment(payment: Payment):
    data = _document_fields(payment)
    data.update(
        {
            "payment_date": _iso(payment.payment_date),
            "payment_form": payment.payment_form,
            "operation_number": payment.operation_number or None,
            "total_amount": _money(payment.total_amount),
            "related_documents": [
                {
                    "invoice_id": doc.invoice_id,
                    "invoice": doc.invoice.document_number,
                    "fiscal_uuid": doc.invoice.fiscal_uuid,
                    "partiality_number": doc.partiality_number,
                    "previous_balance": _money(doc.previous_balance),
                    "amount_paid": _money(doc.amount_paid),
                    "outstanding_balance": _money(doc.outstanding_balance),
                }
                for doc in payment.related_documents.select_related("invoice").order_by("id")
            ],
        }
    )
    return data


@login_required
@require_POST
def api_series_create(request):
    business = get_current_business(request.user)
    if not business:
        return _no_business()
    payload = _json_body(request)
    if payload is None:
        return JsonResponse({"error": "Invalid JSON body"}, status=400)
    try:
        series = _service().create_series(business, payload)
    except IssuanceError as exc:
        return _error_response(exc)
    return JsonResponse(
        {
            "id": series.pk,
            "series": series.series,
            "document_type": series.document_type,
            "next_folio": series.last_folio + 1,
        },
        status=201,
    )


@login_required
@require_POST
def api_invoice_create(request):
    """
    POST /api/cfdi/invoices/

    Creates a numbered draft. Stamping is a separate call so a PAC outage
    never loses the draft or its folio.
    """
    business = get_current_business(request.user)
    if not business:
        return _no_business()
    payload = _json_body(request)
    if payload is None:
        return JsonResponse({"error": "Invalid JSON body"}, status=400)
    try:
        invoice = _service().issue_invoice(business, payload)
    except IssuanceError as exc:
        return _error_response(exc)
    return JsonResponse(_serialize_invoice(invoice), status=201)


@login_required
@require_GET
def api_invoice_detail(request, invoice_id: int):
    business = get_current_business(request.user)
    if not business:
        return _no_business()
    cache_key = invoice_cache_key(business.pk, invoice_id)
    data = cache.get(cache_key)
    if data is None:
        try:
            invoice = InvoiceRepository().get(business, invoice_id)
        except IssuanceError as exc:
            return _error_response(exc)
        data = _serialize_invoice(invoice)
        cache.set(cache_key, data, timeout=getattr(settings, "CFDI_CACHE_TIMEOUT", 300))
    return JsonResponse(data)


@login_required
@require_POST
def api_invoice_stamp(request, invoice_id: int):
    business = get_current_business(request.user)
    if not business:
        return _no_business()
    try:
        invoice = _service().stamp_invoice(business, invoice_id)
    except IssuanceError as exc:
        return _error_response(exc)
    return JsonResponse(_serialize_invoice(invoice))


@login_required
@require_POST
def api_invoice_cancel(request, invoice_id: int):
    business = get_current_business(request.user)
    if not business:
        return _no_business()
    payload = _json_body(request)
    if payload is None:
        return JsonResponse({"error": "Invalid JSON body"}, status=400)
    try:
        invoice = _service().cancel_invoice(business, invoice_id, reason=payload.get("reason", "02"))
    except IssuanceError as exc:
        return _error_response(exc)
    return JsonResponse(_serialize_invoice(invoice))


@login_required
@require_GET
def api_invoice_pdf(request, invoice_id: int):
    business = get_current_business(request.user)
    if not business:
        return _no_business()
    try:
        service = _service()
        invoice = service.invoices.get(business, invoice_id)
        pdf = service.render_invoice(business, invoice_id)
    except IssuanceError as exc:
        return _error_response(exc)
    response = HttpResponse(pdf, content_type="application/pdf")
    response["Content-Disposition"] = f'inline; filename="invoice-{invoice.document_number}.pdf"'
    return response


@login_required
@require_GET
def api_invoice_xml(request, invoice_id: int):
    business = get_current_business(request.user)
    if not business:
        return _no_business()
    try:
        service = _service()
        invoice = service.invoices.get(business, invoice_id)
        xml = service.preview_invoice_xml(business, invoice_id)
    except IssuanceError as exc:
        return _error_response(exc)
    response = HttpResponse(xml, content_type="application/xml; charset=utf-8")
    response["Content-Disposition"] = f'inline; filename="invoice-{invoice.document_number}.xml"'
    return response


@login_required
@require_POST
def api_payment_create(request):
    business = get_current_business(request.user)
    if not business:
        return _no_business()
    payload = _json_body(request)
    if payload is None:
        return JsonResponse({"error": "Invalid JSON body"}, status=400)
    try:
        payment = _service().register_payment(business, payload)
    except IssuanceError as exc:
        return _error_response(exc)
    return JsonResponse(_serialize_payment(payment), status=201)


@login_required
@require_GET
def api_payment_detail(request, payment_id: int):
    business = get_current_business(request.user)
    if not business:
        return _no_business()
    cache_key = payment_cache_key(business.pk, payment_id)
    data = cache.get(cache_key)
    if data is None:
        try:
            payment = PaymentRepository().get(business, payment_id)
        except IssuanceError as exc:
            return _error_response(exc)
        data = _serialize_payment(payment)
        cache.set(cache_key, data, timeout=getattr(settings, "CFDI_CACHE_TIMEOUT", 300))
    return JsonResponse(data)


@login_required
@require_POST
def api_payment_stamp(request, payment_id: int):
    business = get_current_business(request.user)
    if not business:
        return _no_business()
    try:
        payment = _service().stamp_payment(business, payment_id)
    except IssuanceError as exc:
        return _error_response(exc)
    return JsonResponse(_serialize_payment(payment))


@login_required
@require_POST
def api_payment_cancel(request, payment_id: int):
    business = get_current_business(request.user)
    if not business:
        return _no_business()
    payload = _json_body(request)
    if payload is None:
        return JsonResponse({"error": "Invalid JSON body"}, status=400)
    try:
        payment = _service().cancel_payment(business, payment_id, reason=payload.get("reason", "02"))
    except IssuanceError as exc:
        return _error_response(exc)
    return JsonResponse(_serialize_payment(payment))


@login_required
@require_POST
def api_payment_discard(request, payment_id: int):
    business = get_current_business(request.user)
    if not business:
        return _no_business()
    try:
        _service().discard_payment(business, payment_id)
    except IssuanceError as exc:
        return _error_response(exc)
    return JsonResponse({"id": payment_id, "discarded": True})


@login_required
@require_GET
def api_payment_pdf(request, payment_id: int):
    business = get_current_business(request.user)
    if not business:
        return _no_business()
    try:
        service = _service()
        payment = service.payments.get(business, payment_id)
        pdf = service.render_payment(business, payment_id)
    except IssuanceError as exc:
        return _error_response(exc)
    response = HttpResponse(pdf, content_type="application/pdf")
    response["Content-Disposition"] = f'inline; filename="payment-{payment.document_number}.pdf"'
    return response
