"""
Printable representation of CFDI documents using reportlab.

The output is a visual aid only: the stamped XML is the fiscal document.
Drafts carry a watermark and no QR/seals; stamped documents show the SAT
verification QR and seal blocks; canceled documents keep them under a
"CANCELED" watermark.
"""
from __future__ import annotations

import io
import logging
from collections import OrderedDict
from decimal import Decimal
from html import escape
from urllib.parse import urlencode

from django.conf import settings
from django.utils import timezone
from lxml import etree
from reportlab.graphics.barcode.qr import QrCodeWidget
from reportlab.graphics.shapes import Drawing
from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import inch
from reportlab.lib.utils import ImageReader
from reportlab.platypus import Image, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from cfdi.models import DocumentStatus
from cfdi.services.amount_words import amount_to_words
from cfdi.services.xml_builder import CFDI_NS, TFD_NS, format_cfdi_datetime, format_money

logger = logging.getLogger(__name__)

PENDING = "PENDING"
DRAFT_WATERMARK = "DRAFT — NOT FISCALLY VALID"
CANCELED_WATERMARK = "CANCELED"
SEAL_PLACEHOLDER = "Not available"
QR_SIZE = 1.4 * inch

_MUTED = colors.HexColor('#64748b')
_INK = colors.HexColor('#0f172a')
_RULE = colors.HexColor('#e2e8f0')


def build_verification_url(*, fiscal_uuid: str, issuer_rfc: str, receiver_rfc: str, total, issue_date) -> str:
    """SAT verification URL encoded in the QR code."""
    issued = format_cfdi_datetime(issue_date) if hasattr(issue_date, "strftime") else str(issue_date)
    params = OrderedDict(
        [
            ("id", fiscal_uuid),
            ("re", issuer_rfc),
            ("rr", receiver_rfc),
            ("tt", format_money(total)),
            ("fe", issued[-6:]),
        ]
    )
    host = getattr(settings, "CFDI_VERIFICATION_HOST", "verificacfdi.facturaelectronica.sat.gob.mx")
    return f"https://{host}/default.aspx?{urlencode(params)}"


def extract_seals(stamped_xml: str | None) -> dict[str, str]:
    """
    Read seal values out of a stamped document.

    Missing or unreadable values come back as placeholders; rendering never
    fails because of the seal blocks.
    """
    seals = {
        "seal_cfd": SEAL_PLACEHOLDER,
        "seal_sat": SEAL_PLACEHOLDER,
        "sat_certificate_number": SEAL_PLACEHOLDER,
        "issuer_certificate_number": SEAL_PLACEHOLDER,
    }
    if not stamped_xml:
        return seals
    try:
        root = etree.fromstring(stamped_xml.encode("utf-8"))
    except etree.XMLSyntaxError:
        logger.warning("Stamped XML could not be parsed for seal rendering")
        return seals

    if root.tag == f"{{{CFDI_NS}}}Comprobante" and root.get("NoCertificado"):
        seals["issuer_certificate_number"] = root.get("NoCertificado")
    timbre = next(root.iter(f"{{{TFD_NS}}}TimbreFiscalDigital"), None)
    if timbre is not None:
        seals["seal_cfd"] = timbre.get("SelloCFD") or root.get("Sello") or SEAL_PLACEHOLDER
        seals["seal_sat"] = timbre.get("SelloSAT") or SEAL_PLACEHOLDER
        seals["sat_certificate_number"] = timbre.get("NoCertificadoSAT") or SEAL_PLACEHOLDER
    return seals


def _styles():
    styles = getSampleStyleSheet()
    return {
        "title": ParagraphStyle('CfdiTitle', parent=styles['Heading1'], fontSize=20, textColor=_INK),
        "header": ParagraphStyle('CfdiHeader', parent=styles['Normal'], fontSize=9, textColor=_MUTED),
        "value": ParagraphStyle('CfdiValue', parent=styles['Normal'], fontSize=10, textColor=_INK),
        "cell": ParagraphStyle('CfdiCell', parent=styles['Normal'], fontSize=8, leading=10, textColor=_INK),
        "seal": ParagraphStyle(
            'CfdiSeal', parent=styles['Normal'], fontName='Courier', fontSize=6, leading=7,
            textColor=_INK, splitLongWords=True,
        ),
        "words": ParagraphStyle('CfdiWords', parent=styles['Normal'], fontSize=9, textColor=_INK),
    }


def _text(value) -> str:
    return escape("" if value is None else str(value))


def _format_date(value) -> str:
    if not value:
        return PENDING
    if timezone.is_aware(value):
        value = timezone.localtime(value)
    return value.strftime('%Y-%m-%d %H:%M:%S')


def _logo_flowable(logo: bytes | None):
    if not logo:
        return None
    try:
        reader = ImageReader(io.BytesIO(logo))
        width, height = reader.getSize()
    except Exception as exc:
        logger.warning("Ignoring unreadable logo: %s", exc)
        return None
    max_width, max_height = 1.6 * inch, 0.9 * inch
    scale = min(max_width / width, max_height / height, 1)
    return Image(io.BytesIO(logo), width=width * scale, height=height * scale)


def _header(title: str, business, logo, styles) -> list:
    identity = [
        Paragraph(f"<b>{_text(business.name)}</b>", styles["value"]),
        Paragraph(f"RFC: {_text(business.rfc)}", styles["header"]),
        Paragraph(f"Tax regime: {_text(business.tax_regime)}", styles["header"]),
        Paragraph(f"Place of issue: {_text(business.postal_code)}", styles["header"]),
    ]
    logo_flowable = _logo_flowable(logo)
    left = [logo_flowable] if logo_flowable is not None else []
    left.append(Paragraph(title, styles["title"]))
    table = Table([[left, identity]], colWidths=[3.5 * inch, 3.5 * inch])
    table.setStyle(TableStyle([
        ('VALIGN', (0, 0), (-1, -1), 'TOP'),
        ('LEFTPADDING', (0, 0), (-1, -1), 0),
    ]))
    return [table, Spacer(1, 12)]


def _fiscal_metadata(document, styles) -> Table:
    stamped = document.status != DocumentStatus.DRAFT and document.fiscal_uuid
    rows = [
        ['Document', document.document_number],
        ['Fiscal UUID', document.fiscal_uuid if stamped else PENDING],
        ['Issue date', _format_date(document.issue_date)],
        ['Stamp date', _format_date(document.stamped_at) if stamped else PENDING],
        ['Status', document.get_status_display()],
    ]
    if document.status == DocumentStatus.CANCELED:
        rows.append(['Canceled at', _format_date(document.canceled_at)])
    table = Table(rows, colWidths=[1.5 * inch, 5.5 * inch])
    table.setStyle(TableStyle([
        ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 9),
        ('TEXTCOLOR', (0, 0), (0, -1), _MUTED),
        ('BOTTOMPADDING', (0, 0), (-1, -1), 3),
    ]))
    return table


def _receiver_block(customer, cfdi_use: str, styles) -> list:
    return [
        Spacer(1, 10),
        Paragraph("<b>Bill to</b>", styles["header"]),
        Paragraph(f"<b>{_text(customer.name)}</b>", styles["value"]),
        Paragraph(
            f"RFC: {_text(customer.rfc)} &nbsp; Tax regime: {_text(customer.tax_regime)} "
            f"&nbsp; Postal code: {_text(customer.postal_code)} &nbsp; CFDI use: {_text(cfdi_use)}",
            styles["header"],
        ),
        Spacer(1, 14),
    ]


def _data_table(header: list, rows: list, col_widths: list) -> Table:
    table = Table([header] + rows, colWidths=col_widths, repeatRows=1)
    table.setStyle(TableStyle([
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 8),
        ('TEXTCOLOR', (0, 0), (-1, 0), _MUTED),
        ('LINEBELOW', (0, 0), (-1, 0), 1, _RULE),
        ('LINEBELOW', (0, 1), (-1, -1), 0.25, _RULE),
        ('ALIGN', (-3, 0), (-1, -1), 'RIGHT'),
        ('VALIGN', (0, 0), (-1, -1), 'TOP'),
    ]))
    return table


def _totals_block(amounts: list, words: str, styles) -> list:
    table = Table(amounts, colWidths=[5 * inch, 2 * inch])
    table.setStyle(TableStyle([
        ('FONTNAME', (0, 0), (-1, -1), 'Helvetica'),
        ('FONTNAME', (0, -1), (-1, -1), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 10),
        ('ALIGN', (0, 0), (-1, -1), 'RIGHT'),
        ('LINEABOVE', (0, -1), (-1, -1), 1, _RULE),
        ('TOPPADDING', (0, -1), (-1, -1), 6),
    ]))
    return [Spacer(1, 12), table, Spacer(1, 6), Paragraph(f"<b>Amount in words:</b> {_text(words)}", styles["words"])]


def _qr_drawing(url: str) -> Drawing:
    widget = QrCodeWidget(url)
    x1, y1, x2, y2 = widget.getBounds()
    width, height = x2 - x1, y2 - y1
    drawing = Drawing(QR_SIZE, QR_SIZE, transform=[QR_SIZE / width, 0, 0, QR_SIZE / height, 0, 0])
    drawing.add(widget)
    return drawing


def _seal_block(document, verification_url: str, styles) -> list:
    seals = extract_seals(document.stamped_xml)
    text = [
        Paragraph("<b>Issuer digital seal</b>", styles["header"]),
        Paragraph(_text(seals["seal_cfd"]), styles["seal"]),
        Spacer(1, 4),
        Paragraph("<b>SAT digital seal</b>", styles["header"]),
        Paragraph(_text(seals["seal_sat"]), styles["seal"]),
        Spacer(1, 4),
        Paragraph(
            f"Issuer certificate: {_text(seals['issuer_certificate_number'])} &nbsp; "
            f"SAT certificate: {_text(seals['sat_certificate_number'])}",
            styles["header"],
        ),
    ]
    table = Table([[_qr_drawing(verification_url), text]], colWidths=[1.6 * inch, 5.4 * inch])
    table.setStyle(TableStyle([('VALIGN', (0, 0), (-1, -1), 'TOP')]))
    return [
        Spacer(1, 18),
        table,
        Spacer(1, 6),
        Paragraph("This document is a printed representation of a CFDI.", styles["header"]),
    ]


def _page_decorator(status: str):
    if status == DocumentStatus.DRAFT:
        watermark = DRAFT_WATERMARK
    elif status == DocumentStatus.CANCELED:
        watermark = CANCELED_WATERMARK
    else:
        watermark = None

    def decorate(canvas, doc):
        canvas.saveState()
        if watermark:
            canvas.setFont('Helvetica-Bold', 44 if watermark == DRAFT_WATERMARK else 72)
            canvas.setFillColor(colors.Color(0.86, 0.15, 0.15, alpha=0.18))
            canvas.translate(doc.pagesize[0] / 2, doc.pagesize[1] / 2)
            canvas.rotate(45)
            canvas.drawCentredString(0, 0, watermark)
            canvas.rotate(-45)
            canvas.translate(-doc.pagesize[0] / 2, -doc.pagesize[1] / 2)
        canvas.setFont('Helvetica', 8)
        canvas.setFillColor(_MUTED)
        canvas.drawRightString(doc.pagesize[0] - 0.5 * inch, 0.3 * inch, f"Page {doc.page}")
        canvas.restoreState()

    return decorate


def _build(elements: list, *, status: str, title: str) -> bytes:
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=letter,
        topMargin=0.5 * inch,
        bottomMargin=0.6 * inch,
        leftMargin=0.75 * inch,
        rightMargin=0.75 * inch,
        title=title,
    )
    decorate = _page_decorator(status)
    doc.build(elements, onFirstPage=decorate, onLaterPages=decorate)
    return buffer.getvalue()


def render_invoice_pdf(invoice, items, customer, business, logo: bytes | None = None) -> bytes:
    """Render an invoice in any status to PDF bytes."""
    styles = _styles()
    currency = invoice.currency or "MXN"
    elements = _header("INVOICE", business, logo, styles)
    elements.append(_fiscal_metadata(invoice, styles))
    elements.extend(_receiver_block(customer, invoice.cfdi_use, styles))

    rows = []
    for item in items:
        rows.append([
            Paragraph(_text(item.product_key), styles["cell"]),
            Paragraph(f"{_text(item.description)}<br/><font color='#64748b'>Unit: {_text(item.unit_key)}</font>",
                      styles["cell"]),
            f"{Decimal(item.quantity).normalize():f}",
            format_money(item.unit_price),
            format_money(item.discount or 0),
            format_money(Decimal(item.amount) + Decimal(item.discount or 0)),
        ])
    elements.append(_data_table(
        ['Key', 'Description', 'Qty', 'Unit price', 'Discount', 'Amount'],
        rows,
        [0.8 * inch, 2.9 * inch, 0.6 * inch, 0.9 * inch, 0.8 * inch, 1.0 * inch],
    ))

    amounts = [
        ['Subtotal', f"{format_money(invoice.subtotal)} {currency}"],
        ['Discount', f"{format_money(invoice.discount_total)} {currency}"],
        ['VAT 16%', f"{format_money(invoice.tax_total)} {currency}"],
        ['Total', f"{format_money(invoice.total)} {currency}"],
    ]
    elements.extend(_totals_block(amounts, amount_to_words(invoice.total, currency), styles))
    elements.append(Spacer(1, 6))
    elements.append(Paragraph(
        f"Payment method: {_text(invoice.payment_method)} &nbsp; Payment form: {_text(invoice.payment_form)}"
        + (f" &nbsp; Conditions: {_text(invoice.payment_conditions)}" if invoice.payment_conditions else ""),
        styles["header"],
    ))

    if invoice.status != DocumentStatus.DRAFT and invoice.fiscal_uuid:
        url = build_verification_url(
            fiscal_uuid=invoice.fiscal_uuid,
            issuer_rfc=business.rfc,
            receiver_rfc=customer.rfc,
            total=invoice.total,
            issue_date=invoice.issue_date,
        )
        elements.extend(_seal_block(invoice, url, styles))

    return _build(elements, status=invoice.status, title=f"Invoice {invoice.document_number}")


def render_payment_pdf(payment, related_documents, customer, business, logo: bytes | None = None) -> bytes:
    """Render a payment complement in any status to PDF bytes."""
    styles = _styles()
    currency = payment.currency or "MXN"
    elements = _header("PAYMENT RECEIPT", business, logo, styles)
    elements.append(_fiscal_metadata(payment, styles))
    elements.extend(_receiver_block(customer, "CP01", styles))

    elements.append(Paragraph(
        f"Payment date: {_text(_format_date(payment.payment_date))} &nbsp; "
        f"Payment form: {_text(payment.payment_form)}"
        + (f" &nbsp; Operation: {_text(payment.operation_number)}" if payment.operation_number else ""),
        styles["value"],
    ))
    elements.append(Spacer(1, 10))

    rows = []
    for doc in related_documents:
        invoice = doc.invoice
        rows.append([
            Paragraph(_text(invoice.fiscal_uuid or PENDING), styles["cell"]),
            invoice.document_number,
            str(doc.partiality_number),
            format_money(doc.previous_balance),
            format_money(doc.amount_paid),
            format_money(doc.outstanding_balance),
        ])
    elements.append(_data_table(
        ['Related invoice UUID', 'Invoice', 'Partiality', 'Previous', 'Paid', 'Outstanding'],
        rows,
        [2.5 * inch, 0.9 * inch, 0.7 * inch, 1.0 * inch, 0.9 * inch, 1.0 * inch],
    ))

    amounts = [['Amount received', f"{format_money(payment.total_amount)} {currency}"]]
    elements.extend(_totals_block(amounts, amount_to_words(payment.total_amount, currency), styles))

    if payment.status != DocumentStatus.DRAFT and payment.fiscal_uuid:
        # Payment complements declare Total="0" on the CFDI itself.
        url = build_verification_url(
            fiscal_uuid=payment.fiscal_uuid,
            issuer_rfc=business.rfc,
            receiver_rfc=customer.rfc,
            total=Decimal("0"),
            issue_date=payment.issue_date,
        )
        elements.extend(_seal_block(payment, url, styles))

    return _build(elements, status=payment.status, title=f"Payment {payment.document_number}")
