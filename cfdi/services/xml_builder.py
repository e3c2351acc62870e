"""
Canonical CFDI 4.0 document assembly.

The PAC authenticates the exact byte sequence we send, so every builder here
is a pure function of its inputs: attribute order is fixed by insertion,
concepts keep their input order and dates are rendered at second precision
in the issuer's local time. Building twice from the same rows yields the
same bytes, which is what makes a stamping retry safe.
"""
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Sequence

from django.utils import timezone
from lxml import etree

from cfdi.exceptions import ValidationError
from cfdi.services.taxes import VAT_RATE_CODE, VAT_TAX_CODE, split_vat_inclusive

CFDI_VERSION = "4.0"
PAYMENTS_VERSION = "2.0"

CFDI_NS = "http://www.sat.gob.mx/cfd/4"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"
PAGO20_NS = "http://www.sat.gob.mx/Pagos20"
TFD_NS = "http://www.sat.gob.mx/TimbreFiscalDigital"

CFDI_SCHEMA_LOCATION = f"{CFDI_NS} http://www.sat.gob.mx/sitio_internet/cfd/4/cfdv40.xsd"
PAGO20_SCHEMA_LOCATION = f"{PAGO20_NS} http://www.sat.gob.mx/sitio_internet/cfd/Pagos/Pagos20.xsd"

PAYMENT_PRODUCT_KEY = "84111506"
PAYMENT_UNIT_KEY = "ACT"
PAYMENT_CFDI_USE = "CP01"

_MONEY = Decimal("0.01")


def _cfdi(tag: str) -> str:
    return f"{{{CFDI_NS}}}{tag}"


def _pago(tag: str) -> str:
    return f"{{{PAGO20_NS}}}{tag}"


def format_money(value) -> str:
    return str(Decimal(value).quantize(_MONEY, rounding=ROUND_HALF_UP))


def format_quantity(value) -> str:
    normalized = Decimal(value).normalize()
    return format(normalized, "f")


def format_unit_price(value) -> str:
    """ValorUnitario keeps between 2 and 6 decimals."""
    value = Decimal(value).quantize(Decimal("0.000001"), rounding=ROUND_HALF_UP).normalize()
    if value.as_tuple().exponent > -2:
        value = value.quantize(_MONEY)
    return format(value, "f")


def format_cfdi_datetime(value) -> str:
    """ISO-8601 local time without offset or sub-second precision."""
    if timezone.is_aware(value):
        value = timezone.localtime(value)
    return value.replace(microsecond=0).strftime("%Y-%m-%dT%H:%M:%S")


def _require(value, field: str) -> str:
    text = "" if value is None else str(value).strip()
    if not text:
        raise ValidationError("required field is missing", field=field)
    return text


def _set_attributes(element, attributes: Sequence[tuple[str, object]]) -> None:
    for name, value in attributes:
        if value is None or value == "":
            continue
        element.set(name, str(value))


def _issuer_block(root, business) -> None:
    emisor = etree.SubElement(root, _cfdi("Emisor"))
    _set_attributes(
        emisor,
        [
            ("Rfc", _require(getattr(business, "rfc", None), "issuer.rfc")),
            ("Nombre", _require(getattr(business, "name", None), "issuer.name")),
            ("RegimenFiscal", _require(getattr(business, "tax_regime", None), "issuer.tax_regime")),
        ],
    )


def _receiver_block(root, customer, *, cfdi_use: str) -> None:
    receptor = etree.SubElement(root, _cfdi("Receptor"))
    _set_attributes(
        receptor,
        [
            ("Rfc", _require(getattr(customer, "rfc", None), "receiver.rfc")),
            ("Nombre", _require(getattr(customer, "name", None), "receiver.name")),
            ("DomicilioFiscalReceptor", _require(getattr(customer, "postal_code", None), "receiver.postal_code")),
            ("RegimenFiscalReceptor", _require(getattr(customer, "tax_regime", None), "receiver.tax_regime")),
            ("UsoCFDI", _require(cfdi_use, "cfdi_use")),
        ],
    )


def _serialize(root) -> str:
    return etree.tostring(root, xml_declaration=True, encoding="UTF-8").decode("utf-8")


def build_invoice_xml(invoice, items: Iterable, customer, business) -> str:
    """
    Assemble the unsigned CFDI 4.0 invoice (TipoDeComprobante "I").

    Raises ValidationError when issuer or receiver fiscal data is incomplete
    or the invoice has no concepts.
    """
    items = list(items)
    postal_code = _require(getattr(business, "postal_code", None), "issuer.postal_code")
    _require(getattr(business, "tax_regime", None), "issuer.tax_regime")
    _require(getattr(customer, "tax_regime", None), "receiver.tax_regime")
    _require(getattr(customer, "postal_code", None), "receiver.postal_code")
    if not items:
        raise ValidationError("at least one concept is required", field="concepts")

    discount_total = Decimal(invoice.discount_total or 0)
    root = etree.Element(_cfdi("Comprobante"), nsmap={"cfdi": CFDI_NS, "xsi": XSI_NS})
    root.set(f"{{{XSI_NS}}}schemaLocation", CFDI_SCHEMA_LOCATION)
    root.set("Version", CFDI_VERSION)
    root.set("Serie", str(invoice.series))
    root.set("Folio", str(invoice.folio))
    root.set("Fecha", format_cfdi_datetime(invoice.issue_date))
    root.set("Sello", "")
    root.set("FormaPago", _require(invoice.payment_form, "payment_form"))
    root.set("NoCertificado", getattr(business, "certificate_number", "") or "")
    root.set("Certificado", "")
    _set_attributes(root, [("CondicionesDePago", getattr(invoice, "payment_conditions", ""))])
    root.set("SubTotal", format_money(invoice.subtotal))
    if discount_total > 0:
        root.set("Descuento", format_money(discount_total))
    root.set("Moneda", invoice.currency or "MXN")
    root.set("Total", format_money(invoice.total))
    root.set("TipoDeComprobante", "I")
    root.set("Exportacion", getattr(invoice, "exportation", "") or "01")
    root.set("MetodoPago", invoice.payment_method)
    root.set("LugarExpedicion", postal_code)

    related_uuids = list(getattr(invoice, "related_uuids", None) or [])
    if related_uuids:
        relacionados = etree.SubElement(root, _cfdi("CfdiRelacionados"))
        relacionados.set("TipoRelacion", _require(getattr(invoice, "relation_type", ""), "relation_type"))
        for related_uuid in related_uuids:
            etree.SubElement(relacionados, _cfdi("CfdiRelacionado")).set("UUID", str(related_uuid).upper())

    _issuer_block(root, business)
    _receiver_block(root, customer, cfdi_use=invoice.cfdi_use)

    conceptos = etree.SubElement(root, _cfdi("Conceptos"))
    taxable_base = Decimal("0")
    for index, item in enumerate(items):
        amount = Decimal(item.amount)
        discount = Decimal(item.discount or 0)
        concepto = etree.SubElement(conceptos, _cfdi("Concepto"))
        _set_attributes(
            concepto,
            [
                ("ClaveProdServ", _require(item.product_key, f"concepts.{index}.product_key")),
                ("Cantidad", format_quantity(item.quantity)),
                ("ClaveUnidad", _require(item.unit_key, f"concepts.{index}.unit_key")),
                ("Descripcion", _require(item.description, f"concepts.{index}.description")),
                ("ValorUnitario", format_unit_price(item.unit_price)),
                ("Importe", format_money(amount + discount)),
                ("Descuento", format_money(discount) if discount > 0 else None),
                ("ObjetoImp", getattr(item, "tax_object", "") or "02"),
            ],
        )
        impuestos = etree.SubElement(concepto, _cfdi("Impuestos"))
        traslados = etree.SubElement(impuestos, _cfdi("Traslados"))
        _set_attributes(
            etree.SubElement(traslados, _cfdi("Traslado")),
            [
                ("Base", format_money(amount)),
                ("Impuesto", VAT_TAX_CODE),
                ("TipoFactor", "Tasa"),
                ("TasaOCuota", VAT_RATE_CODE),
                ("Importe", format_money(item.tax_amount)),
            ],
        )
        taxable_base += amount

    resumen = etree.SubElement(root, _cfdi("Impuestos"))
    resumen.set("TotalImpuestosTrasladados", format_money(invoice.tax_total))
    traslados = etree.SubElement(resumen, _cfdi("Traslados"))
    _set_attributes(
        etree.SubElement(traslados, _cfdi("Traslado")),
        [
            ("Base", format_money(taxable_base)),
            ("Impuesto", VAT_TAX_CODE),
            ("TipoFactor", "Tasa"),
            ("TasaOCuota", VAT_RATE_CODE),
            ("Importe", format_money(invoice.tax_total)),
        ],
    )
    return _serialize(root)


def build_payment_xml(payment, related_documents: Iterable, customer, business) -> str:
    """
    Assemble the unsigned payment complement (TipoDeComprobante "P", Pagos 2.0).

    `related_documents` expose `invoice`, `partiality_number`,
    `previous_balance`, `amount_paid` and `outstanding_balance`; every invoice
    must already carry its fiscal UUID.
    """
    related_documents = list(related_documents)
    postal_code = _require(getattr(business, "postal_code", None), "issuer.postal_code")
    _require(getattr(business, "tax_regime", None), "issuer.tax_regime")
    _require(getattr(customer, "tax_regime", None), "receiver.tax_regime")
    _require(getattr(customer, "postal_code", None), "receiver.postal_code")
    if not related_documents:
        raise ValidationError("at least one related document is required", field="related_documents")

    root = etree.Element(
        _cfdi("Comprobante"),
        nsmap={"cfdi": CFDI_NS, "xsi": XSI_NS, "pago20": PAGO20_NS},
    )
    root.set(f"{{{XSI_NS}}}schemaLocation", f"{CFDI_SCHEMA_LOCATION} {PAGO20_SCHEMA_LOCATION}")
    root.set("Version", CFDI_VERSION)
    root.set("Serie", str(payment.series))
    root.set("Folio", str(payment.folio))
    root.set("Fecha", format_cfdi_datetime(payment.issue_date))
    root.set("Sello", "")
    root.set("NoCertificado", getattr(business, "certificate_number", "") or "")
    root.set("Certificado", "")
    root.set("SubTotal", "0")
    root.set("Moneda", "XXX")
    root.set("Total", "0")
    root.set("TipoDeComprobante", "P")
    root.set("Exportacion", "01")
    root.set("LugarExpedicion", postal_code)

    _issuer_block(root, business)
    _receiver_block(root, customer, cfdi_use=PAYMENT_CFDI_USE)

    conceptos = etree.SubElement(root, _cfdi("Conceptos"))
    _set_attributes(
        etree.SubElement(conceptos, _cfdi("Concepto")),
        [
            ("ClaveProdServ", PAYMENT_PRODUCT_KEY),
            ("Cantidad", "1"),
            ("ClaveUnidad", PAYMENT_UNIT_KEY),
            ("Descripcion", "Pago"),
            ("ValorUnitario", "0"),
            ("Importe", "0"),
            ("ObjetoImp", "01"),
        ],
    )

    complemento = etree.SubElement(root, _cfdi("Complemento"))
    pagos = etree.SubElement(complemento, _pago("Pagos"))
    pagos.set("Version", PAYMENTS_VERSION)
    totales = etree.SubElement(pagos, _pago("Totales"))

    pago = etree.SubElement(pagos, _pago("Pago"))
    _set_attributes(
        pago,
        [
            ("FechaPago", format_cfdi_datetime(payment.payment_date)),
            ("FormaDePagoP", _require(payment.payment_form, "payment_form")),
            ("MonedaP", payment.currency or "MXN"),
            ("TipoCambioP", "1"),
            ("Monto", format_money(payment.total_amount)),
            ("NumOperacion", getattr(payment, "operation_number", "")),
        ],
    )

    base_sum = Decimal("0")
    tax_sum = Decimal("0")
    for index, doc in enumerate(related_documents):
        invoice = doc.invoice
        base, tax = split_vat_inclusive(doc.amount_paid)
        base_sum += base
        tax_sum += tax
        docto = etree.SubElement(pago, _pago("DoctoRelacionado"))
        _set_attributes(
            docto,
            [
                ("IdDocumento", _require(invoice.fiscal_uuid, f"related_documents.{index}.fiscal_uuid").upper()),
                ("Serie", invoice.series),
                ("Folio", invoice.folio),
                ("MonedaDR", invoice.currency or "MXN"),
                ("EquivalenciaDR", "1"),
                ("NumParcialidad", doc.partiality_number),
                ("ImpSaldoAnt", format_money(doc.previous_balance)),
                ("ImpPagado", format_money(doc.amount_paid)),
                ("ImpSaldoInsoluto", format_money(doc.outstanding_balance)),
                ("ObjetoImpDR", "02"),
            ],
        )
        traslados_dr = etree.SubElement(etree.SubElement(docto, _pago("ImpuestosDR")), _pago("TrasladosDR"))
        _set_attributes(
            etree.SubElement(traslados_dr, _pago("TrasladoDR")),
            [
                ("BaseDR", format_money(base)),
                ("ImpuestoDR", VAT_TAX_CODE),
                ("TipoFactorDR", "Tasa"),
                ("TasaOCuotaDR", VAT_RATE_CODE),
                ("ImporteDR", format_money(tax)),
            ],
        )

    traslados_p = etree.SubElement(etree.SubElement(pago, _pago("ImpuestosP")), _pago("TrasladosP"))
    _set_attributes(
        etree.SubElement(traslados_p, _pago("TrasladoP")),
        [
            ("BaseP", format_money(base_sum)),
            ("ImpuestoP", VAT_TAX_CODE),
            ("TipoFactorP", "Tasa"),
            ("TasaOCuotaP", VAT_RATE_CODE),
            ("ImporteP", format_money(tax_sum)),
        ],
    )
    _set_attributes(
        totales,
        [
            ("TotalTrasladosBaseIVA16", format_money(base_sum)),
            ("TotalTrasladosImpuestoIVA16", format_money(tax_sum)),
            ("MontoTotalPagos", format_money(payment.total_amount)),
        ],
    )
    return _serialize(root)
