from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace
from zoneinfo import ZoneInfo

from django.test import SimpleTestCase
from lxml import etree

from cfdi.exceptions import ValidationError
from cfdi.services.xml_builder import (
    CFDI_NS,
    PAGO20_NS,
    build_invoice_xml,
    build_payment_xml,
    format_unit_price,
)

MX = ZoneInfo("America/Mexico_City")


def _business(**overrides):
    data = dict(rfc="EKU9003173C9", name="ESCUELA KEMPER URGATE", tax_regime="601", postal_code="64000",
                certificate_number="30001000000500003416")
    data.update(overrides)
    return SimpleNamespace(**data)


def _customer(**overrides):
    data = dict(rfc="URE180429TM6", name="UNIVERSIDAD ROBOTICA ESPAÑOLA", tax_regime="601", postal_code="86991")
    data.update(overrides)
    return SimpleNamespace(**data)


def _invoice(**overrides):
    data = dict(
        series="A", folio=7, issue_date=datetime(2024, 1, 15, 10, 30, 0, 123456, tzinfo=MX),
        payment_form="03", payment_conditions="", subtotal=Decimal("250.00"), discount_total=Decimal("0.00"),
        tax_total=Decimal("40.00"), total=Decimal("290.00"), currency="MXN", exportation="01",
        payment_method="PUE", cfdi_use="G03", relation_type="", related_uuids=[],
    )
    data.update(overrides)
    return SimpleNamespace(**data)


def _item(**overrides):
    data = dict(product_key="84111506", unit_key="E48", description="Servicio", tax_object="02",
                quantity=Decimal("1.000000"), unit_price=Decimal("250.000000"), discount=Decimal("0.00"),
                amount=Decimal("250.00"), tax_amount=Decimal("40.00"))
    data.update(overrides)
    return SimpleNamespace(**data)


class InvoiceXmlTests(SimpleTestCase):
    def test_same_input_yields_identical_bytes(self):
        first = build_invoice_xml(_invoice(), [_item()], _customer(), _business())
        second = build_invoice_xml(_invoice(), [_item()], _customer(), _business())
        self.assertEqual(first, second)

    def test_comprobante_attributes_in_fixed_order(self):
        xml = build_invoice_xml(_invoice(), [_item()], _customer(), _business())
        root = etree.fromstring(xml.encode("utf-8"))
        names = [name for name in root.attrib.keys() if not name.startswith("{")]
        self.assertEqual(
            names,
            [
                "Version", "Serie", "Folio", "Fecha", "Sello", "FormaPago", "NoCertificado", "Certificado",
                "SubTotal", "Moneda", "Total", "TipoDeComprobante", "Exportacion", "MetodoPago",
                "LugarExpedicion",
            ],
        )
        self.assertEqual(root.get("Fecha"), "2024-01-15T10:30:00")
        self.assertEqual(root.get("Total"), "290.00")

    def test_children_order_and_concept_order(self):
        items = [_item(description="Primero"), _item(description="Segundo")]
        xml = build_invoice_xml(
            _invoice(related_uuids=["abc"], relation_type="04"), items, _customer(), _business()
        )
        root = etree.fromstring(xml.encode("utf-8"))
        tags = [etree.QName(child).localname for child in root]
        self.assertEqual(tags, ["CfdiRelacionados", "Emisor", "Receptor", "Conceptos", "Impuestos"])
        descriptions = [c.get("Descripcion") for c in root.iter(f"{{{CFDI_NS}}}Concepto")]
        self.assertEqual(descriptions, ["Primero", "Segundo"])
        self.assertEqual(root.find(f"{{{CFDI_NS}}}CfdiRelacionados/{{{CFDI_NS}}}CfdiRelacionado").get("UUID"), "ABC")

    def test_discount_is_declared_on_document_and_concept(self):
        invoice = _invoice(subtotal=Decimal("200.00"), discount_total=Decimal("50.00"), tax_total=Decimal("24.00"),
                           total=Decimal("174.00"))
        item = _item(quantity=Decimal("2"), unit_price=Decimal("100"), discount=Decimal("50.00"),
                     amount=Decimal("150.00"), tax_amount=Decimal("24.00"))
        root = etree.fromstring(build_invoice_xml(invoice, [item], _customer(), _business()).encode("utf-8"))

        self.assertEqual(root.get("Descuento"), "50.00")
        concepto = root.find(f"{{{CFDI_NS}}}Conceptos/{{{CFDI_NS}}}Concepto")
        self.assertEqual(concepto.get("Importe"), "200.00")
        self.assertEqual(concepto.get("Descuento"), "50.00")
        traslado = concepto.find(f".//{{{CFDI_NS}}}Traslado")
        self.assertEqual(traslado.get("Base"), "150.00")
        self.assertEqual(traslado.get("TasaOCuota"), "0.160000")
        resumen = root.find(f"{{{CFDI_NS}}}Impuestos")
        self.assertEqual(resumen.get("TotalImpuestosTrasladados"), "24.00")

    def test_missing_issuer_data_is_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            build_invoice_xml(_invoice(), [_item()], _customer(), _business(tax_regime=""))
        self.assertEqual(ctx.exception.field, "issuer.tax_regime")

    def test_missing_receiver_postal_code_is_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            build_invoice_xml(_invoice(), [_item()], _customer(postal_code=None), _business())
        self.assertEqual(ctx.exception.field, "receiver.postal_code")

    def test_empty_concepts_are_rejected(self):
        with self.assertRaises(ValidationError):
            build_invoice_xml(_invoice(), [], _customer(), _business())

    def test_unit_price_keeps_significant_decimals(self):
        self.assertEqual(format_unit_price(Decimal("250")), "250.00")
        self.assertEqual(format_unit_price(Decimal("0.123456")), "0.123456")
        self.assertEqual(format_unit_price(Decimal("12.5")), "12.50")


class PaymentXmlTests(SimpleTestCase):
    def _related(self, **overrides):
        invoice = SimpleNamespace(fiscal_uuid="5fb2822e-396d-4725-8521-cdc4bdd20ccf", series="A", folio=1,
                                  currency="MXN")
        data = dict(invoice=invoice, partiality_number=1, previous_balance=Decimal("1000.00"),
                    amount_paid=Decimal("400.00"), outstanding_balance=Decimal("600.00"))
        data.update(overrides)
        return SimpleNamespace(**data)

    def _payment(self):
        return SimpleNamespace(
            series="P", folio=1, issue_date=datetime(2024, 2, 1, 9, 0, tzinfo=MX),
            payment_date=datetime(2024, 1, 31, 12, 0, tzinfo=MX), payment_form="03", currency="MXN",
            total_amount=Decimal("400.00"), operation_number="",
        )

    def test_payment_complement_structure(self):
        xml = build_payment_xml(self._payment(), [self._related()], _customer(), _business())
        root = etree.fromstring(xml.encode("utf-8"))

        self.assertEqual(root.get("TipoDeComprobante"), "P")
        self.assertEqual(root.find(f"{{{CFDI_NS}}}Receptor").get("UsoCFDI"), "CP01")
        docto = root.find(f".//{{{PAGO20_NS}}}DoctoRelacionado")
        self.assertEqual(docto.get("IdDocumento"), "5FB2822E-396D-4725-8521-CDC4BDD20CCF")
        self.assertEqual(docto.get("ImpSaldoAnt"), "1000.00")
        self.assertEqual(docto.get("ImpPagado"), "400.00")
        self.assertEqual(docto.get("ImpSaldoInsoluto"), "600.00")
        totales = root.find(f".//{{{PAGO20_NS}}}Totales")
        self.assertEqual(totales.get("MontoTotalPagos"), "400.00")
        self.assertEqual(totales.get("TotalTrasladosBaseIVA16"), "344.83")
        self.assertIsNone(root.find(f".//{{{PAGO20_NS}}}Pago").get("NumOperacion"))

    def test_payment_xml_is_deterministic(self):
        first = build_payment_xml(self._payment(), [self._related()], _customer(), _business())
        second = build_payment_xml(self._payment(), [self._related()], _customer(), _business())
        self.assertEqual(first, second)

    def test_related_invoice_without_uuid_is_rejected(self):
        related = self._related(invoice=SimpleNamespace(fiscal_uuid=None, series="A", folio=1, currency="MXN"))
        with self.assertRaises(ValidationError) as ctx:
            build_payment_xml(self._payment(), [related], _customer(), _business())
        self.assertEqual(ctx.exception.field, "related_documents.0.fiscal_uuid")
