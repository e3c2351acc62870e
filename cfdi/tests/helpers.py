import base64
import json
from decimal import Decimal

from django.contrib.auth import get_user_model
from lxml import etree

from cfdi.models import DocumentType, Series
from cfdi.services.xml_builder import CFDI_NS, TFD_NS
from core.models import Business, Customer

User = get_user_model()

FISCAL_UUID = "5FB2822E-396D-4725-8521-CDC4BDD20CCF"
STAMP_DATE = "2024-01-15T10:31:22"


def create_tenant(username="emisor", **overrides):
    user = User.objects.create_user(username=username, email=f"{username}@example.com", password="testpass123")
    fields = {
        "name": f"Comercializadora {username}",
        "owner_user": user,
        "rfc": "EKU9003173C9",
        "tax_regime": "601",
        "postal_code": "64000",
        "certificate_number": "30001000000500003416",
        "pac_user": "demo-user",
        "pac_api_key": "demo-key",
    }
    fields.update(overrides)
    business = Business.objects.create(**fields)
    return user, business


def create_customer(business, **overrides):
    fields = {
        "business": business,
        "name": "Universidad Robotica Española",
        "rfc": "URE180429TM6",
        "postal_code": "86991",
        "tax_regime": "601",
        "cfdi_use": "G03",
    }
    fields.update(overrides)
    return Customer.objects.create(**fields)


def create_series(business, label="A", document_type=DocumentType.INVOICE, last_folio=0):
    return Series.objects.create(business=business, series=label, document_type=document_type, last_folio=last_folio)


def invoice_payload(customer, *, unit_price="250.00", quantity="1", discount="0", **overrides):
    payload = {
        "customer_id": customer.pk,
        "payment_method": "PUE",
        "payment_form": "03",
        "issue_date": "2024-01-15T10:30:00",
        "concepts": [
            {
                "product_key": "84111506",
                "description": "Servicios de facturación",
                "quantity": quantity,
                "unit_price": unit_price,
                "discount": discount,
            }
        ],
    }
    payload.update(overrides)
    return payload


def stamp_xml(source_xml=None, *, fiscal_uuid=FISCAL_UUID, stamp_date=STAMP_DATE, with_uuid=True, with_date=True):
    """Return `source_xml` with a TimbreFiscalDigital complement attached, as a PAC would."""
    if source_xml:
        root = etree.fromstring(source_xml.encode("utf-8"))
    else:
        root = etree.Element(f"{{{CFDI_NS}}}Comprobante", nsmap={"cfdi": CFDI_NS})
    complemento = root.find(f"{{{CFDI_NS}}}Complemento")
    if complemento is None:
        complemento = etree.SubElement(root, f"{{{CFDI_NS}}}Complemento")
    timbre = etree.SubElement(complemento, f"{{{TFD_NS}}}TimbreFiscalDigital", nsmap={"tfd": TFD_NS})
    timbre.set("Version", "1.1")
    if with_uuid:
        timbre.set("UUID", fiscal_uuid)
    if with_date:
        timbre.set("FechaTimbrado", stamp_date)
    timbre.set("RfcProvCertif", "SPR190613I52")
    timbre.set("SelloCFD", "c2VsbG9DRkQ=" * 20)
    timbre.set("NoCertificadoSAT", "30001000000500003456")
    timbre.set("SelloSAT", "c2VsbG9TQVQ=" * 20)
    return etree.tostring(root, xml_declaration=True, encoding="UTF-8").decode("utf-8")


class StubResponse:
    def __init__(self, payload=None, status_code=200, text=None):
        self._payload = payload
        self.status_code = status_code
        self.text = text if text is not None else json.dumps(payload)

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


def pac_success(stamped_xml):
    encoded = base64.b64encode(stamped_xml.encode("utf-8")).decode("ascii")
    return StubResponse({"code": "200", "message": "Timbrado exitoso", "data": {"xml": encoded}})


def stamping_side_effect(**kwargs):
    """`requests.post` side effect that stamps whatever document it receives."""

    def _post(url, json=None, headers=None, timeout=None):
        unsigned = base64.b64decode(json["xml"]).decode("utf-8")
        return pac_success(stamp_xml(unsigned, **kwargs))

    return _post


def money(value):
    return Decimal(value).quantize(Decimal("0.01"))
