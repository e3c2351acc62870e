from decimal import Decimal

from django.test import SimpleTestCase

from cfdi.exceptions import ValidationError
from cfdi.schemas import InvoiceIn, PaymentIn, SeriesIn, parse_request


class ParseRequestTests(SimpleTestCase):
    def _invoice(self, **overrides):
        data = {
            "customer_id": 1,
            "concepts": [{"product_key": "84111506", "description": " Servicio ", "quantity": 1, "unit_price": "250"}],
        }
        data.update(overrides)
        return data

    def test_defaults(self):
        invoice = parse_request(InvoiceIn, self._invoice())
        self.assertEqual(invoice.payment_method, "PUE")
        self.assertEqual(invoice.currency, "MXN")
        self.assertEqual(invoice.concepts[0].unit_key, "E48")
        self.assertEqual(invoice.concepts[0].description, "Servicio")
        self.assertEqual(invoice.concepts[0].unit_price, Decimal("250"))

    def test_error_reports_dotted_field(self):
        data = self._invoice(concepts=[{"product_key": "84111506", "description": "x", "quantity": 1}])
        with self.assertRaises(ValidationError) as ctx:
            parse_request(InvoiceIn, data)
        self.assertEqual(ctx.exception.field, "concepts.0.unit_price")

    def test_ppd_requires_payment_form_99(self):
        with self.assertRaises(ValidationError) as ctx:
            parse_request(InvoiceIn, self._invoice(payment_method="PPD", payment_form="03"))
        self.assertEqual(ctx.exception.message, "PPD invoices must use payment form 99")

    def test_unknown_payment_method(self):
        with self.assertRaises(ValidationError) as ctx:
            parse_request(InvoiceIn, self._invoice(payment_method="XYZ"))
        self.assertEqual(ctx.exception.field, "payment_method")

    def test_payment_needs_related_documents(self):
        with self.assertRaises(ValidationError) as ctx:
            parse_request(PaymentIn, {"customer_id": 1, "payment_date": "2024-01-01T00:00:00", "payment_form": "03",
                                      "related_documents": []})
        self.assertEqual(ctx.exception.field, "related_documents")

    def test_series_label_length(self):
        self.assertEqual(parse_request(SeriesIn, {"series": "FAC"}).initial_folio, 1)
        with self.assertRaises(ValidationError):
            parse_request(SeriesIn, {"series": "ABCDEFGHIJK"})
        with self.assertRaises(ValidationError):
            parse_request(SeriesIn, {"series": "A", "initial_folio": 0})

    def test_empty_body(self):
        with self.assertRaises(ValidationError):
            parse_request(InvoiceIn, None)

    def test_amounts_must_fit_stored_precision(self):
        cases = [
            ("quantity", "1234567890123.123456"),
            ("unit_price", "0.1234567"),
            ("discount", "1.005"),
        ]
        for name, value in cases:
            with self.subTest(field=name):
                concept = {"product_key": "84111506", "description": "x", "quantity": 1, "unit_price": "1"}
                concept[name] = value
                with self.assertRaises(ValidationError) as ctx:
                    parse_request(InvoiceIn, self._invoice(concepts=[concept]))
                self.assertEqual(ctx.exception.field, f"concepts.0.{name}")

    def test_payment_amount_precision(self):
        payload = {"customer_id": 1, "payment_date": "2024-01-01T00:00:00", "payment_form": "03",
                   "related_documents": [{"invoice_id": 1, "amount": "10.001"}]}
        with self.assertRaises(ValidationError) as ctx:
            parse_request(PaymentIn, payload)
        self.assertEqual(ctx.exception.field, "related_documents.0.amount")

        payload["related_documents"][0]["amount"] = "1000000000000.00"
        with self.assertRaises(ValidationError):
            parse_request(PaymentIn, payload)
