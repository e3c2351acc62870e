from decimal import Decimal
from types import SimpleNamespace

from django.test import SimpleTestCase

from cfdi.exceptions import ValidationError
from cfdi.services.taxes import TaxCalculator, calculate_totals, split_vat_inclusive


def line(quantity="1", unit_price="0", discount="0"):
    return SimpleNamespace(quantity=Decimal(quantity), unit_price=Decimal(unit_price), discount=Decimal(discount))


class TaxCalculatorTests(SimpleTestCase):
    def test_single_line_without_discount(self):
        totals = calculate_totals([line("1", "250.00")])

        self.assertEqual(totals.subtotal, Decimal("250.00"))
        self.assertEqual(totals.discount_total, Decimal("0.00"))
        self.assertEqual(totals.tax_total, Decimal("40.00"))
        self.assertEqual(totals.total, Decimal("290.00"))

    def test_discount_reduces_taxable_base(self):
        totals = calculate_totals([line("2", "100.00", "50.00")])

        self.assertEqual(totals.subtotal, Decimal("200.00"))
        self.assertEqual(totals.discount_total, Decimal("50.00"))
        self.assertEqual(totals.taxable_base, Decimal("150.00"))
        self.assertEqual(totals.tax_total, Decimal("24.00"))
        self.assertEqual(totals.total, Decimal("174.00"))

    def test_total_matches_rounded_base_times_rate(self):
        lines = [line("3", "33.33"), line("7", "0.99", "0.50"), line("1", "1234.565")]
        totals = calculate_totals(lines)

        expected = ((totals.subtotal - totals.discount_total) * Decimal("1.16")).quantize(Decimal("0.01"))
        self.assertEqual(totals.total, expected)
        self.assertGreaterEqual(totals.total, Decimal("0"))

    def test_half_up_rounding(self):
        # 0.125 * 1 -> 0.13 (half-up), VAT 0.0208 -> 0.02
        totals = calculate_totals([line("1", "0.125")])

        self.assertEqual(totals.subtotal, Decimal("0.13"))
        self.assertEqual(totals.tax_total, Decimal("0.02"))
        self.assertEqual(totals.total, Decimal("0.15"))

    def test_line_taxes_add_up_to_document_tax(self):
        lines = [line("1", "0.03") for _ in range(5)] + [line("1", "10.00")]
        totals = calculate_totals(lines)

        self.assertEqual(sum(l.tax for l in totals.lines), totals.tax_total)
        self.assertTrue(all(l.tax >= 0 for l in totals.lines))

    def test_line_amounts_are_net_of_discount(self):
        totals = calculate_totals([line("2", "50.00", "10.00")])

        self.assertEqual(totals.lines[0].gross_amount, Decimal("100.00"))
        self.assertEqual(totals.lines[0].amount, Decimal("90.00"))

    def test_zero_priced_line_is_allowed(self):
        totals = calculate_totals([line("1", "0")])
        self.assertEqual(totals.total, Decimal("0.00"))

    def test_rejects_quantity_below_one(self):
        with self.assertRaises(ValidationError) as ctx:
            calculate_totals([line("1", "10"), line("0", "10")])
        self.assertEqual(ctx.exception.field, "concepts.1.quantity")

    def test_rejects_negative_price(self):
        with self.assertRaises(ValidationError) as ctx:
            calculate_totals([line("1", "-1")])
        self.assertEqual(ctx.exception.field, "concepts.0.unit_price")

    def test_rejects_negative_discount(self):
        with self.assertRaises(ValidationError) as ctx:
            calculate_totals([line("1", "10", "-1")])
        self.assertEqual(ctx.exception.field, "concepts.0.discount")

    def test_rejects_discount_larger_than_line(self):
        with self.assertRaises(ValidationError) as ctx:
            TaxCalculator.calculate([line("1", "10", "10.01")])
        self.assertEqual(ctx.exception.field, "concepts.0.discount")
        self.assertIn("validation failed", ctx.exception.user_message)

    def test_rejects_non_numeric_values(self):
        with self.assertRaises(ValidationError):
            calculate_totals([SimpleNamespace(quantity="abc", unit_price="1", discount=None)])

    def test_total_must_fit_money_columns(self):
        with self.assertRaises(ValidationError) as ctx:
            calculate_totals([SimpleNamespace(quantity="1000", unit_price="1000000000", discount=None)])
        self.assertEqual(ctx.exception.field, "concepts")


class VatInclusiveSplitTests(SimpleTestCase):
    def test_split_of_round_amount(self):
        self.assertEqual(split_vat_inclusive(Decimal("116.00")), (Decimal("100.00"), Decimal("16.00")))

    def test_split_of_partial_payment(self):
        base, tax = split_vat_inclusive(Decimal("400.00"))
        self.assertEqual(base, Decimal("344.83"))
        self.assertEqual(tax, Decimal("55.17"))

    def test_split_parts_add_back_to_amount(self):
        base, tax = split_vat_inclusive(Decimal("100.01"))
        self.assertEqual(base, Decimal("86.22"))
        self.assertEqual(tax, Decimal("13.79"))
        for amount in ("0.01", "1.00", "99.99", "100.01", "1234.57"):
            with self.subTest(amount=amount):
                self.assertEqual(sum(split_vat_inclusive(Decimal(amount))), Decimal(amount))
