from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Iterable, List

from cfdi.exceptions import ValidationError

VAT_RATE = Decimal("0.16")
VAT_RATE_CODE = "0.160000"
VAT_TAX_CODE = "002"
MONEY_QUANT = Decimal("0.01")
# Largest amount the 14-digit money columns hold.
MAX_MONEY = Decimal("999999999999.99")


def _money(value: Decimal) -> Decimal:
    return value.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def _dec(value, field: str) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValidationError("must be a number", field=field) from exc


@dataclass(frozen=True)
class LineAmounts:
    quantity: Decimal
    unit_price: Decimal
    gross_amount: Decimal
    discount: Decimal
    amount: Decimal
    tax: Decimal


@dataclass(frozen=True)
class DocumentTotals:
    subtotal: Decimal
    discount_total: Decimal
    taxable_base: Decimal
    tax_total: Decimal
    total: Decimal
    lines: tuple[LineAmounts, ...]


class TaxCalculator:
    """
    Fixed-rate VAT (IVA 16%) calculator for CFDI documents.

    Lines are anything exposing `quantity`, `unit_price` and an optional
    `discount`. All money is rounded half-up to two decimals.
    """

    rate = VAT_RATE

    @classmethod
    def calculate(cls, lines: Iterable) -> DocumentTotals:
        prepared: List[tuple[Decimal, Decimal, Decimal, Decimal]] = []
        for index, line in enumerate(lines):
            prefix = f"concepts.{index}"
            quantity = _dec(getattr(line, "quantity", None), f"{prefix}.quantity")
            unit_price = _dec(getattr(line, "unit_price", None), f"{prefix}.unit_price")
            discount = _dec(getattr(line, "discount", None), f"{prefix}.discount")

            if quantity < 1:
                raise ValidationError("quantity must be at least 1", field=f"{prefix}.quantity")
            if unit_price < 0:
                raise ValidationError("unit price cannot be negative", field=f"{prefix}.unit_price")
            if discount < 0:
                raise ValidationError("discount cannot be negative", field=f"{prefix}.discount")

            gross = _money(quantity * unit_price)
            discount = _money(discount)
            if discount > gross:
                raise ValidationError("discount exceeds the line amount", field=f"{prefix}.discount")
            prepared.append((quantity, unit_price, gross, discount))

        subtotal = _money(sum((p[2] for p in prepared), Decimal("0")))
        discount_total = _money(sum((p[3] for p in prepared), Decimal("0")))
        taxable_base = subtotal - discount_total
        if taxable_base < 0:
            raise ValidationError("taxable base cannot be negative", field="concepts")

        tax_total = _money(taxable_base * cls.rate)
        total = taxable_base + tax_total
        if total > MAX_MONEY:
            raise ValidationError(f"total exceeds {MAX_MONEY}", field="concepts")

        return DocumentTotals(
            subtotal=subtotal,
            discount_total=discount_total,
            taxable_base=taxable_base,
            tax_total=tax_total,
            total=total,
            lines=tuple(cls._allocate_line_taxes(prepared, tax_total)),
        )

    @classmethod
    def _allocate_line_taxes(cls, prepared, tax_total: Decimal) -> List[LineAmounts]:
        # Per-line taxes must add up to the document tax; the largest line
        # absorbs the rounding difference.
        line_taxes = [_money((gross - discount) * cls.rate) for _, _, gross, discount in prepared]
        difference = tax_total - sum(line_taxes, Decimal("0"))
        if difference and prepared:
            target = max(range(len(prepared)), key=lambda ix: (prepared[ix][2] - prepared[ix][3], ix))
            line_taxes[target] += difference

        return [
            LineAmounts(
                quantity=quantity,
                unit_price=unit_price,
                gross_amount=gross,
                discount=discount,
                amount=gross - discount,
                tax=tax,
            )
            for (quantity, unit_price, gross, discount), tax in zip(prepared, line_taxes)
        ]


def calculate_totals(lines: Iterable) -> DocumentTotals:
    return TaxCalculator.calculate(lines)


def split_vat_inclusive(amount: Decimal) -> tuple[Decimal, Decimal]:
    """Split a VAT-inclusive amount into (base, tax), e.g. for payment complements."""
    amount = _money(_dec(amount, "amount"))
    base = _money(amount / (Decimal("1") + VAT_RATE))
    # base + tax == amount
    return base, amount - base
