from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

_UNITS = [
    "", "UN", "DOS", "TRES", "CUATRO", "CINCO", "SEIS", "SIETE", "OCHO", "NUEVE",
    "DIEZ", "ONCE", "DOCE", "TRECE", "CATORCE", "QUINCE", "DIECISÉIS", "DIECISIETE",
    "DIECIOCHO", "DIECINUEVE", "VEINTE", "VEINTIÚN", "VEINTIDÓS", "VEINTITRÉS",
    "VEINTICUATRO", "VEINTICINCO", "VEINTISÉIS", "VEINTISIETE", "VEINTIOCHO", "VEINTINUEVE",
]
_TENS = {
    3: "TREINTA", 4: "CUARENTA", 5: "CINCUENTA", 6: "SESENTA",
    7: "SETENTA", 8: "OCHENTA", 9: "NOVENTA",
}
_HUNDREDS = [
    "", "CIENTO", "DOSCIENTOS", "TRESCIENTOS", "CUATROCIENTOS", "QUINIENTOS",
    "SEISCIENTOS", "SETECIENTOS", "OCHOCIENTOS", "NOVECIENTOS",
]

CURRENCY_NAMES = {
    "MXN": ("PESO", "PESOS", "M.N."),
    "USD": ("DÓLAR", "DÓLARES", "USD"),
}


def _below_thousand(number: int) -> str:
    if number == 100:
        return "CIEN"
    hundreds, rest = divmod(number, 100)
    parts = []
    if hundreds:
        parts.append(_HUNDREDS[hundreds])
    if rest:
        if rest < 30:
            parts.append(_UNITS[rest])
        else:
            tens, units = divmod(rest, 10)
            parts.append(f"{_TENS[tens]} Y {_UNITS[units]}" if units else _TENS[tens])
    return " ".join(parts)


def integer_to_words(number: int) -> str:
    if number < 0:
        raise ValueError("number must be non-negative")
    if number == 0:
        return "CERO"

    millions, remainder = divmod(number, 1_000_000)
    thousands, units = divmod(remainder, 1000)
    parts = []
    if millions:
        parts.append("UN MILLÓN" if millions == 1 else f"{integer_to_words(millions)} MILLONES")
    if thousands:
        parts.append("MIL" if thousands == 1 else f"{_below_thousand(thousands)} MIL")
    if units:
        parts.append(_below_thousand(units))
    return " ".join(parts)


def amount_to_words(amount, currency: str = "MXN") -> str:
    """
    Spell out an amount the way Mexican invoices print it, e.g.
    290.00 -> "DOSCIENTOS NOVENTA PESOS 00/100 M.N.".
    """
    amount = Decimal(amount).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    integer_part = int(amount)
    cents = int((amount - integer_part) * 100)
    singular, plural, suffix = CURRENCY_NAMES.get(currency.upper(), (currency.upper(), currency.upper(), ""))

    words = integer_to_words(integer_part)
    if integer_part == 1:
        noun = singular
    elif integer_part >= 1_000_000 and integer_part % 1_000_000 == 0:
        noun = f"DE {plural}"
    else:
        noun = plural
    text = f"{words} {noun} {cents:02d}/100"
    return f"{text} {suffix}".strip()
