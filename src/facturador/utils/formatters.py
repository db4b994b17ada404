from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

_UNITS = ["", "UNO", "DOS", "TRES", "CUATRO", "CINCO", "SEIS", "SIETE", "OCHO", "NUEVE"]
_TEENS = [
    "DIEZ", "ONCE", "DOCE", "TRECE", "CATORCE",
    "QUINCE", "DIECISEIS", "DIECISIETE", "DIECIOCHO", "DIECINUEVE",
]
_TENS = [
    "", "", "VEINTE", "TREINTA", "CUARENTA",
    "CINCUENTA", "SESENTA", "SETENTA", "OCHENTA", "NOVENTA",
]
_HUNDREDS = [
    "", "CIENTO", "DOSCIENTOS", "TRESCIENTOS", "CUATROCIENTOS",
    "QUINIENTOS", "SEISCIENTOS", "SETECIENTOS", "OCHOCIENTOS", "NOVECIENTOS",
]

_CENT = Decimal("0.01")


def format_usd(value: str | Decimal) -> str:
    """Format a numeric value as $X,XXX.XX."""
    d = Decimal(value)
    return f"${d:,.2f}"


def _group_in_words(n: int) -> str:
    """Spell out 0-999. Zero yields an empty string."""
    if n == 0:
        return ""
    if n == 100:
        return "CIEN"
    words: list[str] = []
    if n >= 100:
        words.append(_HUNDREDS[n // 100])
        n %= 100
    if 10 <= n <= 19:
        words.append(_TEENS[n - 10])
        return " ".join(words)
    if n >= 20:
        tens = _TENS[n // 10]
        n %= 10
        words.append(f"{tens} Y" if n else tens)
    if n:
        words.append(_UNITS[n])
    return " ".join(words)


def _below_million(n: int) -> str:
    if n < 1000:
        return _group_in_words(n)
    thousands, rest = divmod(n, 1000)
    text = "MIL" if thousands == 1 else f"{_group_in_words(thousands)} MIL"
    if rest:
        text += " " + _group_in_words(rest)
    return text


def _integer_in_words(n: int) -> str:
    if n == 0:
        return "CERO"
    if n == 1:
        return "UN"
    if n < 1_000_000:
        return _below_million(n)
    millions, rest = divmod(n, 1_000_000)
    text = "UN MILLON" if millions == 1 else f"{_below_million(millions)} MILLONES"
    if rest:
        text += " " + _below_million(rest)
    return text


def amount_in_words(value: str | Decimal) -> str:
    """Spell a USD amount the way MH expects in ``totalLetras``.

    >>> amount_in_words(Decimal("113.00"))
    'CIENTO TRECE 00/100 USD'
    """
    d = Decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)
    if d < 0:
        raise ValueError(f"Monto negativo: '{value}'")
    integer = int(d)
    cents = int((d - integer) * 100)
    return f"{_integer_in_words(integer)} {cents:02d}/100 USD"
