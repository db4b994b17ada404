from __future__ import annotations

import re
from datetime import date
from decimal import Decimal, InvalidOperation


def parse_decimal(value: object, label: str) -> Decimal:
    """Parse *value* into a finite Decimal.

    Raises ValueError naming *label* for anything that is not a finite number.
    """
    if isinstance(value, bool) or value is None:
        raise ValueError(f"{label} inválido: '{value}'")
    try:
        d = Decimal(str(value).strip())
        if not d.is_finite():
            raise InvalidOperation
    except InvalidOperation:
        raise ValueError(f"{label} inválido: '{value}'") from None
    return d


def validate_date(value: str) -> str:
    """Validate an ISO date string (YYYY-MM-DD).

    Returns the value unchanged if valid.
    """
    try:
        date.fromisoformat(value)
    except ValueError:
        raise ValueError(f"Fecha inválida: '{value}'. Use AAAA-MM-DD.") from None
    return value


def normalize_nit(value: str) -> str:
    """Strip separators from a NIT. NITs are 9 or 14 digits."""
    digits = re.sub(r"[\s-]", "", str(value))
    if not re.fullmatch(r"\d{9}|\d{14}", digits):
        raise ValueError(f"NIT inválido: '{value}'. Debe tener 9 o 14 dígitos.")
    return digits


def validate_nrc(value: str) -> str:
    """Validate an NRC: 1 to 8 digits, separators removed."""
    digits = re.sub(r"[\s-]", "", str(value))
    if not re.fullmatch(r"\d{1,8}", digits):
        raise ValueError(f"NRC inválido: '{value}'. Debe tener de 1 a 8 dígitos.")
    return digits


def validate_codigo_generacion(value: str) -> str:
    """Validate a generation code: upper-case UUID (36 chars)."""
    if not re.fullmatch(r"[0-9A-F]{8}-[0-9A-F]{4}-[0-9A-F]{4}-[0-9A-F]{4}-[0-9A-F]{12}", value):
        raise ValueError(f"Código de generación inválido: '{value}'")
    return value
