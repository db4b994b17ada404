from __future__ import annotations

import uuid

from facturador.models.document import DocumentIdentifiers
from facturador.utils.sequence import next_correlativo

NUMERO_CONTROL_LENGTH = 31


def generate_codigo_generacion() -> str:
    """Random UUID4 in upper case, as MH requires."""
    return str(uuid.uuid4()).upper()


def generate_numero_control(tipo_dte: str, codigo_establecimiento: str, correlativo: int) -> str:
    """Generate the 31-character control number.

    Format: DTE-TT-EEEEEEEE-NNNNNNNNNNNNNNN
    Example: DTE-01-M001P001-000000000000001
    """
    establecimiento = codigo_establecimiento.upper()[:8].ljust(8, "0")
    numero = "-".join(
        [
            "DTE",
            tipo_dte.zfill(2),
            establecimiento,
            str(correlativo).zfill(15),
        ]
    )
    if len(numero) != NUMERO_CONTROL_LENGTH:
        raise ValueError(
            f"Número de control debe tener {NUMERO_CONTROL_LENGTH} caracteres, "
            f"tiene {len(numero)}: {numero}"
        )
    return numero


class IdentifierGenerator:
    """Hands out (codigo_generacion, numero_control) pairs backed by the persisted sequence."""

    def __init__(self, env: str = "pruebas") -> None:
        self.env = env

    def next(self, tipo_dte: str, codigo_establecimiento: str) -> DocumentIdentifiers:
        correlativo = next_correlativo(tipo_dte, self.env, codigo_establecimiento)
        return DocumentIdentifiers(
            codigo_generacion=generate_codigo_generacion(),
            numero_control=generate_numero_control(tipo_dte, codigo_establecimiento, correlativo),
        )
