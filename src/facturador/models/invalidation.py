"""Invalidación (anulación) of a DTE that MH already stamped."""

from __future__ import annotations

from dataclasses import dataclass

INVALIDATION_VERSION = 2

# Catalogue CAT-024
ERROR_IN_DOCUMENT = 1
RESCINDED = 2
OTHER = 3
INVALIDATION_TYPES = {
    ERROR_IN_DOCUMENT: "Error en la información del DTE",
    RESCINDED: "Rescindir de la operación realizada",
    OTHER: "Otro",
}


@dataclass(frozen=True)
class InvalidationReason:
    """Why a DTE is annulled and who answers for it.

    Responsible and requesting persons default to the issuer when left empty.
    A type 1 invalidation points at the DTE that replaces the annulled one.
    """

    tipo_anulacion: int
    motivo: str = ""
    codigo_generacion_r: str | None = None
    nombre_responsable: str | None = None
    tipo_doc_responsable: str = "36"
    num_doc_responsable: str | None = None
    nombre_solicita: str | None = None
    tipo_doc_solicita: str = "36"
    num_doc_solicita: str | None = None

    @classmethod
    def from_dict(cls, d: dict) -> InvalidationReason:
        return cls(
            tipo_anulacion=int(d["tipo_anulacion"]),
            motivo=d.get("motivo") or "",
            codigo_generacion_r=d.get("codigo_generacion_r"),
            nombre_responsable=d.get("nombre_responsable"),
            tipo_doc_responsable=str(d.get("tipo_doc_responsable", "36")),
            num_doc_responsable=d.get("num_doc_responsable"),
            nombre_solicita=d.get("nombre_solicita"),
            tipo_doc_solicita=str(d.get("tipo_doc_solicita", "36")),
            num_doc_solicita=d.get("num_doc_solicita"),
        )
