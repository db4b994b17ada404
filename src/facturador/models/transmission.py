from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class TransmissionStatus(str, Enum):
    CREATED = "CREADO"
    SIGNED = "FIRMADO"
    SUBMITTED = "ENVIADO"
    ACCEPTED = "PROCESADO"
    # MH validated the structure but flagged the counterpart (codigoMsg 009)
    VALIDATED = "VALIDADO"
    REJECTED = "RECHAZADO"
    ERROR = "ERROR"
    REJECTED_FINAL = "RECHAZADO_FINAL"
    INVALIDATED = "INVALIDADO"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset(
    {
        TransmissionStatus.ACCEPTED,
        TransmissionStatus.VALIDATED,
        TransmissionStatus.REJECTED,
        TransmissionStatus.REJECTED_FINAL,
        TransmissionStatus.INVALIDATED,
    }
)


@dataclass
class TransmissionRecord:
    """Persisted transmission state of one DTE, keyed by codigo_generacion."""

    codigo_generacion: str
    numero_control: str
    tipo_dte: str
    version: int
    ambiente: str
    emisor_nit: str
    documento: dict[str, Any]
    status: TransmissionStatus = TransmissionStatus.CREATED
    documento_firmado: str | None = None
    sello_recibido: str | None = None
    fecha_procesamiento: str | None = None
    observaciones: list[str] = field(default_factory=list)
    attempts: int = 0
    last_error: str | None = None
    error_log: list[Any] = field(default_factory=list)
    receipt_unknown: bool = False
    # Stamped anulación: codigo_generacion, sello_recibido, fecha_procesamiento, motivo
    anulacion: dict[str, Any] | None = None
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> TransmissionRecord:
        data = dict(d)
        data["status"] = TransmissionStatus(data.get("status", TransmissionStatus.CREATED.value))
        return cls(**data)
