from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Address:
    departamento: str = "06"
    municipio: str = "14"
    complemento: str = ""

    @classmethod
    def from_dict(cls, d: dict | None) -> Address | None:
        if not d:
            return None
        return cls(
            departamento=str(d.get("departamento", "06")).zfill(2),
            municipio=str(d.get("municipio", "14")).zfill(2),
            complemento=d.get("complemento", ""),
        )


@dataclass(frozen=True)
class Counterpart:
    """Receptor (or sujeto excluido for FSE): the party receiving the DTE."""

    num_documento: str
    nombre: str
    tipo_documento: str = "36"  # 36 = NIT, 13 = DUI
    nrc: str | None = None
    cod_actividad: str | None = None
    desc_actividad: str | None = None
    direccion: Address | None = None
    telefono: str | None = None
    correo: str | None = None

    @classmethod
    def from_dict(cls, d: dict) -> Counterpart:
        """Create a Counterpart from a YAML-loaded dict."""
        nrc = d.get("nrc")
        return cls(
            num_documento=str(d["num_documento"]),
            nombre=d["nombre"],
            tipo_documento=str(d.get("tipo_documento", "36")).zfill(2),
            nrc=str(nrc) if nrc else None,
            cod_actividad=str(d["cod_actividad"]) if d.get("cod_actividad") else None,
            desc_actividad=d.get("desc_actividad"),
            direccion=Address.from_dict(d.get("direccion")),
            telefono=str(d["telefono"]) if d.get("telefono") else None,
            correo=d.get("correo"),
        )


@dataclass(frozen=True)
class RelatedDocument:
    """documentoRelacionado entry required by credit and debit notes."""

    tipo_documento: str
    numero_documento: str
    fecha_emision: str  # YYYY-MM-DD
    tipo_generacion: int = 2  # 1 = físico, 2 = electrónico

    @classmethod
    def from_dict(cls, d: dict) -> RelatedDocument:
        return cls(
            tipo_documento=str(d["tipo_documento"]).zfill(2),
            numero_documento=str(d["numero_documento"]),
            fecha_emision=str(d["fecha_emision"]),
            tipo_generacion=int(d.get("tipo_generacion", 2)),
        )

    def to_dict(self) -> dict:
        return {
            "tipoDocumento": self.tipo_documento,
            "tipoGeneracion": self.tipo_generacion,
            "numeroDocumento": self.numero_documento,
            "fechaEmision": self.fecha_emision,
        }
