from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Issuer:
    """Emisor: the taxpayer issuing the DTE."""

    nit: str
    nrc: str
    nombre: str
    cod_actividad: str
    desc_actividad: str
    telefono: str
    correo: str
    complemento: str
    departamento: str = "06"
    municipio: str = "14"
    nombre_comercial: str | None = None
    tipo_establecimiento: str = "01"
    cod_estable_mh: str = "M001"
    cod_punto_venta_mh: str = "P001"

    @property
    def codigo_establecimiento(self) -> str:
        """Establishment + point-of-sale code used in the control number."""
        return self.cod_estable_mh + self.cod_punto_venta_mh

    @classmethod
    def from_dict(cls, d: dict) -> Issuer:
        """Create an Issuer from a YAML-loaded dict, applying defaults for optional fields."""
        direccion = d.get("direccion", {})
        return cls(
            nit=str(d["nit"]),
            nrc=str(d["nrc"]),
            nombre=d["nombre"],
            cod_actividad=str(d["cod_actividad"]),
            desc_actividad=d["desc_actividad"],
            telefono=str(d["telefono"]),
            correo=d["correo"],
            complemento=direccion.get("complemento", d.get("complemento", "")),
            departamento=str(direccion.get("departamento", "06")).zfill(2),
            municipio=str(direccion.get("municipio", "14")).zfill(2),
            nombre_comercial=d.get("nombre_comercial"),
            tipo_establecimiento=str(d.get("tipo_establecimiento", "01")).zfill(2),
            cod_estable_mh=d.get("cod_estable_mh") or "M001",
            cod_punto_venta_mh=d.get("cod_punto_venta_mh") or "P001",
        )


@dataclass(frozen=True)
class IssuerCredentials:
    nit: str
    api_secret: str
    private_key_password: str
