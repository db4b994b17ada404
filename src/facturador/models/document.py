from __future__ import annotations

from dataclasses import dataclass

from facturador.models.counterpart import Counterpart, RelatedDocument
from facturador.models.document_type import DocumentTypeDefinition
from facturador.models.issuer import Issuer
from facturador.models.line_item import PricedLine, Summary


@dataclass(frozen=True)
class DocumentIdentifiers:
    codigo_generacion: str
    numero_control: str


@dataclass(frozen=True)
class Identification:
    version: int
    ambiente: str  # 00 = pruebas, 01 = producción
    tipo_dte: str
    numero_control: str
    codigo_generacion: str
    fec_emi: str  # YYYY-MM-DD
    hor_emi: str  # HH:MM:SS
    tipo_moneda: str = "USD"

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "ambiente": self.ambiente,
            "tipoDte": self.tipo_dte,
            "numeroControl": self.numero_control,
            "codigoGeneracion": self.codigo_generacion,
            "tipoModelo": 1,
            "tipoOperacion": 1,
            "tipoContingencia": None,
            "motivoContin": None,
            "fecEmi": self.fec_emi,
            "horEmi": self.hor_emi,
            "tipoMoneda": self.tipo_moneda,
        }


def _issuer_block(issuer: Issuer, excluded_subject: bool) -> dict:
    block = {
        "nit": issuer.nit,
        "nrc": issuer.nrc,
        "nombre": issuer.nombre,
        "codActividad": issuer.cod_actividad,
        "descActividad": issuer.desc_actividad,
        "nombreComercial": issuer.nombre_comercial,
        "tipoEstablecimiento": issuer.tipo_establecimiento,
        "direccion": {
            "departamento": issuer.departamento,
            "municipio": issuer.municipio,
            "complemento": issuer.complemento,
        },
        "telefono": issuer.telefono,
        "correo": issuer.correo,
        "codEstableMH": issuer.cod_estable_mh,
        "codEstable": issuer.cod_estable_mh,
        "codPuntoVentaMH": issuer.cod_punto_venta_mh,
        "codPuntoVenta": issuer.cod_punto_venta_mh,
    }
    if excluded_subject:
        # fe-fse-v1 rejects both fields
        del block["nombreComercial"]
        del block["tipoEstablecimiento"]
    return block


def _counterpart_block(party: Counterpart) -> dict:
    direccion = None
    if party.direccion is not None:
        direccion = {
            "departamento": party.direccion.departamento,
            "municipio": party.direccion.municipio,
            "complemento": party.direccion.complemento,
        }
    return {
        "tipoDocumento": party.tipo_documento,
        "numDocumento": party.num_documento,
        "nrc": party.nrc,
        "nombre": party.nombre,
        "codActividad": party.cod_actividad,
        "descActividad": party.desc_actividad,
        "direccion": direccion,
        "telefono": party.telefono,
        "correo": party.correo,
    }


@dataclass(frozen=True)
class FiscalDocument:
    """Canonical DTE. Built once by the builder and never mutated afterwards."""

    definition: DocumentTypeDefinition
    identificacion: Identification
    emisor: Issuer
    receptor: Counterpart | None
    cuerpo_documento: tuple[PricedLine, ...]
    resumen: Summary
    documento_relacionado: tuple[RelatedDocument, ...] = ()

    @property
    def codigo_generacion(self) -> str:
        return self.identificacion.codigo_generacion

    @property
    def numero_control(self) -> str:
        return self.identificacion.numero_control

    def _lines(self) -> list[dict]:
        fields = self.definition.line_fields
        lines = [line.to_dict(fields) for line in self.cuerpo_documento]
        if "numeroDocumento" in fields and self.documento_relacionado:
            # Notes adjust the first related document line by line
            numero = self.documento_relacionado[0].numero_documento
            for line in lines:
                line["numeroDocumento"] = numero
        return lines

    def to_dict(self) -> dict:
        """Render the Anexo II JSON shape sent to the signer.

        Line and resumen members follow the kind's layout, so a credit note
        carries no totalPagar and an FSE reports ``compra`` per line.
        """
        excluded = self.definition.uses_excluded_subject
        doc: dict = {
            "identificacion": self.identificacion.to_dict(),
            "documentoRelacionado": (
                [r.to_dict() for r in self.documento_relacionado]
                if self.documento_relacionado
                else None
            ),
            "emisor": _issuer_block(self.emisor, excluded),
        }
        party = _counterpart_block(self.receptor) if self.receptor is not None else None
        if excluded:
            doc["sujetoExcluido"] = party
        else:
            doc["receptor"] = party
        doc.update(
            {
                "otrosDocumentos": None,
                "ventaTercero": None,
                "cuerpoDocumento": self._lines(),
                "resumen": self.resumen.to_dict(self.definition.summary_fields),
                "extension": None,
                "apendice": None,
            }
        )
        return doc
