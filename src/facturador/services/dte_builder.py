from __future__ import annotations

import dataclasses
import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from facturador.config import SV_TZ
from facturador.models.counterpart import Address, Counterpart, RelatedDocument
from facturador.models.document import DocumentIdentifiers, FiscalDocument, Identification
from facturador.models.document_type import CONSUMER_INVOICE, IVA_CODE, DocumentTypeDefinition
from facturador.models.invalidation import (
    ERROR_IN_DOCUMENT,
    INVALIDATION_TYPES,
    INVALIDATION_VERSION,
    OTHER,
    InvalidationReason,
)
from facturador.models.issuer import Issuer
from facturador.models.line_item import LineItem, PricedLine, Summary
from facturador.services.calculator import CONTADO, price_lines, summarize
from facturador.services.exceptions import (
    InvalidDocumentError,
    MissingCounterpartField,
    MissingRelatedDocument,
)
from facturador.utils.validators import validate_date, validate_nrc

# MH accepts the issuer NIT in its 9-digit form
ISSUER_NIT_LENGTH = 9
TIPO_DOC_NIT = "36"
# A taxpayer counterpart (CCF and notes) is identified by NRC, activity and address
TAXPAYER_FIELDS = ("nrc", "cod_actividad", "desc_actividad", "direccion")


def _upper(value: str | None) -> str | None:
    return value.upper() if value else value


def _digits(value: str) -> str:
    return re.sub(r"\D", "", value)


def _normalize_issuer(issuer: Issuer) -> Issuer:
    nit = _digits(issuer.nit)
    if len(nit) > ISSUER_NIT_LENGTH:
        nit = nit[-ISSUER_NIT_LENGTH:]
    return dataclasses.replace(
        issuer,
        nit=nit,
        nrc=_digits(issuer.nrc),
        nombre=issuer.nombre.upper(),
        desc_actividad=issuer.desc_actividad.upper(),
        complemento=issuer.complemento.upper(),
        nombre_comercial=_upper(issuer.nombre_comercial),
        tipo_establecimiento=issuer.tipo_establecimiento or "01",
        departamento=issuer.departamento or "06",
        municipio=issuer.municipio or "14",
        cod_estable_mh=issuer.cod_estable_mh or "M001",
        cod_punto_venta_mh=issuer.cod_punto_venta_mh or "P001",
    )


def _normalize_counterpart(
    party: Counterpart | None,
    definition: DocumentTypeDefinition,
) -> Counterpart | None:
    if party is None:
        if definition.code == CONSUMER_INVOICE:
            return None
        raise MissingCounterpartField("receptor", definition.code)

    nrc = None
    tipo_documento = party.tipo_documento
    if definition.requires_counterpart_tax_id:
        for name in TAXPAYER_FIELDS:
            if not getattr(party, name):
                raise MissingCounterpartField(name, definition.code)
        try:
            nrc = validate_nrc(party.nrc)
        except ValueError as exc:
            raise InvalidDocumentError(str(exc)) from None
        tipo_documento = TIPO_DOC_NIT

    direccion = party.direccion
    if direccion is not None:
        direccion = Address(
            departamento=direccion.departamento or "06",
            municipio=direccion.municipio or "14",
            complemento=direccion.complemento.upper(),
        )

    return dataclasses.replace(
        party,
        num_documento=party.num_documento.replace("-", "").strip(),
        tipo_documento=tipo_documento,
        nombre=party.nombre.upper(),
        nrc=nrc,
        desc_actividad=_upper(party.desc_actividad),
        direccion=direccion,
    )


def _check_related(
    related: Sequence[RelatedDocument],
    definition: DocumentTypeDefinition,
) -> tuple[RelatedDocument, ...]:
    if not definition.requires_related_document:
        return tuple(related)
    if not related:
        raise MissingRelatedDocument(definition.code)
    for doc in related:
        if doc.tipo_documento not in definition.related_document_kinds:
            allowed = ", ".join(definition.related_document_kinds)
            raise InvalidDocumentError(
                f"DTE {definition.code}: documento relacionado tipo "
                f"'{doc.tipo_documento}' no permitido (use {allowed})"
            )
        try:
            validate_date(doc.fecha_emision)
        except ValueError as exc:
            raise InvalidDocumentError(str(exc)) from None
    return tuple(related)


@dataclass(frozen=True)
class DocumentContent:
    """Validated and priced blocks of a DTE that has no identifiers yet."""

    definition: DocumentTypeDefinition
    emisor: Issuer
    receptor: Counterpart | None
    lines: tuple[PricedLine, ...]
    resumen: Summary
    related: tuple[RelatedDocument, ...] = ()


def prepare_content(
    definition: DocumentTypeDefinition,
    issuer: Issuer,
    counterpart: Counterpart | None,
    items: Sequence[LineItem],
    payment_terms: int = CONTADO,
    *,
    related_documents: Sequence[RelatedDocument] = (),
) -> DocumentContent:
    """Run every caller-input check and price the lines.

    Anything wrong with the input raises here, so callers can reserve a
    control number only for content that will actually be issued.
    """
    if not items:
        raise InvalidDocumentError("El documento debe tener al menos una línea")

    related = _check_related(related_documents, definition)
    receptor = _normalize_counterpart(counterpart, definition)
    lines = price_lines(items, definition)
    return DocumentContent(
        definition=definition,
        emisor=_normalize_issuer(issuer),
        receptor=receptor,
        lines=tuple(lines),
        resumen=summarize(lines, payment_terms, definition),
        related=related,
    )


def assemble_document(
    content: DocumentContent,
    identifiers: DocumentIdentifiers,
    *,
    ambiente: str = "00",
    issued_at: datetime | None = None,
) -> FiscalDocument:
    local = (issued_at or datetime.now(SV_TZ)).astimezone(SV_TZ)
    identificacion = Identification(
        version=content.definition.version,
        ambiente=ambiente,
        tipo_dte=content.definition.code,
        numero_control=identifiers.numero_control,
        codigo_generacion=identifiers.codigo_generacion,
        fec_emi=local.strftime("%Y-%m-%d"),
        hor_emi=local.strftime("%H:%M:%S"),
    )
    return FiscalDocument(
        definition=content.definition,
        identificacion=identificacion,
        emisor=content.emisor,
        receptor=content.receptor,
        cuerpo_documento=content.lines,
        resumen=content.resumen,
        documento_relacionado=content.related,
    )


def build_document(
    definition: DocumentTypeDefinition,
    identifiers: DocumentIdentifiers,
    issuer: Issuer,
    counterpart: Counterpart | None,
    items: Sequence[LineItem],
    payment_terms: int = CONTADO,
    *,
    related_documents: Sequence[RelatedDocument] = (),
    ambiente: str = "00",
    issued_at: datetime | None = None,
) -> FiscalDocument:
    """Assemble an immutable DTE ready for signing.

    No side effects: identifiers come from the caller and every block is a
    normalized copy of the input.
    """
    content = prepare_content(
        definition,
        issuer,
        counterpart,
        items,
        payment_terms,
        related_documents=related_documents,
    )
    return assemble_document(content, identifiers, ambiente=ambiente, issued_at=issued_at)


def _iva_amount(resumen: dict) -> float:
    if resumen.get("totalIva") is not None:
        return float(resumen["totalIva"])
    tributos = resumen.get("tributos") or []
    return round(sum(float(t["valor"]) for t in tributos if t.get("codigo") == IVA_CODE), 2)


def _check_reason(reason: InvalidationReason, codigo_generacion: str) -> None:
    if reason.tipo_anulacion not in INVALIDATION_TYPES:
        allowed = ", ".join(str(t) for t in INVALIDATION_TYPES)
        raise InvalidDocumentError(
            f"Tipo de anulación '{reason.tipo_anulacion}' no válido (use {allowed})"
        )
    if reason.tipo_anulacion == ERROR_IN_DOCUMENT and not reason.codigo_generacion_r:
        raise InvalidDocumentError(
            "La anulación por error requiere el código de generación del DTE que lo reemplaza"
        )
    if reason.codigo_generacion_r and reason.codigo_generacion_r.upper() == codigo_generacion:
        raise InvalidDocumentError("El DTE de reemplazo no puede ser el mismo documento anulado")
    if reason.tipo_anulacion == OTHER and not reason.motivo.strip():
        raise InvalidDocumentError("La anulación tipo 3 (Otro) requiere un motivo")


def build_invalidation(
    documento: dict,
    sello_recibido: str,
    reason: InvalidationReason,
    codigo_generacion: str,
    *,
    ambiente: str = "00",
    issued_at: datetime | None = None,
) -> dict:
    """Render the anulación (version 2) for a DTE that MH already stamped.

    *documento* is the stored JSON of the annulled DTE and *codigo_generacion*
    identifies the anulación itself.
    """
    ident = documento["identificacion"]
    _check_reason(reason, ident["codigoGeneracion"])

    emisor = documento["emisor"]
    party = documento.get("receptor") or documento.get("sujetoExcluido") or {}
    local = (issued_at or datetime.now(SV_TZ)).astimezone(SV_TZ)
    return {
        "identificacion": {
            "version": INVALIDATION_VERSION,
            "ambiente": ambiente,
            "codigoGeneracion": codigo_generacion,
            "fecAnula": local.strftime("%Y-%m-%d"),
            "horAnula": local.strftime("%H:%M:%S"),
        },
        "emisor": {
            "nit": emisor["nit"],
            "nombre": emisor["nombre"],
            "tipoEstablecimiento": emisor.get("tipoEstablecimiento") or "01",
            "nomEstablecimiento": emisor.get("nombreComercial") or emisor["nombre"],
            "codEstableMH": emisor.get("codEstableMH"),
            "codEstable": emisor.get("codEstable"),
            "codPuntoVentaMH": emisor.get("codPuntoVentaMH"),
            "codPuntoVenta": emisor.get("codPuntoVenta"),
            "telefono": emisor.get("telefono"),
            "correo": emisor.get("correo"),
        },
        "documento": {
            "tipoDte": ident["tipoDte"],
            "codigoGeneracion": ident["codigoGeneracion"],
            "selloRecibido": sello_recibido,
            "numeroControl": ident["numeroControl"],
            "fecEmi": ident["fecEmi"],
            "montoIva": _iva_amount(documento.get("resumen") or {}),
            "codigoGeneracionR": _upper(reason.codigo_generacion_r),
            "tipoDocumento": party.get("tipoDocumento"),
            "numDocumento": party.get("numDocumento"),
            "nombre": party.get("nombre"),
            "telefono": party.get("telefono"),
            "correo": party.get("correo"),
        },
        "motivo": {
            "tipoAnulacion": reason.tipo_anulacion,
            "motivoAnulacion": reason.motivo.strip() or INVALIDATION_TYPES[reason.tipo_anulacion],
            "nombreResponsable": reason.nombre_responsable or emisor["nombre"],
            "tipDocResponsable": reason.tipo_doc_responsable,
            "numDocResponsable": reason.num_doc_responsable or emisor["nit"],
            "nombreSolicita": reason.nombre_solicita or emisor["nombre"],
            "tipDocSolicita": reason.tipo_doc_solicita,
            "numDocSolicita": reason.num_doc_solicita or emisor["nit"],
        },
    }
