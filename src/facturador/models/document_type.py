"""Catalogue of DTE kinds accepted by MH and the rules each one follows.

This table is the only place that knows what a kind code means. Everything
downstream consumes the resolved :class:`DocumentTypeDefinition`.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType

from facturador.services.exceptions import UnknownDocumentKind

IVA_RATE = Decimal("0.13")
IVA_CODE = "20"
IVA_LABEL = "Impuesto al Valor Agregado 13%"

RECEPTOR = "receptor"
SUJETO_EXCLUIDO = "sujeto_excluido"

CONSUMER_INVOICE = "01"

# Field order of each cuerpoDocumento line and of resumen, per schema family
STANDARD_LINE_FIELDS = (
    "numItem",
    "tipoItem",
    "numeroDocumento",
    "cantidad",
    "codigo",
    "codTributo",
    "uniMedida",
    "descripcion",
    "precioUni",
    "montoDescu",
    "ventaNoSuj",
    "ventaExenta",
    "ventaGravada",
    "tributos",
    "psv",
    "noGravado",
    "ivaItem",
)
# fe-nc-v3 lines reference the adjusted document and carry no per-line tax
CREDIT_NOTE_LINE_FIELDS = tuple(
    f for f in STANDARD_LINE_FIELDS if f not in ("psv", "noGravado", "ivaItem")
)
EXCLUDED_SUBJECT_LINE_FIELDS = (
    "numItem",
    "tipoItem",
    "cantidad",
    "codigo",
    "uniMedida",
    "descripcion",
    "precioUni",
    "montoDescu",
    "compra",
)

STANDARD_SUMMARY_FIELDS = (
    "totalNoSuj",
    "totalExenta",
    "totalGravada",
    "subTotalVentas",
    "descuNoSuj",
    "descuExenta",
    "descuGravada",
    "porcentajeDescuento",
    "totalDescu",
    "tributos",
    "subTotal",
    "ivaRete1",
    "reteRenta",
    "montoTotalOperacion",
    "totalNoGravado",
    "totalPagar",
    "totalLetras",
    "totalIva",
    "saldoFavor",
    "condicionOperacion",
    "pagos",
    "numPagoElectronico",
)
CREDIT_NOTE_SUMMARY_FIELDS = (
    "totalNoSuj",
    "totalExenta",
    "totalGravada",
    "subTotalVentas",
    "descuNoSuj",
    "descuExenta",
    "descuGravada",
    "totalDescu",
    "tributos",
    "subTotal",
    "ivaPerci1",
    "ivaRete1",
    "reteRenta",
    "montoTotalOperacion",
    "totalLetras",
    "condicionOperacion",
)
EXCLUDED_SUBJECT_SUMMARY_FIELDS = (
    "totalCompra",
    "descu",
    "totalDescu",
    "subTotal",
    "ivaRete1",
    "reteRenta",
    "totalPagar",
    "totalLetras",
    "condicionOperacion",
    "pagos",
    "observaciones",
)


@dataclass(frozen=True)
class DocumentTypeDefinition:
    code: str
    name: str
    short_name: str
    version: int
    price_includes_tax: bool
    emits_tax_breakdown: bool
    applies_vat: bool = True
    counterpart_mode: str = RECEPTOR
    requires_counterpart_tax_id: bool = False
    requires_related_document: bool = False
    withholding_rate: Decimal | None = None
    tax_code: str = IVA_CODE
    related_document_kinds: tuple[str, ...] = ()
    mandatory: bool = False  # required for MH certification
    line_fields: tuple[str, ...] = STANDARD_LINE_FIELDS
    summary_fields: tuple[str, ...] = STANDARD_SUMMARY_FIELDS

    @property
    def uses_excluded_subject(self) -> bool:
        return self.counterpart_mode == SUJETO_EXCLUIDO


_TYPES = {
    d.code: d
    for d in (
        DocumentTypeDefinition(
            code="01",
            name="Factura Electrónica",
            short_name="FE",
            version=1,
            price_includes_tax=True,
            emits_tax_breakdown=False,
            mandatory=True,
        ),
        DocumentTypeDefinition(
            code="03",
            name="Comprobante de Crédito Fiscal",
            short_name="CCF",
            version=3,
            price_includes_tax=False,
            emits_tax_breakdown=True,
            requires_counterpart_tax_id=True,
            mandatory=True,
        ),
        DocumentTypeDefinition(
            code="04",
            name="Nota de Remisión",
            short_name="NR",
            version=1,
            price_includes_tax=False,
            emits_tax_breakdown=False,
        ),
        DocumentTypeDefinition(
            code="05",
            name="Nota de Crédito",
            short_name="NC",
            version=3,
            price_includes_tax=False,
            emits_tax_breakdown=True,
            requires_counterpart_tax_id=True,
            requires_related_document=True,
            related_document_kinds=("01", "03"),
            mandatory=True,
            line_fields=CREDIT_NOTE_LINE_FIELDS,
            summary_fields=CREDIT_NOTE_SUMMARY_FIELDS,
        ),
        DocumentTypeDefinition(
            code="06",
            name="Nota de Débito",
            short_name="ND",
            version=3,
            price_includes_tax=False,
            emits_tax_breakdown=True,
            requires_counterpart_tax_id=True,
            requires_related_document=True,
            related_document_kinds=("01", "03"),
        ),
        DocumentTypeDefinition(
            code="11",
            name="Factura de Exportación",
            short_name="FEX",
            version=1,
            price_includes_tax=False,
            emits_tax_breakdown=False,
            applies_vat=False,
        ),
        DocumentTypeDefinition(
            code="14",
            name="Factura de Sujeto Excluido",
            short_name="FSE",
            version=1,
            price_includes_tax=False,
            emits_tax_breakdown=False,
            applies_vat=False,
            counterpart_mode=SUJETO_EXCLUIDO,
            withholding_rate=Decimal("0.10"),
            line_fields=EXCLUDED_SUBJECT_LINE_FIELDS,
            summary_fields=EXCLUDED_SUBJECT_SUMMARY_FIELDS,
        ),
        DocumentTypeDefinition(
            code="15",
            name="Comprobante de Donación",
            short_name="CD",
            version=1,
            price_includes_tax=False,
            emits_tax_breakdown=False,
        ),
    )
}

DOCUMENT_TYPES = MappingProxyType(_TYPES)


def lookup(code: str) -> DocumentTypeDefinition:
    """Return the definition for *code*, raising UnknownDocumentKind if absent."""
    try:
        return DOCUMENT_TYPES[code]
    except KeyError:
        raise UnknownDocumentKind(code) from None


def list_kinds() -> list[DocumentTypeDefinition]:
    return list(DOCUMENT_TYPES.values())


def mandatory_kinds() -> list[str]:
    """Codes MH requires during certification testing."""
    return [d.code for d in DOCUMENT_TYPES.values() if d.mandatory]


def resolve_price_includes_tax(code: str) -> bool:
    """Tax-inclusion mode for *code*, tolerating unknown codes.

    Unknown codes fall back to tax-inclusive only for the consumer invoice
    (01). Kept for callers that price lines before a kind is validated.
    """
    definition = DOCUMENT_TYPES.get(code)
    if definition is None:
        return code == CONSUMER_INVOICE
    return definition.price_includes_tax
