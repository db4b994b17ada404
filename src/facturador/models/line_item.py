from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from facturador.models.document_type import STANDARD_LINE_FIELDS, STANDARD_SUMMARY_FIELDS

# tipoItem catalogue (CAT-011)
GOODS = 1
SERVICE = 2
GOODS_AND_SERVICE = 3
OTHER = 4

# uniMedida catalogue (CAT-014): 59 = unidad, 99 = otra (services)
UNIT_GOODS = 59
UNIT_SERVICE = 99


def _num(value: Decimal) -> float:
    return float(value)


@dataclass(frozen=True)
class LineItem:
    """Raw line as supplied by the caller. Numbers are validated when priced."""

    descripcion: str
    cantidad: str
    precio_unitario: str
    descuento: str = "0"
    tipo_item: int = GOODS
    uni_medida: int | None = None
    codigo: str | None = None
    tributos: tuple[str, ...] | None = None

    @classmethod
    def from_dict(cls, d: dict) -> LineItem:
        """Create a LineItem from a request/YAML dict, accepting MH field aliases."""
        precio = d.get("precio_unitario", d.get("precioUnitario", d.get("precioUni")))
        descuento = d.get("descuento", d.get("montoDescu", 0))
        uni = d.get("uni_medida", d.get("uniMedida", d.get("unidadMedida")))
        tributos = d.get("tributos")
        return cls(
            descripcion=str(d.get("descripcion", "")),
            cantidad=str(d.get("cantidad")),
            precio_unitario=str(precio),
            descuento=str(descuento or 0),
            tipo_item=int(d.get("tipo_item", d.get("tipoItem", GOODS)) or GOODS),
            uni_medida=int(uni) if uni else None,
            codigo=d.get("codigo"),
            tributos=tuple(tributos) if tributos else None,
        )


@dataclass(frozen=True)
class PricedLine:
    num_item: int
    tipo_item: int
    cantidad: Decimal
    uni_medida: int
    descripcion: str
    precio_uni: Decimal
    monto_descu: Decimal
    venta_no_suj: Decimal
    venta_exenta: Decimal
    venta_gravada: Decimal
    iva_item: Decimal
    codigo: str | None = None
    tributos: tuple[str, ...] | None = None

    def to_dict(self, fields: tuple[str, ...] = STANDARD_LINE_FIELDS) -> dict:
        values = {
            "numItem": self.num_item,
            "tipoItem": self.tipo_item,
            "numeroDocumento": None,
            "cantidad": _num(self.cantidad),
            "codigo": self.codigo,
            "codTributo": None,
            "uniMedida": self.uni_medida,
            "descripcion": self.descripcion,
            "precioUni": _num(self.precio_uni),
            "montoDescu": _num(self.monto_descu),
            "ventaNoSuj": _num(self.venta_no_suj),
            "ventaExenta": _num(self.venta_exenta),
            "ventaGravada": _num(self.venta_gravada),
            "tributos": list(self.tributos) if self.tributos else None,
            "psv": 0.0,
            "noGravado": 0.0,
            "ivaItem": _num(self.iva_item),
            "compra": _num(self.venta_gravada),
        }
        return {name: values[name] for name in fields}


@dataclass(frozen=True)
class TaxBreakdown:
    codigo: str
    descripcion: str
    valor: Decimal

    def to_dict(self) -> dict:
        return {"codigo": self.codigo, "descripcion": self.descripcion, "valor": _num(self.valor)}


@dataclass(frozen=True)
class Summary:
    total_no_suj: Decimal
    total_exenta: Decimal
    total_gravada: Decimal
    sub_total_ventas: Decimal
    total_descu: Decimal
    total_iva: Decimal
    sub_total: Decimal
    rete_renta: Decimal
    monto_total_operacion: Decimal
    total_pagar: Decimal
    total_letras: str
    condicion_operacion: int
    tributos: tuple[TaxBreakdown, ...] | None = None

    def to_dict(self, fields: tuple[str, ...] = STANDARD_SUMMARY_FIELDS) -> dict:
        """Render the resumen block with the members *fields* names, in that order."""
        values = {
            "totalCompra": _num(self.sub_total_ventas),
            "descu": 0.0,
            "totalNoSuj": _num(self.total_no_suj),
            "totalExenta": _num(self.total_exenta),
            "totalGravada": _num(self.total_gravada),
            "subTotalVentas": _num(self.sub_total_ventas),
            "descuNoSuj": 0.0,
            "descuExenta": 0.0,
            "descuGravada": _num(self.total_descu),
            "porcentajeDescuento": 0.0,
            "totalDescu": _num(self.total_descu),
            "tributos": [t.to_dict() for t in self.tributos] if self.tributos else None,
            "subTotal": _num(self.sub_total),
            "ivaRete1": 0.0,
            "reteRenta": _num(self.rete_renta),
            "montoTotalOperacion": _num(self.monto_total_operacion),
            "totalNoGravado": 0.0,
            "totalPagar": _num(self.total_pagar),
            "totalLetras": self.total_letras,
            "totalIva": _num(self.total_iva),
            "saldoFavor": 0.0,
            "condicionOperacion": self.condicion_operacion,
            "pagos": None,
            "numPagoElectronico": None,
            "ivaPerci1": 0.0,
            "observaciones": None,
        }
        return {name: values[name] for name in fields}
