"""Line and summary amounts for a DTE, following the MH rounding rules.

All arithmetic is Decimal. Each line is rounded to cents on its own; the
summary sums the rounded line values and rounds each aggregate once more.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import ROUND_HALF_UP, Decimal

from facturador.models.document_type import IVA_LABEL, IVA_RATE, DocumentTypeDefinition
from facturador.models.line_item import (
    SERVICE,
    UNIT_GOODS,
    UNIT_SERVICE,
    LineItem,
    PricedLine,
    Summary,
    TaxBreakdown,
)
from facturador.services.exceptions import InvalidLineInput
from facturador.utils.formatters import amount_in_words
from facturador.utils.validators import parse_decimal

_CENT = Decimal("0.01")
_QTY = Decimal("0.00000001")
ZERO = Decimal("0.00")

# condicionOperacion (CAT-016)
CONTADO = 1
CREDITO = 2
OTRO = 3


def round2(value: Decimal) -> Decimal:
    """Round half up to cents (a third decimal of 5 or more rounds up)."""
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def _parse(value: object, label: str, index: int) -> Decimal:
    try:
        return parse_decimal(value, label)
    except ValueError as exc:
        raise InvalidLineInput(index, str(exc)) from None


def price_line(item: LineItem, index: int, definition: DocumentTypeDefinition) -> PricedLine:
    """Price one line. *index* is the 1-based numItem."""
    cantidad = _parse(item.cantidad, "Cantidad", index)
    precio = _parse(item.precio_unitario, "Precio unitario", index)
    descuento = _parse(item.descuento, "Descuento", index)

    if cantidad <= 0:
        raise InvalidLineInput(index, "la cantidad debe ser mayor que cero")
    if precio < 0:
        raise InvalidLineInput(index, "el precio unitario no puede ser negativo")
    if descuento < 0:
        raise InvalidLineInput(index, "el descuento no puede ser negativo")

    neto = cantidad * precio - descuento
    if neto < 0:
        raise InvalidLineInput(index, "el descuento supera el monto de la línea")
    venta_gravada = round2(neto)

    if not definition.applies_vat:
        iva = ZERO
    elif definition.price_includes_tax:
        iva = round2(neto / (1 + IVA_RATE) * IVA_RATE)
    else:
        iva = round2(neto * IVA_RATE)

    uni_medida = item.uni_medida or (UNIT_SERVICE if item.tipo_item == SERVICE else UNIT_GOODS)

    tributos = None
    if definition.emits_tax_breakdown:
        tributos = item.tributos or (definition.tax_code,)

    return PricedLine(
        num_item=index,
        tipo_item=item.tipo_item,
        cantidad=cantidad.quantize(_QTY, rounding=ROUND_HALF_UP),
        uni_medida=uni_medida,
        descripcion=item.descripcion.upper(),
        precio_uni=round2(precio),
        monto_descu=round2(descuento),
        venta_no_suj=ZERO,
        venta_exenta=ZERO,
        venta_gravada=venta_gravada,
        iva_item=iva,
        codigo=item.codigo,
        tributos=tributos,
    )


def price_lines(items: Sequence[LineItem], definition: DocumentTypeDefinition) -> list[PricedLine]:
    return [price_line(item, i, definition) for i, item in enumerate(items, start=1)]


def summarize(
    lines: Sequence[PricedLine],
    payment_terms: int,
    definition: DocumentTypeDefinition,
) -> Summary:
    """Aggregate priced lines into the ``resumen`` block."""
    total_no_suj = round2(sum((line.venta_no_suj for line in lines), ZERO))
    total_exenta = round2(sum((line.venta_exenta for line in lines), ZERO))
    total_gravada = round2(sum((line.venta_gravada for line in lines), ZERO))
    total_descu = round2(sum((line.monto_descu for line in lines), ZERO))
    total_iva = round2(sum((line.iva_item for line in lines), ZERO))

    sub_total = round2(total_no_suj + total_exenta + total_gravada)

    rete_renta = ZERO
    if definition.price_includes_tax or not definition.applies_vat:
        monto_total = sub_total
    else:
        monto_total = round2(sub_total + total_iva)
    if definition.withholding_rate is not None:
        rete_renta = round2(total_gravada * definition.withholding_rate)
        monto_total = round2(sub_total - rete_renta)

    tributos = None
    if definition.emits_tax_breakdown:
        tributos = (TaxBreakdown(codigo=definition.tax_code, descripcion=IVA_LABEL, valor=total_iva),)

    return Summary(
        total_no_suj=total_no_suj,
        total_exenta=total_exenta,
        total_gravada=total_gravada,
        sub_total_ventas=sub_total,
        total_descu=total_descu,
        total_iva=total_iva,
        sub_total=sub_total,
        rete_renta=rete_renta,
        monto_total_operacion=monto_total,
        total_pagar=monto_total,
        total_letras=amount_in_words(monto_total),
        condicion_operacion=payment_terms,
        tributos=tributos,
    )


def check_balance(summary: Summary) -> tuple[bool, str]:
    """Re-verify the summary invariants before a document leaves the process."""
    components = round2(summary.total_no_suj + summary.total_exenta + summary.total_gravada)
    if components != summary.sub_total_ventas:
        return False, f"subTotal={components} vs {summary.sub_total_ventas}"
    if summary.monto_total_operacion != summary.total_pagar:
        return False, (
            f"montoTotalOperacion={summary.monto_total_operacion} vs "
            f"totalPagar={summary.total_pagar}"
        )
    return True, "Cálculos correctos"
