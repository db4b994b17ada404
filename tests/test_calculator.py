from __future__ import annotations

import dataclasses
from decimal import Decimal

import pytest

from facturador.models.document_type import lookup
from facturador.models.line_item import SERVICE, LineItem
from facturador.services.calculator import (
    CONTADO,
    CREDITO,
    check_balance,
    price_line,
    price_lines,
    round2,
    summarize,
)
from facturador.services.exceptions import InvalidDocumentError, InvalidLineInput
from tests.conftest import dec

CCF = lookup("03")
FE = lookup("01")
FSE = lookup("14")
FEX = lookup("11")


def _item(qty="1", price="100.00", discount="0", **kwargs) -> LineItem:
    return LineItem(
        descripcion="Producto",
        cantidad=qty,
        precio_unitario=price,
        descuento=discount,
        **kwargs,
    )


class TestRound2:
    def test_half_up(self):
        assert round2(dec("1.005")) == dec("1.01")

    def test_below_half(self):
        assert round2(dec("1.004")) == dec("1.00")

    def test_exact(self):
        assert round2(dec("13")) == dec("13.00")


class TestPriceLine:
    def test_tax_exclusive_line(self):
        line = price_line(_item(), 1, CCF)
        assert line.venta_gravada == dec("100.00")
        assert line.iva_item == dec("13.00")
        assert line.tributos == ("20",)

    def test_tax_inclusive_line(self):
        line = price_line(_item(price="113.00"), 1, FE)
        assert line.venta_gravada == dec("113.00")
        assert line.iva_item == dec("13.00")
        assert line.tributos is None

    def test_no_vat_kind(self):
        line = price_line(_item(), 1, FEX)
        assert line.venta_gravada == dec("100.00")
        assert line.iva_item == dec("0.00")

    def test_discount_reduces_taxable_amount(self):
        line = price_line(_item(qty="2", price="50", discount="10"), 1, CCF)
        assert line.venta_gravada == dec("90.00")
        assert line.iva_item == dec("11.70")
        assert line.monto_descu == dec("10.00")

    def test_line_rounding(self):
        line = price_line(_item(qty="3", price="0.335"), 1, CCF)
        assert line.venta_gravada == dec("1.01")
        assert line.iva_item == dec("0.13")

    def test_description_upper_cased(self):
        line = price_line(
            LineItem(descripcion="Café molido", cantidad="1", precio_unitario="5"), 1, CCF
        )
        assert line.descripcion == "CAFÉ MOLIDO"

    def test_unit_defaults_by_item_type(self):
        assert price_line(_item(), 1, CCF).uni_medida == 59
        assert price_line(_item(tipo_item=SERVICE), 1, CCF).uni_medida == 99

    def test_explicit_unit_kept(self):
        assert price_line(_item(uni_medida=36), 1, CCF).uni_medida == 36

    def test_explicit_tributos_kept(self):
        line = price_line(_item(tributos=("20", "C3")), 1, CCF)
        assert line.tributos == ("20", "C3")

    def test_num_item(self):
        assert price_line(_item(), 4, CCF).num_item == 4


class TestPriceLineInvalid:
    def test_garbage_quantity(self):
        with pytest.raises(InvalidLineInput, match="Línea 2: Cantidad inválido") as exc_info:
            price_line(_item(qty="abc"), 2, CCF)
        assert exc_info.value.index == 2

    def test_zero_quantity(self):
        with pytest.raises(InvalidLineInput, match="mayor que cero"):
            price_line(_item(qty="0"), 1, CCF)

    def test_negative_price(self):
        with pytest.raises(InvalidLineInput, match="negativo"):
            price_line(_item(price="-1"), 1, CCF)

    def test_negative_discount(self):
        with pytest.raises(InvalidLineInput):
            price_line(_item(discount="-5"), 1, CCF)

    def test_discount_above_amount(self):
        with pytest.raises(InvalidLineInput, match="supera"):
            price_line(_item(discount="150"), 1, CCF)

    def test_is_invalid_document(self):
        with pytest.raises(InvalidDocumentError):
            price_line(_item(price="NaN"), 1, CCF)


class TestSummarize:
    def test_tax_credit_invoice_adds_vat(self):
        summary = summarize(price_lines([_item()], CCF), CONTADO, CCF)
        assert summary.total_gravada == dec("100.00")
        assert summary.total_iva == dec("13.00")
        assert summary.sub_total == dec("100.00")
        assert summary.monto_total_operacion == dec("113.00")
        assert summary.total_pagar == dec("113.00")
        assert summary.total_letras == "CIENTO TRECE 00/100 USD"
        assert summary.tributos is not None
        assert summary.tributos[0].codigo == "20"
        assert summary.tributos[0].valor == dec("13.00")

    def test_consumer_invoice_vat_is_informational(self):
        summary = summarize(price_lines([_item(price="113.00")], FE), CONTADO, FE)
        assert summary.total_gravada == dec("113.00")
        assert summary.total_iva == dec("13.00")
        assert summary.total_pagar == dec("113.00")
        assert summary.tributos is None

    def test_excluded_subject_withholding(self):
        summary = summarize(price_lines([_item()], FSE), CONTADO, FSE)
        assert summary.total_iva == dec("0.00")
        assert summary.rete_renta == dec("10.00")
        assert summary.total_pagar == dec("90.00")
        assert summary.total_letras == "NOVENTA 00/100 USD"

    def test_export_invoice(self):
        summary = summarize(price_lines([_item()], FEX), CONTADO, FEX)
        assert summary.total_iva == dec("0.00")
        assert summary.total_pagar == dec("100.00")

    def test_multiple_lines_sum_rounded_values(self):
        lines = price_lines([_item(qty="3", price="0.335"), _item(qty="3", price="0.335")], CCF)
        summary = summarize(lines, CONTADO, CCF)
        assert summary.total_gravada == dec("2.02")
        assert summary.total_iva == dec("0.26")
        assert summary.total_pagar == dec("2.28")

    def test_payment_terms_carried(self):
        summary = summarize(price_lines([_item()], CCF), CREDITO, CCF)
        assert summary.condicion_operacion == CREDITO
        assert summary.to_dict()["condicionOperacion"] == 2

    def test_to_dict_renders_numbers(self):
        data = summarize(price_lines([_item()], CCF), CONTADO, CCF).to_dict()
        assert data["totalPagar"] == 113.0
        assert data["tributos"] == [
            {"codigo": "20", "descripcion": "Impuesto al Valor Agregado 13%", "valor": 13.0}
        ]


class TestCheckBalance:
    def test_balanced(self):
        summary = summarize(price_lines([_item()], CCF), CONTADO, CCF)
        assert check_balance(summary) == (True, "Cálculos correctos")

    def test_subtotal_mismatch(self):
        summary = summarize(price_lines([_item()], CCF), CONTADO, CCF)
        broken = dataclasses.replace(summary, sub_total_ventas=Decimal("99.99"))
        ok, message = check_balance(broken)
        assert ok is False
        assert "subTotal" in message

    def test_total_mismatch(self):
        summary = summarize(price_lines([_item()], CCF), CONTADO, CCF)
        broken = dataclasses.replace(summary, total_pagar=Decimal("100.00"))
        ok, message = check_balance(broken)
        assert ok is False
        assert "totalPagar" in message
