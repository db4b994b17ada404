from __future__ import annotations

import dataclasses
from datetime import datetime

import pytest

from facturador.models.counterpart import Counterpart, RelatedDocument
from facturador.models.document_type import lookup
from facturador.models.line_item import LineItem
from facturador.services.calculator import CREDITO
from facturador.services.dte_builder import build_document
from facturador.services.exceptions import (
    InvalidDocumentError,
    InvalidLineInput,
    MissingCounterpartField,
    MissingRelatedDocument,
)
from tests.conftest import CODIGO, NUMERO_CONTROL

RELATED = RelatedDocument(
    tipo_documento="03",
    numero_documento="6F1D2C3B-4A59-4E8F-9D7C-0B1A2C3D4E5F",
    fecha_emision="2025-01-10",
)


class TestBuildTaxCreditInvoice:
    def test_identification(self, issuer, business, ids, one_line, issued_at):
        doc = build_document(lookup("03"), ids, issuer, business, one_line, issued_at=issued_at)
        ident = doc.to_dict()["identificacion"]
        assert ident["version"] == 3
        assert ident["ambiente"] == "00"
        assert ident["tipoDte"] == "03"
        assert ident["codigoGeneracion"] == CODIGO
        assert ident["numeroControl"] == NUMERO_CONTROL
        assert ident["fecEmi"] == "2025-01-15"
        assert ident["horEmi"] == "10:30:05"
        assert ident["tipoMoneda"] == "USD"
        assert doc.codigo_generacion == CODIGO
        assert doc.numero_control == NUMERO_CONTROL

    def test_issuer_normalized(self, issuer, business, ids, one_line, issued_at):
        doc = build_document(lookup("03"), ids, issuer, business, one_line, issued_at=issued_at)
        emisor = doc.to_dict()["emisor"]
        assert emisor["nit"] == "803901121"
        assert emisor["nombre"] == "COMERCIAL LA CEIBA S.A. DE C.V."
        assert emisor["nombreComercial"] == "LA CEIBA"
        assert emisor["codEstableMH"] == "M001"
        assert emisor["codPuntoVentaMH"] == "P001"
        assert emisor["direccion"]["complemento"] == "COL. ESCALÓN, CALLE EL MIRADOR #10"

    def test_counterpart_normalized(self, issuer, business, ids, one_line, issued_at):
        doc = build_document(lookup("03"), ids, issuer, business, one_line, issued_at=issued_at)
        receptor = doc.to_dict()["receptor"]
        assert receptor["nrc"] == "7654321"
        assert receptor["tipoDocumento"] == "36"
        assert receptor["numDocumento"] == "06140101901013"
        assert receptor["nombre"] == "DISTRIBUIDORA EL ROBLE S.A."
        assert receptor["direccion"]["departamento"] == "05"

    def test_body_and_summary(self, issuer, business, ids, one_line, issued_at):
        data = build_document(
            lookup("03"), ids, issuer, business, one_line, CREDITO, issued_at=issued_at
        ).to_dict()
        assert len(data["cuerpoDocumento"]) == 1
        assert data["cuerpoDocumento"][0]["ivaItem"] == 13.0
        assert data["cuerpoDocumento"][0]["tributos"] == ["20"]
        assert data["resumen"]["totalPagar"] == 113.0
        assert data["resumen"]["condicionOperacion"] == 2
        assert data["documentoRelacionado"] is None
        assert data["extension"] is None

    def test_missing_nrc(self, issuer, business, ids, one_line):
        no_nrc = dataclasses.replace(business, nrc=None)
        with pytest.raises(MissingCounterpartField, match="nrc") as exc_info:
            build_document(lookup("03"), ids, issuer, no_nrc, one_line)
        assert exc_info.value.field == "nrc"

    def test_malformed_nrc(self, issuer, business, ids, one_line):
        bad = dataclasses.replace(business, nrc="ABC")
        with pytest.raises(InvalidDocumentError, match="NRC inválido"):
            build_document(lookup("03"), ids, issuer, bad, one_line)

    @pytest.mark.parametrize("field", ["cod_actividad", "desc_actividad", "direccion"])
    def test_taxpayer_fields_required(self, issuer, business, ids, one_line, field):
        incomplete = dataclasses.replace(business, **{field: None})
        with pytest.raises(MissingCounterpartField) as exc_info:
            build_document(lookup("03"), ids, issuer, incomplete, one_line)
        assert exc_info.value.field == field

    def test_consumer_invoice_needs_no_activity(self, issuer, consumer, ids, one_line):
        assert consumer.cod_actividad is None
        build_document(lookup("01"), ids, issuer, consumer, one_line)

    def test_missing_counterpart(self, issuer, ids, one_line):
        with pytest.raises(MissingCounterpartField, match="receptor"):
            build_document(lookup("03"), ids, issuer, None, one_line)


class TestBuildConsumerInvoice:
    def test_anonymous_consumer_allowed(self, issuer, ids, issued_at):
        items = [LineItem(descripcion="Café", cantidad="2", precio_unitario="5.65")]
        data = build_document(lookup("01"), ids, issuer, None, items, issued_at=issued_at).to_dict()
        assert data["receptor"] is None
        assert data["resumen"]["totalPagar"] == 11.3
        assert data["resumen"]["tributos"] is None
        assert data["cuerpoDocumento"][0]["tributos"] is None

    def test_consumer_nrc_dropped(self, issuer, consumer, ids, one_line):
        data = build_document(lookup("01"), ids, issuer, consumer, one_line).to_dict()
        assert data["receptor"]["nrc"] is None
        assert data["receptor"]["tipoDocumento"] == "13"
        assert data["receptor"]["numDocumento"] == "012345678"


class TestBuildExcludedSubjectInvoice:
    def test_subject_block_and_withholding(self, issuer, consumer, ids, one_line, issued_at):
        doc = build_document(lookup("14"), ids, issuer, consumer, one_line, issued_at=issued_at)
        data = doc.to_dict()
        assert "receptor" not in data
        assert data["sujetoExcluido"]["nombre"] == "MARÍA LÓPEZ"
        assert "nombreComercial" not in data["emisor"]
        assert "tipoEstablecimiento" not in data["emisor"]
        assert data["resumen"]["reteRenta"] == 10.0
        assert data["resumen"]["totalPagar"] == 90.0

    def test_excluded_subject_layout(self, issuer, consumer, ids, issued_at):
        items = [
            LineItem(descripcion="Servicio de limpieza", cantidad="2", precio_unitario="60.00"),
            LineItem(descripcion="Materiales", cantidad="1", precio_unitario="30", descuento="10"),
        ]
        data = build_document(
            lookup("14"), ids, issuer, consumer, items, issued_at=issued_at
        ).to_dict()
        assert list(data["resumen"]) == [
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
        ]
        assert data["resumen"]["totalCompra"] == 140.0
        assert data["resumen"]["totalDescu"] == 10.0
        assert data["resumen"]["reteRenta"] == 14.0
        assert data["resumen"]["totalPagar"] == 126.0
        first, second = data["cuerpoDocumento"]
        assert first["compra"] == 120.0
        assert second["compra"] == 20.0
        assert second["montoDescu"] == 10.0
        for line in (first, second):
            assert "ventaGravada" not in line
            assert "ivaItem" not in line
            assert "tributos" not in line


class TestBuildNotes:
    def test_credit_note_requires_related(self, issuer, business, ids, one_line):
        with pytest.raises(MissingRelatedDocument, match="05"):
            build_document(lookup("05"), ids, issuer, business, one_line)

    def test_credit_note_with_related(self, issuer, business, ids, one_line, issued_at):
        data = build_document(
            lookup("05"),
            ids,
            issuer,
            business,
            one_line,
            related_documents=[RELATED],
            issued_at=issued_at,
        ).to_dict()
        assert data["documentoRelacionado"] == [
            {
                "tipoDocumento": "03",
                "tipoGeneracion": 2,
                "numeroDocumento": RELATED.numero_documento,
                "fechaEmision": "2025-01-10",
            }
        ]

    def test_credit_note_layout(self, issuer, business, ids, one_line, issued_at):
        data = build_document(
            lookup("05"),
            ids,
            issuer,
            business,
            one_line,
            related_documents=[RELATED],
            issued_at=issued_at,
        ).to_dict()
        resumen = data["resumen"]
        for dropped in (
            "totalPagar",
            "totalIva",
            "pagos",
            "numPagoElectronico",
            "porcentajeDescuento",
            "totalNoGravado",
            "saldoFavor",
        ):
            assert dropped not in resumen
        assert resumen["ivaPerci1"] == 0.0
        assert resumen["montoTotalOperacion"] == 113.0
        assert resumen["tributos"][0]["valor"] == 13.0
        line = data["cuerpoDocumento"][0]
        assert "ivaItem" not in line
        assert "psv" not in line
        assert "noGravado" not in line
        assert line["numeroDocumento"] == RELATED.numero_documento
        assert line["tributos"] == ["20"]

    def test_debit_note_keeps_standard_summary(self, issuer, business, ids, one_line):
        data = build_document(
            lookup("06"), ids, issuer, business, one_line, related_documents=[RELATED]
        ).to_dict()
        assert data["resumen"]["totalPagar"] == 113.0
        assert data["cuerpoDocumento"][0]["numeroDocumento"] == RELATED.numero_documento

    def test_related_kind_not_allowed(self, issuer, business, ids, one_line):
        wrong = dataclasses.replace(RELATED, tipo_documento="14")
        with pytest.raises(InvalidDocumentError, match="no permitido"):
            build_document(lookup("06"), ids, issuer, business, one_line, related_documents=[wrong])

    def test_related_bad_date(self, issuer, business, ids, one_line):
        wrong = dataclasses.replace(RELATED, fecha_emision="10/01/2025")
        with pytest.raises(InvalidDocumentError, match="Fecha inválida"):
            build_document(lookup("05"), ids, issuer, business, one_line, related_documents=[wrong])


class TestBuildInvalid:
    def test_no_lines(self, issuer, business, ids):
        with pytest.raises(InvalidDocumentError, match="al menos una línea"):
            build_document(lookup("03"), ids, issuer, business, [])

    def test_bad_line_propagates(self, issuer, business, ids):
        items = [
            LineItem(descripcion="ok", cantidad="1", precio_unitario="1"),
            LineItem(descripcion="bad", cantidad="x", precio_unitario="1"),
        ]
        with pytest.raises(InvalidLineInput) as exc_info:
            build_document(lookup("03"), ids, issuer, business, items)
        assert exc_info.value.index == 2

    def test_inputs_not_mutated(self, issuer, business, ids, one_line):
        build_document(lookup("03"), ids, issuer, business, one_line)
        assert business.nrc == "765432-1"
        assert issuer.nit == "06142803901121"

    def test_default_time_is_local(self, issuer, business, ids, one_line):
        doc = build_document(lookup("03"), ids, issuer, business, one_line)
        datetime.strptime(doc.identificacion.fec_emi, "%Y-%m-%d")
        datetime.strptime(doc.identificacion.hor_emi, "%H:%M:%S")


class TestCounterpartModel:
    def test_from_dict_pads_codes(self):
        party = Counterpart.from_dict(
            {
                "num_documento": 123,
                "nombre": "X",
                "tipo_documento": 13,
                "direccion": {"departamento": 6, "municipio": 1},
            }
        )
        assert party.num_documento == "123"
        assert party.tipo_documento == "13"
        assert party.direccion.departamento == "06"
        assert party.direccion.municipio == "01"
