from __future__ import annotations

from decimal import Decimal

import pytest

from facturador.utils.validators import (
    normalize_nit,
    parse_decimal,
    validate_codigo_generacion,
    validate_date,
    validate_nrc,
)


class TestParseDecimal:
    def test_string(self):
        assert parse_decimal("10.50", "Precio") == Decimal("10.50")

    def test_int(self):
        assert parse_decimal(3, "Cantidad") == Decimal("3")

    def test_strips_whitespace(self):
        assert parse_decimal(" 2 ", "Cantidad") == Decimal("2")

    def test_garbage(self):
        with pytest.raises(ValueError, match="Precio inválido"):
            parse_decimal("abc", "Precio")

    def test_none(self):
        with pytest.raises(ValueError):
            parse_decimal(None, "Cantidad")

    def test_bool_rejected(self):
        with pytest.raises(ValueError):
            parse_decimal(True, "Cantidad")

    def test_nan_rejected(self):
        with pytest.raises(ValueError):
            parse_decimal("NaN", "Cantidad")

    def test_infinity_rejected(self):
        with pytest.raises(ValueError):
            parse_decimal("Infinity", "Cantidad")


class TestValidateDate:
    def test_valid(self):
        assert validate_date("2025-01-15") == "2025-01-15"

    def test_invalid_format(self):
        with pytest.raises(ValueError, match="AAAA-MM-DD"):
            validate_date("15/01/2025")

    def test_invalid_day(self):
        with pytest.raises(ValueError):
            validate_date("2025-02-30")


class TestNormalizeNit:
    def test_fourteen_digits_with_dashes(self):
        assert normalize_nit("0614-280390-112-1") == "06142803901121"

    def test_nine_digits(self):
        assert normalize_nit("123456789") == "123456789"

    def test_wrong_length(self):
        with pytest.raises(ValueError, match="NIT inválido"):
            normalize_nit("12345")


class TestValidateNrc:
    def test_strips_separator(self):
        assert validate_nrc("765432-1") == "7654321"

    def test_short(self):
        assert validate_nrc("1") == "1"

    def test_too_long(self):
        with pytest.raises(ValueError, match="NRC inválido"):
            validate_nrc("123456789")

    def test_letters(self):
        with pytest.raises(ValueError):
            validate_nrc("ABC")


class TestValidateCodigoGeneracion:
    def test_upper_uuid(self):
        code = "6F1D2C3B-4A59-4E8F-9D7C-0B1A2C3D4E5F"
        assert validate_codigo_generacion(code) == code

    def test_lower_case_rejected(self):
        with pytest.raises(ValueError):
            validate_codigo_generacion("6f1d2c3b-4a59-4e8f-9d7c-0b1a2c3d4e5f")
