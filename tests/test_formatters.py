from __future__ import annotations

from decimal import Decimal

import pytest

from facturador.utils.formatters import amount_in_words, format_usd


class TestFormatUsd:
    def test_simple(self):
        assert format_usd("3640") == "$3,640.00"

    def test_with_decimals(self):
        assert format_usd("3640.50") == "$3,640.50"

    def test_small(self):
        assert format_usd("5.5") == "$5.50"

    def test_zero(self):
        assert format_usd("0") == "$0.00"

    def test_decimal_input(self):
        assert format_usd(Decimal("1234567.891")) == "$1,234,567.89"


class TestAmountInWords:
    def test_one_hundred_thirteen(self):
        assert amount_in_words(Decimal("113.00")) == "CIENTO TRECE 00/100 USD"

    def test_exactly_one_hundred(self):
        assert amount_in_words("100") == "CIEN 00/100 USD"

    def test_one(self):
        assert amount_in_words("1") == "UN 00/100 USD"

    def test_zero(self):
        assert amount_in_words("0") == "CERO 00/100 USD"

    def test_cents_only(self):
        assert amount_in_words("0.05") == "CERO 05/100 USD"

    def test_tens_joined_with_y(self):
        assert amount_in_words("21") == "VEINTE Y UNO 00/100 USD"

    def test_teens(self):
        assert amount_in_words("15.75") == "QUINCE 75/100 USD"

    def test_round_tens(self):
        assert amount_in_words("90") == "NOVENTA 00/100 USD"

    def test_one_thousand(self):
        assert amount_in_words("1000") == "MIL 00/100 USD"

    def test_thousands_with_rest(self):
        assert amount_in_words("2345.60") == "DOS MIL TRESCIENTOS CUARENTA Y CINCO 60/100 USD"

    def test_one_million(self):
        assert amount_in_words("1000000") == "UN MILLON 00/100 USD"

    def test_millions(self):
        assert amount_in_words("2000101") == "DOS MILLONES CIENTO UNO 00/100 USD"

    def test_rounds_half_up_to_cents(self):
        assert amount_in_words("10.005") == "DIEZ 01/100 USD"

    def test_negative_raises(self):
        with pytest.raises(ValueError, match="negativo"):
            amount_in_words("-1")
