"""
Unit tests for locale-aware amount parsing
"""

from decimal import Decimal

from src.core.amount_parser import extract_amount, find_amounts, parse_numeral


class TestParseNumeral:
    """Numerals under a comma-thousands / dot-decimal locale"""

    def test_grouped_thousands_is_integer(self):
        assert parse_numeral("5,000") == (Decimal("5000.00"), False)
        assert parse_numeral("1,234,567") == (Decimal("1234567.00"), False)

    def test_decimal_point(self):
        assert parse_numeral("1,234.56") == (Decimal("1234.56"), False)
        assert parse_numeral("99.9") == (Decimal("99.90"), False)

    def test_opposite_convention_is_ambiguous(self):
        assert parse_numeral("1.234,56") == (Decimal("1234.56"), True)
        assert parse_numeral("12,50") == (Decimal("12.50"), True)

    def test_plain_integer_is_quantized(self):
        amount, ambiguous = parse_numeral("10")
        assert amount == Decimal("10.00")
        assert str(amount) == "10.00"
        assert not ambiguous

    def test_comma_decimal_locale(self):
        assert parse_numeral("5.000", ".", ",") == (Decimal("5000.00"), False)
        assert parse_numeral("1.234,56", ".", ",") == (Decimal("1234.56"), False)


class TestFindAmounts:
    """Amount detection inside free text"""

    def test_amount_in_payment_message(self):
        match = extract_amount("Pago 5,000 a Carlos")
        assert match.amount == Decimal("5000.00")
        assert match.currency == "MXN"
        assert not match.currency_explicit

    def test_dollar_sign_uses_default_currency(self):
        match = extract_amount("Luz $1,200")
        assert match.amount == Decimal("1200.00")
        assert match.currency == "MXN"
        assert match.currency_explicit
        assert match.raw == "$1,200"

    def test_currency_suffix(self):
        assert extract_amount("son 300 dólares").currency == "USD"
        assert extract_amount("son 45 euros").currency == "EUR"
        assert extract_amount("transferí 800 pesos").currency == "MXN"

    def test_times_and_dates_are_not_amounts(self):
        assert find_amounts("Nos vemos a las 6:30") == []
        assert find_amounts("vence el 15/03/2024") == []
        assert find_amounts("llego a las 5 pm") == []
        assert find_amounts("tarda 2 horas") == []

    def test_list_index_is_skipped(self):
        amounts = find_amounts("1. Luz 850\n2. Agua 320")
        assert [match.amount for match in amounts] == [Decimal("850.00"), Decimal("320.00")]

    def test_currency_marked_amount_preferred(self):
        match = extract_amount("Mesa 4, total $560")
        assert match.amount == Decimal("560.00")

    def test_no_amount(self):
        assert extract_amount("sin números aquí") is None
