import pytest

from currency import convert, format_currency, get_currency, numeric_code


def test_lookup_falls_back_to_usd():
    assert get_currency("eur").code == "EUR"
    assert get_currency("XYZ").code == "USD"
    assert numeric_code(None) == "840"


def test_convert():
    assert convert(10, "USD", "USD") == 10
    assert convert(100, "USD", "UYU") == pytest.approx(3950)


@pytest.mark.parametrize("amount, code, shown", [
    ("100.00", "USD", "$100.00"),
    ("1500", "JPY", "¥1,500"),
    ("-12.3", "BRL", "-R$12.30"),
    ("12,50", "EUR", "€12,50"),
    ("NaN", "USD", "$NaN"),
    ("Infinity", "GBP", "£Infinity"),
    ("-inf", "USD", "$-inf"),
    ("1" * 30 + ".00", "USD", "$" + "1" * 30 + ".00"),
])
def test_format_currency(amount, code, shown):
    assert format_currency(amount, code) == shown
