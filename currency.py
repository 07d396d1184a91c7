# currency.py
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, List, NamedTuple

class Currency(NamedTuple):
    code: str
    symbol: str
    numeric: str
    name: str
    rate: float  # approximate units per 1 USD
    decimals: int = 2

# Display order used by the form and the terminal currency pages.
CURRENCIES: List[Currency] = [
    Currency("USD", "$", "840", "US Dollar", 1),
    Currency("UYU", "$U", "858", "Uruguayan Peso", 39.5),
    Currency("EUR", "€", "978", "Euro", 0.92),
    Currency("GBP", "£", "826", "British Pound", 0.79),
    Currency("JPY", "¥", "392", "Japanese Yen", 150.5, 0),
    Currency("CAD", "C$", "124", "Canadian Dollar", 1.36),
    Currency("AUD", "A$", "036", "Australian Dollar", 1.52),
    Currency("CHF", "Fr", "756", "Swiss Franc", 0.9),
    Currency("CNY", "¥", "156", "Chinese Yuan", 7.24),
    Currency("INR", "₹", "356", "Indian Rupee", 83.5),
    Currency("BRL", "R$", "986", "Brazilian Real", 5.05),
]

BY_CODE: Dict[str, Currency] = {c.code: c for c in CURRENCIES}
DEFAULT_CURRENCY = "USD"

def get_currency(code: str) -> Currency:
    """Unknown codes fall back to USD."""
    return BY_CODE.get((code or "").upper(), BY_CODE[DEFAULT_CURRENCY])

def numeric_code(code: str) -> str:
    """ISO 4217 numeric code for DE 49."""
    return get_currency(code).numeric

def convert(amount: float, from_code: str, to_code: str) -> float:
    if from_code == to_code:
        return amount
    return amount * (get_currency(to_code).rate / get_currency(from_code).rate)

def format_currency(amount, code: str = DEFAULT_CURRENCY) -> str:
    """
    Human readable amount for the history list, e.g. "$100.00", "¥1,500",
    "-R$12.30". Amounts that are not a finite number, or too large to round,
    are shown as given.
    """
    cur = get_currency(code)
    try:
        value = Decimal(str(amount))
        if not value.is_finite():
            return f"{cur.symbol}{amount}"
        value = value.quantize(Decimal(1).scaleb(-cur.decimals), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return f"{cur.symbol}{amount}"
    sign = "-" if value < 0 else ""
    return f"{sign}{cur.symbol}{abs(value):,.{cur.decimals}f}"
