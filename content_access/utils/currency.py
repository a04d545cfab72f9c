"""Перевод цен между основной и минимальной единицей валюты (рупии <-> пайсы)."""
from decimal import ROUND_HALF_UP, Decimal

# Валюты без дробной части у платёжных шлюзов
ZERO_DECIMAL_CURRENCIES = frozenset({"JPY", "KRW", "VND", "CLP", "PYG", "UGX"})


def _exponent(currency: str) -> int:
    return 0 if currency.upper() in ZERO_DECIMAL_CURRENCIES else 2


def to_minor_units(amount: Decimal | int | float | str, currency: str) -> int:
    """Decimal("499.50"), "INR" -> 49950."""
    value = Decimal(str(amount)) * (Decimal(10) ** _exponent(currency))
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int, currency: str) -> Decimal:
    exp = _exponent(currency)
    return (Decimal(amount) / (Decimal(10) ** exp)).quantize(Decimal(1).scaleb(-exp))
