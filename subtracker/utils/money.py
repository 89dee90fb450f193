"""
Money formatting for reminder texts and API summaries.

Usage:
    from subtracker.utils.money import format_money

    format_money(15.99, "USD", decimals=2)  -> "15.99 $"
    format_money(1200, "UAH")               -> "1 200 ₴"
    format_money(0, "EUR")                  -> "0 €"
"""
from decimal import Decimal

_CURRENCY_SUFFIX = {
    "USD": "$",
    "EUR": "€",
    "UAH": "₴",
    "RUB": "руб.",
}


def currency_label(code: str) -> str:
    """Человекочитаемый суффикс валюты; неизвестные коды без изменений."""
    return _CURRENCY_SUFFIX.get(code, code)


def format_money(amount, currency: str = "USD", decimals: int = 0) -> str:
    """
    Отформатировать сумму с пробелами-разделителями тысяч и суффиксом валюты.

    Args:
        amount: int / float / Decimal / str
        currency: ISO-код валюты
        decimals: знаков после запятой
    """
    if isinstance(amount, str):
        amount = Decimal(amount)
    formatted = f"{{:,.{decimals}f}}".format(amount).replace(",", " ")
    return f"{formatted} {currency_label(currency)}"


def quantize_money(amount: Decimal) -> Decimal:
    """Round to cents for API output."""
    return Decimal(amount).quantize(Decimal("0.01"))
