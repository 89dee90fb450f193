"""
Validation utilities for user-entered amounts
"""
import re
from decimal import Decimal, InvalidOperation


def normalize_decimal_input(value: str) -> str:
    """
    Нормализовать ввод суммы: убрать пробелы, заменить запятую на точку

    Example:
        >>> normalize_decimal_input(" 15,99 ")
        "15.99"
    """
    return value.strip().replace(",", ".")


def validate_price(value: str, max_decimal_places: int = 2) -> tuple[bool, str | None]:
    """
    Валидация цены подписки: неотрицательное конечное число

    Returns:
        (is_valid, error_message)

    Example:
        >>> validate_price("9.99")
        (True, None)
        >>> validate_price("-1")
        (False, "Цена не может быть отрицательной")
    """
    normalized = normalize_decimal_input(value)

    try:
        amount = Decimal(normalized)
    except (InvalidOperation, ValueError):
        return False, "Некорректная сумма"

    if not amount.is_finite():
        return False, "Некорректная сумма"
    if amount < 0:
        return False, "Цена не может быть отрицательной"

    pattern = rf"^\d+(\.\d{{1,{max_decimal_places}}})?$"
    if not re.match(pattern, normalized):
        return False, f"Максимум {max_decimal_places} знака после запятой"

    return True, None


def validate_and_normalize_price(value: str, max_decimal_places: int = 2) -> str:
    """
    Валидировать и нормализовать цену

    Raises:
        ValueError: если валидация не прошла
    """
    is_valid, error = validate_price(value, max_decimal_places)
    if not is_valid:
        raise ValueError(error)

    return normalize_decimal_input(value)
