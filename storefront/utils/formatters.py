"""
Formatting helpers in Brazilian style (comma decimal, dd/mm/YYYY dates).
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from datetime import date, datetime, timezone
from typing import Union, Optional
from zoneinfo import ZoneInfo

STORE_TIMEZONE = ZoneInfo('America/Sao_Paulo')


def _to_cents(value) -> Optional[Decimal]:
    try:
        normalized = str(value).replace(",", ".")
        return Decimal(normalized).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError, TypeError):
        return None


def decimal_br(value: Union[int, float, Decimal, str, None]) -> str:
    """
    Two decimals, comma separator, no thousands grouping (spreadsheet friendly).

    Examples:
        decimal_br(Decimal('1350')) -> "1350,00"
        decimal_br(None) -> ""
    """
    if value is None or value == "":
        return ""
    num = _to_cents(value)
    if num is None:
        return ""
    return f"{num:.2f}".replace(".", ",")


def money_br(value: Union[int, float, Decimal, str, None]) -> str:
    """
    Formata um valor monetário: R$ 1.500,00

    Devolve "-" quando o valor é inválido.
    """
    if value is None or value == "":
        return "-"
    num = _to_cents(value)
    if num is None:
        return "-"

    sign = "-" if num < 0 else ""
    num = abs(num)

    integer_part, decimal_part = f"{num:.2f}".split(".")
    reversed_int = integer_part[::-1]
    groups = [reversed_int[i:i+3] for i in range(0, len(reversed_int), 3)]
    integer_formatted = '.'.join(groups)[::-1]

    return f"{sign}R$ {integer_formatted},{decimal_part}"


def to_store_time(value: datetime) -> datetime:
    """Convert to the store's local time (naive values are taken as UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(STORE_TIMEZONE)


def date_br(value: Union[date, datetime, None]) -> str:
    """DD/MM/YYYY, "-" if None."""
    if value is None:
        return "-"
    if isinstance(value, datetime):
        value = to_store_time(value).date()
    if not isinstance(value, date):
        return "-"
    return value.strftime("%d/%m/%Y")


def datetime_br(value: Union[datetime, None], with_time: bool = True) -> str:
    """
    DD/MM/YYYY HH:MM in store local time.

    Examples:
        datetime_br(datetime(2026, 1, 12, 18, 30, tzinfo=timezone.utc)) -> "12/01/2026 15:30"
    """
    if value is None or not isinstance(value, datetime):
        return "-"
    local = to_store_time(value)
    if with_time:
        return local.strftime("%d/%m/%Y %H:%M")
    return local.strftime("%d/%m/%Y")
