from __future__ import annotations

from decimal import Decimal


def format_decimal(value: Decimal) -> str:
    quantized = value.normalize()
    # Avoid scientific notation for integers.
    if quantized == quantized.to_integral():
        return f"{quantized:.0f}"
    return format(quantized, "f")


def format_amount(value: int, decimals: int) -> str:
    """Render integer base units as a decimal quantity of the mint."""
    return format_decimal(Decimal(value).scaleb(-decimals))


def format_share_price(value: Decimal | None) -> str:
    if value is None:
        return "n/a"
    return f"{value.quantize(Decimal('0.000001'))}"
