import os
from decimal import Decimal
from typing import Optional


def _format_number(value: Decimal, decimals: int) -> str:
    fmt = f"{value:.{decimals}f}"
    if "." in fmt:
        fmt = fmt.rstrip("0").rstrip(".")
    return fmt


def atomic_to_coin(amount: Optional[int]) -> Decimal:
    """Convert an amount in atomic units to whole coins."""
    if amount is None:
        return Decimal(0)
    places = int(os.getenv("RECONLIB_ATOMIC_UNITS", "12"))
    return Decimal(int(amount)).scaleb(-places)


def format_amount(amount: Optional[int], unit: Optional[str] = None) -> str:
    """Format an atomic-unit amount with human-friendly subunits (e.g., mXMR) for small values."""
    base_unit = unit or os.getenv("RECONLIB_CURRENCY_UNIT", "XMR")
    places = int(os.getenv("RECONLIB_ATOMIC_UNITS", "12"))
    value = atomic_to_coin(amount)
    abs_value = abs(value)

    if abs_value >= 1 or abs_value == 0:
        return f"{_format_number(value, places)} {base_unit}"

    units = [
        (Decimal("1e-3"), f"m{base_unit}"),
        (Decimal("1e-6"), f"μ{base_unit}"),
        (Decimal("1e-9"), f"n{base_unit}"),
    ]
    for scale, suffix in units:
        if abs_value >= scale:
            return f"{_format_number(value / scale, places)} {suffix}"

    return f"{int(amount)} atomic"
