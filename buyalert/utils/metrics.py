"""Pure helpers turning raw on-chain figures into display numbers."""

from __future__ import annotations

import math
from typing import Any


def _to_float(value: Any) -> float:
    """Parse ``value`` as a number, returning 0.0 when it is not one."""
    if value is None:
        return 0.0
    try:
        number = float(str(value).strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return number


def scale(raw: Any, decimals: Any) -> float:
    """Return ``raw / 10**decimals``; unparseable parts count as zero."""
    exponent = int(_to_float(decimals))
    try:
        result = _to_float(raw) / 10.0**exponent
    except (OverflowError, ZeroDivisionError):
        return 0.0
    return result if math.isfinite(result) else 0.0


def tx_spend_usd(total: float, fee: float, price: float) -> float:
    """USD value of a transfer net of its fee."""
    return (total - fee) * price


def tx_total_usd(total: float, price: float) -> float:
    """USD value of a transfer before the fee is taken off."""
    return total * price


def market_cap(total_supply: float, price: float) -> float:
    return total_supply * price


def format_compact(value: float) -> str:
    """Render large figures as ``1.5M`` / ``2.50K`` and small ones to 3 dp."""
    if value > 1_000_000:
        return f"{value / 1_000_000:.1f}M"
    if value > 1_000:
        return f"{value / 1_000:.2f}K"
    return f"{value:.3f}"


def round_to(value: float, digits: int) -> float:
    """Round half away from zero to ``digits`` decimal places."""
    factor = 10.0**digits
    return math.copysign(math.floor(abs(value) * factor + 0.5), value) / factor


def emoji_repeat_count(spend_value: float, buy_step: float) -> int:
    """One emoji per full ``buy_step`` of USD spent, plus one."""
    if buy_step <= 0 or spend_value <= 0:
        return 1
    return max(1, math.floor(spend_value / buy_step) + 1)


__all__ = [
    "scale",
    "tx_spend_usd",
    "tx_total_usd",
    "market_cap",
    "format_compact",
    "round_to",
    "emoji_repeat_count",
]
