from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP

# Buyer protection: 5% of the product price plus a fixed 70p, never below 70p.
# Shipping is excluded from the fee base; sellers receive 100% of price + shipping.
PROTECTION_FEE_BPS = 500
PROTECTION_FEE_FIXED_MINOR = 70
PROTECTION_FEE_MINIMUM_MINOR = 70

AUTO_RELEASE_DAYS = 14


def _require_minor(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer amount in minor units")
    if value < 0:
        raise ValueError(f"{name} must not be negative")
    return int(value)


def _bps_minor_half_up(amount_minor: int, bps: int) -> int:
    raw = (Decimal(int(amount_minor)) * Decimal(int(bps))) / Decimal("10000")
    return int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def protection_fee_minor(product_price_minor: int) -> int:
    price = _require_minor(product_price_minor, "product_price_minor")
    fee = _bps_minor_half_up(price, PROTECTION_FEE_BPS) + PROTECTION_FEE_FIXED_MINOR
    return max(fee, PROTECTION_FEE_MINIMUM_MINOR)


def compute_breakdown(product_price_minor: int, shipping_cost_minor: int) -> dict:
    """Quote what the buyer pays and what the seller receives, in minor units.

    This is the only place the protection fee is computed; checkout quotes and
    order creation both call it so they cannot disagree.
    """
    price = _require_minor(product_price_minor, "product_price_minor")
    shipping = _require_minor(shipping_cost_minor, "shipping_cost_minor")
    fee = protection_fee_minor(price)
    return {
        "product_price_minor": price,
        "shipping_cost_minor": shipping,
        "protection_fee_minor": fee,
        "total_buyer_pays_minor": price + shipping + fee,
        "seller_receives_minor": price + shipping,
    }


def calculate_auto_release_at(delivered_at: datetime) -> datetime:
    if delivered_at is None:
        raise ValueError("delivered_at required")
    return delivered_at + timedelta(days=AUTO_RELEASE_DAYS)


def money_minor_to_major(minor: int | None) -> float:
    try:
        parsed = Decimal(int(minor or 0))
    except Exception:
        parsed = Decimal("0")
    return float((parsed / Decimal("100")).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def format_money(minor: int | None, currency: str = "gbp") -> str:
    symbols = {"gbp": "£", "usd": "$", "eur": "€"}
    symbol = symbols.get((currency or "").strip().lower(), "")
    amount = f"{money_minor_to_major(minor):.2f}"
    if symbol:
        return f"{symbol}{amount}"
    return f"{amount} {(currency or '').upper()}".strip()
