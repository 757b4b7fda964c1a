from __future__ import annotations

import math

from gasless_packer.models import AMOUNT_SCALE

BPS_DENOMINATOR = 10_000
MIN_AMOUNT18 = 10**13


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def wobble(wallet_index: int, level: int) -> float:
    return (math.sin((wallet_index + 1) * 999 + (level + 1) * 1337) + 1.0) / 2.0


def size_jitter(wallet_index: int, level: int) -> float:
    return (math.cos((wallet_index + 1) * 123 + (level + 1) * 77) + 1.0) / 2.0


def distance_ticks(wallet_index: int, level: int, min_ticks: int, max_ticks: int) -> int:
    span = max(1, max_ticks - min_ticks)
    dist = min_ticks + math.floor(wobble(wallet_index, level) * span)
    return int(clamp(dist, min_ticks, max(min_ticks, max_ticks)))


def clamp_buffer_ticks(min_ticks: int) -> int:
    return max(2, min_ticks // 4)


def floor_to_tick(price6: int, tick6: int) -> int:
    return (price6 // tick6) * tick6


def ceil_to_tick(price6: int, tick6: int) -> int:
    return -((-price6) // tick6) * tick6


def anchor_price6(
    best_bid6: int | None,
    best_ask6: int | None,
    reference_mark6: int | None,
    last_trade6: int | None,
) -> int | None:
    if best_bid6 and best_ask6:
        return (best_bid6 + best_ask6) // 2
    for candidate in (reference_mark6, last_trade6):
        if candidate and candidate > 0:
            return candidate
    return None


def pick_non_crossing_price6(
    *,
    is_buy: bool,
    anchor6: int,
    distance: int,
    tick6: int,
    best_bid6: int | None,
    best_ask6: int | None,
    buffer_ticks: int,
) -> int | None:
    """Price `distance` ticks behind the own-side touch, or None when it would cross.

    The reference is the anchor capped at the best bid for buys and floored at
    the best ask for sells, so a quote never improves its own side of the book.
    """
    if is_buy:
        reference = min(anchor6, best_bid6) if best_bid6 else anchor6
        price = floor_to_tick(reference - distance * tick6, tick6)
        if best_ask6:
            price = min(price, best_ask6 - buffer_ticks * tick6)
            if price >= best_ask6:
                return None
    else:
        reference = max(anchor6, best_ask6) if best_ask6 else anchor6
        price = ceil_to_tick(reference + distance * tick6, tick6)
        if best_bid6:
            price = max(price, best_bid6 + buffer_ticks * tick6)
            if price <= best_bid6:
                return None
    if price < tick6:
        return None
    return price


def notional6(amount18: int, price6: int) -> int:
    return (amount18 * price6) // AMOUNT_SCALE


def margin_required6(amount18: int, price6: int, margin_bps: int) -> int:
    return (notional6(amount18, price6) * margin_bps) // BPS_DENOMINATOR


def collateral_cap6(available6: int, utilization: float) -> int:
    return (max(0, available6) * round(utilization * BPS_DENOMINATOR)) // BPS_DENOMINATOR


def scale_amount_to_budget(
    amount18: int,
    price6: int,
    margin_bps: int,
    remaining6: int,
    min_amount18: int = MIN_AMOUNT18,
) -> tuple[int, int] | None:
    """Fit an order into the remaining collateral budget.

    Returns (amount18, margin6) or None when the order should be skipped.
    Oversized orders are scaled to the budget with a 10% cushion.
    """
    required = margin_required6(amount18, price6, margin_bps)
    if required <= 0 or remaining6 <= 0:
        return None
    if required <= remaining6:
        return amount18, required
    scaled = (amount18 * remaining6) // required
    amount18 = (scaled * 9) // 10
    if amount18 < min_amount18:
        return None
    required = margin_required6(amount18, price6, margin_bps)
    if required > remaining6 or required <= 0:
        return None
    return amount18, required
