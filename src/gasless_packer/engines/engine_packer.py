from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar, TypeAlias, Union

from gasless_packer.models import OnChainOrder, RunConfig, to_amount18
from gasless_packer.pricing import (
    clamp_buffer_ticks,
    collateral_cap6,
    distance_ticks,
    margin_required6,
    pick_non_crossing_price6,
    scale_amount_to_budget,
    size_jitter,
)


@dataclass(frozen=True)
class Skip:
    kind: ClassVar[str] = "skip"
    reason: str
    is_buy: bool | None = None
    level: int | None = None


@dataclass(frozen=True)
class PlaceLimit:
    kind: ClassVar[str] = "place_limit"
    is_buy: bool
    price6: int
    amount18: int
    margin6: int
    level: int
    margin: bool = True


@dataclass(frozen=True)
class PlaceMarket:
    kind: ClassVar[str] = "place_market"
    is_buy: bool
    amount18: int
    margin: bool = True


@dataclass(frozen=True)
class ModifyOldest:
    kind: ClassVar[str] = "modify"
    order_id: int
    is_buy: bool
    price6: int
    amount18: int
    margin_delta6: int


@dataclass(frozen=True)
class CancelOne:
    kind: ClassVar[str] = "cancel"
    order_id: int
    is_buy: bool
    reason: str = "churn"


PackerAction: TypeAlias = Union[Skip, PlaceLimit, PlaceMarket, ModifyOldest, CancelOne]


@dataclass(frozen=True)
class MarketView:
    tick6: int
    anchor6: int | None
    best_bid6: int | None
    best_ask6: int | None
    buy_margin_bps: int
    sell_margin_bps: int = 15_000

    def margin_bps(self, is_buy: bool) -> int:
        return self.buy_margin_bps if is_buy else self.sell_margin_bps


@dataclass
class WalletPlan:
    actions: list[PackerAction] = field(default_factory=list)
    cap6: int = 0
    reserved6: int = 0
    remaining6: int = 0

    @property
    def submissions(self) -> list[PackerAction]:
        return [a for a in self.actions if not isinstance(a, Skip)]


def _oldest_first(orders: list[OnChainOrder]) -> list[OnChainOrder]:
    return sorted(orders, key=lambda o: (o.timestamp, o.order_id))


@dataclass
class PackerEngine:
    run_config: RunConfig

    def decide(
        self,
        wallet_index: int,
        open_orders: list[OnChainOrder],
        available6: int,
        market: MarketView,
    ) -> WalletPlan:
        cfg = self.run_config
        target = max(1, cfg.orders_per_side_per_wallet)
        hard_max = target * 2

        cap6 = collateral_cap6(available6, cfg.max_wallet_utilization)
        reserved6 = sum(o.margin_required6 for o in open_orders if o.is_margin_order)
        remaining6 = max(0, cap6 - reserved6)
        plan = WalletPlan(cap6=cap6, reserved6=reserved6, remaining6=remaining6)

        buys = _oldest_first([o for o in open_orders if o.is_buy])
        sells = _oldest_first([o for o in open_orders if not o.is_buy])

        # Cancels come first; released margin is not credited until the chain confirms it.
        for side_orders in (buys, sells):
            excess = len(side_orders) - hard_max
            for order in side_orders[: max(0, excess)]:
                plan.actions.append(CancelOne(order_id=order.order_id, is_buy=order.is_buy))
        buys = buys[max(0, len(buys) - hard_max):]
        sells = sells[max(0, len(sells) - hard_max):]

        if market.anchor6 is None or market.anchor6 <= 0:
            plan.actions.append(Skip(reason="no_anchor"))
            return plan

        for side_orders, is_buy in ((buys, True), (sells, False)):
            if len(side_orders) >= target:
                modify = self._modify_stale(wallet_index, side_orders[0], market, plan.remaining6)
                if modify is not None:
                    plan.actions.append(modify)
                    plan.remaining6 -= max(0, modify.margin_delta6)

        need_buys = max(0, target - len(buys))
        need_sells = max(0, target - len(sells))
        for is_buy, need in ((True, need_buys), (False, need_sells)):
            for level in range(need):
                action = self._place_one(wallet_index, level, is_buy, market, plan.remaining6)
                plan.actions.append(action)
                if isinstance(action, PlaceLimit):
                    plan.remaining6 -= action.margin6
        return plan

    def _price_for(self, wallet_index: int, level: int, is_buy: bool, market: MarketView) -> int | None:
        cfg = self.run_config
        assert market.anchor6 is not None
        return pick_non_crossing_price6(
            is_buy=is_buy,
            anchor6=market.anchor6,
            distance=distance_ticks(wallet_index, level, cfg.min_distance_ticks, cfg.max_distance_ticks),
            tick6=market.tick6,
            best_bid6=market.best_bid6,
            best_ask6=market.best_ask6,
            buffer_ticks=clamp_buffer_ticks(cfg.min_distance_ticks),
        )

    def size_for(self, wallet_index: int, level: int) -> int:
        cfg = self.run_config
        size = cfg.size_min + (cfg.size_max - cfg.size_min) * size_jitter(wallet_index, level)
        return to_amount18(round(size, 12))

    def _place_one(
        self,
        wallet_index: int,
        level: int,
        is_buy: bool,
        market: MarketView,
        remaining6: int,
    ) -> PackerAction:
        price6 = self._price_for(wallet_index, level, is_buy, market)
        if price6 is None:
            return Skip(reason="would_cross", is_buy=is_buy, level=level)
        fitted = scale_amount_to_budget(
            self.size_for(wallet_index, level),
            price6,
            market.margin_bps(is_buy),
            remaining6,
        )
        if fitted is None:
            return Skip(reason="collateral_cap", is_buy=is_buy, level=level)
        amount18, margin6 = fitted
        return PlaceLimit(
            is_buy=is_buy,
            price6=price6,
            amount18=amount18,
            margin6=margin6,
            level=level,
        )

    def _modify_stale(
        self,
        wallet_index: int,
        oldest: OnChainOrder,
        market: MarketView,
        remaining6: int,
    ) -> ModifyOldest | None:
        """Pull the oldest resting order back in when the market has drifted away from it."""
        cfg = self.run_config
        assert market.anchor6 is not None
        band6 = 2 * cfg.max_distance_ticks * market.tick6
        if abs(oldest.price6 - market.anchor6) <= band6:
            return None
        price6 = self._price_for(wallet_index, 0, oldest.is_buy, market)
        if price6 is None or price6 == oldest.price6:
            return None
        bps = market.margin_bps(oldest.is_buy)
        new_margin6 = margin_required6(oldest.amount18, price6, bps)
        old_margin6 = oldest.margin_required6 if oldest.is_margin_order else 0
        delta6 = new_margin6 - old_margin6
        if delta6 > remaining6:
            return None
        return ModifyOldest(
            order_id=oldest.order_id,
            is_buy=oldest.is_buy,
            price6=price6,
            amount18=oldest.amount18,
            margin_delta6=delta6,
        )
