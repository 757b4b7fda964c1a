from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any

CHECKPOINT_VERSION = 1
PRICE_SCALE = 10**6
AMOUNT_SCALE = 10**18
ZERO_ADDRESS = "0x" + ("00" * 20)


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def iso_now() -> str:
    return utc_now().isoformat().replace("+00:00", "Z")


def parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(value).astimezone(timezone.utc)
    except ValueError:
        return None


def later_ts(a: str | None, b: str | None) -> str | None:
    pa, pb = parse_ts(a), parse_ts(b)
    if pa is None:
        return b if pb is not None else None
    if pb is None:
        return a
    return a if pa >= pb else b


def parse_float(raw: Any, default: float | None = None) -> float | None:
    if raw is None or isinstance(raw, bool):
        return default
    if isinstance(raw, (int, float)):
        return float(raw)
    if isinstance(raw, str) and raw.strip() == "":
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        return default


def parse_int(raw: Any, default: int | None = None) -> int | None:
    if raw is None or isinstance(raw, bool):
        return default
    if isinstance(raw, int):
        return raw
    try:
        text = str(raw).strip()
        if text.lower().startswith("0x"):
            return int(text, 16)
        return int(Decimal(text))
    except Exception:
        return default


def _scaled(value: float | int | str, scale: int) -> int:
    return int((Decimal(str(value)) * scale).to_integral_value(rounding=ROUND_HALF_UP))


def to_price6(price: float | int | str) -> int:
    return _scaled(price, PRICE_SCALE)


def to_amount18(amount: float | int | str) -> int:
    return _scaled(amount, AMOUNT_SCALE)


def price6_to_float(price6: int) -> float:
    return float(Decimal(price6) / PRICE_SCALE)


def amount18_to_float(amount18: int) -> float:
    return float(Decimal(amount18) / AMOUNT_SCALE)


def normalize_address(address: str) -> str:
    return str(address or "").strip().lower()


class RelayMethod(str, Enum):
    PLACE_LIMIT = "place_limit"
    PLACE_MARGIN_LIMIT = "place_margin_limit"
    PLACE_MARKET = "place_market"
    PLACE_MARGIN_MARKET = "place_margin_market"
    MODIFY = "modify"
    CANCEL = "cancel"

    @property
    def wire_name(self) -> str:
        return _WIRE_NAMES[self]

    @property
    def bit(self) -> int:
        return _METHOD_BITS[self]


_WIRE_NAMES = {
    RelayMethod.PLACE_LIMIT: "sessionPlaceLimit",
    RelayMethod.PLACE_MARGIN_LIMIT: "sessionPlaceMarginLimit",
    RelayMethod.PLACE_MARKET: "sessionPlaceMarket",
    RelayMethod.PLACE_MARGIN_MARKET: "sessionPlaceMarginMarket",
    RelayMethod.MODIFY: "sessionModifyOrder",
    RelayMethod.CANCEL: "sessionCancelOrder",
}

_METHOD_BITS = {
    RelayMethod.PLACE_LIMIT: 0,
    RelayMethod.PLACE_MARGIN_LIMIT: 1,
    RelayMethod.PLACE_MARKET: 2,
    RelayMethod.PLACE_MARGIN_MARKET: 3,
    RelayMethod.MODIFY: 4,
    RelayMethod.CANCEL: 5,
}


class ActionKind(str, Enum):
    SESSION_INIT = "SESSION_INIT"
    PLACE_LIMIT = "PLACE_LIMIT"
    PLACE_MARKET = "PLACE_MARKET"
    MODIFY_ORDER = "MODIFY_ORDER"
    CANCEL_ORDER = "CANCEL_ORDER"
    DEPOSIT_DELIVERED = "DEPOSIT_DELIVERED"
    ERROR = "ERROR"


@dataclass(frozen=True)
class Wallet:
    address: str
    private_key: str = field(repr=False)
    nickname: str = ""

    @property
    def key(self) -> str:
        return normalize_address(self.address)


@dataclass(frozen=True)
class MarketRef:
    symbol: str
    market_identifier: str
    order_book: str
    market_id_bytes32: str = ""
    tick_size: float = 0.01

    @property
    def tick6(self) -> int:
        return max(1, to_price6(self.tick_size))

    def matches(self, term: str) -> bool:
        needle = term.strip().lower()
        if not needle:
            return False
        return needle in {
            self.symbol.lower(),
            self.market_identifier.lower(),
            normalize_address(self.order_book),
        }

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "MarketRef":
        return cls(
            symbol=str(raw.get("symbol") or ""),
            market_identifier=str(raw.get("market_identifier") or ""),
            order_book=str(raw.get("order_book") or ""),
            market_id_bytes32=str(raw.get("market_id_bytes32") or ""),
            tick_size=parse_float(raw.get("tick_size"), 0.01) or 0.01,
        )


@dataclass(frozen=True)
class LiveMarket:
    order_book: str | None = None
    best_bid: float | None = None
    best_ask: float | None = None
    last_trade_price: float | None = None
    mark_price: float | None = None


@dataclass(frozen=True)
class OnChainOrder:
    order_id: int
    trader: str
    price6: int
    amount18: int
    is_buy: bool
    timestamp: int
    margin_required6: int = 0
    is_margin_order: bool = False


@dataclass(frozen=True)
class RunConfig:
    min_delay_ms: int = 250
    max_delay_ms: int = 1200
    size_min: float = 0.05
    size_max: float = 0.25
    orders_per_side_per_wallet: int = 6
    max_wallet_utilization: float = 0.20
    min_distance_ticks: int = 10
    max_distance_ticks: int = 120

    def normalized(self) -> "RunConfig":
        min_delay = max(0, int(self.min_delay_ms))
        max_delay = max(min_delay, int(self.max_delay_ms))
        size_min = self.size_min if self.size_min > 0 else 0.05
        size_max = max(size_min, self.size_max if self.size_max > 0 else 0.25)
        min_ticks = max(1, int(self.min_distance_ticks))
        return RunConfig(
            min_delay_ms=min_delay,
            max_delay_ms=max_delay,
            size_min=size_min,
            size_max=size_max,
            orders_per_side_per_wallet=max(1, int(self.orders_per_side_per_wallet)),
            max_wallet_utilization=min(0.9, max(0.02, float(self.max_wallet_utilization))),
            min_distance_ticks=min_ticks,
            max_distance_ticks=max(min_ticks, int(self.max_distance_ticks)),
        )

    def with_overrides(self, **overrides: Any) -> "RunConfig":
        values = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **values).normalized()

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> "RunConfig":
        if not isinstance(raw, dict):
            return cls()
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in raw.items() if k in known}).normalized()


@dataclass
class WalletState:
    nickname: str
    session_id: str | None = None
    session_expiry: int | None = None
    last_action_at: str | None = None

    def has_valid_session(self, now_ts: float, renew_margin_seconds: float = 60.0) -> bool:
        if not self.session_id or self.session_expiry is None:
            return False
        return now_ts + renew_margin_seconds < self.session_expiry

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "WalletState":
        return cls(
            nickname=str(raw.get("nickname") or ""),
            session_id=raw.get("session_id") or None,
            session_expiry=parse_int(raw.get("session_expiry")),
            last_action_at=raw.get("last_action_at") or None,
        )


@dataclass
class RunInfo:
    run_id: str
    started_at: str
    updated_at: str


@dataclass
class Checkpoint:
    chain_id: int
    order_book: str
    market: MarketRef
    run: RunInfo
    config: RunConfig
    wallets: dict[str, WalletState] = field(default_factory=dict)
    version: int = CHECKPOINT_VERSION

    def wallet_state(self, wallet: Wallet) -> WalletState:
        state = self.wallets.get(wallet.key)
        if state is None:
            state = WalletState(nickname=wallet.nickname)
            self.wallets[wallet.key] = state
        return state

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "chain_id": self.chain_id,
            "order_book": self.order_book,
            "market": self.market.to_dict(),
            "run": asdict(self.run),
            "config": self.config.to_dict(),
            "wallets": {addr: state.to_dict() for addr, state in self.wallets.items()},
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Checkpoint":
        if not isinstance(raw, dict) or raw.get("version") != CHECKPOINT_VERSION:
            raise ValueError("unsupported checkpoint version")
        run_raw = raw.get("run") or {}
        market_raw = raw.get("market") or {}
        wallets_raw = raw.get("wallets") or {}
        if not isinstance(run_raw, dict) or not isinstance(market_raw, dict) or not isinstance(wallets_raw, dict):
            raise ValueError("malformed checkpoint sections")
        return cls(
            version=CHECKPOINT_VERSION,
            chain_id=int(raw["chain_id"]),
            order_book=str(raw["order_book"]),
            market=MarketRef.from_dict(market_raw),
            run=RunInfo(
                run_id=str(run_raw["run_id"]),
                started_at=str(run_raw.get("started_at") or ""),
                updated_at=str(run_raw.get("updated_at") or ""),
            ),
            config=RunConfig.from_dict(raw.get("config")),
            wallets={
                normalize_address(addr): WalletState.from_dict(state)
                for addr, state in wallets_raw.items()
                if isinstance(state, dict)
            },
        )


@dataclass
class ActionJournalEntry:
    ts: str
    run_id: str
    chain_id: int
    order_book: str
    market_id: str
    trader: str
    nickname: str
    action: ActionKind
    params: dict[str, Any] = field(default_factory=dict)
    tx_hash: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["action"] = self.action.value
        return out

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "ActionJournalEntry":
        return cls(
            ts=str(raw["ts"]),
            run_id=str(raw.get("run_id") or ""),
            chain_id=int(raw.get("chain_id") or 0),
            order_book=str(raw.get("order_book") or ""),
            market_id=str(raw.get("market_id") or ""),
            trader=str(raw.get("trader") or ""),
            nickname=str(raw.get("nickname") or ""),
            action=ActionKind(raw["action"]),
            params=dict(raw.get("params") or {}),
            tx_hash=raw.get("tx_hash") or None,
            error=raw.get("error") or None,
        )
