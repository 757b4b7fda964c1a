from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Any, TypedDict, cast

from gasless_packer.errors import AuthorizationError, RelayerHttpError, TransientError
from gasless_packer.http_utils import get_json, post_json
from gasless_packer.models import LiveMarket, MarketRef, RelayMethod, parse_float

BYTES32_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


class MarketPayload(TypedDict, total=False):
    symbol: str
    market_identifier: str
    market_address: str
    market_id_bytes32: str
    tick_size: object
    market_status: str


class TradeParams(TypedDict, total=False):
    trader: str
    price: str
    amount: str
    isBuy: bool
    orderId: str


@dataclass(frozen=True)
class RelayerSet:
    root: str
    addresses: tuple[str, ...] = ()


@dataclass(frozen=True)
class SessionReceipt:
    session_id: str | None
    tx_hash: str | None = None
    block_number: int | None = None


@dataclass
class RelayerClient:
    base_url: str
    timeout_seconds: float = 10.0

    def _url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}{path}"

    def get_relayer_set(self) -> RelayerSet:
        payload = get_json(self._url("/api/gasless/session/relayer-set"), timeout=self.timeout_seconds)
        root = str((payload or {}).get("relayerSetRoot") or "")
        if not BYTES32_RE.match(root):
            raise AuthorizationError(f"relayer set root is not bytes32: {root!r}")
        raw_addresses = payload.get("relayerAddresses") or []
        addresses = tuple(str(x) for x in raw_addresses) if isinstance(raw_addresses, list) else ()
        return RelayerSet(root=root, addresses=addresses)

    def get_relayer_set_root(self) -> str:
        return self.get_relayer_set().root

    def get_session_nonce(self, trader: str) -> int:
        payload = get_json(
            self._url("/api/gasless/session/nonce"),
            params={"trader": trader},
            timeout=self.timeout_seconds,
        )
        raw = (payload or {}).get("nonce")
        try:
            return int(str(raw))
        except (TypeError, ValueError) as exc:
            raise TransientError(f"session nonce response missing nonce: {payload!r}") from exc

    def init_session(self, order_book: str, permit: dict[str, Any], signature: str) -> SessionReceipt:
        body = {"orderBook": order_book, "permit": permit, "signature": signature}
        try:
            payload = post_json(self._url("/api/gasless/session/init"), body, timeout=self.timeout_seconds)
        except RelayerHttpError as exc:
            if exc.is_client_error:
                raise AuthorizationError(f"session init rejected: {exc.status} {exc.body[:300]}") from exc
            raise TransientError(str(exc)) from exc
        payload = payload or {}
        block = payload.get("blockNumber")
        return SessionReceipt(
            session_id=payload.get("sessionId") or None,
            tx_hash=payload.get("txHash") or None,
            block_number=int(block) if isinstance(block, (int, str)) and str(block).isdigit() else None,
        )

    def submit_trade(
        self,
        order_book: str,
        method: RelayMethod,
        session_id: str,
        params: TradeParams,
    ) -> str | None:
        body = {
            "orderBook": order_book,
            "method": method.wire_name,
            "sessionId": session_id,
            "params": dict(params),
        }
        payload = post_json(self._url("/api/gasless/trade"), body, timeout=self.timeout_seconds)
        return (payload or {}).get("txHash") or None

    def fetch_active_markets(self, limit: int = 500) -> list[MarketRef]:
        payload = get_json(
            self._url("/api/markets"),
            params={"status": "ACTIVE", "limit": str(limit)},
            timeout=self.timeout_seconds,
        )
        if isinstance(payload, dict):
            payload = payload.get("markets") or payload.get("data") or []
        if not isinstance(payload, list):
            raise TransientError("/api/markets response must be a JSON array")
        out: list[MarketRef] = []
        for item in payload:
            if not isinstance(item, dict):
                continue
            market = cast(MarketPayload, item)
            order_book = str(market.get("market_address") or "").strip()
            if not order_book:
                continue
            out.append(
                MarketRef(
                    symbol=str(market.get("symbol") or "").strip(),
                    market_identifier=str(market.get("market_identifier") or "").strip(),
                    order_book=order_book,
                    market_id_bytes32=str(market.get("market_id_bytes32") or "").strip(),
                    tick_size=parse_float(market.get("tick_size"), 0.01) or 0.01,
                )
            )
        return out

    def fetch_live(self, symbol: str) -> LiveMarket:
        payload = get_json(
            self._url("/api/orderbook/live"),
            params={"symbol": symbol},
            timeout=self.timeout_seconds,
        )
        data = (payload or {}).get("data") or {}
        return LiveMarket(
            order_book=data.get("orderBookAddress") or None,
            best_bid=_positive(data.get("bestBid")),
            best_ask=_positive(data.get("bestAsk")),
            last_trade_price=_positive(data.get("lastTradePrice")),
            mark_price=_positive(data.get("markPrice")),
        )


def _positive(raw: object) -> float | None:
    value = parse_float(raw)
    if value is None or value <= 0:
        return None
    return value


def resolve_market(markets: list[MarketRef], term: str) -> MarketRef:
    for market in markets:
        if market.matches(term):
            return market
    needle = term.strip().lower()
    partial = [
        m
        for m in markets
        if needle and (needle in m.symbol.lower() or needle in m.market_identifier.lower())
    ]
    if len(partial) == 1:
        return partial[0]
    if not partial:
        raise LookupError(f"no active market matches {term!r}")
    names = ", ".join(m.symbol or m.market_identifier for m in partial[:10])
    raise LookupError(f"market {term!r} is ambiguous: {names}")
