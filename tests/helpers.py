from __future__ import annotations

from dataclasses import replace
from pathlib import Path
import sys
from typing import Any

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from eth_account import Account  # noqa: E402

from gasless_packer.clients_chain import MarketStatic  # noqa: E402
from gasless_packer.clients_relayer import SessionReceipt  # noqa: E402
from gasless_packer.config import load_config  # noqa: E402
from gasless_packer.errors import AuthorizationError  # noqa: E402
from gasless_packer.models import (  # noqa: E402
    LiveMarket,
    MarketRef,
    OnChainOrder,
    RelayMethod,
    RunConfig,
    Wallet,
    normalize_address,
)
from gasless_packer.pricing import margin_required6  # noqa: E402

REGISTRY = "0x" + ("11" * 20)
ORDER_BOOK = "0x" + ("ab" * 20)
VAULT = "0x" + ("22" * 20)
MARKET_ID = "0x" + ("33" * 32)
RELAYER_ROOT = "0x" + ("44" * 32)


def test_config(**kwargs):
    cfg = load_config()
    base: dict[str, Any] = {
        "chain_id": 31337,
        "session_registry_address": REGISTRY,
        "rpc_url": "http://127.0.0.1:8545",
        "wallet_pause_seconds": 0.0,
        "cycle_error_backoff_seconds": 0.0,
        "nonce_retry_backoff_seconds": 0.0,
        "run": RunConfig(min_delay_ms=0, max_delay_ms=0, orders_per_side_per_wallet=2),
    }
    base.update(kwargs)
    return replace(cfg, **base)


test_config.__test__ = False  # helper, not a test


def make_wallet(index: int) -> Wallet:
    key = "0x" + format(index + 1, "064x")
    return Wallet(address=Account.from_key(key).address, private_key=key, nickname=f"User{index + 1}")


def make_market() -> MarketRef:
    return MarketRef(
        symbol="TEST-USD",
        market_identifier="test-usd",
        order_book=ORDER_BOOK,
        market_id_bytes32=MARKET_ID,
        tick_size=0.01,
    )


class FakeChain:
    """In-memory order book that the fake relayer mutates."""

    def __init__(
        self,
        *,
        chain_id: int = 31337,
        best_bid6: int | None = 99_000_000,
        best_ask6: int | None = 101_000_000,
        available6: int = 1_000_000_000,
        margin_bps: int = 10_000,
    ) -> None:
        self.chain_id = chain_id
        self.best_bid6 = best_bid6
        self.best_ask6 = best_ask6
        self.available6 = available6
        self.margin_bps = margin_bps
        self.orders: dict[str, list[OnChainOrder]] = {}
        self.order_reads: list[str] = []
        self._next_id = 1

    def get_chain_id(self) -> int:
        return self.chain_id

    def market_static(self, order_book: str) -> MarketStatic:
        return MarketStatic(vault=VAULT, market_id=MARKET_ID)

    def margin_requirement_bps(self, order_book: str, default: int = 10_000) -> int:
        return self.margin_bps

    def best_bid_ask(self, order_book: str) -> tuple[int | None, int | None]:
        return self.best_bid6, self.best_ask6

    def available_collateral(self, vault: str, trader: str) -> int:
        return self.available6

    def mark_price(self, vault: str, market_id: str) -> int | None:
        return 100_000_000

    def get_user_open_orders(self, order_book: str, trader: str) -> list[OnChainOrder]:
        self.order_reads.append(normalize_address(trader))
        return list(self.orders.get(normalize_address(trader), []))

    def add_order(self, trader: str, *, is_buy: bool, price6: int, amount18: int, margin_bps: int | None = None) -> OnChainOrder:
        bps = margin_bps if margin_bps is not None else (self.margin_bps if is_buy else 15_000)
        order = OnChainOrder(
            order_id=self._next_id,
            trader=trader,
            price6=price6,
            amount18=amount18,
            is_buy=is_buy,
            timestamp=self._next_id,
            margin_required6=margin_required6(amount18, price6, bps),
            is_margin_order=True,
        )
        self._next_id += 1
        self.orders.setdefault(normalize_address(trader), []).append(order)
        return order

    def cancel(self, trader: str, order_id: int) -> None:
        key = normalize_address(trader)
        self.orders[key] = [o for o in self.orders.get(key, []) if o.order_id != order_id]


class FakeRelayer:
    def __init__(self, chain: FakeChain, *, root: str = RELAYER_ROOT) -> None:
        self.chain = chain
        self.root = root
        self.nonces: dict[str, int] = {}
        self.init_calls: list[dict[str, Any]] = []
        self.trades: list[dict[str, Any]] = []
        self.reject_init_for: set[str] = set()
        self.fail_trades_for: dict[str, Exception] = {}
        self.live = LiveMarket(best_bid=99.0, best_ask=101.0, mark_price=100.0, last_trade_price=100.0)
        self._tx = 0

    def _tx_hash(self) -> str:
        self._tx += 1
        return "0x" + format(self._tx, "064x")

    def get_relayer_set_root(self) -> str:
        return self.root

    def get_session_nonce(self, trader: str) -> int:
        return self.nonces.get(normalize_address(trader), 0)

    def init_session(self, order_book: str, permit: dict[str, Any], signature: str) -> SessionReceipt:
        trader = normalize_address(permit["trader"])
        self.init_calls.append({"order_book": order_book, "permit": permit, "signature": signature})
        if trader in self.reject_init_for:
            raise AuthorizationError("session init rejected: 400 bad_sig")
        self.nonces[trader] = self.nonces.get(trader, 0) + 1
        return SessionReceipt(session_id="0x" + format(len(self.init_calls), "064x"), tx_hash=self._tx_hash())

    def submit_trade(self, order_book: str, method: RelayMethod, session_id: str, params: dict[str, Any]) -> str:
        trader = str(params["trader"])
        failure = self.fail_trades_for.get(normalize_address(trader))
        if failure is not None:
            raise failure
        self.trades.append({"method": method, "session_id": session_id, "params": dict(params)})
        if method in (RelayMethod.PLACE_LIMIT, RelayMethod.PLACE_MARGIN_LIMIT):
            self.chain.add_order(
                trader,
                is_buy=bool(params["isBuy"]),
                price6=int(params["price"]),
                amount18=int(params["amount"]),
            )
        elif method == RelayMethod.CANCEL:
            self.chain.cancel(trader, int(params["orderId"]))
        return self._tx_hash()

    def fetch_live(self, symbol: str) -> LiveMarket:
        return self.live

    def fetch_active_markets(self, limit: int = 500) -> list[MarketRef]:
        return [make_market()]
