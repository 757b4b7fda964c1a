from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any

from gasless_packer.models import ZERO_ADDRESS, OnChainOrder, normalize_address

LOGGER = logging.getLogger("gasless_packer")

UINT256_MAX = 2**256 - 1


def _fn(name: str, inputs: list[tuple[str, str]], outputs: list[tuple[str, str]]) -> dict[str, Any]:
    return {
        "inputs": [{"internalType": t, "name": n, "type": t} for n, t in inputs],
        "name": name,
        "outputs": [{"internalType": t, "name": n, "type": t} for n, t in outputs],
        "stateMutability": "view",
        "type": "function",
    }


ORDER_BOOK_ABI: list[dict[str, Any]] = [
    _fn("getUserOrders", [("user", "address")], [("orderIds", "uint256[]")]),
    _fn(
        "getOrder",
        [("orderId", "uint256")],
        [
            ("orderId_", "uint256"),
            ("trader", "address"),
            ("price", "uint256"),
            ("amount", "uint256"),
            ("isBuy", "bool"),
            ("timestamp", "uint256"),
            ("nextOrderId", "uint256"),
            ("marginRequired", "uint256"),
            ("isMarginOrder", "bool"),
        ],
    ),
    _fn("bestBid", [], [("", "uint256")]),
    _fn("bestAsk", [], [("", "uint256")]),
    _fn(
        "marketStatic",
        [],
        [("vault", "address"), ("marketId", "bytes32"), ("useVWAP", "bool"), ("vwapWindow", "uint256")],
    ),
    _fn(
        "getLeverageInfo",
        [],
        [("enabled", "bool"), ("maxLev", "uint256"), ("marginReq", "uint256"), ("controller", "address")],
    ),
]

VAULT_ABI: list[dict[str, Any]] = [
    _fn("getAvailableCollateral", [("user", "address")], [("", "uint256")]),
    _fn("getMarkPrice", [("marketId", "bytes32")], [("", "uint256")]),
]


@dataclass(frozen=True)
class MarketStatic:
    vault: str
    market_id: str


def _hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value)
    return text if text.startswith("0x") else "0x" + text


class OrderbookChainReader:
    """Read-only view of the order book and vault contracts."""

    def __init__(self, rpc_url: str, timeout_seconds: float = 15.0, w3: Any | None = None) -> None:
        self.rpc_url = rpc_url
        self.timeout_seconds = timeout_seconds
        self._w3 = w3

    def _web3(self):
        if self._w3 is not None:
            return self._w3
        try:
            from web3 import Web3
        except Exception as exc:
            raise RuntimeError("web3 is required for chain reads. Install with `pip install web3`.") from exc

        provider = Web3.HTTPProvider(
            self.rpc_url,
            request_kwargs={"timeout": max(5.0, self.timeout_seconds)},
        )
        self._w3 = Web3(provider)
        return self._w3

    def _checksum(self, address: str) -> str:
        from web3 import Web3

        return Web3.to_checksum_address(address)

    def _order_book(self, order_book: str):
        return self._web3().eth.contract(address=self._checksum(order_book), abi=ORDER_BOOK_ABI)

    def _vault(self, vault: str):
        return self._web3().eth.contract(address=self._checksum(vault), abi=VAULT_ABI)

    def get_chain_id(self) -> int:
        return int(self._web3().eth.chain_id)

    def get_user_open_orders(self, order_book: str, trader: str) -> list[OnChainOrder]:
        contract = self._order_book(order_book)
        order_ids = contract.functions.getUserOrders(self._checksum(trader)).call()
        orders: list[OnChainOrder] = []
        for order_id in order_ids or []:
            try:
                raw = contract.functions.getOrder(int(order_id)).call()
            except Exception as exc:
                LOGGER.warning("order_lookup_failed order_id=%s trader=%s error=%s", order_id, trader, exc)
                continue
            owner = normalize_address(raw[1])
            if not owner or owner == ZERO_ADDRESS:
                continue
            orders.append(
                OnChainOrder(
                    order_id=int(raw[0]),
                    trader=str(raw[1]),
                    price6=int(raw[2]),
                    amount18=int(raw[3]),
                    is_buy=bool(raw[4]),
                    timestamp=int(raw[5]),
                    margin_required6=int(raw[7]),
                    is_margin_order=bool(raw[8]),
                )
            )
        return orders

    def best_bid_ask(self, order_book: str) -> tuple[int | None, int | None]:
        contract = self._order_book(order_book)
        bid = int(contract.functions.bestBid().call())
        ask = int(contract.functions.bestAsk().call())
        return (
            bid if 0 < bid < UINT256_MAX else None,
            ask if 0 < ask < UINT256_MAX else None,
        )

    def market_static(self, order_book: str) -> MarketStatic:
        raw = self._order_book(order_book).functions.marketStatic().call()
        return MarketStatic(vault=str(raw[0]), market_id=_hex(raw[1]))

    def margin_requirement_bps(self, order_book: str, default: int = 10_000) -> int:
        try:
            raw = self._order_book(order_book).functions.getLeverageInfo().call()
        except Exception as exc:
            LOGGER.warning("leverage_info_failed order_book=%s error=%s default_bps=%s", order_book, exc, default)
            return default
        bps = int(raw[2])
        return bps if bps > 0 else default

    def available_collateral(self, vault: str, trader: str) -> int:
        return int(self._vault(vault).functions.getAvailableCollateral(self._checksum(trader)).call())

    def mark_price(self, vault: str, market_id: str) -> int | None:
        try:
            value = int(self._vault(vault).functions.getMarkPrice(bytes.fromhex(market_id[2:])).call())
        except Exception as exc:
            LOGGER.warning("vault_mark_failed market_id=%s error=%s", market_id, exc)
            return None
        return value if value > 0 else None
