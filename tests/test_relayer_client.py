from __future__ import annotations

import unittest
from pathlib import Path
import sys
from unittest.mock import patch

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from gasless_packer.clients_relayer import RelayerClient, resolve_market
from gasless_packer.errors import AuthorizationError, RelayerHttpError, TransientError
from gasless_packer.models import MarketRef, RelayMethod
from tests.helpers import ORDER_BOOK, RELAYER_ROOT


class RelayerClientTests(unittest.TestCase):
    def setUp(self) -> None:
        self.client = RelayerClient("https://relayer.test/", timeout_seconds=3.0)

    def test_relayer_set(self) -> None:
        payload = {"relayerSetRoot": RELAYER_ROOT, "relayerAddresses": ["0x1", "0x2"]}
        with patch("gasless_packer.clients_relayer.get_json", return_value=payload) as mock_get:
            relayer_set = self.client.get_relayer_set()
        self.assertEqual(relayer_set.root, RELAYER_ROOT)
        self.assertEqual(relayer_set.addresses, ("0x1", "0x2"))
        self.assertEqual(mock_get.call_args.args[0], "https://relayer.test/api/gasless/session/relayer-set")

    def test_missing_root_is_authorization_error(self) -> None:
        with patch("gasless_packer.clients_relayer.get_json", return_value={}):
            with self.assertRaises(AuthorizationError):
                self.client.get_relayer_set_root()

    def test_session_nonce_parses_string(self) -> None:
        with patch("gasless_packer.clients_relayer.get_json", return_value={"nonce": "12"}) as mock_get:
            self.assertEqual(self.client.get_session_nonce("0xabc"), 12)
        self.assertEqual(mock_get.call_args.kwargs["params"], {"trader": "0xabc"})

    def test_session_nonce_missing_is_transient(self) -> None:
        with patch("gasless_packer.clients_relayer.get_json", return_value={"error": "x"}):
            with self.assertRaises(TransientError):
                self.client.get_session_nonce("0xabc")

    def test_init_session_returns_receipt(self) -> None:
        response = {"sessionId": "0x" + "01" * 32, "txHash": "0xfeed", "blockNumber": 17}
        with patch("gasless_packer.clients_relayer.post_json", return_value=response) as mock_post:
            receipt = self.client.init_session(ORDER_BOOK, {"nonce": "0"}, "0xsig")
        self.assertEqual(receipt.session_id, "0x" + "01" * 32)
        self.assertEqual(receipt.tx_hash, "0xfeed")
        self.assertEqual(receipt.block_number, 17)
        body = mock_post.call_args.args[1]
        self.assertEqual(body, {"orderBook": ORDER_BOOK, "permit": {"nonce": "0"}, "signature": "0xsig"})

    def test_init_session_client_error_is_authorization_error(self) -> None:
        error = RelayerHttpError("POST", "https://relayer.test/api/gasless/session/init", 400, "bad signature")
        with patch("gasless_packer.clients_relayer.post_json", side_effect=error):
            with self.assertRaises(AuthorizationError):
                self.client.init_session(ORDER_BOOK, {}, "0xsig")

    def test_init_session_server_error_is_transient(self) -> None:
        error = RelayerHttpError("POST", "https://relayer.test/api/gasless/session/init", 503, "busy")
        with patch("gasless_packer.clients_relayer.post_json", side_effect=error):
            with self.assertRaises(TransientError):
                self.client.init_session(ORDER_BOOK, {}, "0xsig")

    def test_submit_trade_uses_wire_method_name(self) -> None:
        with patch("gasless_packer.clients_relayer.post_json", return_value={"txHash": "0xabc"}) as mock_post:
            tx = self.client.submit_trade(
                ORDER_BOOK,
                RelayMethod.PLACE_MARGIN_LIMIT,
                "0xsession",
                {"trader": "0x1", "price": "100", "amount": "5", "isBuy": True},
            )
        self.assertEqual(tx, "0xabc")
        self.assertEqual(mock_post.call_args.args[0], "https://relayer.test/api/gasless/trade")
        body = mock_post.call_args.args[1]
        self.assertEqual(body["method"], "sessionPlaceMarginLimit")
        self.assertEqual(body["sessionId"], "0xsession")
        self.assertEqual(body["params"]["price"], "100")

    def test_fetch_active_markets_accepts_wrapped_payload(self) -> None:
        payload = {
            "markets": [
                {
                    "symbol": "ALU-USD",
                    "market_identifier": "aluminum",
                    "market_address": ORDER_BOOK,
                    "market_id_bytes32": "0x" + "33" * 32,
                    "tick_size": "0.01",
                },
                {"symbol": "NO-ADDR"},
                "junk",
            ]
        }
        with patch("gasless_packer.clients_relayer.get_json", return_value=payload):
            markets = self.client.fetch_active_markets(limit=10)
        self.assertEqual(len(markets), 1)
        self.assertEqual(markets[0].symbol, "ALU-USD")
        self.assertEqual(markets[0].tick6, 10_000)

    def test_fetch_active_markets_rejects_unexpected_shape(self) -> None:
        with patch("gasless_packer.clients_relayer.get_json", return_value="nope"):
            with self.assertRaises(TransientError):
                self.client.fetch_active_markets()

    def test_fetch_live_drops_non_positive_prices(self) -> None:
        payload = {"data": {"bestBid": "99.5", "bestAsk": 0, "markPrice": "100", "lastTradePrice": None}}
        with patch("gasless_packer.clients_relayer.get_json", return_value=payload):
            live = self.client.fetch_live("ALU-USD")
        self.assertEqual(live.best_bid, 99.5)
        self.assertIsNone(live.best_ask)
        self.assertEqual(live.mark_price, 100.0)
        self.assertIsNone(live.last_trade_price)


class ResolveMarketTests(unittest.TestCase):
    def setUp(self) -> None:
        self.markets = [
            MarketRef(symbol="ALU-USD", market_identifier="aluminum", order_book="0x" + "01" * 20),
            MarketRef(symbol="ALU-EUR", market_identifier="aluminum-eur", order_book="0x" + "02" * 20),
            MarketRef(symbol="BTC-USD", market_identifier="bitcoin", order_book="0x" + "03" * 20),
        ]

    def test_exact_match_wins(self) -> None:
        self.assertEqual(resolve_market(self.markets, "alu-usd").symbol, "ALU-USD")
        self.assertEqual(resolve_market(self.markets, "0x" + "03" * 20).symbol, "BTC-USD")

    def test_unique_partial_match(self) -> None:
        self.assertEqual(resolve_market(self.markets, "bitc").symbol, "BTC-USD")

    def test_ambiguous_and_missing(self) -> None:
        with self.assertRaises(LookupError):
            resolve_market(self.markets, "alu")
        with self.assertRaises(LookupError):
            resolve_market(self.markets, "gold")


if __name__ == "__main__":
    unittest.main()
