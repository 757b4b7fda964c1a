from __future__ import annotations

import contextlib
import io
import json
import tempfile
import unittest
from pathlib import Path
import sys
from unittest.mock import patch

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from gasless_packer.main import _run_overrides, build_parser, cli
from gasless_packer.models import Checkpoint, RunConfig, RunInfo, WalletState
from gasless_packer.storage import CheckpointStore
from tests.helpers import ORDER_BOOK, make_market, test_config


class CliTests(unittest.TestCase):
    def test_run_parser_collects_overrides(self) -> None:
        args = build_parser().parse_args(
            ["run", "--market", "ALU-USD", "--orders-per-side", "3", "--utilization", "0.3", "--max-cycles", "2"]
        )
        self.assertEqual(args.market, "ALU-USD")
        self.assertEqual(args.max_cycles, 2)
        self.assertFalse(args.fresh)
        overrides = _run_overrides(args)
        self.assertEqual(overrides["orders_per_side_per_wallet"], 3)
        self.assertEqual(overrides["max_wallet_utilization"], 0.3)
        self.assertIsNone(overrides["size_min"])
        merged = RunConfig().with_overrides(**overrides)
        self.assertEqual(merged.orders_per_side_per_wallet, 3)
        self.assertEqual(merged.size_min, RunConfig().size_min)

    def test_command_is_required(self) -> None:
        with contextlib.redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit):
                build_parser().parse_args([])

    def test_run_without_settings_exits_2(self) -> None:
        cfg = test_config(session_registry_address="")
        with patch("gasless_packer.main.load_config", return_value=cfg):
            self.assertEqual(cli(["run", "--market", "ALU-USD"]), 2)

    def test_run_with_missing_csv_exits_2(self) -> None:
        cfg = test_config(wallets_csv="/nonexistent/wallets.csv")
        with patch("gasless_packer.main.load_config", return_value=cfg):
            self.assertEqual(cli(["run", "--market", "ALU-USD"]), 2)

    def test_relay_deposit_without_settings_exits_2(self) -> None:
        cfg = test_config(hub_inbox_address="", hub_rpc_url="")
        args = [
            "relay-deposit",
            "--user",
            "0x" + "c3" * 20,
            "--token",
            "0x" + "d4" * 20,
            "--amount",
            "1000",
            "--src-tx",
            "0x" + "e5" * 32,
            "--log-index",
            "0",
        ]
        with patch("gasless_packer.main.load_config", return_value=cfg):
            self.assertEqual(cli(args), 2)

    def test_status_prints_checkpoint_summary(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            store = CheckpointStore(tmp)
            checkpoint = Checkpoint(
                chain_id=31337,
                order_book=ORDER_BOOK,
                market=make_market(),
                run=RunInfo(run_id="run-xyz", started_at="2026-01-01T00:00:00Z", updated_at="2026-01-01T00:00:00Z"),
                config=RunConfig(),
            )
            checkpoint.wallets["0xaaa"] = WalletState(nickname="User1", session_id="0x01", session_expiry=4_000_000_000)
            checkpoint.wallets["0xbbb"] = WalletState(nickname="User2")
            store.save_checkpoint(checkpoint)

            out = io.StringIO()
            with patch("gasless_packer.main.load_config", return_value=test_config(state_dir=tmp)):
                with contextlib.redirect_stdout(out):
                    code = cli(["status", "--market", ORDER_BOOK])
        self.assertEqual(code, 0)
        report = json.loads(out.getvalue())
        self.assertEqual(report["checkpoint"]["run_id"], "run-xyz")
        self.assertEqual(report["checkpoint"]["wallets"], 2)
        self.assertEqual(report["checkpoint"]["active_sessions"], 1)
        self.assertEqual(report["recent_actions"], [])

    def test_status_without_chain_id_exits_2(self) -> None:
        with patch("gasless_packer.main.load_config", return_value=test_config(chain_id=None)):
            self.assertEqual(cli(["status", "--market", ORDER_BOOK]), 2)


if __name__ == "__main__":
    unittest.main()
