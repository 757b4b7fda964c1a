from __future__ import annotations

import tempfile
from types import SimpleNamespace
import unittest
from pathlib import Path
import sys

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from web3 import Web3

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from gasless_packer.deposits import (
    Deposit,
    DepositRelay,
    address_to_bytes32,
    encode_deposit_id,
    encode_deposit_payload,
)
from gasless_packer.errors import ContractRejectedError
from gasless_packer.models import ActionKind
from gasless_packer.storage import CheckpointStore

HUB_INBOX = "0x" + ("a1" * 20)
SPOKE_OUTBOX = "0x" + ("b2" * 20)
USER = "0x" + ("c3" * 20)
TOKEN = "0x" + ("d4" * 20)
SRC_TX = "0x" + ("e5" * 32)


class _FakeSender:
    def __init__(self, chain_id: int, static_error: Exception | None = None) -> None:
        self._chain_id = chain_id
        self.static_error = static_error
        self.receipt_error: Exception | None = None
        self.static_calls: list[tuple[str, tuple]] = []
        self.sent: list[tuple[str, tuple, str]] = []
        self.receipts: list[str] = []

    def chain_id(self) -> int:
        return self._chain_id

    def contract(self, address: str, abi):
        def _factory(name: str):
            return lambda *args: (name, args)

        return SimpleNamespace(
            functions=SimpleNamespace(
                sendDeposit=_factory("sendDeposit"),
                receiveMessage=_factory("receiveMessage"),
            )
        )

    def static_call(self, fn):
        self.static_calls.append(fn)
        if self.static_error is not None:
            raise self.static_error
        return None

    def send(self, fn, label: str = "tx") -> str:
        self.sent.append((fn[0], fn[1], label))
        return "0x" + format(len(self.sent), "064x")

    def wait_for_receipt(self, tx_hash: str, timeout_seconds: float = 120.0):
        self.receipts.append(tx_hash)
        if self.receipt_error is not None:
            raise self.receipt_error
        return {"status": 1, "blockNumber": 1}


def _deposit() -> Deposit:
    return Deposit(user=USER, token=TOKEN, amount=5_000_000, src_tx_hash=SRC_TX, log_index=3, src_chain_id=137)


class DepositEncodingTests(unittest.TestCase):
    def test_deposit_id_hashes_source_coordinates(self) -> None:
        expected = Web3.keccak(abi_encode(["uint64", "bytes32", "uint32"], [137, bytes.fromhex(SRC_TX[2:]), 3]))
        self.assertEqual(encode_deposit_id(137, SRC_TX, 3), "0x" + bytes(expected).hex())
        self.assertNotEqual(encode_deposit_id(137, SRC_TX, 3), encode_deposit_id(137, SRC_TX, 4))
        self.assertEqual(_deposit().deposit_id, encode_deposit_id(137, SRC_TX, 3))

    def test_payload_layout(self) -> None:
        deposit_id = encode_deposit_id(137, SRC_TX, 3)
        payload = encode_deposit_payload(USER, TOKEN, 5_000_000, deposit_id)
        kind, user, token, amount, raw_id = abi_decode(["uint8", "address", "address", "uint256", "bytes32"], payload)
        self.assertEqual(kind, 1)
        self.assertEqual(user.lower(), USER)
        self.assertEqual(token.lower(), TOKEN)
        self.assertEqual(amount, 5_000_000)
        self.assertEqual("0x" + raw_id.hex(), deposit_id)

    def test_address_padding(self) -> None:
        self.assertEqual(address_to_bytes32(SPOKE_OUTBOX), "0x" + "00" * 12 + "b2" * 20)

    def test_malformed_tx_hash_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            encode_deposit_id(137, "0x1234", 0)


class DepositRelayTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.store = CheckpointStore(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _relay(self, hub: _FakeSender, spoke: _FakeSender | None = None) -> DepositRelay:
        return DepositRelay(
            hub=hub,
            hub_inbox=HUB_INBOX,
            src_domain=137,
            src_app=address_to_bytes32(SPOKE_OUTBOX),
            store=self.store,
            spoke=spoke,
            spoke_outbox=SPOKE_OUTBOX if spoke is not None else "",
        )

    def test_deliver_simulates_sends_and_journals_once(self) -> None:
        hub = _FakeSender(999)
        relay = self._relay(hub)
        first = relay.deliver(_deposit())

        self.assertEqual(first.status, "delivered")
        self.assertTrue(first.delivered)
        self.assertEqual(len(hub.static_calls), 1)
        self.assertEqual(len(hub.sent), 1)
        name, args, label = hub.sent[0]
        self.assertEqual(name, "receiveMessage")
        self.assertEqual(args[0], 137)
        self.assertEqual(args[1], bytes.fromhex(address_to_bytes32(SPOKE_OUTBOX)[2:]))
        self.assertEqual(hub.receipts, [first.tx_hash])

        second = relay.deliver(_deposit())
        self.assertEqual(second.status, "journaled")
        self.assertEqual(len(hub.sent), 1)

        entries = self.store.read_actions(999, HUB_INBOX)
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].action, ActionKind.DEPOSIT_DELIVERED)
        self.assertEqual(entries[0].params["depositId"], first.deposit_id)
        self.assertEqual(entries[0].run_id, "deposits")

    def test_already_processed_on_hub_counts_as_delivered(self) -> None:
        hub = _FakeSender(999, static_error=ValueError("execution reverted: deposit processed"))
        result = self._relay(hub).deliver(_deposit())
        self.assertEqual(result.status, "already_processed")
        self.assertTrue(result.delivered)
        self.assertEqual(hub.sent, [])
        self.assertTrue(self._relay(hub).already_delivered(result.deposit_id))

    def test_other_hub_failures_propagate_without_journal(self) -> None:
        hub = _FakeSender(999, static_error=ContractRejectedError("execution reverted: bad src app"))
        with self.assertRaises(ContractRejectedError):
            self._relay(hub).deliver(_deposit())
        self.assertEqual(self.store.read_actions(999, HUB_INBOX), [])

    def test_old_delivery_is_found_past_a_long_journal(self) -> None:
        hub = _FakeSender(999)
        relay = self._relay(hub)
        relay.deliver(_deposit())
        with self.store.journal_path(999, HUB_INBOX).open("a", encoding="utf-8") as f:
            f.write("{}\n" * 50_001)

        self.assertEqual(relay.deliver(_deposit()).status, "journaled")
        self.assertEqual(len(hub.sent), 1)

    def test_unconfirmed_delivery_keeps_the_broadcast_hash(self) -> None:
        hub = _FakeSender(999)
        hub.receipt_error = TimeoutError("receipt not found")
        relay = self._relay(hub)
        with self.assertRaises(TimeoutError):
            relay.deliver(_deposit())

        entries = self.store.read_actions(999, HUB_INBOX)
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].action, ActionKind.ERROR)
        self.assertEqual(entries[0].tx_hash, hub.receipts[0])
        self.assertEqual(entries[0].params["status"], "pending")
        self.assertFalse(relay.already_delivered(_deposit().deposit_id))

    def test_publish_calls_spoke_outbox(self) -> None:
        hub, spoke = _FakeSender(999), _FakeSender(137)
        tx_hash = self._relay(hub, spoke).publish(_deposit())
        self.assertTrue(tx_hash.startswith("0x"))
        name, args, label = spoke.sent[0]
        self.assertEqual(name, "sendDeposit")
        self.assertEqual(args[0], 999)
        self.assertEqual(args[3], 5_000_000)
        self.assertEqual(len(spoke.static_calls), 1)

    def test_publish_requires_spoke(self) -> None:
        with self.assertRaises(RuntimeError):
            self._relay(_FakeSender(999)).publish(_deposit())


if __name__ == "__main__":
    unittest.main()
