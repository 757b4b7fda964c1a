from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any

from eth_abi import encode as abi_encode
from web3 import Web3

from gasless_packer.execution import TransactionSender, is_already_processed_error
from gasless_packer.models import ActionJournalEntry, ActionKind, iso_now, normalize_address
from gasless_packer.storage import CheckpointStore

LOGGER = logging.getLogger("gasless_packer")

DEPOSIT_MESSAGE_TYPE = 1
DEPOSIT_JOURNAL_KEY = "deposits"

OUTBOX_ABI: list[dict[str, Any]] = [
    {
        "inputs": [
            {"internalType": "uint64", "name": "dstDomain", "type": "uint64"},
            {"internalType": "address", "name": "user", "type": "address"},
            {"internalType": "address", "name": "token", "type": "address"},
            {"internalType": "uint256", "name": "amount", "type": "uint256"},
            {"internalType": "bytes32", "name": "depositId", "type": "bytes32"},
        ],
        "name": "sendDeposit",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    }
]

HUB_INBOX_ABI: list[dict[str, Any]] = [
    {
        "inputs": [
            {"internalType": "uint64", "name": "srcDomain", "type": "uint64"},
            {"internalType": "bytes32", "name": "srcApp", "type": "bytes32"},
            {"internalType": "bytes", "name": "payload", "type": "bytes"},
        ],
        "name": "receiveMessage",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    }
]


def _bytes32(value: str) -> bytes:
    raw = value[2:] if value.startswith("0x") else value
    data = bytes.fromhex(raw)
    if len(data) != 32:
        raise ValueError("expected a 32-byte hex value")
    return data


def encode_deposit_id(chain_id: int, tx_hash: str, log_index: int) -> str:
    encoded = abi_encode(["uint64", "bytes32", "uint32"], [int(chain_id), _bytes32(tx_hash), int(log_index)])
    return "0x" + bytes(Web3.keccak(encoded)).hex()


def encode_deposit_payload(user: str, token: str, amount: int, deposit_id: str) -> bytes:
    return abi_encode(
        ["uint8", "address", "address", "uint256", "bytes32"],
        [
            DEPOSIT_MESSAGE_TYPE,
            Web3.to_checksum_address(user),
            Web3.to_checksum_address(token),
            int(amount),
            _bytes32(deposit_id),
        ],
    )


def address_to_bytes32(address: str) -> str:
    return "0x" + normalize_address(address)[2:].rjust(64, "0")


@dataclass(frozen=True)
class Deposit:
    user: str
    token: str
    amount: int
    src_tx_hash: str
    log_index: int
    src_chain_id: int

    @property
    def deposit_id(self) -> str:
        return encode_deposit_id(self.src_chain_id, self.src_tx_hash, self.log_index)


@dataclass(frozen=True)
class DeliveryResult:
    deposit_id: str
    status: str
    tx_hash: str | None = None

    @property
    def delivered(self) -> bool:
        return self.status in {"delivered", "already_processed", "journaled"}


class DepositRelay:
    """Publishes deposits on the spoke outbox and delivers them to the hub inbox."""

    def __init__(
        self,
        *,
        hub: TransactionSender,
        hub_inbox: str,
        src_domain: int,
        src_app: str,
        store: CheckpointStore,
        spoke: TransactionSender | None = None,
        spoke_outbox: str = "",
        dst_domain: int = 999,
    ) -> None:
        self.hub = hub
        self.hub_inbox = hub_inbox
        self.src_domain = int(src_domain)
        self.src_app = src_app
        self.store = store
        self.spoke = spoke
        self.spoke_outbox = spoke_outbox
        self.dst_domain = int(dst_domain)

    def _journal_scope(self) -> tuple[int, str]:
        return self.hub.chain_id(), self.hub_inbox

    def already_delivered(self, deposit_id: str) -> bool:
        chain_id, scope = self._journal_scope()
        for entry in self.store.iter_actions(chain_id, scope):
            if entry.action == ActionKind.DEPOSIT_DELIVERED and entry.params.get("depositId") == deposit_id:
                return True
        return False

    def publish(self, deposit: Deposit) -> str:
        if self.spoke is None or not self.spoke_outbox:
            raise RuntimeError("spoke outbox is not configured")
        outbox = self.spoke.contract(self.spoke_outbox, OUTBOX_ABI)
        fn = outbox.functions.sendDeposit(
            self.dst_domain,
            Web3.to_checksum_address(deposit.user),
            Web3.to_checksum_address(deposit.token),
            int(deposit.amount),
            _bytes32(deposit.deposit_id),
        )
        self.spoke.static_call(fn)
        tx_hash = self.spoke.send(fn, label="deposit:spoke:sendDeposit")
        LOGGER.info("deposit_published deposit_id=%s tx=%s", deposit.deposit_id, tx_hash)
        return tx_hash

    def _journal(self, deposit: Deposit, kind: ActionKind, status: str, tx_hash: str | None, error: str | None = None) -> None:
        chain_id, scope = self._journal_scope()
        self.store.append_action(
            ActionJournalEntry(
                ts=iso_now(),
                run_id=DEPOSIT_JOURNAL_KEY,
                chain_id=chain_id,
                order_book=scope,
                market_id="",
                trader=deposit.user,
                nickname="",
                action=kind,
                params={
                    "depositId": deposit.deposit_id,
                    "token": deposit.token,
                    "amount": str(deposit.amount),
                    "srcTxHash": deposit.src_tx_hash,
                    "logIndex": deposit.log_index,
                    "status": status,
                },
                tx_hash=tx_hash,
                error=error,
            )
        )

    def deliver(self, deposit: Deposit) -> DeliveryResult:
        deposit_id = deposit.deposit_id
        if self.already_delivered(deposit_id):
            LOGGER.info("deposit_skip deposit_id=%s reason=journaled", deposit_id)
            return DeliveryResult(deposit_id=deposit_id, status="journaled")

        payload = encode_deposit_payload(deposit.user, deposit.token, deposit.amount, deposit_id)
        inbox = self.hub.contract(self.hub_inbox, HUB_INBOX_ABI)
        fn = inbox.functions.receiveMessage(self.src_domain, _bytes32(self.src_app), payload)

        status = "delivered"
        tx_hash: str | None = None
        try:
            self.hub.static_call(fn)
            tx_hash = self.hub.send(fn, label="deposit:hub:receiveMessage")
        except Exception as exc:
            if not is_already_processed_error(exc):
                raise
            status = "already_processed"
            LOGGER.info("deposit_already_processed deposit_id=%s error=%s", deposit_id, exc)

        if tx_hash is not None:
            try:
                self.hub.wait_for_receipt(tx_hash)
            except Exception as exc:
                # Broadcast but unconfirmed; a later deliver() hits the hub's replay check.
                LOGGER.warning("deposit_unconfirmed deposit_id=%s tx=%s error=%s", deposit_id, tx_hash, exc)
                self._journal(deposit, ActionKind.ERROR, "pending", tx_hash, error=str(exc))
                raise

        self._journal(deposit, ActionKind.DEPOSIT_DELIVERED, status, tx_hash)
        LOGGER.info("deposit_delivered deposit_id=%s status=%s tx=%s", deposit_id, status, tx_hash)
        return DeliveryResult(deposit_id=deposit_id, status=status, tx_hash=tx_hash)
