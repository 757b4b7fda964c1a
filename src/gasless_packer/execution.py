from __future__ import annotations

from dataclasses import dataclass, field
import logging
import threading
import time
from typing import Any, Callable, TypeVar

from gasless_packer.clients_relayer import RelayerClient, TradeParams
from gasless_packer.engines.engine_packer import (
    CancelOne,
    ModifyOldest,
    PackerAction,
    PlaceLimit,
    PlaceMarket,
    Skip,
)
from gasless_packer.errors import (
    ContractRejectedError,
    PackerError,
    RelayerHttpError,
    TransientError,
    classify_relayer_error,
)
from gasless_packer.models import (
    ActionKind,
    RelayMethod,
    Wallet,
    amount18_to_float,
    normalize_address,
    price6_to_float,
)

LOGGER = logging.getLogger("gasless_packer")

T = TypeVar("T")

NONCE_RACE_MARKERS = (
    "nonce too low",
    "nonce has already been used",
    "already known",
    "known transaction",
    "replacement transaction underpriced",
)

ALREADY_PROCESSED_MARKERS = (
    "already processed",
    "deposit processed",
)


def _error_text(exc: BaseException) -> str:
    parts = [str(exc)]
    for attr in ("message", "body", "reason"):
        value = getattr(exc, attr, None)
        if isinstance(value, str) and value:
            parts.append(value)
    if exc.args:
        parts.extend(str(a) for a in exc.args if isinstance(a, (str, dict)))
    return " ".join(parts).lower()


def is_nonce_race_error(exc: BaseException) -> bool:
    text = _error_text(exc)
    return any(marker in text for marker in NONCE_RACE_MARKERS)


def is_already_processed_error(exc: BaseException) -> bool:
    text = _error_text(exc)
    return any(marker in text for marker in ALREADY_PROCESSED_MARKERS)


def is_transient_error(exc: BaseException) -> bool:
    if isinstance(exc, TransientError):
        return True
    if isinstance(exc, RelayerHttpError):
        return isinstance(classify_relayer_error(exc), TransientError)
    return False


def exception_payload(exc: BaseException) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "type": exc.__class__.__name__,
        "error": str(exc),
    }
    for attr in ("status", "url"):
        if hasattr(exc, attr):
            payload[attr] = getattr(exc, attr)
    return payload


class SignerLocks:
    """One lock per signer address so concurrent submissions never share a nonce."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def for_signer(self, signer: str) -> threading.Lock:
        key = normalize_address(signer)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock


SIGNER_LOCKS = SignerLocks()


def submit_with_nonce_retry(
    signer: str,
    build_and_send: Callable[[int | None], T],
    *,
    is_retryable: Callable[[BaseException], bool] = is_nonce_race_error,
    max_attempts: int = 5,
    pending_nonce: Callable[[str], int] | None = None,
    backoff_seconds: float = 0.75,
    sleep: Callable[[float], None] = time.sleep,
    locks: SignerLocks | None = None,
    label: str = "tx",
) -> T:
    attempts = max(1, int(max_attempts))
    lock = (locks or SIGNER_LOCKS).for_signer(signer)
    last_exc: BaseException | None = None
    with lock:
        for attempt in range(1, attempts + 1):
            nonce = int(pending_nonce(signer)) if pending_nonce is not None else None
            try:
                return build_and_send(nonce)
            except Exception as exc:
                if not is_retryable(exc):
                    raise
                last_exc = exc
                LOGGER.warning(
                    "nonce_race label=%s signer=%s attempt=%s/%s nonce=%s error=%s",
                    label,
                    signer,
                    attempt,
                    attempts,
                    nonce,
                    exc,
                )
                if attempt < attempts:
                    sleep(backoff_seconds)
    raise TransientError(f"{label} failed after {attempts} attempts: {last_exc}") from last_exc


def retry_transient(
    call: Callable[[], T],
    *,
    max_attempts: int = 3,
    backoff_seconds: float = 0.75,
    sleep: Callable[[float], Any] = time.sleep,
    label: str = "read",
) -> T:
    """Retry a read-only call on transient failures; writes never go through here."""
    attempts = max(1, int(max_attempts))
    attempt = 1
    while True:
        try:
            return call()
        except Exception as exc:
            if attempt >= attempts or not is_transient_error(exc):
                raise
            LOGGER.warning("transient_retry label=%s attempt=%s/%s error=%s", label, attempt, attempts, exc)
            sleep(backoff_seconds * attempt)
            attempt += 1


class TransactionSender:
    """Signs and broadcasts contract calls from one relayer key."""

    def __init__(
        self,
        rpc_url: str,
        private_key: str,
        *,
        chain_id: int | None = None,
        timeout_seconds: float = 15.0,
        nonce_attempts: int = 5,
        nonce_backoff_seconds: float = 0.75,
        w3: Any | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not private_key:
            raise PackerError("relayer private key missing")
        self.rpc_url = rpc_url
        self._private_key = private_key
        self._chain_id = chain_id
        self.timeout_seconds = timeout_seconds
        self.nonce_attempts = nonce_attempts
        self.nonce_backoff_seconds = nonce_backoff_seconds
        self._w3 = w3
        self._sleep = sleep
        self._address = ""

    def __repr__(self) -> str:
        return f"TransactionSender(rpc_url={self.rpc_url!r}, address={self.address!r})"

    @property
    def address(self) -> str:
        if not self._address:
            try:
                from eth_account import Account
            except Exception as exc:
                raise RuntimeError("eth-account is required for signing. Install with `pip install eth-account`.") from exc
            self._address = Account.from_key(self._private_key).address
        return self._address

    def _web3(self):
        if self._w3 is not None:
            return self._w3
        try:
            from web3 import Web3
        except Exception as exc:
            raise RuntimeError("web3 is required for transactions. Install with `pip install web3`.") from exc

        provider = Web3.HTTPProvider(
            self.rpc_url,
            request_kwargs={"timeout": max(5.0, self.timeout_seconds)},
        )
        self._w3 = Web3(provider)
        return self._w3

    def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = int(self._web3().eth.chain_id)
        return self._chain_id

    def contract(self, address: str, abi: list[dict[str, Any]]):
        from web3 import Web3

        return self._web3().eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    def static_call(self, fn) -> Any:
        return fn.call({"from": self.address})

    def _pending_nonce(self, signer: str) -> int:
        return int(self._web3().eth.get_transaction_count(signer, "pending"))

    def _send_with_nonce(self, fn, nonce: int | None) -> str:
        from eth_account import Account

        w3 = self._web3()
        signer = self.address
        if nonce is None:
            nonce = self._pending_nonce(signer)
        gas_price = max(1, int(w3.eth.gas_price))
        tx = fn.build_transaction(
            {
                "from": signer,
                "nonce": int(nonce),
                "chainId": self.chain_id(),
                "gasPrice": gas_price,
            }
        )
        gas_limit = int(tx.get("gas", 0) or 0)
        if gas_limit <= 0:
            gas_limit = int(w3.eth.estimate_gas(tx))
        tx["gas"] = max(21_000, int(gas_limit * 1.20))
        tx.pop("from", None)

        signed = Account.sign_transaction(tx, self._private_key)
        raw_tx = getattr(signed, "raw_transaction", None) or getattr(signed, "rawTransaction", None)
        if raw_tx is None:
            raise RuntimeError("unable to access signed raw transaction")
        tx_hash = w3.eth.send_raw_transaction(raw_tx)
        if isinstance(tx_hash, (bytes, bytearray)):
            return "0x" + bytes(tx_hash).hex()
        return str(tx_hash)

    def send(self, fn, label: str = "tx") -> str:
        return submit_with_nonce_retry(
            self.address,
            lambda nonce: self._send_with_nonce(fn, nonce),
            max_attempts=self.nonce_attempts,
            pending_nonce=self._pending_nonce,
            backoff_seconds=self.nonce_backoff_seconds,
            sleep=self._sleep,
            label=label,
        )

    def wait_for_receipt(self, tx_hash: str, timeout_seconds: float = 120.0) -> dict[str, Any]:
        receipt = self._web3().eth.wait_for_transaction_receipt(tx_hash, timeout=timeout_seconds)
        status = receipt.get("status") if isinstance(receipt, dict) else getattr(receipt, "status", None)
        block = receipt.get("blockNumber") if isinstance(receipt, dict) else getattr(receipt, "blockNumber", None)
        if status is not None and int(status) == 0:
            raise ContractRejectedError(f"transaction reverted tx={tx_hash}")
        return {"status": int(status) if status is not None else None, "blockNumber": block}


@dataclass(frozen=True)
class ExecutionResult:
    kind: ActionKind
    params: dict[str, Any]
    tx_hash: str | None


@dataclass
class ActionExecutor:
    """Turns planned actions into relayed session trades."""

    relayer: RelayerClient
    order_book: str
    nonce_attempts: int = 5
    backoff_seconds: float = 0.75
    sleep: Callable[[float], None] = field(default=time.sleep)

    def _route(self, action: PackerAction, trader: str) -> tuple[RelayMethod, ActionKind, TradeParams, dict[str, Any]]:
        if isinstance(action, PlaceLimit):
            method = RelayMethod.PLACE_MARGIN_LIMIT if action.margin else RelayMethod.PLACE_LIMIT
            params: TradeParams = {
                "trader": trader,
                "price": str(action.price6),
                "amount": str(action.amount18),
                "isBuy": action.is_buy,
            }
            journal = {
                "isBuy": action.is_buy,
                "price": price6_to_float(action.price6),
                "amount": amount18_to_float(action.amount18),
                "estMarginRequired": price6_to_float(action.margin6),
                "level": action.level,
            }
            return method, ActionKind.PLACE_LIMIT, params, journal
        if isinstance(action, PlaceMarket):
            method = RelayMethod.PLACE_MARGIN_MARKET if action.margin else RelayMethod.PLACE_MARKET
            params = {"trader": trader, "amount": str(action.amount18), "isBuy": action.is_buy}
            journal = {"isBuy": action.is_buy, "amount": amount18_to_float(action.amount18)}
            return method, ActionKind.PLACE_MARKET, params, journal
        if isinstance(action, ModifyOldest):
            params = {
                "trader": trader,
                "orderId": str(action.order_id),
                "price": str(action.price6),
                "amount": str(action.amount18),
            }
            journal = {
                "orderId": str(action.order_id),
                "isBuy": action.is_buy,
                "price": price6_to_float(action.price6),
                "amount": amount18_to_float(action.amount18),
            }
            return RelayMethod.MODIFY, ActionKind.MODIFY_ORDER, params, journal
        if isinstance(action, CancelOne):
            params = {"trader": trader, "orderId": str(action.order_id)}
            journal = {"orderId": str(action.order_id), "reason": action.reason}
            return RelayMethod.CANCEL, ActionKind.CANCEL_ORDER, params, journal
        raise ValueError(f"action {action!r} is not submittable")

    def execute(self, wallet: Wallet, session_id: str, action: PackerAction) -> ExecutionResult:
        if isinstance(action, Skip):
            raise ValueError("skip actions are not executed")
        method, kind, params, journal = self._route(action, wallet.address)

        def _send(_nonce: int | None) -> str | None:
            try:
                return self.relayer.submit_trade(self.order_book, method, session_id, params)
            except RelayerHttpError as exc:
                if is_nonce_race_error(exc):
                    raise
                raise classify_relayer_error(exc) from exc

        tx_hash = submit_with_nonce_retry(
            wallet.address,
            _send,
            max_attempts=self.nonce_attempts,
            backoff_seconds=self.backoff_seconds,
            sleep=self.sleep,
            label=method.wire_name,
        )
        LOGGER.info(
            "trade_submitted trader=%s method=%s params=%s tx=%s",
            wallet.address,
            method.wire_name,
            journal,
            tx_hash,
        )
        return ExecutionResult(kind=kind, params=journal, tx_hash=tx_hash)
