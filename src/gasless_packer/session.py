from __future__ import annotations

from dataclasses import dataclass, field
import logging
import secrets
import time
from typing import Any, Callable, Iterable

from eth_abi import encode as abi_encode
from eth_account import Account
from eth_account.messages import encode_typed_data
from web3 import Web3

from gasless_packer.clients_relayer import BYTES32_RE, RelayerClient
from gasless_packer.errors import AuthorizationError
from gasless_packer.models import RelayMethod, Wallet, normalize_address

LOGGER = logging.getLogger("gasless_packer")

DOMAIN_NAME = "DexetraMeta"
DOMAIN_VERSION = "1"

SESSION_PERMIT_TYPES: dict[str, list[dict[str, str]]] = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
    "SessionPermit": [
        {"name": "trader", "type": "address"},
        {"name": "relayerSetRoot", "type": "bytes32"},
        {"name": "expiry", "type": "uint256"},
        {"name": "maxNotionalPerTrade", "type": "uint256"},
        {"name": "maxNotionalPerSession", "type": "uint256"},
        {"name": "methodsBitmap", "type": "bytes32"},
        {"name": "sessionSalt", "type": "bytes32"},
        {"name": "allowedMarkets", "type": "bytes32[]"},
        {"name": "nonce", "type": "uint256"},
    ],
}


def _hex32(value: bytes | str) -> str:
    if isinstance(value, (bytes, bytearray)):
        if len(value) != 32:
            raise ValueError("bytes32 value must be 32 bytes")
        return "0x" + bytes(value).hex()
    text = str(value).strip()
    if not BYTES32_RE.match(text):
        raise ValueError(f"not a bytes32 hex value: {text!r}")
    return text.lower()


def _bytes32(value: str) -> bytes:
    return bytes.fromhex(_hex32(value)[2:])


def methods_bitmap(methods: Iterable[RelayMethod] | None = None) -> str:
    selected = list(RelayMethod) if methods is None else list(methods)
    mask = 0
    for method in selected:
        mask |= 1 << method.bit
    return "0x" + format(mask, "064x")


def default_methods_bitmap() -> str:
    return methods_bitmap(None)


@dataclass(frozen=True)
class SessionPermit:
    trader: str
    relayer_set_root: str
    expiry: int
    nonce: int
    session_salt: str
    methods_bitmap: str
    allowed_markets: tuple[str, ...] = ()
    max_notional_per_trade: int = 0
    max_notional_per_session: int = 0

    def to_message(self) -> dict[str, Any]:
        return {
            "trader": Web3.to_checksum_address(self.trader),
            "relayerSetRoot": _bytes32(self.relayer_set_root),
            "expiry": int(self.expiry),
            "maxNotionalPerTrade": int(self.max_notional_per_trade),
            "maxNotionalPerSession": int(self.max_notional_per_session),
            "methodsBitmap": _bytes32(self.methods_bitmap),
            "sessionSalt": _bytes32(self.session_salt),
            "allowedMarkets": [_bytes32(m) for m in self.allowed_markets],
            "nonce": int(self.nonce),
        }

    def to_json(self) -> dict[str, Any]:
        # uint256 fields travel as decimal strings
        return {
            "trader": Web3.to_checksum_address(self.trader),
            "relayerSetRoot": _hex32(self.relayer_set_root),
            "expiry": str(int(self.expiry)),
            "maxNotionalPerTrade": str(int(self.max_notional_per_trade)),
            "maxNotionalPerSession": str(int(self.max_notional_per_session)),
            "methodsBitmap": _hex32(self.methods_bitmap),
            "sessionSalt": _hex32(self.session_salt),
            "allowedMarkets": [_hex32(m) for m in self.allowed_markets],
            "nonce": str(int(self.nonce)),
        }


def build_permit(
    trader: str,
    relayer_set_root: str,
    expiry: int,
    nonce: int,
    allowed_markets: Iterable[str] = (),
    methods: str | None = None,
) -> SessionPermit:
    return SessionPermit(
        trader=trader,
        relayer_set_root=_hex32(relayer_set_root),
        expiry=int(expiry),
        nonce=int(nonce),
        session_salt="0x" + secrets.token_bytes(32).hex(),
        methods_bitmap=_hex32(methods) if methods else default_methods_bitmap(),
        allowed_markets=tuple(_hex32(m) for m in allowed_markets),
    )


def permit_typed_data(chain_id: int, registry_address: str, permit: SessionPermit) -> dict[str, Any]:
    return {
        "types": SESSION_PERMIT_TYPES,
        "primaryType": "SessionPermit",
        "domain": {
            "name": DOMAIN_NAME,
            "version": DOMAIN_VERSION,
            "chainId": int(chain_id),
            "verifyingContract": Web3.to_checksum_address(registry_address),
        },
        "message": permit.to_message(),
    }


def sign_permit(private_key: str, chain_id: int, registry_address: str, permit: SessionPermit) -> str:
    signable = encode_typed_data(full_message=permit_typed_data(chain_id, registry_address, permit))
    signed = Account.sign_message(signable, private_key=private_key)
    return "0x" + bytes(signed.signature).hex()


def recover_permit_signer(chain_id: int, registry_address: str, permit: SessionPermit, signature: str) -> str:
    signable = encode_typed_data(full_message=permit_typed_data(chain_id, registry_address, permit))
    return Account.recover_message(signable, signature=signature)


def compute_session_id(trader: str, relayer_set_root: str, session_salt: str) -> str:
    encoded = abi_encode(
        ["address", "bytes32", "bytes32"],
        [Web3.to_checksum_address(trader), _bytes32(relayer_set_root), _bytes32(session_salt)],
    )
    return "0x" + bytes(Web3.keccak(encoded)).hex()


@dataclass(frozen=True)
class SessionGrant:
    session_id: str
    expiry: int
    tx_hash: str | None
    nonce: int


@dataclass
class SessionAuthorizer:
    relayer: RelayerClient
    chain_id: int
    registry_address: str
    lifetime_seconds: int = 86_400
    renew_margin_seconds: float = 60.0
    clock: Callable[[], float] = field(default=time.time)

    def needs_renewal(self, expiry: int | None) -> bool:
        if expiry is None:
            return True
        return self.clock() + self.renew_margin_seconds >= expiry

    def fetch_relayer_set_root(self) -> str:
        return self.relayer.get_relayer_set_root()

    def authorize(
        self,
        wallet: Wallet,
        order_book: str,
        allowed_markets: Iterable[str],
        relayer_set_root: str | None = None,
    ) -> SessionGrant:
        root = relayer_set_root or self.fetch_relayer_set_root()
        expiry = int(self.clock()) + int(self.lifetime_seconds)
        # Nonce is read last so a concurrent session init cannot make it stale before signing.
        nonce = self.relayer.get_session_nonce(wallet.address)
        permit = build_permit(
            trader=wallet.address,
            relayer_set_root=root,
            expiry=expiry,
            nonce=nonce,
            allowed_markets=allowed_markets,
        )
        signature = sign_permit(wallet.private_key, self.chain_id, self.registry_address, permit)
        recovered = recover_permit_signer(self.chain_id, self.registry_address, permit, signature)
        if normalize_address(recovered) != wallet.key:
            raise AuthorizationError(f"permit signer mismatch trader={wallet.address} recovered={recovered}")

        receipt = self.relayer.init_session(order_book, permit.to_json(), signature)
        session_id = receipt.session_id or compute_session_id(wallet.address, root, permit.session_salt)
        LOGGER.info(
            "session_init trader=%s nickname=%s session=%s expiry=%s tx=%s",
            wallet.address,
            wallet.nickname,
            session_id,
            expiry,
            receipt.tx_hash,
        )
        return SessionGrant(session_id=session_id, expiry=expiry, tx_hash=receipt.tx_hash, nonce=nonce)
