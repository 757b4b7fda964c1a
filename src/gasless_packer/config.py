from __future__ import annotations

from dataclasses import dataclass
import os

from gasless_packer.errors import ConfigurationError
from gasless_packer.models import RunConfig


def _env(*names: str, default: str = "") -> str:
    for name in names:
        value = os.getenv(name, "").strip()
        if value:
            return value
    return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_optional_int(*names: str) -> int | None:
    raw = _env(*names)
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


@dataclass(frozen=True)
class PackerConfig:
    app_url: str
    rpc_url: str
    session_registry_address: str
    chain_id: int | None
    api_timeout_seconds: float
    rpc_timeout_seconds: float

    state_dir: str
    wallets_csv: str
    max_wallets: int

    session_lifetime_seconds: int
    session_renew_margin_seconds: float
    auth_retry_seconds: float
    wallet_pause_seconds: float
    cycle_error_backoff_seconds: float
    sell_margin_bps: int
    journal_reconcile_limit: int
    nonce_retry_attempts: int
    nonce_retry_backoff_seconds: float
    kill_key: str

    run: RunConfig

    hub_rpc_url: str
    hub_inbox_address: str
    hub_relayer_private_key: str
    hub_chain_id: int | None
    spoke_rpc_url: str
    spoke_outbox_address: str
    spoke_relayer_private_key: str
    spoke_chain_id: int | None
    bridge_domain_hub: int
    bridge_domain_spoke: int
    spoke_remote_app: str

    log_level: str

    def validate_for_run(self) -> None:
        missing = []
        if not self.app_url:
            missing.append("APP_URL")
        if not self.rpc_url:
            missing.append("RPC_URL (or RPC_URL_HYPEREVM)")
        if not self.session_registry_address:
            missing.append("SESSION_REGISTRY_ADDRESS")
        if missing:
            raise ConfigurationError("missing required settings: " + ", ".join(missing))
        if not self.session_registry_address.lower().startswith("0x") or len(self.session_registry_address) != 42:
            raise ConfigurationError("SESSION_REGISTRY_ADDRESS must be a 20-byte hex address")
        if self.session_lifetime_seconds <= self.session_renew_margin_seconds:
            raise ConfigurationError("SESSION_LIFETIME_SECS must exceed the renewal margin")

    def validate_for_deposits(self) -> None:
        missing = [
            name
            for name, value in (
                ("HUB_RPC_URL", self.hub_rpc_url),
                ("HUB_INBOX_ADDRESS", self.hub_inbox_address),
                ("HUB_RELAYER_PRIVATE_KEY", self.hub_relayer_private_key),
                ("SPOKE_RPC_URL", self.spoke_rpc_url),
                ("SPOKE_OUTBOX_ADDRESS", self.spoke_outbox_address),
                ("SPOKE_RELAYER_PRIVATE_KEY", self.spoke_relayer_private_key),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError("missing deposit relay settings: " + ", ".join(missing))


def load_config() -> PackerConfig:
    return PackerConfig(
        app_url=_env("APP_URL", default="http://localhost:3000").rstrip("/"),
        rpc_url=_env("RPC_URL", "RPC_URL_HYPEREVM"),
        session_registry_address=_env("SESSION_REGISTRY_ADDRESS"),
        chain_id=_env_optional_int("CHAIN_ID", "NEXT_PUBLIC_CHAIN_ID"),
        api_timeout_seconds=10.0,
        rpc_timeout_seconds=15.0,
        state_dir=_env("PACKER_STATE_DIR", default="state"),
        wallets_csv=_env("PACKER_WALLETS_CSV", default="wallets.csv"),
        max_wallets=max(1, _env_int("PACKER_MAX_WALLETS", 100)),
        session_lifetime_seconds=_env_int("SESSION_LIFETIME_SECS", 86_400),
        session_renew_margin_seconds=60.0,
        auth_retry_seconds=30.0,
        wallet_pause_seconds=0.025,
        cycle_error_backoff_seconds=1.0,
        sell_margin_bps=_env_int("PACKER_SELL_MARGIN_BPS", 15_000),
        journal_reconcile_limit=50_000,
        nonce_retry_attempts=5,
        nonce_retry_backoff_seconds=0.75,
        kill_key=_env("PACKER_KILL_KEY", default="q")[:1] or "q",
        run=RunConfig(),
        hub_rpc_url=_env("HUB_RPC_URL", "RPC_URL_HUB", "RPC_URL"),
        hub_inbox_address=_env("HUB_INBOX_ADDRESS"),
        hub_relayer_private_key=_env("HUB_RELAYER_PRIVATE_KEY", "RELAYER_PRIVATE_KEY"),
        hub_chain_id=_env_optional_int("HUB_CHAIN_ID", "CHAIN_ID"),
        spoke_rpc_url=_env("SPOKE_RPC_URL"),
        spoke_outbox_address=_env("SPOKE_OUTBOX_ADDRESS"),
        spoke_relayer_private_key=_env("SPOKE_RELAYER_PRIVATE_KEY", "RELAYER_PRIVATE_KEY"),
        spoke_chain_id=_env_optional_int("SPOKE_CHAIN_ID"),
        bridge_domain_hub=_env_int("BRIDGE_DOMAIN_HUB", 999),
        bridge_domain_spoke=_env_int("BRIDGE_DOMAIN_SPOKE", 137),
        spoke_remote_app=_env("SPOKE_REMOTE_APP", "BRIDGE_REMOTE_APP_SPOKE"),
        log_level=_env("LOG_LEVEL", default="INFO").upper(),
    )
