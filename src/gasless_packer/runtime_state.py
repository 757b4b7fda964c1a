from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from gasless_packer.clients_chain import MarketStatic
from gasless_packer.models import Checkpoint, OnChainOrder, Wallet


class RunPhase(str, Enum):
    INIT = "init"
    SESSION_BOOTSTRAP = "session_bootstrap"
    REHYDRATE = "rehydrate"
    STEADY_STATE = "steady_state"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass
class RunContext:
    """Everything one packing run carries between phases."""

    checkpoint: Checkpoint
    wallets: list[Wallet]
    open_orders: dict[str, list[OnChainOrder]] = field(default_factory=dict)
    auth_failed_at: dict[str, float] = field(default_factory=dict)
    market_static: MarketStatic | None = None
    buy_margin_bps: int = 10_000
    cycle: int = 0
    phase: RunPhase = RunPhase.INIT

    @property
    def run_id(self) -> str:
        return self.checkpoint.run.run_id

    @property
    def chain_id(self) -> int:
        return self.checkpoint.chain_id

    @property
    def order_book(self) -> str:
        return self.checkpoint.order_book

    @property
    def market_id(self) -> str:
        if self.checkpoint.market.market_id_bytes32:
            return self.checkpoint.market.market_id_bytes32
        if self.market_static is not None:
            return self.market_static.market_id
        return ""
