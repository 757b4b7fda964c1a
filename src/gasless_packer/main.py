from __future__ import annotations

import argparse
import json
import logging
import random
import re
import signal
import threading
import time
import uuid
from typing import Any, Callable, Iterable

from gasless_packer.clients_chain import OrderbookChainReader
from gasless_packer.clients_relayer import RelayerClient, resolve_market
from gasless_packer.config import PackerConfig, load_config
from gasless_packer.deposits import Deposit, DepositRelay, address_to_bytes32
from gasless_packer.engines.engine_packer import (
    CancelOne,
    MarketView,
    ModifyOldest,
    PackerAction,
    PackerEngine,
    PlaceLimit,
    Skip,
)
from gasless_packer.errors import AuthorizationError, ConfigurationError, ContractRejectedError, PackerError
from gasless_packer.execution import ActionExecutor, TransactionSender, retry_transient
from gasless_packer.models import (
    ActionJournalEntry,
    ActionKind,
    Checkpoint,
    LiveMarket,
    MarketRef,
    RunInfo,
    Wallet,
    iso_now,
    later_ts,
    to_price6,
)
from gasless_packer.pricing import anchor_price6
from gasless_packer.runtime_state import RunContext, RunPhase
from gasless_packer.runtime_support import KillSwitch, reference_mark_price
from gasless_packer.session import SessionAuthorizer
from gasless_packer.storage import CheckpointStore
from gasless_packer.wallets import load_wallets_from_csv

LOGGER = logging.getLogger("gasless_packer")
ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


class PackerRuntime:
    def __init__(
        self,
        config: PackerConfig,
        wallets: list[Wallet],
        market: MarketRef,
        *,
        run_overrides: dict[str, Any] | None = None,
        fresh: bool = False,
        relayer: RelayerClient | None = None,
        chain: OrderbookChainReader | None = None,
        store: CheckpointStore | None = None,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config
        self.wallets = list(wallets)
        self.market = market
        self.run_overrides = {k: v for k, v in (run_overrides or {}).items() if v is not None}
        self.fresh = fresh
        self.relayer = relayer or RelayerClient(config.app_url, timeout_seconds=config.api_timeout_seconds)
        self.chain = chain or OrderbookChainReader(config.rpc_url, timeout_seconds=config.rpc_timeout_seconds)
        self.store = store or CheckpointStore(config.state_dir)
        self.executor = ActionExecutor(
            self.relayer,
            market.order_book,
            nonce_attempts=config.nonce_retry_attempts,
            backoff_seconds=config.nonce_retry_backoff_seconds,
        )
        self.clock = clock
        self.rng = rng or random.Random()
        self.context: RunContext | None = None
        self.engine: PackerEngine | None = None
        self.authorizer: SessionAuthorizer | None = None
        self._stop_event = threading.Event()

    @property
    def keep_running(self) -> bool:
        return not self._stop_event.is_set()

    @property
    def phase(self) -> RunPhase:
        return self.context.phase if self.context is not None else RunPhase.INIT

    def stop(self) -> None:
        self._stop_event.set()

    def _read(self, call: Callable[[], Any], label: str) -> Any:
        return retry_transient(
            call,
            max_attempts=self.config.nonce_retry_attempts,
            backoff_seconds=self.config.nonce_retry_backoff_seconds,
            sleep=self._stop_event.wait,
            label=label,
        )

    def _ctx(self) -> RunContext:
        if self.context is None:
            raise PackerError("runtime not initialized")
        return self.context

    def initialize(self) -> RunContext:
        chain_id = self.config.chain_id or self.chain.get_chain_id()
        order_book = self.market.order_book
        checkpoint = None if self.fresh else self.store.load_checkpoint(chain_id, order_book)
        now = iso_now()
        if checkpoint is None:
            base = self.config.run
            checkpoint = Checkpoint(
                chain_id=chain_id,
                order_book=order_book,
                market=self.market,
                run=RunInfo(run_id=uuid.uuid4().hex, started_at=now, updated_at=now),
                config=base.with_overrides(**self.run_overrides),
            )
            LOGGER.info("run_start run_id=%s chain_id=%s order_book=%s", checkpoint.run.run_id, chain_id, order_book)
        else:
            if self.run_overrides:
                checkpoint.config = checkpoint.config.with_overrides(**self.run_overrides)
            LOGGER.info(
                "run_resume run_id=%s chain_id=%s order_book=%s wallets=%s",
                checkpoint.run.run_id,
                chain_id,
                order_book,
                len(checkpoint.wallets),
            )

        journal_last = self.store.last_action_by_trader(chain_id, order_book, limit=self.config.journal_reconcile_limit)
        for wallet in self.wallets:
            state = checkpoint.wallet_state(wallet)
            state.nickname = wallet.nickname or state.nickname
            sidecar = self.store.load_wallet(chain_id, order_book, wallet.address)
            if sidecar is not None and (sidecar.session_expiry or 0) > (state.session_expiry or 0):
                state.session_id = sidecar.session_id
                state.session_expiry = sidecar.session_expiry
            state.last_action_at = later_ts(journal_last.get(wallet.key), state.last_action_at)

        self.context = RunContext(checkpoint=checkpoint, wallets=self.wallets)
        self.context.market_static = self.chain.market_static(order_book)
        self.engine = PackerEngine(checkpoint.config)
        self.authorizer = SessionAuthorizer(
            relayer=self.relayer,
            chain_id=chain_id,
            registry_address=self.config.session_registry_address,
            lifetime_seconds=self.config.session_lifetime_seconds,
            renew_margin_seconds=self.config.session_renew_margin_seconds,
            clock=self.clock,
        )
        self.store.save_checkpoint(checkpoint)
        return self.context

    def _journal(
        self,
        wallet: Wallet | None,
        kind: ActionKind,
        params: dict[str, Any] | None = None,
        tx_hash: str | None = None,
        error: str | None = None,
    ) -> None:
        ctx = self._ctx()
        self.store.append_action(
            ActionJournalEntry(
                ts=iso_now(),
                run_id=ctx.run_id,
                chain_id=ctx.chain_id,
                order_book=ctx.order_book,
                market_id=ctx.market_id,
                trader=wallet.address if wallet is not None else "unknown",
                nickname=wallet.nickname if wallet is not None else "",
                action=kind,
                params=params or {},
                tx_hash=tx_hash,
                error=error,
            )
        )

    def _persist_wallet(self, wallet: Wallet) -> None:
        ctx = self._ctx()
        state = ctx.checkpoint.wallet_state(wallet)
        self.store.save_wallet(ctx.chain_id, ctx.order_book, wallet.address, state)
        self.store.save_checkpoint(ctx.checkpoint)

    def _has_session(self, wallet: Wallet) -> bool:
        state = self._ctx().checkpoint.wallet_state(wallet)
        return state.has_valid_session(self.clock(), self.config.session_renew_margin_seconds)

    def bootstrap_sessions(self) -> int:
        ctx = self._ctx()
        assert self.authorizer is not None
        ctx.phase = RunPhase.SESSION_BOOTSTRAP
        now = self.clock()
        pending = [
            w
            for w in self.wallets
            if not self._has_session(w)
            and now - ctx.auth_failed_at.get(w.key, float("-inf")) >= self.config.auth_retry_seconds
        ]
        if not pending:
            return sum(1 for w in self.wallets if self._has_session(w))

        allowed = [ctx.market_id] if ctx.market_id else []
        root: str | None = None
        try:
            root = self._read(self.authorizer.fetch_relayer_set_root, "relayer_set")
        except Exception as exc:
            LOGGER.error("relayer_set_failed error=%s", exc)
            self._journal(None, ActionKind.ERROR, {"stage": "relayer_set"}, error=str(exc))
            for wallet in pending:
                ctx.auth_failed_at[wallet.key] = now

        if root is not None:
            for wallet in pending:
                if not self.keep_running:
                    break
                state = ctx.checkpoint.wallet_state(wallet)
                try:
                    grant = self.authorizer.authorize(wallet, ctx.order_book, allowed, relayer_set_root=root)
                except Exception as exc:
                    ctx.auth_failed_at[wallet.key] = self.clock()
                    LOGGER.warning("session_init_failed trader=%s nickname=%s error=%s", wallet.address, wallet.nickname, exc)
                    self._journal(wallet, ActionKind.ERROR, {"stage": "session_init"}, error=str(exc))
                    continue
                ctx.auth_failed_at.pop(wallet.key, None)
                state.session_id = grant.session_id
                state.session_expiry = grant.expiry
                state.last_action_at = iso_now()
                self.store.save_wallet(ctx.chain_id, ctx.order_book, wallet.address, state)
                self._journal(
                    wallet,
                    ActionKind.SESSION_INIT,
                    {"sessionId": grant.session_id, "expiry": grant.expiry, "nonce": grant.nonce},
                    tx_hash=grant.tx_hash,
                )
                self.store.save_checkpoint(ctx.checkpoint)
                self._stop_event.wait(self.config.wallet_pause_seconds)
        return sum(1 for w in self.wallets if self._has_session(w))

    def rehydrate(self) -> None:
        ctx = self._ctx()
        ctx.phase = RunPhase.REHYDRATE
        ctx.buy_margin_bps = self.chain.margin_requirement_bps(ctx.order_book)
        for wallet in self.wallets:
            if not self._has_session(wallet):
                continue
            try:
                ctx.open_orders[wallet.key] = self.chain.get_user_open_orders(ctx.order_book, wallet.address)
            except Exception as exc:
                LOGGER.warning("rehydrate_failed trader=%s error=%s", wallet.address, exc)
        total = sum(len(v) for v in ctx.open_orders.values())
        LOGGER.info("rehydrated wallets=%s open_orders=%s margin_bps=%s", len(ctx.open_orders), total, ctx.buy_margin_bps)

    def market_view(self) -> MarketView:
        ctx = self._ctx()
        bid6, ask6 = self.chain.best_bid_ask(ctx.order_book)
        live = LiveMarket()
        if self.market.symbol:
            try:
                live = self._read(lambda: self.relayer.fetch_live(self.market.symbol), "live_market")
            except Exception as exc:
                LOGGER.warning("live_market_failed symbol=%s error=%s", self.market.symbol, exc)
        if bid6 is None and live.best_bid is not None:
            bid6 = to_price6(live.best_bid)
        if ask6 is None and live.best_ask is not None:
            ask6 = to_price6(live.best_ask)

        vault_mark6 = None
        if (live.mark_price is None or abs(live.mark_price - 1.0) <= 1e-9) and ctx.market_static is not None:
            vault_mark6 = self.chain.mark_price(ctx.market_static.vault, ctx.market_static.market_id)
        ref_mark = reference_mark_price(live.mark_price, vault_mark6)

        anchor6 = anchor_price6(
            bid6,
            ask6,
            to_price6(ref_mark) if ref_mark is not None else None,
            to_price6(live.last_trade_price) if live.last_trade_price is not None else None,
        )
        return MarketView(
            tick6=self.market.tick6,
            anchor6=anchor6,
            best_bid6=bid6,
            best_ask6=ask6,
            buy_margin_bps=ctx.buy_margin_bps,
            sell_margin_bps=self.config.sell_margin_bps,
        )

    def pack_wallet(self, wallet_index: int, wallet: Wallet, view: MarketView) -> list[PackerAction]:
        """Plan and submit one wallet's actions; returns the ones the relayer accepted."""
        ctx = self._ctx()
        assert self.engine is not None and ctx.market_static is not None
        state = ctx.checkpoint.wallet_state(wallet)
        # Orders read during rehydrate serve the first cycle only.
        orders = ctx.open_orders.pop(wallet.key, None)
        if orders is None:
            orders = self.chain.get_user_open_orders(ctx.order_book, wallet.address)
        available6 = self.chain.available_collateral(ctx.market_static.vault, wallet.address)
        plan = self.engine.decide(wallet_index, orders, available6, view)
        applied: list[PackerAction] = []

        for action in plan.actions:
            if isinstance(action, Skip):
                LOGGER.debug("skip trader=%s reason=%s is_buy=%s level=%s", wallet.address, action.reason, action.is_buy, action.level)
                continue
            try:
                result = self.executor.execute(wallet, str(state.session_id), action)
            except ContractRejectedError as exc:
                LOGGER.warning("action_rejected trader=%s kind=%s error=%s", wallet.address, action.kind, exc)
                self._journal(wallet, ActionKind.ERROR, {"kind": action.kind}, error=str(exc))
                continue
            except AuthorizationError as exc:
                LOGGER.warning("session_rejected trader=%s error=%s", wallet.address, exc)
                state.session_id = None
                state.session_expiry = None
                self._journal(wallet, ActionKind.ERROR, {"kind": action.kind, "stage": "session"}, error=str(exc))
                self._persist_wallet(wallet)
                break
            except Exception as exc:
                LOGGER.warning("action_failed trader=%s kind=%s error=%s", wallet.address, action.kind, exc)
                self._journal(wallet, ActionKind.ERROR, {"kind": action.kind}, error=str(exc))
                break
            self._journal(wallet, result.kind, result.params, tx_hash=result.tx_hash)
            applied.append(action)
            state.last_action_at = iso_now()
            self._persist_wallet(wallet)
        return applied

    def run_cycle(self) -> dict[str, int]:
        ctx = self._ctx()
        assert self.engine is not None
        cfg = self.engine.run_config
        ctx.cycle += 1
        stats = {"wallets": 0, "placed": 0, "cancelled": 0, "modified": 0, "errors": 0}
        delay = self.rng.uniform(cfg.min_delay_ms, cfg.max_delay_ms) / 1000.0
        if self._stop_event.wait(delay):
            return stats

        if any(not self._has_session(w) for w in self.wallets):
            self.bootstrap_sessions()
            ctx.phase = RunPhase.STEADY_STATE

        try:
            view = self.market_view()
        except Exception as exc:
            LOGGER.error("cycle_failed cycle=%s error=%s", ctx.cycle, exc)
            self._journal(None, ActionKind.ERROR, {"stage": "market_view", "cycle": ctx.cycle}, error=str(exc))
            stats["errors"] += 1
            self._stop_event.wait(self.config.cycle_error_backoff_seconds)
            return stats

        for index, wallet in enumerate(self.wallets):
            if not self.keep_running:
                break
            if not self._has_session(wallet):
                continue
            stats["wallets"] += 1
            try:
                applied = self.pack_wallet(index, wallet, view)
            except Exception as exc:
                stats["errors"] += 1
                LOGGER.warning("wallet_failed trader=%s nickname=%s error=%s", wallet.address, wallet.nickname, exc)
                self._journal(wallet, ActionKind.ERROR, {"stage": "pack_wallet"}, error=str(exc))
            else:
                for action in applied:
                    if isinstance(action, PlaceLimit):
                        stats["placed"] += 1
                    elif isinstance(action, CancelOne):
                        stats["cancelled"] += 1
                    elif isinstance(action, ModifyOldest):
                        stats["modified"] += 1
            self._stop_event.wait(self.config.wallet_pause_seconds)

        LOGGER.info(
            "cycle=%s wallets=%s placed=%s cancelled=%s modified=%s errors=%s bid6=%s ask6=%s anchor6=%s",
            ctx.cycle,
            stats["wallets"],
            stats["placed"],
            stats["cancelled"],
            stats["modified"],
            stats["errors"],
            view.best_bid6,
            view.best_ask6,
            view.anchor6,
        )
        return stats

    def run(self, max_cycles: int | None = None) -> None:
        ctx = self.initialize()
        try:
            ready = self.bootstrap_sessions()
            if ready == 0 and self.keep_running:
                raise AuthorizationError("no wallet could establish a trading session")
            LOGGER.info("sessions_ready wallets=%s/%s", ready, len(self.wallets))
            self.rehydrate()
            ctx.phase = RunPhase.STEADY_STATE
            while self.keep_running:
                if max_cycles is not None and ctx.cycle >= max_cycles:
                    break
                self.run_cycle()
        finally:
            self.close()

    def close(self) -> None:
        if self.context is None or self.context.phase == RunPhase.STOPPED:
            return
        self.context.phase = RunPhase.STOPPING
        self.store.save_checkpoint(self.context.checkpoint)
        self.context.phase = RunPhase.STOPPED
        LOGGER.info("run_stopped run_id=%s cycles=%s", self.context.run_id, self.context.cycle)


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    for noisy in ("urllib3", "web3", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.ERROR)


def _resolve_market(config: PackerConfig, term: str) -> MarketRef:
    relayer = RelayerClient(config.app_url, timeout_seconds=config.api_timeout_seconds)
    markets = relayer.fetch_active_markets()
    try:
        return resolve_market(markets, term)
    except LookupError:
        if ADDRESS_RE.match(term.strip()):
            return MarketRef(symbol="", market_identifier="", order_book=term.strip())
        raise


def _run_overrides(args: argparse.Namespace) -> dict[str, Any]:
    return {
        "min_delay_ms": args.min_delay_ms,
        "max_delay_ms": args.max_delay_ms,
        "size_min": args.size_min,
        "size_max": args.size_max,
        "orders_per_side_per_wallet": args.orders_per_side,
        "max_wallet_utilization": args.utilization,
        "min_distance_ticks": args.min_distance_ticks,
        "max_distance_ticks": args.max_distance_ticks,
    }


def _run_command(args: argparse.Namespace) -> int:
    config = load_config()
    _setup_logging(config.log_level)
    try:
        config.validate_for_run()
        wallets = load_wallets_from_csv(args.csv or config.wallets_csv, limit=args.wallets or config.max_wallets)
        market = _resolve_market(config, args.market)
    except (PackerError, LookupError) as exc:
        LOGGER.error("startup failed: %s", exc)
        return 2

    runtime = PackerRuntime(config, wallets, market, run_overrides=_run_overrides(args), fresh=args.fresh)
    LOGGER.info(
        "Starting packer market=%s order_book=%s wallets=%s",
        market.symbol or market.market_identifier or "-",
        market.order_book,
        len(wallets),
    )
    signal_count = {"count": 0}

    def _handle_signal(signum: int, _frame: object) -> None:
        signal_count["count"] += 1
        if signal_count["count"] >= 2:
            LOGGER.error("Received signal %s again, forcing exit now", signum)
            raise SystemExit(130)
        LOGGER.warning(
            "Received signal %s, stopping after current wallet (press Ctrl+C again to force-exit)",
            signum,
        )
        runtime.stop()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)
    kill_switch = KillSwitch(runtime.stop, key=config.kill_key)
    if kill_switch.start():
        LOGGER.info("Press '%s' to stop", kill_switch.key)
    try:
        runtime.run(max_cycles=args.max_cycles)
        return 0
    except ConfigurationError as exc:
        LOGGER.error("Configuration error: %s", exc)
        return 2
    except AuthorizationError as exc:
        LOGGER.error("Authorization failed: %s", exc)
        return 2
    except Exception as exc:
        LOGGER.error("Fatal runtime error: %s", exc)
        return 2
    finally:
        kill_switch.stop()


def _status_command(args: argparse.Namespace) -> int:
    config = load_config()
    _setup_logging(config.log_level)
    store = CheckpointStore(config.state_dir)
    order_book = args.market
    chain_id = args.chain_id or config.chain_id
    if chain_id is None:
        LOGGER.error("--chain-id or CHAIN_ID is required")
        return 2
    if not ADDRESS_RE.match(order_book):
        try:
            order_book = _resolve_market(config, order_book).order_book
        except (PackerError, LookupError) as exc:
            LOGGER.error("market lookup failed: %s", exc)
            return 2
    checkpoint = store.load_checkpoint(chain_id, order_book)
    actions = store.read_actions(chain_id, order_book, limit=args.limit)
    now = time.time()
    report: dict[str, Any] = {
        "checkpoint": None,
        "recent_actions": [a.to_dict() for a in actions],
    }
    if checkpoint is not None:
        report["checkpoint"] = {
            "run_id": checkpoint.run.run_id,
            "started_at": checkpoint.run.started_at,
            "updated_at": checkpoint.run.updated_at,
            "config": checkpoint.config.to_dict(),
            "wallets": len(checkpoint.wallets),
            "active_sessions": sum(
                1
                for s in checkpoint.wallets.values()
                if s.has_valid_session(now, config.session_renew_margin_seconds)
            ),
        }
    print(json.dumps(report, indent=2, default=str))
    return 0


def _relay_deposit_command(args: argparse.Namespace) -> int:
    config = load_config()
    _setup_logging(config.log_level)
    try:
        config.validate_for_deposits()
    except ConfigurationError as exc:
        LOGGER.error(str(exc))
        return 2
    hub = TransactionSender(
        config.hub_rpc_url,
        config.hub_relayer_private_key,
        chain_id=config.hub_chain_id,
        timeout_seconds=config.rpc_timeout_seconds,
        nonce_attempts=config.nonce_retry_attempts,
        nonce_backoff_seconds=config.nonce_retry_backoff_seconds,
    )
    spoke = TransactionSender(
        config.spoke_rpc_url,
        config.spoke_relayer_private_key,
        chain_id=config.spoke_chain_id,
        timeout_seconds=config.rpc_timeout_seconds,
        nonce_attempts=config.nonce_retry_attempts,
        nonce_backoff_seconds=config.nonce_retry_backoff_seconds,
    )
    relay = DepositRelay(
        hub=hub,
        hub_inbox=config.hub_inbox_address,
        src_domain=config.bridge_domain_spoke,
        src_app=config.spoke_remote_app or address_to_bytes32(config.spoke_outbox_address),
        store=CheckpointStore(config.state_dir),
        spoke=spoke,
        spoke_outbox=config.spoke_outbox_address,
        dst_domain=config.bridge_domain_hub,
    )
    try:
        deposit = Deposit(
            user=args.user,
            token=args.token,
            amount=int(args.amount),
            src_tx_hash=args.src_tx,
            log_index=int(args.log_index),
            src_chain_id=spoke.chain_id(),
        )
        outbox_tx = None
        if not args.skip_outbox:
            outbox_tx = relay.publish(deposit)
        result = relay.deliver(deposit)
    except Exception as exc:
        LOGGER.error("relay-deposit failed: %s", exc)
        return 2
    print(
        json.dumps(
            {
                "depositId": result.deposit_id,
                "status": result.status,
                "outboxTx": outbox_tx,
                "hubTx": result.tx_hash,
            },
            indent=2,
        )
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gasless_packer", description="Gasless order-book liquidity packer"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run the packing loop")
    run.add_argument("--market", required=True, help="Market symbol, identifier, or order book address")
    run.add_argument("--csv", default=None, help="Wallet CSV (nickname,address,privateKey)")
    run.add_argument("--wallets", type=int, default=None, help="Use the first N wallets")
    run.add_argument("--fresh", action="store_true", help="Ignore any existing checkpoint")
    run.add_argument("--max-cycles", type=int, default=None, help="Stop after N cycles")
    run.add_argument("--min-delay-ms", type=int, default=None)
    run.add_argument("--max-delay-ms", type=int, default=None)
    run.add_argument("--size-min", type=float, default=None)
    run.add_argument("--size-max", type=float, default=None)
    run.add_argument("--orders-per-side", type=int, default=None)
    run.add_argument("--utilization", type=float, default=None, help="Max fraction of available collateral per wallet")
    run.add_argument("--min-distance-ticks", type=int, default=None)
    run.add_argument("--max-distance-ticks", type=int, default=None)
    run.set_defaults(func=_run_command)

    status = sub.add_parser("status", help="Print checkpoint summary and recent journal entries")
    status.add_argument("--market", required=True, help="Market symbol, identifier, or order book address")
    status.add_argument("--chain-id", type=int, default=None)
    status.add_argument("--limit", type=int, default=20, help="Number of journal entries to show")
    status.set_defaults(func=_status_command)

    relay = sub.add_parser("relay-deposit", help="Publish a deposit on the spoke and deliver it to the hub")
    relay.add_argument("--user", required=True)
    relay.add_argument("--token", required=True)
    relay.add_argument("--amount", required=True, help="Raw token units")
    relay.add_argument("--src-tx", required=True, help="Source chain deposit transaction hash")
    relay.add_argument("--log-index", type=int, required=True)
    relay.add_argument("--skip-outbox", action="store_true", help="Only deliver to the hub inbox")
    relay.set_defaults(func=_relay_deposit_command)
    return parser


def cli(argv: Iterable[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    return int(args.func(args))


def main() -> None:
    raise SystemExit(cli())


if __name__ == "__main__":
    main()
