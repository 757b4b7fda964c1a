from __future__ import annotations

from collections import deque
from pathlib import Path
import json
import logging
import os
import tempfile
from typing import Any, Iterator

from gasless_packer.models import (
    CHECKPOINT_VERSION,
    ActionJournalEntry,
    Checkpoint,
    WalletState,
    iso_now,
    later_ts,
    normalize_address,
)

LOGGER = logging.getLogger("gasless_packer")

CHECKPOINT_FILE = "checkpoint.json"
JOURNAL_FILE = "actions.jsonl"
WALLETS_DIR = "wallets"


def _write_json_atomic(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    # Temp file lives next to the target so os.replace stays on one filesystem.
    fd, tmp = tempfile.mkstemp(prefix=f".{path.stem}_", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    finally:
        if os.path.exists(tmp):
            os.unlink(tmp)


def _parse_entry(raw: str) -> ActionJournalEntry | None:
    line = raw.strip()
    if not line:
        return None
    try:
        return ActionJournalEntry.from_dict(json.loads(line))
    except (ValueError, KeyError, TypeError, AttributeError):
        return None


class CheckpointStore:
    """File-backed checkpoint, wallet sidecars, and action journal per market.

    Layout: <root>/<chain_id>/<order_book_lower>/{checkpoint.json,actions.jsonl,wallets/<addr>.json}
    """

    def __init__(self, state_dir: str) -> None:
        self.root = Path(state_dir)

    def market_dir(self, chain_id: int, order_book: str) -> Path:
        return self.root / str(int(chain_id)) / normalize_address(order_book)

    def checkpoint_path(self, chain_id: int, order_book: str) -> Path:
        return self.market_dir(chain_id, order_book) / CHECKPOINT_FILE

    def journal_path(self, chain_id: int, order_book: str) -> Path:
        return self.market_dir(chain_id, order_book) / JOURNAL_FILE

    def wallet_path(self, chain_id: int, order_book: str, address: str) -> Path:
        return self.market_dir(chain_id, order_book) / WALLETS_DIR / f"{normalize_address(address)}.json"

    def load_checkpoint(self, chain_id: int, order_book: str) -> Checkpoint | None:
        path = self.checkpoint_path(chain_id, order_book)
        if not path.exists():
            return None
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            return Checkpoint.from_dict(raw)
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
            LOGGER.warning("checkpoint_unreadable path=%s error=%s starting_fresh=1", path, exc)
            return None

    def save_checkpoint(self, checkpoint: Checkpoint) -> None:
        checkpoint.run.updated_at = iso_now()
        _write_json_atomic(
            self.checkpoint_path(checkpoint.chain_id, checkpoint.order_book),
            checkpoint.to_dict(),
        )

    def save_wallet(self, chain_id: int, order_book: str, address: str, state: WalletState) -> None:
        payload = {
            "version": CHECKPOINT_VERSION,
            "chain_id": int(chain_id),
            "order_book": order_book,
            "address": normalize_address(address),
            "updated_at": iso_now(),
            "state": state.to_dict(),
        }
        _write_json_atomic(self.wallet_path(chain_id, order_book, address), payload)

    def load_wallet(self, chain_id: int, order_book: str, address: str) -> WalletState | None:
        path = self.wallet_path(chain_id, order_book, address)
        if not path.exists():
            return None
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            LOGGER.warning("wallet_state_unreadable path=%s error=%s", path, exc)
            return None
        if not isinstance(raw, dict) or raw.get("version") != CHECKPOINT_VERSION:
            return None
        state = raw.get("state")
        if not isinstance(state, dict):
            return None
        return WalletState.from_dict(state)

    def append_action(self, entry: ActionJournalEntry) -> None:
        path = self.journal_path(entry.chain_id, entry.order_book)
        path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(entry.to_dict(), sort_keys=True, default=str)
        with path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")
            f.flush()
            os.fsync(f.fileno())

    def iter_actions(self, chain_id: int, order_book: str) -> Iterator[ActionJournalEntry]:
        path = self.journal_path(chain_id, order_book)
        if not path.exists():
            return
        with path.open("r", encoding="utf-8", errors="replace") as f:
            for raw in f:
                entry = _parse_entry(raw)
                if entry is not None:
                    yield entry

    def read_actions(self, chain_id: int, order_book: str, limit: int = 1000) -> list[ActionJournalEntry]:
        path = self.journal_path(chain_id, order_book)
        if not path.exists() or limit <= 0:
            return []
        tail: deque[str] = deque(maxlen=int(limit))
        with path.open("r", encoding="utf-8", errors="replace") as f:
            for raw in f:
                line = raw.strip()
                if line:
                    tail.append(line)
        out: list[ActionJournalEntry] = []
        for line in tail:
            entry = _parse_entry(line)
            if entry is not None:
                out.append(entry)
        return out

    def last_action_by_trader(self, chain_id: int, order_book: str, limit: int = 50_000) -> dict[str, str]:
        out: dict[str, str] = {}
        for entry in self.read_actions(chain_id, order_book, limit=limit):
            trader = normalize_address(entry.trader)
            if not trader or trader == "unknown":
                continue
            latest = later_ts(out.get(trader), entry.ts)
            if latest is not None:
                out[trader] = latest
        return out
