from __future__ import annotations

import csv
from pathlib import Path

from eth_account import Account

from gasless_packer.errors import ConfigurationError
from gasless_packer.models import Wallet, normalize_address


def _normalize_key(raw: str) -> str:
    key = raw.strip()
    if key and not key.startswith("0x"):
        key = "0x" + key
    return key


def load_wallets_from_csv(path: str, limit: int | None = None) -> list[Wallet]:
    """Read `nickname,address,privateKey` rows; every key must derive its address."""
    csv_path = Path(path)
    if not csv_path.exists():
        raise ConfigurationError(f"wallet CSV not found: {csv_path}")

    wallets: list[Wallet] = []
    seen: set[str] = set()
    with csv_path.open("r", encoding="utf-8", newline="") as f:
        for line_no, row in enumerate(csv.reader(f), start=1):
            cells = [c.strip() for c in row]
            if not cells or not any(cells) or cells[0].startswith("#"):
                continue
            if line_no == 1 and cells[0].lower() == "nickname":
                continue
            if len(cells) < 3:
                raise ConfigurationError(f"{csv_path}:{line_no}: expected nickname,address,privateKey")
            nickname, address, private_key = cells[0], cells[1], _normalize_key(cells[2])
            try:
                derived = Account.from_key(private_key).address
            except Exception as exc:
                raise ConfigurationError(f"{csv_path}:{line_no}: invalid private key") from exc
            if normalize_address(derived) != normalize_address(address):
                raise ConfigurationError(
                    f"{csv_path}:{line_no}: private key does not match address {address}"
                )
            key = normalize_address(derived)
            if key in seen:
                raise ConfigurationError(f"{csv_path}:{line_no}: duplicate wallet {derived}")
            seen.add(key)
            wallets.append(
                Wallet(
                    address=derived,
                    private_key=private_key,
                    nickname=nickname or f"User{len(wallets) + 1}",
                )
            )
            if limit is not None and len(wallets) >= limit:
                break
    if not wallets:
        raise ConfigurationError(f"no wallets found in {csv_path}")
    return wallets
