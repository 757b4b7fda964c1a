#!/usr/bin/env python3
from __future__ import annotations

from pathlib import Path
import sys


ROOT = Path(__file__).resolve().parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from dotenv import load_dotenv  # noqa: E402

for env_name in (".env.local", ".env"):
    load_dotenv(dotenv_path=ROOT / env_name, override=False)

from gasless_packer.main import cli  # noqa: E402


if __name__ == "__main__":
    raise SystemExit(cli())
