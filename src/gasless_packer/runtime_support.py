from __future__ import annotations

import logging
import os
import select
import sys
import threading
from typing import Callable, TextIO

LOGGER = logging.getLogger("gasless_packer")

CTRL_C = "\x03"


class KillSwitch:
    """Watches a TTY for a single key press and fires `on_kill` once."""

    def __init__(self, on_kill: Callable[[], None], key: str = "q", stream: TextIO | None = None) -> None:
        self.on_kill = on_kill
        self.key = (key or "q")[:1].lower()
        self.stream = stream if stream is not None else sys.stdin
        self._stop = threading.Event()
        self._fired = threading.Event()
        self._thread: threading.Thread | None = None
        self._saved_attrs = None

    @property
    def fired(self) -> bool:
        return self._fired.is_set()

    def feed(self, char: str) -> bool:
        if not char or self._fired.is_set():
            return False
        if char.lower() == self.key or char == CTRL_C:
            self._fired.set()
            LOGGER.warning("kill_switch key=%r stopping after current wallet", char)
            self.on_kill()
            return True
        return False

    def start(self) -> bool:
        try:
            is_tty = self.stream.isatty()
        except (AttributeError, ValueError):
            is_tty = False
        if not is_tty or os.name != "posix":
            return False
        import termios
        import tty

        fd = self.stream.fileno()
        self._saved_attrs = termios.tcgetattr(fd)
        tty.setcbreak(fd)
        self._thread = threading.Thread(target=self._watch, args=(fd,), name="kill-switch", daemon=True)
        self._thread.start()
        return True

    def _watch(self, fd: int) -> None:
        while not self._stop.is_set() and not self._fired.is_set():
            ready, _, _ = select.select([fd], [], [], 0.2)
            if not ready:
                continue
            char = os.read(fd, 1).decode("utf-8", errors="ignore")
            self.feed(char)

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=1.0)
            self._thread = None
        if self._saved_attrs is not None:
            import termios

            termios.tcsetattr(self.stream.fileno(), termios.TCSADRAIN, self._saved_attrs)
            self._saved_attrs = None


def reference_mark_price(app_mark: float | None, vault_mark6: int | None) -> float | None:
    """App mark unless it is missing or the placeholder value 1, else the vault mark."""
    if app_mark is not None and app_mark > 0 and abs(app_mark - 1.0) > 1e-9:
        return app_mark
    if vault_mark6 is not None and vault_mark6 > 0:
        return vault_mark6 / 1_000_000
    return None
