from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, Optional

from fxrelay.core.errors import SymbolBusy

GLOBAL_KEY = "*"


@dataclass
class SymbolState:
    last_order_ts: Optional[float] = None  # last successful entry placement
    last_exit_ts: Optional[float] = None  # last successful close

    def since_order(self, now: float) -> Optional[float]:
        return None if self.last_order_ts is None else now - self.last_order_ts

    def since_exit(self, now: float) -> Optional[float]:
        return None if self.last_exit_ts is None else now - self.last_exit_ts


class SymbolStateStore:
    """
    Process-wide cooldown state plus the exclusion gate that guards it.

    Built once at startup and handed to the coordinator. Nothing here
    survives a restart.
    """

    def __init__(self, *, scope: str = "symbol", clock: Callable[[], float] = time.monotonic):
        self.scope = scope
        self.clock = clock
        self._state: Dict[str, SymbolState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_key(self, symbol: str) -> str:
        return GLOBAL_KEY if self.scope == "global" else symbol.upper()

    def get(self, symbol: str) -> SymbolState:
        return self._state.setdefault(symbol.upper(), SymbolState())

    def is_busy(self, symbol: str) -> bool:
        lock = self._locks.get(self._lock_key(symbol))
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def exclusive(self, symbol: str) -> AsyncIterator[SymbolState]:
        """
        Enter the gate for `symbol` or raise SymbolBusy at once.
        A second signal never waits behind the first.
        """
        key = self._lock_key(symbol)
        lock = self._locks.setdefault(key, asyncio.Lock())
        if lock.locked():
            raise SymbolBusy(symbol)
        # An unheld asyncio.Lock is acquired without suspending.
        await lock.acquire()
        st = self.get(symbol)
        try:
            yield st
        finally:
            lock.release()
            # A released gate has no waiters. Symbols with nothing recorded are dropped.
            del self._locks[key]
            if st.last_order_ts is None and st.last_exit_ts is None:
                self._state.pop(symbol.upper(), None)

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        now = self.clock()
        out: Dict[str, Dict[str, Any]] = {}
        for sym, st in sorted(self._state.items()):
            out[sym] = {
                "seconds_since_order": st.since_order(now),
                "seconds_since_exit": st.since_exit(now),
                "busy": self.is_busy(sym),
            }
        return out
