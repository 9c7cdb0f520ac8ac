from __future__ import annotations

from typing import List, Optional

from fxrelay.exchange.oanda.models import PendingOrder, Position

_UNSET = object()


class BrokerSnapshot:
    """
    Broker state as seen by one coordinator run.

    Reads are memoized so a single signal never asks the venue twice for the
    same thing; any mutation must call invalidate(). Never shared between
    webhook requests.
    """

    def __init__(self, client, symbol: str):
        self.client = client
        self.symbol = symbol
        self.invalidate()

    def invalidate(self) -> None:
        self._position = _UNSET
        self._pending = _UNSET
        self._mid = _UNSET

    async def position(self) -> Optional[Position]:
        if self._position is _UNSET:
            self._position = await self.client.get_open_position(self.symbol)
        return self._position

    async def pending_orders(self) -> List[PendingOrder]:
        if self._pending is _UNSET:
            self._pending = list(await self.client.get_pending_orders(self.symbol))
        return self._pending

    async def mid_price(self) -> float:
        if self._mid is _UNSET:
            self._mid = float(await self.client.get_mid_price(self.symbol))
        return self._mid
