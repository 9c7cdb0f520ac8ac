from __future__ import annotations

from typing import Any, Optional


class RelayError(Exception):
    """Base class for every error the relay converts into a webhook outcome."""


class InvalidSignal(RelayError):
    """Malformed or unrecognized inbound payload. No broker call is made."""


class BrokerUnavailable(RelayError):
    """Network failure, timeout or unexpected non-2xx status from the venue."""


class OrderRejected(RelayError):
    """The venue refused an order or close request (price, margin, precision...)."""

    def __init__(self, reason: str, payload: Optional[Any] = None):
        super().__init__(reason)
        self.reason = reason
        self.payload = payload


class PositionNotCleared(RelayError):
    """A reversal close went through but the venue still reports exposure."""

    def __init__(self, symbol: str, net_units: float):
        super().__init__(f"{symbol} still open after close (net_units={net_units})")
        self.symbol = symbol
        self.net_units = net_units


class SymbolBusy(RelayError):
    pass
