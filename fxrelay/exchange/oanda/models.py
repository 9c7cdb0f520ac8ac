from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from fxrelay.exchange.oanda.instruments import format_price

# Order types that rest on the book waiting for a trigger. Dependent orders
# (STOP_LOSS, TAKE_PROFIT, TRAILING_STOP_LOSS) belong to open trades instead.
ENTRY_ORDER_TYPES = {"LIMIT", "STOP", "MARKET_IF_TOUCHED", "MARKET"}


def _f(x, default: float = 0.0) -> float:
    try:
        return float(x)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class Position:
    symbol: str
    long_units: float = 0.0
    short_units: float = 0.0  # always <= 0

    @property
    def net_units(self) -> float:
        return self.long_units + self.short_units

    @property
    def side(self) -> Optional[str]:
        if self.net_units > 0:
            return "LONG"
        if self.net_units < 0:
            return "SHORT"
        return None

    @property
    def is_flat(self) -> bool:
        return abs(self.long_units) < 1e-9 and abs(self.short_units) < 1e-9

    @classmethod
    def from_oanda(cls, raw: Dict[str, Any]) -> "Position":
        # The short side is reported as a negative string; normalize either
        # polarity to <= 0 so net_units stays meaningful.
        long_units = abs(_f((raw.get("long") or {}).get("units")))
        short_units = -abs(_f((raw.get("short") or {}).get("units")))
        return cls(
            symbol=str(raw.get("instrument") or ""),
            long_units=long_units,
            short_units=short_units,
        )


@dataclass(frozen=True)
class PendingOrder:
    id: str
    instrument: str
    type: str
    price: Optional[float]
    units: float

    @property
    def side(self) -> str:
        return "LONG" if self.units > 0 else "SHORT"

    @classmethod
    def from_oanda(cls, raw: Dict[str, Any]) -> "PendingOrder":
        price = raw.get("price")
        return cls(
            id=str(raw.get("id")),
            instrument=str(raw.get("instrument") or ""),
            type=str(raw.get("type") or ""),
            price=_f(price) if price is not None else None,
            units=_f(raw.get("units")),
        )


@dataclass
class OrderSpec:
    type: str  # MARKET / LIMIT / STOP
    symbol: str
    units: int  # signed: + buy, - sell
    precision: int
    price: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    time_in_force: str = "GTC"

    @property
    def side(self) -> str:
        return "LONG" if self.units > 0 else "SHORT"

    def to_body(self) -> Dict[str, Any]:
        order: Dict[str, Any] = {
            "type": self.type,
            "instrument": self.symbol,
            "units": str(int(self.units)),
            "timeInForce": "FOK" if self.type == "MARKET" else self.time_in_force,
            "positionFill": "DEFAULT",
        }
        if self.type != "MARKET":
            order["price"] = format_price(self.price, self.precision)
        if self.stop_loss is not None:
            order["stopLossOnFill"] = {"price": format_price(self.stop_loss, self.precision)}
        if self.take_profit is not None:
            order["takeProfitOnFill"] = {
                "price": format_price(self.take_profit, self.precision)
            }
        return {"order": order}


@dataclass
class OrderResult:
    order_id: Optional[str]
    filled: bool
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_oanda(cls, raw: Dict[str, Any]) -> "OrderResult":
        create = raw.get("orderCreateTransaction") or {}
        fill = raw.get("orderFillTransaction") or {}
        return cls(
            order_id=create.get("id") or fill.get("orderID"),
            filled=bool(fill),
            raw=raw,
        )


@dataclass
class CloseResult:
    closed: bool
    long_fill_id: Optional[str] = None
    short_fill_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_oanda(cls, raw: Dict[str, Any]) -> "CloseResult":
        long_fill = raw.get("longOrderFillTransaction") or {}
        short_fill = raw.get("shortOrderFillTransaction") or {}
        return cls(
            closed=bool(long_fill or short_fill),
            long_fill_id=long_fill.get("id"),
            short_fill_id=short_fill.get("id"),
            raw=raw,
        )
