from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from fxrelay.core.errors import InvalidSignal
from fxrelay.exchange.oanda.instruments import normalize_symbol


class SignalKind(str, Enum):
    ENTRY = "ENTRY"
    EXIT = "EXIT"


class Side(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


# order type "CONFIG" means: whatever ENTRY_ORDER_TYPE says
ALERTS: Dict[str, tuple] = {
    "LONG_ENTRY": (SignalKind.ENTRY, Side.LONG, "CONFIG"),
    "SHORT_ENTRY": (SignalKind.ENTRY, Side.SHORT, "CONFIG"),
    "LONG_LIMIT": (SignalKind.ENTRY, Side.LONG, "LIMIT"),
    "SHORT_LIMIT": (SignalKind.ENTRY, Side.SHORT, "LIMIT"),
    "LONG_STOP": (SignalKind.ENTRY, Side.LONG, "STOP"),
    "SHORT_STOP": (SignalKind.ENTRY, Side.SHORT, "STOP"),
    "EXIT": (SignalKind.EXIT, None, None),
    "LONG_EXIT_ZLSMA": (SignalKind.EXIT, None, None),
    "SHORT_EXIT_ZLSMA": (SignalKind.EXIT, None, None),
    "ZONE_EXIT": (SignalKind.EXIT, None, None),
    "CLOSE_ALL": (SignalKind.EXIT, None, None),
}


@dataclass(frozen=True)
class Signal:
    alert: str
    kind: SignalKind
    symbol: str
    side: Optional[Side] = None
    order_type: Optional[str] = None  # MARKET / LIMIT / STOP for entries
    entry_price: Optional[float] = None
    stop_loss_price: Optional[float] = None
    take_profit_price: Optional[float] = None

    @property
    def is_pending(self) -> bool:
        return self.order_type in ("LIMIT", "STOP")

    def audit_dict(self) -> Dict[str, Any]:
        return {
            "alert": self.alert,
            "kind": self.kind.value,
            "side": self.side.value if self.side else None,
            "order_type": self.order_type,
            "entry_price": self.entry_price,
            "stop_loss_price": self.stop_loss_price,
            "take_profit_price": self.take_profit_price,
        }


class WebhookPayload(BaseModel):
    """Direct alert shape. Unknown keys (passphrase, time, ...) are ignored."""

    model_config = ConfigDict(extra="ignore", allow_inf_nan=False)

    alert: str
    symbol: str
    entryPrice: Optional[float] = None
    stopLossPrice: Optional[float] = None
    takeProfitPrice: Optional[float] = None

    @field_validator("alert", "symbol", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("entryPrice", "stopLossPrice", "takeProfitPrice", mode="before")
    @classmethod
    def _blank_is_none(cls, v: Any) -> Any:
        # Alert templates leave unused placeholders as "" or null
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        return v

    @field_validator("entryPrice", "stopLossPrice", "takeProfitPrice")
    @classmethod
    def _positive(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and not v > 0:
            raise ValueError("price must be > 0")
        return v


def _unwrap(body: Any) -> Dict[str, Any]:
    if not isinstance(body, dict):
        raise InvalidSignal("payload must be a JSON object")

    if "alert_message" not in body or "alert" in body:
        return body

    inner = body["alert_message"]
    if isinstance(inner, dict):
        return inner
    if not isinstance(inner, str):
        raise InvalidSignal("alert_message must be a JSON string")
    try:
        decoded = json.loads(inner)
    except ValueError as e:
        raise InvalidSignal(f"alert_message is not valid JSON: {e}") from e
    if not isinstance(decoded, dict):
        raise InvalidSignal("alert_message must decode to a JSON object")
    return decoded


def parse_webhook(body: Any, *, entry_order_type: str = "MARKET") -> Signal:
    """
    Turn a decoded webhook body into a Signal.
    Raises InvalidSignal for anything we would otherwise have to guess about.
    """
    data = _unwrap(body)
    try:
        payload = WebhookPayload.model_validate(data)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise InvalidSignal(f"invalid payload fields: {fields}") from e

    if payload.alert not in ALERTS:
        raise InvalidSignal(f"unrecognized alert: {payload.alert!r}")

    symbol = normalize_symbol(payload.symbol)
    if not symbol:
        raise InvalidSignal("symbol is required")

    kind, side, order_type = ALERTS[payload.alert]

    if kind is SignalKind.EXIT:
        return Signal(alert=payload.alert, kind=kind, symbol=symbol)

    if order_type == "CONFIG":
        order_type = entry_order_type.upper()

    if order_type in ("LIMIT", "STOP") and payload.entryPrice is None:
        raise InvalidSignal(f"{payload.alert} requires entryPrice for a {order_type} order")

    return Signal(
        alert=payload.alert,
        kind=kind,
        symbol=symbol,
        side=side,
        order_type=order_type,
        entry_price=payload.entryPrice,
        stop_loss_price=payload.stopLossPrice,
        take_profit_price=payload.takeProfitPrice,
    )
