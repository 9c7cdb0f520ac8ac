from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


def _validate_sl_tp(
    side: str,
    entry_price: float,
    stop_loss: float,
    take_profit: float,
) -> None:
    """
    Validate SL/TP invariants.
    LONG: stop_loss < entry_price < take_profit
    SHORT: take_profit < entry_price < stop_loss
    Raises ValueError if invalid.
    """
    side_u = (side or "").upper()

    if side_u == "LONG":
        if not (stop_loss < entry_price < take_profit):
            raise ValueError("Invalid SL/TP for LONG")
        return

    if side_u == "SHORT":
        if not (take_profit < entry_price < stop_loss):
            raise ValueError("Invalid SL/TP for SHORT")
        return

    raise ValueError(f"Invalid side: {side}")


def _protection_is_sane(side: str, entry: float, sl: float, tp: float) -> bool:
    try:
        _validate_sl_tp(side, entry, sl, tp)
    except ValueError:
        return False
    return True


def _sl_on_correct_side(side: str, entry: float, sl: float) -> bool:
    return sl < entry if side == "LONG" else sl > entry


def _tp_on_correct_side(side: str, entry: float, tp: float) -> bool:
    return tp > entry if side == "LONG" else tp < entry


@dataclass
class Protection:
    stop_loss: Optional[float]
    take_profit: Optional[float]
    corrections: List[str] = field(default_factory=list)


def repair_sl_tp(
    side: str,
    entry: float,
    stop_loss: Optional[float],
    take_profit: Optional[float],
    *,
    risk_reward: float = 2.0,
) -> Protection:
    """
    Make caller-supplied SL/TP consistent with `side` around `entry`
    instead of rejecting the signal.

    - stop on the wrong side: mirrored to the right side, same distance
    - take-profit wrong or missing while a stop exists: entry +/- rr * stop distance
    - zero stop distance: both dropped
    - take-profit without a stop: kept if on the right side, else dropped
    """
    side = side.upper()
    direction = 1.0 if side == "LONG" else -1.0
    fixes: List[str] = []

    if stop_loss is not None and take_profit is not None:
        if _protection_is_sane(side, entry, stop_loss, take_profit):
            return Protection(stop_loss, take_profit)

    if stop_loss is None:
        if take_profit is None or _tp_on_correct_side(side, entry, take_profit):
            return Protection(None, take_profit)
        return Protection(None, None, [f"dropped take_profit {take_profit} on wrong side"])

    distance = abs(entry - stop_loss)
    if distance <= 0:
        return Protection(None, None, ["dropped stop_loss equal to entry"])

    sl = stop_loss
    if not _sl_on_correct_side(side, entry, stop_loss):
        sl = entry - direction * distance
        fixes.append(f"stop_loss {stop_loss} -> {sl}")

    tp = take_profit
    if tp is None or not _tp_on_correct_side(side, entry, tp):
        tp = entry + direction * distance * risk_reward
        fixes.append(f"take_profit {take_profit} -> {tp} (rr={risk_reward})")

    return Protection(sl, tp, fixes)
