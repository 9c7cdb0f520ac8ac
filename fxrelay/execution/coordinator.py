from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from fxrelay.core.errors import (
    BrokerUnavailable,
    OrderRejected,
    PositionNotCleared,
    SymbolBusy,
)
from fxrelay.exchange.oanda.instruments import rules_for
from fxrelay.exchange.oanda.models import OrderSpec, PendingOrder, Position
from fxrelay.execution.confirm import wait_until_flat
from fxrelay.execution.protection import repair_sl_tp
from fxrelay.execution.snapshot import BrokerSnapshot
from fxrelay.execution.state import SymbolState, SymbolStateStore
from fxrelay.persistence.audit import Audit
from fxrelay.signals.normalizer import Signal, SignalKind


class Outcome(str, Enum):
    PLACED = "placed"
    EXITED = "exit"
    SKIPPED = "skipped"
    FAILED = "failed"


# =========================
# Execution Result
# =========================
@dataclass
class ExecResult:
    outcome: Outcome
    action: str
    reason: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    status_code: int = 200

    @property
    def ok(self) -> bool:
        return self.outcome is not Outcome.FAILED

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"ok": self.ok}
        if self.outcome is Outcome.SKIPPED:
            body["skipped"] = self.reason
        elif self.outcome is Outcome.FAILED:
            body["error"] = self.reason
        else:
            body["action"] = self.action
        if self.details.get("order_id"):
            body["orderId"] = self.details["order_id"]
        return body


def _skipped(action: str, reason: str, **details) -> ExecResult:
    return ExecResult(Outcome.SKIPPED, action, reason, details)


def _failed(action: str, reason: str, status_code: int = 200, **details) -> ExecResult:
    return ExecResult(Outcome.FAILED, action, reason, details, status_code)


def _is_duplicate(order: PendingOrder, spec_type: str, side: str, price: float, eps: float) -> bool:
    return (
        order.type == spec_type
        and order.side == side
        and order.price is not None
        and abs(order.price - price) <= eps
    )


# =========================
# Order Lifecycle Coordinator
# =========================
class OrderCoordinator:
    """
    Decides, per signal, which broker operations run and in what order.

    One run per symbol at a time (SymbolStateStore.exclusive); a concurrent
    signal for the same symbol is answered with skipped("busy"). Broker
    failures are converted to results here and never reach the HTTP layer.
    """

    def __init__(
        self,
        client,
        store: SymbolStateStore,
        settings,
        *,
        audit: Audit | None = None,
        clock=None,
        sleep=asyncio.sleep,
    ):
        self.client = client
        self.store = store
        self.settings = settings
        self.audit = audit or Audit(None)
        self.clock = clock or store.clock
        self._sleep = sleep

    # ---------------- ENTRY POINT ----------------

    async def handle(self, signal: Signal) -> ExecResult:
        action = "exit" if signal.kind is SignalKind.EXIT else f"{signal.side.value.lower()}_entry"
        self.audit.event("SIGNAL", signal.symbol, signal.alert, signal.audit_dict())

        allowed = self.settings.TRADE_SYMBOLS
        if allowed and signal.symbol not in allowed:
            return self._finish(signal, _skipped(action, "symbol not enabled"))

        try:
            async with self.store.exclusive(signal.symbol) as st:
                snap = BrokerSnapshot(self.client, signal.symbol)
                if signal.kind is SignalKind.EXIT:
                    res = await self._exit(signal, st, snap)
                else:
                    res = await self._entry(signal, action, st, snap)
        except SymbolBusy:
            res = _skipped(action, "busy")
        except PositionNotCleared as e:
            res = _failed(action, "position not cleared", net_units=e.net_units)
        except BrokerUnavailable as e:
            res = _failed(action, "broker unavailable", status_code=500, error=str(e))

        return self._finish(signal, res)

    def _finish(self, signal: Signal, res: ExecResult) -> ExecResult:
        self.audit.event(
            res.outcome.name,
            signal.symbol,
            res.action,
            {"reason": res.reason, "signal": signal.audit_dict(), **res.details},
        )
        return res

    # ---------------- EXIT ----------------

    async def _exit(self, signal: Signal, st: SymbolState, snap: BrokerSnapshot) -> ExecResult:
        symbol = signal.symbol
        since_exit = st.since_exit(self.clock())
        if since_exit is not None and since_exit < self.settings.EXIT_GRACE_SECONDS:
            return _skipped("exit", "exit grace", seconds_since_exit=since_exit)

        cancel = await self._cancel_pending(snap)

        # critical: never guess about the position
        pos = await snap.position()
        if pos is None or pos.is_flat:
            if cancel["cancelled"]:
                # the entry the cooldown was guarding is gone
                st.last_order_ts = None
            return ExecResult(Outcome.EXITED, "exit", None, {"nothing_to_close": True, **cancel})

        closed, close_details = await self._close(symbol, pos, snap)
        if not closed:
            return _failed("exit", "close failed", **cancel, **close_details)

        # exit clears the entry cooldown so a reversal is not blocked
        st.last_exit_ts = self.clock()
        st.last_order_ts = None

        return ExecResult(
            Outcome.EXITED,
            "exit",
            None,
            {"position_before": pos.side, "net_units_before": pos.net_units, **cancel, **close_details},
        )

    # ---------------- ENTRY ----------------

    async def _entry(
        self, signal: Signal, action: str, st: SymbolState, snap: BrokerSnapshot
    ) -> ExecResult:
        symbol = signal.symbol
        side = signal.side.value
        now = self.clock()

        since_exit = st.since_exit(now)
        if since_exit is not None and since_exit < self.settings.EXIT_GRACE_SECONDS:
            return _skipped(action, "just exited", seconds_since_exit=since_exit)

        since_order = st.since_order(now)
        if since_order is not None and since_order < self.settings.ORDER_COOLDOWN_SECONDS:
            return _skipped(action, "cooldown", seconds_since_order=since_order)

        # critical reads: a wrong guess here can double exposure
        pos = await snap.position()
        pending = await snap.pending_orders()

        details: Dict[str, Any] = {}

        if pos is not None and pos.side == side:
            return _skipped(action, "position exists", net_units=pos.net_units)

        if pos is not None and pos.side is not None:
            reversal = await self._reverse(symbol, pos, st, snap)
            if isinstance(reversal, ExecResult):
                reversal.action = action
                return reversal
            details["reversal"] = reversal
            pending = await snap.pending_orders()

        rules = rules_for(symbol, self.settings)
        entry = signal.entry_price if signal.is_pending else None

        if entry is not None:
            mid = await snap.mid_price()
            distance = abs(entry - mid)
            details.update(mid_price=mid, distance=distance)
            if distance < rules.min_distance:
                return _failed(
                    action,
                    "entry too close to market",
                    entry_price=entry,
                    mid_price=mid,
                    min_distance=rules.min_distance,
                )

            for o in pending:
                if _is_duplicate(o, signal.order_type, side, entry, rules.dedupe_epsilon):
                    return _skipped(
                        action,
                        "duplicate pending order",
                        existing_order_id=o.id,
                        existing_price=o.price,
                        entry_price=entry,
                    )

        sl, tp = signal.stop_loss_price, signal.take_profit_price
        if sl is not None or tp is not None:
            ref = signal.entry_price if signal.entry_price is not None else await snap.mid_price()
            prot = repair_sl_tp(side, ref, sl, tp, risk_reward=self.settings.RISK_REWARD_RATIO)
            if prot.corrections:
                self.audit.event(
                    "WARN",
                    symbol,
                    "SLTP_CORRECTED",
                    {"reference_price": ref, "corrections": prot.corrections},
                )
                details["sltp_corrections"] = prot.corrections
            sl, tp = prot.stop_loss, prot.take_profit

        units = int(self.settings.FIXED_UNITS) * (1 if side == "LONG" else -1)
        spec = OrderSpec(
            type=signal.order_type,
            symbol=symbol,
            units=units,
            precision=rules.precision,
            price=entry,
            stop_loss=sl,
            take_profit=tp,
            time_in_force=self.settings.PENDING_TIME_IN_FORCE,
        )
        body = spec.to_body()

        try:
            result = await self.client.place_order(spec)
        except OrderRejected as e:
            # cooldown untouched so a corrected signal can go straight through
            return _failed(action, e.reason, order=body, venue=e.payload, **details)
        finally:
            snap.invalidate()

        st.last_order_ts = self.clock()
        return ExecResult(
            Outcome.PLACED,
            action,
            None,
            {
                "order_id": result.order_id,
                "filled": result.filled,
                "units": units,
                "order": body,
                **details,
            },
        )

    # ---------------- HELPERS ----------------

    async def _reverse(self, symbol: str, pos: Position, st: SymbolState, snap: BrokerSnapshot):
        """
        Close the opposite position and wait until the venue reports flat.
        Returns details on success, a failed ExecResult if the close was refused,
        raises PositionNotCleared if the position outlives the poll budget.
        """
        cancel = await self._cancel_pending(snap)

        closed, close_details = await self._close(symbol, pos, snap)
        if not closed:
            return _failed("", "close failed", **cancel, **close_details)
        st.last_exit_ts = self.clock()

        if self.settings.POST_CLOSE_WAIT_SECONDS > 0:
            await self._sleep(self.settings.POST_CLOSE_WAIT_SECONDS)

        flat = await wait_until_flat(
            self.client,
            symbol,
            attempts=self.settings.CLEAR_POLL_ATTEMPTS,
            poll_s=self.settings.CLEAR_POLL_INTERVAL_SECONDS,
            sleep=self._sleep,
        )
        if not flat:
            raise PositionNotCleared(symbol, pos.net_units)

        return {"position_before": pos.side, "net_units_before": pos.net_units, **cancel, **close_details}

    async def _close(self, symbol: str, pos: Position, snap: BrokerSnapshot):
        try:
            res = await self.client.close_position(
                symbol,
                close_long=pos.long_units > 0,
                close_short=pos.short_units < 0,
            )
        except OrderRejected as e:
            return False, {"close_reject_reason": e.reason, "venue": e.payload}
        finally:
            snap.invalidate()

        if not res.closed:
            return False, {"close_reject_reason": "no fill transaction", "venue": res.raw}
        return True, {"long_fill_id": res.long_fill_id, "short_fill_id": res.short_fill_id}

    async def _cancel_pending(self, snap: BrokerSnapshot) -> Dict[str, Any]:
        """Best-effort: failures are logged and reported, never raised."""
        out: Dict[str, Any] = {"cancelled": [], "cancel_errors": []}
        try:
            orders = await snap.pending_orders()
        except BrokerUnavailable as e:
            self.audit.event("WARN", snap.symbol, "PENDING_READ_FAILED", {"error": str(e)})
            out["cancel_errors"].append(str(e))
            return out

        for o in orders:
            try:
                await self.client.cancel_order(o.id)
                out["cancelled"].append(o.id)
            except BrokerUnavailable as e:
                self.audit.event(
                    "WARN", snap.symbol, "CANCEL_FAILED", {"order_id": o.id, "error": str(e)}
                )
                out["cancel_errors"].append(f"{o.id}: {e}")

        if orders:
            snap.invalidate()
        return out
