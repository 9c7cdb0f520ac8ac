from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import requests

from fxrelay.core.errors import BrokerUnavailable, OrderRejected
from fxrelay.exchange.oanda.models import (
    ENTRY_ORDER_TYPES,
    CloseResult,
    OrderResult,
    OrderSpec,
    PendingOrder,
    Position,
)

log = logging.getLogger("fxrelay.oanda")

# Statuses worth another attempt on read calls.
_TRANSIENT = {429, 500, 502, 503, 504}

_BODY_LOG_LIMIT = 2000


def _reject_reason(payload: Any, fallback: str) -> str:
    if not isinstance(payload, dict):
        return fallback
    for key in ("orderRejectTransaction", "orderCancelTransaction"):
        tx = payload.get(key) or {}
        if tx.get("rejectReason") or tx.get("reason"):
            return str(tx.get("rejectReason") or tx.get("reason"))
    return str(payload.get("errorMessage") or payload.get("errorCode") or fallback)


class _Reply:
    __slots__ = ("status", "payload", "text")

    def __init__(self, status: int, payload: Any, text: str):
        self.status = status
        self.payload = payload
        self.text = text

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class OandaClient:
    """
    Async wrapper around the OANDA v3 REST API for one account.

    The HTTP work is plain `requests`, pushed off the event loop with
    asyncio.to_thread. Reads retry transient failures; mutations never do.
    """

    def __init__(
        self,
        api_key: str,
        account_id: str,
        base_url: str,
        *,
        timeout: float = 10.0,
        read_retries: int = 3,
        read_retry_delay: float = 1.0,
        session: requests.Session | None = None,
        sleep=asyncio.sleep,
    ):
        self.api_key = api_key
        self.account_id = account_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.read_retries = max(1, int(read_retries))
        self.read_retry_delay = read_retry_delay
        self.session = session or requests.Session()
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings) -> "OandaClient":
        return cls(
            api_key=settings.OANDA_API_KEY,
            account_id=settings.OANDA_ACCOUNT_ID,
            base_url=settings.OANDA_API_URL,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            read_retries=settings.READ_RETRIES,
            read_retry_delay=settings.READ_RETRY_DELAY_SECONDS,
        )

    # ---------------- TRANSPORT ----------------

    def _url(self, path: str) -> str:
        return f"{self.base_url}/v3/accounts/{self.account_id}/{path.lstrip('/')}"

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept-Datetime-Format": "RFC3339",
        }

    def _send(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        body: Optional[dict] = None,
    ) -> _Reply:
        if not self.api_key or not self.account_id:
            raise BrokerUnavailable("Missing OANDA_API_KEY or OANDA_ACCOUNT_ID")

        url = self._url(path)
        if body is not None:
            log.info("oanda request %s %s params=%s body=%s", method, url, params, body)
        try:
            r = self.session.request(
                method,
                url,
                params=params,
                json=body,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except (requests.Timeout, requests.ConnectionError) as e:
            log.warning("oanda %s %s failed: %s", method, url, e)
            raise BrokerUnavailable(f"{method} {path}: {type(e).__name__}: {e}") from e
        except requests.RequestException as e:
            log.warning("oanda %s %s failed: %s", method, url, e)
            raise BrokerUnavailable(f"{method} {path}: {e}") from e

        text = r.text or ""
        log.info(
            "oanda response %s %s status=%s body=%s",
            method,
            url,
            r.status_code,
            text[:_BODY_LOG_LIMIT],
        )
        try:
            payload = r.json() if text else {}
        except ValueError:
            payload = None
        return _Reply(r.status_code, payload, text)

    async def _call(self, method: str, path: str, **kwargs) -> _Reply:
        return await asyncio.to_thread(self._send, method, path, **kwargs)

    async def _read(self, path: str, params: Optional[dict] = None) -> Any:
        """GET with bounded fixed-delay retries; surfaces BrokerUnavailable."""
        last_err: str = ""
        for attempt in range(1, self.read_retries + 1):
            try:
                reply = await self._call("GET", path, params=params)
            except BrokerUnavailable as e:
                last_err = str(e)
            else:
                if reply.ok and isinstance(reply.payload, dict):
                    return reply.payload
                last_err = f"HTTP {reply.status}: {reply.text[:200]}"
                if reply.status not in _TRANSIENT:
                    break

            if attempt < self.read_retries:
                log.warning(
                    "oanda read %s attempt %s/%s failed (%s); retrying",
                    path,
                    attempt,
                    self.read_retries,
                    last_err,
                )
                await self._sleep(self.read_retry_delay)

        raise BrokerUnavailable(f"GET {path} failed: {last_err}")

    # ---------------- READS ----------------

    async def get_open_position(self, symbol: str) -> Optional[Position]:
        data = await self._read("openPositions")
        for raw in data.get("positions", []):
            if raw.get("instrument") == symbol:
                pos = Position.from_oanda(raw)
                return None if pos.is_flat else pos
        return None

    async def get_pending_orders(self, symbol: str) -> List[PendingOrder]:
        data = await self._read("orders", params={"instrument": symbol, "state": "PENDING"})
        out = []
        for raw in data.get("orders", []):
            if raw.get("instrument") != symbol:
                continue
            if raw.get("type") not in ENTRY_ORDER_TYPES:
                continue
            out.append(PendingOrder.from_oanda(raw))
        return out

    async def get_mid_price(self, symbol: str) -> float:
        data = await self._read("pricing", params={"instruments": symbol})
        for p in data.get("prices", []):
            if p.get("instrument") != symbol:
                continue
            try:
                bid = float((p.get("bids") or [{}])[0].get("price") or p["closeoutBid"])
                ask = float((p.get("asks") or [{}])[0].get("price") or p["closeoutAsk"])
            except (KeyError, TypeError, ValueError) as e:
                raise BrokerUnavailable(f"Malformed pricing for {symbol}: {p}") from e
            return (bid + ask) / 2.0
        raise BrokerUnavailable(f"No pricing returned for {symbol}")

    # ---------------- MUTATIONS ----------------

    async def cancel_order(self, order_id: str) -> bool:
        """
        Cancel a pending order. An order that is already gone (filled,
        cancelled, expired) counts as cancelled.
        """
        reply = await self._call("PUT", f"orders/{order_id}/cancel", body={})
        if reply.ok:
            return True
        reason = _reject_reason(reply.payload, "")
        if reply.status == 404 or "DOESNT_EXIST" in reason or "NOT_PENDING" in reason:
            log.info("cancel %s: order already gone (%s)", order_id, reason or reply.status)
            return True
        raise BrokerUnavailable(f"cancel {order_id} failed: HTTP {reply.status}: {reason}")

    async def place_order(self, spec: OrderSpec) -> OrderResult:
        reply = await self._call("POST", "orders", body=spec.to_body())

        if reply.status in (400, 404):
            raise OrderRejected(_reject_reason(reply.payload, f"HTTP {reply.status}"), reply.payload)
        if not reply.ok or not isinstance(reply.payload, dict):
            raise BrokerUnavailable(f"place order failed: HTTP {reply.status}: {reply.text[:200]}")

        # A 201 can still carry an immediate cancel (FOK market order without margin, etc.)
        if reply.payload.get("orderCancelTransaction") and not reply.payload.get(
            "orderFillTransaction"
        ):
            raise OrderRejected(_reject_reason(reply.payload, "ORDER_CANCELLED"), reply.payload)

        return OrderResult.from_oanda(reply.payload)

    async def close_position(
        self, symbol: str, *, close_long: bool, close_short: bool
    ) -> CloseResult:
        body: Dict[str, str] = {}
        if close_long:
            body["longUnits"] = "ALL"
        if close_short:
            body["shortUnits"] = "ALL"
        if not body:
            return CloseResult(closed=False)

        reply = await self._call("PUT", f"positions/{symbol}/close", body=body)

        if reply.status in (400, 404):
            raise OrderRejected(_reject_reason(reply.payload, f"HTTP {reply.status}"), reply.payload)
        if not reply.ok or not isinstance(reply.payload, dict):
            raise BrokerUnavailable(f"close {symbol} failed: HTTP {reply.status}: {reply.text[:200]}")

        return CloseResult.from_oanda(reply.payload)
