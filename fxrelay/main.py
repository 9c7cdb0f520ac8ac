import json
import logging
import uuid
from typing import Any, Dict

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from fxrelay.core.config import settings
from fxrelay.core.errors import InvalidSignal
from fxrelay.exchange.oanda.client import OandaClient
from fxrelay.execution.coordinator import OrderCoordinator
from fxrelay.execution.state import SymbolStateStore
from fxrelay.ops.context import clear_request_id, set_request_id
from fxrelay.persistence.audit import Audit
from fxrelay.signals.normalizer import parse_webhook

log = logging.getLogger("fxrelay.main")

app = FastAPI(title="FX Webhook Relay")
coordinator_instance: OrderCoordinator | None = None


SENSITIVE_KEYS = {
    "OANDA_API_KEY",
    "OANDA_ACCOUNT_ID",
}


@app.on_event("startup")
async def _startup_validate_config():
    """Fail-fast config validation at startup."""
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    try:
        warnings = settings.validate_runtime()
    except ValueError:
        # Fail-closed: crash the service rather than running with a dangerous config
        log.exception("refusing to start")
        raise
    for w in warnings:
        log.warning("[CONFIG WARNING] %s", w)
    log.info(
        "relay ready env=%s units=%s entry_type=%s lock_scope=%s",
        settings.OANDA_ENV,
        settings.FIXED_UNITS,
        settings.ENTRY_ORDER_TYPE,
        settings.LOCK_SCOPE,
    )


def get_coordinator() -> OrderCoordinator:
    global coordinator_instance

    if coordinator_instance is None:
        store = SymbolStateStore(scope=settings.LOCK_SCOPE)
        coordinator_instance = OrderCoordinator(
            OandaClient.from_settings(settings),
            store,
            settings,
            audit=Audit(settings.AUDIT_JSONL_PATH),
        )
    return coordinator_instance


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "error": message})


@app.get("/")
def root():
    return PlainTextResponse("FX webhook relay is running")


@app.post("/webhook")
async def webhook(request: Request, coordinator: OrderCoordinator = Depends(get_coordinator)):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    set_request_id(request_id)
    try:
        raw = await request.body()
        try:
            body = json.loads(raw) if raw else None
        except ValueError:
            log.warning("webhook %s: body is not JSON: %r", request_id, raw[:500])
            return _error(400, "body is not valid JSON")

        try:
            signal = parse_webhook(body, entry_order_type=coordinator.settings.ENTRY_ORDER_TYPE)
        except InvalidSignal as e:
            coordinator.audit.event("INVALID", None, None, {"error": str(e), "body": body})
            return _error(400, str(e))

        try:
            result = await coordinator.handle(signal)
        except Exception:
            log.exception("webhook %s: unexpected fault handling %s", request_id, signal)
            return _error(500, "internal error")

        return JSONResponse(status_code=result.status_code, content=result.to_response())
    finally:
        clear_request_id()


@app.get("/state/symbols")
def state_symbols(coordinator: OrderCoordinator = Depends(get_coordinator)):
    return coordinator.store.snapshot()


@app.get("/debug/settings")
def debug_settings() -> Dict[str, Any]:
    data = settings.model_dump()
    for k in SENSITIVE_KEYS:
        if data.get(k):
            data[k] = "***"
    return data
