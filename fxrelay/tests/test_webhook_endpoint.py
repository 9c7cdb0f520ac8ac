import json

import pytest
from fastapi.testclient import TestClient

from fxrelay import main
from fxrelay.core.config import Settings
from fxrelay.core.errors import BrokerUnavailable
from fxrelay.exchange.oanda.models import OrderResult
from fxrelay.execution.coordinator import OrderCoordinator
from fxrelay.execution.state import SymbolStateStore


class _Broker:
    """Flat account; records placements."""

    def __init__(self, fail=False):
        self.fail = fail
        self.placed = []
        self.reads = 0

    async def get_open_position(self, symbol):
        self.reads += 1
        if self.fail:
            raise BrokerUnavailable("openPositions: ConnectTimeout")
        return None

    async def get_pending_orders(self, symbol):
        self.reads += 1
        return []

    async def get_mid_price(self, symbol):
        return 150.5

    async def cancel_order(self, order_id):
        return True

    async def place_order(self, spec):
        self.placed.append(spec)
        return OrderResult(order_id="101", filled=spec.type == "MARKET")

    async def close_position(self, symbol, *, close_long, close_short):
        raise AssertionError("nothing is open")


@pytest.fixture
def broker():
    return _Broker()


@pytest.fixture
def coordinator(broker):
    async def _no_sleep(_):
        return None

    return OrderCoordinator(
        broker,
        SymbolStateStore(),
        Settings(ENTRY_ORDER_TYPE="MARKET", AUDIT_JSONL_PATH=""),
        sleep=_no_sleep,
    )


@pytest.fixture
def client(coordinator):
    main.app.dependency_overrides[main.get_coordinator] = lambda: coordinator
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


LIMIT_BODY = {
    "alert": "LONG_LIMIT",
    "symbol": "USD_JPY",
    "entryPrice": 150.00,
    "stopLossPrice": 149.50,
    "takeProfitPrice": 151.00,
}


def test_limit_entry_is_placed(client, broker):
    r = client.post("/webhook", json=LIMIT_BODY)

    assert r.status_code == 200
    assert r.json() == {"ok": True, "action": "long_entry", "orderId": "101"}
    assert broker.placed[0].to_body()["order"]["price"] == "150.000"


def test_wrapped_alert_message(client, broker):
    r = client.post("/webhook", json={"alert_message": json.dumps(LIMIT_BODY)})
    assert r.status_code == 200
    assert r.json()["ok"] is True


def test_second_signal_within_cooldown_is_skipped(client):
    client.post("/webhook", json=LIMIT_BODY)
    r = client.post("/webhook", json={**LIMIT_BODY, "entryPrice": 149.8})

    assert r.status_code == 200
    assert r.json() == {"ok": True, "skipped": "cooldown"}


def test_body_that_is_not_json(client, broker):
    r = client.post(
        "/webhook", content=b"LONG_ENTRY USD_JPY", headers={"Content-Type": "text/plain"}
    )
    assert r.status_code == 400
    assert r.json()["ok"] is False
    assert broker.placed == []


def test_unknown_alert(client, broker):
    r = client.post("/webhook", json={"alert": "BUY_NOW", "symbol": "USD_JPY"})
    assert r.status_code == 400
    assert "unrecognized alert" in r.json()["error"]
    assert broker.placed == []


def test_broker_unavailable_is_500(client, broker):
    broker.fail = True
    r = client.post("/webhook", json={"alert": "SHORT_ENTRY", "symbol": "USD_JPY"})
    assert r.status_code == 500
    assert r.json() == {"ok": False, "error": "broker unavailable"}


def test_exit_with_nothing_open(client):
    r = client.post("/webhook", json={"alert": "EXIT", "symbol": "USD_JPY"})
    assert r.status_code == 200
    assert r.json() == {"ok": True, "action": "exit"}


def test_state_endpoint_lists_touched_symbols(client):
    client.post("/webhook", json=LIMIT_BODY)
    r = client.get("/state/symbols")

    assert r.status_code == 200
    assert r.json()["USD_JPY"]["seconds_since_order"] is not None
    assert r.json()["USD_JPY"]["busy"] is False


def test_debug_settings_redacts_credentials(client, monkeypatch):
    monkeypatch.setattr(main.settings, "OANDA_API_KEY", "live-secret")
    r = client.get("/debug/settings")

    assert r.status_code == 200
    assert r.json()["OANDA_API_KEY"] == "***"
    assert "live-secret" not in r.text


def test_root_is_plain_text(client):
    r = client.get("/")
    assert r.status_code == 200
    assert "running" in r.text


def test_non_finite_price_is_rejected_before_the_broker(client, broker):
    # 1e400 overflows to inf in json.loads
    raw = b'{"alert": "LONG_LIMIT", "symbol": "USD_JPY", "entryPrice": 1e400}'
    r = client.post("/webhook", content=raw, headers={"Content-Type": "application/json"})

    assert r.status_code == 400
    assert r.json()["ok"] is False
    assert broker.reads == 0
    assert broker.placed == []


def test_allow_list_accepts_alert_spelling(broker, monkeypatch):
    monkeypatch.setenv("TRADE_SYMBOLS", "USDJPY")
    coord = OrderCoordinator(broker, SymbolStateStore(), Settings(AUDIT_JSONL_PATH=""))
    main.app.dependency_overrides[main.get_coordinator] = lambda: coord
    try:
        r = TestClient(main.app).post("/webhook", json={"alert": "LONG_ENTRY", "symbol": "USDJPY"})
    finally:
        main.app.dependency_overrides.clear()

    assert r.json() == {"ok": True, "action": "long_entry", "orderId": "101"}
