import pytest

from fxrelay.core.config import LIVE_API_URL, Settings


def test_invalid_oanda_env_is_fatal():
    s = Settings(
        OANDA_ENV="banana",  # invalid
        TRADE_SYMBOLS="USD_JPY",
    )
    with pytest.raises(ValueError):
        s.validate_runtime()


def test_live_env_warning_not_error():
    s = Settings(
        OANDA_ENV="live",
        TRADE_SYMBOLS="USD_JPY",
    )
    assert s.OANDA_API_URL == LIVE_API_URL
    warnings = s.validate_runtime()
    assert any("REAL money" in w for w in warnings)


def test_live_url_with_practice_env_is_fatal():
    s = Settings(OANDA_ENV="practice", OANDA_API_URL=LIVE_API_URL)
    with pytest.raises(ValueError, match="mismatch"):
        s.validate_runtime()


def test_bad_entry_order_type_is_fatal():
    s = Settings(ENTRY_ORDER_TYPE="trailing")
    with pytest.raises(ValueError, match="ENTRY_ORDER_TYPE"):
        s.validate_runtime()


def test_zero_poll_attempts_is_fatal():
    s = Settings(CLEAR_POLL_ATTEMPTS=0)
    with pytest.raises(ValueError, match="CLEAR_POLL_ATTEMPTS"):
        s.validate_runtime()


def test_symbol_maps_accept_csv_and_json():
    s = Settings(
        TRADE_SYMBOLS="usd_jpy, eur_usd",
        SYMBOL_PRECISION_MAP="USD_JPY:3,EUR_USD:5",
        SYMBOL_DEDUPE_EPSILON_MAP='{"usd_jpy": 0.004}',
        SYMBOL_MIN_DISTANCE_MAP="GBP_JPY:0.05,BROKEN:abc",
    )
    assert s.TRADE_SYMBOLS == ["USD_JPY", "EUR_USD"]
    assert s.SYMBOL_PRECISION_MAP == {"USD_JPY": 3, "EUR_USD": 5}
    assert s.SYMBOL_DEDUPE_EPSILON_MAP == {"USD_JPY": 0.004}
    assert s.SYMBOL_MIN_DISTANCE_MAP == {"GBP_JPY": 0.05}


def test_env_values_are_normalized(monkeypatch):
    monkeypatch.setenv("ENTRY_ORDER_TYPE", " limit ")
    monkeypatch.setenv("LOCK_SCOPE", "GLOBAL")
    s = Settings()
    assert s.ENTRY_ORDER_TYPE == "LIMIT"
    assert s.LOCK_SCOPE == "global"
    s.validate_runtime()


def test_missing_credentials_only_warn(monkeypatch):
    monkeypatch.setenv("OANDA_API_KEY", "")
    warnings = Settings().validate_runtime()
    assert any("OANDA_API_KEY" in w for w in warnings)


def test_trade_symbols_use_alert_spelling_rules():
    s = Settings(TRADE_SYMBOLS="USDJPY, eur/usd, OANDA:GBPJPY, XAU_USD")
    assert s.TRADE_SYMBOLS == ["USD_JPY", "EUR_USD", "GBP_JPY", "XAU_USD"]
