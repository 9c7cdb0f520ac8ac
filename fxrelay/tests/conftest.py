import pytest


@pytest.fixture(autouse=True)
def _test_env(monkeypatch):
    """
    Ensure tests never talk to a real account by accident.
    """
    monkeypatch.setenv("OANDA_ENV", "practice")
    monkeypatch.setenv("OANDA_API_KEY", "test-token")
    monkeypatch.setenv("OANDA_ACCOUNT_ID", "101-001-0000000-001")
    monkeypatch.setenv("TRADE_SYMBOLS", "")
    monkeypatch.setenv("AUDIT_JSONL_PATH", "")
