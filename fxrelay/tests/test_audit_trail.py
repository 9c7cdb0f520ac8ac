import json

from fxrelay.ops.context import clear_request_id, set_request_id
from fxrelay.persistence.audit import Audit


def test_events_are_appended_as_json_lines(tmp_path):
    path = tmp_path / "logs" / "audit.jsonl"
    audit = Audit(str(path))

    set_request_id("req-1")
    try:
        audit.event("PLACED", "USD_JPY", "long_entry", {"order_id": "101", "units": 20000})
        audit.event("SKIPPED", "USD_JPY", "long_entry", {"reason": "cooldown"})
    finally:
        clear_request_id()

    lines = [json.loads(x) for x in path.read_text(encoding="utf-8").splitlines()]
    assert [x["event_type"] for x in lines] == ["PLACED", "SKIPPED"]
    assert lines[0]["request_id"] == "req-1"
    assert lines[0]["details"]["order_id"] == "101"


def test_disabled_path_only_logs(caplog):
    audit = Audit(None)
    with caplog.at_level("INFO", logger="fxrelay.audit"):
        audit.event("FAILED", "USD_JPY", "exit", {"reason": "close failed"})
    assert "close failed" in caplog.text
