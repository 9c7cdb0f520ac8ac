# fxrelay/persistence/audit.py
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from fxrelay.ops.context import get_request_id

log = logging.getLogger("fxrelay.audit")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Audit:
    """
    Decision trail for every webhook: one JSON line per event, mirrored to
    the log. Enough to reconstruct why an order was or was not placed.
    """

    def __init__(self, jsonl_path: Optional[str] = "logs/webhook_audit.jsonl"):
        self.jsonl_path = Path(jsonl_path) if jsonl_path else None

        if self.jsonl_path is not None:
            try:
                self.jsonl_path.parent.mkdir(parents=True, exist_ok=True)
                self.jsonl_path.touch(exist_ok=True)
            except OSError as e:
                # never crash the relay due to audit file issues
                log.warning("audit file %s unavailable: %s", self.jsonl_path, e)

    def event(
        self,
        event_type: str,
        symbol: Optional[str] = None,
        action: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        record = {
            "timestamp_utc": utc_now_iso(),
            "request_id": get_request_id(),
            "event_type": event_type,
            "symbol": symbol,
            "action": action,
            "details": details or {},
        }

        level = logging.WARNING if event_type in ("FAILED", "WARN") else logging.INFO
        log.log(
            level,
            "%s %s %s %s",
            event_type,
            symbol or "-",
            action or "-",
            json.dumps(record["details"], ensure_ascii=False, default=str),
        )

        self._write_jsonl(record)

    def _write_jsonl(self, obj: Dict[str, Any]) -> None:
        if self.jsonl_path is None:
            return
        try:
            self.jsonl_path.parent.mkdir(parents=True, exist_ok=True)
            with self.jsonl_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(obj, ensure_ascii=False, default=str) + "\n")
        except OSError as e:
            # never break order handling because the audit file write failed
            log.warning("audit write failed: %s", e)
