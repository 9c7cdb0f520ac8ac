# fxrelay/core/config.py
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from fxrelay.exchange.oanda.instruments import normalize_symbol

log = logging.getLogger("fxrelay.config")

PRACTICE_API_URL = "https://api-fxpractice.oanda.com"
LIVE_API_URL = "https://api-fxtrade.oanda.com"


def _parse_list(v: Any) -> List[str]:
    """
    Accepts:
      - list: ["USD_JPY","EUR_USD"]
      - csv:  "USD_JPY,EUR_USD"
      - json: '["USD_JPY","EUR_USD"]'
    Returns uppercase, trimmed symbols.
    """
    if v is None:
        return []
    if isinstance(v, list):
        return [str(x).strip().upper() for x in v if str(x).strip()]
    s = str(v).strip()
    if not s:
        return []
    if s.startswith("["):
        try:
            arr = json.loads(s)
            return [str(x).strip().upper() for x in arr if str(x).strip()]
        except ValueError:
            # fall back to csv parse
            pass
    return [p.strip().upper() for p in s.split(",") if p.strip()]


def _parse_kv(v: Any, cast) -> Dict[str, Any]:
    """
    Accepts:
      - dict: {"USD_JPY": 3}
      - csv:  "USD_JPY:3,EUR_USD:5"
      - json: '{"USD_JPY":3,"EUR_USD":5}'
    Keys are upper-cased; entries whose value does not cast are dropped.
    """
    if v is None:
        return {}
    if isinstance(v, dict):
        out: Dict[str, Any] = {}
        for k, val in v.items():
            ks = str(k).strip().upper()
            if not ks:
                continue
            try:
                out[ks] = cast(val)
            except (TypeError, ValueError):
                log.warning("ignoring bad map entry %s=%r", ks, val)
        return out

    s = str(v).strip()
    if not s:
        return {}

    if s.startswith("{"):
        try:
            raw = json.loads(s)
            if isinstance(raw, dict):
                return _parse_kv(raw, cast)
        except ValueError:
            pass

    pairs: Dict[str, str] = {}
    for part in s.split(","):
        part = part.strip()
        if ":" not in part:
            continue
        k, val = part.split(":", 1)
        if k.strip():
            pairs[k] = val.strip()
    return _parse_kv(pairs, cast)


def _parse_kv_int(v: Any) -> Dict[str, int]:
    return _parse_kv(v, int)


def _parse_kv_float(v: Any) -> Dict[str, float]:
    return _parse_kv(v, float)


class Settings(BaseSettings):
    """Runtime configuration loaded from .env / environment variables."""

    # enable_decoding=False keeps List/Dict fields out of pydantic-settings' json decoding.
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        enable_decoding=False,
    )

    # --- Venue / API ---
    OANDA_API_KEY: str = ""
    OANDA_ACCOUNT_ID: str = ""

    # practice/live; the base URL follows unless explicitly overridden
    OANDA_ENV: str = "practice"
    OANDA_API_URL: str = PRACTICE_API_URL
    HTTP_TIMEOUT_SECONDS: float = 10.0
    READ_RETRIES: int = 3
    READ_RETRY_DELAY_SECONDS: float = 1.0

    # --- Orders ---
    FIXED_UNITS: int = 20000
    ENTRY_ORDER_TYPE: str = "MARKET"  # order type for LONG_ENTRY/SHORT_ENTRY
    PENDING_TIME_IN_FORCE: str = "GTC"
    RISK_REWARD_RATIO: float = 2.0

    # --- Cooldowns / settle ---
    ORDER_COOLDOWN_SECONDS: float = 60.0
    EXIT_GRACE_SECONDS: float = 5.0
    POST_CLOSE_WAIT_SECONDS: float = 1.0
    CLEAR_POLL_ATTEMPTS: int = 20
    CLEAR_POLL_INTERVAL_SECONDS: float = 0.5
    LOCK_SCOPE: str = "symbol"  # symbol/global

    # --- Symbols ---
    TRADE_SYMBOLS: List[str] = Field(default_factory=list)
    SYMBOL_PRECISION_MAP: Dict[str, int] = Field(default_factory=dict)
    SYMBOL_DEDUPE_EPSILON_MAP: Dict[str, float] = Field(default_factory=dict)
    SYMBOL_MIN_DISTANCE_MAP: Dict[str, float] = Field(default_factory=dict)
    DEDUPE_EPSILON_JPY: float = 0.005
    DEDUPE_EPSILON_DEFAULT: float = 0.00005
    MIN_DISTANCE_JPY: float = 0.02
    MIN_DISTANCE_DEFAULT: float = 0.0002

    # --- Ops ---
    AUDIT_JSONL_PATH: str = "logs/webhook_audit.jsonl"
    LOG_LEVEL: str = "INFO"

    @field_validator("TRADE_SYMBOLS", mode="before")
    @classmethod
    def parse_trade_symbols(cls, v: Any) -> List[str]:
        # same spelling rules as inbound alerts: USDJPY -> USD_JPY
        return [normalize_symbol(s) for s in _parse_list(v)]

    @field_validator("SYMBOL_PRECISION_MAP", mode="before")
    @classmethod
    def parse_precision_map(cls, v: Any) -> Dict[str, int]:
        return _parse_kv_int(v)

    @field_validator("SYMBOL_DEDUPE_EPSILON_MAP", "SYMBOL_MIN_DISTANCE_MAP", mode="before")
    @classmethod
    def parse_float_maps(cls, v: Any) -> Dict[str, float]:
        return _parse_kv_float(v)

    def model_post_init(self, __context: Any) -> None:
        self.OANDA_ENV = (self.OANDA_ENV or "practice").lower().strip()
        self.ENTRY_ORDER_TYPE = (self.ENTRY_ORDER_TYPE or "MARKET").upper().strip()
        self.PENDING_TIME_IN_FORCE = (self.PENDING_TIME_IN_FORCE or "GTC").upper().strip()
        self.LOCK_SCOPE = (self.LOCK_SCOPE or "symbol").lower().strip()
        self.OANDA_API_URL = (self.OANDA_API_URL or PRACTICE_API_URL).strip().rstrip("/")

        # Keep base URL consistent with OANDA_ENV unless user explicitly overrides
        if self.OANDA_ENV == "live" and self.OANDA_API_URL == PRACTICE_API_URL:
            self.OANDA_API_URL = LIVE_API_URL

    def validate_runtime(self) -> List[str]:
        """
        Fail-fast validation. Returns warnings (non-fatal).
        Raises ValueError for fatal misconfiguration.
        """
        errors: List[str] = []
        warnings: List[str] = []

        if self.OANDA_ENV not in {"practice", "live"}:
            errors.append("OANDA_ENV must be 'practice' or 'live'.")

        if self.ENTRY_ORDER_TYPE not in {"MARKET", "LIMIT", "STOP"}:
            errors.append("ENTRY_ORDER_TYPE must be MARKET, LIMIT or STOP.")

        if self.PENDING_TIME_IN_FORCE not in {"GTC", "GFD", "GTD"}:
            errors.append("PENDING_TIME_IN_FORCE must be GTC, GFD or GTD.")

        if self.LOCK_SCOPE not in {"symbol", "global"}:
            errors.append("LOCK_SCOPE must be 'symbol' or 'global'.")

        if self.FIXED_UNITS <= 0:
            errors.append("FIXED_UNITS must be > 0.")

        if self.RISK_REWARD_RATIO <= 0:
            errors.append("RISK_REWARD_RATIO must be > 0.")

        for name in (
            "ORDER_COOLDOWN_SECONDS",
            "EXIT_GRACE_SECONDS",
            "POST_CLOSE_WAIT_SECONDS",
            "CLEAR_POLL_INTERVAL_SECONDS",
            "READ_RETRY_DELAY_SECONDS",
        ):
            if getattr(self, name) < 0:
                errors.append(f"{name} must be >= 0.")

        if self.CLEAR_POLL_ATTEMPTS < 1:
            errors.append("CLEAR_POLL_ATTEMPTS must be >= 1.")
        if self.READ_RETRIES < 1:
            errors.append("READ_RETRIES must be >= 1.")
        if self.HTTP_TIMEOUT_SECONDS <= 0:
            errors.append("HTTP_TIMEOUT_SECONDS must be > 0.")

        bad_precision = {k: p for k, p in self.SYMBOL_PRECISION_MAP.items() if p < 0}
        if bad_precision:
            errors.append(f"SYMBOL_PRECISION_MAP has negative precision: {bad_precision}")

        # Safety: mismatch guard
        if self.OANDA_API_URL == LIVE_API_URL and self.OANDA_ENV != "live":
            errors.append(
                "OANDA_ENV mismatch: base URL is the live venue but OANDA_ENV is not 'live'."
            )

        if not self.OANDA_API_KEY or not self.OANDA_ACCOUNT_ID:
            warnings.append(
                "OANDA_API_KEY or OANDA_ACCOUNT_ID is empty. Every broker call will fail."
            )

        if not self.TRADE_SYMBOLS:
            warnings.append("TRADE_SYMBOLS is empty. Signals for any instrument are accepted.")

        if self.OANDA_ENV == "live":
            warnings.append(
                "OANDA_ENV=live will trade REAL money. "
                "If you meant the demo account, set OANDA_ENV=practice."
            )

        if errors:
            msg = "Config validation failed:\n" + "\n".join([f"- {e}" for e in errors])
            raise ValueError(msg)

        return warnings


# Pydantic v2 + postponed annotations safety
Settings.model_rebuild()
settings = Settings()
