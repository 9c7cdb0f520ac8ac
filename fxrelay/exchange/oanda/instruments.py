from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

JPY_PRECISION = 3
DEFAULT_PRECISION = 5

_SPLIT_RE = re.compile(r"^([A-Z]{3})[/_\-]?([A-Z]{3})$")


@dataclass(frozen=True)
class InstrumentRules:
    symbol: str
    precision: int
    dedupe_epsilon: float
    min_distance: float


def is_jpy_quoted(symbol: str) -> bool:
    return symbol.upper().endswith("JPY")


def normalize_symbol(raw: str) -> str:
    """
    Map alert-side spellings onto the venue's instrument names.
    "USDJPY", "usd/jpy", "OANDA:USDJPY" -> "USD_JPY". Anything that is not a
    six-letter currency pair (e.g. "XAU_USD", "SPX500_USD") is only upper-cased.
    """
    s = (raw or "").strip().upper()
    if ":" in s:
        s = s.split(":", 1)[1]
    m = _SPLIT_RE.match(s)
    if m:
        return f"{m.group(1)}_{m.group(2)}"
    return s


def rules_for(symbol: str, settings) -> InstrumentRules:
    """
    Table-driven per-symbol numeric policy.
    Explicit *_MAP entries win; otherwise JPY-quoted pairs get the wider defaults.
    """
    sym = symbol.upper()
    jpy = is_jpy_quoted(sym)

    precision = settings.SYMBOL_PRECISION_MAP.get(sym)
    if precision is None:
        precision = JPY_PRECISION if jpy else DEFAULT_PRECISION

    epsilon = settings.SYMBOL_DEDUPE_EPSILON_MAP.get(sym)
    if epsilon is None:
        epsilon = settings.DEDUPE_EPSILON_JPY if jpy else settings.DEDUPE_EPSILON_DEFAULT

    min_distance = settings.SYMBOL_MIN_DISTANCE_MAP.get(sym)
    if min_distance is None:
        min_distance = settings.MIN_DISTANCE_JPY if jpy else settings.MIN_DISTANCE_DEFAULT

    return InstrumentRules(
        symbol=sym,
        precision=int(precision),
        dedupe_epsilon=float(epsilon),
        min_distance=float(min_distance),
    )


def _to_decimal(x) -> Decimal:
    return x if isinstance(x, Decimal) else Decimal(str(x))


def round_price(px, precision: int) -> Decimal:
    """Round half-up to `precision` decimal places."""
    return _to_decimal(px).quantize(Decimal(1).scaleb(-int(precision)), rounding=ROUND_HALF_UP)


def format_price(px, precision: int) -> str:
    """
    Wire format for prices: always exactly `precision` decimals.
    format_price(150.1234, 3) == "150.123"; format_price(150.1234, 5) == "150.12340"
    """
    return f"{round_price(px, precision):f}"
