from __future__ import annotations

import asyncio
import logging

from fxrelay.core.errors import BrokerUnavailable

log = logging.getLogger("fxrelay.confirm")


async def wait_until_flat(
    client,
    symbol: str,
    *,
    attempts: int = 20,
    poll_s: float = 0.5,
    sleep=asyncio.sleep,
) -> bool:
    """
    Confirm the position is fully closed.
    Polls the broker up to `attempts` times, `poll_s` apart. A failed read
    counts as "not confirmed yet" and uses up an attempt.
    """
    for attempt in range(1, attempts + 1):
        try:
            pos = await client.get_open_position(symbol)
        except BrokerUnavailable as e:
            log.warning("settle check %s attempt %s/%s failed: %s", symbol, attempt, attempts, e)
        else:
            if pos is None or pos.is_flat:
                return True
            log.info(
                "settle check %s attempt %s/%s: still open net=%s",
                symbol,
                attempt,
                attempts,
                pos.net_units,
            )
        if attempt < attempts:
            await sleep(poll_s)

    return False
