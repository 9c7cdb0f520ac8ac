from dotenv import load_dotenv

load_dotenv()

import asyncio
import sys

from fxrelay.core.config import Settings
from fxrelay.exchange.oanda.client import OandaClient
from fxrelay.exchange.oanda.instruments import normalize_symbol


async def run_check(client, symbol: str) -> dict:
    """Read-only round trip against the account. Never places or cancels anything."""
    pos = await client.get_open_position(symbol)
    orders = await client.get_pending_orders(symbol)
    mid = await client.get_mid_price(symbol)
    return {
        "symbol": symbol,
        "position": None if pos is None else {"side": pos.side, "net_units": pos.net_units},
        "pending": [(o.id, o.type, o.price, o.units) for o in orders],
        "mid": mid,
    }


if __name__ == "__main__":
    settings = Settings()
    if not settings.OANDA_API_KEY or not settings.OANDA_ACCOUNT_ID:
        raise SystemExit("Missing OANDA_API_KEY or OANDA_ACCOUNT_ID")

    symbol = normalize_symbol(sys.argv[1] if len(sys.argv) > 1 else "USD_JPY")
    print(f"{settings.OANDA_ENV} {settings.OANDA_API_URL}")
    print(asyncio.run(run_check(OandaClient.from_settings(settings), symbol)))
