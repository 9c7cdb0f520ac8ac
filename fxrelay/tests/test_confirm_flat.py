import pytest

from fxrelay.core.errors import BrokerUnavailable
from fxrelay.exchange.oanda.models import Position
from fxrelay.execution.confirm import wait_until_flat


class _FakeClient:
    """Returns positions from a sequence; BrokerUnavailable entries are raised."""

    def __init__(self, sequence):
        self._sequence = list(sequence)
        self.reads = 0

    async def get_open_position(self, symbol: str):
        self.reads += 1
        item = self._sequence.pop(0) if len(self._sequence) > 1 else self._sequence[0]
        if isinstance(item, Exception):
            raise item
        return item


OPEN = Position("USD_JPY", long_units=20000.0)


class _Sleeps(list):
    async def __call__(self, seconds):
        self.append(seconds)


@pytest.mark.asyncio
async def test_flat_on_first_read_does_not_sleep():
    client = _FakeClient([None])
    sleeps = _Sleeps()

    assert await wait_until_flat(client, "USD_JPY", attempts=5, poll_s=0.5, sleep=sleeps)
    assert client.reads == 1
    assert sleeps == []


@pytest.mark.asyncio
async def test_becomes_flat_after_polls():
    client = _FakeClient([OPEN, BrokerUnavailable("timeout"), OPEN, None])
    sleeps = _Sleeps()

    assert await wait_until_flat(client, "USD_JPY", attempts=5, poll_s=0.5, sleep=sleeps)
    assert client.reads == 4
    assert sleeps == [0.5, 0.5, 0.5]


@pytest.mark.asyncio
async def test_gives_up_after_budget():
    client = _FakeClient([OPEN])
    sleeps = _Sleeps()

    assert not await wait_until_flat(client, "USD_JPY", attempts=3, poll_s=0.2, sleep=sleeps)
    assert client.reads == 3
    assert sleeps == [0.2, 0.2]
