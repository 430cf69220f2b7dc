"""Shared fixtures for the playtime tests."""

import asyncio

import pytest

from state_store import PlaytimeStore


class FakeClock:
    """Epoch-seconds clock the test moves by hand."""

    def __init__(self, now: int = 0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "data" / "playtime.db")


@pytest.fixture
def clock():
    return FakeClock(1000)


@pytest.fixture
def run():
    """Run ``scenario(store)`` inside a fresh event loop with an open store."""

    def _run(scenario, path=":memory:"):
        async def main():
            async with PlaytimeStore(path) as store:
                return await scenario(store)

        return asyncio.run(main())

    return _run
