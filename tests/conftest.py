import asyncio

import pytest

from lyrics_proxy import Success


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUpstream:
    """Scripted upstream: `respond` is an outcome, an exception, or fn(credential, params)."""

    def __init__(self, respond=None, delay: float = 0.0):
        self.respond = respond if respond is not None else Success(200, {"lines": []})
        self.delay = delay
        self.calls = []
        self.started = asyncio.Event()

    async def lookup(self, credential, params):
        self.calls.append((credential.name, dict(params)))
        self.started.set()
        if self.delay:
            await asyncio.sleep(self.delay)
        result = self.respond(credential, params) if callable(self.respond) else self.respond
        if isinstance(result, BaseException):
            raise result
        return result


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_upstream():
    return FakeUpstream
