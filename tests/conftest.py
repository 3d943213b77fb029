"""
Shared fixtures: an in-memory store, an aiohttp-shaped fake session and stub fetchers.
No test touches the network.
"""

import json

import pytest

from app.core.store import MemoryStateStore

WALLET = "0x1111111111111111111111111111111111111111"


class FakeResponse:
    """Minimal stand-in for aiohttp.ClientResponse used as an async context manager."""

    def __init__(self, status=200, body=None, text=None):
        self.status = status
        self._body = body
        self._text = text

    async def json(self, content_type=None):
        if self._text is not None:
            return json.loads(self._text)
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False


class FakeSession:
    """Replays queued responses (or raises queued exceptions) and records every request."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


class StubFetchers:
    """Fetcher stand-ins for the aggregator. An outcome that is an exception is raised."""

    def __init__(self, positions=None, cash=0.0, **extra):
        self.outcomes = {"positions": [] if positions is None else positions, "cash": cash, **extra}
        self.calls = []

    def _make(self, name):
        async def fetch(wallet):
            self.calls.append((name, wallet))
            outcome = self.outcomes[name]
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return fetch

    def as_dict(self):
        return {name: self._make(name) for name in self.outcomes}


class RecordingBadge:
    def __init__(self):
        self.updates = []

    async def update(self, text, tooltip):
        self.updates.append((text, tooltip))

    @property
    def last(self):
        return self.updates[-1] if self.updates else None


@pytest.fixture
def wallet():
    return WALLET


@pytest.fixture
def store():
    return MemoryStateStore()


@pytest.fixture
def badge():
    return RecordingBadge()


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture
def stub_fetchers():
    return StubFetchers
