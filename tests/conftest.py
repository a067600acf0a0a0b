"""Shared test fixtures."""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
import requests
from websockets.exceptions import ConnectionClosedOK

import apca_data.stream as stream_mod
from apca_data.alpaca_api.base import Credentials, RestClient
from apca_data.alpaca_api.market_data import MarketDataClient


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, payload=None, status_code=200, text=None):
        self._payload = payload
        self.status_code = status_code
        self.text = text if text is not None else json.dumps(payload)

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


def quote_record(ts, bid=100.0, ask=100.1):
    return {
        "t": ts.isoformat().replace("+00:00", "Z"),
        "ax": "Q",
        "ap": ask,
        "as": 4,
        "bx": "U",
        "bp": bid,
        "bs": 1,
        "c": ["R"],
        "z": "C",
    }


def trade_record(ts, price=126.55, trade_id=1):
    return {
        "t": ts.isoformat().replace("+00:00", "Z"),
        "x": "D",
        "p": price,
        "s": 100,
        "c": ["@", "I"],
        "i": trade_id,
        "z": "C",
    }


def bar_record(ts, close=389.12):
    return {
        "t": ts.isoformat().replace("+00:00", "Z"),
        "o": 388.985,
        "h": 389.13,
        "l": 388.975,
        "c": close,
        "v": 49378,
        "n": 120,
        "vw": 389.05,
    }


@pytest.fixture
def window():
    """A three minute query window."""
    start = datetime(2024, 1, 2, 14, 30, tzinfo=timezone.utc)
    return start, start + timedelta(minutes=3)


@pytest.fixture
def http_session():
    """MagicMock requests.Session; tests set `get.side_effect` / `get.return_value`."""
    session = MagicMock(spec=requests.Session)
    session.headers = {}
    return session


@pytest.fixture
def market_data_client(http_session):
    """MarketDataClient whose transport uses the mocked session."""
    rest = RestClient(Credentials("test_key", "test_secret"), session=http_session)
    return MarketDataClient(api_key="test_key", secret_key="test_secret", rest=rest)


class FakeWebSocket:
    """Scripted realtime server.

    `incoming` frames are returned by recv() in order; exceptions placed in
    the queue are raised. `replies` maps an action name to frames pushed
    when the client sends that action.
    """

    def __init__(self, replies=None):
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.sent: list[dict] = []
        self.replies: dict[str, list] = replies or {}
        self.closed = False
        self.url = None

    def push(self, frame):
        if isinstance(frame, (list, dict)):
            frame = json.dumps(frame)
        self.incoming.put_nowait(frame)

    def push_close(self, exc=None):
        self.incoming.put_nowait(exc or ConnectionClosedOK(None, None))

    async def recv(self):
        item = await self.incoming.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def send(self, data):
        payload = json.loads(data)
        self.sent.append(payload)
        for frame in self.replies.get(payload.get("action"), []):
            self.push(frame)

    async def close(self):
        if not self.closed:
            self.closed = True
            self.push_close()


CONNECTED = [{"T": "success", "msg": "connected"}]
AUTHENTICATED = [{"T": "success", "msg": "authenticated"}]


@pytest.fixture
def fake_ws(monkeypatch):
    """Patch the websocket connect used by RealtimeSession with a FakeWebSocket."""
    ws = FakeWebSocket(replies={"auth": [AUTHENTICATED]})
    ws.push(CONNECTED)

    async def fake_connect(url, **kwargs):
        ws.url = url
        return ws

    monkeypatch.setattr(stream_mod, "connect", fake_connect)
    return ws


@pytest.fixture
def session():
    """Unconnected RealtimeSession with short timeouts."""
    return stream_mod.RealtimeSession(
        api_key="test_key",
        secret_key="test_secret",
        feed="iex",
        handshake_timeout=1.0,
        ack_timeout=1.0,
    )
