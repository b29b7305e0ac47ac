"""Shared fakes for the Upstox Bridge tests."""

import copy
import threading
import time

import pytest
from websockets.protocol import State

from config.loader import DEFAULT_CONFIG


class FakeStreamer:
    """Stands in for upstox_client.MarketDataStreamerV3."""

    def __init__(self, token, instrument_keys, mode, fail_with=None, auto_open=True, raise_on_connect=None):
        self.token = token
        self.instrument_keys = instrument_keys
        self.mode = mode
        self.fail_with = fail_with
        self.auto_open = auto_open
        self.raise_on_connect = raise_on_connect
        self.handlers = {}
        self.connected = False
        self.disconnected = False

    def on(self, event, handler):
        self.handlers[event] = handler

    def connect(self):
        if self.raise_on_connect:
            raise self.raise_on_connect
        self.connected = True
        if self.fail_with:
            self.handlers['error'](self.fail_with)
        elif self.auto_open:
            self.handlers['open']()

    def disconnect(self):
        self.disconnected = True

    def push(self, message):
        self.handlers['message'](message)

    def drop(self):
        self.handlers['close'](1006, "connection lost")


class StreamerFactory:
    """Records every streamer the bridge creates."""

    def __init__(self, **streamer_kwargs):
        self.streamer_kwargs = streamer_kwargs
        self.created = []

    def __call__(self, token, instrument_keys, mode):
        streamer = FakeStreamer(token, instrument_keys, mode, **self.streamer_kwargs)
        self.created.append(streamer)
        return streamer


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class FakeHttpSession:
    """Stands in for requests.Session."""

    def __init__(self, responses=None):
        self.headers = {}
        self.responses = list(responses or [])
        self.requests = []
        self.closed = False

    def get(self, url, params=None, timeout=None):
        self.requests.append({'url': url, 'params': params, 'timeout': timeout})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self):
        self.closed = True


class FakeConnection:
    """Stands in for a websockets ServerConnection."""

    def __init__(self, inbound=None, send_delay=0.0):
        self.state = State.OPEN
        self.inbound = list(inbound or [])
        self.sent = []
        self.send_delay = send_delay
        self.overlapped = False
        self.remote_address = ('127.0.0.1', 50000)
        self._active = 0
        self._guard = threading.Lock()

    def __iter__(self):
        return iter(self.inbound)

    def send(self, payload):
        with self._guard:
            self._active += 1
            if self._active > 1:
                self.overlapped = True
        if self.send_delay:
            time.sleep(self.send_delay)
        self.sent.append(payload)
        with self._guard:
            self._active -= 1


class FakeBridge:
    """Stands in for UpstoxBridge in relay tests."""

    def __init__(self):
        self.connect_calls = []
        self.connect_error = None
        self.option_chain = [{'instrument_key': 'NSE_FO|54321', 'strike_price': 22000.0}]
        self.option_chain_error = None
        self.quote_calls = []
        self.closed = False
        self.on_update = None
        self.on_status = None

    def connect(self, credential, on_update, on_status=None):
        self.connect_calls.append(credential)
        if self.connect_error:
            raise self.connect_error
        self.on_update = on_update
        self.on_status = on_status

    def fetch_option_chain(self, instrument_key):
        if self.option_chain_error:
            raise self.option_chain_error
        return self.option_chain

    def fetch_quote(self, instrument_keys):
        self.quote_calls.append(instrument_keys)
        return {}

    def close(self):
        self.closed = True


@pytest.fixture
def config():
    return copy.deepcopy(DEFAULT_CONFIG)


@pytest.fixture
def streamer_factory():
    return StreamerFactory()


@pytest.fixture
def http_session():
    return FakeHttpSession()


@pytest.fixture
def fake_bridge():
    return FakeBridge()


@pytest.fixture
def connection():
    return FakeConnection()
