"""Tests for command dispatch and forwarding in the session relay."""

import json
import threading

from websockets.protocol import State

from bridge.exceptions import UpstreamError
from bridge.upstox import UpstoxBridge
from relay.session import SessionRelay, SessionState
from tests.conftest import FakeConnection, FakeHttpSession, FakeResponse, StreamerFactory


def sent_messages(connection):
    return [json.loads(payload) for payload in connection.sent]


def test_init_connects_bridge_and_forwards_updates(connection, fake_bridge):
    relay = SessionRelay(connection, fake_bridge)

    relay.handle_message('{"type":"init","token":"abc"}')

    assert fake_bridge.connect_calls == ["abc"]
    assert relay.state == SessionState.STREAMING

    fake_bridge.on_update({'feeds': {'NSE_INDEX|Nifty Bank': {'fullFeed': {}}}})
    assert sent_messages(connection) == [{'feeds': {'NSE_INDEX|Nifty Bank': {'fullFeed': {}}}}]


def test_init_falls_back_to_default_token(connection, fake_bridge):
    relay = SessionRelay(connection, fake_bridge, default_token="from-env")

    relay.handle_message('{"type":"init"}')

    assert fake_bridge.connect_calls == ["from-env"]


def test_init_without_any_token_reports_error(connection, fake_bridge):
    relay = SessionRelay(connection, fake_bridge)

    relay.handle_message('{"type":"init"}')

    assert fake_bridge.connect_calls == []
    assert sent_messages(connection) == [
        {'type': 'error', 'message': "Invalid init command: missing 'token'"}
    ]
    assert relay.state == SessionState.CONNECTED


def test_init_failure_reports_error_and_allows_retry(connection, fake_bridge):
    relay = SessionRelay(connection, fake_bridge)
    fake_bridge.connect_error = UpstreamError("Invalid token used to access API")

    relay.handle_message('{"type":"init","token":"bad"}')

    assert relay.state == SessionState.CONNECTED
    assert sent_messages(connection) == [
        {'type': 'error', 'message': "Upstox connection failed: Invalid token used to access API"}
    ]

    fake_bridge.connect_error = None
    relay.handle_message('{"type":"init","token":"good"}')
    assert relay.state == SessionState.STREAMING
    assert len(connection.sent) == 1


def test_get_option_chain_replies_with_underlying_key(connection, fake_bridge):
    relay = SessionRelay(connection, fake_bridge)

    relay.handle_message('{"type":"get_option_chain","instrumentKey":"NSE_FO|12345"}')

    assert sent_messages(connection) == [{
        'type': 'option_chain_response',
        'data': fake_bridge.option_chain,
        'underlyingKey': 'NSE_FO|12345'
    }]


def test_upstream_failure_emits_one_error_and_session_survives(connection, fake_bridge):
    relay = SessionRelay(connection, fake_bridge)
    fake_bridge.option_chain_error = UpstreamError("Request timed out")

    relay.handle_message('{"type":"get_option_chain","instrumentKey":"NSE_FO|12345"}')
    assert sent_messages(connection) == [{'type': 'error', 'message': 'Upstox API Error: Request timed out'}]

    fake_bridge.option_chain_error = None
    relay.handle_message('{"type":"get_option_chain","instrumentKey":"NSE_FO|12345"}')
    assert sent_messages(connection)[1]['type'] == 'option_chain_response'


def test_unexpected_handler_failure_is_reported(connection, fake_bridge):
    relay = SessionRelay(connection, fake_bridge)
    fake_bridge.option_chain_error = KeyError("data")

    relay.handle_message('{"type":"get_option_chain","instrumentKey":"NSE_FO|12345"}')

    assert sent_messages(connection) == [
        {'type': 'error', 'message': 'Internal error while handling get_option_chain'}
    ]


def test_get_quotes_returns_placeholder(connection, fake_bridge):
    relay = SessionRelay(connection, fake_bridge)

    relay.handle_message('{"type":"get_quotes","instrumentKeys":["A","B"]}')

    assert fake_bridge.quote_calls == [["A", "B"]]
    assert sent_messages(connection) == [{'type': 'quote_response', 'data': {}}]


def test_get_quotes_against_real_bridge_stub(connection):
    bridge = UpstoxBridge({}, streamer_factory=StreamerFactory(),
                          session_factory=lambda: FakeHttpSession())
    relay = SessionRelay(connection, bridge)

    relay.handle_message('{"type":"get_quotes","instrumentKeys":["A","B"]}')

    assert connection.sent == ['{"type": "quote_response", "data": {}}']


def test_option_chain_through_real_bridge(connection):
    contracts = [{'instrument_key': 'NSE_FO|12345', 'expiry': '2026-10-29'}]
    http_session = FakeHttpSession([FakeResponse(200, {'status': 'success', 'data': contracts})])
    bridge = UpstoxBridge({}, streamer_factory=StreamerFactory(),
                          session_factory=lambda: http_session)
    relay = SessionRelay(connection, bridge)

    relay.handle_message('{"type":"init","token":"abc"}')
    relay.handle_message('{"type":"get_option_chain","instrumentKey":"NSE_FO|12345"}')

    messages = sent_messages(connection)
    assert messages[0] == {'type': 'connection_status', 'status': 'CONNECTED'}
    assert messages[1] == {'type': 'option_chain_response', 'data': contracts,
                           'underlyingKey': 'NSE_FO|12345'}


def test_unknown_type_is_ignored(connection, fake_bridge):
    relay = SessionRelay(connection, fake_bridge)

    relay.handle_message('{"type":"unsubscribe","instrumentKeys":["A"]}')
    relay.handle_message('{"type":42}')

    assert connection.sent == []
    assert relay.state == SessionState.CONNECTED


def test_subscribe_is_accepted_without_effect(connection, fake_bridge):
    relay = SessionRelay(connection, fake_bridge)

    relay.handle_message('{"type":"subscribe","instrumentKeys":["NSE_EQ|INE002A01018"]}')

    assert connection.sent == []
    assert fake_bridge.connect_calls == []


def test_malformed_commands_report_errors(connection, fake_bridge):
    relay = SessionRelay(connection, fake_bridge)

    relay.handle_message('not json')
    relay.handle_message('[1, 2]')
    relay.handle_message('{"instrumentKey":"NSE_FO|12345"}')
    relay.handle_message('{"type":"get_option_chain"}')
    relay.handle_message('{"type":"get_quotes","instrumentKeys":"A,B"}')
    relay.handle_message('{"type":"get_quotes","instrumentKeys":["A", 7]}')

    messages = sent_messages(connection)
    assert len(messages) == 6
    assert all(message['type'] == 'error' for message in messages)
    assert messages[3]['message'] == "Invalid get_option_chain command: missing 'instrumentKey'"


def test_send_is_noop_when_connection_closed(fake_bridge):
    connection = FakeConnection()
    connection.state = State.CLOSED
    relay = SessionRelay(connection, fake_bridge)

    relay.send_to_frontend({'type': 'quote_response', 'data': {}})
    relay.send_error_to_frontend("boom")

    assert connection.sent == []


def test_send_failure_is_swallowed(fake_bridge):
    class BrokenConnection(FakeConnection):
        def send(self, payload):
            raise ConnectionResetError("peer reset")

    relay = SessionRelay(BrokenConnection(), fake_bridge)

    relay.send_to_frontend({'type': 'quote_response', 'data': {}})
    relay.handle_message('{"type":"get_quotes","instrumentKeys":["A"]}')

    assert fake_bridge.quote_calls == [["A"]]


def test_upstream_drop_sends_status_and_leaves_streaming(connection, fake_bridge):
    relay = SessionRelay(connection, fake_bridge)
    relay.handle_message('{"type":"init","token":"abc"}')

    fake_bridge.on_status("DISCONNECTED")

    assert relay.state == SessionState.CONNECTED
    assert sent_messages(connection) == [{'type': 'connection_status', 'status': 'DISCONNECTED'}]


def test_close_tears_down_bridge_and_stops_sending(connection, fake_bridge):
    relay = SessionRelay(connection, fake_bridge)
    relay.handle_message('{"type":"init","token":"abc"}')

    relay.close()
    relay.close()

    assert fake_bridge.closed
    assert relay.state == SessionState.DISCONNECTED
    relay.send_to_frontend({'late': True})
    relay.handle_message('{"type":"get_quotes","instrumentKeys":["A"]}')
    assert connection.sent == []


def test_concurrent_updates_and_replies_arrive_whole(fake_bridge):
    connection = FakeConnection(send_delay=0.0005)
    relay = SessionRelay(connection, fake_bridge)
    relay.handle_message('{"type":"init","token":"abc"}')

    def stream():
        for i in range(50):
            fake_bridge.on_update({'feeds': {'NSE_INDEX|Nifty 50': {'seq': i}}})

    def request():
        for _ in range(50):
            relay.handle_message('{"type":"get_quotes","instrumentKeys":["A","B"]}')

    threads = [threading.Thread(target=stream), threading.Thread(target=request)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert not connection.overlapped
    messages = sent_messages(connection)
    assert len(messages) == 100
    assert sum(1 for message in messages if message.get('type') == 'quote_response') == 50
