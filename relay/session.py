"""
Session Relay for Upstox Bridge.

Owns one frontend WebSocket connection. Inbound commands are decoded and
dispatched to the session's UpstoxBridge; replies, streamed updates and
errors are written back to the frontend.
"""

import json
import logging
import threading
import uuid
from enum import Enum
from typing import Dict, Any, Optional

from websockets.protocol import State

from bridge.exceptions import CommandError, UpstreamError
from bridge.upstox import STATUS_DISCONNECTED

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Lifecycle of a frontend session."""
    CONNECTED = "connected"
    STREAMING = "streaming"
    DISCONNECTED = "disconnected"


class SessionRelay:
    """
    Relay between one frontend connection and one UpstoxBridge.

    Commands are handled one at a time by the connection thread, streamed
    updates arrive on the streamer's thread. All writes to the connection
    go through a single lock.
    """

    def __init__(self, connection, bridge, default_token: Optional[str] = None,
                 session_id: Optional[str] = None):
        """
        Initialize the relay.

        Args:
            connection: Frontend WebSocket connection with send() and state
            bridge: UpstoxBridge owned by this session
            default_token: Access token used when init carries none
            session_id: Identifier used in log lines
        """
        self.connection = connection
        self.bridge = bridge
        self.default_token = default_token
        self.session_id = session_id or uuid.uuid4().hex[:8]
        self.state = SessionState.CONNECTED

        self._send_lock = threading.Lock()
        self._handlers = {
            'init': self._handle_init,
            'subscribe': self._handle_subscribe,
            'get_option_chain': self._handle_get_option_chain,
            'get_quotes': self._handle_get_quotes,
        }

    @property
    def is_open(self) -> bool:
        """True while the frontend connection can be written to."""
        if self.state == SessionState.DISCONNECTED or self.connection is None:
            return False
        return getattr(self.connection, 'state', None) is State.OPEN

    def handle_message(self, raw) -> None:
        """
        Decode one inbound frame and dispatch it.

        Unknown message types are ignored. Malformed commands and upstream
        failures are reported to the frontend as a single error message.

        Args:
            raw: Text or binary frame received from the frontend
        """
        if self.state == SessionState.DISCONNECTED:
            logger.debug(f"[{self.session_id}] Dropping message on closed session")
            return

        try:
            message = json.loads(raw)
        except (TypeError, ValueError) as e:
            self.send_error_to_frontend(f"Invalid message: {e}")
            return

        if not isinstance(message, dict):
            self.send_error_to_frontend("Invalid message: expected a JSON object")
            return

        msg_type = message.get('type')
        if msg_type is None:
            self.send_error_to_frontend("Invalid message: missing 'type'")
            return

        handler = self._handlers.get(msg_type) if isinstance(msg_type, str) else None
        if handler is None:
            logger.debug(f"[{self.session_id}] Ignoring unknown message type: {msg_type!r}")
            return

        logger.debug(f"[{self.session_id}] Received {msg_type}")
        try:
            handler(message)
        except CommandError as e:
            self.send_error_to_frontend(str(e))
        except UpstreamError as e:
            self.send_error_to_frontend(f"Upstox API Error: {e.message}")
        except Exception as e:
            logger.error(f"[{self.session_id}] Error handling {msg_type}: {e}", exc_info=True)
            self.send_error_to_frontend(f"Internal error while handling {msg_type}")

    def send_to_frontend(self, message: Any) -> None:
        """
        Write a message to the frontend.

        Dicts and lists are JSON encoded, strings are sent as-is. Never
        raises: a closed connection is a no-op and send failures are logged.

        Args:
            message: Message to send
        """
        if not self.is_open:
            return

        if isinstance(message, (str, bytes)):
            payload = message
        else:
            try:
                payload = json.dumps(message, default=str)
            except (TypeError, ValueError) as e:
                logger.error(f"[{self.session_id}] Could not encode message for frontend: {e}")
                return

        with self._send_lock:
            try:
                self.connection.send(payload)
            except Exception as e:
                logger.warning(f"[{self.session_id}] Error sending message to frontend: {e}")

    def send_error_to_frontend(self, error_message: str) -> None:
        """
        Send an error message to the frontend.

        Args:
            error_message: Human readable description of the failure
        """
        logger.warning(f"[{self.session_id}] {error_message}")
        self.send_to_frontend({'type': 'error', 'message': error_message})

    def close(self) -> None:
        """End the session and tear down its upstream stream."""
        if self.state == SessionState.DISCONNECTED:
            return

        self.state = SessionState.DISCONNECTED
        try:
            self.bridge.close()
        except Exception as e:
            logger.error(f"[{self.session_id}] Error closing upstream bridge: {e}")
        logger.info(f"[{self.session_id}] Session closed")

    def _handle_init(self, message: Dict[str, Any]) -> None:
        token = message.get('token') or self.default_token
        if not token:
            raise CommandError("Invalid init command: missing 'token'")
        if not isinstance(token, str):
            raise CommandError("Invalid init command: 'token' must be a string")

        logger.info(f"[{self.session_id}] Initializing upstream connection")
        try:
            self.bridge.connect(token, self.send_to_frontend, on_status=self._send_status)
        except UpstreamError as e:
            if self.state != SessionState.DISCONNECTED:
                self.state = SessionState.CONNECTED
            self.send_error_to_frontend(f"Upstox connection failed: {e.message}")
            return

        if self.state != SessionState.DISCONNECTED:
            self.state = SessionState.STREAMING

    def _handle_subscribe(self, message: Dict[str, Any]) -> None:
        # The subscription set is fixed for the session
        logger.debug(f"[{self.session_id}] subscribe accepted, subscription set is fixed")

    def _handle_get_option_chain(self, message: Dict[str, Any]) -> None:
        instrument_key = message.get('instrumentKey')
        if not instrument_key or not isinstance(instrument_key, str):
            raise CommandError("Invalid get_option_chain command: missing 'instrumentKey'")

        data = self.bridge.fetch_option_chain(instrument_key)
        self.send_to_frontend({
            'type': 'option_chain_response',
            'data': data,
            'underlyingKey': instrument_key
        })

    def _handle_get_quotes(self, message: Dict[str, Any]) -> None:
        instrument_keys = message.get('instrumentKeys')
        if not isinstance(instrument_keys, list):
            raise CommandError("Invalid get_quotes command: 'instrumentKeys' must be a list")
        if not all(isinstance(key, str) for key in instrument_keys):
            raise CommandError("Invalid get_quotes command: 'instrumentKeys' must contain strings")

        data = self.bridge.fetch_quote(instrument_keys)
        self.send_to_frontend({'type': 'quote_response', 'data': data})

    def _send_status(self, status: str) -> None:
        if status == STATUS_DISCONNECTED and self.state == SessionState.STREAMING:
            self.state = SessionState.CONNECTED
        self.send_to_frontend({'type': 'connection_status', 'status': status})
