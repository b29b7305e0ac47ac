"""
WebSocket server for Upstox Bridge.

Accepts frontend connections and gives each one its own SessionRelay and
UpstoxBridge. Each connection is served on its own thread.
"""

import logging
import threading
from typing import Dict, Any, Optional, Callable

from websockets.exceptions import ConnectionClosed
from websockets.sync.server import serve

from bridge.upstox import UpstoxBridge
from relay.session import SessionRelay

logger = logging.getLogger(__name__)


class RelayServer:
    """
    Frontend-facing WebSocket server.
    """

    def __init__(self, config: Dict[str, Any], bridge_factory: Optional[Callable] = None):
        """
        Initialize the relay server.

        Args:
            config: Configuration dictionary
            bridge_factory: Callable returning a new bridge for each session
        """
        self.config = config
        server_config = config.get('server', {})
        self.host = server_config.get('host', 'localhost')
        self.port = server_config.get('port', 4000)
        self.default_token = config.get('upstox', {}).get('access_token') or None

        self._bridge_factory = bridge_factory or (lambda: UpstoxBridge(config))
        self._server = None
        self._thread = None

    def handle_connection(self, connection) -> None:
        """
        Serve one frontend connection until it closes.

        Args:
            connection: Frontend WebSocket connection
        """
        relay = SessionRelay(connection, self._bridge_factory(), default_token=self.default_token)
        logger.info(f"[{relay.session_id}] Frontend connected: {getattr(connection, 'remote_address', None)}")

        try:
            for raw in connection:
                relay.handle_message(raw)
        except ConnectionClosed as e:
            logger.info(f"[{relay.session_id}] Frontend connection closed abnormally: {e}")
        finally:
            relay.close()
            logger.info(f"[{relay.session_id}] Frontend disconnected")

    def start(self) -> None:
        """Start accepting connections on a background thread."""
        if self._server is not None:
            logger.warning("Relay server is already running")
            return

        self._server = serve(self.handle_connection, self.host, self.port)
        self.port = self._server.socket.getsockname()[1]

        self._thread = threading.Thread(target=self._server.serve_forever,
                                        name="relay-server", daemon=True)
        self._thread.start()
        logger.info(f"Bridge server running on ws://{self.host}:{self.port}")

    def stop(self) -> None:
        """Stop accepting connections."""
        if self._server is None:
            return

        logger.info("Stopping bridge server...")
        self._server.shutdown()
        if self._thread is not None:
            self._thread.join(timeout=5)
        self._server = None
        self._thread = None
        logger.info("Bridge server stopped")
