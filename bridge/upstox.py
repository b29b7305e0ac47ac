"""
Upstox Bridge Interface for Upstox Bridge.

This module owns the upstream side of a session:
- Bearer token authentication for REST calls
- The single Upstox V3 market data stream
- Option contract and quote lookups
"""

import logging
import threading
from typing import Dict, List, Any, Optional, Callable, Union

import requests
import upstox_client

from bridge.exceptions import UpstreamError, NotConnectedError

logger = logging.getLogger(__name__)

DEFAULT_INSTRUMENT_KEYS = ["NSE_INDEX|Nifty 50", "NSE_INDEX|Nifty Bank"]

STATUS_CONNECTED = "CONNECTED"
STATUS_DISCONNECTED = "DISCONNECTED"


def create_streamer(access_token: str, instrument_keys: List[str], mode: str):
    """
    Build an Upstox V3 market data streamer for the given token.

    Args:
        access_token: Upstox OAuth2 access token
        instrument_keys: Instruments to subscribe to on connect
        mode: Feed detail mode (ltpc, option_greeks, full)

    Returns:
        An unconnected MarketDataStreamerV3
    """
    configuration = upstox_client.Configuration()
    configuration.access_token = access_token
    api_client = upstox_client.ApiClient(configuration)

    streamer = upstox_client.MarketDataStreamerV3(api_client, instrument_keys, mode)
    # A dropped stream is reported to the frontend, the user re-inits
    streamer.auto_reconnect(False)
    return streamer


class UpstoxBridge:
    """
    Upstream side of one frontend session.

    Holds the authenticated context built from the session's access token
    and at most one live market data stream. Streamed updates are pushed
    through the callback registered by the latest connect().
    """

    # API endpoints
    BASE_URL = "https://api.upstox.com/v2"
    OPTION_CONTRACT_PATH = "/option/contract"
    LTP_QUOTE_PATH = "/market-quote/ltp"

    def __init__(self, config: Dict[str, Any],
                 streamer_factory: Optional[Callable] = None,
                 session_factory: Optional[Callable] = None):
        """
        Initialize the bridge.

        Args:
            config: Configuration dictionary
            streamer_factory: Callable(token, instrument_keys, mode) returning a streamer
            session_factory: Callable returning a requests.Session-like object
        """
        upstox_config = config.get('upstox', {})
        self.base_url = upstox_config.get('base_url', self.BASE_URL).rstrip('/')
        self.request_timeout = upstox_config.get('request_timeout', 10)

        stream_config = config.get('stream', {})
        self.instrument_keys = list(stream_config.get('instrument_keys') or DEFAULT_INSTRUMENT_KEYS)
        self.mode = stream_config.get('mode', 'full')
        self.connect_timeout = stream_config.get('connect_timeout', 15)

        self.live_quotes = config.get('quotes', {}).get('live', False)

        self._streamer_factory = streamer_factory or create_streamer
        self._session_factory = session_factory or requests.Session

        # Guards the streamer and its callbacks
        self._lock = threading.Lock()
        self._streamer = None
        self._on_update = None
        self._on_status = None
        self._http = None

    @property
    def is_streaming(self) -> bool:
        """True while a market data stream is registered."""
        with self._lock:
            return self._streamer is not None

    def connect(self, credential: str, on_update: Callable[[Any], None],
                on_status: Optional[Callable[[str], None]] = None) -> None:
        """
        Authenticate with the access token and open the market data stream.

        Any existing stream is torn down first. Blocks until the new stream
        is open or has failed.

        Args:
            credential: Upstox access token
            on_update: Receives every streamed market update
            on_status: Receives CONNECTED/DISCONNECTED stream status changes

        Raises:
            UpstreamError: If the stream could not be opened
        """
        if not credential:
            raise UpstreamError("Missing access token")

        self.disconnect()
        self.authenticate(credential)

        try:
            streamer = self._streamer_factory(credential, self.instrument_keys, self.mode)
        except Exception as e:
            raise UpstreamError(f"Could not create market data streamer: {e}") from e

        settled = threading.Event()
        outcome = {}

        def handle_open(*args):
            outcome['open'] = True
            settled.set()
            self._notify_status(streamer, STATUS_CONNECTED)

        def handle_error(error):
            logger.error(f"Market data stream error: {error}")
            outcome.setdefault('error', str(error))
            settled.set()

        def handle_close(*args):
            logger.info("Market data stream closed")
            outcome.setdefault('error', "Stream closed before it opened")
            settled.set()
            if outcome.get('open'):
                self._stream_closed(streamer)

        streamer.on("open", handle_open)
        streamer.on("message", lambda message: self._deliver(streamer, message))
        streamer.on("error", handle_error)
        streamer.on("close", handle_close)

        with self._lock:
            self._streamer = streamer
            self._on_update = on_update
            self._on_status = on_status

        logger.info(f"Connecting market data stream for {len(self.instrument_keys)} instruments "
                    f"in {self.mode} mode")
        try:
            streamer.connect()
        except Exception as e:
            self._retire(streamer)
            raise UpstreamError(f"Market data connection failed: {e}") from e

        if not settled.wait(self.connect_timeout):
            self._retire(streamer)
            raise UpstreamError(f"Timed out after {self.connect_timeout}s waiting for market data stream")

        if not outcome.get('open'):
            self._retire(streamer)
            raise UpstreamError(outcome.get('error', "Market data connection failed"))

        logger.info("Market data stream connected")

    def disconnect(self) -> None:
        """Tear down the current market data stream, if any."""
        with self._lock:
            streamer = self._streamer
        if streamer is not None:
            self._retire(streamer)

    def close(self) -> None:
        """Tear down the stream and drop the authenticated context."""
        self.disconnect()
        http, self._http = self._http, None
        if http is not None:
            http.close()

    def fetch_option_chain(self, instrument_key: str) -> Any:
        """
        Fetch option contracts for an underlying instrument.

        Args:
            instrument_key: Underlying instrument key (e.g. NSE_INDEX|Nifty 50)

        Returns:
            The contract list from the Upstox response

        Raises:
            UpstreamError: If the API call fails
        """
        logger.info(f"Fetching option chain for {instrument_key}")
        payload = self._get(self.OPTION_CONTRACT_PATH, {'instrument_key': instrument_key})
        return payload.get('data')

    def fetch_quote(self, instrument_keys: Union[str, List[str]]) -> Any:
        """
        Fetch last traded price quotes.

        Unless quotes.live is enabled this returns an empty placeholder
        without calling Upstox.

        Args:
            instrument_keys: List of instrument keys or a comma-joined string

        Returns:
            Quote data keyed by instrument
        """
        if isinstance(instrument_keys, str):
            keys = instrument_keys
        else:
            keys = ','.join(instrument_keys)

        if not self.live_quotes:
            logger.debug(f"Live quotes disabled, returning placeholder for {keys}")
            return {}

        logger.info(f"Fetching LTP quotes for {keys}")
        payload = self._get(self.LTP_QUOTE_PATH, {'instrument_key': keys})
        return payload.get('data', {})

    def authenticate(self, access_token: str) -> None:
        """
        Build the authenticated REST context without opening a stream.

        Args:
            access_token: Upstox access token
        """
        if not access_token:
            raise UpstreamError("Missing access token")
        if self._http is not None:
            self._http.close()
        http = self._session_factory()
        http.headers.update({
            'Accept': 'application/json',
            'Authorization': f'Bearer {access_token}'
        })
        self._http = http

    def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        http = self._http
        if http is None:
            raise NotConnectedError()

        url = f"{self.base_url}{path}"
        try:
            response = http.get(url, params=params, timeout=self.request_timeout)
        except requests.RequestException as e:
            logger.error(f"Request to {path} failed: {e}")
            raise UpstreamError(str(e)) from e

        try:
            data = response.json()
        except ValueError:
            data = None

        if response.status_code != 200 or not isinstance(data, dict) or data.get('status') != 'success':
            message = self._error_message(response.status_code, data)
            logger.error(f"Upstox API error on {path}: {message}")
            raise UpstreamError(message, status_code=response.status_code)

        return data

    @staticmethod
    def _error_message(status_code: int, data: Any) -> str:
        # Upstox error bodies: {"status": "error", "errors": [{"errorCode": ..., "message": ...}]}
        if isinstance(data, dict):
            errors = data.get('errors') or []
            if errors and isinstance(errors[0], dict) and errors[0].get('message'):
                return errors[0]['message']
        return f"Request failed with status code {status_code}"

    def _deliver(self, streamer, message: Any) -> None:
        with self._lock:
            if streamer is not self._streamer or self._on_update is None:
                return
            self._on_update(message)

    def _notify_status(self, streamer, status: str) -> None:
        with self._lock:
            if streamer is not self._streamer or self._on_status is None:
                return
            self._on_status(status)

    def _stream_closed(self, streamer) -> None:
        with self._lock:
            if streamer is not self._streamer:
                return
            on_status = self._on_status
            self._streamer = None
            self._on_update = None
            self._on_status = None
            if on_status is not None:
                on_status(STATUS_DISCONNECTED)

    def _retire(self, streamer) -> None:
        with self._lock:
            if streamer is self._streamer:
                self._streamer = None
                self._on_update = None
                self._on_status = None

        try:
            streamer.disconnect()
        except Exception as e:
            logger.warning(f"Error disconnecting market data stream: {e}")
