"""
Exceptions raised by the Upstox Bridge components.
"""

from typing import Optional


class BridgeError(Exception):
    """Base class for all bridge errors."""


class UpstreamError(BridgeError):
    """
    An Upstox API call or stream connection failed.

    The message is the upstream description of the failure and is safe
    to show to the frontend.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class NotConnectedError(UpstreamError):
    """An API call was made before any access token was supplied."""

    def __init__(self, message: str = "Not connected to Upstox, send init first"):
        super().__init__(message)


class CommandError(BridgeError):
    """A frontend command is malformed or missing a required field."""
