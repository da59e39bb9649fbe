"""
Relay error types.

Precondition violations inside the relay are never allowed to tear down a
connection; these exceptions mark the cases the dispatcher turns into dropped
events or `error` envelopes.
"""

from enum import Enum


class ErrorCode(str, Enum):
    """Codes sent to clients in `error` envelopes."""

    INVALID_JSON = "invalid_json"
    UNKNOWN_EVENT = "unknown_event"
    INVALID_PAYLOAD = "invalid_payload"
    INVALID_ROOM = "invalid_room"


class RelayError(Exception):
    """Base class for relay errors."""

    code: ErrorCode = ErrorCode.INVALID_PAYLOAD

    def __init__(self, message: str, code: ErrorCode = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class UnknownConnectionError(RelayError):
    """Raised when an identity is not registered. Always a programming error."""


class InvalidRoomError(RelayError):
    code = ErrorCode.INVALID_ROOM


class ProtocolError(RelayError):
    """Raised for frames that cannot be decoded into a known envelope."""
