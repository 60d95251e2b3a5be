"""Error taxonomy for the protocol engine.

Protocol-level errors are always recovered locally and reported as a
correlated error response; they never terminate the process.
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Error codes carried in error response payloads."""

    PARSE_ERROR = "PARSE_ERROR"
    UNKNOWN_COMMAND = "UNKNOWN_COMMAND"
    INVALID_REQUEST = "INVALID_REQUEST"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    NO_BACKENDS = "NO_BACKENDS"
    UPLOAD_FAILED = "UPLOAD_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ProtocolError(Exception):
    """Base class for errors reported to the client as error responses."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, details: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class DecodeError(ProtocolError):
    """Input bytes could not be decoded into an envelope."""

    code = ErrorCode.PARSE_ERROR

    def __init__(
        self,
        message: str,
        details: str | None = None,
        correlation_id: str | None = None,
    ) -> None:
        super().__init__(message, details)
        self.correlation_id = correlation_id


class UnknownCommandError(ProtocolError):
    """Request envelope names a command the engine does not know."""

    code = ErrorCode.UNKNOWN_COMMAND


class InvalidRequestError(ProtocolError):
    """Request payload does not fit the command, or the command is not allowed now."""

    code = ErrorCode.INVALID_REQUEST


class SessionNotFoundError(ProtocolError):
    """Session id is unknown or has already been removed."""

    code = ErrorCode.SESSION_NOT_FOUND

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class NoBackendsError(ProtocolError):
    """No upload backend is configured."""

    code = ErrorCode.NO_BACKENDS


class UploadFailedError(ProtocolError):
    """A single file could not be uploaded."""

    code = ErrorCode.UPLOAD_FAILED


class EncodeError(Exception):
    """An envelope could not be serialized."""

    pass


class MetadataError(Exception):
    """The metadata tool failed to read or write a file."""

    pass


class ConfigError(Exception):
    """Configuration file is unreadable or malformed."""

    pass
