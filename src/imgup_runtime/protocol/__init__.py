"""Wire protocol layer.

Key concepts:
- Envelopes: one JSON message unit on the wire (request, response, event)
- Correlation: every request gets exactly one response with its correlationId
- Events: unsolicited, session-scoped progress updates without correlation
"""

from .codec import EnvelopeDecoder, encode_envelope
from .commands import (
    CancelRequest,
    CommandType,
    PrepareRequest,
    UploadMetadata,
    UploadRequest,
    parse_request,
)
from .envelope import Envelope, EnvelopeKind
from .events import (
    CancelResponse,
    EventName,
    ExtractedMetadata,
    FileInfo,
    Location,
    PrepareResponse,
    ProgressEvent,
    ProgressStatus,
    UploadOutcome,
)
from .handler import CommandDispatcher

__all__ = [
    "Envelope",
    "EnvelopeKind",
    "EnvelopeDecoder",
    "encode_envelope",
    "CommandType",
    "PrepareRequest",
    "UploadRequest",
    "UploadMetadata",
    "CancelRequest",
    "parse_request",
    "EventName",
    "ProgressStatus",
    "ProgressEvent",
    "FileInfo",
    "Location",
    "ExtractedMetadata",
    "PrepareResponse",
    "UploadOutcome",
    "CancelResponse",
    "CommandDispatcher",
]
