"""Envelope definitions for the protocol layer.

Every message on the wire is one envelope:
- Requests: Client → engine, carry a `command` and a `correlationId`
- Responses: Engine → client, exactly one per request, same `correlationId`
- Events: Engine → client, unsolicited and session-scoped, no `correlationId`
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from ..errors import ErrorCode


class EnvelopeKind(str, Enum):
    """Envelope kinds."""

    REQUEST = "request"
    RESPONSE = "response"
    EVENT = "event"


class Envelope(BaseModel):
    """One JSON message unit on the wire.

    Example (request):
        {
            "kind": "request",
            "command": "prepare",
            "payload": {"files": ["/photos/a.jpg"]},
            "correlationId": "req-1"
        }

    Example (correlated response):
        {
            "kind": "response",
            "command": "",
            "payload": {"sessionId": "5f0c...", "files": [...]},
            "correlationId": "req-1"
        }

    Example (event):
        {
            "kind": "event",
            "command": "progress",
            "payload": {"sessionId": "5f0c...", "fileIndex": 0, "status": "uploading"}
        }

    The legacy keys `type`, `data` and `id` are accepted on input.
    """

    model_config = ConfigDict(populate_by_name=True)

    kind: EnvelopeKind = Field(
        default=EnvelopeKind.REQUEST,
        validation_alias=AliasChoices("kind", "type"),
    )
    command: str = ""
    payload: Any = Field(
        default=None,
        validation_alias=AliasChoices("payload", "data"),
    )
    correlation_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("correlationId", "id"),
        serialization_alias="correlationId",
    )

    def is_request(self) -> bool:
        """Check if this envelope is a client request."""
        return self.kind == EnvelopeKind.REQUEST

    @classmethod
    def request(
        cls,
        command: str,
        payload: Any = None,
        correlation_id: str | None = None,
    ) -> Envelope:
        """Create a request envelope."""
        return cls(
            kind=EnvelopeKind.REQUEST,
            command=command,
            payload=payload,
            correlation_id=correlation_id,
        )

    @classmethod
    def response(cls, correlation_id: str | None, payload: Any) -> Envelope:
        """Create a response envelope correlated to a request."""
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(mode="json", by_alias=True, exclude_none=True)
        return cls(
            kind=EnvelopeKind.RESPONSE,
            command="",
            payload=payload,
            correlation_id=correlation_id,
        )

    @classmethod
    def event(cls, name: str, payload: Any) -> Envelope:
        """Create an uncorrelated event envelope."""
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(mode="json", by_alias=True, exclude_none=True)
        return cls(kind=EnvelopeKind.EVENT, command=name, payload=payload)

    @classmethod
    def error(
        cls,
        correlation_id: str | None,
        error: str,
        code: ErrorCode | str,
        details: str | None = None,
    ) -> Envelope:
        """Create an error response."""
        data: dict[str, Any] = {
            "error": error,
            "code": code.value if isinstance(code, ErrorCode) else code,
        }
        if details:
            data["details"] = details
        return cls.response(correlation_id, data)
