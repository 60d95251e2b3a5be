"""Command definitions for the protocol layer.

Each known command has one strictly-typed request model. Decoding is
tagged: the envelope's `command` selects the model first, then the
payload is validated directly into it.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import InvalidRequestError, UnknownCommandError


class CommandType(str, Enum):
    """All supported command types."""

    PREPARE = "prepare"  # Client → engine: here are my files
    UPLOAD = "upload"  # Client → engine: go with these settings
    CANCEL = "cancel"  # Client → engine: stop the running upload


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class PrepareRequest(_Request):
    """Initial request with the selected files."""

    files: list[str]


class UploadMetadata(_Request):
    """User-edited metadata applied to every file of the session."""

    title: str = ""
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    alt: str = ""

    def has_content(self) -> bool:
        """Check if there is anything worth embedding into the files."""
        return bool(self.title or self.description or self.tags)


class UploadRequest(_Request):
    """Final upload request after the user reviewed the metadata."""

    session_id: str = Field(alias="sessionId")
    metadata: UploadMetadata = Field(default_factory=UploadMetadata)
    backend: str
    format: str | None = None
    post_to_social: list[str] = Field(default_factory=list, alias="postToSocial")


class CancelRequest(_Request):
    """Cancel an in-progress upload."""

    session_id: str = Field(alias="sessionId")


Request = PrepareRequest | UploadRequest | CancelRequest

REQUEST_MODELS: dict[CommandType, type[Request]] = {
    CommandType.PREPARE: PrepareRequest,
    CommandType.UPLOAD: UploadRequest,
    CommandType.CANCEL: CancelRequest,
}


def parse_request(command: str, payload: Any) -> Request:
    """Decode a payload into the request model selected by `command`.

    Raises:
        UnknownCommandError: If `command` is not a known command
        InvalidRequestError: If the payload does not fit the command
    """
    try:
        command_type = CommandType(command)
    except ValueError:
        raise UnknownCommandError(f"Unknown command: {command}") from None

    model = REQUEST_MODELS[command_type]
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise InvalidRequestError(
            f"Invalid {command_type.value} request",
            details=str(e),
        ) from e
