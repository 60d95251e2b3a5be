"""Response and event payloads for the protocol layer.

Responses are correlated to a request; events are unsolicited and
scoped to a session. All payload keys are camelCase on the wire.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class EventName(str, Enum):
    """Event envelope commands."""

    PROGRESS = "progress"
    ERROR = "error"
    CANCELLED = "cancelled"


class ProgressStatus(str, Enum):
    """Per-file pipeline status reported in progress events."""

    EXTRACTING = "extracting"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Location(_Payload):
    """GPS position read from the image."""

    latitude: float
    longitude: float
    altitude: float | None = None


class ExtractedMetadata(_Payload):
    """Pre-filled metadata read from the first file of a session."""

    title: str = ""
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    location: Location | None = None
    date: str | None = None
    camera: str | None = None
    lens: str | None = None


class FileInfo(_Payload):
    """Basic information about one readable file."""

    path: str
    name: str
    size: int
    modified_time: datetime


class PrepareResponse(_Payload):
    """Response to `prepare`: the new session and what it contains."""

    session_id: str
    files: list[FileInfo]
    metadata: ExtractedMetadata
    backends: list[str]


class ProgressEvent(_Payload):
    """Progress update for one file of a session.

    `progress_percent` never decreases within one file's event sequence.
    """

    session_id: str
    file_index: int
    file_name: str
    progress_percent: float = Field(ge=0, le=100)
    status: ProgressStatus
    message: str = ""
    code: str | None = None


class UploadOutcome(_Payload):
    """Final response to `upload`.

    `success` is true only if every file was uploaded. `outputs` holds one
    formatted string per uploaded file, in file order.
    """

    session_id: str
    success: bool
    outputs: list[str]
    files: list[str]
    error: str | None = None


class CancelResponse(_Payload):
    """Response to `cancel`."""

    session_id: str
    cancelled: bool = True
