"""Type protocols for the external collaborators.

The protocol engine only talks to metadata tools and upload backends
through these interfaces, so tests and alternative implementations can
stand in for exiftool or a real image host.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..protocol.events import ExtractedMetadata


@dataclass
class UploadOptions:
    """Options passed to the upload collaborator for one file."""

    backend: str
    # Empty selects the configured default format
    format: str = ""
    title: str = ""
    description: str = ""
    tags: list[str] = field(default_factory=list)
    alt: str = ""
    # Name of the user's file; the uploaded path may be a temporary copy
    filename: str = ""


@dataclass
class UploadedPhoto:
    """What a backend reports for one uploaded photo."""

    photo_id: str
    url: str
    image_url: str = ""
    edit_url: str = ""


@dataclass
class UploadResult:
    """Result of the upload collaborator for one file."""

    photo: UploadedPhoto
    formatted_output: str


@runtime_checkable
class MetadataExtractor(Protocol):
    """Reads caption/keyword metadata from an image."""

    async def extract_metadata(self, path: str) -> ExtractedMetadata:
        """Read title, description, tags and camera details."""
        ...


@runtime_checkable
class MetadataEmbedder(Protocol):
    """Writes caption/keyword metadata into a copy of an image."""

    async def embed_metadata(
        self,
        path: str,
        title: str,
        description: str,
        tags: Sequence[str],
    ) -> str:
        """Create a temporary copy of `path` with metadata and return its path.

        The caller owns the returned file and must remove it.
        """
        ...


@runtime_checkable
class Uploader(Protocol):
    """Uploads one file to a backend and formats the result."""

    async def upload(self, path: str, options: UploadOptions) -> UploadResult:
        """Upload `path`; raise on any failure."""
        ...


@runtime_checkable
class BackendCatalog(Protocol):
    """Reports which backends are configured."""

    def list_available_backends(self) -> list[str]:
        """Names of configured backends."""
        ...


@runtime_checkable
class Backend(Protocol):
    """Client for one image-hosting service."""

    async def upload(self, path: str, options: UploadOptions) -> UploadedPhoto:
        """Upload `path` and return the hosted photo's identifiers."""
        ...
