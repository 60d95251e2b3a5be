"""External collaborators: metadata tooling and upload backends."""

from .protocols import (
    Backend,
    BackendCatalog,
    MetadataEmbedder,
    MetadataExtractor,
    UploadedPhoto,
    Uploader,
    UploadOptions,
    UploadResult,
)

__all__ = [
    "Backend",
    "BackendCatalog",
    "MetadataEmbedder",
    "MetadataExtractor",
    "Uploader",
    "UploadOptions",
    "UploadResult",
    "UploadedPhoto",
]
