"""Upload collaborator backed by backend plugins.

Backends are discovered from the `imgup_runtime.backends` entry point
group. Each entry point names a factory:

    def create_backend(settings: dict[str, Any]) -> Backend | None

`settings` is that backend's block from the configuration file; the
factory returns None when the backend is not configured (for example,
no access token yet). Only configured backends are available.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from importlib import metadata
from pathlib import Path
from typing import TYPE_CHECKING

from ..errors import UploadFailedError
from .protocols import Backend, UploadOptions, UploadResult
from .templates import (
    DEFAULT_FORMAT,
    TemplateVariables,
    merge_templates,
    render_template,
    select_template,
)

if TYPE_CHECKING:
    from ..config import RuntimeConfig

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "imgup_runtime.backends"


def discover_backends(settings: Mapping[str, Mapping[str, object]]) -> dict[str, Backend]:
    """Load every installed backend plugin that reports itself configured."""
    backends: dict[str, Backend] = {}
    for entry_point in metadata.entry_points(group=ENTRY_POINT_GROUP):
        try:
            factory = entry_point.load()
            backend = factory(dict(settings.get(entry_point.name, {})))
        except Exception as e:
            logger.warning(f"Failed to load backend '{entry_point.name}': {e}")
            continue
        if backend is None:
            logger.debug(f"Backend '{entry_point.name}' is not configured")
            continue
        backends[entry_point.name] = backend
    return backends


class UploadService:
    """Uploader and BackendCatalog over a set of backend clients."""

    def __init__(
        self,
        backends: Mapping[str, Backend] | None = None,
        templates: Mapping[str, str] | None = None,
        default_format: str = DEFAULT_FORMAT,
    ) -> None:
        self._backends = dict(backends or {})
        self._default_format = default_format
        self._templates = dict(templates) if templates is not None else merge_templates()

    @classmethod
    def from_config(cls, config: RuntimeConfig) -> UploadService:
        """Build the service from configuration and installed plugins."""
        return cls(
            backends=discover_backends(config.backends),
            templates=config.templates,
            default_format=config.default_format,
        )

    def register(self, name: str, backend: Backend) -> None:
        """Add or replace a backend client."""
        self._backends[name] = backend

    def list_available_backends(self) -> list[str]:
        """Names of configured backends, sorted."""
        return sorted(self._backends)

    async def upload(self, path: str, options: UploadOptions) -> UploadResult:
        """Upload one file and format the result.

        Raises:
            UploadFailedError: If the file is missing, the backend is unknown,
                or the backend fails
        """
        if not os.path.isfile(path):
            raise UploadFailedError(f"file not found: {path}")

        backend = self._backends.get(options.backend)
        if backend is None:
            raise UploadFailedError(f"unsupported backend: {options.backend}")

        try:
            photo = await backend.upload(path, options)
        except UploadFailedError:
            raise
        except Exception as e:
            raise UploadFailedError(f"upload failed: {e}") from e

        filename = options.filename or Path(path).name
        variables = TemplateVariables(
            photo_id=photo.photo_id,
            url=photo.url,
            image_url=photo.image_url,
            edit_url=photo.edit_url,
            filename=Path(filename).stem,
            title=options.title,
            description=options.description,
            alt=options.alt,
            tags=list(options.tags),
        )
        template = select_template(self._templates, options.format or self._default_format)
        return UploadResult(photo=photo, formatted_output=render_template(template, variables))
