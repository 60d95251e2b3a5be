"""Pytest configuration and shared fixtures.

Collaborators are stubs with real (minimal) behavior, not mocks: the
uploader records calls and can fail or block per file, the embedder
writes real temporary copies.
"""

from __future__ import annotations

import asyncio
import io
import json
import shutil
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

import pytest

from imgup_runtime.collaborators.protocols import UploadedPhoto, UploadOptions, UploadResult
from imgup_runtime.errors import MetadataError, UploadFailedError
from imgup_runtime.multiplexer import OutputMultiplexer
from imgup_runtime.orchestrator import UploadOrchestrator
from imgup_runtime.protocol.events import ExtractedMetadata
from imgup_runtime.protocol.handler import CommandDispatcher
from imgup_runtime.registry import SessionRegistry

# =============================================================================
# Stub collaborators
# =============================================================================


class StubUploader:
    """Uploader that succeeds unless the file name is listed in `fail_names`.

    When `gate` is set, every upload waits for it after signalling `started`.
    """

    def __init__(self) -> None:
        self.fail_names: set[str] = set()
        self.gate: asyncio.Event | None = None
        self.started = asyncio.Event()
        self.calls: list[tuple[str, UploadOptions]] = []

    async def upload(self, path: str, options: UploadOptions) -> UploadResult:
        self.calls.append((path, options))
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if options.filename in self.fail_names:
            raise UploadFailedError(f"backend rejected {options.filename}")
        url = f"https://photos.example/{options.filename}"
        return UploadResult(
            photo=UploadedPhoto(photo_id=options.filename, url=url),
            formatted_output=url,
        )


class StubCatalog:
    """Backend catalog with a fixed list of names."""

    def __init__(self, names: Sequence[str] = ("flickr",)) -> None:
        self.names = list(names)

    def list_available_backends(self) -> list[str]:
        return list(self.names)


class StubExtractor:
    """Extractor returning fixed metadata, or raising when `error` is set."""

    def __init__(self, metadata: ExtractedMetadata | None = None) -> None:
        self.metadata = metadata or ExtractedMetadata(
            title="Sunset", description="Over the bay", tags=["sky", "sea"]
        )
        self.error: Exception | None = None
        self.paths: list[str] = []

    async def extract_metadata(self, path: str) -> ExtractedMetadata:
        self.paths.append(path)
        if self.error is not None:
            raise self.error
        return self.metadata


class StubEmbedder:
    """Embedder that copies files into `directory` and records the copies."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self.fail = False
        self.created: list[str] = []

    async def embed_metadata(
        self, path: str, title: str, description: str, tags: Sequence[str]
    ) -> str:
        if self.fail:
            raise MetadataError("exiftool failed (1): bad file")
        target = self.directory / f"embedded-{len(self.created)}{Path(path).suffix}"
        shutil.copyfile(path, target)
        self.created.append(str(target))
        return str(target)


# =============================================================================
# Helpers
# =============================================================================


def parse_envelopes(stream: io.BytesIO) -> list[dict[str, Any]]:
    """Read JSON envelopes from a binary stream (simulating stdout)."""
    events = []
    for line in stream.getvalue().decode("utf-8").splitlines():
        if line.strip():
            events.append(json.loads(line))
    return events


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def read_envelopes() -> Callable[[io.BytesIO], list[dict[str, Any]]]:
    """Parser for envelopes written to an output stream."""
    return parse_envelopes


@pytest.fixture
def photos(tmp_path: Path) -> list[str]:
    """Three small image files on disk."""
    directory = tmp_path / "photos"
    directory.mkdir()
    paths = []
    for name in ("a.jpg", "b.jpg", "c.jpg"):
        path = directory / name
        path.write_bytes(b"\xff\xd8\xff" + name.encode())
        paths.append(str(path))
    return paths


@pytest.fixture
def uploader() -> StubUploader:
    return StubUploader()


@pytest.fixture
def catalog() -> StubCatalog:
    return StubCatalog()


@pytest.fixture
def extractor() -> StubExtractor:
    return StubExtractor()


@pytest.fixture
def embedder(tmp_path: Path) -> StubEmbedder:
    directory = tmp_path / "embedded"
    directory.mkdir()
    return StubEmbedder(directory)


@pytest.fixture
def stdout() -> io.BytesIO:
    return io.BytesIO()


@pytest.fixture
def output(stdout: io.BytesIO) -> OutputMultiplexer:
    return OutputMultiplexer(stdout)


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture
def orchestrator(
    registry: SessionRegistry,
    output: OutputMultiplexer,
    uploader: StubUploader,
    embedder: StubEmbedder,
) -> UploadOrchestrator:
    return UploadOrchestrator(registry, output, uploader, embedder)


@pytest.fixture
def dispatcher(
    registry: SessionRegistry,
    output: OutputMultiplexer,
    orchestrator: UploadOrchestrator,
    extractor: StubExtractor,
    catalog: StubCatalog,
) -> CommandDispatcher:
    return CommandDispatcher(registry, output, orchestrator, extractor, catalog)
