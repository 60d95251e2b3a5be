"""Command Dispatcher - routes request envelopes to handlers.

Handlers emit their responses through the output multiplexer instead of
returning them. `prepare` and `cancel` run to completion on the caller's
task; `upload` hands the pipeline to a new concurrent task so the read
loop keeps going and can deliver a later `cancel`.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from ..errors import (
    ErrorCode,
    InvalidRequestError,
    NoBackendsError,
    ProtocolError,
    SessionNotFoundError,
)
from .commands import CancelRequest, PrepareRequest, UploadRequest, parse_request
from .envelope import Envelope
from .events import CancelResponse, ExtractedMetadata, FileInfo, PrepareResponse

if TYPE_CHECKING:
    from ..collaborators.protocols import BackendCatalog, MetadataExtractor
    from ..multiplexer import OutputMultiplexer
    from ..orchestrator import UploadOrchestrator
    from ..registry import SessionRegistry

logger = logging.getLogger(__name__)


def describe_file(path: str) -> FileInfo | None:
    """Stat one file for the prepare response; None if it cannot be read."""
    try:
        info = os.stat(path)
    except (OSError, ValueError) as e:
        logger.debug(f"Omitting unreadable file {path}: {e}")
        return None
    return FileInfo(
        path=path,
        name=Path(path).name,
        size=info.st_size,
        modified_time=datetime.fromtimestamp(info.st_mtime, tz=UTC),
    )


class CommandDispatcher:
    """Handles request envelopes and emits correlated responses.

    Usage:
        dispatcher = CommandDispatcher(registry, output, orchestrator, extractor, catalog)
        await dispatcher.dispatch(envelope)
        ...
        await dispatcher.drain()  # wait for running uploads

    Correlation:
        Every well-formed request produces exactly one response carrying
        the request's `correlationId`. For `upload` that response is sent
        by the upload task when the batch finishes.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        output: OutputMultiplexer,
        orchestrator: UploadOrchestrator,
        extractor: MetadataExtractor | None,
        catalog: BackendCatalog,
    ) -> None:
        self._registry = registry
        self._output = output
        self._orchestrator = orchestrator
        self._extractor = extractor
        self._catalog = catalog
        self._tasks: set[asyncio.Task[object]] = set()

    @property
    def active_uploads(self) -> int:
        """Number of upload tasks still running."""
        return len(self._tasks)

    async def dispatch(self, envelope: Envelope) -> None:
        """Process one envelope; responses go to the output multiplexer."""
        correlation_id = envelope.correlation_id
        logger.debug(f"Handling command: {envelope.command} (id={correlation_id})")

        try:
            if not envelope.is_request():
                raise InvalidRequestError(
                    f"Expected a request envelope, got {envelope.kind.value}"
                )

            request = parse_request(envelope.command, envelope.payload)
            match request:
                case PrepareRequest():
                    await self._prepare(request, correlation_id)
                case UploadRequest():
                    await self._upload(request, correlation_id)
                case CancelRequest():
                    await self._cancel(request, correlation_id)

        except ProtocolError as e:
            logger.info(f"{envelope.command or 'request'} {correlation_id}: {e.code.value} {e}")
            await self._output.emit(
                Envelope.error(correlation_id, e.message, e.code, details=e.details)
            )

        except Exception as e:
            logger.exception(f"Error handling command {correlation_id}: {e}")
            await self._output.emit(
                Envelope.error(correlation_id, str(e), ErrorCode.INTERNAL_ERROR)
            )

    async def drain(self) -> None:
        """Wait for every running upload task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel running upload tasks and wait for them to unwind."""
        for task in list(self._tasks):
            task.cancel()
        await self.drain()

    # =========================================================================
    # Command handlers
    # =========================================================================

    async def _prepare(self, request: PrepareRequest, correlation_id: str | None) -> None:
        """Create a session and report file info, metadata and backends."""
        metadata = ExtractedMetadata()
        if request.files and self._extractor is not None:
            # Metadata comes from the first file only
            try:
                metadata = await self._extractor.extract_metadata(request.files[0])
            except Exception as e:
                logger.warning(f"Could not extract metadata from {request.files[0]}: {e}")

        files = [info for path in request.files if (info := describe_file(path)) is not None]
        backends = self._catalog.list_available_backends()

        # Register only once everything that can fail has run
        session_id = await self._registry.create(request.files, metadata)
        response = PrepareResponse(
            session_id=session_id,
            files=files,
            metadata=metadata,
            backends=backends,
        )
        await self._output.emit(Envelope.response(correlation_id, response))

    async def _upload(self, request: UploadRequest, correlation_id: str | None) -> None:
        """Validate the request and start the session's upload task."""
        session = await self._registry.get(request.session_id)

        backends = self._catalog.list_available_backends()
        if not backends:
            raise NoBackendsError("No upload backends are configured")
        if request.backend not in backends:
            raise InvalidRequestError(
                f"Backend not available: {request.backend}",
                details=f"available: {', '.join(backends)}",
            )
        if request.post_to_social:
            logger.info(
                f"Session {session.id}: social posting not supported, "
                f"ignoring {', '.join(request.post_to_social)}"
            )

        token = asyncio.Event()
        await self._registry.attach_cancel(session.id, token)

        task = asyncio.create_task(
            self._orchestrator.run(session.id, request, correlation_id, token),
            name=f"upload-{session.id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _cancel(self, request: CancelRequest, correlation_id: str | None) -> None:
        """Signal the session's upload task and drop the session."""
        await self._registry.cancel(request.session_id)
        with contextlib.suppress(SessionNotFoundError):
            await self._registry.remove(request.session_id)

        await self._output.emit(
            Envelope.response(correlation_id, CancelResponse(session_id=request.session_id))
        )
