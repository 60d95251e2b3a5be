"""Upload Orchestrator.

One orchestrator run is one concurrent task driving a session's files
through the pipeline, in order:

    Queued → Extracting → [Embedding] → Uploading → Done
                                              └──→ Failed

Cancellation is cooperative. The token is checked before each file leaves
Queued, and once more before the final response; an upload already in
flight to a backend is never interrupted. A single file's failure never
stops the batch.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from .collaborators.protocols import MetadataEmbedder, UploadOptions, Uploader
from .errors import ErrorCode, SessionNotFoundError
from .protocol.envelope import Envelope
from .protocol.events import EventName, ProgressEvent, ProgressStatus, UploadOutcome

if TYPE_CHECKING:
    from .multiplexer import OutputMultiplexer
    from .protocol.commands import UploadMetadata, UploadRequest
    from .registry import SessionRegistry

logger = logging.getLogger(__name__)


class FileStage(str, Enum):
    """Per-file pipeline states."""

    QUEUED = "queued"
    EXTRACTING = "extracting"
    EMBEDDING = "embedding"
    UPLOADING = "uploading"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Fixed progress checkpoints (percent)
EXTRACTING_PERCENT = 10.0
EMBEDDING_PERCENT = 20.0
UPLOADING_PERCENT = 30.0
COMPLETE_PERCENT = 100.0


def _trace(session_id: str, index: int, stage: FileStage) -> None:
    logger.debug(f"Session {session_id} file {index}: {stage.value}")


class UploadOrchestrator:
    """Runs the file-by-file upload pipeline for sessions.

    Usage:
        orchestrator = UploadOrchestrator(registry, output, uploader, embedder)
        task = asyncio.create_task(
            orchestrator.run(session_id, request, correlation_id, token)
        )

    The run emits progress events for the session and finishes with either
    one correlated UploadOutcome response or one `cancelled` event.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        output: OutputMultiplexer,
        uploader: Uploader,
        embedder: MetadataEmbedder | None = None,
    ) -> None:
        self._registry = registry
        self._output = output
        self._uploader = uploader
        self._embedder = embedder

    async def run(
        self,
        session_id: str,
        request: UploadRequest,
        correlation_id: str | None,
        token: asyncio.Event,
    ) -> UploadOutcome | None:
        """Upload every file of a session.

        Returns:
            The outcome sent to the client, or None if the run was cancelled
        """
        try:
            return await self._run(session_id, request, correlation_id, token)
        except Exception as e:
            logger.exception(f"Upload task for session {session_id} failed: {e}")
            with contextlib.suppress(SessionNotFoundError):
                await self._registry.remove(session_id)
            await self._output.emit(
                Envelope.error(correlation_id, f"Upload failed: {e}", ErrorCode.UPLOAD_FAILED)
            )
            return None

    async def _run(
        self,
        session_id: str,
        request: UploadRequest,
        correlation_id: str | None,
        token: asyncio.Event,
    ) -> UploadOutcome | None:
        try:
            session = await self._registry.get(session_id)
        except SessionNotFoundError:
            # Cancelled and cleaned up before the task got going
            await self._emit_cancelled(session_id, 0, "")
            return None

        files = list(session.files)
        outputs: list[str] = []
        failed: list[str] = []
        logger.info(f"Uploading {len(files)} file(s) for session {session_id} to {request.backend}")

        for index, path in enumerate(files):
            _trace(session_id, index, FileStage.QUEUED)
            if token.is_set():
                _trace(session_id, index, FileStage.CANCELLED)
                with contextlib.suppress(SessionNotFoundError):
                    await self._registry.remove(session_id)
                await self._emit_cancelled(session_id, index, Path(path).name)
                return None

            output = await self._process_file(session_id, index, path, request)
            if output is None:
                failed.append(Path(path).name)
            else:
                outputs.append(output)

        try:
            completed = await self._registry.complete(session_id)
        except SessionNotFoundError:
            completed = False
        if not completed:
            await self._emit_cancelled(session_id, len(files), "")
            return None

        outcome = UploadOutcome(
            session_id=session_id,
            success=not failed,
            outputs=outputs,
            files=files,
            error=f"{len(failed)} of {len(files)} file(s) failed: {', '.join(failed)}"
            if failed
            else None,
        )
        await self._output.emit(Envelope.response(correlation_id, outcome))
        logger.info(
            f"Session {session_id} finished: {len(outputs)} uploaded, {len(failed)} failed"
        )
        return outcome

    async def _process_file(
        self,
        session_id: str,
        index: int,
        path: str,
        request: UploadRequest,
    ) -> str | None:
        """Run one file through the pipeline; return its output or None on failure."""
        name = Path(path).name
        _trace(session_id, index, FileStage.EXTRACTING)
        await self._emit_progress(
            session_id, index, name, EXTRACTING_PERCENT, ProgressStatus.EXTRACTING, "Reading metadata"
        )

        async with self._prepared_file(session_id, index, path, request.metadata) as upload_path:
            _trace(session_id, index, FileStage.UPLOADING)
            await self._emit_progress(
                session_id,
                index,
                name,
                UPLOADING_PERCENT,
                ProgressStatus.UPLOADING,
                f"Uploading to {request.backend}",
            )
            options = UploadOptions(
                backend=request.backend,
                format=request.format or "",
                title=request.metadata.title,
                description=request.metadata.description,
                tags=list(request.metadata.tags),
                alt=request.metadata.alt,
                filename=name,
            )
            try:
                result = await self._uploader.upload(upload_path, options)
            except Exception as e:
                _trace(session_id, index, FileStage.FAILED)
                logger.warning(f"Session {session_id}: upload of {name} failed: {e}")
                await self._output.emit(
                    Envelope.event(
                        EventName.ERROR.value,
                        ProgressEvent(
                            session_id=session_id,
                            file_index=index,
                            file_name=name,
                            progress_percent=UPLOADING_PERCENT,
                            status=ProgressStatus.ERROR,
                            message=str(e),
                            code=ErrorCode.UPLOAD_FAILED.value,
                        ),
                    )
                )
                return None

        _trace(session_id, index, FileStage.DONE)
        await self._emit_progress(
            session_id, index, name, COMPLETE_PERCENT, ProgressStatus.COMPLETE, "Uploaded"
        )
        return result.formatted_output

    @contextlib.asynccontextmanager
    async def _prepared_file(
        self,
        session_id: str,
        index: int,
        path: str,
        metadata: UploadMetadata,
    ) -> AsyncIterator[str]:
        """Yield the path to upload: a metadata-embedded copy, or the original.

        The copy is removed on every exit path.
        """
        temp_path: str | None = None
        if self._embedder is not None and metadata.has_content():
            await self._emit_progress(
                session_id,
                index,
                Path(path).name,
                EMBEDDING_PERCENT,
                ProgressStatus.PROCESSING,
                "Embedding metadata",
            )
            _trace(session_id, index, FileStage.EMBEDDING)
            try:
                temp_path = await self._embedder.embed_metadata(
                    path, metadata.title, metadata.description, metadata.tags
                )
            except Exception as e:
                # Best effort: upload the original instead
                logger.warning(f"Failed to embed metadata into {path}: {e}")
            else:
                logger.debug(f"Created temp file with metadata: {temp_path}")

        try:
            yield temp_path or path
        finally:
            if temp_path:
                Path(temp_path).unlink(missing_ok=True)

    async def _emit_progress(
        self,
        session_id: str,
        index: int,
        name: str,
        percent: float,
        status: ProgressStatus,
        message: str,
    ) -> None:
        await self._output.emit(
            Envelope.event(
                EventName.PROGRESS.value,
                ProgressEvent(
                    session_id=session_id,
                    file_index=index,
                    file_name=name,
                    progress_percent=percent,
                    status=status,
                    message=message,
                ),
            )
        )

    async def _emit_cancelled(self, session_id: str, index: int, name: str) -> None:
        logger.info(f"Upload for session {session_id} cancelled before file {index}")
        await self._output.emit(
            Envelope.event(
                EventName.CANCELLED.value,
                ProgressEvent(
                    session_id=session_id,
                    file_index=index,
                    file_name=name,
                    progress_percent=0,
                    status=ProgressStatus.CANCELLED,
                    message="Upload cancelled",
                ),
            )
        )
