"""Unit tests for UploadOrchestrator.

Runs the pipeline against stub collaborators and inspects the envelopes
written to the output stream.
"""

import asyncio
from pathlib import Path

import pytest

from imgup_runtime.orchestrator import UploadOrchestrator
from imgup_runtime.protocol.commands import UploadMetadata, UploadRequest
from imgup_runtime.registry import SessionRegistry


def make_request(session_id: str, **metadata) -> UploadRequest:
    return UploadRequest(
        session_id=session_id,
        backend="flickr",
        metadata=UploadMetadata(**metadata),
    )


async def start_session(registry: SessionRegistry, files: list[str]) -> tuple[str, asyncio.Event]:
    """Create a session and move it to UPLOADING, as the upload handler does."""
    session_id = await registry.create(files)
    token = asyncio.Event()
    await registry.attach_cancel(session_id, token)
    return session_id, token


def file_events(envelopes, index):
    return [
        e["payload"]
        for e in envelopes
        if e["kind"] == "event" and e["payload"].get("fileIndex") == index
    ]


# =============================================================================
# Batch outcomes
# =============================================================================


class TestBatch:
    """Test complete runs."""

    @pytest.mark.asyncio
    async def test_all_files_uploaded(self, orchestrator, registry, photos, stdout, read_envelopes):
        session_id, token = await start_session(registry, photos)

        outcome = await orchestrator.run(session_id, make_request(session_id), "r1", token)

        assert outcome.success is True
        assert outcome.error is None
        assert outcome.outputs == [
            "https://photos.example/a.jpg",
            "https://photos.example/b.jpg",
            "https://photos.example/c.jpg",
        ]
        envelopes = read_envelopes(stdout)
        final = envelopes[-1]
        assert final["kind"] == "response"
        assert final["correlationId"] == "r1"
        assert final["payload"]["success"] is True
        assert final["payload"]["files"] == photos
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_batch(
        self, orchestrator, registry, uploader, photos, stdout, read_envelopes
    ):
        uploader.fail_names = {"b.jpg"}
        session_id, token = await start_session(registry, photos)

        outcome = await orchestrator.run(session_id, make_request(session_id), "r1", token)

        envelopes = read_envelopes(stdout)
        errors = [e for e in envelopes if e["command"] == "error"]
        assert len(errors) == 1
        assert errors[0]["payload"]["fileIndex"] == 1
        assert errors[0]["payload"]["fileName"] == "b.jpg"
        assert errors[0]["payload"]["status"] == "error"
        assert errors[0]["payload"]["code"] == "UPLOAD_FAILED"
        assert "backend rejected b.jpg" in errors[0]["payload"]["message"]

        assert file_events(envelopes, 0)[-1]["status"] == "complete"
        assert file_events(envelopes, 2)[-1]["status"] == "complete"

        assert outcome.success is False
        assert outcome.outputs == [
            "https://photos.example/a.jpg",
            "https://photos.example/c.jpg",
        ]
        assert outcome.error == "1 of 3 file(s) failed: b.jpg"
        assert envelopes[-1]["payload"]["success"] is False

    @pytest.mark.asyncio
    async def test_progress_is_monotonic_per_file(
        self, orchestrator, registry, photos, stdout, read_envelopes
    ):
        session_id, token = await start_session(registry, photos)

        await orchestrator.run(session_id, make_request(session_id, title="T"), "r1", token)

        envelopes = read_envelopes(stdout)
        for index in range(3):
            percents = [p["progressPercent"] for p in file_events(envelopes, index)]
            assert percents == sorted(percents)
            assert percents == [10, 20, 30, 100]

    @pytest.mark.asyncio
    async def test_events_carry_session_id(
        self, orchestrator, registry, photos, stdout, read_envelopes
    ):
        session_id, token = await start_session(registry, photos)

        await orchestrator.run(session_id, make_request(session_id), "r1", token)

        events = [e for e in read_envelopes(stdout) if e["kind"] == "event"]
        assert events
        assert all(e["payload"]["sessionId"] == session_id for e in events)
        assert all("correlationId" not in e for e in events)

    @pytest.mark.asyncio
    async def test_empty_session(self, orchestrator, registry, stdout, read_envelopes):
        session_id, token = await start_session(registry, [])

        outcome = await orchestrator.run(session_id, make_request(session_id), "r1", token)

        assert outcome.success is True
        assert outcome.outputs == []
        assert len(read_envelopes(stdout)) == 1

    @pytest.mark.asyncio
    async def test_upload_options(self, orchestrator, registry, uploader, photos):
        session_id, token = await start_session(registry, photos[:1])
        request = UploadRequest(
            session_id=session_id,
            backend="flickr",
            format="markdown",
            metadata=UploadMetadata(title="T", tags=["a"], alt="A"),
        )

        await orchestrator.run(session_id, request, "r1", token)

        _, options = uploader.calls[0]
        assert options.backend == "flickr"
        assert options.format == "markdown"
        assert options.title == "T"
        assert options.tags == ["a"]
        assert options.alt == "A"
        assert options.filename == "a.jpg"


# =============================================================================
# Metadata embedding
# =============================================================================


class TestEmbedding:
    """Test the temporary embedded copy."""

    @pytest.mark.asyncio
    async def test_embedded_copy_uploaded_then_removed(
        self, orchestrator, registry, uploader, embedder, photos
    ):
        session_id, token = await start_session(registry, photos)

        await orchestrator.run(session_id, make_request(session_id, title="T"), "r1", token)

        uploaded = [path for path, _ in uploader.calls]
        assert uploaded == embedder.created
        assert not any(Path(p).exists() for p in embedder.created)
        assert all(Path(p).exists() for p in photos)

    @pytest.mark.asyncio
    async def test_temp_removed_when_upload_fails(
        self, orchestrator, registry, uploader, embedder, photos
    ):
        uploader.fail_names = {"a.jpg"}
        session_id, token = await start_session(registry, photos[:1])

        await orchestrator.run(session_id, make_request(session_id, title="T"), "r1", token)

        assert len(embedder.created) == 1
        assert not Path(embedder.created[0]).exists()

    @pytest.mark.asyncio
    async def test_embed_failure_uploads_original(
        self, orchestrator, registry, uploader, embedder, photos
    ):
        embedder.fail = True
        session_id, token = await start_session(registry, photos)

        outcome = await orchestrator.run(session_id, make_request(session_id, title="T"), "r1", token)

        assert outcome.success is True
        assert [path for path, _ in uploader.calls] == photos

    @pytest.mark.asyncio
    async def test_no_metadata_skips_embedding(
        self, orchestrator, registry, embedder, photos, stdout, read_envelopes
    ):
        session_id, token = await start_session(registry, photos)

        await orchestrator.run(session_id, make_request(session_id), "r1", token)

        assert embedder.created == []
        statuses = {p["status"] for p in file_events(read_envelopes(stdout), 0)}
        assert "processing" not in statuses

    @pytest.mark.asyncio
    async def test_without_embedder(self, registry, output, uploader, photos):
        orchestrator = UploadOrchestrator(registry, output, uploader)
        session_id, token = await start_session(registry, photos)

        await orchestrator.run(session_id, make_request(session_id, title="T"), "r1", token)

        assert [path for path, _ in uploader.calls] == photos


# =============================================================================
# Cancellation
# =============================================================================


class TestCancellation:
    """Test cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_during_upload(
        self, orchestrator, registry, uploader, photos, stdout, read_envelopes
    ):
        uploader.gate = asyncio.Event()
        session_id, token = await start_session(registry, photos)
        task = asyncio.create_task(
            orchestrator.run(session_id, make_request(session_id), "r1", token)
        )

        await uploader.started.wait()
        await registry.cancel(session_id)
        await registry.remove(session_id)
        uploader.gate.set()
        result = await task

        assert result is None
        # The in-flight upload finished; nothing after it started
        assert len(uploader.calls) == 1
        envelopes = read_envelopes(stdout)
        assert not any(e["kind"] == "response" for e in envelopes)
        assert file_events(envelopes, 0)[-1]["status"] == "complete"
        cancelled = [e for e in envelopes if e["command"] == "cancelled"]
        assert len(cancelled) == 1
        assert cancelled[0]["payload"]["fileIndex"] == 1
        assert cancelled[0]["payload"]["status"] == "cancelled"

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, orchestrator, registry, uploader, photos, stdout, read_envelopes):
        session_id, token = await start_session(registry, photos)
        await registry.cancel(session_id)

        result = await orchestrator.run(session_id, make_request(session_id), "r1", token)

        assert result is None
        assert uploader.calls == []
        envelopes = read_envelopes(stdout)
        assert [e["command"] for e in envelopes] == ["cancelled"]
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_session_already_removed(self, orchestrator, registry, stdout, read_envelopes):
        token = asyncio.Event()

        result = await orchestrator.run("gone", make_request("gone"), "r1", token)

        assert result is None
        envelopes = read_envelopes(stdout)
        assert [e["command"] for e in envelopes] == ["cancelled"]

    @pytest.mark.asyncio
    async def test_cancel_after_last_file(
        self, orchestrator, registry, uploader, photos, stdout, read_envelopes
    ):
        """A cancel that lands after the last upload still suppresses the response."""
        uploader.gate = asyncio.Event()
        session_id, token = await start_session(registry, photos[:1])
        task = asyncio.create_task(
            orchestrator.run(session_id, make_request(session_id), "r1", token)
        )

        await uploader.started.wait()
        await registry.cancel(session_id)
        uploader.gate.set()
        result = await task

        assert result is None
        envelopes = read_envelopes(stdout)
        assert not any(e["kind"] == "response" for e in envelopes)
        assert envelopes[-1]["command"] == "cancelled"


# =============================================================================
# Unexpected failures
# =============================================================================


class BrokenUploader:
    """Returns something that is not an UploadResult."""

    async def upload(self, path, options):
        return None


class TestUnexpectedFailure:
    """Test failures outside the per-file error path."""

    @pytest.mark.asyncio
    async def test_reported_as_upload_failed(self, registry, output, photos, stdout, read_envelopes):
        orchestrator = UploadOrchestrator(registry, output, BrokenUploader())
        session_id, token = await start_session(registry, photos)

        result = await orchestrator.run(session_id, make_request(session_id), "r1", token)

        assert result is None
        final = read_envelopes(stdout)[-1]
        assert final["kind"] == "response"
        assert final["correlationId"] == "r1"
        assert final["payload"]["code"] == "UPLOAD_FAILED"
        assert len(registry) == 0
