"""stdio Protocol Adapter.

Runs the protocol engine over stdin/stdout:
- Reads request envelopes from stdin
- Writes responses and events to stdout, one JSON object per line
- Logs go to stderr; stdout carries protocol traffic only

Wire format (UTF-8, LF-terminated on output):
    → {"kind":"request","command":"prepare","payload":{"files":["a.jpg"]},"correlationId":"r1"}
    ← {"kind":"response","command":"","payload":{"sessionId":"...","files":[...]},"correlationId":"r1"}
    → {"kind":"request","command":"upload","payload":{"sessionId":"...","backend":"flickr"},"correlationId":"r2"}
    ← {"kind":"event","command":"progress","payload":{"sessionId":"...","status":"extracting",...}}
    ← {"kind":"event","command":"progress","payload":{"sessionId":"...","status":"uploading",...}}
    ← {"kind":"event","command":"progress","payload":{"sessionId":"...","status":"complete",...}}
    ← {"kind":"response","command":"","payload":{"sessionId":"...","success":true,...},"correlationId":"r2"}

End of input stops the read loop; running uploads are allowed to finish
before `run` returns.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from typing import BinaryIO

from ..collaborators.exiftool import ExiftoolMetadata
from ..collaborators.protocols import (
    BackendCatalog,
    MetadataEmbedder,
    MetadataExtractor,
    Uploader,
)
from ..collaborators.upload_service import UploadService
from ..config import RuntimeConfig
from ..errors import DecodeError
from ..multiplexer import OutputMultiplexer
from ..orchestrator import UploadOrchestrator
from ..protocol.codec import EnvelopeDecoder
from ..protocol.envelope import Envelope
from ..protocol.handler import CommandDispatcher
from ..registry import SessionRegistry

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(levelname)s: %(message)s"


def configure_logging(level: str = "WARNING") -> None:
    """Send all logging to stderr (protocol goes to stdout)."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format=LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )


class StdioProtocolServer:
    """Protocol engine bound to a pair of binary streams.

    All collaborators can be injected; anything left out is built from
    the configuration (exiftool for metadata, backend plugins for uploads).

    Usage:
        server = StdioProtocolServer(config=RuntimeConfig.load())
        await server.run()  # Blocks until stdin closes and uploads finish
    """

    def __init__(
        self,
        stdin: BinaryIO | None = None,
        stdout: BinaryIO | None = None,
        config: RuntimeConfig | None = None,
        *,
        registry: SessionRegistry | None = None,
        uploader: Uploader | None = None,
        catalog: BackendCatalog | None = None,
        extractor: MetadataExtractor | None = None,
        embedder: MetadataEmbedder | None = None,
    ) -> None:
        self.config = config or RuntimeConfig()
        self._stdin = stdin if stdin is not None else sys.stdin.buffer
        self._stdout = stdout if stdout is not None else sys.stdout.buffer

        if uploader is None or catalog is None:
            service = UploadService.from_config(self.config)
            uploader = uploader or service
            catalog = catalog or service

        if extractor is None and embedder is None:
            exiftool = ExiftoolMetadata.discover(self.config.exiftool_path)
            extractor = exiftool
            embedder = exiftool
        if not self.config.embed_metadata:
            embedder = None

        self.registry = registry or SessionRegistry()
        self.output = OutputMultiplexer(self._stdout)
        self.orchestrator = UploadOrchestrator(self.registry, self.output, uploader, embedder)
        self.dispatcher = CommandDispatcher(
            self.registry, self.output, self.orchestrator, extractor, catalog
        )
        self._decoder = EnvelopeDecoder(self._stdin)
        self._running = False

    async def run(self) -> None:
        """Read and dispatch envelopes until end of input."""
        self._running = True
        logger.info("imgup runtime ready (stdio)")

        try:
            while self._running:
                try:
                    envelope = await self._decoder.decode_next()
                except DecodeError as e:
                    logger.warning(f"Parse error: {e} {e.details or ''}".rstrip())
                    await self.output.emit(
                        Envelope.error(e.correlation_id, e.message, e.code, details=e.details)
                    )
                    continue

                if envelope is None:
                    logger.info("stdin closed, waiting for running uploads")
                    break

                await self.dispatcher.dispatch(envelope)

            await self.dispatcher.drain()

        except asyncio.CancelledError:
            logger.info("stdio server cancelled")
            await self.dispatcher.shutdown()
            raise

        finally:
            self._running = False
            logger.info("Shutdown complete")

    def stop(self) -> None:
        """Stop reading after the current envelope."""
        self._running = False


async def run_stdio_server(config: RuntimeConfig | None = None) -> None:
    """Run the stdio protocol engine as the main entry point."""
    server = StdioProtocolServer(config=config)
    await server.run()


def main(config: RuntimeConfig | None = None) -> None:
    """Synchronous entry point."""
    # On Windows, ensure binary mode for stdin/stdout
    if sys.platform == "win32":
        import msvcrt

        msvcrt.setmode(sys.stdin.fileno(), os.O_BINARY)
        msvcrt.setmode(sys.stdout.fileno(), os.O_BINARY)

    try:
        asyncio.run(run_stdio_server(config))
    except KeyboardInterrupt:
        logger.info("Interrupted")
