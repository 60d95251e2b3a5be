"""Output Multiplexer.

Serializes writes from the main loop and from every running upload task
onto one output stream. Each envelope is encoded, written and flushed on
the event loop thread with no await in between, so the bytes of two
envelopes never interleave and a cancelled emitter can never leave half a
line behind. Each producer's own emits keep their order because every emit
completes before returning.
"""

from __future__ import annotations

import logging
from typing import BinaryIO

from .errors import EncodeError
from .protocol.codec import encode_envelope
from .protocol.envelope import Envelope

logger = logging.getLogger(__name__)


class OutputMultiplexer:
    """Single serialized writer for outgoing envelopes.

    Usage:
        output = OutputMultiplexer(sys.stdout.buffer)
        await output.emit(Envelope.event("progress", {...}))
    """

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self._emitted = 0

    @property
    def emitted(self) -> int:
        """Number of envelopes written so far."""
        return self._emitted

    async def emit(self, envelope: Envelope) -> None:
        """Write one envelope as a contiguous line."""
        try:
            data = encode_envelope(envelope)
        except EncodeError as e:
            logger.error(f"Dropping envelope: {e}")
            return

        try:
            self._write(data)
        except OSError as e:
            logger.error(f"Failed to write envelope: {e}")
            return
        self._emitted += 1

        logger.debug(f"Sent {envelope.kind.value} {envelope.command or envelope.correlation_id}")

    def _write(self, data: bytes) -> None:
        self._stream.write(data)
        self._stream.flush()
