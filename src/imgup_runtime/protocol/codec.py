"""Envelope codec.

Decodes a stream of JSON objects into envelopes and encodes outgoing
envelopes as single LF-terminated UTF-8 lines.

Framing (input):
    - Values are separated by JSON whitespace; several may share a line
    - A value never spans lines
    - A UTF-8 BOM at the start of the stream is skipped
    - Input accepts LF, CRLF and CR line endings

Resynchronisation:
    When a value is malformed, the rest of its line is discarded and
    decoding resumes on the next line. Well-formed values earlier on the
    same line have already been returned.
"""

from __future__ import annotations

import asyncio
import io
import json
import logging
from typing import Any, BinaryIO

from pydantic import ValidationError
from pydantic_core import PydanticSerializationError

from ..errors import DecodeError, EncodeError
from .envelope import Envelope

logger = logging.getLogger(__name__)

# UTF-8 encoding for all JSON operations
ENCODING = "utf-8"

# Newline character (always LF for cross-platform consistency)
NEWLINE = "\n"

_BOM = "\ufeff"


def encode_envelope(envelope: Envelope) -> bytes:
    """Serialize an envelope to one complete wire line.

    Raises:
        EncodeError: If the payload is not JSON serializable
    """
    exclude = {"correlation_id"} if envelope.correlation_id is None else None
    try:
        json_str = envelope.model_dump_json(by_alias=True, exclude=exclude)
    except PydanticSerializationError as e:
        raise EncodeError(f"Cannot encode {envelope.kind.value} envelope: {e}") from e
    return (json_str + NEWLINE).encode(ENCODING)


def _salvage_correlation_id(value: dict[str, Any]) -> str | None:
    """Pull a correlation id out of an object that failed validation."""
    for key in ("correlationId", "id"):
        candidate = value.get(key)
        if isinstance(candidate, str):
            return candidate
    return None


class EnvelopeDecoder:
    """Incremental envelope decoder over a binary input stream.

    Usage:
        decoder = EnvelopeDecoder(sys.stdin.buffer)
        while (envelope := await decoder.decode_next()) is not None:
            ...

    `decode_next` returns None at end of input; that is a clean shutdown,
    not an error.
    """

    def __init__(self, stream: BinaryIO) -> None:
        self._reader = io.TextIOWrapper(
            stream,
            encoding=ENCODING,
            errors="replace",  # Replace invalid UTF-8 with replacement char
            newline="",  # Universal newline mode - accepts LF, CRLF, CR
        )
        self._json = json.JSONDecoder()
        self._pending = ""
        self._at_start = True
        self._eof = False

    async def decode_next(self) -> Envelope | None:
        """Decode the next envelope.

        Returns:
            The next envelope, or None when the input is exhausted

        Raises:
            DecodeError: If the next value is malformed or not an envelope
        """
        while True:
            text = self._pending.lstrip()
            if not text:
                line = await self._read_line()
                if line is None:
                    return None
                if self._at_start:
                    self._at_start = False
                    if line.startswith(_BOM):
                        line = line[1:]
                self._pending = line
                continue

            try:
                value, end = self._json.raw_decode(text)
            except json.JSONDecodeError as e:
                # Drop the rest of the line and resume on the next one
                logger.debug(f"Discarding malformed input: {text[:80]!r}")
                self._pending = ""
                raise DecodeError(f"Invalid JSON: {e.msg}", details=str(e)) from e
            except RecursionError as e:
                logger.debug(f"Discarding over-nested input: {text[:80]!r}")
                self._pending = ""
                raise DecodeError("Invalid JSON: nesting too deep") from e

            self._pending = text[end:]
            return self._to_envelope(value)

    def _to_envelope(self, value: Any) -> Envelope:
        """Validate a decoded JSON value as an envelope."""
        if not isinstance(value, dict):
            raise DecodeError(
                f"Expected a JSON object, got {type(value).__name__}",
            )
        try:
            return Envelope.model_validate(value)
        except ValidationError as e:
            raise DecodeError(
                "Invalid envelope",
                details=str(e),
                correlation_id=_salvage_correlation_id(value),
            ) from e

    async def _read_line(self) -> str | None:
        """Read a line from the input asynchronously."""
        if self._eof:
            return None
        loop = asyncio.get_running_loop()
        # Run blocking readline in executor
        line = await loop.run_in_executor(None, self._reader.readline)
        if not line:
            self._eof = True
            return None
        return line
