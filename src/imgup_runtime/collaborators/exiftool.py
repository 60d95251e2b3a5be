"""Metadata extraction and embedding through the `exiftool` subprocess.

Extraction reads title/description/keywords plus capture details.
Embedding never touches the user's file: it writes into a temporary copy
that the caller must remove.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
import tempfile
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from ..errors import MetadataError
from ..protocol.events import ExtractedMetadata, Location

logger = logging.getLogger(__name__)

COMMON_LOCATIONS = (
    "/opt/homebrew/bin/exiftool",
    "/usr/local/bin/exiftool",
    "/usr/bin/exiftool",
)

_EXTRACT_TAGS = (
    "-Title",
    "-ObjectName",
    "-Description",
    "-Caption-Abstract",
    "-ImageDescription",
    "-Keywords",
    "-Subject",
    "-DateTimeOriginal",
    "-Model",
    "-LensModel",
    "-GPSLatitude",
    "-GPSLongitude",
    "-GPSAltitude",
)


def find_exiftool(explicit: str | None = None) -> str | None:
    """Locate the exiftool executable.

    An explicit path wins, then PATH, then the usual install locations.
    """
    if explicit:
        return explicit if os.path.isfile(explicit) else None
    found = shutil.which("exiftool")
    if found:
        return found
    for candidate in COMMON_LOCATIONS:
        if os.path.isfile(candidate):
            return candidate
    return None


def _first_text(result: dict[str, Any], *fields: str) -> str:
    for name in fields:
        value = result.get(name)
        if value is not None and value != "":
            return str(value)
    return ""


def _keywords(result: dict[str, Any]) -> list[str]:
    """Merge Keywords and Subject, de-duplicated, order preserved."""
    seen: dict[str, None] = {}
    for name in ("Keywords", "Subject"):
        value = result.get(name)
        if isinstance(value, str):
            candidates = [part.strip() for part in value.split(",")]
        elif isinstance(value, list):
            candidates = [str(part) for part in value if part is not None]
        else:
            continue
        for keyword in candidates:
            if keyword:
                seen.setdefault(keyword, None)
    return list(seen)


def _location(result: dict[str, Any]) -> Location | None:
    latitude = result.get("GPSLatitude")
    longitude = result.get("GPSLongitude")
    if not isinstance(latitude, int | float) or not isinstance(longitude, int | float):
        return None
    altitude = result.get("GPSAltitude")
    return Location(
        latitude=latitude,
        longitude=longitude,
        altitude=altitude if isinstance(altitude, int | float) else None,
    )


def parse_exiftool_json(output: bytes | str) -> ExtractedMetadata:
    """Build metadata from `exiftool -json -n` output.

    Raises:
        MetadataError: If the output is not exiftool's JSON array
    """
    try:
        results = json.loads(output)
    except json.JSONDecodeError as e:
        raise MetadataError(f"failed to parse exiftool output: {e}") from e
    if not isinstance(results, list):
        raise MetadataError("failed to parse exiftool output: expected a JSON array")
    if not results or not isinstance(results[0], dict):
        return ExtractedMetadata()

    result = results[0]
    return ExtractedMetadata(
        title=_first_text(result, "Title", "ObjectName"),
        description=_first_text(result, "Description", "Caption-Abstract", "ImageDescription"),
        tags=_keywords(result),
        location=_location(result),
        date=_first_text(result, "DateTimeOriginal") or None,
        camera=_first_text(result, "Model") or None,
        lens=_first_text(result, "LensModel") or None,
    )


def build_write_args(title: str, description: str, tags: Sequence[str]) -> list[str]:
    """exiftool arguments writing metadata to EXIF, XMP and IPTC fields."""
    args = ["-overwrite_original"]
    if title:
        args += [f"-Title={title}", f"-XMP:Title={title}", f"-IPTC:ObjectName={title}"]
    if description:
        args += [
            f"-Description={description}",
            f"-XMP:Description={description}",
            f"-IPTC:Caption-Abstract={description}",
        ]
    for keyword in tags:
        # += appends to the list-valued tags
        args += [f"-Keywords+={keyword}", f"-XMP:Subject+={keyword}", f"-IPTC:Keywords+={keyword}"]
    return args


class ExiftoolMetadata:
    """MetadataExtractor and MetadataEmbedder backed by exiftool."""

    def __init__(self, executable: str) -> None:
        self.executable = executable

    @classmethod
    def discover(cls, explicit: str | None = None) -> ExiftoolMetadata | None:
        """Create an instance if exiftool can be found."""
        executable = find_exiftool(explicit)
        if executable is None:
            logger.info("exiftool not found; metadata extraction and embedding disabled")
            return None
        logger.debug(f"Using exiftool at {executable}")
        return cls(executable)

    async def _run(self, *args: str) -> bytes:
        """Run exiftool and return stdout.

        Raises:
            MetadataError: If exiftool cannot be started or exits non-zero
        """
        try:
            process = await asyncio.create_subprocess_exec(
                self.executable,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise MetadataError(f"failed to start exiftool: {e}") from e

        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise MetadataError(f"exiftool failed ({process.returncode}): {message}")
        return stdout

    async def extract_metadata(self, path: str) -> ExtractedMetadata:
        """Read metadata from `path`."""
        output = await self._run("-json", "-n", *_EXTRACT_TAGS, path)
        metadata = parse_exiftool_json(output)
        logger.debug(f"Extracted metadata from {path}: {metadata!r}")
        return metadata

    async def embed_metadata(
        self,
        path: str,
        title: str,
        description: str,
        tags: Sequence[str],
    ) -> str:
        """Copy `path` to a temporary file and write metadata into the copy."""
        fd, temp_path = tempfile.mkstemp(prefix="imgup-", suffix=Path(path).suffix)
        os.close(fd)
        try:
            loop = asyncio.get_running_loop()
            try:
                await loop.run_in_executor(None, shutil.copyfile, path, temp_path)
            except OSError as e:
                raise MetadataError(f"failed to copy original: {e}") from e
            await self._run(*build_write_args(title, description, tags), temp_path)
        except BaseException:
            Path(temp_path).unlink(missing_ok=True)
            raise
        return temp_path
