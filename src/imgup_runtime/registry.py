"""Session Registry.

The registry is the sole owner of session state. Handlers and upload
tasks hold only a session id and look the session up again whenever
they need it; `get` hands out snapshots, never the live entry.

All reads and writes are serialized by one asyncio.Lock.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from .errors import InvalidRequestError, SessionNotFoundError
from .protocol.events import ExtractedMetadata

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Session lifecycle states."""

    CREATED = "created"
    UPLOADING = "uploading"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


@dataclass
class Session:
    """Server-side state for one prepare → upload lifecycle."""

    id: str
    files: tuple[str, ...]
    metadata: ExtractedMetadata = field(default_factory=ExtractedMetadata)
    state: SessionState = SessionState.CREATED
    cancel_token: asyncio.Event | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


# Removed ids remembered so a custom id_factory cannot hand one out again;
# random UUIDs make reuse negligible beyond that window
RETIRED_ID_LIMIT = 4096


def _new_session_id() -> str:
    return str(uuid.uuid4())


class SessionRegistry:
    """Concurrent-safe store of sessions keyed by generated id.

    Contract:
    - create: always succeeds, returns an id that is not live and not among
      the last `retired_limit` removed ids
    - get / attach_cancel / cancel / complete / remove: raise
      SessionNotFoundError for ids that are unknown or already removed
    - cancel is idempotent: the token is signalled at most once
    """

    def __init__(
        self,
        id_factory: Callable[[], str] | None = None,
        retired_limit: int = RETIRED_ID_LIMIT,
    ) -> None:
        """Initialize an empty registry.

        Args:
            id_factory: Id generator, 128-bit random UUIDs by default
            retired_limit: How many removed ids are remembered to refuse reuse
        """
        self._id_factory = id_factory or _new_session_id
        self._sessions: dict[str, Session] = {}
        # Insertion-ordered, oldest first
        self._retired: dict[str, None] = {}
        self._retired_limit = retired_limit
        self._lock = asyncio.Lock()

    async def create(
        self,
        files: Sequence[str],
        metadata: ExtractedMetadata | None = None,
    ) -> str:
        """Register a new session and return its id."""
        async with self._lock:
            session_id = self._id_factory()
            while session_id in self._sessions or session_id in self._retired:
                session_id = self._id_factory()
            self._sessions[session_id] = Session(
                id=session_id,
                files=tuple(files),
                metadata=metadata or ExtractedMetadata(),
            )

        logger.info(f"Created session {session_id} with {len(files)} file(s)")
        return session_id

    async def get(self, session_id: str) -> Session:
        """Return a snapshot of a session."""
        async with self._lock:
            return dataclasses.replace(self._require(session_id))

    async def attach_cancel(self, session_id: str, token: asyncio.Event) -> None:
        """Attach a cancellation token and move the session to UPLOADING.

        Raises:
            SessionNotFoundError: If the session does not exist
            InvalidRequestError: If the session is not waiting for an upload
        """
        async with self._lock:
            session = self._require(session_id)
            if session.state != SessionState.CREATED:
                raise InvalidRequestError(
                    f"Session {session_id} cannot start an upload in state {session.state.value}"
                )
            session.cancel_token = token
            session.state = SessionState.UPLOADING

    async def cancel(self, session_id: str) -> bool:
        """Signal the session's cancellation token.

        Returns:
            True if this call signalled the token, False if there was no
            token or it had already been signalled
        """
        async with self._lock:
            session = self._require(session_id)
            if session.state != SessionState.COMPLETED:
                session.state = SessionState.CANCELLED
            token = session.cancel_token
            if token is None or token.is_set():
                return False
            token.set()

        logger.info(f"Cancelled session {session_id}")
        return True

    async def complete(self, session_id: str) -> bool:
        """Mark an uploading session COMPLETED and remove it, atomically.

        Returns:
            True if the session completed, False if it had been cancelled
            (it is removed either way)
        """
        async with self._lock:
            session = self._require(session_id)
            completed = session.state == SessionState.UPLOADING
            if completed:
                session.state = SessionState.COMPLETED
            self._retire(session_id)
        return completed

    async def remove(self, session_id: str) -> None:
        """Remove a session; its id is remembered as retired."""
        async with self._lock:
            self._require(session_id)
            self._retire(session_id)

    async def list_ids(self) -> list[str]:
        """Ids of all live sessions."""
        async with self._lock:
            return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def _require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _retire(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._retired[session_id] = None
        while len(self._retired) > self._retired_limit:
            del self._retired[next(iter(self._retired))]
        logger.debug(f"Removed session {session_id}")
