"""Short-lived server-side state of in-flight batch uploads.

A session is created by phase 1 and consumed exactly once by phase 2.
Sessions older than the TTL are treated as missing whether or not they were
ever confirmed, so abandoned uploads cannot pile up.
"""

from __future__ import annotations

import logging
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from eventaudio.config import settings
from eventaudio.errors import SessionExpired
from eventaudio.schemas import Match

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadSession:
    upload_id: str
    event_id: str
    filenames: tuple[str, ...]
    matches: tuple[Match, ...]
    upload_urls: dict[str, str]
    staging_keys: dict[str, str]
    created_at: float
    uploaded_by: Optional[str] = None

    @property
    def filename_set(self) -> frozenset[str]:
        return frozenset(self.filenames)


class UploadSessionStore:
    """In-memory session store with lazy expiry and atomic single-use consume."""

    def __init__(self, ttl_seconds: int, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: dict[str, UploadSession] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _is_expired(self, session: UploadSession, now: float) -> bool:
        return now - session.created_at > self.ttl_seconds

    def create(
        self,
        event_id: str,
        filenames: list[str],
        matches: list[Match],
        upload_urls: dict[str, str],
        staging_keys: dict[str, str],
        uploaded_by: Optional[str] = None,
        upload_id: Optional[str] = None,
    ) -> str:
        """Store a new session and return its unguessable id."""
        self.purge_expired()
        upload_id = upload_id or secrets.token_urlsafe(24)
        session = UploadSession(
            upload_id=upload_id,
            event_id=event_id,
            filenames=tuple(filenames),
            matches=tuple(matches),
            upload_urls=dict(upload_urls),
            staging_keys=dict(staging_keys),
            created_at=self._clock(),
            uploaded_by=uploaded_by,
        )
        with self._lock:
            self._sessions[upload_id] = session
        logger.info("Upload session %s created for event %s with %d file(s)", upload_id, event_id, len(filenames))
        return upload_id

    def get(self, upload_id: str) -> UploadSession:
        with self._lock:
            session = self._sessions.get(upload_id)
            if session is not None and self._is_expired(session, self._clock()):
                del self._sessions[upload_id]
                session = None
        if session is None:
            raise SessionExpired(upload_id)
        return session

    def consume(self, upload_id: str) -> UploadSession:
        """Remove and return the session; only one caller can ever win."""
        with self._lock:
            session = self._sessions.pop(upload_id, None)
        if session is None or self._is_expired(session, self._clock()):
            logger.warning("Upload session %s missing, expired or already consumed", upload_id)
            raise SessionExpired(upload_id)
        logger.info("Upload session %s consumed", upload_id)
        return session

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [uid for uid, s in self._sessions.items() if self._is_expired(s, now)]
            for uid in expired:
                del self._sessions[uid]
        if expired:
            logger.info("Purged %d expired upload session(s)", len(expired))
        return len(expired)


# Global store instance
_upload_session_store: Optional[UploadSessionStore] = None


def get_upload_session_store() -> UploadSessionStore:
    """Get or create the process-wide session store."""
    global _upload_session_store
    if _upload_session_store is None:
        _upload_session_store = UploadSessionStore(ttl_seconds=settings.UPLOAD_SESSION_TTL_SECONDS)
    return _upload_session_store
