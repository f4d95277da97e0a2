"""Object storage helpers and presigned transfer URLs.

Objects live under ``DATA_ROOT/objects/<key>``.  Presigned URLs point back at
the API's own ``/api/storage/objects/<key>`` route and carry an expiry plus an
HMAC-SHA256 signature over ``METHOD\\nkey\\nexpires``; anyone holding the URL
may perform exactly that method on exactly that key until it expires.

Key layout (stable, so prefix listings can rebuild the structure)::

    events/{event_id}/classes/{class_id}/songs/{song_id}/final/{filename}
    events/{event_id}/classes/{class_id}/raw/{filename}
    events/{event_id}/classes/{class_id}/mixed/{preview|final}/{filename}
    events/{event_id}/uploads/{upload_id}/{class_id|unassigned}/{position}-{filename}
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
import time
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import quote, urlencode

from eventaudio.config import settings
from eventaudio.errors import StorageKeyError

logger = logging.getLogger(__name__)

_UNSAFE_SEGMENT_CHARS = re.compile(r"[^A-Za-z0-9._-]")
UNASSIGNED_SEGMENT = "unassigned"


class ObjectNotFound(KeyError):
    """No object is stored under the requested key."""


def ensure_dir_exists(path: Path) -> Path:
    """Ensure that the given directory exists, creating it if necessary."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def safe_segment(value: str) -> str:
    cleaned = _UNSAFE_SEGMENT_CHARS.sub("_", value.strip())
    # A segment of only dots would walk the tree.
    return cleaned if cleaned.strip(".") else "_"


def final_audio_key(event_id: str, class_id: str, song_id: str, filename: str) -> str:
    return "/".join(
        ["events", safe_segment(event_id), "classes", safe_segment(class_id),
         "songs", safe_segment(song_id), "final", safe_segment(filename)]
    )


def final_audio_prefix(event_id: str, class_id: str, song_id: str) -> str:
    return final_audio_key(event_id, class_id, song_id, "x")[: -len("x")]


def raw_audio_key(event_id: str, class_id: str, filename: str) -> str:
    return "/".join(
        ["events", safe_segment(event_id), "classes", safe_segment(class_id), "raw", safe_segment(filename)]
    )


def mixed_audio_key(event_id: str, class_id: str, file_type: str, filename: str) -> str:
    return "/".join(
        ["events", safe_segment(event_id), "classes", safe_segment(class_id),
         "mixed", safe_segment(file_type), safe_segment(filename)]
    )


def mixed_audio_prefix(event_id: str, class_id: str, file_type: str) -> str:
    return mixed_audio_key(event_id, class_id, file_type, "x")[: -len("x")]


def staging_key(event_id: str, upload_id: str, class_id: Optional[str], filename: str, position: int) -> str:
    # Distinct filenames may sanitize to the same segment; the batch position keeps keys apart.
    return "/".join(
        ["events", safe_segment(event_id), "uploads", safe_segment(upload_id),
         safe_segment(class_id) if class_id else UNASSIGNED_SEGMENT,
         f"{position:03d}-{safe_segment(filename)}"]
    )


def validate_key(key: str) -> str:
    if not key or key.startswith("/") or "\\" in key:
        raise StorageKeyError(key, "must be a relative key")
    segments = key.split("/")
    if any(segment in ("", ".", "..") for segment in segments):
        raise StorageKeyError(key, "empty or relative path segment")
    return key


class StorageGateway:
    """Filesystem-backed object store issuing signed, expiring transfer URLs."""

    def __init__(
        self,
        root: Path,
        secret: str,
        public_base_url: str,
        upload_ttl_seconds: int = 3600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.root = Path(root)
        self._secret = secret.encode("utf-8")
        self.public_base_url = public_base_url.rstrip("/")
        self.upload_ttl_seconds = upload_ttl_seconds
        self._clock = clock

    # ------------------------------------------------------------------
    # Signed URLs
    # ------------------------------------------------------------------

    def _signature(self, method: str, key: str, expires: int) -> str:
        message = f"{method.upper()}\n{key}\n{expires}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def _signed_url(self, method: str, key: str, ttl_seconds: int) -> str:
        validate_key(key)
        expires = int(self._clock()) + int(ttl_seconds)
        query = urlencode({"expires": expires, "signature": self._signature(method, key, expires)})
        return f"{self.public_base_url}/api/storage/objects/{quote(key)}?{query}"

    def mint_upload_url(self, key: str) -> str:
        """Single-PUT URL valid for ``upload_ttl_seconds``."""
        return self._signed_url("PUT", key, self.upload_ttl_seconds)

    def mint_download_url(self, key: str, ttl_seconds: int) -> str:
        return self._signed_url("GET", key, ttl_seconds)

    def verify(self, method: str, key: str, expires: int, signature: str) -> bool:
        if expires < int(self._clock()):
            return False
        expected = self._signature(method, key, expires)
        return hmac.compare_digest(expected, signature)

    # ------------------------------------------------------------------
    # Bytes
    # ------------------------------------------------------------------

    def path_for(self, key: str) -> Path:
        path = (self.root / validate_key(key)).resolve()
        if self.root.resolve() not in path.parents:
            raise StorageKeyError(key, "resolves outside the object store")
        return path

    def exists(self, key: str) -> bool:
        return self.path_for(key).is_file()

    def size(self, key: str) -> int:
        path = self.path_for(key)
        if not path.is_file():
            raise ObjectNotFound(key)
        return path.stat().st_size

    def get_bytes(self, key: str) -> bytes:
        path = self.path_for(key)
        if not path.is_file():
            raise ObjectNotFound(key)
        return path.read_bytes()

    def put_bytes(self, key: str, data: bytes) -> None:
        path = self.path_for(key)
        ensure_dir_exists(path.parent)
        tmp_path = path.with_name(f".{path.name}.part")
        tmp_path.write_bytes(data)
        tmp_path.replace(path)
        logger.debug("Stored %d bytes at %s", len(data), key)

    def delete(self, key: str) -> None:
        self.path_for(key).unlink(missing_ok=True)

    def move(self, source_key: str, target_key: str) -> int:
        """Copy bytes to ``target_key`` then drop the source; returns the size."""
        data = self.get_bytes(source_key)
        self.put_bytes(target_key, data)
        self.delete(source_key)
        logger.info("Moved %s -> %s (%d bytes)", source_key, target_key, len(data))
        return len(data)


# Global gateway instance
_storage_gateway: Optional[StorageGateway] = None


def get_storage_gateway() -> StorageGateway:
    """Get or create the process-wide gateway from settings."""
    global _storage_gateway
    if _storage_gateway is None:
        if settings.STORAGE_SIGNING_SECRET == "dev-signing-secret":
            logger.warning("STORAGE_SIGNING_SECRET not set, using the development secret")
        _storage_gateway = StorageGateway(
            root=ensure_dir_exists(settings.objects_root),
            secret=settings.STORAGE_SIGNING_SECRET,
            public_base_url=settings.PUBLIC_BASE_URL,
            upload_ttl_seconds=settings.UPLOAD_URL_TTL_SECONDS,
        )
    return _storage_gateway
