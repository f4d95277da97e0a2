"""Domain exceptions.

Every error the engineer API can report derives from :class:`AppBaseException`;
``main.py`` maps it to a JSON response carrying ``detail`` plus any structured
extras (``filenames`` / ``songIds``) the UI uses to highlight rows.
"""

from __future__ import annotations

from typing import Any, Iterable


class AppBaseException(Exception):
    """Domain-level base exception so we can map to JSON responses easily."""

    status_code = 500

    def __init__(self, detail: str, *, status_code: int | None = None, extra: dict[str, Any] | None = None) -> None:
        super().__init__(detail)
        if status_code is not None:
            self.status_code = status_code
        self.detail = detail
        self.extra = extra or {}

    def to_content(self) -> dict[str, Any]:
        return {"detail": self.detail, **self.extra}


class EventNotFound(AppBaseException):
    status_code = 404

    def __init__(self, event_id: str) -> None:
        super().__init__(f"Event '{event_id}' not found")
        self.event_id = event_id


class SongNotFound(AppBaseException):
    status_code = 404

    def __init__(self, song_id: str) -> None:
        super().__init__(f"Song '{song_id}' not found")
        self.song_id = song_id


class NoFilenamesProvided(AppBaseException):
    status_code = 400

    def __init__(self) -> None:
        super().__init__("No audio filenames provided")


class InvalidFilename(AppBaseException):
    status_code = 400

    def __init__(self, reason: str, filenames: Iterable[str]) -> None:
        names = sorted(set(filenames))
        super().__init__(f"{reason}: {', '.join(names)}", extra={"filenames": names})
        self.filenames = names


class SessionExpired(AppBaseException):
    status_code = 410

    def __init__(self, upload_id: str) -> None:
        super().__init__("Upload session expired or already confirmed. Please start the batch upload again.")
        self.upload_id = upload_id


class UnknownFilename(AppBaseException):
    status_code = 400

    def __init__(self, filenames: Iterable[str]) -> None:
        names = sorted(set(filenames))
        super().__init__(
            f"Files not part of this upload: {', '.join(names)}",
            extra={"filenames": names},
        )
        self.filenames = names


class DuplicateAssignment(AppBaseException):
    status_code = 409

    def __init__(self, song_ids: Iterable[str], filenames: Iterable[str]) -> None:
        ids = sorted(set(song_ids))
        names = sorted(set(filenames))
        super().__init__(
            "Multiple files cannot be assigned to the same song. Resolve the highlighted rows and confirm again.",
            extra={"songIds": ids, "filenames": names},
        )
        self.song_ids = ids
        self.filenames = names


class SongNotInEvent(AppBaseException):
    status_code = 400

    def __init__(self, event_id: str, song_ids: Iterable[str]) -> None:
        ids = sorted(set(song_ids))
        super().__init__(f"Songs do not belong to event '{event_id}': {', '.join(ids)}", extra={"songIds": ids})
        self.song_ids = ids


class StorageKeyError(AppBaseException):
    status_code = 400

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"Invalid storage key '{key}': {reason}")
        self.key = key


class UpstreamError(AppBaseException):
    """A collaborator (record store, object storage) failed; safe to retry."""

    status_code = 502

    def __init__(self, detail: str) -> None:
        super().__init__(detail)


class NoRawAudioFiles(AppBaseException):
    status_code = 404

    def __init__(self, event_id: str) -> None:
        super().__init__(f"No raw audio files found for event '{event_id}'")
        self.event_id = event_id


class ClassNotInEvent(AppBaseException):
    status_code = 404

    def __init__(self, event_id: str, class_id: str) -> None:
        super().__init__(f"Class '{class_id}' not found in event '{event_id}'", extra={"classId": class_id})
        self.class_id = class_id
