"""Upload a class-level mix (preview or final) that is not tied to the batch.

Whole-event school songs ("Schulsong") arrive this way: they belong to a
class but to no particular song, so the batch matcher never sees them.
Confirming the same key twice updates the existing record instead of
adding a second one.
"""

from __future__ import annotations

import logging
from pathlib import PurePosixPath
from typing import Callable, Iterable, Optional

from eventaudio.config import settings
from eventaudio.errors import (
    ClassNotInEvent,
    InvalidFilename,
    SongNotFound,
    SongNotInEvent,
    StorageKeyError,
    UpstreamError,
)
from eventaudio.models.audio import AudioFileStatus, AudioFileType
from eventaudio.repositories.catalog import CatalogRepository
from eventaudio.schemas import ClassRecord, MixedUploadConfirmResponse, MixedUploadUrlResponse
from eventaudio.services.pipeline_stage import PipelineStageUpdater
from eventaudio.utils.ffmpeg import probe_duration
from eventaudio.utils.storage import StorageGateway, mixed_audio_key, mixed_audio_prefix

logger = logging.getLogger(__name__)


class MixedUploadService:
    def __init__(
        self,
        catalog: CatalogRepository,
        storage: StorageGateway,
        stage_updater: Optional[PipelineStageUpdater] = None,
        *,
        final_extension: Optional[str] = None,
        preview_extension: Optional[str] = None,
        schulsong_engineer_ids: Optional[Iterable[str]] = None,
        duration_probe: Callable = probe_duration,
    ) -> None:
        self.catalog = catalog
        self.storage = storage
        self.stage_updater = stage_updater or PipelineStageUpdater(catalog)
        self.extensions = {
            AudioFileType.FINAL: (final_extension or settings.ACCEPTED_AUDIO_EXTENSION).lower(),
            AudioFileType.PREVIEW: (preview_extension or settings.PREVIEW_AUDIO_EXTENSION).lower(),
        }
        self.schulsong_engineer_ids = frozenset(
            settings.SCHULSONG_ENGINEER_IDS if schulsong_engineer_ids is None else schulsong_engineer_ids
        )
        self.duration_probe = duration_probe

    def _class_of_event(self, event_id: str, class_id: str) -> ClassRecord:
        self.catalog.require_event(event_id)
        for cls in self.catalog.list_classes(event_id):
            if cls.class_id == class_id:
                return cls
        raise ClassNotInEvent(event_id, class_id)

    def _check_song(self, event_id: str, class_id: str, song_id: Optional[str]) -> None:
        if not song_id:
            return
        song = self.catalog.get_song(song_id)
        if song is None:
            raise SongNotFound(song_id)
        if song.event_id != event_id or song.class_id != class_id:
            raise SongNotInEvent(event_id, [song_id])

    def _check_filename(self, filename: str, file_type: AudioFileType) -> None:
        if not filename.strip():
            raise InvalidFilename("Filename must not be empty", [filename])
        extension = self.extensions[file_type]
        if PurePosixPath(filename).suffix.lower() != extension:
            raise InvalidFilename(f"Only {extension} files are accepted for {file_type.value} mixes", [filename])

    def request_upload_url(
        self,
        event_id: str,
        class_id: str,
        file_type: AudioFileType,
        filename: str,
        song_id: Optional[str] = None,
    ) -> MixedUploadUrlResponse:
        self._class_of_event(event_id, class_id)
        self._check_song(event_id, class_id, song_id)
        self._check_filename(filename, file_type)
        key = mixed_audio_key(event_id, class_id, file_type.value, filename)
        try:
            url = self.storage.mint_upload_url(key)
        except OSError as exc:
            logger.error("Could not mint %s upload URL for class %s: %s", file_type.value, class_id, exc, exc_info=True)
            raise UpstreamError("Object storage unavailable while preparing the upload URL") from exc
        logger.info("%s upload URL issued for class %s in event %s", file_type.value.title(), class_id, event_id)
        return MixedUploadUrlResponse(upload_url=url, key=key)

    def confirm_upload(
        self,
        event_id: str,
        class_id: str,
        file_type: AudioFileType,
        key: str,
        filename: str,
        uploaded_by: Optional[str] = None,
        song_id: Optional[str] = None,
        file_size_bytes: Optional[int] = None,
        duration_seconds: Optional[float] = None,
        is_schulsong: Optional[bool] = None,
    ) -> MixedUploadConfirmResponse:
        """Record an uploaded mix; a final mix also recomputes the stage.

        ``is_schulsong`` defaults to whether the uploading engineer is one of
        the configured school-song engineers.
        """
        self._class_of_event(event_id, class_id)
        self._check_song(event_id, class_id, song_id)
        if not key.startswith(mixed_audio_prefix(event_id, class_id, file_type.value)):
            raise StorageKeyError(key, f"not a {file_type.value} mix key of this class")
        if not self.storage.exists(key):
            raise StorageKeyError(key, "no uploaded file found")

        if is_schulsong is None:
            is_schulsong = bool(uploaded_by and uploaded_by in self.schulsong_engineer_ids)
        fields = dict(
            filename=filename,
            uploaded_by=uploaded_by,
            file_size_bytes=file_size_bytes if file_size_bytes is not None else self.storage.size(key),
            duration_seconds=(
                duration_seconds if duration_seconds is not None
                else self.duration_probe(self.storage.path_for(key))
            ),
            status=AudioFileStatus.READY,
            is_schulsong=is_schulsong,
        )

        existing = self.catalog.find_audio_file(event_id, class_id, file_type, key)
        if existing is not None:
            record = self.catalog.update_audio_file(existing.id, **fields)
        else:
            record = self.catalog.create_audio_file(
                event_id=event_id,
                class_id=class_id,
                song_id=song_id or None,
                file_type=file_type,
                storage_key=key,
                **fields,
            )

        stage = None
        if file_type == AudioFileType.FINAL:
            try:
                stage = self.stage_updater.recompute_stage(event_id)
            except Exception:
                logger.exception("Error checking/updating audio pipeline stage for event %s", event_id)
        label = "Preview" if file_type == AudioFileType.PREVIEW else "Final"
        return MixedUploadConfirmResponse(
            audio_file=record,
            stage=stage,
            message=f"{label} audio uploaded successfully",
        )
