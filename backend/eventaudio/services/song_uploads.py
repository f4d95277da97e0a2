"""Upload a final mix for one song outside of a batch.

The engineer asks for a presigned URL (:meth:`SongUploadService.request_upload_url`),
PUTs the file, then confirms it (:meth:`SongUploadService.confirm_upload`) which
records the ``final`` AudioFile and recomputes the event's pipeline stage.
"""

from __future__ import annotations

import logging
from pathlib import PurePosixPath
from typing import Callable, Iterable, Optional

from eventaudio.config import settings
from eventaudio.errors import InvalidFilename, SongNotFound, SongNotInEvent, StorageKeyError, UpstreamError
from eventaudio.models.audio import AudioFileStatus, AudioFileType
from eventaudio.repositories.catalog import CatalogRepository
from eventaudio.schemas import SongRecord, SongUploadConfirmResponse, SongUploadUrlResponse
from eventaudio.services.pipeline_stage import PipelineStageUpdater
from eventaudio.utils.ffmpeg import probe_duration
from eventaudio.utils.storage import StorageGateway, final_audio_key, final_audio_prefix

logger = logging.getLogger(__name__)


class SongUploadService:
    def __init__(
        self,
        catalog: CatalogRepository,
        storage: StorageGateway,
        stage_updater: Optional[PipelineStageUpdater] = None,
        *,
        accepted_extension: Optional[str] = None,
        schulsong_engineer_ids: Optional[Iterable[str]] = None,
        duration_probe: Callable = probe_duration,
    ) -> None:
        self.catalog = catalog
        self.storage = storage
        self.stage_updater = stage_updater or PipelineStageUpdater(catalog)
        self.accepted_extension = (accepted_extension or settings.ACCEPTED_AUDIO_EXTENSION).lower()
        self.schulsong_engineer_ids = frozenset(
            settings.SCHULSONG_ENGINEER_IDS if schulsong_engineer_ids is None else schulsong_engineer_ids
        )
        self.duration_probe = duration_probe

    def _song_of_event(self, event_id: str, song_id: str) -> SongRecord:
        self.catalog.require_event(event_id)
        song = self.catalog.get_song(song_id)
        if song is None:
            raise SongNotFound(song_id)
        if song.event_id != event_id:
            raise SongNotInEvent(event_id, [song_id])
        return song

    def _check_filename(self, filename: str) -> None:
        if not filename.strip():
            raise InvalidFilename("Filename must not be empty", [filename])
        if PurePosixPath(filename).suffix.lower() != self.accepted_extension:
            raise InvalidFilename(f"Only {self.accepted_extension} files are accepted", [filename])

    def request_upload_url(self, event_id: str, song_id: str, filename: str) -> SongUploadUrlResponse:
        song = self._song_of_event(event_id, song_id)
        self._check_filename(filename)
        key = final_audio_key(event_id, song.class_id, song.id, filename)
        try:
            url = self.storage.mint_upload_url(key)
        except OSError as exc:
            logger.error("Could not mint upload URL for song %s: %s", song_id, exc, exc_info=True)
            raise UpstreamError("Object storage unavailable while preparing the upload URL") from exc
        logger.info("Upload URL issued for song %s in event %s", song_id, event_id)
        return SongUploadUrlResponse(upload_url=url, key=key)

    def confirm_upload(
        self,
        event_id: str,
        song_id: str,
        key: str,
        filename: str,
        uploaded_by: Optional[str] = None,
        file_size_bytes: Optional[int] = None,
        duration_seconds: Optional[float] = None,
    ) -> SongUploadConfirmResponse:
        song = self._song_of_event(event_id, song_id)
        if not key.startswith(final_audio_prefix(event_id, song.class_id, song.id)):
            raise StorageKeyError(key, "not a final-mix key of this song")
        if not self.storage.exists(key):
            raise StorageKeyError(key, "no uploaded file found")

        size = file_size_bytes if file_size_bytes is not None else self.storage.size(key)
        duration = duration_seconds
        if duration is None:
            duration = self.duration_probe(self.storage.path_for(key))

        record = self.catalog.create_audio_file(
            event_id=event_id,
            song_id=song.id,
            class_id=song.class_id,
            file_type=AudioFileType.FINAL,
            storage_key=key,
            filename=filename,
            uploaded_by=uploaded_by,
            file_size_bytes=size,
            duration_seconds=duration,
            status=AudioFileStatus.READY,
            is_schulsong=bool(uploaded_by and uploaded_by in self.schulsong_engineer_ids),
        )

        stage = None
        try:
            stage = self.stage_updater.recompute_stage(event_id)
        except Exception:
            logger.exception("Error checking/updating audio pipeline stage for event %s", event_id)
        return SongUploadConfirmResponse(audio_file=record, stage=stage)
