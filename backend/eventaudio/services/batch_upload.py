"""Two-phase batch upload of final mixes for one event.

Phase 1 (:meth:`BatchUploadService.initiate_batch`) matches the extracted
filenames against the event's songs, mints one presigned PUT URL per file and
records everything in an upload session.  The client then uploads the bytes
straight to storage, lets the engineer review/override the suggestions, and
calls phase 2 (:meth:`BatchUploadService.confirm_batch`), which validates the
whole batch before writing anything, moves the staged bytes to their final
keys, creates the ``final`` AudioFile records and recomputes the event's
pipeline stage.
"""

from __future__ import annotations

import logging
import secrets
from collections import Counter
from pathlib import PurePosixPath
from typing import Callable, Iterable, Optional, Sequence

from eventaudio.config import settings
from eventaudio.errors import (
    DuplicateAssignment,
    InvalidFilename,
    NoFilenamesProvided,
    SessionExpired,
    SongNotInEvent,
    UnknownFilename,
    UpstreamError,
)
from eventaudio.models.audio import AudioFileStatus, AudioFileType
from eventaudio.repositories.catalog import CatalogRepository
from eventaudio.schemas import (
    AudioFileRecord,
    ConfirmBatchResponse,
    ConfirmedMatch,
    InitiateBatchResponse,
    SongRecord,
)
from eventaudio.services.matching import MatchThresholds, match_filenames, summarize_matches
from eventaudio.services.pipeline_stage import PipelineStageUpdater
from eventaudio.services.upload_sessions import UploadSession, UploadSessionStore
from eventaudio.utils.ffmpeg import probe_duration
from eventaudio.utils.storage import ObjectNotFound, StorageGateway, final_audio_key, staging_key

logger = logging.getLogger(__name__)


def default_thresholds() -> MatchThresholds:
    return MatchThresholds(
        high=settings.MATCH_HIGH_THRESHOLD,
        medium=settings.MATCH_MEDIUM_THRESHOLD,
        low=settings.MATCH_LOW_THRESHOLD,
    )


def _duplicates(values: Iterable[str]) -> set[str]:
    return {value for value, count in Counter(values).items() if count > 1}


class BatchUploadService:
    def __init__(
        self,
        catalog: CatalogRepository,
        sessions: UploadSessionStore,
        storage: StorageGateway,
        stage_updater: Optional[PipelineStageUpdater] = None,
        *,
        thresholds: Optional[MatchThresholds] = None,
        accepted_extension: Optional[str] = None,
        schulsong_engineer_ids: Optional[Iterable[str]] = None,
        duration_probe: Callable = probe_duration,
    ) -> None:
        self.catalog = catalog
        self.sessions = sessions
        self.storage = storage
        self.stage_updater = stage_updater or PipelineStageUpdater(catalog)
        self.thresholds = thresholds or default_thresholds()
        self.accepted_extension = (accepted_extension or settings.ACCEPTED_AUDIO_EXTENSION).lower()
        self.schulsong_engineer_ids = frozenset(
            settings.SCHULSONG_ENGINEER_IDS if schulsong_engineer_ids is None else schulsong_engineer_ids
        )
        self.duration_probe = duration_probe

    # ------------------------------------------------------------------
    # Phase 1
    # ------------------------------------------------------------------

    def _check_filenames(self, filenames: Sequence[str]) -> None:
        if not filenames:
            raise NoFilenamesProvided()
        wrong_type = [
            name for name in filenames
            if PurePosixPath(name).suffix.lower() != self.accepted_extension
        ]
        if wrong_type:
            raise InvalidFilename(f"Only {self.accepted_extension} files are accepted", wrong_type)
        repeated = _duplicates(filenames)
        if repeated:
            raise InvalidFilename("Filenames must be unique within a batch", repeated)

    def initiate_batch(
        self,
        event_id: str,
        filenames: Sequence[str],
        uploaded_by: Optional[str] = None,
    ) -> InitiateBatchResponse:
        """Match filenames to songs and hand out one upload URL per file.

        Nothing is committed except the upload session itself; calling this
        twice yields two independent sessions.
        """
        filenames = list(filenames)
        self._check_filenames(filenames)
        self.catalog.require_event(event_id)

        songs = self.catalog.list_songs(event_id)
        classes = self.catalog.list_classes(event_id)
        matches = match_filenames(filenames, songs, classes, self.thresholds)
        summary = summarize_matches(matches)

        upload_id = secrets.token_urlsafe(24)
        staging_keys: dict[str, str] = {}
        upload_urls: dict[str, str] = {}
        try:
            for position, match in enumerate(matches):
                key = staging_key(event_id, upload_id, match.class_id, match.filename, position)
                staging_keys[match.filename] = key
                upload_urls[match.filename] = self.storage.mint_upload_url(key)
        except OSError as exc:
            logger.error("Could not mint upload URLs for event %s: %s", event_id, exc, exc_info=True)
            raise UpstreamError("Object storage unavailable while preparing upload URLs") from exc

        self.sessions.create(
            event_id=event_id,
            filenames=filenames,
            matches=matches,
            upload_urls=upload_urls,
            staging_keys=staging_keys,
            uploaded_by=uploaded_by,
            upload_id=upload_id,
        )
        logger.info(
            "Batch %s for event %s: %d file(s), high=%d medium=%d low=%d unmatched=%d",
            upload_id, event_id, summary.total, summary.high_confidence,
            summary.medium_confidence, summary.low_confidence, summary.unmatched,
        )
        return InitiateBatchResponse(
            upload_id=upload_id,
            matches=matches,
            summary=summary,
            all_songs=songs,
            all_classes=classes,
            upload_urls=upload_urls,
        )

    # ------------------------------------------------------------------
    # Phase 2
    # ------------------------------------------------------------------

    def _validate(
        self,
        event_id: str,
        session: UploadSession,
        confirmed: Sequence[ConfirmedMatch],
    ) -> dict[str, SongRecord]:
        unknown = [entry.filename for entry in confirmed if entry.filename not in session.filename_set]
        if unknown:
            raise UnknownFilename(unknown)

        repeated = _duplicates(entry.filename for entry in confirmed)
        if repeated:
            raise InvalidFilename("Each file can only be confirmed once", repeated)

        assigned = [entry for entry in confirmed if entry.song_id]
        duplicate_ids = _duplicates(entry.song_id for entry in assigned)
        if duplicate_ids:
            raise DuplicateAssignment(
                duplicate_ids,
                [entry.filename for entry in assigned if entry.song_id in duplicate_ids],
            )

        songs = {song.id: song for song in self.catalog.list_songs(event_id)}
        foreign = [entry.song_id for entry in assigned if entry.song_id not in songs]
        if foreign:
            raise SongNotInEvent(event_id, foreign)
        return songs

    def confirm_batch(
        self,
        event_id: str,
        upload_id: str,
        confirmed: Sequence[ConfirmedMatch],
        uploaded_by: Optional[str] = None,
    ) -> ConfirmBatchResponse:
        """Commit the engineer's final assignments.

        Every validation runs against the session before anything is
        written; a rejected batch leaves the session in place so the
        engineer can fix the highlighted rows and confirm again.  Only then
        is the session consumed, which makes the commit single-use even
        when two confirmations race.
        """
        session = self.sessions.get(upload_id)
        if session.event_id != event_id:
            logger.warning("Upload %s belongs to event %s, not %s", upload_id, session.event_id, event_id)
            raise SessionExpired(upload_id)

        songs = self._validate(event_id, session, confirmed)
        uploader = uploaded_by or session.uploaded_by

        warnings: list[str] = []
        plan: list[tuple[ConfirmedMatch, SongRecord, str]] = []
        leftovers: list[str] = []
        confirmed_names = {entry.filename for entry in confirmed}
        for filename in session.filenames:
            if filename not in confirmed_names:
                warnings.append(f"{filename}: not matched to a song, skipped")
                leftovers.append(session.staging_keys[filename])
        for entry in confirmed:
            source = session.staging_keys[entry.filename]
            if not entry.song_id:
                warnings.append(f"{entry.filename}: not matched to a song, skipped")
                leftovers.append(source)
                continue
            if not self.storage.exists(source):
                logger.warning("Upload %s: no bytes at %s for %s", upload_id, source, entry.filename)
                warnings.append(f"{entry.filename}: upload not found in storage, skipped")
                continue
            plan.append((entry, songs[entry.song_id], source))
        replaced = self.catalog.song_ids_with_final(event_id, [song.id for _, song, _ in plan])

        self.sessions.consume(upload_id)
        committed: list[AudioFileRecord] = []
        try:
            for entry, song, source in plan:
                try:
                    committed.append(self._commit(event_id, entry, song, source, uploader))
                except UpstreamError:
                    # Reported per file; the remaining entries still commit.
                    warnings.append(f"{entry.filename}: could not be stored, skipped")
                    leftovers.append(source)
                    continue
                if song.id in replaced:
                    warnings.append(f"{entry.filename}: song already had a final mix, newest upload takes precedence")
        finally:
            self._discard(leftovers)
            if committed:
                self._recompute_stage(event_id)

        logger.info(
            "Batch %s for event %s confirmed: %d committed, %d warning(s)",
            upload_id, event_id, len(committed), len(warnings),
        )
        return ConfirmBatchResponse(count=len(committed), warnings=warnings, audio_files=committed)

    def _commit(
        self,
        event_id: str,
        entry: ConfirmedMatch,
        song: SongRecord,
        source_key: str,
        uploaded_by: Optional[str],
    ) -> AudioFileRecord:
        target_key = final_audio_key(event_id, song.class_id, song.id, entry.filename)
        try:
            size = self.storage.move(source_key, target_key)
        except (ObjectNotFound, OSError) as exc:
            logger.error("Moving %s to %s failed: %s", source_key, target_key, exc, exc_info=True)
            raise UpstreamError(f"Object storage failed while storing '{entry.filename}'") from exc

        duration = entry.duration_seconds
        if duration is None:
            duration = self.duration_probe(self.storage.path_for(target_key))

        return self.catalog.create_audio_file(
            event_id=event_id,
            song_id=song.id,
            class_id=song.class_id,
            file_type=AudioFileType.FINAL,
            storage_key=target_key,
            filename=entry.filename,
            uploaded_by=uploaded_by,
            file_size_bytes=entry.file_size_bytes if entry.file_size_bytes is not None else size,
            duration_seconds=duration,
            status=AudioFileStatus.READY,
            is_schulsong=bool(uploaded_by and uploaded_by in self.schulsong_engineer_ids),
        )

    def _discard(self, keys: Iterable[str]) -> None:
        for key in keys:
            try:
                self.storage.delete(key)
            except OSError as exc:
                logger.warning("Could not remove staged upload %s: %s", key, exc)

    def _recompute_stage(self, event_id: str) -> None:
        # The AudioFile records are the durable outcome; the stage is best effort.
        try:
            self.stage_updater.recompute_stage(event_id)
        except Exception:
            logger.exception("Error checking/updating audio pipeline stage for event %s", event_id)
