"""Read/write access to events, classes, songs and audio files.

This is the only place that touches the ORM tables for the engineer workflow:
rows go in, typed ``*Record`` objects come out, and any database failure is
surfaced as :class:`~eventaudio.errors.UpstreamError`.
"""

from __future__ import annotations

import functools
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from eventaudio.errors import EventNotFound, UpstreamError
from eventaudio.models.audio import AudioFile, AudioFileStatus, AudioFileType
from eventaudio.models.event import AudioPipelineStage, Event
from eventaudio.models.song import SchoolClass, Song
from eventaudio.schemas import AudioFileRecord, ClassRecord, EventRecord, SongRecord

logger = logging.getLogger(__name__)


def _upstream(method):
    @functools.wraps(method)
    def wrapper(self: "CatalogRepository", *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error("Catalog operation %s failed: %s", method.__name__, exc, exc_info=True)
            raise UpstreamError(f"Record store unavailable ({method.__name__})") from exc

    return wrapper


def _event_record(row: Event) -> EventRecord:
    return EventRecord(
        event_id=row.event_id,
        school_name=row.school_name or "",
        event_date=row.event_date,
        stage=row.stage,
        published=bool(row.published),
    )


class CatalogRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    @_upstream
    def get_event(self, event_id: str) -> Optional[EventRecord]:
        row = self.session.get(Event, event_id)
        return _event_record(row) if row is not None else None

    def require_event(self, event_id: str) -> EventRecord:
        event = self.get_event(event_id)
        if event is None:
            raise EventNotFound(event_id)
        return event

    @_upstream
    def list_classes(self, event_id: str) -> list[ClassRecord]:
        statement = (
            select(SchoolClass)
            .where(SchoolClass.event_id == event_id)
            .order_by(SchoolClass.position.asc(), SchoolClass.class_id.asc())
        )
        return [ClassRecord.model_validate(row) for row in self.session.scalars(statement)]

    @_upstream
    def list_songs(self, event_id: str) -> list[SongRecord]:
        """Songs of the event in class declaration order, then song order."""
        statement = (
            select(Song)
            .join(SchoolClass, SchoolClass.class_id == Song.class_id)
            .where(Song.event_id == event_id)
            .order_by(SchoolClass.position.asc(), SchoolClass.class_id.asc(), Song.position.asc(), Song.id.asc())
        )
        return [SongRecord.model_validate(row) for row in self.session.scalars(statement)]

    @_upstream
    def get_song(self, song_id: str) -> Optional[SongRecord]:
        row = self.session.get(Song, song_id)
        return SongRecord.model_validate(row) if row is not None else None

    @_upstream
    def list_audio_files(
        self,
        event_id: str,
        file_type: Optional[AudioFileType] = None,
        class_id: Optional[str] = None,
    ) -> list[AudioFileRecord]:
        statement = select(AudioFile).where(AudioFile.event_id == event_id)
        if file_type is not None:
            statement = statement.where(AudioFile.type == file_type)
        if class_id is not None:
            statement = statement.where(AudioFile.class_id == class_id)
        statement = statement.order_by(AudioFile.created_at.asc(), AudioFile.id.asc())
        return [AudioFileRecord.model_validate(row) for row in self.session.scalars(statement)]

    @_upstream
    def song_ids_with_final(self, event_id: str, song_ids: list[str]) -> set[str]:
        if not song_ids:
            return set()
        statement = select(AudioFile.song_id).where(
            AudioFile.event_id == event_id,
            AudioFile.type == AudioFileType.FINAL,
            AudioFile.song_id.in_(song_ids),
        )
        return {song_id for song_id in self.session.scalars(statement) if song_id}

    @_upstream
    def create_audio_file(
        self,
        *,
        event_id: str,
        file_type: AudioFileType,
        storage_key: str,
        filename: str,
        song_id: Optional[str] = None,
        class_id: Optional[str] = None,
        uploaded_by: Optional[str] = None,
        file_size_bytes: int = 0,
        duration_seconds: Optional[float] = None,
        status: AudioFileStatus = AudioFileStatus.READY,
        is_schulsong: bool = False,
    ) -> AudioFileRecord:
        row = AudioFile(
            event_id=event_id,
            song_id=song_id,
            class_id=class_id,
            type=file_type,
            storage_key=storage_key,
            filename=filename,
            uploaded_by=uploaded_by,
            file_size_bytes=file_size_bytes,
            duration_seconds=duration_seconds,
            status=status,
            is_schulsong=is_schulsong,
        )
        self.session.add(row)
        self.session.commit()
        self.session.refresh(row)
        logger.info("AudioFile %s (%s) created for song %s in event %s", row.id, file_type.value, song_id, event_id)
        return AudioFileRecord.model_validate(row)

    @_upstream
    def set_event_stage(self, event_id: str, stage: AudioPipelineStage) -> None:
        row = self.session.get(Event, event_id)
        if row is None:
            raise EventNotFound(event_id)
        row.audio_pipeline_stage = stage
        self.session.commit()
        logger.info("Event %s audio pipeline stage set to %s", event_id, stage.value)

    @_upstream
    def find_audio_file(
        self,
        event_id: str,
        class_id: str,
        file_type: AudioFileType,
        storage_key: str,
    ) -> Optional[AudioFileRecord]:
        statement = select(AudioFile).where(
            AudioFile.event_id == event_id,
            AudioFile.class_id == class_id,
            AudioFile.type == file_type,
            AudioFile.storage_key == storage_key,
        )
        row = self.session.scalars(statement).first()
        return AudioFileRecord.model_validate(row) if row is not None else None

    @_upstream
    def update_audio_file(self, audio_file_id: str, **fields) -> AudioFileRecord:
        row = self.session.get(AudioFile, audio_file_id)
        if row is None:
            raise UpstreamError(f"Audio file '{audio_file_id}' disappeared during update")
        for name, value in fields.items():
            setattr(row, name, value)
        self.session.commit()
        self.session.refresh(row)
        logger.info("AudioFile %s updated (%s)", row.id, ", ".join(sorted(fields)))
        return AudioFileRecord.model_validate(row)

    @_upstream
    def set_event_published(self, event_id: str, published: bool) -> EventRecord:
        row = self.session.get(Event, event_id)
        if row is None:
            raise EventNotFound(event_id)
        row.published = published
        self.session.commit()
        logger.info("Event %s publish status set to %s", event_id, published)
        return _event_record(row)
