"""SQLAlchemy model for uploaded audio artifacts."""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, Enum as SAEnum, Float, ForeignKey, Integer, String

from eventaudio.db.base import Base


class AudioFileType(str, Enum):
    RAW = "raw"
    PREVIEW = "preview"
    FINAL = "final"


class AudioFileStatus(str, Enum):
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


def _new_id() -> str:
    return f"af_{uuid.uuid4().hex}"


class AudioFile(Base):
    """
    Represents one uploaded audio artifact.

    Stores where the bytes live in object storage, which song/class/event they
    belong to, who uploaded them, and basic file metadata.  ``final`` files
    created by the batch workflow always carry a ``song_id``; class-level mixes
    (including whole-event school songs) may not.
    """
    __tablename__ = "audio_files"

    id = Column(String(64), primary_key=True, default=_new_id)
    song_id = Column(String(64), ForeignKey("songs.id"), index=True, nullable=True)
    class_id = Column(String(64), index=True, nullable=True, comment="Null for whole-event school songs.")
    event_id = Column(String(64), ForeignKey("events.event_id"), index=True, nullable=False)
    type = Column(SAEnum(AudioFileType, values_callable=lambda enum: [e.value for e in enum]), nullable=False)
    storage_key = Column(String(1024), nullable=False, comment="Object-storage key of the bytes.")
    filename = Column(String(255), nullable=False, comment="The original filename as uploaded by the engineer.")
    uploaded_by = Column(String(64), nullable=True)
    file_size_bytes = Column(Integer, nullable=False, default=0)
    duration_seconds = Column(Float, nullable=True)
    status = Column(
        SAEnum(AudioFileStatus, values_callable=lambda enum: [e.value for e in enum]),
        nullable=False,
        default=AudioFileStatus.READY,
    )
    is_schulsong = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
