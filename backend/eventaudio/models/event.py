"""SQLAlchemy models for school events and their audio pipeline stage."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, Enum as SAEnum, String

from eventaudio.db.base import Base


class AudioPipelineStage(str, Enum):
    """Audio-production progress of an event, in pipeline order."""

    NOT_STARTED = "not_started"
    STAFF_UPLOADED = "staff_uploaded"
    IN_PROGRESS = "in_progress"
    READY_FOR_REVIEW = "ready_for_review"
    APPROVED = "approved"

    @property
    def rank(self) -> int:
        return _STAGE_ORDER.index(self)

    def is_at_least(self, other: "AudioPipelineStage") -> bool:
        return self.rank >= other.rank


_STAGE_ORDER = list(AudioPipelineStage)


class Event(Base):
    """One scheduled school engagement."""

    __tablename__ = "events"

    event_id = Column(String(64), primary_key=True, comment="Booking id of the event.")
    school_name = Column(String(255), nullable=False, default="")
    event_date = Column(String(32), nullable=True, comment="ISO date of the event, if scheduled.")
    audio_pipeline_stage = Column(
        SAEnum(AudioPipelineStage, values_callable=lambda enum: [e.value for e in enum]),
        nullable=False,
        default=AudioPipelineStage.NOT_STARTED,
    )
    published = Column(Boolean, nullable=False, default=False, comment="Audio previews visible to parents.")
    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)

    @property
    def stage(self) -> AudioPipelineStage:
        value = self.audio_pipeline_stage
        return value if isinstance(value, AudioPipelineStage) else AudioPipelineStage(value or "not_started")
