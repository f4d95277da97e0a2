"""Pydantic records and request/response shapes.

Records (``*Record``) are what the catalog repository hands out: typed copies
of database rows, detached from the SQLAlchemy session.  Everything is
serialised camelCase on the wire; snake_case input is accepted as well.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool
from pydantic.alias_generators import to_camel

from eventaudio.models.audio import AudioFileStatus, AudioFileType
from eventaudio.models.event import AudioPipelineStage


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ---------------------------------------------------------------------------
# Catalog records
# ---------------------------------------------------------------------------


class EventRecord(ApiModel):
    event_id: str
    school_name: str = ""
    event_date: Optional[str] = None
    stage: AudioPipelineStage = AudioPipelineStage.NOT_STARTED
    published: bool = False


class ClassRecord(ApiModel):
    class_id: str
    class_name: str
    event_id: str
    position: int = 0


class SongRecord(ApiModel):
    id: str
    title: str
    artist: Optional[str] = None
    class_id: str
    event_id: str
    position: int = 0


class AudioFileRecord(ApiModel):
    id: str
    song_id: Optional[str] = None
    class_id: Optional[str] = None
    event_id: str
    type: AudioFileType
    storage_key: str
    filename: str
    uploaded_by: Optional[str] = None
    file_size_bytes: int = 0
    duration_seconds: Optional[float] = None
    status: AudioFileStatus = AudioFileStatus.READY
    is_schulsong: bool = False
    created_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------


class MatchConfidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"


class Match(ApiModel):
    """A computed, non-authoritative filename-to-song suggestion."""

    filename: str
    song_id: Optional[str] = None
    song_title: Optional[str] = None
    confidence: MatchConfidence = MatchConfidence.NONE
    score: float = 1.0
    class_id: Optional[str] = None
    class_name: Optional[str] = None
    alternatives: list[Match] = Field(default_factory=list)


class MatchSummary(ApiModel):
    total: int = 0
    high_confidence: int = 0
    medium_confidence: int = 0
    low_confidence: int = 0
    unmatched: int = 0


# ---------------------------------------------------------------------------
# Batch upload
# ---------------------------------------------------------------------------


class InitiateBatchRequest(ApiModel):
    filenames: list[str] = Field(default_factory=list)


class InitiateBatchResponse(ApiModel):
    upload_id: str
    matches: list[Match]
    summary: MatchSummary
    all_songs: list[SongRecord]
    all_classes: list[ClassRecord]
    upload_urls: dict[str, str]


class ConfirmedMatch(ApiModel):
    filename: str
    song_id: Optional[str] = None
    file_size_bytes: Optional[int] = None
    duration_seconds: Optional[float] = None


class ConfirmBatchRequest(ApiModel):
    upload_id: str
    confirmed_matches: list[ConfirmedMatch] = Field(default_factory=list)


class ConfirmBatchResponse(ApiModel):
    count: int
    warnings: list[str] = Field(default_factory=list)
    audio_files: list[AudioFileRecord] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Engineer event views
# ---------------------------------------------------------------------------


class SongDetail(ApiModel):
    id: str
    title: str
    artist: Optional[str] = None
    final_file: Optional[AudioFileRecord] = None


class ClassDetail(ApiModel):
    class_id: str
    class_name: str
    songs: list[SongDetail] = Field(default_factory=list)
    raw_file_count: int = 0
    mixed_files: list[AudioFileRecord] = Field(default_factory=list)


class EventDetailResponse(ApiModel):
    event_id: str
    school_name: str
    event_date: Optional[str] = None
    stage: AudioPipelineStage
    published: bool = False
    classes: list[ClassDetail] = Field(default_factory=list)
    schulsong_files: list[AudioFileRecord] = Field(default_factory=list)


class DownloadFile(ApiModel):
    url: str
    filename: str
    path: str
    file_size_bytes: int = 0


class DownloadUrlsResponse(ApiModel):
    files: list[DownloadFile]
    zip_filename: str
    total_size_bytes: int


class SongUploadUrlRequest(ApiModel):
    filename: str


class SongUploadUrlResponse(ApiModel):
    upload_url: str
    key: str


class SongUploadConfirmRequest(ApiModel):
    key: str
    filename: str
    file_size_bytes: Optional[int] = None
    duration_seconds: Optional[float] = None


class SongUploadConfirmResponse(ApiModel):
    audio_file: AudioFileRecord
    stage: Optional[AudioPipelineStage] = None


# ---------------------------------------------------------------------------
# Class-level mixes and publishing
# ---------------------------------------------------------------------------

MixedType = Literal["preview", "final"]


class MixedUploadUrlRequest(ApiModel):
    class_id: str
    filename: str
    type: MixedType
    song_id: Optional[str] = None


class MixedUploadUrlResponse(ApiModel):
    upload_url: str
    key: str


class MixedUploadConfirmRequest(ApiModel):
    class_id: str
    key: str
    filename: str
    type: MixedType
    song_id: Optional[str] = None
    file_size_bytes: Optional[int] = None
    duration_seconds: Optional[float] = None
    is_schulsong: Optional[bool] = None


class MixedUploadConfirmResponse(ApiModel):
    audio_file: AudioFileRecord
    stage: Optional[AudioPipelineStage] = None
    message: str


class PublishRequest(ApiModel):
    published: StrictBool


class PublishResponse(ApiModel):
    published: bool
    message: Optional[str] = None
