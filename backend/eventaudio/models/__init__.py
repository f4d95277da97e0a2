# Namespace for ORM models.
from .audio import AudioFile, AudioFileStatus, AudioFileType
from .event import AudioPipelineStage, Event
from .song import SchoolClass, Song

__all__ = [
    "AudioFile",
    "AudioFileStatus",
    "AudioFileType",
    "AudioPipelineStage",
    "Event",
    "SchoolClass",
    "Song",
]
