"""Advance an event's audio pipeline stage once final mixes are complete."""

from __future__ import annotations

import logging
from typing import Optional

from eventaudio.models.audio import AudioFileType
from eventaudio.models.event import AudioPipelineStage
from eventaudio.repositories.catalog import CatalogRepository

logger = logging.getLogger(__name__)

TARGET_STAGE = AudioPipelineStage.READY_FOR_REVIEW


class PipelineStageUpdater:
    """Recompute whether an event is ready for review.

    The rule only ever moves the stage forward, so concurrent recomputes
    commute and repeating one on unchanged data is a no-op.
    """

    def __init__(self, catalog: CatalogRepository) -> None:
        self.catalog = catalog

    def is_complete(self, event_id: str) -> bool:
        songs = self.catalog.list_songs(event_id)
        finals = self.catalog.list_audio_files(event_id, file_type=AudioFileType.FINAL)

        class_ids_with_songs = {song.class_id for song in songs}
        class_ids_with_final = {f.class_id for f in finals if f.class_id}

        if class_ids_with_songs:
            return class_ids_with_songs <= class_ids_with_final
        # Schulsong-only events have no song-bearing classes at all.
        return any(f.is_schulsong for f in finals)

    def recompute_stage(self, event_id: str) -> Optional[AudioPipelineStage]:
        """Return the new stage if it changed, ``None`` when unchanged."""
        event = self.catalog.require_event(event_id)
        if event.stage.is_at_least(TARGET_STAGE):
            logger.debug("Event %s already at %s, stage left alone", event_id, event.stage.value)
            return None
        if not self.is_complete(event_id):
            logger.debug("Event %s still missing final audio, stage stays %s", event_id, event.stage.value)
            return None

        self.catalog.set_event_stage(event_id, TARGET_STAGE)
        logger.info("Event %s advanced from %s to %s", event_id, event.stage.value, TARGET_STAGE.value)
        return TARGET_STAGE
