"""Read-only views of an event for the engineer portal, plus its publish toggle."""

from __future__ import annotations

import io
import logging
import re
import zipfile
from typing import Optional

from eventaudio.errors import NoRawAudioFiles
from eventaudio.models.audio import AudioFileType
from eventaudio.repositories.catalog import CatalogRepository
from eventaudio.schemas import (
    AudioFileRecord,
    ClassDetail,
    DownloadFile,
    DownloadUrlsResponse,
    EventDetailResponse,
    EventRecord,
    PublishResponse,
    SongDetail,
)
from eventaudio.utils.storage import StorageGateway

logger = logging.getLogger(__name__)

_NOT_SLUG_CHARS = re.compile(r"[^a-zA-Z0-9\-_\s]")
_WHITESPACE = re.compile(r"\s+")


def slugify(value: str, max_length: Optional[int] = None) -> str:
    """``"Klasse 3a (Mo)"`` -> ``"Klasse_3a_Mo"``."""
    slug = _WHITESPACE.sub("_", _NOT_SLUG_CHARS.sub("", value))
    return slug[:max_length] if max_length else slug


def event_detail(catalog: CatalogRepository, event_id: str) -> EventDetailResponse:
    event = catalog.require_event(event_id)
    classes = catalog.list_classes(event_id)
    songs = catalog.list_songs(event_id)
    files = catalog.list_audio_files(event_id)

    # Files come oldest first, so later ones overwrite: newest final wins.
    newest_final = {f.song_id: f for f in files if f.type == AudioFileType.FINAL and f.song_id}
    raw_counts: dict[str, int] = {}
    for f in files:
        if f.type == AudioFileType.RAW and f.class_id:
            raw_counts[f.class_id] = raw_counts.get(f.class_id, 0) + 1

    details = []
    for cls in classes:
        details.append(
            ClassDetail(
                class_id=cls.class_id,
                class_name=cls.class_name,
                songs=[
                    SongDetail(id=s.id, title=s.title, artist=s.artist, final_file=newest_final.get(s.id))
                    for s in songs if s.class_id == cls.class_id
                ],
                raw_file_count=raw_counts.get(cls.class_id, 0),
                mixed_files=[
                    f for f in files
                    if f.class_id == cls.class_id and not f.song_id and f.type != AudioFileType.RAW
                ],
            )
        )
    return EventDetailResponse(
        event_id=event.event_id,
        school_name=event.school_name,
        event_date=event.event_date,
        stage=event.stage,
        published=event.published,
        classes=details,
        schulsong_files=[f for f in files if f.type == AudioFileType.FINAL and f.is_schulsong],
    )


def _raw_files(
    catalog: CatalogRepository,
    event_id: str,
    class_id: Optional[str],
) -> tuple[EventRecord, list[AudioFileRecord], dict[str, str]]:
    event = catalog.require_event(event_id)
    raw_files = catalog.list_audio_files(event_id, file_type=AudioFileType.RAW, class_id=class_id)
    if not raw_files:
        raise NoRawAudioFiles(event_id)
    class_names = {cls.class_id: cls.class_name for cls in catalog.list_classes(event_id)}
    return event, raw_files, class_names


def _zip_path(audio: AudioFileRecord, class_names: dict[str, str]) -> str:
    class_id = audio.class_id or ""
    return f"{slugify(class_names.get(class_id, class_id))}/{audio.filename}"


def _zip_filename(event: EventRecord, class_id: Optional[str]) -> str:
    school_slug = slugify(event.school_name, max_length=30)
    if class_id:
        return f"{school_slug}_{class_id}_raw_audio.zip"
    return f"{school_slug}_{event.event_date or 'no-date'}_raw_audio.zip"


def raw_download_urls(
    catalog: CatalogRepository,
    storage: StorageGateway,
    event_id: str,
    ttl_seconds: int,
    class_id: Optional[str] = None,
) -> DownloadUrlsResponse:
    """Signed GET URLs for the event's raw recordings, laid out for a ZIP."""
    event, raw_files, class_names = _raw_files(catalog, event_id, class_id)
    files = [
        DownloadFile(
            url=storage.mint_download_url(f.storage_key, ttl_seconds),
            filename=f.filename,
            path=_zip_path(f, class_names),
            file_size_bytes=f.file_size_bytes or 0,
        )
        for f in raw_files
    ]
    logger.info("Issued %d raw download URL(s) for event %s", len(files), event_id)
    return DownloadUrlsResponse(
        files=files,
        zip_filename=_zip_filename(event, class_id),
        total_size_bytes=sum(f.file_size_bytes for f in files),
    )


def raw_audio_zip(
    catalog: CatalogRepository,
    storage: StorageGateway,
    event_id: str,
    class_id: Optional[str] = None,
) -> tuple[str, bytes]:
    """Build the raw-recordings ZIP in memory; returns ``(zip_filename, data)``.

    Same layout as :func:`raw_download_urls`.  Files whose bytes are missing
    from storage are left out and logged.
    """
    event, raw_files, class_names = _raw_files(catalog, event_id, class_id)
    buffer = io.BytesIO()
    added = 0
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=5) as archive:
        for audio in raw_files:
            try:
                archive.write(storage.path_for(audio.storage_key), arcname=_zip_path(audio, class_names))
            except OSError as exc:
                logger.error("Error adding %s to ZIP for event %s: %s", audio.storage_key, event_id, exc)
                continue
            added += 1
    logger.info("Built raw audio ZIP for event %s with %d of %d file(s)", event_id, added, len(raw_files))
    return _zip_filename(event, class_id), buffer.getvalue()


def publish_status(catalog: CatalogRepository, event_id: str) -> PublishResponse:
    return PublishResponse(published=catalog.require_event(event_id).published)


def set_publish_status(catalog: CatalogRepository, event_id: str, published: bool) -> PublishResponse:
    event = catalog.set_event_published(event_id, published)
    message = (
        "Audio preview is now visible to parents"
        if event.published
        else "Audio preview is now hidden from parents"
    )
    return PublishResponse(published=event.published, message=message)
