import pytest
from sqlalchemy import inspect, text
from sqlalchemy.orm import Session

from eventaudio.db.database import build_engine
from eventaudio.errors import UpstreamError
from eventaudio.models.audio import AudioFileType
from eventaudio.repositories.catalog import CatalogRepository

from .conftest import EVENT_ID


def test_settings_from_env():
    from eventaudio import config
    from eventaudio.db import database

    assert config.settings.DATABASE_URL == "sqlite://"
    with database.engine.connect() as conn:
        assert conn.execute(text("SELECT 1")).scalar() == 1


def test_empty_env_values_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("UPLOAD_SESSION_TTL_SECONDS", "")
    monkeypatch.setenv("MATCH_HIGH_THRESHOLD", "0.2")
    monkeypatch.setenv("SCHULSONG_ENGINEER_IDS", "eng_a, eng_b,")
    monkeypatch.delenv("FFPROBE_PATH", raising=False)

    from eventaudio.config import Settings

    fresh = Settings()
    assert fresh.UPLOAD_SESSION_TTL_SECONDS == 1800
    assert fresh.MATCH_HIGH_THRESHOLD == 0.2
    assert fresh.MATCH_MEDIUM_THRESHOLD == 0.35
    assert fresh.SCHULSONG_ENGINEER_IDS == frozenset({"eng_a", "eng_b"})
    assert fresh.FFPROBE_PATH == "ffprobe"
    assert fresh.PREVIEW_AUDIO_EXTENSION == ".mp3"
    # Only ffprobe is ever invoked.
    assert not hasattr(fresh, "FFMPEG_PATH")


def test_tables_created(session_factory):
    engine = session_factory.kw["bind"]
    assert {"events", "classes", "songs", "audio_files"} <= set(inspect(engine).get_table_names())


def test_in_memory_engine_shares_one_connection():
    engine = build_engine("sqlite://")
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE t (x INTEGER)"))
    with engine.connect() as conn:
        assert conn.execute(text("SELECT count(*) FROM t")).scalar() == 0


def test_catalog_records(catalog):
    event = catalog.require_event(EVENT_ID)
    assert event.school_name == "Grundschule Am Park"
    assert [c.class_name for c in catalog.list_classes(EVENT_ID)] == ["Klasse 1a", "Klasse 2b", "Schulchor"]
    assert catalog.get_song("S9").event_id != EVENT_ID
    assert catalog.get_event("missing") is None
    assert catalog.song_ids_with_final(EVENT_ID, []) == set()


def test_catalog_database_errors_become_upstream_errors():
    # No tables in this engine at all.
    catalog = CatalogRepository(Session(bind=build_engine("sqlite://")))
    with pytest.raises(UpstreamError) as excinfo:
        catalog.list_audio_files(EVENT_ID, AudioFileType.FINAL)
    assert excinfo.value.status_code == 502
