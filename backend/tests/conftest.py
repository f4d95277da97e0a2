"""Shared fixtures: an in-memory database, a temporary object store and a
seeded event.

Settings are read from the environment when ``eventaudio.config`` is first
imported, so the test environment is fixed here before anything else imports
the package.
"""

import os
import tempfile

_TEST_ROOT = tempfile.mkdtemp(prefix="eventaudio-tests-")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["DATA_ROOT"] = os.path.join(_TEST_ROOT, "data")
os.environ["LOG_DIR"] = os.path.join(_TEST_ROOT, "logs")
os.environ["STORAGE_SIGNING_SECRET"] = "test-signing-secret"
os.environ["PUBLIC_BASE_URL"] = "http://testserver"

from unittest.mock import patch  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from eventaudio import models  # noqa: E402,F401
from eventaudio.db.base import Base  # noqa: E402
from eventaudio.db.database import build_engine  # noqa: E402
from eventaudio.models.event import AudioPipelineStage, Event  # noqa: E402
from eventaudio.models.song import SchoolClass, Song  # noqa: E402
from eventaudio.repositories.catalog import CatalogRepository  # noqa: E402
from eventaudio.services.upload_sessions import UploadSessionStore  # noqa: E402
from eventaudio.utils.storage import StorageGateway  # noqa: E402

EVENT_ID = "evt_1"
OTHER_EVENT_ID = "evt_2"
SCHULSONG_EVENT_ID = "evt_3"


class FakeClock:
    """Manually advanced clock for TTL and expiry tests."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def seed_catalog(db, stage: AudioPipelineStage = AudioPipelineStage.IN_PROGRESS) -> None:
    """Event with two song-bearing classes and one class without songs.

    * ``C1`` "Klasse 1a": ``S1`` "Wir sind die Minimusiker"
    * ``C2`` "Klasse 2b": ``S2`` "Song A", ``S3`` "Alle Voegel sind schon da"
    * ``C3`` "Schulchor": no songs

    A second event owns ``S9`` so cross-event assignments can be tested; a
    third has a single class and no songs, as for a whole-school song.
    """
    db.add_all(
        [
            Event(event_id=EVENT_ID, school_name="Grundschule Am Park", event_date="2026-06-12",
                  audio_pipeline_stage=stage),
            Event(event_id=OTHER_EVENT_ID, school_name="Other School", event_date="2026-07-01"),
            Event(event_id=SCHULSONG_EVENT_ID, school_name="Schule am See", event_date="2026-07-03",
                  audio_pipeline_stage=stage),
        ]
    )
    db.add_all(
        [
            SchoolClass(class_id="C1", class_name="Klasse 1a", event_id=EVENT_ID, position=0),
            SchoolClass(class_id="C2", class_name="Klasse 2b", event_id=EVENT_ID, position=1),
            SchoolClass(class_id="C3", class_name="Schulchor", event_id=EVENT_ID, position=2),
            SchoolClass(class_id="C9", class_name="Klasse 4c", event_id=OTHER_EVENT_ID, position=0),
            SchoolClass(class_id="CA", class_name="Alle Klassen", event_id=SCHULSONG_EVENT_ID, position=0),
        ]
    )
    db.add_all(
        [
            Song(id="S1", title="Wir sind die Minimusiker", class_id="C1", event_id=EVENT_ID, position=0),
            Song(id="S2", title="Song A", class_id="C2", event_id=EVENT_ID, position=0),
            Song(id="S3", title="Alle Voegel sind schon da", class_id="C2", event_id=EVENT_ID, position=1),
            Song(id="S9", title="Fremdes Lied", class_id="C9", event_id=OTHER_EVENT_ID, position=0),
        ]
    )
    db.commit()


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def seeded_db(db_session):
    seed_catalog(db_session)
    return db_session


@pytest.fixture
def catalog(seeded_db) -> CatalogRepository:
    return CatalogRepository(seeded_db)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def storage(tmp_path, clock) -> StorageGateway:
    return StorageGateway(
        root=tmp_path / "objects",
        secret="test-signing-secret",
        public_base_url="http://testserver",
        upload_ttl_seconds=600,
        clock=clock,
    )


@pytest.fixture
def sessions(clock) -> UploadSessionStore:
    return UploadSessionStore(ttl_seconds=1800, clock=clock)


@pytest.fixture
def client(session_factory, storage, sessions):
    """TestClient wired to the per-test database, object store and sessions."""
    from fastapi.testclient import TestClient

    from eventaudio.db.database import get_db
    from eventaudio.main import app
    from eventaudio.services.upload_sessions import get_upload_session_store
    from eventaudio.utils.storage import get_storage_gateway

    db = session_factory()
    seed_catalog(db)
    db.close()

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage_gateway] = lambda: storage
    app.dependency_overrides[get_upload_session_store] = lambda: sessions
    with patch("ffmpeg.probe", return_value={"format": {"duration": "42.0"}}):
        yield TestClient(app)
    app.dependency_overrides.clear()
