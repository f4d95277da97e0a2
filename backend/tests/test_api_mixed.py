"""Class-level mixes, the publish toggle and the raw ZIP download."""

import io
import zipfile

from fastapi import status

from eventaudio.models.audio import AudioFileType
from eventaudio.repositories.catalog import CatalogRepository

from .conftest import EVENT_ID, SCHULSONG_EVENT_ID

HEADERS = {"X-Engineer-Id": "eng_1"}
SCHULSONG_MIXED_URL = f"/api/engineer/events/{SCHULSONG_EVENT_ID}/upload-mixed"
MIXED_URL = f"/api/engineer/events/{EVENT_ID}/upload-mixed"


def _request_url(client, url, **body):
    response = client.post(url, json=body, headers=HEADERS)
    assert response.status_code == status.HTTP_200_OK, response.text
    return response.json()


def _upload(client, url, class_id, filename, kind, payload=b"RIFF....WAVEfmt "):
    issued = _request_url(client, url, classId=class_id, filename=filename, type=kind)
    assert client.put(issued["uploadUrl"], content=payload).status_code == status.HTTP_200_OK
    return issued["key"]


# ---------------------------------------------------------------------------
# upload-mixed
# ---------------------------------------------------------------------------


def test_schulsong_final_completes_event_without_songs(client):
    key = _upload(client, SCHULSONG_MIXED_URL, "CA", "Schulsong.wav", "final")
    assert key == f"events/{SCHULSONG_EVENT_ID}/classes/CA/mixed/final/Schulsong.wav"

    response = client.put(
        SCHULSONG_MIXED_URL,
        json={"classId": "CA", "key": key, "filename": "Schulsong.wav", "type": "final", "isSchulsong": True},
        headers=HEADERS,
    )

    assert response.status_code == status.HTTP_200_OK, response.text
    body = response.json()
    assert body["stage"] == "ready_for_review"
    assert body["message"] == "Final audio uploaded successfully"
    audio = body["audioFile"]
    assert audio["isSchulsong"] is True
    assert audio["songId"] is None
    assert audio["classId"] == "CA"
    assert audio["type"] == "final"
    assert audio["uploadedBy"] == "eng_1"
    assert audio["durationSeconds"] == 42.0

    detail = client.get(f"/api/engineer/events/{SCHULSONG_EVENT_ID}", headers=HEADERS).json()
    assert detail["stage"] == "ready_for_review"
    assert [f["id"] for f in detail["schulsongFiles"]] == [audio["id"]]
    assert [f["id"] for f in detail["classes"][0]["mixedFiles"]] == [audio["id"]]


def test_confirming_same_key_again_updates_the_record(client, session_factory):
    key = _upload(client, MIXED_URL, "C3", "Chor.wav", "final")
    body = {"classId": "C3", "key": key, "filename": "Chor.wav", "type": "final"}

    first = client.put(MIXED_URL, json=body, headers=HEADERS).json()["audioFile"]
    second = client.put(
        MIXED_URL, json={**body, "fileSizeBytes": 999}, headers={"X-Engineer-Id": "eng_2"}
    ).json()["audioFile"]

    assert second["id"] == first["id"]
    assert second["fileSizeBytes"] == 999
    assert second["uploadedBy"] == "eng_2"
    assert first["isSchulsong"] is False
    db = session_factory()
    try:
        finals = CatalogRepository(db).list_audio_files(EVENT_ID, file_type=AudioFileType.FINAL, class_id="C3")
    finally:
        db.close()
    assert len(finals) == 1


def test_preview_upload_leaves_stage_alone(client):
    key = _upload(client, MIXED_URL, "C1", "preview.mp3", "preview")
    response = client.put(
        MIXED_URL,
        json={"classId": "C1", "key": key, "filename": "preview.mp3", "type": "preview"},
        headers=HEADERS,
    )
    assert response.status_code == status.HTTP_200_OK, response.text
    body = response.json()
    assert body["stage"] is None
    assert body["message"] == "Preview audio uploaded successfully"
    assert body["audioFile"]["type"] == "preview"


def test_upload_mixed_rejects_bad_requests(client):
    assert client.post(MIXED_URL, json={"classId": "C1", "filename": "a.wav", "type": "final"}).status_code == 401

    missing_class = client.post(MIXED_URL, json={"classId": "CX", "filename": "a.wav", "type": "final"}, headers=HEADERS)
    assert missing_class.status_code == status.HTTP_404_NOT_FOUND
    assert missing_class.json()["classId"] == "CX"
    foreign_class = client.post(MIXED_URL, json={"classId": "C9", "filename": "a.wav", "type": "final"}, headers=HEADERS)
    assert foreign_class.status_code == status.HTTP_404_NOT_FOUND

    raw_type = client.post(MIXED_URL, json={"classId": "C1", "filename": "a.wav", "type": "raw"}, headers=HEADERS)
    assert raw_type.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    wav_preview = client.post(MIXED_URL, json={"classId": "C1", "filename": "a.wav", "type": "preview"}, headers=HEADERS)
    assert wav_preview.status_code == status.HTTP_400_BAD_REQUEST
    song_of_other_class = client.post(
        MIXED_URL, json={"classId": "C1", "songId": "S2", "filename": "a.wav", "type": "final"}, headers=HEADERS
    )
    assert song_of_other_class.status_code == status.HTTP_400_BAD_REQUEST

    wrong_prefix = client.put(
        MIXED_URL,
        json={"classId": "C1", "key": f"events/{EVENT_ID}/classes/C2/mixed/final/a.wav", "filename": "a.wav",
              "type": "final"},
        headers=HEADERS,
    )
    assert wrong_prefix.status_code == status.HTTP_400_BAD_REQUEST
    never_uploaded = client.put(
        MIXED_URL,
        json={"classId": "C1", "key": f"events/{EVENT_ID}/classes/C1/mixed/final/a.wav", "filename": "a.wav",
              "type": "final"},
        headers=HEADERS,
    )
    assert never_uploaded.status_code == status.HTTP_400_BAD_REQUEST


# ---------------------------------------------------------------------------
# publish
# ---------------------------------------------------------------------------


def test_publish_toggle(client):
    url = f"/api/engineer/events/{EVENT_ID}/publish"
    assert client.get(url, headers=HEADERS).json()["published"] is False

    response = client.post(url, json={"published": True}, headers=HEADERS)
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"published": True, "message": "Audio preview is now visible to parents"}
    assert client.get(url, headers=HEADERS).json()["published"] is True
    assert client.get(f"/api/engineer/events/{EVENT_ID}", headers=HEADERS).json()["published"] is True

    hidden = client.post(url, json={"published": False}, headers=HEADERS).json()
    assert hidden == {"published": False, "message": "Audio preview is now hidden from parents"}


def test_publish_rejects_non_boolean_and_unknown_event(client):
    url = f"/api/engineer/events/{EVENT_ID}/publish"
    assert client.post(url, json={"published": "yes"}, headers=HEADERS).status_code == 422
    assert client.post(url, json={}, headers=HEADERS).status_code == 422
    assert client.get(url).status_code == 401
    assert client.get("/api/engineer/events/nope/publish", headers=HEADERS).status_code == 404
    assert client.post("/api/engineer/events/nope/publish", json={"published": True}, headers=HEADERS).status_code == 404


# ---------------------------------------------------------------------------
# download-zip
# ---------------------------------------------------------------------------


def test_download_zip_bundles_raw_recordings(client, session_factory, storage):
    url = f"/api/engineer/events/{EVENT_ID}/download-zip"
    assert client.get(url, headers=HEADERS).status_code == status.HTTP_404_NOT_FOUND

    db = session_factory()
    catalog = CatalogRepository(db)
    for class_id, filename, data in (("C1", "take1.wav", b"one"), ("C2", "take2.wav", b"two"), ("C2", "lost.wav", None)):
        key = f"events/{EVENT_ID}/classes/{class_id}/raw/{filename}"
        if data is not None:
            storage.put_bytes(key, data)
        catalog.create_audio_file(
            event_id=EVENT_ID, class_id=class_id, file_type=AudioFileType.RAW, storage_key=key, filename=filename
        )
    db.close()

    response = client.get(url, headers=HEADERS)
    assert response.status_code == status.HTTP_200_OK
    assert response.headers["content-type"] == "application/zip"
    assert response.headers["content-disposition"] == (
        'attachment; filename="Grundschule_Am_Park_2026-06-12_raw_audio.zip"'
    )
    with zipfile.ZipFile(io.BytesIO(response.content)) as archive:
        assert sorted(archive.namelist()) == ["Klasse_1a/take1.wav", "Klasse_2b/take2.wav"]
        assert archive.read("Klasse_2b/take2.wav") == b"two"

    one_class = client.get(url, params={"classId": "C1"}, headers=HEADERS)
    assert 'filename="Grundschule_Am_Park_C1_raw_audio.zip"' in one_class.headers["content-disposition"]
    with zipfile.ZipFile(io.BytesIO(one_class.content)) as archive:
        assert archive.namelist() == ["Klasse_1a/take1.wav"]
