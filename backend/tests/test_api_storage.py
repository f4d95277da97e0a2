from urllib.parse import urlparse

from fastapi import status

KEY = "events/evt_1/uploads/U/C1/a.wav"


def _path(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.path}?{parsed.query}"


def test_put_then_get_with_signed_urls(client, storage):
    response = client.put(storage.mint_upload_url(KEY), content=b"RIFFdata")
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"key": KEY, "size": 8}
    assert storage.get_bytes(KEY) == b"RIFFdata"

    response = client.get(storage.mint_download_url(KEY, 60))
    assert response.status_code == status.HTTP_200_OK
    assert response.content == b"RIFFdata"


def test_put_url_cannot_be_used_for_get(client, storage):
    storage.put_bytes(KEY, b"x")
    upload_path = _path(storage.mint_upload_url(KEY))
    assert client.get(upload_path).status_code == status.HTTP_403_FORBIDDEN


def test_signature_for_other_key_is_forbidden(client, storage):
    path = _path(storage.mint_upload_url(KEY)).replace("a.wav", "b.wav")
    assert client.put(path, content=b"x").status_code == status.HTTP_403_FORBIDDEN
    assert not storage.exists("events/evt_1/uploads/U/C1/b.wav")


def test_expired_url_is_forbidden(client, storage, clock):
    url = storage.mint_upload_url(KEY)
    clock.advance(601)
    assert client.put(url, content=b"x").status_code == status.HTTP_403_FORBIDDEN


def test_missing_signature_is_a_validation_error(client):
    assert client.put(f"/api/storage/objects/{KEY}", content=b"x").status_code == 422


def test_get_missing_object(client, storage):
    assert client.get(storage.mint_download_url(KEY, 60)).status_code == status.HTTP_404_NOT_FOUND


def test_oversized_upload_is_rejected(client, storage, monkeypatch):
    from eventaudio.config import settings

    monkeypatch.setattr(settings, "MAX_UPLOAD_SIZE_MB", 1)
    response = client.put(storage.mint_upload_url(KEY), content=b"0" * (1024 * 1024 + 1))
    assert response.status_code == status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
    assert not storage.exists(KEY)
