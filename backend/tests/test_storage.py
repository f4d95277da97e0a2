from urllib.parse import parse_qs, unquote, urlparse

import pytest

from eventaudio.errors import StorageKeyError
from eventaudio.utils.storage import (
    ObjectNotFound,
    final_audio_key,
    final_audio_prefix,
    raw_audio_key,
    staging_key,
    validate_key,
)


def _parse(url: str):
    parsed = urlparse(url)
    key = unquote(parsed.path[len("/api/storage/objects/"):])
    query = parse_qs(parsed.query)
    return key, int(query["expires"][0]), query["signature"][0]


def test_key_layout():
    assert final_audio_key("evt_1", "C1", "S1", "mix.wav") == "events/evt_1/classes/C1/songs/S1/final/mix.wav"
    assert raw_audio_key("evt_1", "C1", "take 1.wav") == "events/evt_1/classes/C1/raw/take_1.wav"
    assert staging_key("evt_1", "U", None, "a.wav", 0) == "events/evt_1/uploads/U/unassigned/000-a.wav"
    assert staging_key("evt_1", "U", "C2", "a.wav", 12) == "events/evt_1/uploads/U/C2/012-a.wav"
    assert final_audio_key("evt_1", "C1", "S1", "x.wav").startswith(final_audio_prefix("evt_1", "C1", "S1"))


def test_staging_keys_differ_when_filenames_sanitize_alike():
    first = staging_key("evt_1", "U", "C2", "Song A.wav", 0)
    second = staging_key("evt_1", "U", "C2", "Song_A.wav", 1)
    assert first != second


def test_key_segments_cannot_escape():
    key = final_audio_key("..", "C1", "S1", "../../etc/passwd")
    assert ".." not in key.split("/")


@pytest.mark.parametrize("key", ["", "/abs/key", "a/../b", "a//b", "a\\b", "./a"])
def test_validate_key_rejects_unsafe_keys(key):
    with pytest.raises(StorageKeyError):
        validate_key(key)


def test_upload_url_verifies_for_put_only(storage):
    url = storage.mint_upload_url("events/evt_1/uploads/U/C1/a.wav")
    assert url.startswith("http://testserver/api/storage/objects/events/evt_1/")
    key, expires, signature = _parse(url)
    assert key == "events/evt_1/uploads/U/C1/a.wav"
    assert storage.verify("PUT", key, expires, signature)
    assert not storage.verify("GET", key, expires, signature)


def test_tampered_key_or_expiry_is_rejected(storage):
    key, expires, signature = _parse(storage.mint_upload_url("events/evt_1/uploads/U/C1/a.wav"))
    assert not storage.verify("PUT", "events/evt_1/uploads/U/C1/b.wav", expires, signature)
    assert not storage.verify("PUT", key, expires + 3600, signature)
    assert not storage.verify("PUT", key, expires, "0" * len(signature))


def test_urls_expire(storage, clock):
    key, expires, signature = _parse(storage.mint_download_url("events/evt_1/classes/C1/raw/a.wav", 60))
    clock.advance(60)
    assert storage.verify("GET", key, expires, signature)
    clock.advance(1)
    assert not storage.verify("GET", key, expires, signature)


def test_put_get_move_delete(storage):
    storage.put_bytes("events/e/uploads/U/C1/a.wav", b"RIFF....WAVE")
    assert storage.exists("events/e/uploads/U/C1/a.wav")
    assert storage.size("events/e/uploads/U/C1/a.wav") == 12

    size = storage.move("events/e/uploads/U/C1/a.wav", "events/e/classes/C1/songs/S1/final/a.wav")
    assert size == 12
    assert not storage.exists("events/e/uploads/U/C1/a.wav")
    assert storage.get_bytes("events/e/classes/C1/songs/S1/final/a.wav") == b"RIFF....WAVE"

    storage.delete("events/e/classes/C1/songs/S1/final/a.wav")
    storage.delete("events/e/classes/C1/songs/S1/final/a.wav")
    with pytest.raises(ObjectNotFound):
        storage.get_bytes("events/e/classes/C1/songs/S1/final/a.wav")


def test_move_of_missing_object_raises(storage):
    with pytest.raises(ObjectNotFound):
        storage.move("events/e/uploads/U/C1/missing.wav", "events/e/x.wav")
