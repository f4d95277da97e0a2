from pathlib import Path
from unittest.mock import patch

import ffmpeg

from eventaudio.utils.ffmpeg import probe_duration


@patch("ffmpeg.probe")
def test_duration_from_format(mock_probe):
    mock_probe.return_value = {"format": {"duration": "183.4567"}, "streams": []}
    assert probe_duration(Path("/tmp/mix.wav")) == 183.457
    assert mock_probe.call_args.args == ("/tmp/mix.wav",)


@patch("ffmpeg.probe")
def test_duration_falls_back_to_audio_stream(mock_probe):
    mock_probe.return_value = {
        "format": {},
        "streams": [{"codec_type": "video"}, {"codec_type": "audio", "duration": "12.5"}],
    }
    assert probe_duration(Path("mix.wav")) == 12.5


@patch("ffmpeg.probe")
def test_ffprobe_error_means_unknown_duration(mock_probe):
    mock_probe.side_effect = ffmpeg.Error("ffprobe", b"", b"Invalid data found when processing input")
    assert probe_duration(Path("broken.wav")) is None


@patch("ffmpeg.probe")
def test_missing_binary_means_unknown_duration(mock_probe):
    mock_probe.side_effect = FileNotFoundError("ffprobe")
    assert probe_duration(Path("mix.wav")) is None


@patch("ffmpeg.probe")
def test_non_numeric_duration(mock_probe):
    mock_probe.return_value = {"format": {"duration": "N/A"}}
    assert probe_duration(Path("mix.wav")) is None
