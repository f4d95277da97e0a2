"""Thin wrapper around ``ffprobe`` for reading audio metadata."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import ffmpeg

from eventaudio.config import settings

logger = logging.getLogger(__name__)


def probe_duration(path: Path) -> Optional[float]:
    """Return the container duration in seconds, or ``None`` if unknown.

    Metadata only; nothing is decoded.  A missing ``ffprobe`` binary or an
    unreadable file is logged and reported as ``None`` because duration is
    optional on every audio record.
    """
    try:
        info = ffmpeg.probe(str(path), cmd=settings.FFPROBE_PATH)
    except ffmpeg.Error as exc:
        err_detail = exc.stderr.decode("utf8", errors="replace") if exc.stderr else str(exc)
        logger.warning("ffprobe failed for %s: %s", path, err_detail[:500])
        return None
    except OSError as exc:
        logger.warning("ffprobe not available (%s): %s", settings.FFPROBE_PATH, exc)
        return None

    duration = info.get("format", {}).get("duration")
    if duration is None:
        durations = [s.get("duration") for s in info.get("streams", []) if s.get("codec_type") == "audio"]
        duration = next((d for d in durations if d is not None), None)
    try:
        return round(float(duration), 3) if duration is not None else None
    except (TypeError, ValueError):
        logger.warning("ffprobe reported a non-numeric duration for %s: %r", path, duration)
        return None
