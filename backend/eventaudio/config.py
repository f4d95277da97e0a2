"""Application-wide configuration loader.

Every setting is read from the environment once, at import time, and exposed
through the module-level ``settings`` singleton that other modules import.
"""

import os
from pathlib import Path


def _default_data_root() -> str:
    # Docker images mount a volume at /data; fall back to the working dir.
    return "/data" if Path("/data").exists() else "./data"


def _csv(value: str) -> frozenset[str]:
    return frozenset(part.strip() for part in value.split(",") if part.strip())


class Settings:
    """Settings helper that gracefully falls back to sane defaults.

    Rationale
    ---------
    When docker-compose injects an environment variable whose value is empty
    (e.g. ``DATABASE_URL=""``) ``os.getenv("DATABASE_URL", default)`` returns an
    empty string *not* ``None`` and that empty string would override the
    in-code default.  Every setting therefore uses the idiom

        os.getenv(KEY) or DEFAULT

    so that *falsy* values are replaced by the specified DEFAULT.
    """

    def __init__(self) -> None:
        self.DATABASE_URL: str = os.getenv("DATABASE_URL") or "sqlite:///./eventaudio.db"
        self.DB_ECHO: bool = (os.getenv("DB_ECHO") or "0").lower() in {"1", "true", "yes"}

        self.DATA_ROOT: Path = Path(os.getenv("DATA_ROOT") or _default_data_root())
        self.LOG_DIR: str = os.getenv("LOG_DIR") or "backend/logs"

        self.STORAGE_SIGNING_SECRET: str = os.getenv("STORAGE_SIGNING_SECRET") or "dev-signing-secret"
        self.PUBLIC_BASE_URL: str = (os.getenv("PUBLIC_BASE_URL") or "http://localhost:8000").rstrip("/")
        self.UPLOAD_URL_TTL_SECONDS: int = int(os.getenv("UPLOAD_URL_TTL_SECONDS") or "3600")
        self.DOWNLOAD_URL_TTL_SECONDS: int = int(os.getenv("DOWNLOAD_URL_TTL_SECONDS") or "3600")
        self.UPLOAD_SESSION_TTL_SECONDS: int = int(os.getenv("UPLOAD_SESSION_TTL_SECONDS") or "1800")
        self.MAX_UPLOAD_SIZE_MB: int = int(os.getenv("MAX_UPLOAD_SIZE_MB") or "500")

        self.ACCEPTED_AUDIO_EXTENSION: str = (os.getenv("ACCEPTED_AUDIO_EXTENSION") or ".wav").lower()
        self.PREVIEW_AUDIO_EXTENSION: str = (os.getenv("PREVIEW_AUDIO_EXTENSION") or ".mp3").lower()

        self.MATCH_HIGH_THRESHOLD: float = float(os.getenv("MATCH_HIGH_THRESHOLD") or "0.15")
        self.MATCH_MEDIUM_THRESHOLD: float = float(os.getenv("MATCH_MEDIUM_THRESHOLD") or "0.35")
        self.MATCH_LOW_THRESHOLD: float = float(os.getenv("MATCH_LOW_THRESHOLD") or "0.6")

        # Engineers whose final uploads are whole-event school songs.
        self.SCHULSONG_ENGINEER_IDS: frozenset[str] = _csv(os.getenv("SCHULSONG_ENGINEER_IDS") or "")

        self.FFPROBE_PATH: str = os.getenv("FFPROBE_PATH") or "ffprobe"

    @property
    def max_upload_size_bytes(self) -> int:
        """Per-file upload limit in bytes (0 == unlimited)."""
        return self.MAX_UPLOAD_SIZE_MB * 1024 * 1024

    @property
    def objects_root(self) -> Path:
        return self.DATA_ROOT / "objects"


settings = Settings()
