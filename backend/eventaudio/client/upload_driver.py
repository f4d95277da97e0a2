"""Client side of the batch upload protocol.

Runs in the engineer's process, never on the server:

1. extract the ``.wav`` files from a ZIP archive,
2. ask the API to match them (phase 1) and receive one presigned URL per file,
3. PUT every file to its URL, retrying each a bounded number of times,
4. let a reviewer confirm or override the suggested matches,
5. confirm the batch (phase 2).

Progress is an explicit state machine (:class:`UploadStep`) whose transitions
are the pure function :func:`next_step`; everything the run accumulates lives
on an :class:`UploadContext`.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import tempfile
import zipfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Awaitable, Callable, Optional, Union

import httpx
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class UploadCancelled(Exception):
    """The caller cancelled the batch before it was confirmed."""


class ExtractionError(Exception):
    """The archive is unreadable or holds no usable audio files."""


class TransferError(Exception):
    """A file could not be PUT to its presigned URL; the batch is aborted."""

    def __init__(self, filename: str, attempts: int, cause: BaseException) -> None:
        super().__init__(f"Upload of '{filename}' failed after {attempts} attempt(s): {cause}")
        self.filename = filename
        self.attempts = attempts
        self.cause = cause


class BatchUploadError(Exception):
    """The API rejected a phase 1 or phase 2 call."""

    def __init__(self, status_code: int, detail: str, payload: Optional[dict] = None) -> None:
        super().__init__(f"{status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail
        self.payload = payload or {}


class InvalidTransition(ValueError):
    pass


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


class UploadStep(str, Enum):
    IDLE = "idle"
    EXTRACTING = "extracting"
    UPLOADING_FILES = "uploading_files"
    REVIEW = "review"
    CONFIRMING = "confirming"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (UploadStep.DONE, UploadStep.FAILED, UploadStep.CANCELLED)


class UploadEvent(str, Enum):
    START = "start"
    EXTRACTED = "extracted"
    FILES_UPLOADED = "files_uploaded"
    REVIEWED = "reviewed"
    REJECTED = "rejected"
    CONFIRMED = "confirmed"
    ERROR = "error"
    CANCEL = "cancel"


_TRANSITIONS: dict[tuple[UploadStep, UploadEvent], UploadStep] = {
    (UploadStep.IDLE, UploadEvent.START): UploadStep.EXTRACTING,
    (UploadStep.EXTRACTING, UploadEvent.EXTRACTED): UploadStep.UPLOADING_FILES,
    (UploadStep.UPLOADING_FILES, UploadEvent.FILES_UPLOADED): UploadStep.REVIEW,
    (UploadStep.REVIEW, UploadEvent.REVIEWED): UploadStep.CONFIRMING,
    # The server keeps the session when it rejects a confirmation.
    (UploadStep.CONFIRMING, UploadEvent.REJECTED): UploadStep.REVIEW,
    (UploadStep.CONFIRMING, UploadEvent.CONFIRMED): UploadStep.DONE,
}


def next_step(step: UploadStep, event: UploadEvent) -> UploadStep:
    """Return the step that follows ``step`` on ``event``.

    ``ERROR`` and ``CANCEL`` end any step that is not already terminal;
    every other pair must be listed in the transition table.
    """
    if not step.is_terminal:
        if event is UploadEvent.ERROR:
            return UploadStep.FAILED
        if event is UploadEvent.CANCEL:
            return UploadStep.CANCELLED
    try:
        return _TRANSITIONS[(step, event)]
    except KeyError:
        raise InvalidTransition(f"No transition from {step.value} on {event.value}") from None


class RetryPolicy(BaseModel):
    """Bounded retry with exponential backoff for one file transfer.

    Args:
        max_attempts: Attempts per file, the first one included
        backoff_seconds: Delay before the first retry
        backoff_factor: Multiplier applied to the delay for each further retry
    """

    model_config = {"frozen": True}

    max_attempts: int = Field(default=2, ge=1)
    backoff_seconds: float = Field(default=1.0, ge=0.0)
    backoff_factor: float = Field(default=2.0, ge=1.0)

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts

    def delay(self, attempt: int) -> float:
        """Delay after failed attempt ``attempt`` (1-indexed)."""
        return self.backoff_seconds * (self.backoff_factor ** (attempt - 1))


@dataclass
class UploadContext:
    event_id: str
    archive: Path
    step: UploadStep = UploadStep.IDLE
    files: dict[str, Path] = field(default_factory=dict)
    upload_id: Optional[str] = None
    matches: list[dict] = field(default_factory=list)
    all_songs: list[dict] = field(default_factory=list)
    upload_urls: dict[str, str] = field(default_factory=dict)
    uploaded_sizes: dict[str, int] = field(default_factory=dict)
    confirmed_rows: list[dict] = field(default_factory=list)
    rejection: Optional[BatchUploadError] = None
    result: Optional[dict] = None
    error: Optional[BaseException] = None

    def advance(self, event: UploadEvent) -> UploadStep:
        previous = self.step
        self.step = next_step(previous, event)
        logger.debug("Batch for event %s: %s -> %s", self.event_id, previous.value, self.step.value)
        return self.step


ReviewCallback = Callable[[UploadContext], Union[Optional[list[dict]], Awaitable[Optional[list[dict]]]]]


def accept_suggestions(context: UploadContext) -> list[dict]:
    """Review callback that confirms every suggestion as-is."""
    return [
        {
            "filename": match["filename"],
            "songId": match.get("songId") if match.get("confidence") != "none" else None,
            "fileSizeBytes": context.uploaded_sizes.get(match["filename"]),
        }
        for match in context.matches
    ]


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


def extract_audio_files(archive: Path, target_dir: Path, extension: str = ".wav") -> dict[str, Path]:
    """Extract the audio files of ``archive`` flat into ``target_dir``.

    Directory structure is dropped; macOS resource forks, hidden files and
    other extensions are skipped. Returns ``{filename: path}`` in archive order.
    """
    extension = extension.lower()
    files: dict[str, Path] = {}
    try:
        with zipfile.ZipFile(archive) as zf:
            for info in zf.infolist():
                if info.is_dir():
                    continue
                member = PurePosixPath(info.filename)
                if "__MACOSX" in member.parts or member.name.startswith("."):
                    continue
                if member.suffix.lower() != extension:
                    logger.debug("Skipping %s: not a %s file", info.filename, extension)
                    continue
                if member.name in files:
                    raise ExtractionError(f"Archive contains '{member.name}' more than once")
                target = target_dir / member.name
                with zf.open(info) as src, open(target, "wb") as dst:
                    while True:
                        chunk = src.read(1024 * 1024)
                        if not chunk:
                            break
                        dst.write(chunk)
                files[member.name] = target
    except zipfile.BadZipFile as exc:
        raise ExtractionError(f"'{archive.name}' is not a valid ZIP archive") from exc

    if not files:
        raise ExtractionError(f"No {extension} files found in '{archive.name}'")
    logger.info("Extracted %d %s file(s) from %s", len(files), extension, archive.name)
    return files


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------


def _error_from_response(resp: httpx.Response) -> BatchUploadError:
    try:
        payload = resp.json()
    except ValueError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}
    detail = payload.get("detail") or resp.text or resp.reason_phrase
    return BatchUploadError(resp.status_code, str(detail), payload)


class BatchUploadDriver:
    """Drive one batch upload against the engineer API.

    Args:
        base_url: API root, e.g. ``"http://localhost:8000"``
        engineer_id: Sent as ``X-Engineer-Id`` on every API call
        retry_policy: Per-file transfer retry policy
        transport: Optional custom transport (useful for testing)
        max_review_rounds: How often a rejected confirmation goes back to review
        chunk_size: Bytes read from disk per chunk while streaming a file
    """

    def __init__(
        self,
        base_url: str,
        engineer_id: str,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 60.0,
        extension: str = ".wav",
        max_review_rounds: int = 3,
        chunk_size: int = 1024 * 1024,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.engineer_id = engineer_id
        self.retry_policy = retry_policy or RetryPolicy()
        self.transport = transport
        self.timeout = timeout
        self.extension = extension
        self.max_review_rounds = max_review_rounds
        self.chunk_size = chunk_size
        self.context: Optional[UploadContext] = None

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"X-Engineer-Id": self.engineer_id},
            timeout=self.timeout,
            transport=self.transport,
        )

    async def run(
        self,
        event_id: str,
        archive: Path,
        review: ReviewCallback = accept_suggestions,
        cancel: Optional[asyncio.Event] = None,
    ) -> UploadContext:
        """Upload every audio file of ``archive`` as final mixes of ``event_id``.

        ``review`` gets the context once the files are uploaded and returns the
        rows to confirm (``None`` cancels). Raises :class:`UploadCancelled`,
        :class:`ExtractionError`, :class:`TransferError` or
        :class:`BatchUploadError`; ``self.context`` keeps the final state.
        """
        cancel = cancel or asyncio.Event()
        ctx = self.context = UploadContext(event_id=event_id, archive=Path(archive))
        try:
            async with self._client() as client:
                ctx.advance(UploadEvent.START)
                with tempfile.TemporaryDirectory(prefix="batch-upload-") as tmp:
                    ctx.files = extract_audio_files(ctx.archive, Path(tmp), self.extension)
                    ctx.advance(UploadEvent.EXTRACTED)
                    self._check_cancel(cancel)
                    await self._initiate(client, ctx)
                    for filename, path in ctx.files.items():
                        self._check_cancel(cancel)
                        ctx.uploaded_sizes[filename] = await self._transfer(
                            client, filename, ctx.upload_urls[filename], path, cancel
                        )
                    ctx.advance(UploadEvent.FILES_UPLOADED)
                await self._review_and_confirm(client, ctx, review, cancel)
        except UploadCancelled:
            logger.info("Batch for event %s cancelled during %s", event_id, ctx.step.value)
            if not ctx.step.is_terminal:
                ctx.advance(UploadEvent.CANCEL)
            raise
        except Exception as exc:
            logger.error("Batch for event %s failed during %s: %s", event_id, ctx.step.value, exc)
            ctx.error = exc
            if not ctx.step.is_terminal:
                ctx.advance(UploadEvent.ERROR)
            raise
        return ctx

    @staticmethod
    def _check_cancel(cancel: asyncio.Event) -> None:
        if cancel.is_set():
            raise UploadCancelled()

    async def _initiate(self, client: httpx.AsyncClient, ctx: UploadContext) -> None:
        resp = await client.post(
            f"/api/engineer/events/{ctx.event_id}/upload-batch",
            json={"filenames": list(ctx.files)},
        )
        if resp.status_code >= 400:
            raise _error_from_response(resp)
        body = resp.json()
        ctx.upload_id = body["uploadId"]
        ctx.matches = body.get("matches", [])
        ctx.all_songs = body.get("allSongs", [])
        ctx.upload_urls = body.get("uploadUrls", {})
        missing = [name for name in ctx.files if name not in ctx.upload_urls]
        if missing:
            raise BatchUploadError(resp.status_code, f"No upload URL for: {', '.join(missing)}", body)
        logger.info("Batch %s started for event %s with %d file(s)", ctx.upload_id, ctx.event_id, len(ctx.files))

    async def _transfer(
        self,
        client: httpx.AsyncClient,
        filename: str,
        url: str,
        path: Path,
        cancel: asyncio.Event,
    ) -> int:
        size = path.stat().st_size
        headers = {"Content-Type": "audio/wav", "Content-Length": str(size)}
        attempt = 0
        while True:
            attempt += 1
            try:
                resp = await client.put(url, content=self._read_chunks(path), headers=headers)
                resp.raise_for_status()
                logger.info("Uploaded %s (%d bytes) on attempt %d", filename, size, attempt)
                return size
            except httpx.HTTPError as exc:
                logger.warning("Upload of %s failed on attempt %d: %s", filename, attempt, exc)
                if not self.retry_policy.should_retry(attempt):
                    raise TransferError(filename, attempt, exc) from exc
            await self._backoff(self.retry_policy.delay(attempt), cancel)

    async def _read_chunks(self, path: Path):
        with path.open("rb") as fh:
            while True:
                chunk = fh.read(self.chunk_size)
                if not chunk:
                    break
                yield chunk

    @staticmethod
    async def _backoff(delay: float, cancel: asyncio.Event) -> None:
        try:
            await asyncio.wait_for(cancel.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise UploadCancelled()

    async def _review_and_confirm(
        self,
        client: httpx.AsyncClient,
        ctx: UploadContext,
        review: ReviewCallback,
        cancel: asyncio.Event,
    ) -> None:
        rounds = 0
        while True:
            rounds += 1
            rows = review(ctx)
            if inspect.isawaitable(rows):
                rows = await rows
            self._check_cancel(cancel)
            if rows is None:
                raise UploadCancelled()
            ctx.confirmed_rows = list(rows)
            ctx.advance(UploadEvent.REVIEWED)

            resp = await client.put(
                f"/api/engineer/events/{ctx.event_id}/upload-batch",
                json={"uploadId": ctx.upload_id, "confirmedMatches": ctx.confirmed_rows},
            )
            if resp.status_code < 400:
                ctx.result = resp.json()
                ctx.rejection = None
                ctx.advance(UploadEvent.CONFIRMED)
                logger.info("Batch %s confirmed: %s file(s)", ctx.upload_id, ctx.result.get("count"))
                return

            error = _error_from_response(resp)
            if error.status_code in (400, 409) and rounds < self.max_review_rounds:
                logger.warning("Batch %s rejected (%s): %s", ctx.upload_id, error.status_code, error.detail)
                ctx.rejection = error
                ctx.advance(UploadEvent.REJECTED)
                continue
            raise error
