"""Engineer portal REST endpoints.

1. `POST /engineer/events/{event_id}/upload-batch` – match filenames, hand out upload URLs.
2. `PUT  /engineer/events/{event_id}/upload-batch` – confirm the reviewed matches.
3. `GET  /engineer/events/{event_id}`               – event detail with final mixes.
4. `GET  /engineer/events/{event_id}/download-urls` – signed URLs for raw recordings.
5. `POST|PUT /engineer/events/{event_id}/songs/{song_id}/upload-final` – single-song upload.
6. `POST|PUT /engineer/events/{event_id}/upload-mixed` – class-level preview/final mix.
7. `GET|POST /engineer/events/{event_id}/publish`   – read or set the publish toggle.
8. `GET  /engineer/events/{event_id}/download-zip`  – raw recordings as one ZIP.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from ..config import settings
from ..db.database import get_db
from ..models.audio import AudioFileType
from ..repositories.catalog import CatalogRepository
from ..schemas import (
    ConfirmBatchRequest,
    ConfirmBatchResponse,
    DownloadUrlsResponse,
    EventDetailResponse,
    InitiateBatchRequest,
    InitiateBatchResponse,
    MixedUploadConfirmRequest,
    MixedUploadConfirmResponse,
    MixedUploadUrlRequest,
    MixedUploadUrlResponse,
    PublishRequest,
    PublishResponse,
    SongUploadConfirmRequest,
    SongUploadConfirmResponse,
    SongUploadUrlRequest,
    SongUploadUrlResponse,
)
from ..services.batch_upload import BatchUploadService
from ..services.event_views import event_detail, publish_status, raw_audio_zip, raw_download_urls, set_publish_status
from ..services.mixed_uploads import MixedUploadService
from ..services.song_uploads import SongUploadService
from ..services.upload_sessions import UploadSessionStore, get_upload_session_store
from ..utils.storage import StorageGateway, get_storage_gateway

router = APIRouter()
logger = logging.getLogger(__name__)


def require_engineer(x_engineer_id: Optional[str] = Header(None)) -> str:
    """Identity of the calling engineer, taken from the ``X-Engineer-Id`` header."""
    if not x_engineer_id or not x_engineer_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return x_engineer_id.strip()


def get_catalog(db: Session = Depends(get_db)) -> CatalogRepository:
    return CatalogRepository(db)


def get_batch_upload_service(
    catalog: CatalogRepository = Depends(get_catalog),
    sessions: UploadSessionStore = Depends(get_upload_session_store),
    storage: StorageGateway = Depends(get_storage_gateway),
) -> BatchUploadService:
    return BatchUploadService(catalog, sessions, storage)


def get_song_upload_service(
    catalog: CatalogRepository = Depends(get_catalog),
    storage: StorageGateway = Depends(get_storage_gateway),
) -> SongUploadService:
    return SongUploadService(catalog, storage)


def get_mixed_upload_service(
    catalog: CatalogRepository = Depends(get_catalog),
    storage: StorageGateway = Depends(get_storage_gateway),
) -> MixedUploadService:
    return MixedUploadService(catalog, storage)


@router.post(
    "/events/{event_id}/upload-batch",
    response_model=InitiateBatchResponse,
    response_model_by_alias=True,
)
async def initiate_batch_upload(
    event_id: str,
    payload: InitiateBatchRequest,
    engineer_id: str = Depends(require_engineer),
    service: BatchUploadService = Depends(get_batch_upload_service),
) -> InitiateBatchResponse:
    logger.info("Engineer %s starts a batch of %d file(s) for event %s", engineer_id, len(payload.filenames), event_id)
    return service.initiate_batch(event_id, payload.filenames, uploaded_by=engineer_id)


@router.put(
    "/events/{event_id}/upload-batch",
    response_model=ConfirmBatchResponse,
    response_model_by_alias=True,
)
async def confirm_batch_upload(
    event_id: str,
    payload: ConfirmBatchRequest,
    engineer_id: str = Depends(require_engineer),
    service: BatchUploadService = Depends(get_batch_upload_service),
) -> ConfirmBatchResponse:
    logger.info(
        "Engineer %s confirms batch %s (%d row(s)) for event %s",
        engineer_id, payload.upload_id, len(payload.confirmed_matches), event_id,
    )
    return service.confirm_batch(event_id, payload.upload_id, payload.confirmed_matches, uploaded_by=engineer_id)


@router.get("/events/{event_id}", response_model=EventDetailResponse, response_model_by_alias=True)
async def get_event_detail(
    event_id: str,
    _engineer_id: str = Depends(require_engineer),
    catalog: CatalogRepository = Depends(get_catalog),
) -> EventDetailResponse:
    return event_detail(catalog, event_id)


@router.get("/events/{event_id}/download-urls", response_model=DownloadUrlsResponse, response_model_by_alias=True)
async def get_download_urls(
    event_id: str,
    class_id: Optional[str] = Query(None, alias="classId"),
    _engineer_id: str = Depends(require_engineer),
    catalog: CatalogRepository = Depends(get_catalog),
    storage: StorageGateway = Depends(get_storage_gateway),
) -> DownloadUrlsResponse:
    return raw_download_urls(catalog, storage, event_id, settings.DOWNLOAD_URL_TTL_SECONDS, class_id=class_id)


@router.post(
    "/events/{event_id}/songs/{song_id}/upload-final",
    response_model=SongUploadUrlResponse,
    response_model_by_alias=True,
)
async def request_final_upload(
    event_id: str,
    song_id: str,
    payload: SongUploadUrlRequest,
    _engineer_id: str = Depends(require_engineer),
    service: SongUploadService = Depends(get_song_upload_service),
) -> SongUploadUrlResponse:
    return service.request_upload_url(event_id, song_id, payload.filename)


@router.put(
    "/events/{event_id}/songs/{song_id}/upload-final",
    response_model=SongUploadConfirmResponse,
    response_model_by_alias=True,
)
async def confirm_final_upload(
    event_id: str,
    song_id: str,
    payload: SongUploadConfirmRequest,
    engineer_id: str = Depends(require_engineer),
    service: SongUploadService = Depends(get_song_upload_service),
) -> SongUploadConfirmResponse:
    return service.confirm_upload(
        event_id,
        song_id,
        payload.key,
        payload.filename,
        uploaded_by=engineer_id,
        file_size_bytes=payload.file_size_bytes,
        duration_seconds=payload.duration_seconds,
    )


@router.post(
    "/events/{event_id}/upload-mixed",
    response_model=MixedUploadUrlResponse,
    response_model_by_alias=True,
)
async def request_mixed_upload(
    event_id: str,
    payload: MixedUploadUrlRequest,
    _engineer_id: str = Depends(require_engineer),
    service: MixedUploadService = Depends(get_mixed_upload_service),
) -> MixedUploadUrlResponse:
    return service.request_upload_url(
        event_id, payload.class_id, AudioFileType(payload.type), payload.filename, song_id=payload.song_id
    )


@router.put(
    "/events/{event_id}/upload-mixed",
    response_model=MixedUploadConfirmResponse,
    response_model_by_alias=True,
)
async def confirm_mixed_upload(
    event_id: str,
    payload: MixedUploadConfirmRequest,
    engineer_id: str = Depends(require_engineer),
    service: MixedUploadService = Depends(get_mixed_upload_service),
) -> MixedUploadConfirmResponse:
    return service.confirm_upload(
        event_id,
        payload.class_id,
        AudioFileType(payload.type),
        payload.key,
        payload.filename,
        uploaded_by=engineer_id,
        song_id=payload.song_id,
        file_size_bytes=payload.file_size_bytes,
        duration_seconds=payload.duration_seconds,
        is_schulsong=payload.is_schulsong,
    )


@router.get("/events/{event_id}/publish", response_model=PublishResponse, response_model_by_alias=True)
async def get_publish_status(
    event_id: str,
    _engineer_id: str = Depends(require_engineer),
    catalog: CatalogRepository = Depends(get_catalog),
) -> PublishResponse:
    return publish_status(catalog, event_id)


@router.post("/events/{event_id}/publish", response_model=PublishResponse, response_model_by_alias=True)
async def update_publish_status(
    event_id: str,
    payload: PublishRequest,
    engineer_id: str = Depends(require_engineer),
    catalog: CatalogRepository = Depends(get_catalog),
) -> PublishResponse:
    logger.info("Engineer %s sets publish=%s for event %s", engineer_id, payload.published, event_id)
    return set_publish_status(catalog, event_id, payload.published)


@router.get("/events/{event_id}/download-zip")
async def download_raw_zip(
    event_id: str,
    class_id: Optional[str] = Query(None, alias="classId"),
    _engineer_id: str = Depends(require_engineer),
    catalog: CatalogRepository = Depends(get_catalog),
    storage: StorageGateway = Depends(get_storage_gateway),
) -> Response:
    zip_filename, data = raw_audio_zip(catalog, storage, event_id, class_id=class_id)
    return Response(
        content=data,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{zip_filename}"'},
    )
