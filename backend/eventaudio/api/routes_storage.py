"""Presigned object transfer endpoints.

``PUT`` and ``GET /api/storage/objects/{key}`` only accept requests carrying a
valid ``expires``/``signature`` pair minted by :class:`StorageGateway`; they
are what the upload and download URLs handed to clients point at.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import FileResponse

from ..config import settings
from ..utils.storage import StorageGateway, ensure_dir_exists, get_storage_gateway, validate_key

router = APIRouter()
logger = logging.getLogger(__name__)


def _check_signature(gateway: StorageGateway, method: str, key: str, expires: int, signature: str) -> None:
    validate_key(key)
    if not gateway.verify(method, key, expires, signature):
        logger.warning("Rejected %s for %s: bad or expired signature", method, key)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid or expired signature")


@router.put("/objects/{key:path}")
async def put_object(
    key: str,
    request: Request,
    expires: int = Query(...),
    signature: str = Query(...),
    gateway: StorageGateway = Depends(get_storage_gateway),
) -> dict:
    """Store the raw request body under ``key``."""
    _check_signature(gateway, "PUT", key, expires, signature)

    path = gateway.path_for(key)
    ensure_dir_exists(path.parent)
    tmp_path = path.with_name(f".{path.name}.part")
    max_bytes = settings.max_upload_size_bytes
    bytes_written = 0
    try:
        with open(tmp_path, "wb") as f:
            async for chunk in request.stream():
                bytes_written += len(chunk)
                # Enforce per-file size limit if configured (0 == unlimited)
                if max_bytes and bytes_written > max_bytes:
                    logger.warning(
                        "Upload exceeded max size. key=%s limit=%dMB", key, settings.MAX_UPLOAD_SIZE_MB
                    )
                    raise HTTPException(
                        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                        detail=f"File exceeds the maximum allowed size of {settings.MAX_UPLOAD_SIZE_MB} MB.",
                    )
                f.write(chunk)
        tmp_path.replace(path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise

    logger.info("Stored %d bytes at %s", bytes_written, key)
    return {"key": key, "size": bytes_written}


@router.get("/objects/{key:path}")
async def get_object(
    key: str,
    expires: int = Query(...),
    signature: str = Query(...),
    gateway: StorageGateway = Depends(get_storage_gateway),
) -> FileResponse:
    _check_signature(gateway, "GET", key, expires, signature)
    path = gateway.path_for(key)
    if not path.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Object not found")
    return FileResponse(path, filename=path.name)
