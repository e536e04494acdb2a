# driveflow/api/v1/endpoints/uploads.py
import uuid
from pathlib import Path as FsPath

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile, status
from loguru import logger

from driveflow.core.config import MAX_UPLOAD_SIZE_MB, UPLOAD_DIR, UPLOAD_URL_PREFIX
from driveflow.core.context import RequestContext
from driveflow.core.exceptions import UpstreamError
from driveflow.core.rate_limiter import limiter
from driveflow.core.security import get_request_context

router = APIRouter(tags=["Uploads"])

# Foto kendaraan, foto part dan invoice PDF
ALLOWED_CONTENT_TYPES = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "application/pdf": ".pdf",
}


@router.post("/", status_code=status.HTTP_201_CREATED)
@limiter.limit("60/hour")
async def upload_file(
    request: Request,
    file: UploadFile = File(...),
    ctx: RequestContext = Depends(get_request_context),
):
    """Store an image or PDF and return its public URL for use in booking fields."""
    extension = ALLOWED_CONTENT_TYPES.get(file.content_type or "")
    if extension is None:
        raise HTTPException(status_code=400, detail="Only JPEG, PNG, WEBP images or PDF files are accepted.")

    max_bytes = MAX_UPLOAD_SIZE_MB * 1024 * 1024
    too_large = HTTPException(status_code=413, detail=f"File exceeds {MAX_UPLOAD_SIZE_MB} MB limit.")
    if file.size is not None and file.size > max_bytes:
        raise too_large
    # Baca paling banyak satu byte lewat batas, sisanya tidak perlu dimuat
    content = await file.read(max_bytes + 1)
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty.")
    if len(content) > max_bytes:
        raise too_large

    filename = f"{uuid.uuid4().hex}{extension}"
    target: FsPath = UPLOAD_DIR / filename
    try:
        UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
    except OSError as e:
        logger.error(f"Failed to store upload '{file.filename}': {e}")
        raise UpstreamError("File storage is unavailable") from e

    url = f"{UPLOAD_URL_PREFIX.rstrip('/')}/{filename}"
    logger.info(f"User '{ctx.username}' uploaded {file.content_type} ({len(content)} bytes) -> {url}")
    return {"url": url, "content_type": file.content_type, "size": len(content)}
