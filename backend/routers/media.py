from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from backend.core.auth import get_actor
from backend.core.security import validate_media_signature
from backend.core.settings import settings
from backend.services.gcs import generate_signed_url, upload_attachment
from chatsync.capabilities import Actor

router = APIRouter(prefix="/api/media", tags=["media"])

_CHUNK_SIZE = 1024 * 1024  # 1 MB read chunks


@router.post("/", status_code=status.HTTP_201_CREATED)
async def upload_media(
    file: UploadFile = File(...),
    actor: Actor = Depends(get_actor),
) -> dict:
    """Store an image or voice note; the returned ``media_ref`` goes into a send."""
    if not settings.GCS_BUCKET:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Media storage is not configured",
        )
    content_type = file.content_type or ""
    if content_type not in settings.ALLOWED_MEDIA_MIMES:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid media type '{content_type}'. Allowed: {sorted(settings.ALLOWED_MEDIA_MIMES)}",
        )

    size = 0
    while chunk := await file.read(_CHUNK_SIZE):
        size += len(chunk)
        if size > settings.MAX_MEDIA_BYTES:
            limit_mb = settings.MAX_MEDIA_BYTES // (1024 * 1024)
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"Media exceeds {limit_mb} MB limit",
            )
    await file.seek(0)

    if not validate_media_signature(file.file, content_type):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Invalid file content (magic bytes mismatch)",
        )

    kind, media_ref = await upload_attachment(
        bucket=settings.GCS_BUCKET,
        owner_id=actor.id,
        file_obj=file.file,
        content_type=content_type,
    )
    media_url = await generate_signed_url(
        bucket=settings.GCS_BUCKET,
        object_path=media_ref,
        expiry_days=settings.GCS_SIGNED_URL_EXPIRY_DAYS,
    )
    return {"kind": kind, "media_ref": media_ref, "media_url": media_url}
