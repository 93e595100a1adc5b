from fastapi import APIRouter, HTTPException, status
from fastapi.responses import FileResponse

from app.services.media_service import mime_for_filename, resolve_media_path

router = APIRouter(tags=["media"])


@router.get("/media/{media_path:path}")
async def serve_media(media_path: str):
    """Serve relocated media from local storage."""
    if not (media_path or "").strip().lstrip("/"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing media path")

    target_path = resolve_media_path(media_path)
    if target_path is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid media path")
    if not target_path.exists() or not target_path.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Media not found")

    return FileResponse(target_path, media_type=mime_for_filename(target_path.name))
