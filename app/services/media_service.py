"""Media relocation: provider URL -> durable local storage -> public URL.

``relocate_media`` never raises. Every failure is logged and turned into
``None`` so the caller can keep the previous value or fall back to the
provider URL.
"""

import asyncio
import re
import time
import uuid
from pathlib import Path
from urllib.parse import quote

import httpx

from app.config import settings
from app.logging_config import get_logger

logger = get_logger("media_service")

NAMESPACE_CHAT = "chat-media"
NAMESPACE_AVATAR = "avatars"
UPLOADS_DIR = "uploads"

DEFAULT_MIME = "application/octet-stream"
DEFAULT_EXTENSION = ".bin"
USER_AGENT = "clinic-inbox/1.0"

MIME_TO_EXTENSION = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "audio/mpeg": ".mp3",
    "audio/ogg": ".ogg",
    "audio/wav": ".wav",
    "video/mp4": ".mp4",
    "video/quicktime": ".mov",
    "application/pdf": ".pdf",
    "application/msword": ".doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
    "text/plain": ".txt",
}
EXTENSION_TO_MIME = {ext: mime for mime, ext in MIME_TO_EXTENSION.items()}
EXTENSION_TO_MIME[".jpeg"] = "image/jpeg"

_FILENAME_RE = re.compile(r"filename[^;=\n]*=((['\"]).*?\2|[^;\n]*)")
_UNSAFE_CHARS_RE = re.compile(r"[^a-zA-Z0-9.-]")


class MediaTooLargeError(Exception):
    pass


def extension_for_mime(mime_type: str | None) -> str:
    if not mime_type:
        return DEFAULT_EXTENSION
    return MIME_TO_EXTENSION.get(mime_type.split(";")[0].strip().lower(), DEFAULT_EXTENSION)


def mime_for_filename(file_name: str | None) -> str:
    suffix = Path(file_name or "").suffix.lower()
    return EXTENSION_TO_MIME.get(suffix, DEFAULT_MIME)


def sanitize_filename(file_name: str) -> str:
    return _UNSAFE_CHARS_RE.sub("_", file_name)


def filename_from_headers(content_disposition: str | None, mime_type: str | None, now_ms: int | None = None) -> str:
    """Derive a filename from Content-Disposition, falling back to ``media_<ms>``.

    An extension from the MIME table is appended when the name has none.
    """
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    file_name = f"media_{now_ms}"
    if content_disposition:
        match = _FILENAME_RE.search(content_disposition)
        if match and match.group(1):
            candidate = match.group(1).replace('"', "").replace("'", "").strip()
            if candidate:
                file_name = candidate
    if "." not in file_name:
        file_name += extension_for_mime(mime_type)
    return file_name


def build_public_url(relative_path: str, base_url: str | None = None) -> str:
    base = (base_url or settings.public_base_url).rstrip("/")
    return f"{base}/media/{quote(relative_path, safe='/')}"


def resolve_media_path(relative_path: str, storage_dir: str | None = None) -> Path | None:
    """Map a ``/media/<path>`` request onto the storage dir, None when it escapes it."""
    normalized = (relative_path or "").strip().lstrip("/").replace("\\", "/")
    if not normalized:
        return None
    base_dir = Path(storage_dir or settings.media_storage_dir).resolve()
    target = (base_dir / normalized).resolve()
    if base_dir not in target.parents:
        return None
    return target


def store_bytes(
    data: bytes,
    file_name: str,
    namespace: str,
    *,
    storage_dir: str | None = None,
    now_ms: int | None = None,
) -> str:
    """Write ``data`` under ``<namespace>/uploads/<ms>_<name>`` and return the relative path.

    Files are created exclusively; an existing path gets a random suffix instead
    of being overwritten.
    """
    base_dir = Path(storage_dir or settings.media_storage_dir)
    target_dir = base_dir / sanitize_filename(namespace) / UPLOADS_DIR
    target_dir.mkdir(parents=True, exist_ok=True)

    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    safe_name = sanitize_filename(file_name)
    unique_name = f"{now_ms}_{safe_name}"
    target_path = target_dir / unique_name
    try:
        handle = target_path.open("xb")
    except FileExistsError:
        unique_name = f"{now_ms}_{uuid.uuid4().hex[:8]}_{safe_name}"
        target_path = target_dir / unique_name
        handle = target_path.open("xb")
    with handle:
        handle.write(data)

    return f"{sanitize_filename(namespace)}/{UPLOADS_DIR}/{unique_name}"


async def download_media(
    url: str,
    credential: str | None,
    *,
    client: httpx.AsyncClient | None = None,
    timeout: float | None = None,
    max_bytes: int | None = None,
) -> tuple[bytes, str, str | None]:
    """Fetch the media bytes. Returns (bytes, mime type, content-disposition)."""
    headers = {"User-Agent": USER_AGENT}
    if credential:
        headers["token"] = credential
    limit = max_bytes or settings.media_max_bytes
    owns_client = client is None
    http = client or httpx.AsyncClient(timeout=timeout or settings.media_download_timeout_seconds)
    try:
        async with http.stream("GET", url, headers=headers) as response:
            response.raise_for_status()
            chunks: list[bytes] = []
            size_bytes = 0
            async for chunk in response.aiter_bytes():
                if not chunk:
                    continue
                size_bytes += len(chunk)
                if size_bytes > limit:
                    raise MediaTooLargeError(f"media exceeds {limit} bytes")
                chunks.append(chunk)
            mime_type = response.headers.get("content-type") or DEFAULT_MIME
            return b"".join(chunks), mime_type, response.headers.get("content-disposition")
    finally:
        if owns_client:
            await http.aclose()


async def relocate_media(
    url: str | None,
    credential: str | None,
    namespace: str,
    *,
    client: httpx.AsyncClient | None = None,
    storage_dir: str | None = None,
    public_base_url: str | None = None,
    timeout: float | None = None,
) -> str | None:
    """Download ``url`` and re-publish it under ``namespace``. Returns the durable URL or None."""
    if not url or not url.lower().startswith(("http://", "https://")):
        logger.info("Media URL missing or not http(s), skipping", extra={"context": {"namespace": namespace}})
        return None

    timeout = timeout or settings.media_download_timeout_seconds
    try:
        data, mime_type, disposition = await asyncio.wait_for(
            download_media(url, credential, client=client, timeout=timeout),
            timeout=timeout,
        )
        file_name = filename_from_headers(disposition, mime_type)
        relative_path = store_bytes(data, file_name, namespace, storage_dir=storage_dir)
    except asyncio.TimeoutError:
        logger.warning(
            "Media download timed out",
            extra={"context": {"namespace": namespace, "url": url[:200], "timeout": timeout}},
        )
        return None
    except (httpx.HTTPError, MediaTooLargeError, OSError) as e:
        logger.warning(
            "Media relocation failed",
            extra={"context": {"namespace": namespace, "url": url[:200], "error": str(e)}},
        )
        return None
    except Exception as e:
        logger.error(
            "Unexpected media relocation error",
            extra={"context": {"namespace": namespace, "url": url[:200], "error": str(e)}},
            exc_info=True,
        )
        return None

    public_url = build_public_url(relative_path, public_base_url)
    logger.info(
        "Media relocated",
        extra={
            "context": {
                "namespace": namespace,
                "path": relative_path,
                "mime_type": mime_type,
                "size_bytes": len(data),
            }
        },
    )
    return public_url
