"""Outbound sends through the WhatsApp transport provider."""

from typing import Optional

import httpx

from app.config import settings
from app.logging_config import get_logger
from app.services.payload_service import MESSAGE_ID_FIELDS, first_text
from app.services.phone_service import to_provider_number
from app.services.result import Result

logger = get_logger("provider_service")

SEND_TIMEOUT_SECONDS = 30.0
MEDIA_SEND_TYPES = {"image", "audio", "ptt", "video", "document", "sticker"}


def _post(path: str, payload: dict, client: Optional[httpx.Client]) -> Result[Optional[str]]:
    if not settings.provider_token:
        logger.error("Provider token is missing (PROVIDER_TOKEN env var not set)")
        return Result.failure("Provider token not configured", code="missing_token")

    url = f"{settings.provider_api_url.rstrip('/')}{path}"
    headers = {"Accept": "application/json", "token": settings.provider_token}
    try:
        if client is not None:
            response = client.post(url, json=payload, headers=headers)
        else:
            with httpx.Client(timeout=SEND_TIMEOUT_SECONDS) as http:
                response = http.post(url, json=payload, headers=headers)
    except httpx.HTTPError as e:
        logger.error(
            "Provider send failed",
            extra={"context": {"path": path, "number": payload.get("number"), "error": str(e)}},
        )
        return Result.failure(str(e), code="transport_error")

    logger.info(
        "Provider response",
        extra={"context": {"path": path, "status": response.status_code, "body": response.text[:200]}},
    )
    if response.status_code >= 400:
        return Result.failure(f"provider returned {response.status_code}", code="provider_error")

    try:
        data = response.json()
    except ValueError:
        data = {}
    provider_id = first_text(data, MESSAGE_ID_FIELDS) if isinstance(data, dict) else None
    return Result.success(provider_id)


def send_text(phone: str, text: str, *, client: Optional[httpx.Client] = None) -> Result[Optional[str]]:
    """POST /send/text. Value is the provider message id when the response carries one."""
    if not phone or not text:
        return Result.failure("phone and text are required", code="invalid_request")
    payload = {"number": to_provider_number(phone, settings.domestic_country_code), "text": text}
    return _post("/send/text", payload, client)


def send_media(
    phone: str,
    *,
    media_type: str,
    file: str,
    caption: Optional[str] = None,
    client: Optional[httpx.Client] = None,
) -> Result[Optional[str]]:
    """POST /send/media. ``file`` is a public URL or a base64 data URI."""
    kind = (media_type or "").strip().lower()
    if kind not in MEDIA_SEND_TYPES:
        return Result.failure(f"unsupported media_type={media_type}", code="invalid_request")
    if not phone or not file:
        return Result.failure("phone and file are required", code="invalid_request")
    payload = {"number": to_provider_number(phone, settings.domestic_country_code), "type": kind, "file": file}
    if caption:
        payload["text"] = caption
    return _post("/send/media", payload, client)
