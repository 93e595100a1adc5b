from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session
from starlette.requests import ClientDisconnect

from app.database import get_db
from app.logging_config import get_logger
from app.models import Clinic
from app.schemas.webhook import InboxEventResponse, WebhookAck
from app.services.inbox_sync_service import handle_inbox_event
from app.services.ingest_service import STATUS_ERROR, STATUS_IGNORED, IngestOutcome, get_clinic_by_slug, handle_webhook

logger = get_logger("webhook")

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _get_request_webhook_secret(request: Request) -> str | None:
    header_secret = request.headers.get("X-Webhook-Secret")
    if header_secret:
        return header_secret.strip()
    query_secret = request.query_params.get("webhook_secret")
    if query_secret:
        return query_secret.strip()
    return None


def _verify_webhook_secret(request: Request, clinic: Clinic | None) -> None:
    """401 on a wrong secret. Unknown clinics are left to the pipeline, which dead-letters them."""
    if clinic is None:
        return
    provided_secret = _get_request_webhook_secret(request)
    if clinic.webhook_secret:
        if not provided_secret or provided_secret != clinic.webhook_secret:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook secret")
    elif not provided_secret:
        logger.warning("Webhook secret not configured for clinic", extra={"context": {"clinic": clinic.slug}})


async def _read_json_body(request: Request, clinic_slug: str) -> dict | IngestOutcome:
    try:
        payload = await request.json()
    except ClientDisconnect:
        logger.info("Webhook client disconnected during read", extra={"context": {"clinic": clinic_slug}})
        return IngestOutcome(STATUS_IGNORED, reason="client_disconnected")
    except ValueError as exc:
        raw = await request.body()
        if not raw or not raw.strip():
            logger.info("Webhook probe with empty body", extra={"context": {"clinic": clinic_slug}})
            return IngestOutcome(STATUS_IGNORED, reason="empty_payload")
        logger.warning(
            "Webhook payload is not valid JSON",
            extra={"context": {"clinic": clinic_slug, "error": str(exc), "body_preview": raw[:200].decode("utf-8", "ignore")}},
        )
        return IngestOutcome(STATUS_ERROR, reason="invalid_json")

    if not isinstance(payload, dict):
        return IngestOutcome(STATUS_ERROR, reason="invalid_payload_format")
    return payload


@router.post("/whatsapp/{clinic_slug}", response_model=WebhookAck, response_model_exclude_none=True)
async def receive_whatsapp_webhook(clinic_slug: str, request: Request, db: Session = Depends(get_db)):
    """Inbound provider webhook. Always answers 200 so the provider does not retry soft rejections."""
    clinic = get_clinic_by_slug(db, clinic_slug)
    _verify_webhook_secret(request, clinic)

    body = await _read_json_body(request, clinic_slug)
    if isinstance(body, IngestOutcome):
        return body.to_response()

    outcome = await handle_webhook(db, clinic_slug, body)
    return outcome.to_response()


@router.get("/whatsapp/{clinic_slug}")
async def whatsapp_webhook_probe(clinic_slug: str):
    """Health probe for provider UI checks; real webhooks must use POST."""
    return {"ok": True, "message": "Use POST with JSON payload", "clinic_slug": clinic_slug}


@router.post("/inbox/{clinic_slug}", response_model=InboxEventResponse, response_model_exclude_none=True)
async def receive_inbox_webhook(clinic_slug: str, request: Request, db: Session = Depends(get_db)):
    """Agent-inbox mirror events (contact_created, conversation_created)."""
    clinic = get_clinic_by_slug(db, clinic_slug)
    _verify_webhook_secret(request, clinic)
    if clinic is None:
        logger.error("Inbox event for unknown clinic", extra={"context": {"clinic": clinic_slug}})
        return {"success": False, "error": f"Clinic '{clinic_slug}' not found"}

    body = await _read_json_body(request, clinic_slug)
    if isinstance(body, IngestOutcome):
        return {"success": False, "error": body.reason}

    return await handle_inbox_event(db, clinic, body)
