"""Inbound webhook pipeline.

Stages, in order: tenant -> event filter -> identity -> dedup -> contact ->
media -> conversation + message. The contact stage commits on its own; the
conversation bump and the message row commit together so a retried delivery
never counts the same message twice.
"""

import asyncio
from dataclasses import dataclass
from typing import Any
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from app.config import settings
from app.logging_config import StageLogger, get_logger
from app.models import Clinic, IngestFailure
from app.services import failure_service
from app.services.alert_service import alert_dead_letter_exhausted, alert_ingest_failure
from app.services.contact_service import reconcile_contact
from app.services.conversation_service import bump_for_inbound, ensure_conversation
from app.services.dedup_service import check_duplicate
from app.services.errors import FatalConfigError, IngestError, PayloadValidationError
from app.services.media_service import NAMESPACE_CHAT, relocate_media
from app.services.message_service import (
    DIRECTION_INBOUND,
    SENDER_CONTACT,
    apply_provider_status,
    persist_message,
)
from app.services.payload_service import (
    build_preview,
    extract_message_node,
    extract_status_update,
    fallback_display_name,
    is_own_echo,
    parse_inbound,
)
from app.services.phone_service import AMBIGUOUS, resolve_phone
from app.services.state_machine import MessageStatus

logger = get_logger("ingest_service")

STATUS_IGNORED = "ignored"
STATUS_DUPLICATE = "duplicate"
STATUS_RECEIVED = "received"
STATUS_SUCCESS = "success"
STATUS_ERROR = "error"


@dataclass
class IngestOutcome:
    status: str
    reason: str | None = None
    provider_message_id: str | None = None
    message_id: UUID | None = None
    conversation_id: UUID | None = None

    def to_response(self) -> dict[str, Any]:
        response: dict[str, Any] = {self.status: True}
        if self.reason:
            response["reason"] = self.reason
        if self.status == STATUS_DUPLICATE and self.provider_message_id:
            response["wa_message_id"] = self.provider_message_id
        if self.message_id:
            response["message_id"] = str(self.message_id)
        if self.conversation_id:
            response["conversation_id"] = str(self.conversation_id)
        return response


def get_clinic_by_slug(db: Session, slug: str | None) -> Clinic | None:
    if not slug:
        return None
    return db.query(Clinic).filter(Clinic.slug == slug).first()


def require_clinic(db: Session, slug: str | None) -> Clinic:
    clinic = get_clinic_by_slug(db, slug)
    if clinic is None:
        raise FatalConfigError("unknown_clinic", stage="tenant", message=f"no clinic registered for slug {slug!r}")
    return clinic


async def ingest_delivery(
    db: Session,
    clinic: Clinic,
    body: dict[str, Any],
    *,
    credential: str | None = None,
    media_client: httpx.AsyncClient | None = None,
) -> IngestOutcome:
    """Run one delivery through the pipeline. Soft failures come back as outcomes; hard ones raise."""
    log = StageLogger(logger, {"clinic": clinic.slug})
    credential = credential if credential is not None else settings.provider_token

    status_update = extract_status_update(body)
    if status_update is not None:
        log = log.bind(provider_message_id=status_update.provider_message_id)
        message = apply_provider_status(db, status_update.provider_message_id, status_update.status)
        db.commit()
        log.info("Status update applied", stage="status", context={"status": status_update.status.value})
        return IngestOutcome(
            STATUS_RECEIVED,
            reason="status_update",
            provider_message_id=status_update.provider_message_id,
            message_id=message.id if message else None,
        )

    node = extract_message_node(body)
    if node is None:
        log.info("Ignoring non-message event", stage="filter", context={"event": body.get("EventType")})
        return IngestOutcome(STATUS_IGNORED, reason="not_a_message_event")
    if is_own_echo(node):
        return IngestOutcome(STATUS_RECEIVED, reason="own_message")

    inbound = parse_inbound(node)
    log = log.bind(provider_message_id=inbound.provider_message_id)

    resolution = resolve_phone(node, settings.domestic_country_code)
    if not resolution.accepted:
        raise PayloadValidationError(
            resolution.reason,
            stage="identity",
            message=f"sender phone rejected (source_field={resolution.source_field})",
        )
    phone = resolution.phone
    log = log.bind(phone=phone)
    if resolution.kind == AMBIGUOUS:
        log.warning(
            "Sender phone resolved heuristically",
            stage="identity",
            context={"reason": resolution.reason, "source_field": resolution.source_field},
        )

    decision = check_duplicate(db, inbound.provider_message_id)
    if decision.duplicate:
        log.info("Duplicate delivery acknowledged", stage="dedup")
        return IngestOutcome(
            STATUS_DUPLICATE,
            provider_message_id=inbound.provider_message_id,
            message_id=decision.existing_message_id,
        )

    contact = await reconcile_contact(
        db,
        clinic_id=clinic.id,
        phone=phone,
        display_name=inbound.display_name,
        fallback_name=fallback_display_name(phone),
        avatar_url=inbound.avatar_url,
        credential=credential,
        media_client=media_client,
        country_code=settings.domestic_country_code,
    )
    db.commit()
    log = log.bind(contact_id=str(contact.id))
    log.info("Contact reconciled", stage="contact", context={"message_type": inbound.message_type})

    media_url = inbound.media_url
    if inbound.has_relocatable_media:
        durable_url = await relocate_media(inbound.media_url, credential, NAMESPACE_CHAT, client=media_client)
        if durable_url:
            media_url = durable_url
        else:
            log.warning("Keeping provider media URL", stage="media")

    conversation, _ = ensure_conversation(db, clinic_id=clinic.id, contact_id=contact.id)
    log = log.bind(conversation_id=str(conversation.id))
    message, created = persist_message(
        db,
        conversation_id=conversation.id,
        contact_id=contact.id,
        clinic_id=clinic.id,
        direction=DIRECTION_INBOUND,
        sender_type=SENDER_CONTACT,
        content=inbound.content,
        status=MessageStatus.DELIVERED,
        message_type=inbound.message_type,
        media_url=media_url,
        provider_message_id=inbound.provider_message_id,
    )
    if not created:
        db.commit()
        log.info("Concurrent delivery stored the message first", stage="message")
        return IngestOutcome(
            STATUS_DUPLICATE,
            provider_message_id=inbound.provider_message_id,
            message_id=message.id,
            conversation_id=conversation.id,
        )

    bump_for_inbound(db, conversation, preview=build_preview(inbound.content, settings.message_preview_chars))
    db.commit()
    log.info("Message stored", stage="message", context={"message_id": str(message.id)})
    return IngestOutcome(
        STATUS_SUCCESS,
        provider_message_id=inbound.provider_message_id,
        message_id=message.id,
        conversation_id=conversation.id,
    )


async def _run(
    db: Session,
    clinic_slug: str,
    body: dict[str, Any],
    *,
    credential: str | None,
    media_client: httpx.AsyncClient | None,
) -> IngestOutcome:
    clinic = require_clinic(db, clinic_slug)
    return await asyncio.wait_for(
        ingest_delivery(db, clinic, body, credential=credential, media_client=media_client),
        timeout=settings.ingest_stage_timeout_seconds,
    )


def _describe_failure(exc: BaseException) -> tuple[str, str]:
    if isinstance(exc, IngestError):
        return exc.stage, exc.reason
    if isinstance(exc, asyncio.TimeoutError):
        return "pipeline", "timeout"
    return "pipeline", "unexpected_error"


async def handle_webhook(
    db: Session,
    clinic_slug: str,
    body: dict[str, Any],
    *,
    credential: str | None = None,
    media_client: httpx.AsyncClient | None = None,
) -> IngestOutcome:
    """Entry point for the webhook router. Fatal and unexpected errors are dead-lettered."""
    try:
        return await _run(db, clinic_slug, body, credential=credential, media_client=media_client)
    except PayloadValidationError as e:
        logger.info(
            "Delivery rejected",
            extra={"context": {"clinic": clinic_slug, "stage": e.stage, "reason": e.reason, "detail": e.message}},
        )
        return IngestOutcome(STATUS_IGNORED, reason=e.reason)
    except Exception as e:
        db.rollback()
        stage, reason = _describe_failure(e)
        clinic = get_clinic_by_slug(db, clinic_slug)
        node = extract_message_node(body) or {}
        provider_message_id = parse_inbound(node).provider_message_id if node else None
        logger.error(
            "Delivery aborted",
            extra={
                "context": {
                    "clinic": clinic_slug,
                    "stage": stage,
                    "reason": reason,
                    "provider_message_id": provider_message_id,
                    "error": str(e),
                }
            },
            exc_info=not isinstance(e, IngestError),
        )
        failure = failure_service.record_failure(
            db,
            stage=stage,
            reason=reason,
            payload=body,
            clinic_id=clinic.id if clinic else None,
            clinic_slug=clinic_slug,
            provider_message_id=provider_message_id,
            error=str(e),
        )
        alert_ingest_failure(
            stage,
            reason,
            {"clinic": clinic_slug, "provider_message_id": provider_message_id, "failure_id": str(failure.id)},
        )
        return IngestOutcome(STATUS_ERROR, reason=reason, provider_message_id=provider_message_id)


async def replay_failure(
    db: Session,
    failure: IngestFailure,
    *,
    max_attempts: int | None = None,
    backoff_seconds: float | None = None,
    media_client: httpx.AsyncClient | None = None,
) -> IngestOutcome:
    """Push a dead-lettered delivery through the pipeline again.

    Provider-id deduplication makes a replay of an already-stored message a no-op.
    """
    max_attempts = max_attempts or settings.ingest_retry_max_attempts
    backoff_seconds = backoff_seconds or settings.ingest_retry_backoff_seconds
    context = {"failure_id": str(failure.id), "clinic": failure.clinic_slug, "attempts": failure.attempts}
    try:
        outcome = await _run(
            db,
            failure.clinic_slug,
            dict(failure.payload_json or {}),
            credential=None,
            media_client=media_client,
        )
    except PayloadValidationError as e:
        failure_service.mark_replayed(db, failure)
        logger.info("Dead-letter replay rejected by validation", extra={"context": {**context, "reason": e.reason}})
        return IngestOutcome(STATUS_IGNORED, reason=e.reason)
    except Exception as e:
        db.rollback()
        exhausted = failure_service.mark_retry(
            db, failure, error=str(e), max_attempts=max_attempts, backoff_seconds=backoff_seconds
        )
        logger.warning("Dead-letter replay failed", extra={"context": {**context, "error": str(e)}})
        if exhausted:
            alert_dead_letter_exhausted(str(failure.id), failure.attempts, failure.last_error)
        _, reason = _describe_failure(e)
        return IngestOutcome(STATUS_ERROR, reason=reason, provider_message_id=failure.provider_message_id)

    failure_service.mark_replayed(db, failure)
    logger.info("Dead-letter replayed", extra={"context": {**context, "outcome": outcome.status}})
    return outcome


async def replay_due_failures(db: Session, *, limit: int = 10) -> int:
    """Claim due dead-letter rows and replay them. Returns how many were claimed."""
    rows = failure_service.claim_due_failures(db, limit=limit)
    for failure in rows:
        await replay_failure(db, failure)
    return len(rows)
