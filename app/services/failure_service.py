"""Dead-letter storage for webhook deliveries that exhausted in-line recovery."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import IngestFailure

logger = get_logger("failure_service")

STATUS_PENDING = "PENDING"
STATUS_PROCESSING = "PROCESSING"
STATUS_REPLAYED = "REPLAYED"
STATUS_FAILED = "FAILED"

MAX_BACKOFF_SECONDS = 6 * 3600


def record_failure(
    db: Session,
    *,
    stage: str,
    reason: str,
    payload: dict[str, Any],
    clinic_id: UUID | None = None,
    clinic_slug: str | None = None,
    provider_message_id: str | None = None,
    error: str | None = None,
) -> IngestFailure:
    now = datetime.now(timezone.utc)
    failure = IngestFailure(
        clinic_id=clinic_id,
        clinic_slug=clinic_slug,
        stage=stage,
        reason=reason,
        provider_message_id=provider_message_id,
        payload_json=payload,
        status=STATUS_PENDING,
        attempts=0,
        next_attempt_at=now,
        last_error=error,
        created_at=now,
        updated_at=now,
    )
    db.add(failure)
    db.commit()
    logger.warning(
        "Delivery parked in dead-letter table",
        extra={
            "context": {
                "failure_id": str(failure.id),
                "stage": stage,
                "reason": reason,
                "clinic_slug": clinic_slug,
                "provider_message_id": provider_message_id,
            }
        },
    )
    return failure


def get_failure(db: Session, failure_id: UUID) -> IngestFailure | None:
    return db.query(IngestFailure).filter(IngestFailure.id == failure_id).first()


def list_failures(db: Session, *, status: str | None = None, limit: int = 50) -> list[IngestFailure]:
    query = db.query(IngestFailure)
    if status:
        query = query.filter(IngestFailure.status == status.upper())
    return query.order_by(IngestFailure.created_at.desc()).limit(limit).all()


def claim_due_failures(db: Session, *, limit: int = 10, now: datetime | None = None) -> list[IngestFailure]:
    """Move due PENDING rows to PROCESSING and bump their attempt counter."""
    now = now or datetime.now(timezone.utc)
    rows = (
        db.query(IngestFailure)
        .filter(
            IngestFailure.status == STATUS_PENDING,
            or_(IngestFailure.next_attempt_at.is_(None), IngestFailure.next_attempt_at <= now),
        )
        .order_by(IngestFailure.created_at)
        .limit(limit)
        .with_for_update(skip_locked=True)
        .all()
    )
    for row in rows:
        row.status = STATUS_PROCESSING
        row.attempts = (row.attempts or 0) + 1
        row.updated_at = now
    db.commit()
    return rows


def compute_backoff_seconds(attempts: int, base_seconds: float) -> float:
    exponent = max(attempts - 1, 0)
    return min(base_seconds * (2**exponent), MAX_BACKOFF_SECONDS)


def mark_replayed(db: Session, failure: IngestFailure) -> None:
    failure.status = STATUS_REPLAYED
    failure.last_error = None
    failure.updated_at = datetime.now(timezone.utc)
    db.commit()


def mark_retry(
    db: Session,
    failure: IngestFailure,
    *,
    error: str,
    max_attempts: int,
    backoff_seconds: float,
) -> bool:
    """Schedule another attempt, or give up. Returns True when the row is now FAILED."""
    now = datetime.now(timezone.utc)
    failure.last_error = error[:2000]
    failure.updated_at = now
    exhausted = (failure.attempts or 0) >= max_attempts
    if exhausted:
        failure.status = STATUS_FAILED
        failure.next_attempt_at = None
    else:
        failure.status = STATUS_PENDING
        failure.next_attempt_at = now + timedelta(seconds=compute_backoff_seconds(failure.attempts, backoff_seconds))
    db.commit()
    return exhausted
