"""Admin API endpoints for the ingest dead-letter table."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.schemas.admin import IngestFailureOut, ReplayResponse
from app.services import failure_service
from app.services.ingest_service import replay_failure

router = APIRouter(prefix="/admin", tags=["admin"])


def _require_admin_token(provided: Optional[str]) -> None:
    expected = settings.admin_token
    if not expected:
        raise HTTPException(status_code=500, detail="ADMIN_TOKEN not configured")
    if not provided or provided != expected:
        raise HTTPException(status_code=401, detail="Invalid admin token")


@router.get("/ingest-failures", response_model=list[IngestFailureOut])
def list_ingest_failures(
    status: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token"),
    db: Session = Depends(get_db),
):
    _require_admin_token(x_admin_token)
    return failure_service.list_failures(db, status=status, limit=limit)


@router.post("/ingest-failures/{failure_id}/replay", response_model=ReplayResponse)
async def replay_ingest_failure(
    failure_id: UUID,
    x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token"),
    db: Session = Depends(get_db),
):
    """Replay one dead-lettered delivery now, regardless of its backoff schedule."""
    _require_admin_token(x_admin_token)
    failure = failure_service.get_failure(db, failure_id)
    if failure is None:
        raise HTTPException(status_code=404, detail="Ingest failure not found")
    if failure.status == failure_service.STATUS_REPLAYED:
        raise HTTPException(status_code=409, detail="Ingest failure already replayed")

    failure.attempts = (failure.attempts or 0) + 1
    failure.status = failure_service.STATUS_PROCESSING
    db.commit()

    outcome = await replay_failure(db, failure, max_attempts=max(settings.ingest_retry_max_attempts, failure.attempts + 1))
    return ReplayResponse(failure_id=failure.id, status=failure.status, outcome=outcome.to_response())
