import asyncio
import os

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from app.config import settings
from app.database import SessionLocal, get_db
from app.logging_config import get_logger, setup_logging
from app.models import Contact, Conversation, IngestFailure, Message
from app.routers import admin, conversations, media, webhook
from app.services.failure_service import STATUS_PENDING
from app.services.ingest_service import replay_due_failures

setup_logging(settings.log_level)

app = FastAPI(
    title="Clinic Inbox API",
    description="WhatsApp ingestion and conversation inbox for clinics",
    version="0.1.0",
)

cors_env = os.environ.get("CORS_ALLOW_ORIGINS", "*")
cors_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhook.router)
app.include_router(conversations.router)
app.include_router(media.router)
app.include_router(admin.router)

retry_logger = get_logger("ingest_retry_worker")
_retry_worker_task: asyncio.Task | None = None


def _is_env_enabled(value: str | None, default: bool = True) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def _is_retry_worker_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return _is_env_enabled(
        os.environ.get("INGEST_RETRY_WORKER_ENABLED"),
        default=settings.ingest_retry_worker_enabled,
    )


async def _retry_worker_loop() -> None:
    while True:
        try:
            await asyncio.sleep(max(settings.ingest_retry_interval_seconds, 0.1))
            db = SessionLocal()
            try:
                replayed = await replay_due_failures(db)
                if replayed:
                    retry_logger.info("Dead-letter rows replayed", extra={"context": {"count": replayed}})
            finally:
                db.close()
        except asyncio.CancelledError:
            break
        except Exception as exc:
            retry_logger.error(
                "Ingest retry worker loop failed",
                extra={"context": {"error": str(exc)}},
            )


@app.on_event("startup")
async def start_retry_worker() -> None:
    global _retry_worker_task
    if not _is_retry_worker_enabled():
        return
    if _retry_worker_task is None or _retry_worker_task.done():
        _retry_worker_task = asyncio.create_task(_retry_worker_loop())
        retry_logger.info("Ingest retry worker started")


@app.on_event("shutdown")
async def stop_retry_worker() -> None:
    global _retry_worker_task
    if _retry_worker_task is None:
        return
    _retry_worker_task.cancel()
    try:
        await _retry_worker_task
    except asyncio.CancelledError:
        pass
    _retry_worker_task = None


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    return {
        "status": "ok",
        "contacts": db.query(Contact).count(),
        "conversations": db.query(Conversation).count(),
        "messages": db.query(Message).count(),
        "pending_ingest_failures": db.query(IngestFailure).filter(IngestFailure.status == STATUS_PENDING).count(),
    }
