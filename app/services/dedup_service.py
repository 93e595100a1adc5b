from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import Message

logger = get_logger("dedup_service")


@dataclass(frozen=True)
class DedupDecision:
    duplicate: bool
    existing_message_id: UUID | None = None


NOT_DUPLICATE = DedupDecision(duplicate=False)


def check_duplicate(db: Session, provider_message_id: str | None) -> DedupDecision:
    """Point lookup of the provider id in the message store.

    Deliveries without a provider id are never gated: two of them with the same
    content cannot be told apart from a customer repeating themselves.
    """
    if not provider_message_id:
        return NOT_DUPLICATE

    existing_id = (
        db.query(Message.id)
        .filter(Message.provider_message_id == provider_message_id)
        .scalar()
    )
    if existing_id is None:
        return NOT_DUPLICATE

    logger.info(
        "Duplicate provider message id",
        extra={"context": {"provider_message_id": provider_message_id, "message_id": str(existing_id)}},
    )
    return DedupDecision(duplicate=True, existing_message_id=existing_id)
