from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.database import get_db
from app.schemas.conversation import ConversationOut, ConversationStatusUpdate
from app.schemas.message import MessageOut, SendMessageRequest, SendMessageResponse
from app.services.conversation_service import change_status, get_conversation, mark_read
from app.services.message_service import list_recent_messages
from app.services.outbound_service import send_conversation_message
from app.services.state_machine import ConversationStatus, InvalidTransitionError

router = APIRouter(prefix="/conversations", tags=["conversations"])


def _require_conversation(db: Session, conversation_id: UUID):
    conversation = get_conversation(db, conversation_id)
    if conversation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
    return conversation


@router.get("/{conversation_id}/messages", response_model=list[MessageOut])
def get_recent_messages(
    conversation_id: UUID,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    """Most recent messages, oldest first. Backs the client view's initial fetch."""
    _require_conversation(db, conversation_id)
    return list_recent_messages(db, conversation_id, limit)


@router.post("/{conversation_id}/read", response_model=ConversationOut)
def mark_conversation_read(conversation_id: UUID, db: Session = Depends(get_db)):
    conversation = _require_conversation(db, conversation_id)
    mark_read(db, conversation)
    db.commit()
    return conversation


@router.post("/{conversation_id}/status", response_model=ConversationOut)
def update_conversation_status(
    conversation_id: UUID,
    payload: ConversationStatusUpdate,
    db: Session = Depends(get_db),
):
    conversation = _require_conversation(db, conversation_id)
    try:
        new_status = ConversationStatus(payload.status)
        change_status(db, conversation, new_status)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown status: {payload.status}") from e
    except InvalidTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    db.commit()
    return conversation


@router.post("/{conversation_id}/messages", response_model=SendMessageResponse)
def send_message(conversation_id: UUID, payload: SendMessageRequest, db: Session = Depends(get_db)):
    """Send through the provider and store the outbound message, echoing client_message_id."""
    conversation = _require_conversation(db, conversation_id)
    result = send_conversation_message(
        db,
        conversation,
        text=payload.text,
        media_type=payload.media_type,
        file=payload.file,
        client_message_id=payload.client_message_id,
    )
    if result.value is None:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=result.error)
    return SendMessageResponse(
        success=result.ok,
        message=MessageOut.model_validate(result.value),
        error=result.error,
        error_code=result.error_code,
    )
