"""Conversation API routes."""

from datetime import datetime

from pydantic import BaseModel
from fastapi import APIRouter, HTTPException

from ...app import IApplication
from ...errors import (
    ChatSyncError,
    FetchFailedError,
    InvalidStateError,
    NotFoundError,
    SendFailedError,
)
from ...models import Message


class MessageResponse(BaseModel):
    """A message of the canonical sequence."""

    id: str | None
    local_key: str | None
    creator_id: str
    body: str
    created_at: datetime
    delivery_status: str
    pending: bool


class ConversationResponse(BaseModel):
    """Header data of the active conversation."""

    id: str | None
    title: str | None
    active: bool
    sender_display_name: str
    message_count: int


class TypingResponse(BaseModel):
    """Typing indicator visibility."""

    visible: bool
    state: str


class SendRequest(BaseModel):
    """Request model for sending a message."""

    body: str


class OlderRequest(BaseModel):
    """Request model for loading an older page."""

    before: datetime | None = None


def to_response(message: Message) -> dict:
    return {
        "id": message.id,
        "local_key": message.local_key,
        "creator_id": message.creator_id,
        "body": message.body,
        "created_at": message.created_at,
        "delivery_status": message.delivery_status.value,
        "pending": message.is_pending,
    }


def to_http_error(error: ChatSyncError) -> HTTPException:
    if isinstance(error, InvalidStateError):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, (FetchFailedError, SendFailedError)):
        return HTTPException(status_code=502, detail=f"{error}: {error.cause}")
    return HTTPException(status_code=500, detail=str(error))


def create_conversation_router(app: IApplication) -> APIRouter:
    """Create conversation router."""
    router = APIRouter(prefix="/api/conversation", tags=["conversation"])

    @router.get("", response_model=ConversationResponse)
    async def get_conversation() -> dict:
        """Header of the conversation the engine is bound to."""
        engine = app.engine
        conversation = engine.conversation
        return {
            "id": conversation.id if conversation else None,
            "title": engine.title,
            "active": engine.is_active,
            "sender_display_name": engine.sender_display_name,
            "message_count": len(engine.messages),
        }

    @router.get("/messages", response_model=list[MessageResponse])
    async def get_messages() -> list[dict]:
        """Current canonical message sequence, oldest first."""
        return [to_response(m) for m in app.engine.messages]

    @router.post("/messages", response_model=MessageResponse)
    async def send_message(request: SendRequest) -> dict:
        """Send a message as the local user.

        A send whose pending entry was deleted while in flight still returns
        the confirmed message; it has been appended to the sequence.
        """
        try:
            confirmed = await app.engine.send_message(request.body)
        except NotFoundError as e:
            if e.confirmed is None:
                raise to_http_error(e)
            confirmed = e.confirmed
        except ChatSyncError as e:
            raise to_http_error(e)
        return to_response(confirmed)

    @router.post("/older", response_model=list[MessageResponse])
    async def fetch_older(request: OlderRequest) -> list[dict]:
        """Load the page before the given time and return the full sequence."""
        try:
            messages = await app.engine.fetch_older_messages(request.before)
        except ChatSyncError as e:
            raise to_http_error(e)
        return [to_response(m) for m in messages]

    @router.get("/typing", response_model=TypingResponse)
    async def get_typing() -> dict:
        """Whether someone else is typing."""
        engine = app.engine
        return {"visible": engine.typing_visible, "state": engine.typing_state.value}

    return router
