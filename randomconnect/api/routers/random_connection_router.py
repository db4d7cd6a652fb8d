"""Random connection API routes."""

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from randomconnect.api.core.dependencies import (
    get_current_identity,
    get_current_user_id,
    get_random_connection_service,
)
from randomconnect.api.services import RandomConnectionService
from randomconnect.shared.errors import MatchmakingError
from randomconnect.shared.models import RandomConnection, UserIdentity

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/random-connections", tags=["random-connections"])


# ============================================
# Response / Request Models
# ============================================


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ParticipantResponse(CamelModel):
    user_id: str
    username: str = ""
    display_name: str = ""
    avatar_ref: str | None = None
    video_enabled: bool
    joined_at: datetime
    left_at: datetime | None = None


class TranscriptMessageResponse(CamelModel):
    sender_id: str
    text: str
    timestamp: datetime


class SessionResponse(CamelModel):
    room_id: str
    participants: list[ParticipantResponse]
    game_preference: str
    status: str
    start_time: datetime
    end_time: datetime | None = None
    duration: int | None = None
    messages: list[TranscriptMessageResponse] = []
    created_by: str

    @classmethod
    def from_session(cls, session: RandomConnection) -> "SessionResponse":
        return cls.model_validate(session.to_payload())


class JoinQueueRequest(CamelModel):
    # selectedGame is accepted for older clients
    game_preference: str = Field(
        min_length=1,
        max_length=64,
        validation_alias=AliasChoices("gamePreference", "selectedGame", "game_preference"),
    )
    video_enabled: bool = True


class JoinQueueResponse(CamelModel):
    matched: bool
    message: str
    session: SessionResponse | None = None


class RoomRequest(CamelModel):
    room_id: str = Field(min_length=1)


class SendMessageRequest(CamelModel):
    room_id: str = Field(min_length=1)
    text: str = Field(
        min_length=1,
        max_length=500,
        validation_alias=AliasChoices("text", "message"),
    )


class SignalRequest(CamelModel):
    room_id: str = Field(min_length=1)
    signal: dict[str, Any]
    target_user_id: str | None = None


class SuccessResponse(CamelModel):
    success: bool = True
    message: str


class DisconnectResponse(SuccessResponse):
    session: SessionResponse


class CleanupResponse(SuccessResponse):
    cleaned: int


class SignalResponse(CamelModel):
    success: bool = True
    delivered: int


class HistoryResponse(CamelModel):
    sessions: list[SessionResponse]
    total: int
    total_pages: int
    current_page: int


def _client_error(e: MatchmakingError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.message)


# ============================================
# Queue Endpoints
# ============================================


@router.post("/join-queue", response_model=JoinQueueResponse)
async def join_queue(
    body: JoinQueueRequest,
    identity: UserIdentity = Depends(get_current_identity),
    service: RandomConnectionService = Depends(get_random_connection_service),
) -> JoinQueueResponse:
    """Join the queue for a game; returns the room when matched instantly."""
    try:
        result = await service.join_queue(identity, body.game_preference, body.video_enabled)
    except MatchmakingError as e:
        raise _client_error(e) from None
    except Exception as e:
        logger.exception(f"Failed to join queue: {e}")
        raise HTTPException(status_code=500, detail="Failed to join queue") from None

    if result.matched and result.session is not None:
        return JoinQueueResponse(
            matched=True,
            message="Connection established!",
            session=SessionResponse.from_session(result.session),
        )
    return JoinQueueResponse(matched=False, message="Added to queue. Waiting for match...")


@router.delete("/leave-queue", response_model=SuccessResponse)
async def leave_queue(
    user_id: str = Depends(get_current_user_id),
    service: RandomConnectionService = Depends(get_random_connection_service),
) -> SuccessResponse:
    """Leave the queue."""
    try:
        await service.leave_queue(user_id)
    except MatchmakingError as e:
        raise _client_error(e) from None
    except Exception as e:
        logger.exception(f"Failed to leave queue: {e}")
        raise HTTPException(status_code=500, detail="Failed to leave queue") from None
    return SuccessResponse(message="Left the queue successfully")


# ============================================
# Connection Endpoints
# ============================================


@router.get("/current-connection", response_model=SessionResponse)
async def get_current_connection(
    user_id: str = Depends(get_current_user_id),
    service: RandomConnectionService = Depends(get_random_connection_service),
) -> SessionResponse:
    """Get the caller's open connection."""
    try:
        session = await service.get_current_connection(user_id)
    except MatchmakingError as e:
        raise _client_error(e) from None
    except Exception as e:
        logger.exception(f"Failed to get current connection: {e}")
        raise HTTPException(status_code=500, detail="Failed to get current connection") from None
    return SessionResponse.from_session(session)


@router.post("/disconnect", response_model=DisconnectResponse)
async def disconnect(
    body: RoomRequest,
    user_id: str = Depends(get_current_user_id),
    service: RandomConnectionService = Depends(get_random_connection_service),
) -> DisconnectResponse:
    """Disconnect from a room; the partner is notified and re-queued."""
    try:
        session = await service.disconnect(user_id, body.room_id)
    except MatchmakingError as e:
        raise _client_error(e) from None
    except Exception as e:
        logger.exception(f"Failed to disconnect: {e}")
        raise HTTPException(status_code=500, detail="Failed to disconnect") from None
    return DisconnectResponse(
        message="Disconnected successfully", session=SessionResponse.from_session(session)
    )


@router.post("/send-message", response_model=SuccessResponse)
async def send_message(
    body: SendMessageRequest,
    user_id: str = Depends(get_current_user_id),
    service: RandomConnectionService = Depends(get_random_connection_service),
) -> SuccessResponse:
    """Send a chat message to the partner in a room."""
    try:
        await service.send_message(user_id, body.room_id, body.text)
    except MatchmakingError as e:
        raise _client_error(e) from None
    except Exception as e:
        logger.exception(f"Failed to send message: {e}")
        raise HTTPException(status_code=500, detail="Failed to send message") from None
    return SuccessResponse(message="Message sent successfully")


@router.post("/signal", response_model=SignalResponse)
async def relay_signal(
    body: SignalRequest,
    user_id: str = Depends(get_current_user_id),
    service: RandomConnectionService = Depends(get_random_connection_service),
) -> SignalResponse:
    """Relay an opaque WebRTC signaling payload to the partner."""
    try:
        delivered = await service.relay_signal(
            user_id, body.room_id, body.signal, body.target_user_id
        )
    except MatchmakingError as e:
        raise _client_error(e) from None
    except Exception as e:
        logger.exception(f"Failed to relay signal: {e}")
        raise HTTPException(status_code=500, detail="Failed to relay signal") from None
    return SignalResponse(delivered=delivered)


@router.get("/history", response_model=HistoryResponse)
async def get_history(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=50),
    user_id: str = Depends(get_current_user_id),
    service: RandomConnectionService = Depends(get_random_connection_service),
) -> HistoryResponse:
    """Paginated list of the caller's closed connections, newest first."""
    try:
        history = await service.get_history(user_id, page, limit)
    except MatchmakingError as e:
        raise _client_error(e) from None
    except Exception as e:
        logger.exception(f"Failed to get connection history: {e}")
        raise HTTPException(status_code=500, detail="Failed to get connection history") from None
    return HistoryResponse(
        sessions=[SessionResponse.from_session(s) for s in history.sessions],
        total=history.total,
        total_pages=history.total_pages,
        current_page=history.current_page,
    )


# ============================================
# Cleanup Endpoints
# ============================================


@router.post("/cleanup-current", response_model=CleanupResponse)
async def cleanup_current(
    user_id: str = Depends(get_current_user_id),
    service: RandomConnectionService = Depends(get_random_connection_service),
) -> CleanupResponse:
    """Cleanup on page refresh/navigation."""
    try:
        result = await service.cleanup_current(user_id)
    except Exception as e:
        logger.exception(f"Failed to cleanup connection: {e}")
        raise HTTPException(status_code=500, detail="Failed to cleanup connection") from None
    return CleanupResponse(message="Connection cleaned up successfully", cleaned=result.cleaned)


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup_on_logout(
    user_id: str = Depends(get_current_user_id),
    service: RandomConnectionService = Depends(get_random_connection_service),
) -> CleanupResponse:
    """Cleanup on logout: nobody is re-queued."""
    try:
        result = await service.cleanup_on_logout(user_id)
    except Exception as e:
        logger.exception(f"Failed to cleanup connections: {e}")
        raise HTTPException(status_code=500, detail="Failed to cleanup connections") from None
    return CleanupResponse(
        message="All connections cleaned up successfully", cleaned=result.cleaned
    )
