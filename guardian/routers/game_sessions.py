"""Game sessions router.

Caregivers open a session for a child with the child's PIN; the companion
game then authenticates with ``Authorization: GameSession <token>``.
"""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from guardian.core.dependencies import get_current_user, get_game_session, get_game_session_token
from guardian.core.exceptions import NotFound, Unauthorized
from guardian.core.rate_limit import CREDENTIAL_LIMIT, limiter
from guardian.database import get_db
from guardian.models.child import Child
from guardian.models.game_session import GameSession
from guardian.models.user import User
from guardian.schemas.game_session import (
    GameSessionCreate,
    GameSessionInfo,
    GameSessionIssued,
    GameSessionResponse,
)
from guardian.services import game_session_service

router = APIRouter(prefix="/game-sessions", tags=["Game Sessions"])


@router.post("/", response_model=GameSessionIssued, status_code=status.HTTP_201_CREATED)
@limiter.limit(CREDENTIAL_LIMIT)
async def create_game_session(
    request: Request,
    body: GameSessionCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    """Verify the child's PIN and issue a session. Requires PLAY_GAME."""
    return await game_session_service.verify_pin_and_create_session(
        db, body.child_id, current_user.id, body.pin,
    )


@router.get("/current", response_model=GameSessionInfo)
async def current_session(
    db: Annotated[AsyncSession, Depends(get_db)],
    session: Annotated[GameSession, Depends(get_game_session)],
):
    child = await db.get(Child, session.child_id)
    return GameSessionInfo(
        session_id=session.id,
        child_id=session.child_id,
        child_name=child.name,
        expires_at=session.expires_at,
    )


@router.post("/current/extend", response_model=GameSessionResponse)
async def extend_current_session(
    db: Annotated[AsyncSession, Depends(get_db)],
    token: Annotated[str, Depends(get_game_session_token)],
):
    """Reset the session to a full lifetime from now.

    An expired session that was never terminated can still be extended; a
    terminated one answers 409.
    """
    try:
        return await game_session_service.extend_session(db, token)
    except NotFound:
        raise Unauthorized("Invalid or expired game session") from None


@router.post("/current/terminate", status_code=status.HTTP_204_NO_CONTENT)
async def terminate_current_session(
    db: Annotated[AsyncSession, Depends(get_db)],
    session: Annotated[GameSession, Depends(get_game_session)],
):
    await game_session_service.terminate_session(db, session.session_token)


@router.get("/children/{child_id}", response_model=list[GameSessionResponse])
async def list_child_sessions(
    child_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    return await game_session_service.list_active_sessions_by_child(db, child_id, current_user.id)


@router.delete("/children/{child_id}")
async def terminate_child_sessions(
    child_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    """End every active session of the child. Primary guardian only."""
    count = await game_session_service.terminate_all_sessions_by_child(
        db, child_id, current_user.id,
    )
    return {"terminated": count}
