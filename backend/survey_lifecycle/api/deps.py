from __future__ import annotations

import uuid

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from survey_lifecycle.core.clock import Clock, SystemClock
from survey_lifecycle.core.permissions import Actor
from survey_lifecycle.core.security import decode_access_token
from survey_lifecycle.database import get_db
from survey_lifecycle.services.state_management_service import StateManagementService
from survey_lifecycle.services.survey_store import SurveyStore

_system_clock = SystemClock()


def get_clock() -> Clock:
    return _system_clock


async def get_current_actor(request: Request) -> Actor:
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")
    payload = decode_access_token(auth[7:])
    if payload is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    try:
        actor_id = uuid.UUID(payload["sub"])
    except (KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token subject") from None
    return Actor(id=actor_id, role=payload.get("role", "student"))


async def get_state_management_service(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> StateManagementService:
    return StateManagementService(SurveyStore(db), clock)
