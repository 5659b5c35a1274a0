from pydantic import BaseModel, Field
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID
from .db_models import Principal


class UserSessionRedis(BaseModel):
    """
    Represents a signed-in principal's session stored in Redis.
    """
    principal: Principal = Field(..., description="Profile and role resolved at sign-in.")
    session_id: UUID = Field(..., description="Unique ID for this specific session.")
    session_start_time: datetime = Field(..., description="The time this session began.")
    session_end_time: datetime = Field(..., description="The time this session will expire.")


class PortalEvent(BaseModel):
    """
    A change notification published by the services, e.g. 'attendance.checked_in'.
    The payload only carries identifiers and small values so it stays JSON-safe.
    """
    topic: str
    actor_id: Optional[UUID] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
