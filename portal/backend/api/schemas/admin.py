from pydantic import BaseModel, ConfigDict, Field
from uuid import UUID
from datetime import datetime
from typing import List, Literal, Optional


class RegisterUserRequest(BaseModel):
    """Body of the privileged register-user operation. Field names follow the web client."""
    email: str
    password: str
    full_name: str = Field(..., alias="fullName")
    role: str
    course_ids: List[str] = Field(default_factory=list, alias="courseIds")

    model_config = ConfigDict(populate_by_name=True)


class CleanupRequest(BaseModel):
    action: Literal["cleanup_incomplete", "delete_user"]
    user_id: Optional[str] = Field(None, alias="userId")

    model_config = ConfigDict(populate_by_name=True)


class GeneralCodeCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, description="Where the code is displayed, e.g. 'Main entrance'.")
    description: Optional[str] = None


class GeneralCodeUpdateRequest(BaseModel):
    is_active: bool


class GeneralCodeResponse(BaseModel):
    id: UUID
    code: str
    name: str
    description: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
