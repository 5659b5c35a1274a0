# portal/backend/api/schemas/user.py
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from uuid import UUID

from ...models.db_models import Role


class LoginRequest(BaseModel):
    email: str = Field(..., description="The email the account was registered with.")
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserResponse(BaseModel):
    id: UUID
    email: str
    full_name: Optional[str] = None
    role: Role

    model_config = ConfigDict(from_attributes=True)


class LoginResponse(BaseModel):
    token: Token
    user: UserResponse


# Internal representation of JWT data
class TokenData(BaseModel):
    user_id: Optional[str] = None
